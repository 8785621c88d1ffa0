"""
toolchat providers module.

This module provides model client adapters for various LLM providers.
"""

from toolchat.providers.base import (
    FinalAnswer,
    ModelChoice,
    ModelError,
    Provider,
    ProviderFactory,
    ToolCall,
)

__all__ = ["FinalAnswer", "ModelChoice", "ModelError", "Provider", "ProviderFactory", "ToolCall"]
