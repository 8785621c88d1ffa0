"""
toolchat core module.

Conversation history and the tool-calling orchestration loop
(``toolchat.core.loop``).
"""

from toolchat.core.conversation import (
    ArgumentParseError,
    ConversationError,
    ConversationState,
    Role,
    ToolCallIntent,
    ToolResponse,
    Turn,
)

__all__ = [
    "ArgumentParseError",
    "ConversationError",
    "ConversationState",
    "Role",
    "ToolCallIntent",
    "ToolResponse",
    "Turn",
]
