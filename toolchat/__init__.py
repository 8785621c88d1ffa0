"""
toolchat - A chat agent that lets a language model call MCP tools.

The tool server runs as a child process; toolchat talks to it over
stdin/stdout, offers its tools to the model, and runs the calls the
model asks for until the model has an answer.

Architecture:
- mcp/        JSON-RPC transport, session and tool registry
- core/       Conversation history and the orchestration loop
- providers/  Model client adapters (OpenAI, Anthropic, Gemini, Ollama, ...)
- validation/ YAML configuration
- cli/        Interactive chat
"""

__version__ = "0.1.0"
__license__ = "Apache-2.0"

from toolchat.core.conversation import ConversationState, Turn
from toolchat.core.loop import Orchestrator, TurnResult

__all__ = [
    "ConversationState",
    "Orchestrator",
    "Turn",
    "TurnResult",
    "__version__",
]
