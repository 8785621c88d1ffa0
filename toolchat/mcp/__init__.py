"""
MCP client layer for toolchat.

The tool server runs as a child process and speaks JSON-RPC over its
stdin/stdout. ``ToolSession`` owns that process for the agent's lifetime;
``build_descriptors`` turns the server's tool list into specs the model
understands.

    toolchat  --stdin-->  MCP server (child)  --stdout-->  toolchat
"""

from toolchat.mcp.registry import ModelToolSpec, build_descriptors
from toolchat.mcp.schema import PromptArgument, PromptDescriptor, PromptMessage, ToolDescriptor
from toolchat.mcp.session import ToolInvocationError, ToolSession, TransportError
from toolchat.mcp.transport import MCPRemoteError, MCPTransport, MCPTransportError

__all__ = [
    "MCPRemoteError",
    "MCPTransport",
    "MCPTransportError",
    "ModelToolSpec",
    "PromptArgument",
    "PromptDescriptor",
    "PromptMessage",
    "ToolDescriptor",
    "ToolInvocationError",
    "ToolSession",
    "TransportError",
    "build_descriptors",
]
