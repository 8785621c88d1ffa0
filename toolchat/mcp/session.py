"""Tool session: owns the MCP server connection for the agent's lifetime."""

from __future__ import annotations

import enum
import json
import logging
from typing import Any, Dict, List, Optional

from toolchat.mcp.schema import PromptDescriptor, PromptMessage, ToolDescriptor
from toolchat.mcp.transport import MCPRemoteError, MCPTransport, MCPTransportError

logger = logging.getLogger(__name__)

METHOD_NOT_FOUND = -32601


class TransportError(Exception):
    """The tool process is unreachable or the channel broke. Fatal for the session."""


class ToolInvocationError(Exception):
    """A single tool call failed. Recoverable: the model sees the error text."""

    class Kind(enum.Enum):
        UNKNOWN_TOOL = "unknown_tool"
        REMOTE_FAILURE = "remote_failure"

    def __init__(self, kind: "ToolInvocationError.Kind", tool_name: str, detail: str = ""):
        self.kind = kind
        self.tool_name = tool_name
        self.detail = detail
        if kind is ToolInvocationError.Kind.UNKNOWN_TOOL:
            message = f"Unknown tool: {tool_name}"
        else:
            message = f"Tool {tool_name} failed: {detail}"
        super().__init__(message)


class ToolSession:
    """
    Live connection to one MCP server.

    Holds only transport state: whether it is open, whether a request is in
    flight, and the names from the last ``list_tools()``. Use ``connect()``
    to create one and ``close()`` (or a ``with`` block) to release the child
    process on every exit path.
    """

    def __init__(self, transport: MCPTransport):
        self._transport = transport
        self._open = False
        self._pending = False
        self._tool_names: Optional[set] = None
        self.server_info: Dict[str, Any] = {}

    @classmethod
    def connect(cls, command: str, args: Optional[List[str]] = None,
                env: Optional[Dict[str, str]] = None,
                stderr_path: Optional[str] = None) -> "ToolSession":
        """Start the tool process and perform the MCP handshake."""
        transport = MCPTransport(command=command, args=args, env=env, stderr_path=stderr_path)
        session = cls(transport)
        try:
            transport.start()
            result = transport.initialize()
        except (MCPTransportError, MCPRemoteError) as exc:
            transport.stop()
            raise TransportError(f"Tool server unreachable: {exc}") from exc

        session._open = True
        session.server_info = result.get("serverInfo", {})
        logger.info("Connected to MCP server %s", session.server_info.get("name", command))
        return session

    @property
    def is_open(self) -> bool:
        return self._open

    @property
    def pending(self) -> bool:
        return self._pending

    # ── Requests ──────────────────────────────────────────────────────────

    def _request(self, method: str, *args: Any) -> Any:
        if not self._open:
            raise TransportError("Tool session is closed")
        if self._pending:
            raise TransportError("Tool session already has a request in flight")

        self._pending = True
        try:
            return getattr(self._transport, method)(*args)
        except MCPTransportError as exc:
            raise TransportError(str(exc)) from exc
        finally:
            self._pending = False

    def list_tools(self) -> List[ToolDescriptor]:
        """Fetch the server's tools. Must precede any ``call_tool``."""
        try:
            raw_tools = self._request("list_tools")
        except MCPRemoteError as exc:
            raise TransportError(f"Listing tools failed: {exc}") from exc

        tools = [ToolDescriptor.model_validate(raw) for raw in raw_tools]
        self._tool_names = {t.name for t in tools}
        logger.debug("Server exposes %d tools: %s", len(tools), sorted(self._tool_names))
        return tools

    def call_tool(self, name: str, arguments: Optional[Dict[str, Any]] = None) -> str:
        """
        Invoke a tool and return its text content.

        Raises ``ToolInvocationError`` for unknown tools and application-level
        failures, ``TransportError`` if the channel breaks. Never retries:
        tool calls may have side effects.
        """
        if self._tool_names is None or name not in self._tool_names:
            raise ToolInvocationError(ToolInvocationError.Kind.UNKNOWN_TOOL, name)

        try:
            result = self._request("call_tool", name, arguments or {})
        except MCPRemoteError as exc:
            raise ToolInvocationError(ToolInvocationError.Kind.REMOTE_FAILURE, name, exc.message) from exc

        text = render_content(result.get("content", []))
        if result.get("isError"):
            raise ToolInvocationError(ToolInvocationError.Kind.REMOTE_FAILURE, name, text or "unspecified error")
        return text

    def list_prompts(self) -> List[PromptDescriptor]:
        """Fetch the server's prompts; a server without prompt support has none."""
        try:
            raw_prompts = self._request("list_prompts")
        except MCPRemoteError as exc:
            if exc.code == METHOD_NOT_FOUND:
                return []
            raise
        return [PromptDescriptor.model_validate(raw) for raw in raw_prompts]

    def get_prompt(self, name: str, arguments: Optional[Dict[str, str]] = None) -> List[PromptMessage]:
        """Render a prompt. A server-side error is raised as ``MCPRemoteError``."""
        result = self._request("get_prompt", name, arguments or {})
        return [PromptMessage.model_validate(m) for m in result.get("messages", [])]

    # ── Cleanup ───────────────────────────────────────────────────────────

    def close(self) -> None:
        """Release the tool process. Safe to call more than once."""
        if self._open:
            logger.debug("Closing tool session")
        self._open = False
        self._transport.stop()

    def __enter__(self) -> "ToolSession":
        return self

    def __exit__(self, *exc_info) -> None:
        self.close()


def render_content(blocks: List[Any]) -> str:
    """Flatten MCP content blocks into text for the conversation."""
    parts = []
    for block in blocks:
        if isinstance(block, dict) and block.get("type") == "text":
            parts.append(block.get("text", ""))
        else:
            parts.append(json.dumps(block, separators=(",", ":"), ensure_ascii=False))
    return "\n".join(parts)
