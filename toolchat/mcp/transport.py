"""JSON-RPC 2.0 over a child process's stdin/stdout, one JSON message per line."""

from __future__ import annotations

import json
import logging
import os
import subprocess
import threading
from typing import IO, Any, Dict, List, Optional

logger = logging.getLogger(__name__)

PROTOCOL_VERSION = "2024-11-05"
CLIENT_INFO = {"name": "toolchat", "version": "0.1.0"}


class MCPTransportError(Exception):
    """The channel to the server could not be opened or broke."""


class MCPRemoteError(Exception):
    """Raised when the MCP server answers a request with a JSON-RPC error."""

    def __init__(self, code: Optional[int], message: str, data: Any = None):
        super().__init__(f"MCP error {code}: {message}")
        self.code = code
        self.message = message
        self.data = data


class MCPTransport:
    """
    One MCP server process and the JSON-RPC channel to it.

    Messages are newline-delimited JSON. The subprocess is started by
    ``start()`` (or lazily on first request) and stopped by ``stop()``
    or by leaving the ``with`` block.
    """

    def __init__(
        self,
        command: str,
        args: Optional[List[str]] = None,
        env: Optional[Dict[str, str]] = None,
        stderr_path: Optional[str] = None,
    ):
        self.command = command
        self.args = args or []
        self.env = env or {}
        self.stderr_path = stderr_path
        self._process: Optional[subprocess.Popen] = None
        self._stderr: Optional[IO[bytes]] = None
        self._request_id = 0
        self._lock = threading.Lock()

    # ── Lifecycle ─────────────────────────────────────────────────────────

    def start(self) -> None:
        """Spawn the server. No-op while it is already running."""
        if self._process and self._process.poll() is None:
            return

        merged_env = {**os.environ, **self.env}
        if self.stderr_path:
            self._stderr = open(self.stderr_path, "ab")
        try:
            self._process = subprocess.Popen(
                [self.command] + self.args,
                stdin=subprocess.PIPE,
                stdout=subprocess.PIPE,
                stderr=self._stderr if self._stderr else subprocess.DEVNULL,
                env=merged_env,
            )
        except (FileNotFoundError, PermissionError) as exc:
            self._close_stderr()
            raise MCPTransportError(f"MCP server command could not be started: {self.command} ({exc})")
        logger.debug("Started MCP server pid=%s: %s", self._process.pid, self.command)

    def stop(self) -> None:
        """Close the pipes and end the process: terminate, then kill after 5s. Idempotent."""
        process, self._process = self._process, None
        if process is not None:
            for stream in (process.stdin, process.stdout):
                try:
                    if stream:
                        stream.close()
                except OSError:
                    pass
            if process.poll() is None:
                process.terminate()
                try:
                    process.wait(timeout=5)
                except subprocess.TimeoutExpired:
                    process.kill()
                    process.wait()
            logger.debug("Stopped MCP server (exit code %s)", process.returncode)
        self._close_stderr()

    def _close_stderr(self) -> None:
        if self._stderr is not None:
            self._stderr.close()
            self._stderr = None

    @property
    def is_running(self) -> bool:
        return self._process is not None and self._process.poll() is None

    def __enter__(self) -> "MCPTransport":
        self.start()
        return self

    def __exit__(self, *exc_info) -> None:
        self.stop()

    # ── JSON-RPC ──────────────────────────────────────────────────────────

    def send(self, method: str, params: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
        """Send a request and block until its response. Returns the ``result`` member."""
        if not self.is_running:
            self.start()

        with self._lock:
            self._request_id += 1
            request_id = self._request_id
            request: Dict[str, Any] = {
                "jsonrpc": "2.0",
                "id": request_id,
                "method": method,
            }
            if params:
                request["params"] = params

            self._write(request)
            response = self._read_response(request_id)

        if "error" in response:
            err = response["error"] or {}
            raise MCPRemoteError(err.get("code"), err.get("message", ""), err.get("data"))

        return response.get("result") or {}

    def notify(self, method: str, params: Optional[Dict[str, Any]] = None) -> None:
        """Send a JSON-RPC notification (no response expected)."""
        if not self.is_running:
            self.start()

        message: Dict[str, Any] = {"jsonrpc": "2.0", "method": method}
        if params:
            message["params"] = params
        with self._lock:
            self._write(message)

    def _write(self, message: Dict[str, Any]) -> None:
        line = json.dumps(message) + "\n"
        try:
            self._process.stdin.write(line.encode())
            self._process.stdin.flush()
        except (BrokenPipeError, OSError, ValueError) as exc:
            raise MCPTransportError(f"MCP transport error: {exc}")

    def _read_response(self, request_id: int) -> Dict[str, Any]:
        """Read messages until the response for ``request_id`` arrives."""
        while True:
            try:
                raw = self._process.stdout.readline()
            except (OSError, ValueError) as exc:
                raise MCPTransportError(f"MCP transport error: {exc}")
            if not raw:
                raise MCPTransportError("MCP server closed connection (empty response)")
            if not raw.strip():
                continue

            try:
                message = json.loads(raw.decode())
            except (UnicodeDecodeError, json.JSONDecodeError) as exc:
                raise MCPTransportError(f"MCP server sent invalid JSON: {exc}")
            if not isinstance(message, dict):
                raise MCPTransportError(f"MCP server sent unexpected message: {message!r}")

            if "method" in message:
                self._handle_server_message(message)
                continue

            if message.get("id") != request_id:
                logger.warning("Dropping MCP response for unknown request id %r", message.get("id"))
                continue

            return message

    def _handle_server_message(self, message: Dict[str, Any]) -> None:
        """Answer server-initiated requests; log notifications."""
        method = message["method"]
        if "id" not in message:
            logger.debug("MCP notification: %s %s", method, message.get("params", {}))
            return

        if method == "ping":
            reply: Dict[str, Any] = {"jsonrpc": "2.0", "id": message["id"], "result": {}}
        else:
            reply = {
                "jsonrpc": "2.0",
                "id": message["id"],
                "error": {"code": -32601, "message": f"Method not found: {method}"},
            }
        self._write(reply)

    # ── MCP Protocol ──────────────────────────────────────────────────────

    def initialize(self) -> Dict[str, Any]:
        """Handshake: ``initialize`` then the ``notifications/initialized`` notification."""
        result = self.send("initialize", {
            "protocolVersion": PROTOCOL_VERSION,
            "capabilities": {},
            "clientInfo": CLIENT_INFO,
        })
        self.notify("notifications/initialized")
        return result

    def list_tools(self) -> List[Dict[str, Any]]:
        """All tools, following ``nextCursor`` pages."""
        return self._list_paginated("tools/list", "tools")

    def call_tool(self, name: str, arguments: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
        """Raw ``tools/call`` result (``content`` blocks, optional ``isError``)."""
        return self.send("tools/call", {"name": name, "arguments": arguments or {}})

    def list_prompts(self) -> List[Dict[str, Any]]:
        """Fetch the prompt list from the MCP server."""
        return self._list_paginated("prompts/list", "prompts")

    def get_prompt(self, name: str, arguments: Optional[Dict[str, str]] = None) -> Dict[str, Any]:
        """Render a server-defined prompt."""
        return self.send("prompts/get", {"name": name, "arguments": arguments or {}})

    def _list_paginated(self, method: str, key: str) -> List[Dict[str, Any]]:
        items: List[Dict[str, Any]] = []
        cursor: Optional[str] = None
        while True:
            result = self.send(method, {"cursor": cursor} if cursor else None)
            items.extend(result.get(key, []))
            cursor = result.get("nextCursor")
            if not cursor:
                return items
