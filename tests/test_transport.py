"""Tests for the stdio JSON-RPC transport against a real child process."""

import pytest

from toolchat.mcp.transport import MCPRemoteError, MCPTransport, MCPTransportError


class TestMCPTransport:
    """Tests for MCPTransport."""

    @pytest.fixture
    def transport(self, server_command):
        command, args = server_command
        transport = MCPTransport(command=command, args=args)
        yield transport
        transport.stop()

    def test_initialize_handshake(self, transport):
        """initialize returns server info and sends notifications/initialized."""
        result = transport.initialize()

        assert result["serverInfo"]["name"] == "fake-weather"
        assert transport.send("status") == {"initialized": True}

    def test_list_tools_follows_pagination_and_skips_notifications(self, transport):
        """Both pages are collected; the log notification in between is ignored."""
        transport.initialize()

        tools = transport.list_tools()

        assert [t["name"] for t in tools] == ["get_weather", "needs_ping", "crash_tool"]

    def test_call_tool(self, transport):
        """A tool result is returned as the raw MCP result dict."""
        transport.initialize()

        result = transport.call_tool("get_weather", {"location": "Bengaluru"})

        assert result["content"] == [{"type": "text", "text": "scattered clouds, 28.5°C"}]

    def test_server_ping_is_answered(self, transport):
        """A server-initiated ping mid-request gets an empty result."""
        transport.initialize()

        result = transport.call_tool("needs_ping")

        assert result["content"][0]["text"] == "pong ok"

    def test_error_response_raises_remote_error(self, transport):
        """JSON-RPC error members surface as MCPRemoteError with the code."""
        transport.initialize()

        with pytest.raises(MCPRemoteError) as exc_info:
            transport.send("no/such/method")

        assert exc_info.value.code == -32601

    def test_server_exit_raises_transport_error(self, transport):
        """EOF on the server's stdout is a transport failure."""
        transport.initialize()

        with pytest.raises(MCPTransportError):
            transport.send("crash")

    def test_prompts(self, transport):
        """Prompts can be listed and rendered."""
        transport.initialize()

        prompts = transport.list_prompts()
        rendered = transport.get_prompt("compare_weather", {"location_a": "London", "location_b": "Bengaluru"})

        assert prompts[0]["name"] == "compare_weather"
        assert rendered["messages"][0]["content"]["text"] == "Compare the weather in London and Bengaluru."

    def test_stop_is_idempotent(self, transport):
        """stop() terminates the child and can be called again."""
        transport.start()
        assert transport.is_running

        transport.stop()
        transport.stop()

        assert not transport.is_running

    def test_context_manager(self, server_command):
        """Leaving the with block stops the child."""
        command, args = server_command
        with MCPTransport(command=command, args=args) as transport:
            transport.initialize()
            assert transport.is_running

        assert not transport.is_running

    def test_missing_command(self):
        """A command that doesn't exist raises MCPTransportError."""
        transport = MCPTransport(command="toolchat-no-such-server-binary")

        with pytest.raises(MCPTransportError):
            transport.start()

    def test_stderr_log(self, server_command, tmp_path):
        """stderr_path captures the server's stderr into a file."""
        command, args = server_command
        log = tmp_path / "server.log"

        with MCPTransport(command=command, args=args, stderr_path=str(log)) as transport:
            transport.initialize()

        assert log.exists()
