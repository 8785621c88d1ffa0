"""Shared fixtures: a scripted model, a fake tool session, and a fake MCP server."""

import sys
import textwrap
from pathlib import Path
from typing import Any, Dict, List, Optional

import pytest

from toolchat.core.conversation import ToolCallIntent
from toolchat.mcp.registry import ModelToolSpec, build_descriptors
from toolchat.mcp.schema import ToolDescriptor
from toolchat.mcp.session import ToolInvocationError
from toolchat.providers.base import FinalAnswer, Provider, ToolCall
from toolchat.validation.config import Config


class ScriptedProvider(Provider):
    """Returns pre-recorded choices in order and remembers what it was sent."""

    def __init__(self, script: List[Any], config: Optional[Config] = None):
        super().__init__(model="scripted-1", config=config or Config())
        self.script = list(script)
        self.histories = []

    @property
    def provider_name(self) -> str:
        return "scripted"

    def invoke(self, history, tools):
        self.histories.append(tuple(history))
        step = self.script.pop(0)
        if isinstance(step, Exception):
            raise step
        return step

    def validate_connection(self) -> bool:
        return True


class FakeSession:
    """Stands in for ToolSession: answers from a dict, records every call."""

    def __init__(self, responses: Optional[Dict[str, Any]] = None):
        self.responses = responses or {}
        self.calls: List[tuple] = []

    def call_tool(self, name: str, arguments: Dict[str, Any]) -> str:
        self.calls.append((name, arguments))
        if name not in self.responses:
            raise ToolInvocationError(ToolInvocationError.Kind.UNKNOWN_TOOL, name)
        response = self.responses[name]
        if isinstance(response, Exception):
            raise response
        return response

    def list_prompts(self):
        return []


def tool_call(name: str, arguments: Any, call_id: str = "") -> ToolCall:
    return ToolCall(intent=ToolCallIntent(id=call_id, tool_name=name, arguments=arguments))


def final(text: str) -> FinalAnswer:
    return FinalAnswer(text=text)


@pytest.fixture
def weather_tools() -> List[ModelToolSpec]:
    return build_descriptors([
        ToolDescriptor(
            name="get_weather",
            description="Get the current weather for a city",
            input_schema={
                "type": "object",
                "properties": {"location": {"type": "string"}},
                "required": ["location"],
            },
        ),
    ])


FAKE_SERVER = textwrap.dedent('''
    import json
    import sys

    TOOLS = [
        {
            "name": "get_weather",
            "description": "Get the current weather for a city",
            "inputSchema": {
                "type": "object",
                "properties": {"location": {"type": "string"}},
                "required": ["location"],
            },
        },
        {"name": "needs_ping", "description": "Pings the client before answering"},
        {"name": "crash_tool", "description": "Exits without answering"},
    ]

    WEATHER = {"bengaluru": "scattered clouds, 28.5\\u00b0C", "london": "light rain, 12.4\\u00b0C"}


    def send(message):
        sys.stdout.write(json.dumps(message) + "\\n")
        sys.stdout.flush()


    def reply(msg_id, result=None, error=None):
        message = {"jsonrpc": "2.0", "id": msg_id}
        if error is not None:
            message["error"] = error
        else:
            message["result"] = result
        send(message)


    initialized = False
    while True:
        line = sys.stdin.readline()
        if not line:
            break
        msg = json.loads(line)
        method = msg.get("method")
        if "id" not in msg:
            if method == "notifications/initialized":
                initialized = True
            continue
        msg_id = msg["id"]
        params = msg.get("params", {})

        if method == "initialize":
            reply(msg_id, {
                "protocolVersion": params["protocolVersion"],
                "capabilities": {"tools": {}, "prompts": {}},
                "serverInfo": {"name": "fake-weather", "version": "0.0.1"},
            })
        elif method == "tools/list":
            send({"jsonrpc": "2.0", "method": "notifications/message",
                  "params": {"level": "info", "data": "listing tools"}})
            if params.get("cursor") == "page2":
                reply(msg_id, {"tools": TOOLS[1:]})
            else:
                reply(msg_id, {"tools": TOOLS[:1], "nextCursor": "page2"})
        elif method == "tools/call":
            name = params["name"]
            args = params.get("arguments", {})
            if name == "get_weather":
                text = WEATHER.get(args.get("location", "").lower())
                if text is None:
                    reply(msg_id, {"content": [{"type": "text", "text": "no data for " + args.get("location", "")}],
                                   "isError": True})
                else:
                    reply(msg_id, {"content": [{"type": "text", "text": text}]})
            elif name == "needs_ping":
                send({"jsonrpc": "2.0", "id": "srv-1", "method": "ping"})
                answer = json.loads(sys.stdin.readline())
                ok = answer.get("id") == "srv-1" and answer.get("result") == {}
                reply(msg_id, {"content": [{"type": "text", "text": "pong ok" if ok else "pong bad"}]})
            elif name == "crash_tool":
                sys.exit(3)
            else:
                reply(msg_id, error={"code": -32602, "message": "Unknown tool: " + name})
        elif method == "prompts/list":
            reply(msg_id, {"prompts": [{
                "name": "compare_weather",
                "description": "Compare the weather of two places",
                "arguments": [{"name": "location_a", "required": True},
                              {"name": "location_b", "required": True}],
            }]})
        elif method == "prompts/get":
            args = params.get("arguments", {})
            if params["name"] != "compare_weather":
                reply(msg_id, error={"code": -32602, "message": "Unknown prompt"})
            else:
                reply(msg_id, {"messages": [{"role": "user", "content": {
                    "type": "text",
                    "text": "Compare the weather in %s and %s." % (args["location_a"], args["location_b"]),
                }}]})
        elif method == "status":
            reply(msg_id, {"initialized": initialized})
        elif method == "crash":
            sys.exit(3)
        else:
            reply(msg_id, error={"code": -32601, "message": "Method not found"})
''')


@pytest.fixture
def fake_server(tmp_path) -> Path:
    """Path to a small stdio MCP server script."""
    script = tmp_path / "fake_server.py"
    script.write_text(FAKE_SERVER)
    return script


@pytest.fixture
def server_command(fake_server):
    """(command, args) that starts the fake server with this interpreter."""
    return sys.executable, [str(fake_server)]
