"""Server-defined prompts: the ``/prompts`` and ``/prompt`` REPL commands."""

import shlex
from typing import Dict, List, Tuple

from toolchat.mcp.schema import PromptDescriptor
from toolchat.mcp.transport import MCPRemoteError

PROMPT_USAGE = 'Usage: /prompt <prompt_name> "arg1" "arg2" ...'


class PromptCommandError(Exception):
    """A /prompt command could not be resolved. The REPL reports it and continues."""


def parse_prompt_command(line: str) -> Tuple[str, List[str]]:
    """Split ``/prompt name "arg one" arg2`` into the name and its arguments."""
    try:
        parts = shlex.split(line)
    except ValueError as e:
        raise PromptCommandError(f"Could not parse prompt command: {e}")

    if len(parts) < 2:
        raise PromptCommandError(PROMPT_USAGE)
    return parts[1], parts[2:]


def describe_prompts(prompts: List[PromptDescriptor]) -> List[str]:
    """One line per prompt with its argument names."""
    lines = []
    for prompt in prompts:
        names = ", ".join(prompt.argument_names()) or "None"
        lines.append(f"{prompt.name}  (arguments: {names})")
    return lines


def resolve_prompt(session, line: str) -> str:
    """
    Fetch the prompt named in a ``/prompt`` command and return its text.

    Positional arguments are matched to the prompt's declared arguments in
    order; every declared argument must be supplied.
    """
    name, values = parse_prompt_command(line)

    try:
        prompts = session.list_prompts()
    except MCPRemoteError as e:
        raise PromptCommandError(f"Listing prompts failed: {e.message}")

    target = next((p for p in prompts if p.name == name), None)
    if target is None:
        raise PromptCommandError(f"Prompt {name!r} does not exist on the server")

    if len(values) < len(target.arguments):
        raise PromptCommandError(
            f"Prompt {name!r} needs {len(target.arguments)} arguments "
            f"({', '.join(target.argument_names())}), got {len(values)}"
        )

    arguments: Dict[str, str] = {arg.name: value for arg, value in zip(target.arguments, values)}
    try:
        messages = session.get_prompt(name, arguments)
    except MCPRemoteError as e:
        raise PromptCommandError(f"Getting prompt {name!r} failed: {e.message}")

    if not messages:
        raise PromptCommandError(f"Prompt {name!r} returned no messages")
    return messages[0].text
