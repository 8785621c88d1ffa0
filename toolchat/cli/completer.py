"""
toolchat CLI Completer - prompt_toolkit completion for the REPL.

Provides real-time dropdown suggestions for slash commands and
server prompt names.
"""

from typing import Callable, List, Optional

from prompt_toolkit.completion import Completer, Completion


# (command, description) for the dropdown
SLASH_COMMANDS = [
    ("/help", "Show help"),
    ("/tools", "List the server's tools"),
    ("/prompts", "List the server's prompts"),
    ("/prompt", "Run a server prompt: /prompt <name> \"arg\" ..."),
    ("/history", "Show the conversation so far"),
    ("exit", "End the session"),
]


class ToolChatCompleter(Completer):
    """Completer for the toolchat REPL.

    - Slash commands with descriptions when typing "/"
    - Prompt names when typing "/prompt "
    """

    def __init__(self, prompt_names_fn: Optional[Callable[[], List[str]]] = None):
        self._prompt_names_fn = prompt_names_fn
        self._prompt_names: Optional[List[str]] = None

    def get_completions(self, document, complete_event):
        text = document.text_before_cursor

        if text.startswith("/prompt ") and " " not in text[8:]:
            yield from self._complete_prompt_names(text[8:])
            return

        if " " in text:
            return

        for cmd, description in SLASH_COMMANDS:
            if text and cmd.startswith(text):
                yield Completion(
                    cmd,
                    start_position=-len(text),
                    display_meta=description,
                )

    def _complete_prompt_names(self, prefix: str):
        if self._prompt_names is None:
            self._prompt_names = self._prompt_names_fn() if self._prompt_names_fn else []

        for name in self._prompt_names:
            if name.startswith(prefix):
                yield Completion(name, start_position=-len(prefix), display_meta="server prompt")
