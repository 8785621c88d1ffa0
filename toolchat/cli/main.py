"""
toolchat CLI - Interactive chat with an MCP tool server.

Run `toolchat --server "python weather_server.py"` to start chatting.
Configuration lives in .toolchat/config.yaml (see toolchat.validation.config).
"""

import logging
import shlex
import sys
from typing import Callable, Dict, List, Optional

import click
from rich.console import Console
from rich.markdown import Markdown
from rich.markup import escape
from rich.panel import Panel
from rich.table import Table
from rich.text import Text

from toolchat import __version__
from toolchat.cli.prompts import PromptCommandError, describe_prompts, resolve_prompt, PROMPT_USAGE
from toolchat.core.conversation import ConversationState, Role, ToolCallIntent
from toolchat.core.loop import Orchestrator
from toolchat.mcp.registry import build_descriptors
from toolchat.mcp.session import ToolSession, TransportError
from toolchat.mcp.transport import MCPRemoteError
from toolchat.providers.base import ModelError, ProviderFactory
from toolchat.validation.config import Config, ConfigError

console = Console()
logger = logging.getLogger(__name__)

EXIT_KEYWORD = "exit"


class ToolChatREPL:
    """
    Interactive chat loop.

    Reads one line at a time. ``exit`` ends the session, slash commands are
    handled here, and everything else goes to the orchestrator. A turn is
    fully resolved, tool calls included, before the next line is read.
    """

    def __init__(
        self,
        session: ToolSession,
        orchestrator: Orchestrator,
        input_fn: Optional[Callable[[], str]] = None,
    ):
        self.session = session
        self.orchestrator = orchestrator
        self._input_fn = input_fn or self._default_input()
        self._ctrlc_count = 0

    def _default_input(self) -> Callable[[], str]:
        """prompt_toolkit with completion on a terminal, plain input() otherwise."""
        if not sys.stdin.isatty():
            def read_line() -> str:
                console.print("\n[bold green]User:[/bold green] ", end="")
                return input()
            return read_line

        from prompt_toolkit import PromptSession
        from toolchat.cli.completer import ToolChatCompleter

        prompt_session = PromptSession(completer=ToolChatCompleter(self._prompt_names))

        def read_line() -> str:
            console.print()
            return prompt_session.prompt("User: ")
        return read_line

    def _prompt_names(self) -> List[str]:
        try:
            return [p.name for p in self.session.list_prompts()]
        except (TransportError, MCPRemoteError):
            return []

    # ── Output ────────────────────────────────────────────────────────────

    def _print_banner(self):
        info = Text()
        info.append(f"toolchat v{__version__}", style="bold cyan")
        info.append("  |  ", style="dim")
        info.append(f"Model: {self.orchestrator.provider.provider_name}/{self.orchestrator.provider.model}", style="dim")
        info.append("  |  ", style="dim")
        info.append(f"Tools: {len(self.orchestrator.tools)}", style="dim")
        console.print(Panel(info, title="Agent Ready", border_style="blue"))
        console.print("  [dim]Type a question, or one of:[/dim]")
        console.print("  [dim]  /prompts                         list available prompts[/dim]")
        console.print('  [dim]  /prompt <prompt_name> "args"...  run a specific prompt[/dim]')
        console.print("  [dim]  exit                             quit[/dim]")

    def _print_help(self):
        table = Table(show_header=False, box=None)
        table.add_column(style="cyan")
        table.add_column(style="white")
        table.add_row("/tools", "List the server's tools")
        table.add_row("/prompts", "List the server's prompts and their arguments")
        table.add_row('/prompt <name> "arg"...', "Run a server prompt through the agent")
        table.add_row("/history", "Show the conversation so far")
        table.add_row("/help", "Show this help")
        table.add_row("exit", "End the session")
        console.print(table)

    def _print_tools(self):
        if not self.orchestrator.tools:
            console.print("[dim]The server exposes no tools.[/dim]")
            return
        console.print(f"[bold]Available tools ({len(self.orchestrator.tools)}):[/bold]")
        for tool in self.orchestrator.tools:
            console.print(f"  [cyan]{escape(tool.name)}[/cyan]: {escape(tool.description)}")

    def _print_prompts(self):
        try:
            prompts = self.session.list_prompts()
        except MCPRemoteError as e:
            console.print(f"[red]Error while listing prompts: {escape(e.message)}[/red]")
            return
        if not prompts:
            console.print("[dim]The server defines no prompts.[/dim]")
            return
        console.print("[bold]Available prompts:[/bold]")
        for line in describe_prompts(prompts):
            console.print(f"  {escape(line)}")
        console.print(f"\n[dim]{PROMPT_USAGE}[/dim]")

    def _print_history(self):
        styles = {
            Role.SYSTEM: "magenta",
            Role.USER: "green",
            Role.ASSISTANT: "blue",
            Role.TOOL_RESULT: "yellow",
        }
        for turn in self.orchestrator.conversation.snapshot():
            if turn.tool_call is not None:
                body = f"→ {turn.tool_call.tool_name}({turn.tool_call.arguments_json()})"
            else:
                body = turn.content
            console.print(f"[{styles[turn.role]}]{turn.role.value:>9}[/{styles[turn.role]}] {escape(body)}")

    # ── Turns ─────────────────────────────────────────────────────────────

    def _execute_turn(self, text: str):
        try:
            with console.status("[bold blue]Thinking...[/bold blue]", spinner="dots"):
                result = self.orchestrator.handle(text)
        except ModelError as e:
            console.print(f"[red]LLM Error ({e.kind.value}): {escape(str(e))}[/red]")
            return
        except ConfigError as e:
            console.print(f"[red]Configuration error: {escape(str(e))}[/red]")
            return
        except TransportError:
            raise
        except Exception as e:
            logger.exception("Turn failed")
            console.print(f"[red]Error: {escape(str(e))}[/red]")
            return

        console.print()
        console.print("[bold blue]AI:[/bold blue]")
        console.print(Markdown(result.output))
        if not result.completed:
            console.print(f"[yellow]Stopped after {result.iterations} tool calls.[/yellow]")

    def _handle_command(self, line: str) -> Optional[str]:
        """Handle a slash command. Returns text to send to the agent, if any."""
        command = line.split(maxsplit=1)[0].lower()

        if command in ("/help", "/?"):
            self._print_help()
        elif command == "/tools":
            self._print_tools()
        elif command == "/prompts":
            self._print_prompts()
        elif command == "/prompt":
            try:
                text = resolve_prompt(self.session, line)
            except PromptCommandError as e:
                console.print(f"[yellow]{escape(str(e))}[/yellow]")
                return None
            console.print("[dim]--- Prompt loaded successfully. Preparing to execute... ---[/dim]")
            return text
        elif command == "/history":
            self._print_history()
        else:
            console.print(f"[yellow]Unknown command: {escape(command)}. Type /help for commands.[/yellow]")
        return None

    def run(self):
        """Run the interactive REPL. TransportError propagates: the session is over."""
        self._print_banner()

        while True:
            try:
                user_input = self._input_fn().strip()
                self._ctrlc_count = 0
            except EOFError:
                break
            except KeyboardInterrupt:
                self._ctrlc_count += 1
                if self._ctrlc_count >= 2:
                    break
                console.print("\n[dim]Press Ctrl+C again to exit, or type exit.[/dim]")
                continue

            if not user_input:
                continue
            if user_input.lower() == EXIT_KEYWORD:
                break

            if user_input.startswith("/"):
                user_input = self._handle_command(user_input)
                if not user_input:
                    continue

            self._execute_turn(user_input)

        console.print("\n[bold blue]Bye Bye![/bold blue]")


def announce_tool_call(intent: ToolCallIntent) -> None:
    console.print(f"[dim]{escape(f'[Agent uses tool: {intent.tool_name}]')}[/dim]")


def _build_overrides(model: Optional[str], server: Optional[str],
                     max_iterations: Optional[int], system_prompt: Optional[str]) -> Dict:
    overrides: Dict = {}
    agent: Dict = {}
    if model:
        agent["model"] = model
    if max_iterations is not None:
        agent["max_tool_iterations"] = max_iterations
    if system_prompt:
        agent["system_prompt"] = system_prompt
    if agent:
        overrides["agent"] = agent
    if server:
        parts = shlex.split(server)
        if parts:
            overrides["server"] = {"command": parts[0], "args": parts[1:]}
    return overrides


@click.command()
@click.option("--version", "-v", is_flag=True, help="Show version")
@click.option("--config", "config_path", type=click.Path(dir_okay=False), help="Config file (default: .toolchat/config.yaml)")
@click.option("--model", "-m", help="Model as provider/model-name, e.g. gemini/gemini-2.5-flash-lite")
@click.option("--server", "-s", help='Tool server command line, e.g. "python weather_server.py"')
@click.option("--max-iterations", type=click.IntRange(min=1), help="Maximum tool calls per question")
@click.option("--system-prompt", help="System prompt for the conversation")
@click.option("--verbose", is_flag=True, help="Debug logging")
@click.argument("question", required=False, nargs=-1)
def cli(version: bool, config_path: Optional[str], model: Optional[str], server: Optional[str],
        max_iterations: Optional[int], system_prompt: Optional[str], verbose: bool, question: tuple) -> None:
    """
    toolchat - chat with a model that can call MCP tools.

    Run without a question to start interactive mode.

    \b
    Examples:
        toolchat -s "python weather_server.py"
        toolchat -s ./bin/weather_server "What's the weather in Bengaluru?"
    """
    if version:
        console.print(f"toolchat v{__version__}")
        return

    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.WARNING,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    try:
        config = Config.load(
            path=config_path,
            overrides=_build_overrides(model, server, max_iterations, system_prompt),
        )
        settings = config.merged
        provider = ProviderFactory.create(config.get_default_model(), config)
    except (ConfigError, ValueError) as e:
        console.print(f"[red]Configuration error: {escape(str(e))}[/red]")
        sys.exit(1)

    if not settings.server.command:
        console.print("[red]Error: no tool server configured.[/red]")
        console.print('[dim]Pass --server "command args" or set server.command in .toolchat/config.yaml[/dim]')
        sys.exit(1)

    if not provider.validate_connection():
        console.print(f"[yellow]Warning: {provider.provider_name} does not look configured (missing API key?)[/yellow]")

    console.print("[dim]Starting the tool server...[/dim]")
    try:
        with ToolSession.connect(
            settings.server.command,
            args=settings.server.args,
            env=settings.server.env,
            stderr_path=settings.server.stderr_log,
        ) as session:
            orchestrator = Orchestrator(
                session=session,
                provider=provider,
                tools=build_descriptors(session.list_tools()),
                conversation=ConversationState(system_prompt=settings.agent.system_prompt),
                max_tool_iterations=settings.agent.max_tool_iterations,
                on_tool_call=announce_tool_call,
            )

            if question:
                try:
                    result = orchestrator.handle(" ".join(question))
                except (ModelError, ConfigError) as e:
                    console.print(f"[red]Error: {escape(str(e))}[/red]")
                    sys.exit(1)
                console.print(result.output, markup=False, highlight=False)
                return

            ToolChatREPL(session, orchestrator).run()
    except TransportError as e:
        console.print(f"[red]Tool server error: {escape(str(e))}[/red]")
        sys.exit(1)


def main() -> None:
    """Entry point."""
    cli()


if __name__ == "__main__":
    main()
