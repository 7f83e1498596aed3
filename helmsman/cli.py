"""Terminal UI for Helmsman."""

import asyncio
import atexit
import sys
from pathlib import Path

from rich.console import Console
from rich.text import Text

from helmsman.config import get_config
from helmsman.logging import get_logger
from helmsman.stats import Stats
from helmsman.tools.registry import ToolPreview

log = get_logger(__name__)

DENY_ON_EOF = "n"


def render_diff(diff: str) -> Text:
    """Color a unified diff line by line."""
    text = Text()
    for line in diff.splitlines():
        if line.startswith(("+++", "---")):
            style = "bold"
        elif line.startswith("@@"):
            style = "cyan"
        elif line.startswith("+"):
            style = "green"
        elif line.startswith("-"):
            style = "red"
        else:
            style = ""
        text.append(line + "\n", style=style)
    return text


class TerminalUI:
    """Line-based terminal UI.

    Doubles as the approval channel and the tool display of the approval
    engine.
    """

    def __init__(self, console: Console | None = None):
        self.config = get_config()
        self.console = console or Console(highlight=False, soft_wrap=True)
        self._special_commands = [
            "/help",
            "/clear",
            "/reset",
            "/stats",
            "/yolo",
            "/detail",
            "/compact",
            "/prune",
            "/retry",
            "/memory",
            "/save",
            "/load",
            "/exit",
            "/quit",
        ]
        self._readline = None
        self._history_file = Path("~/.helmsman/history").expanduser()
        self._assistant_output_active = False

    def setup_readline(self) -> None:
        """Set up line editing, history and command completion."""
        try:
            import readline
        except ImportError:
            return

        self._readline = readline
        try:
            self._history_file.parent.mkdir(parents=True, exist_ok=True)
            if self._history_file.exists():
                readline.read_history_file(str(self._history_file))
            readline.set_history_length(1000)
            readline.parse_and_bind("tab: complete")
            readline.set_completer(self._complete_special_command)
            atexit.register(self._save_history)
        except OSError as e:
            log.debug("Readline setup failed", error=str(e))

    def _save_history(self) -> None:
        if self._readline is None:
            return
        try:
            self._readline.write_history_file(str(self._history_file))
        except OSError as e:
            log.debug("Failed to save history", error=str(e))

    def _complete_special_command(self, text: str, state: int) -> str | None:
        if not text.startswith("/"):
            return None
        matches = [cmd for cmd in self._special_commands if cmd.startswith(text)]
        if state < len(matches):
            return matches[state]
        return None

    # Messages

    def print_welcome(self) -> None:
        self.console.print("=== Helmsman ===", style="bold cyan")
        self.console.print(f"Model: {self.config.model.model or '(server default)'}")
        self.console.print("Type '/help' for commands, '/quit' to exit.\n")

    def print_help(self) -> None:
        help_text = """
Commands:
  /help                         - Show this help message
  /quit, /exit, /q              - Exit the application
  /clear, /reset                - Clear the conversation
  /stats                        - Show session statistics
  /yolo [on|off]                - Toggle auto-approval of all tools
  /detail [on|off]              - Toggle full tool output
  /compact                      - Summarize older messages
  /compact force <N>            - Summarize the N oldest rounds
  /compact force-messages <N>   - Summarize the N oldest messages
  /compact prune [all|stats|N]  - Prune tool results
  /compact stats                - Show context statistics
  /prune [pct]                  - Prune the oldest pct% of large tool results
  /retry                        - Re-send the conversation
  /retry limit <N>              - Set the retry count
  /retry max-backoff <N>        - Set the maximum backoff in seconds
  /retry status                 - Show retry settings
  /memory list                  - List memory files
  /memory load <name>           - Load a memory file into the conversation
  /memory inject <text>         - Inject a note into the conversation
  /save [path]                  - Save the conversation to a JSON file
  /load <path>                  - Load a conversation from a JSON file

Approval answers: Y (default), n, yolo; append '+' to pause for guidance.
"""
        self.console.print(help_text, markup=False)

    def print_message(self, role: str, content: str) -> None:
        self.console.print(f"[{role.upper()}] {content}", markup=False)

    def print_error(self, error: str) -> None:
        self.console.print(f"Error: {error}", style="red", markup=False)

    def print_warning(self, warning: str) -> None:
        self.console.print(f"Warning: {warning}", style="yellow", markup=False)

    def print_success(self, message: str) -> None:
        self.console.print(message, style="green", markup=False)

    def print_notice(self, text: str) -> None:
        self.console.print(text, style="yellow", markup=False)

    def print_stats(self, stats: Stats) -> None:
        stats.print_stats(self.console)

    # Assistant stream

    def begin_assistant_stream(self) -> None:
        self._assistant_output_active = True
        self.console.print("[ASSISTANT] ", style="bold green", end="", markup=False)

    def print_streaming(self, chunk: str) -> None:
        if not self._assistant_output_active:
            self.begin_assistant_stream()
        self.console.out(chunk, end="", highlight=False)

    def end_assistant_stream(self) -> None:
        if not self._assistant_output_active:
            return
        self._assistant_output_active = False
        self.console.print()

    # Tool display

    def print_tool_header(self, tool_name: str) -> None:
        self.end_assistant_stream()
        self.console.print(f"[*] Tool: {tool_name}", style="bold cyan", markup=False)

    def print_preview(self, preview: ToolPreview) -> None:
        if preview.summary:
            self.console.print(preview.summary, style="bold", markup=False)
        if preview.content:
            if preview.is_diff:
                self.console.print(render_diff(preview.content))
            else:
                self.console.print(preview.content, markup=False)
        if preview.warning:
            self.print_warning(preview.warning)

    def print_tool_arguments(self, text: str) -> None:
        self.console.print(text, style="dim", markup=False)

    def print_tool_output(self, text: str) -> None:
        self.console.print(text, markup=False)

    def print_tool_done(self) -> None:
        self.console.print("[+] Done", style="green", markup=False)

    def print_tool_denied(self) -> None:
        self.console.print("[-] Tool execution denied", style="red", markup=False)

    # Input

    def prompt(self, prompt_text: str = "> ") -> str:
        """Read one line of user input (blocking)."""
        return input(prompt_text)

    async def ask(self, prompt: str) -> str:
        """Read an approval answer without blocking the event loop.

        Stdin is watched by the loop itself, so cancelling the wait releases
        it at once. End of input answers ``n``.
        """
        self.end_assistant_stream()
        self.console.print(prompt, end="", markup=False)
        line = await self._read_line()
        if not line:
            return DENY_ON_EOF
        return line.rstrip("\r\n")

    async def _read_line(self) -> str:
        loop = asyncio.get_running_loop()
        try:
            fd = sys.stdin.fileno()
            future: asyncio.Future[str] = loop.create_future()

            def on_readable() -> None:
                if future.done():
                    return
                try:
                    future.set_result(sys.stdin.readline())
                except (OSError, ValueError) as e:
                    future.set_exception(e)

            loop.add_reader(fd, on_readable)
        except (NotImplementedError, OSError, ValueError):
            # Regular files and platforms without reader support.
            return sys.stdin.readline()
        try:
            return await future
        finally:
            loop.remove_reader(fd)

    def handle_special_command(self, cmd: str) -> str | None:
        """Map a slash command to a dispatch token.

        Returns the input unchanged when it is not a command, None when the
        command was fully handled here, else a token such as ``"EXIT"`` or
        ``"COMPACT:force 3"``.
        """
        cmd = cmd.strip()
        if not cmd.startswith("/"):
            return cmd

        parts = cmd.split(None, 1)
        command = parts[0].lower()
        args = parts[1].strip() if len(parts) > 1 else ""

        if command in ("/help", "/h", "/?"):
            self.print_help()
            return None
        if command in ("/exit", "/quit", "/q"):
            return "EXIT"
        if command in ("/clear", "/reset"):
            return "CLEAR"
        if command == "/stats":
            return "STATS"
        if command in ("/yolo", "/retry", "/detail", "/compact", "/prune", "/memory", "/save", "/load"):
            return f"{command[1:].upper()}:{args}"
        self.print_error(f"Unknown command: {command}")
        return None


# Global UI instance
_ui: "TerminalUI | None" = None


def get_ui() -> TerminalUI:
    """Get the global UI instance."""
    global _ui
    if _ui is None:
        _ui = TerminalUI()
    return _ui
