import asyncio
import io
import os
import sys

import pytest
from rich.console import Console

from helmsman.cli import DENY_ON_EOF, TerminalUI, render_diff
from helmsman.stats import Stats
from helmsman.tools.registry import ToolPreview


def _ui() -> tuple[TerminalUI, io.StringIO]:
    buffer = io.StringIO()
    console = Console(file=buffer, width=200, color_system=None, highlight=False, soft_wrap=True)
    return TerminalUI(console=console), buffer


def test_special_command_completion():
    ui, _ = _ui()
    assert ui._complete_special_command("/he", 0) == "/help"
    assert ui._complete_special_command("/c", 0) == "/clear"
    assert ui._complete_special_command("/c", 1) == "/compact"
    assert ui._complete_special_command("/c", 2) is None
    assert ui._complete_special_command("hello", 0) is None


@pytest.mark.parametrize(
    "command, expected",
    [
        ("hello there", "hello there"),
        ("/exit", "EXIT"),
        ("/QUIT", "EXIT"),
        ("/q", "EXIT"),
        ("/clear", "CLEAR"),
        ("/reset", "CLEAR"),
        ("/stats", "STATS"),
        ("/yolo on", "YOLO:on"),
        ("/detail", "DETAIL:"),
        ("/compact force 3", "COMPACT:force 3"),
        ("/prune 25%", "PRUNE:25%"),
        ("/retry   limit 2", "RETRY:limit 2"),
        ("/memory inject Keep it short", "MEMORY:inject Keep it short"),
        ("/save out.json", "SAVE:out.json"),
        ("/load", "LOAD:"),
    ],
)
def test_handle_special_command_tokens(command, expected):
    ui, _ = _ui()

    assert ui.handle_special_command(command) == expected


def test_help_and_unknown_commands_are_handled_locally():
    ui, buffer = _ui()

    assert ui.handle_special_command("/help") is None
    assert ui.handle_special_command("/bogus") is None

    out = buffer.getvalue()
    assert "/compact force <N>" in out
    assert "Error: Unknown command: /bogus" in out


def test_print_message_uses_role_prefix():
    ui, buffer = _ui()

    ui.print_message("system", "[not markup] plain")

    assert buffer.getvalue() == "[SYSTEM] [not markup] plain\n"


def test_assistant_stream_prints_prefix_once():
    ui, buffer = _ui()

    ui.begin_assistant_stream()
    ui.print_streaming("Hel")
    ui.print_streaming("lo")
    ui.end_assistant_stream()
    ui.end_assistant_stream()

    assert buffer.getvalue() == "[ASSISTANT] Hello\n"


def test_tool_header_closes_open_stream():
    ui, buffer = _ui()

    ui.print_streaming("thinking")
    ui.print_tool_header("read_file")
    ui.print_tool_done()

    assert buffer.getvalue() == "[ASSISTANT] thinking\n[*] Tool: read_file\n[+] Done\n"


def test_print_preview_shows_summary_diff_and_warning():
    ui, buffer = _ui()

    ui.print_preview(
        ToolPreview(summary="Edit file: a.py", content="-old\n+new", warning="File was not read first", is_diff=True)
    )

    out = buffer.getvalue()
    assert "Edit file: a.py" in out
    assert "-old\n+new" in out
    assert "Warning: File was not read first" in out


def test_render_diff_styles_lines():
    text = render_diff("--- a/x\n+++ b/x\n@@ -1 +1 @@\n-old\n+new\n same")

    styles = {text.plain[span.start : span.end].strip(): str(span.style) for span in text.spans}
    assert styles["-old"] == "red"
    assert styles["+new"] == "green"
    assert styles["@@ -1 +1 @@"] == "cyan"
    assert styles["--- a/x"] == "bold"
    assert text.plain.endswith(" same\n")


def test_print_stats_renders_counters():
    ui, buffer = _ui()
    stats = Stats()
    stats.increment_api_requests()

    ui.print_stats(stats)

    assert buffer.getvalue().strip()


class StdinPipe:
    def __init__(self) -> None:
        read_fd, self._write_fd = os.pipe()
        self.reader = open(read_fd, encoding="utf-8")
        self._writer_open = True

    def write(self, data: bytes) -> None:
        os.write(self._write_fd, data)

    def close_writer(self) -> None:
        if self._writer_open:
            os.close(self._write_fd)
            self._writer_open = False

    def close(self) -> None:
        self.close_writer()
        self.reader.close()


@pytest.fixture
def stdin_pipe(monkeypatch):
    pipe = StdinPipe()
    monkeypatch.setattr(sys, "stdin", pipe.reader)
    yield pipe
    pipe.close()


@pytest.mark.asyncio
async def test_ask_returns_typed_answer(stdin_pipe):
    ui, buffer = _ui()
    stdin_pipe.write(b"yolo\n")

    assert await ui.ask("Approve [Y/n]: ") == "yolo"
    assert "Approve [Y/n]: " in buffer.getvalue()


@pytest.mark.asyncio
async def test_ask_denies_when_input_is_closed(stdin_pipe):
    ui, _ = _ui()
    stdin_pipe.close_writer()

    assert await ui.ask("Approve [Y/n]: ") == DENY_ON_EOF


@pytest.mark.asyncio
async def test_cancelled_ask_stops_watching_stdin(stdin_pipe):
    ui, _ = _ui()

    task = asyncio.create_task(ui.ask("Approve [Y/n]: "))
    await asyncio.sleep(0)
    task.cancel()

    with pytest.raises(asyncio.CancelledError):
        await task
    assert asyncio.get_running_loop().remove_reader(stdin_pipe.reader.fileno()) is False
