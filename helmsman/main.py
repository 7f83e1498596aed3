"""Main entry point for Helmsman."""

import asyncio
import sys
import time
from datetime import datetime
from pathlib import Path

import typer
import yaml
from pydantic import ValidationError

from helmsman import __version__
from helmsman.agent import Agent
from helmsman.cli import TerminalUI, get_ui
from helmsman.commands import dispatch_local_command
from helmsman.config import Config, set_config
from helmsman.exceptions import ConfigurationError
from helmsman.logging import close_log_file, configure_logging, get_logger
from helmsman.runtime_context import RuntimeContext

log = get_logger(__name__)

app = typer.Typer(
    help="Helmsman - an interactive coding agent for the terminal",
    add_completion=False,
)


def load_config(
    config: str = "",
    model: str = "",
    yolo: bool = False,
    detail: bool = False,
    verbose: bool = False,
) -> Config:
    """Load configuration and apply command-line overrides."""
    if config:
        try:
            cfg = Config.from_yaml(Path(config))
        except (OSError, yaml.YAMLError, ValidationError) as e:
            log.error("Failed to load config", path=config, error=str(e))
            cfg = Config.load()
    else:
        cfg = Config.load()

    if model:
        cfg.model.model = model
    if yolo:
        cfg.ui.yolo = True
    if detail:
        cfg.ui.detail = True
    if verbose:
        cfg.logging.level = "DEBUG"
    return cfg


def main(
    config: str = "",
    model: str = "",
    yolo: bool = False,
    detail: bool = False,
    verbose: bool = False,
) -> None:
    """Start a Helmsman session."""
    cfg = load_config(config, model, yolo, detail, verbose)
    set_config(cfg)
    configure_logging()

    ui = get_ui()
    try:
        cfg.validate_endpoint()
    except ConfigurationError as e:
        ui.print_error(str(e))
        raise typer.Exit(code=1)

    try:
        if sys.stdin.isatty():
            asyncio.run(run_interactive(ui))
        else:
            asyncio.run(run_once(ui, sys.stdin.read()))
    except KeyboardInterrupt:
        log.info("Shutting down...")
        sys.exit(0)
    except Exception as e:
        log.error("Fatal error", error=str(e))
        sys.exit(1)
    finally:
        close_log_file()


async def run_once(ui: TerminalUI, prompt: str) -> None:
    """Process one prompt read from a pipe, then print statistics."""
    agent = Agent(ui)
    agent.initialize()
    try:
        text = prompt.strip()
        if text:
            await agent.process_user_input(text)
        else:
            ui.print_warning("No input received on stdin")
    finally:
        await agent.close()
    ui.print_stats(agent.stats)


async def run_interactive(ui: TerminalUI) -> None:
    """Run the interactive agent loop."""
    ui.setup_readline()
    agent = Agent(ui)
    ctx = RuntimeContext(agent=agent, ui=ui)

    ui.print_welcome()
    loaded = agent.initialize()
    if loaded:
        ui.print_notice(f"[*] Auto-loaded {loaded} memory entries")

    try:
        while True:
            try:
                user_input = ui.prompt("> ")
            except KeyboardInterrupt:
                agent.interrupts.handle_signal()
                if agent.exit_requested:
                    break
                ui.print_notice("\n[*] Press Ctrl+C again (after 1 second) to exit")
                continue
            except EOFError:
                break

            stripped = user_input.strip()
            if not stripped:
                continue

            result = ui.handle_special_command(stripped)
            if result is None:
                continue
            if stripped.startswith("/"):
                action = await dispatch_local_command(ctx, result, user_input)
                if action == "break" or agent.exit_requested:
                    break
                continue

            started = time.monotonic()
            await agent.process_user_input(result)
            ctx.last_exec_seconds = time.monotonic() - started
            ctx.last_completed_at = datetime.now()
            log.debug("Prompt processed", seconds=round(ctx.last_exec_seconds, 2))
            if agent.exit_requested:
                break
    finally:
        await agent.close()
        ui.print_stats(agent.stats)


def _version_callback(value: bool) -> None:
    if value:
        print(f"Helmsman v{__version__}")
        raise typer.Exit()


@app.command()
def run(
    config: str = typer.Option("", "-c", "--config", help="Path to config file"),
    model: str = typer.Option("", "-m", "--model", help="Override model"),
    yolo: bool = typer.Option(False, "--yolo", help="Auto-approve every tool call"),
    detail: bool = typer.Option(False, "--detail", help="Show full tool output"),
    verbose: bool = typer.Option(False, "-v", "--verbose", help="Debug logging"),
    version: bool = typer.Option(
        False, "--version", callback=_version_callback, is_eager=True, help="Show version and exit"
    ),
) -> None:
    """Start an interactive session, or process stdin when it is not a terminal."""
    main(config, model, yolo, detail, verbose)


if __name__ == "__main__":
    app()
