"""Shared mutable runtime state for the interactive session."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime

from helmsman.agent import Agent
from helmsman.cli import TerminalUI


@dataclass
class RuntimeContext:
    """State shared by the interactive loop and the command dispatcher."""

    agent: Agent
    ui: TerminalUI
    last_exec_seconds: float | None = None
    last_completed_at: datetime | None = None
