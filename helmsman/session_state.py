"""Mutable per-session toggles shared by the approval engine and the UI."""

from dataclasses import dataclass


@dataclass
class SessionState:
    """Session-scoped switches.

    ``yolo`` bypasses the approval gate for every subsequent tool call.
    ``detail`` shows full tool results instead of friendly summaries.
    """

    yolo: bool = False
    detail: bool = False
    is_processing: bool = False

    def enable_yolo(self) -> None:
        self.yolo = True

    def stop_processing(self) -> None:
        self.is_processing = False
