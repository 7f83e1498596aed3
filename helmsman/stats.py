"""Session statistics tracking."""

import time
from dataclasses import dataclass, field
from typing import Any

from rich.console import Console
from rich.table import Table


@dataclass
class Stats:
    """Counters for one interactive session."""

    api_requests: int = 0
    api_success: int = 0
    api_errors: int = 0
    api_time_spent: float = 0.0
    tool_calls: int = 0
    tool_errors: int = 0
    tool_time_spent: float = 0.0
    messages_sent: int = 0
    tokens_processed: int = 0
    compactions: int = 0
    prompt_tokens: int = 0
    completion_tokens: int = 0
    current_prompt_size: int = 0
    current_prompt_size_estimated: bool = False
    last_user_prompt: str = ""
    usage_infos: list[dict[str, Any]] = field(default_factory=list)
    started_at: float = field(default_factory=time.monotonic)

    def increment_api_requests(self) -> None:
        self.api_requests += 1

    def increment_api_success(self) -> None:
        self.api_success += 1

    def increment_api_errors(self) -> None:
        self.api_errors += 1

    def add_api_time(self, seconds: float) -> None:
        self.api_time_spent += seconds

    def increment_tool_calls(self) -> None:
        self.tool_calls += 1

    def increment_tool_errors(self) -> None:
        self.tool_errors += 1

    def add_tool_time(self, seconds: float) -> None:
        self.tool_time_spent += seconds

    def increment_messages_sent(self) -> None:
        self.messages_sent += 1

    def increment_compactions(self) -> None:
        self.compactions += 1

    def set_current_prompt_size(self, size: int, estimated: bool = False) -> None:
        self.current_prompt_size = size
        self.current_prompt_size_estimated = estimated

    def set_last_user_prompt(self, prompt: str) -> None:
        self.last_user_prompt = prompt

    def record_usage(self, usage: dict[str, Any] | None) -> None:
        """Accumulate token usage reported by the remote service."""
        if not usage:
            return
        prompt = int(usage.get("prompt_tokens") or 0)
        completion = int(usage.get("completion_tokens") or 0)
        total = int(usage.get("total_tokens") or 0)
        self.prompt_tokens += prompt
        self.completion_tokens += completion
        if total:
            self.tokens_processed = total
        if prompt:
            self.set_current_prompt_size(prompt, estimated=False)
        self.usage_infos.append({"time": time.time(), "usage": dict(usage)})

    def build_table(self) -> Table:
        """Render the counters as a rich table."""
        table = Table(title="Session statistics", show_header=False)
        table.add_column("metric")
        table.add_column("value", justify="right")
        elapsed = time.monotonic() - self.started_at
        rows = [
            ("Session time", f"{elapsed:.1f}s"),
            ("API requests", f"{self.api_requests} (ok {self.api_success}, errors {self.api_errors})"),
            ("API time", f"{self.api_time_spent:.1f}s"),
            ("Tool calls", f"{self.tool_calls} (errors {self.tool_errors})"),
            ("Tool time", f"{self.tool_time_spent:.1f}s"),
            ("Messages sent", str(self.messages_sent)),
            ("Prompt tokens", f"{self.prompt_tokens:,}"),
            ("Completion tokens", f"{self.completion_tokens:,}"),
            (
                "Current prompt size",
                f"{self.current_prompt_size:,}{' (estimated)' if self.current_prompt_size_estimated else ''}",
            ),
            ("Compactions", str(self.compactions)),
        ]
        for label, value in rows:
            table.add_row(label, value)
        return table

    def print_stats(self, console: Console | None = None) -> None:
        (console or Console()).print(self.build_table())
