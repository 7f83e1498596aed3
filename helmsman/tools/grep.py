"""Regex search across files."""

import asyncio
import re
from pathlib import Path
from typing import Any

from helmsman.exceptions import ToolBlockedError
from helmsman.logging import get_logger
from helmsman.tools.registry import Tool, ToolResult, resolve_tool_path

log = get_logger(__name__)

DEFAULT_MAX_RESULTS = 100
_SKIP_DIRS = {".git", "node_modules", "__pycache__", ".venv", "venv", ".mypy_cache"}


def _iter_files(root: Path, include: str | None):
    if root.is_file():
        yield root
        return
    for candidate in root.rglob(include or "*"):
        if any(part in _SKIP_DIRS for part in candidate.relative_to(root).parts):
            continue
        if candidate.is_file():
            yield candidate


def search_files(
    root: Path,
    regex: re.Pattern[str],
    include: str | None,
    max_results: int,
) -> tuple[list[str], bool]:
    """Return ``path:line: text`` hits and whether the limit was reached."""
    hits: list[str] = []
    base = root if root.is_dir() else root.parent
    for file_path in _iter_files(root, include):
        try:
            with open(file_path, encoding="utf-8") as f:
                for number, line in enumerate(f, start=1):
                    if regex.search(line):
                        hits.append(f"{file_path.relative_to(base)}:{number}: {line.rstrip()}")
                        if len(hits) >= max_results:
                            return hits, True
        except (UnicodeDecodeError, OSError):
            continue
    return hits, False


class GrepTool(Tool):
    """Search file contents with a regular expression."""

    name = "grep"
    description = "Search for a regular expression in files under a path."
    auto_approved = True
    parameters = {
        "type": "object",
        "properties": {
            "pattern": {
                "type": "string",
                "description": "Regular expression to search for",
            },
            "path": {
                "type": "string",
                "description": "File or directory to search (default: current directory)",
            },
            "include": {
                "type": "string",
                "description": "Glob filter for file names, e.g. '*.py'",
            },
            "max_results": {
                "type": "number",
                "description": f"Maximum number of matching lines (default: {DEFAULT_MAX_RESULTS})",
            },
        },
        "required": ["pattern"],
    }

    def format_arguments(self, arguments: dict[str, Any]) -> str:
        return f"Pattern: {arguments.get('pattern', '')} in {arguments.get('path', '.')}"

    async def execute(
        self,
        pattern: str,
        path: str = ".",
        include: str | None = None,
        max_results: int = DEFAULT_MAX_RESULTS,
        **kwargs: Any,
    ) -> ToolResult:
        base_path = Path(kwargs.get("_runtime_base_path") or Path.cwd())
        try:
            root = resolve_tool_path(path, base_path, bool(kwargs.get("_sandbox", True)), self.name)
        except ToolBlockedError as e:
            return ToolResult(success=False, error=str(e))
        if not root.exists():
            return ToolResult(success=False, error=f"Path not found: {path}")

        try:
            regex = re.compile(pattern)
        except re.error as e:
            return ToolResult(success=False, error=f"Invalid regular expression: {e}")

        loop = asyncio.get_running_loop()
        hits, truncated = await loop.run_in_executor(
            None,
            lambda: search_files(root, regex, include, max(1, int(max_results))),
        )
        if not hits:
            return ToolResult(success=True, content=f"No matches found for: {pattern}", friendly="No matches")

        content = "\n".join(hits)
        if truncated:
            content += f"\n... [stopped after {len(hits)} matches]"
        return ToolResult(
            success=True,
            content=content,
            friendly=f"Found {len(hits)}{'+' if truncated else ''} matches for '{pattern}'",
        )
