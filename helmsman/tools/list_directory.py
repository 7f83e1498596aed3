"""Directory listing tool."""

import asyncio
import glob
from pathlib import Path
from typing import Any

from helmsman.exceptions import ToolBlockedError
from helmsman.logging import get_logger
from helmsman.tools.registry import Tool, ToolResult, resolve_tool_path

log = get_logger(__name__)

DEFAULT_LIMIT = 200


class ListDirectoryTool(Tool):
    """List files below a directory."""

    name = "list_directory"
    description = "List files in a directory, optionally filtered by a glob pattern."
    auto_approved = True
    parameters = {
        "type": "object",
        "properties": {
            "path": {
                "type": "string",
                "description": "Directory to list (default: current directory)",
            },
            "pattern": {
                "type": "string",
                "description": "Glob pattern relative to path (default: '*', use '**/*' to recurse)",
            },
            "limit": {
                "type": "number",
                "description": f"Maximum number of results (default: {DEFAULT_LIMIT})",
            },
        },
        "required": [],
    }

    async def execute(
        self,
        path: str = ".",
        pattern: str = "*",
        limit: int = DEFAULT_LIMIT,
        **kwargs: Any,
    ) -> ToolResult:
        base_path = Path(kwargs.get("_runtime_base_path") or Path.cwd())
        try:
            root = resolve_tool_path(path, base_path, bool(kwargs.get("_sandbox", True)), self.name)
        except ToolBlockedError as e:
            return ToolResult(success=False, error=str(e))
        if not root.is_dir():
            return ToolResult(success=False, error=f"Not a directory: {path}")

        loop = asyncio.get_running_loop()
        matches = await loop.run_in_executor(
            None,
            lambda: sorted(glob.glob(str(root / (pattern or "*")), recursive=True)),
        )
        total = len(matches)
        shown = matches[: max(1, int(limit))]

        if not shown:
            return ToolResult(success=True, content=f"No files found in {path} matching: {pattern}")

        lines = []
        for match in shown:
            entry = Path(match)
            relative = entry.relative_to(root) if entry.is_relative_to(root) else entry
            lines.append(f"{relative}/" if entry.is_dir() else str(relative))

        output = f"Found {total} entr{'y' if total == 1 else 'ies'} in {path}:\n" + "\n".join(lines)
        if total > len(shown):
            output += f"\n... [{total - len(shown)} more, raise limit to see them]"
        return ToolResult(success=True, content=output, friendly=f"Listed {total} entries in {path}")
