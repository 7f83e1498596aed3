"""Read tool for reading file contents."""

from pathlib import Path
from typing import Any

from helmsman.config import get_config
from helmsman.exceptions import ToolBlockedError
from helmsman.logging import get_logger
from helmsman.tools.registry import Tool, ToolResult, resolve_tool_path

log = get_logger(__name__)

DEFAULT_LINE_LIMIT = 2000


class ReadFileTool(Tool):
    """Read file contents."""

    name = "read_file"
    description = "Read the contents of a file, optionally a range of lines."
    auto_approved = True
    parameters = {
        "type": "object",
        "properties": {
            "path": {
                "type": "string",
                "description": "Path to the file to read",
            },
            "offset": {
                "type": "number",
                "description": "Line number to start reading from (1-indexed)",
            },
            "limit": {
                "type": "number",
                "description": f"Maximum number of lines to read (default {DEFAULT_LINE_LIMIT})",
            },
        },
        "required": ["path"],
    }

    def format_arguments(self, arguments: dict[str, Any]) -> str:
        line = f"Path: {arguments.get('path', '')}"
        if arguments.get("offset") or arguments.get("limit"):
            line += f" (offset {arguments.get('offset', 1)}, limit {arguments.get('limit', DEFAULT_LINE_LIMIT)})"
        return line

    async def execute(
        self,
        path: str,
        offset: int | None = None,
        limit: int | None = None,
        **kwargs: Any,
    ) -> ToolResult:
        """Read a file.

        Args:
            path: Path to file
            offset: Optional 1-indexed first line
            limit: Optional line limit

        Returns:
            ToolResult with file contents
        """
        base_path = Path(kwargs.get("_runtime_base_path") or Path.cwd())
        sandbox = bool(kwargs.get("_sandbox", True))
        read_files: set[Path] | None = kwargs.get("_read_files")
        try:
            file_path = resolve_tool_path(path, base_path, sandbox, self.name)
        except ToolBlockedError as e:
            return ToolResult(success=False, error=str(e))

        if not file_path.exists():
            return ToolResult(success=False, error=f"File not found: {path}")
        if not file_path.is_file():
            return ToolResult(success=False, error=f"Not a file: {path}")

        max_size = get_config().tools.read_max_bytes
        file_size = file_path.stat().st_size
        if file_size > max_size:
            return ToolResult(
                success=False,
                error=f"File too large: {file_size} bytes (max {max_size}). Use offset and limit.",
            )

        try:
            text = file_path.read_text(encoding="utf-8", errors="replace")
        except OSError as e:
            log.error("Read failed", path=path, error=str(e))
            return ToolResult(success=False, error=str(e))

        if read_files is not None:
            read_files.add(file_path)

        lines = text.splitlines()
        start = max(1, int(offset or 1))
        count = max(1, int(limit or DEFAULT_LINE_LIMIT))
        selected = lines[start - 1 : start - 1 + count]
        end = start + len(selected) - 1

        content = "\n".join(selected)
        if end < len(lines):
            content += f"\n... [{len(lines) - end} more lines, continue with offset={end + 1}]"

        return ToolResult(
            success=True,
            content=content,
            friendly=f"Read {len(selected)} lines from {path} (lines {start}-{max(start, end)} of {len(lines)})",
        )
