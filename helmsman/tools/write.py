"""File writing and editing tools with diff previews."""

import difflib
from pathlib import Path
from typing import Any

from helmsman.exceptions import ToolBlockedError
from helmsman.logging import get_logger
from helmsman.tools.registry import Tool, ToolPreview, ToolResult, resolve_tool_path

log = get_logger(__name__)


def unified_diff(old: str, new: str, path: str) -> str:
    """Unified diff between two texts; empty when they are identical."""
    return "".join(
        difflib.unified_diff(
            old.splitlines(keepends=True),
            new.splitlines(keepends=True),
            fromfile=f"a/{path}",
            tofile=f"b/{path}",
        )
    )


def _context(kwargs: dict[str, Any]) -> tuple[Path, bool, set[Path]]:
    base_path = Path(kwargs.get("_runtime_base_path") or Path.cwd())
    sandbox = bool(kwargs.get("_sandbox", True))
    read_files = kwargs.get("_read_files")
    return base_path, sandbox, read_files if read_files is not None else set()


def _shorten(text: str, limit: int = 50) -> str:
    return text if len(text) <= limit else text[:limit] + "... [hidden]"


class WriteFileTool(Tool):
    """Create or overwrite a file."""

    name = "write_file"
    description = (
        "Create or overwrite a file with content. Existing files must be read "
        "with read_file first."
    )
    parameters = {
        "type": "object",
        "properties": {
            "path": {
                "type": "string",
                "description": "Path to the file to write",
            },
            "content": {
                "type": "string",
                "description": "Full content of the file",
            },
        },
        "required": ["path", "content"],
    }

    def format_arguments(self, arguments: dict[str, Any]) -> str:
        content = str(arguments.get("content", ""))
        return f"Path: {arguments.get('path', '')}\n  Content: {len(content)} characters"

    async def generate_preview(self, path: str = "", content: str = "", **kwargs: Any) -> ToolPreview | None:
        base_path, sandbox, read_files = _context(kwargs)
        file_path = resolve_tool_path(path, base_path, sandbox, self.name)

        if not file_path.exists():
            return ToolPreview(
                summary=f"Create file: {path}",
                content=unified_diff("", content, path),
                is_diff=True,
            )

        old = file_path.read_text(encoding="utf-8", errors="replace")
        diff = unified_diff(old, content, path)
        if not diff:
            return ToolPreview(
                summary=f"Write file: {path}",
                content=f"Error: File '{path}' already has this exact content. No changes needed.",
                warning="No changes",
                can_approve=False,
            )
        warning = None
        if file_path not in read_files:
            warning = "File was not read first - it will be refused"
        return ToolPreview(summary=f"Modify file: {path}", content=diff, warning=warning, is_diff=True)

    async def execute(self, path: str, content: str, **kwargs: Any) -> ToolResult:
        """Write ``content`` to ``path``, refusing to clobber unread files."""
        base_path, sandbox, read_files = _context(kwargs)
        try:
            file_path = resolve_tool_path(path, base_path, sandbox, self.name)
        except ToolBlockedError as e:
            return ToolResult(success=False, error=str(e))

        existed = file_path.exists()
        if existed and file_path not in read_files:
            return ToolResult(
                success=False,
                error=f"File '{path}' exists but was not read first. Use read_file('{path}') before overwriting.",
                friendly=f"WARNING: Must read file '{path}' first before overwriting",
            )

        try:
            file_path.parent.mkdir(parents=True, exist_ok=True)
            file_path.write_text(content, encoding="utf-8")
        except OSError as e:
            log.error("Write failed", path=path, error=str(e))
            return ToolResult(success=False, error=str(e))

        read_files.add(file_path)
        verb = "Updated" if existed else "Created"
        return ToolResult(
            success=True,
            content=f"Successfully wrote {len(content)} characters to '{path}'",
            friendly=f"{verb} '{path}' ({len(content)} characters)",
        )


class EditFileTool(Tool):
    """Replace one exact, unique occurrence of text in a file."""

    name = "edit_file"
    description = (
        "Edit a file by replacing an exact, unique text match. Read the file "
        "with read_file first. An empty old_string creates a new file."
    )
    parameters = {
        "type": "object",
        "properties": {
            "path": {
                "type": "string",
                "description": "Path to the file to edit",
            },
            "old_string": {
                "type": "string",
                "description": "Text to replace (must match file content exactly)",
            },
            "new_string": {
                "type": "string",
                "description": "New text to replace old_string with",
            },
        },
        "required": ["path", "old_string", "new_string"],
    }

    def format_arguments(self, arguments: dict[str, Any]) -> str:
        old = str(arguments.get("old_string", ""))
        new = str(arguments.get("new_string", ""))
        return "\n  ".join(
            [
                f"Path: {arguments.get('path', '')}",
                f"Old: {_shorten(old)}" if old else "Old: [empty - inserting text]",
                f"New: {_shorten(new)}" if new else "New: [empty - deleting text]",
            ]
        )

    async def generate_preview(
        self,
        path: str = "",
        old_string: str = "",
        new_string: str = "",
        **kwargs: Any,
    ) -> ToolPreview | None:
        base_path, sandbox, read_files = _context(kwargs)
        file_path = resolve_tool_path(path, base_path, sandbox, self.name)

        if old_string == "":
            if file_path.exists():
                return ToolPreview(
                    summary=f"Error: File already exists: {path}",
                    content="Cannot create file - it already exists",
                    warning="File creation failed",
                    can_approve=False,
                )
            return ToolPreview(
                summary=f"Create file: {path}",
                content=unified_diff("", new_string, path),
                is_diff=True,
            )

        if not file_path.exists():
            return ToolPreview(
                summary=f"Error: File not found: {path}",
                content="Cannot edit non-existent file",
                warning="File not found",
                can_approve=False,
            )

        current = file_path.read_text(encoding="utf-8", errors="replace")
        occurrences = current.count(old_string)
        if occurrences == 0:
            return ToolPreview(
                summary=f"Edit file: {path}",
                content=(
                    f"Error: old_string not found in file. Use read_file('{path}') to see "
                    "current content and ensure exact match."
                ),
                warning="Text to replace not found",
                can_approve=False,
            )
        if occurrences > 1:
            return ToolPreview(
                summary=f"Edit file: {path}",
                content=(
                    f"Error: old_string appears {occurrences} times in file. "
                    "Provide more context to make it unique."
                ),
                warning="Multiple matches found",
                can_approve=False,
            )

        diff = unified_diff(current, current.replace(old_string, new_string, 1), path)
        if not diff:
            return ToolPreview(
                summary=f"Edit file: {path}",
                content="Error: old_string and new_string are identical. No changes to make.",
                warning="No changes",
                can_approve=False,
            )

        warning = None
        if file_path not in read_files:
            warning = "File was not read first - recommend reading file before editing"
        return ToolPreview(summary=f"Edit file: {path}", content=diff, warning=warning, is_diff=True)

    async def execute(self, path: str, old_string: str, new_string: str, **kwargs: Any) -> ToolResult:
        base_path, sandbox, read_files = _context(kwargs)
        try:
            file_path = resolve_tool_path(path, base_path, sandbox, self.name)
        except ToolBlockedError as e:
            return ToolResult(success=False, error=str(e))

        if old_string == "":
            if file_path.exists():
                return ToolResult(success=False, error=f"File already exists: {path}")
            file_path.parent.mkdir(parents=True, exist_ok=True)
            file_path.write_text(new_string, encoding="utf-8")
            read_files.add(file_path)
            return ToolResult(
                success=True,
                content=f"Successfully created '{path}' ({len(new_string)} characters)",
                friendly=f"Created new file '{path}' with {len(new_string)} characters",
            )

        if file_path not in read_files:
            return ToolResult(
                success=False,
                error=f"Must read file first. Use read_file('{path}') before editing.",
                friendly=f"WARNING: Must read file '{path}' first before editing",
            )
        if not file_path.exists():
            return ToolResult(success=False, error=f"File not found: {path}")

        # Undecodable bytes survive the edit unchanged.
        current = file_path.read_text(encoding="utf-8", errors="surrogateescape")
        occurrences = current.count(old_string)
        if occurrences == 0:
            return ToolResult(
                success=False,
                error="old_string not found in file. Check exact match including whitespace.",
                friendly=f"ERROR: Text not found in '{path}' - check exact match including whitespace",
            )
        if occurrences > 1:
            return ToolResult(
                success=False,
                error=f"old_string found {occurrences} times in file. Make it unique by adding more context.",
            )

        file_path.write_text(
            current.replace(old_string, new_string, 1), encoding="utf-8", errors="surrogateescape"
        )
        log.info("File edited", path=str(file_path))
        return ToolResult(
            success=True,
            content=f"Successfully edited '{path}'",
            friendly=f"Updated '{path}'",
        )
