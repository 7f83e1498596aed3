"""Tools package for Helmsman."""

from pathlib import Path

from helmsman.config import ToolsConfig
from helmsman.stats import Stats
from helmsman.tools.registry import (
    Tool,
    ToolPreview,
    ToolRegistry,
    ToolResult,
    parse_tool_arguments,
)
from helmsman.tools.grep import GrepTool
from helmsman.tools.list_directory import ListDirectoryTool
from helmsman.tools.read import ReadFileTool
from helmsman.tools.shell import RunShellCommandTool
from helmsman.tools.write import EditFileTool, WriteFileTool


def create_default_registry(
    base_path: Path | str | None = None,
    stats: Stats | None = None,
    tools_config: ToolsConfig | None = None,
) -> ToolRegistry:
    """Registry with every built-in tool registered."""
    registry = ToolRegistry(base_path=base_path, stats=stats, tools_config=tools_config)
    for tool in (
        ReadFileTool(),
        ListDirectoryTool(),
        GrepTool(),
        WriteFileTool(),
        EditFileTool(),
        RunShellCommandTool(),
    ):
        registry.register(tool)
    return registry


__all__ = [
    "Tool",
    "ToolPreview",
    "ToolRegistry",
    "ToolResult",
    "parse_tool_arguments",
    "create_default_registry",
    "ReadFileTool",
    "ListDirectoryTool",
    "GrepTool",
    "WriteFileTool",
    "EditFileTool",
    "RunShellCommandTool",
]
