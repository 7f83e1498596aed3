"""Tool registry and base tool class."""

import asyncio
import json
import re
import shlex
import time
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Any

from pydantic import BaseModel, model_validator

from helmsman.config import ToolsConfig, get_config
from helmsman.exceptions import (
    ToolBlockedError,
    ToolExecutionError,
    ToolNotFoundError,
)
from helmsman.logging import get_logger
from helmsman.messages import ToolCallRequest, ToolResultRecord
from helmsman.stats import Stats

log = get_logger(__name__)

_ASSIGNMENT_RE = re.compile(r"^[A-Za-z_][A-Za-z0-9_]*=.*$")
_SHELL_SEPARATOR_TOKENS = {";", "&&", "||", "|", "&"}
_SHELL_WRAPPER_TOKENS = {"sudo", "command", "builtin", "nohup", "time"}


def _compile_shell_pattern(pattern: str) -> re.Pattern[str]:
    """Compile regex pattern with literal fallback for invalid regex input."""
    try:
        return re.compile(pattern)
    except re.error:
        return re.compile(re.escape(pattern))


def _split_shell_segments(command: str) -> list[list[str]]:
    """Split a shell command into token lists separated by control operators."""
    lexer = shlex.shlex(command, posix=True, punctuation_chars=";&|")
    lexer.whitespace_split = True
    lexer.commenters = ""
    segments: list[list[str]] = []
    current: list[str] = []
    for token in lexer:
        if token in _SHELL_SEPARATOR_TOKENS:
            if current:
                segments.append(current)
                current = []
            continue
        current.append(token)
    if current:
        segments.append(current)
    return segments


def _segment_base_command(tokens: list[str]) -> str:
    for token in tokens:
        token = token.strip()
        if not token or token in _SHELL_WRAPPER_TOKENS:
            continue
        if _ASSIGNMENT_RE.match(token) and "/" not in token:
            continue
        return token
    return ""


def is_blocked_shell_command(command: str, blocked_patterns: list[str]) -> tuple[bool, str]:
    """Match a command against blocked patterns.

    Patterns containing whitespace are searched in each whole segment; the
    others must match the segment's executable.

    Returns:
        (blocked, matched pattern or reason token)
    """
    cleaned = str(command or "").strip()
    if not cleaned:
        return True, "empty_command"
    try:
        segments = _split_shell_segments(cleaned)
    except ValueError:
        return True, "unparseable_command"
    base_commands = [base for segment in segments if (base := _segment_base_command(segment))]
    if not base_commands:
        return True, "unparseable_command"

    segment_texts = [" ".join(tokens) for tokens in segments]
    for raw_pattern in blocked_patterns or []:
        pattern = str(raw_pattern or "").strip()
        if not pattern:
            continue
        compiled = _compile_shell_pattern(pattern)
        if re.search(r"\s", pattern):
            if any(compiled.search(text) for text in segment_texts) or compiled.search(cleaned):
                return True, pattern
        elif any(compiled.match(base) for base in base_commands) or pattern in cleaned:
            return True, pattern
    return False, ""


def resolve_tool_path(path: str, base_path: Path, sandbox: bool, tool_name: str) -> Path:
    """Resolve ``path`` against the working directory.

    Raises:
        ToolBlockedError: when the sandbox is on and the path leaves ``base_path``
    """
    requested = Path(str(path or "")).expanduser()
    resolved = (requested if requested.is_absolute() else base_path / requested).resolve()
    if sandbox:
        try:
            resolved.relative_to(base_path)
        except ValueError:
            log.warning("Sandbox blocked path", tool=tool_name, path=str(path))
            raise ToolBlockedError(tool_name, f"path '{path}' is outside the current directory")
    return resolved


class ToolResult(BaseModel):
    """Result from tool execution."""

    success: bool = True
    content: str = ""
    error: str | None = None
    friendly: str | None = None

    @model_validator(mode="after")
    def _normalize_failure_error(self) -> "ToolResult":
        """Ensure failed results always provide an error message."""
        if not self.success and not (self.error or "").strip():
            fallback = (self.content or "").strip()
            self.error = fallback or "Tool execution failed"
        return self

    def for_model(self) -> str:
        if self.success:
            return self.content
        return f"ERROR: {self.error}"


class ToolPreview(BaseModel):
    """What a tool would do, shown before asking for approval."""

    summary: str = ""
    content: str = ""
    warning: str | None = None
    can_approve: bool = True
    is_diff: bool = False


class Tool(ABC):
    """Base class for all tools."""

    name: str = ""
    description: str = ""
    parameters: dict[str, Any] = {}
    timeout_seconds: float = 30.0
    auto_approved: bool = False
    hide_results: bool = False

    @abstractmethod
    async def execute(self, **kwargs: Any) -> ToolResult:
        """Execute the tool.

        Args:
            **kwargs: Tool-specific arguments plus registry context
                (``_runtime_base_path``, ``_read_files``, ``_sandbox``)

        Returns:
            ToolResult with success status and content
        """
        pass

    async def generate_preview(self, **kwargs: Any) -> ToolPreview | None:
        """Describe the effect of a call before approval; None when not supported."""
        return None

    def format_arguments(self, arguments: dict[str, Any]) -> str:
        return json.dumps(arguments, indent=2, ensure_ascii=False)

    def get_definition(self) -> dict[str, Any]:
        """Get the tool definition in OpenAI function format."""
        return {
            "type": "function",
            "function": {
                "name": self.name,
                "description": self.description,
                "parameters": self.parameters,
            },
        }

    def validate_arguments(self, arguments: dict[str, Any]) -> None:
        """Check required arguments are present.

        Raises:
            ToolExecutionError: when one is missing
        """
        for field in self.parameters.get("required", []):
            if field not in arguments:
                raise ToolExecutionError(self.name, f"Missing required argument: {field}")


def parse_tool_arguments(raw: str | dict[str, Any] | None, tool_name: str = "") -> dict[str, Any]:
    """Parse a tool call's raw argument text into a dict.

    Raises:
        ToolExecutionError: on invalid JSON or a non-object payload
    """
    if raw is None:
        return {}
    if isinstance(raw, dict):
        return raw
    if not raw.strip():
        return {}
    try:
        parsed = json.loads(raw)
    except json.JSONDecodeError as e:
        snippet = raw[:200] + ("..." if len(raw) > 200 else "")
        raise ToolExecutionError(tool_name, f"Invalid JSON in tool arguments: {e}. Raw arguments: {snippet}")
    if not isinstance(parsed, dict):
        raise ToolExecutionError(tool_name, "Tool arguments must be a JSON object")
    return parsed


def _oversize_message(tool: Tool, size: int, limit: int) -> str:
    description = tool.description.lower()
    if "file" in description:
        hint = "File content too large"
        advice = " Use alternative approach to read specific portions of the file."
    elif "command" in description:
        hint = "Command output too large"
        advice = " Use command options to limit output size."
    elif "director" in description:
        hint = "Directory listing too large"
        advice = " Navigate to a more specific subdirectory or filter results."
    else:
        hint = "Tool result too large"
        advice = ""
    return f"ERROR: {hint} ({size} bytes). Maximum {limit} bytes allowed.{advice}"


class ToolRegistry:
    """Registry for managing available tools."""

    def __init__(
        self,
        base_path: Path | str | None = None,
        stats: Stats | None = None,
        tools_config: ToolsConfig | None = None,
    ):
        self._tools: dict[str, Tool] = {}
        self._stats = stats
        self._config = tools_config
        self._read_files: set[Path] = set()
        self._runtime_base_path = Path.cwd()
        self.set_runtime_base_path(base_path or Path.cwd())

    @property
    def config(self) -> ToolsConfig:
        return self._config or get_config().tools

    def set_runtime_base_path(self, base_path: Path | str) -> None:
        self._runtime_base_path = Path(base_path).expanduser().resolve()

    @property
    def runtime_base_path(self) -> Path:
        """Working directory that file tools are confined to."""
        return self._runtime_base_path

    @property
    def read_files(self) -> set[Path]:
        return self._read_files

    def register(self, tool: Tool) -> None:
        """Register a tool.

        Args:
            tool: Tool instance to register
        """
        if not tool.name:
            raise ValueError("Tool must have a name")
        log.debug("Registering tool", tool=tool.name)
        self._tools[tool.name] = tool

    def resolve(self, name: str) -> Tool | None:
        return self._tools.get(name)

    def get(self, name: str) -> Tool:
        """Get a tool by name.

        Raises:
            ToolNotFoundError if not found
        """
        tool = self.resolve(name)
        if tool is None:
            raise ToolNotFoundError(name)
        return tool

    def get_definitions(self) -> list[dict[str, Any]]:
        """Get all tool definitions for the model."""
        return [tool.get_definition() for tool in self._tools.values()]

    def _context_kwargs(self) -> dict[str, Any]:
        return {
            "_runtime_base_path": self.runtime_base_path,
            "_read_files": self._read_files,
            "_sandbox": self.config.sandbox,
        }

    async def generate_preview(self, tool: Tool, arguments: dict[str, Any]) -> ToolPreview | None:
        """Run the tool's preview generator; failures yield no preview."""
        try:
            return await tool.generate_preview(**arguments, **self._context_kwargs())
        except ToolBlockedError as e:
            return ToolPreview(summary=str(e), content=f"ERROR: {e}", can_approve=False)
        except Exception as e:
            log.error("Preview generation failed", tool=tool.name, error=str(e))
            return None

    async def execute(self, name: str, arguments: dict[str, Any]) -> ToolResult:
        """Execute a tool by name.

        Raises:
            ToolNotFoundError if tool not found
            ToolBlockedError if the sandbox rejects a path
            ToolExecutionError if execution fails or times out
        """
        tool = self.get(name)
        tool.validate_arguments(arguments)

        timeout_seconds = max(1.0, float(tool.timeout_seconds or 30.0))
        log.info("Executing tool", tool=name)
        try:
            result = await asyncio.wait_for(
                tool.execute(**arguments, **self._context_kwargs()),
                timeout=timeout_seconds,
            )
        except asyncio.TimeoutError:
            label = int(timeout_seconds) if timeout_seconds.is_integer() else timeout_seconds
            raise ToolExecutionError(name, f"Execution timed out after {label}s")
        except (ToolExecutionError, ToolBlockedError):
            raise
        except Exception as e:
            log.error("Tool execution failed", tool=name, error=str(e))
            raise ToolExecutionError(name, str(e))

        if not isinstance(result, ToolResult):
            raise ToolExecutionError(name, "Tool returned invalid result payload")
        log.info("Tool executed", tool=name, success=result.success)
        return result

    async def execute_tool_call(self, call: ToolCallRequest) -> ToolResultRecord:
        """Run one tool call, converting every failure into tool-result text."""
        name = call.function.name
        started = time.monotonic()
        if self._stats is not None:
            self._stats.increment_tool_calls()
        try:
            arguments = parse_tool_arguments(call.function.arguments, name)
            result = await self.execute(name, arguments)
        except ToolNotFoundError as e:
            self._record_error()
            return ToolResultRecord(tool_call_id=call.id, content=str(e))
        except (ToolExecutionError, ToolBlockedError) as e:
            self._record_error()
            return ToolResultRecord(tool_call_id=call.id, content=f"Error executing {name}: {e}")
        finally:
            if self._stats is not None:
                self._stats.add_tool_time(time.monotonic() - started)

        if not result.success:
            self._record_error()

        content = result.for_model()
        size = len(content.encode("utf-8"))
        limit = self.config.max_tool_result_size
        if size > limit:
            log.warning("Tool result too large", tool=name, size=size, limit=limit)
            content = _oversize_message(self.get(name), size, limit)

        return ToolResultRecord(tool_call_id=call.id, content=content, friendly=result.friendly)

    def _record_error(self) -> None:
        if self._stats is not None:
            self._stats.increment_tool_errors()
