"""Shell tool for executing commands."""

import asyncio
import os
from pathlib import Path
from typing import Any

from helmsman.config import get_config
from helmsman.logging import get_logger
from helmsman.tools.registry import Tool, ToolResult, is_blocked_shell_command

log = get_logger(__name__)

MAX_OUTPUT_CHARS = 10000


class RunShellCommandTool(Tool):
    """Execute shell commands."""

    name = "run_shell_command"
    description = "Execute a shell command in the current directory and return its output."
    parameters = {
        "type": "object",
        "properties": {
            "command": {
                "type": "string",
                "description": "The shell command to execute",
            },
            "timeout": {
                "type": "number",
                "description": "Timeout in seconds (optional, default from config)",
            },
        },
        "required": ["command"],
    }

    def __init__(self):
        self.config = get_config()
        # Outer registry timeout must outlast the command's own timeout.
        self.timeout_seconds = float(self.config.tools.shell_timeout) + 5.0

    def format_arguments(self, arguments: dict[str, Any]) -> str:
        return f"Command: {arguments.get('command', '')}"

    async def execute(self, command: str, timeout: int | None = None, **kwargs: Any) -> ToolResult:
        """Execute a shell command.

        Args:
            command: Shell command to execute
            timeout: Optional timeout override

        Returns:
            ToolResult with command output
        """
        blocked, matched = is_blocked_shell_command(command, self.config.tools.shell_blocked)
        if blocked:
            if matched == "empty_command":
                reason = "Command is empty"
            elif matched == "unparseable_command":
                reason = "Command is not parseable"
            else:
                reason = f"Command matches blocked pattern: {matched}"
            log.warning("Blocked unsafe command", command=command, reason=reason)
            return ToolResult(success=False, error=f"Command blocked: {reason}")

        limit = self.config.tools.shell_timeout
        timeout = max(1, min(int(timeout or limit), limit))
        cwd = Path(kwargs.get("_runtime_base_path") or Path.cwd())

        log.info("Executing shell command", command=command, timeout=timeout)
        process = await asyncio.create_subprocess_shell(
            command,
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.PIPE,
            cwd=str(cwd),
            env=os.environ.copy(),
        )
        try:
            stdout, stderr = await asyncio.wait_for(process.communicate(), timeout=timeout)
        except asyncio.TimeoutError:
            process.kill()
            await process.wait()
            return ToolResult(
                success=False,
                error=f"Command timed out after {timeout}s",
                friendly=f"Command timed out after {timeout}s: {command}",
            )
        except asyncio.CancelledError:
            process.kill()
            await process.wait()
            raise

        stdout_text = stdout.decode("utf-8", errors="replace").rstrip()
        stderr_text = stderr.decode("utf-8", errors="replace").rstrip()

        output = stdout_text
        if stderr_text:
            output += f"\n[stderr] {stderr_text}"
        if len(output) > MAX_OUTPUT_CHARS:
            output = output[:MAX_OUTPUT_CHARS] + f"\n... [truncated, {len(output)} total chars]"

        exit_code = process.returncode
        content = f"Exit code: {exit_code}\n{output or '[no output]'}"
        return ToolResult(
            success=True,
            content=content,
            friendly=f"Command {'succeeded' if exit_code == 0 else f'failed (exit {exit_code})'}: {command}",
        )
