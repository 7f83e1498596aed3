"""Tool approval and execution state machine."""

import asyncio
from dataclasses import dataclass
from enum import Enum
from typing import Any, Callable, Protocol

from helmsman.exceptions import ToolExecutionError
from helmsman.logging import get_logger
from helmsman.message_log import MessageLog
from helmsman.messages import ToolCallRequest, ToolResultRecord
from helmsman.session_state import SessionState
from helmsman.tools.registry import Tool, ToolPreview, ToolRegistry, parse_tool_arguments

log = get_logger(__name__)

YOLO_KEYWORD = "yolo"
GUIDANCE_SUFFIX = "+"
APPROVE_ANSWERS = {"y", "yes"}
ANSWER_ALIASES = {"a": "y", "d": "n"}
APPROVAL_PROMPT = "Approve [Y/n]: "
SKIPPED_TOOL_MESSAGE = "Tool execution skipped: processing was interrupted before this call ran."


def denial_message(tool_name: str) -> str:
    return f"ERROR: User denied execution of tool '{tool_name}'. The tool was not run."


class ApprovalDecision(str, Enum):
    APPROVE = "approve"
    APPROVE_WITH_GUIDANCE = "approve_with_guidance"
    DENY = "deny"


@dataclass
class ApprovalAnswer:
    """Normalized approval input."""

    decision: ApprovalDecision
    guidance: bool = False
    enable_yolo: bool = False


def normalize_approval_input(raw: str) -> ApprovalAnswer:
    """Map one line of operator input to a decision.

    Empty input approves, ``yolo`` approves and turns on trust-all mode, a
    trailing ``+`` asks to pause for guidance, ``a``/``d`` alias ``y``/``n``.
    Anything unrecognized denies.
    """
    answer = (raw or "").strip().lower() or "y"
    enable_yolo = answer == YOLO_KEYWORD
    guidance = answer.endswith(GUIDANCE_SUFFIX)
    base = answer[: -len(GUIDANCE_SUFFIX)] if guidance else answer
    base = ANSWER_ALIASES.get(base, base)

    if base not in APPROVE_ANSWERS and not enable_yolo:
        return ApprovalAnswer(ApprovalDecision.DENY, guidance=guidance)
    decision = ApprovalDecision.APPROVE_WITH_GUIDANCE if guidance else ApprovalDecision.APPROVE
    return ApprovalAnswer(decision, guidance=guidance, enable_yolo=enable_yolo)


class ApprovalChannel(Protocol):
    """Line-based prompt/response source for approvals."""

    async def ask(self, prompt: str) -> str: ...


class ToolDisplay(Protocol):
    def print_tool_header(self, tool_name: str) -> None: ...

    def print_preview(self, preview: ToolPreview) -> None: ...

    def print_tool_arguments(self, text: str) -> None: ...

    def print_tool_output(self, text: str) -> None: ...

    def print_tool_done(self) -> None: ...

    def print_tool_denied(self) -> None: ...

    def print_notice(self, text: str) -> None: ...


@dataclass
class BatchOutcome:
    executed: int = 0
    denied: int = 0
    halted: bool = False


class ApprovalEngine:
    """Runs the tool calls of one model turn, strictly in order."""

    def __init__(
        self,
        registry: ToolRegistry,
        message_log: MessageLog,
        state: SessionState,
        channel: ApprovalChannel,
        display: ToolDisplay,
        is_cancelled: Callable[[], bool] | None = None,
        cancel_event: asyncio.Event | None = None,
    ):
        self.registry = registry
        self.log = message_log
        self.state = state
        self.channel = channel
        self.display = display
        self._is_cancelled = is_cancelled or (lambda: not state.is_processing)
        self._cancel_event = cancel_event

    async def process(self, tool_calls: list[ToolCallRequest]) -> BatchOutcome:
        """Preview, gate, execute and record each call.

        Every call gets exactly one tool result. Once the batch halts (guidance
        or cancellation) the remaining calls are recorded as skipped.
        """
        outcome = BatchOutcome()
        for position, call in enumerate(tool_calls):
            if self._is_cancelled():
                outcome.halted = True
                self._skip_remaining(tool_calls[position:])
                break

            halt = await self._process_call(call, outcome)
            if halt:
                outcome.halted = True
                self._skip_remaining(tool_calls[position + 1 :])
                break
        return outcome

    def _record(self, call: ToolCallRequest, content: str) -> None:
        self.log.add_tool_results([ToolResultRecord(tool_call_id=call.id, content=content)])

    def _skip_remaining(self, calls: list[ToolCallRequest]) -> None:
        for call in calls:
            log.info("Skipping tool call after halt", tool=call.name, id=call.id)
            self._record(call, SKIPPED_TOOL_MESSAGE)

    async def _process_call(self, call: ToolCallRequest, outcome: BatchOutcome) -> bool:
        """Handle one call; returns True when the batch must halt."""
        name = call.function.name
        tool = self.registry.resolve(name)
        if tool is None:
            log.warning("Tool not found", tool=name)
            self.display.print_notice(f"[x] Tool '{name}' does not exist.")
            self._record(call, f"Tool '{name}' does not exist.")
            return False

        self.display.print_tool_header(name)
        preview = await self._show_call(tool, call)
        if preview is not None and not preview.can_approve:
            log.info("Tool call rejected by its preview", tool=name)
            self._record(call, preview.content)
            outcome.denied += 1
            return False

        guidance = False
        if not (self.state.yolo or tool.auto_approved):
            if self._is_cancelled():
                self._record(call, SKIPPED_TOOL_MESSAGE)
                return True
            raw = await self._ask()
            if raw is None or self._is_cancelled():
                self._record(call, SKIPPED_TOOL_MESSAGE)
                return True
            answer = normalize_approval_input(raw)
            if answer.enable_yolo:
                self.state.enable_yolo()
                self.display.print_notice("[*] YOLO mode ENABLED")
            guidance = answer.guidance

            if answer.decision is ApprovalDecision.DENY:
                self.display.print_tool_denied()
                self._record(call, denial_message(name))
                outcome.denied += 1
                if guidance:
                    self.state.stop_processing()
                    return True
                return False

        result = await self.registry.execute_tool_call(call)
        self.log.add_tool_results([result])
        outcome.executed += 1
        self._display_result(tool, result)

        if guidance:
            self.state.stop_processing()
            return True
        return False

    async def _ask(self) -> str | None:
        """Prompt the operator; None when cancellation wins the race."""
        if self._cancel_event is None:
            return await self.channel.ask(APPROVAL_PROMPT)

        answer = asyncio.ensure_future(self.channel.ask(APPROVAL_PROMPT))
        cancelled = asyncio.ensure_future(self._cancel_event.wait())
        try:
            await asyncio.wait({answer, cancelled}, return_when=asyncio.FIRST_COMPLETED)
        finally:
            pending = [task for task in (answer, cancelled) if not task.done()]
            for task in pending:
                task.cancel()
            await asyncio.gather(*pending, return_exceptions=True)
        if answer.done() and not answer.cancelled():
            return answer.result()
        log.info("Approval wait cancelled")
        return None

    async def _show_call(self, tool: Tool, call: ToolCallRequest) -> ToolPreview | None:
        try:
            arguments: dict[str, Any] | None = parse_tool_arguments(call.function.arguments, tool.name)
        except ToolExecutionError:
            arguments = None

        if arguments is None:
            self.display.print_tool_arguments(call.function.arguments)
            return None

        preview = await self.registry.generate_preview(tool, arguments)
        if preview is not None:
            self.display.print_preview(preview)
            if arguments.get("path"):
                self.display.print_tool_arguments(f"Path: {arguments['path']}")
            return preview

        self.display.print_tool_arguments(tool.format_arguments(arguments))
        return None

    def _display_result(self, tool: Tool, result: ToolResultRecord) -> None:
        if tool.hide_results:
            self.display.print_tool_done()
        elif not self.state.detail and result.friendly:
            self.display.print_tool_output(result.friendly)
        else:
            self.display.print_tool_output(result.content)
