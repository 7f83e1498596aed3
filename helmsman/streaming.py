"""Reassembly of streamed chat-completion fragments."""

import time
from typing import Any, AsyncIterable, Callable

from pydantic import BaseModel, ConfigDict, Field

from helmsman.logging import get_logger
from helmsman.messages import FunctionCall, ToolCallRequest
from helmsman.stats import Stats

log = get_logger(__name__)


class FunctionDelta(BaseModel):
    model_config = ConfigDict(extra="ignore")

    name: str | None = None
    arguments: str | None = None


class ToolCallDelta(BaseModel):
    model_config = ConfigDict(extra="ignore")

    index: int = 0
    id: str | None = None
    type: str | None = None
    function: FunctionDelta | None = None


class Delta(BaseModel):
    model_config = ConfigDict(extra="ignore")

    role: str | None = None
    content: str | None = None
    tool_calls: list[ToolCallDelta] | None = None


class Choice(BaseModel):
    model_config = ConfigDict(extra="ignore")

    index: int = 0
    delta: Delta = Field(default_factory=Delta)
    finish_reason: str | None = None


class Usage(BaseModel):
    model_config = ConfigDict(extra="allow")

    prompt_tokens: int = 0
    completion_tokens: int = 0
    total_tokens: int = 0


class CompletionChoice(BaseModel):
    model_config = ConfigDict(extra="ignore")

    index: int = 0
    message: Delta | None = None
    finish_reason: str | None = None


class Completion(BaseModel):
    """Body of a non-streamed chat-completion response."""

    model_config = ConfigDict(extra="ignore")

    id: str | None = None
    choices: list[CompletionChoice] = Field(default_factory=list)
    usage: Usage | None = None


class StreamChunk(BaseModel):
    """One server-sent fragment of a chat-completion response."""

    model_config = ConfigDict(extra="ignore")

    id: str | None = None
    choices: list[Choice] = Field(default_factory=list)
    usage: Usage | None = None

    @classmethod
    def from_completion(cls, data: Any) -> "StreamChunk":
        """Convert a non-streamed completion body into a single fragment.

        Raises:
            ValidationError: when ``data`` is not a completion object
        """
        completion = Completion.model_validate(data)
        choices: list[Choice] = []
        for choice in completion.choices:
            delta = choice.message or Delta()
            if delta.tool_calls:
                calls = [
                    call if "index" in call.model_fields_set else call.model_copy(update={"index": position})
                    for position, call in enumerate(delta.tool_calls)
                ]
                delta = delta.model_copy(update={"tool_calls": calls})
            choices.append(Choice(index=choice.index, delta=delta, finish_reason=choice.finish_reason))
        return cls(id=completion.id, choices=choices, usage=completion.usage)


class AssembledResponse(BaseModel):
    """Result of consuming one streamed turn."""

    text: str = ""
    tool_calls: dict[int, ToolCallRequest] = Field(default_factory=dict)
    cancelled: bool = False
    finish_reason: str | None = None
    usage: Usage | None = None


def _generated_tool_call_id(index: int) -> str:
    return f"tool_call_{index}_{int(time.time() * 1000)}"


class StreamAssembler:
    """Rebuilds text and tool calls from a sequence of stream fragments."""

    def __init__(self, stats: Stats | None = None):
        self._stats = stats

    async def assemble(
        self,
        fragments: AsyncIterable[StreamChunk],
        is_cancelled: Callable[[], bool],
        on_text: Callable[[str], None] | None = None,
    ) -> AssembledResponse:
        """Consume ``fragments`` until exhausted or cancelled.

        Args:
            fragments: Parsed stream fragments, in arrival order
            is_cancelled: Polled before each fragment
            on_text: Receives every text delta for display

        Returns:
            AssembledResponse; partial state is kept when cancelled
        """
        text_parts: list[str] = []
        tool_calls: dict[int, ToolCallRequest] = {}
        result = AssembledResponse()

        async for chunk in fragments:
            if is_cancelled():
                log.info("Stream cancelled", received_text=sum(len(p) for p in text_parts))
                result.cancelled = True
                break

            if chunk.usage is not None:
                result.usage = chunk.usage
                if self._stats is not None:
                    self._stats.record_usage(chunk.usage.model_dump())

            if not chunk.choices:
                continue
            choice = chunk.choices[0]
            if choice.finish_reason:
                result.finish_reason = choice.finish_reason

            delta = choice.delta
            if delta.content:
                text_parts.append(delta.content)
                if on_text is not None:
                    on_text(delta.content)

            for call_delta in delta.tool_calls or []:
                self._apply_tool_call_delta(tool_calls, call_delta)

        result.text = "".join(text_parts)
        result.tool_calls = tool_calls
        return result

    @staticmethod
    def _apply_tool_call_delta(
        tool_calls: dict[int, ToolCallRequest],
        call_delta: ToolCallDelta,
    ) -> None:
        index = call_delta.index
        function = call_delta.function or FunctionDelta()
        existing = tool_calls.get(index)

        if existing is None:
            if not function.name:
                log.error("Skipping tool call delta without function name", index=index)
                return
            tool_calls[index] = ToolCallRequest(
                id=call_delta.id or _generated_tool_call_id(index),
                type="function",
                index=index,
                function=FunctionCall(name=function.name, arguments=function.arguments or ""),
            )
            return

        if function.arguments:
            existing.function.arguments += function.arguments


def validate_tool_calls(tool_calls: dict[int, ToolCallRequest]) -> list[ToolCallRequest]:
    """Order accumulated calls by index and drop those missing a name or id."""
    valid: list[ToolCallRequest] = []
    for index in sorted(tool_calls):
        call = tool_calls[index]
        if not call.function.name or not call.id:
            log.error("Dropping invalid tool call", index=index, id=call.id, name=call.function.name)
            continue
        valid.append(call)
    return valid
