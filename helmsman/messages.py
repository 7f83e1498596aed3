"""Conversation message types.

Messages form a closed union discriminated on ``role``. Anything that enters
the process from outside (session files, memory files, remote responses) is
validated through :data:`MESSAGE_LIST_ADAPTER` so that malformed payloads are
rejected at the boundary rather than deep inside the agent loop.
"""

from typing import Annotated, Any, Literal, Union

from pydantic import BaseModel, Field, TypeAdapter


SUMMARY_PREFIX = "[SUMMARY]"


class FunctionCall(BaseModel):
    """Function name and raw argument text of a tool call."""

    name: str = ""
    arguments: str = ""


class ToolCallRequest(BaseModel):
    """A model-issued request to invoke a local tool.

    ``arguments`` stays raw text (accumulated by concatenation while
    streaming) and is only parsed when the tool executes. ``index`` is the
    position the remote service assigned within one streamed turn.
    """

    id: str
    type: Literal["function"] = "function"
    index: int = 0
    function: FunctionCall = Field(default_factory=FunctionCall)

    @property
    def name(self) -> str:
        return self.function.name


class SystemMessage(BaseModel):
    role: Literal["system"] = "system"
    content: str | None = None


class UserMessage(BaseModel):
    role: Literal["user"] = "user"
    content: str | None = None


class AssistantMessage(BaseModel):
    role: Literal["assistant"] = "assistant"
    content: str | None = None
    tool_calls: list[ToolCallRequest] | None = None

    @property
    def has_tool_calls(self) -> bool:
        return bool(self.tool_calls)


class ToolMessage(BaseModel):
    role: Literal["tool"] = "tool"
    content: str | None = None
    tool_call_id: str


Message = Annotated[
    Union[SystemMessage, UserMessage, AssistantMessage, ToolMessage],
    Field(discriminator="role"),
]

MESSAGE_LIST_ADAPTER: TypeAdapter[list[Message]] = TypeAdapter(list[Message])


class ToolResultRecord(BaseModel):
    """Tool output ready to be appended to the log as a ``tool`` message."""

    tool_call_id: str
    content: str
    friendly: str | None = None


def is_summary(message: Message) -> bool:
    """Whether the message is a compaction summary."""
    return (message.content or "").startswith(SUMMARY_PREFIX)


def to_api_payload(message: Message) -> dict[str, Any]:
    """Serialize a message for the chat-completions request body."""
    payload: dict[str, Any] = {"role": message.role, "content": message.content}
    if isinstance(message, AssistantMessage) and message.tool_calls:
        payload["tool_calls"] = [
            {
                "id": call.id,
                "type": call.type,
                "function": {
                    "name": call.function.name,
                    "arguments": call.function.arguments,
                },
            }
            for call in message.tool_calls
        ]
    if isinstance(message, ToolMessage):
        payload["tool_call_id"] = message.tool_call_id
    return payload


def parse_messages(data: Any) -> list[Message]:
    """Validate raw JSON-like data into messages, raising pydantic ValidationError."""
    return MESSAGE_LIST_ADAPTER.validate_python(data)


def dump_messages(messages: list[Message]) -> list[dict[str, Any]]:
    """Dump messages into plain JSON-compatible dicts."""
    return MESSAGE_LIST_ADAPTER.dump_python(messages, mode="json", exclude_none=True)
