"""Model-backed conversation summarization used by compaction."""

from typing import Protocol

from helmsman.exceptions import CompactionError
from helmsman.logging import get_logger
from helmsman.messages import (
    AssistantMessage,
    Message,
    SUMMARY_PREFIX,
    SystemMessage,
    ToolMessage,
    UserMessage,
    is_summary,
)

log = get_logger(__name__)

SUMMARY_TOOL_RESULT_LIMIT = 500

SUMMARIZER_SYSTEM_PROMPT = """You are a helpful AI assistant tasked with summarizing conversations.

When asked to summarize, provide a detailed but concise summary of the conversation.
Focus on information that would be helpful for continuing the conversation, including:

- What was done
- What is currently being worked on
- Which files are being modified
- What needs to be done next

Your summary should be comprehensive enough to provide context but concise enough to be quickly understood."""

SUMMARY_REQUEST_TEMPLATE = """Based on the conversation below:

Numbered conversation to analyze:
{conversation}

---
Provide a detailed but concise summary of our conversation above. Focus on information that would be helpful for continuing the conversation, including what we did, what we're doing, which files we're working on, and what we're going to do next."""


class Summarizer(Protocol):
    """Strategy that turns a message sequence into a shorter one."""

    async def compact(self, messages: list[Message]) -> list[Message]: ...

    async def force_compact_rounds(self, messages: list[Message], n: int) -> list[Message]: ...

    async def force_compact_messages(self, messages: list[Message], n: int) -> list[Message]: ...


class CompletionClient(Protocol):
    async def complete_text(self, messages: list[Message]) -> str: ...


def _temporal_tag(position: int, total: int) -> str:
    percent = position / total * 100
    if percent >= 80:
        return "VERY RECENT (Last 20%)"
    if percent >= 60:
        return "RECENT (Last 40%)"
    if percent >= 30:
        return "MIDDLE"
    return "OLD (First 30%)"


def format_messages_for_summary(messages: list[Message]) -> str:
    """Number each message and tag its temporal position for the summary prompt."""
    total = len(messages)
    lines: list[str] = []
    for position, msg in enumerate(messages, start=1):
        content = msg.content or ""
        prefix = f"[{position:3d}/{total}] {_temporal_tag(position, total)} "
        if isinstance(msg, AssistantMessage):
            entry = f"{prefix} Assistant: {content}"
            if msg.tool_calls:
                calls = "\n".join(
                    f"Tool Call: {call.function.name or 'unknown'}({call.function.arguments or '{}'})"
                    for call in msg.tool_calls
                )
                entry = f"{entry}\n{calls}"
        elif isinstance(msg, ToolMessage):
            if len(content) > SUMMARY_TOOL_RESULT_LIMIT:
                content = content[:SUMMARY_TOOL_RESULT_LIMIT] + "... (truncated for summarization)"
            entry = f"{prefix} Tool Result (ID: {msg.tool_call_id}): {content}"
        elif isinstance(msg, UserMessage):
            entry = f"{prefix} User: {content}"
        else:
            entry = f"{prefix} {msg.role.capitalize()}: {content}"
        lines.append(entry)
    return "\n---\n".join(lines)


def group_messages(messages: list[Message]) -> list[list[Message]]:
    """Split messages into atomic units.

    A unit closes after the last of a run of consecutive tool results, or
    right before a new user message, so an assistant tool-call declaration
    always stays with all of its results.
    """
    groups: list[list[Message]] = []
    current: list[Message] = []
    for index, msg in enumerate(messages):
        if isinstance(msg, UserMessage) and current:
            groups.append(current)
            current = []
        current.append(msg)
        next_msg = messages[index + 1] if index + 1 < len(messages) else None
        if isinstance(msg, ToolMessage) and not isinstance(next_msg, ToolMessage):
            groups.append(current)
            current = []
    if current:
        groups.append(current)
    return groups


def identify_rounds(messages: list[Message]) -> list[list[int]]:
    """Indices of each conversation round; a round ends at the next user message."""
    rounds: list[list[int]] = []
    current: list[int] = []
    for index, msg in enumerate(messages):
        if isinstance(msg, SystemMessage) or is_summary(msg):
            continue
        if isinstance(msg, UserMessage) and current:
            rounds.append(current)
            current = []
        current.append(index)
    if current:
        rounds.append(current)
    return rounds


def _extend_through_tool_results(messages: list[Message], selected: list[int]) -> list[int]:
    # Tool results must not outlive the assistant message that requested them.
    if not selected:
        return selected
    extended = list(selected)
    index = extended[-1] + 1
    while index < len(messages) and isinstance(messages[index], ToolMessage):
        extended.append(index)
        index += 1
    return extended


def make_summary_message(summary: str) -> UserMessage:
    return UserMessage(content=f"{SUMMARY_PREFIX} {summary}")


def replace_span_with_summary(
    messages: list[Message],
    indices: list[int],
    summary: Message,
) -> list[Message]:
    """Replace the span from the first to the last index with ``summary``."""
    if not indices:
        return list(messages)
    first, last = min(indices), max(indices)
    return [*messages[:first], summary, *messages[last + 1 :]]


class AISummarizer:
    """Summarizes old conversation history through the remote model."""

    def __init__(self, client: CompletionClient, protect_rounds: int = 2, min_summary_length: int = 50):
        self.client = client
        self.protect_rounds = protect_rounds
        self.min_summary_length = min_summary_length

    async def compact(self, messages: list[Message]) -> list[Message]:
        """Summarize everything except the most recent groups.

        Returns the system prompt, earlier summaries, the new summary and the
        protected recent messages, in that order. Short logs come back as-is.
        """
        if len(messages) <= 3:
            return list(messages)

        system: list[Message] = []
        summaries: list[Message] = []
        candidates: list[Message] = []
        for index, msg in enumerate(messages):
            if index == 0 and isinstance(msg, SystemMessage):
                system.append(msg)
            elif is_summary(msg):
                summaries.append(msg)
            else:
                candidates.append(msg)

        groups = group_messages(candidates)
        if self.protect_rounds > 0:
            old_groups, recent_groups = groups[: -self.protect_rounds], groups[-self.protect_rounds :]
        else:
            old_groups, recent_groups = groups, []
        if not old_groups:
            return list(messages)

        old_messages = [msg for group in old_groups for msg in group]
        summary = await self.summarize(old_messages)
        recent = [msg for group in recent_groups for msg in group]
        return [*system, *summaries, make_summary_message(summary), *recent]

    async def force_compact_rounds(self, messages: list[Message], n: int) -> list[Message]:
        rounds = identify_rounds(messages)
        selected = [index for round_ in rounds[: max(0, n)] for index in round_]
        if not selected:
            return list(messages)
        summary = await self.summarize([messages[i] for i in selected])
        return replace_span_with_summary(messages, selected, make_summary_message(summary))

    async def force_compact_messages(self, messages: list[Message], n: int) -> list[Message]:
        eligible = [
            index
            for index, msg in enumerate(messages)
            if not isinstance(msg, SystemMessage) and not is_summary(msg)
        ]
        selected = _extend_through_tool_results(messages, eligible[: max(0, n)])
        if not selected:
            return list(messages)
        summary = await self.summarize([messages[i] for i in selected])
        return replace_span_with_summary(messages, selected, make_summary_message(summary))

    async def summarize(self, messages: list[Message]) -> str:
        """Ask the model for a summary of ``messages``.

        Raises:
            CompactionError: when the request fails
        """
        to_summarize = [msg for msg in messages if not is_summary(msg)]
        if not to_summarize:
            return "No previous content"

        prompt = SUMMARY_REQUEST_TEMPLATE.format(
            conversation=format_messages_for_summary(to_summarize)
        )
        request: list[Message] = [
            SystemMessage(content=SUMMARIZER_SYSTEM_PROMPT),
            UserMessage(content=prompt),
        ]
        try:
            text = (await self.client.complete_text(request)).strip()
        except Exception as e:
            raise CompactionError(f"AI summarization failed: {e}") from e

        if len(text) < self.min_summary_length:
            log.warning("Generated summary appears too short, using anyway", length=len(text))
        return text or "Conversation summarized"
