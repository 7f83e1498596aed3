"""Ordered conversation log with cached size estimation."""

from typing import Iterable

from helmsman.logging import get_logger
from helmsman.messages import (
    AssistantMessage,
    Message,
    SystemMessage,
    ToolCallRequest,
    ToolMessage,
    ToolResultRecord,
    UserMessage,
)
from helmsman.stats import Stats
from helmsman.token_estimator import estimate_message_tokens

log = get_logger(__name__)


class MessageLog:
    """Append-only sequence of conversation messages.

    Only the ``add_*`` mutators create messages. Rewrites (``set_messages``,
    ``rewrite_content``, ``insert_message``) are reserved for the compaction
    engine. Every mutation drops the cached token estimate.
    """

    def __init__(self, stats: Stats | None = None):
        self._messages: list[Message] = []
        self._stats = stats
        self._token_cache: int | None = None
        self._tool_definitions_tokens = 0
        self._compaction_count = 0
        self.is_compacting = False

    # Mutators

    def add_system_message(self, content: str) -> None:
        self._append(SystemMessage(content=content))

    def add_user_message(self, content: str) -> None:
        self._append(UserMessage(content=content))
        if self._stats is not None:
            self._stats.increment_messages_sent()

    def add_assistant_message(
        self,
        content: str | None,
        tool_calls: list[ToolCallRequest] | None = None,
    ) -> None:
        self._append(AssistantMessage(content=content, tool_calls=tool_calls or None))

    def add_tool_results(self, results: Iterable[ToolResultRecord]) -> None:
        for result in results:
            self._append(ToolMessage(content=result.content, tool_call_id=result.tool_call_id))

    def _append(self, message: Message) -> None:
        self._messages.append(message)
        self._invalidate()

    def _invalidate(self) -> None:
        self._token_cache = None

    # Rewrites

    def set_messages(self, messages: list[Message]) -> None:
        """Replace the whole sequence (compaction, session load)."""
        self._messages = list(messages)
        self._invalidate()

    def rewrite_content(self, index: int, content: str) -> None:
        """Replace the content of one message in place, keeping role and ids."""
        message = self._messages[index]
        self._messages[index] = message.model_copy(update={"content": content})
        self._invalidate()

    def insert_message(self, position: int, message: Message) -> None:
        self._messages.insert(position, message)
        self._invalidate()

    def clear(self) -> None:
        self._messages = []
        self._compaction_count = 0
        self._invalidate()

    # Accessors

    @property
    def messages(self) -> list[Message]:
        return list(self._messages)

    def __len__(self) -> int:
        return len(self._messages)

    @property
    def message_count(self) -> int:
        return len(self._messages)

    @property
    def initial_system_message(self) -> SystemMessage | None:
        if self._messages and isinstance(self._messages[0], SystemMessage):
            return self._messages[0]
        return None

    @property
    def chat_messages(self) -> list[Message]:
        """Messages without the leading system prompt."""
        if self.initial_system_message is not None:
            return list(self._messages[1:])
        return list(self._messages)

    def tool_result_indices(self) -> list[int]:
        return [i for i, msg in enumerate(self._messages) if isinstance(msg, ToolMessage)]

    def round_count(self) -> int:
        """Number of conversation rounds; consecutive user messages count once."""
        rounds = 0
        in_user_run = False
        for msg in self.chat_messages:
            if isinstance(msg, UserMessage):
                if not in_user_run:
                    rounds += 1
                in_user_run = True
            else:
                in_user_run = False
        return rounds

    # Size

    def set_tool_definitions_tokens(self, tokens: int) -> None:
        self._tool_definitions_tokens = max(0, int(tokens))
        self._invalidate()

    @property
    def estimated_tokens(self) -> int:
        if self._token_cache is None:
            total = sum(estimate_message_tokens(msg) for msg in self._messages)
            self._token_cache = total + self._tool_definitions_tokens
        return self._token_cache

    def estimate_context(self) -> int:
        """Refresh the estimate and publish it as the current prompt size."""
        tokens = self.estimated_tokens
        if self._stats is not None:
            self._stats.set_current_prompt_size(tokens, estimated=True)
        return tokens

    # Compaction bookkeeping

    @property
    def compaction_count(self) -> int:
        return self._compaction_count

    def increment_compaction_count(self) -> None:
        self._compaction_count += 1
        if self._stats is not None:
            self._stats.increment_compactions()
        log.debug("Compaction recorded", count=self._compaction_count)
