"""Context-window management: auto-compaction, pruning and note injection."""

import math
from dataclasses import dataclass

from helmsman.config import ContextConfig
from helmsman.exceptions import CompactionError
from helmsman.logging import get_logger
from helmsman.message_log import MessageLog
from helmsman.messages import AssistantMessage, Message, ToolMessage, UserMessage
from helmsman.summarizer import Summarizer
from helmsman.token_estimator import estimate_tokens

log = get_logger(__name__)

PRUNE_PROTECTION_THRESHOLD = 256
PRUNED_TOOL_MESSAGE = "[Tool result pruned]"


@dataclass
class PruneResult:
    pruned_count: int = 0
    protected_count: int = 0
    saved_bytes: int = 0


@dataclass
class ToolCallStats:
    count: int = 0
    bytes: int = 0
    tokens: int = 0


def _byte_length(text: str | None) -> int:
    return len((text or "").encode("utf-8"))


class CompactionEngine:
    """Keeps a MessageLog within its token budget."""

    def __init__(
        self,
        message_log: MessageLog,
        summarizer: Summarizer | None,
        context: ContextConfig | None = None,
    ):
        self.log = message_log
        self.summarizer = summarizer
        self.context = context or ContextConfig()

    # Auto-compaction

    def should_auto_compact(self) -> bool:
        if not self.context.auto_compact_enabled:
            return False
        return self.log.estimated_tokens >= self.context.auto_compact_threshold

    async def maybe_auto_compact(self) -> bool:
        """Compact when over budget; failures are logged, never raised."""
        if not self.should_auto_compact():
            return False
        log.info(
            "Auto-compaction triggered",
            tokens=self.log.estimated_tokens,
            threshold=self.context.auto_compact_threshold,
        )
        try:
            return await self.compact()
        except CompactionError as e:
            log.error("Auto-compaction failed", error=str(e))
            return False

    async def compact(self) -> bool:
        """Replace the log with the summarizer's shorter rendition.

        Returns:
            True when the log got shorter

        Raises:
            CompactionError: when summarization fails
        """
        if self.log.is_compacting:
            log.warning("Compaction already in progress, skipping")
            return False
        if self.summarizer is None:
            log.warning("No summarizer available for compaction")
            return False

        self.log.is_compacting = True
        try:
            return self._apply(await self.summarizer.compact(self.log.messages))
        finally:
            self.log.is_compacting = False

    async def force_compact_rounds(self, n: int) -> bool:
        if self.summarizer is None:
            return False
        return self._apply(await self.summarizer.force_compact_rounds(self.log.messages, n))

    async def force_compact_messages(self, n: int) -> bool:
        if self.summarizer is None:
            return False
        return self._apply(await self.summarizer.force_compact_messages(self.log.messages, n))

    def _apply(self, replacement: list[Message]) -> bool:
        original = self.log.message_count
        if len(replacement) >= original:
            return False
        self.log.set_messages(replacement)
        self.log.increment_compaction_count()
        log.info("Conversation compacted", before=original, after=len(replacement))
        return True

    # Pruning

    def _prune_candidates(self) -> list[int]:
        return [
            index
            for index in self.log.tool_result_indices()
            if _byte_length(self.log.messages[index].content) > PRUNE_PROTECTION_THRESHOLD
        ]

    def _prune(self, indices: list[int]) -> int:
        messages = self.log.messages
        saved = 0
        for index in indices:
            saved += _byte_length(messages[index].content) - _byte_length(PRUNED_TOOL_MESSAGE)
            self.log.rewrite_content(index, PRUNED_TOOL_MESSAGE)
        return saved

    def prune_by_percentage(self, percentage: float) -> PruneResult:
        """Prune the oldest ``percentage`` percent of large tool results.

        The count is rounded up, so any positive percentage over a non-empty
        candidate set prunes at least one result. ``protected_count`` reports
        the tool results too small to prune.
        """
        candidates = self._prune_candidates()
        protected = len(self.log.tool_result_indices()) - len(candidates)
        if not candidates or percentage <= 0:
            return PruneResult(pruned_count=0, protected_count=protected)

        count = min(len(candidates), math.ceil(percentage / 100 * len(candidates)))
        saved = self._prune(candidates[:count])
        log.info("Pruned tool results", pruned=count, percentage=percentage, saved_bytes=saved)
        return PruneResult(pruned_count=count, protected_count=protected, saved_bytes=saved)

    def prune_oldest(self, n: int) -> int:
        candidates = self._prune_candidates()
        count = min(max(0, n), len(candidates))
        if count:
            self._prune(candidates[:count])
        return count

    def prune_all(self) -> int:
        candidates = self._prune_candidates()
        if candidates:
            self._prune(candidates)
        return len(candidates)

    def tool_call_stats(self) -> ToolCallStats:
        stats = ToolCallStats()
        for msg in self.log.messages:
            if isinstance(msg, ToolMessage):
                stats.count += 1
                stats.bytes += _byte_length(msg.content)
                stats.tokens += estimate_tokens(msg.content or "")
        return stats

    def round_count(self) -> int:
        return self.log.round_count()

    # Injection

    def find_injection_position(self) -> int:
        """Index at which an out-of-band note is inserted.

        Scanning backward, the slot after the last tool result wins, then the
        slot after the last assistant message without pending tool calls,
        then the slot after the last user message. A log holding at most the
        system prompt gets the note appended.
        """
        messages = self.log.messages
        if len(self.log.chat_messages) == 0:
            return len(messages)

        last_tool = last_assistant = last_user = -1
        for index in range(len(messages) - 1, -1, -1):
            msg = messages[index]
            if isinstance(msg, ToolMessage) and last_tool < 0:
                last_tool = index
            elif isinstance(msg, AssistantMessage) and not msg.has_tool_calls and last_assistant < 0:
                last_assistant = index
            elif isinstance(msg, UserMessage) and last_user < 0:
                last_user = index

        for index in (last_tool, last_assistant, last_user):
            if index >= 0:
                return index + 1
        return len(messages)

    def insert_after_last_appropriate_position(self, content: str) -> int:
        position = self.find_injection_position()
        self.log.insert_message(position, UserMessage(content=content))
        log.debug("Injected message", position=position)
        return position
