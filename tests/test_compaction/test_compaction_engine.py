import pytest

from helmsman.compaction import (
    PRUNE_PROTECTION_THRESHOLD,
    PRUNED_TOOL_MESSAGE,
    CompactionEngine,
)
from helmsman.config import ContextConfig
from helmsman.exceptions import CompactionError
from helmsman.message_log import MessageLog
from helmsman.messages import (
    AssistantMessage,
    FunctionCall,
    SystemMessage,
    ToolCallRequest,
    ToolMessage,
    ToolResultRecord,
    UserMessage,
)


class FakeSummarizer:
    def __init__(self, replacement=None, error: Exception | None = None):
        self.replacement = replacement
        self.error = error
        self.calls: list[str] = []

    async def compact(self, messages):
        self.calls.append("compact")
        if self.error is not None:
            raise self.error
        return self.replacement if self.replacement is not None else list(messages)

    async def force_compact_rounds(self, messages, n):
        self.calls.append(f"rounds:{n}")
        return self.replacement if self.replacement is not None else list(messages)

    async def force_compact_messages(self, messages, n):
        self.calls.append(f"messages:{n}")
        return self.replacement if self.replacement is not None else list(messages)


def _call(call_id: str) -> ToolCallRequest:
    return ToolCallRequest(id=call_id, function=FunctionCall(name="read_file", arguments="{}"))


def _log_with_tool_results(sizes: list[int]) -> MessageLog:
    log = MessageLog()
    log.add_system_message("system prompt")
    log.add_user_message("inspect the repo")
    for position, size in enumerate(sizes):
        call_id = f"call_{position}"
        log.add_assistant_message(None, [_call(call_id)])
        log.add_tool_results([ToolResultRecord(tool_call_id=call_id, content="x" * size)])
    return log


def _tool_contents(log: MessageLog) -> list[str]:
    return [m.content for m in log.messages if isinstance(m, ToolMessage)]


def test_repeated_half_pruning_converges():
    log = _log_with_tool_results([400] * 8)
    engine = CompactionEngine(log, None)

    counts = [engine.prune_by_percentage(50).pruned_count for _ in range(5)]

    assert counts == [4, 2, 1, 1, 0]
    assert _tool_contents(log) == [PRUNED_TOOL_MESSAGE] * 8


def test_prune_takes_oldest_results_first():
    log = _log_with_tool_results([400, 500, 600, 700])
    engine = CompactionEngine(log, None)

    result = engine.prune_by_percentage(50)

    assert result.pruned_count == 2
    assert result.protected_count == 0
    assert result.saved_bytes == 400 + 500 - 2 * len(PRUNED_TOOL_MESSAGE)
    assert _tool_contents(log) == [PRUNED_TOOL_MESSAGE, PRUNED_TOOL_MESSAGE, "x" * 600, "x" * 700]


def test_protected_count_reports_small_results():
    log = _log_with_tool_results([400, 200, 500, 100])
    engine = CompactionEngine(log, None)

    result = engine.prune_by_percentage(50)

    assert result.pruned_count == 1
    assert result.protected_count == 2
    assert _tool_contents(log) == [PRUNED_TOOL_MESSAGE, "x" * 200, "x" * 500, "x" * 100]

    engine.prune_all()
    exhausted = engine.prune_by_percentage(50)

    assert exhausted.pruned_count == 0
    assert exhausted.saved_bytes == 0
    assert exhausted.protected_count == 4


def test_small_results_are_never_pruned():
    sizes = [PRUNE_PROTECTION_THRESHOLD, 10, 300, 0]
    log = _log_with_tool_results(sizes)
    engine = CompactionEngine(log, None)

    assert engine.prune_all() == 1
    assert engine.prune_by_percentage(100).pruned_count == 0
    assert engine.prune_oldest(5) == 0
    assert _tool_contents(log) == ["x" * 256, "x" * 10, PRUNED_TOOL_MESSAGE, ""]


def test_pruning_keeps_tool_call_ids_and_roles():
    log = _log_with_tool_results([1000, 1000])
    engine = CompactionEngine(log, None)

    engine.prune_all()

    tools = [m for m in log.messages if isinstance(m, ToolMessage)]
    assert [m.tool_call_id for m in tools] == ["call_0", "call_1"]
    assert log.message_count == 6


def test_fully_pruned_log_is_left_alone():
    log = _log_with_tool_results([1000, 1000])
    engine = CompactionEngine(log, None)
    engine.prune_all()
    before = log.messages

    result = engine.prune_by_percentage(50)

    assert result.pruned_count == 0
    assert log.messages == before


def test_prune_oldest_counts():
    log = _log_with_tool_results([300, 300, 300])
    engine = CompactionEngine(log, None)

    assert engine.prune_oldest(2) == 2
    assert engine.prune_oldest(2) == 1
    assert engine.prune_oldest(2) == 0


def test_prune_invalidates_token_estimate():
    log = _log_with_tool_results([2000])
    engine = CompactionEngine(log, None)
    before = log.estimated_tokens

    engine.prune_all()

    assert log.estimated_tokens < before


def test_tool_call_stats():
    log = _log_with_tool_results([100, 300])
    stats = CompactionEngine(log, None).tool_call_stats()

    assert stats.count == 2
    assert stats.bytes == 400
    assert stats.tokens > 0


def test_injection_lands_after_tool_results():
    log = MessageLog()
    log.add_system_message("sys")
    log.add_user_message("do it")
    log.add_assistant_message(None, [_call("c1")])
    log.add_tool_results([ToolResultRecord(tool_call_id="c1", content="done")])
    log.add_user_message("next")
    engine = CompactionEngine(log, None)

    position = engine.insert_after_last_appropriate_position("remember this")

    assert position == 4
    assert log.messages[4] == UserMessage(content="remember this")
    assert isinstance(log.messages[3], ToolMessage)


def test_injection_falls_back_to_plain_assistant_then_user():
    log = MessageLog()
    log.add_system_message("sys")
    log.add_user_message("hi")
    log.add_assistant_message("hello")
    log.add_user_message("again")
    engine = CompactionEngine(log, None)
    assert engine.find_injection_position() == 3

    log = MessageLog()
    log.add_system_message("sys")
    log.add_user_message("hi")
    engine = CompactionEngine(log, None)
    assert engine.find_injection_position() == 2


def test_injection_skips_assistant_with_pending_tool_calls():
    log = MessageLog()
    log.add_system_message("sys")
    log.add_user_message("hi")
    log.add_assistant_message(None, [_call("c1")])
    engine = CompactionEngine(log, None)

    assert engine.find_injection_position() == 2


def test_injection_into_empty_log_appends():
    log = MessageLog()
    log.add_system_message("sys")
    engine = CompactionEngine(log, None)

    assert engine.insert_after_last_appropriate_position("note") == 1
    assert log.message_count == 2


def test_should_auto_compact_respects_threshold():
    log = MessageLog()
    log.add_user_message("word " * 200)

    enabled = CompactionEngine(log, None, ContextConfig(size=100, compact_percentage=50))
    disabled = CompactionEngine(log, None, ContextConfig(size=100, compact_percentage=0))
    roomy = CompactionEngine(log, None, ContextConfig(size=1_000_000, compact_percentage=90))

    assert enabled.should_auto_compact() is True
    assert disabled.should_auto_compact() is False
    assert roomy.should_auto_compact() is False


@pytest.mark.asyncio
async def test_compact_applies_shorter_replacement():
    log = _log_with_tool_results([10, 10])
    replacement = [SystemMessage(content="system prompt"), UserMessage(content="[SUMMARY] short")]
    summarizer = FakeSummarizer(replacement)
    engine = CompactionEngine(log, summarizer)

    assert await engine.compact() is True
    assert log.messages == replacement
    assert log.compaction_count == 1
    assert log.is_compacting is False


@pytest.mark.asyncio
async def test_compact_ignores_replacement_that_is_not_shorter():
    log = _log_with_tool_results([10])
    engine = CompactionEngine(log, FakeSummarizer())
    before = log.messages

    assert await engine.compact() is False
    assert log.messages == before
    assert log.compaction_count == 0


@pytest.mark.asyncio
async def test_compact_is_skipped_while_already_compacting():
    log = _log_with_tool_results([10])
    summarizer = FakeSummarizer([SystemMessage(content="s")])
    engine = CompactionEngine(log, summarizer)
    log.is_compacting = True

    assert await engine.compact() is False
    assert summarizer.calls == []


@pytest.mark.asyncio
async def test_compact_failure_clears_flag_and_raises():
    log = _log_with_tool_results([10])
    engine = CompactionEngine(log, FakeSummarizer(error=CompactionError("boom")))

    with pytest.raises(CompactionError):
        await engine.compact()
    assert log.is_compacting is False


@pytest.mark.asyncio
async def test_auto_compaction_failure_is_not_raised():
    log = MessageLog()
    log.add_user_message("word " * 200)
    engine = CompactionEngine(
        log,
        FakeSummarizer(error=CompactionError("boom")),
        ContextConfig(size=100, compact_percentage=50),
    )

    assert await engine.maybe_auto_compact() is False


@pytest.mark.asyncio
async def test_auto_compaction_does_nothing_below_threshold():
    log = _log_with_tool_results([10])
    summarizer = FakeSummarizer([SystemMessage(content="s")])
    engine = CompactionEngine(log, summarizer, ContextConfig(size=1_000_000, compact_percentage=80))

    assert await engine.maybe_auto_compact() is False
    assert summarizer.calls == []


@pytest.mark.asyncio
async def test_force_variants_delegate_to_summarizer():
    log = _log_with_tool_results([10, 10])
    summarizer = FakeSummarizer([SystemMessage(content="s"), UserMessage(content="[SUMMARY] x")])
    engine = CompactionEngine(log, summarizer)

    assert await engine.force_compact_rounds(1) is True
    assert await engine.force_compact_messages(1) is False
    assert summarizer.calls == ["rounds:1", "messages:1"]


def test_round_count_mirrors_log():
    log = MessageLog()
    log.add_system_message("sys")
    log.add_user_message("a")
    log.add_user_message("b")
    log.add_assistant_message("ok")
    log.add_user_message("c")

    assert CompactionEngine(log, None).round_count() == 2
    assert isinstance(log.messages[3], AssistantMessage)
