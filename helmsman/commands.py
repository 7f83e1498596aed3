"""Local console command dispatch.

Returns ``"break"`` to exit, ``"continue"`` to skip to the next prompt, or
``None`` to fall through to prompt execution.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

from helmsman.compaction import PRUNE_PROTECTION_THRESHOLD, PRUNED_TOOL_MESSAGE
from helmsman.exceptions import CompactionError, SessionLoadError
from helmsman.logging import get_logger
from helmsman.session import DEFAULT_SESSION_FILE, load_session, save_session

if TYPE_CHECKING:
    from helmsman.runtime_context import RuntimeContext

log = get_logger(__name__)

_ON_WORDS = {"on", "1", "true", "enable"}
_OFF_WORDS = {"off", "0", "false", "disable"}

COMPACT_USAGE = "/compact [force <N> | force-messages <N> | prune [all|stats|<N>] | stats]"
RETRY_USAGE = "/retry [limit <N> | max-backoff <N> | status]"
MEMORY_USAGE = "/memory list | load <name> | inject <text>"


def parse_toggle(arg: str) -> bool | None:
    """``on``/``off`` style argument; None when absent or unrecognized."""
    word = arg.strip().lower()
    if word in _ON_WORDS:
        return True
    if word in _OFF_WORDS:
        return False
    return None


def _parse_positive_int(raw: str) -> int | None:
    try:
        value = int(raw)
    except ValueError:
        return None
    return value if value >= 1 else None


def _parse_non_negative_int(raw: str) -> int | None:
    try:
        value = int(raw)
    except ValueError:
        return None
    return value if value >= 0 else None


async def dispatch_local_command(
    ctx: RuntimeContext, result: str, user_input: str,
) -> str | None:
    """Handle a parsed command token from the local console.

    Returns:
        ``"break"``    – caller should exit the main loop
        ``"continue"`` – caller should skip to next iteration
        ``None``       – unhandled, caller should fall through to prompt execution
    """
    agent = ctx.agent
    ui = ctx.ui
    command, _, args = result.partition(":")
    args = args.strip()
    log.debug("Dispatching local command", command=command, raw=user_input)

    if command == "EXIT":
        log.info("User requested exit")
        return "break"

    if command == "CLEAR":
        loaded = agent.reset()
        ui.print_success("Conversation cleared")
        if loaded:
            ui.print_notice(f"[*] Re-loaded {loaded} memory entries")
        return "continue"

    if command == "STATS":
        agent.message_log.estimate_context()
        ui.print_stats(agent.stats)
        return "continue"

    if command == "YOLO":
        _handle_toggle(ctx, "yolo", "YOLO mode", args)
        return "continue"

    if command == "DETAIL":
        _handle_toggle(ctx, "detail", "Detail mode", args)
        return "continue"

    if command == "COMPACT":
        await _handle_compact(ctx, args)
        return "continue"

    if command == "PRUNE":
        _handle_prune(ctx, args)
        return "continue"

    if command == "RETRY":
        await _handle_retry(ctx, args)
        return "continue"

    if command == "MEMORY":
        _handle_memory(ctx, args)
        return "continue"

    if command == "SAVE":
        path = args or DEFAULT_SESSION_FILE
        try:
            saved = save_session(path, agent.message_log.messages)
        except OSError as e:
            ui.print_error(f"Error saving session: {e}")
            return "continue"
        ui.print_success(f"Session saved to {saved}")
        return "continue"

    if command == "LOAD":
        path = args or DEFAULT_SESSION_FILE
        try:
            messages = load_session(path)
        except SessionLoadError as e:
            ui.print_error(str(e))
            return "continue"
        agent.replace_messages(messages)
        ui.print_success(f"Session loaded from {path} ({len(messages)} messages)")
        return "continue"

    return None


def _handle_toggle(ctx: RuntimeContext, attribute: str, label: str, args: str) -> None:
    state = ctx.agent.state
    ui = ctx.ui
    if not args:
        status = "ENABLED" if getattr(state, attribute) else "DISABLED"
        ui.print_notice(f"{label}: {status}")
        return
    value = parse_toggle(args)
    if value is None:
        ui.print_error(f"Invalid argument '{args}'. Use on or off.")
        return
    setattr(state, attribute, value)
    ui.print_success(f"[*] {label} {'ENABLED' if value else 'DISABLED'}")


def _print_context_stats(ctx: RuntimeContext) -> None:
    agent = ctx.agent
    context = agent.config.context
    tokens = agent.message_log.estimate_context()
    threshold = context.auto_compact_threshold
    percentage = (tokens / threshold * 100) if threshold > 0 else 0.0
    lines = [
        "Conversation Statistics:",
        f"  Rounds (user+assistant): {agent.compaction.round_count()}",
        f"  Messages (total): {agent.message_log.message_count}",
        f"  Token usage: {tokens:,} / {threshold:,} ({percentage:.1f}%)",
        f"  Auto-compaction: {'enabled' if context.auto_compact_enabled else 'disabled'}",
        f"  Total compactions: {agent.message_log.compaction_count}",
    ]
    ctx.ui.print_message("system", "\n".join(lines))


async def _handle_compact(ctx: RuntimeContext, args: str) -> None:
    agent = ctx.agent
    ui = ctx.ui
    parts = args.split()
    sub = parts[0].lower() if parts else ""

    if sub == "stats":
        _print_context_stats(ctx)
        return
    if sub == "prune":
        _handle_compact_prune(ctx, parts[1].lower() if len(parts) > 1 else "all")
        return
    if sub and sub not in ("force", "force-messages"):
        ui.print_error(f"Unknown compact command: {sub}")
        ui.print_notice(f"[i] Usage: {COMPACT_USAGE}")
        return

    count = 0
    if sub:
        count = _parse_positive_int(parts[1]) if len(parts) > 1 else None
        if count is None:
            ui.print_error(f"Usage: /compact {sub} <N>")
            return
    elif agent.compaction.round_count() == 0:
        ui.print_notice("[i] No messages available to compact")
        return

    before = agent.message_log.message_count
    try:
        if sub == "force":
            changed = await agent.compaction.force_compact_rounds(count)
        elif sub == "force-messages":
            changed = await agent.compaction.force_compact_messages(count)
        else:
            changed = await agent.compaction.compact()
    except CompactionError as e:
        ui.print_error(f"Compaction failed: {e}")
        return

    if changed:
        ui.print_success(
            f"[*] Compacted conversation: {before} -> {agent.message_log.message_count} messages"
        )
    else:
        ui.print_notice("[i] Nothing to compact")


def _handle_compact_prune(ctx: RuntimeContext, target: str) -> None:
    compaction = ctx.agent.compaction
    ui = ctx.ui
    stats = compaction.tool_call_stats()

    if target == "stats":
        lines = [
            "Tool Call Statistics:",
            f"  Tool results: {stats.count}",
            f"  Estimated tokens: {stats.tokens:,}",
            f"  Total bytes: {stats.bytes:,}",
        ]
        if stats.count:
            lines.append(
                f"  Average per result: {round(stats.bytes / stats.count)} bytes, "
                f"{round(stats.tokens / stats.count)} tokens"
            )
        ui.print_message("system", "\n".join(lines))
        return

    if stats.count == 0:
        ui.print_notice("[i] No tool results to prune")
        return

    if target == "all":
        pruned = compaction.prune_all()
        ui.print_success(f"[*] Pruned {pruned} tool result(s) to '{PRUNED_TOOL_MESSAGE}'")
        return

    count = _parse_positive_int(target)
    if count is None:
        ui.print_error(f"Invalid prune count: {target}")
        ui.print_notice(f"[i] Usage: {COMPACT_USAGE}")
        return
    pruned = compaction.prune_oldest(count)
    ui.print_success(f"[*] Pruned {pruned} oldest tool result(s)")


def _handle_prune(ctx: RuntimeContext, args: str) -> None:
    agent = ctx.agent
    ui = ctx.ui
    if args:
        try:
            percentage = float(args.rstrip("%"))
        except ValueError:
            ui.print_error(f"Invalid percentage: {args}")
            return
        if not 0 < percentage <= 100:
            ui.print_error("Percentage must be between 0 and 100")
            return
    else:
        percentage = float(agent.config.context.prune_percentage)

    result = agent.compaction.prune_by_percentage(percentage)
    if result.pruned_count == 0:
        if result.protected_count:
            ui.print_notice(f"[i] All tool results are protected (<= {PRUNE_PROTECTION_THRESHOLD} bytes)")
        else:
            ui.print_notice("[i] No tool results to prune")
        return
    ui.print_success(
        f"[*] Pruned {result.pruned_count} tool result(s) ({percentage:g}%), "
        f"saved {result.saved_bytes:,} bytes"
    )
    if result.protected_count:
        ui.print_notice(
            f"    (Protected {result.protected_count} tool result(s) <= {PRUNE_PROTECTION_THRESHOLD} bytes)"
        )


async def _handle_retry(ctx: RuntimeContext, args: str) -> None:
    agent = ctx.agent
    ui = ctx.ui
    retry = agent.retry
    parts = args.split()
    sub = parts[0].lower() if parts else ""

    if sub == "status":
        ui.print_message("system", f"Retry configuration: {retry.describe()}")
        return

    if sub in ("limit", "max-backoff"):
        if len(parts) < 2:
            current = retry.max_retries if sub == "limit" else retry.max_wait
            ui.print_notice(f"Current {sub}: {current}")
            return
        value = _parse_non_negative_int(parts[1])
        if value is None:
            ui.print_error(f"Invalid number. Use: /retry {sub} <N> (N >= 0)")
            return
        if sub == "limit":
            retry.max_retries = value
            ui.print_success(f"[*] Max retries set to {value}")
        else:
            retry.max_wait = value
            ui.print_success(f"[*] Max backoff set to {value}s")
        return

    if sub:
        ui.print_error(f"Unknown retry command: {sub}")
        ui.print_notice(f"[i] Usage: {RETRY_USAGE}")
        return

    if not agent.prepare_retry():
        ui.print_error("Cannot retry: no user messages found in conversation history")
        return
    ui.print_notice("[*] Retrying last request...")
    await agent.process_with_ai()


def _handle_memory(ctx: RuntimeContext, args: str) -> None:
    agent = ctx.agent
    ui = ctx.ui
    sub, _, rest = args.partition(" ")
    sub = sub.lower()
    rest = rest.strip()

    if sub in ("", "list"):
        names = agent.memory.list_files()
        if not names:
            ui.print_notice(f"[i] No memory files in {agent.memory.memory_dir}")
            return
        ui.print_message("system", "Memory files:\n" + "\n".join(f"  {name}" for name in names))
        return

    if sub == "load":
        if not rest:
            ui.print_error("Usage: /memory load <name>")
            return
        memory_file = agent.memory.load(rest)
        if not memory_file.entries:
            ui.print_error(f"No memory entries loaded from {memory_file.name}")
            return
        count = agent.load_memory(memory_file)
        ui.print_success(f"[*] Loaded memory file {memory_file.name} ({count} messages)")
        return

    if sub == "inject":
        if not rest:
            ui.print_error("Usage: /memory inject <text>")
            return
        position = agent.inject_note(rest)
        ui.print_success(f"[*] Injected note at position {position}")
        return

    ui.print_error(f"Unknown memory command: {sub}")
    ui.print_notice(f"[i] Usage: {MEMORY_USAGE}")
