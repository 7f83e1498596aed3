"""Agent orchestration for Helmsman."""

import asyncio
from pathlib import Path
from typing import Any, AsyncGenerator, Protocol

from helmsman.approval import ApprovalChannel, ApprovalEngine, BatchOutcome, ToolDisplay
from helmsman.compaction import CompactionEngine
from helmsman.config import Config, get_config
from helmsman.exceptions import LLMError
from helmsman.instructions import InstructionLoader, build_system_prompt
from helmsman.interrupts import InterruptController
from helmsman.llm import StreamingClient
from helmsman.logging import get_logger
from helmsman.memory import MemoryFile, MemoryManager
from helmsman.message_log import MessageLog
from helmsman.messages import AssistantMessage, Message, ToolCallRequest, UserMessage
from helmsman.retry import RetryPolicy
from helmsman.session_state import SessionState
from helmsman.stats import Stats
from helmsman.streaming import StreamAssembler, StreamChunk, validate_tool_calls
from helmsman.summarizer import AISummarizer
from helmsman.token_estimator import estimate_tool_definitions_tokens
from helmsman.tools import ToolRegistry, create_default_registry

log = get_logger(__name__)


class ChatClient(Protocol):
    def set_tool_definitions(self, definitions: list[dict[str, Any]]) -> None: ...

    def stream_request(
        self,
        messages: list[Message],
        stream: bool = True,
        throw_on_error: bool = False,
        include_tools: bool = True,
    ) -> AsyncGenerator[StreamChunk, None]: ...

    async def complete_text(self, messages: list[Message]) -> str: ...

    async def close(self) -> None: ...


class AgentUI(ApprovalChannel, ToolDisplay, Protocol):
    """Terminal surface used by the agent loop."""

    def begin_assistant_stream(self) -> None: ...

    def print_streaming(self, chunk: str) -> None: ...

    def end_assistant_stream(self) -> None: ...

    def print_error(self, error: str) -> None: ...


class Agent:
    """Main agent orchestrator.

    Owns the message log and wires the streaming client, the stream
    assembler, the approval engine and the compaction engine into one
    control loop.
    """

    def __init__(
        self,
        ui: AgentUI,
        client: ChatClient | None = None,
        registry: ToolRegistry | None = None,
        config: Config | None = None,
        stats: Stats | None = None,
        retry: RetryPolicy | None = None,
        instructions: InstructionLoader | None = None,
        cwd: Path | str | None = None,
        install_signal_handler: bool = True,
    ):
        """Initialize the agent.

        Args:
            ui: Terminal output and approval channel
            client: Optional chat client override
            registry: Optional tool registry override
            config: Optional configuration override
            stats: Optional statistics sink
            retry: Optional retry policy shared with the default client
            instructions: Optional system prompt loader
            cwd: Working directory for tools, AGENTS.md and memory files
            install_signal_handler: Route SIGINT to the interrupt controller while processing
        """
        self.config = config or get_config()
        self.ui = ui
        self.cwd = Path(cwd or Path.cwd()).resolve()
        self.stats = stats or Stats()
        self.state = SessionState(yolo=self.config.ui.yolo, detail=self.config.ui.detail)
        self.retry = retry or RetryPolicy(self.config.retry.max_retries, self.config.retry.max_wait)
        self.client: ChatClient = client or StreamingClient(
            self.config.model, retry=self.retry, stats=self.stats
        )
        self.tools = registry or create_default_registry(self.cwd, self.stats, self.config.tools)
        self.instructions = instructions or InstructionLoader()
        self.memory = MemoryManager(self._resolve_memory_dir())

        self.message_log = MessageLog(self.stats)
        self.assembler = StreamAssembler(self.stats)
        self.summarizer = AISummarizer(
            self.client,
            protect_rounds=self.config.context.compact_protect_rounds,
            min_summary_length=self.config.context.min_summary_length,
        )
        self.compaction = CompactionEngine(self.message_log, self.summarizer, self.config.context)
        self.interrupts = InterruptController(
            self.state,
            on_exit=self.request_exit,
            on_notice=self.ui.print_notice,
        )
        self.approval = ApprovalEngine(
            self.tools,
            self.message_log,
            self.state,
            channel=self.ui,
            display=self.ui,
            is_cancelled=self.interrupts.is_cancelled,
            cancel_event=self.interrupts.cancelled,
        )
        self.exit_requested = False
        self._install_signal_handler = install_signal_handler
        self._current_task: asyncio.Task[Any] | None = None

        definitions = self.tools.get_definitions()
        self.client.set_tool_definitions(definitions)
        self.message_log.set_tool_definitions_tokens(estimate_tool_definitions_tokens(definitions))

    def _resolve_memory_dir(self) -> Path:
        memory_dir = Path(self.config.memory.dir).expanduser()
        if not memory_dir.is_absolute():
            memory_dir = self.cwd / memory_dir
        return memory_dir

    # Session lifecycle

    def initialize(self) -> int:
        """Start a fresh conversation with the system prompt.

        Returns:
            number of auto-loaded memory entries
        """
        self.message_log.clear()
        self.message_log.add_system_message(build_system_prompt(self.instructions, self.cwd))
        loaded = 0
        if self.config.memory.auto_load:
            for memory_file in self.memory.auto_load():
                loaded += self.load_memory(memory_file)
        log.info("Agent initialized", cwd=str(self.cwd), memory_entries=loaded)
        return loaded

    def reset(self) -> int:
        return self.initialize()

    def load_memory(self, memory_file: MemoryFile) -> int:
        for entry in memory_file.entries:
            if entry.role == "user":
                self.message_log.add_user_message(entry.content)
            else:
                self.message_log.add_assistant_message(entry.content)
        return len(memory_file.entries)

    def inject_note(self, content: str) -> int:
        """Insert an out-of-band user note without splitting a tool turn."""
        return self.compaction.insert_after_last_appropriate_position(content)

    def replace_messages(self, messages: list[Message]) -> None:
        """Swap in a loaded session."""
        self.message_log.set_messages(messages)

    def prepare_retry(self) -> bool:
        """Drop a trailing plain assistant reply so the request can be re-sent.

        Returns:
            False when the log holds no user message to retry
        """
        messages = self.message_log.messages
        if not any(isinstance(msg, UserMessage) for msg in messages):
            return False
        last = messages[-1]
        if isinstance(last, AssistantMessage) and not last.has_tool_calls:
            self.message_log.set_messages(messages[:-1])
        return True

    def request_exit(self) -> None:
        self.exit_requested = True
        self.state.stop_processing()
        if self._current_task is not None and not self._current_task.done():
            self._current_task.cancel()

    # Control loop

    async def process_user_input(self, text: str) -> None:
        self.message_log.add_user_message(text)
        self.stats.set_last_user_prompt(text)
        await self.process_with_ai()

    async def process_with_ai(self) -> None:
        """Run model turns until one produces no tool calls or processing stops."""
        self.interrupts.begin()
        installed = self._install_signal_handler and self.interrupts.install()
        self._current_task = asyncio.current_task()
        try:
            while self.state.is_processing:
                await self.compaction.maybe_auto_compact()
                if not self.state.is_processing:
                    self.ui.print_notice("[AI response interrupted before starting]")
                    break

                tool_calls = await self._run_turn()
                if not tool_calls:
                    break

                outcome = await self._run_tools(tool_calls)
                log.debug(
                    "Tool batch finished",
                    executed=outcome.executed,
                    denied=outcome.denied,
                    halted=outcome.halted,
                )
        except asyncio.CancelledError:
            if not self.exit_requested:
                raise
            log.info("Processing aborted for exit")
        finally:
            self._current_task = None
            if installed:
                self.interrupts.uninstall()
            self.interrupts.end()

    async def _run_turn(self) -> list[ToolCallRequest]:
        """Stream one model turn into the log; returns the tool calls to run."""
        self.message_log.estimate_context()
        fragments = self.client.stream_request(
            self.message_log.messages,
            stream=self.config.ui.streaming,
            throw_on_error=True,
        )
        self.ui.begin_assistant_stream()
        try:
            response = await self.assembler.assemble(
                fragments,
                self.interrupts.is_cancelled,
                on_text=self.ui.print_streaming,
            )
        except LLMError as e:
            self.ui.end_assistant_stream()
            log.error("AI request failed", error=str(e))
            self.message_log.add_assistant_message(f"[AI Error: {e}]")
            self.ui.print_error(f"AI Error: {e}")
            return []
        finally:
            await fragments.aclose()

        self.ui.end_assistant_stream()
        if response.cancelled:
            self.ui.print_notice("[AI response interrupted]")

        tool_calls = validate_tool_calls(response.tool_calls)
        if tool_calls:
            self.message_log.add_assistant_message(response.text or None, tool_calls)
        else:
            self.message_log.add_assistant_message(response.text)
        return tool_calls

    async def _run_tools(self, tool_calls: list[ToolCallRequest]) -> BatchOutcome:
        return await self.approval.process(tool_calls)

    async def close(self) -> None:
        await self.client.close()
