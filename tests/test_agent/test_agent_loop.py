import json
from pathlib import Path
from typing import Any

import httpx
import pytest

from helmsman.agent import Agent
from helmsman.approval import SKIPPED_TOOL_MESSAGE, denial_message
from helmsman.config import Config, ModelConfig, ToolsConfig
from helmsman.exceptions import LLMAPIError
from helmsman.instructions import InstructionLoader
from helmsman.llm import StreamingClient
from helmsman.messages import AssistantMessage, SystemMessage, ToolMessage, UserMessage
from helmsman.retry import RetryPolicy
from helmsman.streaming import StreamChunk
from helmsman.tools.registry import Tool, ToolRegistry, ToolResult


def text_chunk(text: str) -> StreamChunk:
    return StreamChunk.model_validate({"choices": [{"delta": {"content": text}}]})


def tool_chunk(call_id: str, name: str, arguments: str, index: int = 0) -> StreamChunk:
    return StreamChunk.model_validate(
        {
            "choices": [
                {
                    "delta": {
                        "tool_calls": [
                            {"index": index, "id": call_id, "function": {"name": name, "arguments": arguments}}
                        ]
                    }
                }
            ]
        }
    )


class ScriptedClient:
    """Plays back one scripted turn per request."""

    def __init__(self, turns: list[Any]) -> None:
        self.turns = list(turns)
        self.requests: list[list] = []
        self.stream_flags: list[bool] = []
        self.tool_definitions: list[dict[str, Any]] = []
        self.closed = False

    def set_tool_definitions(self, definitions):
        self.tool_definitions = definitions

    async def stream_request(self, messages, stream=True, throw_on_error=False, include_tools=True):
        self.requests.append(list(messages))
        self.stream_flags.append(stream)
        turn = self.turns.pop(0)
        if isinstance(turn, Exception):
            raise turn
        for chunk in turn:
            yield chunk

    async def complete_text(self, messages):
        return "summary"

    async def close(self):
        self.closed = True


class FakeUI:
    def __init__(self, answers: list[str] | None = None) -> None:
        self.answers = list(answers or [])
        self.streamed: list[str] = []
        self.errors: list[str] = []
        self.notices: list[str] = []
        self.outputs: list[str] = []
        self.on_stream = None

    async def ask(self, prompt: str) -> str:
        return self.answers.pop(0)

    def begin_assistant_stream(self) -> None:
        pass

    def print_streaming(self, chunk: str) -> None:
        self.streamed.append(chunk)
        if self.on_stream is not None:
            self.on_stream()

    def end_assistant_stream(self) -> None:
        pass

    def print_error(self, error: str) -> None:
        self.errors.append(error)

    def print_notice(self, text: str) -> None:
        self.notices.append(text)

    def print_tool_header(self, tool_name: str) -> None:
        pass

    def print_preview(self, preview) -> None:
        pass

    def print_tool_arguments(self, text: str) -> None:
        pass

    def print_tool_output(self, text: str) -> None:
        self.outputs.append(text)

    def print_tool_done(self) -> None:
        pass

    def print_tool_denied(self) -> None:
        pass


class EchoTool(Tool):
    name = "echo"
    description = "Echo a value back"
    parameters = {"type": "object", "properties": {"value": {"type": "string"}}, "required": ["value"]}

    def __init__(self, auto_approved: bool = True) -> None:
        self.auto_approved = auto_approved
        self.calls: list[str] = []

    async def execute(self, value: str, **kwargs: Any) -> ToolResult:
        self.calls.append(value)
        return ToolResult(content=f"echo: {value}")


def _agent(tmp_path: Path, turns: list[Any], answers: list[str] | None = None, auto_approved: bool = True, **config):
    cfg = Config()
    cfg.memory.auto_load = config.get("auto_load", False)
    cfg.ui.streaming = config.get("streaming", True)
    ui = FakeUI(answers)
    client = ScriptedClient(turns)
    tool = EchoTool(auto_approved=auto_approved)
    registry = ToolRegistry(base_path=tmp_path, tools_config=ToolsConfig())
    registry.register(tool)
    agent = Agent(
        ui,
        client=client,
        registry=registry,
        config=cfg,
        instructions=InstructionLoader(personal_dir=tmp_path / "no_personal"),
        cwd=tmp_path,
        install_signal_handler=False,
    )
    agent.initialize()
    return agent, ui, client, tool


@pytest.mark.asyncio
async def test_tool_loop_runs_until_model_stops_calling_tools(tmp_path: Path):
    agent, ui, client, tool = _agent(
        tmp_path,
        [
            [text_chunk("Let me check. "), tool_chunk("c1", "echo", '{"value": "ping"}')],
            [text_chunk("All "), text_chunk("done.")],
        ],
    )

    await agent.process_user_input("run echo")

    messages = agent.message_log.messages
    assert [m.role for m in messages] == ["system", "user", "assistant", "tool", "assistant"]
    assert messages[2].content == "Let me check. "
    assert messages[2].tool_calls[0].id == "c1"
    assert messages[3] == ToolMessage(content="echo: ping", tool_call_id="c1")
    assert messages[4] == AssistantMessage(content="All done.")
    assert tool.calls == ["ping"]
    assert len(client.requests) == 2
    assert client.requests[1][-1] == messages[3]
    assert ui.streamed == ["Let me check. ", "All ", "done."]
    assert agent.state.is_processing is False


@pytest.mark.asyncio
async def test_tool_definitions_are_sent_to_client(tmp_path: Path):
    _, _, client, _ = _agent(tmp_path, [])

    assert [d["function"]["name"] for d in client.tool_definitions] == ["echo"]


@pytest.mark.asyncio
async def test_ai_error_is_recorded_as_assistant_message(tmp_path: Path):
    agent, ui, _, _ = _agent(tmp_path, [LLMAPIError("HTTP 401: bad key", status_code=401)])

    await agent.process_user_input("hello")

    assert agent.message_log.messages[-1] == AssistantMessage(content="[AI Error: HTTP 401: bad key]")
    assert ui.errors == ["AI Error: HTTP 401: bad key"]


@pytest.mark.asyncio
async def test_empty_turn_records_empty_assistant_message(tmp_path: Path):
    agent, _, client, _ = _agent(tmp_path, [[]])

    await agent.process_user_input("hello")

    assert agent.message_log.messages[-1] == AssistantMessage(content="")
    assert len(client.requests) == 1


@pytest.mark.asyncio
async def test_denied_call_is_reported_back_to_model(tmp_path: Path):
    agent, _, client, tool = _agent(
        tmp_path,
        [[tool_chunk("c1", "echo", '{"value": "x"}')], [text_chunk("ok")]],
        answers=["n"],
        auto_approved=False,
    )

    await agent.process_user_input("try it")

    assert tool.calls == []
    assert client.requests[1][-1] == ToolMessage(content=denial_message("echo"), tool_call_id="c1")
    assert agent.message_log.messages[-1] == AssistantMessage(content="ok")


@pytest.mark.asyncio
async def test_deny_with_guidance_stops_the_loop(tmp_path: Path):
    agent, _, client, _ = _agent(
        tmp_path,
        [[tool_chunk("c1", "echo", '{"value": "x"}'), tool_chunk("c2", "echo", '{"value": "y"}', index=1)]],
        answers=["n+"],
        auto_approved=False,
    )

    await agent.process_user_input("try it")

    tools = [m for m in agent.message_log.messages if isinstance(m, ToolMessage)]
    assert [t.content for t in tools] == [denial_message("echo"), SKIPPED_TOOL_MESSAGE]
    assert len(client.requests) == 1


@pytest.mark.asyncio
async def test_interrupt_during_stream_keeps_partial_text(tmp_path: Path):
    agent, ui, client, _ = _agent(tmp_path, [[text_chunk("partial "), text_chunk("rest")]])
    ui.on_stream = agent.interrupts.handle_signal

    await agent.process_user_input("long answer please")

    assert agent.message_log.messages[-1] == AssistantMessage(content="partial ")
    assert "[AI response interrupted]" in ui.notices
    assert len(client.requests) == 1


@pytest.mark.asyncio
async def test_initialize_auto_loads_numbered_memory_files(tmp_path: Path):
    memory_dir = tmp_path / ".helmsman" / "memory"
    memory_dir.mkdir(parents=True)
    (memory_dir / "1_style.json").write_text(
        json.dumps([{"role": "user", "content": "Use tabs"}, {"role": "assistant", "content": "Okay"}]),
        encoding="utf-8",
    )
    agent, _, _, _ = _agent(tmp_path, [], auto_load=True)

    messages = agent.message_log.messages
    assert isinstance(messages[0], SystemMessage)
    assert messages[1:] == [UserMessage(content="Use tabs"), AssistantMessage(content="Okay")]
    assert agent.initialize() == 2


def test_system_prompt_includes_agents_file(tmp_path: Path):
    (tmp_path / "AGENTS.md").write_text("Always run the tests.", encoding="utf-8")

    agent, _, _, _ = _agent(tmp_path, [])

    prompt = agent.message_log.messages[0].content
    assert "<project_specific_instructions>\nAlways run the tests.\n</project_specific_instructions>" in prompt
    assert str(tmp_path.resolve()) in prompt


@pytest.mark.asyncio
async def test_prepare_retry_drops_trailing_reply(tmp_path: Path):
    agent, _, client, _ = _agent(tmp_path, [[text_chunk("first")], [text_chunk("second")]])
    assert agent.prepare_retry() is False

    await agent.process_user_input("question")
    assert agent.prepare_retry() is True
    await agent.process_with_ai()

    roles = [m.role for m in agent.message_log.messages]
    assert roles == ["system", "user", "assistant"]
    assert agent.message_log.messages[-1].content == "second"
    assert client.requests[1][-1] == UserMessage(content="question")


def test_inject_note_and_reset(tmp_path: Path):
    agent, _, _, _ = _agent(tmp_path, [])
    agent.message_log.add_user_message("hi")
    agent.message_log.add_assistant_message("hello")

    assert agent.inject_note("remember the deadline") == 3
    assert agent.message_log.messages[3] == UserMessage(content="remember the deadline")

    agent.reset()
    assert agent.message_log.message_count == 1


@pytest.mark.asyncio
async def test_close_closes_client(tmp_path: Path):
    agent, _, client, _ = _agent(tmp_path, [])

    await agent.close()

    assert client.closed is True


@pytest.mark.asyncio
async def test_streaming_setting_is_passed_to_client(tmp_path: Path):
    agent, _, client, _ = _agent(tmp_path, [[text_chunk("whole reply")]], streaming=False)

    await agent.process_user_input("hi")

    assert client.stream_flags == [False]
    assert agent.message_log.messages[-1] == AssistantMessage(content="whole reply")


@pytest.mark.asyncio
async def test_malformed_server_body_is_recorded_as_ai_error(tmp_path: Path):
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(200, json=[{"unexpected": True}])

    model = ModelConfig(base_url="http://llm.test/v1", model="test-model")
    client = StreamingClient(
        model,
        retry=RetryPolicy(max_retries=0, max_wait=0),
        client=httpx.AsyncClient(transport=httpx.MockTransport(handler)),
    )
    cfg = Config()
    cfg.memory.auto_load = False
    cfg.ui.streaming = False
    ui = FakeUI()
    agent = Agent(
        ui,
        client=client,
        registry=ToolRegistry(base_path=tmp_path, tools_config=ToolsConfig()),
        config=cfg,
        instructions=InstructionLoader(personal_dir=tmp_path / "no_personal"),
        cwd=tmp_path,
        install_signal_handler=False,
    )
    agent.initialize()

    await agent.process_user_input("hi")

    last = agent.message_log.messages[-1]
    assert isinstance(last, AssistantMessage)
    assert last.content.startswith("[AI Error: Unexpected response body")
    assert agent.state.is_processing is False
    await agent.close()
