"""
tests/unit/test_orchestrator.py — Agent Orchestrator Unit Tests

Drives the Agent against scripted in-memory providers (no network).

Covers:
  - plain streamed answers and event order
  - native tool calls: start/end events, tool messages, looping
  - textual tool calls recovered from the content
  - turn budget exhaustion
  - transport and gateway failures becoming a single error event
  - pinned session models, tool offering policy
  - token usage accounting
  - run() buffering, session API, get_models(), from_settings()

Run with:
    pytest tests/unit/test_orchestrator.py -v
"""

from __future__ import annotations

import json
from typing import Optional

import pytest

from localbot.agent.events import EventType, StreamEvent
from localbot.agent.orchestrator import Agent, RunResult
from localbot.agent.router import RouterConfig
from localbot.brain.provider import BaseProvider
from localbot.brain.types import (
    ChatRequest,
    ChatResponse,
    Role,
    StreamChunk,
    ToolCall,
)
from localbot.config.settings import Settings
from localbot.exceptions import LLMConnectionError
from localbot.tools.registry import ToolRegistry
from localbot.tools.types import ToolResult
from localbot.tracking.tokens import TokenTracker


# ─────────────────────────────────────────────────────────────────────────────
# Fakes
# ─────────────────────────────────────────────────────────────────────────────


class ScriptedProvider(BaseProvider):
    """Replays one list of StreamChunk per request; repeats the last script."""

    def __init__(self, name: str = "ollama", scripts=None, models=None, fail_at: Optional[int] = None):
        self.name = name
        self.scripts = scripts or [[StreamChunk(content="ok"), StreamChunk(done=True)]]
        self.models = models or []
        self.fail_at = fail_at
        self.requests: list[ChatRequest] = []

    async def chat(self, request: ChatRequest) -> ChatResponse:
        raise NotImplementedError

    async def chat_stream(self, request: ChatRequest):
        index = len(self.requests)
        self.requests.append(request)
        if self.fail_at is not None and index == self.fail_at:
            raise LLMConnectionError("backend unreachable", provider=self.name)
        for chunk in self.scripts[min(index, len(self.scripts) - 1)]:
            yield chunk

    async def list_models(self) -> list[str]:
        if isinstance(self.models, Exception):
            raise self.models
        return list(self.models)


class RecordingGateway:
    def __init__(self, content: str = "tool output"):
        self.content = content
        self.calls: list[tuple[ToolCall, str, str]] = []

    async def execute(self, tool_call: ToolCall, session_id: str, model: str) -> ToolResult:
        self.calls.append((tool_call, session_id, model))
        return ToolResult.success(tool_call.id, tool_call.function.name, self.content)

    def get_stats(self):
        return {"total": len(self.calls)}


class FaultyGateway(RecordingGateway):
    """Raises for one tool name instead of returning a ToolResult."""

    def __init__(self, fail_on: str):
        super().__init__()
        self.fail_on = fail_on

    async def execute(self, tool_call: ToolCall, session_id: str, model: str) -> ToolResult:
        if tool_call.function.name == self.fail_on:
            raise RuntimeError("gateway crashed")
        return await super().execute(tool_call, session_id, model)


def _make_registry(*names: str) -> ToolRegistry:
    registry = ToolRegistry()
    for name in names:
        async def handler(**kwargs):
            return "ok"

        registry.register(
            name=name,
            description=f"Test tool: {name}",
            parameters={
                "type": "object",
                "properties": {"path": {"type": "string"}},
                "required": [],
            },
        )(handler)
    return registry


def _make_agent(provider=None, registry=None, gateway=None, **kwargs) -> Agent:
    provider = provider or ScriptedProvider()
    kwargs.setdefault("model_supports_tools", lambda m: True)
    return Agent(
        providers={provider.name: provider},
        registry=registry,
        gateway=gateway,
        **kwargs,
    )


async def _collect(agent: Agent, text: str, session_id: str = "s1") -> list[StreamEvent]:
    return [e async for e in agent.run_stream(text, session_id=session_id)]


def _text(chunks: list[str], **done_kwargs) -> list[StreamChunk]:
    return [StreamChunk(content=c) for c in chunks] + [StreamChunk(done=True, **done_kwargs)]


def _native_call(name: str, args: dict, call_id: str = "call_1") -> list[StreamChunk]:
    return [StreamChunk(done=True, tool_calls=[ToolCall.create(name, args, id=call_id)])]


# ─────────────────────────────────────────────────────────────────────────────
# Plain answers
# ─────────────────────────────────────────────────────────────────────────────


class TestPlainAnswer:
    async def test_content_chunks_then_done(self):
        provider = ScriptedProvider(scripts=[_text(["Hel", "lo", "!"])])
        agent = _make_agent(provider)

        events = await _collect(agent, "hi")

        assert events[0].type == EventType.CONTENT
        assert events[0].content == ""
        assert events[0].model == "llama3.1:8b"
        assert [e.content for e in events[1:4]] == ["Hel", "lo", "!"]
        assert events[-1].type == EventType.DONE
        assert len(events) == 5

    async def test_exactly_one_terminal_event(self):
        agent = _make_agent(ScriptedProvider(scripts=[_text(["a"])]))
        events = await _collect(agent, "hi")
        assert sum(1 for e in events if e.is_terminal) == 1
        assert events[-1].is_terminal

    async def test_history_holds_user_then_assistant(self):
        agent = _make_agent(ScriptedProvider(scripts=[_text(["Hel", "lo"])]))
        await _collect(agent, "hi")

        history = agent.get_history("s1")
        assert [m.role for m in history] == [Role.USER, Role.ASSISTANT]
        assert history[1].content == "Hello"
        assert history[1].tool_calls is None

    async def test_system_prompt_prepended_not_stored(self):
        provider = ScriptedProvider()
        agent = _make_agent(provider, system_prompt="Be terse.")
        await _collect(agent, "hi")

        sent = provider.requests[0].messages
        assert sent[0].role == Role.SYSTEM
        assert sent[0].content == "Be terse."
        assert all(m.role != Role.SYSTEM for m in agent.get_history("s1"))

    async def test_default_system_prompt_lists_tools(self):
        agent = _make_agent(registry=_make_registry("read_file"), agent_name="Scout")
        assert "Scout" in agent.system_prompt
        assert "- read_file: Test tool: read_file" in agent.system_prompt

    async def test_sessions_are_isolated(self):
        agent = _make_agent()
        await _collect(agent, "one", session_id="a")
        await _collect(agent, "two", session_id="b")
        assert agent.get_history("a")[0].content == "one"
        assert agent.get_history("b")[0].content == "two"
        assert len(agent.list_sessions()) == 2

    async def test_generated_session_id(self):
        agent = _make_agent()
        events = [e async for e in agent.run_stream("hi")]
        assert events[-1].type == EventType.DONE
        assert len(agent.list_sessions()) == 1


# ─────────────────────────────────────────────────────────────────────────────
# Tool calls
# ─────────────────────────────────────────────────────────────────────────────


class TestNativeToolCalls:
    async def test_tool_round_then_answer(self):
        provider = ScriptedProvider(scripts=[
            _native_call("read_file", {"path": "a.txt"}),
            _text(["It says A."]),
        ])
        gateway = RecordingGateway("A")
        agent = _make_agent(provider, registry=_make_registry("read_file"), gateway=gateway)

        events = await _collect(agent, "read a.txt")
        types = [e.type for e in events]

        assert types == [
            EventType.CONTENT,          # model hint
            EventType.TOOL_START,
            EventType.TOOL_END,
            EventType.CONTENT,          # model hint
            EventType.CONTENT,
            EventType.DONE,
        ]
        start, end = events[1], events[2]
        assert start.tool_call.id == "call_1"
        assert end.tool_call.id == "call_1"
        assert end.tool_result == "A"

        assert len(gateway.calls) == 1
        call, session_id, _ = gateway.calls[0]
        assert call.function.name == "read_file"
        assert session_id == "s1"

        history = agent.get_history("s1")
        assert [m.role for m in history] == [Role.USER, Role.ASSISTANT, Role.TOOL, Role.ASSISTANT]
        assert history[1].tool_calls[0].id == "call_1"
        assert history[2].tool_call_id == "call_1"
        assert history[2].name == "read_file"
        assert history[2].content == "A"

    async def test_calls_run_in_order(self):
        calls = [
            ToolCall.create("read_file", {"path": "1"}, id="c1"),
            ToolCall.create("read_file", {"path": "2"}, id="c2"),
        ]
        provider = ScriptedProvider(scripts=[
            [StreamChunk(done=True, tool_calls=calls)],
            _text(["done"]),
        ])
        gateway = RecordingGateway()
        agent = _make_agent(provider, registry=_make_registry("read_file"), gateway=gateway)

        events = await _collect(agent, "read both")

        assert [c.id for c, _, _ in gateway.calls] == ["c1", "c2"]
        tool_events = [(e.type, e.tool_call.id) for e in events if e.tool_call is not None]
        assert tool_events == [
            (EventType.TOOL_START, "c1"),
            (EventType.TOOL_END, "c1"),
            (EventType.TOOL_START, "c2"),
            (EventType.TOOL_END, "c2"),
        ]

    async def test_tool_errors_are_fed_back(self):
        provider = ScriptedProvider(scripts=[
            _native_call("missing_tool", {}),
            _text(["Sorry."]),
        ])
        agent = _make_agent(provider, registry=_make_registry("read_file"))

        events = await _collect(agent, "do it")
        end = next(e for e in events if e.type == EventType.TOOL_END)
        assert end.tool_result.startswith("Error: Unknown tool")
        assert events[-1].type == EventType.DONE

    async def test_second_request_includes_tool_result(self):
        provider = ScriptedProvider(scripts=[
            _native_call("read_file", {"path": "a"}),
            _text(["ok"]),
        ])
        agent = _make_agent(provider, registry=_make_registry("read_file"), gateway=RecordingGateway("A"))
        await _collect(agent, "read a")

        second = provider.requests[1].messages
        assert second[-1].role == Role.TOOL
        assert second[-1].content == "A"


class TestTextualToolCalls:
    async def test_calls_recovered_from_content(self):
        payload = json.dumps({"name": "read_file", "arguments": {"path": "a"}})
        provider = ScriptedProvider(scripts=[
            _text(["Let me look. ", payload]),
            _text(["Done."]),
        ])
        gateway = RecordingGateway()
        agent = _make_agent(provider, registry=_make_registry("read_file"), gateway=gateway)

        events = await _collect(agent, "what is in a?")

        assert len(gateway.calls) == 1
        assert gateway.calls[0][0].function.name == "read_file"
        assert gateway.calls[0][0].id
        assistant = agent.get_history("s1")[1]
        assert assistant.content == "Let me look."
        assert assistant.tool_calls[0].function.name == "read_file"
        # the raw text was already streamed before it was interpreted
        streamed = "".join(e.content or "" for e in events if e.type == EventType.CONTENT)
        assert payload in streamed

    async def test_native_calls_take_precedence(self):
        text_call = json.dumps({"name": "read_file", "arguments": {"path": "text"}})
        native = ToolCall.create("read_file", {"path": "native"}, id="n1")
        provider = ScriptedProvider(scripts=[
            [StreamChunk(content=text_call), StreamChunk(done=True, tool_calls=[native])],
            _text(["ok"]),
        ])
        gateway = RecordingGateway()
        agent = _make_agent(provider, registry=_make_registry("read_file"), gateway=gateway)

        await _collect(agent, "read")

        assert [c.id for c, _, _ in gateway.calls] == ["n1"]
        assert agent.get_history("s1")[1].content == text_call

    async def test_parsing_can_be_disabled(self):
        payload = json.dumps({"name": "read_file", "arguments": {"path": "a"}})
        provider = ScriptedProvider(scripts=[_text([payload])])
        gateway = RecordingGateway()
        agent = _make_agent(
            provider,
            registry=_make_registry("read_file"),
            gateway=gateway,
            parse_text_tool_calls=False,
        )

        events = await _collect(agent, "read a")
        assert gateway.calls == []
        assert events[-1].type == EventType.DONE

    async def test_no_catalog_means_no_parsing(self):
        payload = json.dumps({"name": "read_file", "arguments": {"path": "a"}})
        provider = ScriptedProvider(scripts=[_text([payload])])
        gateway = RecordingGateway()
        agent = _make_agent(provider, gateway=gateway)

        await _collect(agent, "read a")
        assert gateway.calls == []
        assert agent.get_history("s1")[1].content == payload


# ─────────────────────────────────────────────────────────────────────────────
# Budget and failures
# ─────────────────────────────────────────────────────────────────────────────


class TestTurnBudget:
    async def test_max_turns_one_with_tool_call(self):
        provider = ScriptedProvider(scripts=[_native_call("read_file", {"path": "a"})])
        gateway = RecordingGateway()
        agent = _make_agent(provider, registry=_make_registry("read_file"), gateway=gateway, max_turns=1)

        events = await _collect(agent, "read a")

        assert len(provider.requests) == 1
        assert len(gateway.calls) == 1
        errors = [e for e in events if e.type == EventType.ERROR]
        assert len(errors) == 1
        assert errors[0].error == "Maximum turns (1) exceeded"
        assert events[-1] is errors[0]
        assert not any(e.type == EventType.DONE for e in events)

    async def test_endless_tool_calls_stop_at_budget(self):
        provider = ScriptedProvider(scripts=[_native_call("read_file", {"path": "a"})])
        agent = _make_agent(
            provider, registry=_make_registry("read_file"), gateway=RecordingGateway(), max_turns=3
        )
        events = await _collect(agent, "loop")
        assert len(provider.requests) == 3
        assert events[-1].error == "Maximum turns (3) exceeded"

    def test_invalid_max_turns(self):
        with pytest.raises(ValueError):
            _make_agent(max_turns=0)


class TestFailures:
    async def test_transport_error_becomes_error_event(self):
        provider = ScriptedProvider(fail_at=0)
        agent = _make_agent(provider)

        events = await _collect(agent, "hi")

        assert events[-1].type == EventType.ERROR
        assert "backend unreachable" in events[-1].error
        assert sum(1 for e in events if e.is_terminal) == 1
        history = agent.get_history("s1")
        assert [m.role for m in history] == [Role.USER]

    async def test_failure_after_tool_round_keeps_earlier_messages(self):
        provider = ScriptedProvider(
            scripts=[_native_call("read_file", {"path": "a"})], fail_at=1
        )
        agent = _make_agent(provider, registry=_make_registry("read_file"), gateway=RecordingGateway())

        events = await _collect(agent, "read a")

        assert events[-1].type == EventType.ERROR
        assert [m.role for m in agent.get_history("s1")] == [Role.USER, Role.ASSISTANT, Role.TOOL]

    async def test_gateway_fault_stops_after_tool_start(self):
        provider = ScriptedProvider(scripts=[_native_call("read_file", {"path": "a"})])
        agent = _make_agent(
            provider, registry=_make_registry("read_file"), gateway=FaultyGateway("read_file")
        )

        events = await _collect(agent, "read a")

        assert [e.type for e in events] == [
            EventType.CONTENT, EventType.TOOL_START, EventType.ERROR,
        ]
        assert events[0].model is not None
        assert "gateway crashed" in events[-1].error
        assert sum(1 for e in events if e.is_terminal) == 1

    async def test_gateway_fault_answers_every_pending_call(self):
        calls = [
            ToolCall.create("list_dir", {"path": "."}, id="call_a"),
            ToolCall.create("read_file", {"path": "a"}, id="call_b"),
            ToolCall.create("list_dir", {"path": "b"}, id="call_c"),
        ]
        provider = ScriptedProvider(scripts=[[StreamChunk(done=True, tool_calls=calls)]])
        agent = _make_agent(
            provider,
            registry=_make_registry("list_dir", "read_file"),
            gateway=FaultyGateway("read_file"),
        )

        await _collect(agent, "look around")

        history = agent.get_history("s1")
        assert [m.role for m in history] == [
            Role.USER, Role.ASSISTANT, Role.TOOL, Role.TOOL, Role.TOOL,
        ]
        assert [m.tool_call_id for m in history[2:]] == ["call_a", "call_b", "call_c"]
        assert history[2].content == "tool output"
        assert history[3].content == "Error: gateway crashed"
        assert history[4].content == "Error: gateway crashed"

    async def test_session_resumes_after_gateway_fault(self):
        provider = ScriptedProvider(
            scripts=[_native_call("read_file", {"path": "a"}), _text(["fine"])]
        )
        agent = _make_agent(
            provider, registry=_make_registry("read_file"), gateway=FaultyGateway("read_file")
        )

        await _collect(agent, "read a")
        events = await _collect(agent, "again")

        assert events[-1].type == EventType.DONE
        roles = [m.role for m in provider.requests[-1].messages]
        assert roles == [Role.SYSTEM, Role.USER, Role.ASSISTANT, Role.TOOL, Role.USER]

    async def test_no_providers(self):
        agent = Agent(providers={}, model_supports_tools=lambda m: True)
        events = await _collect(agent, "hi")
        assert events[-1].type == EventType.ERROR
        assert "No provider registered" in events[-1].error


# ─────────────────────────────────────────────────────────────────────────────
# Model selection and tool offering
# ─────────────────────────────────────────────────────────────────────────────


class TestModelSelection:
    async def test_router_choice_is_recorded(self):
        provider = ScriptedProvider()
        agent = _make_agent(
            provider,
            router_config=RouterConfig(reasoning_model="qwen2.5:32b", tool_calling_model="llama3.1:8b"),
        )
        await _collect(agent, "tell me a joke")
        assert provider.requests[0].model == "qwen2.5:32b"
        assert agent.get_session("s1").model == "qwen2.5:32b"

    async def test_pinned_model_overrides_router(self):
        provider = ScriptedProvider()
        agent = _make_agent(provider)
        agent.set_session_model("s1", "mistral:7b")

        events = await _collect(agent, "search the web")

        assert provider.requests[0].model == "mistral:7b"
        assert events[0].model == "mistral:7b"

    async def test_unpinning_returns_to_router(self):
        provider = ScriptedProvider()
        agent = _make_agent(provider)
        agent.set_session_model("s1", "mistral:7b")
        agent.set_session_model("s1", None)

        await _collect(agent, "hello")
        assert provider.requests[0].model == "llama3.1:8b"

    async def test_tools_offered_when_supported(self):
        provider = ScriptedProvider()
        agent = _make_agent(provider, registry=_make_registry("read_file"))
        await _collect(agent, "hello")
        assert [t.function.name for t in provider.requests[0].tools] == ["read_file"]

    async def test_tools_withheld_when_unsupported(self):
        provider = ScriptedProvider()
        agent = _make_agent(
            provider, registry=_make_registry("read_file"), model_supports_tools=lambda m: False
        )
        await _collect(agent, "hello")
        assert provider.requests[0].tools is None

    async def test_no_tools_when_catalog_empty(self):
        provider = ScriptedProvider()
        agent = _make_agent(provider)
        await _collect(agent, "read file x")
        assert provider.requests[0].tools is None


# ─────────────────────────────────────────────────────────────────────────────
# Usage accounting
# ─────────────────────────────────────────────────────────────────────────────


class TestTokenUsage:
    async def test_usage_summed_over_requests(self):
        provider = ScriptedProvider(scripts=[
            [StreamChunk(done=True, tool_calls=[ToolCall.create("read_file", {}, id="c1")],
                         prompt_tokens=100, completion_tokens=10)],
            _text(["ok"], prompt_tokens=150, completion_tokens=20),
        ])
        tracker = TokenTracker()
        agent = _make_agent(
            provider, registry=_make_registry("read_file"), gateway=RecordingGateway(),
            token_tracker=tracker,
        )

        events = await _collect(agent, "read")
        usage = events[-1].token_usage

        assert usage.input == 250
        assert usage.output == 30
        assert usage.total == 280
        assert usage.context_percentage is not None
        stats = tracker.get_session_stats("s1")
        assert stats.request_count == 2
        assert stats.total_tokens == 280

    async def test_no_usage_reported(self):
        agent = _make_agent()
        events = await _collect(agent, "hi")
        assert events[-1].token_usage is None
        assert agent.token_tracker.get_session_stats("s1") is None


# ─────────────────────────────────────────────────────────────────────────────
# Buffering entry point and introspection
# ─────────────────────────────────────────────────────────────────────────────


class TestRun:
    async def test_run_concatenates_content(self):
        agent = _make_agent(ScriptedProvider(scripts=[_text(["Hel", "lo"])]))
        result = await agent.run("hi", session_id="s1")
        assert isinstance(result, RunResult)
        assert result.content == "Hello"
        assert result.ok
        assert result.tool_calls == []

    async def test_run_collects_tool_calls(self):
        provider = ScriptedProvider(scripts=[
            _native_call("read_file", {"path": "a"}),
            _text(["Done."]),
        ])
        agent = _make_agent(provider, registry=_make_registry("read_file"), gateway=RecordingGateway())
        result = await agent.run("read a")
        assert [tc.id for tc in result.tool_calls] == ["call_1"]
        assert result.content == "Done."

    async def test_run_reports_error(self):
        agent = _make_agent(ScriptedProvider(fail_at=0))
        result = await agent.run("hi")
        assert not result.ok
        assert "backend unreachable" in result.error


class TestIntrospection:
    async def test_get_models_skips_failures(self):
        good = ScriptedProvider(name="ollama", models=["llama3.1:8b", "qwen2.5:7b"])
        also = ScriptedProvider(name="litellm", models=["qwen2.5:7b", "gpt-4o"])
        bad = ScriptedProvider(name="broken", models=LLMConnectionError("down"))
        agent = Agent(providers={"ollama": good, "broken": bad, "litellm": also})

        assert await agent.get_models() == ["llama3.1:8b", "qwen2.5:7b", "gpt-4o"]

    def test_single_provider_accepted(self):
        agent = Agent(providers=ScriptedProvider(name="solo"))
        assert agent.router.get_provider("anything").name == "solo"

    def test_get_tools(self):
        agent = _make_agent(registry=_make_registry("a_tool", "b_tool"))
        assert [t.function.name for t in agent.get_tools()] == ["a_tool", "b_tool"]

    async def test_get_stats_from_gateway(self):
        gateway = RecordingGateway()
        agent = _make_agent(gateway=gateway)
        assert agent.get_stats() == {"total": 0}

    async def test_clear_session(self):
        agent = _make_agent()
        await _collect(agent, "hi")
        agent.clear_session("s1")
        assert agent.get_history("s1") == []
        assert agent.get_session("s1").id == "s1"

    def test_unknown_session_history_is_empty(self):
        assert _make_agent().get_history("nope") == []


class TestFromSettings:
    def test_builds_from_settings(self):
        settings = Settings(
            agent={"name": "Scout", "max_turns": 4, "default_model": "qwen2.5:7b"},
            router={"reasoning_model": "qwen2.5:32b", "tool_calling_model": "qwen2.5:7b"},
        )
        provider = ScriptedProvider()
        agent = Agent.from_settings(settings, providers={"ollama": provider})

        assert agent.max_turns == 4
        assert agent.router.config.reasoning_model == "qwen2.5:32b"
        assert "Scout" in agent.system_prompt

    def test_builds_providers_from_config(self):
        settings = Settings(providers=[
            {"name": "ollama", "kind": "ollama"},
            {"name": "litellm", "kind": "openai", "base_url": "http://localhost:4000/v1"},
        ])
        agent = Agent.from_settings(settings)
        assert agent.router.get_provider("litellm/gpt-4o").name == "litellm"
        assert agent.router.get_provider("llama3.1:8b").name == "ollama"
