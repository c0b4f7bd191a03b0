"""
agent/orchestrator.py — Agent Orchestrator

The heart of LocalBot. Drives the route → request → interpret →
(invoke tools → append results → repeat) loop for each user message.

For each user message the agent:
    1. Appends it to the session history
    2. Asks the ModelRouter which model handles the turn
    3. Streams a completion from that model's provider, forwarding content
    4. Takes tool calls from the transport, or from the text when the
       transport has none (Response Interpreter)
    5. Runs each tool call in order through the ToolGateway, appends the
       results, and loops; stops with `done` when no tool calls remain

run_stream() is the single implementation; run() drains it.

Usage:
    agent = Agent(providers={"ollama": OllamaProvider()}, registry=registry)

    async for event in agent.run_stream("What's in ./notes?", session_id="abc"):
        ...

    result = await agent.run("Summarise notes.md", session_id="abc")
"""

from __future__ import annotations

import time
from collections.abc import AsyncIterator, Mapping
from dataclasses import dataclass, field
from datetime import date
from typing import Any, Callable, Optional, Union

from localbot.agent.events import EventType, StreamEvent, TokenUsageInfo
from localbot.agent.parser import parse_response
from localbot.agent.router import ModelRouter, RouteDecision, RouterConfig
from localbot.agent.session import Session, new_session_id
from localbot.brain import ProviderFactory
from localbot.brain.capabilities import model_supports_tools as default_model_supports_tools
from localbot.brain.provider import BaseProvider
from localbot.brain.types import ChatRequest, Message, ToolCall, ToolSchema, generate_tool_call_id
from localbot.observability.logger import bind_session, bind_turn, clear_session, get_logger
from localbot.tools.executor import ToolExecutor
from localbot.tools.registry import ToolRegistry
from localbot.tools.types import ToolGateway
from localbot.tracking.tokens import TokenTracker

log = get_logger(__name__)

DEFAULT_MAX_TURNS = 10
DEFAULT_MODEL = "llama3.1:8b"


@dataclass
class RunResult:
    """What run() returns: concatenated content, the calls made, and any error."""
    content: str = ""
    tool_calls: list[ToolCall] = field(default_factory=list)
    error: Optional[str] = None

    @property
    def ok(self) -> bool:
        return self.error is None


@dataclass
class _TurnState:
    """Accumulators for one loop iteration. Rebuilt at the top of every iteration."""
    content_parts: list[str] = field(default_factory=list)
    tool_calls: list[ToolCall] = field(default_factory=list)
    prompt_tokens: Optional[int] = None
    completion_tokens: Optional[int] = None
    unanswered: list[ToolCall] = field(default_factory=list)

    @property
    def content(self) -> str:
        return "".join(self.content_parts)

    @property
    def usage_reported(self) -> bool:
        return self.prompt_tokens is not None or self.completion_tokens is not None


@dataclass
class _UsageTotals:
    """Token usage summed over every backend request of one run_stream() call."""
    input: int = 0
    output: int = 0
    context_percentage: Optional[float] = None
    reported: bool = False

    def to_info(self) -> Optional[TokenUsageInfo]:
        if not self.reported:
            return None
        return TokenUsageInfo(
            input=self.input,
            output=self.output,
            total=self.input + self.output,
            context_percentage=self.context_percentage,
        )


class Agent:
    """
    Stateful per-session coordinator.

    Inject all dependencies via constructor; use from_settings() for
    convenience when wiring up the application. Several Agent instances
    never share state unless handed the same collaborators.
    """

    def __init__(
        self,
        providers: Union[Mapping[str, BaseProvider], BaseProvider],
        registry: Optional[ToolRegistry] = None,
        gateway: Optional[ToolGateway] = None,
        system_prompt: Optional[str] = None,
        max_turns: int = DEFAULT_MAX_TURNS,
        default_model: str = DEFAULT_MODEL,
        router_config: Optional[RouterConfig] = None,
        model_supports_tools: Optional[Callable[[str], bool]] = None,
        token_tracker: Optional[TokenTracker] = None,
        parse_text_tool_calls: bool = True,
        agent_name: str = "LocalBot",
    ):
        if max_turns < 1:
            raise ValueError("max_turns must be >= 1")

        if isinstance(providers, BaseProvider):
            providers = {providers.name: providers}
        self._providers: dict[str, BaseProvider] = dict(providers)
        self._registry = registry if registry is not None else ToolRegistry()
        self._gateway: ToolGateway = gateway if gateway is not None else ToolExecutor(self._registry)
        self._system_prompt = system_prompt
        self._max_turns = max_turns
        self._default_model = default_model
        self._agent_name = agent_name
        self._parse_text_tool_calls = parse_text_tool_calls
        self._tokens = token_tracker if token_tracker is not None else TokenTracker()
        self._supports_tools = model_supports_tools or default_model_supports_tools
        self._router = ModelRouter(
            config=router_config or RouterConfig(
                reasoning_model=default_model,
                tool_calling_model=default_model,
            ),
            providers=self._providers,
            model_supports_tools=self._supports_tools,
        )
        self._sessions: dict[str, Session] = {}

    # ─────────────────────────────────────────────────────────────────────────
    # Public: conversation entry points
    # ─────────────────────────────────────────────────────────────────────────

    async def run_stream(
        self,
        user_message: str,
        session_id: Optional[str] = None,
        user_id: str = "default",
    ) -> AsyncIterator[StreamEvent]:
        """
        Process one user message, yielding events as they happen.

        Always ends with exactly one `done` or `error` event. To abort,
        stop iterating; no rollback of tool effects is attempted.
        """
        session = self.get_session(session_id or new_session_id(), user_id)
        bind_session(session.id, session.user_id)
        try:
            async for event in self._loop(session, user_message):
                yield event
        finally:
            clear_session()

    async def run(
        self,
        user_message: str,
        session_id: Optional[str] = None,
        user_id: str = "default",
    ) -> RunResult:
        """Buffering form of run_stream()."""
        result = RunResult()
        parts: list[str] = []
        async for event in self.run_stream(user_message, session_id, user_id):
            if event.type == EventType.CONTENT and event.content:
                parts.append(event.content)
            elif event.type == EventType.TOOL_START and event.tool_call is not None:
                result.tool_calls.append(event.tool_call)
            elif event.type == EventType.ERROR:
                result.error = event.error
        result.content = "".join(parts)
        return result

    # ─────────────────────────────────────────────────────────────────────────
    # Core loop
    # ─────────────────────────────────────────────────────────────────────────

    async def _loop(self, session: Session, user_message: str) -> AsyncIterator[StreamEvent]:
        session.append(Message.user(user_message))

        tools = self._registry.to_schemas()
        totals = _UsageTotals()
        t0 = time.monotonic()
        turn = 0

        log.info(
            "agent.turn_start",
            session_id=session.id,
            user_message=user_message[:120],
            tools=len(tools),
        )

        while turn < self._max_turns:
            turn += 1
            state = _TurnState()
            try:
                decision = self._router.route(session.messages, tools)
                model = self._select_model(session, decision)
                bind_turn(turn, model)

                yield StreamEvent.chunk("", model=model)

                request = self._build_request(session, model, decision, tools)
                provider = self._router.get_provider(model)
                log.debug(
                    "agent.request",
                    provider=provider.name,
                    reason=decision.reason,
                    tools_offered=len(request.tools or []),
                )

                async for chunk in provider.chat_stream(request):
                    if chunk.content:
                        state.content_parts.append(chunk.content)
                        yield StreamEvent.chunk(chunk.content)
                    if chunk.tool_calls:
                        state.tool_calls = list(chunk.tool_calls)
                    if chunk.prompt_tokens is not None:
                        state.prompt_tokens = chunk.prompt_tokens
                    if chunk.completion_tokens is not None:
                        state.completion_tokens = chunk.completion_tokens

                self._record_usage(session, model, state, totals)
                content, tool_calls = self._finalise(state, tools)
                session.append(Message.assistant(content, tool_calls=tool_calls))

                if tool_calls:
                    state.unanswered = list(tool_calls)
                    for tc in tool_calls:
                        yield StreamEvent.tool_start(tc)
                        result = await self._gateway.execute(tc, session.id, model)
                        yield StreamEvent.tool_end(tc, result.content)
                        session.append(
                            Message.tool(result.content, tool_call_id=tc.id, name=tc.function.name)
                        )
                        state.unanswered.pop(0)
                    continue

                log.info(
                    "agent.turn_done",
                    session_id=session.id,
                    turns=turn,
                    ms=round((time.monotonic() - t0) * 1000),
                )
                yield StreamEvent.done(totals.to_info())
                return

            except Exception as e:
                log.error(
                    "agent.turn_error",
                    session_id=session.id,
                    turn=turn,
                    error=str(e),
                    error_type=type(e).__name__,
                    exc_info=True,
                )
                # Every requested call needs a tool message before the next user turn
                for tc in state.unanswered:
                    session.append(
                        Message.tool(f"Error: {e}", tool_call_id=tc.id, name=tc.function.name)
                    )
                yield StreamEvent.failure(str(e) or type(e).__name__)
                return

        log.warning("agent.max_turns_exceeded", session_id=session.id, max_turns=self._max_turns)
        yield StreamEvent.failure(f"Maximum turns ({self._max_turns}) exceeded")

    def _select_model(self, session: Session, decision: RouteDecision) -> str:
        model = session.model if session.model_pinned and session.model else decision.model
        session.model = model
        return model

    def _build_request(
        self,
        session: Session,
        model: str,
        decision: RouteDecision,
        tools: list[ToolSchema],
    ) -> ChatRequest:
        offer_tools = bool(tools) and decision.use_tools and self._router.supports_tools(model)
        return ChatRequest(
            model=model,
            messages=[Message.system(self.system_prompt), *session.messages],
            tools=tools if offer_tools else None,
            stream=True,
        )

    def _finalise(
        self, state: _TurnState, tools: list[ToolSchema]
    ) -> tuple[str, list[ToolCall]]:
        """Settle the assistant content and tool calls for this iteration."""
        content = state.content
        tool_calls = state.tool_calls

        # Transport-native calls win; the text is only scanned when there are none
        if not tool_calls and self._parse_text_tool_calls and tools and content:
            parsed = parse_response(content, tools)
            if parsed.tool_calls:
                log.debug(
                    "agent.text_tool_calls",
                    count=len(parsed.tool_calls),
                    tools=[tc.function.name for tc in parsed.tool_calls],
                )
                content = parsed.content
                tool_calls = parsed.tool_calls

        tool_calls = [
            tc if tc.id else tc.model_copy(update={"id": generate_tool_call_id()})
            for tc in tool_calls
        ]
        return content, tool_calls

    def _record_usage(
        self, session: Session, model: str, state: _TurnState, totals: _UsageTotals
    ) -> None:
        if not state.usage_reported:
            return
        usage = self._tokens.record_usage(
            session.id,
            state.prompt_tokens or 0,
            state.completion_tokens or 0,
            model=model,
        )
        totals.input += usage.input
        totals.output += usage.output
        totals.context_percentage = usage.context_percentage
        totals.reported = True

    # ─────────────────────────────────────────────────────────────────────────
    # Sessions
    # ─────────────────────────────────────────────────────────────────────────

    def get_session(self, session_id: str, user_id: str = "default") -> Session:
        """Return the session, creating it on first reference."""
        session = self._sessions.get(session_id)
        if session is None:
            session = Session(id=session_id, user_id=user_id, model=self._default_model)
            self._sessions[session_id] = session
            log.debug("session.created", session_id=session_id, user_id=user_id)
        return session

    def clear_session(self, session_id: str) -> None:
        session = self._sessions.get(session_id)
        if session is not None:
            session.clear()
            log.debug("session.cleared", session_id=session_id)

    def set_session_model(self, session_id: str, model: Optional[str]) -> None:
        """Pin a model for a session; None hands the choice back to the router."""
        session = self.get_session(session_id)
        if model:
            session.model = model
            session.model_pinned = True
        else:
            session.model_pinned = False
        session.touch()
        log.info("session.model_set", session_id=session_id, model=model)

    def get_history(self, session_id: str) -> list[Message]:
        session = self._sessions.get(session_id)
        return list(session.messages) if session is not None else []

    def list_sessions(self) -> list[Session]:
        return list(self._sessions.values())

    # ─────────────────────────────────────────────────────────────────────────
    # Introspection
    # ─────────────────────────────────────────────────────────────────────────

    @property
    def system_prompt(self) -> str:
        return self._system_prompt or self._default_system_prompt()

    @property
    def router(self) -> ModelRouter:
        return self._router

    @property
    def token_tracker(self) -> TokenTracker:
        return self._tokens

    @property
    def max_turns(self) -> int:
        return self._max_turns

    async def get_models(self) -> list[str]:
        """Every model any provider serves. Unreachable providers are skipped."""
        models: list[str] = []
        for name, provider in self._providers.items():
            try:
                names = await provider.list_models()
            except Exception as e:
                log.warning("agent.list_models_failed", provider=name, error=str(e))
                continue
            models.extend(m for m in names if m not in models)
        return models

    def get_tools(self) -> list[ToolSchema]:
        return self._registry.to_schemas()

    def get_stats(self) -> dict[str, Any]:
        get_stats = getattr(self._gateway, "get_stats", None)
        return get_stats() if callable(get_stats) else {}

    def _default_system_prompt(self) -> str:
        return (
            f"You are {self._agent_name}, a helpful AI assistant with access to various tools.\n"
            "\n"
            "You can use tools to help accomplish tasks. When you need to use a tool, "
            "you'll make a tool call and receive the results.\n"
            "\n"
            "Available tools:\n"
            f"{self._registry.get_summary()}\n"
            "\n"
            "Guidelines:\n"
            "- Be concise and helpful\n"
            "- Use tools when they would help accomplish the task\n"
            "- Explain what you're doing when using tools\n"
            "- If a tool fails, try to handle the error gracefully\n"
            "- For file operations, prefer reading before editing\n"
            "- For commands, explain what will happen before running them\n"
            "\n"
            f"Current date: {date.today().isoformat()}"
        )

    # ─────────────────────────────────────────────────────────────────────────
    # Factory
    # ─────────────────────────────────────────────────────────────────────────

    @classmethod
    def from_settings(
        cls,
        settings,
        registry: Optional[ToolRegistry] = None,
        providers: Optional[Mapping[str, BaseProvider]] = None,
        gateway: Optional[ToolGateway] = None,
        token_tracker: Optional[TokenTracker] = None,
    ) -> "Agent":
        """Create an Agent from the LocalBot Settings object."""
        registry = registry if registry is not None else ToolRegistry()
        if providers is None:
            providers = ProviderFactory.from_settings(settings)
        if gateway is None:
            gateway = ToolExecutor(
                registry,
                default_timeout=settings.tools.default_timeout_seconds,
                max_result_chars=settings.tools.max_result_chars,
            )
        router_cfg = settings.router
        return cls(
            providers=providers,
            registry=registry,
            gateway=gateway,
            system_prompt=settings.agent.system_prompt,
            max_turns=settings.agent.max_turns,
            default_model=settings.agent.default_model,
            router_config=RouterConfig(
                reasoning_model=router_cfg.reasoning_model,
                tool_calling_model=router_cfg.tool_calling_model,
                fallback_model=router_cfg.fallback_model,
            ),
            token_tracker=token_tracker,
            parse_text_tool_calls=settings.agent.parse_text_tool_calls,
            agent_name=settings.agent.name,
        )
