"""
agent/router.py — Model Router

Chooses which model handles the next turn and whether tools are offered.
Stateless: route() depends only on its arguments and the router config,
so it is safe to call every turn and capability changes take effect
immediately.

Rules (first match wins):
  1. Last message is a tool result          → reasoning model, tools on
  2. Last assistant message has unanswered
     tool calls                             → tool-calling model, tools on
  3. Latest user message looks like a task
     needing tools (keywords / tool names)  → tool-calling model, tools on
  4. Default                                → reasoning model, tools on iff
                                              any tool is offered
"""

from __future__ import annotations

from collections.abc import Mapping, Sequence
from dataclasses import dataclass, replace
from typing import Callable, Optional

from localbot.brain.provider import BaseProvider
from localbot.brain.types import Message, Role, ToolSchema
from localbot.exceptions import ProviderNotFoundError
from localbot.observability.logger import get_logger

log = get_logger(__name__)

# Phrases that suggest the user wants something done rather than discussed
TOOL_KEYWORDS: tuple[str, ...] = (
    # File operations
    "read file", "write file", "edit file", "create file", "delete file",
    "open file", "save file", "show file", "cat ", "list files", "ls ",
    # Commands
    "run ", "execute", "command", "bash", "terminal", "shell",
    # Web
    "search", "fetch", "download", "browse", "website", "url",
    "look up", "find out", "google",
    # Analysis
    "analyze", "check", "verify", "test", "debug",
)


@dataclass
class RouterConfig:
    reasoning_model: str
    tool_calling_model: str
    fallback_model: Optional[str] = None


@dataclass(frozen=True)
class RouteDecision:
    model: str
    reason: str
    use_tools: bool


class ModelRouter:
    """
    Usage:
        router = ModelRouter(
            RouterConfig(reasoning_model="qwen2.5:32b", tool_calling_model="llama3.1:8b"),
            providers={"ollama": ollama},
            model_supports_tools=model_supports_tools,
        )
        decision = router.route(session.messages, registry.to_schemas())
        provider = router.get_provider(decision.model)
    """

    def __init__(
        self,
        config: RouterConfig,
        providers: Mapping[str, BaseProvider],
        model_supports_tools: Callable[[str], bool],
    ):
        self._config = replace(config)
        self._providers = providers
        self._model_supports_tools = model_supports_tools

    # ── Routing ───────────────────────────────────────────────────────────────

    def route(
        self,
        messages: Sequence[Message],
        available_tools: Sequence[ToolSchema],
    ) -> RouteDecision:
        decision = self._decide(messages, available_tools)
        log.debug(
            "router.decision",
            model=decision.model,
            reason=decision.reason,
            use_tools=decision.use_tools,
        )
        return decision

    def _decide(
        self,
        messages: Sequence[Message],
        available_tools: Sequence[ToolSchema],
    ) -> RouteDecision:
        cfg = self._config
        last = messages[-1] if messages else None

        if last is not None and last.role == Role.TOOL:
            return RouteDecision(cfg.reasoning_model, "Processing tool results", True)

        if _has_unresolved_tool_calls(messages):
            return RouteDecision(cfg.tool_calling_model, "Executing tool calls", True)

        user_text = last.content if last is not None and last.role == Role.USER else ""
        if _needs_tools(user_text, available_tools):
            return RouteDecision(cfg.tool_calling_model, "Task likely requires tool use", True)

        return RouteDecision(cfg.reasoning_model, "General reasoning task", len(available_tools) > 0)

    # ── Providers / capabilities ──────────────────────────────────────────────

    def get_provider(self, model: str) -> BaseProvider:
        """
        Find the transport for a model: a provider whose key prefixes or
        occurs in the model name, else the provider matching fallback_model,
        else the first registered provider.
        """
        provider = self._match_provider(model)
        if provider is None and self._config.fallback_model:
            provider = self._match_provider(self._config.fallback_model)
            if provider is not None:
                log.debug(
                    "router.provider_fallback",
                    model=model,
                    fallback_model=self._config.fallback_model,
                    provider=provider.name,
                )
        if provider is None:
            provider = next(iter(self._providers.values()), None)
        if provider is None:
            raise ProviderNotFoundError(model)
        return provider

    def _match_provider(self, model: str) -> Optional[BaseProvider]:
        for name, provider in self._providers.items():
            if model.startswith(name) or name in model:
                return provider
        return None

    def supports_tools(self, model: str) -> bool:
        return self._model_supports_tools(model)

    # ── Config ────────────────────────────────────────────────────────────────

    @property
    def config(self) -> RouterConfig:
        """A copy; mutate through update_config() / set_model()."""
        return replace(self._config)

    def update_config(self, **changes) -> None:
        self._config = replace(self._config, **changes)

    def set_model(self, model: str) -> None:
        """Use one model for reasoning, and for tool calls too if it supports them."""
        changes = {"reasoning_model": model}
        if self._model_supports_tools(model):
            changes["tool_calling_model"] = model
        self.update_config(**changes)
        log.info("router.model_set", model=model, tool_calling_model=self._config.tool_calling_model)


# ─────────────────────────────────────────────────────────────────────────────
# Helpers
# ─────────────────────────────────────────────────────────────────────────────


def _has_unresolved_tool_calls(messages: Sequence[Message]) -> bool:
    """True when the last assistant message asked for tools not yet answered."""
    for idx in range(len(messages) - 1, -1, -1):
        msg = messages[idx]
        if msg.role != Role.ASSISTANT:
            continue
        if not msg.tool_calls:
            return False
        answered = {
            m.tool_call_id for m in messages[idx + 1:] if m.role == Role.TOOL
        }
        return any(tc.id not in answered for tc in msg.tool_calls)
    return False


def _needs_tools(message: str, tools: Sequence[ToolSchema]) -> bool:
    lower = message.lower()
    if not lower:
        return False
    if any(keyword in lower for keyword in TOOL_KEYWORDS):
        return True
    for tool in tools:
        name = tool.function.name.lower()
        if name in lower or name.replace("_", " ") in lower:
            return True
    return False
