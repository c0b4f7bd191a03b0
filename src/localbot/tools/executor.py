"""
tools/executor.py — Tool Executor

The stock ToolGateway. Every tool call the agent dispatches is routed
through here.

Flow:
  agent tool_call → ToolExecutor.execute()
    → Registry lookup (is tool registered?)
    → Argument decoding (JSON text → dict)
    → Schema validation (validate_tool_call)
    → Confirmation gate (requires_confirmation tools)
    → Handler execution (async, with timeout)
    → ToolResult (success or error text)
    → Invocation history
"""

from __future__ import annotations

import asyncio
import json
import time
from collections.abc import Awaitable
from typing import Any, Callable, Optional

from localbot.agent.parser import validate_tool_call
from localbot.brain.types import ToolCall
from localbot.observability.logger import get_logger
from localbot.tools.registry import ToolRegistry
from localbot.tools.types import RegisteredTool, ToolInvocation, ToolResult

log = get_logger(__name__)

# Max output size fed back to the model; longer results are truncated
MAX_RESULT_CHARS = 8_000

DEFAULT_TIMEOUT_SECONDS = 60.0

# Invocations kept for get_history() / get_stats(); oldest dropped first
HISTORY_LIMIT = 1_000

ConfirmationHandler = Callable[[RegisteredTool, dict[str, Any]], Awaitable[bool]]


class ToolExecutor:
    """
    Runs tool calls against a ToolRegistry and records every invocation.

    Never raises for tool-level failures: unknown tools, bad arguments,
    denials, timeouts and handler exceptions all come back as
    ToolResult(is_error=True) whose content starts with "Error:".

    Usage:
        executor = ToolExecutor(registry)
        result = await executor.execute(tool_call, session_id="abc", model="qwen2.5:7b")
    """

    def __init__(
        self,
        registry: ToolRegistry,
        default_timeout: float = DEFAULT_TIMEOUT_SECONDS,
        max_result_chars: int = MAX_RESULT_CHARS,
        confirmation_handler: Optional[ConfirmationHandler] = None,
        history_limit: int = HISTORY_LIMIT,
    ):
        """
        Args:
            registry:             Tool catalog.
            default_timeout:      Seconds a tool may run unless it sets its own timeout.
            max_result_chars:     Results longer than this are truncated with a notice.
            confirmation_handler: Async (tool, args) -> bool, asked before running a
                                  tool with requires_confirmation. If None, such tools
                                  run without asking.
            history_limit:        Most recent invocations kept in memory.
        """
        self.registry = registry
        self.default_timeout = default_timeout
        self.max_result_chars = max_result_chars
        self.confirmation_handler = confirmation_handler
        self.history_limit = history_limit
        self._history: list[ToolInvocation] = []

    async def execute(self, tool_call: ToolCall, session_id: str, model: str) -> ToolResult:
        start_ms = time.monotonic() * 1000
        name = tool_call.function.name

        log.info("tool_executor.dispatch", tool=name, tool_call_id=tool_call.id, model=model)

        # ── Step 1: Registry lookup ───────────────────────────────────────────
        tool = self.registry.get(name)
        if tool is None or tool.handler is None:
            return ToolResult.error(
                tool_call.id,
                name,
                f'Unknown tool "{name}". Available tools: '
                f"{', '.join(self.registry.list_names())}",
            )

        # ── Step 2: Argument decoding ─────────────────────────────────────────
        try:
            args = json.loads(tool_call.function.arguments or "{}")
        except json.JSONDecodeError:
            return ToolResult.error(
                tool_call.id,
                name,
                f'Invalid JSON arguments for tool "{name}": {tool_call.function.arguments}',
            )

        # ── Step 3: Schema validation ─────────────────────────────────────────
        problems = validate_tool_call(tool_call, tool.to_schema())
        if problems:
            log.warning("tool_executor.invalid_arguments", tool=name, problems=problems)
            return ToolResult.error(
                tool_call.id,
                name,
                f'Invalid arguments for tool "{name}": {"; ".join(problems)}',
            )

        invocation = ToolInvocation(
            tool_call_id=tool_call.id,
            session_id=session_id,
            tool_name=name,
            model=model,
            arguments=args,
        )

        # ── Step 4: Confirmation gate ─────────────────────────────────────────
        if tool.requires_confirmation and self.confirmation_handler is not None:
            if not await self._confirm(tool, args):
                self._finish(invocation, start_ms, "Cancelled by user", is_error=True)
                return ToolResult.error(
                    tool_call.id, name, "Tool execution cancelled by user."
                )

        # ── Step 5: Execute with timeout ──────────────────────────────────────
        timeout = tool.timeout_seconds or self.default_timeout
        try:
            raw_result = await asyncio.wait_for(tool.handler(**args), timeout=timeout)
        except asyncio.TimeoutError:
            message = f'Tool "{name}" timed out after {timeout}s'
            duration_ms = self._finish(invocation, start_ms, message, is_error=True)
            log.error(
                "tool_executor.timeout",
                tool=name,
                timeout_seconds=timeout,
                duration_ms=round(duration_ms, 1),
            )
            return ToolResult.error(tool_call.id, name, message, duration_ms=duration_ms)
        except Exception as e:
            message = f"{type(e).__name__}: {e}"
            duration_ms = self._finish(invocation, start_ms, message, is_error=True)
            log.error(
                "tool_executor.execution_error",
                tool=name,
                error=str(e),
                duration_ms=round(duration_ms, 1),
                exc_info=True,
            )
            return ToolResult.error(
                tool_call.id,
                name,
                f'Tool "{name}" failed: {message}',
                duration_ms=duration_ms,
            )

        # ── Step 6: Normalise and truncate result ─────────────────────────────
        content = _truncate(_normalise_result(raw_result), self.max_result_chars)
        duration_ms = self._finish(invocation, start_ms, content, is_error=False)

        log.info(
            "tool_executor.success",
            tool=name,
            tool_call_id=tool_call.id,
            duration_ms=round(duration_ms, 1),
            result_chars=len(content),
        )
        return ToolResult.success(
            tool_call_id=tool_call.id,
            name=name,
            content=content,
            duration_ms=duration_ms,
        )

    async def execute_sequential(
        self, tool_calls: list[ToolCall], session_id: str, model: str
    ) -> list[ToolResult]:
        """Run calls one after another, in order."""
        results: list[ToolResult] = []
        for tc in tool_calls:
            results.append(await self.execute(tc, session_id, model))
        return results

    # ── History ───────────────────────────────────────────────────────────────

    def get_history(self, session_id: Optional[str] = None) -> list[ToolInvocation]:
        if session_id is not None:
            return [inv for inv in self._history if inv.session_id == session_id]
        return list(self._history)

    def get_recent(self, count: int = 10) -> list[ToolInvocation]:
        return self._history[-count:] if count > 0 else []

    def clear_history(self, session_id: Optional[str] = None) -> None:
        if session_id is not None:
            self._history = [inv for inv in self._history if inv.session_id != session_id]
        else:
            self._history = []

    def get_stats(self) -> dict[str, Any]:
        """Totals plus per-tool counts, errors and average duration (ms)."""
        by_tool: dict[str, dict[str, Any]] = {}
        durations: dict[str, list[float]] = {}
        failed = 0

        for inv in self._history:
            if inv.is_error:
                failed += 1
            entry = by_tool.setdefault(inv.tool_name, {"count": 0, "errors": 0, "avg_duration_ms": 0.0})
            entry["count"] += 1
            if inv.is_error:
                entry["errors"] += 1
            if inv.duration_ms:
                durations.setdefault(inv.tool_name, []).append(inv.duration_ms)

        for name, values in durations.items():
            by_tool[name]["avg_duration_ms"] = sum(values) / len(values)

        return {
            "total": len(self._history),
            "successful": len(self._history) - failed,
            "failed": failed,
            "by_tool": by_tool,
        }

    # ── Private helpers ───────────────────────────────────────────────────────

    async def _confirm(self, tool: RegisteredTool, args: dict[str, Any]) -> bool:
        try:
            return bool(await self.confirmation_handler(tool, args))
        except Exception as e:
            log.error("tool_executor.confirm_handler_error", tool=tool.name, error=str(e))
            return False

    def _finish(
        self, invocation: ToolInvocation, start_ms: float, result: str, is_error: bool
    ) -> float:
        duration_ms = time.monotonic() * 1000 - start_ms
        invocation.result = result
        invocation.is_error = is_error
        invocation.duration_ms = duration_ms
        self._history.append(invocation)
        if len(self._history) > self.history_limit:
            del self._history[:-self.history_limit]
        return duration_ms


# ─────────────────────────────────────────────────────────────────────────────
# Helpers
# ─────────────────────────────────────────────────────────────────────────────


def _normalise_result(result: Any) -> str:
    """Convert any tool return value to a string."""
    if result is None:
        return "Done."
    if isinstance(result, str):
        return result
    if isinstance(result, (dict, list)):
        try:
            return json.dumps(result, indent=2, default=str)
        except (TypeError, ValueError):
            return str(result)
    return str(result)


def _truncate(text: str, max_chars: int) -> str:
    """Truncate result if too long, with a notice."""
    if len(text) <= max_chars:
        return text
    return (
        text[:max_chars]
        + f"\n\n[Output truncated — {len(text) - max_chars} chars omitted. "
        f"Total: {len(text)} chars]"
    )
