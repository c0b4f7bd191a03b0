"""
tracking/tokens.py — Token Usage Tracker

Accumulates the prompt/completion token counts reported by backends, keyed
strictly by session id, with per-model and global totals on the side.

One tracker is shared by every session an Agent serves. All mutation
happens between suspension points on the event loop, so no locking is
needed.
"""

from __future__ import annotations

import time
from dataclasses import asdict, dataclass, field
from typing import Any, Optional

from localbot.brain.capabilities import get_context_window_size

HISTORY_LIMIT = 100


def calculate_context_percentage(input_tokens: int, model: str) -> float:
    """Share of the model's context window used by one prompt, capped at 100."""
    size = get_context_window_size(model)
    return min(100.0, (input_tokens / size) * 100)


@dataclass
class TokenUsage:
    input: int
    output: int
    total: int
    model: Optional[str] = None
    context_percentage: Optional[float] = None
    timestamp: float = field(default_factory=time.time)


@dataclass
class SessionTokenStats:
    session_id: str
    total_input: int = 0
    total_output: int = 0
    total_tokens: int = 0
    request_count: int = 0
    history: list[TokenUsage] = field(default_factory=list)

    @property
    def average_input(self) -> float:
        return self.total_input / self.request_count if self.request_count else 0.0

    @property
    def average_output(self) -> float:
        return self.total_output / self.request_count if self.request_count else 0.0


@dataclass
class ModelTokenStats:
    input: int = 0
    output: int = 0
    count: int = 0


class TokenTracker:
    """
    Usage:
        tracker = TokenTracker()
        tracker.record_usage("session-1", 1200, 85, model="qwen2.5:7b")
        tracker.format_usage(tracker.get_last_usage("session-1"))
        # '↓1200 | ↑85 | Σ1285 | ctx:3.7%'
    """

    def __init__(self) -> None:
        self._sessions: dict[str, SessionTokenStats] = {}
        self._models: dict[str, ModelTokenStats] = {}
        self._total_input = 0
        self._total_output = 0
        self._requests = 0

    def record_usage(
        self,
        session_id: str,
        input_tokens: int,
        output_tokens: int,
        model: Optional[str] = None,
    ) -> TokenUsage:
        usage = TokenUsage(
            input=input_tokens,
            output=output_tokens,
            total=input_tokens + output_tokens,
            model=model,
            context_percentage=(
                calculate_context_percentage(input_tokens, model) if model else None
            ),
        )

        stats = self._sessions.get(session_id)
        if stats is None:
            stats = SessionTokenStats(session_id=session_id)
            self._sessions[session_id] = stats

        stats.total_input += usage.input
        stats.total_output += usage.output
        stats.total_tokens += usage.total
        stats.request_count += 1
        stats.history.append(usage)
        if len(stats.history) > HISTORY_LIMIT:
            del stats.history[:-HISTORY_LIMIT]

        if model:
            per_model = self._models.setdefault(model, ModelTokenStats())
            per_model.input += usage.input
            per_model.output += usage.output
            per_model.count += 1

        self._total_input += usage.input
        self._total_output += usage.output
        self._requests += 1
        return usage

    def get_session_stats(self, session_id: str) -> Optional[SessionTokenStats]:
        return self._sessions.get(session_id)

    def get_model_stats(self, model: str) -> Optional[ModelTokenStats]:
        return self._models.get(model)

    def get_global_stats(self) -> dict[str, Any]:
        return {
            "total_input": self._total_input,
            "total_output": self._total_output,
            "total_tokens": self._total_input + self._total_output,
            "request_count": self._requests,
            "sessions": len(self._sessions),
            "by_model": {name: asdict(s) for name, s in self._models.items()},
        }

    def get_last_usage(self, session_id: str) -> Optional[TokenUsage]:
        stats = self._sessions.get(session_id)
        if stats is None or not stats.history:
            return None
        return stats.history[-1]

    def clear_session(self, session_id: str) -> None:
        self._sessions.pop(session_id, None)

    def clear(self) -> None:
        self._sessions.clear()
        self._models.clear()
        self._total_input = 0
        self._total_output = 0
        self._requests = 0

    def format_usage(self, usage: TokenUsage, model: Optional[str] = None) -> str:
        pct = usage.context_percentage
        if pct is None and model:
            pct = calculate_context_percentage(usage.input, model)

        parts = [f"↓{usage.input}", f"↑{usage.output}", f"Σ{usage.total}"]
        if pct is not None:
            parts.append(f"ctx:{pct:.1f}%")
        return " | ".join(parts)

    def format_session_stats(self, session_id: str) -> Optional[str]:
        stats = self._sessions.get(session_id)
        if stats is None:
            return None
        return "\n".join([
            f"Session: {session_id}",
            f"  Requests: {stats.request_count}",
            f"  Input: {stats.total_input} tokens (avg: {round(stats.average_input)})",
            f"  Output: {stats.total_output} tokens (avg: {round(stats.average_output)})",
            f"  Total: {stats.total_tokens} tokens",
        ])

    def export(self) -> dict[str, Any]:
        """Plain-dict snapshot of everything tracked."""
        return {
            "global": self.get_global_stats(),
            "sessions": {
                sid: {
                    **asdict(s),
                    "average_input": s.average_input,
                    "average_output": s.average_output,
                }
                for sid, s in self._sessions.items()
            },
        }
