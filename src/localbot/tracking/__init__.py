"""
tracking/ — token usage accounting
"""

from localbot.tracking.tokens import (
    TokenTracker,
    TokenUsage,
    calculate_context_percentage,
)

__all__ = ["TokenTracker", "TokenUsage", "calculate_context_percentage"]
