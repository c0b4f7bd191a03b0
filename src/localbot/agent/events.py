"""
agent/events.py — Agent Stream Events

The agent's only output contract. Every consumer (CLI, web, chat bridge,
tests) sees a turn as a sequence of StreamEvent:

    content*  (tool_start tool_end)*  ...  done | error

Exactly one terminal event (done or error) ends each run_stream() call.
"""

from __future__ import annotations

from enum import Enum
from typing import Optional

from pydantic import BaseModel

from localbot.brain.types import ToolCall


class EventType(str, Enum):
    CONTENT = "content"
    TOOL_START = "tool_start"
    TOOL_END = "tool_end"
    DONE = "done"
    ERROR = "error"


class TokenUsageInfo(BaseModel):
    input: int = 0
    output: int = 0
    total: int = 0
    context_percentage: Optional[float] = None


class StreamEvent(BaseModel):
    type: EventType
    content: Optional[str] = None
    model: Optional[str] = None
    tool_call: Optional[ToolCall] = None
    tool_result: Optional[str] = None
    token_usage: Optional[TokenUsageInfo] = None
    error: Optional[str] = None

    @classmethod
    def chunk(cls, content: str, model: Optional[str] = None) -> "StreamEvent":
        """A content fragment; empty content with a model is the model hint."""
        return cls(type=EventType.CONTENT, content=content, model=model)

    @classmethod
    def tool_start(cls, tool_call: ToolCall) -> "StreamEvent":
        return cls(type=EventType.TOOL_START, tool_call=tool_call)

    @classmethod
    def tool_end(cls, tool_call: ToolCall, result: str) -> "StreamEvent":
        return cls(type=EventType.TOOL_END, tool_call=tool_call, tool_result=result)

    @classmethod
    def done(cls, token_usage: Optional[TokenUsageInfo] = None) -> "StreamEvent":
        return cls(type=EventType.DONE, token_usage=token_usage)

    @classmethod
    def failure(cls, message: str) -> "StreamEvent":
        return cls(type=EventType.ERROR, error=message)

    @property
    def is_terminal(self) -> bool:
        return self.type in (EventType.DONE, EventType.ERROR)
