"""
tools/types.py — Tool System Data Models

Shared types used across the tool registry, the tool executor and the
agent. The agent only sees the ToolGateway protocol; ToolExecutor is the
stock implementation.
"""

from __future__ import annotations

import time
from typing import Any, Awaitable, Callable, Optional, Protocol, runtime_checkable

from pydantic import BaseModel, Field

from localbot.brain.types import ToolCall, ToolSchema

ToolHandler = Callable[..., Awaitable[Any]]


# ─────────────────────────────────────────────────────────────────────────────
# Tool registration metadata
# ─────────────────────────────────────────────────────────────────────────────


class RegisteredTool(BaseModel):
    """
    Full metadata for a registered tool plus its async handler.
    Stored in ToolRegistry; offered to the model via to_schema().
    """
    name: str
    description: str
    parameters: dict[str, Any] = Field(
        default_factory=lambda: {"type": "object", "properties": {}, "required": []}
    )
    handler: Optional[ToolHandler] = Field(default=None, exclude=True, repr=False)
    category: str = "general"
    timeout_seconds: Optional[float] = None    # None = executor default
    requires_confirmation: bool = False
    enabled: bool = True

    def to_schema(self) -> ToolSchema:
        """Return the tool in the OpenAI function-tool shape."""
        return ToolSchema.create(
            name=self.name,
            description=self.description,
            parameters=self.parameters,
        )


# ─────────────────────────────────────────────────────────────────────────────
# Runtime result types
# ─────────────────────────────────────────────────────────────────────────────


class ToolResult(BaseModel):
    """The result of a tool call after execution. Always text."""
    tool_call_id: str
    content: str                        # JSON string or plain text
    is_error: bool = False
    name: str = ""
    duration_ms: float = 0.0

    @classmethod
    def success(
        cls,
        tool_call_id: str,
        name: str,
        content: str,
        duration_ms: float = 0.0,
    ) -> "ToolResult":
        return cls(
            tool_call_id=tool_call_id,
            name=name,
            content=content,
            is_error=False,
            duration_ms=duration_ms,
        )

    @classmethod
    def error(
        cls,
        tool_call_id: str,
        name: str,
        error_message: str,
        duration_ms: float = 0.0,
    ) -> "ToolResult":
        return cls(
            tool_call_id=tool_call_id,
            name=name,
            content=f"Error: {error_message}",
            is_error=True,
            duration_ms=duration_ms,
        )


class ToolInvocation(BaseModel):
    """Audit record for one execution attempt."""
    tool_call_id: str
    session_id: str
    tool_name: str
    model: str
    arguments: dict[str, Any] = Field(default_factory=dict)
    result: str = ""
    is_error: bool = False
    started_at: float = Field(default_factory=time.time)
    duration_ms: Optional[float] = None


# ─────────────────────────────────────────────────────────────────────────────
# Gateway contract
# ─────────────────────────────────────────────────────────────────────────────


@runtime_checkable
class ToolGateway(Protocol):
    """
    Executes one tool call on behalf of the agent.

    Tool-level failures come back as ToolResult(is_error=True) with
    descriptive text. Only gateway-internal faults may raise.
    """

    async def execute(self, tool_call: ToolCall, session_id: str, model: str) -> ToolResult:
        ...
