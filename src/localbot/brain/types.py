"""
brain/types.py — LocalBot Brain Data Models

All shared types used across backend transports and the agent orchestrator.
Providers map their native request/response shapes into these types.

Tool calls keep the OpenAI wire shape ({id, type, function: {name,
arguments}}) with arguments always carried as JSON text, so a call can be
echoed back to any OpenAI-compatible backend unchanged.
"""

from __future__ import annotations

import itertools
import json
import uuid
from enum import Enum
from typing import Any, Literal, Optional

from pydantic import BaseModel, Field


# ─────────────────────────────────────────────────────────────────────────────
# Enums
# ─────────────────────────────────────────────────────────────────────────────


class Role(str, Enum):
    SYSTEM = "system"
    USER = "user"
    ASSISTANT = "assistant"
    TOOL = "tool"           # tool result fed back to the model


# ─────────────────────────────────────────────────────────────────────────────
# Tool call ids
# ─────────────────────────────────────────────────────────────────────────────

_id_counter = itertools.count(1)


def generate_tool_call_id() -> str:
    """Return a tool call id that is unique for the lifetime of the process."""
    return f"call_{next(_id_counter):06d}_{uuid.uuid4().hex[:8]}"


# ─────────────────────────────────────────────────────────────────────────────
# Tool calling types
# ─────────────────────────────────────────────────────────────────────────────


class FunctionCall(BaseModel):
    name: str
    arguments: str = "{}"       # always serialized JSON text


class ToolCall(BaseModel):
    """A single tool invocation requested by the model."""
    id: str = Field(default_factory=generate_tool_call_id)
    type: Literal["function"] = "function"
    function: FunctionCall

    @classmethod
    def create(
        cls,
        name: str,
        arguments: Any = None,
        id: Optional[str] = None,
    ) -> "ToolCall":
        """Build a ToolCall, serializing non-string arguments to JSON."""
        if not isinstance(arguments, str):
            arguments = json.dumps(arguments or {})
        return cls(
            id=id or generate_tool_call_id(),
            function=FunctionCall(name=name, arguments=arguments),
        )

    @property
    def name(self) -> str:
        return self.function.name

    def parsed_arguments(self) -> Any:
        """Decode the JSON arguments. Raises ValueError if they are not valid JSON."""
        return json.loads(self.function.arguments or "{}")


class FunctionSchema(BaseModel):
    name: str
    description: str = ""
    parameters: dict[str, Any] = Field(
        default_factory=lambda: {"type": "object", "properties": {}, "required": []}
    )


class ToolSchema(BaseModel):
    """
    Tool definition in the OpenAI function-tool shape.
    Offered to the model and used to validate the calls it makes.
    """
    type: Literal["function"] = "function"
    function: FunctionSchema

    @classmethod
    def create(
        cls,
        name: str,
        description: str = "",
        parameters: Optional[dict[str, Any]] = None,
    ) -> "ToolSchema":
        fn = FunctionSchema(name=name, description=description)
        if parameters is not None:
            fn.parameters = parameters
        return cls(function=fn)

    @property
    def name(self) -> str:
        return self.function.name


# ─────────────────────────────────────────────────────────────────────────────
# Message types
# ─────────────────────────────────────────────────────────────────────────────


class Message(BaseModel):
    """
    A single message in the conversation.

    Assistant messages that requested tools carry tool_calls; the tool
    messages answering them carry tool_call_id and the tool name.
    """
    role: Role
    content: str = ""
    tool_calls: Optional[list[ToolCall]] = None
    tool_call_id: Optional[str] = None
    name: Optional[str] = None

    @classmethod
    def system(cls, content: str) -> "Message":
        return cls(role=Role.SYSTEM, content=content)

    @classmethod
    def user(cls, content: str) -> "Message":
        return cls(role=Role.USER, content=content)

    @classmethod
    def assistant(
        cls, content: str, tool_calls: Optional[list[ToolCall]] = None
    ) -> "Message":
        return cls(role=Role.ASSISTANT, content=content, tool_calls=tool_calls or None)

    @classmethod
    def tool(cls, content: str, tool_call_id: str, name: Optional[str] = None) -> "Message":
        return cls(role=Role.TOOL, content=content, tool_call_id=tool_call_id, name=name)

    def to_openai(self) -> dict[str, Any]:
        """Render as an OpenAI chat message dict."""
        entry: dict[str, Any] = {"role": self.role.value, "content": self.content}
        if self.tool_calls:
            entry["tool_calls"] = [tc.model_dump() for tc in self.tool_calls]
        if self.tool_call_id:
            entry["tool_call_id"] = self.tool_call_id
        if self.name:
            entry["name"] = self.name
        return entry


# ─────────────────────────────────────────────────────────────────────────────
# Transport request / response
# ─────────────────────────────────────────────────────────────────────────────


class ChatRequest(BaseModel):
    model: str
    messages: list[Message]
    tools: Optional[list[ToolSchema]] = None
    stream: bool = False
    temperature: Optional[float] = None
    max_tokens: Optional[int] = None


class ChatResponse(BaseModel):
    """One complete (non-streamed) answer from a backend."""
    id: str = ""
    model: str = ""
    message: Message
    done: bool = True
    prompt_tokens: Optional[int] = None
    completion_tokens: Optional[int] = None


class StreamChunk(BaseModel):
    """
    One piece of a streamed answer.

    tool_calls and the token counts are only populated on the terminal
    chunk (done=True).
    """
    content: Optional[str] = None
    tool_calls: Optional[list[ToolCall]] = None
    done: bool = False
    prompt_tokens: Optional[int] = None
    completion_tokens: Optional[int] = None
