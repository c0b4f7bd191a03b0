"""
agent/ — LocalBot Agent Core

Public API:
    from localbot.agent import Agent, StreamEvent, parse_response

Component overview:
    Agent           Conversation loop: route → request → interpret → tools → repeat
    ModelRouter     Picks the model and tool policy for each turn
    parse_response  Extracts textual tool calls and reasoning from model output
    Session         Per-conversation message history
    StreamEvent     The agent's only output contract
"""

from localbot.agent.events import EventType, StreamEvent, TokenUsageInfo
from localbot.agent.parser import (
    Detection,
    ParsedResponse,
    normalize_tool_call,
    parse_response,
    try_fix_json,
    validate_tool_call,
)
from localbot.agent.router import ModelRouter, RouteDecision, RouterConfig
from localbot.agent.session import Session
from localbot.agent.orchestrator import Agent, RunResult

__all__ = [
    "Agent",
    "RunResult",
    "EventType",
    "StreamEvent",
    "TokenUsageInfo",
    "Detection",
    "ParsedResponse",
    "normalize_tool_call",
    "parse_response",
    "try_fix_json",
    "validate_tool_call",
    "ModelRouter",
    "RouteDecision",
    "RouterConfig",
    "Session",
]
