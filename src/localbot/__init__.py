"""
LocalBot — orchestration core for a tool-using conversational agent.

    from localbot import Agent, ToolRegistry, load_settings

    settings = load_settings()
    agent = Agent.from_settings(settings, registry=ToolRegistry())
    result = await agent.run("List the files in ./notes")
"""

# agent is imported first: tools.executor depends on agent.parser
from localbot.agent import (
    Agent,
    EventType,
    ModelRouter,
    RouteDecision,
    RouterConfig,
    RunResult,
    StreamEvent,
    parse_response,
)
from localbot.brain import BaseProvider, Message, ProviderFactory, ToolCall, ToolSchema
from localbot.config.settings import Settings, get_settings, load_settings
from localbot.exceptions import LocalBotError
from localbot.tools import ToolExecutor, ToolRegistry, ToolResult
from localbot.tracking import TokenTracker

__version__ = "0.1.0"

__all__ = [
    "Agent",
    "BaseProvider",
    "EventType",
    "LocalBotError",
    "Message",
    "ModelRouter",
    "ProviderFactory",
    "RouteDecision",
    "RouterConfig",
    "RunResult",
    "Settings",
    "StreamEvent",
    "TokenTracker",
    "ToolCall",
    "ToolExecutor",
    "ToolRegistry",
    "ToolResult",
    "ToolSchema",
    "get_settings",
    "load_settings",
    "parse_response",
]
