"""
tools/ — LocalBot tool catalog and invocation gateway
"""

from localbot.tools.executor import ToolExecutor
from localbot.tools.registry import ToolRegistry
from localbot.tools.types import (
    RegisteredTool,
    ToolGateway,
    ToolHandler,
    ToolInvocation,
    ToolResult,
)

__all__ = [
    "RegisteredTool",
    "ToolExecutor",
    "ToolGateway",
    "ToolHandler",
    "ToolInvocation",
    "ToolRegistry",
    "ToolResult",
]
