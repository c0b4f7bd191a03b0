"""
tools/registry.py — Tool Registry

Catalog of the tools available to the agent. Tools register themselves
via the @registry.register() decorator or register_tool().

Usage:
    registry = ToolRegistry()

    @registry.register(
        name="read_file",
        description="Read a file",
        category="filesystem",
        parameters={...}
    )
    async def read_file(path: str) -> str:
        ...

    tool = registry.get("read_file")
    schemas = registry.to_schemas()      # offered to the model
"""

from __future__ import annotations

from typing import Any, Callable, Iterable, Optional

from localbot.brain.types import ToolSchema
from localbot.observability.logger import get_logger
from localbot.tools.types import RegisteredTool, ToolHandler

log = get_logger(__name__)


class ToolRegistry:
    """
    Maps tool names to their metadata and async handlers.

    Insertion order is preserved; schemas are offered to the model in
    registration order. Not designed for concurrent writes.
    """

    def __init__(self):
        self._tools: dict[str, RegisteredTool] = {}

    def register(
        self,
        name: str,
        description: str,
        category: str = "general",
        parameters: Optional[dict[str, Any]] = None,
        timeout_seconds: Optional[float] = None,
        requires_confirmation: bool = False,
        enabled: bool = True,
    ) -> Callable[[ToolHandler], ToolHandler]:
        """
        Decorator to register an async tool handler.

        Example:
            @registry.register(
                name="read_file",
                description="Read a text file",
                parameters={
                    "type": "object",
                    "properties": {"path": {"type": "string"}},
                    "required": ["path"]
                }
            )
            async def read_file(path: str) -> str:
                ...
        """
        def decorator(fn: ToolHandler) -> ToolHandler:
            tool = RegisteredTool(
                name=name,
                description=description,
                category=category,
                parameters=parameters or {
                    "type": "object",
                    "properties": {},
                    "required": [],
                },
                handler=fn,
                timeout_seconds=timeout_seconds,
                requires_confirmation=requires_confirmation,
                enabled=enabled,
            )
            self.register_tool(tool)
            return fn

        return decorator

    def register_tool(self, tool: RegisteredTool, handler: Optional[ToolHandler] = None) -> None:
        """Programmatic registration (alternative to decorator)."""
        if handler is not None:
            tool.handler = handler
        if tool.name in self._tools:
            log.warning("tool.overwritten", tool=tool.name)
        self._tools[tool.name] = tool
        log.debug("tool.registered", tool=tool.name, category=tool.category)

    def register_all(self, tools: Iterable[RegisteredTool]) -> None:
        for tool in tools:
            self.register_tool(tool)

    def unregister(self, name: str) -> bool:
        return self._tools.pop(name, None) is not None

    def get(self, name: str) -> Optional[RegisteredTool]:
        """Return the tool, or None if not found or disabled."""
        tool = self._tools.get(name)
        if tool is None or not tool.enabled:
            return None
        return tool

    def get_handler(self, name: str) -> Optional[ToolHandler]:
        tool = self.get(name)
        return tool.handler if tool else None

    def has(self, name: str) -> bool:
        return self.get(name) is not None

    def list_tools(self, enabled_only: bool = True) -> list[RegisteredTool]:
        tools = list(self._tools.values())
        if enabled_only:
            tools = [t for t in tools if t.enabled]
        return tools

    def list_names(self, enabled_only: bool = True) -> list[str]:
        return [t.name for t in self.list_tools(enabled_only)]

    def to_schemas(self) -> list[ToolSchema]:
        """Return all enabled tools in the OpenAI function-tool shape."""
        return [t.to_schema() for t in self.list_tools()]

    def get_schema(self, name: str) -> Optional[ToolSchema]:
        tool = self.get(name)
        return tool.to_schema() if tool else None

    def get_summary(self) -> str:
        """One line per tool, for the system prompt."""
        tools = self.list_tools()
        if not tools:
            return "No tools available."
        return "\n".join(f"- {t.name}: {t.description}" for t in tools)

    def subset(self, names: Iterable[str]) -> "ToolRegistry":
        """A new registry holding only the named (known) tools."""
        sub = ToolRegistry()
        for name in names:
            tool = self._tools.get(name)
            if tool is not None:
                sub.register_tool(tool)
        return sub

    def enable(self, name: str) -> None:
        if name in self._tools:
            self._tools[name].enabled = True

    def disable(self, name: str) -> None:
        if name in self._tools:
            self._tools[name].enabled = False

    def __len__(self) -> int:
        return len(self.list_tools())

    def __contains__(self, name: object) -> bool:
        return isinstance(name, str) and self.has(name)

    def __repr__(self) -> str:
        return f"<ToolRegistry tools={list(self._tools.keys())}>"
