"""Tool registry: lookup from tool name to Tool, grouped by category."""

import logging

from agent_engine.agent.tools.base import Tool, ToolCategory

logger = logging.getLogger(__name__)


class ToolRegistry:
    """Registry of available tools.

    Constructed explicitly and passed to the planner and executor; there is
    no process-wide instance.
    """

    def __init__(self, tools: list[Tool] | None = None):
        self._tools: dict[str, Tool] = {}
        for tool in tools or []:
            self.register(tool)

    def register(self, tool: Tool) -> None:
        """Register a tool.

        Raises:
            ValueError: If a tool with the same name is already registered
        """
        if tool.name in self._tools:
            raise ValueError(f"Tool already registered: {tool.name}")

        self._tools[tool.name] = tool
        logger.debug(f"Registered tool: {tool.name}")

    def get_tool(self, name: str) -> Tool | None:
        """Get a tool by name, or None when it is not registered."""
        return self._tools.get(name)

    def get_all_tools(self) -> list[Tool]:
        return list(self._tools.values())

    def get_tools_by_category(self, category: ToolCategory) -> list[Tool]:
        return [tool for tool in self._tools.values() if tool.category == category]

    def has_tool(self, name: str) -> bool:
        return name in self._tools

    def get_tool_names(self) -> list[str]:
        return list(self._tools)

    def __len__(self) -> int:
        return len(self._tools)
