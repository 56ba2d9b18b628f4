"""
Name-to-tool lookup for a Gateway.

Each Gateway builds its own ToolRegistry from the built-in capabilities;
tests register extra tools on a gateway's registry directly.
"""

from typing import Iterable

from hostgate.errors import ToolNotFoundError
from hostgate.tools.base import Tool


class ToolRegistry:
    """Tools keyed by their dotted name (``proxy.fetch``, ``file.read``)."""

    def __init__(self, tools: Iterable[Tool] = ()) -> None:
        self._tools: dict[str, Tool] = {}
        for tool in tools:
            self.register(tool)

    def register(self, tool: Tool) -> None:
        """
        Register a tool, replacing any tool with the same name.

        Raises:
            ValueError: If tool is None or has an empty name
        """
        if tool is None:
            raise ValueError("Cannot register None as a tool")
        if not tool.name:
            raise ValueError("Tool must have a non-empty name")
        self._tools[tool.name] = tool

    def get(self, name: str) -> Tool:
        """
        Look up a tool by name.

        Raises:
            ToolNotFoundError: If no tool with that name is registered
        """
        tool = self._tools.get(name)
        if tool is None:
            raise ToolNotFoundError(tool=name)
        return tool

    def list_tools(self) -> list[str]:
        """Registered tool names in sorted order."""
        return sorted(self._tools)

    def __contains__(self, name: str) -> bool:
        return name in self._tools

    def __len__(self) -> int:
        return len(self._tools)
