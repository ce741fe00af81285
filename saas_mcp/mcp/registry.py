"""
Static tool catalog.

The registry is built once at import time from the server's tool descriptors
and is read-only afterwards. Its order is the order clients see tools
enumerated in a tools/list response.
"""

from typing import Iterable, Iterator, Optional

from mcp import types


class ToolRegistry:
    """Ordered, immutable collection of tool descriptors."""

    def __init__(self, tools: Iterable[types.Tool]) -> None:
        ordered = tuple(tools)
        seen: set[str] = set()
        for tool in ordered:
            if tool.name in seen:
                raise ValueError(f"Duplicate tool name: {tool.name}")
            seen.add(tool.name)
        self._tools = ordered
        self._by_name = {tool.name: tool for tool in ordered}

    def list_tools(self) -> list[types.Tool]:
        return list(self._tools)

    def get(self, name: str) -> Optional[types.Tool]:
        return self._by_name.get(name)

    def names(self) -> list[str]:
        return [tool.name for tool in self._tools]

    def __contains__(self, name: object) -> bool:
        return name in self._by_name

    def __iter__(self) -> Iterator[types.Tool]:
        return iter(self._tools)

    def __len__(self) -> int:
        return len(self._tools)
