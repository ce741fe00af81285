"""
Tool dispatcher.

Routes a tools/call request to the adapter operation bound to the tool name
and shapes the outcome into a CallToolResult. The envelope is the same on
success and failure; only `isError` and the text differ. Nothing raised by an
adapter crosses the protocol boundary.
"""

import json
import logging
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Iterable, Mapping

from mcp import types

from .arguments import ToolArguments
from .context import RequestContextStore
from .registry import ToolRegistry

logger = logging.getLogger("saas_mcp.mcp.dispatch")


@dataclass(frozen=True)
class ToolCallRequest:
    name: str
    arguments: Mapping[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class ToolBinding:
    """One catalog entry: its descriptor, argument model and adapter call."""

    descriptor: types.Tool
    arguments: type[ToolArguments]
    invoke: Callable[[Any, Any], Awaitable[Any]]

    @property
    def name(self) -> str:
        return self.descriptor.name


# ---------------------------------------------------------------------------
# Result envelopes
# ---------------------------------------------------------------------------

def text_result(payload: Any) -> types.CallToolResult:
    """Successful result: the payload pretty-printed as JSON in one text block."""
    text = json.dumps(payload, indent=2, default=str, ensure_ascii=False)
    return types.CallToolResult(
        content=[types.TextContent(type="text", text=text)],
        isError=False,
    )


def error_result(message: str) -> types.CallToolResult:
    return types.CallToolResult(
        content=[types.TextContent(type="text", text=f"Error: {message}")],
        isError=True,
    )


def unknown_tool_result(name: str) -> types.CallToolResult:
    return types.CallToolResult(
        content=[types.TextContent(type="text", text=f"Unknown tool: {name}")],
        isError=True,
    )


# ---------------------------------------------------------------------------
# Dispatcher
# ---------------------------------------------------------------------------

class ToolDispatcher:
    """Static name -> binding table resolved against the current request context."""

    def __init__(
        self,
        registry: ToolRegistry,
        bindings: Iterable[ToolBinding],
        store: RequestContextStore,
    ) -> None:
        handlers = {binding.name: binding for binding in bindings}
        unbound = [name for name in registry.names() if name not in handlers]
        if unbound:
            raise ValueError(f"Tools without a handler: {', '.join(unbound)}")
        unlisted = [name for name in handlers if name not in registry]
        if unlisted:
            raise ValueError(f"Handlers for tools missing from the catalog: {', '.join(unlisted)}")

        self._registry = registry
        self._handlers = handlers
        self._store = store

    @property
    def registry(self) -> ToolRegistry:
        return self._registry

    async def call(self, request: ToolCallRequest) -> types.CallToolResult:
        binding = self._handlers.get(request.name)
        if binding is None:
            logger.warning("Unknown tool requested: %s", request.name)
            return unknown_tool_result(request.name)

        arguments = binding.arguments.decode(request.arguments)
        # ContextMissing here is a wiring bug, not a tool failure: let it propagate
        adapter = self._store.current().adapter

        try:
            result = await binding.invoke(adapter, arguments)
        except Exception as exc:
            message = str(exc) or exc.__class__.__name__
            logger.warning("Tool %s failed: %s", request.name, message)
            return error_result(message)

        logger.debug("Tool %s succeeded", request.name)
        return text_result(result)
