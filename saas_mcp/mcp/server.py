"""
Protocol engine wiring.

Builds the low-level MCP `Server` for one integration: tools/list answers from
the registry, tools/call goes through the dispatcher. The transport attaches a
RequestContext to every HTTP request that carries a protocol message; the
call handler re-binds that context in the task that actually executes the
tool, which for the event-stream transport is the session's long-lived engine
task rather than the POST that delivered the message.
"""

import logging
from typing import Optional

from mcp import types
from mcp.server.lowlevel import Server

from .context import RequestContext, RequestContextStore, context_from_request
from .dispatch import ToolCallRequest, ToolDispatcher

logger = logging.getLogger("saas_mcp.mcp.server")


def build_server(
    name: str,
    version: str,
    dispatcher: ToolDispatcher,
    store: RequestContextStore,
    instructions: Optional[str] = None,
) -> Server:
    server: Server = Server(name, version=version, instructions=instructions)

    @server.list_tools()
    async def _list_tools() -> list[types.Tool]:
        return dispatcher.registry.list_tools()

    async def _call_tool(req: types.CallToolRequest) -> types.ServerResult:
        call = ToolCallRequest(name=req.params.name, arguments=req.params.arguments or {})
        context = _message_context(server)
        if context is None:
            result = await dispatcher.call(call)
        else:
            result = await store.run(context, dispatcher.call, call)
        return types.ServerResult(result)

    # Not @server.call_tool(): the dispatcher's envelope must reach the
    # client as-is, without SDK schema rejection or exception rewriting.
    server.request_handlers[types.CallToolRequest] = _call_tool

    logger.debug("Built MCP server %s with %d tools", name, len(dispatcher.registry))
    return server


def _message_context(server: Server) -> Optional[RequestContext]:
    try:
        request = server.request_context.request
    except LookupError:
        return None
    return context_from_request(request)
