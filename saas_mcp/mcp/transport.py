"""
HTTP transports shared by every MCP server.

Two protocol generations are served side by side:

    POST   /mcp                  streamable HTTP (2025-03-26), stateless
    GET    /mcp, DELETE /mcp     405: the stateless transport defines neither
    GET    /sse                  HTTP+SSE (2024-11-05), opens a session
    POST   /messages?sessionId=  delivers one message to an open session

Credential rule (both generations): the process-wide default credential if
configured, else the x-auth-token header. Every POST that carries a protocol
message gets a freshly constructed adapter inside its own RequestContext,
including POSTs to a long-lived SSE session; credentials are never cached or
pinned to a session.

Run:
    app = build_app(McpTransport(server, store, adapter_factory))
    serve(app, host="0.0.0.0", port=5000)
"""

import logging
from contextlib import asynccontextmanager
from typing import Any, AsyncIterator, Awaitable, Callable, Optional, Union

import anyio
from anyio.streams.memory import MemoryObjectReceiveStream, MemoryObjectSendStream
from mcp import types
from mcp.server.lowlevel import Server
from mcp.server.streamable_http_manager import StreamableHTTPSessionManager
from mcp.shared.message import ServerMessageMetadata, SessionMessage
from pydantic import ValidationError
from sse_starlette.sse import EventSourceResponse
from starlette.applications import Starlette
from starlette.requests import Request
from starlette.responses import JSONResponse, Response
from starlette.routing import Route
from starlette.types import Receive, Scope, Send

from ..config import MCPServerConfig, settings
from .auth import resolve_credential, unauthorized_response
from .context import RequestContext, RequestContextStore, attach_context
from .sessions import SessionRegistry, SseSession, new_session_id

logger = logging.getLogger("saas_mcp.mcp.transport")

SSE_PING_SECONDS = 15

METHOD_NOT_ALLOWED = {
    "jsonrpc": "2.0",
    "error": {"code": -32000, "message": "Method not allowed."},
    "id": None,
}

INTERNAL_ERROR = {
    "jsonrpc": "2.0",
    "error": {"code": -32603, "message": "Internal server error"},
    "id": None,
}

TRANSPORT_NOT_FOUND = {"error": "Transport not found"}

AdapterFactory = Callable[[str], Any]
ASGIHandler = Callable[[Scope, Receive, Send], Awaitable[None]]


class _ASGIEndpoint:
    """Lets Route treat a bound coroutine method as a raw ASGI app."""

    def __init__(self, handler: ASGIHandler) -> None:
        self._handler = handler

    async def __call__(self, scope: Scope, receive: Receive, send: Send) -> None:
        await self._handler(scope, receive, send)


class McpTransport:
    """Streamable HTTP + legacy SSE front end for one MCP server."""

    def __init__(
        self,
        server: Server,
        store: RequestContextStore,
        adapter_factory: AdapterFactory,
        config: Optional[MCPServerConfig] = None,
        default_credential: Optional[str] = None,
        sessions: Optional[SessionRegistry] = None,
    ) -> None:
        self.server = server
        self.store = store
        self.adapter_factory = adapter_factory
        self.config = config or settings.mcp
        self.default_credential = default_credential
        self.sessions = sessions if sessions is not None else SessionRegistry()
        self.session_manager = StreamableHTTPSessionManager(
            app=server,
            event_store=None,
            json_response=self.config.json_response,
            stateless=True,
        )

    # ------------------------------------------------------------------
    # Application wiring
    # ------------------------------------------------------------------

    def routes(self) -> list[Route]:
        return [
            Route(
                "/mcp",
                endpoint=_ASGIEndpoint(self.handle_streamable_http),
                methods=["GET", "POST", "DELETE"],
            ),
            Route(self.config.sse_path, endpoint=_ASGIEndpoint(self.handle_sse), methods=["GET"]),
            Route(self.config.message_path, endpoint=self.handle_post_message, methods=["POST"]),
        ]

    @asynccontextmanager
    async def lifespan(self, app: Starlette) -> AsyncIterator[None]:
        async with self.session_manager.run():
            logger.info(
                "MCP server %s ready: streamable HTTP on /mcp, SSE on %s",
                self.server.name, self.config.sse_path,
            )
            try:
                yield
            finally:
                logger.info("MCP server %s shutting down", self.server.name)

    def _open_context(self, request: Request) -> Optional[RequestContext]:
        """Build a fresh adapter for this request, or None without a credential."""
        credential = resolve_credential(
            request, self.default_credential, self.config.credential_header
        )
        if credential is None:
            return None
        return RequestContext(
            adapter=self.adapter_factory(credential.value),
            credential_source=credential.source,
        )

    # ------------------------------------------------------------------
    # Streamable HTTP (stateless)
    # ------------------------------------------------------------------

    async def handle_streamable_http(self, scope: Scope, receive: Receive, send: Send) -> None:
        request = Request(scope, receive)
        if request.method != "POST":
            response = JSONResponse(METHOD_NOT_ALLOWED, status_code=405)
            await response(scope, receive, send)
            return

        response_started = False

        async def send_tracking(message: dict) -> None:
            nonlocal response_started
            if message["type"] == "http.response.start":
                response_started = True
            await send(message)

        try:
            context = self._open_context(request)
            if context is None:
                response = unauthorized_response(request, self.config.credential_header)
                await response(scope, receive, send)
                return

            attach_context(scope, context)
            await self.store.run(
                context, self.session_manager.handle_request, scope, receive, send_tracking
            )
        except Exception:
            logger.exception("Error handling MCP request")
            if not response_started:
                response = JSONResponse(INTERNAL_ERROR, status_code=500)
                await response(scope, receive, send)

    # ------------------------------------------------------------------
    # HTTP+SSE (deprecated, kept for backward compatibility)
    # ------------------------------------------------------------------

    async def handle_sse(self, scope: Scope, receive: Receive, send: Send) -> None:
        session_id = new_session_id()
        read_writer: MemoryObjectSendStream[Union[SessionMessage, Exception]]
        read_stream: MemoryObjectReceiveStream[Union[SessionMessage, Exception]]
        write_stream: MemoryObjectSendStream[SessionMessage]
        write_reader: MemoryObjectReceiveStream[SessionMessage]
        read_writer, read_stream = anyio.create_memory_object_stream(0)
        write_stream, write_reader = anyio.create_memory_object_stream(0)

        session = SseSession(session_id=session_id, writer=read_writer)
        self.sessions.register(session)
        endpoint = f"{scope.get('root_path', '')}{self.config.message_path}?sessionId={session_id}"
        logger.info("SSE session %s opened", session_id)

        async def event_stream() -> AsyncIterator[dict[str, str]]:
            yield {"event": "endpoint", "data": endpoint}
            async with write_reader:
                async for session_message in write_reader:
                    yield {
                        "event": "message",
                        "data": session_message.message.model_dump_json(
                            by_alias=True, exclude_none=True
                        ),
                    }

        try:
            async with anyio.create_task_group() as tg:
                tg.start_soon(self._run_session_engine, session_id, read_stream, write_stream)
                response = EventSourceResponse(event_stream(), ping=SSE_PING_SECONDS)
                await response(scope, receive, send)
                tg.cancel_scope.cancel()
        finally:
            self.sessions.remove(session_id)
            await session.close()
            logger.info("SSE session %s closed", session_id)

    async def _run_session_engine(
        self,
        session_id: str,
        read_stream: MemoryObjectReceiveStream[Union[SessionMessage, Exception]],
        write_stream: MemoryObjectSendStream[SessionMessage],
    ) -> None:
        try:
            async with read_stream, write_stream:
                await self.server.run(
                    read_stream, write_stream, self.server.create_initialization_options()
                )
        except Exception:
            logger.exception("Protocol engine for SSE session %s failed", session_id)

    async def handle_post_message(self, request: Request) -> Response:
        session_id = request.query_params.get("sessionId")
        session = self.sessions.get(session_id)
        if session is None:
            logger.warning("Message for unknown SSE session %s", session_id)
            return JSONResponse(TRANSPORT_NOT_FOUND, status_code=404)

        try:
            context = self._open_context(request)
        except Exception:
            logger.exception("Error building adapter for SSE session %s", session_id)
            return JSONResponse(INTERNAL_ERROR, status_code=500)
        if context is None:
            return unauthorized_response(request, self.config.credential_header)

        body = await request.body()
        try:
            message = types.JSONRPCMessage.model_validate_json(body)
        except ValidationError as exc:
            logger.warning("Unparseable message for SSE session %s: %s", session_id, exc)
            return JSONResponse({"error": "Invalid JSON-RPC message"}, status_code=400)

        attach_context(request.scope, context)
        session_message = SessionMessage(
            message, metadata=ServerMessageMetadata(request_context=request)
        )
        try:
            await self.store.run(context, session.deliver, session_message)
        except (anyio.ClosedResourceError, anyio.BrokenResourceError):
            # Connection closed between lookup and delivery
            self.sessions.remove(session.session_id)
            return JSONResponse(TRANSPORT_NOT_FOUND, status_code=404)
        return Response("Accepted", status_code=202)


def build_app(transport: McpTransport, debug: bool = False) -> Starlette:
    return Starlette(debug=debug, routes=transport.routes(), lifespan=transport.lifespan)


def serve(app: Starlette, host: str, port: int, log_level: str = "info") -> None:
    """Run the Starlette app under uvicorn."""
    import uvicorn

    async def _serve():
        config = uvicorn.Config(app, host=host, port=port, log_level=log_level.lower())
        server = uvicorn.Server(config)
        await server.serve()

    anyio.run(_serve)
