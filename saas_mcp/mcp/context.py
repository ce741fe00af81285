"""
Request-scoped backend context.

Every inbound request (or event-stream message) gets a freshly constructed,
authenticated backend adapter. The adapter is bound to the dynamic extent of
that request through a ContextVar, so any code running inside the request,
including subtasks it spawns, can resolve it with `current()` without the
adapter being threaded through call signatures. Concurrent requests each see
only their own binding.

Usage:
    store = RequestContextStore()

    await store.run(RequestContext(adapter=client), handle_request, scope)

    # anywhere inside handle_request
    client = store.current().adapter
"""

import logging
from contextlib import asynccontextmanager
from contextvars import ContextVar
from dataclasses import dataclass
from typing import Any, AsyncIterator, Awaitable, Callable, MutableMapping, Optional, TypeVar

from starlette.requests import Request

logger = logging.getLogger("saas_mcp.mcp.context")

T = TypeVar("T")

# Key under the ASGI scope "state" dict where the transport parks the context
_STATE_KEY = "mcp_request_context"


class ContextMissing(RuntimeError):
    """Raised when a tool call runs outside any request context."""


@dataclass(frozen=True)
class RequestContext:
    """Authenticated adapter for exactly one request or message."""

    adapter: Any
    credential_source: str = "header"


class RequestContextStore:
    """ContextVar-backed binding of a RequestContext to the current task tree."""

    def __init__(self, name: str = "mcp_request_context") -> None:
        self._var: ContextVar[RequestContext] = ContextVar(name)

    @asynccontextmanager
    async def scope(self, context: RequestContext) -> AsyncIterator[RequestContext]:
        token = self._var.set(context)
        try:
            yield context
        finally:
            self._var.reset(token)

    async def run(self, context: RequestContext, body: Callable[..., Awaitable[T]], *args: Any) -> T:
        """Await `body(*args)` with `context` bound; the binding never outlives it."""
        async with self.scope(context):
            return await body(*args)

    def current(self) -> RequestContext:
        try:
            return self._var.get()
        except LookupError:
            raise ContextMissing(
                "No request context is bound; tool calls must arrive through an "
                "authenticated transport"
            ) from None

    def is_bound(self) -> bool:
        return self._var.get(None) is not None


# ---------------------------------------------------------------------------
# Transport bridge
# ---------------------------------------------------------------------------

def attach_context(scope: MutableMapping[str, Any], context: RequestContext) -> None:
    """Park `context` in the ASGI scope so the protocol engine can re-bind it."""
    scope.setdefault("state", {})[_STATE_KEY] = context


def context_from_request(request: Any) -> Optional[RequestContext]:
    """Return the context attached to a Starlette request, if any."""
    if not isinstance(request, Request):
        return None
    state = request.scope.get("state") or {}
    return state.get(_STATE_KEY)
