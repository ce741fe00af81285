"""
Unit tests for the request context store and the scope bridge the transport
uses to hand a context to the protocol engine.
"""

import asyncio
from unittest.mock import MagicMock

import pytest
from starlette.requests import Request

from saas_mcp.mcp.context import (
    ContextMissing,
    RequestContext,
    RequestContextStore,
    attach_context,
    context_from_request,
)


def _http_scope() -> dict:
    return {"type": "http", "method": "POST", "path": "/messages", "headers": [], "query_string": b""}


# ===========================================================================
# RequestContextStore
# ===========================================================================

class TestRequestContextStore:
    async def test_current_inside_run_returns_bound_context(self):
        store = RequestContextStore()
        ctx = RequestContext(adapter="client-a")

        async def body():
            return store.current()

        assert await store.run(ctx, body) is ctx

    async def test_current_outside_any_run_raises(self):
        store = RequestContextStore()
        with pytest.raises(ContextMissing):
            store.current()
        assert store.is_bound() is False

    async def test_binding_does_not_outlive_run(self):
        store = RequestContextStore()

        async def body():
            return store.is_bound()

        assert await store.run(RequestContext(adapter=object()), body) is True
        assert store.is_bound() is False

    async def test_binding_released_when_body_raises(self):
        store = RequestContextStore()

        async def body():
            raise ValueError("boom")

        with pytest.raises(ValueError):
            await store.run(RequestContext(adapter=object()), body)
        assert store.is_bound() is False

    async def test_nested_run_restores_outer_context(self):
        store = RequestContextStore()
        outer = RequestContext(adapter="outer")
        inner = RequestContext(adapter="inner")

        async def inner_body():
            return store.current().adapter

        async def outer_body():
            seen = await store.run(inner, inner_body)
            return seen, store.current().adapter

        assert await store.run(outer, outer_body) == ("inner", "outer")

    async def test_concurrent_runs_are_isolated(self):
        store = RequestContextStore()

        async def body(expected):
            # Yield several times so the two runs interleave
            for _ in range(5):
                await asyncio.sleep(0)
                assert store.current().adapter == expected
            return store.current().adapter

        results = await asyncio.gather(
            store.run(RequestContext(adapter="key-one"), body, "key-one"),
            store.run(RequestContext(adapter="key-two"), body, "key-two"),
        )
        assert results == ["key-one", "key-two"]

    async def test_spawned_task_inherits_context(self):
        store = RequestContextStore()

        async def child():
            return store.current().adapter

        async def body():
            return await asyncio.create_task(child())

        assert await store.run(RequestContext(adapter="parent"), body) == "parent"

    async def test_separate_stores_do_not_share_bindings(self):
        first = RequestContextStore("first")
        second = RequestContextStore("second")

        async def body():
            return second.is_bound()

        assert await first.run(RequestContext(adapter="x"), body) is False


# ===========================================================================
# Scope bridge
# ===========================================================================

class TestScopeBridge:
    def test_attached_context_is_visible_from_request(self):
        scope = _http_scope()
        ctx = RequestContext(adapter="client", credential_source="env")

        attach_context(scope, ctx)

        assert context_from_request(Request(scope)) is ctx

    def test_request_without_context_returns_none(self):
        assert context_from_request(Request(_http_scope())) is None

    def test_non_request_objects_return_none(self):
        assert context_from_request(None) is None
        assert context_from_request(MagicMock()) is None

    def test_attach_preserves_existing_state(self):
        scope = _http_scope()
        scope["state"] = {"other": 1}

        attach_context(scope, RequestContext(adapter="a"))

        assert scope["state"]["other"] == 1
