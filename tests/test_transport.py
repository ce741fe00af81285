"""
Integration tests for the HTTP transports.

Streamable HTTP requests run end to end through the Starlette app (in JSON
response mode). The legacy SSE message endpoint is exercised against sessions
registered directly in the transport's session registry, and once end to end
against a live uvicorn server.
"""

import json
import re
import socket
import threading
import time
from unittest.mock import AsyncMock, MagicMock

import anyio
import httpx
import pytest
import uvicorn
from starlette.testclient import TestClient

from saas_mcp.config import MCPServerConfig
from saas_mcp.mcp import attio_server
from saas_mcp.mcp.context import context_from_request
from saas_mcp.mcp.sessions import SessionRegistry, SseSession, new_session_id
from saas_mcp.mcp.transport import McpTransport, build_app


MCP_HEADERS = {
    "Accept": "application/json, text/event-stream",
    "Content-Type": "application/json",
}

TOOLS_CALL = {
    "jsonrpc": "2.0",
    "id": 1,
    "method": "tools/call",
    "params": {"name": "attio_search_people", "arguments": {"query": "acme"}},
}


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

class _AdapterFactory:
    """Records every credential it is asked to build a client for."""

    def __init__(self, **methods):
        self.methods = methods
        self.keys: list[str] = []
        self.clients: list[MagicMock] = []

    def __call__(self, api_key: str) -> MagicMock:
        self.keys.append(api_key)
        client = MagicMock()
        for name, value in self.methods.items():
            if isinstance(value, BaseException):
                setattr(client, name, AsyncMock(side_effect=value))
            else:
                setattr(client, name, AsyncMock(return_value=value))
        self.clients.append(client)
        return client


def _transport(factory, default_credential=None, sessions=None) -> McpTransport:
    return McpTransport(
        attio_server.server,
        attio_server.store,
        factory,
        config=MCPServerConfig(json_response=True),
        default_credential=default_credential,
        sessions=sessions,
    )


def _app(factory, default_credential=None, sessions=None):
    return build_app(_transport(factory, default_credential, sessions))


def _register_session(registry: SessionRegistry, buffer: int = 1):
    writer, reader = anyio.create_memory_object_stream(buffer)
    session = SseSession(session_id=new_session_id(), writer=writer)
    registry.register(session)
    return session, reader


def _broken_factory(api_key: str):
    raise RuntimeError("adapter construction failed")


INTERNAL_ERROR_BODY = {
    "jsonrpc": "2.0",
    "error": {"code": -32603, "message": "Internal server error"},
    "id": None,
}


def _free_port() -> int:
    with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as sock:
        sock.bind(("127.0.0.1", 0))
        return sock.getsockname()[1]


class _LiveServer:
    """Runs an app under uvicorn in a background thread."""

    def __init__(self, app):
        self.port = _free_port()
        config = uvicorn.Config(app, host="127.0.0.1", port=self.port, log_level="warning")
        self.server = uvicorn.Server(config)
        self.thread = threading.Thread(target=self.server.run, daemon=True)

    @property
    def url(self) -> str:
        return f"http://127.0.0.1:{self.port}"

    def __enter__(self) -> "_LiveServer":
        self.thread.start()
        deadline = time.monotonic() + 10
        while not self.server.started:
            if time.monotonic() > deadline:
                raise RuntimeError("uvicorn did not start")
            time.sleep(0.05)
        return self

    def __exit__(self, *exc_info) -> None:
        self.server.should_exit = True
        self.thread.join(timeout=10)


def _sse_events(response: httpx.Response):
    """Yield (event, data) pairs from an open event-stream response."""
    event, data = None, []
    for line in response.iter_lines():
        if not line:
            if event or data:
                yield event or "message", "\n".join(data)
            event, data = None, []
        elif line.startswith(":"):
            continue
        elif line.startswith("event:"):
            event = line[len("event:"):].strip()
        elif line.startswith("data:"):
            data.append(line[len("data:"):].lstrip(" "))


def _wait_for(predicate, timeout: float = 5.0) -> bool:
    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        if predicate():
            return True
        time.sleep(0.05)
    return predicate()


# ===========================================================================
# Streamable HTTP (/mcp)
# ===========================================================================

class TestStreamableHttp:
    def test_get_is_method_not_allowed(self):
        with TestClient(_app(_AdapterFactory())) as client:
            response = client.get("/mcp")

        assert response.status_code == 405
        assert response.json() == {
            "jsonrpc": "2.0",
            "error": {"code": -32000, "message": "Method not allowed."},
            "id": None,
        }

    def test_delete_is_method_not_allowed(self):
        with TestClient(_app(_AdapterFactory())) as client:
            response = client.delete("/mcp")

        assert response.status_code == 405
        assert response.json()["error"]["code"] == -32000

    def test_missing_credential_is_rejected(self):
        factory = _AdapterFactory()
        with TestClient(_app(factory)) as client:
            response = client.post("/mcp", json=TOOLS_CALL, headers=MCP_HEADERS)

        assert response.status_code == 401
        assert response.json()["error"] == {
            "code": -32001,
            "message": "Unauthorized: missing API credential",
        }
        assert factory.keys == []

    def test_blank_credential_is_rejected(self):
        with TestClient(_app(_AdapterFactory())) as client:
            response = client.post(
                "/mcp", json=TOOLS_CALL, headers={**MCP_HEADERS, "x-auth-token": "   "}
            )

        assert response.status_code == 401

    def test_tool_call_uses_header_credential(self):
        factory = _AdapterFactory(search_people={"data": [{"id": "p1"}]})
        with TestClient(_app(factory)) as client:
            response = client.post(
                "/mcp", json=TOOLS_CALL, headers={**MCP_HEADERS, "x-auth-token": "tenant-key"}
            )

        assert response.status_code == 200
        result = response.json()["result"]
        assert result["isError"] is False
        assert json.loads(result["content"][0]["text"]) == {"data": [{"id": "p1"}]}
        assert factory.keys == ["tenant-key"]

    def test_adapter_failure_is_still_http_200(self):
        factory = _AdapterFactory(search_people=RuntimeError("Attio API error: 401 Unauthorized - bad key"))
        with TestClient(_app(factory)) as client:
            response = client.post(
                "/mcp", json=TOOLS_CALL, headers={**MCP_HEADERS, "x-auth-token": "bad"}
            )

        assert response.status_code == 200
        result = response.json()["result"]
        assert result["isError"] is True
        assert result["content"][0]["text"] == "Error: Attio API error: 401 Unauthorized - bad key"

    def test_default_credential_wins_over_header(self):
        factory = _AdapterFactory(search_people={"data": []})
        with TestClient(_app(factory, default_credential="env-key")) as client:
            response = client.post(
                "/mcp", json=TOOLS_CALL, headers={**MCP_HEADERS, "x-auth-token": "header-key"}
            )

        assert response.status_code == 200
        assert factory.keys == ["env-key"]

    def test_default_credential_allows_requests_without_header(self):
        factory = _AdapterFactory(search_people={"data": []})
        with TestClient(_app(factory, default_credential="env-key")) as client:
            response = client.post("/mcp", json=TOOLS_CALL, headers=MCP_HEADERS)

        assert response.status_code == 200

    def test_every_request_builds_a_fresh_adapter(self):
        factory = _AdapterFactory(search_people={"data": []})
        with TestClient(_app(factory)) as client:
            for key in ("key-a", "key-b"):
                client.post("/mcp", json=TOOLS_CALL, headers={**MCP_HEADERS, "x-auth-token": key})

        assert factory.keys == ["key-a", "key-b"]
        assert factory.clients[0] is not factory.clients[1]
        factory.clients[0].search_people.assert_awaited_once()
        factory.clients[1].search_people.assert_awaited_once()

    def test_tools_list_returns_catalog(self):
        body = {"jsonrpc": "2.0", "id": 2, "method": "tools/list", "params": {}}
        with TestClient(_app(_AdapterFactory())) as client:
            response = client.post("/mcp", json=body, headers={**MCP_HEADERS, "x-auth-token": "k"})

        assert response.status_code == 200
        names = [tool["name"] for tool in response.json()["result"]["tools"]]
        assert names == attio_server.registry.names()

    def test_unexpected_fault_is_internal_error(self):
        app = _app(_broken_factory)
        with TestClient(app, raise_server_exceptions=False) as client:
            response = client.post(
                "/mcp", json=TOOLS_CALL, headers={**MCP_HEADERS, "x-auth-token": "k"}
            )

        assert response.status_code == 500
        assert response.json() == INTERNAL_ERROR_BODY


# ===========================================================================
# HTTP+SSE message endpoint (/messages)
# ===========================================================================

class TestSseMessages:
    def test_unknown_session_is_not_found(self):
        with TestClient(_app(_AdapterFactory())) as client:
            response = client.post(
                "/messages?sessionId=does-not-exist", json=TOOLS_CALL, headers={"x-auth-token": "k"}
            )

        assert response.status_code == 404
        assert response.json() == {"error": "Transport not found"}

    def test_missing_session_id_is_not_found(self):
        with TestClient(_app(_AdapterFactory())) as client:
            response = client.post("/messages", json=TOOLS_CALL, headers={"x-auth-token": "k"})

        assert response.status_code == 404
        assert response.json() == {"error": "Transport not found"}

    def test_removed_session_is_not_found(self):
        registry = SessionRegistry()
        session, _ = _register_session(registry)
        registry.remove(session.session_id)

        with TestClient(_app(_AdapterFactory(), sessions=registry)) as client:
            response = client.post(
                f"/messages?sessionId={session.session_id}", json=TOOLS_CALL, headers={"x-auth-token": "k"}
            )

        assert response.status_code == 404

    def test_message_is_delivered_with_its_own_context(self):
        registry = SessionRegistry()
        session, reader = _register_session(registry)
        factory = _AdapterFactory()

        with TestClient(_app(factory, sessions=registry)) as client:
            response = client.post(
                f"/messages?sessionId={session.session_id}",
                json=TOOLS_CALL,
                headers={"x-auth-token": "sse-key"},
            )

        assert response.status_code == 202
        delivered = reader.receive_nowait()
        assert delivered.message.root.method == "tools/call"
        context = context_from_request(delivered.metadata.request_context)
        assert context.adapter is factory.clients[0]
        assert factory.keys == ["sse-key"]

    def test_missing_credential_on_known_session(self):
        registry = SessionRegistry()
        session, reader = _register_session(registry)

        with TestClient(_app(_AdapterFactory(), sessions=registry)) as client:
            response = client.post(f"/messages?sessionId={session.session_id}", json=TOOLS_CALL)

        assert response.status_code == 401
        with pytest.raises(anyio.WouldBlock):
            reader.receive_nowait()

    def test_invalid_message_is_bad_request(self):
        registry = SessionRegistry()
        session, _ = _register_session(registry)

        with TestClient(_app(_AdapterFactory(), sessions=registry)) as client:
            response = client.post(
                f"/messages?sessionId={session.session_id}",
                content=b"{not json",
                headers={"x-auth-token": "k", "Content-Type": "application/json"},
            )

        assert response.status_code == 400
        assert response.json() == {"error": "Invalid JSON-RPC message"}

    def test_closed_session_is_removed_and_not_found(self):
        registry = SessionRegistry()
        session, reader = _register_session(registry)
        reader.close()

        with TestClient(_app(_AdapterFactory(), sessions=registry)) as client:
            response = client.post(
                f"/messages?sessionId={session.session_id}", json=TOOLS_CALL, headers={"x-auth-token": "k"}
            )

        assert response.status_code == 404
        assert session.session_id not in registry

    def test_adapter_fault_is_internal_error(self):
        registry = SessionRegistry()
        session, reader = _register_session(registry)

        with TestClient(_app(_broken_factory, sessions=registry), raise_server_exceptions=False) as client:
            response = client.post(
                f"/messages?sessionId={session.session_id}", json=TOOLS_CALL, headers={"x-auth-token": "k"}
            )

        assert response.status_code == 500
        assert response.json() == INTERNAL_ERROR_BODY
        with pytest.raises(anyio.WouldBlock):
            reader.receive_nowait()


# ===========================================================================
# HTTP+SSE end to end (live server)
# ===========================================================================

class TestSseLiveSession:
    """A real GET /sse connection driven by companion POSTs."""

    def _keyed_factory(self, api_key: str) -> MagicMock:
        client = MagicMock()
        client.search_people = AsyncMock(return_value={"key": api_key})
        return client

    def test_session_lifecycle(self):
        transport = _transport(self._keyed_factory)
        app = build_app(transport)

        with _LiveServer(app) as live, httpx.Client(base_url=live.url, timeout=10.0) as poster:
            with httpx.Client(base_url=live.url, timeout=10.0) as streamer:
                with streamer.stream("GET", "/sse") as stream:
                    assert stream.status_code == 200
                    events = _sse_events(stream)

                    name, endpoint = next(events)
                    assert name == "endpoint"
                    assert re.fullmatch(r"/messages\?sessionId=[0-9a-f]{32}", endpoint)
                    assert len(transport.sessions) == 1

                    def post(body, key):
                        return poster.post(endpoint, json=body, headers={"x-auth-token": key})

                    initialize = {
                        "jsonrpc": "2.0",
                        "id": 1,
                        "method": "initialize",
                        "params": {
                            "protocolVersion": "2024-11-05",
                            "capabilities": {},
                            "clientInfo": {"name": "pytest", "version": "0"},
                        },
                    }
                    assert post(initialize, "key-A").status_code == 202
                    name, data = next(events)
                    assert name == "message"
                    reply = json.loads(data)
                    assert reply["id"] == 1
                    assert reply["result"]["serverInfo"]["name"] == "attio-mcp-server"

                    initialized = {"jsonrpc": "2.0", "method": "notifications/initialized"}
                    assert post(initialized, "key-A").status_code == 202

                    results = []
                    for request_id, key in ((2, "key-A"), (3, "key-B")):
                        call = {**TOOLS_CALL, "id": request_id}
                        assert post(call, key).status_code == 202
                        name, data = next(events)
                        assert name == "message"
                        reply = json.loads(data)
                        assert reply["id"] == request_id
                        assert reply["result"]["isError"] is False
                        results.append(json.loads(reply["result"]["content"][0]["text"]))

                    assert results == [{"key": "key-A"}, {"key": "key-B"}]

            assert _wait_for(lambda: len(transport.sessions) == 0)
            response = poster.post(endpoint, json=TOOLS_CALL, headers={"x-auth-token": "key-A"})
            assert response.status_code == 404
            assert response.json() == {"error": "Transport not found"}


# ===========================================================================
# SessionRegistry
# ===========================================================================

class TestSessionRegistry:
    def test_register_get_remove(self):
        registry = SessionRegistry()
        session, _ = _register_session(registry)

        assert registry.get(session.session_id) is session
        assert len(registry) == 1
        assert registry.remove(session.session_id) is session
        assert registry.get(session.session_id) is None

    def test_remove_is_idempotent(self):
        registry = SessionRegistry()
        assert registry.remove("missing") is None

    def test_duplicate_id_rejected(self):
        registry = SessionRegistry()
        session, _ = _register_session(registry)
        with pytest.raises(ValueError):
            registry.register(session)

    def test_blank_id_never_matches(self):
        registry = SessionRegistry()
        assert registry.get(None) is None
        assert registry.get("") is None

    def test_session_ids_are_unique_hex(self):
        ids = {new_session_id() for _ in range(100)}
        assert len(ids) == 100
        assert all(len(i) == 32 and int(i, 16) >= 0 for i in ids)
