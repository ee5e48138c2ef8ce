"""Tests for the streamable HTTP interceptor: sessions, HTTP metadata and DELETE."""

import json

import httpx
import pytest

from mcp_compliance.capture import CaptureCollector
from mcp_compliance.interceptors import StreamableHTTPInterceptor
from mcp_compliance.models import HttpInteraction, Transport

TARGET = "http://upstream.test"
SESSION = "session-123"
PROTOCOL_VERSION = "2025-03-26"

INITIALIZE = {"jsonrpc": "2.0", "id": 1, "method": "initialize", "params": {"protocolVersion": PROTOCOL_VERSION}}
CALL = {"jsonrpc": "2.0", "id": 2, "method": "tools/call", "params": {"name": "slow"}}
PROGRESS = {"jsonrpc": "2.0", "method": "notifications/progress", "params": {"progress": 1}}


class FakeStreamableServer:
    """Hands out a session on initialize, streams tool calls, accepts DELETE."""

    def __init__(self):
        self.requests = []
        self.fail = False

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        if self.fail:
            raise httpx.ReadTimeout("timed out", request=request)

        session_headers = {"mcp-session-id": SESSION, "mcp-protocol-version": PROTOCOL_VERSION}

        if request.method == "DELETE":
            return httpx.Response(200)

        if request.method == "GET":
            return httpx.Response(
                200,
                headers={"content-type": "text/event-stream", **session_headers},
                content=f"data: {json.dumps(PROGRESS)}\n\n".encode(),
            )

        body = json.loads(request.content)
        if body["method"] == "initialize":
            return httpx.Response(
                200,
                headers=session_headers,
                json={"jsonrpc": "2.0", "id": body["id"], "result": {"protocolVersion": PROTOCOL_VERSION}},
            )

        result = {"jsonrpc": "2.0", "id": body["id"], "result": {"content": []}}
        stream = f"event: message\ndata: {json.dumps(PROGRESS)}\n\nevent: message\ndata: {json.dumps(result)}\n\n"
        return httpx.Response(
            200,
            headers={"content-type": "text/event-stream", **session_headers},
            content=stream.encode(),
        )


@pytest.fixture
def target():
    return FakeStreamableServer()


@pytest.fixture
def collector():
    return CaptureCollector()


@pytest.fixture
def interceptor(target, collector):
    return StreamableHTTPInterceptor(
        TARGET,
        0,
        client_id="client1",
        server_id="server1",
        observer=collector,
        client=httpx.AsyncClient(transport=httpx.MockTransport(target)),
    )


def mitm_client(interceptor) -> httpx.AsyncClient:
    return httpx.AsyncClient(transport=httpx.ASGITransport(app=interceptor.app), base_url="http://mitm.test")


@pytest.mark.asyncio
async def test_initialize_tracks_session_and_records_metadata(interceptor, collector):
    """Test a POST exchange carries HTTP metadata and starts a session."""
    async with mitm_client(interceptor) as client:
        response = await client.post(
            "/mcp",
            json=INITIALIZE,
            headers={"accept": "application/json, text/event-stream", "user-agent": "test-client"},
        )

    assert response.status_code == 200
    assert response.headers["mcp-session-id"] == SESSION
    assert response.headers["mcp-protocol-version"] == PROTOCOL_VERSION
    assert interceptor.active_sessions() == [SESSION]

    request, reply = collector.messages
    assert request.metadata.transport == Transport.STREAMABLE_HTTP
    assert request.metadata.streamable_http_metadata.method == HttpInteraction.POST
    assert request.metadata.streamable_http_metadata.headers == {
        "content-type": "application/json",
        "accept": "application/json, text/event-stream",
    }

    assert (reply.metadata.sender, reply.metadata.recipient) == ("server1", "client1")
    assert reply.metadata.streamable_http_metadata.method == HttpInteraction.POST
    assert reply.metadata.streamable_http_metadata.headers == {
        "mcp-session-id": SESSION,
        "mcp-protocol-version": PROTOCOL_VERSION,
        "content-type": "application/json",
    }


@pytest.mark.asyncio
async def test_post_answered_with_event_stream(interceptor, target, collector):
    """Test messages streamed back on a POST are recorded as POST-SSE."""
    async with mitm_client(interceptor) as client:
        response = await client.post("/mcp", json=CALL, headers={"mcp-session-id": SESSION})

    assert response.status_code == 200
    assert response.headers["content-type"].startswith("text/event-stream")
    assert target.requests[0].headers["mcp-session-id"] == SESSION

    methods = [
        (m.metadata.sender, m.message.kind, m.metadata.streamable_http_metadata.method)
        for m in collector.messages
    ]
    assert methods == [
        ("client1", "request", HttpInteraction.POST),
        ("server1", "notification", HttpInteraction.POST_SSE),
        ("server1", "response", HttpInteraction.POST_SSE),
    ]
    assert collector.messages[0].metadata.streamable_http_metadata.headers["mcp-session-id"] == SESSION


@pytest.mark.asyncio
async def test_get_stream_uses_request_headers(interceptor, collector):
    """Test the standalone GET stream is recorded as GET-SSE with request headers."""
    async with mitm_client(interceptor) as client:
        response = await client.get(
            "/mcp",
            headers={"mcp-session-id": SESSION, "accept": "text/event-stream"},
        )

    assert response.status_code == 200
    assert response.text == f"data: {json.dumps(PROGRESS)}\n\n"

    (recorded,) = collector.messages
    http = recorded.metadata.streamable_http_metadata
    assert http.method == HttpInteraction.GET_SSE
    assert http.headers == {"mcp-session-id": SESSION, "accept": "text/event-stream"}
    assert interceptor._sessions == {SESSION: "SSE"}


@pytest.mark.asyncio
async def test_delete_ends_session(interceptor, target):
    """Test DELETE is forwarded and the session forgotten."""
    async with mitm_client(interceptor) as client:
        await client.post("/mcp", json=INITIALIZE)
        assert interceptor.active_sessions() == [SESSION]

        response = await client.delete("/mcp", headers={"mcp-session-id": SESSION})

    assert response.status_code == 200
    assert interceptor.active_sessions() == []
    deleted = target.requests[-1]
    assert deleted.method == "DELETE"
    assert deleted.headers["mcp-session-id"] == SESSION


@pytest.mark.asyncio
async def test_forwarding_failure_is_jsonrpc_error(interceptor, target):
    """Test failures are answered with an internal JSON-RPC error."""
    target.fail = True
    async with mitm_client(interceptor) as client:
        post = await client.post("/mcp", json=INITIALIZE)
        delete = await client.delete("/mcp", headers={"mcp-session-id": SESSION})

    expected = {"jsonrpc": "2.0", "error": {"code": -32603, "message": "Internal proxy error"}, "id": None}
    assert post.status_code == 500
    assert post.json() == expected
    assert delete.status_code == 500
    assert delete.json() == expected


@pytest.mark.asyncio
async def test_sessions_are_per_instance(target):
    """Test two interceptors do not share session state."""
    first = StreamableHTTPInterceptor(
        TARGET, 0, client_id="a", server_id="s",
        client=httpx.AsyncClient(transport=httpx.MockTransport(target)),
    )
    second = StreamableHTTPInterceptor(
        TARGET, 0, client_id="b", server_id="s",
        client=httpx.AsyncClient(transport=httpx.MockTransport(target)),
    )

    async with mitm_client(first) as client:
        await client.post("/mcp", json=INITIALIZE)

    assert first.active_sessions() == [SESSION]
    assert second.active_sessions() == []

    await first.close()
    assert first.active_sessions() == []
    await first.close()
