import json
from collections.abc import AsyncIterator
from typing import Any

import anyio
import httpx
import pytest

from agentlink.client.session import ClientSession
from agentlink.client.sse import SSETransport, sse_client
from agentlink.shared.exceptions import TransportError
from agentlink.shared.message import SessionMessage
from agentlink.types import JSONRPCError, JSONRPCNotification, JSONRPCRequest, JSONRPCResponse

BASE_URL = "http://tools.test"


class FakeSSEServer:
    """Serves an SSE stream fed by the test and records POSTed messages."""

    def __init__(self, post_status: int = 202, stream_status: int = 200):
        self.post_status = post_status
        self.stream_status = stream_status
        self.posts: list[tuple[str, dict[str, Any]]] = []
        self._events, self._events_reader = anyio.create_memory_object_stream[bytes](100)

    async def emit(self, data: str, event: str | None = None) -> None:
        chunk = f"event: {event}\n" if event else ""
        chunk += f"data: {data}\n\n"
        await self._events.send(chunk.encode())

    async def emit_json(self, payload: dict[str, Any]) -> None:
        await self.emit(json.dumps(payload))

    async def hang_up(self) -> None:
        await self._events.aclose()

    async def _body(self) -> AsyncIterator[bytes]:
        async with self._events_reader:
            async for chunk in self._events_reader:
                yield chunk

    async def handle(self, request: httpx.Request) -> httpx.Response:
        if request.method == "GET" and request.url.path == "/sse":
            if self.stream_status != 200:
                return httpx.Response(self.stream_status)
            return httpx.Response(200, headers={"content-type": "text/event-stream"}, content=self._body())
        if request.method == "POST":
            self.posts.append((str(request.url), json.loads(request.content)))
            return httpx.Response(self.post_status)
        return httpx.Response(404)

    def client_factory(self, **kwargs: Any) -> httpx.AsyncClient:
        return httpx.AsyncClient(transport=httpx.MockTransport(self.handle), **kwargs)


async def receive(read_stream) -> SessionMessage | Exception:
    with anyio.fail_after(2):
        return await read_stream.receive()


@pytest.mark.anyio
async def test_message_events_are_decoded():
    server = FakeSSEServer()

    async with sse_client(BASE_URL, httpx_client_factory=server.client_factory) as (read_stream, _):
        await server.emit_json({"jsonrpc": "2.0", "method": "session", "params": {"sessionId": "abc"}})
        await server.emit_json({"jsonrpc": "2.0", "id": "1", "result": {"ok": True}})

        first = await receive(read_stream)
        second = await receive(read_stream)

    assert isinstance(first, SessionMessage)
    assert isinstance(first.message, JSONRPCNotification)
    assert isinstance(second, SessionMessage)
    assert isinstance(second.message, JSONRPCResponse)
    assert second.metadata is not None
    assert second.metadata.event == "message"


@pytest.mark.anyio
async def test_send_posts_request_to_messages_path():
    server = FakeSSEServer()

    async with sse_client(BASE_URL, httpx_client_factory=server.client_factory) as (_, send):
        await send(JSONRPCRequest(id="1", method="tools/list", params={"sessionId": "abc"}))

    url, body = server.posts[0]
    assert url == "http://tools.test/messages"
    assert body == {"jsonrpc": "2.0", "id": "1", "method": "tools/list", "params": {"sessionId": "abc"}}


@pytest.mark.anyio
async def test_endpoint_event_redirects_posts():
    server = FakeSSEServer()

    async with sse_client(BASE_URL, httpx_client_factory=server.client_factory) as (read_stream, send):
        await server.emit("/messages/?session_id=abc", event="endpoint")
        await server.emit_json({"jsonrpc": "2.0", "method": "ready"})
        await receive(read_stream)

        await send(JSONRPCRequest(id="1", method="tools/list"))

    assert server.posts[0][0] == "http://tools.test/messages/?session_id=abc"


@pytest.mark.anyio
async def test_endpoint_with_foreign_origin_fails_stream():
    server = FakeSSEServer()

    async with sse_client(BASE_URL, httpx_client_factory=server.client_factory) as (read_stream, _):
        await server.emit("http://evil.test/messages", event="endpoint")
        item = await receive(read_stream)
        assert isinstance(item, TransportError)
        assert "origin" in str(item)

        with anyio.fail_after(2):
            rest = [entry async for entry in read_stream]
        assert rest == []


@pytest.mark.anyio
async def test_rejected_post_raises_transport_error():
    server = FakeSSEServer(post_status=500)

    async with sse_client(BASE_URL, httpx_client_factory=server.client_factory) as (_, send):
        with pytest.raises(TransportError, match="HTTP 500"):
            await send(JSONRPCRequest(id="1", method="tools/list"))


@pytest.mark.anyio
async def test_stream_open_failure_raises_transport_error():
    server = FakeSSEServer(stream_status=503)

    with pytest.raises(TransportError, match="Failed to open SSE stream"):
        async with sse_client(BASE_URL, httpx_client_factory=server.client_factory):
            pytest.fail("stream should not open")


@pytest.mark.anyio
async def test_malformed_url_raises_transport_error():
    with pytest.raises(TransportError, match="Failed to open SSE stream"):
        async with sse_client("http://[not-a-host"):
            pytest.fail("stream should not open")


@pytest.mark.anyio
async def test_error_event_without_code_is_decoded_as_error():
    server = FakeSSEServer()

    async with sse_client(BASE_URL, httpx_client_factory=server.client_factory) as (read_stream, _):
        await server.emit_json({"jsonrpc": "2.0", "id": 3, "error": {"message": "boom"}})
        item = await receive(read_stream)

    assert isinstance(item, SessionMessage)
    assert isinstance(item.message, JSONRPCError)
    assert item.message.error.message == "boom"


@pytest.mark.anyio
async def test_undecodable_event_is_delivered_as_exception():
    server = FakeSSEServer()

    async with sse_client(BASE_URL, httpx_client_factory=server.client_factory) as (read_stream, _):
        await server.emit("{not json")
        await server.emit_json({"jsonrpc": "2.0", "id": 2, "result": {}})

        bad = await receive(read_stream)
        good = await receive(read_stream)

    assert isinstance(bad, Exception)
    assert isinstance(good, SessionMessage)


@pytest.mark.anyio
async def test_server_hang_up_ends_read_stream():
    server = FakeSSEServer()

    async with sse_client(BASE_URL, httpx_client_factory=server.client_factory) as (read_stream, _):
        await server.hang_up()
        with anyio.fail_after(2):
            items = [item async for item in read_stream]

    assert items == []


@pytest.mark.anyio
async def test_client_session_over_sse_transport():
    server = FakeSSEServer()

    async def respond():
        await server.emit_json({"jsonrpc": "2.0", "method": "session", "params": {"sessionId": "sse-session"}})
        handled = 0
        while handled < 2:
            await anyio.sleep(0.01)
            for _, body in server.posts[handled:]:
                handled += 1
                if body["method"] == "initialize":
                    result = {"protocolVersion": "2024-11-05", "capabilities": {}, "serverInfo": {"name": "s", "version": "1"}}
                else:
                    result = {"tools": [{"name": "echo", "inputSchema": {}}]}
                await server.emit_json({"jsonrpc": "2.0", "id": body["id"], "result": result})

    transport = SSETransport(BASE_URL, httpx_client_factory=server.client_factory)
    session = ClientSession(BASE_URL, transport=transport, session_timeout=2, request_timeout=2)

    async with anyio.create_task_group() as tg:
        tg.start_soon(respond)
        async with session:
            assert session.get_session_id() == "sse-session"
            assert [tool.name for tool in session.available_tools] == ["echo"]
            assert all(body["params"]["sessionId"] == "sse-session" for _, body in server.posts)
