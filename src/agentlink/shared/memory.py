"""
In-memory transport pair, for driving a client without a network.
"""

from __future__ import annotations

from collections.abc import AsyncIterator, Awaitable, Callable
from contextlib import asynccontextmanager
from typing import Any

import anyio
from anyio.streams.memory import MemoryObjectReceiveStream, MemoryObjectSendStream

from agentlink.shared.exceptions import TransportError
from agentlink.shared.message import SessionMessage
from agentlink.types import ErrorData, JSONRPCError, JSONRPCMessage, JSONRPCRequest, JSONRPCResponse, parse_message

RequestHandler = Callable[[JSONRPCRequest], Awaitable[dict[str, Any] | ErrorData | None]]
"""Server-side handler: a result dict, an error, or None for no reply."""


class MemoryTransport:
    """Transport pair backed by anyio memory streams.

    The test side plays the server: it reads submitted requests from
    `requests` (or runs `serve`) and delivers inbound messages with `push`.
    """

    def __init__(self, buffer_size: int = 64) -> None:
        self._buffer_size = buffer_size
        self.sent: list[JSONRPCRequest] = []
        self.send_error: Exception | None = None
        self.connect_count = 0
        self._inbound: MemoryObjectSendStream[SessionMessage | Exception] | None = None
        self._requests_writer: MemoryObjectSendStream[JSONRPCRequest] | None = None
        self.requests: MemoryObjectReceiveStream[JSONRPCRequest] | None = None
        self.connected = anyio.Event()

    @asynccontextmanager
    async def connect(self) -> AsyncIterator[tuple[MemoryObjectReceiveStream[SessionMessage | Exception], Any]]:
        inbound_writer, inbound_reader = anyio.create_memory_object_stream[SessionMessage | Exception](
            self._buffer_size
        )
        requests_writer, requests_reader = anyio.create_memory_object_stream[JSONRPCRequest](self._buffer_size)
        self._inbound = inbound_writer
        self._requests_writer = requests_writer
        self.requests = requests_reader
        self.connect_count += 1

        async def send(request: JSONRPCRequest) -> None:
            if self.send_error is not None:
                raise self.send_error
            self.sent.append(request)
            try:
                await requests_writer.send(request)
            except (anyio.BrokenResourceError, anyio.ClosedResourceError) as exc:
                raise TransportError.from_message("Outbound channel closed") from exc

        self.connected.set()
        try:
            yield inbound_reader, send
        finally:
            await inbound_writer.aclose()
            await requests_writer.aclose()
            self._inbound = None
            self._requests_writer = None
            self.connected = anyio.Event()

    async def push(self, message: JSONRPCMessage | dict[str, Any] | Exception) -> None:
        """Deliver one message on the inbound stream."""
        if self._inbound is None:
            raise RuntimeError("Transport is not connected")
        if isinstance(message, dict):
            message = parse_message(message)
        if isinstance(message, Exception):
            await self._inbound.send(message)
        else:
            await self._inbound.send(SessionMessage(message))

    async def announce_session(self, session_id: str) -> None:
        await self.push({"jsonrpc": "2.0", "method": "session", "params": {"sessionId": session_id}})

    async def close_inbound(self) -> None:
        """End the inbound stream, as if the server hung up."""
        if self._inbound is not None:
            await self._inbound.aclose()

    async def serve(self, handler: RequestHandler) -> None:
        """Answer every submitted request with `handler` until disconnected."""
        if self.requests is None:
            raise RuntimeError("Transport is not connected")
        async with self.requests:
            async for request in self.requests:
                outcome = await handler(request)
                if outcome is None or self._inbound is None:
                    continue
                if isinstance(outcome, ErrorData):
                    await self.push(JSONRPCError(id=request.id, error=outcome))
                else:
                    assert request.id is not None
                    await self.push(JSONRPCResponse(id=request.id, result=outcome))


def create_memory_transport(buffer_size: int = 64) -> MemoryTransport:
    """Create a MemoryTransport whose fake-server side is scripted by the caller."""
    return MemoryTransport(buffer_size=buffer_size)
