"""Request/response correlation over an asymmetric transport.

Requests leave on one channel and their replies come back, in any order,
on a shared push stream. The correlator keeps one pending entry per request
id and hands each reply to the caller waiting on that id.
"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass, field
from uuid import uuid4

import anyio
from anyio.streams.memory import MemoryObjectReceiveStream, MemoryObjectSendStream

from agentlink.shared.exceptions import (
    DisconnectedError,
    McpError,
    ProtocolError,
    RequestTimeoutError,
    TransportError,
)
from agentlink.shared.message import SendFn
from agentlink.types import JSONRPCError, JSONRPCMessage, JSONRPCRequest, JSONRPCResponse, RequestId

logger = logging.getLogger(__name__)

Outcome = JSONRPCResponse | JSONRPCError | McpError


@dataclass
class PendingRequest:
    """A request waiting for its reply.

    The single-slot stream is the completion primitive: exactly one outcome
    is ever sent into it, by whichever path removes the entry from the
    registry first.
    """

    request_id: RequestId
    method: str
    issued_at: float
    send_stream: MemoryObjectSendStream[Outcome] = field(repr=False)
    receive_stream: MemoryObjectReceiveStream[Outcome] = field(repr=False)


class RequestCorrelator:
    """Table from request id to pending completion.

    Entries are inserted by `submit`, and removed exactly once by the
    listener (`resolve`), the timeout, a failed submission, or `close`.
    All mutations of the table happen under one lock.
    """

    def __init__(self, send: SendFn, timeout: float | None = 30.0) -> None:
        self._send = send
        self._timeout = timeout
        self._pending: dict[RequestId, PendingRequest] = {}
        self._lock = anyio.Lock()
        self._closed = False

    @property
    def pending_count(self) -> int:
        return len(self._pending)

    @property
    def closed(self) -> bool:
        return self._closed

    def is_pending(self, request_id: RequestId) -> bool:
        return request_id in self._pending

    def pending_ids(self) -> list[RequestId]:
        return list(self._pending)

    async def submit(self, request: JSONRPCRequest, timeout: float | None = None) -> JSONRPCResponse:
        """Send a request and wait for its reply.

        Raises ProtocolError if the reply is an error envelope,
        RequestTimeoutError if no reply arrives in time, TransportError if
        the request could not be submitted, and DisconnectedError if the
        correlator is closed while the request is pending.
        """
        if request.id is None:
            request = request.model_copy(update={"id": str(uuid4())})
        assert request.id is not None
        request_id = request.id

        pending = await self._register(request_id, request.method)
        try:
            try:
                await self._send(request)
            except McpError:
                await self._discard(request_id)
                raise
            except Exception as exc:
                await self._discard(request_id)
                raise TransportError.from_message(f"Failed to send request {request_id}: {exc}") from exc

            logger.debug("Request sent: id=%s method=%s", request_id, request.method)
            outcome = await self._wait(pending, self._timeout if timeout is None else timeout)
        finally:
            # Covers cancellation of the caller; a no-op once completed.
            with anyio.CancelScope(shield=True):
                await self._discard(request_id)
            pending.receive_stream.close()

        if isinstance(outcome, McpError):
            raise outcome
        if isinstance(outcome, JSONRPCError):
            raise ProtocolError(outcome.error)
        return outcome

    async def resolve(self, message: JSONRPCMessage) -> bool:
        """Complete the pending request a reply belongs to.

        Returns False, leaving the table untouched, for messages that are not
        replies or whose id has no pending entry (notifications, stale or
        duplicate replies).
        """
        if not isinstance(message, JSONRPCResponse | JSONRPCError) or message.id is None:
            logger.debug("Dropping message without a request id: %s", message)
            return False

        completed = await self._complete(message.id, message)
        if not completed:
            logger.warning("Dropping reply with no pending request: id=%s", message.id)
        return completed

    async def close(self, reason: str = "Connection closed") -> int:
        """Fail every pending request with DisconnectedError.

        Further submissions are refused. Returns the number of requests that
        were force-completed.
        """
        async with self._lock:
            self._closed = True
            pending = list(self._pending.values())
            self._pending.clear()
            for entry in pending:
                self._deliver(entry, DisconnectedError.from_message(f"{reason} (request {entry.request_id})"))

        if pending:
            logger.info("Force-completed %d pending request(s): %s", len(pending), reason)
        return len(pending)

    async def _register(self, request_id: RequestId, method: str) -> PendingRequest:
        send_stream, receive_stream = anyio.create_memory_object_stream[Outcome](1)
        pending = PendingRequest(
            request_id=request_id,
            method=method,
            issued_at=time.monotonic(),
            send_stream=send_stream,
            receive_stream=receive_stream,
        )
        async with self._lock:
            if self._closed:
                raise DisconnectedError.from_message("Connection closed")
            if request_id in self._pending:
                raise ValueError(f"Request id already pending: {request_id}")
            self._pending[request_id] = pending
        return pending

    async def _wait(self, pending: PendingRequest, timeout: float | None) -> Outcome:
        try:
            with anyio.fail_after(timeout):
                return await pending.receive_stream.receive()
        except TimeoutError:
            elapsed = time.monotonic() - pending.issued_at
            await self._complete(
                pending.request_id,
                RequestTimeoutError.from_message(
                    f"Request timeout for ID: {pending.request_id} ({pending.method}, waited {elapsed:.1f}s)"
                ),
            )
            # Either the timeout or a reply that won the race is buffered now.
            return pending.receive_stream.receive_nowait()

    async def _complete(self, request_id: RequestId, outcome: Outcome) -> bool:
        async with self._lock:
            entry = self._pending.pop(request_id, None)
            if entry is None:
                return False
            self._deliver(entry, outcome)
        return True

    async def _discard(self, request_id: RequestId) -> None:
        async with self._lock:
            entry = self._pending.pop(request_id, None)
        if entry is not None:
            entry.send_stream.close()

    @staticmethod
    def _deliver(entry: PendingRequest, outcome: Outcome) -> None:
        try:
            entry.send_stream.send_nowait(outcome)
        except (anyio.BrokenResourceError, anyio.ClosedResourceError):
            # The waiter is gone (cancelled); nothing left to notify.
            logger.debug("Waiter for request %s already gone", entry.request_id)
        finally:
            entry.send_stream.close()
