import anyio
import pytest

from agentlink.shared.correlation import RequestCorrelator
from agentlink.shared.exceptions import (
    DisconnectedError,
    McpError,
    ProtocolError,
    RequestTimeoutError,
    TransportError,
)
from agentlink.types import (
    CONNECTION_CLOSED,
    METHOD_NOT_FOUND,
    REQUEST_TIMEOUT,
    ErrorData,
    JSONRPCError,
    JSONRPCNotification,
    JSONRPCRequest,
    JSONRPCResponse,
)


class RecordingSend:
    """Outbound channel that records requests and lets the test await them."""

    def __init__(self):
        self.sent: list[JSONRPCRequest] = []
        self._writer, self._reader = anyio.create_memory_object_stream[JSONRPCRequest](100)

    async def __call__(self, request: JSONRPCRequest) -> None:
        self.sent.append(request)
        await self._writer.send(request)

    async def next_request(self) -> JSONRPCRequest:
        with anyio.fail_after(1):
            return await self._reader.receive()


@pytest.mark.anyio
async def test_reply_completes_pending_request():
    send = RecordingSend()
    correlator = RequestCorrelator(send, timeout=5)
    result: JSONRPCResponse | None = None

    async def submit():
        nonlocal result
        result = await correlator.submit(JSONRPCRequest(method="tools/list"))

    async with anyio.create_task_group() as tg:
        tg.start_soon(submit)
        request = await send.next_request()
        assert request.id is not None
        assert correlator.is_pending(request.id)
        assert await correlator.resolve(JSONRPCResponse(id=request.id, result={"tools": []}))

    assert result is not None
    assert result.result == {"tools": []}
    assert correlator.pending_count == 0
    assert not correlator.is_pending(request.id)


@pytest.mark.anyio
async def test_duplicate_reply_is_dropped():
    send = RecordingSend()
    correlator = RequestCorrelator(send, timeout=5)

    async with anyio.create_task_group() as tg:
        tg.start_soon(correlator.submit, JSONRPCRequest(method="initialize"))
        request = await send.next_request()
        assert await correlator.resolve(JSONRPCResponse(id=request.id, result={}))

    assert not await correlator.resolve(JSONRPCResponse(id=request.id, result={"again": True}))
    assert correlator.pending_count == 0


@pytest.mark.anyio
async def test_error_envelope_raises_protocol_error():
    send = RecordingSend()
    correlator = RequestCorrelator(send, timeout=5)

    async def reply_with_error():
        request = await send.next_request()
        await correlator.resolve(
            JSONRPCError(id=request.id, error=ErrorData(code=METHOD_NOT_FOUND, message="Unknown tool"))
        )

    async with anyio.create_task_group() as tg:
        tg.start_soon(reply_with_error)
        with pytest.raises(ProtocolError) as exc_info:
            await correlator.submit(JSONRPCRequest(method="tools/call"))

    assert exc_info.value.error.code == METHOD_NOT_FOUND
    assert exc_info.value.error.message == "Unknown tool"
    assert correlator.pending_count == 0


@pytest.mark.anyio
async def test_concurrent_requests_resolve_by_id_in_any_order():
    send = RecordingSend()
    correlator = RequestCorrelator(send, timeout=5)
    results: dict[str, dict] = {}

    async def submit(name: str):
        response = await correlator.submit(JSONRPCRequest(method="tools/call", params={"name": name}))
        results[name] = response.result

    async with anyio.create_task_group() as tg:
        for name in ("a", "b", "c"):
            tg.start_soon(submit, name)
        requests = [await send.next_request() for _ in range(3)]
        assert correlator.pending_count == 3

        for request in reversed(requests):
            assert request.params is not None
            await correlator.resolve(JSONRPCResponse(id=request.id, result={"echo": request.params["name"]}))

    assert results == {"a": {"echo": "a"}, "b": {"echo": "b"}, "c": {"echo": "c"}}
    assert correlator.pending_count == 0


@pytest.mark.anyio
async def test_unmatched_reply_leaves_registry_untouched():
    send = RecordingSend()
    correlator = RequestCorrelator(send, timeout=5)

    async with anyio.create_task_group() as tg:
        tg.start_soon(correlator.submit, JSONRPCRequest(method="tools/list"))
        request = await send.next_request()

        assert not await correlator.resolve(JSONRPCResponse(id="no-such-request", result={}))
        assert not await correlator.resolve(JSONRPCNotification(method="notifications/progress"))
        assert correlator.pending_ids() == [request.id]

        await correlator.resolve(JSONRPCResponse(id=request.id, result={}))


@pytest.mark.anyio
async def test_close_force_completes_all_pending():
    send = RecordingSend()
    correlator = RequestCorrelator(send, timeout=30)
    failures: list[McpError] = []

    async def submit():
        try:
            await correlator.submit(JSONRPCRequest(method="tools/call"))
        except DisconnectedError as exc:
            failures.append(exc)

    async with anyio.create_task_group() as tg:
        for _ in range(5):
            tg.start_soon(submit)
        for _ in range(5):
            await send.next_request()

        with anyio.fail_after(1):
            assert await correlator.close("Client disconnected") == 5

    assert len(failures) == 5
    assert all(exc.error.code == CONNECTION_CLOSED for exc in failures)
    assert correlator.pending_count == 0
    assert correlator.closed


@pytest.mark.anyio
async def test_submit_after_close_is_refused():
    send = RecordingSend()
    correlator = RequestCorrelator(send, timeout=5)
    await correlator.close()

    with pytest.raises(DisconnectedError):
        await correlator.submit(JSONRPCRequest(method="tools/list"))
    assert send.sent == []


@pytest.mark.anyio
async def test_timeout_completes_with_timeout_error_and_drops_late_reply():
    send = RecordingSend()
    correlator = RequestCorrelator(send, timeout=0.05)

    with pytest.raises(RequestTimeoutError) as exc_info:
        await correlator.submit(JSONRPCRequest(id="slow", method="tools/call"))

    assert exc_info.value.error.code == REQUEST_TIMEOUT
    assert "slow" in exc_info.value.error.message
    assert correlator.pending_count == 0
    assert not await correlator.resolve(JSONRPCResponse(id="slow", result={}))


@pytest.mark.anyio
async def test_per_call_timeout_overrides_default():
    send = RecordingSend()
    correlator = RequestCorrelator(send, timeout=30)

    with anyio.fail_after(2):
        with pytest.raises(RequestTimeoutError):
            await correlator.submit(JSONRPCRequest(method="tools/list"), timeout=0.05)


@pytest.mark.anyio
async def test_send_failure_fails_immediately():
    async def broken_send(request: JSONRPCRequest) -> None:
        raise OSError("connection refused")

    correlator = RequestCorrelator(broken_send, timeout=30)

    with anyio.fail_after(1):
        with pytest.raises(TransportError) as exc_info:
            await correlator.submit(JSONRPCRequest(method="tools/list"))

    assert "connection refused" in str(exc_info.value)
    assert isinstance(exc_info.value.__cause__, OSError)
    assert correlator.pending_count == 0


@pytest.mark.anyio
async def test_send_failure_keeps_transport_error():
    original = TransportError.from_message("Request rejected with HTTP 503")

    async def rejecting_send(request: JSONRPCRequest) -> None:
        raise original

    correlator = RequestCorrelator(rejecting_send, timeout=30)

    with pytest.raises(TransportError) as exc_info:
        await correlator.submit(JSONRPCRequest(method="tools/list"))

    assert exc_info.value is original
    assert correlator.pending_count == 0


@pytest.mark.anyio
async def test_ids_are_generated_when_absent_and_kept_when_given():
    send = RecordingSend()
    correlator = RequestCorrelator(send, timeout=5)

    async with anyio.create_task_group() as tg:
        tg.start_soon(correlator.submit, JSONRPCRequest(method="tools/list"))
        tg.start_soon(correlator.submit, JSONRPCRequest(method="tools/list"))
        tg.start_soon(correlator.submit, JSONRPCRequest(id=7, method="tools/list"))
        requests = [await send.next_request() for _ in range(3)]
        for request in requests:
            await correlator.resolve(JSONRPCResponse(id=request.id, result={}))

    ids = [request.id for request in requests]
    assert 7 in ids
    generated = [request_id for request_id in ids if request_id != 7]
    assert len(set(generated)) == 2
    assert all(isinstance(request_id, str) for request_id in generated)


@pytest.mark.anyio
async def test_duplicate_pending_id_is_rejected():
    send = RecordingSend()
    correlator = RequestCorrelator(send, timeout=5)

    async with anyio.create_task_group() as tg:
        tg.start_soon(correlator.submit, JSONRPCRequest(id="dup", method="tools/list"))
        await send.next_request()

        with pytest.raises(ValueError, match="already pending"):
            await correlator.submit(JSONRPCRequest(id="dup", method="tools/list"))

        await correlator.resolve(JSONRPCResponse(id="dup", result={}))


@pytest.mark.anyio
async def test_cancelled_caller_leaves_no_entry():
    send = RecordingSend()
    correlator = RequestCorrelator(send, timeout=30)

    async with anyio.create_task_group() as tg:
        tg.start_soon(correlator.submit, JSONRPCRequest(id="abandoned", method="tools/list"))
        await send.next_request()
        assert correlator.is_pending("abandoned")
        tg.cancel_scope.cancel()

    assert correlator.pending_count == 0
    assert not await correlator.resolve(JSONRPCResponse(id="abandoned", result={}))
