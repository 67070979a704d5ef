import logging
from collections.abc import AsyncIterator
from contextlib import AsyncExitStack, asynccontextmanager
from typing import Any
from urllib.parse import urljoin, urlparse

import anyio
import httpx
from anyio.streams.memory import MemoryObjectReceiveStream, MemoryObjectSendStream
from httpx_sse import EventSource, aconnect_sse

from agentlink.client._transport import TransportPair
from agentlink.shared._httpx_utils import HttpClientFactory, create_http_client
from agentlink.shared.exceptions import TransportError
from agentlink.shared.message import EventMetadata, SessionMessage
from agentlink.types import JSONRPCRequest, parse_message

logger = logging.getLogger(__name__)


def remove_request_params(url: str) -> str:
    return urljoin(url, urlparse(url).path)


def _same_origin(a: str, b: str) -> bool:
    pa, pb = urlparse(a), urlparse(b)
    return pa.scheme == pb.scheme and pa.netloc == pb.netloc


@asynccontextmanager
async def sse_client(
    url: str,
    headers: dict[str, Any] | None = None,
    timeout: float = 30,
    sse_read_timeout: float = 60 * 5,
    sse_path: str = "/sse",
    message_path: str = "/messages",
    httpx_client_factory: HttpClientFactory = create_http_client,
) -> AsyncIterator[TransportPair]:
    """
    Client transport pair: requests are POSTed, replies arrive over SSE.

    `sse_read_timeout` determines how long (in seconds) the client will wait for a new
    event before the stream is considered dead. All other HTTP operations are
    controlled by `timeout`.

    Args:
        url: Base URL of the tool server
        headers: Optional HTTP headers
        timeout: HTTP request timeout in seconds
        sse_read_timeout: SSE read timeout in seconds
        sse_path: Path of the push stream, relative to `url`
        message_path: Path requests are POSTed to, unless the server sends an
            `endpoint` event naming another one
        httpx_client_factory: Factory for the underlying httpx client
    """
    base_url = url.rstrip("/")
    stream_url = base_url + sse_path
    post_url = base_url + message_path

    read_stream: MemoryObjectReceiveStream[SessionMessage | Exception]
    read_stream_writer: MemoryObjectSendStream[SessionMessage | Exception]
    read_stream_writer, read_stream = anyio.create_memory_object_stream(0)

    async def sse_reader(event_source: EventSource) -> None:
        nonlocal post_url
        try:
            async for sse in event_source.aiter_sse():
                logger.debug(f"Received SSE event: {sse.event}")
                match sse.event:
                    case "endpoint":
                        endpoint_url = urljoin(stream_url, sse.data)
                        if not _same_origin(stream_url, endpoint_url):
                            error_msg = f"Endpoint origin does not match connection origin: {endpoint_url}"
                            logger.error(error_msg)
                            raise ValueError(error_msg)
                        logger.info(f"Received endpoint URL: {endpoint_url}")
                        post_url = endpoint_url

                    case "message":
                        if not sse.data.strip():
                            continue
                        try:
                            message = parse_message(sse.data)
                            logger.debug(f"Received server message: {message}")
                        except Exception as exc:
                            logger.error(f"Error parsing server message: {exc}")
                            await read_stream_writer.send(exc)
                            continue

                        metadata = EventMetadata(event=sse.event, event_id=sse.id or None)
                        await read_stream_writer.send(SessionMessage(message, metadata))
                    case _:
                        logger.warning(f"Unknown SSE event: {sse.event}")
        except Exception as exc:
            logger.error(f"Error in sse_reader: {exc}")
            await read_stream_writer.send(TransportError.from_message(f"Inbound stream failed: {exc}"))
        finally:
            logger.debug("SSE stream closed")
            await read_stream_writer.aclose()

    async with AsyncExitStack() as stack:
        stack.push_async_callback(read_stream_writer.aclose)
        try:
            logger.info(f"Connecting to SSE endpoint: {remove_request_params(stream_url)}")
            client = await stack.enter_async_context(httpx_client_factory(headers=headers or {}))
            event_source = await stack.enter_async_context(
                aconnect_sse(
                    client,
                    "GET",
                    stream_url,
                    timeout=httpx.Timeout(timeout, read=sse_read_timeout),
                )
            )
            event_source.response.raise_for_status()
        except (httpx.HTTPError, httpx.InvalidURL, ValueError) as exc:
            # ValueError: malformed URL rejected by urllib before httpx sees it
            raise TransportError.from_message(f"Failed to open SSE stream at {stream_url}: {exc}") from exc
        logger.debug("SSE connection established")

        async def send(request: JSONRPCRequest) -> None:
            logger.debug(f"Sending client message: {request}")
            try:
                response = await client.post(
                    post_url,
                    json=request.model_dump(by_alias=True, mode="json", exclude_none=True),
                    timeout=timeout,
                )
                response.raise_for_status()
            except httpx.HTTPStatusError as exc:
                raise TransportError.from_message(
                    f"Request {request.id} rejected with HTTP {exc.response.status_code}"
                ) from exc
            except httpx.HTTPError as exc:
                raise TransportError.from_message(f"Failed to submit request {request.id}: {exc}") from exc
            logger.debug(f"Client message sent successfully: {response.status_code}")

        async with anyio.create_task_group() as tg:
            tg.start_soon(sse_reader, event_source)
            try:
                yield read_stream, send
            finally:
                tg.cancel_scope.cancel()


class SSETransport:
    """Transport that (re)opens an `sse_client` pair on every `connect()`."""

    def __init__(
        self,
        url: str,
        headers: dict[str, Any] | None = None,
        timeout: float = 30,
        sse_read_timeout: float = 60 * 5,
        httpx_client_factory: HttpClientFactory = create_http_client,
    ) -> None:
        self.url = url
        self.headers = headers
        self.timeout = timeout
        self.sse_read_timeout = sse_read_timeout
        self.httpx_client_factory = httpx_client_factory

    def connect(self):
        return sse_client(
            self.url,
            headers=self.headers,
            timeout=self.timeout,
            sse_read_timeout=self.sse_read_timeout,
            httpx_client_factory=self.httpx_client_factory,
        )
