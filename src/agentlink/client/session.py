"""Protocol client for a tool server with a split request/reply transport.

The client owns one connection at a time. A listener task drains the
inbound stream: until a session is established it looks for the server's
session announcement, afterwards every message goes to the correlator.
"""

from __future__ import annotations

import logging
from contextlib import AsyncExitStack
from types import TracebackType
from typing import Any, Literal

import anyio
import httpx
from anyio.streams.memory import MemoryObjectReceiveStream
from pydantic import BaseModel, Field, ValidationError
from typing_extensions import Self

from agentlink.client._transport import Transport
from agentlink.client.sse import SSETransport
from agentlink.shared._httpx_utils import HttpClientFactory, create_http_client
from agentlink.shared.correlation import RequestCorrelator
from agentlink.shared.exceptions import (
    ConnectionNotReadyError,
    McpError,
    ProtocolError,
    RequestTimeoutError,
    TransportError,
)
from agentlink.shared.message import SessionMessage
from agentlink.types import (
    INITIALIZE,
    INVALID_REQUEST,
    PROTOCOL_VERSION,
    TOOLS_CALL,
    TOOLS_LIST,
    CallToolResult,
    ClientCapabilities,
    Implementation,
    InitializeResult,
    JSONRPCRequest,
    ListToolsResult,
    Tool,
    announced_session_id,
)

logger = logging.getLogger(__name__)

DEFAULT_CLIENT_INFO = Implementation(name="ai-agent", version="1.0.0")

HealthState = Literal["connected", "partial", "disconnected"]


class HealthDetails(BaseModel):
    server_reachable: bool = Field(serialization_alias="serverReachable")
    sse_connected: bool = Field(serialization_alias="sseConnected")
    initialized: bool
    tools_available: int = Field(serialization_alias="toolsAvailable")
    server_info: Any | None = Field(default=None, serialization_alias="serverInfo")


class HealthStatus(BaseModel):
    status: HealthState
    details: HealthDetails


class ConnectionStatus(BaseModel):
    connected: bool
    initialized: bool
    tools_available: int = Field(serialization_alias="toolsAvailable")
    has_active_sse: bool = Field(serialization_alias="hasActiveSSE")


class ClientSession:
    """Client for the handshake, catalog and tool-call operations.

    `connect()` and `disconnect()` must run in the same task, since the
    listener lives in a task group entered by `connect()`. Using the session
    as an async context manager takes care of that.
    """

    def __init__(
        self,
        url: str,
        *,
        transport: Transport | None = None,
        request_timeout: float = 30.0,
        session_timeout: float = 10.0,
        client_info: Implementation | None = None,
        http_client_factory: HttpClientFactory = create_http_client,
    ) -> None:
        self._base_url = url.rstrip("/")
        self._http_client_factory = http_client_factory
        self._transport = transport or SSETransport(self._base_url, httpx_client_factory=http_client_factory)
        self._request_timeout = request_timeout
        self._session_timeout = session_timeout
        self._client_info = client_info or DEFAULT_CLIENT_INFO

        self._exit_stack: AsyncExitStack | None = None
        self._correlator: RequestCorrelator | None = None
        self._session_id: str | None = None
        self._session_ready = anyio.Event()
        self._bootstrap_error: McpError | None = None
        self._stream_open = False
        self._initialized = False
        self._connected = False
        self._server_info: Implementation | None = None
        self._tools: tuple[Tool, ...] = ()

    async def __aenter__(self) -> Self:
        await self.connect()
        return self

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None,
        exc_val: BaseException | None,
        exc_tb: TracebackType | None,
    ) -> None:
        await self.disconnect()

    @property
    def base_url(self) -> str:
        return self._base_url

    @property
    def connected(self) -> bool:
        return self._connected

    @property
    def initialized(self) -> bool:
        return self._initialized

    @property
    def server_info(self) -> Implementation | None:
        return self._server_info

    @property
    def available_tools(self) -> tuple[Tool, ...]:
        """The cached catalog. Replaced wholesale by `list_tools()`."""
        return self._tools

    @property
    def correlator(self) -> RequestCorrelator | None:
        return self._correlator

    def get_session_id(self) -> str | None:
        return self._session_id

    def get_tool(self, name: str) -> Tool | None:
        return next((tool for tool in self._tools if tool.name == name), None)

    def is_tool_available(self, name: str) -> bool:
        return self.get_tool(name) is not None

    async def connect(self) -> None:
        """Open the transport, wait for the session, then handshake and fetch the catalog.

        Raises:
            RequestTimeoutError: no session announcement within the session timeout
            TransportError: the transport could not be opened, or the inbound
                stream failed before the session was established
            McpError: the handshake or catalog retrieval failed
        """
        if self._exit_stack is not None:
            await self.disconnect()
        self._clear_session_state()

        stack = AsyncExitStack()
        await stack.__aenter__()
        self._exit_stack = stack
        try:
            read_stream, send = await stack.enter_async_context(self._transport.connect())
            self._correlator = RequestCorrelator(send, timeout=self._request_timeout)
            self._session_ready = anyio.Event()
            self._bootstrap_error = None
            self._stream_open = True

            tg = await stack.enter_async_context(anyio.create_task_group())
            stack.callback(tg.cancel_scope.cancel)
            tg.start_soon(self._receive_loop, read_stream)

            await self._wait_for_session()
            await self.initialize()
            await self.list_tools()
        except BaseException:
            logger.error("Failed to connect to tool server at %s", self._base_url)
            with anyio.CancelScope(shield=True):
                await self.disconnect()
            raise

        self._connected = True
        logger.info("Connected to tool server at %s (%d tools)", self._base_url, len(self._tools))

    async def connect_safely(self) -> bool:
        """Connect, logging instead of raising. Returns False in degraded mode."""
        try:
            await self.connect()
        except McpError as exc:
            logger.warning("Tool server unavailable, continuing without tools: %s", exc)
            return False
        return True

    async def initialize(self) -> InitializeResult:
        """Perform the capability handshake."""
        session_id = self._require_session()
        response = await self._submit(
            INITIALIZE,
            {
                "protocolVersion": PROTOCOL_VERSION,
                "capabilities": ClientCapabilities().model_dump(exclude_none=True),
                "clientInfo": self._client_info.model_dump(),
                "sessionId": session_id,
            },
        )
        try:
            result = InitializeResult.model_validate(response)
        except ValidationError as exc:
            raise ProtocolError.from_message(f"Invalid initialize response: {exc}", code=INVALID_REQUEST) from exc
        if result.server_info is None:
            raise ProtocolError.from_message("Invalid initialize response: missing serverInfo", code=INVALID_REQUEST)

        self._server_info = result.server_info
        self._initialized = True
        logger.info(
            "Initialized session %s with %s %s",
            session_id,
            result.server_info.name,
            result.server_info.version,
        )
        return result

    async def list_tools(self) -> tuple[Tool, ...]:
        """Fetch the tool catalog, replacing the cached one."""
        session_id = self._require_initialized()
        response = await self._submit(TOOLS_LIST, {"sessionId": session_id})
        try:
            result = ListToolsResult.model_validate(response)
        except ValidationError as exc:
            raise ProtocolError.from_message(f"Invalid tools/list response: {exc}", code=INVALID_REQUEST) from exc

        self._tools = tuple(result.tools)
        logger.info("Fetched %d tools: %s", len(self._tools), ", ".join(t.name for t in self._tools))
        return self._tools

    async def call_tool(
        self,
        name: str,
        arguments: dict[str, Any] | None = None,
        session_id: str | None = None,
    ) -> CallToolResult:
        """Invoke a tool.

        An empty `session_id` falls back to the client's own session. Without
        either, or before the handshake, this fails with
        ConnectionNotReadyError without touching the transport.
        """
        effective_session = session_id or self._session_id
        if not effective_session:
            raise ConnectionNotReadyError.from_message("No session ID available")
        if not self._initialized:
            raise ConnectionNotReadyError.from_message("Client not initialized")

        logger.info("Calling tool %s (session %s)", name, effective_session)
        response = await self._submit(
            TOOLS_CALL,
            {"name": name, "arguments": arguments or {}, "sessionId": effective_session},
        )
        try:
            return CallToolResult.model_validate(response)
        except ValidationError as exc:
            raise ProtocolError.from_message(f"Invalid tools/call response: {exc}", code=INVALID_REQUEST) from exc

    async def disconnect(self) -> None:
        """Close the connection and fail every pending request with DisconnectedError."""
        stack, self._exit_stack = self._exit_stack, None
        correlator, self._correlator = self._correlator, None
        was_connected = self._connected
        self._clear_session_state()

        # Stop the listener before settling state: until it is cancelled it
        # may still handle buffered messages, announcements included.
        if stack is not None:
            await stack.aclose()
        if correlator is not None:
            await correlator.close("Client disconnected")
        self._clear_session_state()
        self._stream_open = False
        if was_connected:
            logger.info("Disconnected from tool server at %s", self._base_url)

    def _clear_session_state(self) -> None:
        self._session_id = None
        self._initialized = False
        self._connected = False
        self._server_info = None
        self._tools = ()

    def connection_status(self) -> ConnectionStatus:
        return ConnectionStatus(
            connected=self._connected,
            initialized=self._initialized,
            tools_available=len(self._tools),
            has_active_sse=self._stream_open,
        )

    async def health_check(self) -> HealthStatus:
        """Probe `GET {url}/health` and combine it with the local connection state."""
        server_reachable = False
        server_info: Any | None = None
        try:
            async with self._http_client_factory(timeout=httpx.Timeout(5.0)) as client:
                response = await client.get(f"{self._base_url}/health")
                response.raise_for_status()
            server_reachable = True
            try:
                server_info = response.json()
            except ValueError:
                server_info = response.text
        except (httpx.HTTPError, httpx.InvalidURL) as exc:
            logger.debug("Tool server health endpoint not reachable: %s", exc)

        details = HealthDetails(
            server_reachable=server_reachable,
            sse_connected=self._stream_open,
            initialized=self._initialized,
            tools_available=len(self._tools),
            server_info=server_info,
        )
        status: HealthState = "disconnected"
        if self._connected and details.server_reachable and details.sse_connected:
            status = "connected"
        elif details.tools_available > 0 or details.sse_connected or details.server_reachable:
            status = "partial"
        return HealthStatus(status=status, details=details)

    def _require_session(self) -> str:
        if self._correlator is None or not self._session_id:
            raise ConnectionNotReadyError.from_message("No session ID available")
        return self._session_id

    def _require_initialized(self) -> str:
        session_id = self._require_session()
        if not self._initialized:
            raise ConnectionNotReadyError.from_message("Client not initialized")
        return session_id

    async def _submit(self, method: str, params: dict[str, Any]) -> Any:
        correlator = self._correlator
        if correlator is None:
            raise ConnectionNotReadyError.from_message("Not connected")
        response = await correlator.submit(JSONRPCRequest(method=method, params=params))
        return response.result

    async def _wait_for_session(self) -> None:
        with anyio.move_on_after(self._session_timeout):
            await self._session_ready.wait()

        if self._session_id:
            return
        if self._bootstrap_error is not None:
            raise self._bootstrap_error
        raise RequestTimeoutError.from_message(
            f"No session ID received within {self._session_timeout:g}s from {self._base_url}"
        )

    async def _receive_loop(self, read_stream: MemoryObjectReceiveStream[SessionMessage | Exception]) -> None:
        try:
            async with read_stream:
                async for item in read_stream:
                    if isinstance(item, Exception):
                        self._handle_stream_exception(item)
                        continue
                    await self._handle_message(item)
        except Exception:
            logger.exception("Unhandled exception in receive loop")
        finally:
            self._stream_open = False
            if self._session_id is None:
                if self._bootstrap_error is None:
                    self._bootstrap_error = TransportError.from_message(
                        "Inbound stream closed before a session was established"
                    )
                self._session_ready.set()
            else:
                logger.warning("Inbound stream closed; pending requests will time out")

    async def _handle_message(self, item: SessionMessage) -> None:
        message = item.message
        correlator = self._correlator
        if correlator is None:
            # Connection is being torn down.
            return
        if self._session_id is None:
            session_id = announced_session_id(message)
            if session_id is not None:
                self._session_id = session_id
                logger.info("Session established: %s", session_id)
                self._session_ready.set()
                return
        await correlator.resolve(message)

    def _handle_stream_exception(self, exc: Exception) -> None:
        if isinstance(exc, TransportError):
            logger.error("Inbound stream failed: %s", exc)
            if self._session_id is None:
                self._bootstrap_error = exc
                self._session_ready.set()
        else:
            logger.warning("Discarding undecodable inbound message: %s", exc)
