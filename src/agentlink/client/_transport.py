"""Transport protocol for agentlink clients."""

from __future__ import annotations

from contextlib import AbstractAsyncContextManager
from typing import Protocol, runtime_checkable

from anyio.streams.memory import MemoryObjectReceiveStream

from agentlink.shared.message import SendFn, SessionMessage

TransportPair = tuple[MemoryObjectReceiveStream[SessionMessage | Exception], SendFn]
"""The inbound push stream and the outbound submit function."""


@runtime_checkable
class Transport(Protocol):
    """Protocol for client transports.

    `connect()` returns an async context manager yielding a TransportPair.
    It may be called again after the previous connection was closed, which
    is how the client reconnects.

    Example:
        ```python
        class MyTransport:
            @asynccontextmanager
            async def connect(self):
                # Set up connection...
                yield read_stream, send
                # Clean up...
        ```
    """

    def connect(self) -> AbstractAsyncContextManager[TransportPair]: ...
