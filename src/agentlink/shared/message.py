"""Message wrapper with metadata support.

Inbound messages are handed from the transport to the client listener as
SessionMessage values, so transport-specific details (the SSE event name and
id) travel alongside the decoded JSON-RPC message.
"""

from collections.abc import Awaitable, Callable
from dataclasses import dataclass

from agentlink.types import JSONRPCMessage, JSONRPCRequest

SendFn = Callable[[JSONRPCRequest], Awaitable[None]]
"""Submits one request on the outbound channel; raises TransportError on failure."""


@dataclass
class EventMetadata:
    """Metadata of the SSE event a message was decoded from."""

    event: str | None = None
    event_id: str | None = None


@dataclass
class SessionMessage:
    """A decoded inbound message with transport metadata."""

    message: JSONRPCMessage
    metadata: EventMetadata | None = None
