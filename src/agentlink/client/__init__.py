"""Tool server client module."""

from agentlink.client._transport import Transport
from agentlink.client.session import ClientSession
from agentlink.client.sse import SSETransport, sse_client

__all__ = ["ClientSession", "SSETransport", "Transport", "sse_client"]
