"""Streamed chat events."""

from __future__ import annotations

import logging
import math
from collections.abc import AsyncIterator
from datetime import datetime, timezone
from typing import Any, Literal

import anyio
from pydantic import BaseModel, ConfigDict, Field

logger = logging.getLogger(__name__)

EventType = Literal["start", "token", "tool_call", "tool_result", "error", "end"]


def _now() -> str:
    return datetime.now(timezone.utc).isoformat().replace("+00:00", "Z")


class ToolCallEvent(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    name: str
    arguments: dict[str, Any] | str
    session_id: str | None = Field(default=None, alias="sessionId")


class StreamMessage(BaseModel):
    """One event of a streamed chat response."""

    model_config = ConfigDict(populate_by_name=True)

    type: EventType
    session_id: str | None = Field(default=None, alias="sessionId")
    content: str | None = None
    tool: str | None = None
    tool_call: ToolCallEvent | None = Field(default=None, alias="toolCall")
    result: Any | None = None
    error: str | None = None
    timestamp: str = Field(default_factory=_now)

    def to_json(self) -> str:
        return self.model_dump_json(by_alias=True, exclude_none=True)


class EventStream:
    """Sink for the events of one streamed response.

    Events are buffered in an anyio memory stream and read by iterating the
    EventStream. A `start` event is queued on creation; after `send_end` the
    stream is closed and further events are ignored.
    """

    def __init__(self, session_id: str | None = None) -> None:
        self.session_id = session_id
        self._send, self._receive = anyio.create_memory_object_stream[StreamMessage](math.inf)
        self._active = True
        self.send(StreamMessage(type="start", session_id=session_id))

    @property
    def active(self) -> bool:
        return self._active

    def send(self, message: StreamMessage) -> None:
        if not self._active:
            return
        try:
            self._send.send_nowait(message)
        except (anyio.BrokenResourceError, anyio.ClosedResourceError):
            logger.debug("Stream reader gone, dropping %s event", message.type)
            self._active = False

    def send_token(self, content: str, session_id: str | None = None) -> None:
        self.send(StreamMessage(type="token", content=content, session_id=session_id or self.session_id))

    def send_tool_call(
        self,
        tool: str,
        arguments: dict[str, Any] | str,
        session_id: str | None = None,
    ) -> None:
        session_id = session_id or self.session_id
        self.send(
            StreamMessage(
                type="tool_call",
                tool=tool,
                tool_call=ToolCallEvent(name=tool, arguments=arguments, session_id=session_id),
                session_id=session_id,
            )
        )

    def send_tool_result(self, result: Any, session_id: str | None = None) -> None:
        self.send(StreamMessage(type="tool_result", result=result, session_id=session_id or self.session_id))

    def send_error(self, error: str, session_id: str | None = None) -> None:
        self.send(StreamMessage(type="error", error=error, session_id=session_id or self.session_id))

    def send_end(self, session_id: str | None = None) -> None:
        self.send(StreamMessage(type="end", session_id=session_id or self.session_id))
        self.close()

    def close(self) -> None:
        self._active = False
        self._send.close()

    async def __aiter__(self) -> AsyncIterator[StreamMessage]:
        async with self._receive:
            async for message in self._receive:
                yield message
