from agentlink.types import (
    CONNECTION_CLOSED,
    CONNECTION_NOT_READY,
    REQUEST_TIMEOUT,
    TRANSPORT_FAILURE,
    ErrorData,
)


class AgentLinkError(Exception):
    """Base error for agentlink."""


class McpError(AgentLinkError):
    """Exception raised when a protocol request does not produce a result.

    It wraps an ErrorData describing the failure: either the error envelope
    returned by the remote server, or one synthesized by the client for
    timeouts, transport failures and disconnects.

    Attributes:
        error: The ErrorData object containing error code, message, and
               optional additional data
    """

    error: ErrorData
    default_code: int = 0

    def __init__(self, error: ErrorData):
        super().__init__(error.message)
        self.error = error

    @classmethod
    def from_message(cls, message: str, code: int | None = None, data: object = None):
        return cls(ErrorData(code=cls.default_code if code is None else code, message=message, data=data))


class ProtocolError(McpError):
    """The remote server answered with an error envelope."""


class RequestTimeoutError(McpError):
    """No reply arrived within the request timeout."""

    default_code = REQUEST_TIMEOUT


class DisconnectedError(McpError):
    """The connection was closed while the request was pending."""

    default_code = CONNECTION_CLOSED


class TransportError(McpError):
    """A request could not be submitted, or the inbound stream failed."""

    default_code = TRANSPORT_FAILURE


class ConnectionNotReadyError(McpError):
    """An operation was attempted before the session was established."""

    default_code = CONNECTION_NOT_READY


class ToolError(AgentLinkError):
    """Error in tool operations."""


class ToolNotFoundError(ToolError):
    """No tool with the requested name is in the catalog."""


class ToolExecutionError(ToolError):
    """The remote tool reported a failure."""


class ModelError(AgentLinkError):
    """The language model endpoint failed or returned an unusable reply."""
