"""Wire types for the tool-server protocol.

The envelope is JSON-RPC 2.0. Requests are POSTed to the server; replies and
server-initiated messages arrive on a separate Server-Sent Events stream.
"""

from typing import Annotated, Any, Final, Literal

from pydantic import BaseModel, ConfigDict, Discriminator, Field, Tag, TypeAdapter

JSONRPC_VERSION: Final[str] = "2.0"
PROTOCOL_VERSION: Final[str] = "2024-11-05"

INITIALIZE: Final[str] = "initialize"
TOOLS_LIST: Final[str] = "tools/list"
TOOLS_CALL: Final[str] = "tools/call"

# Standard JSON-RPC error codes
PARSE_ERROR: Final[int] = -32700
INVALID_REQUEST: Final[int] = -32600
METHOD_NOT_FOUND: Final[int] = -32601
INVALID_PARAMS: Final[int] = -32602
INTERNAL_ERROR: Final[int] = -32603

# Client-side error codes
CONNECTION_CLOSED: Final[int] = -32000
CONNECTION_NOT_READY: Final[int] = -32001
TRANSPORT_FAILURE: Final[int] = -32002
REQUEST_TIMEOUT: Final[int] = 408

RequestId = Annotated[int, Field(strict=True)] | str


class WireModel(BaseModel):
    """Base class for protocol payloads. Allows extra fields for forward compatibility."""

    model_config = ConfigDict(extra="allow", populate_by_name=True)


class JSONRPCBase(WireModel):
    jsonrpc: Literal["2.0"] = JSONRPC_VERSION


class JSONRPCRequest(JSONRPCBase):
    """A request that expects a response."""

    id: RequestId | None = None
    method: str
    params: dict[str, Any] | None = None


class JSONRPCNotification(JSONRPCBase):
    """A one-way message. Session announcements arrive in this shape."""

    method: str | None = None
    params: dict[str, Any] | None = None


class ErrorData(BaseModel):
    """Error information in a JSON-RPC error response."""

    model_config = ConfigDict(extra="allow")

    code: int
    message: str
    data: Any | None = None


class JSONRPCResponse(JSONRPCBase):
    """A successful (non-error) response to a request."""

    id: RequestId
    result: Any = None


class JSONRPCError(JSONRPCBase):
    """A response to a request that indicates an error occurred."""

    id: RequestId | None = None
    error: ErrorData


JSONRPCMessage = JSONRPCResponse | JSONRPCError | JSONRPCRequest | JSONRPCNotification


def parse_message(data: str | bytes | dict[str, Any]) -> JSONRPCMessage:
    """Decode one inbound message.

    The shape is decided by field presence: `error` or `result` next to an
    `id` make a reply, `method` plus `id` a request, everything else a
    notification.

    Replies are decoded leniently so that they always reach their waiter: any
    non-empty `error` makes an error reply, filling in a missing code or
    message, and the `result` of a success reply may be any JSON value.
    """
    if not isinstance(data, dict):
        data = _json_object.validate_json(data)
    if "id" in data and data.get("error"):
        return JSONRPCError.model_validate({**data, "error": _error_payload(data["error"])})
    if "id" in data and ("result" in data or "error" in data):
        return JSONRPCResponse.model_validate({**data, "result": data.get("result")})
    if "id" in data and "method" in data:
        return JSONRPCRequest.model_validate(data)
    return JSONRPCNotification.model_validate(data)


_json_object: TypeAdapter[dict[str, Any]] = TypeAdapter(dict[str, Any])


def _error_payload(error: Any) -> dict[str, Any]:
    if not isinstance(error, dict):
        return {"code": INTERNAL_ERROR, "message": str(error)}
    payload = dict(error)
    code = payload.get("code")
    if not isinstance(code, int) or isinstance(code, bool):
        payload["code"] = INTERNAL_ERROR
    if not isinstance(payload.get("message"), str):
        payload["message"] = str(payload.get("message") or "Unknown error")
    return payload


def announced_session_id(message: JSONRPCMessage) -> str | None:
    """Return the session id carried by a server announcement, if any."""
    if isinstance(message, JSONRPCResponse | JSONRPCError):
        return None
    params = message.params or {}
    session_id = params.get("sessionId")
    if isinstance(session_id, str) and session_id:
        return session_id
    return None


class Implementation(WireModel):
    """Name and version of a protocol implementation."""

    name: str
    version: str


class ClientCapabilities(WireModel):
    tools: dict[str, Any] | None = Field(default_factory=dict)


class ServerCapabilities(WireModel):
    tools: dict[str, Any] | None = None
    logging: dict[str, Any] | None = None
    prompts: dict[str, Any] | None = None
    resources: dict[str, Any] | None = None


class InitializeResult(WireModel):
    """Server's reply to the capability handshake."""

    protocol_version: Annotated[str | None, Field(alias="protocolVersion")] = None
    capabilities: ServerCapabilities = Field(default_factory=ServerCapabilities)
    server_info: Annotated[Implementation | None, Field(alias="serverInfo")] = None


class InputSchema(WireModel):
    """JSON schema of a tool's parameters."""

    type: str = "object"
    properties: dict[str, Any] | None = None
    required: list[str] | None = None


class Tool(WireModel):
    """Remote-declared definition of one invocable tool."""

    name: str
    description: str = ""
    input_schema: Annotated[InputSchema, Field(alias="inputSchema")] = Field(default_factory=InputSchema)


class ListToolsResult(WireModel):
    tools: list[Tool]


class TextContent(WireModel):
    type: Literal["text"] = "text"
    text: str | None = None


class ImageContent(WireModel):
    type: Literal["image"] = "image"
    url: str | None = None
    data: str | None = None
    mime_type: Annotated[str | None, Field(alias="mimeType")] = None


class ResourceContent(WireModel):
    type: Literal["resource"] = "resource"
    url: str | None = None
    text: str | None = None
    mime_type: Annotated[str | None, Field(alias="mimeType")] = None


class OtherContent(WireModel):
    """Content item of a type this client does not model explicitly."""

    type: str


def _content_tag(value: Any) -> str:
    item_type = value.get("type") if isinstance(value, dict) else getattr(value, "type", None)
    return item_type if item_type in ("text", "image", "resource") else "other"


ContentItem = Annotated[
    Annotated[TextContent, Tag("text")]
    | Annotated[ImageContent, Tag("image")]
    | Annotated[ResourceContent, Tag("resource")]
    | Annotated[OtherContent, Tag("other")],
    Discriminator(_content_tag),
]


class CallToolResult(WireModel):
    """Server's reply to a tool invocation."""

    content: list[ContentItem] = Field(default_factory=list)
    is_error: Annotated[bool, Field(alias="isError")] = False
