"""Invoking remote tools by name with loosely formed input."""

from __future__ import annotations

import json
import logging
from collections.abc import Awaitable, Callable, Mapping
from dataclasses import dataclass, field
from functools import partial
from types import MappingProxyType
from typing import Any

from pydantic import BaseModel, ValidationError

from agentlink.client.session import ClientSession
from agentlink.shared.exceptions import ConnectionNotReadyError, ToolExecutionError, ToolNotFoundError
from agentlink.tools.inference import infer_arguments
from agentlink.tools.schema import ToolSchema, function_descriptor
from agentlink.types import CallToolResult, ContentItem, ImageContent, ResourceContent, TextContent, Tool

logger = logging.getLogger(__name__)

NO_OUTPUT = "Tool executed successfully with no output"

InvokeFn = Callable[[Any, str | None], Awaitable[str]]


@dataclass(frozen=True)
class RemoteTool:
    """A remote tool: its descriptor, its parsed schema and a bound invoke function."""

    descriptor: Tool
    schema: ToolSchema
    invoke: InvokeFn = field(compare=False, repr=False)
    arguments_model: type[BaseModel] | None = field(default=None, compare=False, repr=False)

    @property
    def name(self) -> str:
        return self.descriptor.name

    @property
    def description(self) -> str:
        return self.descriptor.description

    def function_descriptor(self) -> dict[str, Any]:
        return function_descriptor(self.descriptor, self.schema)


def _dump_content(content: list[ContentItem]) -> list[dict[str, Any]]:
    return [item.model_dump(by_alias=True, mode="json", exclude_none=True) for item in content]


def _placeholder(item: ContentItem) -> str:
    match item:
        case ImageContent():
            return f"[Image: {item.url or 'data'}]"
        case ResourceContent():
            return f"[Resource: {item.url or 'unknown'}]"
        case _:
            dumped = item.model_dump(by_alias=True, mode="json", exclude_none=True)
            return f"[{item.type}: {json.dumps(dumped)}]"


def format_tool_result(result: CallToolResult) -> str:
    """Flatten a tool result to text.

    Text items are joined with newlines. Without any text, every other item
    is rendered as a bracketed placeholder.
    """
    if not result.content:
        return NO_OUTPUT

    text = "\n".join(item.text for item in result.content if isinstance(item, TextContent) and item.text)
    if text:
        return text

    others = "\n".join(_placeholder(item) for item in result.content if not isinstance(item, TextContent))
    return others or json.dumps(_dump_content(result.content))


def _check_arguments(tool: RemoteTool, arguments: dict[str, Any]) -> None:
    """Validate an inferred argument set structurally. Mismatches are logged, never raised."""
    if tool.arguments_model is None:
        return
    try:
        tool.arguments_model.model_validate(arguments)
    except ValidationError as exc:
        logger.warning(
            "Arguments for tool %s do not match its schema (%d errors): %s",
            tool.name,
            exc.error_count(),
            arguments,
        )


class ToolInvoker:
    """Looks a tool up, infers its arguments, calls it and flattens the result."""

    def __init__(self, client: ClientSession, catalog: Callable[[], Mapping[str, RemoteTool]]) -> None:
        self._client = client
        self._catalog = catalog

    async def invoke(self, tool_name: str, raw_input: Any, session_id: str | None = None) -> str:
        """Invoke `tool_name` with `raw_input`.

        The client's current session id takes precedence over `session_id`,
        which may have been captured before a reconnect.

        Raises:
            ConnectionNotReadyError: the client is not connected
            ToolNotFoundError: no tool of that name is in the catalog
            ToolExecutionError: the tool returned an error-flagged result
            McpError: the call itself failed (timeout, transport, protocol)
        """
        if not self._client.initialized:
            raise ConnectionNotReadyError.from_message(f"Cannot call tool {tool_name}: not connected to tool server")

        tool = self._catalog().get(tool_name)
        if tool is None:
            raise ToolNotFoundError(f"Tool not found: {tool_name}")

        effective_session = self._client.get_session_id() or session_id
        inferred = infer_arguments(tool.schema, raw_input, tool_name)
        _check_arguments(tool, inferred.arguments)
        logger.info("Executing tool %s (session %s): %s", tool_name, effective_session, inferred.arguments)

        result = await self._client.call_tool(tool_name, inferred.arguments, effective_session)
        if result.is_error:
            raise ToolExecutionError(f"Tool execution failed: {json.dumps(_dump_content(result.content))}")

        text = format_tool_result(result)
        logger.debug("Tool %s returned: %s", tool_name, text)
        return text


class ToolsManager:
    """Owns the catalog of RemoteTool values built from the client's tool list.

    The catalog is a read-only mapping swapped in whole, so concurrent
    readers see either the old or the new set. It follows the client's
    cached tool list: a refresh, a reconnect or a disconnect (which empties
    that list) is picked up on the next read.
    """

    def __init__(self, client: ClientSession) -> None:
        self._client = client
        self._source: tuple[Tool, ...] = ()
        self._tools: Mapping[str, RemoteTool] = MappingProxyType({})
        self._invoker = ToolInvoker(client, self._catalog)

    @property
    def tools(self) -> tuple[RemoteTool, ...]:
        return tuple(self._catalog().values())

    @property
    def tool_names(self) -> list[str]:
        return list(self._catalog())

    @property
    def current_session_id(self) -> str | None:
        return self._client.get_session_id()

    def tool_descriptions(self) -> dict[str, str]:
        return {name: tool.description for name, tool in self._catalog().items()}

    def function_descriptors(self) -> list[dict[str, Any]]:
        return [tool.function_descriptor() for tool in self._catalog().values()]

    def get_tool(self, name: str) -> RemoteTool | None:
        return self._catalog().get(name)

    def initialize_tools(self) -> list[RemoteTool]:
        """Build the catalog from the client's cached tool list.

        Returns an empty list, leaving the catalog empty, if the client is
        not connected.
        """
        if not self._client.connected:
            logger.warning("Tool server not connected, no tools available")
            self._replace(())
            return []
        self._replace(self._client.available_tools)
        logger.info("Initialized %d tools: %s", len(self._tools), ", ".join(self._tools))
        return list(self._tools.values())

    async def refresh_tools(self) -> list[RemoteTool]:
        """Fetch the tool list again and rebuild the catalog."""
        tools = await self._client.list_tools()
        self._replace(tools)
        logger.info("Refreshed tools: %d available", len(self._tools))
        return list(self._tools.values())

    async def invoke(self, tool_name: str, raw_input: Any, session_id: str | None = None) -> str:
        return await self._invoker.invoke(tool_name, raw_input, session_id)

    def _catalog(self) -> Mapping[str, RemoteTool]:
        if self._client.available_tools is not self._source:
            self._replace(self._client.available_tools)
        return self._tools

    def _replace(self, tools: tuple[Tool, ...]) -> None:
        catalog = {tool.name: self._remote_tool(tool) for tool in tools}
        self._source = tools
        self._tools = MappingProxyType(catalog)

    def _remote_tool(self, tool: Tool) -> RemoteTool:
        schema = ToolSchema.from_tool(tool)
        return RemoteTool(
            descriptor=tool,
            schema=schema,
            invoke=partial(self._invoker.invoke, tool.name),
            arguments_model=schema.argument_model(),
        )
