"""Chat agent that answers with the help of remote tools."""

from __future__ import annotations

import logging
import re
from typing import Any

from pydantic import BaseModel, Field

from agentlink.agent.history import ConversationStore
from agentlink.agent.llm import ChatModel, Message, ModelReply
from agentlink.agent.stream import EventStream
from agentlink.client.session import ClientSession, HealthState
from agentlink.shared.exceptions import AgentLinkError
from agentlink.tools.invoker import ToolsManager

logger = logging.getLogger(__name__)

_CHUNK = re.compile(r"\s*\S+\s*|\s+")

FOLLOW_UP_SYSTEM_PROMPT = (
    "You are a helpful AI assistant. You have just executed some tools and received results. "
    "Provide a helpful response to the user based on the tool results."
)
FOLLOW_UP_REQUEST = "Based on the tool results above, please provide a clear and helpful answer to my original question."


def system_prompt(tool_lines: list[str]) -> str:
    tools = "\n".join(tool_lines) if tool_lines else "(no tools are currently available)"
    return (
        "You are a helpful AI assistant with access to various tools through an MCP (Model Context Protocol) server.\n\n"
        "You have access to the following tools. Use them when they can help answer the user's question:\n"
        f"{tools}\n\n"
        "IMPORTANT: You MUST use tools when they can help answer the question. When you see a tool call is needed, "
        "you should use the tool and wait for the result before providing your final answer.\n\n"
        "Be helpful and accurate in your responses."
    )


class McpHealth(BaseModel):
    status: HealthState
    server_reachable: bool = Field(serialization_alias="serverReachable")
    sse_connected: bool = Field(serialization_alias="sseConnected")
    initialized: bool
    tools_available: int = Field(serialization_alias="toolsAvailable")
    server_info: Any | None = Field(default=None, serialization_alias="serverInfo")


class AgentHealth(BaseModel):
    agent: bool
    mcp: McpHealth
    llm: bool
    tools: int

    @property
    def healthy(self) -> bool:
        return self.agent and self.llm


class AgentInfo(BaseModel):
    mcp_connected: bool = Field(serialization_alias="mcpConnected")
    tools_count: int = Field(serialization_alias="toolsCount")
    available_tools: list[str] = Field(serialization_alias="availableTools")
    mcp_server_url: str = Field(serialization_alias="mcpServerUrl")


class Agent:
    """Runs one model turn per user message, executing any requested tool calls.

    A turn is: ask the model with the tool descriptors; if it requests tool
    calls, execute them through the tools manager and ask the model again
    with the results. Failing tool calls are reported to the model as text.
    """

    def __init__(
        self,
        client: ClientSession,
        model: ChatModel,
        *,
        history: ConversationStore | None = None,
        tools: ToolsManager | None = None,
    ) -> None:
        self.client = client
        self.model = model
        self.history = history or ConversationStore()
        self.tools = tools or ToolsManager(client)
        self._initialized = False

    @property
    def initialized(self) -> bool:
        return self._initialized

    async def initialize(self) -> None:
        """Connect to the tool server and load its tools, degrading to zero tools."""
        logger.info("Initializing agent...")
        if await self.client.connect_safely():
            tools = self.tools.initialize_tools()
            logger.info("Initialized with %d tools", len(tools))
        else:
            self.tools.initialize_tools()
            logger.info("Initialized without tools (tool server unavailable)")
        self._initialized = True

    async def process_message(self, message: str, session_id: str, stream: EventStream | None = None) -> str:
        """Answer `message` in conversation `session_id`, streaming tokens to `stream` if given."""
        if not self._initialized:
            raise AgentLinkError("Agent not initialized")

        logger.info("Processing message for session %s", session_id)
        try:
            messages: list[Message] = [
                {"role": "system", "content": self._system_prompt()},
                *self.history.get(session_id),
                {"role": "user", "content": message},
            ]
            reply = await self.model.complete(messages, self.tools.function_descriptors() or None)

            if reply.tool_calls:
                tool_results = await self._execute_tool_calls(reply, stream)
                final = await self.model.complete(
                    [
                        {"role": "system", "content": FOLLOW_UP_SYSTEM_PROMPT},
                        {"role": "user", "content": message},
                        {
                            "role": "assistant",
                            "content": f"I executed the following tools and got these results: {tool_results}",
                        },
                        {"role": "user", "content": FOLLOW_UP_REQUEST},
                    ]
                )
                text = final.content
            else:
                text = reply.content

            if stream is not None:
                for chunk in _CHUNK.findall(text):
                    stream.send_token(chunk, session_id)
        except Exception as exc:
            logger.error("Error processing message for session %s: %s", session_id, exc)
            if stream is not None:
                stream.send_error(f"Error processing message: {exc}", session_id)
            raise

        self.history.append(
            session_id,
            {"role": "user", "content": message},
            {"role": "assistant", "content": text},
        )
        logger.info("Message processed for session %s", session_id)
        return text

    async def _execute_tool_calls(self, reply: ModelReply, stream: EventStream | None) -> str:
        results: list[str] = []
        for call in reply.tool_calls:
            mcp_session = self.tools.current_session_id
            logger.info("Executing tool call %s: %s", call.name, call.arguments)
            if stream is not None:
                stream.send_tool_call(call.name, call.arguments, mcp_session)
            try:
                result = await self.tools.invoke(call.name, call.arguments, mcp_session)
            except AgentLinkError as exc:
                error = f"Error executing tool {call.name}: {exc}"
                logger.error(error)
                if stream is not None:
                    stream.send_error(error)
                results.append(f"Error: {error}")
                continue

            if stream is not None:
                stream.send_tool_result(result)
            results.append(f"Tool {call.name} result: {result}")
        return "".join(f"\n\n{entry}" for entry in results)

    def _system_prompt(self) -> str:
        return system_prompt([f"- {tool.name}: {tool.description}" for tool in self.tools.tools])

    def available_tools(self) -> list[dict[str, Any]]:
        return [
            {
                "name": tool.name,
                "description": tool.description,
                "parameters": tool.descriptor.input_schema.model_dump(exclude_none=True),
            }
            for tool in self.tools.tools
        ]

    def agent_info(self) -> AgentInfo:
        return AgentInfo(
            mcp_connected=self.client.connected,
            tools_count=len(self.tools.tools),
            available_tools=self.tools.tool_names,
            mcp_server_url=self.client.base_url,
        )

    async def refresh_tools(self) -> list[str]:
        logger.info("Refreshing agent tools...")
        await self.tools.refresh_tools()
        return self.tools.tool_names

    @property
    def session_count(self) -> int:
        return len(self.history)

    def clear_session(self, session_id: str) -> bool:
        cleared = self.history.clear(session_id)
        logger.info("Cleared session: %s", session_id)
        return cleared

    def clear_all_sessions(self) -> None:
        self.history.clear_all()
        logger.info("Cleared all sessions")

    async def health_check(self) -> AgentHealth:
        health = await self.client.health_check()
        return AgentHealth(
            agent=self._initialized,
            mcp=McpHealth(status=health.status, **health.details.model_dump()),
            llm=True,
            tools=len(self.tools.tools),
        )

    async def shutdown(self) -> None:
        logger.info("Shutting down agent...")
        self.clear_all_sessions()
        await self.client.disconnect()
        self._initialized = False
        logger.info("Agent shutdown complete")
