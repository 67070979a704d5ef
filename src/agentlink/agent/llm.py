"""Language-model collaborator.

The agent only needs one operation from a model: given the conversation and
the declared tools, answer with text or with a list of tool calls.
`OpenAIChatModel` implements it against an OpenAI-compatible
`/chat/completions` endpoint.
"""

from __future__ import annotations

import json
import logging
from typing import Any, Protocol

import httpx
from pydantic import BaseModel, ConfigDict, Field, ValidationError

from agentlink.shared._httpx_utils import HttpClientFactory, create_http_client
from agentlink.shared.exceptions import ModelError

logger = logging.getLogger(__name__)

Message = dict[str, Any]


class ToolCallRequest(BaseModel):
    """One tool call requested by the model.

    `arguments` is the decoded JSON object when the model produced one, and
    the raw text otherwise.
    """

    id: str
    name: str
    arguments: dict[str, Any] | str = Field(default_factory=dict)

    def to_message(self) -> Message:
        raw = self.arguments if isinstance(self.arguments, str) else json.dumps(self.arguments)
        return {"id": self.id, "type": "function", "function": {"name": self.name, "arguments": raw}}


class ModelReply(BaseModel):
    content: str = ""
    tool_calls: list[ToolCallRequest] = Field(default_factory=list)


class ChatModel(Protocol):
    async def complete(self, messages: list[Message], tools: list[dict[str, Any]] | None = None) -> ModelReply: ...


class _FunctionCall(BaseModel):
    model_config = ConfigDict(extra="allow")

    name: str
    arguments: str | dict[str, Any] | None = None


class _ToolCall(BaseModel):
    model_config = ConfigDict(extra="allow")

    id: str
    function: _FunctionCall


class _AssistantMessage(BaseModel):
    model_config = ConfigDict(extra="allow")

    content: str | None = None
    tool_calls: list[_ToolCall] | None = None


class _Choice(BaseModel):
    model_config = ConfigDict(extra="allow")

    message: _AssistantMessage


class _Completion(BaseModel):
    model_config = ConfigDict(extra="allow")

    choices: list[_Choice]


def decode_arguments(raw: str | dict[str, Any] | None) -> dict[str, Any] | str:
    """Decode tool-call arguments, keeping free text that is not a JSON object."""
    if raw is None:
        return {}
    if isinstance(raw, dict):
        return raw
    if not raw.strip():
        return {}
    try:
        decoded = json.loads(raw)
    except json.JSONDecodeError:
        return raw
    return decoded if isinstance(decoded, dict) else raw


class OpenAIChatModel:
    """ChatModel over the OpenAI chat-completions HTTP API."""

    def __init__(
        self,
        api_key: str,
        *,
        model: str = "gpt-4-turbo",
        base_url: str = "https://api.openai.com/v1",
        temperature: float = 0.7,
        max_tokens: int = 4000,
        timeout: float = 60.0,
        http_client_factory: HttpClientFactory = create_http_client,
    ) -> None:
        self.model = model
        self.temperature = temperature
        self.max_tokens = max_tokens
        self._api_key = api_key
        self._url = base_url.rstrip("/") + "/chat/completions"
        self._timeout = timeout
        self._http_client_factory = http_client_factory

    async def complete(self, messages: list[Message], tools: list[dict[str, Any]] | None = None) -> ModelReply:
        body: dict[str, Any] = {
            "model": self.model,
            "messages": messages,
            "temperature": self.temperature,
            "max_tokens": self.max_tokens,
        }
        if tools:
            body["tools"] = tools
            body["tool_choice"] = "auto"

        logger.debug("Calling model %s with %d messages and %d tools", self.model, len(messages), len(tools or []))
        try:
            async with self._http_client_factory(
                headers={"Authorization": f"Bearer {self._api_key}"},
                timeout=httpx.Timeout(self._timeout),
            ) as client:
                response = await client.post(self._url, json=body)
                response.raise_for_status()
        except httpx.HTTPStatusError as exc:
            raise ModelError(f"Model request failed with HTTP {exc.response.status_code}: {exc.response.text}") from exc
        except httpx.HTTPError as exc:
            raise ModelError(f"Model request failed: {exc}") from exc

        try:
            completion = _Completion.model_validate_json(response.content)
        except ValidationError as exc:
            raise ModelError(f"Unexpected model response: {exc}") from exc
        if not completion.choices:
            raise ModelError("Model returned no choices")

        message = completion.choices[0].message
        reply = ModelReply(
            content=message.content or "",
            tool_calls=[
                ToolCallRequest(id=call.id, name=call.function.name, arguments=decode_arguments(call.function.arguments))
                for call in message.tool_calls or []
            ],
        )
        logger.info("Model replied with %d characters and %d tool calls", len(reply.content), len(reply.tool_calls))
        return reply
