"""HTTP surface of the agent: chat, tools and session endpoints."""

from __future__ import annotations

import logging
import time
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from typing import Any
from uuid import uuid4

import anyio
from pydantic import BaseModel, ConfigDict, Field, ValidationError
from sse_starlette import EventSourceResponse
from starlette.applications import Starlette
from starlette.middleware import Middleware
from starlette.middleware.cors import CORSMiddleware
from starlette.requests import Request
from starlette.responses import JSONResponse, Response
from starlette.routing import Route

from agentlink.agent.agent import Agent
from agentlink.agent.stream import EventStream

logger = logging.getLogger(__name__)

API_NAME = "AI Agent API"
API_VERSION = "1.0.0"


class ChatRequest(BaseModel):
    model_config = ConfigDict(str_strip_whitespace=True, populate_by_name=True)

    message: str = Field(min_length=1, max_length=10000)
    session_id: str | None = Field(default=None, min_length=1, max_length=100, alias="sessionId")
    stream: bool = True
    max_tokens: int | None = Field(default=None, ge=1, le=8000, alias="maxTokens")


def _timestamp() -> str:
    return datetime.now(timezone.utc).isoformat().replace("+00:00", "Z")


def error_response(code: str, message: str, status_code: int, details: Any | None = None) -> JSONResponse:
    error: dict[str, Any] = {"code": code, "message": message}
    if details is not None:
        error["details"] = details
    return JSONResponse({"error": error, "timestamp": _timestamp()}, status_code=status_code)


def _validation_details(exc: ValidationError) -> list[dict[str, Any]]:
    return [
        {
            "field": ".".join(str(part) for part in error["loc"]) or "body",
            "message": error["msg"],
            "value": error.get("input"),
        }
        for error in exc.errors(include_url=False)
    ]


def create_app(
    agent: Agent,
    *,
    stream_timeout: float = 30.0,
    cors_origins: list[str] | None = None,
    manage_agent: bool = True,
) -> Starlette:
    """Build the Starlette application around `agent`.

    With `manage_agent`, the app lifespan initializes the agent on startup
    and shuts it down on exit. `stream_timeout` bounds, in seconds, how long
    one streamed chat response may run.
    """
    started_at = time.monotonic()

    async def index(request: Request) -> Response:
        return JSONResponse(
            {
                "name": API_NAME,
                "version": API_VERSION,
                "description": "Language-model agent with remote tool server integration",
                "endpoints": {
                    "health": "/api/health",
                    "chat": "/api/chat",
                    "tools": "/api/tools",
                    "sessions": "/api/sessions",
                },
                "timestamp": _timestamp(),
            }
        )

    async def health(request: Request) -> Response:
        start = time.perf_counter()
        report = await agent.health_check()
        response_time = (time.perf_counter() - start) * 1000
        healthy = report.healthy and report.mcp.status != "disconnected"
        logger.info("Health check completed in %.2fms - tool server status: %s", response_time, report.mcp.status)
        return JSONResponse(
            {
                "status": "healthy" if healthy else "unhealthy",
                "timestamp": _timestamp(),
                "services": {
                    "mcp": {
                        "url": agent.client.base_url,
                        "lastCheck": _timestamp(),
                        **report.mcp.model_dump(mode="json", by_alias=True),
                    },
                    "llm": {"status": "available" if report.llm else "unavailable", "provider": "OpenAI"},
                },
                "uptime": time.monotonic() - started_at,
                "responseTime": round(response_time),
            },
            status_code=200 if healthy else 503,
        )

    async def chat(request: Request) -> Response:
        try:
            body = await request.json()
        except ValueError:
            return error_response("VALIDATION_ERROR", "Request body must be valid JSON", 400)
        try:
            chat_request = ChatRequest.model_validate(body)
        except ValidationError as exc:
            return error_response("VALIDATION_ERROR", "Request validation failed", 400, _validation_details(exc))

        session_id = chat_request.session_id or str(uuid4())
        logger.info(
            "Chat request for session %s: %.100s (stream=%s)", session_id, chat_request.message, chat_request.stream
        )

        if chat_request.stream:
            return EventSourceResponse(_stream_chat(chat_request.message, session_id))

        try:
            reply = await agent.process_message(chat_request.message, session_id)
        except Exception as exc:
            logger.exception("Error in chat endpoint")
            return error_response("CHAT_ERROR", str(exc), 500)
        return JSONResponse({"sessionId": session_id, "response": reply, "timestamp": _timestamp()})

    async def _stream_chat(message: str, session_id: str) -> AsyncIterator[dict[str, str]]:
        events = EventStream(session_id)

        async def run() -> None:
            try:
                with anyio.fail_after(stream_timeout):
                    await agent.process_message(message, session_id, events)
            except TimeoutError:
                logger.error("Streamed response for session %s timed out", session_id)
                events.send_error(f"Response timed out after {stream_timeout:g}s", session_id)
            except Exception:
                # Already reported on the stream by the agent.
                logger.exception("Error processing streaming message")
            finally:
                events.send_end(session_id)

        async with anyio.create_task_group() as tg:
            tg.start_soon(run)
            async for event in events:
                yield {"data": event.to_json()}

    async def list_tools(request: Request) -> Response:
        tools = agent.available_tools()
        return JSONResponse({"tools": tools, "count": len(tools), "timestamp": _timestamp()})

    async def refresh_tools(request: Request) -> Response:
        try:
            await agent.refresh_tools()
        except Exception as exc:
            logger.exception("Error refreshing tools")
            return error_response("TOOLS_REFRESH_ERROR", str(exc), 500)
        tools = agent.available_tools()
        return JSONResponse(
            {
                "message": "Tools refreshed successfully",
                "tools": tools,
                "count": len(tools),
                "timestamp": _timestamp(),
            }
        )

    async def clear_session(request: Request) -> Response:
        session_id = request.path_params["session_id"]
        agent.clear_session(session_id)
        return JSONResponse({"message": f"Session {session_id} cleared successfully", "timestamp": _timestamp()})

    async def clear_sessions(request: Request) -> Response:
        agent.clear_all_sessions()
        return JSONResponse({"message": "All sessions cleared successfully", "timestamp": _timestamp()})

    @asynccontextmanager
    async def lifespan(app: Starlette) -> AsyncIterator[None]:
        if not manage_agent:
            yield
            return
        await agent.initialize()
        try:
            yield
        finally:
            await agent.shutdown()

    routes = [
        Route("/", endpoint=index, methods=["GET"]),
        Route("/api/health", endpoint=health, methods=["GET"]),
        Route("/api/chat", endpoint=chat, methods=["POST"]),
        Route("/api/tools", endpoint=list_tools, methods=["GET"]),
        Route("/api/tools/refresh", endpoint=refresh_tools, methods=["POST"]),
        Route("/api/sessions/{session_id}", endpoint=clear_session, methods=["DELETE"]),
        Route("/api/sessions", endpoint=clear_sessions, methods=["DELETE"]),
    ]
    middleware = [
        Middleware(
            CORSMiddleware,
            allow_origins=cors_origins or ["*"],
            allow_methods=["GET", "POST", "DELETE", "OPTIONS"],
            allow_headers=["Content-Type", "Cache-Control", "Authorization"],
        )
    ]
    return Starlette(routes=routes, middleware=middleware, lifespan=lifespan)
