"""Utilities for creating standardized httpx AsyncClient instances."""

from typing import Any, Protocol

import httpx

__all__ = ["create_http_client", "HttpClientFactory"]


class HttpClientFactory(Protocol):
    def __call__(self, **kwargs: Any) -> httpx.AsyncClient: ...


def create_http_client(**kwargs: Any) -> httpx.AsyncClient:
    """Create a standardized httpx AsyncClient with agentlink defaults.

    This function provides common defaults used throughout the codebase:
    - follow_redirects=True (always enabled)
    - Default timeout of 30 seconds if not specified
    - A JSON content type header
    - You can pass any keyword argument accepted by httpx.AsyncClient

    Note:
        The returned AsyncClient must be closed (or used as a context
        manager) to release its connections.

    Examples:
        # Basic usage
        async with create_http_client() as client:
            response = await client.get("https://tools.example.com/health")

        # Streaming reads need a longer read timeout
        timeout = httpx.Timeout(30.0, read=300.0)
        async with create_http_client(timeout=timeout) as client:
            ...
    """
    default_kwargs: dict[str, Any] = {
        "follow_redirects": True,
        "timeout": httpx.Timeout(30.0),
        "headers": {"Content-Type": "application/json"},
    }
    default_kwargs.update(kwargs)
    return httpx.AsyncClient(**default_kwargs)
