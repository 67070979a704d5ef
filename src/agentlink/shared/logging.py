"""Logging utilities for agentlink."""

import logging
from collections.abc import Mapping
from typing import Any, Literal

from rich.console import Console
from rich.logging import RichHandler

LogLevel = Literal["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"]


def configure_logging(level: LogLevel = "INFO") -> None:
    """Configure logging for agentlink.

    Args:
        level: the log level to use
    """
    handlers: list[logging.Handler] = [RichHandler(console=Console(stderr=True), rich_tracebacks=True)]

    logging.basicConfig(
        level=level,
        format="%(message)s",
        handlers=handlers,
    )


def redact_sensitive_data(
    data: Mapping[str, Any] | None,
    sensitive_keys: set[str] | None = None,
) -> Mapping[str, Any] | None:
    """Return a shallow copy with sensitive values replaced by "***".

    Parameters
    ----------
    data:
        Original mapping (typically settings or request headers). If *None*
        the function simply returns *None*.
    sensitive_keys:
        Optional set of keys that should be hidden; defaults to API keys and
        authorization headers.
    """

    if data is None:
        return None

    sensitive_keys = sensitive_keys or {
        "authorization",
        "api_key",
        "openai_api_key",
    }

    redacted: dict[str, Any] = {}
    for key, value in data.items():
        if key.lower() in sensitive_keys:
            redacted[key] = "***"
        else:
            redacted[key] = value

    return redacted
