import logging
import sys

import click
import uvicorn
from pydantic import ValidationError

from agentlink.agent.agent import Agent
from agentlink.agent.history import ConversationStore
from agentlink.agent.llm import OpenAIChatModel
from agentlink.client.session import ClientSession
from agentlink.server.app import create_app
from agentlink.settings import Settings
from agentlink.shared.logging import configure_logging

logger = logging.getLogger("agentlink")


def build_app(settings: Settings):
    client = ClientSession(
        settings.mcp_server_url,
        request_timeout=settings.request_timeout,
        session_timeout=settings.session_timeout,
    )
    model = OpenAIChatModel(
        settings.openai_api_key.get_secret_value(),
        model=settings.model,
        base_url=settings.openai_base_url,
        temperature=settings.temperature,
        max_tokens=settings.max_tokens,
    )
    agent = Agent(client, model, history=ConversationStore(limit=settings.history_limit))
    return create_app(agent, stream_timeout=settings.stream_timeout / 1000)


@click.command()
@click.option("--host", default=None, help="Interface to bind (overrides HOST)")
@click.option("--port", type=int, default=None, help="Port to listen on (overrides PORT)")
@click.option(
    "--log-level",
    type=click.Choice(["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"], case_sensitive=False),
    default=None,
    help="Log level (overrides LOG_LEVEL)",
)
def main(host: str | None, port: int | None, log_level: str | None) -> int:
    try:
        settings = Settings()  # type: ignore[call-arg]
    except ValidationError as exc:
        configure_logging("ERROR")
        missing = ", ".join(str(error["loc"][0]) for error in exc.errors())
        logger.error("Invalid configuration (%s): %s", missing, exc)
        sys.exit(1)

    overrides = {
        key: value
        for key, value in {"host": host, "port": port, "log_level": log_level and log_level.upper()}.items()
        if value is not None
    }
    settings = settings.model_copy(update=overrides)

    configure_logging(settings.log_level)
    logger.info("Starting agent with settings: %s", settings.redacted())

    uvicorn.run(build_app(settings), host=settings.host, port=settings.port, log_level=settings.log_level.lower())
    return 0


if __name__ == "__main__":
    main()
