import pytest
from pydantic import ValidationError

from agentlink.settings import Settings


@pytest.fixture
def env(monkeypatch: pytest.MonkeyPatch, tmp_path):
    monkeypatch.chdir(tmp_path)
    for name in ("MCP_SERVER_URL", "OPENAI_API_KEY", "PORT", "OPENAI_MODEL", "STREAM_TIMEOUT", "LOG_LEVEL"):
        monkeypatch.delenv(name, raising=False)
    return monkeypatch


def test_reads_environment(env: pytest.MonkeyPatch):
    env.setenv("MCP_SERVER_URL", "http://localhost:8080")
    env.setenv("OPENAI_API_KEY", "sk-secret")
    env.setenv("PORT", "4000")
    env.setenv("OPENAI_MODEL", "gpt-test")

    settings = Settings()  # type: ignore[call-arg]

    assert settings.mcp_server_url == "http://localhost:8080"
    assert settings.openai_api_key.get_secret_value() == "sk-secret"
    assert settings.port == 4000
    assert settings.model == "gpt-test"
    assert settings.stream_timeout == 30000
    assert settings.history_limit == 20


def test_reads_dotenv_file(env: pytest.MonkeyPatch, tmp_path):
    (tmp_path / ".env").write_text("MCP_SERVER_URL=http://tools:9000\nOPENAI_API_KEY=sk-file\n")

    settings = Settings()  # type: ignore[call-arg]

    assert settings.mcp_server_url == "http://tools:9000"


def test_missing_required_settings_fail(env: pytest.MonkeyPatch):
    with pytest.raises(ValidationError):
        Settings()  # type: ignore[call-arg]


def test_redacted_hides_api_key(env: pytest.MonkeyPatch):
    env.setenv("MCP_SERVER_URL", "http://localhost:8080")
    env.setenv("OPENAI_API_KEY", "sk-secret")

    redacted = Settings().redacted()  # type: ignore[call-arg]

    assert "sk-secret" not in str(redacted)
    assert redacted["mcp_server_url"] == "http://localhost:8080"
