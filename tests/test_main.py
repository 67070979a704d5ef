from typing import Any

import pytest
from click.testing import CliRunner
from starlette.applications import Starlette

from agentlink import __main__ as cli


@pytest.fixture
def captured_run(monkeypatch: pytest.MonkeyPatch, tmp_path) -> dict[str, Any]:
    monkeypatch.chdir(tmp_path)
    captured: dict[str, Any] = {}

    def fake_run(app: Any, **kwargs: Any) -> None:
        captured["app"] = app
        captured.update(kwargs)

    monkeypatch.setattr(cli.uvicorn, "run", fake_run)
    return captured


def test_main_starts_server_with_overrides(captured_run: dict[str, Any]):
    env = {"MCP_SERVER_URL": "http://localhost:8080", "OPENAI_API_KEY": "sk-test", "PORT": "3000"}

    result = CliRunner().invoke(cli.main, ["--port", "5000", "--log-level", "debug"], env=env)

    assert result.exit_code == 0, result.output
    assert isinstance(captured_run["app"], Starlette)
    assert captured_run["port"] == 5000
    assert captured_run["host"] == "0.0.0.0"
    assert captured_run["log_level"] == "debug"


def test_main_exits_on_missing_configuration(captured_run: dict[str, Any], monkeypatch: pytest.MonkeyPatch):
    monkeypatch.delenv("MCP_SERVER_URL", raising=False)
    monkeypatch.delenv("OPENAI_API_KEY", raising=False)

    result = CliRunner().invoke(cli.main, [])

    assert result.exit_code == 1
    assert "app" not in captured_run
