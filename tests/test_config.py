from __future__ import annotations

import json
from pathlib import Path

import allure
import pytest

from bookmark_hoard.config import ConfigError, Settings

pytestmark = [
    allure.epic("Configuration"),
    allure.feature("Settings Loading"),
]


def test_defaults_without_config(tmp_path: Path) -> None:
    settings = Settings.from_env()

    assert settings.paths.project_root == tmp_path
    assert settings.paths.archive_path == tmp_path / "bookmarks.md"
    assert settings.paths.pending_path == tmp_path / ".state" / "pending-bookmarks.json"
    assert settings.paths.reprocess_state_path.name == "reprocess-state.json"
    assert settings.agent.provider == "claude"
    assert settings.agent.model == "sonnet"
    assert settings.agent.auto_invoke is True
    assert settings.reprocess.max_retries == 5
    settings.validate()


def test_environment_overrides_config_file(tmp_path: Path, monkeypatch) -> None:
    config = tmp_path / "custom.json"
    config.write_text(
        json.dumps(
            {
                "archiveFile": "archive.md",
                "aiProvider": "opencode",
                "opencodeModel": "file-model",
                "autoInvokeClaude": False,
                "webhookUrl": "https://hooks.example.com/x",
            },
        ),
        "utf-8",
    )
    monkeypatch.setenv("BOOKMARK_HOARD_CONFIG", str(config))
    monkeypatch.setenv("BOOKMARK_HOARD_OPENCODE_MODEL", "env-model")
    monkeypatch.setenv("BOOKMARK_HOARD_AGENT_TIMEOUT_SECONDS", "60")

    settings = Settings.from_env()

    assert settings.paths.archive_path == tmp_path / "archive.md"
    assert settings.agent.provider == "opencode"
    assert settings.agent.model == "env-model"
    assert settings.agent.auto_invoke is False
    assert settings.agent.timeout_seconds == 60.0
    assert settings.notify.webhook_url == "https://hooks.example.com/x"
    settings.validate()


def test_default_config_file_in_working_directory(tmp_path: Path) -> None:
    (tmp_path / "bookmark-hoard.config.json").write_text(
        json.dumps({"reprocessMaxRetries": 3}),
        "utf-8",
    )

    assert Settings.from_env().reprocess.max_retries == 3


@pytest.mark.parametrize(
    ("name", "value", "message"),
    [
        ("BOOKMARK_HOARD_AUTO_INVOKE", "maybe", "Invalid boolean value"),
        ("BOOKMARK_HOARD_AGENT_TIMEOUT_SECONDS", "soon", "Invalid numeric value"),
        ("BOOKMARK_HOARD_REPROCESS_MAX_RETRIES", "many", "Invalid integer value"),
    ],
)
def test_malformed_values_raise_config_error(monkeypatch, name, value, message) -> None:
    monkeypatch.setenv(name, value)

    with pytest.raises(ConfigError, match=message):
        Settings.from_env()


def test_broken_config_file(tmp_path: Path, monkeypatch) -> None:
    config = tmp_path / "broken.json"
    config.write_text("{nope", "utf-8")
    monkeypatch.setenv("BOOKMARK_HOARD_CONFIG", str(config))

    with pytest.raises(ConfigError, match="not valid JSON"):
        Settings.from_env()

    with pytest.raises(ConfigError, match="not found"):
        Settings.from_env(tmp_path / "missing.json")


@pytest.mark.parametrize(
    ("name", "value", "message"),
    [
        ("BOOKMARK_HOARD_AGENT_PROVIDER", "gpt", "Unsupported agent provider"),
        ("BOOKMARK_HOARD_AGENT_TIMEOUT_SECONDS", "0", "must be > 0"),
        ("BOOKMARK_HOARD_WEBHOOK_TYPE", "teams", "Unsupported webhook type"),
        ("BOOKMARK_HOARD_WEBHOOK_URL", "ftp://hooks", "Invalid webhook URL"),
    ],
)
def test_validate_rejects_out_of_range_settings(monkeypatch, name, value, message) -> None:
    monkeypatch.setenv(name, value)
    settings = Settings.from_env()

    with pytest.raises(ConfigError, match=message):
        settings.validate()
