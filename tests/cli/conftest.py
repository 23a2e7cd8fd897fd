"""Fixtures for summarizer CLI tests."""
from unittest.mock import patch

import pytest
from typer.testing import CliRunner

import summarizer_cli.api as cli_api
import summarizer_cli.cli as cli_module


@pytest.fixture
def cli_runner(monkeypatch):
    """Typer CLI runner, wide enough that tables don't wrap."""
    monkeypatch.setenv("COLUMNS", "200")
    return CliRunner()


@pytest.fixture
def temp_config(tmp_path, monkeypatch):
    """Point the CLI at an empty config directory."""
    config_dir = tmp_path / ".summarizer"
    config_file = config_dir / "config.yaml"
    monkeypatch.setattr(cli_api, "CONFIG_DIR", config_dir)
    monkeypatch.setattr(cli_api, "CONFIG_FILE", config_file)
    monkeypatch.setattr(cli_module, "CONFIG_FILE", config_file)
    config_dir.mkdir()
    return config_dir


@pytest.fixture
def clean_env(monkeypatch):
    for var in ("SUMMARIZER_URL", "ADMIN_API_KEY", "SUMMARIZER_ADMIN_EMAIL"):
        monkeypatch.delenv(var, raising=False)


@pytest.fixture
def env_admin_key(monkeypatch, clean_env, temp_config):
    monkeypatch.setenv("ADMIN_API_KEY", "admin_test_key")
    monkeypatch.setenv("SUMMARIZER_URL", "http://summarizer.test")


@pytest.fixture
def mock_api():
    """Replace the HTTP call behind every command."""
    with patch("summarizer_cli.cli._api_request") as mock:
        yield mock


@pytest.fixture
def mock_settings_response():
    return {
        "success": True,
        "settings": {
            "openrouter_api_key": {
                "value": "sk-or-...3456",
                "isSecret": True,
                "description": "Shared OpenRouter API key for managed/trial tiers",
                "updatedBy": "ops@example.com",
                "updatedAt": "2025-03-10T12:00:00+00:00",
            },
            "require_api_key_for_trial": {
                "value": "false",
                "isSecret": False,
                "description": "Whether trial users must bring their own API key",
                "updatedBy": None,
                "updatedAt": None,
            },
        },
    }


@pytest.fixture
def mock_models_response():
    return {
        "success": True,
        "models": [
            {
                "tier": "managed",
                "modelId": "anthropic/claude-sonnet-4.5",
                "modelName": "Claude Sonnet 4.5",
                "maxOutputTokens": 8192,
                "costPer1MInput": 3.0,
                "costPer1MOutput": 15.0,
                "contextWindow": 1000000,
            },
            {
                "tier": "free",
                "modelId": "google/gemini-2.5-flash-lite-preview-09-2025",
                "modelName": "Gemini 2.5 Flash Lite",
                "maxOutputTokens": 8192,
                "costPer1MInput": 0.1,
                "costPer1MOutput": 0.4,
                "contextWindow": None,
            },
        ],
    }
