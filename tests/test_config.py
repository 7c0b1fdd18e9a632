"""Tests for environment-driven configuration."""

import pytest

from ery.models.config import load_settings


@pytest.fixture
def env(monkeypatch):
    for name in ("AI_API_KEY", "OPENROUTER_API_KEY", "OPENAI_API_KEY", "BATCH_MESSAGE_COUNT"):
        monkeypatch.delenv(name, raising=False)
    monkeypatch.setenv("DISCORD_TOKEN", "token")
    return monkeypatch


def test_defaults(env):
    settings = load_settings(env_file=None)

    assert settings.discord_token == "token"
    assert settings.batch_message_count == 5
    assert settings.batch_time_window_ms == 30_000
    assert settings.agent_max_iterations == 10
    assert settings.max_active_threads_per_guild == 10
    assert not settings.ai_configured


def test_provider_key_aliases(env):
    env.setenv("OPENROUTER_API_KEY", "sk-or")

    settings = load_settings(env_file=None)

    assert settings.ai_api_key == "sk-or"
    assert settings.ai_configured


def test_numeric_values_are_parsed(env):
    env.setenv("BATCH_MESSAGE_COUNT", "7")

    assert load_settings(env_file=None).batch_message_count == 7


def test_missing_token_is_reported(env):
    env.delenv("DISCORD_TOKEN")

    with pytest.raises(RuntimeError, match="DISCORD_TOKEN"):
        load_settings(env_file=None)


def test_out_of_range_value_is_rejected(env):
    env.setenv("BATCH_MESSAGE_COUNT", "0")

    with pytest.raises(RuntimeError, match="Invalid configuration"):
        load_settings(env_file=None)
