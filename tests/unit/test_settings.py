"""Tests for OrchestratorSettings."""

import os

import pytest
from pydantic import ValidationError

from flowcore.infrastructure.config.settings import OrchestratorSettings


@pytest.fixture(autouse=True)
def clean_env(monkeypatch: pytest.MonkeyPatch) -> None:
    """Remove FLOWCORE_ settings a local .env may have exported."""
    for name in list(os.environ):
        if name.startswith("FLOWCORE_") and name != "FLOWCORE_SECRET_KEY":
            monkeypatch.delenv(name)


class TestOrchestratorSettings:
    """Tests for settings defaults and sources."""

    def test_defaults(self) -> None:
        settings = OrchestratorSettings()

        assert settings.authenticated_session_ttl_seconds == 7 * 24 * 60 * 60
        assert settings.anonymous_session_ttl_seconds == 30 * 60
        assert settings.history_size == 10
        assert settings.history_max_chars == 300
        assert settings.chat_max_chars == 1200
        assert settings.optimistic_concurrency is False
        assert settings.llm_api_key is None
        assert settings.llm_base_url == "https://api.groq.com/openai/v1"
        assert settings.redis_url is None
        assert settings.mongodb_url is None
        assert settings.payment_reminder_after_hours == 2.0

    def test_from_dict(self) -> None:
        settings = OrchestratorSettings.from_dict(
            {"anonymous_session_ttl_seconds": 600, "log_level": "DEBUG", "unknown_option": 1}
        )

        assert settings.anonymous_session_ttl_seconds == 600
        assert settings.log_level == "DEBUG"
        assert not hasattr(settings, "unknown_option")

    def test_environment_prefix(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setenv("FLOWCORE_REDIS_URL", "redis://cache:6379/2")
        monkeypatch.setenv("FLOWCORE_OPTIMISTIC_CONCURRENCY", "true")
        monkeypatch.setenv("flowcore_history_size", "4")

        settings = OrchestratorSettings()

        assert settings.redis_url == "redis://cache:6379/2"
        assert settings.optimistic_concurrency is True
        assert settings.history_size == 4

    def test_explicit_values_override_environment(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setenv("FLOWCORE_HISTORY_SIZE", "4")

        settings = OrchestratorSettings.from_dict({"history_size": 8})

        assert settings.history_size == 8

    @pytest.mark.parametrize(
        "config",
        [
            {"anonymous_session_ttl_seconds": 0},
            {"authenticated_session_ttl_seconds": -1},
            {"history_size": 0},
            {"llm_timeout_seconds": 0},
            {"sweep_batch_limit": 0},
        ],
    )
    def test_invalid_values_raise(self, config: dict) -> None:
        with pytest.raises(ValidationError):
            OrchestratorSettings.from_dict(config)
