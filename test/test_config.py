"""Tests for environment-driven settings."""

import pytest
from pydantic import ValidationError

from bizadvisor.config import Settings, get_settings


class TestSettings:
    def test_defaults(self) -> None:
        settings = Settings(_env_file=None)

        assert settings.session_timeout_minutes == 30
        assert settings.session_timeout_seconds == 1800.0
        assert settings.sync_max_attempts == 3
        assert settings.advisor_provider == "mock"

    def test_environment_overrides(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setenv("SESSION_TIMEOUT_MINUTES", "10")
        monkeypatch.setenv("SYNC_ENDPOINT_URL", "https://sync.example.com/")
        monkeypatch.setenv("CORS_ORIGINS", "http://a.test, http://b.test,")

        settings = get_settings()

        assert settings.session_timeout_seconds == 600.0
        assert settings.sync_endpoint_url == "https://sync.example.com"
        assert settings.cors_origins_list == ["http://a.test", "http://b.test"]

    def test_invalid_values_are_rejected(self) -> None:
        with pytest.raises(ValidationError):
            Settings(_env_file=None, entity_confidence_floor=1.5)
        with pytest.raises(ValidationError):
            Settings(_env_file=None, advisor_provider="carrier-pigeon")
