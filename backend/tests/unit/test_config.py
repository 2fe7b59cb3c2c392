"""Unit tests for engine settings."""

import pytest
from pydantic import ValidationError

from booking_core.config import EngineSettings, get_settings
from booking_core.models import Property

ENV_VARS = (
    "ENVIRONMENT",
    "CURRENCY",
    "HOLD_DURATION_MINUTES",
    "SWEEP_INTERVAL_SECONDS",
    "RECONCILE_MAX_ATTEMPTS",
    "REQUIRE_ACTIVE_MEMBERSHIP",
    "PROPERTY_GUEST_CAPACITY",
)


@pytest.fixture
def clean_env(monkeypatch: pytest.MonkeyPatch) -> pytest.MonkeyPatch:
    for name in ENV_VARS:
        monkeypatch.delenv(name, raising=False)
    return monkeypatch


class TestFromEnv:
    def test_defaults(self, clean_env: pytest.MonkeyPatch) -> None:
        settings = EngineSettings.from_env()

        assert settings.environment == "dev"
        assert settings.currency == "USD"
        assert settings.hold_duration_minutes == 30
        assert settings.reconcile_max_attempts == 5
        assert settings.require_active_membership is True
        assert settings.guest_capacity == {Property.CLEAR_LAKE: 12}

    def test_overrides(self, clean_env: pytest.MonkeyPatch) -> None:
        clean_env.setenv("ENVIRONMENT", "prod")
        clean_env.setenv("HOLD_DURATION_MINUTES", "15")
        clean_env.setenv("REQUIRE_ACTIVE_MEMBERSHIP", "false")
        clean_env.setenv("PROPERTY_GUEST_CAPACITY", "clear_lake:10, tahoe:20")

        settings = EngineSettings.from_env()

        assert settings.environment == "prod"
        assert settings.hold_duration_minutes == 15
        assert settings.require_active_membership is False
        assert settings.guest_capacity == {Property.CLEAR_LAKE: 10, Property.TAHOE: 20}

    def test_unknown_property_in_capacity(self, clean_env: pytest.MonkeyPatch) -> None:
        clean_env.setenv("PROPERTY_GUEST_CAPACITY", "big_sur:8")

        with pytest.raises(ValueError):
            EngineSettings.from_env()

    def test_zero_hold_duration_rejected(self, clean_env: pytest.MonkeyPatch) -> None:
        clean_env.setenv("HOLD_DURATION_MINUTES", "0")

        with pytest.raises(ValidationError):
            EngineSettings.from_env()


class TestGetSettings:
    def test_cached_until_cleared(self, clean_env: pytest.MonkeyPatch) -> None:
        get_settings.cache_clear()
        first = get_settings()
        clean_env.setenv("ENVIRONMENT", "staging")

        assert get_settings() is first

        get_settings.cache_clear()
        assert get_settings().environment == "staging"

    def test_settings_are_frozen(self) -> None:
        with pytest.raises(ValidationError):
            EngineSettings().environment = "prod"  # type: ignore[misc]
