"""Engine settings read from environment variables."""

import os
from functools import lru_cache

from pydantic import BaseModel, ConfigDict, Field

from .models.enums import Property

DEFAULT_GUEST_CAPACITY: dict[Property, int] = {Property.CLEAR_LAKE: 12}


def _parse_capacity(raw: str | None) -> dict[Property, int]:
    """Parse PROPERTY_GUEST_CAPACITY, e.g. "clear_lake:12,tahoe:20"."""
    if not raw:
        return dict(DEFAULT_GUEST_CAPACITY)

    capacity: dict[Property, int] = {}
    for part in raw.split(","):
        name, _, value = part.strip().partition(":")
        capacity[Property(name.strip())] = int(value)
    return capacity


def _parse_bool(raw: str | None, default: bool) -> bool:
    if raw is None:
        return default
    return raw.strip().lower() in ("1", "true", "yes", "on")


class EngineSettings(BaseModel):
    """Tunables for holds, sweeps and payment reconciliation."""

    model_config = ConfigDict(frozen=True)

    environment: str = "dev"
    currency: str = "USD"
    hold_duration_minutes: int = Field(default=30, ge=1)
    sweep_interval_seconds: int = Field(default=30, ge=1)
    stripe_timeout_seconds: int = Field(default=10, ge=1)
    reconcile_max_attempts: int = Field(default=5, ge=1)
    reconcile_retry_delay_ms: int = Field(default=500, ge=0)
    reconcile_timeout_ms: int = Field(default=10_000, ge=1)
    require_active_membership: bool = True
    guest_capacity: dict[Property, int] = Field(
        default_factory=lambda: dict(DEFAULT_GUEST_CAPACITY)
    )

    @classmethod
    def from_env(cls) -> "EngineSettings":
        """Build settings from the process environment."""
        env = os.environ
        return cls(
            environment=env.get("ENVIRONMENT", "dev"),
            currency=env.get("CURRENCY", "USD"),
            hold_duration_minutes=int(env.get("HOLD_DURATION_MINUTES", "30")),
            sweep_interval_seconds=int(env.get("SWEEP_INTERVAL_SECONDS", "30")),
            stripe_timeout_seconds=int(env.get("STRIPE_TIMEOUT_SECONDS", "10")),
            reconcile_max_attempts=int(env.get("RECONCILE_MAX_ATTEMPTS", "5")),
            reconcile_retry_delay_ms=int(env.get("RECONCILE_RETRY_DELAY_MS", "500")),
            reconcile_timeout_ms=int(env.get("RECONCILE_TIMEOUT_MS", "10000")),
            require_active_membership=_parse_bool(
                env.get("REQUIRE_ACTIVE_MEMBERSHIP"), True
            ),
            guest_capacity=_parse_capacity(env.get("PROPERTY_GUEST_CAPACITY")),
        )


@lru_cache(maxsize=1)
def get_settings() -> EngineSettings:
    """Get the process-wide settings (cached; call cache_clear() in tests)."""
    return EngineSettings.from_env()
