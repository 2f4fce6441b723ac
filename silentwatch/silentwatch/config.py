"""SilentWatch configuration loaded from environment variables or host options."""

from __future__ import annotations

import logging
from collections.abc import Mapping
from pathlib import Path
from typing import Any
from urllib.parse import urlsplit

from pydantic import Field, ValidationError, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

logger = logging.getLogger(__name__)

# camelCase option names recognised in host configuration objects.
_OPTION_ALIASES: dict[str, str] = {
    "logEndpoint": "log_endpoint",
    "expectedSelectors": "expected_selectors",
    "heartbeatIntervalMs": "heartbeat_interval_ms",
    "noFollowupDelayMs": "silent_failure_timeout_ms",
    "silentFailureTimeoutMs": "silent_failure_timeout_ms",
    "sessionKey": "session_key",
    "samplingRate": "sampling_rate",
    "maxEventsPerMinute": "max_events_per_minute",
    "drainIntervalMs": "drain_interval_ms",
    "queuePath": "queue_path",
    "page": "page",
    "httpTimeoutSeconds": "http_timeout_seconds",
    "debug": "debug",
    "structuredLogging": "structured_logging",
}


class WatchSettings(BaseSettings):
    """Engine settings loaded from environment variables with SILENTWATCH_ prefix."""

    model_config = SettingsConfigDict(
        env_prefix="SILENTWATCH_",
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # Delivery
    log_endpoint: str = "http://localhost:4000/logs"
    http_timeout_seconds: float = Field(default=5.0, gt=0.0)
    drain_interval_ms: int = Field(default=10_000, gt=0)
    queue_path: Path = Path(".silentwatch/queue.db")

    # Admission control
    sampling_rate: float = Field(default=1.0, ge=0.0, le=1.0)
    max_events_per_minute: int = Field(default=60, ge=1)

    # Correlation
    silent_failure_timeout_ms: int = Field(default=700, gt=0)

    # Instrumentation
    heartbeat_interval_ms: int = Field(default=30_000, ge=0)
    expected_selectors: list[str] = Field(default_factory=list)

    # Session
    session_key: str = Field(default="silentwatch_session_id", min_length=1)
    page: str = ""

    # Logging
    debug: bool = False
    structured_logging: bool = False

    @field_validator("log_endpoint")
    @classmethod
    def _check_endpoint(cls, v: str) -> str:
        parts = urlsplit(v)
        if parts.scheme not in ("http", "https") or not parts.hostname:
            raise ValueError(f"log_endpoint must be an http(s) URL, got {v!r}")
        return v

    @property
    def silent_failure_timeout_seconds(self) -> float:
        return self.silent_failure_timeout_ms / 1000.0

    @property
    def drain_interval_seconds(self) -> float:
        return self.drain_interval_ms / 1000.0

    @property
    def heartbeat_interval_seconds(self) -> float:
        return self.heartbeat_interval_ms / 1000.0


def load_settings(**overrides: object) -> WatchSettings:
    """Load settings from environment, with optional overrides for testing."""
    settings = WatchSettings(**overrides)  # type: ignore[arg-type]

    if settings.debug:
        logger.info("Loaded settings; telemetry endpoint: %s", settings.log_endpoint)

    return settings


def settings_from_options(options: Mapping[str, Any] | None = None) -> WatchSettings:
    """Build settings from a host configuration object.

    Accepts the camelCase option names (``logEndpoint``,
    ``noFollowupDelayMs``, ...) as well as the snake_case field names.
    Unknown options are logged and ignored.  Options that fail validation
    are logged and dropped so their defaults apply; host configuration
    mistakes never raise into the host.
    """
    overrides: dict[str, Any] = {}
    for key, value in (options or {}).items():
        field = _OPTION_ALIASES.get(key, key)
        if field not in WatchSettings.model_fields:
            logger.warning("Ignoring unknown SilentWatch option %r", key)
            continue
        overrides[field] = value

    try:
        return load_settings(**overrides)
    except ValidationError as exc:
        rejected = {str(err["loc"][0]) for err in exc.errors() if err["loc"]} & overrides.keys()
        if not rejected:
            raise
        logger.warning("Ignoring invalid SilentWatch options %s: %s", sorted(rejected), exc)
    return load_settings(**{k: v for k, v in overrides.items() if k not in rejected})
