"""
Centralized settings for the medallion orchestrator.

Manifesto:
    Configuration is explicit, validated and environment-driven. Every
    knob of the job (schedule, per-step timeouts/retries/backoff, settle
    delay) lives on one pydantic-settings model and is checked once at
    startup; an invalid value is a :class:`~medallion.core.errors.ConfigError`
    and the process refuses to start rather than failing mid-run.

All fields can be set via ``MEDALLION_*`` environment variables (e.g.
``MEDALLION_FETCH_RETRIES=5``) or a ``.env`` file. Time values are seconds.

Tags:
    configuration, settings, pydantic, validation
"""

from __future__ import annotations

from enum import Enum
from functools import lru_cache
from typing import Any

from pydantic import Field, ValidationError, field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from .errors import ConfigError


DEFAULT_SOURCE = "medallion.ingest.sample:synthetic_weather"
DEFAULT_ENTITY_SOURCE = "medallion.ingest.sample:synthetic_city_weather"


class StorageBackend(str, Enum):
    """Where the Raw Store, Silver log and run history live."""

    MEMORY = "memory"
    SQLITE = "sqlite"


class BackoffKind(str, Enum):
    """Spacing between attempts of a step."""

    FIXED = "fixed"
    EXPONENTIAL = "exponential"


class MedallionSettings(BaseSettings):
    """Orchestrator configuration.

    Order of precedence (highest → lowest):
        1. Environment variables (``MEDALLION_SCHEDULE_INTERVAL``, etc.)
        2. ``.env`` file
        3. Defaults below
    """

    model_config = SettingsConfigDict(
        env_prefix="MEDALLION_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # ── Schedule ─────────────────────────────────────────────────
    schedule_interval: float = Field(default=60.0, description="Seconds between scheduled runs (wall clock)")
    scheduler_enabled: bool = Field(default=True, description="Start the interval trigger with the API")

    # ── Fetch step ───────────────────────────────────────────────
    fetch_timeout: float = Field(default=30.0, description="Per-attempt timeout for the producer")
    fetch_retries: int = Field(default=3, description="Maximum fetch attempts per run")
    fetch_retry_interval: float = Field(default=5.0, description="Base delay between fetch attempts")
    fetch_backoff: BackoffKind = Field(default=BackoffKind.FIXED)
    fetch_concurrency: int = Field(default=4, description="Parallel per-entity fetches inside one attempt")

    # ── Settle delay ─────────────────────────────────────────────
    settle_delay_range: tuple[float, float] = Field(
        default=(20.0, 30.0),
        description="Uniform random pause (min, max) between fetch and materialize",
    )

    # ── Materialize step ─────────────────────────────────────────
    materialize_timeout: float = Field(default=60.0, description="Per-attempt timeout for silver+gold")
    materialize_retries: int = Field(default=3, description="Maximum materialize attempts per run")
    materialize_retry_interval: float = Field(default=5.0, description="Base delay between materialize attempts")
    materialize_backoff: BackoffKind = Field(default=BackoffKind.FIXED)

    # ── Producer ─────────────────────────────────────────────────
    source: str = Field(
        default=DEFAULT_SOURCE,
        description="Import path 'module:callable' of the data source",
    )
    entities: list[str] = Field(
        default_factory=list,
        description="When set, the source is called once per entity (fetch_concurrency at a time)",
    )

    # ── Storage ──────────────────────────────────────────────────
    storage_backend: StorageBackend = Field(default=StorageBackend.MEMORY)
    database_path: str = Field(default="data/medallion.db")

    # ── API ──────────────────────────────────────────────────────
    host: str = Field(default="0.0.0.0")
    port: int = Field(default=8000)
    api_prefix: str = Field(default="", description="URL prefix for all endpoints")
    api_title: str = Field(default="medallion API")
    api_version: str = Field(default="0.1.0")
    debug: bool = Field(default=False)

    # ── Logging ──────────────────────────────────────────────────
    log_level: str = Field(default="INFO")
    log_format: str = Field(default="json", description="'json' or 'console'")

    @field_validator("schedule_interval", "fetch_timeout", "materialize_timeout")
    @classmethod
    def _positive(cls, value: float) -> float:
        if value <= 0:
            raise ValueError("must be greater than 0")
        return value

    @field_validator("fetch_retry_interval", "materialize_retry_interval")
    @classmethod
    def _non_negative(cls, value: float) -> float:
        if value < 0:
            raise ValueError("must not be negative")
        return value

    @field_validator("fetch_retries", "materialize_retries", "fetch_concurrency")
    @classmethod
    def _at_least_one(cls, value: int) -> int:
        if value < 1:
            raise ValueError("must be at least 1")
        return value

    @field_validator("log_format")
    @classmethod
    def _known_format(cls, value: str) -> str:
        if value not in ("json", "console"):
            raise ValueError("must be 'json' or 'console'")
        return value

    @model_validator(mode="after")
    def _check_settle_range(self) -> MedallionSettings:
        low, high = self.settle_delay_range
        if low < 0 or high < 0:
            raise ValueError("settle_delay_range bounds must not be negative")
        if low > high:
            raise ValueError("settle_delay_range min must not exceed max")
        return self

    @property
    def source_ref(self) -> str:
        """Import path of the source to call.

        With ``entities`` set, the default batch sample is swapped for its
        per-entity variant; an explicit ``source`` is used as given.
        """
        if self.entities and self.source == DEFAULT_SOURCE:
            return DEFAULT_ENTITY_SOURCE
        return self.source


def load_settings(**overrides: Any) -> MedallionSettings:
    """Build and validate settings, raising :class:`ConfigError` on bad values."""
    try:
        return MedallionSettings(**overrides)
    except ValidationError as exc:
        errors = [
            {"field": ".".join(str(p) for p in err["loc"]), "message": err["msg"]}
            for err in exc.errors()
        ]
        summary = "; ".join(f"{e['field'] or 'settings'}: {e['message']}" for e in errors)
        raise ConfigError(f"Invalid configuration: {summary}", errors=errors, cause=exc) from exc


@lru_cache(maxsize=1)
def get_settings() -> MedallionSettings:
    """Cached settings, loaded once per process."""
    return load_settings()
