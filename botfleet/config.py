"""Application configuration for the botfleet lifecycle engine."""

from functools import lru_cache
from typing import Literal, Optional

from pydantic import Field, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Environment-backed settings."""

    app_env: Literal["dev", "stage", "prod"] = Field(
        default="dev", alias="APP_ENV", description="Deployment environment."
    )
    log_level: str = Field(default="info", alias="LOG_LEVEL")

    heartbeat_stale_ms: int = Field(
        default=120_000,
        alias="BOTFLEET_HEARTBEAT_STALE_MS",
        ge=1,
        description="Heartbeat age after which a running runner is considered stalled.",
    )
    heartbeat_warning_ms: int = Field(
        default=60_000,
        alias="BOTFLEET_HEARTBEAT_WARNING_MS",
        ge=1,
        description="Heartbeat age after which a running runner raises a warning.",
    )
    health_degraded_threshold: float = Field(
        default=40, alias="BOTFLEET_HEALTH_DEGRADED_THRESHOLD", ge=0, le=100
    )
    health_warn_threshold: float = Field(
        default=60, alias="BOTFLEET_HEALTH_WARN_THRESHOLD", ge=0, le=100
    )
    restart_backoff_base_ms: int = Field(
        default=30_000, alias="BOTFLEET_RESTART_BACKOFF_BASE_MS", ge=1
    )
    restart_backoff_max_ms: int = Field(
        default=900_000, alias="BOTFLEET_RESTART_BACKOFF_MAX_MS", ge=1
    )
    restart_backoff_jitter: float = Field(
        default=0.2,
        alias="BOTFLEET_RESTART_BACKOFF_JITTER",
        ge=0,
        lt=1,
        description="Symmetric jitter fraction applied to restart delays.",
    )
    promotion_rules_path: Optional[str] = Field(
        default=None,
        alias="BOTFLEET_PROMOTION_RULES_PATH",
        description="Optional JSON/YAML promotion rules file used by the operator scripts.",
    )
    stage_thresholds_path: Optional[str] = Field(
        default=None,
        alias="BOTFLEET_STAGE_THRESHOLDS_PATH",
        description="Optional JSON/YAML graduation threshold table used by the operator scripts.",
    )

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    @model_validator(mode="after")
    def _validate_threshold_ordering(self) -> "Settings":
        if self.heartbeat_warning_ms >= self.heartbeat_stale_ms:
            raise ValueError("BOTFLEET_HEARTBEAT_WARNING_MS must be below BOTFLEET_HEARTBEAT_STALE_MS")
        if self.health_degraded_threshold > self.health_warn_threshold:
            raise ValueError(
                "BOTFLEET_HEALTH_DEGRADED_THRESHOLD must not exceed BOTFLEET_HEALTH_WARN_THRESHOLD"
            )
        if self.restart_backoff_base_ms > self.restart_backoff_max_ms:
            raise ValueError("BOTFLEET_RESTART_BACKOFF_BASE_MS must not exceed BOTFLEET_RESTART_BACKOFF_MAX_MS")
        return self


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Return a cached Settings instance so values are loaded once."""

    return Settings()  # type: ignore[call-arg]
