"""Configuration management for the session monitor."""

from __future__ import annotations

from functools import lru_cache
from pathlib import Path

from pydantic import Field, field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from .sessions.inference import StatusThresholds


class MonitorSettings(BaseSettings):
    """Runtime configuration sourced from environment variables and optional .env file."""

    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8", extra="ignore")

    monitor_dir: Path = Field(
        default=Path("~/.claude/monitor"), validation_alias="CCMON_DIR"
    )
    claude_dir: Path = Field(default=Path("~/.claude"), validation_alias="CCMON_CLAUDE_DIR")

    work_grace: float = Field(default=3.0, validation_alias="CCMON_WORK_GRACE")
    liveness_grace: float = Field(default=5.0, validation_alias="CCMON_LIVENESS_GRACE")
    stream_proof: float = Field(default=2.0, validation_alias="CCMON_STREAM_PROOF")
    stream_stop: float = Field(default=6.0, validation_alias="CCMON_STREAM_STOP")
    think_stale: float = Field(default=12.0, validation_alias="CCMON_THINK_STALE")
    cleanup_after: float = Field(default=300.0, validation_alias="CCMON_CLEANUP_AFTER")

    refresh_interval: float = Field(default=1.0, validation_alias="CCMON_REFRESH_INTERVAL")
    liveness_interval: float = Field(default=5.0, validation_alias="CCMON_LIVENESS_INTERVAL")
    liveness_timeout: float = Field(default=2.0, validation_alias="CCMON_LIVENESS_TIMEOUT")
    agent_executable: str = Field(default="claude", validation_alias="CCMON_AGENT_EXECUTABLE")

    log_level: str = Field(default="INFO", validation_alias="CCMON_LOG_LEVEL")

    @field_validator("log_level")
    @classmethod
    def _normalize_log_level(cls, value: str) -> str:
        normalized = value.strip().upper()
        if normalized not in {"CRITICAL", "ERROR", "WARNING", "INFO", "DEBUG"}:
            raise ValueError(
                "CCMON_LOG_LEVEL must be one of CRITICAL, ERROR, WARNING, INFO, DEBUG"
            )
        return normalized

    @field_validator(
        "work_grace",
        "liveness_grace",
        "stream_proof",
        "stream_stop",
        "think_stale",
        "cleanup_after",
        "refresh_interval",
        "liveness_interval",
        "liveness_timeout",
    )
    @classmethod
    def _require_positive(cls, value: float) -> float:
        if value <= 0:
            raise ValueError("Monitor intervals and thresholds must be > 0 seconds")
        return value

    @field_validator("agent_executable")
    @classmethod
    def _normalize_executable(cls, value: str) -> str:
        normalized = value.strip()
        if not normalized:
            raise ValueError("CCMON_AGENT_EXECUTABLE must not be empty")
        return normalized

    @model_validator(mode="after")
    def _check_tiers(self) -> "MonitorSettings":
        if self.liveness_interval < self.refresh_interval:
            raise ValueError("CCMON_LIVENESS_INTERVAL must be >= CCMON_REFRESH_INTERVAL")
        return self

    def thresholds(self) -> StatusThresholds:
        """Return the inference thresholds as an immutable value."""

        return StatusThresholds(
            work_grace=self.work_grace,
            liveness_grace=self.liveness_grace,
            stream_proof=self.stream_proof,
            stream_stop=self.stream_stop,
            think_stale=self.think_stale,
            cleanup_after=self.cleanup_after,
        )


@lru_cache(maxsize=1)
def get_settings() -> MonitorSettings:
    """Return cached settings instance."""

    settings = MonitorSettings()
    settings.monitor_dir = settings.monitor_dir.expanduser().resolve()
    settings.claude_dir = settings.claude_dir.expanduser().resolve()
    return settings


__all__ = ["MonitorSettings", "get_settings"]
