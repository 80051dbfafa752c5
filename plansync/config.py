"""Application configuration management."""
from __future__ import annotations

from functools import lru_cache
from pathlib import Path

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from plansync.services.activity_matcher import MatcherConfig, MatchWeights


class Settings(BaseSettings):
    """Centralised application settings derived from environment variables."""

    database_url: str = Field(
        default="sqlite:///./data/training_plan_sync.db",
        description="SQLAlchemy-compatible database URL.",
    )
    app_host: str = Field(default="0.0.0.0")
    app_port: int = Field(default=8000, ge=1, le=65535)

    debug: bool = Field(default=False)

    log_level: str = Field(default="INFO")
    log_dir: Path = Field(default=Path("logs"))
    scheduler_interval_minutes: int = Field(default=15, ge=1, le=24 * 60)
    scheduler_lock_file: Path = Field(default=Path(".scheduler.lock"))

    # Matching engine tolerances
    match_date_tolerance_days: int = Field(default=1, ge=0)
    match_distance_tolerance_percent: float = Field(default=0.10, gt=0.0, lt=1.0)
    match_distance_cutoff_percent: float = Field(default=0.5, gt=0.0, le=1.0)
    match_min_confidence: float = Field(default=0.3, ge=0.0, le=1.0)
    match_weight_date: float = Field(default=0.4, ge=0.0, le=1.0)
    match_weight_distance: float = Field(default=0.4, ge=0.0, le=1.0)
    match_weight_activity_type: float = Field(default=0.1, ge=0.0, le=1.0)
    match_weight_description: float = Field(default=0.1, ge=0.0, le=1.0)

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    @field_validator("log_level")
    @classmethod
    def normalize_log_level(cls, value: str) -> str:
        valid = {"CRITICAL", "ERROR", "WARNING", "INFO", "DEBUG"}
        upper = value.upper()
        if upper not in valid:
            raise ValueError(f"LOG_LEVEL must be one of {', '.join(sorted(valid))}")
        return upper

    def matcher_config(self) -> MatcherConfig:
        """Build the matching engine configuration from the MATCH_* settings."""

        return MatcherConfig(
            date_tolerance_days=self.match_date_tolerance_days,
            distance_tolerance_percent=self.match_distance_tolerance_percent,
            distance_cutoff_percent=self.match_distance_cutoff_percent,
            min_confidence_threshold=self.match_min_confidence,
            weights=MatchWeights(
                date=self.match_weight_date,
                distance=self.match_weight_distance,
                activity_type=self.match_weight_activity_type,
                description=self.match_weight_description,
            ),
        )


def _sqlite_path(database_url: str) -> Path | None:
    prefix = "sqlite:///"
    if not database_url.startswith(prefix):
        return None
    raw = database_url[len(prefix):]
    if not raw or raw == ":memory:":
        return None
    return Path(raw)


@lru_cache()
def get_settings() -> Settings:
    """Return cached settings instance so it can be reused across the app."""

    settings = Settings()
    settings.log_dir.mkdir(parents=True, exist_ok=True)
    sqlite_path = _sqlite_path(settings.database_url)
    if sqlite_path is not None:
        sqlite_path.parent.mkdir(parents=True, exist_ok=True)
    return settings
