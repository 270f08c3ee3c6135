import logging
from functools import lru_cache

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8", extra="ignore")

    host: str = Field(default="0.0.0.0", alias="HOST")
    port: int = Field(default=3000, alias="PORT")
    log_level: str = Field(default="INFO", alias="LOG_LEVEL")

    loki_url: str | None = Field(default=None, alias="LOKI_URL")
    loki_labels: dict[str, str] = Field(
        default_factory=lambda: {"job": "monitoring-app", "service": "monitoring-app"},
        alias="LOKI_LABELS",
    )
    loki_timeout_seconds: float = Field(default=2.0, alias="LOKI_TIMEOUT_SECONDS")
    loki_batch_size: int = Field(default=100, alias="LOKI_BATCH_SIZE")
    loki_queue_size: int = Field(default=10_000, alias="LOKI_QUEUE_SIZE")

    background_tasks_enabled: bool = Field(default=True, alias="BACKGROUND_TASKS_ENABLED")
    background_task_interval_seconds: float = Field(default=30.0, alias="BACKGROUND_TASK_INTERVAL_SECONDS")
    background_task_failure_rate: float = Field(default=0.2, ge=0.0, le=1.0, alias="BACKGROUND_TASK_FAILURE_RATE")
    simulated_error_rate: float = Field(default=0.5, ge=0.0, le=1.0, alias="SIMULATED_ERROR_RATE")
    chaos_seed: int | None = Field(default=None, alias="CHAOS_SEED")

    # Process gauges (uptime, resident memory) are read at scrape time, so two
    # /metrics responses differ while this is on. Turn it off for stable output.
    process_metrics_enabled: bool = Field(default=True, alias="PROCESS_METRICS_ENABLED")

    @property
    def log_level_number(self) -> int:
        level = logging.getLevelName(self.log_level.upper())
        return level if isinstance(level, int) else logging.INFO


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    return Settings()
