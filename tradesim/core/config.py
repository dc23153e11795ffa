"""Application configuration via Pydantic Settings (12-Factor App compliance).

Centralized environment-driven configuration for:
- Warm-up data tolerance
- Event sink and batch worker pools
- Telemetry endpoints (OpenTelemetry)

All settings can be overridden via environment variables or .env file.
Per-run parameters (window, fees, policies) live in `tradesim.core.models`.
Decimal precision and equity scale are read once by `tradesim.core.constants`.
"""

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

LOG_LEVELS = ("CRITICAL", "ERROR", "WARNING", "INFO", "DEBUG")


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_file=".env", env_file_encoding="utf-8", case_sensitive=True, extra="ignore"
    )

    # --- App Info ---
    PROJECT_NAME: str = "tradesim"
    VERSION: str = "0.4.0"
    LOG_LEVEL: str = "INFO"

    # --- Data ---
    DATA_DIR: str = "data/prices"
    WARM_UP_GAP_TOLERANCE_DAYS: int = Field(default=5, ge=0)

    # --- Workers ---
    SINK_MAX_WORKERS: int = Field(default=4, ge=1)
    SINK_SHUTDOWN_TIMEOUT_S: float = Field(default=30.0, gt=0)
    BATCH_MAX_WORKERS: int = Field(default=4, ge=1)

    # --- Telemetry ---
    OTEL_SERVICE_NAME: str = "tradesim"
    OTEL_EXPORTER_OTLP_ENDPOINT: str = ""

    @field_validator("LOG_LEVEL", mode="before")
    @classmethod
    def normalize_log_level(cls, v: str) -> str:
        level = str(v).upper()
        if level not in LOG_LEVELS:
            raise ValueError(f"Unknown log level: {v}")
        return level


settings = Settings()
