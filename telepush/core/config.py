from __future__ import annotations

from pydantic import AnyHttpUrl, Field, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_file=".env",
        env_prefix="TELEPUSH_",
        case_sensitive=False,
    )

    env: str = Field(default="development")
    debug: bool = Field(default=False)
    docs_enabled: bool = Field(default=True)

    log_level: str = Field(default="INFO", pattern=r"(?i)^(debug|info|warning|error|critical)$")
    log_format: str = Field(default="%(asctime)s %(levelname)s %(name)s %(message)s")

    remote_write_url: AnyHttpUrl
    remote_write_username: str | None = Field(default=None, max_length=256)
    remote_write_password: str | None = Field(default=None, max_length=1024)
    remote_write_timeout_seconds: float = Field(default=30.0, ge=0.5, le=300.0)

    buffer_capacity: int = Field(default=1000, ge=1, le=10_000_000)
    batch_size: int = Field(default=1000, ge=1, le=1_000_000)
    push_interval_seconds: float = Field(default=15.0, ge=0.1, le=3600.0)
    push_enabled: bool = Field(default=True)
    start_at_even_second: bool = Field(default=True)
    max_push_attempts: int = Field(default=3, ge=1, le=10)
    backoff_base_seconds: float = Field(default=1.0, ge=0.0, le=60.0)
    shutdown_flush_timeout_seconds: float = Field(default=10.0, ge=0.0, le=120.0)

    health_stale_factor: float = Field(default=3.0, ge=1.0, le=100.0)

    ble_quantize_ms: int = Field(default=0, ge=0)
    thermostat_quantize_ms: int = Field(default=10_000, ge=0)
    metric_quantize_ms: int = Field(default=0, ge=0)
    quantize_rounding: str = Field(default="nearest", pattern=r"^(truncate|nearest)$")

    @model_validator(mode="after")
    def _credentials_pair(self) -> "Settings":
        if self.remote_write_password and not self.remote_write_username:
            raise ValueError("remote_write_password requires remote_write_username")
        return self

    @property
    def is_production(self) -> bool:
        return self.env.lower() == "production"


def load_settings() -> Settings:
    return Settings()
