from __future__ import annotations

from typing import Literal

from pydantic import AnyHttpUrl, Field, field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from sensor_api.models.reading import SensorKind, default_channels


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_file=".env",
        env_prefix="APP_",
        case_sensitive=False,
    )

    env: str = Field(default="development")
    debug: bool = Field(default=False)
    docs_enabled: bool = Field(default=True)
    log_level: str = Field(default="INFO")

    cors_origins: list[str] = Field(default_factory=list)
    trusted_hosts: list[str] = Field(default_factory=lambda: ["localhost", "127.0.0.1"])

    storage_backend: Literal["influx", "memory"] = Field(default="influx")

    influx_url: AnyHttpUrl = Field(default="http://influxdb:8086")
    influx_token: str | None = Field(default=None, min_length=10)
    influx_org: str | None = Field(default=None, min_length=1)
    influx_bucket: str | None = Field(default=None, min_length=1)
    influx_timeout_ms: int = Field(default=10_000, ge=1000, le=120_000)
    reading_measurement: str = Field(default="sensor_readings", min_length=1, max_length=64)

    mqtt_enabled: bool = Field(default=True)
    mqtt_host: str = Field(default="test.mosquitto.org", min_length=1)
    mqtt_port: int = Field(default=1883, ge=1, le=65535)
    mqtt_username: str | None = None
    mqtt_password: str | None = None
    mqtt_client_id: str = Field(default="sensor-api", min_length=1, max_length=64)
    mqtt_keepalive: int = Field(default=60, ge=5, le=3600)
    mqtt_qos: int = Field(default=0, ge=0, le=2)
    mqtt_reconnect_min_delay: int = Field(default=1, ge=1, le=60)
    mqtt_reconnect_max_delay: int = Field(default=120, ge=1, le=3600)
    mqtt_channels: dict[SensorKind, str] = Field(default_factory=default_channels)

    ingest_queue_size: int = Field(default=1000, ge=1, le=1_000_000)

    @field_validator("log_level")
    @classmethod
    def _normalize_log_level(cls, v: str) -> str:
        level = v.upper()
        if level not in {"CRITICAL", "ERROR", "WARNING", "INFO", "DEBUG"}:
            raise ValueError(f"Unknown log level '{v}'.")
        return level

    @field_validator("mqtt_channels")
    @classmethod
    def _validate_channels(cls, v: dict[SensorKind, str]) -> dict[SensorKind, str]:
        missing = [kind.value for kind in SensorKind if not v.get(kind)]
        if missing:
            raise ValueError(f"Missing MQTT channel for: {', '.join(missing)}.")
        if len(set(v.values())) != len(v):
            raise ValueError("Each sensor kind needs its own MQTT channel.")
        return v

    @model_validator(mode="after")
    def _require_influx_credentials(self) -> "Settings":
        if self.storage_backend == "influx":
            missing = [
                name
                for name in ("influx_token", "influx_org", "influx_bucket")
                if getattr(self, name) is None
            ]
            if missing:
                raise ValueError(
                    f"InfluxDB storage requires: {', '.join(missing)}."
                )
        if self.mqtt_reconnect_min_delay > self.mqtt_reconnect_max_delay:
            raise ValueError("'mqtt_reconnect_min_delay' must be <= 'mqtt_reconnect_max_delay'")
        return self

    @property
    def is_production(self) -> bool:
        return self.env.lower() == "production"

    @property
    def channel_kinds(self) -> dict[str, SensorKind]:
        return {topic: kind for kind, topic in self.mqtt_channels.items()}


def load_settings() -> Settings:
    settings = Settings()
    if not settings.cors_origins:
        settings.cors_origins = ["http://localhost:3000", "http://localhost:8000"]
    return settings
