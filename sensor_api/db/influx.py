from __future__ import annotations

from influxdb_client import InfluxDBClient

from sensor_api.core.config import Settings


def create_influx_client(settings: Settings) -> InfluxDBClient:
    # Readings are tiny; gzip only pays off for history queries.
    return InfluxDBClient(
        url=str(settings.influx_url),
        token=settings.influx_token,
        org=settings.influx_org,
        timeout=settings.influx_timeout_ms,
        enable_gzip=True,
    )
