from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from enum import Enum


class SensorKind(str, Enum):
    TEMPERATURE = "temperature"
    HUMIDITY = "humidity"
    PRESSURE = "pressure"


SENSOR_UNITS: dict[SensorKind, str] = {
    SensorKind.TEMPERATURE: "°C",
    SensorKind.HUMIDITY: "%",
    SensorKind.PRESSURE: "hPa",
}


def default_channels() -> dict[SensorKind, str]:
    return {kind: f"sensors/{kind.value}" for kind in SensorKind}


@dataclass(frozen=True)
class Reading:
    sensor_kind: SensorKind
    value: float
    timestamp: datetime
    source_channel: str

    @property
    def unit(self) -> str:
        return SENSOR_UNITS[self.sensor_kind]


@dataclass(frozen=True)
class WindowStats:
    sensor_kind: SensorKind
    start: datetime
    stop: datetime
    count: int
    min: float | None
    max: float | None
    avg: float | None

    @property
    def is_empty(self) -> bool:
        return self.count == 0
