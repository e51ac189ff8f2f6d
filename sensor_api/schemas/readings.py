from __future__ import annotations

from datetime import datetime
from typing import Any, Optional

from pydantic import BaseModel, Field, create_model

from sensor_api.models.reading import Reading, SensorKind, WindowStats


class ReadingRead(BaseModel):
    sensor_kind: SensorKind
    value: float
    unit: str
    timestamp: datetime
    source_channel: str

    @classmethod
    def from_record(cls, reading: Reading) -> "ReadingRead":
        return cls(
            sensor_kind=reading.sensor_kind,
            value=reading.value,
            unit=reading.unit,
            timestamp=reading.timestamp,
            source_channel=reading.source_channel,
        )


# One field per sensor kind, so adding a kind to the enum extends the API.
LatestReadings = create_model(
    "LatestReadings",
    **{kind.value: (Optional[ReadingRead], None) for kind in SensorKind},
)

ReadingHistoryAll = create_model(
    "ReadingHistoryAll",
    errors=(dict[str, str], Field(default_factory=dict)),
    **{kind.value: (Optional[list[ReadingRead]], None) for kind in SensorKind},
)


class ReadingStats(BaseModel):
    count: int | None = Field(default=None, ge=0)
    avg: float | None = None
    min: float | None = None
    max: float | None = None

    @classmethod
    def from_record(cls, stats: WindowStats) -> "ReadingStats":
        if stats.is_empty:
            return cls()
        return cls(count=stats.count, avg=stats.avg, min=stats.min, max=stats.max)


class Health(BaseModel):
    status: str
    timestamp: datetime
    listener: dict[str, Any] = Field(default_factory=dict)
