from __future__ import annotations

from datetime import datetime
from typing import Protocol

from sensor_api.models.reading import Reading, SensorKind, WindowStats


class StorageError(RuntimeError):
    """The persistent store could not complete a call."""


class ReadingRepository(Protocol):
    def ping(self) -> None: ...

    def insert(self, reading: Reading) -> None: ...

    def most_recent(self, kind: SensorKind) -> Reading | None: ...

    def range(
        self,
        kind: SensorKind,
        *,
        start: datetime,
        stop: datetime | None = None,
        limit: int | None = None,
    ) -> list[Reading]: ...

    def stats(
        self,
        kind: SensorKind,
        *,
        start: datetime,
        stop: datetime | None = None,
    ) -> WindowStats: ...
