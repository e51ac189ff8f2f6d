from __future__ import annotations

import threading
from bisect import bisect_left, bisect_right
from datetime import datetime, timezone

from sensor_api.models.reading import Reading, SensorKind, WindowStats
from sensor_api.services.aggregator import summarize


def _utc(dt: datetime) -> datetime:
    if dt.tzinfo is None:
        return dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc)


class _KindIndex:
    """Readings of one kind, ordered by timestamp then insertion."""

    def __init__(self) -> None:
        self.keys: list[datetime] = []
        self.rows: list[Reading] = []

    def add(self, reading: Reading) -> None:
        ts = _utc(reading.timestamp)
        # Readings arrive in clock order, so this is almost always an append.
        if not self.keys or ts >= self.keys[-1]:
            self.keys.append(ts)
            self.rows.append(reading)
            return
        idx = bisect_right(self.keys, ts)
        self.keys.insert(idx, ts)
        self.rows.insert(idx, reading)

    def window(self, start: datetime, stop: datetime | None) -> slice:
        lo = bisect_left(self.keys, _utc(start))
        hi = len(self.keys) if stop is None else bisect_left(self.keys, _utc(stop))
        return slice(lo, max(lo, hi))


class MemoryReadingRepository:
    """Volatile, per-kind sorted index of readings.

    Meant for development and tests; it keeps everything in process memory and
    loses it on restart. Comfortable up to roughly 10^5 readings per kind;
    beyond that use the InfluxDB backend.
    """

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._by_kind: dict[SensorKind, _KindIndex] = {kind: _KindIndex() for kind in SensorKind}

    def ping(self) -> None:
        return None

    def insert(self, reading: Reading) -> None:
        with self._lock:
            self._by_kind[reading.sensor_kind].add(reading)

    def most_recent(self, kind: SensorKind) -> Reading | None:
        with self._lock:
            rows = self._by_kind[kind].rows
            return rows[-1] if rows else None

    def range(
        self,
        kind: SensorKind,
        *,
        start: datetime,
        stop: datetime | None = None,
        limit: int | None = None,
    ) -> list[Reading]:
        with self._lock:
            index = self._by_kind[kind]
            rows = index.rows[index.window(start, stop)]
        if limit is not None:
            rows = rows[: max(int(limit), 0)]
        return rows

    def stats(
        self,
        kind: SensorKind,
        *,
        start: datetime,
        stop: datetime | None = None,
    ) -> WindowStats:
        resolved_stop = stop or datetime.now(tz=timezone.utc)
        rows = self.range(kind, start=start, stop=resolved_stop)
        return summarize(
            kind, start=start, stop=resolved_stop, values=(r.value for r in rows)
        )

    def count(self, kind: SensorKind | None = None) -> int:
        with self._lock:
            if kind is not None:
                return len(self._by_kind[kind].rows)
            return sum(len(index.rows) for index in self._by_kind.values())
