from __future__ import annotations

from collections.abc import Iterable
from datetime import datetime, timedelta, timezone

from sensor_api.models.reading import SensorKind, WindowStats
from sensor_api.repositories.base import ReadingRepository


def empty_stats(kind: SensorKind, *, start: datetime, stop: datetime) -> WindowStats:
    return WindowStats(
        sensor_kind=kind,
        start=start,
        stop=stop,
        count=0,
        min=None,
        max=None,
        avg=None,
    )


def summarize(
    kind: SensorKind, *, start: datetime, stop: datetime, values: Iterable[float]
) -> WindowStats:
    """Single pass count/min/max/mean over ``values``.

    The mean is clamped into ``[min, max]`` so float rounding can never make
    ``avg`` fall outside the observed range.
    """
    count = 0
    total = 0.0
    lo = hi = 0.0
    for raw in values:
        value = float(raw)
        if count == 0:
            lo = hi = value
        else:
            lo = min(lo, value)
            hi = max(hi, value)
        total += value
        count += 1

    if count == 0:
        return empty_stats(kind, start=start, stop=stop)

    return WindowStats(
        sensor_kind=kind,
        start=start,
        stop=stop,
        count=count,
        min=lo,
        max=hi,
        avg=min(max(total / count, lo), hi),
    )


class ReadingAggregator:
    def __init__(self, repo: ReadingRepository) -> None:
        self._repo = repo

    def stats(self, kind: SensorKind, *, hours: float) -> WindowStats:
        stop = datetime.now(tz=timezone.utc)
        start = stop - timedelta(hours=hours)
        return self.window_stats(kind, start=start, stop=stop)

    def window_stats(
        self, kind: SensorKind, *, start: datetime, stop: datetime
    ) -> WindowStats:
        stats = self._repo.stats(kind, start=start, stop=stop)
        if stats.count <= 0:
            return empty_stats(kind, start=start, stop=stop)
        return stats
