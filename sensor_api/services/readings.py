from __future__ import annotations

import logging
from collections.abc import Callable
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import TypeVar

from sensor_api.models.reading import Reading, SensorKind, WindowStats
from sensor_api.repositories.base import ReadingRepository, StorageError
from sensor_api.services.aggregator import ReadingAggregator

logger = logging.getLogger(__name__)

T = TypeVar("T")


@dataclass(frozen=True)
class HistoryResult:
    readings: dict[SensorKind, list[Reading] | None]
    errors: dict[SensorKind, str] = field(default_factory=dict)


class ReadingQueryService:
    def __init__(
        self, repo: ReadingRepository, aggregator: ReadingAggregator | None = None
    ) -> None:
        self._repo = repo
        self._aggregator = aggregator or ReadingAggregator(repo)

    def latest(self) -> dict[SensorKind, Reading | None]:
        results = self._per_kind(self._repo.most_recent)
        # A failure on any kind fails the whole call; None only means no data.
        return {kind: outcome() for kind, outcome in results.items()}

    def history(
        self, kind: SensorKind, *, hours: float = 1.0, limit: int | None = 100
    ) -> list[Reading]:
        start, stop = _window(hours)
        return self._repo.range(kind, start=start, stop=stop, limit=limit)

    def history_all(self, *, hours: float = 1.0, limit: int | None = None) -> HistoryResult:
        start, stop = _window(hours)
        results = self._per_kind(
            lambda kind: self._repo.range(kind, start=start, stop=stop, limit=limit)
        )

        readings: dict[SensorKind, list[Reading] | None] = {}
        errors: dict[SensorKind, str] = {}
        for kind, outcome in results.items():
            try:
                readings[kind] = outcome()
            except StorageError as e:
                logger.error("History query failed: %s", e, extra={"sensor_kind": kind.value})
                readings[kind] = None
                errors[kind] = "Storage unavailable"
        return HistoryResult(readings=readings, errors=errors)

    def stats(self, kind: SensorKind, *, hours: float = 24.0) -> WindowStats:
        return self._aggregator.stats(kind, hours=hours)

    @staticmethod
    def _per_kind(fn: Callable[[SensorKind], T]) -> dict[SensorKind, Callable[[], T]]:
        """Run ``fn`` for every kind concurrently; each outcome re-raises on access."""
        kinds = list(SensorKind)
        with ThreadPoolExecutor(max_workers=len(kinds), thread_name_prefix="query") as pool:
            futures = {kind: pool.submit(fn, kind) for kind in kinds}
        return {kind: future.result for kind, future in futures.items()}


def _window(hours: float) -> tuple[datetime, datetime]:
    stop = datetime.now(tz=timezone.utc)
    return stop - timedelta(hours=hours), stop
