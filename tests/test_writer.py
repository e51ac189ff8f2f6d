from __future__ import annotations

import threading
from datetime import datetime, timezone

from sensor_api.ingest.writer import IngestClock, ReadingWriter
from sensor_api.models.reading import SensorKind
from sensor_api.repositories.memory import MemoryReadingRepository
from tests.fakes import FailingRepository, make_reading


def test_clock_is_strictly_increasing() -> None:
    clock = IngestClock()
    stamps = [clock.now() for _ in range(2000)]
    assert all(a < b for a, b in zip(stamps, stamps[1:]))
    assert all(s.tzinfo is not None for s in stamps)


def test_writer_stores_submitted_readings() -> None:
    repo = MemoryReadingRepository()
    writer = ReadingWriter(repo)
    writer.start()
    try:
        now = datetime.now(tz=timezone.utc)
        assert writer.submit(make_reading(SensorKind.HUMIDITY, 55.0, now))
        writer.join()
    finally:
        writer.stop()

    assert repo.most_recent(SensorKind.HUMIDITY).value == 55.0
    assert writer.stats.snapshot()["stored"] == 1


def test_full_queue_drops_without_blocking() -> None:
    writer = ReadingWriter(MemoryReadingRepository(), max_queue_size=1)
    now = datetime.now(tz=timezone.utc)

    assert writer.submit(make_reading(SensorKind.PRESSURE, 1000.0, now))
    assert not writer.submit(make_reading(SensorKind.PRESSURE, 1001.0, now))
    assert writer.stats.snapshot()["dropped_backpressure"] == 1


def test_storage_failure_loses_reading_but_keeps_worker_alive() -> None:
    writer = ReadingWriter(FailingRepository())
    writer.start()
    try:
        now = datetime.now(tz=timezone.utc)
        writer.submit(make_reading(SensorKind.TEMPERATURE, 20.0, now))
        writer.submit(make_reading(SensorKind.TEMPERATURE, 21.0, now))
        writer.join()
        assert writer.running
    finally:
        writer.stop()

    stats = writer.stats.snapshot()
    assert stats["failed"] == 2
    assert stats["stored"] == 0


def test_concurrent_inserts_for_distinct_kinds_are_all_visible() -> None:
    repo = MemoryReadingRepository()
    clock = IngestClock()
    barrier = threading.Barrier(2)

    def insert(kind: SensorKind, value: float) -> None:
        barrier.wait()
        for i in range(200):
            repo.insert(make_reading(kind, value + i, clock.now()))

    threads = [
        threading.Thread(target=insert, args=(SensorKind.TEMPERATURE, 0.0)),
        threading.Thread(target=insert, args=(SensorKind.HUMIDITY, 1000.0)),
    ]
    for t in threads:
        t.start()
    for t in threads:
        t.join()

    assert repo.count(SensorKind.TEMPERATURE) == 200
    assert repo.count(SensorKind.HUMIDITY) == 200
    assert repo.most_recent(SensorKind.TEMPERATURE).value == 199.0
    assert repo.most_recent(SensorKind.HUMIDITY).value == 1199.0
