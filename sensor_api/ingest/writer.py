from __future__ import annotations

import logging
import queue
import threading
from datetime import datetime, timedelta, timezone

from sensor_api.models.reading import Reading
from sensor_api.repositories.base import ReadingRepository, StorageError

logger = logging.getLogger(__name__)

DEFAULT_QUEUE_SIZE = 1000

_ONE_MICROSECOND = timedelta(microseconds=1)


class IngestClock:
    """Wall clock that never repeats or goes backwards.

    Two readings of one kind stamped with the same instant would collapse into
    a single InfluxDB point, so ties are broken by one microsecond.
    """

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._last: datetime | None = None

    def now(self) -> datetime:
        current = datetime.now(tz=timezone.utc)
        with self._lock:
            if self._last is not None and current <= self._last:
                current = self._last + _ONE_MICROSECOND
            self._last = current
            return current


class IngestStats:
    _FIELDS = (
        "received",
        "stored",
        "dropped_unparsable",
        "dropped_unmapped",
        "dropped_backpressure",
        "failed",
    )

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._counts = dict.fromkeys(self._FIELDS, 0)

    def incr(self, name: str) -> None:
        if name not in self._counts:
            raise KeyError(name)
        with self._lock:
            self._counts[name] += 1

    def snapshot(self) -> dict[str, int]:
        with self._lock:
            return dict(self._counts)


class ReadingWriter:
    """Single insertion path between the MQTT callback and the store.

    ``submit`` never blocks the caller: readings go into a bounded queue and
    one worker thread inserts them in order. A full queue or a failing store
    loses the reading; both are logged and counted.
    """

    def __init__(
        self,
        repo: ReadingRepository,
        *,
        max_queue_size: int = DEFAULT_QUEUE_SIZE,
        stats: IngestStats | None = None,
    ) -> None:
        self._repo = repo
        self._queue: queue.Queue[Reading] = queue.Queue(maxsize=max_queue_size)
        self._stop_event = threading.Event()
        self._thread: threading.Thread | None = None
        self.stats = stats or IngestStats()

    @property
    def queue_depth(self) -> int:
        return self._queue.qsize()

    @property
    def running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    def start(self) -> None:
        if self.running:
            return
        self._stop_event.clear()
        self._thread = threading.Thread(
            target=self._worker_loop, name="reading-writer", daemon=True
        )
        self._thread.start()
        logger.info("Reading writer started", extra={"queue_depth": self.queue_depth})

    def stop(self, *, drain: bool = True, timeout: float = 5.0) -> None:
        if drain and self.running:
            self._queue.join()
        self._stop_event.set()
        if self._thread is not None:
            self._thread.join(timeout=timeout)
        self._thread = None
        logger.info("Reading writer stopped: %s", self.stats.snapshot())

    def join(self) -> None:
        """Block until every queued reading has been handled."""
        self._queue.join()

    def submit(self, reading: Reading) -> bool:
        try:
            self._queue.put_nowait(reading)
        except queue.Full:
            self.stats.incr("dropped_backpressure")
            logger.warning(
                "Ingest queue full, reading dropped",
                extra={
                    "sensor_kind": reading.sensor_kind.value,
                    "value": reading.value,
                    "queue_depth": self.queue_depth,
                },
            )
            return False
        return True

    def _worker_loop(self) -> None:
        while not self._stop_event.is_set():
            try:
                reading = self._queue.get(timeout=0.5)
            except queue.Empty:
                continue
            try:
                self._write(reading)
            finally:
                self._queue.task_done()

    def _write(self, reading: Reading) -> None:
        try:
            self._repo.insert(reading)
        except StorageError:
            self.stats.incr("failed")
            logger.exception(
                "Storage unavailable, reading lost",
                extra={"sensor_kind": reading.sensor_kind.value, "value": reading.value},
            )
            return
        except Exception:
            self.stats.incr("failed")
            logger.exception(
                "Unexpected error while storing reading",
                extra={"sensor_kind": reading.sensor_kind.value, "value": reading.value},
            )
            return
        self.stats.incr("stored")
        logger.debug(
            "Stored reading",
            extra={"sensor_kind": reading.sensor_kind.value, "value": reading.value},
        )
