from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Any

from influxdb_client import InfluxDBClient, Point, WritePrecision
from influxdb_client.client.exceptions import InfluxDBError
from influxdb_client.client.flux_csv_parser import FluxQueryException
from influxdb_client.client.write_api import SYNCHRONOUS
from influxdb_client.rest import ApiException
from urllib3.exceptions import HTTPError

from sensor_api.models.reading import Reading, SensorKind, WindowStats
from sensor_api.repositories.base import StorageError
from sensor_api.repositories.flux import flux_range, flux_str
from sensor_api.services.aggregator import empty_stats

logger = logging.getLogger(__name__)

_DRIVER_ERRORS = (ApiException, InfluxDBError, FluxQueryException, HTTPError, OSError)

VALUE_FIELD = "value"
CHANNEL_FIELD = "source_channel"
KIND_TAG = "sensor_kind"


class InfluxReadingRepository:
    """Readings stored as one InfluxDB series per sensor kind.

    Each series is indexed by (measurement, ``sensor_kind`` tag) and kept in
    time order by the storage engine, which is what makes ``most_recent``
    (``last()``) and ``range`` scans cheap. Two points of the same kind with the
    same timestamp would overwrite each other, so writers must hand in
    distinct timestamps (see ``sensor_api.ingest.writer.IngestClock``).
    """

    def __init__(
        self,
        *,
        client: InfluxDBClient,
        org: str,
        bucket: str,
        measurement: str,
    ) -> None:
        self._client = client
        self._org = org
        self._bucket = bucket
        self._measurement = measurement
        self._write_api = client.write_api(write_options=SYNCHRONOUS)
        self._query_api = client.query_api()

    def ping(self) -> None:
        try:
            ok = self._client.ping()
        except _DRIVER_ERRORS as e:
            raise StorageError("InfluxDB unreachable") from e
        if not ok:
            raise StorageError("InfluxDB unreachable")

    def insert(self, reading: Reading) -> None:
        ts = reading.timestamp
        if ts.tzinfo is None:
            ts = ts.replace(tzinfo=timezone.utc)

        point = (
            Point(self._measurement)
            .tag(KIND_TAG, reading.sensor_kind.value)
            .field(VALUE_FIELD, float(reading.value))
            .field(CHANNEL_FIELD, reading.source_channel)
            .time(ts, WritePrecision.NS)
        )
        try:
            self._write_api.write(bucket=self._bucket, org=self._org, record=point)
        except _DRIVER_ERRORS as e:
            raise StorageError("InfluxDB write failed") from e

    def most_recent(self, kind: SensorKind) -> Reading | None:
        query = f"""
{self._select(kind, flux_range(0))}
  |> last()
  |> pivot(rowKey: ["_time"], columnKey: ["_field"], valueColumn: "_value")
"""
        rows = self._readings(kind, query)
        if not rows:
            return None
        return max(rows, key=lambda r: r.timestamp)

    def range(
        self,
        kind: SensorKind,
        *,
        start: datetime,
        stop: datetime | None = None,
        limit: int | None = None,
    ) -> list[Reading]:
        query = f"""
{self._select(kind, flux_range(start, stop))}
  |> pivot(rowKey: ["_time"], columnKey: ["_field"], valueColumn: "_value")
  |> group()
  |> sort(columns: ["_time"])
"""
        if limit is not None:
            query += f"  |> limit(n: {int(limit)})\n"
        return self._readings(kind, query)

    def stats(
        self,
        kind: SensorKind,
        *,
        start: datetime,
        stop: datetime | None = None,
    ) -> WindowStats:
        resolved_stop = stop or datetime.now(tz=timezone.utc)
        query = f"""
from(bucket: {flux_str(self._bucket)})
  |> {flux_range(start, resolved_stop)}
  |> filter(fn: (r) => r["_measurement"] == {flux_str(self._measurement)})
  |> filter(fn: (r) => r["{KIND_TAG}"] == {flux_str(kind.value)})
  |> filter(fn: (r) => r["_field"] == "{VALUE_FIELD}")
  |> group()
  |> keep(columns: ["_value"])
  |> reduce(
    identity: {{count: 0, sum: 0.0, min: 0.0, max: 0.0}},
    fn: (r, accumulator) => ({{
      count: accumulator.count + 1,
      sum: accumulator.sum + float(v: r._value),
      min: if accumulator.count == 0 or float(v: r._value) < accumulator.min then float(v: r._value) else accumulator.min,
      max: if accumulator.count == 0 or float(v: r._value) > accumulator.max then float(v: r._value) else accumulator.max,
    }}),
  )
  |> map(fn: (r) => ({{ r with avg: if r.count == 0 then 0.0 else r.sum / float(v: r.count) }}))
"""
        tables = self._query(query)
        if not tables or not tables[0].records:
            return empty_stats(kind, start=start, stop=resolved_stop)

        values = tables[0].records[0].values
        count = int(values.get("count", 0))
        if count <= 0:
            return empty_stats(kind, start=start, stop=resolved_stop)

        lo = float(values.get("min"))
        hi = float(values.get("max"))
        return WindowStats(
            sensor_kind=kind,
            start=start,
            stop=resolved_stop,
            count=count,
            min=lo,
            max=hi,
            avg=min(max(float(values.get("avg")), lo), hi),
        )

    def _select(self, kind: SensorKind, range_clause: str) -> str:
        return f"""from(bucket: {flux_str(self._bucket)})
  |> {range_clause}
  |> filter(fn: (r) => r["_measurement"] == {flux_str(self._measurement)})
  |> filter(fn: (r) => r["{KIND_TAG}"] == {flux_str(kind.value)})
  |> filter(fn: (r) => r["_field"] == "{VALUE_FIELD}" or r["_field"] == "{CHANNEL_FIELD}")"""

    def _query(self, query: str) -> Any:
        try:
            return self._query_api.query(query=query, org=self._org)
        except _DRIVER_ERRORS as e:
            raise StorageError("InfluxDB query failed") from e

    def _readings(self, kind: SensorKind, query: str) -> list[Reading]:
        results: list[Reading] = []
        for table in self._query(query):
            for record in table.records:
                ts = record.get_time()
                value = record.values.get(VALUE_FIELD)
                if ts is None or value is None:
                    logger.debug("Skipping incomplete row", extra={"sensor_kind": kind.value})
                    continue
                channel = record.values.get(CHANNEL_FIELD)
                results.append(
                    Reading(
                        sensor_kind=kind,
                        value=float(value),
                        timestamp=ts,
                        source_channel=channel if isinstance(channel, str) else "",
                    )
                )
        return results
