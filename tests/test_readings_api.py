from __future__ import annotations

from datetime import datetime, timedelta

import pytest
from fastapi.testclient import TestClient
from influxdb_client.client.flux_csv_parser import FluxQueryException

from sensor_api.api import deps
from sensor_api.api.routes.readings import MAX_HOURS
from sensor_api.models.reading import SensorKind
from sensor_api.repositories.influx import InfluxReadingRepository
from tests.fakes import (
    FailingRepository,
    PartiallyFailingRepository,
    RecordingRepository,
    StubInfluxClient,
    make_reading,
)


@pytest.fixture()
def seeded(repo: RecordingRepository, now: datetime) -> RecordingRepository:
    for minutes, value in ((50, 20.0), (40, 22.0), (30, 19.0)):
        repo.insert(make_reading(SensorKind.TEMPERATURE, value, now - timedelta(minutes=minutes)))
    repo.insert(make_reading(SensorKind.PRESSURE, 1013.2, now - timedelta(minutes=5)))
    repo.calls.clear()
    return repo


def test_latest_reports_null_for_kinds_without_data(client: TestClient, seeded) -> None:
    resp = client.get("/api/latest")
    assert resp.status_code == 200, resp.text
    body = resp.json()
    assert body["temperature"]["value"] == 19.0
    assert body["temperature"]["unit"] == "°C"
    assert body["temperature"]["source_channel"] == "sensors/temperature"
    assert body["pressure"]["value"] == 1013.2
    assert body["humidity"] is None


def test_history_is_ascending_and_capped_oldest_first(client: TestClient, seeded) -> None:
    resp = client.get("/api/history/temperature", params={"hours": 1})
    assert resp.status_code == 200, resp.text
    assert [r["value"] for r in resp.json()] == [20.0, 22.0, 19.0]

    capped = client.get("/api/history/temperature", params={"hours": 1, "limit": 2})
    assert [r["value"] for r in capped.json()] == [20.0, 22.0]


def test_history_window_excludes_older_readings(client: TestClient, seeded) -> None:
    resp = client.get("/api/history/temperature", params={"hours": 0.6})
    assert resp.status_code == 200, resp.text
    assert [r["value"] for r in resp.json()] == [19.0]


def test_history_all_kinds(client: TestClient, seeded) -> None:
    resp = client.get("/api/history", params={"hours": 2})
    assert resp.status_code == 200, resp.text
    body = resp.json()
    assert [r["value"] for r in body["temperature"]] == [20.0, 22.0, 19.0]
    assert body["humidity"] == []
    assert [r["value"] for r in body["pressure"]] == [1013.2]
    assert body["errors"] == {}


def test_history_all_partial_failure_keeps_other_kinds(
    client: TestClient, now: datetime
) -> None:
    repo = PartiallyFailingRepository(failing={SensorKind.HUMIDITY})
    repo.insert(make_reading(SensorKind.TEMPERATURE, 21.0, now - timedelta(minutes=1)))
    client.app.dependency_overrides[deps.get_reading_repository] = lambda: repo

    resp = client.get("/api/history")
    assert resp.status_code == 200, resp.text
    body = resp.json()
    assert body["humidity"] is None
    assert body["errors"] == {"humidity": "Storage unavailable"}
    assert [r["value"] for r in body["temperature"]] == [21.0]
    assert body["pressure"] == []


def test_stats(client: TestClient, seeded) -> None:
    resp = client.get("/api/stats/temperature")
    assert resp.status_code == 200, resp.text
    body = resp.json()
    assert body["count"] == 3
    assert body["min"] == 19.0
    assert body["max"] == 22.0
    assert body["avg"] == pytest.approx(61.0 / 3)


def test_stats_without_data_is_empty_object(client: TestClient, seeded) -> None:
    resp = client.get("/api/stats/humidity")
    assert resp.status_code == 200, resp.text
    assert resp.json() == {}


@pytest.mark.parametrize(
    "path",
    ["/api/history/wind", "/api/stats/wind"],
)
def test_unknown_kind_is_client_error(client: TestClient, repo, path: str) -> None:
    resp = client.get(path)
    assert resp.status_code == 422
    assert repo.calls == []


@pytest.mark.parametrize(
    "params",
    [{"hours": "abc"}, {"hours": 0}, {"hours": -1}, {"limit": "ten"}, {"limit": 0}],
)
def test_malformed_query_parameters(client: TestClient, repo, params) -> None:
    resp = client.get("/api/history/temperature", params=params)
    assert resp.status_code == 422
    assert repo.calls == []


@pytest.mark.parametrize(
    "path",
    ["/api/latest", "/api/history/pressure", "/api/stats/pressure"],
)
def test_storage_failure_is_server_error(client: TestClient, path: str) -> None:
    client.app.dependency_overrides[deps.get_reading_repository] = FailingRepository

    resp = client.get(path)
    assert resp.status_code == 503
    assert resp.json() == {"detail": "Storage unavailable"}


def test_security_headers(client: TestClient) -> None:
    resp = client.get("/api/latest")
    assert resp.headers["X-Content-Type-Options"] == "nosniff"
    assert resp.headers["X-Frame-Options"] == "DENY"


@pytest.fixture()
def flaky_influx(client: TestClient) -> StubInfluxClient:
    """Influx store whose humidity queries fail inside the Flux driver."""
    influx = StubInfluxClient()
    influx.query_stub.error = FluxQueryException(message="panic: shard closed", reference=0)
    influx.query_stub.fail_matching = '"humidity"'
    store = InfluxReadingRepository(
        client=influx, org="test", bucket="sensors", measurement="sensor_readings"
    )
    client.app.dependency_overrides[deps.get_reading_repository] = lambda: store
    return influx


def test_history_all_isolates_driver_failure_of_one_kind(
    client: TestClient, flaky_influx
) -> None:
    resp = client.get("/api/history")
    assert resp.status_code == 200, resp.text
    body = resp.json()
    assert body["humidity"] is None
    assert body["errors"] == {"humidity": "Storage unavailable"}
    assert body["temperature"] == []
    assert body["pressure"] == []


@pytest.mark.parametrize("path", ["/api/latest", "/api/stats/humidity", "/api/history/humidity"])
def test_driver_failure_is_service_unavailable(client: TestClient, flaky_influx, path: str) -> None:
    resp = client.get(path)
    assert resp.status_code == 503
    assert resp.json() == {"detail": "Storage unavailable"}


@pytest.mark.parametrize(
    ("hours", "status"),
    [(10_000, 200), (MAX_HOURS, 200), (MAX_HOURS + 1, 422)],
)
def test_long_lookback_windows(client: TestClient, seeded, hours: float, status: int) -> None:
    resp = client.get("/api/stats/temperature", params={"hours": hours})
    assert resp.status_code == status, resp.text
    if status == 200:
        assert resp.json()["count"] == 3

    resp = client.get("/api/history/temperature", params={"hours": hours})
    assert resp.status_code == status, resp.text
