from __future__ import annotations

from datetime import datetime

import pytest
from fastapi.testclient import TestClient

from sensor_api.api import deps
from sensor_api.core.config import Settings
from sensor_api.factory import create_app
from sensor_api.repositories.base import StorageError
from tests.fakes import FailingRepository


def test_health_reports_time_and_disabled_listener(client: TestClient) -> None:
    resp = client.get("/api/health")
    assert resp.status_code == 200, resp.text
    body = resp.json()
    assert body["status"] == "ok"
    assert datetime.fromisoformat(body["timestamp"].replace("Z", "+00:00"))
    assert body["listener"] == {"enabled": False}


def test_health_does_not_touch_storage(client: TestClient) -> None:
    client.app.dependency_overrides[deps.get_reading_repository] = FailingRepository
    assert client.get("/api/health").status_code == 200


def test_ready(client: TestClient) -> None:
    assert client.get("/api/health/ready").json() == {"status": "ok"}

    client.app.dependency_overrides[deps.get_reading_repository] = FailingRepository
    resp = client.get("/api/health/ready")
    assert resp.status_code == 503
    assert resp.json() == {"detail": "Storage unavailable"}


def test_startup_refuses_without_storage(settings: Settings) -> None:
    app = create_app(settings, repository=FailingRepository())
    with pytest.raises(StorageError):
        with TestClient(app):
            pass


def test_memory_backend_is_built_from_settings(settings: Settings) -> None:
    app = create_app(settings)
    with TestClient(app) as client:
        assert client.get("/api/latest").json() == {
            "temperature": None,
            "humidity": None,
            "pressure": None,
        }
