from __future__ import annotations

from datetime import datetime, timezone

import pytest
from fastapi.testclient import TestClient

from sensor_api.core.config import Settings
from sensor_api.factory import create_app
from tests.fakes import RecordingRepository


@pytest.fixture()
def settings() -> Settings:
    return Settings(
        _env_file=None,
        env="test",
        debug=True,
        docs_enabled=False,
        log_level="DEBUG",
        cors_origins=["http://localhost"],
        trusted_hosts=["testserver", "localhost"],
        storage_backend="memory",
        mqtt_enabled=False,
    )


@pytest.fixture()
def repo() -> RecordingRepository:
    return RecordingRepository()


@pytest.fixture()
def client(settings: Settings, repo: RecordingRepository) -> TestClient:
    app = create_app(settings, repository=repo)
    with TestClient(app) as client:
        yield client


@pytest.fixture()
def now() -> datetime:
    return datetime.now(tz=timezone.utc)
