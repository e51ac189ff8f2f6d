from __future__ import annotations

from datetime import datetime, timezone
from typing import Annotated

from fastapi import APIRouter, Depends, HTTPException, status

from sensor_api.api.deps import get_listener, get_reading_repository
from sensor_api.ingest.listener import MqttReadingListener
from sensor_api.repositories.base import ReadingRepository, StorageError
from sensor_api.schemas.readings import Health

router = APIRouter(prefix="/health", tags=["meta"])


@router.get("", response_model=Health)
def health(
    listener: Annotated[MqttReadingListener | None, Depends(get_listener)],
) -> Health:
    return Health(
        status="ok",
        timestamp=datetime.now(tz=timezone.utc),
        listener=listener.status() if listener is not None else {"enabled": False},
    )


@router.get("/ready")
def ready(
    repo: Annotated[ReadingRepository, Depends(get_reading_repository)],
) -> dict[str, str]:
    try:
        repo.ping()
    except StorageError as e:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Storage unavailable",
        ) from e
    return {"status": "ok"}
