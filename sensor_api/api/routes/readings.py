from __future__ import annotations

from typing import Annotated

from fastapi import APIRouter, Depends, HTTPException, Path, Query, status

from sensor_api.api.deps import get_query_service
from sensor_api.models.reading import SensorKind
from sensor_api.repositories.base import StorageError
from sensor_api.schemas.readings import (
    LatestReadings,
    ReadingHistoryAll,
    ReadingRead,
    ReadingStats,
)
from sensor_api.services.readings import ReadingQueryService

router = APIRouter()

# A thousand years back keeps now - hours well inside datetime range.
MAX_HOURS = 24 * 365 * 1000

Hours = Annotated[float, Query(gt=0, le=MAX_HOURS, description="Lookback window in hours")]
Kind = Annotated[SensorKind, Path(description="Sensor kind")]


def _storage_unavailable() -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
        detail="Storage unavailable",
    )


@router.get("/latest", response_model=LatestReadings)
def latest_readings(
    service: Annotated[ReadingQueryService, Depends(get_query_service)],
) -> LatestReadings:
    try:
        latest = service.latest()
    except StorageError as e:
        raise _storage_unavailable() from e
    return LatestReadings(
        **{
            kind.value: ReadingRead.from_record(r) if r is not None else None
            for kind, r in latest.items()
        }
    )


@router.get("/history", response_model=ReadingHistoryAll)
def history_all(
    service: Annotated[ReadingQueryService, Depends(get_query_service)],
    hours: Hours = 1.0,
    limit: Annotated[int | None, Query(ge=1, le=10_000)] = None,
) -> ReadingHistoryAll:
    result = service.history_all(hours=hours, limit=limit)
    return ReadingHistoryAll(
        errors={kind.value: message for kind, message in result.errors.items()},
        **{
            kind.value: [ReadingRead.from_record(r) for r in rows] if rows is not None else None
            for kind, rows in result.readings.items()
        },
    )


@router.get("/history/{kind}", response_model=list[ReadingRead])
def history(
    kind: Kind,
    service: Annotated[ReadingQueryService, Depends(get_query_service)],
    hours: Hours = 1.0,
    limit: Annotated[int, Query(ge=1, le=10_000)] = 100,
) -> list[ReadingRead]:
    try:
        rows = service.history(kind, hours=hours, limit=limit)
    except StorageError as e:
        raise _storage_unavailable() from e
    return [ReadingRead.from_record(r) for r in rows]


@router.get(
    "/stats/{kind}",
    response_model=ReadingStats,
    response_model_exclude_none=True,
)
def stats(
    kind: Kind,
    service: Annotated[ReadingQueryService, Depends(get_query_service)],
    hours: Hours = 24.0,
) -> ReadingStats:
    try:
        window = service.stats(kind, hours=hours)
    except StorageError as e:
        raise _storage_unavailable() from e
    return ReadingStats.from_record(window)
