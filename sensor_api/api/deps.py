from __future__ import annotations

from typing import Annotated

from fastapi import Depends, Request

from sensor_api.core.config import Settings
from sensor_api.ingest.listener import MqttReadingListener
from sensor_api.repositories.base import ReadingRepository
from sensor_api.services.aggregator import ReadingAggregator
from sensor_api.services.readings import ReadingQueryService


def get_settings(request: Request) -> Settings:
    return request.app.state.settings


def get_reading_repository(request: Request) -> ReadingRepository:
    return request.app.state.reading_repository


def get_listener(request: Request) -> MqttReadingListener | None:
    listener = getattr(request.app.state, "listener", None)
    if not isinstance(listener, MqttReadingListener):
        return None
    return listener


def get_query_service(
    repo: Annotated[ReadingRepository, Depends(get_reading_repository)],
) -> ReadingQueryService:
    return ReadingQueryService(repo, ReadingAggregator(repo))
