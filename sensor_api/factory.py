from __future__ import annotations

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from fastapi.middleware.gzip import GZipMiddleware
from starlette.middleware.trustedhost import TrustedHostMiddleware

from sensor_api.api.router import api_router
from sensor_api.core.config import Settings, load_settings
from sensor_api.core.logging import configure_logging
from sensor_api.db.influx import create_influx_client
from sensor_api.ingest.listener import MqttReadingListener
from sensor_api.ingest.writer import ReadingWriter
from sensor_api.repositories.base import ReadingRepository
from sensor_api.repositories.influx import InfluxReadingRepository
from sensor_api.repositories.memory import MemoryReadingRepository

logger = logging.getLogger(__name__)


def create_app(
    settings: Settings | None = None,
    *,
    repository: ReadingRepository | None = None,
) -> FastAPI:
    settings = settings or load_settings()

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        configure_logging(settings.log_level)

        influx_client = None
        repo = repository
        if repo is None and settings.storage_backend == "influx":
            influx_client = create_influx_client(settings)
            repo = InfluxReadingRepository(
                client=influx_client,
                org=settings.influx_org,
                bucket=settings.influx_bucket,
                measurement=settings.reading_measurement,
            )
        elif repo is None:
            logger.warning("Using in-memory storage; readings are lost on restart")
            repo = MemoryReadingRepository()

        # No serving without a working store.
        try:
            repo.ping()
        except Exception:
            logger.critical("Storage unreachable at startup, refusing to start")
            if influx_client is not None:
                influx_client.close()
            raise

        app.state.reading_repository = repo

        writer: ReadingWriter | None = None
        listener: MqttReadingListener | None = None
        if settings.mqtt_enabled:
            writer = ReadingWriter(repo, max_queue_size=settings.ingest_queue_size)
            writer.start()
            listener = MqttReadingListener.from_settings(settings, writer=writer)
            listener.start()
        else:
            logger.info("MQTT listener disabled")
        app.state.listener = listener

        yield

        if listener is not None:
            listener.stop()
        if writer is not None:
            writer.stop(drain=True)
        if influx_client is not None:
            influx_client.close()

    docs_enabled = settings.docs_enabled and not settings.is_production
    app = FastAPI(
        title="Sensor Readings API",
        version="0.1.0",
        debug=settings.debug,
        docs_url="/docs" if docs_enabled else None,
        redoc_url=None,
        openapi_url="/openapi.json" if docs_enabled else None,
        lifespan=lifespan,
    )
    app.state.settings = settings

    app.add_middleware(GZipMiddleware, minimum_size=1024)
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=False,
        allow_methods=["GET", "OPTIONS"],
        allow_headers=["Content-Type"],
    )
    if settings.trusted_hosts:
        app.add_middleware(TrustedHostMiddleware, allowed_hosts=settings.trusted_hosts)

    @app.middleware("http")
    async def security_headers(request, call_next):
        response = await call_next(request)
        response.headers.setdefault("X-Content-Type-Options", "nosniff")
        response.headers.setdefault("X-Frame-Options", "DENY")
        response.headers.setdefault("Referrer-Policy", "no-referrer")
        response.headers.setdefault("Cache-Control", "no-store")
        return response

    @app.get("/", tags=["meta"])
    def root():
        return {"name": "sensor-api", "status": "ok"}

    app.include_router(api_router)
    return app
