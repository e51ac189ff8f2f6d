from fastapi import APIRouter

from sensor_api.api.routes import health, readings

api_router = APIRouter(prefix="/api")
api_router.include_router(readings.router, tags=["readings"])
api_router.include_router(health.router)
