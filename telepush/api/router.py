from fastapi import APIRouter

from telepush.api.routes import health, readings

api_router = APIRouter(prefix="/api/v1")
api_router.include_router(readings.router, tags=["readings"])

health_router = APIRouter()
health_router.include_router(health.router, tags=["meta"])
