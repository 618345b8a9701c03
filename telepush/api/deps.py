from __future__ import annotations

from fastapi import HTTPException, Request, status

from telepush.core.config import Settings
from telepush.models.reading import Reading
from telepush.services.buffer import RingBuffer
from telepush.services.health import HealthMonitor


def get_settings(request: Request) -> Settings:
    return request.app.state.settings


def get_buffer(request: Request) -> RingBuffer[Reading]:
    buffer = getattr(request.app.state, "buffer", None)
    if not isinstance(buffer, RingBuffer):
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Buffer not initialized",
        )
    return buffer


def get_health_monitor(request: Request) -> HealthMonitor:
    monitor = getattr(request.app.state, "health_monitor", None)
    if not isinstance(monitor, HealthMonitor):
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Health monitor not initialized",
        )
    return monitor
