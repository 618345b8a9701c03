from __future__ import annotations

from typing import Annotated

from fastapi import APIRouter, Depends, status
from fastapi.responses import JSONResponse

from telepush.api.deps import get_health_monitor
from telepush.schemas.health import HealthResponse
from telepush.services.health import HealthMonitor

router = APIRouter()


@router.get(
    "/health",
    response_model=HealthResponse,
    responses={503: {"model": HealthResponse, "description": "Pushing is stale"}},
)
def health(
    monitor: Annotated[HealthMonitor, Depends(get_health_monitor)],
) -> JSONResponse:
    report = monitor.check()
    body = HealthResponse(
        status=report.status,
        last_push_time=report.last_push_time,
        buffered_samples=report.buffered_samples,
    )
    return JSONResponse(
        status_code=status.HTTP_200_OK if report.healthy else status.HTTP_503_SERVICE_UNAVAILABLE,
        content=body.model_dump(mode="json", by_alias=True),
    )
