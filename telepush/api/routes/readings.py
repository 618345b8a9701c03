from __future__ import annotations

from typing import Annotated

from fastapi import APIRouter, Depends, status

from telepush.api.deps import get_buffer
from telepush.models.reading import Reading
from telepush.schemas.health import BufferStats
from telepush.schemas.readings import MetricReadingBatch, ReadingsAccepted
from telepush.services.buffer import RingBuffer

router = APIRouter()


@router.post(
    "/readings/metrics",
    response_model=ReadingsAccepted,
    status_code=status.HTTP_202_ACCEPTED,
)
def ingest_metric_readings(
    payload: MetricReadingBatch,
    buffer: Annotated[RingBuffer[Reading], Depends(get_buffer)],
) -> ReadingsAccepted:
    readings = [
        Reading.metric(r.name, r.value, labels=r.labels, timestamp=r.timestamp)
        for r in payload.readings
    ]
    buffer.add_many(readings)
    return ReadingsAccepted(accepted=len(readings))


@router.get("/buffer", response_model=BufferStats)
def buffer_stats(
    buffer: Annotated[RingBuffer[Reading], Depends(get_buffer)],
) -> BufferStats:
    size, capacity = buffer.stats()
    return BufferStats(size=size, capacity=capacity)
