from __future__ import annotations

import math
from datetime import datetime, timezone
from typing import Annotated

from pydantic import BaseModel, Field, field_validator

METRIC_NAME_PATTERN = r"^[a-zA-Z_:][a-zA-Z0-9_:]{0,199}$"
LABEL_NAME_PATTERN = r"^[a-zA-Z][a-zA-Z0-9_]{0,99}$"

MetricName = Annotated[str, Field(pattern=METRIC_NAME_PATTERN)]
LabelName = Annotated[str, Field(pattern=LABEL_NAME_PATTERN)]


class MetricReadingCreate(BaseModel):
    name: MetricName
    value: float
    labels: dict[LabelName, Annotated[str, Field(max_length=1024)]] = Field(
        default_factory=dict, max_length=32
    )
    timestamp: datetime | None = None

    @field_validator("timestamp")
    @classmethod
    def _timestamp_to_utc(cls, v: datetime | None) -> datetime | None:
        if v is None:
            return None
        if v.tzinfo is None:
            return v.replace(tzinfo=timezone.utc)
        return v.astimezone(timezone.utc)

    @field_validator("value")
    @classmethod
    def _finite(cls, v: float) -> float:
        if not math.isfinite(v):
            raise ValueError("value must be a finite number")
        return v


class MetricReadingBatch(BaseModel):
    readings: list[MetricReadingCreate] = Field(min_length=1, max_length=1000)


class ReadingsAccepted(BaseModel):
    accepted: int = Field(ge=0)
