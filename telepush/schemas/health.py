from __future__ import annotations

from datetime import datetime
from typing import Literal

from pydantic import BaseModel, ConfigDict, Field


class HealthResponse(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    status: Literal["healthy", "unhealthy"]
    last_push_time: datetime = Field(alias="lastPushTime")
    buffered_samples: int = Field(ge=0, alias="bufferedSamples")


class BufferStats(BaseModel):
    size: int = Field(ge=0)
    capacity: int = Field(ge=1)
