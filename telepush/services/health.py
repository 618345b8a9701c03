from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Protocol

HEALTHY = "healthy"
UNHEALTHY = "unhealthy"


class SizedBuffer(Protocol):
    def size(self) -> int: ...


class PushClock(Protocol):
    @property
    def last_push_time(self) -> datetime: ...


@dataclass(frozen=True)
class HealthReport:
    status: str
    last_push_time: datetime
    buffered_samples: int

    @property
    def healthy(self) -> bool:
        return self.status == HEALTHY


class HealthMonitor:
    """Reports staleness of the push loop.

    Unhealthy once nothing has been delivered for ``stale_factor`` push
    intervals. Only reads the pusher's timestamp and the buffer size.
    """

    def __init__(
        self,
        *,
        buffer: SizedBuffer,
        pusher: PushClock,
        expected_interval_seconds: float,
        stale_factor: float = 3.0,
    ) -> None:
        if expected_interval_seconds <= 0:
            raise ValueError("expected_interval_seconds must be positive")
        self._buffer = buffer
        self._pusher = pusher
        self._max_age = timedelta(seconds=expected_interval_seconds * stale_factor)

    @property
    def max_age(self) -> timedelta:
        return self._max_age

    def check(self, *, now: datetime | None = None) -> HealthReport:
        now = now or datetime.now(tz=timezone.utc)
        last_push = self._pusher.last_push_time
        status = HEALTHY if now - last_push <= self._max_age else UNHEALTHY
        return HealthReport(
            status=status,
            last_push_time=last_push,
            buffered_samples=self._buffer.size(),
        )
