from __future__ import annotations

import logging
import threading
from collections.abc import Callable, Iterable
from typing import Generic, TypeVar

logger = logging.getLogger(__name__)

T = TypeVar("T")


class RingBuffer(Generic[T]):
    """Bounded thread-safe circular buffer.

    Producers call ``add``; a single consumer drains with ``get_all_and_clear``.
    When full, the oldest entry is overwritten and a warning is logged naming
    the evicted item via ``identify``.
    """

    def __init__(
        self, capacity: int, *, identify: Callable[[T], str] | None = None
    ) -> None:
        if capacity <= 0:
            raise ValueError(f"capacity must be positive, got {capacity}")
        self._capacity = capacity
        self._data: list[T | None] = [None] * capacity
        self._head = 0  # next write position
        self._size = 0
        self._identify = identify or repr
        self._lock = threading.Lock()

    @property
    def capacity(self) -> int:
        return self._capacity

    def add(self, item: T) -> None:
        with self._lock:
            self._add_locked(item)

    def add_many(self, items: Iterable[T]) -> None:
        with self._lock:
            for item in items:
                self._add_locked(item)

    def _add_locked(self, item: T) -> None:
        if self._size == self._capacity:
            evicted = self._data[self._head]
            logger.warning(
                "ring buffer full, overwriting oldest entry capacity=%d evicted=%s",
                self._capacity,
                self._identify(evicted),  # type: ignore[arg-type]
            )
        self._data[self._head] = item
        self._head = (self._head + 1) % self._capacity
        if self._size < self._capacity:
            self._size += 1

    def size(self) -> int:
        with self._lock:
            return self._size

    def stats(self) -> tuple[int, int]:
        with self._lock:
            return self._size, self._capacity

    def get_all(self) -> list[T]:
        with self._lock:
            if self._size == 0:
                return []
            return self._snapshot_locked()

    def get_all_and_clear(self) -> list[T]:
        with self._lock:
            if self._size == 0:
                return []
            items = self._snapshot_locked()
            self._reset_locked()
            return items

    def clear(self) -> None:
        with self._lock:
            self._reset_locked()

    def _snapshot_locked(self) -> list[T]:
        # Oldest entry sits at head once the buffer has wrapped, else at 0.
        start = (self._head - self._size) % self._capacity
        if start + self._size <= self._capacity:
            return list(self._data[start : start + self._size])  # type: ignore[arg-type]
        return self._data[start:] + self._data[: self._head]  # type: ignore[return-value]

    def _reset_locked(self) -> None:
        # Drop references so drained readings can be collected.
        self._data = [None] * self._capacity
        self._head = 0
        self._size = 0
