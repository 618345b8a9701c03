from __future__ import annotations

import logging
import threading
import time
from collections import Counter
from collections.abc import Sequence
from dataclasses import dataclass
from datetime import datetime, timezone

from telepush.clients.remote_write import RemoteWriteClient
from telepush.core.errors import (
    EncodeError,
    PushCancelledError,
    PushFailedError,
    RemoteWriteError,
    SeriesBuildError,
)
from telepush.encoding.remote_write import encode_write_request
from telepush.models.reading import Reading
from telepush.models.series import TimeSeries
from telepush.services.buffer import RingBuffer
from telepush.services.timeseries import SeriesBuilder

logger = logging.getLogger(__name__)

_REQUEST_POLL_SECONDS = 0.05
_MIN_REQUEST_TIMEOUT_SECONDS = 0.1


@dataclass(frozen=True)
class PushCycleResult:
    drained: int
    batches: int
    pushed: int
    requeued: int
    dropped: int


class RemoteWritePusher:
    """Periodically drains the buffer and ships it to a remote-write endpoint.

    Each cycle takes everything in the buffer, splits it into batches of at
    most ``batch_size`` readings and pushes them one after another. A batch
    that still fails after ``max_attempts`` is added back to the buffer and
    the cycle moves on. Batches that cannot be built or encoded are dropped.

    Re-queued readings go to the tail of the buffer, behind anything produced
    while we were retrying, and a long outage still loses the oldest data
    once the buffer wraps. Delivery is at-least-once: a push that reached
    the server but timed out on our side is sent again.
    """

    def __init__(
        self,
        *,
        buffer: RingBuffer[Reading],
        client: RemoteWriteClient,
        builder: SeriesBuilder,
        push_interval_seconds: float,
        batch_size: int,
        max_attempts: int = 3,
        backoff_base_seconds: float = 1.0,
        start_at_even_second: bool = False,
        stop_event: threading.Event | None = None,
    ) -> None:
        if push_interval_seconds <= 0:
            raise ValueError("push_interval_seconds must be positive")
        if batch_size <= 0:
            raise ValueError("batch_size must be positive")
        if max_attempts <= 0:
            raise ValueError("max_attempts must be positive")
        self._buffer = buffer
        self._client = client
        self._builder = builder
        self._push_interval_seconds = push_interval_seconds
        self._batch_size = batch_size
        self._max_attempts = max_attempts
        self._backoff_base_seconds = backoff_base_seconds
        self._start_at_even_second = start_at_even_second
        self._stop_event = stop_event or threading.Event()
        self._thread: threading.Thread | None = None
        # Start "fresh" so the health probe does not fail before the first push.
        self._last_push = datetime.now(tz=timezone.utc)

    @property
    def last_push_time(self) -> datetime:
        return self._last_push

    @property
    def push_interval_seconds(self) -> float:
        return self._push_interval_seconds

    def start(self) -> None:
        if self._thread is not None and self._thread.is_alive():
            return
        self._thread = threading.Thread(
            target=self.run, name="remote-write-pusher", daemon=True
        )
        self._thread.start()

    def stop(self, *, join_timeout: float = 5.0) -> None:
        self._stop_event.set()
        if self._thread is not None and self._thread.is_alive():
            self._thread.join(timeout=join_timeout)

    def run(self) -> None:
        logger.info(
            "remote write pusher started push_interval=%.1fs batch_size=%d",
            self._push_interval_seconds,
            self._batch_size,
        )
        if self._start_at_even_second:
            wait = 1.0 - (time.time() % 1.0)
            logger.info("waiting %.3fs to start at an even second", wait)
            if self._stop_event.wait(wait):
                return

        next_tick = time.monotonic() + self._push_interval_seconds
        while not self._stop_event.wait(max(next_tick - time.monotonic(), 0.0)):
            try:
                self.push_cycle()
            except Exception:
                logger.exception("push cycle failed unexpectedly")
            next_tick += self._push_interval_seconds
            now = time.monotonic()
            if next_tick < now:
                # Cycle overran one or more ticks; skip them like a ticker would.
                missed = int((now - next_tick) // self._push_interval_seconds) + 1
                next_tick += missed * self._push_interval_seconds
        logger.info("remote write pusher stopping")

    def push_cycle(self) -> PushCycleResult:
        readings = self._buffer.get_all_and_clear()
        if not readings:
            logger.debug("no readings to push")
            return PushCycleResult(drained=0, batches=0, pushed=0, requeued=0, dropped=0)

        batches = self._batches(readings)
        logger.debug(
            "pushing readings total=%d batches=%d", len(readings), len(batches)
        )
        pushed = requeued = dropped = 0
        for number, batch in enumerate(batches, start=1):
            try:
                self.push(batch)
            except (SeriesBuildError, EncodeError) as e:
                dropped += len(batch)
                logger.error(
                    "dropping batch, cannot encode batch=%d/%d readings=%d err=%s",
                    number,
                    len(batches),
                    len(batch),
                    e,
                )
            except PushCancelledError:
                rest = [r for b in batches[number - 1 :] for r in b]
                self._buffer.add_many(rest)
                requeued += len(rest)
                logger.warning(
                    "push cancelled, re-queued remaining readings batch=%d/%d readings=%d",
                    number,
                    len(batches),
                    len(rest),
                )
                break
            except PushFailedError as e:
                self._buffer.add_many(batch)
                requeued += len(batch)
                logger.error(
                    "failed to push batch, re-queued readings batch=%d/%d readings=%d attempts=%d err=%s",
                    number,
                    len(batches),
                    len(batch),
                    e.attempts,
                    e.last_error,
                )
            except Exception:
                rest = [r for b in batches[number - 1 :] for r in b]
                self._buffer.add_many(rest)
                requeued += len(rest)
                logger.exception(
                    "unexpected push failure, re-queued remaining readings batch=%d/%d readings=%d",
                    number,
                    len(batches),
                    len(rest),
                )
                break
            else:
                pushed += len(batch)

        return PushCycleResult(
            drained=len(readings),
            batches=len(batches),
            pushed=pushed,
            requeued=requeued,
            dropped=dropped,
        )

    def push(
        self,
        readings: Sequence[Reading],
        *,
        max_attempts: int | None = None,
        cancel_event: threading.Event | None = None,
        deadline: float | None = None,
    ) -> None:
        """Push one batch, retrying with exponential backoff.

        Waits ``backoff_base * 2**(attempt-1)`` seconds between attempts.
        ``cancel_event`` (the pusher's stop event by default) interrupts a
        backoff wait or a request in flight with ``PushCancelledError``.
        ``deadline`` is a ``time.monotonic()`` value; a request still running
        at that point counts as a failed attempt. After the last failed
        attempt ``PushFailedError`` is raised. Build and encode failures are
        raised straight away as ``SeriesBuildError`` / ``EncodeError``.
        """
        if not readings:
            return
        cancel = self._stop_event if cancel_event is None else cancel_event
        attempts = max_attempts or self._max_attempts

        series = self._build(readings)
        if not series:
            logger.debug("batch produced no series readings=%d", len(readings))
            return
        payload = encode_write_request(series)

        last_error: RemoteWriteError | None = None
        for attempt in range(1, attempts + 1):
            try:
                self._send(payload, cancel=cancel, deadline=deadline)
            except RemoteWriteError as e:
                last_error = e
                logger.warning(
                    "push attempt failed attempt=%d/%d readings=%d status=%s err=%s",
                    attempt,
                    attempts,
                    len(readings),
                    e.status_code,
                    e,
                )
                if attempt < attempts:
                    delay = self._backoff_base_seconds * 2 ** (attempt - 1)
                    if cancel.wait(delay):
                        raise PushCancelledError("push cancelled during backoff") from e
                continue

            self._last_push = datetime.now(tz=timezone.utc)
            kinds = Counter(r.kind.value for r in readings)
            logger.info(
                "pushed metrics readings=%d series=%d samples=%d attempt=%d kinds=%s",
                len(readings),
                len(series),
                sum(len(ts.samples) for ts in series),
                attempt,
                dict(kinds),
            )
            return

        raise PushFailedError(attempts=attempts, last_error=last_error)  # type: ignore[arg-type]

    def flush(self, *, timeout: float) -> bool:
        """Final drain on shutdown: one attempt per batch, no backoff.

        Batches not attempted before ``timeout`` expires are dropped with an
        error log. Returns ``True`` only if everything drained was delivered.
        """
        readings = self._buffer.get_all_and_clear()
        if not readings:
            return True

        logger.info("performing final metrics push readings=%d", len(readings))
        deadline = time.monotonic() + timeout
        ok = True
        batches = self._batches(readings)
        for number, batch in enumerate(batches, start=1):
            if time.monotonic() >= deadline:
                lost = sum(len(b) for b in batches[number - 1 :])
                logger.error("final push timed out, dropping readings=%d", lost)
                return False
            try:
                self.push(
                    batch,
                    max_attempts=1,
                    cancel_event=threading.Event(),
                    deadline=deadline,
                )
            except (SeriesBuildError, EncodeError, PushFailedError) as e:
                ok = False
                logger.error(
                    "failed final metrics push batch=%d/%d readings=%d err=%s",
                    number,
                    len(batches),
                    len(batch),
                    e,
                )
        if ok:
            logger.info("final metrics push successful readings=%d", len(readings))
        return ok

    def _send(
        self,
        payload: bytes,
        *,
        cancel: threading.Event,
        deadline: float | None,
    ) -> None:
        """Run one request on a helper thread so that the cancel event and the
        deadline can cut the wait short.

        An abandoned request keeps running until the httpx timeout ends it;
        its outcome is discarded.
        """
        timeout = None
        if deadline is not None:
            timeout = max(deadline - time.monotonic(), _MIN_REQUEST_TIMEOUT_SECONDS)

        done = threading.Event()
        errors: list[Exception] = []

        def send() -> None:
            try:
                self._client.send(payload, timeout=timeout)
            except Exception as e:
                errors.append(e)
            finally:
                done.set()

        threading.Thread(target=send, name="remote-write-request", daemon=True).start()
        while not done.wait(_REQUEST_POLL_SECONDS):
            if cancel.is_set():
                raise PushCancelledError("push cancelled during request")
            if deadline is not None and time.monotonic() >= deadline:
                raise RemoteWriteError("remote write did not finish before the deadline")
        if errors:
            raise errors[0]

    def _batches(self, readings: list[Reading]) -> list[list[Reading]]:
        size = self._batch_size
        return [readings[i : i + size] for i in range(0, len(readings), size)]

    def _build(self, readings: Sequence[Reading]) -> list[TimeSeries]:
        try:
            return self._builder(readings)
        except SeriesBuildError:
            raise
        except Exception as e:
            raise SeriesBuildError(f"time series builder failed: {e}") from e
