from __future__ import annotations

import base64
import threading
import time
from datetime import datetime, timedelta, timezone

import httpx
import pytest

from telepush.clients.remote_write import RemoteWriteClient
from telepush.core.errors import PushFailedError, RemoteWriteError
from telepush.encoding.remote_write import encode_write_request
from telepush.models.reading import Reading
from telepush.services.buffer import RingBuffer
from telepush.services.pusher import RemoteWritePusher
from telepush.services.timeseries import (
    BLESeriesBuilder,
    MetricSeriesBuilder,
    combine_builders,
)
from tests.fakes import FakeRemoteWriteEndpoint, FakeStopEvent, ble, metric


def make_pusher(
    buffer: RingBuffer[Reading],
    client: RemoteWriteClient,
    *,
    stop_event=None,
    batch_size: int = 10,
    push_interval_seconds: float = 15.0,
) -> RemoteWritePusher:
    return RemoteWritePusher(
        buffer=buffer,
        client=client,
        builder=combine_builders(BLESeriesBuilder(), MetricSeriesBuilder()),
        push_interval_seconds=push_interval_seconds,
        batch_size=batch_size,
        stop_event=stop_event or FakeStopEvent(),
    )


def test_push_retries_with_backoff_then_succeeds(
    buffer: RingBuffer[Reading],
    remote_client: RemoteWriteClient,
    endpoint: FakeRemoteWriteEndpoint,
) -> None:
    endpoint.statuses = [500, 503]
    stop = FakeStopEvent()
    pusher = make_pusher(buffer, remote_client, stop_event=stop)
    before = datetime.now(tz=timezone.utc)

    pusher.push([ble()])

    assert len(endpoint.requests) == 3
    assert stop.waits == [1.0, 2.0]
    assert pusher.last_push_time >= before
    assert {ts.metric_name for ts in endpoint.series()} >= {"ble_temperature_celsius"}


def test_push_raises_after_exhausting_attempts(
    buffer: RingBuffer[Reading],
    remote_client: RemoteWriteClient,
    endpoint: FakeRemoteWriteEndpoint,
) -> None:
    endpoint.default_status = 500
    endpoint.body = "ingester unavailable"
    stop = FakeStopEvent()
    pusher = make_pusher(buffer, remote_client, stop_event=stop)
    last_push = pusher.last_push_time

    with pytest.raises(PushFailedError) as exc_info:
        pusher.push([ble()])

    assert exc_info.value.attempts == 3
    assert exc_info.value.last_error.status_code == 500
    assert "ingester unavailable" in str(exc_info.value.last_error)
    assert stop.waits == [1.0, 2.0]
    assert pusher.last_push_time == last_push


def test_network_errors_are_retried(
    buffer: RingBuffer[Reading],
    remote_client: RemoteWriteClient,
    endpoint: FakeRemoteWriteEndpoint,
) -> None:
    endpoint.statuses = [httpx.ConnectError("connection refused")]
    stop = FakeStopEvent()

    make_pusher(buffer, remote_client, stop_event=stop).push([ble()])

    assert len(endpoint.requests) == 2
    assert stop.waits == [1.0]


def test_request_carries_remote_write_headers_and_auth(
    buffer: RingBuffer[Reading],
    remote_client: RemoteWriteClient,
    endpoint: FakeRemoteWriteEndpoint,
) -> None:
    make_pusher(buffer, remote_client).push([metric()])

    request = endpoint.requests[0]
    assert request.method == "POST"
    assert str(request.url) == "http://prometheus.test/api/v1/write"
    assert request.headers["content-type"] == "application/x-protobuf"
    assert request.headers["content-encoding"] == "snappy"
    assert request.headers["x-prometheus-remote-write-version"] == "0.1.0"
    assert request.headers["user-agent"].startswith("telepush/")
    expected = base64.b64encode(b"test-user:test-password").decode()
    assert request.headers["authorization"] == f"Basic {expected}"


def test_client_without_credentials_sends_no_auth(endpoint: FakeRemoteWriteEndpoint) -> None:
    client = RemoteWriteClient(
        url="http://prometheus.test/api/v1/write",
        timeout_seconds=1.0,
        transport=endpoint.transport,
    )
    client.send(encode_write_request([]))
    client.close()

    assert "authorization" not in endpoint.requests[0].headers


def test_client_error_keeps_status_and_body(
    remote_client: RemoteWriteClient, endpoint: FakeRemoteWriteEndpoint
) -> None:
    endpoint.statuses = [400]
    endpoint.body = "out of order sample"

    with pytest.raises(RemoteWriteError) as exc_info:
        remote_client.send(encode_write_request([]))

    assert exc_info.value.status_code == 400
    assert exc_info.value.body == "out of order sample"
    assert "400" in str(exc_info.value)


def test_cycle_requeues_failed_batch(
    buffer: RingBuffer[Reading],
    remote_client: RemoteWriteClient,
    endpoint: FakeRemoteWriteEndpoint,
) -> None:
    endpoint.default_status = 500
    buffer.add_many([ble(), ble(seconds=15)])
    pusher = make_pusher(buffer, remote_client)

    result = pusher.push_cycle()

    assert result.requeued == 2
    assert result.pushed == 0
    assert buffer.size() == 2
    assert len(endpoint.requests) == 3


def test_cycle_splits_into_batches(
    buffer: RingBuffer[Reading],
    remote_client: RemoteWriteClient,
    endpoint: FakeRemoteWriteEndpoint,
) -> None:
    buffer.add_many([metric(value=i, seconds=i) for i in range(5)])
    pusher = make_pusher(buffer, remote_client, batch_size=2)

    result = pusher.push_cycle()

    assert (result.drained, result.batches, result.pushed) == (5, 3, 5)
    assert len(endpoint.requests) == 3
    assert buffer.size() == 0


def test_cycle_continues_after_failed_batch(
    buffer: RingBuffer[Reading],
    remote_client: RemoteWriteClient,
    endpoint: FakeRemoteWriteEndpoint,
) -> None:
    endpoint.statuses = [500, 500, 500]
    buffer.add_many([metric(seconds=0), metric(seconds=1)])
    pusher = make_pusher(buffer, remote_client, batch_size=1)

    result = pusher.push_cycle()

    assert result.requeued == 1
    assert result.pushed == 1
    assert [r.timestamp for r in buffer.get_all()] == [metric(seconds=0).timestamp]


def test_cycle_drops_unbuildable_batch(
    buffer: RingBuffer[Reading],
    remote_client: RemoteWriteClient,
    endpoint: FakeRemoteWriteEndpoint,
) -> None:
    buffer.add(metric("0_not_a_metric"))
    pusher = make_pusher(buffer, remote_client)

    result = pusher.push_cycle()

    assert result.dropped == 1
    assert buffer.size() == 0
    assert endpoint.requests == []


def test_cycle_on_empty_buffer_sends_nothing(
    buffer: RingBuffer[Reading],
    remote_client: RemoteWriteClient,
    endpoint: FakeRemoteWriteEndpoint,
) -> None:
    result = make_pusher(buffer, remote_client).push_cycle()

    assert result.drained == 0
    assert endpoint.requests == []


def test_cancel_during_backoff_requeues_remaining(
    buffer: RingBuffer[Reading],
    remote_client: RemoteWriteClient,
    endpoint: FakeRemoteWriteEndpoint,
) -> None:
    endpoint.default_status = 503
    buffer.add_many([metric(seconds=i) for i in range(3)])
    stop = FakeStopEvent(cancel_after=1)
    pusher = make_pusher(buffer, remote_client, stop_event=stop, batch_size=1)

    result = pusher.push_cycle()

    assert len(endpoint.requests) == 1
    assert result.requeued == 3
    assert buffer.size() == 3


def test_flush_pushes_everything_once(
    buffer: RingBuffer[Reading],
    remote_client: RemoteWriteClient,
    endpoint: FakeRemoteWriteEndpoint,
) -> None:
    buffer.add_many([ble(), metric()])
    pusher = make_pusher(buffer, remote_client)

    assert pusher.flush(timeout=5.0) is True
    assert len(endpoint.requests) == 1
    assert buffer.size() == 0


def test_flush_does_not_retry(
    buffer: RingBuffer[Reading],
    remote_client: RemoteWriteClient,
    endpoint: FakeRemoteWriteEndpoint,
) -> None:
    endpoint.default_status = 500
    buffer.add(ble())
    stop = FakeStopEvent()
    pusher = make_pusher(buffer, remote_client, stop_event=stop)

    assert pusher.flush(timeout=5.0) is False
    assert len(endpoint.requests) == 1
    assert stop.waits == []


def test_flush_gives_up_after_timeout(
    buffer: RingBuffer[Reading],
    remote_client: RemoteWriteClient,
    endpoint: FakeRemoteWriteEndpoint,
) -> None:
    buffer.add(ble())
    pusher = make_pusher(buffer, remote_client)

    assert pusher.flush(timeout=0.0) is False
    assert endpoint.requests == []


def test_background_loop_pushes_and_stops(
    buffer: RingBuffer[Reading],
    remote_client: RemoteWriteClient,
    endpoint: FakeRemoteWriteEndpoint,
) -> None:
    buffer.add(ble())
    pusher = make_pusher(
        buffer, remote_client, stop_event=threading.Event(), push_interval_seconds=0.05
    )

    pusher.start()
    deadline = time.monotonic() + 5.0
    while not endpoint.requests and time.monotonic() < deadline:
        time.sleep(0.01)
    pusher.stop(join_timeout=2.0)

    assert len(endpoint.requests) >= 1
    assert buffer.size() == 0


@pytest.mark.parametrize(
    "overrides",
    [
        {"push_interval_seconds": 0},
        {"batch_size": 0},
        {"max_attempts": 0},
    ],
)
def test_rejects_invalid_configuration(
    buffer: RingBuffer[Reading], remote_client: RemoteWriteClient, overrides: dict
) -> None:
    kwargs = {
        "buffer": buffer,
        "client": remote_client,
        "builder": BLESeriesBuilder(),
        "push_interval_seconds": 15.0,
        "batch_size": 10,
    }
    kwargs.update(overrides)
    with pytest.raises(ValueError):
        RemoteWritePusher(**kwargs)


def test_last_push_time_starts_fresh(
    buffer: RingBuffer[Reading], remote_client: RemoteWriteClient
) -> None:
    pusher = make_pusher(buffer, remote_client)
    assert datetime.now(tz=timezone.utc) - pusher.last_push_time < timedelta(seconds=5)


def test_flush_deadline_bounds_a_hanging_request(
    buffer: RingBuffer[Reading],
    remote_client: RemoteWriteClient,
    endpoint: FakeRemoteWriteEndpoint,
) -> None:
    endpoint.delay_seconds = 2.0
    buffer.add_many([metric(seconds=0), metric(seconds=1)])
    pusher = make_pusher(buffer, remote_client, batch_size=1)

    started = time.monotonic()
    ok = pusher.flush(timeout=0.3)
    elapsed = time.monotonic() - started

    assert ok is False
    assert elapsed < 1.0
    assert len(endpoint.requests) == 1


def test_stop_interrupts_request_in_flight(
    buffer: RingBuffer[Reading],
    remote_client: RemoteWriteClient,
    endpoint: FakeRemoteWriteEndpoint,
) -> None:
    endpoint.delay_seconds = 2.0
    buffer.add(ble())
    pusher = make_pusher(
        buffer, remote_client, stop_event=threading.Event(), push_interval_seconds=0.05
    )

    pusher.start()
    deadline = time.monotonic() + 5.0
    while not endpoint.requests and time.monotonic() < deadline:
        time.sleep(0.01)
    assert endpoint.requests

    started = time.monotonic()
    pusher.stop(join_timeout=5.0)
    elapsed = time.monotonic() - started

    assert elapsed < 1.0
    # The interrupted batch goes back to the buffer for the final flush.
    assert buffer.size() == 1


def test_closed_client_requeues_batch(
    buffer: RingBuffer[Reading],
    remote_client: RemoteWriteClient,
    endpoint: FakeRemoteWriteEndpoint,
) -> None:
    buffer.add_many([ble(), ble(seconds=15)])
    pusher = make_pusher(buffer, remote_client)
    remote_client.close()

    result = pusher.push_cycle()

    assert result.requeued == 2
    assert buffer.size() == 2
    assert endpoint.requests == []


class ExplodingClient:
    def send(self, payload: bytes, *, timeout: float | None = None):
        raise LookupError("transport state corrupted")


def test_unexpected_send_error_requeues_remaining_batches(
    buffer: RingBuffer[Reading],
) -> None:
    buffer.add_many([metric(seconds=i) for i in range(3)])
    pusher = make_pusher(buffer, ExplodingClient(), batch_size=1)  # type: ignore[arg-type]

    result = pusher.push_cycle()

    assert result.requeued == 3
    assert result.pushed == 0
    assert buffer.size() == 3
