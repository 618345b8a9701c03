from __future__ import annotations

from datetime import datetime, timedelta, timezone

import pytest
from fastapi.testclient import TestClient

from telepush.services.buffer import RingBuffer
from telepush.services.health import HEALTHY, UNHEALTHY, HealthMonitor
from tests.fakes import ble


class FakePusher:
    def __init__(self, last_push_time: datetime) -> None:
        self.last_push_time = last_push_time


NOW = datetime(2025, 10, 26, 17, 40, tzinfo=timezone.utc)


def test_fresh_push_is_healthy() -> None:
    buf: RingBuffer = RingBuffer(10)
    buf.add(ble())
    monitor = HealthMonitor(
        buffer=buf,
        pusher=FakePusher(NOW - timedelta(seconds=10)),
        expected_interval_seconds=15,
    )

    report = monitor.check(now=NOW)

    assert report.status == HEALTHY
    assert report.healthy
    assert report.buffered_samples == 1
    assert report.last_push_time == NOW - timedelta(seconds=10)


def test_stale_after_three_intervals() -> None:
    monitor = HealthMonitor(
        buffer=RingBuffer(10),
        pusher=FakePusher(NOW - timedelta(seconds=46)),
        expected_interval_seconds=15,
    )

    assert monitor.max_age == timedelta(seconds=45)
    assert monitor.check(now=NOW).status == UNHEALTHY


def test_exactly_at_threshold_is_healthy() -> None:
    monitor = HealthMonitor(
        buffer=RingBuffer(10),
        pusher=FakePusher(NOW - timedelta(seconds=45)),
        expected_interval_seconds=15,
    )

    assert monitor.check(now=NOW).healthy


def test_rejects_non_positive_interval() -> None:
    with pytest.raises(ValueError):
        HealthMonitor(buffer=RingBuffer(1), pusher=FakePusher(NOW), expected_interval_seconds=0)


def test_health_endpoint_ok(client: TestClient) -> None:
    resp = client.get("/health")

    assert resp.status_code == 200, resp.text
    data = resp.json()
    assert data["status"] == "healthy"
    assert data["bufferedSamples"] == 0
    assert "lastPushTime" in data


def test_health_endpoint_stale(client: TestClient) -> None:
    pusher = client.app.state.pusher
    pusher._last_push = datetime.now(tz=timezone.utc) - timedelta(minutes=5)

    resp = client.get("/health")

    assert resp.status_code == 503
    assert resp.json()["status"] == "unhealthy"
