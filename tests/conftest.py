from __future__ import annotations

import pytest
from fastapi.testclient import TestClient

from telepush.clients.remote_write import RemoteWriteClient
from telepush.core.config import Settings
from telepush.factory import create_app
from telepush.models.reading import Reading, reading_identity
from telepush.services.buffer import RingBuffer
from tests.fakes import FakeRemoteWriteEndpoint


@pytest.fixture()
def settings() -> Settings:
    return Settings(
        _env_file=None,
        env="test",
        debug=True,
        docs_enabled=False,
        remote_write_url="http://prometheus.test/api/v1/write",
        remote_write_username="test-user",
        remote_write_password="test-password",
        remote_write_timeout_seconds=1.0,
        buffer_capacity=100,
        batch_size=10,
        push_interval_seconds=15.0,
        push_enabled=False,
        start_at_even_second=False,
        shutdown_flush_timeout_seconds=1.0,
    )


@pytest.fixture()
def endpoint() -> FakeRemoteWriteEndpoint:
    return FakeRemoteWriteEndpoint()


@pytest.fixture()
def buffer() -> RingBuffer[Reading]:
    return RingBuffer(100, identify=reading_identity)


@pytest.fixture()
def remote_client(endpoint: FakeRemoteWriteEndpoint) -> RemoteWriteClient:
    client = RemoteWriteClient(
        url="http://prometheus.test/api/v1/write",
        timeout_seconds=1.0,
        username="test-user",
        password="test-password",
        transport=endpoint.transport,
    )
    yield client
    client.close()


@pytest.fixture()
def client(settings: Settings, endpoint: FakeRemoteWriteEndpoint) -> TestClient:
    app = create_app(settings, transport=endpoint.transport)
    with TestClient(app) as client:
        yield client
