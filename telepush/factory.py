from __future__ import annotations

import logging
from contextlib import asynccontextmanager

import httpx
from fastapi import FastAPI
from fastapi.middleware.gzip import GZipMiddleware

from telepush.api.router import api_router, health_router
from telepush.clients.remote_write import RemoteWriteClient
from telepush.core.config import Settings, load_settings
from telepush.core.logging import setup_logging
from telepush.models.reading import Reading, reading_identity
from telepush.services.buffer import RingBuffer
from telepush.services.health import HealthMonitor
from telepush.services.pusher import RemoteWritePusher
from telepush.services.timeseries import (
    BLESeriesBuilder,
    MetricSeriesBuilder,
    Quantization,
    Rounding,
    SeriesBuilder,
    ThermostatSeriesBuilder,
    combine_builders,
)

logger = logging.getLogger(__name__)


def build_series_builder(settings: Settings) -> SeriesBuilder:
    rounding = Rounding(settings.quantize_rounding)
    return combine_builders(
        BLESeriesBuilder(Quantization(settings.ble_quantize_ms, rounding)),
        ThermostatSeriesBuilder(Quantization(settings.thermostat_quantize_ms, rounding)),
        MetricSeriesBuilder(Quantization(settings.metric_quantize_ms, rounding)),
    )


def create_app(
    settings: Settings | None = None,
    *,
    transport: httpx.BaseTransport | None = None,
) -> FastAPI:
    settings = settings or load_settings()
    setup_logging(settings.log_level, settings.log_format)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        buffer: RingBuffer[Reading] = RingBuffer(
            settings.buffer_capacity, identify=reading_identity
        )
        client = RemoteWriteClient(
            url=str(settings.remote_write_url),
            timeout_seconds=settings.remote_write_timeout_seconds,
            username=settings.remote_write_username,
            password=settings.remote_write_password,
            transport=transport,
        )
        pusher = RemoteWritePusher(
            buffer=buffer,
            client=client,
            builder=build_series_builder(settings),
            push_interval_seconds=settings.push_interval_seconds,
            batch_size=settings.batch_size,
            max_attempts=settings.max_push_attempts,
            backoff_base_seconds=settings.backoff_base_seconds,
            start_at_even_second=settings.start_at_even_second,
        )

        app.state.buffer = buffer
        app.state.remote_write_client = client
        app.state.pusher = pusher
        app.state.health_monitor = HealthMonitor(
            buffer=buffer,
            pusher=pusher,
            expected_interval_seconds=settings.push_interval_seconds,
            stale_factor=settings.health_stale_factor,
        )
        logger.info(
            "telepush started url=%s buffer_capacity=%d batch_size=%d",
            client.url,
            settings.buffer_capacity,
            settings.batch_size,
        )

        if settings.push_enabled:
            pusher.start()

        yield

        pusher.stop()
        if not pusher.flush(timeout=settings.shutdown_flush_timeout_seconds):
            logger.error("final flush did not deliver all buffered readings")
        client.close()
        logger.info("telepush stopped")

    docs_enabled = settings.docs_enabled and not settings.is_production
    app = FastAPI(
        title="telepush",
        version="0.1.0",
        debug=settings.debug,
        docs_url="/docs" if docs_enabled else None,
        redoc_url=None,
        openapi_url="/openapi.json" if docs_enabled else None,
        lifespan=lifespan,
    )
    app.state.settings = settings

    app.add_middleware(GZipMiddleware, minimum_size=1024)

    @app.get("/", tags=["meta"])
    def root():
        return {"name": "telepush", "status": "ok"}

    app.include_router(health_router)
    app.include_router(api_router)
    return app
