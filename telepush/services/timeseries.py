"""Turn batches of readings into remote-write time series.

A builder is any callable taking a sequence of readings and returning a list
of ``TimeSeries``. Each builder only looks at its own reading kind, so several
of them can be run over the same batch and their output concatenated with
``combine_builders``.

Within every emitted series the labels are unique and sorted (``__name__``
first) and samples are in ascending timestamp order, which the remote-write
receiver requires.
"""

from __future__ import annotations

import re
from collections import defaultdict
from collections.abc import Callable, Iterable, Sequence
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from enum import Enum
from typing import Protocol, TypeVar

from telepush.core.errors import SeriesBuildError
from telepush.models.reading import (
    BLEReading,
    MetricReading,
    Reading,
    ReadingKind,
    ThermostatReading,
)
from telepush.models.series import METRIC_NAME_LABEL, Label, Sample, TimeSeries

METRIC_NAME_RE = re.compile(r"^[a-zA-Z_:][a-zA-Z0-9_:]*$")
LABEL_NAME_RE = re.compile(r"^[a-zA-Z_][a-zA-Z0-9_]*$")

_EPOCH = datetime(1970, 1, 1, tzinfo=timezone.utc)
_ONE_MS = timedelta(milliseconds=1)

P = TypeVar("P")


class SeriesBuilder(Protocol):
    def __call__(self, readings: Sequence[Reading]) -> list[TimeSeries]: ...


class Rounding(str, Enum):
    TRUNCATE = "truncate"
    NEAREST = "nearest"


@dataclass(frozen=True)
class Quantization:
    """Snap sample timestamps to a fixed grid.

    ``step_ms == 0`` keeps millisecond precision. ``NEAREST`` rounds half up,
    so 15.5s on a 1s grid becomes 16s.
    """

    step_ms: int = 0
    rounding: Rounding = Rounding.NEAREST

    def __post_init__(self) -> None:
        if self.step_ms < 0:
            raise ValueError("step_ms must be >= 0")

    @classmethod
    def seconds(cls, n: float, rounding: Rounding = Rounding.NEAREST) -> Quantization:
        return cls(step_ms=round(n * 1000), rounding=rounding)

    def apply(self, ts: datetime) -> int:
        ms = to_millis(ts)
        if self.step_ms <= 1:
            return ms
        if self.rounding is Rounding.NEAREST:
            ms += self.step_ms // 2
        return (ms // self.step_ms) * self.step_ms


NO_QUANTIZATION = Quantization()


def to_millis(ts: datetime) -> int:
    if ts.tzinfo is None:
        ts = ts.replace(tzinfo=timezone.utc)
    return (ts - _EPOCH) // _ONE_MS


def _series(
    name: str, base_labels: Iterable[Label], samples: list[Sample]
) -> TimeSeries:
    labels = sorted(base_labels, key=lambda lb: lb.name)
    samples.sort(key=lambda s: s.timestamp)
    return TimeSeries(
        labels=(Label(METRIC_NAME_LABEL, name), *labels),
        samples=tuple(samples),
    )


def _group(
    readings: Sequence[Reading],
    kind: ReadingKind,
    key: Callable[[P], tuple],
) -> dict[tuple, list[P]]:
    groups: dict[tuple, list[P]] = defaultdict(list)
    for reading in readings:
        if reading.kind is kind:
            payload = reading.payload
            groups[key(payload)].append(payload)  # type: ignore[arg-type]
    return dict(sorted(groups.items()))


class BLESeriesBuilder:
    # (metric name, reading attribute)
    METRICS: tuple[tuple[str, str], ...] = (
        ("ble_temperature_celsius", "temperature_celsius"),
        ("ble_humidity_percent", "humidity_percent"),
        ("ble_battery_percent", "battery_percent"),
        ("ble_battery_voltage_mv", "battery_voltage_mv"),
        ("ble_rssi_dbm", "rssi"),
    )

    def __init__(self, quantization: Quantization = NO_QUANTIZATION) -> None:
        self.quantization = quantization

    def __call__(self, readings: Sequence[Reading]) -> list[TimeSeries]:
        groups: dict[tuple, list[BLEReading]] = _group(
            readings, ReadingKind.BLE, lambda r: (r.sensor_name, r.sensor_id, r.mac)
        )
        series: list[TimeSeries] = []
        for (sensor_name, sensor_id, mac), group in groups.items():
            labels = (
                Label("sensor_name", sensor_name),
                Label("sensor_id", str(sensor_id)),
                Label("mac", mac),
            )
            for metric, attr in self.METRICS:
                samples = [
                    Sample(float(getattr(r, attr)), self.quantization.apply(r.timestamp))
                    for r in group
                ]
                series.append(_series(metric, labels, samples))
        return series


class ThermostatSeriesBuilder:
    METRICS: tuple[tuple[str, str], ...] = (
        ("netatmo_measured_temperature_celsius", "measured_temperature"),
        ("netatmo_setpoint_temperature_celsius", "setpoint_temperature"),
        ("netatmo_heating_power_request_percent", "heating_power_request"),
    )

    def __init__(self, quantization: Quantization = Quantization(step_ms=10_000)) -> None:
        self.quantization = quantization

    def __call__(self, readings: Sequence[Reading]) -> list[TimeSeries]:
        groups: dict[tuple, list[ThermostatReading]] = _group(
            readings,
            ReadingKind.THERMOSTAT,
            lambda r: (r.home_id, r.home_name, r.room_id, r.room_name),
        )
        series: list[TimeSeries] = []
        for (home_id, home_name, room_id, room_name), group in groups.items():
            labels = (
                Label("home_id", home_id),
                Label("home_name", home_name),
                Label("room_id", room_id),
                Label("room_name", room_name),
            )
            for metric, attr in self.METRICS:
                samples = [
                    Sample(float(getattr(r, attr)), self.quantization.apply(r.timestamp))
                    for r in group
                ]
                series.append(_series(metric, labels, samples))
        return series


class MetricSeriesBuilder:
    def __init__(self, quantization: Quantization = NO_QUANTIZATION) -> None:
        self.quantization = quantization

    def __call__(self, readings: Sequence[Reading]) -> list[TimeSeries]:
        groups: dict[tuple, list[MetricReading]] = _group(
            readings, ReadingKind.METRIC, lambda r: (r.name, r.labels)
        )
        series: list[TimeSeries] = []
        for (name, label_pairs), group in groups.items():
            _validate_metric(name, label_pairs)
            samples = [
                Sample(float(r.value), self.quantization.apply(r.timestamp))
                for r in group
            ]
            series.append(
                _series(name, (Label(k, v) for k, v in label_pairs), samples)
            )
        return series


def _validate_metric(name: str, label_pairs: tuple[tuple[str, str], ...]) -> None:
    if not METRIC_NAME_RE.match(name):
        raise SeriesBuildError(f"invalid metric name {name!r}")
    names = [label_name for label_name, _ in label_pairs]
    if len(set(names)) != len(names):
        raise SeriesBuildError(f"metric {name!r} has duplicate label names")
    for label_name, _ in label_pairs:
        if label_name == METRIC_NAME_LABEL:
            raise SeriesBuildError(f"metric {name!r} sets reserved label {METRIC_NAME_LABEL}")
        if not LABEL_NAME_RE.match(label_name) or label_name.startswith("__"):
            raise SeriesBuildError(f"metric {name!r} has invalid label name {label_name!r}")


def combine_builders(*builders: SeriesBuilder | None) -> SeriesBuilder:
    active = [b for b in builders if b is not None]

    def combined(readings: Sequence[Reading]) -> list[TimeSeries]:
        series: list[TimeSeries] = []
        for builder in active:
            series.extend(builder(readings))
        return series

    return combined
