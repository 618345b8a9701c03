from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum


def _utc(ts: datetime) -> datetime:
    if ts.tzinfo is None:
        return ts.replace(tzinfo=timezone.utc)
    return ts.astimezone(timezone.utc)


class ReadingKind(str, Enum):
    BLE = "ble"
    THERMOSTAT = "thermostat"
    METRIC = "metric"


@dataclass(frozen=True)
class BLEReading:
    timestamp: datetime
    mac: str
    sensor_name: str
    sensor_id: int
    temperature_celsius: float
    humidity_percent: int
    battery_percent: int
    battery_voltage_mv: int = 0
    frame_counter: int = 0
    rssi: int = 0


@dataclass(frozen=True)
class ThermostatReading:
    timestamp: datetime
    home_id: str
    home_name: str
    room_id: str
    room_name: str
    measured_temperature: float
    setpoint_temperature: float
    setpoint_mode: str = ""
    heating_power_request: int = 0
    open_window: bool = False
    reachable: bool = True


@dataclass(frozen=True)
class MetricReading:
    timestamp: datetime
    name: str
    value: float
    labels: tuple[tuple[str, str], ...] = field(default=())

    def __post_init__(self) -> None:
        labels = self.labels
        if isinstance(labels, Mapping):
            labels = labels.items()
        object.__setattr__(
            self, "labels", tuple(sorted((str(k), str(v)) for k, v in labels))
        )


@dataclass(frozen=True)
class Reading:
    """One timestamped observation.

    ``kind`` selects which of the payload fields is set; the other two are
    ``None``. Build instances with the ``ble``/``thermostat``/``metric``
    constructors rather than by hand.
    """

    kind: ReadingKind
    ble_reading: BLEReading | None = None
    thermostat_reading: ThermostatReading | None = None
    metric_reading: MetricReading | None = None

    def __post_init__(self) -> None:
        payload = {
            ReadingKind.BLE: self.ble_reading,
            ReadingKind.THERMOSTAT: self.thermostat_reading,
            ReadingKind.METRIC: self.metric_reading,
        }
        if payload[self.kind] is None:
            raise ValueError(f"{self.kind.value} reading without payload")
        if sum(p is not None for p in payload.values()) != 1:
            raise ValueError("a reading carries exactly one payload")

    @classmethod
    def ble(cls, reading: BLEReading) -> Reading:
        return cls(kind=ReadingKind.BLE, ble_reading=reading)

    @classmethod
    def thermostat(cls, reading: ThermostatReading) -> Reading:
        return cls(kind=ReadingKind.THERMOSTAT, thermostat_reading=reading)

    @classmethod
    def metric(
        cls,
        name: str,
        value: float,
        *,
        labels: Mapping[str, str] | None = None,
        timestamp: datetime | None = None,
    ) -> Reading:
        ts = _utc(timestamp) if timestamp else datetime.now(tz=timezone.utc)
        return cls(
            kind=ReadingKind.METRIC,
            metric_reading=MetricReading(
                timestamp=ts, name=name, value=float(value), labels=labels or {}
            ),
        )

    @property
    def payload(self) -> BLEReading | ThermostatReading | MetricReading:
        if self.kind is ReadingKind.BLE:
            return self.ble_reading  # type: ignore[return-value]
        if self.kind is ReadingKind.THERMOSTAT:
            return self.thermostat_reading  # type: ignore[return-value]
        return self.metric_reading  # type: ignore[return-value]

    @property
    def timestamp(self) -> datetime:
        return self.payload.timestamp

    @property
    def identity(self) -> str:
        if self.ble_reading is not None:
            return self.ble_reading.mac
        if self.thermostat_reading is not None:
            return self.thermostat_reading.room_id
        return self.metric_reading.name  # type: ignore[union-attr]


def reading_identity(reading: Reading) -> str:
    return f"{reading.kind.value}:{reading.identity}"
