from __future__ import annotations

from dataclasses import dataclass

METRIC_NAME_LABEL = "__name__"


@dataclass(frozen=True)
class Label:
    name: str
    value: str


@dataclass(frozen=True)
class Sample:
    value: float
    timestamp: int  # milliseconds since epoch


@dataclass(frozen=True)
class TimeSeries:
    labels: tuple[Label, ...]
    samples: tuple[Sample, ...]

    @property
    def metric_name(self) -> str | None:
        for label in self.labels:
            if label.name == METRIC_NAME_LABEL:
                return label.value
        return None

    def label_dict(self) -> dict[str, str]:
        return {label.name: label.value for label in self.labels}
