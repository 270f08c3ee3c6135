from __future__ import annotations

import logging
import math
import re
from collections.abc import Callable, Iterable, Mapping
from dataclasses import dataclass
from threading import Lock
from typing import Any


CONTENT_TYPE = "text/plain; version=0.0.4; charset=utf-8"

_METRIC_NAME_RE = re.compile(r"^[a-zA-Z_:][a-zA-Z0-9_:]*$")
_LABEL_NAME_RE = re.compile(r"^[a-zA-Z_][a-zA-Z0-9_]*$")

logger = logging.getLogger(__name__)


class MetricError(ValueError):
    """Base class for metric registration and usage errors."""


class DuplicateMetricError(MetricError):
    def __init__(self, name: str) -> None:
        super().__init__(f"Metric '{name}' is already registered")
        self.name = name


class LabelMismatchError(MetricError):
    def __init__(self, name: str, expected: tuple[str, ...], got: Iterable[str]) -> None:
        got_sorted = sorted(got)
        super().__init__(f"Metric '{name}' expects labels {list(expected)}, got {got_sorted}")
        self.name = name
        self.expected = expected
        self.got = tuple(got_sorted)


def _escape_help(text: str) -> str:
    return text.replace("\\", "\\\\").replace("\n", "\\n")


def _escape_label_value(value: str) -> str:
    return value.replace("\\", "\\\\").replace("\n", "\\n").replace('"', '\\"')


def _format_value(value: float) -> str:
    if isinstance(value, int):
        return str(value)
    if math.isnan(value):
        return "NaN"
    if math.isinf(value):
        return "+Inf" if value > 0 else "-Inf"
    if value.is_integer():
        return str(int(value))
    return repr(value)


def _format_labels(names: tuple[str, ...], values: tuple[str, ...]) -> str:
    if not names:
        return ""
    pairs = ",".join(f'{n}="{_escape_label_value(v)}"' for n, v in zip(names, values))
    return "{" + pairs + "}"


class _Instrument:
    kind = "untyped"

    def __init__(self, name: str, help_text: str) -> None:
        self.name = name
        self.help = help_text
        self._lock = Lock()

    def _samples(self) -> list[tuple[str, float]]:
        raise NotImplementedError

    def render(self) -> list[str]:
        lines = [
            f"# HELP {self.name} {_escape_help(self.help)}",
            f"# TYPE {self.name} {self.kind}",
        ]
        for labels, value in self._samples():
            lines.append(f"{self.name}{labels} {_format_value(value)}")
        return lines


class Counter(_Instrument):
    """Monotonic count per label combination."""

    kind = "counter"

    def __init__(self, name: str, help_text: str, label_names: tuple[str, ...] = ()) -> None:
        super().__init__(name, help_text)
        self.label_names = label_names
        self._values: dict[tuple[str, ...], int] = {}
        if not label_names:
            self._values[()] = 0

    def _key(self, label_values: Mapping[str, Any] | None) -> tuple[str, ...]:
        label_values = label_values or {}
        if set(label_values) != set(self.label_names):
            raise LabelMismatchError(self.name, self.label_names, label_values.keys())
        return tuple(str(label_values[n]) for n in self.label_names)

    def increment(self, label_values: Mapping[str, Any] | None = None, amount: int = 1) -> None:
        if amount < 0:
            raise ValueError(f"Counter '{self.name}' cannot be decremented")
        key = self._key(label_values)
        with self._lock:
            self._values[key] = self._values.get(key, 0) + amount

    def value(self, label_values: Mapping[str, Any] | None = None) -> int:
        key = self._key(label_values)
        with self._lock:
            return self._values.get(key, 0)

    def _samples(self) -> list[tuple[str, float]]:
        with self._lock:
            items = sorted(self._values.items())
        return [(_format_labels(self.label_names, key), value) for key, value in items]


class Gauge(_Instrument):
    """Single value with last-write-wins semantics, or a live callback."""

    kind = "gauge"

    def __init__(self, name: str, help_text: str) -> None:
        super().__init__(name, help_text)
        self._value: float = 0
        self._function: Callable[[], float] | None = None

    def set(self, value: float) -> None:
        with self._lock:
            self._function = None
            self._value = value

    def set_function(self, fn: Callable[[], float]) -> None:
        with self._lock:
            self._function = fn

    def value(self) -> float:
        with self._lock:
            fn = self._function
            current = self._value
        if fn is None:
            return current
        try:
            return float(fn())
        except Exception:
            logger.warning("metrics.gauge_callback_failed", extra={"metric": self.name}, exc_info=True)
            return math.nan

    def _samples(self) -> list[tuple[str, float]]:
        return [("", self.value())]


class MetricsRegistry:
    """Process-local registry of counters and gauges (resets on restart)."""

    def __init__(self) -> None:
        self._lock = Lock()
        self._instruments: dict[str, _Instrument] = {}

    def _register(self, instrument: _Instrument) -> None:
        if not _METRIC_NAME_RE.match(instrument.name):
            raise ValueError(f"Invalid metric name '{instrument.name}'")
        with self._lock:
            if instrument.name in self._instruments:
                raise DuplicateMetricError(instrument.name)
            self._instruments[instrument.name] = instrument

    def register_counter(self, name: str, help_text: str, label_names: Iterable[str] = ()) -> Counter:
        names = tuple(label_names)
        for label in names:
            if not _LABEL_NAME_RE.match(label) or label.startswith("__"):
                raise ValueError(f"Invalid label name '{label}' for metric '{name}'")
        if len(set(names)) != len(names):
            raise ValueError(f"Duplicate label names for metric '{name}'")
        counter = Counter(name, help_text, names)
        self._register(counter)
        return counter

    def register_gauge(self, name: str, help_text: str) -> Gauge:
        gauge = Gauge(name, help_text)
        self._register(gauge)
        return gauge

    def get(self, name: str) -> _Instrument | None:
        with self._lock:
            return self._instruments.get(name)

    def names(self) -> list[str]:
        with self._lock:
            return sorted(self._instruments)

    def snapshot(self) -> str:
        with self._lock:
            instruments = [self._instruments[name] for name in sorted(self._instruments)]

        lines: list[str] = []
        for instrument in instruments:
            lines.extend(instrument.render())
        return "\n".join(lines) + "\n" if lines else ""


@dataclass
class AppMetrics:
    requests_total: Counter
    errors_total: Counter
    health_status: Gauge

    @classmethod
    def register(cls, registry: MetricsRegistry) -> AppMetrics:
        return cls(
            requests_total=registry.register_counter(
                "app_requests_total",
                "Total number of requests",
                label_names=("method", "status"),
            ),
            errors_total=registry.register_counter("app_errors_total", "Total number of errors"),
            health_status=registry.register_gauge("app_health_status", "Application health status"),
        )
