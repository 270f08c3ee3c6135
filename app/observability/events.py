"""Structured application events fanned out to independent sinks.

Every sink is best-effort: a sink that raises is reported once through the
stdlib logger and skipped, so emitting an event never fails the caller.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from threading import Lock
from types import MappingProxyType
from typing import Any, Mapping, Protocol

import structlog

from app.observability.logging import EVENT_TIMESTAMP_KEY


logger = logging.getLogger(__name__)

_SCALAR_TYPES = (str, int, float, bool, type(None))

_EPOCH = datetime(1970, 1, 1, tzinfo=timezone.utc)

# Keys owned by the rendered payload; a field with one of these names is kept
# under a "field_" prefix instead of being dropped or overwritten.
_PAYLOAD_KEYS = frozenset({"message", "level", "timestamp"})
_CONSOLE_KEYS = frozenset(
    {"event", "level", "log_level", "timestamp", "logger", "exc_info", "stack_info", EVENT_TIMESTAMP_KEY}
)


class EventLevel(str, Enum):
    INFO = "info"
    WARN = "warn"
    ERROR = "error"


def _scalar(value: Any) -> Any:
    return value if isinstance(value, _SCALAR_TYPES) else repr(value)


def _without_collisions(fields: Mapping[str, Any], reserved: frozenset[str]) -> dict[str, Any]:
    out: dict[str, Any] = {}
    for key, value in fields.items():
        while key in reserved or key in out:
            key = f"field_{key}"
        out[key] = value
    return out


@dataclass(frozen=True)
class Event:
    level: EventLevel
    message: str
    fields: Mapping[str, Any] = field(default_factory=dict)
    timestamp: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    def __post_init__(self) -> None:
        cleaned = {str(k): _scalar(v) for k, v in self.fields.items()}
        object.__setattr__(self, "fields", MappingProxyType(cleaned))

    @property
    def timestamp_ns(self) -> int:
        """Nanoseconds since the Unix epoch, without a float round-trip."""
        delta = self.timestamp - _EPOCH
        return ((delta.days * 86_400 + delta.seconds) * 1_000_000 + delta.microseconds) * 1_000

    def to_dict(self) -> dict[str, Any]:
        payload = _without_collisions(self.fields, _PAYLOAD_KEYS)
        payload.update(
            message=self.message,
            level=self.level.value,
            timestamp=self.timestamp.isoformat(),
        )
        return payload


class EventSink(Protocol):
    name: str

    def emit(self, event: Event) -> None: ...

    def close(self) -> None: ...


class ConsoleSink:
    """Synchronous local sink rendered by the structlog JSON pipeline."""

    name = "console"

    _METHODS = {
        EventLevel.INFO: "info",
        EventLevel.WARN: "warning",
        EventLevel.ERROR: "error",
    }

    def __init__(self, logger_name: str = "events") -> None:
        self._logger = structlog.get_logger(logger_name)

    def emit(self, event: Event) -> None:
        log = getattr(self._logger, self._METHODS[event.level])
        fields = _without_collisions(event.fields, _CONSOLE_KEYS)
        fields[EVENT_TIMESTAMP_KEY] = event.timestamp.isoformat()
        log(event=event.message, **fields)

    def close(self) -> None:
        return None


class EventLogger:
    def __init__(self, sinks: list[EventSink] | None = None) -> None:
        self._sinks: list[EventSink] = list(sinks) if sinks is not None else [ConsoleSink()]
        self._failing: set[str] = set()
        self._lock = Lock()

    @property
    def sinks(self) -> list[EventSink]:
        return list(self._sinks)

    def log(
        self,
        level: EventLevel | str,
        message: str,
        fields: Mapping[str, Any] | None = None,
        /,
        **extra: Any,
    ) -> Event:
        """Emit one event to every sink.

        Fields may be given as a mapping, as keyword arguments, or both
        (keywords win). The leading parameters are positional-only, so any
        field name, including ``message`` or ``level``, is accepted.
        """
        merged = {**fields, **extra} if fields else extra
        event = Event(level=EventLevel(level), message=message, fields=merged)
        for sink in self._sinks:
            self._dispatch(sink, event)
        return event

    def info(self, message: str, fields: Mapping[str, Any] | None = None, /, **extra: Any) -> Event:
        return self.log(EventLevel.INFO, message, fields, **extra)

    def warn(self, message: str, fields: Mapping[str, Any] | None = None, /, **extra: Any) -> Event:
        return self.log(EventLevel.WARN, message, fields, **extra)

    def error(self, message: str, fields: Mapping[str, Any] | None = None, /, **extra: Any) -> Event:
        return self.log(EventLevel.ERROR, message, fields, **extra)

    def _dispatch(self, sink: EventSink, event: Event) -> None:
        try:
            sink.emit(event)
        except Exception:
            with self._lock:
                first = sink.name not in self._failing
                self._failing.add(sink.name)
            if first:
                logger.warning("events.sink_failed", extra={"sink": sink.name}, exc_info=True)
            return

        if self._failing:
            with self._lock:
                recovered = sink.name in self._failing
                self._failing.discard(sink.name)
            if recovered:
                logger.info("events.sink_recovered", extra={"sink": sink.name})

    def close(self) -> None:
        for sink in self._sinks:
            try:
                sink.close()
            except Exception:
                logger.warning("events.sink_close_failed", extra={"sink": sink.name}, exc_info=True)
