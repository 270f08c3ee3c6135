from __future__ import annotations

from collections.abc import Sequence
from typing import Any

from app.observability.events import Event, EventLevel


class RecordingSink:
    """Keeps every event in memory, in emission order."""

    name = "recording"

    def __init__(self) -> None:
        self.events: list[Event] = []
        self.closed = False

    def emit(self, event: Event) -> None:
        self.events.append(event)

    def close(self) -> None:
        self.closed = True

    def matching(self, message: str | None = None, level: EventLevel | None = None) -> list[Event]:
        return [
            e
            for e in self.events
            if (message is None or e.message == message) and (level is None or e.level is level)
        ]


class FailingSink:
    name = "failing"

    def __init__(self, exc: Exception | None = None) -> None:
        self.exc = exc or ConnectionError("sink unreachable")
        self.calls = 0

    def emit(self, event: Event) -> None:
        self.calls += 1
        raise self.exc

    def close(self) -> None:
        raise self.exc


class StubPolicy:
    """Deterministic stand-in for RandomFailurePolicy."""

    def __init__(self, fail: bool = False, pick: int = 0) -> None:
        self.fail = fail
        self.pick = pick

    def should_fail(self) -> bool:
        return self.fail

    def choose(self, options: Sequence[Any]) -> Any:
        return options[self.pick % len(options)]
