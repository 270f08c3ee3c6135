from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass, field
from enum import Enum
from time import perf_counter
from typing import Any, Callable, Iterable

import structlog
from starlette.datastructures import MutableHeaders

from app.observability.events import EventLogger
from app.observability.metrics import AppMetrics, MetricError


logger = logging.getLogger(__name__)


class RequestState(str, Enum):
    STARTED = "started"
    COMPLETED = "completed"
    ABORTED = "aborted"


@dataclass
class RequestObservation:
    method: str
    path: str
    client: str | None = None
    request_id: str = field(default_factory=lambda: str(uuid.uuid4()))
    started_at: float = field(default_factory=perf_counter)
    status_code: int | None = None
    duration_ms: float | None = None
    state: RequestState = RequestState.STARTED

    def settle(self, state: RequestState) -> bool:
        """Leave STARTED exactly once; later calls report False."""

        if self.state is not RequestState.STARTED:
            return False
        self.state = state
        self.duration_ms = round((perf_counter() - self.started_at) * 1000.0, 2)
        return True


@dataclass
class RequestTally:
    """Request/error counts for the status page.

    Plain integers without locking; the registry counters are the source of truth.
    """

    requests: int = 0
    errors: int = 0


class RequestInstrumentation:
    """Per-request bookkeeping shared by every transport that serves the app."""

    def __init__(self, metrics: AppMetrics, events: EventLogger, tally: RequestTally | None = None) -> None:
        self.metrics = metrics
        self.events = events
        self.tally = tally if tally is not None else RequestTally()

    def start(self, method: str, path: str, client: str | None = None) -> RequestObservation:
        observation = RequestObservation(method=method, path=path, client=client)
        self.tally.requests += 1
        self.events.info(
            "Request received",
            method=method,
            path=path,
            ip=client,
            request_id=observation.request_id,
        )
        return observation

    def finish(self, observation: RequestObservation, status_code: int) -> bool:
        if not observation.settle(RequestState.COMPLETED):
            logger.warning(
                "request.completion_ignored",
                extra={"request_id": observation.request_id, "state": observation.state.value},
            )
            return False

        observation.status_code = status_code
        is_error = status_code >= 400

        try:
            self.metrics.requests_total.increment({"method": observation.method, "status": status_code})
            if is_error:
                self.metrics.errors_total.increment()
        except MetricError:
            logger.exception("request.metrics_failed", extra={"request_id": observation.request_id})

        fields = {
            "method": observation.method,
            "path": observation.path,
            "status": status_code,
            "duration_ms": observation.duration_ms,
            "request_id": observation.request_id,
        }
        if is_error:
            self.tally.errors += 1
            self.events.error("Request error", **fields)
        else:
            self.events.info("Request completed", **fields)
        return True

    def abort(self, observation: RequestObservation) -> bool:
        if not observation.settle(RequestState.ABORTED):
            return False
        self.events.warn(
            "Request aborted",
            method=observation.method,
            path=observation.path,
            duration_ms=observation.duration_ms,
            request_id=observation.request_id,
        )
        return True


class RequestInstrumentationMiddleware:
    """Adds request_id context, request events and HTTP metrics."""

    def __init__(
        self,
        app: Callable[..., Any],
        instrumentation: RequestInstrumentation,
        excluded_paths: Iterable[str] = ("/metrics",),
    ) -> None:
        self.app = app
        self.instrumentation = instrumentation
        # Scrapes of the metrics endpoint are not application traffic.
        self._excluded_paths = frozenset(excluded_paths)

    async def __call__(self, scope: dict[str, Any], receive: Callable[..., Any], send: Callable[..., Any]) -> None:
        if scope.get("type") != "http" or scope.get("path") in self._excluded_paths:
            await self.app(scope, receive, send)
            return

        client = scope.get("client")
        observation = self.instrumentation.start(
            method=scope.get("method", "GET"),
            path=scope.get("path", ""),
            client=client[0] if client else None,
        )

        structlog.contextvars.bind_contextvars(
            request_id=observation.request_id,
            path=observation.path,
            method=observation.method,
        )

        status_code: int | None = None

        async def send_wrapper(message: dict[str, Any]) -> None:
            nonlocal status_code

            if message.get("type") == "http.response.start":
                status_code = int(message.get("status", 500))
                headers = MutableHeaders(scope=message)
                headers["X-Request-ID"] = observation.request_id

            await send(message)

        try:
            await self.app(scope, receive, send_wrapper)
        except Exception:
            # The server error handler answers 500 for anything raised before a response started.
            if status_code is None:
                status_code = 500
            raise
        finally:
            if status_code is None:
                self.instrumentation.abort(observation)
            else:
                self.instrumentation.finish(observation, status_code)
            structlog.contextvars.clear_contextvars()
