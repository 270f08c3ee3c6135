import asyncio
from collections import Counter as Tally
from concurrent.futures import ThreadPoolExecutor

import pytest
from httpx import ASGITransport, AsyncClient

from app.observability.events import EventLevel, EventLogger
from app.observability.metrics import AppMetrics, MetricsRegistry
from app.observability.middleware import (
    RequestInstrumentation,
    RequestInstrumentationMiddleware,
    RequestState,
)
from tests.helpers import FailingSink, RecordingSink


def _instrumentation(sink: RecordingSink) -> RequestInstrumentation:
    return RequestInstrumentation(AppMetrics.register(MetricsRegistry()), EventLogger([sink]))


def test_successful_request_is_counted_once(sink) -> None:
    instrumentation = _instrumentation(sink)
    observation = instrumentation.start("GET", "/api/users", "127.0.0.1")

    assert observation.state is RequestState.STARTED
    assert instrumentation.finish(observation, 200) is True

    metrics = instrumentation.metrics
    assert metrics.requests_total.value({"method": "GET", "status": 200}) == 1
    assert metrics.errors_total.value() == 0
    assert observation.state is RequestState.COMPLETED
    assert observation.duration_ms is not None

    completed = sink.matching("Request completed")
    assert len(completed) == 1
    assert completed[0].level is EventLevel.INFO
    assert completed[0].fields["status"] == 200
    assert sink.matching(level=EventLevel.ERROR) == []


def test_received_event_is_emitted_on_start(sink) -> None:
    instrumentation = _instrumentation(sink)
    observation = instrumentation.start("POST", "/api/users", "10.0.0.7")

    received = sink.matching("Request received")
    assert len(received) == 1
    assert received[0].fields["ip"] == "10.0.0.7"
    assert received[0].fields["request_id"] == observation.request_id
    assert instrumentation.tally.requests == 1


def test_completion_firing_twice_does_not_double_count(sink) -> None:
    instrumentation = _instrumentation(sink)
    observation = instrumentation.start("GET", "/api/error", None)

    assert instrumentation.finish(observation, 500) is True
    assert instrumentation.finish(observation, 500) is False
    assert instrumentation.finish(observation, 200) is False

    metrics = instrumentation.metrics
    assert metrics.requests_total.value({"method": "GET", "status": 500}) == 1
    assert metrics.requests_total.value({"method": "GET", "status": 200}) == 0
    assert metrics.errors_total.value() == 1
    assert len(sink.matching("Request error")) == 1
    assert sink.matching("Request completed") == []
    assert observation.status_code == 500


def test_aborted_request_emits_no_metrics(sink) -> None:
    registry = MetricsRegistry()
    instrumentation = RequestInstrumentation(AppMetrics.register(registry), EventLogger([sink]))
    observation = instrumentation.start("GET", "/slow", None)

    assert instrumentation.abort(observation) is True
    assert instrumentation.finish(observation, 200) is False
    assert instrumentation.abort(observation) is False

    assert observation.state is RequestState.ABORTED
    assert "app_requests_total{" not in registry.snapshot()
    assert instrumentation.metrics.errors_total.value() == 0
    assert [e.message for e in sink.events] == ["Request received", "Request aborted"]


@pytest.mark.parametrize("status", [400, 404, 500, 503])
def test_error_statuses_increment_error_counter_and_emit_error(sink, status) -> None:
    instrumentation = _instrumentation(sink)
    instrumentation.finish(instrumentation.start("DELETE", "/x", None), status)

    assert instrumentation.metrics.errors_total.value() == 1
    errors = sink.matching(level=EventLevel.ERROR)
    assert len(errors) == 1
    assert errors[0].fields["status"] == status
    assert instrumentation.tally.errors == 1


@pytest.mark.parametrize("status", [200, 201, 204, 302, 399])
def test_non_error_statuses_do_not_touch_error_counter(sink, status) -> None:
    instrumentation = _instrumentation(sink)
    instrumentation.finish(instrumentation.start("GET", "/x", None), status)

    assert instrumentation.metrics.errors_total.value() == 0
    assert sink.matching(level=EventLevel.ERROR) == []
    assert instrumentation.tally.errors == 0


def test_broken_sinks_never_break_instrumentation() -> None:
    instrumentation = RequestInstrumentation(AppMetrics.register(MetricsRegistry()), EventLogger([FailingSink()]))

    observation = instrumentation.start("GET", "/", None)
    assert instrumentation.finish(observation, 500) is True
    assert instrumentation.metrics.errors_total.value() == 1


def test_threaded_requests_are_counted_exactly(sink) -> None:
    instrumentation = _instrumentation(sink)
    pairs = [("GET", 200), ("GET", 404), ("POST", 201), ("POST", 400), ("GET", 500)] * 200

    def serve(pair: tuple[str, int]) -> None:
        method, status = pair
        observation = instrumentation.start(method, "/api/users", None)
        instrumentation.finish(observation, status)

    with ThreadPoolExecutor(max_workers=16) as pool:
        list(pool.map(serve, pairs))

    expected = Tally(pairs)
    for (method, status), count in expected.items():
        assert instrumentation.metrics.requests_total.value({"method": method, "status": status}) == count
    assert instrumentation.metrics.errors_total.value() == sum(c for (_, s), c in expected.items() if s >= 400)


async def test_concurrent_http_requests_are_counted_exactly(application, sink, error_policy) -> None:
    error_policy.fail = True
    requests = (
        [("GET", "/api/users", 200)] * 20
        + [("GET", "/api/error", 500)] * 15
        + [("GET", "/missing", 404)] * 10
        + [("POST", "/api/users", 400)] * 5
    )

    async with AsyncClient(transport=ASGITransport(app=application), base_url="http://test") as client:
        responses = await asyncio.gather(*(client.request(method, path, json={}) for method, path, _ in requests))

    assert [r.status_code for r in responses] == [status for _, _, status in requests]

    metrics = application.state.app_metrics
    expected = Tally((method, status) for method, _, status in requests)
    for (method, status), count in expected.items():
        assert metrics.requests_total.value({"method": method, "status": status}) == count
    assert metrics.errors_total.value() == 30
    assert len(sink.matching("Request completed")) == 20
    assert len(sink.matching("Request error")) == 30


async def test_users_request_scenario(api_client, application, sink) -> None:
    resp = await api_client.get("/api/users")
    assert resp.status_code == 200

    metrics = application.state.app_metrics
    assert metrics.requests_total.value({"method": "GET", "status": 200}) == 1
    assert metrics.errors_total.value() == 0

    completed = sink.matching("Request completed", EventLevel.INFO)
    assert len(completed) == 1
    assert completed[0].fields["path"] == "/api/users"


async def test_server_error_scenario(api_client, application, sink, error_policy) -> None:
    error_policy.fail = True
    resp = await api_client.get("/api/error")
    assert resp.status_code == 500

    assert application.state.app_metrics.errors_total.value() == 1
    with_status = [e for e in sink.matching(level=EventLevel.ERROR) if e.fields.get("status") == 500]
    assert len(with_status) == 1


async def test_response_carries_request_id(api_client, sink) -> None:
    resp = await api_client.get("/health")

    request_id = resp.headers.get("x-request-id")
    assert request_id
    assert sink.matching("Request completed")[0].fields["request_id"] == request_id


async def test_unhandled_exception_is_recorded_as_500(application, sink) -> None:
    async def boom() -> None:
        raise RuntimeError("handler crashed")

    application.add_api_route("/boom", boom)
    transport = ASGITransport(app=application, raise_app_exceptions=False)
    async with AsyncClient(transport=transport, base_url="http://test") as client:
        resp = await client.get("/boom")

    assert resp.status_code == 500
    metrics = application.state.app_metrics
    assert metrics.requests_total.value({"method": "GET", "status": 500}) == 1
    assert metrics.errors_total.value() == 1
    assert len(sink.matching("Request error")) == 1


async def test_cancelled_request_is_aborted_without_metrics(sink) -> None:
    instrumentation = _instrumentation(sink)

    async def hangs_up(scope, receive, send) -> None:
        raise asyncio.CancelledError()

    middleware = RequestInstrumentationMiddleware(hangs_up, instrumentation=instrumentation)
    scope = {"type": "http", "method": "GET", "path": "/slow", "client": ("127.0.0.1", 5000), "headers": []}

    async def receive() -> dict:
        return {"type": "http.disconnect"}

    async def send(message: dict) -> None:
        raise AssertionError("nothing should be sent")

    with pytest.raises(asyncio.CancelledError):
        await middleware(scope, receive, send)

    assert sink.matching("Request aborted")
    assert instrumentation.metrics.errors_total.value() == 0
    assert instrumentation.metrics.requests_total.value({"method": "GET", "status": 500}) == 0


async def test_non_http_scopes_pass_through(sink) -> None:
    instrumentation = _instrumentation(sink)
    seen = []

    async def inner(scope, receive, send) -> None:
        seen.append(scope["type"])

    middleware = RequestInstrumentationMiddleware(inner, instrumentation=instrumentation)
    await middleware({"type": "lifespan"}, None, None)

    assert seen == ["lifespan"]
    assert sink.events == []
