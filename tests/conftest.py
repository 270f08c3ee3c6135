from __future__ import annotations

from collections.abc import AsyncIterator

import pytest
from fastapi import FastAPI
from httpx import ASGITransport, AsyncClient

from app.config import get_settings
from app.main import create_app
from tests.helpers import RecordingSink, StubPolicy


@pytest.fixture(autouse=True)
def test_environment(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("BACKGROUND_TASKS_ENABLED", "false")
    monkeypatch.setenv("PROCESS_METRICS_ENABLED", "false")
    monkeypatch.delenv("LOKI_URL", raising=False)
    monkeypatch.delenv("CHAOS_SEED", raising=False)
    get_settings.cache_clear()

    yield

    get_settings.cache_clear()


@pytest.fixture
def sink() -> RecordingSink:
    return RecordingSink()


@pytest.fixture
def error_policy() -> StubPolicy:
    return StubPolicy(fail=False)


@pytest.fixture
def application(sink: RecordingSink, error_policy: StubPolicy) -> FastAPI:
    return create_app(
        get_settings(),
        sinks=[sink],
        error_policy=error_policy,
        scheduler_policy=StubPolicy(fail=False),
    )


@pytest.fixture
async def api_client(application: FastAPI) -> AsyncIterator[AsyncClient]:
    transport = ASGITransport(app=application)
    async with AsyncClient(transport=transport, base_url="http://test") as client:
        yield client
