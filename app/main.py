from __future__ import annotations

from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from pathlib import Path

from fastapi import Depends, FastAPI, Request
from fastapi.responses import HTMLResponse, JSONResponse
from fastapi.templating import Jinja2Templates
from starlette.exceptions import HTTPException as StarletteHTTPException

from app.api.dependencies import get_request_tally
from app.api.errors import router as errors_router
from app.api.health import router as health_router
from app.api.metrics import router as metrics_router
from app.api.users import router as users_router
from app.config import Settings, get_settings
from app.observability.events import ConsoleSink, EventLogger, EventSink
from app.observability.logging import configure_logging
from app.observability.loki import LokiSink
from app.observability.metrics import AppMetrics, MetricsRegistry
from app.observability.middleware import RequestInstrumentation, RequestInstrumentationMiddleware, RequestTally
from app.observability.process import register_process_metrics, uptime_seconds
from app.services.background_tasks import BackgroundTaskScheduler
from app.services.chaos import FailurePolicy, RandomFailurePolicy


templates = Jinja2Templates(directory=str(Path(__file__).parent / "templates"))


def build_sinks(settings: Settings) -> list[EventSink]:
    sinks: list[EventSink] = [ConsoleSink()]
    if settings.loki_url:
        sinks.append(
            LokiSink(
                settings.loki_url,
                settings.loki_labels,
                timeout=settings.loki_timeout_seconds,
                batch_size=settings.loki_batch_size,
                max_queue=settings.loki_queue_size,
            )
        )
    return sinks


def create_app(
    settings: Settings | None = None,
    *,
    sinks: list[EventSink] | None = None,
    error_policy: FailurePolicy | None = None,
    scheduler_policy: FailurePolicy | None = None,
) -> FastAPI:
    settings = settings or get_settings()
    configure_logging(settings.log_level_number)

    registry = MetricsRegistry()
    app_metrics = AppMetrics.register(registry)
    if settings.process_metrics_enabled:
        register_process_metrics(registry)

    events = EventLogger(sinks if sinks is not None else build_sinks(settings))
    tally = RequestTally()
    scheduler = BackgroundTaskScheduler(
        events,
        scheduler_policy or RandomFailurePolicy(settings.background_task_failure_rate, seed=settings.chaos_seed),
        interval_seconds=settings.background_task_interval_seconds,
    )

    @asynccontextmanager
    async def lifespan(_: FastAPI) -> AsyncIterator[None]:
        if settings.background_tasks_enabled:
            scheduler.start()
        try:
            yield
        finally:
            await scheduler.stop()
            events.close()

    app = FastAPI(title="Monitoring App", version="0.1.0", lifespan=lifespan)
    app.state.settings = settings
    app.state.registry = registry
    app.state.app_metrics = app_metrics
    app.state.events = events
    app.state.request_tally = tally
    app.state.scheduler = scheduler
    app.state.error_policy = error_policy or RandomFailurePolicy(settings.simulated_error_rate, seed=settings.chaos_seed)

    app.add_middleware(
        RequestInstrumentationMiddleware,
        instrumentation=RequestInstrumentation(app_metrics, events, tally),
    )

    app.include_router(metrics_router)
    app.include_router(health_router)
    app.include_router(users_router)
    app.include_router(errors_router)

    @app.get("/", response_class=HTMLResponse, tags=["ui"])
    async def index(request: Request, request_tally: RequestTally = Depends(get_request_tally)) -> HTMLResponse:
        context = {
            "request_count": request_tally.requests,
            "error_count": request_tally.errors,
            "uptime_seconds": int(uptime_seconds()),
        }
        return templates.TemplateResponse(request, "index.html", context)

    # Unknown paths and known paths with an unsupported method both answer the JSON 404.
    @app.exception_handler(404)
    @app.exception_handler(405)
    async def not_found(request: Request, exc: StarletteHTTPException) -> JSONResponse:
        url = request.url.path
        if request.url.query:
            url = f"{url}?{request.url.query}"
        request.app.state.events.warn("404 Not Found", url=url)
        return JSONResponse(status_code=404, content={"error": "Not found", "path": url})

    return app


app = create_app()
