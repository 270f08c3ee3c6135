from __future__ import annotations

from datetime import datetime, timezone

from fastapi import APIRouter, Depends

from app.api.dependencies import get_app_metrics, get_event_logger
from app.models.schemas import HealthResponse, MemoryUsage
from app.observability.events import EventLogger
from app.observability.metrics import AppMetrics
from app.observability.process import memory_usage, uptime_seconds


router = APIRouter(tags=["system"])


@router.get("/health", response_model=HealthResponse)
async def health(
    metrics: AppMetrics = Depends(get_app_metrics),
    events: EventLogger = Depends(get_event_logger),
) -> HealthResponse:
    memory = MemoryUsage(**memory_usage())
    payload = HealthResponse(
        status="OK",
        uptime_seconds=uptime_seconds(),
        memory=memory,
        timestamp=datetime.now(timezone.utc),
    )

    events.info(
        "Health check",
        status=payload.status,
        uptime_seconds=round(payload.uptime_seconds, 3),
        rss_bytes=memory.rss_bytes,
        max_rss_bytes=memory.max_rss_bytes,
    )
    metrics.health_status.set(1)
    return payload
