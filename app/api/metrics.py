from __future__ import annotations

from fastapi import APIRouter, Depends
from fastapi.responses import Response

from app.api.dependencies import get_registry
from app.observability.metrics import CONTENT_TYPE, MetricsRegistry


router = APIRouter(tags=["metrics"])


@router.get("/metrics", response_class=Response)
async def metrics(registry: MetricsRegistry = Depends(get_registry)) -> Response:
    return Response(content=registry.snapshot(), media_type=CONTENT_TYPE)
