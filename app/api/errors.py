from __future__ import annotations

from fastapi import APIRouter, Depends
from fastapi.responses import JSONResponse

from app.api.dependencies import get_error_policy, get_event_logger
from app.models.schemas import ErrorResponse, MessageResponse
from app.observability.events import EventLogger
from app.services.chaos import FailurePolicy

router = APIRouter(prefix="/api", tags=["errors"])


@router.get("/error", response_model=MessageResponse, responses={500: {"model": ErrorResponse}})
async def simulated_error(
    policy: FailurePolicy = Depends(get_error_policy),
    events: EventLogger = Depends(get_event_logger),
) -> MessageResponse | JSONResponse:
    if policy.should_fail():
        events.error("Simulated error", endpoint="/api/error")
        return JSONResponse(status_code=500, content={"error": "Simulated error"})

    events.info("Error test passed")
    return MessageResponse(message="No error this time")
