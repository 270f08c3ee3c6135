from __future__ import annotations

import time

from fastapi import APIRouter, Body, Depends
from fastapi.responses import JSONResponse

from app.api.dependencies import get_event_logger
from app.models.schemas import ErrorResponse, User, UserCreate, UserCreatedResponse, UsersResponse
from app.observability.events import EventLogger

router = APIRouter(prefix="/api", tags=["users"])

_USERS = (
    User(id=1, name="John Doe", email="john@example.com"),
    User(id=2, name="Jane Smith", email="jane@example.com"),
)


@router.get("/users", response_model=UsersResponse)
async def list_users(events: EventLogger = Depends(get_event_logger)) -> UsersResponse:
    users = list(_USERS)
    events.info("Users requested", count=len(users))
    return UsersResponse(users=users, count=len(users))


@router.post(
    "/users",
    status_code=201,
    response_model=UserCreatedResponse,
    responses={400: {"model": ErrorResponse}},
)
async def create_user(
    payload: UserCreate | None = Body(default=None),
    events: EventLogger = Depends(get_event_logger),
) -> UserCreatedResponse | JSONResponse:
    payload = payload or UserCreate()
    if not payload.name or not payload.email:
        events.error("User creation failed", name=bool(payload.name), email=bool(payload.email))
        return JSONResponse(status_code=400, content={"error": "Name and email required"})

    user = User(id=time.time_ns() // 1_000_000, name=payload.name, email=payload.email)
    events.info("User created", user_id=user.id)
    return UserCreatedResponse(user=user)
