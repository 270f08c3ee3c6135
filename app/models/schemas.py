from __future__ import annotations

from datetime import datetime

from pydantic import BaseModel


class MemoryUsage(BaseModel):
    rss_bytes: int
    max_rss_bytes: int


class HealthResponse(BaseModel):
    status: str = "OK"
    uptime_seconds: float
    memory: MemoryUsage
    timestamp: datetime


class User(BaseModel):
    id: int
    name: str
    email: str


class UserCreate(BaseModel):
    name: str | None = None
    email: str | None = None


class UsersResponse(BaseModel):
    users: list[User]
    count: int


class UserCreatedResponse(BaseModel):
    user: User


class ErrorResponse(BaseModel):
    error: str
    path: str | None = None


class MessageResponse(BaseModel):
    message: str
