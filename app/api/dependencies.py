from __future__ import annotations

from fastapi import Request

from app.observability.events import EventLogger
from app.observability.metrics import AppMetrics, MetricsRegistry
from app.observability.middleware import RequestTally
from app.services.chaos import FailurePolicy


def get_registry(request: Request) -> MetricsRegistry:
    return request.app.state.registry


def get_app_metrics(request: Request) -> AppMetrics:
    return request.app.state.app_metrics


def get_event_logger(request: Request) -> EventLogger:
    return request.app.state.events


def get_request_tally(request: Request) -> RequestTally:
    return request.app.state.request_tally


def get_error_policy(request: Request) -> FailurePolicy:
    return request.app.state.error_policy
