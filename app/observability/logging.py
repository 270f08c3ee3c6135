from __future__ import annotations

import logging
import sys
from typing import Any, TextIO

import structlog


_CONFIGURED = False

_SERVER_LOGGERS = ("uvicorn", "uvicorn.error", "uvicorn.access")

EVENT_TIMESTAMP_KEY = "event_timestamp"


def use_event_timestamp(_: Any, __: str, event_dict: dict[str, Any]) -> dict[str, Any]:
    """Replace the render-time timestamp with the one the event was created with."""
    stamped = event_dict.pop(EVENT_TIMESTAMP_KEY, None)
    if stamped is not None:
        event_dict["timestamp"] = stamped
    return event_dict


def configure_logging(level: int = logging.INFO, stream: TextIO | None = None) -> None:
    """Route structlog and stdlib logging to one JSON-lines handler.

    Events from the console sink, pipeline diagnostics (`logging.getLogger`)
    and uvicorn's own loggers all end up as one JSON object per line.
    Safe to call multiple times (no-op after first call).
    """

    global _CONFIGURED
    if _CONFIGURED:
        return

    pre_chain: list[Any] = [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_logger_name,
        structlog.processors.add_log_level,
        structlog.processors.TimeStamper(fmt="iso", utc=True),
        use_event_timestamp,
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
    ]

    structlog.configure(
        processors=[
            structlog.stdlib.filter_by_level,
            *pre_chain,
            structlog.stdlib.ProcessorFormatter.wrap_for_formatter,
        ],
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )

    # stdlib records carry their fields in `extra=`.
    formatter = structlog.stdlib.ProcessorFormatter(
        processor=structlog.processors.JSONRenderer(),
        foreign_pre_chain=[structlog.stdlib.ExtraAdder(), *pre_chain],
    )

    handler = logging.StreamHandler(stream or sys.stdout)
    handler.setFormatter(formatter)

    root = logging.getLogger()
    root.handlers = [handler]
    root.setLevel(level)

    for name in _SERVER_LOGGERS:
        logger = logging.getLogger(name)
        logger.handlers = [handler]
        logger.propagate = False
        logger.setLevel(level)

    _CONFIGURED = True
