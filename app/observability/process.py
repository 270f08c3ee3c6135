from __future__ import annotations

import os
import resource
import sys
import time

from app.observability.metrics import MetricsRegistry


PROCESS_START_TIME = time.time()
_START_MONOTONIC = time.monotonic()

try:
    _PAGE_SIZE = os.sysconf("SC_PAGE_SIZE")
except (AttributeError, ValueError, OSError):
    _PAGE_SIZE = 4096


def uptime_seconds() -> float:
    return time.monotonic() - _START_MONOTONIC


def max_rss_bytes() -> int:
    peak = resource.getrusage(resource.RUSAGE_SELF).ru_maxrss
    # ru_maxrss is bytes on macOS, kilobytes elsewhere.
    return int(peak) if sys.platform == "darwin" else int(peak) * 1024


def rss_bytes() -> int:
    """Current resident set size, falling back to the peak when /proc is unavailable."""

    try:
        with open("/proc/self/statm", encoding="ascii") as fh:
            return int(fh.read().split()[1]) * _PAGE_SIZE
    except (OSError, ValueError, IndexError):
        return max_rss_bytes()


def memory_usage() -> dict[str, int]:
    return {"rss_bytes": rss_bytes(), "max_rss_bytes": max_rss_bytes()}


def register_process_metrics(registry: MetricsRegistry) -> None:
    registry.register_gauge(
        "process_start_time_seconds", "Start time of the process since unix epoch in seconds"
    ).set(PROCESS_START_TIME)
    registry.register_gauge("process_uptime_seconds", "Seconds since the process started").set_function(
        uptime_seconds
    )
    registry.register_gauge(
        "process_resident_memory_bytes", "Resident memory size in bytes"
    ).set_function(rss_bytes)
