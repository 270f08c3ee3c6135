from __future__ import annotations

import json
import logging
import queue
import threading
from typing import Any

import httpx

from app.observability.events import Event


logger = logging.getLogger(__name__)

PUSH_PATH = "/loki/api/v1/push"

_STOP = object()


def build_push_payload(events: list[Event], labels: dict[str, str]) -> dict[str, Any]:
    """Group events into one Loki stream per level, values in call order."""

    streams: dict[str, list[list[str]]] = {}
    for event in events:
        line = json.dumps(event.to_dict(), ensure_ascii=False, default=str)
        streams.setdefault(event.level.value, []).append([str(event.timestamp_ns), line])

    return {
        "streams": [
            {"stream": {**labels, "level": level}, "values": values}
            for level, values in streams.items()
        ]
    }


class LokiSink:
    """Fire-and-forget sink that ships events to Grafana Loki.

    `emit` only enqueues; a daemon thread drains the queue and pushes batches.
    Failed pushes are dropped and reported once until a push succeeds again.
    """

    name = "loki"

    def __init__(
        self,
        url: str,
        labels: dict[str, str] | None = None,
        *,
        timeout: float = 2.0,
        batch_size: int = 100,
        max_queue: int = 10_000,
        client: httpx.Client | None = None,
    ) -> None:
        self.push_url = url.rstrip("/") + PUSH_PATH
        self.labels = dict(labels or {})
        self.batch_size = max(1, batch_size)
        self._client = client or httpx.Client(timeout=timeout)
        self._owns_client = client is None
        self._timeout = timeout
        self._queue: queue.Queue[Any] = queue.Queue(maxsize=max_queue)
        self._push_failing = False
        self._dropping = False
        self._closed = False
        self.sent = 0
        self.dropped = 0
        self._worker = threading.Thread(target=self._run, name="loki-sink", daemon=True)
        self._worker.start()

    def emit(self, event: Event) -> None:
        if self._closed:
            return
        try:
            self._queue.put_nowait(event)
        except queue.Full:
            self.dropped += 1
            if not self._dropping:
                self._dropping = True
                logger.warning("loki.queue_full", extra={"max_queue": self._queue.maxsize})
            return
        self._dropping = False

    def close(self, timeout: float | None = None) -> None:
        if self._closed:
            return
        self._closed = True
        self._queue.put(_STOP)
        self._worker.join(timeout if timeout is not None else self._timeout * 2 + 1)
        if self._owns_client:
            self._client.close()

    def _run(self) -> None:
        while True:
            item = self._queue.get()
            if item is _STOP:
                return
            batch: list[Event] = [item]
            stop = False
            while len(batch) < self.batch_size:
                try:
                    item = self._queue.get_nowait()
                except queue.Empty:
                    break
                if item is _STOP:
                    stop = True
                    break
                batch.append(item)
            self._push(batch)
            if stop:
                return

    def _push(self, batch: list[Event]) -> None:
        try:
            response = self._client.post(self.push_url, json=build_push_payload(batch, self.labels))
            response.raise_for_status()
        except Exception as exc:
            self.dropped += len(batch)
            if not self._push_failing:
                self._push_failing = True
                logger.warning(
                    "loki.push_failed",
                    extra={"url": self.push_url, "error": str(exc), "events": len(batch)},
                )
            return

        self.sent += len(batch)
        if self._push_failing:
            self._push_failing = False
            logger.info("loki.push_recovered", extra={"url": self.push_url})
