from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass

from app.observability.events import EventLogger
from app.services.chaos import FailurePolicy

DEFAULT_TASKS = ("backup", "cleanup", "sync")

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class BackgroundTaskRun:
    task: str
    failed: bool


class BackgroundTaskScheduler:
    """Periodically simulates maintenance work and reports it as events.

    Ticks only emit events; they never touch the metrics registry.
    """

    def __init__(
        self,
        events: EventLogger,
        policy: FailurePolicy,
        interval_seconds: float = 30.0,
        tasks: tuple[str, ...] = DEFAULT_TASKS,
    ) -> None:
        if interval_seconds < 0:
            raise ValueError("interval_seconds must be >= 0")
        if not tasks:
            raise ValueError("At least one task name is required")
        self.events = events
        self.policy = policy
        self.interval_seconds = interval_seconds
        self.tasks = tuple(tasks)
        self.ticks = 0
        self._task: asyncio.Task[None] | None = None

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    def tick(self) -> BackgroundTaskRun:
        run = BackgroundTaskRun(task=self.policy.choose(self.tasks), failed=self.policy.should_fail())
        if run.failed:
            self.events.error("Background task failed", task=run.task)
        else:
            self.events.info("Background task completed", task=run.task)
        return run

    async def run(self, max_ticks: int | None = None) -> None:
        """Tick every `interval_seconds` until cancelled (or `max_ticks` attempts)."""

        attempts = 0
        while max_ticks is None or attempts < max_ticks:
            await asyncio.sleep(self.interval_seconds)
            attempts += 1
            try:
                self.tick()
            except Exception:
                logger.exception("background_tasks.tick_failed", extra={"attempt": attempts})
                continue
            self.ticks += 1

    def start(self) -> asyncio.Task[None]:
        if self.running:
            assert self._task is not None
            return self._task
        self._task = asyncio.get_running_loop().create_task(self.run(), name="background-task-scheduler")
        logger.info("background_tasks.started", extra={"interval_seconds": self.interval_seconds})
        return self._task

    async def stop(self) -> None:
        task, self._task = self._task, None
        if task is None:
            return
        task.cancel()
        try:
            await task
        except asyncio.CancelledError:
            pass
        logger.info("background_tasks.stopped", extra={"ticks": self.ticks})
