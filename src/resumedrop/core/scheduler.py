from __future__ import annotations

import asyncio
import logging
from datetime import UTC, datetime, timedelta
from typing import Any

from resumedrop.config import Settings, get_settings
from resumedrop.core.orchestrator import BatchOrchestrator

logger = logging.getLogger(__name__)


class AutomationScheduler:
    """Fires ``orchestrator.run()`` every ``automation_interval_minutes``.

    Each tick starts the run as its own task and does not wait for it, so a slow run overlapping
    the next tick is rejected by the orchestrator's run guard.
    """

    def __init__(self, orchestrator: BatchOrchestrator, settings: Settings | None = None):
        self.orchestrator = orchestrator
        self.settings = settings or get_settings()
        self.interval_sec = self.settings.automation_interval_minutes * 60
        self.next_run_at: datetime | None = None
        self._task: asyncio.Task[None] | None = None
        self._runs: set[asyncio.Task[Any]] = set()

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    def start(self) -> None:
        if self.running:
            return
        self._task = asyncio.get_running_loop().create_task(self._loop(), name="email-automation-scheduler")
        logger.info("Email automation scheduled every %s minute(s)", self.settings.automation_interval_minutes)

    async def stop(self) -> None:
        tasks = [task for task in [self._task, *self._runs] if task is not None]
        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)
        self._task = None
        self._runs.clear()
        self.next_run_at = None
        logger.info("Email automation scheduler stopped")

    def trigger(self) -> asyncio.Task[Any]:
        task = asyncio.get_running_loop().create_task(self.orchestrator.run())
        self._runs.add(task)
        task.add_done_callback(self._runs.discard)
        return task

    async def _loop(self) -> None:
        delay = self.settings.automation_initial_delay_sec
        while True:
            self.next_run_at = datetime.now(UTC) + timedelta(seconds=delay)
            await asyncio.sleep(delay)
            self.trigger()
            delay = self.interval_sec

    def status(self) -> dict[str, Any]:
        return {
            "scheduled": self.running,
            "interval_minutes": self.settings.automation_interval_minutes,
            "next_run_at": self.next_run_at.isoformat() if self.next_run_at else None,
        }
