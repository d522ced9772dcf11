"""Recurring auto check.

This module provides:
- AutoChecker: Runs an auto check cycle at a fixed interval
"""

from __future__ import annotations

import asyncio
import logging
from typing import TYPE_CHECKING

from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.interval import IntervalTrigger

from cardsync.client.sync.types import Status

if TYPE_CHECKING:
    from cardsync.client.sync.orchestrator import SyncOrchestrator

logger = logging.getLogger(__name__)

JOB_ID = "auto_check"
DEFAULT_COOLDOWN = 5.0  # seconds to wait after a failed cycle


class AutoChecker:
    """Runs the orchestrator's auto cycle on an interval.

    The job is paused while a cycle runs and rescheduled afterwards, so the
    interval is measured from the end of one cycle to the start of the next.
    Ticks falling on a running check or copy are skipped.
    """

    def __init__(
        self,
        orchestrator: SyncOrchestrator,
        interval: float,
        cooldown: float = DEFAULT_COOLDOWN,
    ) -> None:
        """Initialize the auto checker.

        Args:
            orchestrator: Orchestrator to run cycles on.
            interval: Seconds between cycles.
            cooldown: Seconds to wait after a failed cycle.
        """
        self._orchestrator = orchestrator
        self._interval = interval
        self._cooldown = cooldown
        self._scheduler: AsyncIOScheduler | None = None

    @property
    def running(self) -> bool:
        """Check if the auto check is active."""
        return self._scheduler is not None

    def start(self) -> None:
        """Start the auto check. Must be called from the running event loop."""
        if self._scheduler is not None:
            self._reschedule()
            return  # Already running

        self._scheduler = AsyncIOScheduler(event_loop=asyncio.get_running_loop())
        self._scheduler.add_job(
            self.tick,
            trigger=IntervalTrigger(seconds=self._interval),
            id=JOB_ID,
            name="Auto check",
            max_instances=1,
            coalesce=True,
            replace_existing=True,
        )
        self._scheduler.start()
        self._orchestrator.status = Status.WAITING_AUTO_CHECK
        logger.info(f"Auto check started (every {self._interval:.0f}s)")

    def stop(self) -> None:
        """Stop the auto check."""
        if self._scheduler is not None:
            self._scheduler.shutdown(wait=False)
            self._scheduler = None
            logger.info("Auto check stopped")

    async def tick(self) -> None:
        """Job function for one auto check cycle."""
        if self._orchestrator.is_busy:
            logger.debug("Auto check skipped: operation in progress")
            return

        if self._scheduler is not None:
            self._scheduler.pause_job(JOB_ID)

        try:
            completed = await self._orchestrator.run_auto_cycle()
        except Exception:
            logger.exception("Error during auto check")
            completed = False

        if not completed:
            await asyncio.sleep(self._cooldown)

        if self.running:
            self._reschedule()
            self._orchestrator.status = Status.WAITING_AUTO_CHECK

    def _reschedule(self) -> None:
        if self._scheduler is None:
            return
        self._scheduler.reschedule_job(JOB_ID, trigger=IntervalTrigger(seconds=self._interval))
