"""
chorus.services.contest_rotation — Background Contest Rotation
===============================================================

An asyncio task that, every ``interval`` seconds, ends the ACTIVE contest
once its end time has passed and opens the next round, then sweeps
overdue rewards and archives old contests.  The database work runs on a
worker thread via :func:`~chorus.database.engine.run_db`.

Several processes may run the loop at once; the lifecycle lock and the
single-ACTIVE constraint make the extra callers no-ops.
"""

from __future__ import annotations

import asyncio
import logging

from chorus.database.engine import run_db
from chorus.errors import LockUnavailable
from chorus.services.contest_service import ContestManager

logger = logging.getLogger(__name__)


class ContestRotation:
    def __init__(self, contests: ContestManager, interval: float = 60) -> None:
        self.contests = contests
        self.interval = interval
        self._task: asyncio.Task | None = None

    async def run_once(self) -> dict:
        """One rotation tick.  Returns a summary for logging and tests."""
        summary = {"started": None, "expired": 0, "archived": 0}
        try:
            contest = await run_db(self.contests.rotate)
        except LockUnavailable:
            logger.warning("Contest rotation skipped: lifecycle lock busy")
            contest = None
        if contest is not None:
            summary["started"] = contest.id
        summary["expired"] = await run_db(self.contests.expire_stale_rewards)
        summary["archived"] = await run_db(self.contests.archive_old_contests)
        return summary

    def start(self, loop: asyncio.AbstractEventLoop | None = None) -> None:
        """Start the background loop (no-op if already running)."""
        if self._task is not None:
            return

        async def _rotation_loop() -> None:
            while True:
                try:
                    await self.run_once()
                except Exception:
                    logger.exception("Contest rotation error")
                await asyncio.sleep(self.interval)

        loop = loop or asyncio.get_running_loop()
        self._task = loop.create_task(_rotation_loop(), name="contest-rotation")
        logger.info("Contest rotation started (every %ss)", self.interval)

    def stop(self) -> None:
        """Cancel the loop task."""
        if self._task:
            self._task.cancel()
            self._task = None
