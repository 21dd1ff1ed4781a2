"""Periodic removal of artifacts older than the retention window."""

from __future__ import annotations

import asyncio
import logging
from contextlib import suppress
from datetime import datetime, timedelta, timezone
from typing import Optional

from .storage import StorageManager

logger = logging.getLogger(__name__)


class RetentionSweeper:
    def __init__(
        self,
        storage: StorageManager,
        retention: timedelta = timedelta(minutes=30),
        interval: timedelta = timedelta(minutes=10),
    ) -> None:
        self.storage = storage
        self.retention = retention
        self.interval = interval
        self.last_run: Optional[datetime] = None
        self.last_deleted = 0
        self._task: Optional[asyncio.Task[None]] = None

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    def start(self) -> None:
        if self.running:
            return
        self._task = asyncio.create_task(self._periodic_cleanup_loop())
        logger.info(
            "Retention sweeper started (interval=%ss, retention=%ss)",
            self.interval.total_seconds(),
            self.retention.total_seconds(),
        )

    async def stop(self) -> None:
        if self._task:
            self._task.cancel()
            with suppress(asyncio.CancelledError):
                await self._task
            self._task = None
            logger.info("Retention sweeper stopped")

    async def sweep(self, now: Optional[datetime] = None) -> int:
        """Delete every artifact last modified before ``now - retention``.

        Returns the number of files removed. Never raises: a failed sweep is
        logged and reports whatever it managed to delete before failing.
        """

        now = now or datetime.now(timezone.utc)
        cutoff = now - self.retention
        deleted = 0
        try:
            artifacts = await asyncio.to_thread(self.storage.list_with_age)
            for artifact in artifacts:
                if artifact.modified_at < cutoff:
                    if await asyncio.to_thread(self.storage.delete, artifact.path):
                        deleted += 1
        except Exception:
            logger.exception("Error during cleanup of expired files")

        self.last_run = now
        self.last_deleted = deleted
        if deleted:
            logger.info("Cleaned up %d expired files", deleted)
        return deleted

    async def _periodic_cleanup_loop(self) -> None:
        interval = self.interval.total_seconds()
        try:
            while True:
                await asyncio.sleep(interval)
                await self.sweep()
        except asyncio.CancelledError:
            return
