from __future__ import annotations

import logging
from collections.abc import Awaitable
from datetime import timedelta

from jobsync.schemas.sync import CleanupStats
from jobsync.services.cache import StoreEvents
from jobsync.services.repository import RepositoryError
from jobsync.services.store import Clock, JobStore, utc_now

logger = logging.getLogger(__name__)


class CleanupSweeper:
    """Removes listings past their closing date, and undated ones nobody refreshed."""

    def __init__(
        self,
        store: JobStore,
        *,
        stale_after_days: int = 30,
        events: StoreEvents | None = None,
        clock: Clock = utc_now,
    ) -> None:
        self.store = store
        self.stale_after_days = stale_after_days
        self.events = events
        self.clock = clock

    async def sweep(self) -> CleanupStats:
        now = self.clock()
        errors: list[str] = []
        expired = await self._delete("expired", self.store.delete_expired(now), errors)
        stale = await self._delete(
            "stale", self.store.delete_stale(now - timedelta(days=self.stale_after_days)), errors
        )

        stats = CleanupStats(
            expired=expired,
            stale=stale,
            total=expired + stale,
            success=not errors,
            error_message="; ".join(errors) or None,
        )
        # Whatever was removed must invalidate readers, even if the other delete failed.
        if stats.total and self.events is not None:
            self.events.publish("cleanup")
        logger.info(
            "cleanup sweep expired=%s stale=%s total=%s success=%s", expired, stale, stats.total, stats.success
        )
        return stats

    async def _delete(self, kind: str, operation: Awaitable[int], errors: list[str]) -> int:
        try:
            return await operation
        except (RepositoryError, OSError) as exc:
            logger.error("cleanup delete failed kind=%s error=%s", kind, exc)
            errors.append(f"{kind}: {exc}")
            return 0
