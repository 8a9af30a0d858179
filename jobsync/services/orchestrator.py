"""Per-source scheduling and the fetch -> ingest -> cleanup -> notify pipeline.

Each registered source moves Idle -> Running -> Idle. Different sources may
run concurrently; a source never overlaps itself. The orchestrator owns the
last-run map, and every time comparison goes through the injected clock.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from datetime import datetime, timedelta

from opentelemetry import trace

from jobsync.core.errors import UnknownSourceError
from jobsync.core.telemetry import record_cleanup, record_sync_run
from jobsync.schemas.sync import CleanupStats, OrchestratorStatus, SourceStatus, SyncRun
from jobsync.services.cache import ReadCache
from jobsync.services.cleanup import CleanupSweeper
from jobsync.services.notifications import NotificationFanout
from jobsync.services.repository import RepositoryError
from jobsync.services.store import Clock, JobStore, utc_now
from jobsync.services.upsert import UpsertEngine
from jobsync.sources.base import SourceAdapter

logger = logging.getLogger(__name__)
tracer = trace.get_tracer(__name__)

JOB_COUNTS_CACHE_KEY = "job_counts"
TOTAL_COUNT_KEY = "__total__"


@dataclass(slots=True)
class SourceRegistration:
    adapter: SourceAdapter
    interval_seconds: float
    enabled: bool = True


class SyncOrchestrator:
    def __init__(
        self,
        store: JobStore,
        engine: UpsertEngine,
        *,
        sweeper: CleanupSweeper | None = None,
        fanout: NotificationFanout | None = None,
        cleanup_after_sync: bool = True,
        cache: ReadCache | None = None,
        clock: Clock = utc_now,
    ) -> None:
        self.store = store
        self.engine = engine
        self.sweeper = sweeper
        self.fanout = fanout
        self.cleanup_after_sync = cleanup_after_sync
        self.cache = cache
        self.clock = clock
        self._registrations: dict[str, SourceRegistration] = {}
        self._last_run_at: dict[str, datetime] = {}
        self._last_results: dict[str, SyncRun] = {}
        self._running: set[str] = set()

    def register(self, adapter: SourceAdapter, *, interval_seconds: float, enabled: bool = True) -> None:
        self._registrations[adapter.name] = SourceRegistration(
            adapter=adapter,
            interval_seconds=interval_seconds,
            enabled=enabled,
        )

    @property
    def sources(self) -> list[str]:
        return list(self._registrations)

    def registration(self, source: str) -> SourceRegistration:
        try:
            return self._registrations[source]
        except KeyError:
            raise UnknownSourceError(f"unknown source: {source}") from None

    def last_run_at(self, source: str) -> datetime | None:
        self.registration(source)
        return self._last_run_at.get(source)

    def set_last_run_at(self, source: str, at: datetime) -> None:
        self.registration(source)
        self._last_run_at[source] = at

    def reset_last_run(self, source: str) -> None:
        self.registration(source)
        self._last_run_at.pop(source, None)

    def last_result(self, source: str) -> SyncRun | None:
        return self._last_results.get(source)

    def next_eligible_at(self, source: str) -> datetime | None:
        """None means the source has never run and is eligible now."""
        registration = self.registration(source)
        last = self._last_run_at.get(source)
        if last is None:
            return None
        return last + timedelta(seconds=registration.interval_seconds)

    def is_due(self, source: str, now: datetime | None = None) -> bool:
        eligible_at = self.next_eligible_at(source)
        if eligible_at is None:
            return True
        return (now or self.clock()) >= eligible_at

    def is_running(self, source: str) -> bool:
        return source in self._running

    async def run_source(self, source: str) -> SyncRun | None:
        """Run one source now; returns None when that source is already running."""
        registration = self.registration(source)
        if source in self._running:
            logger.info("sync already running; skipping source=%s", source)
            return None

        self._running.add(source)
        started_at = self.clock()
        try:
            with tracer.start_as_current_span("sync.run_source") as span:
                span.set_attribute("sync.source", source)
                try:
                    run = await self._run_pipeline(registration.adapter, started_at)
                except Exception as exc:
                    logger.exception("sync failed unexpectedly source=%s", source)
                    run = SyncRun(
                        source=source,
                        started_at=started_at,
                        finished_at=self.clock(),
                        success=False,
                        error_message=f"{type(exc).__name__}: {exc}",
                    )
                record_sync_run(span, run)
        finally:
            self._last_run_at[source] = started_at
            self._running.discard(source)

        self._last_results[source] = run
        return run

    async def _run_pipeline(self, adapter: SourceAdapter, started_at: datetime) -> SyncRun:
        adapter.begin_run(started_at)
        fetched = await adapter.fetch()
        if not fetched.ok:
            logger.error("sync fetch failed source=%s attempts=%s error=%s", adapter.name, fetched.attempts, fetched.error)
            return SyncRun(
                source=adapter.name,
                started_at=started_at,
                finished_at=self.clock(),
                success=False,
                error_message=str(fetched.error),
            )

        listings = fetched.value or []
        batch = await self.engine.ingest(listings, adapter)
        run = SyncRun(
            source=adapter.name,
            started_at=started_at,
            fetched=len(listings),
            created=batch.created,
            updated=batch.updated,
            errors=batch.errors,
        )

        if self.sweeper is not None and self.cleanup_after_sync:
            cleanup = await self.run_cleanup()
            run.deleted = cleanup.total

        # Listings that arrive already closed were just swept; never alert on them.
        now = self.clock()
        open_jobs = [job for job in batch.created_jobs if job.closing_date is None or job.closing_date > now]
        if self.fanout is not None and open_jobs:
            try:
                await self.fanout.notify_new_jobs(open_jobs)
            except Exception:
                # Jobs are already stored; a notification failure does not fail the sync.
                logger.exception("notification fan-out failed source=%s", adapter.name)

        run.finished_at = self.clock()
        logger.info(
            "sync finished source=%s fetched=%s created=%s updated=%s errors=%s deleted=%s",
            adapter.name,
            run.fetched,
            run.created,
            run.updated,
            run.errors,
            run.deleted,
        )
        return run

    async def run_due_sources(self) -> list[SyncRun]:
        now = self.clock()
        due = [
            name
            for name, registration in self._registrations.items()
            if registration.enabled and name not in self._running and self.is_due(name, now)
        ]
        if not due:
            return []
        results = await asyncio.gather(*(self.run_source(name) for name in due))
        return [run for run in results if run is not None]

    async def force_sync(self, source: str) -> SyncRun | None:
        self.reset_last_run(source)
        return await self.run_source(source)

    async def run_cleanup(self) -> CleanupStats:
        if self.sweeper is None:
            return CleanupStats(success=False, error_message="cleanup sweeper not configured")
        with tracer.start_as_current_span("sync.cleanup") as span:
            stats = await self.sweeper.sweep()
            record_cleanup(span, stats)
        return stats

    async def job_counts(self) -> dict[str, int]:
        """Total and per-source row counts, served from the read cache when warm."""
        if self.cache is not None:
            cached = self.cache.get(JOB_COUNTS_CACHE_KEY)
            if cached is not None:
                return cached
        try:
            counts = {TOTAL_COUNT_KEY: await self.store.count_jobs()}
            for name in self._registrations:
                counts[name] = await self.store.count_jobs(name)
        except RepositoryError as exc:
            logger.warning("job counts unavailable error=%s", exc)
            return {}
        if self.cache is not None:
            self.cache.set(JOB_COUNTS_CACHE_KEY, counts)
        return counts

    async def status(self) -> OrchestratorStatus:
        counts = await self.job_counts()
        sources: dict[str, SourceStatus] = {}
        for name, registration in self._registrations.items():
            sources[name] = SourceStatus(
                source=name,
                enabled=registration.enabled,
                count=counts.get(name, 0),
                interval_seconds=registration.interval_seconds,
                running=name in self._running,
                last_run_at=self._last_run_at.get(name),
                next_eligible_at=self.next_eligible_at(name),
                last_run=self._last_results.get(name),
            )
        return OrchestratorStatus(total=counts.get(TOTAL_COUNT_KEY, 0), sources=sources)
