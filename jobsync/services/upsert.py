from __future__ import annotations

import logging
from collections.abc import Iterable
from dataclasses import dataclass, field

from jobsync.core.errors import PersistenceError, RecordTransformError
from jobsync.schemas.jobs import CanonicalJob, StoredJob, UpsertStatus
from jobsync.services.cache import StoreEvents
from jobsync.services.repository import RepositoryError
from jobsync.services.store import JobStore
from jobsync.sources.base import RawListing, SourceAdapter

logger = logging.getLogger(__name__)


@dataclass(slots=True)
class UpsertOutcome:
    status: UpsertStatus
    job: StoredJob


@dataclass(slots=True)
class BatchResult:
    created_jobs: list[StoredJob] = field(default_factory=list)
    created: int = 0
    updated: int = 0
    errors: int = 0

    @property
    def written(self) -> int:
        return self.created + self.updated


class UpsertEngine:
    """Find-or-create-and-replace keyed on ``(source, source_id)``."""

    def __init__(self, store: JobStore, events: StoreEvents | None = None) -> None:
        self.store = store
        self.events = events

    async def upsert(self, job: CanonicalJob) -> UpsertOutcome:
        try:
            stored = await self.store.upsert_job(job)
        except (RepositoryError, OSError) as exc:
            raise PersistenceError(f"upsert failed for {job.source}/{job.source_id}: {exc}") from exc
        return UpsertOutcome(status="created" if stored.is_new else "updated", job=stored)

    async def ingest(self, raw_listings: Iterable[RawListing], adapter: SourceAdapter) -> BatchResult:
        batch = BatchResult()
        for position, raw in enumerate(raw_listings):
            try:
                job = adapter.transform(raw)
            except RecordTransformError as exc:
                batch.errors += 1
                logger.warning("record skipped source=%s position=%s error=%s", adapter.name, position, exc)
                continue
            except Exception:
                # One odd upstream record must not cost its siblings.
                batch.errors += 1
                logger.exception("record transform crashed source=%s position=%s", adapter.name, position)
                continue

            try:
                outcome = await self.upsert(job)
            except PersistenceError as exc:
                batch.errors += 1
                logger.error("record not stored source=%s position=%s error=%s", adapter.name, position, exc)
                continue

            if outcome.status == "created":
                batch.created += 1
                batch.created_jobs.append(outcome.job)
            else:
                batch.updated += 1

        if batch.written and self.events is not None:
            self.events.publish(f"upsert:{adapter.name}")
        logger.info(
            "batch ingested source=%s created=%s updated=%s errors=%s",
            adapter.name,
            batch.created,
            batch.updated,
            batch.errors,
        )
        return batch
