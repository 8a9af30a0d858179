from __future__ import annotations

import asyncio
from datetime import datetime, timezone

import pytest

from jobsync.core.errors import PersistenceError
from jobsync.schemas.jobs import CanonicalJob, StoredJob
from jobsync.services.cache import ReadCache, StoreEvents
from jobsync.services.repository import RepositoryUnavailableError
from jobsync.services.store import InMemoryJobStore
from jobsync.services.upsert import UpsertEngine
from jobsync.sources.ethiojobs import EthioJobsSource
from jobsync.sources.job_boards import RemotiveSource


class FlakyStore(InMemoryJobStore):
    def __init__(self, failing_ids: set[str], **kwargs) -> None:
        super().__init__(**kwargs)
        self.failing_ids = failing_ids

    async def upsert_job(self, job: CanonicalJob) -> StoredJob:
        if job.source_id in self.failing_ids:
            raise RepositoryUnavailableError("connection lost")
        return await super().upsert_job(job)


def test_upsert_twice_creates_then_updates(clock, make_job) -> None:
    store = InMemoryJobStore(clock=clock)
    engine = UpsertEngine(store)

    async def run():
        first = await engine.upsert(make_job())
        second = await engine.upsert(make_job(title="Senior Program Officer"))
        return first, second, await store.count_jobs()

    first, second, count = asyncio.run(run())

    assert first.status == "created"
    assert second.status == "updated"
    assert count == 1
    assert second.job.id == first.job.id
    assert second.job.title == "Senior Program Officer"
    # Same clock reading on both writes, yet the update still reads as not-new.
    assert second.job.updated_at > second.job.created_at


def test_upsert_wraps_store_failures(clock, make_job) -> None:
    engine = UpsertEngine(FlakyStore({"4001"}, clock=clock))

    with pytest.raises(PersistenceError):
        asyncio.run(engine.upsert(make_job()))


def test_ingest_continues_past_bad_record(clock, static_source) -> None:
    rows = [{"id": str(index)} for index in range(10)]
    rows[5] = {"id": "5", "broken": True}
    source = static_source(rows)
    store = InMemoryJobStore(clock=clock)

    batch = asyncio.run(UpsertEngine(store).ingest(rows, source))

    assert batch.created == 9
    assert batch.updated == 0
    assert batch.errors == 1
    assert len(batch.created_jobs) == 9
    assert asyncio.run(store.count_jobs()) == 9


def test_ingest_counts_persistence_errors(clock, static_source) -> None:
    rows = [{"id": str(index)} for index in range(4)]
    store = FlakyStore({"2"}, clock=clock)

    batch = asyncio.run(UpsertEngine(store).ingest(rows, static_source(rows)))

    assert batch.created == 3
    assert batch.errors == 1


def test_ingest_reports_updates_on_second_run(clock, static_source) -> None:
    rows = [{"id": "a"}, {"id": "b"}]
    store = InMemoryJobStore(clock=clock)
    engine = UpsertEngine(store)
    source = static_source(rows)

    first = asyncio.run(engine.ingest(rows, source))
    clock.advance(minutes=5)
    second = asyncio.run(engine.ingest(rows, source))

    assert (first.created, first.updated) == (2, 0)
    assert (second.created, second.updated) == (0, 2)
    assert second.created_jobs == []


def test_batch_with_writes_invalidates_read_cache(clock, static_source) -> None:
    events = StoreEvents()
    cache = ReadCache()
    cache.bind(events)
    cache.set("job_counts", {"__total__": 0})
    rows = [{"id": "x"}]

    asyncio.run(UpsertEngine(InMemoryJobStore(clock=clock), events).ingest(rows, static_source(rows)))

    assert cache.get("job_counts") is None
    assert cache.stats()["invalidations"] == 1


def test_batch_without_writes_leaves_cache_alone(clock, static_source) -> None:
    events = StoreEvents()
    cache = ReadCache()
    cache.bind(events)
    cache.set("job_counts", {"__total__": 3})
    rows = [{"id": "x", "broken": True}]

    asyncio.run(UpsertEngine(InMemoryJobStore(clock=clock), events).ingest(rows, static_source(rows)))

    assert cache.get("job_counts") == {"__total__": 3}


def test_scraped_listing_keeps_its_key_across_runs(clock) -> None:
    source = EthioJobsSource(None)  # type: ignore[arg-type]
    raw = {
        "index": 3,
        "title": "Monitoring and Evaluation Officer",
        "organization": "Health Partners",
        "location": "Hawassa",
        "category": None,
        "url": "/job/me-officer",
    }
    store = InMemoryJobStore(clock=clock)
    engine = UpsertEngine(store)

    source.begin_run(datetime(2026, 3, 1, 8, tzinfo=timezone.utc))
    first = asyncio.run(engine.ingest([raw], source))
    source.begin_run(datetime(2026, 3, 1, 14, tzinfo=timezone.utc))
    second = asyncio.run(engine.ingest([dict(raw, index=0)], source))

    assert first.created == 1
    assert second.created == 0
    assert second.updated == 1
    assert asyncio.run(store.count_jobs("ethiojobs")) == 1


def test_ingest_contains_unexpected_transform_crash(clock, static_source) -> None:
    events = StoreEvents()
    cache = ReadCache()
    cache.bind(events)
    cache.set("job_counts", {"__total__": 0})
    # The middle row has no id, so the adapter raises KeyError rather than a pipeline error.
    rows = [{"id": "first"}, {"title": "Listing without id"}, {"id": "last"}]

    batch = asyncio.run(UpsertEngine(InMemoryJobStore(clock=clock), events).ingest(rows, static_source(rows)))

    assert (batch.created, batch.errors) == (2, 1)
    assert [job.source_id for job in batch.created_jobs] == ["first", "last"]
    assert cache.get("job_counts") is None


def test_ingest_survives_absurd_upstream_timestamp(clock) -> None:
    source = RemotiveSource(None)  # type: ignore[arg-type]
    source.begin_run(clock())
    rows = [
        {"id": 1, "title": "Data Analyst", "url": "https://remotive.com/remote-jobs/data/1"},
        {"id": 2, "title": "QA Engineer", "url": "https://remotive.com/remote-jobs/qa/2", "publication_date": "9" * 400},
        {"id": 3, "title": "Support Lead", "url": "https://remotive.com/remote-jobs/support/3"},
    ]

    batch = asyncio.run(UpsertEngine(InMemoryJobStore(clock=clock)).ingest(rows, source))

    assert (batch.created, batch.errors) == (3, 0)
    assert batch.created_jobs[1].posted_date == clock()
