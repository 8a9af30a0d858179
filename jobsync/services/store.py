from __future__ import annotations

from collections.abc import Callable
from datetime import datetime, timedelta, timezone
from typing import Protocol
from uuid import uuid4

from jobsync.schemas.alerts import AlertFrequency, AlertSubscription, Device
from jobsync.schemas.jobs import CanonicalJob, StoredJob

Clock = Callable[[], datetime]
_TICK = timedelta(microseconds=1)


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


class JobStore(Protocol):
    async def upsert_job(self, job: CanonicalJob) -> StoredJob: ...

    async def find_job(self, source: str, source_id: str) -> StoredJob | None: ...

    async def delete_expired(self, now: datetime) -> int: ...

    async def delete_stale(self, created_before: datetime) -> int: ...

    async def count_jobs(self, source: str | None = None) -> int: ...

    async def list_jobs_created_since(self, since: datetime) -> list[StoredJob]: ...

    async def list_active_subscriptions(self, frequency: AlertFrequency | None = None) -> list[AlertSubscription]: ...

    async def mark_subscription_notified(self, subscription_id: str, at: datetime) -> None: ...

    async def get_device(self, push_token: str) -> Device | None: ...

    async def deactivate_device(self, push_token: str) -> None: ...

    async def close(self) -> None: ...


class InMemoryJobStore:
    """Dict-backed store for tests and local runs without Postgres."""

    def __init__(self, *, clock: Clock = utc_now) -> None:
        self.clock = clock
        self.jobs: dict[tuple[str, str], StoredJob] = {}
        self.subscriptions: dict[str, AlertSubscription] = {}
        self.devices: dict[str, Device] = {}

    async def upsert_job(self, job: CanonicalJob) -> StoredJob:
        now = self.clock()
        existing = self.jobs.get(job.dedup_key)
        if existing is None:
            stored = StoredJob(**job.model_dump(), id=str(uuid4()), created_at=now, updated_at=now)
        else:
            # updated_at must differ from created_at or the row reads as new.
            stored = StoredJob(
                **job.model_dump(),
                id=existing.id,
                created_at=existing.created_at,
                updated_at=max(now, existing.created_at + _TICK),
            )
        self.jobs[job.dedup_key] = stored
        return stored

    async def find_job(self, source: str, source_id: str) -> StoredJob | None:
        return self.jobs.get((source, source_id))

    async def delete_expired(self, now: datetime) -> int:
        doomed = [key for key, job in self.jobs.items() if job.closing_date is not None and job.closing_date < now]
        for key in doomed:
            del self.jobs[key]
        return len(doomed)

    async def delete_stale(self, created_before: datetime) -> int:
        doomed = [
            key
            for key, job in self.jobs.items()
            if job.closing_date is None and job.created_at < created_before
        ]
        for key in doomed:
            del self.jobs[key]
        return len(doomed)

    async def count_jobs(self, source: str | None = None) -> int:
        if source is None:
            return len(self.jobs)
        return sum(1 for job in self.jobs.values() if job.source == source)

    async def list_jobs_created_since(self, since: datetime) -> list[StoredJob]:
        jobs = [job for job in self.jobs.values() if job.created_at >= since]
        return sorted(jobs, key=lambda job: job.created_at)

    def add_subscription(self, subscription: AlertSubscription) -> AlertSubscription:
        self.subscriptions[subscription.id] = subscription
        return subscription

    def add_device(self, device: Device) -> Device:
        self.devices[device.push_token] = device
        return device

    async def list_active_subscriptions(self, frequency: AlertFrequency | None = None) -> list[AlertSubscription]:
        return [
            sub
            for sub in self.subscriptions.values()
            if sub.is_active and (frequency is None or sub.frequency == frequency)
        ]

    async def mark_subscription_notified(self, subscription_id: str, at: datetime) -> None:
        sub = self.subscriptions.get(subscription_id)
        if sub is None:
            return
        self.subscriptions[subscription_id] = sub.model_copy(
            update={"last_notified_at": at, "notification_count": sub.notification_count + 1}
        )

    async def get_device(self, push_token: str) -> Device | None:
        return self.devices.get(push_token)

    async def deactivate_device(self, push_token: str) -> None:
        device = self.devices.get(push_token)
        if device is not None:
            self.devices[push_token] = device.model_copy(update={"is_active": False})

    async def close(self) -> None:
        return None
