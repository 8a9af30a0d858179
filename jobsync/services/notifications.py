from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import timedelta

import httpx

from jobsync.schemas.alerts import AlertFrequency, AlertSubscription, PushMessage, PushTicket
from jobsync.schemas.jobs import StoredJob
from jobsync.schemas.sync import NotificationStats
from jobsync.services.matching import subscription_matches
from jobsync.services.push_client import ExpoPushClient
from jobsync.services.repository import RepositoryError
from jobsync.services.store import Clock, JobStore, utc_now

logger = logging.getLogger(__name__)

DIGEST_WINDOWS: dict[str, timedelta] = {
    "daily": timedelta(days=1),
    "weekly": timedelta(days=7),
}


@dataclass(slots=True)
class _DeviceBundle:
    token: str
    subscriptions: list[AlertSubscription] = field(default_factory=list)
    jobs: dict[tuple[str, str], StoredJob] = field(default_factory=dict)


class NotificationFanout:
    def __init__(
        self,
        store: JobStore,
        push_client: ExpoPushClient,
        *,
        batch_size: int = 100,
        clock: Clock = utc_now,
    ) -> None:
        self.store = store
        self.push_client = push_client
        self.batch_size = max(1, min(batch_size, 100))
        self.clock = clock

    async def notify_new_jobs(self, created_jobs: list[StoredJob]) -> NotificationStats:
        """Push one aggregated message per device whose immediate alerts match any new job."""
        if not created_jobs:
            return NotificationStats()
        subscriptions = await self.store.list_active_subscriptions("immediate")
        return await self._fan_out(subscriptions, created_jobs)

    async def send_digest(self, frequency: AlertFrequency) -> NotificationStats:
        window = DIGEST_WINDOWS.get(frequency)
        if window is None:
            raise ValueError(f"no digest window for frequency={frequency}")
        since = self.clock() - window
        subscriptions = [
            sub
            for sub in await self.store.list_active_subscriptions(frequency)
            if sub.last_notified_at is None or sub.last_notified_at <= since
        ]
        if not subscriptions:
            return NotificationStats()
        jobs = await self.store.list_jobs_created_since(since)
        stats = await self._fan_out(subscriptions, jobs)
        logger.info("digest sent frequency=%s notified=%s", frequency, stats.notified)
        return stats

    async def _fan_out(self, subscriptions: list[AlertSubscription], jobs: list[StoredJob]) -> NotificationStats:
        stats = NotificationStats(subscriptions=len(subscriptions))
        bundles: dict[str, _DeviceBundle] = {}
        for sub in subscriptions:
            matched = [job for job in jobs if subscription_matches(sub, job)]
            if not matched:
                continue
            stats.matched += 1
            bundle = bundles.setdefault(sub.device_token, _DeviceBundle(token=sub.device_token))
            bundle.subscriptions.append(sub)
            for job in matched:
                bundle.jobs.setdefault(job.dedup_key, job)

        deliverable: list[_DeviceBundle] = []
        for bundle in bundles.values():
            try:
                device = await self.store.get_device(bundle.token)
            except RepositoryError as exc:
                # Unknown device state is treated like a missing record: still deliver.
                logger.warning("device lookup failed token=%s error=%s", _mask(bundle.token), exc)
                device = None
            if device is not None and not device.is_active:
                logger.info("skipping inactive device token=%s", _mask(bundle.token))
                continue
            deliverable.append(bundle)
        stats.devices = len(deliverable)

        for start in range(0, len(deliverable), self.batch_size):
            await self._dispatch(deliverable[start : start + self.batch_size], stats)

        logger.info(
            "notification fan-out subscriptions=%s matched=%s devices=%s notified=%s failed=%s deactivated=%s",
            stats.subscriptions,
            stats.matched,
            stats.devices,
            stats.notified,
            stats.failed,
            stats.deactivated,
        )
        return stats

    async def _dispatch(self, batch: list[_DeviceBundle], stats: NotificationStats) -> None:
        messages = [build_message(bundle.subscriptions[0], list(bundle.jobs.values()), bundle.token) for bundle in batch]
        try:
            tickets = await self.push_client.send(messages)
        except (httpx.HTTPError, ValueError) as exc:
            stats.failed += len(batch)
            logger.error("push batch failed size=%s error=%s", len(batch), exc)
            return

        for index, bundle in enumerate(batch):
            ticket = tickets[index] if index < len(tickets) else PushTicket(status="error", message="missing ticket")
            await self._apply_ticket(bundle, ticket, stats)

    async def _apply_ticket(self, bundle: _DeviceBundle, ticket: PushTicket, stats: NotificationStats) -> None:
        try:
            if ticket.ok:
                now = self.clock()
                for sub in bundle.subscriptions:
                    await self.store.mark_subscription_notified(sub.id, now)
                stats.notified += 1
                return

            stats.failed += 1
            if ticket.device_not_registered:
                await self.store.deactivate_device(bundle.token)
                stats.deactivated += 1
                logger.info("device deactivated token=%s", _mask(bundle.token))
            else:
                logger.warning(
                    "push rejected token=%s error=%s message=%s",
                    _mask(bundle.token),
                    ticket.error,
                    ticket.message,
                )
        except RepositoryError as exc:
            logger.error("could not record push outcome token=%s error=%s", _mask(bundle.token), exc)


def build_message(subscription: AlertSubscription, jobs: list[StoredJob], token: str) -> PushMessage:
    first = jobs[0]
    if len(jobs) == 1:
        title = "New Job Match!"
        body = f"{first.title} at {first.organization}"
    else:
        title = f"{len(jobs)} New Jobs Match!"
        body = f'{first.title} and {len(jobs) - 1} more matching "{subscription.name}"'
    return PushMessage(
        to=token,
        title=title,
        body=body,
        data={
            "type": "job_alert",
            "alert_id": subscription.id,
            "job_id": first.id,
            "job_count": len(jobs),
        },
    )


def _mask(token: str) -> str:
    return f"{token[:12]}..." if len(token) > 12 else token
