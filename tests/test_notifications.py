from __future__ import annotations

import asyncio
import json
from datetime import timedelta
from typing import Any

import httpx

from jobsync.schemas.alerts import AlertSubscription, Device
from jobsync.schemas.jobs import StoredJob
from jobsync.services.notifications import NotificationFanout, build_message
from jobsync.services.push_client import ExpoPushClient
from jobsync.services.repository import RepositoryUnavailableError
from jobsync.services.store import InMemoryJobStore


class PushRecorder:
    """Fake Expo endpoint: records each batch and answers per-token."""

    def __init__(self, *, unregistered: set[str] | None = None, failing_batches: set[int] | None = None) -> None:
        self.batches: list[list[dict[str, Any]]] = []
        self.unregistered = unregistered or set()
        self.failing_batches = failing_batches or set()

    def handler(self, request: httpx.Request) -> httpx.Response:
        messages = json.loads(request.content)
        self.batches.append(messages)
        if len(self.batches) - 1 in self.failing_batches:
            return httpx.Response(502, request=request)
        tickets = []
        for message in messages:
            if message["to"] in self.unregistered:
                tickets.append(
                    {
                        "status": "error",
                        "message": "not registered",
                        "details": {"error": "DeviceNotRegistered"},
                    }
                )
            else:
                tickets.append({"status": "ok", "id": f"ticket-{message['to']}"})
        return httpx.Response(200, json={"data": tickets}, request=request)


def _run_fanout(store, recorder: PushRecorder, clock, operation, *, batch_size: int = 100):
    async def run():
        async with httpx.AsyncClient(transport=httpx.MockTransport(recorder.handler)) as client:
            fanout = NotificationFanout(store, ExpoPushClient(client), batch_size=batch_size, clock=clock)
            return await operation(fanout)

    return asyncio.run(run())


def _seed_jobs(store: InMemoryJobStore, jobs) -> list:
    async def run():
        return [await store.upsert_job(job) for job in jobs]

    return asyncio.run(run())


def _subscribe(store: InMemoryJobStore, sub_id: str, token: str, **fields) -> AlertSubscription:
    store.add_device(Device(push_token=token))
    return store.add_subscription(AlertSubscription(id=sub_id, device_token=token, **fields))


def test_one_aggregated_message_per_device(clock, make_job) -> None:
    store = InMemoryJobStore(clock=clock)
    jobs = _seed_jobs(
        store,
        [
            make_job(source_id="1", title="IT Officer", category="IT"),
            make_job(source_id="2", title="Systems Admin", category="IT", location="Adama"),
            make_job(source_id="3", title="Accountant", category="Finance"),
        ],
    )
    _subscribe(store, "sub-it", "ExponentPushToken[aaa]", name="Tech jobs", categories=["IT"])
    _subscribe(store, "sub-addis", "ExponentPushToken[aaa]", locations=["Addis"])
    recorder = PushRecorder()

    stats = _run_fanout(store, recorder, clock, lambda fanout: fanout.notify_new_jobs(jobs))

    assert stats.matched == 2
    assert stats.devices == 1
    assert stats.notified == 1
    assert len(recorder.batches) == 1
    [message] = recorder.batches[0]
    assert message["to"] == "ExponentPushToken[aaa]"
    assert message["title"] == "3 New Jobs Match!"
    assert message["data"]["job_count"] == 3
    assert message["data"]["type"] == "job_alert"
    for sub_id in ("sub-it", "sub-addis"):
        assert store.subscriptions[sub_id].notification_count == 1
        assert store.subscriptions[sub_id].last_notified_at == clock()


def test_finance_subscription_is_not_notified_for_it_job(clock, make_job) -> None:
    store = InMemoryJobStore(clock=clock)
    jobs = _seed_jobs(store, [make_job(source_id="1", category="IT")])
    _subscribe(store, "sub-fin", "ExponentPushToken[fin]", categories=["Finance"])
    recorder = PushRecorder()

    stats = _run_fanout(store, recorder, clock, lambda fanout: fanout.notify_new_jobs(jobs))

    assert stats.notified == 0
    assert recorder.batches == []
    assert store.subscriptions["sub-fin"].notification_count == 0


def test_unregistered_device_is_deactivated(clock, make_job) -> None:
    store = InMemoryJobStore(clock=clock)
    jobs = _seed_jobs(store, [make_job(category="IT")])
    _subscribe(store, "sub-gone", "ExponentPushToken[gone]", categories=["IT"])
    _subscribe(store, "sub-ok", "ExponentPushToken[ok]", categories=["IT"])
    recorder = PushRecorder(unregistered={"ExponentPushToken[gone]"})

    stats = _run_fanout(store, recorder, clock, lambda fanout: fanout.notify_new_jobs(jobs))

    assert stats.deactivated == 1
    assert stats.notified == 1
    assert store.devices["ExponentPushToken[gone]"].is_active is False
    assert store.subscriptions["sub-gone"].last_notified_at is None
    assert store.subscriptions["sub-ok"].notification_count == 1


def test_failed_batch_does_not_block_later_batches(clock, make_job) -> None:
    store = InMemoryJobStore(clock=clock)
    jobs = _seed_jobs(store, [make_job(category="IT")])
    for index in range(3):
        _subscribe(store, f"sub-{index}", f"ExponentPushToken[{index}]", categories=["IT"])
    recorder = PushRecorder(failing_batches={0})

    stats = _run_fanout(
        store,
        recorder,
        clock,
        lambda fanout: fanout.notify_new_jobs(jobs),
        batch_size=2,
    )

    assert [len(batch) for batch in recorder.batches] == [2, 1]
    assert stats.failed == 2
    assert stats.notified == 1
    assert store.subscriptions["sub-0"].notification_count == 0
    assert store.subscriptions["sub-2"].notification_count == 1


def test_inactive_devices_and_digest_subscriptions_are_skipped(clock, make_job) -> None:
    store = InMemoryJobStore(clock=clock)
    jobs = _seed_jobs(store, [make_job(category="IT")])
    _subscribe(store, "sub-off", "ExponentPushToken[off]", categories=["IT"])
    store.add_device(Device(push_token="ExponentPushToken[off]", is_active=False))
    _subscribe(store, "sub-daily", "ExponentPushToken[daily]", categories=["IT"], frequency="daily")
    recorder = PushRecorder()

    stats = _run_fanout(store, recorder, clock, lambda fanout: fanout.notify_new_jobs(jobs))

    assert stats.subscriptions == 1
    assert stats.devices == 0
    assert recorder.batches == []


def test_daily_digest_covers_jobs_from_the_last_day(clock, make_job) -> None:
    store = InMemoryJobStore(clock=clock)
    clock.advance(days=-2)
    _seed_jobs(store, [make_job(source_id="old", category="IT")])
    clock.advance(days=2)
    _seed_jobs(store, [make_job(source_id="fresh", title="Data Engineer", category="IT")])
    _subscribe(
        store,
        "sub-daily",
        "ExponentPushToken[daily]",
        categories=["IT"],
        frequency="daily",
        last_notified_at=clock() - timedelta(days=2),
    )
    _subscribe(
        store,
        "sub-recent",
        "ExponentPushToken[recent]",
        categories=["IT"],
        frequency="daily",
        last_notified_at=clock() - timedelta(hours=3),
    )
    recorder = PushRecorder()

    stats = _run_fanout(store, recorder, clock, lambda fanout: fanout.send_digest("daily"))

    assert stats.notified == 1
    [message] = recorder.batches[0]
    assert message["to"] == "ExponentPushToken[daily]"
    assert message["title"] == "New Job Match!"
    assert message["body"] == "Data Engineer at Relief Org"


def test_multi_job_message_names_the_subscription(make_job) -> None:
    jobs = []
    for index in range(3):
        job = make_job(source_id=str(index), title=f"Role {index}")
        jobs.append(StoredJob(**job.model_dump(), id=f"id-{index}", created_at=job.posted_date, updated_at=job.posted_date))
    subscription = AlertSubscription(id="sub-1", device_token="tok", name="Field roles", keywords=["role"])

    message = build_message(subscription, jobs, "tok")

    assert message.title == "3 New Jobs Match!"
    assert message.body == 'Role 0 and 2 more matching "Field roles"'
    assert message.data == {"type": "job_alert", "alert_id": "sub-1", "job_id": "id-0", "job_count": 3}


class OutageStore(InMemoryJobStore):
    async def get_device(self, push_token: str):
        raise RepositoryUnavailableError("database unavailable")

    async def mark_subscription_notified(self, subscription_id: str, at) -> None:
        raise RepositoryUnavailableError("database unavailable")


def test_store_outage_while_recording_does_not_stop_later_batches(clock, make_job) -> None:
    store = OutageStore(clock=clock)
    jobs = _seed_jobs(store, [make_job(category="IT")])
    _subscribe(store, "sub-a", "ExponentPushToken[a]", categories=["IT"])
    _subscribe(store, "sub-b", "ExponentPushToken[b]", categories=["IT"])
    recorder = PushRecorder()

    stats = _run_fanout(store, recorder, clock, lambda fanout: fanout.notify_new_jobs(jobs), batch_size=1)

    assert [len(batch) for batch in recorder.batches] == [1, 1]
    assert stats.devices == 2
    assert stats.notified == 0
