from __future__ import annotations

import asyncio
import logging
import random

import httpx
import pytest

from jobsync.core.errors import ClientRequestError, ExhaustedRetriesError, TransientNetworkError
from jobsync.services.retry import RetryPolicy, compute_backoff_delay, execute_with_retry, fetch_pages


def _status_operation(status_code: int, calls: list[int]):
    async def operation() -> dict:
        calls.append(1)
        request = httpx.Request("GET", "https://upstream.example.org/jobs")
        response = httpx.Response(status_code, request=request)
        response.raise_for_status()
        return {}

    return operation


def _recording_sleep(sleeps: list[float]):
    async def sleep(delay: float) -> None:
        sleeps.append(delay)

    return sleep


def test_backoff_doubles_until_cap() -> None:
    policy = RetryPolicy()
    delays = [compute_backoff_delay(attempt, policy, jitter=False) for attempt in range(7)]
    assert delays == [1.0, 2.0, 4.0, 8.0, 16.0, 30.0, 30.0]


def test_backoff_jitter_stays_within_ratio_bounds() -> None:
    policy = RetryPolicy()
    rng = random.Random(7)
    for attempt in range(4):
        base = 2**attempt
        delay = compute_backoff_delay(attempt, policy, rng=rng)
        assert base * 1.10 <= delay <= base * 1.20


def test_client_error_is_not_retried() -> None:
    calls: list[int] = []
    sleeps: list[float] = []

    result = asyncio.run(
        execute_with_retry(
            _status_operation(404, calls),
            RetryPolicy(),
            label="reliefweb",
            sleep=_recording_sleep(sleeps),
        )
    )

    assert not result.ok
    assert isinstance(result.error, ClientRequestError)
    assert result.error.status_code == 404
    assert result.attempts == 1
    assert calls == [1]
    assert sleeps == []


def test_server_error_exhausts_all_attempts_with_growing_delays() -> None:
    calls: list[int] = []
    sleeps: list[float] = []

    result = asyncio.run(
        execute_with_retry(
            _status_operation(503, calls),
            RetryPolicy(),
            label="reliefweb",
            sleep=_recording_sleep(sleeps),
            rng=random.Random(1),
        )
    )

    assert isinstance(result.error, ExhaustedRetriesError)
    assert result.attempts == 5
    assert len(calls) == 5
    assert len(sleeps) == 4
    assert sleeps == sorted(sleeps)
    assert isinstance(result.error.last_error, TransientNetworkError)
    assert result.error.last_error.status_code == 503


def test_each_attempt_is_logged(caplog: pytest.LogCaptureFixture) -> None:
    calls: list[int] = []
    caplog.set_level(logging.INFO, logger="jobsync.services.retry")

    asyncio.run(
        execute_with_retry(
            _status_operation(500, calls),
            RetryPolicy(max_attempts=3),
            label="indeed",
            sleep=_recording_sleep([]),
        )
    )

    attempt_lines = [record.getMessage() for record in caplog.records if "fetch attempt label=" in record.getMessage()]
    assert len(attempt_lines) == 3
    assert "attempt=1/3" in attempt_lines[0]
    assert "attempt=3/3" in attempt_lines[2]


def test_recovers_after_transient_failures() -> None:
    outcomes = [httpx.ConnectError("reset"), httpx.ReadTimeout("slow"), "payload"]

    async def operation() -> str:
        outcome = outcomes.pop(0)
        if isinstance(outcome, Exception):
            raise outcome
        return outcome

    result = asyncio.run(execute_with_retry(operation, RetryPolicy(), label="remotive", sleep=_recording_sleep([])))

    assert result.ok
    assert result.value == "payload"
    assert result.attempts == 3


def test_attempt_timeout_counts_as_retryable() -> None:
    async def operation() -> None:
        await asyncio.sleep(5)

    policy = RetryPolicy(max_attempts=2, attempt_timeout_seconds=0.01)
    result = asyncio.run(execute_with_retry(operation, policy, label="ethiojobs", sleep=_recording_sleep([])))

    assert isinstance(result.error, ExhaustedRetriesError)
    assert isinstance(result.error.last_error, TransientNetworkError)
    assert result.attempts == 2


def test_fetch_pages_stops_on_short_page_and_spaces_pages() -> None:
    requested: list[tuple[int, int]] = []
    sleeps: list[float] = []

    async def fetch_page(offset: int, limit: int) -> list[int]:
        requested.append((offset, limit))
        return [offset, offset + 1] if offset < 4 else [offset]

    result = asyncio.run(
        fetch_pages(
            fetch_page,
            page_size=2,
            max_pages=5,
            policy=RetryPolicy(),
            label="reliefweb",
            sleep=_recording_sleep(sleeps),
        )
    )

    assert result.ok
    assert result.value == [0, 1, 2, 3, 4]
    assert requested == [(0, 2), (2, 2), (4, 2)]
    assert sleeps == [0.5, 0.5]


def test_fetch_pages_fails_the_whole_fetch_when_a_page_fails() -> None:
    async def fetch_page(offset: int, limit: int) -> list[int]:
        if offset:
            request = httpx.Request("POST", "https://api.reliefweb.int/v2/jobs")
            httpx.Response(403, request=request).raise_for_status()
        return list(range(limit))

    result = asyncio.run(
        fetch_pages(
            fetch_page,
            page_size=3,
            max_pages=4,
            policy=RetryPolicy(),
            label="reliefweb",
            sleep=_recording_sleep([]),
        )
    )

    assert not result.ok
    assert isinstance(result.error, ClientRequestError)
    assert result.value is None
