from __future__ import annotations

import asyncio
import logging
import random
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from typing import Any, TypeVar

from jobsync.core.errors import (
    ClientRequestError,
    ExhaustedRetriesError,
    PipelineError,
    Result,
    classify_error,
)

logger = logging.getLogger(__name__)

T = TypeVar("T")
Sleep = Callable[[float], Awaitable[Any]]


@dataclass(frozen=True, slots=True)
class RetryPolicy:
    max_attempts: int = 5
    base_delay_seconds: float = 1.0
    max_delay_seconds: float = 30.0
    jitter_min_ratio: float = 0.10
    jitter_max_ratio: float = 0.20
    attempt_timeout_seconds: float | None = 45.0
    page_delay_seconds: float = 0.5


def compute_backoff_delay(
    attempt: int,
    policy: RetryPolicy,
    *,
    jitter: bool = True,
    rng: random.Random | None = None,
) -> float:
    """Delay in seconds before retry number ``attempt`` (0-based), capped at ``max_delay_seconds``."""
    delay = policy.base_delay_seconds * (2 ** max(0, attempt))
    if jitter:
        ratio = (rng or random).uniform(policy.jitter_min_ratio, policy.jitter_max_ratio)
        delay += delay * ratio
    return min(delay, policy.max_delay_seconds)


async def execute_with_retry(
    operation: Callable[[], Awaitable[T]],
    policy: RetryPolicy,
    *,
    label: str,
    sleep: Sleep = asyncio.sleep,
    rng: random.Random | None = None,
) -> Result[T]:
    attempts = max(1, policy.max_attempts)
    last_error: PipelineError | None = None

    for attempt in range(attempts):
        delay = 0.0 if attempt == 0 else compute_backoff_delay(attempt - 1, policy, rng=rng)
        logger.info(
            "fetch attempt label=%s attempt=%s/%s delay_ms=%.0f previous_error=%s",
            label,
            attempt + 1,
            attempts,
            delay * 1000.0,
            last_error,
        )
        if delay > 0:
            await sleep(delay)

        try:
            if policy.attempt_timeout_seconds:
                value = await asyncio.wait_for(operation(), timeout=policy.attempt_timeout_seconds)
            else:
                value = await operation()
        except Exception as exc:
            classified = classify_error(exc)
            if isinstance(classified, ClientRequestError):
                logger.error(
                    "fetch aborted label=%s attempt=%s status=%s error=%s",
                    label,
                    attempt + 1,
                    classified.status_code,
                    classified,
                )
                return Result.failure(classified, attempts=attempt + 1)
            logger.warning("fetch attempt failed label=%s attempt=%s error=%s", label, attempt + 1, classified)
            last_error = classified
            continue

        return Result.success(value, attempts=attempt + 1)

    return Result.failure(
        ExhaustedRetriesError(
            f"{label}: failed after {attempts} attempts: {last_error}",
            attempts=attempts,
            last_error=last_error,
        ),
        attempts=attempts,
    )


async def fetch_pages(
    fetch_page: Callable[[int, int], Awaitable[list[T]]],
    *,
    page_size: int,
    max_pages: int,
    policy: RetryPolicy,
    label: str,
    sleep: Sleep = asyncio.sleep,
) -> Result[list[T]]:
    """Page through an offset/limit endpoint, retrying each page independently.

    Stops on a short page or after ``max_pages``. Successful pages are spaced by
    ``policy.page_delay_seconds`` regardless of retry state.
    """
    items: list[T] = []
    attempts = 0
    for page in range(max(1, max_pages)):
        offset = page * page_size
        result = await execute_with_retry(
            lambda: fetch_page(offset, page_size),
            policy,
            label=f"{label} offset={offset}",
            sleep=sleep,
        )
        attempts += result.attempts
        if not result.ok:
            assert result.error is not None
            return Result.failure(result.error, attempts=attempts)

        batch = result.value or []
        items.extend(batch)
        if len(batch) < page_size:
            break
        if page + 1 < max_pages and policy.page_delay_seconds > 0:
            await sleep(policy.page_delay_seconds)

    return Result.success(items, attempts=attempts)
