"""Base class and shared helpers for source adapters."""

from __future__ import annotations

import asyncio
from abc import ABC, abstractmethod
from datetime import datetime, timedelta, timezone
from typing import Any, Literal

import httpx
from pydantic import ValidationError

from jobsync.core.errors import RecordTransformError, Result
from jobsync.core.urls import content_hash
from jobsync.schemas.jobs import CanonicalJob
from jobsync.services.retry import RetryPolicy, Sleep, execute_with_retry

RawListing = dict[str, Any]
ScrapedIdStrategy = Literal["content_hash", "run_position"]

BROWSER_HEADERS = {
    "User-Agent": "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36",
    "Accept": "text/html,application/xhtml+xml,application/xml;q=0.9,*/*;q=0.8",
    "Accept-Language": "en-US,en;q=0.5",
}


class SourceAdapter(ABC):
    """Fetches one upstream source and maps its listings to canonical records.

    Adapters never touch the store; the upsert engine owns persistence.
    """

    name: str

    def __init__(
        self,
        client: httpx.AsyncClient,
        *,
        policy: RetryPolicy | None = None,
        sleep: Sleep = asyncio.sleep,
    ) -> None:
        self.client = client
        self.policy = policy or RetryPolicy()
        self.sleep = sleep
        self.captured_at = datetime.now(timezone.utc)

    @abstractmethod
    async def fetch(self) -> Result[list[RawListing]]:
        """Fetch raw listings for one run."""

    @abstractmethod
    def transform(self, raw: RawListing) -> CanonicalJob:
        """Map one raw listing; raises RecordTransformError when it is unusable."""

    def begin_run(self, at: datetime | None = None) -> None:
        """Record the capture timestamp shared by every listing of this run."""
        self.captured_at = at or datetime.now(timezone.utc)

    async def _get_json(self, url: str, **kwargs: Any) -> Result[Any]:
        async def request() -> Any:
            response = await self.client.get(url, **kwargs)
            response.raise_for_status()
            return response.json()

        return await execute_with_retry(request, self.policy, label=self.name, sleep=self.sleep)

    async def _get_text(self, url: str, **kwargs: Any) -> Result[str]:
        async def request() -> str:
            response = await self.client.get(url, **kwargs)
            response.raise_for_status()
            return response.text

        return await execute_with_retry(request, self.policy, label=self.name, sleep=self.sleep)

    def _build(self, **fields: Any) -> CanonicalJob:
        try:
            return CanonicalJob(source=self.name, **fields)
        except ValidationError as exc:
            raise RecordTransformError(
                f"{self.name} listing {fields.get('source_id')!r} is invalid: {exc.errors()[0]['msg']}"
            ) from exc


def scraped_source_id(
    source: str,
    *,
    strategy: ScrapedIdStrategy,
    index: int,
    captured_at: datetime,
    title: str,
    organization: str,
    location: str,
) -> str:
    if strategy == "run_position":
        return f"{source}-{int(captured_at.timestamp() * 1000)}-{index}"
    return f"{source}-{content_hash(title, organization, location)[:24]}"


def default_closing_date(captured_at: datetime, days: int) -> datetime:
    return captured_at + timedelta(days=days)


def parse_datetime(value: Any) -> datetime | None:
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        dt = value
    elif isinstance(value, (int, float)) and not isinstance(value, bool):
        try:
            ts = float(value)
            # Some boards send epoch milliseconds.
            if ts > 1e12:
                ts /= 1000.0
            dt = datetime.fromtimestamp(ts, tz=timezone.utc)
        except (OverflowError, OSError, ValueError):
            return None
    elif isinstance(value, str):
        raw = value.strip()
        if not raw:
            return None
        if raw.isdigit():
            try:
                return parse_datetime(int(raw))
            except ValueError:
                return None
        try:
            dt = datetime.fromisoformat(raw.replace("Z", "+00:00"))
        except ValueError:
            return None
    else:
        return None

    if dt.tzinfo is None:
        return dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc)


def as_text(value: Any) -> str | None:
    if isinstance(value, str):
        stripped = value.strip()
        return stripped or None
    if isinstance(value, (int, float)) and not isinstance(value, bool):
        return str(value)
    return None
