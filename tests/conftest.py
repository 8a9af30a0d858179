from __future__ import annotations

from collections.abc import Callable
from datetime import datetime, timedelta, timezone
from typing import Any

import pytest

from jobsync.core.errors import PipelineError, RecordTransformError, Result
from jobsync.schemas.jobs import CanonicalJob
from jobsync.sources.base import RawListing, SourceAdapter

FIXED_NOW = datetime(2026, 3, 2, 12, 0, tzinfo=timezone.utc)


class FakeClock:
    def __init__(self, now: datetime = FIXED_NOW) -> None:
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs: float) -> None:
        self.now = self.now + timedelta(**kwargs)


class StaticSource(SourceAdapter):
    """Serves canned rows; a row with ``"broken": True`` fails to transform."""

    def __init__(
        self,
        rows: list[RawListing] | None = None,
        *,
        name: str = "static",
        error: PipelineError | None = None,
    ) -> None:
        super().__init__(None)  # type: ignore[arg-type]
        self.name = name
        self.rows = rows or []
        self.error = error
        self.fetch_calls = 0

    async def fetch(self) -> Result[list[RawListing]]:
        self.fetch_calls += 1
        if self.error is not None:
            return Result.failure(self.error, attempts=1)
        return Result.success(list(self.rows))

    def transform(self, raw: RawListing) -> CanonicalJob:
        if raw.get("broken"):
            raise RecordTransformError(f"row {raw.get('id')} is broken")
        return self._build(
            source_id=str(raw["id"]),
            title=raw.get("title", f"Role {raw['id']}"),
            organization=raw.get("organization", "Example Org"),
            location=raw.get("location", "Addis Ababa"),
            country="Ethiopia",
            category=raw.get("category", "General"),
            experience_level=raw.get("experience_level", "Mid"),
            description=raw.get("description", ""),
            apply_url=f"https://jobs.example.org/{raw['id']}",
            posted_date=self.captured_at,
            closing_date=raw.get("closing_date"),
        )


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def static_source() -> type[StaticSource]:
    return StaticSource


@pytest.fixture
def make_job() -> Callable[..., CanonicalJob]:
    def factory(**overrides: Any) -> CanonicalJob:
        fields: dict[str, Any] = {
            "source": "reliefweb",
            "source_id": "4001",
            "title": "Program Officer",
            "organization": "Relief Org",
            "location": "Addis Ababa",
            "country": "Ethiopia",
            "category": "Program/Project Management",
            "experience_level": "Mid",
            "description": "Coordinate field programs.",
            "apply_url": "https://reliefweb.int/job/4001",
            "posted_date": FIXED_NOW,
            "closing_date": FIXED_NOW + timedelta(days=14),
        }
        fields.update(overrides)
        return CanonicalJob(**fields)

    return factory
