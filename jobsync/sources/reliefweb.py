"""ReliefWeb jobs API.

Docs: https://apidoc.reliefweb.int/

Filtered queries must be POSTed as JSON; the ``appname`` query parameter
identifies the caller.
"""

from __future__ import annotations

import asyncio
from typing import Any

import httpx

from jobsync.core.errors import RecordTransformError, Result
from jobsync.core.urls import resolve_apply_url
from jobsync.schemas.jobs import CanonicalJob
from jobsync.services.retry import RetryPolicy, Sleep, fetch_pages
from jobsync.sources.base import RawListing, SourceAdapter, as_text, parse_datetime
from jobsync.sources.classify import reliefweb_experience

RELIEFWEB_API_URL = "https://api.reliefweb.int/v2/jobs"
RELIEFWEB_JOB_URL = "https://reliefweb.int/job/{id}"
INCLUDED_FIELDS = [
    "id",
    "title",
    "body",
    "url",
    "source.name",
    "country.name",
    "city.name",
    "career_categories.name",
    "experience.name",
    "date.created",
    "date.closing",
]


class ReliefWebSource(SourceAdapter):
    name = "reliefweb"

    def __init__(
        self,
        client: httpx.AsyncClient,
        *,
        policy: RetryPolicy | None = None,
        sleep: Sleep = asyncio.sleep,
        api_url: str = RELIEFWEB_API_URL,
        appname: str = "jobsync",
        country: str = "Ethiopia",
        page_size: int = 100,
        max_pages: int = 5,
    ) -> None:
        super().__init__(client, policy=policy, sleep=sleep)
        self.api_url = api_url
        self.appname = appname
        self.country = country
        self.page_size = page_size
        self.max_pages = max_pages

    async def fetch(self) -> Result[list[RawListing]]:
        return await fetch_pages(
            self._fetch_page,
            page_size=self.page_size,
            max_pages=self.max_pages,
            policy=self.policy,
            label=self.name,
            sleep=self.sleep,
        )

    async def _fetch_page(self, offset: int, limit: int) -> list[RawListing]:
        response = await self.client.post(
            self.api_url,
            params={"appname": self.appname},
            json={
                "preset": "latest",
                "limit": limit,
                "offset": offset,
                "filter": {"field": "country.name", "value": self.country},
                "fields": {"include": INCLUDED_FIELDS},
            },
            headers={"Accept": "application/json", "User-Agent": f"{self.appname}/1.0"},
        )
        response.raise_for_status()
        payload = response.json()
        rows = payload.get("data") if isinstance(payload, dict) else None
        return [row for row in rows or [] if isinstance(row, dict)]

    def transform(self, raw: RawListing) -> CanonicalJob:
        job_id = as_text(raw.get("id"))
        fields = raw.get("fields")
        if not job_id or not isinstance(fields, dict):
            raise RecordTransformError(f"reliefweb listing without id or fields: {raw!r:.120}")

        dates = fields.get("date") if isinstance(fields.get("date"), dict) else {}
        fallback_url = RELIEFWEB_JOB_URL.format(id=job_id)
        return self._build(
            source_id=job_id,
            title=as_text(fields.get("title")) or "Untitled Position",
            organization=_first_name(fields.get("source")) or "Unknown Organization",
            location=", ".join(_names(fields.get("city"))) or self.country,
            country=self.country,
            category=_first_name(fields.get("career_categories")) or "General",
            experience_level=reliefweb_experience(_names(fields.get("experience"))),
            description=as_text(fields.get("body")) or "",
            apply_url=resolve_apply_url(as_text(fields.get("url")), fallback=fallback_url) or fallback_url,
            posted_date=parse_datetime(dates.get("created")) or self.captured_at,
            closing_date=parse_datetime(dates.get("closing")),
        )


def _names(value: Any) -> list[str]:
    if not isinstance(value, list):
        return []
    names: list[str] = []
    for item in value:
        name = as_text(item.get("name")) if isinstance(item, dict) else None
        if name:
            names.append(name)
    return names


def _first_name(value: Any) -> str | None:
    names = _names(value)
    return names[0] if names else None
