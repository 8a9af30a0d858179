"""Third-party job-board APIs.

Each board is its own adapter so the orchestrator can schedule and report on
it independently. Boards that publish no deadline get a default closing date
so the cleanup sweep can retire listings that stop being refreshed.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any

import httpx

from jobsync.core.errors import RecordTransformError, Result
from jobsync.core.urls import resolve_apply_url
from jobsync.schemas.jobs import CanonicalJob
from jobsync.services.retry import RetryPolicy, Sleep
from jobsync.sources.base import (
    RawListing,
    SourceAdapter,
    as_text,
    default_closing_date,
    parse_datetime,
)
from jobsync.sources.classify import ETHIO_API_CATEGORY_RULES, classify, job_type_experience

logger = logging.getLogger(__name__)

USER_AGENT = "jobsync/1.0 (job aggregator)"


class JobBoardSource(SourceAdapter):
    url: str
    remote_country = "Remote"

    def __init__(
        self,
        client: httpx.AsyncClient,
        *,
        policy: RetryPolicy | None = None,
        sleep: Sleep = asyncio.sleep,
        limit: int = 100,
        default_closing_days: int = 30,
    ) -> None:
        super().__init__(client, policy=policy, sleep=sleep)
        self.limit = limit
        self.default_closing_days = default_closing_days

    def request_params(self) -> dict[str, Any]:
        return {}

    def request_headers(self) -> dict[str, str]:
        return {"User-Agent": USER_AGENT, "Accept": "application/json"}

    def extract_rows(self, payload: Any) -> list[Any]:
        if isinstance(payload, dict):
            rows = payload.get("jobs")
            return rows if isinstance(rows, list) else []
        return []

    async def fetch(self) -> Result[list[RawListing]]:
        result = await self._get_json(self.url, params=self.request_params(), headers=self.request_headers())
        if not result.ok:
            return Result.failure(result.error, attempts=result.attempts)  # type: ignore[arg-type]
        rows = [row for row in self.extract_rows(result.value) if isinstance(row, dict)][: self.limit]
        logger.info("fetched listings source=%s count=%s", self.name, len(rows))
        return Result.success(rows, attempts=result.attempts)

    def _require_id(self, raw: RawListing, *keys: str) -> str:
        for key in keys:
            value = as_text(raw.get(key))
            if value:
                return value
        raise RecordTransformError(f"{self.name} listing has no identifier")

    def _closing(self, raw_deadline: Any = None) -> Any:
        return parse_datetime(raw_deadline) or default_closing_date(self.captured_at, self.default_closing_days)


class RemoteOKSource(JobBoardSource):
    name = "remoteok"
    url = "https://remoteok.com/api"

    def extract_rows(self, payload: Any) -> list[Any]:
        # First element is a legal notice, not a job.
        return payload[1:] if isinstance(payload, list) else []

    def transform(self, raw: RawListing) -> CanonicalJob:
        job_id = self._require_id(raw, "id")
        tags = _text_list(raw.get("tags"))
        return self._build(
            source_id=f"remoteok-{job_id}",
            title=as_text(raw.get("position")) or "Unknown Position",
            organization=as_text(raw.get("company")) or "Unknown Company",
            location=as_text(raw.get("location")) or "Remote / Worldwide",
            country=self.remote_country,
            category=tags[0] if tags else "Technology",
            experience_level=job_type_experience(as_text(raw.get("position"))),
            description=as_text(raw.get("description")) or "",
            skills=tags,
            salary=_salary_range(raw.get("salary_min"), raw.get("salary_max")) or as_text(raw.get("salary")),
            apply_url=resolve_apply_url(
                as_text(raw.get("url")) or as_text(raw.get("apply_url")),
                fallback=f"https://remoteok.com/l/{job_id}",
            ),
            posted_date=parse_datetime(raw.get("date")) or self.captured_at,
            closing_date=self._closing(),
        )


class ArbeitnowSource(JobBoardSource):
    name = "arbeitnow"
    url = "https://www.arbeitnow.com/api/job-board-api"

    def extract_rows(self, payload: Any) -> list[Any]:
        if isinstance(payload, dict):
            rows = payload.get("data")
            return rows if isinstance(rows, list) else []
        return []

    def transform(self, raw: RawListing) -> CanonicalJob:
        slug = self._require_id(raw, "slug")
        tags = _text_list(raw.get("tags"))
        location = as_text(raw.get("location")) or "Europe"
        return self._build(
            source_id=f"arbeitnow-{slug}",
            title=as_text(raw.get("title")) or "Unknown Position",
            organization=as_text(raw.get("company_name")) or "Unknown Company",
            location=location,
            country=location,
            category=tags[0] if tags else "General",
            experience_level="Mid",
            description=as_text(raw.get("description")) or "",
            skills=tags,
            apply_url=resolve_apply_url(as_text(raw.get("url")), fallback=f"https://www.arbeitnow.com/view/{slug}"),
            posted_date=parse_datetime(raw.get("created_at")) or self.captured_at,
            closing_date=self._closing(),
        )


class RemotiveSource(JobBoardSource):
    name = "remotive"
    url = "https://remotive.com/api/remote-jobs"

    def transform(self, raw: RawListing) -> CanonicalJob:
        job_id = self._require_id(raw, "id")
        category = as_text(raw.get("category"))
        job_type = as_text(raw.get("job_type"))
        return self._build(
            source_id=f"remotive-{job_id}",
            title=as_text(raw.get("title")) or "Unknown Position",
            organization=as_text(raw.get("company_name")) or "Unknown Company",
            location=as_text(raw.get("candidate_required_location")) or "Remote / Worldwide",
            country=self.remote_country,
            category=category or "General",
            experience_level=job_type_experience(job_type),
            description=as_text(raw.get("description")) or "",
            skills=_text_list(raw.get("tags")),
            salary=as_text(raw.get("salary")),
            apply_url=resolve_apply_url(
                as_text(raw.get("url")),
                fallback=f"https://remotive.com/remote-jobs/redirect/{job_id}",
            ),
            posted_date=parse_datetime(raw.get("publication_date")) or self.captured_at,
            closing_date=self._closing(),
        )


class JobicySource(JobBoardSource):
    name = "jobicy"
    url = "https://jobicy.com/api/v2/remote-jobs"

    def request_params(self) -> dict[str, Any]:
        return {"count": self.limit}

    def transform(self, raw: RawListing) -> CanonicalJob:
        job_id = self._require_id(raw, "id")
        industries = _text_list(raw.get("jobIndustry"))
        geo = as_text(raw.get("jobGeo"))
        return self._build(
            source_id=f"jobicy-{job_id}",
            title=as_text(raw.get("jobTitle")) or "Unknown Position",
            organization=as_text(raw.get("companyName")) or "Unknown Company",
            location=geo or "Remote / Worldwide",
            country=geo or self.remote_country,
            category=industries[0] if industries else "General",
            experience_level=job_type_experience(as_text(raw.get("jobLevel"))),
            description=as_text(raw.get("jobDescription")) or "",
            skills=industries,
            salary=_salary_range(raw.get("annualSalaryMin"), raw.get("annualSalaryMax")),
            apply_url=resolve_apply_url(as_text(raw.get("url")), fallback=f"https://jobicy.com/jobs/{job_id}"),
            posted_date=parse_datetime(raw.get("pubDate")) or self.captured_at,
            closing_date=self._closing(),
        )


class HimalayasSource(JobBoardSource):
    name = "himalayas"
    url = "https://himalayas.app/jobs/api"

    def request_params(self) -> dict[str, Any]:
        return {"limit": self.limit}

    def transform(self, raw: RawListing) -> CanonicalJob:
        job_id = self._require_id(raw, "id", "guid")
        categories = _text_list(raw.get("categories"))
        restrictions = _text_list(raw.get("locationRestrictions"))
        return self._build(
            source_id=f"himalayas-{job_id}",
            title=as_text(raw.get("title")) or "Unknown Position",
            organization=as_text(raw.get("companyName")) or "Unknown Company",
            location=", ".join(restrictions) or "Remote / Worldwide",
            country=self.remote_country,
            category=categories[0] if categories else "General",
            experience_level=job_type_experience(as_text(raw.get("seniority"))),
            description=as_text(raw.get("description")) or "",
            skills=categories,
            salary=_salary_range(raw.get("minSalary"), raw.get("maxSalary")),
            apply_url=resolve_apply_url(
                as_text(raw.get("applicationLink")) or as_text(raw.get("url")),
                fallback=f"https://himalayas.app/jobs/{job_id}",
            ),
            posted_date=parse_datetime(raw.get("publishedAt") or raw.get("pubDate")) or self.captured_at,
            closing_date=self._closing(raw.get("expiryDate")),
        )


class WeWorkRemotelySource(JobBoardSource):
    name = "weworkremotely"
    url = "https://weworkremotely.com/remote-jobs.json"

    def extract_rows(self, payload: Any) -> list[Any]:
        return payload if isinstance(payload, list) else super().extract_rows(payload)

    def transform(self, raw: RawListing) -> CanonicalJob:
        job_id = self._require_id(raw, "id", "slug")
        company = raw.get("company") if isinstance(raw.get("company"), dict) else {}
        category = raw.get("category") if isinstance(raw.get("category"), dict) else {}
        category_name = as_text(category.get("name"))
        return self._build(
            source_id=f"wwr-{job_id}",
            title=as_text(raw.get("title")) or "Unknown Position",
            organization=as_text(company.get("name")) or "Unknown Company",
            location=as_text(raw.get("region")) or "Remote / Worldwide",
            country=self.remote_country,
            category=category_name or "General",
            experience_level="Mid",
            description=as_text(raw.get("description")) or "",
            skills=[category_name] if category_name else [],
            apply_url=resolve_apply_url(
                as_text(raw.get("url")),
                fallback=f"https://weworkremotely.com/remote-jobs/{job_id}",
            ),
            posted_date=parse_datetime(raw.get("published_at")) or self.captured_at,
            closing_date=self._closing(),
        )


class EthioJobApiSource(JobBoardSource):
    """Ethiopian listings from the community ethio-job-api; needs an ``x-api-key``."""

    name = "ethio_job_api"
    remote_country = "Ethiopia"

    def __init__(
        self,
        client: httpx.AsyncClient,
        *,
        base_url: str = "https://ethio-job-api.onrender.com",
        api_key: str | None = None,
        **kwargs: Any,
    ) -> None:
        super().__init__(client, **kwargs)
        self.url = f"{base_url.rstrip('/')}/jobs"
        self.api_key = api_key

    def request_headers(self) -> dict[str, str]:
        headers = super().request_headers()
        if self.api_key:
            headers["x-api-key"] = self.api_key
        return headers

    def extract_rows(self, payload: Any) -> list[Any]:
        if isinstance(payload, list):
            return payload
        if isinstance(payload, dict):
            for key in ("jobs", "data"):
                rows = payload.get(key)
                if isinstance(rows, list):
                    return rows
        logger.warning("unexpected payload shape source=%s type=%s", self.name, type(payload).__name__)
        return []

    async def fetch(self) -> Result[list[RawListing]]:
        if not self.api_key:
            logger.warning("api key not configured; skipping source=%s", self.name)
            return Result.success([], attempts=0)
        return await super().fetch()

    def transform(self, raw: RawListing) -> CanonicalJob:
        title = as_text(raw.get("title"))
        if not title:
            raise RecordTransformError(f"{self.name} listing has no title")
        job_id = as_text(raw.get("id")) or as_text(raw.get("slug"))
        organization = as_text(raw.get("company")) or as_text(raw.get("organization")) or "Ethiopian Company"
        location = as_text(raw.get("location")) or "Addis Ababa, Ethiopia"
        if not job_id:
            raise RecordTransformError(f"{self.name} listing {title!r} has no identifier")
        apply_url = resolve_apply_url(
            as_text(raw.get("apply_url")) or as_text(raw.get("url")) or as_text(raw.get("link")),
        )
        if apply_url is None:
            raise RecordTransformError(f"{self.name} listing {job_id} has no apply link")
        return self._build(
            source_id=f"ethio-api-{job_id}",
            title=title,
            organization=organization,
            location=location,
            country="Ethiopia",
            category=classify(as_text(raw.get("category")) or title, ETHIO_API_CATEGORY_RULES, default="General"),
            experience_level=job_type_experience(as_text(raw.get("experience"))),
            description=as_text(raw.get("description")) or f"{title} position at {organization}",
            skills=_text_list(raw.get("skills")),
            salary=as_text(raw.get("salary")) or "Negotiable",
            apply_url=apply_url,
            posted_date=parse_datetime(raw.get("posted_date")) or self.captured_at,
            closing_date=self._closing(raw.get("deadline") or raw.get("closing_date")),
        )


def _text_list(value: Any) -> list[str]:
    if not isinstance(value, list):
        return []
    items: list[str] = []
    for item in value:
        text = as_text(item)
        if text:
            items.append(text)
    return items


def _salary_range(low: Any, high: Any) -> str | None:
    low_text = as_text(low)
    if not low_text or low_text == "0":
        return None
    high_text = as_text(high)
    return f"${low_text} - ${high_text}" if high_text else f"${low_text}"
