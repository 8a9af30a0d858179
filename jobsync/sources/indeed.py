"""Indeed Ethiopia search-results scraper."""

from __future__ import annotations

import asyncio
import logging
from urllib.parse import urlencode

import httpx
from bs4 import BeautifulSoup, Tag

from jobsync.core.errors import RecordTransformError, Result
from jobsync.schemas.jobs import CanonicalJob
from jobsync.services.retry import RetryPolicy, Sleep
from jobsync.sources.base import (
    BROWSER_HEADERS,
    RawListing,
    ScrapedIdStrategy,
    SourceAdapter,
    default_closing_date,
    scraped_source_id,
)
from jobsync.sources.classify import INDEED_CATEGORY_RULES, INDEED_EXPERIENCE_RULES, classify

logger = logging.getLogger(__name__)

INDEED_BASE_URL = "https://et.indeed.com"
CARD_SELECTOR = ".job_seen_beacon, .jobsearch-SerpJobCard, .slider_item"
MIN_TITLE_LENGTH = 4


class IndeedSource(SourceAdapter):
    name = "indeed"

    def __init__(
        self,
        client: httpx.AsyncClient,
        *,
        policy: RetryPolicy | None = None,
        sleep: Sleep = asyncio.sleep,
        base_url: str = INDEED_BASE_URL,
        query: str = "NGO OR humanitarian OR development",
        country: str = "Ethiopia",
        limit: int = 100,
        id_strategy: ScrapedIdStrategy = "content_hash",
        default_closing_days: int = 30,
    ) -> None:
        super().__init__(client, policy=policy, sleep=sleep)
        self.base_url = base_url.rstrip("/")
        self.query = query
        self.country = country
        self.limit = limit
        self.id_strategy = id_strategy
        self.default_closing_days = default_closing_days

    async def fetch(self) -> Result[list[RawListing]]:
        page = await self._get_text(
            f"{self.base_url}/jobs",
            params={"q": self.query, "l": self.country, "limit": self.limit},
            headers=BROWSER_HEADERS,
        )
        if not page.ok:
            return Result.failure(page.error, attempts=page.attempts)  # type: ignore[arg-type]
        listings = parse_listings(page.value or "", limit=self.limit)
        logger.info("scraped listings source=%s count=%s", self.name, len(listings))
        return Result.success(listings, attempts=page.attempts)

    def transform(self, raw: RawListing) -> CanonicalJob:
        title = raw.get("title") or ""
        if len(title) < MIN_TITLE_LENGTH:
            raise RecordTransformError(f"indeed card #{raw.get('index')} has no usable title")

        organization = raw.get("organization") or "Unknown Company"
        location = raw.get("location") or "Unknown"
        if self.country.lower() not in location.lower():
            location = f"{location}, {self.country}"
        snippet = raw.get("snippet") or ""
        job_key = raw.get("job_key")
        if job_key:
            source_id = f"indeed-{job_key}"
            apply_url = f"{self.base_url}/viewjob?jk={job_key}"
        else:
            source_id = scraped_source_id(
                self.name,
                strategy=self.id_strategy,
                index=int(raw.get("index") or 0),
                captured_at=self.captured_at,
                title=title,
                organization=organization,
                location=location,
            )
            apply_url = f"{self.base_url}/jobs?{urlencode({'q': title})}"

        return self._build(
            source_id=source_id,
            title=title,
            organization=organization,
            location=location,
            country=self.country,
            category=classify(f"{title} {snippet}", INDEED_CATEGORY_RULES, default="Other"),
            experience_level=classify(title, INDEED_EXPERIENCE_RULES, default="Mid"),
            description=snippet or f"{title} at {organization}. Check Indeed for full details.",
            apply_url=apply_url,
            posted_date=self.captured_at,
            closing_date=default_closing_date(self.captured_at, self.default_closing_days),
        )


def parse_listings(html: str, *, limit: int = 100) -> list[RawListing]:
    soup = BeautifulSoup(html, "html.parser")
    listings: list[RawListing] = []
    for index, card in enumerate(soup.select(CARD_SELECTOR)[:limit]):
        key_holder = card.select_one("a[data-jk], .jcs-JobTitle")
        job_key = key_holder.get("data-jk") if isinstance(key_holder, Tag) else None
        listings.append(
            {
                "index": index,
                "job_key": job_key if isinstance(job_key, str) and job_key else None,
                "title": _first_text(card, ".jobTitle, h2 a"),
                "organization": _first_text(card, ".companyName, [data-testid=company-name]"),
                "location": _first_text(card, ".companyLocation, [data-testid=text-location]"),
                "snippet": _first_text(card, ".job-snippet, [data-testid=belowJobSnippet]"),
            }
        )
    return listings


def _first_text(card: Tag, selector: str) -> str | None:
    element = card.select_one(selector)
    if element is None:
        return None
    text = element.get_text(" ", strip=True)
    return text or None
