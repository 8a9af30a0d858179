"""EthioJobs.net listing scraper.

The markup changes without notice, so every field lookup tries several
selectors and falls back to a default instead of dropping the card.
"""

from __future__ import annotations

import asyncio
import logging

import httpx
from bs4 import BeautifulSoup, Tag

from jobsync.core.errors import RecordTransformError, Result
from jobsync.core.urls import resolve_apply_url
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
from jobsync.sources.classify import ETHIOJOBS_CATEGORY_RULES, ETHIOJOBS_EXPERIENCE_RULES, classify

logger = logging.getLogger(__name__)

ETHIOJOBS_BASE_URL = "https://www.ethiojobs.net"
CARD_SELECTOR = ".job-item, .job-listing, article"
MIN_TITLE_LENGTH = 6


class EthioJobsSource(SourceAdapter):
    name = "ethiojobs"

    def __init__(
        self,
        client: httpx.AsyncClient,
        *,
        policy: RetryPolicy | None = None,
        sleep: Sleep = asyncio.sleep,
        base_url: str = ETHIOJOBS_BASE_URL,
        country: str = "Ethiopia",
        limit: int = 100,
        id_strategy: ScrapedIdStrategy = "content_hash",
        default_closing_days: int = 30,
    ) -> None:
        super().__init__(client, policy=policy, sleep=sleep)
        self.base_url = base_url
        self.country = country
        self.limit = limit
        self.id_strategy = id_strategy
        self.default_closing_days = default_closing_days

    async def fetch(self) -> Result[list[RawListing]]:
        page = await self._get_text(self.base_url, headers=BROWSER_HEADERS)
        if not page.ok:
            return Result.failure(page.error, attempts=page.attempts)  # type: ignore[arg-type]
        listings = parse_listings(page.value or "", limit=self.limit)
        logger.info("scraped listings source=%s count=%s", self.name, len(listings))
        return Result.success(listings, attempts=page.attempts)

    def transform(self, raw: RawListing) -> CanonicalJob:
        title = raw.get("title") or ""
        if len(title) < MIN_TITLE_LENGTH:
            raise RecordTransformError(f"ethiojobs card #{raw.get('index')} has no usable title")

        organization = raw.get("organization") or "Unknown Company"
        location = _with_country(raw.get("location"), self.country)
        index = int(raw.get("index") or 0)
        return self._build(
            source_id=scraped_source_id(
                self.name,
                strategy=self.id_strategy,
                index=index,
                captured_at=self.captured_at,
                title=title,
                organization=organization,
                location=location,
            ),
            title=title,
            organization=organization,
            location=location,
            country=self.country,
            category=classify(raw.get("category") or title, ETHIOJOBS_CATEGORY_RULES, default="Other"),
            experience_level=classify(title, ETHIOJOBS_EXPERIENCE_RULES, default="Mid"),
            description=f"{title} position at {organization}. Please visit the job link for full details.",
            apply_url=resolve_apply_url(raw.get("url"), base_url=self.base_url, fallback=self.base_url),
            posted_date=self.captured_at,
            closing_date=default_closing_date(self.captured_at, self.default_closing_days),
        )


def parse_listings(html: str, *, limit: int = 100) -> list[RawListing]:
    soup = BeautifulSoup(html, "html.parser")
    listings: list[RawListing] = []
    for index, card in enumerate(soup.select(CARD_SELECTOR)[:limit]):
        link = card.find("a", href=True)
        listings.append(
            {
                "index": index,
                "title": _first_text(card, "h3, .job-title, a strong"),
                "organization": _first_text(card, ".company-name, .organization"),
                "location": _first_text(card, ".location"),
                "category": _first_text(card, ".category"),
                "url": link["href"] if isinstance(link, Tag) else None,
            }
        )
    return listings


def _first_text(card: Tag, selector: str) -> str | None:
    element = card.select_one(selector)
    if element is None:
        return None
    text = element.get_text(" ", strip=True)
    return text or None


def _with_country(location: str | None, country: str) -> str:
    if not location:
        return f"Unknown, {country}"
    if country.lower() in location.lower():
        return location
    return f"{location}, {country}"
