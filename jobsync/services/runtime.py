from __future__ import annotations

import logging
from dataclasses import dataclass

import httpx

from jobsync.core.config import Settings, get_settings
from jobsync.services.cache import ReadCache, StoreEvents
from jobsync.services.cleanup import CleanupSweeper
from jobsync.services.notifications import NotificationFanout
from jobsync.services.orchestrator import SyncOrchestrator
from jobsync.services.push_client import ExpoPushClient
from jobsync.services.repository import PostgresJobRepository
from jobsync.services.retry import RetryPolicy
from jobsync.services.store import Clock, InMemoryJobStore, JobStore, utc_now
from jobsync.services.upsert import UpsertEngine
from jobsync.sources.base import SourceAdapter
from jobsync.sources.ethiojobs import EthioJobsSource
from jobsync.sources.indeed import IndeedSource
from jobsync.sources.job_boards import (
    ArbeitnowSource,
    EthioJobApiSource,
    HimalayasSource,
    JobicySource,
    RemoteOKSource,
    RemotiveSource,
    WeWorkRemotelySource,
)
from jobsync.sources.reliefweb import ReliefWebSource

logger = logging.getLogger(__name__)


@dataclass(slots=True)
class SyncRuntime:
    settings: Settings
    api_client: httpx.AsyncClient
    scraper_client: httpx.AsyncClient
    store: JobStore
    events: StoreEvents
    cache: ReadCache
    orchestrator: SyncOrchestrator
    fanout: NotificationFanout

    async def close(self) -> None:
        await self.api_client.aclose()
        await self.scraper_client.aclose()
        await self.store.close()


def retry_policy_from(settings: Settings) -> RetryPolicy:
    return RetryPolicy(
        max_attempts=settings.retry_max_attempts,
        base_delay_seconds=settings.retry_base_delay_seconds,
        max_delay_seconds=settings.retry_max_delay_seconds,
        attempt_timeout_seconds=settings.retry_attempt_timeout_seconds,
        page_delay_seconds=settings.page_delay_seconds,
    )


def build_adapters(
    settings: Settings,
    *,
    api_client: httpx.AsyncClient,
    scraper_client: httpx.AsyncClient,
    policy: RetryPolicy,
) -> list[tuple[SourceAdapter, float]]:
    """Every known adapter paired with its sync interval in seconds."""
    id_strategy = "run_position" if settings.scraped_id_strategy == "run_position" else "content_hash"
    board_options = {
        "policy": policy,
        "limit": settings.job_board_limit,
        "default_closing_days": settings.default_closing_days,
    }
    adapters: list[tuple[SourceAdapter, float]] = [
        (
            ReliefWebSource(
                api_client,
                policy=policy,
                api_url=settings.reliefweb_api_url,
                appname=settings.reliefweb_appname,
                country=settings.reliefweb_country,
                page_size=settings.reliefweb_page_size,
                max_pages=settings.reliefweb_max_pages,
            ),
            settings.reliefweb_interval_seconds,
        ),
        (
            EthioJobsSource(
                scraper_client,
                policy=policy,
                country=settings.scrape_country,
                limit=settings.scrape_limit,
                id_strategy=id_strategy,
                default_closing_days=settings.default_closing_days,
            ),
            settings.ethiojobs_interval_seconds,
        ),
        (
            IndeedSource(
                scraper_client,
                policy=policy,
                query=settings.indeed_query,
                country=settings.scrape_country,
                limit=settings.scrape_limit,
                id_strategy=id_strategy,
                default_closing_days=settings.default_closing_days,
            ),
            settings.indeed_interval_seconds,
        ),
    ]
    for board_class in (
        RemoteOKSource,
        ArbeitnowSource,
        RemotiveSource,
        JobicySource,
        HimalayasSource,
        WeWorkRemotelySource,
    ):
        adapters.append((board_class(api_client, **board_options), settings.job_board_interval_seconds))
    adapters.append(
        (
            EthioJobApiSource(
                api_client,
                base_url=settings.ethio_job_api_url,
                api_key=settings.ethio_job_api_key,
                **board_options,
            ),
            settings.job_board_interval_seconds,
        )
    )
    return adapters


async def build_store(settings: Settings, *, clock: Clock = utc_now) -> JobStore:
    if not settings.database_url:
        logger.warning("JOBSYNC_DATABASE_URL not set; using in-memory job store")
        return InMemoryJobStore(clock=clock)
    repository = PostgresJobRepository(
        database_url=settings.database_url,
        min_pool_size=settings.database_pool_min_size,
        max_pool_size=settings.database_pool_max_size,
    )
    await repository.ensure_schema()
    return repository


async def build_runtime(
    settings: Settings | None = None,
    *,
    store: JobStore | None = None,
    api_client: httpx.AsyncClient | None = None,
    scraper_client: httpx.AsyncClient | None = None,
    clock: Clock = utc_now,
) -> SyncRuntime:
    settings = settings or get_settings()
    api_client = api_client or httpx.AsyncClient(timeout=httpx.Timeout(settings.api_timeout_seconds))
    scraper_client = scraper_client or httpx.AsyncClient(
        timeout=httpx.Timeout(settings.scraper_timeout_seconds),
        follow_redirects=True,
    )
    store = store or await build_store(settings, clock=clock)

    events = StoreEvents()
    cache = ReadCache(ttl_seconds=settings.cache_ttl_seconds, max_entries=settings.cache_max_entries)
    cache.bind(events)

    policy = retry_policy_from(settings)
    fanout = NotificationFanout(
        store,
        ExpoPushClient(
            api_client,
            url=settings.push_api_url,
            access_token=settings.push_access_token,
            timeout_seconds=settings.push_timeout_seconds,
        ),
        batch_size=settings.push_batch_size,
        clock=clock,
    )
    orchestrator = SyncOrchestrator(
        store,
        UpsertEngine(store, events),
        sweeper=CleanupSweeper(store, stale_after_days=settings.stale_after_days, events=events, clock=clock),
        fanout=fanout,
        cleanup_after_sync=settings.cleanup_after_sync,
        cache=cache,
        clock=clock,
    )

    enabled = set(settings.enabled_sources) if settings.enabled_sources else None
    for adapter, interval in build_adapters(
        settings,
        api_client=api_client,
        scraper_client=scraper_client,
        policy=policy,
    ):
        orchestrator.register(
            adapter,
            interval_seconds=interval,
            enabled=enabled is None or adapter.name in enabled,
        )
    logger.info("sync runtime ready sources=%s", ",".join(orchestrator.sources))

    return SyncRuntime(
        settings=settings,
        api_client=api_client,
        scraper_client=scraper_client,
        store=store,
        events=events,
        cache=cache,
        orchestrator=orchestrator,
        fanout=fanout,
    )
