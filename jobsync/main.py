from __future__ import annotations

import asyncio
import logging
import random
import time

from opentelemetry import trace

from jobsync.core.config import Settings, get_settings
from jobsync.core.telemetry import configure_logging, setup_telemetry, shutdown_telemetry
from jobsync.services.runtime import SyncRuntime, build_runtime

logger = logging.getLogger(__name__)
tracer = trace.get_tracer(__name__)


async def run_scheduler(runtime: SyncRuntime, *, stop: asyncio.Event | None = None) -> None:
    """Tick forever: run due sources, then the periodic cleanup and digest cadences.

    Every iteration is its own error boundary; a failed tick backs off with
    jitter and the loop keeps going.
    """
    settings = runtime.settings
    orchestrator = runtime.orchestrator
    stop = stop or asyncio.Event()

    backoff = settings.scheduler_tick_seconds
    last_cleanup_at = time.monotonic()
    last_daily_digest_at = time.monotonic()
    last_weekly_digest_at = time.monotonic()

    while not stop.is_set():
        try:
            with tracer.start_as_current_span("scheduler.tick"):
                runs = await orchestrator.run_due_sources()
                for run in runs:
                    if not run.success:
                        logger.warning("scheduled sync failed source=%s error=%s", run.source, run.error_message)

                now = time.monotonic()
                if now - last_cleanup_at >= settings.cleanup_interval_seconds:
                    stats = await orchestrator.run_cleanup()
                    if stats.total:
                        logger.info("scheduled cleanup removed=%s", stats.total)
                    last_cleanup_at = now

                if now - last_daily_digest_at >= settings.daily_digest_interval_seconds:
                    await runtime.fanout.send_digest("daily")
                    last_daily_digest_at = now

                if now - last_weekly_digest_at >= settings.weekly_digest_interval_seconds:
                    await runtime.fanout.send_digest("weekly")
                    last_weekly_digest_at = now

            backoff = settings.scheduler_tick_seconds
            sleep_for = settings.scheduler_tick_seconds
        except Exception as exc:  # pragma: no cover - scheduler robustness
            jitter = random.uniform(0.0, 0.5)
            sleep_for = min(backoff * (2.0 + jitter), settings.retry_max_delay_seconds * 10)
            logger.exception("scheduler tick failed: %s; retry in %.1fs", exc, sleep_for)
            backoff = sleep_for

        try:
            await asyncio.wait_for(stop.wait(), timeout=sleep_for)
        except asyncio.TimeoutError:
            continue


async def run_service(settings: Settings | None = None) -> None:
    settings = settings or get_settings()
    configure_logging(settings.log_level)
    telemetry_runtime = setup_telemetry(settings, component="scheduler")
    runtime = await build_runtime(settings)
    try:
        await run_scheduler(runtime)
    finally:
        await runtime.close()
        shutdown_telemetry(telemetry_runtime)


def cli() -> None:
    asyncio.run(run_service())


if __name__ == "__main__":
    cli()
