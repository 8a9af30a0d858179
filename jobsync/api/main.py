from contextlib import asynccontextmanager, suppress
import asyncio
import logging
import time

from fastapi import FastAPI
from starlette.requests import Request

from jobsync.api.router import api_router
from jobsync.core.config import get_settings
from jobsync.core.telemetry import TelemetryRuntime, configure_logging, setup_telemetry, shutdown_telemetry
from jobsync.main import run_scheduler
from jobsync.services.runtime import build_runtime

settings = get_settings()
_telemetry_runtime: TelemetryRuntime | None = None
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    runtime = await build_runtime(settings)
    app.state.runtime = runtime
    stop = asyncio.Event()
    scheduler_task: asyncio.Task | None = None
    if settings.scheduler_enabled:
        scheduler_task = asyncio.create_task(run_scheduler(runtime, stop=stop))
        logger.info("background scheduler started tick_seconds=%s", settings.scheduler_tick_seconds)
    try:
        yield
    finally:
        stop.set()
        if scheduler_task is not None:
            scheduler_task.cancel()
            with suppress(asyncio.CancelledError):
                await scheduler_task
        app.state.runtime = None
        # Closes both HTTP clients and the asyncpg pool.
        await runtime.close()
        if _telemetry_runtime is not None:
            shutdown_telemetry(_telemetry_runtime)


configure_logging(settings.log_level)
app = FastAPI(title=settings.app_name, lifespan=lifespan)
_telemetry_runtime = setup_telemetry(settings, component="api")


@app.middleware("http")
async def request_logging_middleware(request: Request, call_next):
    started_at = time.perf_counter()
    response = await call_next(request)
    elapsed_ms = (time.perf_counter() - started_at) * 1000.0
    logger.info(
        "http request method=%s path=%s status=%s duration_ms=%.2f",
        request.method,
        request.url.path,
        response.status_code,
        elapsed_ms,
    )
    return response


app.include_router(api_router)
