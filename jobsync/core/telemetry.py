from __future__ import annotations

from dataclasses import dataclass
import logging
import os

from opentelemetry import trace
from opentelemetry.exporter.otlp.proto.http.trace_exporter import OTLPSpanExporter
from opentelemetry.instrumentation.httpx import HTTPXClientInstrumentor
from opentelemetry.sdk.resources import DEPLOYMENT_ENVIRONMENT, SERVICE_NAME, Resource
from opentelemetry.sdk.trace import TracerProvider
from opentelemetry.sdk.trace.export import BatchSpanProcessor
from opentelemetry.sdk.trace.sampling import TraceIdRatioBased
from opentelemetry.trace import Span, Status, StatusCode

from jobsync.core.config import Settings
from jobsync.schemas.sync import CleanupStats, SyncRun

LOG_FORMAT = "%(asctime)s %(levelname)s %(name)s trace_id=%(trace_id)s span_id=%(span_id)s %(message)s"

# Counters copied from a finished SyncRun onto its span.
SYNC_RUN_COUNTERS = ("fetched", "created", "updated", "errors", "deleted")

_BASE_LOG_RECORD_FACTORY = logging.getLogRecordFactory()
_LOG_CORRELATION_INSTALLED = False
_HTTPX_INSTRUMENTOR = HTTPXClientInstrumentor()


@dataclass(slots=True)
class TelemetryRuntime:
    component: str
    provider: TracerProvider | None

    @property
    def enabled(self) -> bool:
        return self.provider is not None


def configure_logging(level: int | str = logging.INFO) -> None:
    _install_log_correlation()
    if logging.getLogger().handlers:
        return
    if isinstance(level, str):
        level = logging.getLevelName(level.upper())
        if not isinstance(level, int):
            level = logging.INFO
    logging.basicConfig(level=level, format=LOG_FORMAT)


def build_resource(settings: Settings, component: str) -> Resource:
    """Resource shared by every span of one process: api, scheduler or manual."""
    sources = ",".join(settings.enabled_sources) if settings.enabled_sources else "all"
    return Resource.create(
        {
            SERVICE_NAME: settings.otel_service_name,
            DEPLOYMENT_ENVIRONMENT: settings.environment,
            "jobsync.component": component,
            "jobsync.sources": sources,
            "jobsync.scheduler_enabled": settings.scheduler_enabled,
        }
    )


def setup_telemetry(settings: Settings, *, component: str = "scheduler") -> TelemetryRuntime:
    if not settings.otel_enabled:
        return TelemetryRuntime(component=component, provider=None)

    if settings.otel_log_correlation:
        _install_log_correlation()

    provider = TracerProvider(
        resource=build_resource(settings, component),
        sampler=TraceIdRatioBased(settings.otel_trace_sample_ratio),
    )
    exporter = _build_exporter(settings)
    if exporter is not None:
        provider.add_span_processor(BatchSpanProcessor(exporter))
    trace.set_tracer_provider(provider)
    # Covers both the API client and the scraper client.
    _HTTPX_INSTRUMENTOR.instrument()
    logging.getLogger(__name__).info(
        "telemetry enabled component=%s exporter=%s", component, "otlp" if exporter else "none"
    )
    return TelemetryRuntime(component=component, provider=provider)


def shutdown_telemetry(runtime: TelemetryRuntime) -> None:
    if runtime.provider is None:
        return
    _HTTPX_INSTRUMENTOR.uninstrument()
    runtime.provider.force_flush()
    runtime.provider.shutdown()


def record_sync_run(span: Span, run: SyncRun) -> None:
    span.set_attribute("sync.source", run.source)
    span.set_attribute("sync.success", run.success)
    for name in SYNC_RUN_COUNTERS:
        span.set_attribute(f"sync.{name}", getattr(run, name))
    if not run.success:
        span.set_status(Status(StatusCode.ERROR, run.error_message or "sync failed"))


def record_cleanup(span: Span, stats: CleanupStats) -> None:
    span.set_attribute("cleanup.expired", stats.expired)
    span.set_attribute("cleanup.stale", stats.stale)
    span.set_attribute("cleanup.success", stats.success)
    if not stats.success:
        span.set_status(Status(StatusCode.ERROR, stats.error_message or "cleanup failed"))


def _build_exporter(settings: Settings) -> OTLPSpanExporter | None:
    endpoint = (
        settings.otel_exporter_otlp_endpoint
        or os.getenv("OTEL_EXPORTER_OTLP_TRACES_ENDPOINT")
        or os.getenv("OTEL_EXPORTER_OTLP_ENDPOINT")
    )
    if not endpoint:
        return None
    headers = parse_headers(settings.otel_exporter_otlp_headers or os.getenv("OTEL_EXPORTER_OTLP_HEADERS"))
    return OTLPSpanExporter(endpoint=endpoint, headers=headers or None)


def parse_headers(raw: str | None) -> dict[str, str]:
    """``key=value,key2=value2`` as used by OTEL_EXPORTER_OTLP_HEADERS."""
    parsed: dict[str, str] = {}
    for item in (raw or "").split(","):
        key, separator, value = item.partition("=")
        if separator and key.strip():
            parsed[key.strip()] = value.strip()
    return parsed


def _install_log_correlation() -> None:
    global _LOG_CORRELATION_INSTALLED
    if _LOG_CORRELATION_INSTALLED:
        return

    def record_factory(*args: object, **kwargs: object) -> logging.LogRecord:
        record = _BASE_LOG_RECORD_FACTORY(*args, **kwargs)
        context = trace.get_current_span().get_span_context()
        record.trace_id = format(context.trace_id, "032x") if context.is_valid else "0" * 32
        record.span_id = format(context.span_id, "016x") if context.is_valid else "0" * 16
        return record

    logging.setLogRecordFactory(record_factory)
    _LOG_CORRELATION_INSTALLED = True
