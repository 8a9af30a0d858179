from __future__ import annotations

from opentelemetry.sdk.trace import TracerProvider
from opentelemetry.sdk.trace.export import SimpleSpanProcessor
from opentelemetry.sdk.trace.export.in_memory_span_exporter import InMemorySpanExporter
from opentelemetry.trace import StatusCode

from jobsync.core.config import Settings
from jobsync.core.telemetry import build_resource, parse_headers, record_cleanup, record_sync_run, setup_telemetry
from jobsync.schemas.sync import CleanupStats, SyncRun


def _tracer() -> tuple[InMemorySpanExporter, object]:
    exporter = InMemorySpanExporter()
    provider = TracerProvider()
    provider.add_span_processor(SimpleSpanProcessor(exporter))
    return exporter, provider.get_tracer("jobsync-test")


def test_parse_headers() -> None:
    assert parse_headers("authorization=Bearer abc, x-team = sync ,broken,=empty") == {
        "authorization": "Bearer abc",
        "x-team": "sync",
    }
    assert parse_headers(None) == {}


def test_resource_names_component_and_sources() -> None:
    settings = Settings(environment="prod", enabled_sources=["reliefweb", "indeed"], otel_enabled=False)

    attributes = build_resource(settings, "scheduler").attributes

    assert attributes["service.name"] == "jobsync"
    assert attributes["deployment.environment"] == "prod"
    assert attributes["jobsync.component"] == "scheduler"
    assert attributes["jobsync.sources"] == "reliefweb,indeed"


def test_disabled_telemetry_installs_nothing() -> None:
    runtime = setup_telemetry(Settings(otel_enabled=False), component="api")

    assert runtime.enabled is False
    assert runtime.component == "api"


def test_sync_run_counters_land_on_span(clock) -> None:
    exporter, tracer = _tracer()
    run = SyncRun(source="reliefweb", started_at=clock(), fetched=5, created=2, updated=3, deleted=1)

    with tracer.start_as_current_span("sync.run_source") as span:
        record_sync_run(span, run)

    [finished] = exporter.get_finished_spans()
    assert finished.attributes["sync.source"] == "reliefweb"
    assert finished.attributes["sync.created"] == 2
    assert finished.attributes["sync.updated"] == 3
    assert finished.attributes["sync.deleted"] == 1
    assert finished.status.status_code is StatusCode.UNSET


def test_failures_mark_span_as_error(clock) -> None:
    exporter, tracer = _tracer()

    with tracer.start_as_current_span("sync.run_source") as span:
        record_sync_run(span, SyncRun(source="indeed", started_at=clock(), success=False, error_message="HTTP 503"))
    with tracer.start_as_current_span("sync.cleanup") as span:
        record_cleanup(span, CleanupStats(expired=2, success=False, error_message="stale: timeout"))

    run_span, cleanup_span = exporter.get_finished_spans()
    assert run_span.status.status_code is StatusCode.ERROR
    assert run_span.status.description == "HTTP 503"
    assert cleanup_span.attributes["cleanup.expired"] == 2
    assert cleanup_span.status.status_code is StatusCode.ERROR
