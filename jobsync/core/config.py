from functools import lru_cache

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    app_name: str = "jobsync"
    environment: str = "dev"
    log_level: str = "INFO"
    database_url: str | None = None
    database_pool_min_size: int = 1
    database_pool_max_size: int = 10

    retry_max_attempts: int = 5
    retry_base_delay_seconds: float = 1.0
    retry_max_delay_seconds: float = 30.0
    retry_attempt_timeout_seconds: float = 45.0
    page_delay_seconds: float = 0.5
    api_timeout_seconds: float = 30.0
    scraper_timeout_seconds: float = 15.0

    enabled_sources: list[str] | None = None
    reliefweb_interval_seconds: float = 300.0
    ethiojobs_interval_seconds: float = 21600.0
    indeed_interval_seconds: float = 14400.0
    job_board_interval_seconds: float = 21600.0

    reliefweb_api_url: str = "https://api.reliefweb.int/v2/jobs"
    reliefweb_appname: str = "jobsync"
    reliefweb_country: str = "Ethiopia"
    reliefweb_page_size: int = 100
    reliefweb_max_pages: int = 5
    scrape_country: str = "Ethiopia"
    indeed_query: str = "NGO OR humanitarian OR development"
    scrape_limit: int = 100
    job_board_limit: int = 100
    ethio_job_api_url: str = "https://ethio-job-api.onrender.com"
    ethio_job_api_key: str | None = None
    default_closing_days: int = 30
    scraped_id_strategy: str = "content_hash"

    stale_after_days: int = 30
    cleanup_after_sync: bool = True
    cleanup_interval_seconds: float = 86400.0
    daily_digest_interval_seconds: float = 86400.0
    weekly_digest_interval_seconds: float = 604800.0
    scheduler_tick_seconds: float = 60.0
    scheduler_enabled: bool = False

    push_api_url: str = "https://exp.host/--/api/v2/push/send"
    push_access_token: str | None = None
    push_batch_size: int = 100
    push_timeout_seconds: float = 15.0

    sync_secret: str | None = None
    cache_ttl_seconds: float = 300.0
    cache_max_entries: int = 200

    otel_enabled: bool = True
    otel_service_name: str = "jobsync"
    otel_exporter_otlp_endpoint: str | None = None
    otel_exporter_otlp_headers: str | None = None
    otel_trace_sample_ratio: float = 1.0
    otel_log_correlation: bool = True

    model_config = SettingsConfigDict(env_prefix="JOBSYNC_", extra="ignore")


@lru_cache
def get_settings() -> Settings:
    return Settings()
