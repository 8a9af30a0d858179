from datetime import datetime

from pydantic import BaseModel, Field


class SyncRun(BaseModel):
    source: str
    started_at: datetime
    finished_at: datetime | None = None
    fetched: int = 0
    created: int = 0
    updated: int = 0
    errors: int = 0
    deleted: int = 0
    success: bool = True
    error_message: str | None = None


class CleanupStats(BaseModel):
    expired: int = 0
    stale: int = 0
    total: int = 0
    success: bool = True
    error_message: str | None = None


class NotificationStats(BaseModel):
    subscriptions: int = 0
    matched: int = 0
    devices: int = 0
    notified: int = 0
    failed: int = 0
    deactivated: int = 0


class SourceStatus(BaseModel):
    source: str
    enabled: bool = True
    count: int = 0
    interval_seconds: float
    running: bool = False
    last_run_at: datetime | None = None
    next_eligible_at: datetime | None = None
    last_run: SyncRun | None = None


class OrchestratorStatus(BaseModel):
    total: int = 0
    sources: dict[str, SourceStatus] = Field(default_factory=dict)
