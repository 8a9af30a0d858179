from datetime import datetime, timezone
from typing import Literal

from pydantic import BaseModel, Field, field_validator

from jobsync.core.urls import is_http_url

ExperienceLevel = Literal["Entry", "Mid", "Senior", "Director", "Unknown"]
EXPERIENCE_LEVELS: tuple[str, ...] = ("Entry", "Mid", "Senior", "Director", "Unknown")
UpsertStatus = Literal["created", "updated"]


class CanonicalJob(BaseModel):
    """The normalized listing shape every source adapter produces."""

    source: str = Field(min_length=1)
    source_id: str = Field(min_length=1)
    title: str = Field(min_length=1)
    organization: str = Field(min_length=1)
    location: str
    country: str
    category: str = "General"
    experience_level: ExperienceLevel = "Unknown"
    description: str = ""
    skills: set[str] = Field(default_factory=set)
    salary: str | None = None
    apply_url: str
    posted_date: datetime
    closing_date: datetime | None = None

    @field_validator("source", "source_id", "title", "organization", mode="before")
    @classmethod
    def _strip_required_text(cls, value: object) -> object:
        if isinstance(value, str):
            return value.strip()
        return value

    @field_validator("skills", mode="before")
    @classmethod
    def _clean_skills(cls, value: object) -> object:
        if value is None:
            return set()
        if isinstance(value, (list, tuple, set, frozenset)):
            return {item.strip() for item in value if isinstance(item, str) and item.strip()}
        return value

    @field_validator("apply_url")
    @classmethod
    def _require_http_url(cls, value: str) -> str:
        if not is_http_url(value):
            raise ValueError(f"apply_url must be an absolute http(s) URL: {value!r}")
        return value.strip()

    @field_validator("posted_date", "closing_date")
    @classmethod
    def _as_utc(cls, value: datetime | None) -> datetime | None:
        if value is None:
            return None
        if value.tzinfo is None:
            return value.replace(tzinfo=timezone.utc)
        return value.astimezone(timezone.utc)

    @property
    def dedup_key(self) -> tuple[str, str]:
        return (self.source, self.source_id)


class StoredJob(CanonicalJob):
    id: str
    created_at: datetime
    updated_at: datetime

    @property
    def is_new(self) -> bool:
        return self.created_at == self.updated_at
