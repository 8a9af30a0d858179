from __future__ import annotations

import json
from datetime import datetime
from typing import Any

import asyncpg  # type: ignore[import-untyped]

from jobsync.schemas.alerts import AlertFrequency, AlertSubscription, Device
from jobsync.schemas.jobs import CanonicalJob, StoredJob


class RepositoryError(Exception):
    """Base repository error."""


class RepositoryUnavailableError(RepositoryError):
    """Raised when the database is unavailable or not configured."""


SCHEMA_SQL = """
create table if not exists jobs (
  id uuid primary key default gen_random_uuid(),
  source text not null,
  source_id text not null,
  title text not null,
  organization text not null,
  location text not null,
  country text not null,
  category text not null default 'General',
  experience_level text not null default 'Unknown',
  description text not null default '',
  skills jsonb not null default '[]'::jsonb,
  salary text,
  apply_url text not null,
  posted_date timestamptz not null,
  closing_date timestamptz,
  created_at timestamptz not null default now(),
  updated_at timestamptz not null default now()
);
create unique index if not exists jobs_source_source_id_key on jobs (source, source_id);
create index if not exists jobs_closing_date_idx on jobs (closing_date);
create index if not exists jobs_created_at_idx on jobs (created_at);

create table if not exists devices (
  push_token text primary key,
  platform text not null default 'android',
  is_active boolean not null default true,
  created_at timestamptz not null default now()
);

create table if not exists alert_subscriptions (
  id uuid primary key default gen_random_uuid(),
  device_token text not null references devices (push_token) on delete cascade,
  name text not null default 'My Job Alert',
  categories jsonb not null default '[]'::jsonb,
  locations jsonb not null default '[]'::jsonb,
  keywords jsonb not null default '[]'::jsonb,
  organizations jsonb not null default '[]'::jsonb,
  experience_levels jsonb not null default '[]'::jsonb,
  frequency text not null default 'immediate',
  is_active boolean not null default true,
  last_notified_at timestamptz,
  notification_count integer not null default 0
);
create index if not exists alert_subscriptions_device_idx on alert_subscriptions (device_token);
"""

JOB_COLUMNS = """
  id::text as id,
  source,
  source_id,
  title,
  organization,
  location,
  country,
  category,
  experience_level,
  description,
  skills,
  salary,
  apply_url,
  posted_date,
  closing_date,
  created_at,
  updated_at
"""

# An insert stamps created_at and updated_at from one now() reading so a new row
# reads as created. On conflict, clock_timestamp() plus greatest() keeps
# updated_at strictly after created_at.
UPSERT_JOB_SQL = f"""
insert into jobs (
  source, source_id, title, organization, location, country, category,
  experience_level, description, skills, salary, apply_url, posted_date, closing_date,
  created_at, updated_at
)
values ($1, $2, $3, $4, $5, $6, $7, $8, $9, $10::jsonb, $11, $12, $13, $14, now(), now())
on conflict (source, source_id) do update
set
  title = excluded.title,
  organization = excluded.organization,
  location = excluded.location,
  country = excluded.country,
  category = excluded.category,
  experience_level = excluded.experience_level,
  description = excluded.description,
  skills = excluded.skills,
  salary = excluded.salary,
  apply_url = excluded.apply_url,
  posted_date = excluded.posted_date,
  closing_date = excluded.closing_date,
  updated_at = greatest(clock_timestamp(), jobs.created_at + interval '1 microsecond')
returning {JOB_COLUMNS}
"""

# Driver-level failures that callers only ever see as RepositoryError.
DB_ERRORS = (asyncpg.PostgresError, asyncpg.InterfaceError)

SUBSCRIPTION_FILTERS = ("categories", "locations", "keywords", "organizations", "experience_levels")


class PostgresJobRepository:
    def __init__(
        self,
        database_url: str | None,
        min_pool_size: int,
        max_pool_size: int,
    ) -> None:
        self.database_url = database_url
        self.min_pool_size = min_pool_size
        self.max_pool_size = max_pool_size
        self._pool: asyncpg.Pool | None = None

    async def close(self) -> None:
        if self._pool is not None:
            await self._pool.close()
            self._pool = None

    async def ensure_schema(self) -> None:
        pool = await self._get_pool()
        async with pool.acquire() as conn:
            await conn.execute(SCHEMA_SQL)

    async def upsert_job(self, job: CanonicalJob) -> StoredJob:
        pool = await self._get_pool()
        try:
            row = await pool.fetchrow(
                UPSERT_JOB_SQL,
                job.source,
                job.source_id,
                job.title,
                job.organization,
                job.location,
                job.country,
                job.category,
                job.experience_level,
                job.description,
                json.dumps(sorted(job.skills)),
                job.salary,
                job.apply_url,
                job.posted_date,
                job.closing_date,
            )
        except DB_ERRORS as exc:
            raise RepositoryError(f"upsert failed for {job.source}/{job.source_id}") from exc
        if row is None:  # pragma: no cover - returning always yields a row
            raise RepositoryError(f"upsert returned no row for {job.source}/{job.source_id}")
        return self._job_row_to_model(row)

    async def find_job(self, source: str, source_id: str) -> StoredJob | None:
        pool = await self._get_pool()
        try:
            row = await pool.fetchrow(
                f"select {JOB_COLUMNS} from jobs where source = $1 and source_id = $2",
                source,
                source_id,
            )
        except DB_ERRORS as exc:
            raise RepositoryError(f"job lookup failed for {source}/{source_id}") from exc
        return self._job_row_to_model(row) if row is not None else None

    async def delete_expired(self, now: datetime) -> int:
        pool = await self._get_pool()
        try:
            result = await pool.execute("delete from jobs where closing_date < $1", now)
        except DB_ERRORS as exc:
            raise RepositoryError("expired-job delete failed") from exc
        return _affected_rows(result)

    async def delete_stale(self, created_before: datetime) -> int:
        pool = await self._get_pool()
        try:
            result = await pool.execute(
                "delete from jobs where closing_date is null and created_at < $1",
                created_before,
            )
        except DB_ERRORS as exc:
            raise RepositoryError("stale-job delete failed") from exc
        return _affected_rows(result)

    async def count_jobs(self, source: str | None = None) -> int:
        pool = await self._get_pool()
        try:
            if source is None:
                value = await pool.fetchval("select count(*) from jobs")
            else:
                value = await pool.fetchval("select count(*) from jobs where source = $1", source)
        except DB_ERRORS as exc:
            raise RepositoryError("job count failed") from exc
        return int(value or 0)

    async def list_jobs_created_since(self, since: datetime) -> list[StoredJob]:
        pool = await self._get_pool()
        try:
            rows = await pool.fetch(
                f"select {JOB_COLUMNS} from jobs where created_at >= $1 order by created_at asc",
                since,
            )
        except DB_ERRORS as exc:
            raise RepositoryError("recent-job listing failed") from exc
        return [self._job_row_to_model(row) for row in rows]

    async def add_device(self, device: Device) -> Device:
        pool = await self._get_pool()
        try:
            await pool.execute(
                """
                insert into devices (push_token, platform, is_active)
                values ($1, $2, $3)
                on conflict (push_token) do update
                set platform = excluded.platform, is_active = excluded.is_active
                """,
                device.push_token,
                device.platform,
                device.is_active,
            )
        except DB_ERRORS as exc:
            raise RepositoryError("device upsert failed") from exc
        return device

    async def add_subscription(self, subscription: AlertSubscription) -> AlertSubscription:
        pool = await self._get_pool()
        try:
            await pool.execute(
                """
                insert into alert_subscriptions (
                  id, device_token, name, categories, locations, keywords, organizations,
                  experience_levels, frequency, is_active, last_notified_at, notification_count
                )
                values ($1::uuid, $2, $3, $4::jsonb, $5::jsonb, $6::jsonb, $7::jsonb, $8::jsonb, $9, $10, $11, $12)
                on conflict (id) do nothing
                """,
                subscription.id,
                subscription.device_token,
                subscription.name,
                *(json.dumps(getattr(subscription, name)) for name in SUBSCRIPTION_FILTERS),
                subscription.frequency,
                subscription.is_active,
                subscription.last_notified_at,
                subscription.notification_count,
            )
        except DB_ERRORS as exc:
            raise RepositoryError(f"subscription insert failed for {subscription.id}") from exc
        return subscription

    async def list_active_subscriptions(self, frequency: AlertFrequency | None = None) -> list[AlertSubscription]:
        pool = await self._get_pool()
        try:
            rows = await pool.fetch(
                """
                select
                  id::text as id,
                  device_token,
                  name,
                  categories,
                  locations,
                  keywords,
                  organizations,
                  experience_levels,
                  frequency,
                  is_active,
                  last_notified_at,
                  notification_count
                from alert_subscriptions
                where is_active and ($1::text is null or frequency = $1::text)
                order by id
                """,
                frequency,
            )
        except DB_ERRORS as exc:
            raise RepositoryError("subscription listing failed") from exc
        return [self._subscription_row_to_model(row) for row in rows]

    async def mark_subscription_notified(self, subscription_id: str, at: datetime) -> None:
        pool = await self._get_pool()
        try:
            await pool.execute(
                """
                update alert_subscriptions
                set last_notified_at = $2, notification_count = notification_count + 1
                where id = $1::uuid
                """,
                subscription_id,
                at,
            )
        except DB_ERRORS as exc:
            raise RepositoryError(f"could not mark subscription {subscription_id} notified") from exc

    async def get_device(self, push_token: str) -> Device | None:
        pool = await self._get_pool()
        try:
            row = await pool.fetchrow(
                "select push_token, platform, is_active from devices where push_token = $1",
                push_token,
            )
        except DB_ERRORS as exc:
            raise RepositoryError("device lookup failed") from exc
        if row is None:
            return None
        return Device(push_token=row["push_token"], platform=row["platform"], is_active=row["is_active"])

    async def deactivate_device(self, push_token: str) -> None:
        pool = await self._get_pool()
        try:
            await pool.execute("update devices set is_active = false where push_token = $1", push_token)
        except DB_ERRORS as exc:
            raise RepositoryError("device deactivation failed") from exc

    async def _get_pool(self) -> asyncpg.Pool:
        if not self.database_url:
            raise RepositoryUnavailableError("JOBSYNC_DATABASE_URL is required")

        if self._pool is not None:
            return self._pool

        try:
            self._pool = await asyncpg.create_pool(
                dsn=self.database_url,
                min_size=self.min_pool_size,
                max_size=self.max_pool_size,
                command_timeout=15,
            )
            return self._pool
        except Exception as exc:  # pragma: no cover - depends on environment
            raise RepositoryUnavailableError("database unavailable") from exc

    @staticmethod
    def _job_row_to_model(row: asyncpg.Record) -> StoredJob:
        data = dict(row)
        data["skills"] = _json_list(data.get("skills"))
        return StoredJob(**data)

    @staticmethod
    def _subscription_row_to_model(row: asyncpg.Record) -> AlertSubscription:
        data = dict(row)
        for name in SUBSCRIPTION_FILTERS:
            data[name] = _json_list(data.get(name))
        return AlertSubscription(**data)


def _json_list(value: Any) -> list[Any]:
    if isinstance(value, str):
        try:
            value = json.loads(value)
        except json.JSONDecodeError:
            return []
    return list(value) if isinstance(value, list) else []


def _affected_rows(status: str) -> int:
    # asyncpg returns the command tag, e.g. "DELETE 3".
    try:
        return int(status.rsplit(" ", maxsplit=1)[-1])
    except (ValueError, AttributeError):
        return 0
