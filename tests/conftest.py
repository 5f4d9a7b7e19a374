"""Shared fixtures: settings, an in-memory jobs repository and a SQLite-backed one."""

from __future__ import annotations

import dataclasses
from collections.abc import Iterable
from datetime import UTC, datetime, timedelta
from typing import Any

import pytest
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from app.config import Settings, get_settings
from app.core.database import Base
from app.jobs.models import JobRecord
from app.schema.jobs import Job  # noqa: F401
from app.storage.postgres_jobs_repo import PostgresJobsRepository

T0 = datetime(2026, 1, 5, 9, 0, tzinfo=UTC)


@pytest.fixture
def anyio_backend() -> str:
  return "asyncio"


@pytest.fixture
def settings() -> Settings:
  return dataclasses.replace(get_settings(), task_secret="test-task-secret", job_max_retries=3, job_stall_seconds=300, job_heartbeat_seconds=30, job_max_stalls=5, worker_jobs_per_tick=1, worker_max_backoff_seconds=60)


class InMemoryJobsRepository:
  """Dict-backed double with the same conditional-update semantics as the SQL repository."""

  def __init__(self) -> None:
    self.jobs: dict[str, JobRecord] = {}

  async def create_job(self, record: JobRecord) -> None:
    self.jobs[record.job_id] = dataclasses.replace(record)

  async def get_job(self, job_id: str) -> JobRecord | None:
    record = self.jobs.get(job_id)
    return dataclasses.replace(record) if record else None

  async def get_job_for_user(self, job_id: str, *, user_id: str) -> JobRecord | None:
    record = self.jobs.get(job_id)
    if record is None or record.user_id != user_id:
      return None
    return dataclasses.replace(record)

  async def list_jobs_for_user(self, *, user_id: str, statuses: Iterable[str] | None = None, limit: int = 50) -> list[JobRecord]:
    wanted = set(statuses or [])
    rows = [record for record in self.jobs.values() if record.user_id == user_id and (not wanted or record.status in wanted)]
    rows.sort(key=lambda record: record.created_at, reverse=True)
    return [dataclasses.replace(record) for record in rows[:limit]]

  def _eligible(self, record: JobRecord, stall_before: datetime) -> bool:
    if record.status == "pending":
      return True
    return record.status == "processing" and record.last_heartbeat_at is not None and record.last_heartbeat_at < stall_before

  async def claim_next(self, *, now: datetime, stall_before: datetime) -> JobRecord | None:
    candidates = sorted((record for record in self.jobs.values() if self._eligible(record, stall_before)), key=lambda record: (record.priority, record.created_at))
    if not candidates:
      return None
    record = candidates[0]
    if record.status == "processing":
      record.stall_count += 1
    record.status = "processing"
    record.started_at = record.started_at or now
    record.last_heartbeat_at = now
    record.processing_attempts += 1
    record.updated_at = now
    return dataclasses.replace(record)

  async def heartbeat(self, job_id: str, *, now: datetime) -> bool:
    record = self.jobs.get(job_id)
    if record is None or record.status != "processing":
      return False
    record.last_heartbeat_at = now
    return True

  def _update_processing(self, job_id: str, **values: Any) -> JobRecord | None:
    record = self.jobs.get(job_id)
    if record is None or record.status != "processing":
      return None
    for key, value in values.items():
      setattr(record, key, value)
    return dataclasses.replace(record)

  async def complete_job(self, job_id: str, *, result: dict[str, Any], now: datetime) -> JobRecord | None:
    return self._update_processing(job_id, status="completed", result=result, error_message=None, error_details=None, completed_at=now, last_heartbeat_at=now, updated_at=now)

  async def defer_job(self, job_id: str, *, now: datetime) -> JobRecord | None:
    return self._update_processing(job_id, status="pending", last_heartbeat_at=None, updated_at=now)

  async def requeue_job(self, job_id: str, *, retry_count: int, now: datetime) -> JobRecord | None:
    return self._update_processing(job_id, status="pending", retry_count=retry_count, error_message=None, error_details=None, last_heartbeat_at=None, updated_at=now)

  async def fail_job(self, job_id: str, *, error_message: str, error_details: dict[str, Any] | None, now: datetime, retry_count: int | None = None) -> JobRecord | None:
    values: dict[str, Any] = {"status": "failed", "result": None, "error_message": error_message, "error_details": error_details, "completed_at": now, "updated_at": now}
    if retry_count is not None:
      values["retry_count"] = retry_count
    return self._update_processing(job_id, **values)

  async def retry_job_for_user(self, job_id: str, *, user_id: str, now: datetime, estimated_completion_at: datetime | None = None) -> JobRecord | None:
    record = self.jobs.get(job_id)
    if record is None or record.user_id != user_id or record.status != "failed":
      return None
    record.status = "pending"
    record.retry_count = 0
    record.processing_attempts = 0
    record.stall_count = 0
    record.error_message = None
    record.error_details = None
    record.result = None
    record.started_at = None
    record.completed_at = None
    record.last_heartbeat_at = None
    record.estimated_completion_at = estimated_completion_at
    record.updated_at = now
    return dataclasses.replace(record)

  async def cancel_job_for_user(self, job_id: str, *, user_id: str, now: datetime) -> JobRecord | None:
    record = self.jobs.get(job_id)
    if record is None or record.user_id != user_id or record.status not in ("pending", "processing"):
      return None
    record.status = "cancelled"
    record.updated_at = now
    return dataclasses.replace(record)

  async def delete_job_for_user(self, job_id: str, *, user_id: str) -> bool:
    record = self.jobs.get(job_id)
    if record is None or record.user_id != user_id or record.status != "pending" or record.processing_attempts != 0:
      return False
    del self.jobs[job_id]
    return True


def build_record(job_id: str = "job-1", *, user_id: str = "user-1", job_type: str = "story_generation", parameters: dict[str, Any] | None = None, created_at: datetime = T0, **overrides: Any) -> JobRecord:
  if parameters is None:
    parameters = {"topic": "A cat who loves sushi", "level": "N4", "length": "short"}
  values: dict[str, Any] = {
    "job_id": job_id,
    "user_id": user_id,
    "job_type": job_type,
    "parameters": parameters,
    "status": "pending",
    "priority": 100,
    "created_at": created_at,
    "updated_at": created_at,
    "max_retries": 3,
  }
  values.update(overrides)
  return JobRecord(**values)


@pytest.fixture
def jobs_repo() -> InMemoryJobsRepository:
  return InMemoryJobsRepository()


@pytest.fixture
def make_record():
  return build_record


@pytest.fixture
async def sqlite_session_factory(tmp_path):
  engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'jobs.db'}")
  async with engine.begin() as conn:
    await conn.run_sync(Base.metadata.create_all)
  yield async_sessionmaker(bind=engine, expire_on_commit=False, class_=AsyncSession)
  await engine.dispose()


@pytest.fixture
async def sqlite_repo(sqlite_session_factory) -> PostgresJobsRepository:
  return PostgresJobsRepository(session_factory=sqlite_session_factory)


@pytest.fixture
def advance():
  """Return `T0 + seconds` helpers for readable timelines."""

  def _at(seconds: float) -> datetime:
    return T0 + timedelta(seconds=seconds)

  return _at
