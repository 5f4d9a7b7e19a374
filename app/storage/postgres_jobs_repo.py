"""Postgres-backed repository for background jobs using SQLAlchemy."""

from __future__ import annotations

from collections.abc import Iterable
from datetime import UTC, datetime
from typing import Any

from sqlalchemy import and_, delete, func, or_, select, update
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from app.core.database import get_session_factory
from app.jobs.models import JobRecord
from app.schema.jobs import Job
from app.storage.jobs_repo import JobsRepository

# Candidates inspected per claim; losing a race on one falls through to the next.
_CLAIM_BATCH = 5


def _as_utc(value: datetime | None) -> datetime | None:
  # SQLite drops tzinfo on the way back; every stored timestamp is UTC.
  if value is None:
    return None
  if value.tzinfo is None:
    return value.replace(tzinfo=UTC)
  return value.astimezone(UTC)


class PostgresJobsRepository(JobsRepository):
  """Persist jobs to Postgres using SQLAlchemy."""

  def __init__(self, session_factory: async_sessionmaker[AsyncSession] | None = None) -> None:
    self._session_factory = session_factory or get_session_factory()
    if self._session_factory is None:
      raise RuntimeError("Database not initialized")

  async def create_job(self, record: JobRecord) -> None:
    async with self._session_factory() as session:
      job = Job(
        job_id=record.job_id,
        user_id=record.user_id,
        job_type=record.job_type,
        parameters=record.parameters,
        status=record.status,
        priority=record.priority,
        story_id=record.story_id,
        result=record.result,
        error_message=record.error_message,
        error_details=record.error_details,
        retry_count=record.retry_count,
        max_retries=record.max_retries,
        processing_attempts=record.processing_attempts,
        stall_count=record.stall_count,
        created_at=record.created_at,
        updated_at=record.updated_at,
        started_at=record.started_at,
        completed_at=record.completed_at,
        estimated_completion_at=record.estimated_completion_at,
        last_heartbeat_at=record.last_heartbeat_at,
      )
      session.add(job)
      await session.commit()

  async def get_job(self, job_id: str) -> JobRecord | None:
    async with self._session_factory() as session:
      row = await session.get(Job, job_id)
      if row is None:
        return None
      return self._model_to_record(row)

  async def get_job_for_user(self, job_id: str, *, user_id: str) -> JobRecord | None:
    async with self._session_factory() as session:
      stmt = select(Job).where(Job.job_id == job_id, Job.user_id == user_id)
      row = (await session.execute(stmt)).scalar_one_or_none()
      if row is None:
        return None
      return self._model_to_record(row)

  async def list_jobs_for_user(self, *, user_id: str, statuses: Iterable[str] | None = None, limit: int = 50) -> list[JobRecord]:
    async with self._session_factory() as session:
      stmt = select(Job).where(Job.user_id == user_id)
      status_list = list(statuses or [])
      if status_list:
        stmt = stmt.where(Job.status.in_(status_list))
      stmt = stmt.order_by(Job.created_at.desc(), Job.job_id.desc()).limit(limit)
      rows = (await session.execute(stmt)).scalars().all()
      return [self._model_to_record(row) for row in rows]

  async def claim_next(self, *, now: datetime, stall_before: datetime) -> JobRecord | None:
    """Atomically move the next eligible job to processing and return it, or None when idle.

    Eligible means pending, or processing with a heartbeat older than `stall_before`. Only the
    second branch bumps `stall_count`.
    """
    fresh = Job.status == "pending"
    stale = and_(Job.status == "processing", Job.last_heartbeat_at < stall_before)
    claim_values = {
      "status": "processing",
      "started_at": func.coalesce(Job.started_at, now),
      "last_heartbeat_at": now,
      "processing_attempts": Job.processing_attempts + 1,
      "updated_at": now,
    }
    async with self._session_factory() as session:
      # SKIP LOCKED keeps concurrent Postgres workers off the same candidates; dialects without
      # row locks (SQLite) drop the clause and rely on the conditional updates below.
      candidate_stmt = select(Job.job_id).where(or_(fresh, stale)).order_by(Job.priority.asc(), Job.created_at.asc()).limit(_CLAIM_BATCH).with_for_update(skip_locked=True)
      candidate_ids = list((await session.execute(candidate_stmt)).scalars().all())
      for job_id in candidate_ids:
        # Try the pending branch first, then the stale reclaim; a zero rowcount means another worker won.
        for condition, values in ((fresh, claim_values), (stale, {**claim_values, "stall_count": Job.stall_count + 1})):
          claim_stmt = update(Job).where(Job.job_id == job_id, condition).values(**values).execution_options(synchronize_session=False)
          result = await session.execute(claim_stmt)
          if result.rowcount == 1:
            await session.commit()
            row = await session.get(Job, job_id, populate_existing=True)
            return self._model_to_record(row) if row is not None else None
      await session.commit()
      return None

  async def heartbeat(self, job_id: str, *, now: datetime) -> bool:
    async with self._session_factory() as session:
      stmt = update(Job).where(Job.job_id == job_id, Job.status == "processing").values(last_heartbeat_at=now).execution_options(synchronize_session=False)
      result = await session.execute(stmt)
      await session.commit()
      return result.rowcount == 1

  async def complete_job(self, job_id: str, *, result: dict[str, Any], now: datetime) -> JobRecord | None:
    return await self._update_processing(job_id, status="completed", result=result, error_message=None, error_details=None, completed_at=now, last_heartbeat_at=now, updated_at=now)

  async def defer_job(self, job_id: str, *, now: datetime) -> JobRecord | None:
    return await self._update_processing(job_id, status="pending", last_heartbeat_at=None, updated_at=now)

  async def requeue_job(self, job_id: str, *, retry_count: int, now: datetime) -> JobRecord | None:
    return await self._update_processing(job_id, status="pending", retry_count=retry_count, error_message=None, error_details=None, last_heartbeat_at=None, updated_at=now)

  async def fail_job(self, job_id: str, *, error_message: str, error_details: dict[str, Any] | None, now: datetime, retry_count: int | None = None) -> JobRecord | None:
    values: dict[str, Any] = {"status": "failed", "result": None, "error_message": error_message, "error_details": error_details, "completed_at": now, "updated_at": now}
    if retry_count is not None:
      values["retry_count"] = retry_count
    return await self._update_processing(job_id, **values)

  async def retry_job_for_user(self, job_id: str, *, user_id: str, now: datetime, estimated_completion_at: datetime | None = None) -> JobRecord | None:
    async with self._session_factory() as session:
      stmt = (
        update(Job)
        .where(Job.job_id == job_id, Job.user_id == user_id, Job.status == "failed")
        .values(
          status="pending",
          retry_count=0,
          processing_attempts=0,
          stall_count=0,
          error_message=None,
          error_details=None,
          result=None,
          started_at=None,
          completed_at=None,
          last_heartbeat_at=None,
          estimated_completion_at=estimated_completion_at,
          updated_at=now,
        )
        .execution_options(synchronize_session=False)
      )
      return await self._commit_and_reload(session, stmt, job_id)

  async def cancel_job_for_user(self, job_id: str, *, user_id: str, now: datetime) -> JobRecord | None:
    async with self._session_factory() as session:
      stmt = update(Job).where(Job.job_id == job_id, Job.user_id == user_id, Job.status.in_(("pending", "processing"))).values(status="cancelled", updated_at=now).execution_options(synchronize_session=False)
      return await self._commit_and_reload(session, stmt, job_id)

  async def delete_job_for_user(self, job_id: str, *, user_id: str) -> bool:
    async with self._session_factory() as session:
      stmt = delete(Job).where(Job.job_id == job_id, Job.user_id == user_id, Job.status == "pending", Job.processing_attempts == 0).execution_options(synchronize_session=False)
      result = await session.execute(stmt)
      await session.commit()
      return result.rowcount == 1

  async def _update_processing(self, job_id: str, **values: Any) -> JobRecord | None:
    async with self._session_factory() as session:
      stmt = update(Job).where(Job.job_id == job_id, Job.status == "processing").values(**values).execution_options(synchronize_session=False)
      return await self._commit_and_reload(session, stmt, job_id)

  async def _commit_and_reload(self, session: AsyncSession, stmt: Any, job_id: str) -> JobRecord | None:
    result = await session.execute(stmt)
    await session.commit()
    if result.rowcount != 1:
      return None
    row = await session.get(Job, job_id, populate_existing=True)
    if row is None:
      return None
    return self._model_to_record(row)

  def _model_to_record(self, row: Job) -> JobRecord:
    return JobRecord(
      job_id=row.job_id,
      user_id=row.user_id,
      job_type=row.job_type,  # type: ignore[arg-type]
      parameters=dict(row.parameters or {}),
      status=row.status,  # type: ignore[arg-type]
      priority=int(row.priority),
      created_at=_as_utc(row.created_at),  # type: ignore[arg-type]
      updated_at=_as_utc(row.updated_at),  # type: ignore[arg-type]
      story_id=row.story_id,
      result=row.result,
      error_message=row.error_message,
      error_details=row.error_details,
      retry_count=int(row.retry_count or 0),
      max_retries=int(row.max_retries or 0),
      processing_attempts=int(row.processing_attempts or 0),
      stall_count=int(row.stall_count or 0),
      started_at=_as_utc(row.started_at),
      completed_at=_as_utc(row.completed_at),
      estimated_completion_at=_as_utc(row.estimated_completion_at),
      last_heartbeat_at=_as_utc(row.last_heartbeat_at),
    )
