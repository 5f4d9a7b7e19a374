"""Background processor for queued generation jobs."""

from __future__ import annotations

import asyncio
import contextlib
import logging
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from datetime import UTC, datetime, timedelta
from typing import Any, Literal

from app.ai.providers.base import ProviderError, RateLimitedError, TerminalProviderError
from app.config import Settings
from app.jobs.dispatch import JobHandlerRegistry, UnsupportedJobTypeError, process_job
from app.jobs.models import THROTTLE_SECONDS, JobRecord, JobValidationError
from app.storage.jobs_repo import JobsRepository

Outcome = Literal["idle", "completed", "requeued", "deferred", "failed", "dropped"]
Clock = Callable[[], datetime]
Sleep = Callable[[float], Awaitable[None]]

_MAX_ERROR_MESSAGE_CHARS = 2000


def _utcnow() -> datetime:
  return datetime.now(UTC)


@dataclass(frozen=True)
class WorkerOutcome:
  """What happened to one claimed job (or `idle` when nothing was claimable)."""

  outcome: Outcome
  job_id: str | None = None
  job_type: str | None = None
  retry_after: float | None = None


@dataclass
class WorkerTickResult:
  outcomes: list[WorkerOutcome] = field(default_factory=list)

  @property
  def processed(self) -> int:
    return sum(1 for item in self.outcomes if item.outcome != "idle")


def _error_details(exc: BaseException) -> dict[str, Any]:
  details: dict[str, Any] = {"type": type(exc).__name__}
  if isinstance(exc, ProviderError) and exc.details:
    details["provider"] = exc.details
  return details


def _error_message(exc: BaseException) -> str:
  message = str(exc) or type(exc).__name__
  return message[:_MAX_ERROR_MESSAGE_CHARS]


class JobWorker:
  """Claims one eligible job at a time and drives it to its next state."""

  def __init__(self, *, jobs_repo: JobsRepository, registry: JobHandlerRegistry, settings: Settings, clock: Clock | None = None, sleep: Sleep | None = None) -> None:
    self._jobs_repo = jobs_repo
    self._registry = registry
    self._settings = settings
    self._clock = clock or _utcnow
    self._sleep = sleep or asyncio.sleep
    self._logger = logging.getLogger(__name__)

  async def run_tick(self) -> WorkerTickResult:
    """Process up to `worker_jobs_per_tick` jobs, stopping early when the queue is empty."""
    tick = WorkerTickResult()
    for _ in range(self._settings.worker_jobs_per_tick):
      outcome = await self.run_once()
      tick.outcomes.append(outcome)
      if outcome.outcome == "idle":
        break
    return tick

  async def run_once(self) -> WorkerOutcome:
    """Claim and process a single job."""
    now = self._clock()
    stall_before = now - timedelta(seconds=self._settings.job_stall_seconds)
    job = await self._jobs_repo.claim_next(now=now, stall_before=stall_before)
    if job is None:
      self._logger.info("No jobs to process")
      return WorkerOutcome(outcome="idle")

    self._logger.info("Claimed job %s type=%s attempt=%s stalls=%s retry_count=%s/%s", job.job_id, job.job_type, job.processing_attempts, job.stall_count, job.retry_count, job.max_retries)

    # Only reclaims of a stale row count here; deferrals and requeues leave stall_count alone.
    if job.stall_count > self._settings.job_max_stalls:
      return await self._abandon_stalled(job)

    # Run the handler, then hold the per-type spacing before the next claim.
    outcome = await self._execute(job)
    await self._pause_after(job, outcome)
    return outcome

  async def _abandon_stalled(self, job: JobRecord) -> WorkerOutcome:
    """Fail a job whose workers keep dying mid-run instead of claiming it again."""
    message = f"Job stalled {job.stall_count} times without finishing"
    self._logger.error("Abandoning stalled job %s after %s stalls", job.job_id, job.stall_count)
    details = {"type": "stalled", "stall_count": job.stall_count, "processing_attempts": job.processing_attempts}
    updated = await self._jobs_repo.fail_job(job.job_id, error_message=message, error_details=details, now=self._clock())
    if updated is None:
      return self._dropped(job)
    return WorkerOutcome(outcome="failed", job_id=job.job_id, job_type=job.job_type)

  async def _execute(self, job: JobRecord) -> WorkerOutcome:
    """Run the handler under a heartbeat and map its outcome onto the job row."""
    # Keep the claim fresh while the producer call is in flight.
    heartbeat = asyncio.create_task(self._heartbeat_loop(job.job_id))
    try:
      processed = await process_job(job, self._registry)
    except RateLimitedError as exc:
      # A hinted rate limit is the provider asking us to wait, not a failure of the job.
      if exc.retry_after is None:
        return await self._count_failure(job, exc)
      return await self._defer(job, exc)
    except (TerminalProviderError, JobValidationError, UnsupportedJobTypeError) as exc:
      # Retrying cannot help these.
      return await self._fail_terminal(job, exc)
    except Exception as exc:  # noqa: BLE001
      # Anything else is treated as transient so the job never stays in processing.
      return await self._count_failure(job, exc)
    finally:
      heartbeat.cancel()
      with contextlib.suppress(asyncio.CancelledError):
        await heartbeat

    # A cancel that landed mid-run makes this update miss.
    updated = await self._jobs_repo.complete_job(job.job_id, result=processed.result, now=self._clock())
    if updated is None:
      return self._dropped(job)
    self._logger.info("Job %s completed", job.job_id)
    return WorkerOutcome(outcome="completed", job_id=job.job_id, job_type=job.job_type)

  async def _defer(self, job: JobRecord, exc: RateLimitedError) -> WorkerOutcome:
    updated = await self._jobs_repo.defer_job(job.job_id, now=self._clock())
    if updated is None:
      return self._dropped(job)
    self._logger.warning("Job %s rate limited; deferred without consuming retries (retry_after=%.1fs)", job.job_id, exc.retry_after)
    return WorkerOutcome(outcome="deferred", job_id=job.job_id, job_type=job.job_type, retry_after=exc.retry_after)

  async def _count_failure(self, job: JobRecord, exc: BaseException) -> WorkerOutcome:
    """Spend one retry; requeue while budget remains, fail once it is gone."""
    retry_count = job.retry_count + 1
    if retry_count < job.max_retries:
      self._logger.warning("Job %s failed (%s/%s), will be retried: %s", job.job_id, retry_count, job.max_retries, _error_message(exc), exc_info=not isinstance(exc, ProviderError))
      updated = await self._jobs_repo.requeue_job(job.job_id, retry_count=retry_count, now=self._clock())
      if updated is None:
        return self._dropped(job)
      return WorkerOutcome(outcome="requeued", job_id=job.job_id, job_type=job.job_type)

    # Budget exhausted.
    self._logger.error("Job %s permanently failed after %s attempts: %s", job.job_id, retry_count, _error_message(exc), exc_info=not isinstance(exc, ProviderError))
    details = _error_details(exc)
    details["retry_count"] = min(retry_count, job.max_retries)
    updated = await self._jobs_repo.fail_job(job.job_id, error_message=_error_message(exc), error_details=details, now=self._clock(), retry_count=min(retry_count, job.max_retries))
    if updated is None:
      return self._dropped(job)
    return WorkerOutcome(outcome="failed", job_id=job.job_id, job_type=job.job_type)

  async def _fail_terminal(self, job: JobRecord, exc: BaseException) -> WorkerOutcome:
    self._logger.error("Job %s failed with a non-retryable error: %s", job.job_id, _error_message(exc))
    updated = await self._jobs_repo.fail_job(job.job_id, error_message=_error_message(exc), error_details=_error_details(exc), now=self._clock())
    if updated is None:
      return self._dropped(job)
    return WorkerOutcome(outcome="failed", job_id=job.job_id, job_type=job.job_type)

  def _dropped(self, job: JobRecord) -> WorkerOutcome:
    # The row left `processing` while we worked (user cancel); its outcome is discarded.
    self._logger.info("Job %s is no longer processing; dropping its outcome", job.job_id)
    return WorkerOutcome(outcome="dropped", job_id=job.job_id, job_type=job.job_type)

  async def _pause_after(self, job: JobRecord, outcome: WorkerOutcome) -> None:
    """Sleep for the job type throttle, or the capped rate-limit hint when that is longer."""
    delay = THROTTLE_SECONDS.get(job.job_type, 0.0)
    if outcome.outcome == "deferred" and outcome.retry_after is not None:
      delay = max(delay, min(outcome.retry_after, float(self._settings.worker_max_backoff_seconds)))
    if delay <= 0:
      return
    self._logger.info("Rate limiting: waiting %.1fs after job %s (%s)", delay, job.job_id, outcome.outcome)
    await self._sleep(delay)

  async def _heartbeat_loop(self, job_id: str) -> None:
    interval = self._settings.job_heartbeat_seconds
    while True:
      await asyncio.sleep(interval)
      try:
        alive = await self._jobs_repo.heartbeat(job_id, now=self._clock())
      except Exception:  # noqa: BLE001
        self._logger.warning("Heartbeat failed for job %s", job_id, exc_info=True)
        continue
      if not alive:
        self._logger.info("Heartbeat stopped for job %s; it is no longer processing", job_id)
        return


async def run_worker_tick(settings: Settings) -> WorkerTickResult:
  """Build production collaborators and run one scheduler tick."""
  from app.jobs.handlers import build_default_registry
  from app.storage.factory import _get_jobs_repo

  worker = JobWorker(jobs_repo=_get_jobs_repo(settings), registry=build_default_registry(settings), settings=settings)
  result = await worker.run_tick()
  logging.getLogger(__name__).info("Worker tick finished processed=%s outcomes=%s", result.processed, [item.outcome for item in result.outcomes])
  return result
