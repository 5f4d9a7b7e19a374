"""Client-side job queue manager.

Keeps a local map of the caller's jobs eventually consistent with the server by polling, backs it up
to a local cache so the UI has data before the first round trip, and fans changes out to subscribers.
One manager belongs to one authenticated session: `start()` when the session begins, `cleanup()` when
it ends.
"""

from __future__ import annotations

import asyncio
import contextlib
import logging
from collections.abc import Awaitable, Callable, Iterable
from typing import Any

from app.client.api_client import JobsBackend
from app.client.local_cache import JobCache
from app.client.models import ACTIVE_STATUSES, TERMINAL_STATUSES, JobQueueError, JobSnapshot
from app.client.notifications import JobNotifier, LoggingNotifier, StoryLibrary

logger = logging.getLogger(__name__)

Subscriber = Callable[[dict[str, JobSnapshot]], None]
Sleep = Callable[[float], Awaitable[None]]

DEFAULT_POLL_INTERVAL_SECONDS = 3.0
DEFAULT_FETCH_LIMIT = 50
DEFAULT_KEEP_TERMINAL = 20
# Cancelled jobs are fetched only so they can be evicted, whichever client cancelled them.
SYNC_STATUSES = ("pending", "processing", "completed", "failed", "cancelled")

JOB_TYPE_NAMES = {"story_generation": "Story", "audio_generation": "Audio", "image_generation": "Image"}


class JobQueueManager:
  def __init__(
    self,
    api: JobsBackend,
    cache: JobCache,
    *,
    notifier: JobNotifier | None = None,
    library: StoryLibrary | None = None,
    poll_interval: float = DEFAULT_POLL_INTERVAL_SECONDS,
    fetch_limit: int = DEFAULT_FETCH_LIMIT,
    keep_terminal: int = DEFAULT_KEEP_TERMINAL,
    sleep: Sleep | None = None,
  ) -> None:
    self._api = api
    self._cache = cache
    self._notifier = notifier or LoggingNotifier()
    self._library = library
    self._poll_interval = poll_interval
    self._fetch_limit = fetch_limit
    self._keep_terminal = keep_terminal
    self._sleep = sleep or asyncio.sleep
    self._jobs: dict[str, JobSnapshot] = {}
    self._subscribers: list[Subscriber] = []
    self._sync_lock = asyncio.Lock()
    self._poll_task: asyncio.Task[None] | None = None
    self._polling = False
    self._load_cache()

  @property
  def is_polling(self) -> bool:
    return self._polling

  def _load_cache(self) -> None:
    for job in self._cache.load():
      self._jobs[job.job_id] = job

  def _save_cache(self) -> None:
    self._cache.save(list(self._jobs.values()))

  async def start(self) -> bool:
    """Begin polling for the current session; returns False when there is no session."""
    if self._polling:
      logger.debug("Job queue already polling")
      return True
    if not await self._api.has_session():
      logger.info("No session found, skipping job queue initialization")
      return False

    self._polling = True
    logger.info("Starting job queue polling every %.1fs", self._poll_interval)
    await self.sync_jobs(force=True)
    self._poll_task = asyncio.create_task(self._poll_loop())
    return True

  async def stop(self) -> None:
    self._polling = False
    task, self._poll_task = self._poll_task, None
    if task is not None and task is not asyncio.current_task():
      task.cancel()
      with contextlib.suppress(asyncio.CancelledError):
        await task
    logger.info("Stopped job queue polling")

  async def cleanup(self) -> None:
    """Session end: stop polling and forget jobs and subscribers."""
    await self.stop()
    self._jobs.clear()
    self._subscribers.clear()
    logger.info("Job queue cleaned up")

  async def _poll_loop(self) -> None:
    while self._polling:
      await self._sleep(self._poll_interval)
      if not self._polling:
        break
      await self.sync_jobs()

  async def sync_jobs(self, *, force: bool = False) -> bool:
    """Reconcile server state into the local map.

    A timer tick is skipped while another sync is in flight; `force` waits for it instead. Returns
    whether a fetch ran.
    """
    if self._sync_lock.locked() and not force:
      logger.debug("Previous job sync still running; skipping tick")
      return False
    async with self._sync_lock:
      try:
        fetched = await self._api.list_jobs(statuses=SYNC_STATUSES, limit=self._fetch_limit)
      except JobQueueError as exc:
        logger.warning("Job sync failed: %s", exc)
        return True
      except Exception:  # noqa: BLE001
        logger.exception("Job sync error")
        return True
      self._reconcile(fetched)
      return True

  def _reconcile(self, fetched: Iterable[JobSnapshot]) -> None:
    """Merge one poll into the local map, firing transition side effects and evictions."""
    fetched = list(fetched)
    seen = {job.job_id for job in fetched}
    has_changes = False
    for job in fetched:
      existing = self._jobs.get(job.job_id)
      # Cancelled jobs leave the local view silently.
      if job.status == "cancelled":
        if existing is not None:
          del self._jobs[job.job_id]
          has_changes = True
        continue

      if existing is not None and existing.status == job.status:
        continue
      self._jobs[job.job_id] = job
      has_changes = True
      # First sightings never notify; only observed transitions do.
      if existing is None:
        continue
      if job.status == "completed":
        self._handle_completion(job)
      elif job.status == "failed":
        self._handle_failure(job)

    # A short page holds every synced job the caller has, so active jobs missing from it were deleted
    # server-side.
    if len(fetched) < self._fetch_limit and self._evict_missing(seen):
      has_changes = True

    # Bound local storage; the server keeps everything.
    if self._prune():
      has_changes = True
    if has_changes:
      self._save_cache()
      self._notify()

  def _evict_missing(self, seen: set[str]) -> bool:
    missing = [job_id for job_id, job in self._jobs.items() if job.status in ACTIVE_STATUSES and job_id not in seen]
    for job_id in missing:
      logger.info("Job %s no longer on the server; removing it locally", job_id)
      del self._jobs[job_id]
    return bool(missing)

  def _prune(self) -> bool:
    terminal = sorted((job for job in self._jobs.values() if job.status in TERMINAL_STATUSES), key=lambda job: job.created_at, reverse=True)
    evicted = terminal[self._keep_terminal :]
    for job in evicted:
      del self._jobs[job.job_id]
    return bool(evicted)

  def _handle_completion(self, job: JobSnapshot) -> None:
    type_name = JOB_TYPE_NAMES.get(job.job_type, "Job")
    self._notifier.success(f"{type_name} ready!")
    if job.job_type == "story_generation" and job.result and self._library is not None:
      try:
        self._library.add_story(job.result)
      except Exception:  # noqa: BLE001
        logger.exception("Failed to save story from job %s", job.job_id)
        return
      logger.info("Story saved to library: %s", job.result.get("id"))

  def _handle_failure(self, job: JobSnapshot) -> None:
    self._notifier.error(f"Job failed: {job.error_message or 'Unknown error'}")

  async def create_job(self, job_type: str, parameters: dict[str, Any], priority: int | None = None) -> str:
    """Create a job server-side and pull it into the local map right away."""
    try:
      created = await self._api.create_job(job_type, parameters, priority)
    except JobQueueError as exc:
      logger.error("Failed to create %s job: %s", job_type, exc)
      raise
    logger.info("Job created: %s (%s)", created.job_id, job_type)
    await self.sync_jobs(force=True)
    return created.job_id

  async def retry_job(self, job_id: str) -> None:
    try:
      await self._api.retry_job(job_id)
    except JobQueueError as exc:
      logger.error("Failed to retry job %s: %s", job_id, exc)
      self._notifier.error("Failed to retry job")
      raise
    self._notifier.info("Retrying job...")
    await self.sync_jobs(force=True)

  async def cancel_job(self, job_id: str) -> None:
    try:
      await self._api.cancel_job(job_id)
    except JobQueueError as exc:
      logger.error("Failed to cancel job %s: %s", job_id, exc)
      self._notifier.error("Failed to cancel job")
      raise
    if self._jobs.pop(job_id, None) is not None:
      self._save_cache()
      self._notify()
    self._notifier.info("Job cancelled")
    await self.sync_jobs(force=True)

  def subscribe(self, callback: Subscriber) -> Callable[[], None]:
    """Register a callback, call it with the current map, and return an unsubscribe function."""
    self._subscribers.append(callback)
    self._deliver(callback)

    def unsubscribe() -> None:
      if callback in self._subscribers:
        self._subscribers.remove(callback)

    return unsubscribe

  def _deliver(self, callback: Subscriber) -> None:
    try:
      callback(dict(self._jobs))
    except Exception:  # noqa: BLE001
      logger.exception("Subscriber error")

  def _notify(self) -> None:
    for callback in list(self._subscribers):
      self._deliver(callback)

  def get_jobs(self) -> dict[str, JobSnapshot]:
    return dict(self._jobs)

  def get_job(self, job_id: str) -> JobSnapshot | None:
    return self._jobs.get(job_id)

  def get_pending_count(self) -> int:
    return sum(1 for job in self._jobs.values() if job.status in ACTIVE_STATUSES)
