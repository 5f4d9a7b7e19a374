import dataclasses
from datetime import UTC, datetime, timedelta
from typing import Any

import pytest

from app.ai.providers.base import RateLimitedError, TerminalProviderError, TransientProviderError
from app.jobs.dispatch import JobHandlerRegistry
from app.jobs.validators import validate_story_parameters
from app.jobs.worker import JobWorker

T0 = datetime(2026, 1, 5, 9, 0, tzinfo=UTC)


class FakeClock:
  def __init__(self) -> None:
    self.now = T0

  def __call__(self):
    return self.now


class RecordingSleep:
  def __init__(self) -> None:
    self.calls: list[float] = []

  async def __call__(self, seconds: float) -> None:
    self.calls.append(seconds)


class ScriptedHandler:
  """Pops one scripted step per execution: an exception to raise or a result dict."""

  def __init__(self, job_type: str, steps: list[Any], validator=None) -> None:
    self.job_type = job_type
    self.steps = list(steps)
    self.calls = 0
    self._validator = validator

  def validate(self, parameters: dict[str, Any]) -> None:
    if self._validator is not None:
      self._validator(parameters)

  async def execute(self, job) -> dict[str, Any]:
    self.calls += 1
    step = self.steps.pop(0)
    if callable(step):
      step = await step(job)
    if isinstance(step, BaseException):
      raise step
    return step


STORY = {"titleJP": "猫", "titleEN": "Cat", "content": [{"jp": "猫です。", "en": "A cat.", "readings": []}]}


def _worker(jobs_repo, settings, handlers, clock=None, sleep=None):
  registry = JobHandlerRegistry({handler.job_type: handler for handler in handlers})
  return JobWorker(jobs_repo=jobs_repo, registry=registry, settings=settings, clock=clock or FakeClock(), sleep=sleep or RecordingSleep())


@pytest.mark.anyio
async def test_idle_tick_when_queue_is_empty(jobs_repo, settings):
  sleep = RecordingSleep()
  worker = _worker(jobs_repo, settings, [ScriptedHandler("story_generation", [])], sleep=sleep)

  outcome = await worker.run_once()

  assert outcome.outcome == "idle"
  assert sleep.calls == []


@pytest.mark.anyio
async def test_story_job_completes_with_result(jobs_repo, settings, make_record):
  await jobs_repo.create_job(make_record("job-1"))
  handler = ScriptedHandler("story_generation", [dict(STORY)], validator=validate_story_parameters)
  worker = _worker(jobs_repo, settings, [handler])

  outcome = await worker.run_once()

  stored = jobs_repo.jobs["job-1"]
  assert outcome.outcome == "completed"
  assert stored.status == "completed"
  assert stored.result["titleEN"] == "Cat"
  assert stored.processing_attempts == 1
  assert stored.completed_at == T0
  assert stored.error_message is None


@pytest.mark.anyio
async def test_rate_limit_with_hint_defers_without_consuming_retries(jobs_repo, settings, make_record):
  await jobs_repo.create_job(make_record("job-1"))
  sleep = RecordingSleep()
  handler = ScriptedHandler("story_generation", [RateLimitedError("quota", retry_after=12.0)])
  worker = _worker(jobs_repo, settings, [handler], sleep=sleep)

  outcome = await worker.run_once()

  stored = jobs_repo.jobs["job-1"]
  assert outcome.outcome == "deferred"
  assert stored.status == "pending"
  assert stored.retry_count == 0
  assert sleep.calls == [12.0]


@pytest.mark.anyio
async def test_deferred_audio_job_completes_on_next_invocation(jobs_repo, settings, make_record):
  await jobs_repo.create_job(make_record("job-1", job_type="audio_generation", parameters={"story_id": "s1", "text": "猫です。"}))
  sleep = RecordingSleep()
  audio = {"audio_path": "user-1/s1/full-story.wav", "format": "wav"}
  worker = _worker(jobs_repo, settings, [ScriptedHandler("audio_generation", [RateLimitedError("quota", retry_after=12.0), audio])], sleep=sleep)

  first = await worker.run_once()

  stored = jobs_repo.jobs["job-1"]
  assert first.outcome == "deferred"
  assert (stored.status, stored.retry_count) == ("pending", 0)
  # The 30s audio throttle outweighs the 12s hint.
  assert sleep.calls == [30.0]

  second = await worker.run_once()

  stored = jobs_repo.jobs["job-1"]
  assert second.outcome == "completed"
  assert stored.status == "completed"
  assert stored.retry_count == 0
  assert stored.result == audio
  assert sleep.calls == [30.0, 30.0]


@pytest.mark.anyio
async def test_repeated_rate_limits_never_trip_the_stall_cap(sqlite_repo, settings, make_record):
  await sqlite_repo.create_job(make_record("job-1"))
  steps = [RateLimitedError("quota", retry_after=12.0) for _ in range(7)] + [dict(STORY)]
  worker = _worker(sqlite_repo, settings, [ScriptedHandler("story_generation", steps)])

  outcomes = [(await worker.run_once()).outcome for _ in range(8)]

  stored = await sqlite_repo.get_job("job-1")
  assert outcomes == ["deferred"] * 7 + ["completed"]
  assert stored.status == "completed"
  assert stored.retry_count == 0
  assert stored.stall_count == 0
  assert stored.processing_attempts == 8


@pytest.mark.anyio
async def test_requeues_and_deferrals_do_not_count_as_stalls(jobs_repo, settings, make_record):
  await jobs_repo.create_job(make_record("job-1"))
  steps = [TransientProviderError("503"), TransientProviderError("503")] + [RateLimitedError("quota", retry_after=5.0) for _ in range(5)] + [dict(STORY)]
  worker = _worker(jobs_repo, settings, [ScriptedHandler("story_generation", steps)])

  for _ in range(8):
    await worker.run_once()

  stored = jobs_repo.jobs["job-1"]
  assert stored.status == "completed"
  assert stored.retry_count == 2
  assert stored.stall_count == 0


@pytest.mark.anyio
async def test_rate_limit_hint_is_capped_by_max_backoff(jobs_repo, settings, make_record):
  await jobs_repo.create_job(make_record("job-1"))
  sleep = RecordingSleep()
  worker = _worker(jobs_repo, dataclasses.replace(settings, worker_max_backoff_seconds=20), [ScriptedHandler("story_generation", [RateLimitedError("quota", retry_after=90.0)])], sleep=sleep)

  await worker.run_once()

  assert sleep.calls == [20.0]


@pytest.mark.anyio
async def test_rate_limit_without_hint_counts_as_retry(jobs_repo, settings, make_record):
  await jobs_repo.create_job(make_record("job-1"))
  worker = _worker(jobs_repo, settings, [ScriptedHandler("story_generation", [RateLimitedError("quota")])])

  outcome = await worker.run_once()

  assert outcome.outcome == "requeued"
  assert jobs_repo.jobs["job-1"].retry_count == 1


@pytest.mark.anyio
async def test_transient_failures_exhaust_retry_budget(jobs_repo, settings, make_record):
  await jobs_repo.create_job(make_record("job-1"))
  errors = [TransientProviderError("upstream 503") for _ in range(3)]
  worker = _worker(jobs_repo, settings, [ScriptedHandler("story_generation", errors)])

  outcomes = [(await worker.run_once()).outcome for _ in range(3)]

  stored = jobs_repo.jobs["job-1"]
  assert outcomes == ["requeued", "requeued", "failed"]
  assert stored.status == "failed"
  assert stored.retry_count == 3
  assert stored.retry_count <= stored.max_retries
  assert stored.error_message == "upstream 503"
  assert stored.error_details["type"] == "TransientProviderError"


@pytest.mark.anyio
async def test_unexpected_exception_never_leaves_job_processing(jobs_repo, settings, make_record):
  await jobs_repo.create_job(make_record("job-1"))
  worker = _worker(jobs_repo, settings, [ScriptedHandler("story_generation", [KeyError("boom")])])

  await worker.run_once()

  assert jobs_repo.jobs["job-1"].status == "pending"


@pytest.mark.anyio
async def test_terminal_error_fails_immediately(jobs_repo, settings, make_record):
  await jobs_repo.create_job(make_record("job-1"))
  worker = _worker(jobs_repo, settings, [ScriptedHandler("story_generation", [TerminalProviderError("content refused", details={"code": 400})])])

  outcome = await worker.run_once()

  stored = jobs_repo.jobs["job-1"]
  assert outcome.outcome == "failed"
  assert stored.status == "failed"
  assert stored.retry_count == 0
  assert stored.error_details == {"type": "TerminalProviderError", "provider": {"code": 400}}


@pytest.mark.anyio
async def test_invalid_parameters_fail_without_retry(jobs_repo, settings, make_record):
  await jobs_repo.create_job(make_record("job-1", parameters={"topic": "x", "level": "N9"}))
  handler = ScriptedHandler("story_generation", [dict(STORY)], validator=validate_story_parameters)
  worker = _worker(jobs_repo, settings, [handler])

  outcome = await worker.run_once()

  assert outcome.outcome == "failed"
  assert handler.calls == 0
  assert jobs_repo.jobs["job-1"].error_details["type"] == "JobValidationError"


@pytest.mark.anyio
async def test_unregistered_job_type_fails(jobs_repo, settings, make_record):
  await jobs_repo.create_job(make_record("job-1", job_type="image_generation", parameters={"story_id": "s", "segment_index": 0, "text": "x"}))
  worker = _worker(jobs_repo, settings, [ScriptedHandler("story_generation", [])])

  outcome = await worker.run_once()

  assert outcome.outcome == "failed"
  assert "Unsupported job type" in jobs_repo.jobs["job-1"].error_message


@pytest.mark.anyio
async def test_stalled_job_is_reclaimed_and_finished(jobs_repo, settings, make_record):
  stale = T0 - timedelta(minutes=10)
  await jobs_repo.create_job(make_record("job-1", status="processing", processing_attempts=1, started_at=stale, last_heartbeat_at=stale))
  worker = _worker(jobs_repo, settings, [ScriptedHandler("story_generation", [dict(STORY)])])

  outcome = await worker.run_once()

  stored = jobs_repo.jobs["job-1"]
  assert outcome.outcome == "completed"
  assert stored.processing_attempts == 2
  assert stored.stall_count == 1
  assert stored.retry_count == 0
  assert stored.started_at == stale


@pytest.mark.anyio
async def test_fresh_processing_job_is_not_reclaimed(jobs_repo, settings, make_record):
  recent = T0 - timedelta(seconds=60)
  await jobs_repo.create_job(make_record("job-1", status="processing", processing_attempts=1, last_heartbeat_at=recent))
  worker = _worker(jobs_repo, settings, [ScriptedHandler("story_generation", [dict(STORY)])])

  outcome = await worker.run_once()

  assert outcome.outcome == "idle"
  assert jobs_repo.jobs["job-1"].processing_attempts == 1


@pytest.mark.anyio
async def test_job_that_keeps_stalling_is_failed(jobs_repo, settings, make_record):
  stale = T0 - timedelta(minutes=10)
  await jobs_repo.create_job(make_record("job-1", status="processing", processing_attempts=9, stall_count=5, last_heartbeat_at=stale))
  handler = ScriptedHandler("story_generation", [dict(STORY)])
  worker = _worker(jobs_repo, settings, [handler])

  outcome = await worker.run_once()

  stored = jobs_repo.jobs["job-1"]
  assert outcome.outcome == "failed"
  assert handler.calls == 0
  assert stored.error_details["type"] == "stalled"
  assert stored.error_details["stall_count"] == 6


@pytest.mark.anyio
async def test_result_of_job_cancelled_mid_flight_is_dropped(jobs_repo, settings, make_record):
  await jobs_repo.create_job(make_record("job-1"))

  async def cancel_then_return(job):
    await jobs_repo.cancel_job_for_user(job.job_id, user_id=job.user_id, now=T0)
    return dict(STORY)

  worker = _worker(jobs_repo, settings, [ScriptedHandler("story_generation", [cancel_then_return])])

  outcome = await worker.run_once()

  stored = jobs_repo.jobs["job-1"]
  assert outcome.outcome == "dropped"
  assert stored.status == "cancelled"
  assert stored.result is None


@pytest.mark.anyio
@pytest.mark.parametrize(("job_type", "parameters", "expected_pause"), [("audio_generation", {"story_id": "s1", "text": "猫です。"}, 30.0), ("image_generation", {"story_id": "s1", "segment_index": 0, "text": "a cat"}, 5.0)])
async def test_throttle_after_media_jobs(jobs_repo, settings, make_record, job_type, parameters, expected_pause):
  await jobs_repo.create_job(make_record("job-1", job_type=job_type, parameters=parameters))
  sleep = RecordingSleep()
  worker = _worker(jobs_repo, settings, [ScriptedHandler(job_type, [{"ok": True}])], sleep=sleep)

  await worker.run_once()

  assert sleep.calls == [expected_pause]


@pytest.mark.anyio
async def test_claims_follow_priority_then_age(jobs_repo, settings, make_record):
  await jobs_repo.create_job(make_record("old-low", priority=200, created_at=T0))
  await jobs_repo.create_job(make_record("new-high", priority=10, created_at=T0 + timedelta(seconds=5)))
  await jobs_repo.create_job(make_record("old-high", priority=10, created_at=T0 + timedelta(seconds=1)))
  worker = _worker(jobs_repo, dataclasses.replace(settings, worker_jobs_per_tick=5), [ScriptedHandler("story_generation", [dict(STORY), dict(STORY), dict(STORY)])])

  tick = await worker.run_tick()

  assert [item.job_id for item in tick.outcomes if item.outcome == "completed"] == ["old-high", "new-high", "old-low"]
  assert tick.outcomes[-1].outcome == "idle"
  assert tick.processed == 3
