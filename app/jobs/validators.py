"""Type-specific parameter checks run before a job is admitted and again before it executes."""

from __future__ import annotations

from collections.abc import Callable, Mapping
from typing import Any

from app.jobs.models import JOB_TYPES, JobValidationError

STORY_LEVELS: tuple[str, ...] = ("N1", "N2", "N3", "N4", "N5", "Beginner", "Intermediate", "Advanced")
STORY_LENGTHS: tuple[str, ...] = ("short", "medium", "long")
MAX_TOPIC_CHARS = 200
MAX_INSTRUCTIONS_CHARS = 1000
MAX_AUDIO_TEXT_CHARS = 20000


def _require_text(parameters: Mapping[str, Any], key: str, *, max_chars: int | None = None) -> str:
  value = parameters.get(key)
  if not isinstance(value, str) or value.strip() == "":
    raise JobValidationError(f"{key} is required and must be a non-empty string")
  if max_chars is not None and len(value) > max_chars:
    raise JobValidationError(f"{key} exceeds max length of {max_chars} chars")
  return value


def _optional_text(parameters: Mapping[str, Any], key: str, *, max_chars: int) -> None:
  value = parameters.get(key)
  if value is None:
    return
  if not isinstance(value, str):
    raise JobValidationError(f"{key} must be a string")
  if len(value) > max_chars:
    raise JobValidationError(f"{key} exceeds max length of {max_chars} chars")


def validate_story_parameters(parameters: Mapping[str, Any]) -> None:
  """Require a topic and a known level; length and instructions are optional."""
  _require_text(parameters, "topic", max_chars=MAX_TOPIC_CHARS)
  level = parameters.get("level")
  if not isinstance(level, str) or level not in STORY_LEVELS:
    raise JobValidationError(f"level must be one of: {', '.join(STORY_LEVELS)}")
  length = parameters.get("length")
  if length is not None and length not in STORY_LENGTHS:
    raise JobValidationError(f"length must be one of: {', '.join(STORY_LENGTHS)}")
  _optional_text(parameters, "instructions", max_chars=MAX_INSTRUCTIONS_CHARS)


def validate_audio_parameters(parameters: Mapping[str, Any]) -> None:
  """Require a story reference and the text to narrate."""
  _require_text(parameters, "story_id")
  _require_text(parameters, "text", max_chars=MAX_AUDIO_TEXT_CHARS)
  _optional_text(parameters, "voice_name", max_chars=64)


def validate_image_parameters(parameters: Mapping[str, Any]) -> None:
  """Require a story reference, a non-negative segment index and something to draw."""
  _require_text(parameters, "story_id")
  segment_index = parameters.get("segment_index")
  if segment_index is None:
    raise JobValidationError("segment_index is required")
  # bool is an int subclass; reject it explicitly.
  if isinstance(segment_index, bool) or not isinstance(segment_index, int):
    raise JobValidationError("segment_index must be an integer")
  if segment_index < 0:
    raise JobValidationError("segment_index must be zero or a positive integer")
  _optional_text(parameters, "prompt", max_chars=MAX_INSTRUCTIONS_CHARS)
  _optional_text(parameters, "text", max_chars=MAX_INSTRUCTIONS_CHARS)
  if not str(parameters.get("prompt") or "").strip() and not str(parameters.get("text") or "").strip():
    raise JobValidationError("prompt or text is required to describe the image")


VALIDATORS: dict[str, Callable[[Mapping[str, Any]], None]] = {
  "story_generation": validate_story_parameters,
  "audio_generation": validate_audio_parameters,
  "image_generation": validate_image_parameters,
}


def validate_job(job_type: str, parameters: Any) -> None:
  """Raise JobValidationError unless `parameters` is acceptable for `job_type`."""
  validator = VALIDATORS.get(job_type)
  if validator is None:
    raise JobValidationError(f"Invalid job type: {job_type}. Must be one of: {', '.join(JOB_TYPES)}")
  if not isinstance(parameters, Mapping):
    raise JobValidationError("parameters must be an object")
  validator(parameters)
