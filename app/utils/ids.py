"""Identifier utilities."""

from __future__ import annotations

import time
import uuid


def generate_job_id() -> str:
  """Return a new job identifier."""
  return str(uuid.uuid4())


def generate_story_id(now_ms: int | None = None) -> str:
  """Return an identifier for a generated story (`gen-<epoch millis>`)."""
  millis = int(time.time() * 1000) if now_ms is None else int(now_ms)
  return f"gen-{millis}"
