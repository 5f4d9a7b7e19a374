"""Offline backup of the client's job map."""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Protocol

import msgspec

from app.client.models import JobSnapshot

logger = logging.getLogger(__name__)

DEFAULT_CACHE_NAME = "monogatari_jobs.json"


class JobCache(Protocol):
  def load(self) -> list[JobSnapshot]: ...

  def save(self, jobs: list[JobSnapshot]) -> None: ...


class FileJobCache:
  """JSON file backed cache; unreadable or corrupt files load as empty."""

  def __init__(self, path: Path | str) -> None:
    self.path = Path(path)
    self._decoder = msgspec.json.Decoder(list[JobSnapshot])

  def load(self) -> list[JobSnapshot]:
    try:
      raw = self.path.read_bytes()
    except FileNotFoundError:
      return []
    except OSError as exc:
      logger.warning("Failed to read job cache %s: %s", self.path, exc)
      return []
    try:
      jobs = self._decoder.decode(raw)
    except msgspec.DecodeError as exc:
      logger.warning("Discarding unreadable job cache %s: %s", self.path, exc)
      return []
    logger.info("Loaded %d jobs from %s", len(jobs), self.path)
    return jobs

  def save(self, jobs: list[JobSnapshot]) -> None:
    try:
      self.path.parent.mkdir(parents=True, exist_ok=True)
      tmp_path = self.path.with_suffix(self.path.suffix + ".tmp")
      tmp_path.write_bytes(msgspec.json.encode(jobs))
      tmp_path.replace(self.path)
    except OSError as exc:
      logger.warning("Failed to save job cache %s: %s", self.path, exc)


class MemoryJobCache:
  def __init__(self, jobs: list[JobSnapshot] | None = None) -> None:
    self.jobs = list(jobs or [])
    self.saves = 0

  def load(self) -> list[JobSnapshot]:
    return list(self.jobs)

  def save(self, jobs: list[JobSnapshot]) -> None:
    self.jobs = list(jobs)
    self.saves += 1
