from __future__ import annotations

import logging
from typing import Any, Protocol


class JobNotifier(Protocol):
  """User-facing toasts for job outcomes."""

  def success(self, message: str) -> None: ...

  def error(self, message: str) -> None: ...

  def info(self, message: str) -> None: ...


class StoryLibrary(Protocol):
  """Where finished stories land on the client."""

  def add_story(self, story: dict[str, Any]) -> None: ...


class LoggingNotifier:
  """Notifier for headless clients; routes toasts to the log."""

  def __init__(self, logger: logging.Logger | None = None) -> None:
    self._logger = logger or logging.getLogger("app.client.notifications")

  def success(self, message: str) -> None:
    self._logger.info("[success] %s", message)

  def error(self, message: str) -> None:
    self._logger.error("[error] %s", message)

  def info(self, message: str) -> None:
    self._logger.info("[info] %s", message)
