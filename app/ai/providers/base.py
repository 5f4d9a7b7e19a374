"""Base interfaces for content producers and their failure taxonomy."""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any


class ProviderError(Exception):
  """Base class for failures reported by a content producer."""

  def __init__(self, message: str, *, details: dict[str, Any] | None = None) -> None:
    super().__init__(message)
    self.message = message
    self.details = details or {}


class RateLimitedError(ProviderError):
  """The producer refused the call for quota reasons, optionally with a retry-after hint in seconds."""

  def __init__(self, message: str, *, retry_after: float | None = None, details: dict[str, Any] | None = None) -> None:
    super().__init__(message, details=details)
    self.retry_after = retry_after


class TransientProviderError(ProviderError):
  """A failure that may succeed when attempted again."""


class TerminalProviderError(ProviderError):
  """A failure that will not succeed on retry (bad request, refused content, missing credentials)."""


@dataclass(frozen=True)
class SpeechAudio:
  """Raw PCM audio returned by a speech producer."""

  pcm: bytes
  sample_rate: int
  mime_type: str


@dataclass(frozen=True)
class GeneratedImage:
  """Encoded image bytes returned by an image producer."""

  data: bytes
  mime_type: str


class StoryModel(ABC):
  """Text producer returning structured story content."""

  name: str

  @abstractmethod
  async def generate_story(self, prompt: str, *, system_instruction: str) -> dict[str, Any]:
    """Generate a story document for the prompt."""


class SpeechModel(ABC):
  """Speech producer turning text into PCM audio."""

  name: str

  @abstractmethod
  async def synthesize(self, text: str, *, voice_name: str) -> SpeechAudio:
    """Narrate `text` with the given prebuilt voice."""


class ImageModel(ABC):
  """Image producer turning a prompt into image bytes."""

  name: str

  @abstractmethod
  async def generate_image(self, prompt: str) -> GeneratedImage:
    """Render an image for `prompt`."""
