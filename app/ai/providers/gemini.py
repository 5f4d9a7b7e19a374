"""Gemini story and speech producers using the google-genai SDK."""

from __future__ import annotations

import json
import logging
import os
from typing import Any

import httpx
from google import genai
from google.genai import errors as genai_errors
from google.genai import types

from app.ai.backoff import classify_status, retry_delay_from_details, retry_delay_from_message
from app.ai.providers.base import ProviderError, SpeechAudio, SpeechModel, StoryModel, TerminalProviderError, TransientProviderError
from app.utils.audio import sample_rate_from_mime

logger = logging.getLogger(__name__)


def _build_client(api_key: str | None) -> genai.Client:
  api_key = api_key or os.getenv("GEMINI_API_KEY")
  if not api_key:
    raise TerminalProviderError("GEMINI_API_KEY environment variable is required")
  return genai.Client(api_key=api_key)


class _GeminiModel:
  """Shared lazy client handling; a missing key only fails the jobs that need Gemini."""

  def __init__(self, name: str, api_key: str | None = None, *, client: genai.Client | None = None) -> None:
    self.name = name
    self._api_key = api_key
    self._client = client

  def _get_client(self) -> genai.Client:
    if self._client is None:
      self._client = _build_client(self._api_key)
    return self._client


def translate_api_error(exc: genai_errors.APIError) -> ProviderError:
  """Map a google-genai APIError onto the provider failure taxonomy."""
  message = str(exc.message or exc)
  details = exc.details if isinstance(exc.details, dict) else None
  retry_after = None
  if exc.code == 429:
    # Structured RetryInfo first; older responses only carry the hint in the message text.
    retry_after = retry_delay_from_details(details)
    if retry_after is None:
      retry_after = retry_delay_from_message(message)
  return classify_status(int(exc.code or 500), message, retry_after=retry_after, details={"status": exc.status, "code": exc.code})


def strip_json_fences(text: str) -> str:
  """Drop ```json fences some responses wrap around the document."""
  return text.replace("```json", "").replace("```", "").strip()


async def _generate(client: genai.Client, **kwargs: Any) -> types.GenerateContentResponse:
  try:
    return await client.aio.models.generate_content(**kwargs)
  except genai_errors.APIError as exc:
    raise translate_api_error(exc) from exc
  except httpx.TransportError as exc:
    raise TransientProviderError(f"Gemini transport failure: {exc}") from exc


class GeminiStoryModel(_GeminiModel, StoryModel):
  """Text producer returning story documents as JSON."""

  async def generate_story(self, prompt: str, *, system_instruction: str) -> dict[str, Any]:
    config = types.GenerateContentConfig(system_instruction=system_instruction, response_mime_type="application/json")
    response = await _generate(self._get_client(), model=self.name, contents=prompt, config=config)
    text = response.text or ""
    try:
      parsed = json.loads(strip_json_fences(text))
    except json.JSONDecodeError as exc:
      # Malformed model output is usually a one-off; let the retry budget absorb it.
      raise TransientProviderError(f"Gemini returned invalid JSON: {exc}") from exc
    if not isinstance(parsed, dict):
      raise TransientProviderError("Gemini returned a non-object story document")
    logger.debug("Gemini story response model=%s chars=%d", self.name, len(text))
    return parsed


class GeminiSpeechModel(_GeminiModel, SpeechModel):
  """Speech producer returning raw PCM from the Gemini TTS models."""

  async def synthesize(self, text: str, *, voice_name: str) -> SpeechAudio:
    config = types.GenerateContentConfig(
      response_modalities=["AUDIO"],
      speech_config=types.SpeechConfig(voice_config=types.VoiceConfig(prebuilt_voice_config=types.PrebuiltVoiceConfig(voice_name=voice_name))),
    )
    response = await _generate(self._get_client(), model=self.name, contents=text, config=config)
    for candidate in response.candidates or []:
      content = candidate.content
      for part in (content.parts if content else None) or []:
        inline = part.inline_data
        if inline is None or not inline.data:
          continue
        mime_type = inline.mime_type or ""
        if not mime_type.startswith("audio"):
          continue
        sample_rate = sample_rate_from_mime(mime_type)
        logger.debug("Gemini speech response model=%s bytes=%d rate=%d", self.name, len(inline.data), sample_rate)
        return SpeechAudio(pcm=bytes(inline.data), sample_rate=sample_rate, mime_type=mime_type)
    raise TransientProviderError("No audio data in Gemini response")
