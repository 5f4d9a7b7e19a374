"""Per-type job handlers: story text, narration audio and segment illustrations."""

from __future__ import annotations

import logging
from typing import Any

from app.ai.prompts import STORY_SYSTEM_INSTRUCTION, build_image_prompt, build_story_prompt
from app.ai.providers.base import ImageModel, SpeechModel, StoryModel, TransientProviderError
from app.ai.providers.gemini import GeminiSpeechModel, GeminiStoryModel
from app.ai.providers.pollinations import PollinationsImageModel
from app.config import Settings
from app.jobs.dispatch import JobHandler, JobHandlerRegistry
from app.jobs.models import JobRecord
from app.jobs.validators import validate_audio_parameters, validate_image_parameters, validate_story_parameters
from app.services.storage_client import MediaStore, build_storage_client
from app.utils.audio import pcm_duration_seconds, pcm_to_wav
from app.utils.ids import generate_story_id
from app.utils.images import convert_to_webp

logger = logging.getLogger(__name__)

DEFAULT_VOICE = "Aoede"


def audio_object_name(user_id: str, story_id: str) -> str:
  return f"{user_id}/{story_id}/full-story.wav"


def image_object_name(user_id: str, story_id: str, segment_index: int) -> str:
  return f"{user_id}/{story_id}/segment-{segment_index}.webp"


def check_story_structure(story: dict[str, Any]) -> None:
  """Reject story documents the reader cannot render."""
  if not story.get("titleJP") or not story.get("titleEN") or not isinstance(story.get("content"), list) or not story["content"]:
    raise TransientProviderError("Generated story has invalid structure")
  for segment in story["content"]:
    if not isinstance(segment, dict) or not segment.get("jp") or not segment.get("en") or not isinstance(segment.get("readings"), list):
      raise TransientProviderError("Each content segment must have jp, en, and readings fields")


class StoryGenerationHandler:
  job_type = "story_generation"

  def __init__(self, model: StoryModel) -> None:
    self._model = model

  def validate(self, parameters: dict[str, Any]) -> None:
    validate_story_parameters(parameters)

  async def execute(self, job: JobRecord) -> dict[str, Any]:
    params = job.parameters
    prompt = build_story_prompt(topic=params["topic"], level=params["level"], length=params.get("length") or "medium", instructions=params.get("instructions"))
    story = await self._model.generate_story(prompt, system_instruction=STORY_SYSTEM_INSTRUCTION)
    check_story_structure(story)
    story["id"] = generate_story_id()
    story.setdefault("level", params["level"])
    logger.info("Story generated job_id=%s story_id=%s segments=%d", job.job_id, story["id"], len(story["content"]))
    return story


class AudioGenerationHandler:
  job_type = "audio_generation"

  def __init__(self, model: SpeechModel, media_store: MediaStore, *, default_voice: str = DEFAULT_VOICE) -> None:
    self._model = model
    self._media_store = media_store
    self._default_voice = default_voice

  def validate(self, parameters: dict[str, Any]) -> None:
    validate_audio_parameters(parameters)

  async def execute(self, job: JobRecord) -> dict[str, Any]:
    params = job.parameters
    voice_name = params.get("voice_name") or self._default_voice
    audio = await self._model.synthesize(params["text"], voice_name=voice_name)
    wav_bytes = pcm_to_wav(audio.pcm, audio.sample_rate)
    object_name = audio_object_name(job.user_id, params["story_id"])
    # Same object name on every attempt, so a re-run after a stall overwrites instead of duplicating.
    await self._media_store.upload_bytes(wav_bytes, object_name, content_type="audio/wav")
    logger.info("Audio uploaded job_id=%s path=%s bytes=%d rate=%d", job.job_id, object_name, len(wav_bytes), audio.sample_rate)
    return {
      "audio_path": object_name,
      "bucket": self._media_store.bucket_name,
      "format": "wav",
      "size": len(wav_bytes),
      "sample_rate": audio.sample_rate,
      "duration_seconds": pcm_duration_seconds(len(audio.pcm), audio.sample_rate),
      "voice_name": voice_name,
    }


class ImageGenerationHandler:
  job_type = "image_generation"

  def __init__(self, model: ImageModel, media_store: MediaStore) -> None:
    self._model = model
    self._media_store = media_store

  def validate(self, parameters: dict[str, Any]) -> None:
    validate_image_parameters(parameters)

  async def execute(self, job: JobRecord) -> dict[str, Any]:
    params = job.parameters
    segment_index = int(params["segment_index"])
    prompt = build_image_prompt(prompt=params.get("prompt"), text=params.get("text"))
    image = await self._model.generate_image(prompt)
    try:
      webp_bytes = convert_to_webp(image.data)
    except ValueError as exc:
      raise TransientProviderError(str(exc)) from exc
    object_name = image_object_name(job.user_id, params["story_id"], segment_index)
    await self._media_store.upload_bytes(webp_bytes, object_name, content_type="image/webp")
    logger.info("Image uploaded job_id=%s path=%s bytes=%d", job.job_id, object_name, len(webp_bytes))
    return {"image_path": object_name, "bucket": self._media_store.bucket_name, "mime_type": "image/webp", "size": len(webp_bytes), "segment_index": segment_index, "prompt": prompt}


def build_default_registry(settings: Settings, *, media_store: MediaStore | None = None) -> JobHandlerRegistry:
  """Wire production producers for every job type."""
  store = media_store or build_storage_client(settings)
  handlers: dict[str, JobHandler] = {
    "story_generation": StoryGenerationHandler(GeminiStoryModel(settings.story_model, api_key=settings.gemini_api_key)),
    "audio_generation": AudioGenerationHandler(GeminiSpeechModel(settings.tts_model, api_key=settings.gemini_api_key), store),
    "image_generation": ImageGenerationHandler(PollinationsImageModel(base_url=settings.image_base_url, name=settings.image_model, api_key=settings.image_api_key), store),
  }
  return JobHandlerRegistry(handlers)
