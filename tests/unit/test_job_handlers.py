import io
import struct
from datetime import UTC, datetime

import pytest
from PIL import Image

from app.ai.prompts import build_image_prompt, build_story_prompt, level_guidelines
from app.ai.providers.base import GeneratedImage, ImageModel, SpeechAudio, SpeechModel, StoryModel, TransientProviderError
from app.jobs.handlers import AudioGenerationHandler, ImageGenerationHandler, StoryGenerationHandler
from app.jobs.models import JobRecord
from app.utils.audio import pcm_duration_seconds, pcm_to_wav, sample_rate_from_mime

NOW = datetime(2026, 1, 5, 9, 0, tzinfo=UTC)


def _job(job_type: str, parameters: dict) -> JobRecord:
  return JobRecord(job_id="job-1", user_id="user-1", job_type=job_type, parameters=parameters, status="processing", priority=100, created_at=NOW, updated_at=NOW)


class FakeStoryModel(StoryModel):
  name = "fake-story"

  def __init__(self, story: dict) -> None:
    self.story = story
    self.prompts: list[str] = []

  async def generate_story(self, prompt: str, *, system_instruction: str) -> dict:
    self.prompts.append(prompt)
    return dict(self.story)


class FakeSpeechModel(SpeechModel):
  name = "fake-tts"

  def __init__(self) -> None:
    self.voices: list[str] = []

  async def synthesize(self, text: str, *, voice_name: str) -> SpeechAudio:
    self.voices.append(voice_name)
    return SpeechAudio(pcm=b"\x00\x01" * 24000, sample_rate=24000, mime_type="audio/L16;codec=pcm;rate=24000")


class FakeImageModel(ImageModel):
  name = "fake-image"

  def __init__(self, data: bytes) -> None:
    self.data = data
    self.prompts: list[str] = []

  async def generate_image(self, prompt: str) -> GeneratedImage:
    self.prompts.append(prompt)
    return GeneratedImage(data=self.data, mime_type="image/png")


class FakeMediaStore:
  bucket_name = "test-media"

  def __init__(self) -> None:
    self.objects: dict[str, tuple[bytes, str]] = {}

  async def upload_bytes(self, data: bytes, object_name: str, *, content_type: str, cache_control: str = "private, max-age=3600") -> None:
    self.objects[object_name] = (data, content_type)


def _png_bytes() -> bytes:
  buffer = io.BytesIO()
  Image.new("RGB", (8, 8), (200, 120, 40)).save(buffer, format="PNG")
  return buffer.getvalue()


VALID_STORY = {"titleJP": "寿司が好きな猫", "titleEN": "The Cat Who Loved Sushi", "content": [{"jp": "猫は寿司が好きです。", "en": "The cat likes sushi.", "readings": [{"text": "猫", "reading": "ねこ"}]}]}


@pytest.mark.anyio
async def test_story_handler_stamps_id_and_level():
  model = FakeStoryModel(VALID_STORY)
  handler = StoryGenerationHandler(model)

  result = await handler.execute(_job("story_generation", {"topic": "sushi cat", "level": "N5", "length": "short"}))

  assert result["id"].startswith("gen-")
  assert result["level"] == "N5"
  assert "sushi cat" in model.prompts[0]
  assert "5-7 sentences" in model.prompts[0]


@pytest.mark.anyio
@pytest.mark.parametrize("story", [{"titleJP": "x", "titleEN": "y", "content": []}, {"titleJP": "x", "titleEN": "y", "content": [{"jp": "a", "en": "b"}]}, {"content": [{"jp": "a", "en": "b", "readings": []}]}])
async def test_story_handler_rejects_malformed_documents(story):
  handler = StoryGenerationHandler(FakeStoryModel(story))

  with pytest.raises(TransientProviderError):
    await handler.execute(_job("story_generation", {"topic": "t", "level": "N3"}))


@pytest.mark.anyio
async def test_audio_handler_uploads_wav_under_story_path():
  store = FakeMediaStore()
  speech = FakeSpeechModel()
  handler = AudioGenerationHandler(speech, store)

  result = await handler.execute(_job("audio_generation", {"story_id": "gen-7", "text": "猫です。"}))

  data, content_type = store.objects["user-1/gen-7/full-story.wav"]
  assert content_type == "audio/wav"
  assert data[:4] == b"RIFF" and data[8:12] == b"WAVE"
  assert result["audio_path"] == "user-1/gen-7/full-story.wav"
  assert result["size"] == len(data) == 44 + 48000
  assert result["duration_seconds"] == 1.0
  assert speech.voices == ["Aoede"]


@pytest.mark.anyio
async def test_image_handler_converts_to_webp():
  store = FakeMediaStore()
  model = FakeImageModel(_png_bytes())
  handler = ImageGenerationHandler(model, store)

  result = await handler.execute(_job("image_generation", {"story_id": "gen-7", "segment_index": 2, "text": "猫が寝ている"}))

  data, content_type = store.objects["user-1/gen-7/segment-2.webp"]
  assert content_type == "image/webp"
  assert data[:4] == b"RIFF" and data[8:12] == b"WEBP"
  assert result["segment_index"] == 2
  assert model.prompts == ["猫が寝ている, anime style, soft colors"]


@pytest.mark.anyio
async def test_image_handler_treats_garbage_bytes_as_transient():
  handler = ImageGenerationHandler(FakeImageModel(b"not an image"), FakeMediaStore())

  with pytest.raises(TransientProviderError):
    await handler.execute(_job("image_generation", {"story_id": "gen-7", "segment_index": 0, "prompt": "cat"}))


def test_wav_header_layout():
  wav = pcm_to_wav(b"\x00" * 100, 22050)
  riff, size, wave, fmt, fmt_len, audio_format, channels, rate, byte_rate, block_align, bits, data_tag, data_len = struct.unpack("<4sI4s4sIHHIIHH4sI", wav[:44])

  assert (riff, wave, fmt, data_tag) == (b"RIFF", b"WAVE", b"fmt ", b"data")
  assert size == 136 and data_len == 100
  assert (audio_format, channels, rate, byte_rate, block_align, bits) == (1, 1, 22050, 44100, 2, 16)


def test_sample_rate_parsing_and_duration():
  assert sample_rate_from_mime("audio/L16;codec=pcm;rate=16000") == 16000
  assert sample_rate_from_mime("audio/L16") == 24000
  assert pcm_duration_seconds(96000, 24000) == 2.0


def test_prompt_helpers():
  assert level_guidelines("Beginner") == level_guidelines("N5")
  assert build_image_prompt(prompt="  a fox  ", text="ignored") == "a fox"
  prompt = build_story_prompt(topic="fox", level="N2", length="long", instructions="Include a festival.")
  assert "18-22 sentences" in prompt
  assert "Special instructions: Include a festival." in prompt
