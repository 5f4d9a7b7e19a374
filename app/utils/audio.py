"""PCM helpers for narration audio."""

from __future__ import annotations

import re
import struct

DEFAULT_SAMPLE_RATE = 24000
CHANNELS = 1
BITS_PER_SAMPLE = 16
_RATE_PATTERN = re.compile(r"rate=(\d+)")


def sample_rate_from_mime(mime_type: str | None, default: int = DEFAULT_SAMPLE_RATE) -> int:
  """Read the sample rate from mime types like `audio/L16;codec=pcm;rate=24000`."""
  if not mime_type:
    return default
  match = _RATE_PATTERN.search(mime_type)
  if match is None:
    return default
  return int(match.group(1))


def wav_header(pcm_length: int, sample_rate: int) -> bytes:
  """Build the 44-byte RIFF header for 16-bit mono PCM."""
  byte_rate = sample_rate * CHANNELS * BITS_PER_SAMPLE // 8
  block_align = CHANNELS * BITS_PER_SAMPLE // 8
  return struct.pack("<4sI4s4sIHHIIHH4sI", b"RIFF", 36 + pcm_length, b"WAVE", b"fmt ", 16, 1, CHANNELS, sample_rate, byte_rate, block_align, BITS_PER_SAMPLE, b"data", pcm_length)


def pcm_to_wav(pcm: bytes, sample_rate: int = DEFAULT_SAMPLE_RATE) -> bytes:
  """Wrap raw PCM bytes in a WAV container."""
  return wav_header(len(pcm), sample_rate) + pcm


def pcm_duration_seconds(pcm_length: int, sample_rate: int) -> float:
  if sample_rate <= 0:
    return 0.0
  return round(pcm_length / (sample_rate * CHANNELS * BITS_PER_SAMPLE / 8), 3)
