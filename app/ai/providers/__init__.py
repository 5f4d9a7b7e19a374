"""Content producers for story, speech and image generation."""

from app.ai.providers.base import GeneratedImage, ImageModel, ProviderError, RateLimitedError, SpeechAudio, SpeechModel, StoryModel, TerminalProviderError, TransientProviderError

__all__ = ["GeneratedImage", "ImageModel", "ProviderError", "RateLimitedError", "SpeechAudio", "SpeechModel", "StoryModel", "TerminalProviderError", "TransientProviderError"]
