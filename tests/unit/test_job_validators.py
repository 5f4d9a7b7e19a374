import pytest

from app.jobs.models import JobValidationError
from app.jobs.validators import MAX_TOPIC_CHARS, validate_job


def test_valid_story_parameters_pass():
  validate_job("story_generation", {"topic": "A rainy day in Kyoto", "level": "N4", "length": "short", "instructions": "Use past tense."})


@pytest.mark.parametrize("level", ["N1", "N5", "Beginner", "Advanced"])
def test_story_levels_accepted(level):
  validate_job("story_generation", {"topic": "Trains", "level": level})


@pytest.mark.parametrize(
  "parameters",
  [
    {"level": "N4"},
    {"topic": "   ", "level": "N4"},
    {"topic": "Trains", "level": "N6"},
    {"topic": "Trains", "level": "N4", "length": "epic"},
    {"topic": "x" * (MAX_TOPIC_CHARS + 1), "level": "N4"},
    {"topic": "Trains", "level": "N4", "instructions": 42},
  ],
)
def test_invalid_story_parameters_rejected(parameters):
  with pytest.raises(JobValidationError):
    validate_job("story_generation", parameters)


def test_unknown_job_type_rejected():
  with pytest.raises(JobValidationError, match="Invalid job type"):
    validate_job("video_generation", {})


def test_parameters_must_be_an_object():
  with pytest.raises(JobValidationError, match="must be an object"):
    validate_job("story_generation", ["topic"])


def test_audio_requires_story_and_text():
  validate_job("audio_generation", {"story_id": "gen-1", "text": "猫がいます。"})
  with pytest.raises(JobValidationError, match="text"):
    validate_job("audio_generation", {"story_id": "gen-1"})
  with pytest.raises(JobValidationError, match="story_id"):
    validate_job("audio_generation", {"text": "猫がいます。"})


def test_image_accepts_prompt_or_text():
  validate_job("image_generation", {"story_id": "gen-1", "segment_index": 0, "prompt": "a cat on a train"})
  validate_job("image_generation", {"story_id": "gen-1", "segment_index": 3, "text": "猫が電車に乗る。"})


@pytest.mark.parametrize(
  "parameters",
  [
    {"story_id": "gen-1", "prompt": "cat"},
    {"story_id": "gen-1", "segment_index": -1, "prompt": "cat"},
    {"story_id": "gen-1", "segment_index": True, "prompt": "cat"},
    {"story_id": "gen-1", "segment_index": "2", "prompt": "cat"},
    {"story_id": "gen-1", "segment_index": 0},
  ],
)
def test_invalid_image_parameters_rejected(parameters):
  with pytest.raises(JobValidationError):
    validate_job("image_generation", parameters)
