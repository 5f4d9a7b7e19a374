"""Prompt helpers for story generation."""

from __future__ import annotations

STORY_SYSTEM_INSTRUCTION = "You are a professional Japanese language teacher specialized in creating curated stories for learners."

LENGTH_TARGETS: dict[str, str] = {"short": "5-7 sentences", "medium": "10-12 sentences", "long": "18-22 sentences"}

_LEVEL_GUIDELINES: dict[str, str] = {
  "N5": "Polite desu/masu form, present tense, short subject-object-verb sentences. JLPT N5 vocabulary. Daily life topics.",
  "N4": "Te-form, nai-form and simple conditionals (tara). JLPT N4 vocabulary. Routines, travel, past experiences.",
  "N3": "Intermediate patterns (hazu da, tokoro da), passive and causative forms. JLPT N3 vocabulary. Culture and relationships.",
  "N2": "Advanced structures (mono da, wake ga nai) and keigo. JLPT N2 vocabulary with idioms. Abstract and social topics.",
  "N1": "Literary and academic register with complex embedding. JLPT N1 vocabulary including yojijukugo.",
}
_LEVEL_ALIASES: dict[str, str] = {"Beginner": "N5", "Intermediate": "N3", "Advanced": "N1"}

_OUTPUT_SHAPE = """{
  "titleJP": "Japanese title",
  "titleEN": "English title",
  "level": "<level>",
  "readTime": <minutes>,
  "excerpt": "2-3 sentence English summary",
  "content": [
    {
      "jp": "Japanese sentence in mixed kanji/kana",
      "readings": [{"text": "<kanji word as written in jp>", "reading": "<hiragana>"}],
      "en": "English translation",
      "imagePrompt": "English visual description, anime illustration style, soft colors",
      "vocab": [{"word": "...", "reading": "...", "meaning": "..."}]
    }
  ],
  "questions": [{"question": "...", "options": ["A", "B", "C", "D"], "answer": <0-3>, "explanation": "..."}]
}"""


def level_guidelines(level: str) -> str:
  """Return the grammar/vocabulary guidance for a level, defaulting to N3."""
  canonical = _LEVEL_ALIASES.get(level, level)
  return _LEVEL_GUIDELINES.get(canonical, _LEVEL_GUIDELINES["N3"])


def build_story_prompt(*, topic: str, level: str, length: str = "medium", instructions: str | None = None) -> str:
  """Build the story generation prompt."""
  lines = [
    f'Task: Create a unique, engaging Japanese story about "{topic}" at JLPT {level} level.',
    "",
    f"Level guidelines: {level_guidelines(level)}",
    f"Target length: {LENGTH_TARGETS.get(length, LENGTH_TARGETS['medium'])}",
  ]
  if instructions:
    lines.append(f"Special instructions: {instructions.strip()}")
  lines.extend(
    [
      "",
      "Rules:",
      "- Prefer standard kanji over hiragana-only spellings; readings cover every word containing kanji and nothing else.",
      "- Each readings entry must match a complete word exactly as it appears in jp.",
      "- Include 2-3 level-appropriate vocab entries and a detailed imagePrompt per segment.",
      "- Write 3 multiple-choice comprehension questions with numeric answer indexes.",
      "",
      "Return STRICT JSON ONLY in this shape:",
      _OUTPUT_SHAPE.replace("<level>", level),
    ]
  )
  return "\n".join(lines)


def build_image_prompt(*, prompt: str | None, text: str | None) -> str:
  """Prefer an explicit image prompt; otherwise illustrate the segment text."""
  if prompt and prompt.strip():
    return prompt.strip()
  return f"{(text or '').strip()}, anime style, soft colors"
