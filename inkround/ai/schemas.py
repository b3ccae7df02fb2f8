"""Typed shapes decoded from generative service responses."""

from __future__ import annotations

from collections.abc import Callable
from typing import Annotated, Any, TypeVar

import msgspec

S = TypeVar("S", bound=msgspec.Struct)

Rating = Annotated[float, msgspec.Meta(ge=1, le=10)]


class CharacterDraft(msgspec.Struct, kw_only=True):
  name: str
  role: str = ""
  description: str = ""


class ChapterPlanDraft(msgspec.Struct, kw_only=True):
  title: str
  number: int = 0
  summary: str = ""
  key_events: list[str] = []
  word_count_target: int = 2000
  reason: str = ""


class OutlineDraft(msgspec.Struct, kw_only=True):
  """Whole-book outline."""

  title: str | None = None
  summary: str = ""
  characters: list[CharacterDraft | str] = []
  themes: list[str] = []
  tone: str | None = None
  chapters: list[ChapterPlanDraft]


class ChapterDraft(msgspec.Struct, kw_only=True):
  title: str | None = None
  content: str


class ReaderFeedback(msgspec.Struct, kw_only=True):
  overall_rating: Rating
  praise: str = ""
  critique: str = ""
  will_continue: bool = False
  comment: str = ""

  @property
  def rating(self) -> int:
    return int(round(self.overall_rating))

  @property
  def sentiment(self) -> float:
    """Map the 1-10 rating onto -1..1."""
    return max(-1.0, min(1.0, (self.overall_rating - 5) / 5))


def decoder(struct_type: type[S]) -> Callable[[Any], S]:
  """Build a lenient converter from parsed JSON into a struct type."""

  def _decode(value: Any) -> S:
    # Models sometimes wrap the payload in a single-key envelope.
    if isinstance(value, dict) and len(value) == 1:
      (inner,) = value.values()
      if isinstance(inner, dict) and not set(value) & set(struct_type.__struct_fields__):
        value = inner
    return msgspec.convert(value, type=struct_type, strict=False)

  return _decode


def decode_chapter(value: Any) -> ChapterDraft:
  draft = decoder(ChapterDraft)(value)
  if not draft.content.strip():
    raise ValueError("Generated chapter has empty content")
  return draft


def decode_outline(value: Any) -> OutlineDraft:
  draft = decoder(OutlineDraft)(value)
  if not draft.chapters:
    raise ValueError("Generated outline has no chapters")
  return draft


def decode_feedback(value: Any) -> ReaderFeedback:
  feedback = decoder(ReaderFeedback)(value)
  if not (feedback.comment or feedback.praise or feedback.critique).strip():
    raise ValueError("Generated feedback has no comment text")
  return feedback


def decode_chapter_plan(value: Any) -> ChapterPlanDraft:
  # A full outline sometimes comes back instead of a single plan entry.
  if isinstance(value, dict) and isinstance(value.get("chapters"), list):
    chapters = value["chapters"]
    if not chapters:
      raise ValueError("Generated chapter plan is empty")
    value = chapters[-1]
  plan = decoder(ChapterPlanDraft)(value)
  if not plan.title.strip():
    raise ValueError("Generated chapter plan has no title")
  return plan
