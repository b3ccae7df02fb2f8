"""Prompt builders for author and reader generation calls."""

from __future__ import annotations

import json
from typing import Any

from inkround.ai.client import GenerationRequest
from inkround.storage.agents_repo import AgentRecord, CommentRecord
from inkround.storage.books_repo import BookOutlineRecord, BookRecord, ChapterPlanRecord, ChapterRecord
from inkround.storage.seasons_repo import SeasonRecord

_OUTLINE_SHAPE = {
  "title": "Story title",
  "summary": "One-sentence synopsis",
  "characters": [{"name": "Name", "role": "protagonist|antagonist|supporting", "description": "Who they are"}],
  "chapters": [{"number": 1, "title": "Chapter title", "summary": "What happens", "key_events": ["event"], "word_count_target": 2000}],
  "themes": ["theme"],
  "tone": "Narrative tone",
}
_NEXT_CHAPTER_SHAPE = {"number": 2, "title": "Chapter title", "summary": "What happens", "key_events": ["event"], "word_count_target": 2000, "reason": "How reader feedback shaped this plan"}
_CHAPTER_SHAPE = {"title": "Chapter title", "content": "Full chapter text"}
_FEEDBACK_SHAPE = {"overall_rating": 7, "praise": "What worked", "critique": "What to improve", "will_continue": True, "comment": "Anything else"}


def _format_list(items: list[str] | tuple[str, ...], *, empty: str = "none") -> str:
  """Render a bullet list, or a placeholder when nothing was supplied."""
  if not items:
    return f"- {empty}"
  return "\n".join(f"- {item}" for item in items)


def _shape(example: dict[str, Any]) -> str:
  return json.dumps(example, ensure_ascii=False, indent=2)


def _session(prefix: str, *parts: str) -> str:
  return ":".join((prefix, *parts))


def author_system_prompt(author: AgentRecord, season: SeasonRecord, zone_style: str | None) -> str:
  """Describe the author persona and the season's hard constraints."""
  style = author.author.writing_style or "versatile"
  personality = f"\nPersonality: {author.author.personality}" if author.author.personality else ""
  return (
    f"You are {author.nickname}, an author competing in a serialized writing season.\n"
    f"Writing style: {style}{personality}\n\n"
    f"Season theme: {season.theme_keyword}\n"
    f"Hard constraints:\n{_format_list(season.constraints)}\n"
    f"Zone style: {zone_style or 'open'}\n\n"
    "Follow the constraints strictly."
  )


def whole_outline_request(*, author: AgentRecord, season: SeasonRecord, book: BookRecord, chapter_count: int) -> GenerationRequest:
  """Ask for a complete outline of `chapter_count` chapters."""
  message = (
    f"Write a {chapter_count}-chapter outline for the book '{book.title}'.\n\n"
    f"Constraints:\n{_format_list(season.constraints)}\n\n"
    f"Return JSON only, shaped like:\n{_shape(_OUTLINE_SHAPE)}\n\n"
    f"Number the chapters 1 to {chapter_count} and give the story a clear arc."
  )
  return GenerationRequest(message=message, system_prompt=author_system_prompt(author, season, book.zone_style), session_context=_session("outline", book.id))


def chapter_outline_request(
  *,
  author: AgentRecord,
  season: SeasonRecord,
  book: BookRecord,
  chapter_number: int,
  outline: BookOutlineRecord | None,
  plan: list[ChapterPlanRecord],
  previous: ChapterRecord | None,
  comments: list[CommentRecord],
) -> GenerationRequest:
  """Ask for the plan of one chapter, informed by the prior chapter's reader comments."""
  planned = [f"{entry.chapter_number}. {entry.title}: {entry.summary}" for entry in plan]
  feedback = [comment.content for comment in comments if comment.content]
  previous_block = f"Previous chapter {previous.chapter_number} '{previous.title}' ends with:\n{previous.content[-300:]}" if previous else "This is the opening chapter."
  message = (
    f"Plan chapter {chapter_number} of '{book.title}'.\n\n"
    f"Book summary: {outline.summary if outline else book.synopsis or 'not yet written'}\n"
    f"Existing plan:\n{_format_list(planned)}\n\n"
    f"{previous_block}\n\n"
    f"Reader feedback on the previous chapter:\n{_format_list(feedback)}\n\n"
    f"Return JSON only, shaped like:\n{_shape(_NEXT_CHAPTER_SHAPE)}"
  )
  return GenerationRequest(message=message, system_prompt=author_system_prompt(author, season, book.zone_style), session_context=_session("outline", book.id, str(chapter_number)))


def chapter_request(
  *,
  author: AgentRecord,
  season: SeasonRecord,
  book: BookRecord,
  plan: ChapterPlanRecord,
  previous: list[ChapterRecord],
  feedback: list[str],
  excerpt_chars: int = 300,
) -> GenerationRequest:
  """Ask for the full text of one planned chapter."""
  if previous:
    recap_lines = [f"Chapter {chapter.chapter_number}: {chapter.title}" for chapter in previous]
    recap_lines.append(f"Latest chapter ends with:\n{previous[-1].content[-excerpt_chars:]}")
    recap = "\n".join(recap_lines)
  else:
    recap = "This is the first chapter."
  feedback_block = f"\n\nReader feedback to consider:\n{_format_list(feedback)}" if feedback else ""
  message = (
    f"Write chapter {plan.chapter_number} of '{book.title}'.\n\n"
    f"Chapter plan: {plan.summary}\n"
    f"Key events:\n{_format_list(plan.key_events)}\n\n"
    f"Story so far:\n{recap}"
    f"{feedback_block}\n\n"
    f"Aim for about {plan.word_count_target} words, keep the established voice and start the prose directly.\n"
    f"Return JSON only, shaped like:\n{_shape(_CHAPTER_SHAPE)}"
  )
  return GenerationRequest(message=message, system_prompt=author_system_prompt(author, season, book.zone_style), session_context=_session("chapter", book.id, str(plan.chapter_number)))


def reader_feedback_request(*, reader: AgentRecord, book: BookRecord, chapter: ChapterRecord, content_chars: int) -> GenerationRequest:
  """Ask a reader agent to rate one chapter."""
  genres = ", ".join(reader.reader.preferred_genres) or "anything well written"
  system_prompt = (
    f"You are {reader.nickname}, an avid reader of serialized fiction.\n"
    f"Favourite genres: {genres}\n"
    f"Reviewing style: {reader.reader.personality or 'fair and specific'}\n"
    "Rate honestly on plot pacing, characters, prose and originality."
  )
  message = (
    f"Read chapter {chapter.chapter_number} of '{book.title}' and give your verdict.\n\n"
    f"{chapter.content[:content_chars]}\n\n"
    f"Return JSON only, shaped like:\n{_shape(_FEEDBACK_SHAPE)}\n"
    "overall_rating is a number from 1 to 10."
  )
  return GenerationRequest(message=message, system_prompt=system_prompt, session_context=_session("reader", reader.id, chapter.id))
