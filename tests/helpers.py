"""Test doubles and seeding helpers shared by the unit and integration suites."""

from __future__ import annotations

import json
from collections.abc import Callable
from datetime import UTC, datetime, timedelta
from typing import Any

from inkround.ai.client import GenerationRequest
from inkround.storage.agents_repo import AgentRecord, ReaderConfig
from inkround.storage.books_repo import BookRecord, ChapterRecord, NewChapterPlan
from inkround.storage.postgres_agents_repo import PostgresAgentsRepository
from inkround.storage.postgres_books_repo import PostgresBooksRepository
from inkround.storage.postgres_seasons_repo import PostgresSeasonsRepository
from inkround.storage.seasons_repo import RoundPhase, SeasonRecord

START = datetime(2026, 3, 1, 12, 0, tzinfo=UTC)


class FakeClock:
  """Manually advanced clock."""

  def __init__(self, start: datetime = START) -> None:
    self._now = start

  def now(self) -> datetime:
    return self._now

  def advance(self, **kwargs: float) -> datetime:
    self._now += timedelta(**kwargs)
    return self._now


class RecordingSink:
  """Collect emitted events in memory."""

  def __init__(self) -> None:
    self.events: list[tuple[str, dict[str, Any]]] = []

  def emit(self, topic: str, payload: dict[str, Any]) -> None:
    self.events.append((topic, payload))

  def topics(self) -> list[str]:
    return [topic for topic, _ in self.events]

  async def aclose(self) -> None:
    return None


class ScriptedClient:
  """Generative client whose answers come from a responder callable; the responder may raise."""

  def __init__(self, respond: Callable[[GenerationRequest], str]) -> None:
    self.respond = respond
    self.calls: list[GenerationRequest] = []

  async def complete(self, request: GenerationRequest) -> str:
    self.calls.append(request)
    return self.respond(request)

  def contexts(self, prefix: str = "") -> list[str]:
    return [call.session_context or "" for call in self.calls if (call.session_context or "").startswith(prefix)]


def outline_json(chapters: int, *, title: str = "A Tale") -> str:
  return json.dumps(
    {
      "title": title,
      "summary": "A story about ink.",
      "characters": [{"name": "Ada", "role": "protagonist", "description": "A scribe"}],
      "chapters": [{"number": n, "title": f"Chapter {n}", "summary": f"Events of {n}", "key_events": [f"event {n}"]} for n in range(1, chapters + 1)],
      "themes": ["memory"],
      "tone": "wry",
    }
  )


def plan_json(number: int) -> str:
  return json.dumps({"number": number, "title": f"Planned {number}", "summary": f"Plan for {number}", "key_events": ["turn"], "reason": "readers asked for more"})


def chapter_json(book_id: str, number: int) -> str:
  return json.dumps({"title": f"{book_id} #{number}", "content": f"The text of chapter {number} for {book_id}. " * 5})


def feedback_json(rating: float, *, comment: str = "Loved the pacing of this chapter.") -> str:
  return json.dumps({"overall_rating": rating, "praise": "Strong voice", "critique": "Slow middle", "will_continue": True, "comment": comment})


def default_responder(request: GenerationRequest) -> str:
  """Answer every engine prompt kind with well-formed JSON."""
  parts = (request.session_context or "").split(":")
  kind = parts[0]
  if kind == "outline" and len(parts) == 2:
    return outline_json(7)
  if kind == "outline":
    return plan_json(int(parts[2]))
  if kind == "chapter":
    return chapter_json(parts[1], int(parts[2]))
  if kind == "reader":
    return feedback_json(7)
  raise AssertionError(f"Unexpected request {request.session_context}")


class Seeder:
  """Insert seasons, agents, books, plans and chapters through the real repositories."""

  def __init__(self, *, seasons: PostgresSeasonsRepository, books: PostgresBooksRepository, agents: PostgresAgentsRepository, clock: FakeClock) -> None:
    self.seasons = seasons
    self.books = books
    self.agents = agents
    self.clock = clock
    self._created = 0

  async def season(
    self,
    season_id: str = "season-1",
    *,
    current_round: int = 1,
    round_phase: RoundPhase = "NONE",
    round_start_time: datetime | None = None,
    max_rounds: int = 7,
    minutes: int = 10,
    end_time: datetime | None = None,
  ) -> SeasonRecord:
    record = SeasonRecord(
      id=season_id,
      theme_keyword="lighthouse",
      current_round=current_round,
      round_phase=round_phase,
      round_start_time=round_start_time,
      reading_minutes=minutes,
      outline_minutes=minutes,
      writing_minutes=minutes,
      max_rounds=max_rounds,
      status="ACTIVE",
      start_time=self.clock.now(),
      end_time=end_time,
      constraints=["no dialogue tags"],
    )
    await self.seasons.create_season(record)
    return record

  async def agent(self, agent_id: str, *, ink: int = 100, reader: dict[str, Any] | None = None, is_human: bool = False) -> AgentRecord:
    record = AgentRecord(id=agent_id, nickname=agent_id.title(), is_human=is_human, ink_balance=ink, reader=ReaderConfig.from_json(reader))
    await self.agents.create_agent(record)
    return record

  async def book(self, book_id: str, *, author_id: str, season_id: str = "season-1", max_chapters: int = 7, heat: float = 0.0) -> BookRecord:
    self._created += 1
    record = BookRecord(
      id=book_id,
      season_id=season_id,
      author_id=author_id,
      title=f"Book {book_id}",
      status="ACTIVE",
      chapter_count=0,
      max_chapters=max_chapters,
      created_at=self.clock.now() + timedelta(seconds=self._created),
      heat=heat,
    )
    await self.books.create_book(record)
    return record

  async def plan(self, book_id: str, numbers: range | list[int]) -> None:
    plans = [NewChapterPlan(chapter_number=number, title=f"Chapter {number}", summary=f"Events of {number}") for number in numbers]
    await self.books.save_outline(book_id, summary="A story about ink.", characters=[], themes=[], tone=None, plans=plans, reason="seed", now=self.clock.now())

  async def chapter(self, book_id: str, number: int, *, content: str | None = None) -> ChapterRecord:
    chapter = await self.books.insert_chapter(book_id, chapter_number=number, title=f"Seeded {number}", content=content or f"Seeded chapter {number}.", heat_bonus=0, now=self.clock.now())
    assert chapter is not None
    return chapter


