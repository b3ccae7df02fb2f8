"""Outline generation: whole-book outlines, next-chapter plans and catch-up plans."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Literal

from inkround.ai.backoff import RetryPolicy, generate_structured
from inkround.ai.client import GenerationRequest, GenerativeClient
from inkround.ai.prompts import chapter_outline_request, whole_outline_request
from inkround.ai.schemas import ChapterPlanDraft, CharacterDraft, OutlineDraft, decode_chapter_plan, decode_outline
from inkround.notifications.contracts import NotificationSink
from inkround.pipeline.engine import PipelineLimits, PipelineReport, PipelineStages, run_pipeline
from inkround.services.economy import EconomyService
from inkround.storage.agents_repo import AgentsRepository
from inkround.storage.books_repo import BookOutlineRecord, BookRecord, BooksRepository, NewChapterPlan
from inkround.storage.seasons_repo import SeasonRecord, SeasonsRepository
from inkround.utils.clock import Clock

logger = logging.getLogger(__name__)

OutlineMode = Literal["whole", "chapter"]


@dataclass(frozen=True)
class OutlineTarget:
  """A book and what to plan for it; no chapter number means the next unwritten chapter."""

  book_id: str
  chapter_number: int | None = None
  whole: bool = False


@dataclass(frozen=True)
class PreparedOutline:
  mode: OutlineMode
  book: BookRecord
  author_id: str
  chapter_number: int
  chapter_count: int
  outline: BookOutlineRecord | None
  request: GenerationRequest


class OutlinePipeline:
  """Generate and persist versioned outline records for a batch of books."""

  def __init__(
    self,
    *,
    seasons: SeasonsRepository,
    books: BooksRepository,
    agents: AgentsRepository,
    client: GenerativeClient,
    policy: RetryPolicy,
    economy: EconomyService,
    sink: NotificationSink,
    clock: Clock,
    limits: PipelineLimits,
    max_outline_chapters: int = 7,
  ) -> None:
    self._seasons = seasons
    self._books = books
    self._agents = agents
    self._client = client
    self._policy = policy
    self._economy = economy
    self._sink = sink
    self._clock = clock
    self._limits = limits
    self._max_outline_chapters = max_outline_chapters

  async def generate_whole(self, season_id: str, book_ids: list[str]) -> PipelineReport[BookOutlineRecord]:
    """Write the first whole-book outline for each book that has none."""
    return await self._run(season_id, [OutlineTarget(book_id=book_id, whole=True) for book_id in book_ids], label="outline.whole")

  async def generate_next(self, season_id: str, book_ids: list[str]) -> PipelineReport[BookOutlineRecord]:
    """Plan chapter `chapter_count + 1` for each book."""
    return await self._run(season_id, [OutlineTarget(book_id=book_id) for book_id in book_ids], label="outline.next")

  async def generate_chapters(self, season_id: str, targets: list[OutlineTarget]) -> PipelineReport[BookOutlineRecord]:
    """Plan specific chapter numbers, used when reconciling gaps."""
    return await self._run(season_id, targets, label="outline.chapter")

  async def _run(self, season_id: str, targets: list[OutlineTarget], *, label: str) -> PipelineReport[BookOutlineRecord]:
    season = await self._seasons.get_season(season_id)
    if season is None:
      logger.warning("Outline run %s skipped: season %s not found", label, season_id)
      return PipelineReport(label=label, skipped=[target.book_id for target in targets])

    stages: PipelineStages[OutlineTarget, PreparedOutline, OutlineDraft | ChapterPlanDraft, BookOutlineRecord] = PipelineStages(
      prepare=lambda target: self._prepare(season, target),
      generate=self._generate,
      persist=self._persist,
      key=lambda target: target.book_id,
    )
    return await run_pipeline(targets, stages, db_concurrency=self._limits.db_concurrency, llm_concurrency=self._limits.llm_concurrency, label=label, db_retry_attempts=self._limits.db_retry_attempts)

  async def _prepare(self, season: SeasonRecord, target: OutlineTarget) -> PreparedOutline | None:
    book = await self._books.get_book(target.book_id)
    if book is None or book.season_id != season.id:
      logger.warning("Outline skipped: book %s not found in season %s", target.book_id, season.id)
      return None
    author = await self._agents.get_agent(book.author_id)
    if author is None:
      logger.warning("Outline skipped: author %s of book %s not found", book.author_id, book.id)
      return None

    outline = await self._books.latest_outline(book.id)
    chapter_count = min(book.max_chapters, season.max_rounds, self._max_outline_chapters)

    if target.whole or outline is None:
      if outline is not None:
        logger.info("Outline skipped: book %s already has outline version %d", book.id, outline.version)
        return None
      request = whole_outline_request(author=author, season=season, book=book, chapter_count=chapter_count)
      return PreparedOutline(mode="whole", book=book, author_id=author.id, chapter_number=1, chapter_count=chapter_count, outline=None, request=request)

    chapter_number = target.chapter_number or book.chapter_count + 1
    if chapter_number > book.max_chapters:
      logger.info("Outline skipped: book %s already planned its last chapter %d", book.id, book.max_chapters)
      return None
    plan = await self._books.current_plan(book.id)
    if any(entry.chapter_number == chapter_number for entry in plan):
      logger.info("Outline skipped: book %s already has a plan for chapter %d", book.id, chapter_number)
      return None

    previous = await self._books.get_chapter(book.id, chapter_number - 1) if chapter_number > 1 else None
    comments = await self._agents.list_chapter_comments(previous.id, limit=10) if previous else []
    request = chapter_outline_request(author=author, season=season, book=book, chapter_number=chapter_number, outline=outline, plan=plan, previous=previous, comments=comments)
    return PreparedOutline(mode="chapter", book=book, author_id=author.id, chapter_number=chapter_number, chapter_count=chapter_count, outline=outline, request=request)

  async def _generate(self, prepared: PreparedOutline) -> OutlineDraft | ChapterPlanDraft:
    if prepared.mode == "whole":
      return await generate_structured(lambda: self._client.complete(prepared.request), decode_outline, policy=self._policy, operation=f"outline book={prepared.book.id}")
    return await generate_structured(lambda: self._client.complete(prepared.request), decode_chapter_plan, policy=self._policy, operation=f"chapter plan book={prepared.book.id} chapter={prepared.chapter_number}")

  async def _persist(self, prepared: PreparedOutline, draft: OutlineDraft | ChapterPlanDraft) -> BookOutlineRecord:
    now = self._clock.now()
    book = prepared.book
    if isinstance(draft, OutlineDraft):
      plans = [_plan_from_draft(entry, index + 1) for index, entry in enumerate(draft.chapters[: prepared.chapter_count])]
      record = await self._books.save_outline(book.id, summary=draft.summary, characters=[_character_dict(item) for item in draft.characters], themes=list(draft.themes), tone=draft.tone, plans=plans, reason="initial outline", now=now)
    else:
      previous = prepared.outline
      plan = _plan_from_draft(draft, prepared.chapter_number)
      reason = draft.reason or f"planned chapter {prepared.chapter_number}"
      record = await self._books.save_outline(
        book.id,
        summary=previous.summary if previous else book.synopsis or "",
        characters=list(previous.characters) if previous else [],
        themes=list(previous.themes) if previous else [],
        tone=previous.tone if previous else None,
        plans=[plan],
        reason=reason,
        now=now,
      )

    try:
      await self._economy.charge_outline(prepared.author_id, book.id)
    except Exception:  # noqa: BLE001
      logger.warning("Outline ink charge failed author=%s book=%s", prepared.author_id, book.id, exc_info=True)

    self._sink.emit("outline_updated", {"bookId": book.id, "seasonId": book.season_id, "version": record.version, "mode": prepared.mode, "chapterNumber": prepared.chapter_number})
    logger.info("Outline persisted book=%s version=%d mode=%s", book.id, record.version, prepared.mode)
    return record


def _plan_from_draft(draft: ChapterPlanDraft, chapter_number: int) -> NewChapterPlan:
  return NewChapterPlan(chapter_number=chapter_number, title=draft.title, summary=draft.summary, key_events=list(draft.key_events), word_count_target=draft.word_count_target)


def _character_dict(character: CharacterDraft | str) -> dict[str, str]:
  if isinstance(character, str):
    return {"name": character, "role": "", "description": ""}
  return {"name": character.name, "role": character.role, "description": character.description}
