"""Chapter writing pipeline: write chapter N for a batch of books."""

from __future__ import annotations

import logging
from dataclasses import dataclass

from inkround.ai.backoff import RetryPolicy, generate_structured
from inkround.ai.client import GenerationRequest, GenerativeClient
from inkround.ai.prompts import chapter_request
from inkround.ai.schemas import ChapterDraft, decode_chapter
from inkround.jobs.queue import TaskQueue
from inkround.notifications.contracts import NotificationSink
from inkround.pipeline.engine import PipelineLimits, PipelineReport, PipelineStages, run_pipeline
from inkround.services.economy import EconomyService
from inkround.storage.agents_repo import AgentsRepository
from inkround.storage.books_repo import BookRecord, BooksRepository, ChapterPlanRecord, ChapterRecord
from inkround.storage.seasons_repo import SeasonRecord, SeasonsRepository
from inkround.utils.clock import Clock

logger = logging.getLogger(__name__)

PREVIOUS_CHAPTERS = 2
EXCERPT_CHARS = 300
FEEDBACK_COMMENTS = 3
MIN_FEEDBACK_CHARS = 10


@dataclass(frozen=True)
class PreparedChapter:
  book: BookRecord
  author_id: str
  plan: ChapterPlanRecord
  request: GenerationRequest


class ChapterWriter:
  """Generate and publish one chapter number across a set of books."""

  def __init__(
    self,
    *,
    seasons: SeasonsRepository,
    books: BooksRepository,
    agents: AgentsRepository,
    client: GenerativeClient,
    policy: RetryPolicy,
    economy: EconomyService,
    queue: TaskQueue,
    sink: NotificationSink,
    clock: Clock,
    limits: PipelineLimits,
    heat_bonus: float = 100,
    enqueue_readers: bool = False,
  ) -> None:
    self._seasons = seasons
    self._books = books
    self._agents = agents
    self._client = client
    self._policy = policy
    self._economy = economy
    self._queue = queue
    self._sink = sink
    self._clock = clock
    self._limits = limits
    self._heat_bonus = heat_bonus
    self._enqueue_readers = enqueue_readers

  async def write(self, season_id: str, chapter_number: int, book_ids: list[str] | None = None) -> PipelineReport[ChapterRecord | None]:
    """Write `chapter_number` for the season's active books, optionally restricted to `book_ids`."""
    label = f"chapter.{chapter_number}"
    season = await self._seasons.get_season(season_id)
    if season is None:
      logger.warning("Chapter run skipped: season %s not found", season_id)
      return PipelineReport(label=label)

    books = await self._books.list_books(season_id, status="ACTIVE", book_ids=book_ids)
    stages: PipelineStages[BookRecord, PreparedChapter, ChapterDraft, ChapterRecord | None] = PipelineStages(
      prepare=lambda book: self._prepare(season, book, chapter_number),
      generate=self._generate,
      persist=self._persist,
      key=lambda book: book.id,
    )
    return await run_pipeline(books, stages, db_concurrency=self._limits.db_concurrency, llm_concurrency=self._limits.llm_concurrency, label=label, db_retry_attempts=self._limits.db_retry_attempts)

  async def _prepare(self, season: SeasonRecord, book: BookRecord, chapter_number: int) -> PreparedChapter | None:
    if chapter_number > book.max_chapters:
      logger.info("Chapter skipped: book %s stops at chapter %d", book.id, book.max_chapters)
      return None
    if await self._books.get_chapter(book.id, chapter_number) is not None:
      logger.info("Chapter skipped: book %s already has chapter %d", book.id, chapter_number)
      return None
    plan = next((entry for entry in await self._books.current_plan(book.id) if entry.chapter_number == chapter_number), None)
    if plan is None:
      logger.warning("Chapter skipped: book %s has no plan entry for chapter %d", book.id, chapter_number)
      return None
    author = await self._agents.get_agent(book.author_id)
    if author is None:
      logger.warning("Chapter skipped: author %s of book %s not found", book.author_id, book.id)
      return None

    previous = await self._books.recent_chapters(book.id, before=chapter_number, limit=PREVIOUS_CHAPTERS)
    feedback: list[str] = []
    if previous:
      comments = await self._agents.list_chapter_comments(previous[-1].id, limit=10)
      feedback = [comment.content for comment in comments if len(comment.content.strip()) > MIN_FEEDBACK_CHARS][:FEEDBACK_COMMENTS]

    request = chapter_request(author=author, season=season, book=book, plan=plan, previous=previous, feedback=feedback, excerpt_chars=EXCERPT_CHARS)
    return PreparedChapter(book=book, author_id=author.id, plan=plan, request=request)

  async def _generate(self, prepared: PreparedChapter) -> ChapterDraft:
    operation = f"chapter book={prepared.book.id} chapter={prepared.plan.chapter_number}"
    return await generate_structured(lambda: self._client.complete(prepared.request), decode_chapter, policy=self._policy, operation=operation)

  async def _persist(self, prepared: PreparedChapter, draft: ChapterDraft) -> ChapterRecord | None:
    book = prepared.book
    number = prepared.plan.chapter_number
    title = (draft.title or "").strip() or prepared.plan.title
    chapter = await self._books.insert_chapter(book.id, chapter_number=number, title=title, content=draft.content.strip(), heat_bonus=self._heat_bonus, now=self._clock.now())
    if chapter is None:
      logger.info("Chapter %d of book %s was already published; nothing to do", number, book.id)
      return None

    try:
      await self._economy.charge_chapter(prepared.author_id, book.id)
    except Exception:  # noqa: BLE001
      logger.warning("Chapter ink charge failed author=%s book=%s", prepared.author_id, book.id, exc_info=True)

    self._sink.emit("chapter_published", {"bookId": book.id, "seasonId": book.season_id, "chapterId": chapter.id, "chapterNumber": number, "title": chapter.title})

    if self._enqueue_readers:
      try:
        await self._queue.enqueue("READER_AGENT", {"seasonId": book.season_id, "bookId": book.id, "chapterId": chapter.id})
      except Exception:  # noqa: BLE001
        logger.warning("Could not enqueue reader task for chapter %s", chapter.id, exc_info=True)

    logger.info("Chapter published book=%s chapter=%d chars=%d", book.id, number, len(chapter.content))
    return chapter
