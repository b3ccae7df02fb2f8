"""Reader agents: sample commenters for eligible chapters, persist feedback and settle rewards."""

from __future__ import annotations

import logging
import random
from dataclasses import dataclass, field

from inkround.ai.backoff import RetryPolicy, generate_structured
from inkround.ai.client import GenerationRequest, GenerativeClient
from inkround.ai.prompts import reader_feedback_request
from inkround.ai.schemas import ReaderFeedback, decode_feedback
from inkround.notifications.contracts import NotificationSink
from inkround.pipeline.engine import PipelineLimits, PipelineStages, run_pipeline
from inkround.services.economy import EconomyService
from inkround.services.scoring import ScoreService
from inkround.storage.agents_repo import AgentRecord, AgentsRepository, CommentRecord, InsufficientBalanceError
from inkround.storage.books_repo import BookRecord, BooksRepository, ChapterRecord
from inkround.utils.clock import Clock
from inkround.utils.ids import generate_id

logger = logging.getLogger(__name__)

FALLBACK_COMMENT = "Enjoyed this one, keep going!"


@dataclass(frozen=True)
class ReaderPolicy:
  """Cost-bounding knobs for reader commentary."""

  top_k: int = 10
  agents_per_chapter: int = 3
  rating_threshold: int = 4
  gift_rating: int = 9
  content_chars: int = 4000


@dataclass(frozen=True)
class ReaderAssignment:
  book: BookRecord
  chapter: ChapterRecord
  reader: AgentRecord

  @property
  def key(self) -> str:
    return f"{self.chapter.id}:{self.reader.id}"


@dataclass(frozen=True)
class PreparedReading:
  assignment: ReaderAssignment
  request: GenerationRequest


@dataclass
class ReaderDispatchReport:
  """Counts of one dispatch run; discarded comments are not failures."""

  chapters: int = 0
  assigned: int = 0
  comments: list[str] = field(default_factory=list)
  discarded: int = 0
  skipped: int = 0
  failed: int = 0

  def as_dict(self) -> dict[str, int]:
    return {"chapters": self.chapters, "assigned": self.assigned, "comments": len(self.comments), "discarded": self.discarded, "skipped": self.skipped, "failed": self.failed}


def comment_text(feedback: ReaderFeedback) -> str:
  parts = [part.strip() for part in (feedback.comment, feedback.praise, feedback.critique) if part and part.strip()]
  return "\n".join(parts) or FALLBACK_COMMENT


class ReaderDispatcher:
  """Dispatch reader agents to the hottest books' chapters."""

  def __init__(
    self,
    *,
    books: BooksRepository,
    agents: AgentsRepository,
    client: GenerativeClient,
    retry_policy: RetryPolicy,
    scores: ScoreService,
    economy: EconomyService,
    sink: NotificationSink,
    clock: Clock,
    limits: PipelineLimits,
    policy: ReaderPolicy,
    rng: random.Random | None = None,
  ) -> None:
    self._books = books
    self._agents = agents
    self._client = client
    self._retry_policy = retry_policy
    self._scores = scores
    self._economy = economy
    self._sink = sink
    self._clock = clock
    self._limits = limits
    self._policy = policy
    self._rng = rng or random.Random()

  async def dispatch_round(self, season_id: str, chapter_number: int) -> ReaderDispatchReport:
    """Have readers comment on chapter `chapter_number` of the season's top books."""
    books = await self._books.top_books_by_heat(season_id, limit=self._policy.top_k)
    targets: list[tuple[BookRecord, ChapterRecord]] = []
    for book in books:
      chapter = await self._books.get_chapter(book.id, chapter_number)
      if chapter is not None:
        targets.append((book, chapter))
    return await self._dispatch(targets, label=f"readers.{season_id}.{chapter_number}")

  async def dispatch_chapter(self, chapter_id: str) -> ReaderDispatchReport:
    """Have readers comment on one chapter when its book ranks in the top K by heat."""
    chapter = await self._books.get_chapter_by_id(chapter_id)
    if chapter is None:
      logger.warning("Reader dispatch skipped: chapter %s not found", chapter_id)
      return ReaderDispatchReport()
    book = await self._books.get_book(chapter.book_id)
    if book is None:
      logger.warning("Reader dispatch skipped: book %s not found", chapter.book_id)
      return ReaderDispatchReport()
    top = await self._books.top_books_by_heat(book.season_id, limit=self._policy.top_k)
    if book.id not in {entry.id for entry in top}:
      logger.info("Reader dispatch skipped: book %s is outside the top %d", book.id, self._policy.top_k)
      return ReaderDispatchReport()
    return await self._dispatch([(book, chapter)], label=f"readers.chapter.{chapter_id}")

  async def select_readers(self, book: BookRecord, chapter: ChapterRecord, readers: list[AgentRecord]) -> list[AgentRecord]:
    """Sample readers, never the author nor an AI agent that already commented on the chapter."""
    commented = await self._agents.commenter_ids(chapter.id)
    pool = [reader for reader in readers if reader.id != book.author_id and (reader.is_human or reader.id not in commented)]
    return self._rng.sample(pool, min(self._policy.agents_per_chapter, len(pool)))

  async def _dispatch(self, targets: list[tuple[BookRecord, ChapterRecord]], *, label: str) -> ReaderDispatchReport:
    report = ReaderDispatchReport(chapters=len(targets))
    if not targets:
      return report
    readers = await self._agents.list_reader_agents()
    if not readers:
      logger.info("Reader dispatch %s: no reader agents enabled", label)
      return report

    assignments: list[ReaderAssignment] = []
    for book, chapter in targets:
      for reader in await self.select_readers(book, chapter, readers):
        assignments.append(ReaderAssignment(book=book, chapter=chapter, reader=reader))
    report.assigned = len(assignments)

    stages: PipelineStages[ReaderAssignment, PreparedReading, ReaderFeedback, CommentRecord | None] = PipelineStages(prepare=self._prepare, generate=self._generate, persist=self._persist, key=lambda assignment: assignment.key)
    result = await run_pipeline(assignments, stages, db_concurrency=self._limits.db_concurrency, llm_concurrency=self._limits.llm_concurrency, label=label, db_retry_attempts=self._limits.db_retry_attempts)

    for key in result.persisted:
      comment = result.results.get(key)
      if comment is None:
        report.discarded += 1
      else:
        report.comments.append(comment.id)
    report.skipped = len(result.skipped)
    report.failed = len(result.failed)
    logger.info("Reader dispatch %s finished %s", label, report.as_dict())
    return report

  async def _prepare(self, assignment: ReaderAssignment) -> PreparedReading | None:
    reader = assignment.reader
    # Coin flip before any generation call bounds load.
    if self._rng.random() > reader.reader.comment_probability:
      logger.debug("Reader %s passed on chapter %s", reader.id, assignment.chapter.id)
      return None
    request = reader_feedback_request(reader=reader, book=assignment.book, chapter=assignment.chapter, content_chars=self._policy.content_chars)
    return PreparedReading(assignment=assignment, request=request)

  async def _generate(self, prepared: PreparedReading) -> ReaderFeedback:
    operation = f"reader={prepared.assignment.reader.id} chapter={prepared.assignment.chapter.id}"
    return await generate_structured(lambda: self._client.complete(prepared.request), decode_feedback, policy=self._retry_policy, operation=operation)

  async def _persist(self, prepared: PreparedReading, feedback: ReaderFeedback) -> CommentRecord | None:
    assignment = prepared.assignment
    book, chapter, reader = assignment.book, assignment.chapter, assignment.reader
    if feedback.rating < self._policy.rating_threshold:
      logger.info("Reader %s rated chapter %s %d; below threshold, comment discarded", reader.id, chapter.id, feedback.rating)
      return None

    comment = await self._agents.insert_comment(
      CommentRecord(
        id=generate_id(),
        book_id=book.id,
        chapter_id=chapter.id,
        agent_id=reader.id,
        content=comment_text(feedback),
        created_at=self._clock.now(),
        is_human=False,
        rating=feedback.rating,
        sentiment=feedback.sentiment,
        praise=feedback.praise or None,
        critique=feedback.critique or None,
        will_continue=feedback.will_continue,
      )
    )
    self._sink.emit("new_comment", {"bookId": book.id, "chapterId": chapter.id, "commentId": comment.id, "agentId": reader.id, "rating": comment.rating})

    # The comment is committed; nothing below may undo it.
    try:
      scores = await self._scores.recalculate(book.id)
      if scores is not None:
        self._sink.emit("heat_update", {"bookId": book.id, "heat": scores.heat, "finalScore": scores.final_score})
    except Exception:  # noqa: BLE001
      logger.warning("Score recalculation failed for book %s", book.id, exc_info=True)

    await self._settle_rewards(reader, book, feedback.rating)
    return comment

  async def _settle_rewards(self, reader: AgentRecord, book: BookRecord, rating: int) -> None:
    try:
      await self._economy.reward_reader(reader.id, book.id, rating)
    except Exception:  # noqa: BLE001
      logger.warning("Reader reward failed agent=%s book=%s", reader.id, book.id, exc_info=True)

    if not reader.reader.auto_gift or rating < self._policy.gift_rating:
      return
    try:
      await self._economy.gift(reader.id, book.author_id, reader.reader.gift_amount, book_id=book.id)
    except InsufficientBalanceError as exc:
      logger.info("Gift skipped agent=%s book=%s: %s", reader.id, book.id, exc)
    except Exception:  # noqa: BLE001
      logger.warning("Gift failed agent=%s book=%s", reader.id, book.id, exc_info=True)
