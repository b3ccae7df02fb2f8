"""Task handlers for every engine task type."""

from __future__ import annotations

import logging
from typing import Any

from inkround.jobs.dispatch import TaskHandler, TaskHandlerRegistry
from inkround.jobs.models import InvalidTaskPayloadError, TaskRecord
from inkround.jobs.progress import TaskProgressTracker
from inkround.jobs.queue import TaskQueue
from inkround.pipeline.chapters import ChapterWriter
from inkround.pipeline.engine import PipelineReport
from inkround.pipeline.outline import OutlinePipeline
from inkround.services.catch_up import CatchUpReconciler
from inkround.services.reader_dispatch import ReaderDispatcher
from inkround.services.scoring import ScoreService
from inkround.storage.books_repo import BooksRepository

logger = logging.getLogger(__name__)


class BatchFailedError(RuntimeError):
  """Raised when every item of a batch failed, so the task is retried as a whole."""


def _require(task: TaskRecord, key: str) -> Any:
  value = task.payload.get(key)
  if value is None:
    raise InvalidTaskPayloadError(f"Task {task.id} ({task.task_type}) requires payload key {key}")
  return value


def _ensure_progress(report: PipelineReport[Any]) -> None:
  """Partial success completes the task; a batch with only failures is retried."""
  if report.failed and not report.persisted and not report.skipped:
    raise BatchFailedError(f"All {len(report.failed)} item(s) of {report.label} failed: {next(iter(report.failed.values()))}")


class OutlineHandler:
  """Whole-book outlines for the first round."""

  def __init__(self, *, outlines: OutlinePipeline, books: BooksRepository) -> None:
    self._outlines = outlines
    self._books = books

  async def handle(self, task: TaskRecord, progress: TaskProgressTracker) -> None:
    season_id = _require(task, "seasonId")
    book_ids = task.payload.get("bookIds")
    if book_ids is None:
      book_ids = [book.id for book in await self._books.list_books(season_id, status="ACTIVE") if book.chapter_count == 0]
    await progress.step(f"outline:whole books={len(book_ids)}")
    _ensure_progress(await self._outlines.generate_whole(season_id, book_ids))


class NextOutlineHandler:
  """Next-chapter plans at the start of every later round."""

  def __init__(self, *, outlines: OutlinePipeline, books: BooksRepository) -> None:
    self._outlines = outlines
    self._books = books

  async def handle(self, task: TaskRecord, progress: TaskProgressTracker) -> None:
    season_id = _require(task, "seasonId")
    book_ids = task.payload.get("bookIds")
    if book_ids is None:
      book_ids = [book.id for book in await self._books.list_books(season_id, status="ACTIVE") if book.chapter_count < book.max_chapters]
    await progress.step(f"outline:next books={len(book_ids)}")
    _ensure_progress(await self._outlines.generate_next(season_id, book_ids))


class WriteChapterHandler:
  """Write the round's chapter, then queue a catch-up for books still behind."""

  def __init__(self, *, writer: ChapterWriter, reconciler: CatchUpReconciler, queue: TaskQueue) -> None:
    self._writer = writer
    self._reconciler = reconciler
    self._queue = queue

  async def handle(self, task: TaskRecord, progress: TaskProgressTracker) -> None:
    season_id = _require(task, "seasonId")
    round_number = _require(task, "round")
    await progress.step(f"chapters:write round={round_number}")
    report = await self._writer.write(season_id, round_number, task.payload.get("bookIds"))

    await progress.step("chapters:verify")
    gaps = await self._reconciler.find_gaps(season_id, round_number)
    if gaps:
      logger.info("Season %s round %d has %d lagging book(s); queueing catch-up", season_id, round_number, len(gaps))
      await self._queue.enqueue("CATCH_UP", {"seasonId": season_id, "round": round_number, "bookIds": sorted(gaps)})
      return
    _ensure_progress(report)


class CatchUpHandler:
  def __init__(self, *, reconciler: CatchUpReconciler) -> None:
    self._reconciler = reconciler

  async def handle(self, task: TaskRecord, progress: TaskProgressTracker) -> None:
    round_number = task.payload.get("round")
    book_id = task.payload.get("bookId")
    if book_id is not None:
      await progress.step(f"catch_up:book {book_id}")
      await self._reconciler.catch_up_book(book_id, round_number)
      return
    season_id = _require(task, "seasonId")
    await progress.step(f"catch_up:season round={round_number}")
    await self._reconciler.catch_up(season_id, _require(task, "round"), task.payload.get("bookIds"))


class ReaderDispatchHandler:
  def __init__(self, *, dispatcher: ReaderDispatcher) -> None:
    self._dispatcher = dispatcher

  async def handle(self, task: TaskRecord, progress: TaskProgressTracker) -> None:
    season_id = _require(task, "seasonId")
    chapter_number = _require(task, "round")
    await progress.step(f"readers:round chapter={chapter_number}")
    await self._dispatcher.dispatch_round(season_id, chapter_number)


class ReaderAgentHandler:
  def __init__(self, *, dispatcher: ReaderDispatcher) -> None:
    self._dispatcher = dispatcher

  async def handle(self, task: TaskRecord, progress: TaskProgressTracker) -> None:
    chapter_id = _require(task, "chapterId")
    await progress.step(f"readers:chapter {chapter_id}")
    await self._dispatcher.dispatch_chapter(chapter_id)


class SeasonEndHandler:
  """Final score pass once a season finished."""

  def __init__(self, *, books: BooksRepository, scores: ScoreService) -> None:
    self._books = books
    self._scores = scores

  async def handle(self, task: TaskRecord, progress: TaskProgressTracker) -> None:
    season_id = _require(task, "seasonId")
    books = await self._books.list_books(season_id)
    await progress.step(f"season_end:scores books={len(books)}")
    for book in books:
      await self._scores.recalculate(book.id)


def build_registry(
  *,
  outlines: OutlinePipeline,
  writer: ChapterWriter,
  reconciler: CatchUpReconciler,
  dispatcher: ReaderDispatcher,
  scores: ScoreService,
  books: BooksRepository,
  queue: TaskQueue,
) -> TaskHandlerRegistry:
  """Register the handler for every task type."""
  handlers: dict[str, TaskHandler] = {
    "OUTLINE": OutlineHandler(outlines=outlines, books=books),
    "NEXT_OUTLINE": NextOutlineHandler(outlines=outlines, books=books),
    "WRITE_CHAPTER": WriteChapterHandler(writer=writer, reconciler=reconciler, queue=queue),
    "CATCH_UP": CatchUpHandler(reconciler=reconciler),
    "READER_DISPATCH": ReaderDispatchHandler(dispatcher=dispatcher),
    "READER_AGENT": ReaderAgentHandler(dispatcher=dispatcher),
    "SEASON_END": SeasonEndHandler(books=books, scores=scores),
  }
  return TaskHandlerRegistry(handlers)
