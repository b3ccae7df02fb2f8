"""Reconcile books that fell behind the round: fill chapter gaps in chapter order."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field

from inkround.pipeline.chapters import ChapterWriter
from inkround.pipeline.outline import OutlinePipeline, OutlineTarget
from inkround.storage.books_repo import BooksRepository
from inkround.storage.seasons_repo import SeasonsRepository

logger = logging.getLogger(__name__)

MAX_PASSES = 2


@dataclass
class CatchUpReport:
  """What a reconciliation found, wrote and could not fix."""

  season_id: str
  target_round: int
  missing: dict[str, list[int]] = field(default_factory=dict)
  written: dict[str, list[int]] = field(default_factory=dict)
  residue: dict[str, list[int]] = field(default_factory=dict)
  passes: int = 0

  @property
  def complete(self) -> bool:
    return not self.residue

  def as_dict(self) -> dict[str, object]:
    return {"seasonId": self.season_id, "targetRound": self.target_round, "missing": self.missing, "written": self.written, "residue": self.residue, "passes": self.passes}


class CatchUpReconciler:
  """Compute true gap sets and replay outline + chapter pipelines wave by wave."""

  def __init__(self, *, seasons: SeasonsRepository, books: BooksRepository, outlines: OutlinePipeline, writer: ChapterWriter, max_passes: int = MAX_PASSES) -> None:
    self._seasons = seasons
    self._books = books
    self._outlines = outlines
    self._writer = writer
    self._max_passes = max_passes

  async def find_gaps(self, season_id: str, target_round: int, book_ids: list[str] | None = None) -> dict[str, list[int]]:
    """Map each lagging active book to the chapter numbers 1..target it does not have."""
    books = await self._books.list_books(season_id, status="ACTIVE", book_ids=book_ids)
    existing = await self._books.chapter_numbers([book.id for book in books])
    gaps: dict[str, list[int]] = {}
    for book in books:
      upper = min(target_round, book.max_chapters)
      missing = [number for number in range(1, upper + 1) if number not in existing.get(book.id, set())]
      if missing:
        gaps[book.id] = missing
    return gaps

  async def catch_up(self, season_id: str, target_round: int, book_ids: list[str] | None = None) -> CatchUpReport:
    """Fill gaps up to `target_round`; leftover gaps after the last pass are logged, never raised."""
    report = CatchUpReport(season_id=season_id, target_round=target_round)
    gaps = await self.find_gaps(season_id, target_round, book_ids)
    report.missing = {book_id: list(numbers) for book_id, numbers in gaps.items()}
    if not gaps:
      logger.info("Catch-up season=%s round=%d: no gaps", season_id, target_round)
      return report

    logger.info("Catch-up season=%s round=%d: %d lagging book(s) %s", season_id, target_round, len(gaps), gaps)
    while gaps and report.passes < self._max_passes:
      report.passes += 1
      await self._run_pass(season_id, gaps, report)
      gaps = await self.find_gaps(season_id, target_round, list(gaps))

    report.residue = gaps
    if gaps:
      logger.warning("Catch-up season=%s round=%d left gaps after %d pass(es): %s", season_id, target_round, report.passes, gaps)
    return report

  async def catch_up_book(self, book_id: str, target_round: int | None = None) -> CatchUpReport | None:
    """Reconcile one book up to `target_round`, or to the season's current round."""
    book = await self._books.get_book(book_id)
    if book is None:
      return None
    if target_round is None:
      season = await self._seasons.get_season(book.season_id)
      target_round = season.current_round if season else book.chapter_count
    return await self.catch_up(book.season_id, target_round, [book.id])

  async def _run_pass(self, season_id: str, gaps: dict[str, list[int]], report: CatchUpReport) -> None:
    # A book whose earlier chapter failed sits out later waves of this pass.
    blocked: set[str] = set()
    for number in sorted({number for numbers in gaps.values() for number in numbers}):
      book_ids = [book_id for book_id, numbers in gaps.items() if number in numbers and book_id not in blocked]
      if not book_ids:
        continue

      unplanned: list[str] = []
      for book_id in book_ids:
        plan = await self._books.current_plan(book_id)
        if not any(entry.chapter_number == number for entry in plan):
          unplanned.append(book_id)
      if unplanned:
        await self._outlines.generate_chapters(season_id, [OutlineTarget(book_id=book_id, chapter_number=number) for book_id in unplanned])

      result = await self._writer.write(season_id, number, book_ids)
      for book_id in book_ids:
        if book_id in result.persisted:
          report.written.setdefault(book_id, []).append(number)
        else:
          blocked.add(book_id)
      logger.info("Catch-up wave season=%s chapter=%d books=%d written=%d", season_id, number, len(book_ids), len(result.persisted))
