"""Round phase state machine driven by a periodic scheduler tick."""

from __future__ import annotations

import asyncio
import contextlib
import logging
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Any

from inkround.jobs.queue import TaskQueue
from inkround.notifications.contracts import NotificationSink
from inkround.storage.books_repo import BooksRepository
from inkround.storage.seasons_repo import RoundPhase, SeasonRecord, SeasonsRepository
from inkround.utils.clock import Clock

logger = logging.getLogger(__name__)

_NEXT_PHASE: dict[RoundPhase, RoundPhase] = {"NONE": "OUTLINE", "OUTLINE": "WRITING", "WRITING": "READING", "READING": "OUTLINE"}


def next_phase(phase: RoundPhase) -> RoundPhase:
  """NONE -> OUTLINE -> WRITING -> READING -> OUTLINE ..."""
  return _NEXT_PHASE[phase]


def phase_remaining(season: SeasonRecord, now: datetime) -> timedelta:
  """Time left in the current phase; zero or negative means it is due to advance."""
  if season.round_start_time is None:
    return timedelta(0)
  return season.round_start_time + season.phase_duration(season.round_phase) - now


@dataclass(frozen=True)
class PhaseTransition:
  """One move of a season's round clock and the work it enqueued."""

  season_id: str
  from_round: int
  from_phase: RoundPhase
  to_round: int
  to_phase: RoundPhase
  finished: bool = False
  task_ids: list[int] = field(default_factory=list)

  def as_dict(self) -> dict[str, Any]:
    return {
      "seasonId": self.season_id,
      "fromRound": self.from_round,
      "fromPhase": self.from_phase,
      "toRound": self.to_round,
      "toPhase": self.to_phase,
      "finished": self.finished,
      "taskIds": list(self.task_ids),
    }


class RoundScheduler:
  """Advance every active season by at most one phase per tick."""

  def __init__(self, *, seasons: SeasonsRepository, books: BooksRepository, queue: TaskQueue, sink: NotificationSink, clock: Clock, grace: timedelta = timedelta(seconds=5), interval_seconds: float = 60) -> None:
    self._seasons = seasons
    self._books = books
    self._queue = queue
    self._sink = sink
    self._clock = clock
    self._grace = grace
    self._interval_seconds = interval_seconds

  async def tick(self) -> list[PhaseTransition]:
    transitions: list[PhaseTransition] = []
    for season in await self._seasons.list_active():
      try:
        transition = await self.advance(season)
      except Exception:  # noqa: BLE001
        logger.exception("Scheduler tick failed for season %s", season.id)
        continue
      if transition is not None:
        transitions.append(transition)
    return transitions

  async def advance(self, season: SeasonRecord) -> PhaseTransition | None:
    """Apply at most one transition to `season`, or None when nothing is due."""
    now = self._clock.now()
    if (season.end_time is not None and now >= season.end_time) or season.current_round > season.max_rounds:
      return await self._finish(season, now)

    if season.round_phase == "NONE":
      book_ids = [book.id for book in await self._books.list_books(season.id, status="ACTIVE") if book.chapter_count == 0]
      return await self._move(season, to_round=1, to_phase="OUTLINE", now=now, task=("OUTLINE", {"seasonId": season.id, "round": 1, "bookIds": book_ids}) if book_ids else None)

    remaining = phase_remaining(season, now)
    if remaining > self._grace:
      return None

    round_number = season.current_round
    if season.round_phase == "OUTLINE":
      return await self._move(season, to_round=round_number, to_phase="WRITING", now=now, task=("WRITE_CHAPTER", {"seasonId": season.id, "round": round_number}))

    if season.round_phase == "WRITING":
      latest = await self._books.latest_chapter_number(season.id)
      task = ("READER_DISPATCH", {"seasonId": season.id, "round": latest}) if latest else None
      return await self._move(season, to_round=round_number, to_phase="READING", now=now, task=task)

    # READING closes the round.
    if round_number + 1 > season.max_rounds:
      return await self._finish(season, now)
    next_round = round_number + 1
    book_ids = [book.id for book in await self._books.list_books(season.id, status="ACTIVE") if book.chapter_count < book.max_chapters]
    return await self._move(season, to_round=next_round, to_phase="OUTLINE", now=now, task=("NEXT_OUTLINE", {"seasonId": season.id, "round": next_round, "bookIds": book_ids}) if book_ids else None)

  async def run_forever(self, stop: asyncio.Event) -> None:
    logger.info("Round scheduler started interval_seconds=%s", self._interval_seconds)
    while not stop.is_set():
      try:
        transitions = await self.tick()
        if transitions:
          logger.info("Scheduler tick applied %d transition(s)", len(transitions))
      except Exception:  # noqa: BLE001
        logger.exception("Scheduler tick crashed")
      with contextlib.suppress(TimeoutError):
        await asyncio.wait_for(stop.wait(), timeout=self._interval_seconds)
    logger.info("Round scheduler stopped")

  async def _move(self, season: SeasonRecord, *, to_round: int, to_phase: RoundPhase, now: datetime, task: tuple[str, dict[str, Any]] | None) -> PhaseTransition | None:
    tasks = [self._queue.prepare(*task)] if task is not None else []
    records = await self._seasons.advance_phase(season.id, from_round=season.current_round, from_phase=season.round_phase, to_round=to_round, to_phase=to_phase, now=now, tasks=tasks)
    if records is None:
      logger.info("Season %s moved concurrently; skipping %s -> %s", season.id, season.round_phase, to_phase)
      return None

    logger.info("Season %s round %d %s -> round %d %s tasks=%s", season.id, season.current_round, season.round_phase, to_round, to_phase, [(record.id, record.task_type) for record in records])
    self._sink.emit("season_phase", {"seasonId": season.id, "round": to_round, "phase": to_phase, "previousPhase": season.round_phase, "startedAt": now.isoformat()})
    return PhaseTransition(season_id=season.id, from_round=season.current_round, from_phase=season.round_phase, to_round=to_round, to_phase=to_phase, task_ids=[record.id for record in records])

  async def _finish(self, season: SeasonRecord, now: datetime) -> PhaseTransition | None:
    records = await self._seasons.finish_season(season.id, now=now, tasks=[self._queue.prepare("SEASON_END", {"seasonId": season.id})])
    if records is None:
      return None
    logger.info("Season %s finished at round %d", season.id, season.current_round)
    self._sink.emit("season_finished", {"seasonId": season.id, "round": season.current_round, "finishedAt": now.isoformat()})
    return PhaseTransition(season_id=season.id, from_round=season.current_round, from_phase=season.round_phase, to_round=season.current_round, to_phase="NONE", finished=True, task_ids=[record.id for record in records])
