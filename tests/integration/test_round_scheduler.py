"""Integration tests for the round phase state machine."""

from __future__ import annotations

from datetime import timedelta

import pytest
from helpers import START, FakeClock, RecordingSink, Seeder

from inkround.jobs.queue import TaskQueue
from inkround.services.scheduler import RoundScheduler
from inkround.storage import postgres_seasons_repo
from inkround.storage.postgres_books_repo import PostgresBooksRepository
from inkround.storage.postgres_seasons_repo import PostgresSeasonsRepository


@pytest.fixture
def scheduler(seasons_repo: PostgresSeasonsRepository, books_repo: PostgresBooksRepository, queue: TaskQueue, sink: RecordingSink, clock: FakeClock) -> RoundScheduler:
  return RoundScheduler(seasons=seasons_repo, books=books_repo, queue=queue, sink=sink, clock=clock, grace=timedelta(seconds=5))


async def _only_pending(queue: TaskQueue) -> tuple[str, dict[str, object]]:
  pending = await queue.list_pending()
  assert len(pending) == 1
  return pending[0].task_type, pending[0].payload


@pytest.mark.anyio
async def test_new_season_opens_the_outline_phase(scheduler: RoundScheduler, seed: Seeder, queue: TaskQueue, sink: RecordingSink, seasons_repo: PostgresSeasonsRepository) -> None:
  await seed.season()
  await seed.agent("author")
  await seed.book("b1", author_id="author")
  await seed.book("b2", author_id="author")

  transitions = await scheduler.tick()

  assert [(t.from_phase, t.to_phase, t.to_round) for t in transitions] == [("NONE", "OUTLINE", 1)]
  assert await _only_pending(queue) == ("OUTLINE", {"seasonId": "season-1", "round": 1, "bookIds": ["b1", "b2"]})
  season = await seasons_repo.get_season("season-1")
  assert season is not None and season.round_phase == "OUTLINE" and season.round_start_time == START
  assert sink.events[-1] == ("season_phase", {"seasonId": "season-1", "round": 1, "phase": "OUTLINE", "previousPhase": "NONE", "startedAt": START.isoformat()})


@pytest.mark.anyio
async def test_phase_is_not_advanced_before_it_is_due(scheduler: RoundScheduler, seed: Seeder, clock: FakeClock) -> None:
  await seed.season(round_phase="OUTLINE", round_start_time=START, minutes=10)

  clock.advance(minutes=9, seconds=50)
  assert await scheduler.tick() == []

  # Within the grace window the phase is treated as due.
  clock.advance(seconds=6)
  assert [t.to_phase for t in await scheduler.tick()] == ["WRITING"]


@pytest.mark.anyio
async def test_outline_phase_moves_to_writing(scheduler: RoundScheduler, seed: Seeder, queue: TaskQueue, clock: FakeClock) -> None:
  await seed.season(current_round=2, round_phase="OUTLINE", round_start_time=START)
  clock.advance(minutes=10)

  transitions = await scheduler.tick()

  assert [(t.to_round, t.to_phase) for t in transitions] == [(2, "WRITING")]
  assert await _only_pending(queue) == ("WRITE_CHAPTER", {"seasonId": "season-1", "round": 2})


@pytest.mark.anyio
async def test_writing_phase_moves_to_reading_with_dispatch(scheduler: RoundScheduler, seed: Seeder, queue: TaskQueue, clock: FakeClock) -> None:
  await seed.season(round_phase="WRITING", round_start_time=START)
  await seed.agent("author")
  await seed.book("b1", author_id="author")
  await seed.chapter("b1", 1)
  clock.advance(minutes=10)

  await scheduler.tick()

  assert await _only_pending(queue) == ("READER_DISPATCH", {"seasonId": "season-1", "round": 1})


@pytest.mark.anyio
async def test_reading_without_chapters_enqueues_nothing(scheduler: RoundScheduler, seed: Seeder, queue: TaskQueue, clock: FakeClock) -> None:
  await seed.season(round_phase="WRITING", round_start_time=START)
  clock.advance(minutes=10)

  transitions = await scheduler.tick()

  assert [t.to_phase for t in transitions] == ["READING"]
  assert transitions[0].task_ids == []
  assert await queue.list_pending() == []


@pytest.mark.anyio
async def test_reading_phase_closes_the_round(scheduler: RoundScheduler, seed: Seeder, queue: TaskQueue, clock: FakeClock, seasons_repo: PostgresSeasonsRepository) -> None:
  await seed.season(current_round=2, round_phase="READING", round_start_time=START)
  await seed.agent("author")
  await seed.book("open", author_id="author", max_chapters=7)
  await seed.book("full", author_id="author", max_chapters=1)
  await seed.chapter("full", 1)
  clock.advance(minutes=10)

  transitions = await scheduler.tick()

  assert [(t.from_round, t.to_round, t.to_phase) for t in transitions] == [(2, 3, "OUTLINE")]
  assert await _only_pending(queue) == ("NEXT_OUTLINE", {"seasonId": "season-1", "round": 3, "bookIds": ["open"]})
  season = await seasons_repo.get_season("season-1")
  assert season is not None and season.current_round == 3


@pytest.mark.anyio
async def test_one_transition_per_tick(scheduler: RoundScheduler, seed: Seeder, clock: FakeClock) -> None:
  await seed.season(round_phase="OUTLINE", round_start_time=START)
  clock.advance(hours=2)

  assert [t.to_phase for t in await scheduler.tick()] == ["WRITING"]
  # The new phase started at this tick, so an overdue season does not skip ahead.
  assert await scheduler.tick() == []

  clock.advance(minutes=10)
  assert [t.to_phase for t in await scheduler.tick()] == ["READING"]


@pytest.mark.anyio
async def test_last_round_finishes_the_season(scheduler: RoundScheduler, seed: Seeder, queue: TaskQueue, sink: RecordingSink, clock: FakeClock, seasons_repo: PostgresSeasonsRepository, books_repo: PostgresBooksRepository) -> None:
  await seed.season(current_round=7, max_rounds=7, round_phase="READING", round_start_time=START)
  await seed.agent("author")
  await seed.book("b1", author_id="author")
  clock.advance(minutes=10)

  transitions = await scheduler.tick()

  assert len(transitions) == 1 and transitions[0].finished
  assert await _only_pending(queue) == ("SEASON_END", {"seasonId": "season-1"})
  assert "season_finished" in sink.topics()
  season = await seasons_repo.get_season("season-1")
  assert season is not None and season.status == "FINISHED"
  book = await books_repo.get_book("b1")
  assert book is not None and book.status == "COMPLETED"
  assert await scheduler.tick() == []


@pytest.mark.anyio
async def test_end_time_finishes_the_season_mid_round(scheduler: RoundScheduler, seed: Seeder, queue: TaskQueue, clock: FakeClock) -> None:
  await seed.season(round_phase="WRITING", round_start_time=START, end_time=START + timedelta(minutes=3))
  clock.advance(minutes=4)

  transitions = await scheduler.tick()

  assert transitions[0].finished
  assert await _only_pending(queue) == ("SEASON_END", {"seasonId": "season-1"})


@pytest.mark.anyio
async def test_losing_the_compare_and_set_enqueues_nothing(scheduler: RoundScheduler, seed: Seeder, queue: TaskQueue, clock: FakeClock, seasons_repo: PostgresSeasonsRepository) -> None:
  stale = await seed.season(round_phase="OUTLINE", round_start_time=START)
  clock.advance(minutes=10)
  assert await seasons_repo.advance_phase("season-1", from_round=1, from_phase="OUTLINE", to_round=1, to_phase="WRITING", now=clock.now()) == []

  assert await scheduler.advance(stale) is None
  assert await queue.list_pending() == []


@pytest.mark.anyio
async def test_failed_task_insert_leaves_the_phase_for_the_next_tick(
  scheduler: RoundScheduler, seed: Seeder, queue: TaskQueue, clock: FakeClock, seasons_repo: PostgresSeasonsRepository, monkeypatch: pytest.MonkeyPatch
) -> None:
  await seed.season(round_phase="OUTLINE", round_start_time=START)
  clock.advance(minutes=10)

  def _refuse(task: object, *, now: object) -> object:
    raise ConnectionError("task insert refused")

  with monkeypatch.context() as patch:
    patch.setattr(postgres_seasons_repo, "new_task_row", _refuse)
    assert await scheduler.tick() == []

  season = await seasons_repo.get_season("season-1")
  assert season is not None and season.round_phase == "OUTLINE"
  assert await queue.list_pending() == []

  (transition,) = await scheduler.tick()

  assert transition.to_phase == "WRITING"
  assert await _only_pending(queue) == ("WRITE_CHAPTER", {"seasonId": "season-1", "round": 1})
