"""Postgres-backed repository for seasons using SQLAlchemy."""

from __future__ import annotations

from collections.abc import Sequence
from datetime import datetime

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from inkround.jobs.models import NewTask, TaskRecord
from inkround.schema.sql import Book, Season
from inkround.storage.postgres_tasks_repo import new_task_row, task_to_record
from inkround.storage.seasons_repo import RoundPhase, SeasonRecord, SeasonsRepository
from inkround.utils.clock import as_utc


class PostgresSeasonsRepository(SeasonsRepository):
  """Persist seasons and their round clock."""

  def __init__(self, session_factory: async_sessionmaker[AsyncSession]) -> None:
    self._session_factory = session_factory

  async def create_season(self, record: SeasonRecord) -> None:
    async with self._session_factory() as session:
      session.add(
        Season(
          id=record.id,
          theme_keyword=record.theme_keyword,
          constraints=list(record.constraints),
          zone_styles=list(record.zone_styles),
          current_round=record.current_round,
          round_phase=record.round_phase,
          round_start_time=record.round_start_time,
          reading_minutes=record.reading_minutes,
          outline_minutes=record.outline_minutes,
          writing_minutes=record.writing_minutes,
          max_rounds=record.max_rounds,
          status=record.status,
          start_time=record.start_time,
          end_time=record.end_time,
        )
      )
      await session.commit()

  async def get_season(self, season_id: str) -> SeasonRecord | None:
    async with self._session_factory() as session:
      row = await session.get(Season, season_id)
      if row is None:
        return None
      return self._model_to_record(row)

  async def list_active(self) -> list[SeasonRecord]:
    async with self._session_factory() as session:
      result = await session.execute(select(Season).where(Season.status == "ACTIVE").order_by(Season.start_time.asc()))
      return [self._model_to_record(row) for row in result.scalars().all()]

  async def advance_phase(self, season_id: str, *, from_round: int, from_phase: RoundPhase, to_round: int, to_phase: RoundPhase, now: datetime, tasks: Sequence[NewTask] = ()) -> list[TaskRecord] | None:
    stmt = (
      update(Season)
      .where(Season.id == season_id, Season.status == "ACTIVE", Season.current_round == from_round, Season.round_phase == from_phase)
      .values(current_round=to_round, round_phase=to_phase, round_start_time=now)
      .execution_options(synchronize_session=False)
    )
    async with self._session_factory() as session:
      result = await session.execute(stmt)
      if not result.rowcount:
        await session.rollback()
        return None
      return await self._commit_with_tasks(session, tasks, now=now)

  async def finish_season(self, season_id: str, *, now: datetime, tasks: Sequence[NewTask] = ()) -> list[TaskRecord] | None:
    async with self._session_factory() as session:
      result = await session.execute(update(Season).where(Season.id == season_id, Season.status == "ACTIVE").values(status="FINISHED", round_phase="NONE", round_start_time=now).execution_options(synchronize_session=False))
      if not result.rowcount:
        await session.rollback()
        return None
      await session.execute(update(Book).where(Book.season_id == season_id, Book.status == "ACTIVE").values(status="COMPLETED").execution_options(synchronize_session=False))
      return await self._commit_with_tasks(session, tasks, now=now)

  @staticmethod
  async def _commit_with_tasks(session: AsyncSession, tasks: Sequence[NewTask], *, now: datetime) -> list[TaskRecord]:
    # The phase change is only durable together with the work it schedules.
    rows = [new_task_row(task, now=now) for task in tasks]
    session.add_all(rows)
    await session.commit()
    return [task_to_record(row) for row in rows]

  @staticmethod
  def _model_to_record(row: Season) -> SeasonRecord:
    return SeasonRecord(
      id=row.id,
      theme_keyword=row.theme_keyword,
      current_round=row.current_round,
      round_phase=row.round_phase,  # type: ignore[arg-type]
      round_start_time=as_utc(row.round_start_time),
      reading_minutes=row.reading_minutes,
      outline_minutes=row.outline_minutes,
      writing_minutes=row.writing_minutes,
      max_rounds=row.max_rounds,
      status=row.status,  # type: ignore[arg-type]
      start_time=as_utc(row.start_time),  # type: ignore[arg-type]
      end_time=as_utc(row.end_time),
      constraints=list(row.constraints or []),
      zone_styles=list(row.zone_styles or []),
    )
