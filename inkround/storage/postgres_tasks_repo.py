"""Postgres-backed repository for the durable task queue using SQLAlchemy."""

from __future__ import annotations

from datetime import datetime, timedelta

from sqlalchemy import and_, case, delete, func, or_, select, update
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker
from sqlalchemy.orm import aliased

from inkround.jobs.models import NewTask, TaskRecord, TaskStats
from inkround.schema.sql import Task
from inkround.storage.tasks_repo import TasksRepository
from inkround.utils.clock import as_utc


def _claimable(model: type[Task], cutoff: datetime):  # type: ignore[no-untyped-def]
  """Build the eligibility predicate shared by candidate selection and the guarded update."""
  last_seen = func.coalesce(model.heartbeat_at, model.started_at)
  expired_lease = and_(model.status == "PROCESSING", last_seen < cutoff)
  return and_(or_(model.status == "PENDING", expired_lease), model.attempts < model.max_attempts)


def new_task_row(task: NewTask, *, now: datetime) -> Task:
  """Build a PENDING row; callers add it to their own session."""
  return Task(task_type=task.task_type, payload=task.payload, status="PENDING", priority=task.priority, attempts=0, max_attempts=task.max_attempts, created_at=now, updated_at=now)


def task_to_record(row: Task) -> TaskRecord:
  return TaskRecord(
    id=row.id,
    task_type=row.task_type,
    payload=dict(row.payload or {}),
    status=row.status,  # type: ignore[arg-type]
    priority=row.priority,
    attempts=row.attempts,
    max_attempts=row.max_attempts,
    created_at=as_utc(row.created_at),  # type: ignore[arg-type]
    updated_at=as_utc(row.updated_at),  # type: ignore[arg-type]
    error_message=row.error_message,
    step=row.step,
    step_at=as_utc(row.step_at),
    heartbeat_at=as_utc(row.heartbeat_at),
    started_at=as_utc(row.started_at),
    completed_at=as_utc(row.completed_at),
  )


class PostgresTasksRepository(TasksRepository):
  """Persist tasks to Postgres with short atomic claim/complete/fail transitions."""

  def __init__(self, session_factory: async_sessionmaker[AsyncSession]) -> None:
    self._session_factory = session_factory

  async def insert_tasks(self, tasks: list[NewTask], *, now: datetime) -> list[TaskRecord]:
    async with self._session_factory() as session:
      rows = [new_task_row(task, now=now) for task in tasks]
      session.add_all(rows)
      await session.commit()
      return [task_to_record(row) for row in rows]

  async def claim_next(self, *, lease: timedelta, now: datetime) -> TaskRecord | None:
    cutoff = now - lease
    # Alias the candidate scan so it is not correlated with the outer UPDATE.
    candidate = aliased(Task, name="candidate")
    candidate_id = select(candidate.id).where(_claimable(candidate, cutoff)).order_by(candidate.priority.desc(), candidate.created_at.asc(), candidate.id.asc()).limit(1).with_for_update(skip_locked=True).scalar_subquery()
    # Re-check eligibility on the target row so a concurrent claimer that already won leaves nothing to update.
    stmt = (
      update(Task)
      .where(Task.id == candidate_id, _claimable(Task, cutoff))
      .values(status="PROCESSING", started_at=now, heartbeat_at=None, attempts=Task.attempts + 1, updated_at=now)
      .returning(Task)
      .execution_options(synchronize_session=False)
    )
    async with self._session_factory() as session:
      result = await session.execute(stmt)
      row = result.scalars().first()
      await session.commit()
      if row is None:
        return None
      return task_to_record(row)

  async def expire_exhausted_leases(self, *, lease: timedelta, now: datetime) -> int:
    cutoff = now - lease
    last_seen = func.coalesce(Task.heartbeat_at, Task.started_at)
    stmt = (
      update(Task)
      .where(Task.status == "PROCESSING", last_seen < cutoff, Task.attempts >= Task.max_attempts)
      .values(status="FAILED", error_message="Lease expired after final attempt", completed_at=now, updated_at=now)
      .execution_options(synchronize_session=False)
    )
    async with self._session_factory() as session:
      result = await session.execute(stmt)
      await session.commit()
      return int(result.rowcount or 0)

  async def complete(self, task_id: int, *, now: datetime, attempt: int | None = None) -> TaskRecord | None:
    stmt = update(Task).where(*self._owned(task_id, attempt)).values(status="COMPLETED", completed_at=now, heartbeat_at=None, updated_at=now).returning(Task).execution_options(synchronize_session=False)
    return await self._transition(stmt)

  async def fail(self, task_id: int, message: str, *, now: datetime, attempt: int | None = None) -> TaskRecord | None:
    exhausted = Task.attempts >= Task.max_attempts
    stmt = (
      update(Task)
      .where(*self._owned(task_id, attempt))
      .values(
        status=case((exhausted, "FAILED"), else_="PENDING"),
        started_at=case((exhausted, Task.started_at), else_=None),
        completed_at=case((exhausted, now), else_=None),
        heartbeat_at=None,
        error_message=message,
        updated_at=now,
      )
      .returning(Task)
      .execution_options(synchronize_session=False)
    )
    return await self._transition(stmt)

  async def heartbeat(self, task_id: int, *, now: datetime, attempt: int | None = None) -> bool:
    stmt = update(Task).where(*self._owned(task_id, attempt)).values(heartbeat_at=now, updated_at=now).execution_options(synchronize_session=False)
    async with self._session_factory() as session:
      result = await session.execute(stmt)
      await session.commit()
      return bool(result.rowcount)

  async def record_step(self, task_id: int, step: str, *, now: datetime) -> None:
    stmt = update(Task).where(Task.id == task_id, Task.status == "PROCESSING").values(step=step, step_at=now, updated_at=now).execution_options(synchronize_session=False)
    async with self._session_factory() as session:
      await session.execute(stmt)
      await session.commit()

  async def get_task(self, task_id: int) -> TaskRecord | None:
    async with self._session_factory() as session:
      row = await session.get(Task, task_id)
      if row is None:
        return None
      return task_to_record(row)

  async def list_pending(self, *, limit: int) -> list[TaskRecord]:
    stmt = select(Task).where(Task.status == "PENDING").order_by(Task.priority.desc(), Task.created_at.asc(), Task.id.asc()).limit(limit)
    async with self._session_factory() as session:
      result = await session.execute(stmt)
      return [task_to_record(row) for row in result.scalars().all()]

  async def oldest_processing(self) -> TaskRecord | None:
    last_seen = func.coalesce(Task.heartbeat_at, Task.started_at)
    stmt = select(Task).where(Task.status == "PROCESSING").order_by(last_seen.asc(), Task.id.asc()).limit(1)
    async with self._session_factory() as session:
      result = await session.execute(stmt)
      row = result.scalars().first()
      if row is None:
        return None
      return task_to_record(row)

  async def get_stats(self) -> TaskStats:
    stmt = select(Task.status, func.count(Task.id)).group_by(Task.status)
    async with self._session_factory() as session:
      result = await session.execute(stmt)
      counts = {status: int(count) for status, count in result.all()}
    return TaskStats(pending=counts.get("PENDING", 0), processing=counts.get("PROCESSING", 0), completed=counts.get("COMPLETED", 0), failed=counts.get("FAILED", 0))

  async def purge_finished(self, *, before: datetime) -> int:
    stmt = delete(Task).where(Task.status.in_(("COMPLETED", "FAILED")), Task.completed_at < before).execution_options(synchronize_session=False)
    async with self._session_factory() as session:
      result = await session.execute(stmt)
      await session.commit()
      return int(result.rowcount or 0)

  @staticmethod
  def _owned(task_id: int, attempt: int | None) -> list:  # type: ignore[type-arg]
    """Guard transitions so terminal rows and superseded claims are never touched."""
    clauses = [Task.id == task_id, Task.status == "PROCESSING"]
    if attempt is not None:
      clauses.append(Task.attempts == attempt)
    return clauses

  async def _transition(self, stmt) -> TaskRecord | None:  # type: ignore[no-untyped-def]
    async with self._session_factory() as session:
      result = await session.execute(stmt)
      row = result.scalars().first()
      await session.commit()
      if row is None:
        return None
      return task_to_record(row)
