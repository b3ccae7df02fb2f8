from __future__ import annotations

import logging
from datetime import datetime, timedelta
from typing import Annotated, Any

from fastapi import APIRouter, Depends, Query, status
from pydantic import BaseModel, Field

from inkround.api.deps import get_engine, require_task_secret
from inkround.core.exceptions import EntityNotFoundError
from inkround.engine import Engine
from inkround.jobs.models import TaskRecord

router = APIRouter(dependencies=[Depends(require_task_secret)])
logger = logging.getLogger(__name__)

EngineDep = Annotated[Engine, Depends(get_engine)]


class TaskResponse(BaseModel):
  id: int
  task_type: str
  payload: dict[str, Any]
  status: str
  priority: int
  attempts: int
  max_attempts: int
  error_message: str | None = None
  step: str | None = None
  created_at: datetime
  started_at: datetime | None = None
  completed_at: datetime | None = None

  @classmethod
  def from_record(cls, record: TaskRecord) -> TaskResponse:
    return cls(
      id=record.id,
      task_type=record.task_type,
      payload=record.payload,
      status=record.status,
      priority=record.priority,
      attempts=record.attempts,
      max_attempts=record.max_attempts,
      error_message=record.error_message,
      step=record.step,
      created_at=record.created_at,
      started_at=record.started_at,
      completed_at=record.completed_at,
    )


class PurgeRequest(BaseModel):
  older_than_hours: float = Field(default=24, gt=0)


class CatchUpRequest(BaseModel):
  round: int | None = Field(default=None, ge=1)
  book_ids: list[str] | None = None


@router.get("/tasks/stats")
async def task_stats(engine: EngineDep) -> dict[str, int]:
  """Return queue counts per status."""
  stats = await engine.queue.get_stats()
  return stats.as_dict()


@router.get("/tasks/pending")
async def pending_tasks(engine: EngineDep, limit: int = Query(default=50, ge=1, le=500)) -> list[TaskResponse]:
  return [TaskResponse.from_record(record) for record in await engine.queue.list_pending(limit)]


@router.post("/tasks/trigger")
async def trigger_worker_cycle(engine: EngineDep) -> dict[str, Any]:
  """Run exactly one worker cycle inline, for operational testing."""
  result = await engine.worker.run_once()
  logger.info("Manual worker cycle outcome=%s task_id=%s", result.outcome, result.task_id)
  return {"outcome": result.outcome, "taskId": result.task_id, "taskType": result.task_type, "error": result.error}


@router.post("/tasks/purge")
async def purge_tasks(engine: EngineDep, request: PurgeRequest | None = None) -> dict[str, int]:
  older_than = timedelta(hours=(request or PurgeRequest()).older_than_hours)
  return {"removed": await engine.queue.purge_finished(older_than)}


@router.post("/scheduler/tick")
async def scheduler_tick(engine: EngineDep) -> dict[str, Any]:
  """Run one scheduler tick inline."""
  transitions = await engine.scheduler.tick()
  return {"transitions": [transition.as_dict() for transition in transitions]}


@router.post("/seasons/{season_id}/catch-up", status_code=status.HTTP_202_ACCEPTED)
async def season_catch_up(season_id: str, engine: EngineDep, request: CatchUpRequest | None = None) -> TaskResponse:
  """Queue a reconciliation of the season's lagging books."""
  request = request or CatchUpRequest()
  season = await engine.seasons.get_season(season_id)
  if season is None:
    raise EntityNotFoundError(f"Season {season_id} not found")
  payload: dict[str, Any] = {"seasonId": season_id, "round": request.round or season.current_round}
  if request.book_ids:
    payload["bookIds"] = request.book_ids
  record = await engine.queue.enqueue("CATCH_UP", payload, priority=1)
  return TaskResponse.from_record(record)


@router.post("/books/{book_id}/catch-up", status_code=status.HTTP_202_ACCEPTED)
async def book_catch_up(book_id: str, engine: EngineDep, request: CatchUpRequest | None = None) -> TaskResponse:
  """Queue a reconciliation of one book."""
  request = request or CatchUpRequest()
  book = await engine.books.get_book(book_id)
  if book is None:
    raise EntityNotFoundError(f"Book {book_id} not found")
  payload: dict[str, Any] = {"seasonId": book.season_id, "bookId": book_id}
  if request.round is not None:
    payload["round"] = request.round
  record = await engine.queue.enqueue("CATCH_UP", payload, priority=1)
  return TaskResponse.from_record(record)
