"""Durable priority task queue with lease-based claiming and bounded retries."""

from __future__ import annotations

import logging
from datetime import timedelta
from typing import Any

from inkround.jobs.models import TASK_TYPES, NewTask, TaskRecord, TaskStats, validate_payload
from inkround.storage.tasks_repo import TasksRepository
from inkround.utils.clock import Clock

logger = logging.getLogger(__name__)

DEFAULT_LEASE = timedelta(minutes=5)


class UnknownTaskTypeError(ValueError):
  """Raised when a task type is not part of the engine's task vocabulary."""


class TaskQueue:
  """Front door for producers and the worker; all state lives in the repository."""

  def __init__(self, *, repo: TasksRepository, clock: Clock, default_max_attempts: int = 3) -> None:
    self._repo = repo
    self._clock = clock
    self._default_max_attempts = default_max_attempts

  async def enqueue(self, task_type: str, payload: dict[str, Any] | None = None, *, priority: int = 0, max_attempts: int | None = None) -> TaskRecord:
    """Insert a PENDING task."""
    tasks = await self.enqueue_many([self.prepare(task_type, payload, priority=priority, max_attempts=max_attempts)])
    return tasks[0]

  async def enqueue_many(self, tasks: list[NewTask]) -> list[TaskRecord]:
    """Insert several PENDING tasks in one transaction."""
    if not tasks:
      return []
    validated = [self.prepare(task.task_type, task.payload, priority=task.priority, max_attempts=task.max_attempts) for task in tasks]
    records = await self._repo.insert_tasks(validated, now=self._clock.now())
    for record in records:
      logger.info("Enqueued task id=%s type=%s priority=%s payload=%s", record.id, record.task_type, record.priority, record.payload)
    return records

  async def claim_next(self, lease: timedelta = DEFAULT_LEASE) -> TaskRecord | None:
    """Claim the highest-priority oldest PENDING task or an expired lease."""
    now = self._clock.now()
    expired = await self._repo.expire_exhausted_leases(lease=lease, now=now)
    if expired:
      logger.warning("Marked %d task(s) FAILED after their final lease expired", expired)
    task = await self._repo.claim_next(lease=lease, now=now)
    if task is not None:
      logger.info("Claimed task id=%s type=%s attempt=%d/%d", task.id, task.task_type, task.attempts, task.max_attempts)
    return task

  async def complete(self, task_id: int, *, attempt: int | None = None) -> TaskRecord | None:
    record = await self._repo.complete(task_id, now=self._clock.now(), attempt=attempt)
    if record is None:
      logger.warning("Ignored completion for task id=%s; it is no longer owned by this claim", task_id)
    return record

  async def fail(self, task_id: int, message: str, *, attempt: int | None = None) -> TaskRecord | None:
    record = await self._repo.fail(task_id, message[:2000], now=self._clock.now(), attempt=attempt)
    if record is None:
      logger.warning("Ignored failure for task id=%s; it is no longer owned by this claim", task_id)
    elif record.status == "FAILED":
      logger.error("Task id=%s type=%s failed permanently after %d attempts: %s", record.id, record.task_type, record.attempts, message)
    else:
      logger.warning("Task id=%s type=%s failed attempt %d/%d and will be retried: %s", record.id, record.task_type, record.attempts, record.max_attempts, message)
    return record

  async def heartbeat(self, task_id: int, *, attempt: int | None = None) -> bool:
    return await self._repo.heartbeat(task_id, now=self._clock.now(), attempt=attempt)

  async def record_step(self, task_id: int, step: str) -> None:
    await self._repo.record_step(task_id, step, now=self._clock.now())

  async def get_task(self, task_id: int) -> TaskRecord | None:
    return await self._repo.get_task(task_id)

  async def list_pending(self, limit: int = 50) -> list[TaskRecord]:
    return await self._repo.list_pending(limit=limit)

  async def oldest_processing(self) -> TaskRecord | None:
    return await self._repo.oldest_processing()

  async def get_stats(self) -> TaskStats:
    return await self._repo.get_stats()

  async def purge_finished(self, older_than: timedelta = timedelta(hours=24)) -> int:
    """Delete terminal tasks finished before the retention window."""
    removed = await self._repo.purge_finished(before=self._clock.now() - older_than)
    logger.info("Purged %d finished task(s) older than %s", removed, older_than)
    return removed

  def prepare(self, task_type: str, payload: dict[str, Any] | None = None, *, priority: int = 0, max_attempts: int | None = None) -> NewTask:
    """Validate a task without inserting it, for callers that write it in their own transaction."""
    if task_type not in TASK_TYPES:
      raise UnknownTaskTypeError(f"Unsupported task type: {task_type}")
    attempts = self._default_max_attempts if max_attempts is None else max_attempts
    if attempts < 1:
      raise ValueError("max_attempts must be at least 1.")
    return NewTask(task_type=task_type, payload=validate_payload(payload or {}), priority=priority, max_attempts=attempts)
