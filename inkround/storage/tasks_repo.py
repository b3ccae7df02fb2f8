"""Storage interfaces for the durable task queue."""

from __future__ import annotations

from datetime import datetime, timedelta
from typing import Protocol

from inkround.jobs.models import NewTask, TaskRecord, TaskStats


class TasksRepository(Protocol):
  """Repository contract for task persistence and atomic state transitions."""

  async def insert_tasks(self, tasks: list[NewTask], *, now: datetime) -> list[TaskRecord]:
    """Persist new PENDING tasks in one transaction."""

  async def claim_next(self, *, lease: timedelta, now: datetime) -> TaskRecord | None:
    """Atomically claim the next eligible task, or return None."""

  async def expire_exhausted_leases(self, *, lease: timedelta, now: datetime) -> int:
    """Fail PROCESSING tasks whose lease expired on their final attempt."""

  async def complete(self, task_id: int, *, now: datetime, attempt: int | None = None) -> TaskRecord | None:
    """Mark a PROCESSING task COMPLETED."""

  async def fail(self, task_id: int, message: str, *, now: datetime, attempt: int | None = None) -> TaskRecord | None:
    """Return a PROCESSING task to PENDING or mark it FAILED when attempts are exhausted."""

  async def heartbeat(self, task_id: int, *, now: datetime, attempt: int | None = None) -> bool:
    """Renew the lease of a PROCESSING task."""

  async def record_step(self, task_id: int, step: str, *, now: datetime) -> None:
    """Persist the latest progress checkpoint label."""

  async def get_task(self, task_id: int) -> TaskRecord | None:
    """Fetch one task."""

  async def list_pending(self, *, limit: int) -> list[TaskRecord]:
    """List PENDING tasks in claim order."""

  async def oldest_processing(self) -> TaskRecord | None:
    """Return the PROCESSING task with the oldest sign of life."""

  async def get_stats(self) -> TaskStats:
    """Count tasks per status."""

  async def purge_finished(self, *, before: datetime) -> int:
    """Delete terminal tasks completed before the cutoff."""
