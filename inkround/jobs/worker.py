"""Single-flight worker loop that drains the durable task queue."""

from __future__ import annotations

import asyncio
import contextlib
import logging
from dataclasses import dataclass
from datetime import timedelta
from typing import Literal

from inkround.jobs.dispatch import TaskHandlerRegistry, dispatch_task
from inkround.jobs.lock import WorkerLock
from inkround.jobs.models import TaskRecord
from inkround.jobs.progress import TaskProgressTracker
from inkround.jobs.queue import TaskQueue
from inkround.utils.clock import Clock

logger = logging.getLogger(__name__)

CycleOutcome = Literal["locked_out", "idle", "completed", "failed", "stale_recovered"]


@dataclass(frozen=True)
class WorkerCycleResult:
  """Outcome of one worker cycle, surfaced by the manual trigger endpoint."""

  outcome: CycleOutcome
  task_id: int | None = None
  task_type: str | None = None
  error: str | None = None


class TaskWorker:
  """Claim, dispatch and settle tasks while holding the worker lock."""

  def __init__(
    self,
    *,
    queue: TaskQueue,
    registry: TaskHandlerRegistry,
    lock: WorkerLock,
    clock: Clock,
    lease: timedelta,
    stale_after: timedelta,
    poll_seconds: float,
    terminate_stale_holder: bool = False,
  ) -> None:
    self._queue = queue
    self._registry = registry
    self._lock = lock
    self._clock = clock
    self._lease = lease
    self._stale_after = stale_after
    self._poll_seconds = poll_seconds
    self._terminate_stale_holder = terminate_stale_holder

  async def run_once(self) -> WorkerCycleResult:
    """Run one cycle: acquire the lock, claim at most one task and settle it."""
    async with self._lock.try_acquire() as acquired:
      if not acquired:
        return await self._inspect_stale()

      task = await self._queue.claim_next(self._lease)
      if task is None:
        return WorkerCycleResult(outcome="idle")

      return await self._process(task)

  async def run_forever(self, stop: asyncio.Event) -> None:
    """Poll the queue until stopped, draining back-to-back while work is available."""
    logger.info("Task worker started poll_seconds=%s lock=%s", self._poll_seconds, self._lock.name)
    while not stop.is_set():
      try:
        result = await self.run_once()
      except Exception:  # noqa: BLE001
        # A broken cycle must not kill the loop; the next poll starts fresh.
        logger.exception("Worker cycle crashed")
        result = WorkerCycleResult(outcome="idle")

      if result.outcome in {"completed", "failed"}:
        continue

      with contextlib.suppress(TimeoutError):
        await asyncio.wait_for(stop.wait(), timeout=self._poll_seconds)

    logger.info("Task worker stopped")

  async def _process(self, task: TaskRecord) -> WorkerCycleResult:
    progress = TaskProgressTracker(task_id=task.id, queue=self._queue, clock=self._clock)
    heartbeat = asyncio.create_task(self._keep_lease(task))
    try:
      await dispatch_task(task, self._registry, progress)
    except Exception as exc:  # noqa: BLE001
      message = f"{type(exc).__name__}: {exc}"
      logger.error("Task id=%s type=%s failed at step=%s", task.id, task.task_type, progress.last_step, exc_info=True)
      await self._queue.fail(task.id, message, attempt=task.attempts)
      return WorkerCycleResult(outcome="failed", task_id=task.id, task_type=task.task_type, error=message)
    finally:
      heartbeat.cancel()
      with contextlib.suppress(asyncio.CancelledError):
        await heartbeat

    await progress.step("complete")
    await self._queue.complete(task.id, attempt=task.attempts)
    return WorkerCycleResult(outcome="completed", task_id=task.id, task_type=task.task_type)

  async def _keep_lease(self, task: TaskRecord) -> None:
    """Renew the lease periodically so a slow handler is not mistaken for a dead one."""
    interval = max(self._lease.total_seconds() / 3, 1.0)
    while True:
      await asyncio.sleep(interval)
      try:
        renewed = await self._queue.heartbeat(task.id, attempt=task.attempts)
      except Exception:  # noqa: BLE001
        logger.warning("Heartbeat failed for task id=%s", task.id, exc_info=True)
        continue
      if not renewed:
        logger.warning("Task id=%s lost its lease; another claim owns it now", task.id)
        return

  async def _inspect_stale(self) -> WorkerCycleResult:
    """Force-fail the PROCESSING task when its owner has gone quiet past the threshold."""
    task = await self._queue.oldest_processing()
    if task is None or task.last_seen_at is None:
      return WorkerCycleResult(outcome="locked_out")

    age = self._clock.now() - task.last_seen_at
    if age <= self._stale_after:
      logger.debug("Worker lock busy; task id=%s last seen %.0fs ago", task.id, age.total_seconds())
      return WorkerCycleResult(outcome="locked_out", task_id=task.id, task_type=task.task_type)

    message = f"Stale task force-failed: no progress for {int(age.total_seconds())}s (last step={task.step})"
    logger.warning("Task id=%s type=%s is stale; %s", task.id, task.task_type, message)
    await self._queue.fail(task.id, message, attempt=task.attempts)

    if self._terminate_stale_holder:
      try:
        await self._lock.terminate_holder()
      except Exception:  # noqa: BLE001
        logger.warning("Could not terminate the stale lock holder for lock=%s", self._lock.name, exc_info=True)

    return WorkerCycleResult(outcome="stale_recovered", task_id=task.id, task_type=task.task_type, error=message)
