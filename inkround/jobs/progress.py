"""Coarse progress checkpoints recorded while a task handler runs."""

from __future__ import annotations

import logging
from datetime import datetime

from inkround.jobs.queue import TaskQueue
from inkround.utils.clock import Clock

logger = logging.getLogger(__name__)

MAX_TRACKED_STEPS = 100


class TaskProgressTracker:
  """Persist the latest step label for a task and keep a bounded local trail."""

  def __init__(self, *, task_id: int, queue: TaskQueue, clock: Clock) -> None:
    self._task_id = task_id
    self._queue = queue
    self._clock = clock
    self._steps: list[tuple[str, datetime]] = []

  async def step(self, label: str) -> None:
    """Record a checkpoint; persistence failures never interrupt the handler."""
    at = self._clock.now()
    self._steps.append((label, at))
    if len(self._steps) > MAX_TRACKED_STEPS:
      self._steps = self._steps[-MAX_TRACKED_STEPS:]
    logger.info("Task id=%s step=%s", self._task_id, label)
    try:
      await self._queue.record_step(self._task_id, label)
    except Exception:  # noqa: BLE001
      logger.warning("Failed to persist checkpoint task_id=%s step=%s", self._task_id, label, exc_info=True)

  @property
  def steps(self) -> list[str]:
    """Return the recorded step labels in order."""
    return [label for label, _ in self._steps]

  @property
  def last_step(self) -> str | None:
    return self._steps[-1][0] if self._steps else None
