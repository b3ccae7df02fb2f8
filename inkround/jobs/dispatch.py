"""Dependency-injected task handler dispatch helpers."""

from __future__ import annotations

from typing import Protocol

from inkround.jobs.models import TaskRecord
from inkround.jobs.progress import TaskProgressTracker


class TaskHandler(Protocol):
  """Handler contract for one task type; implementations must tolerate re-execution."""

  async def handle(self, task: TaskRecord, progress: TaskProgressTracker) -> None:
    """Process one claimed task."""


class UnsupportedTaskError(LookupError):
  """Raised when no handler is registered for a task type."""


class TaskHandlerRegistry:
  """Registry mapping task types to handlers."""

  def __init__(self, handlers: dict[str, TaskHandler] | None = None) -> None:
    self._handlers: dict[str, TaskHandler] = dict(handlers or {})

  def register(self, task_type: str, handler: TaskHandler) -> None:
    self._handlers[task_type] = handler

  def resolve(self, task_type: str) -> TaskHandler:
    """Resolve the handler for a task type."""
    handler = self._handlers.get(task_type)
    if handler is None:
      raise UnsupportedTaskError(f"No handler registered for task type: {task_type}")
    return handler

  @property
  def task_types(self) -> list[str]:
    return sorted(self._handlers)


async def dispatch_task(task: TaskRecord, registry: TaskHandlerRegistry, progress: TaskProgressTracker) -> None:
  """Dispatch a claimed task to its registered handler."""
  handler = registry.resolve(task.task_type)
  await progress.step(f"dispatch:{task.task_type}")
  await handler.handle(task, progress)
