"""Domain models for durable engine tasks."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Literal

TaskStatus = Literal["PENDING", "PROCESSING", "COMPLETED", "FAILED"]
TaskType = Literal["OUTLINE", "NEXT_OUTLINE", "WRITE_CHAPTER", "CATCH_UP", "READER_DISPATCH", "READER_AGENT", "SEASON_END"]

TASK_TYPES: frozenset[str] = frozenset({"OUTLINE", "NEXT_OUTLINE", "WRITE_CHAPTER", "CATCH_UP", "READER_DISPATCH", "READER_AGENT", "SEASON_END"})
TERMINAL_STATUSES: frozenset[str] = frozenset({"COMPLETED", "FAILED"})

# Stable payload contract shared by every producer and handler.
PAYLOAD_KEYS: frozenset[str] = frozenset({"seasonId", "bookId", "bookIds", "chapterId", "round"})


class InvalidTaskPayloadError(ValueError):
  """Raised when a task payload does not follow the shared contract."""


def validate_payload(payload: dict[str, Any]) -> dict[str, Any]:
  """Return a normalized copy of a task payload or raise on contract violations."""
  unknown = set(payload) - PAYLOAD_KEYS
  if unknown:
    raise InvalidTaskPayloadError(f"Unsupported payload keys: {', '.join(sorted(unknown))}")

  normalized: dict[str, Any] = {}
  for key in ("seasonId", "bookId", "chapterId"):
    value = payload.get(key)
    if value is None:
      continue
    if not isinstance(value, str) or not value:
      raise InvalidTaskPayloadError(f"{key} must be a non-empty string.")
    normalized[key] = value

  book_ids = payload.get("bookIds")
  if book_ids is not None:
    if not isinstance(book_ids, list) or not all(isinstance(item, str) and item for item in book_ids):
      raise InvalidTaskPayloadError("bookIds must be a list of non-empty strings.")
    normalized["bookIds"] = list(dict.fromkeys(book_ids))

  round_number = payload.get("round")
  if round_number is not None:
    if isinstance(round_number, bool) or not isinstance(round_number, int) or round_number < 1:
      raise InvalidTaskPayloadError("round must be a positive integer.")
    normalized["round"] = round_number

  return normalized


@dataclass(frozen=True)
class TaskRecord:
  """Represents a queued unit of engine work."""

  id: int
  task_type: str
  payload: dict[str, Any]
  status: TaskStatus
  priority: int
  attempts: int
  max_attempts: int
  created_at: datetime
  updated_at: datetime
  error_message: str | None = None
  step: str | None = None
  step_at: datetime | None = None
  heartbeat_at: datetime | None = None
  started_at: datetime | None = None
  completed_at: datetime | None = None

  @property
  def is_terminal(self) -> bool:
    return self.status in TERMINAL_STATUSES

  @property
  def last_seen_at(self) -> datetime | None:
    """Most recent sign of life from the worker that owns the lease."""
    return self.heartbeat_at or self.started_at


@dataclass(frozen=True)
class TaskStats:
  """Counts of tasks per status for the operational surface."""

  pending: int = 0
  processing: int = 0
  completed: int = 0
  failed: int = 0

  def as_dict(self) -> dict[str, int]:
    return {"pending": self.pending, "processing": self.processing, "completed": self.completed, "failed": self.failed}


@dataclass(frozen=True)
class NewTask:
  """Task submission used for batch enqueues."""

  task_type: str
  payload: dict[str, Any] = field(default_factory=dict)
  priority: int = 0
  max_attempts: int = 3
