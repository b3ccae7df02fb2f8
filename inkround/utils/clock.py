"""Clock sources injected into time-dependent components."""

from __future__ import annotations

from datetime import UTC, datetime
from typing import Protocol


class Clock(Protocol):
  """Source of the current UTC time."""

  def now(self) -> datetime:
    """Return the current timezone-aware UTC time."""


class SystemClock:
  """Wall clock backed by the host time."""

  def now(self) -> datetime:
    return datetime.now(UTC)


def as_utc(value: datetime | None) -> datetime | None:
  """Attach UTC to naive datetimes read back from storage."""
  if value is None:
    return None
  if value.tzinfo is None:
    return value.replace(tzinfo=UTC)
  return value.astimezone(UTC)
