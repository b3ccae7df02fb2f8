"""Storage interfaces for competition seasons."""

from __future__ import annotations

from collections.abc import Sequence
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Literal, Protocol

from inkround.jobs.models import NewTask, TaskRecord

RoundPhase = Literal["NONE", "OUTLINE", "WRITING", "READING"]
SeasonStatus = Literal["ACTIVE", "FINISHED"]


@dataclass(frozen=True)
class SeasonRecord:
  """A season and its round clock."""

  id: str
  theme_keyword: str
  current_round: int
  round_phase: RoundPhase
  round_start_time: datetime | None
  reading_minutes: int
  outline_minutes: int
  writing_minutes: int
  max_rounds: int
  status: SeasonStatus
  start_time: datetime
  end_time: datetime | None = None
  constraints: list[str] = field(default_factory=list)
  zone_styles: list[str] = field(default_factory=list)

  def phase_duration(self, phase: RoundPhase) -> timedelta:
    minutes = {"READING": self.reading_minutes, "OUTLINE": self.outline_minutes, "WRITING": self.writing_minutes}.get(phase, 0)
    return timedelta(minutes=minutes)


class SeasonsRepository(Protocol):
  """Repository contract for season state."""

  async def create_season(self, record: SeasonRecord) -> None:
    """Persist a new season."""

  async def get_season(self, season_id: str) -> SeasonRecord | None:
    """Fetch a season by identifier."""

  async def list_active(self) -> list[SeasonRecord]:
    """List ACTIVE seasons."""

  async def advance_phase(self, season_id: str, *, from_round: int, from_phase: RoundPhase, to_round: int, to_phase: RoundPhase, now: datetime, tasks: Sequence[NewTask] = ()) -> list[TaskRecord] | None:
    """Compare-and-set the round clock and insert `tasks` in the same transaction; None when another writer moved it first."""

  async def finish_season(self, season_id: str, *, now: datetime, tasks: Sequence[NewTask] = ()) -> list[TaskRecord] | None:
    """Mark the season FINISHED, complete its active books and insert `tasks` in one transaction; None when already finished."""
