"""Contracts for outbound engine events."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Literal, Protocol

EventTopic = Literal["chapter_published", "outline_updated", "new_comment", "heat_update", "season_phase", "season_finished"]


@dataclass(frozen=True)
class NotificationEvent:
  """One event emitted after a persist step."""

  topic: EventTopic
  payload: dict[str, Any]
  emitted_at: datetime
  metadata: dict[str, str] = field(default_factory=dict)


class NotificationError(Exception):
  """Base class for notification delivery failures."""


class NotificationSink(Protocol):
  """Fire-and-forget delivery contract; emit never blocks on delivery."""

  def emit(self, topic: EventTopic, payload: dict[str, Any]) -> None:
    """Hand an event to the delivery collaborator."""

  async def aclose(self) -> None:
    """Flush pending deliveries and release resources."""
