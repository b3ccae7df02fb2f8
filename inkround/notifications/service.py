"""Notification sinks used by persist stages and the scheduler."""

from __future__ import annotations

import asyncio
import logging
from typing import Any

import httpx

from inkround.notifications.contracts import EventTopic, NotificationError, NotificationEvent
from inkround.utils.clock import Clock

logger = logging.getLogger(__name__)


class LoggingNotificationSink:
  """Record events in the application log only."""

  def __init__(self, clock: Clock) -> None:
    self._clock = clock

  def emit(self, topic: EventTopic, payload: dict[str, Any]) -> None:
    logger.info("Event topic=%s payload=%s", topic, payload)

  async def aclose(self) -> None:
    return None


class WebhookNotificationSink:
  """POST each event to a webhook from a background task."""

  def __init__(self, *, url: str, clock: Clock, timeout_seconds: float = 5.0, client: httpx.AsyncClient | None = None) -> None:
    self._url = url
    self._clock = clock
    self._client = client or httpx.AsyncClient(timeout=timeout_seconds)
    self._pending: set[asyncio.Task[None]] = set()

  def emit(self, topic: EventTopic, payload: dict[str, Any]) -> None:
    event = NotificationEvent(topic=topic, payload=payload, emitted_at=self._clock.now())
    task = asyncio.create_task(self._deliver(event))
    # Keep a reference until done so the task is not garbage collected mid-flight.
    self._pending.add(task)
    task.add_done_callback(self._pending.discard)

  async def _deliver(self, event: NotificationEvent) -> None:
    body = {"topic": event.topic, "payload": event.payload, "emittedAt": event.emitted_at.isoformat()}
    try:
      response = await self._client.post(self._url, json=body)
      if response.status_code >= 400:
        raise NotificationError(f"Webhook returned {response.status_code}")
    except (httpx.HTTPError, NotificationError) as exc:
      logger.warning("Event delivery failed topic=%s error=%s", event.topic, exc)

  async def aclose(self) -> None:
    if self._pending:
      await asyncio.gather(*self._pending, return_exceptions=True)
    await self._client.aclose()
