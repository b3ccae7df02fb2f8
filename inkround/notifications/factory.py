"""Factory for the configured notification sink."""

from __future__ import annotations

from inkround.config import Settings
from inkround.notifications.contracts import NotificationSink
from inkround.notifications.service import LoggingNotificationSink, WebhookNotificationSink
from inkround.utils.clock import Clock


def build_notification_sink(settings: Settings, clock: Clock) -> NotificationSink:
  """Use the webhook sink when a URL is configured, otherwise log events."""
  if settings.notification_webhook_url:
    return WebhookNotificationSink(url=settings.notification_webhook_url, clock=clock)
  return LoggingNotificationSink(clock)
