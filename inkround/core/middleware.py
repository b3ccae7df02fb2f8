import logging
import re
import time
import uuid

from starlette.datastructures import Headers, MutableHeaders
from starlette.types import ASGIApp, Message, Receive, Scope, Send

logger = logging.getLogger(__name__)

_REQUEST_ID = re.compile(r"^[A-Za-z0-9._-]{8,64}$")
_QUIET_PATHS = frozenset({"/health"})


def resolve_request_id(scope: Scope) -> str:
  """Reuse a well-formed inbound x-request-id (e.g. from a scheduler) or mint one."""
  inbound = Headers(scope=scope).get("x-request-id", "")
  return inbound if _REQUEST_ID.match(inbound) else uuid.uuid4().hex


class RequestLoggingMiddleware:
  """Tag every request with an id and log its status and latency."""

  def __init__(self, app: ASGIApp) -> None:
    self.app = app

  async def __call__(self, scope: Scope, receive: Receive, send: Send) -> None:
    if scope["type"] != "http":
      await self.app(scope, receive, send)
      return

    # Exception handlers read the id back from request.state.
    request_id = resolve_request_id(scope)
    scope.setdefault("state", {})["request_id"] = request_id
    path = scope.get("path", "")
    level = logging.DEBUG if path in _QUIET_PATHS else logging.INFO
    started = time.perf_counter()
    status_code = 0

    async def send_with_id(message: Message) -> None:
      nonlocal status_code
      if message["type"] == "http.response.start":
        status_code = message["status"]
        MutableHeaders(scope=message).setdefault("x-request-id", request_id)
      await send(message)

    try:
      await self.app(scope, receive, send_with_id)
    finally:
      elapsed_ms = (time.perf_counter() - started) * 1000
      logger.log(level, "%s %s -> %s in %.1fms request_id=%s", scope.get("method", "-"), path, status_code or 500, elapsed_ms, request_id)
