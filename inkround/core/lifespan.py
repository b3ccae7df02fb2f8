import asyncio
import logging
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from urllib.parse import urlparse

from fastapi import FastAPI

from inkround.ai.client import build_generative_client
from inkround.core.database import create_db_engine, create_session_factory
from inkround.core.logging import initialize_logging
from inkround.engine import build_engine
from inkround.jobs.lock import PostgresAdvisoryLock
from inkround.notifications.factory import build_notification_sink
from inkround.utils.clock import SystemClock


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
  """Build the engine on startup and run the worker and scheduler loops when enabled."""
  from inkround.config import get_database_settings, get_settings

  settings = get_settings()
  logger = logging.getLogger("inkround.core.lifespan")
  initialize_logging(settings)
  logger.info("Starting engine environment=%s dsn=%s", settings.environment, _redact_dsn(settings.pg_dsn))

  db_engine = create_db_engine(get_database_settings())
  session_factory = create_session_factory(db_engine)
  clock = SystemClock()
  sink = build_notification_sink(settings, clock)
  lock = PostgresAdvisoryLock(db_engine, key=settings.worker_lock_key)
  engine = build_engine(settings, session_factory, client=build_generative_client(settings), sink=sink, clock=clock, lock=lock)
  app.state.engine = engine

  stop = asyncio.Event()
  loops: list[asyncio.Task[None]] = []
  if settings.run_background_loops:
    loops.append(asyncio.create_task(engine.worker.run_forever(stop), name="inkround-worker"))
    loops.append(asyncio.create_task(engine.scheduler.run_forever(stop), name="inkround-scheduler"))
    logger.info("Background worker and scheduler loops started.")
  else:
    logger.info("Background loops disabled; use the internal endpoints to drive the engine.")

  try:
    yield
  finally:
    stop.set()
    if loops:
      results = await asyncio.gather(*loops, return_exceptions=True)
      for task, result in zip(loops, results, strict=True):
        if isinstance(result, BaseException):
          logger.error("Loop %s exited with an error: %s", task.get_name(), result)
    await sink.aclose()
    await db_engine.dispose()
    app.state.engine = None
    logger.info("Engine shut down.")


def _redact_dsn(raw: str | None) -> str:
  """Redact credentials from a DSN while keeping host/db visible."""
  if not raw:
    return "<unset>"
  parsed = urlparse(raw)
  if not parsed.scheme:
    return "<invalid>"
  user = parsed.username or ""
  host = parsed.hostname or ""
  port = f":{parsed.port}" if parsed.port else ""
  netloc = f"{user}@{host}{port}" if user else f"{host}{port}"
  database = parsed.path.lstrip("/")
  path = f"/{database}" if database else ""
  return f"{parsed.scheme}://{netloc}{path}"
