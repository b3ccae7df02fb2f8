"""Named mutexes that keep a single worker draining the task queue."""

from __future__ import annotations

import asyncio
import logging
from collections.abc import AsyncIterator
from contextlib import AbstractAsyncContextManager, asynccontextmanager
from typing import Protocol

from sqlalchemy import text
from sqlalchemy.ext.asyncio import AsyncEngine

logger = logging.getLogger(__name__)


class WorkerLock(Protocol):
  """Non-blocking named mutex released when the scope exits."""

  name: str

  def try_acquire(self) -> AbstractAsyncContextManager[bool]:
    """Yield True when the lock was acquired, False when another holder owns it."""

  async def terminate_holder(self) -> bool:
    """Forcibly evict the current holder; return True when something was terminated."""


class LocalWorkerLock:
  """In-process lock for single-instance deployments and tests."""

  def __init__(self, name: str = "task-worker") -> None:
    self.name = name
    self._lock = asyncio.Lock()

  @asynccontextmanager
  async def try_acquire(self) -> AsyncIterator[bool]:
    if self._lock.locked():
      yield False
      return
    await self._lock.acquire()
    try:
      yield True
    finally:
      self._lock.release()

  async def terminate_holder(self) -> bool:
    # Holders live in this process; there is no session to evict.
    return False


class PostgresAdvisoryLock:
  """Session-level Postgres advisory lock held on a dedicated connection."""

  def __init__(self, engine: AsyncEngine, key: int, name: str = "task-worker") -> None:
    self.name = name
    self._engine = engine
    self._key = key

  @asynccontextmanager
  async def try_acquire(self) -> AsyncIterator[bool]:
    async with self._engine.connect() as connection:
      result = await connection.execute(text("SELECT pg_try_advisory_lock(:key)"), {"key": self._key})
      acquired = bool(result.scalar())
      # Commit so the probe does not leave the connection idle in a transaction while the lock is held.
      await connection.commit()
      if not acquired:
        yield False
        return
      try:
        yield True
      finally:
        try:
          await connection.execute(text("SELECT pg_advisory_unlock(:key)"), {"key": self._key})
          await connection.commit()
        except Exception:  # noqa: BLE001
          # Closing the connection drops session-level locks anyway.
          logger.warning("Failed to release advisory lock name=%s key=%s; relying on connection close", self.name, self._key, exc_info=True)
          await connection.invalidate()

  async def terminate_holder(self) -> bool:
    """Terminate the backend session holding this advisory lock."""
    # Keys below 2**31 are stored with classid 0 and objid equal to the key.
    query = text(
      """
      SELECT pg_terminate_backend(pid)
      FROM pg_locks
      WHERE locktype = 'advisory'
        AND granted
        AND classid = 0
        AND objid = :key
        AND pid <> pg_backend_pid()
      """
    )
    async with self._engine.connect() as connection:
      result = await connection.execute(query, {"key": self._key})
      terminated = [bool(value) for value in result.scalars().all()]
      await connection.commit()
    if any(terminated):
      logger.warning("Terminated session holding advisory lock name=%s key=%s", self.name, self._key)
    return any(terminated)
