"""Shared fixtures: a throwaway SQLite database per test plus the fakes from helpers.py."""

from __future__ import annotations

from collections.abc import AsyncIterator
from pathlib import Path
from typing import Any

import pytest
from helpers import FakeClock, RecordingSink, Seeder
from sqlalchemy import event
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import NullPool

from inkround.ai.backoff import RetryPolicy
from inkround.core.database import Base, create_session_factory
from inkround.jobs.queue import TaskQueue
from inkround.pipeline.engine import PipelineLimits
from inkround.schema import sql  # noqa: F401
from inkround.services.economy import EconomyService
from inkround.storage.postgres_agents_repo import PostgresAgentsRepository
from inkround.storage.postgres_books_repo import PostgresBooksRepository
from inkround.storage.postgres_seasons_repo import PostgresSeasonsRepository
from inkround.storage.postgres_tasks_repo import PostgresTasksRepository


@pytest.fixture
def anyio_backend() -> str:
  return "asyncio"


@pytest.fixture
async def db_engine(tmp_path: Path) -> AsyncIterator[AsyncEngine]:
  engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'inkround.db'}", poolclass=NullPool, connect_args={"timeout": 30})

  @event.listens_for(engine.sync_engine, "connect")
  def _set_sqlite_pragma(dbapi_connection: Any, _record: Any) -> None:
    cursor = dbapi_connection.cursor()
    cursor.execute("PRAGMA journal_mode=WAL")
    cursor.close()

  async with engine.begin() as connection:
    await connection.run_sync(Base.metadata.create_all)
  yield engine
  await engine.dispose()


@pytest.fixture
def session_factory(db_engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
  return create_session_factory(db_engine)


@pytest.fixture
def clock() -> FakeClock:
  return FakeClock()


@pytest.fixture
def sink() -> RecordingSink:
  return RecordingSink()


@pytest.fixture
def seasons_repo(session_factory: async_sessionmaker[AsyncSession]) -> PostgresSeasonsRepository:
  return PostgresSeasonsRepository(session_factory)


@pytest.fixture
def books_repo(session_factory: async_sessionmaker[AsyncSession]) -> PostgresBooksRepository:
  return PostgresBooksRepository(session_factory)


@pytest.fixture
def agents_repo(session_factory: async_sessionmaker[AsyncSession]) -> PostgresAgentsRepository:
  return PostgresAgentsRepository(session_factory)


@pytest.fixture
def queue(session_factory: async_sessionmaker[AsyncSession], clock: FakeClock) -> TaskQueue:
  return TaskQueue(repo=PostgresTasksRepository(session_factory), clock=clock, default_max_attempts=3)


@pytest.fixture
def economy(agents_repo: PostgresAgentsRepository, clock: FakeClock) -> EconomyService:
  return EconomyService(agents=agents_repo, clock=clock, outline_cost=3, chapter_cost=5, bankruptcy_threshold=-10)


@pytest.fixture
def seed(seasons_repo: PostgresSeasonsRepository, books_repo: PostgresBooksRepository, agents_repo: PostgresAgentsRepository, clock: FakeClock) -> Seeder:
  return Seeder(seasons=seasons_repo, books=books_repo, agents=agents_repo, clock=clock)


@pytest.fixture
def fast_policy() -> RetryPolicy:
  return RetryPolicy(max_attempts=3, base_delay_ms=1, max_delay_ms=2, jitter=0)


@pytest.fixture
def limits() -> PipelineLimits:
  return PipelineLimits(db_concurrency=2, llm_concurrency=3, db_retry_attempts=3)
