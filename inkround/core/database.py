from __future__ import annotations

from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.orm import DeclarativeBase

from inkround.config import DatabaseSettings


class Base(DeclarativeBase):
  pass


def database_url(settings: DatabaseSettings) -> str:
  """Build the SQLAlchemy database URL, defaulting Postgres DSNs to asyncpg."""
  url = settings.pg_dsn
  if not url:
    raise RuntimeError("Database connection is not configured (INKROUND_PG_DSN is missing).")
  if url.startswith("postgresql://"):
    url = url.replace("postgresql://", "postgresql+asyncpg://", 1)
  return url


def create_db_engine(settings: DatabaseSettings) -> AsyncEngine:
  """Create the process-wide async engine."""
  url = database_url(settings)
  connect_args = {"timeout": settings.pg_connect_timeout} if url.startswith("postgresql+asyncpg://") else {}
  return create_async_engine(url, echo=settings.debug, pool_pre_ping=True, connect_args=connect_args)


def create_session_factory(engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
  """Return a session factory bound to the engine."""
  return async_sessionmaker(bind=engine, expire_on_commit=False, class_=AsyncSession)
