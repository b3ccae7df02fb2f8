"""Database initialization helper.

Creates the configured database when it is missing, then creates every engine table.
Intended for local/dev environments; CREATE DATABASE cannot be parameterized, so the
name is validated before it is used in SQL.
"""

import asyncio
import os
import re
import sys

from sqlalchemy import text
from sqlalchemy.engine.url import make_url
from sqlalchemy.ext.asyncio import create_async_engine

# Add the project root to the path
sys.path.insert(0, os.path.abspath(os.path.join(os.path.dirname(__file__), "..")))


_DB_NAME_PATTERN = re.compile(r"^[A-Za-z0-9_]+$")


def _validate_database_name(db_name: str) -> str:
  if not db_name:
    raise ValueError("Target database name is empty.")
  if not _DB_NAME_PATTERN.fullmatch(db_name):
    raise ValueError("Target database name contains invalid characters (allowed: A-Z, a-z, 0-9, _).")
  return db_name


async def create_database_if_not_exists(dsn: str) -> None:
  url = make_url(dsn)
  target_db = _validate_database_name(url.database or "")
  postgres_url = url.set(database="postgres")
  if postgres_url.drivername.startswith("postgresql") and "+asyncpg" not in postgres_url.drivername:
    postgres_url = postgres_url.set(drivername="postgresql+asyncpg")

  print(f"Connecting to postgres to check for database '{target_db}'...")
  # CREATE DATABASE needs AUTOCOMMIT
  engine = create_async_engine(postgres_url, isolation_level="AUTOCOMMIT")
  try:
    async with engine.connect() as conn:
      result = await conn.execute(text("SELECT 1 FROM pg_database WHERE datname = :name"), {"name": target_db})
      if result.scalar() == 1:
        print(f"Database '{target_db}' already exists.")
      else:
        await conn.execute(text(f'CREATE DATABASE "{target_db}"'))
        print(f"Database '{target_db}' created successfully.")
  finally:
    await engine.dispose()


async def create_tables() -> None:
  from inkround.config import get_database_settings
  from inkround.core.database import Base, create_db_engine
  from inkround.schema import sql  # noqa: F401

  engine = create_db_engine(get_database_settings())
  try:
    async with engine.begin() as conn:
      await conn.run_sync(Base.metadata.create_all)
    print(f"Created tables: {', '.join(sorted(Base.metadata.tables))}")
  finally:
    await engine.dispose()


async def main() -> None:
  from inkround.config import get_settings

  settings = get_settings()
  if not settings.pg_dsn:
    print("Error: INKROUND_PG_DSN is not set.")
    sys.exit(1)
  try:
    await create_database_if_not_exists(settings.pg_dsn)
    await create_tables()
  except Exception as e:
    print(f"Error initializing database: {e}")
    sys.exit(1)


if __name__ == "__main__":
  asyncio.run(main())
