"""Application configuration loaded from environment variables."""

from __future__ import annotations

import os
from dataclasses import dataclass
from functools import lru_cache

from inkround.utils.env import default_env_path, load_env_file

load_env_file(default_env_path(), override=False)


@dataclass(frozen=True)
class Settings:
  """Typed settings for the inkround engine."""

  environment: str
  debug: bool
  log_max_bytes: int
  log_backup_count: int
  log_http_4xx: bool
  pg_dsn: str | None
  pg_connect_timeout: int
  task_secret: str | None
  llm_base_url: str | None
  llm_api_key: str | None
  llm_model: str
  llm_max_attempts: int
  llm_retry_base_ms: int
  llm_retry_max_ms: int
  llm_retry_jitter: float
  db_concurrency: int
  llm_concurrency: int
  db_retry_attempts: int
  task_lease_seconds: int
  task_max_attempts: int
  stale_task_seconds: int
  worker_poll_seconds: float
  worker_lock_key: int
  terminate_stale_lock_holder: bool
  scheduler_interval_seconds: float
  phase_grace_seconds: float
  run_background_loops: bool
  max_outline_chapters: int
  chapter_heat_bonus: int
  reader_top_k: int
  reader_agents_per_chapter: int
  reader_rating_threshold: int
  reader_gift_rating: int
  reader_content_chars: int
  readers_on_publish: bool
  outline_ink_cost: int
  chapter_ink_cost: int
  bankruptcy_threshold: int
  notification_webhook_url: str | None


@dataclass(frozen=True)
class DatabaseSettings:
  """Typed settings for database connectivity."""

  debug: bool
  pg_dsn: str | None
  pg_connect_timeout: int


def _parse_bool(raw: str | None) -> bool:
  """Parse a boolean-ish string from environment variables."""

  if raw is None:
    return False

  normalized = raw.strip().lower()
  return normalized in {"1", "true", "yes", "on"}


def _optional_str(raw: str | None) -> str | None:
  if raw is None:
    return None
  value = raw.strip()
  return value or None


def _positive_int(name: str, default: str) -> int:
  value = int(os.getenv(name, default))
  if value <= 0:
    raise ValueError(f"{name} must be a positive integer.")
  return value


def _positive_float(name: str, default: str) -> float:
  value = float(os.getenv(name, default))
  if value <= 0:
    raise ValueError(f"{name} must be a positive number.")
  return value


@lru_cache(maxsize=1)
def get_settings() -> Settings:
  """Load settings once per process."""

  environment = os.getenv("INKROUND_ENV", "development").lower()
  debug = _parse_bool(os.getenv("INKROUND_DEBUG"))
  production = environment in {"production", "prod"}

  log_max_bytes = _positive_int("INKROUND_LOG_MAX_BYTES", "5242880")  # 5MB default
  log_backup_count = int(os.getenv("INKROUND_LOG_BACKUP_COUNT", "10"))
  if log_backup_count < 0:
    raise ValueError("INKROUND_LOG_BACKUP_COUNT must be zero or a positive integer.")

  # Production runs share a small connection pool, so keep DB fan-out narrow there.
  db_concurrency = _positive_int("INKROUND_DB_CONCURRENCY", "1" if production else "2")
  llm_concurrency = _positive_int("INKROUND_LLM_CONCURRENCY", "2" if production else "3")

  llm_retry_jitter = float(os.getenv("INKROUND_LLM_RETRY_JITTER", "0.2"))
  if not 0 <= llm_retry_jitter < 1:
    raise ValueError("INKROUND_LLM_RETRY_JITTER must be in [0, 1).")

  reader_rating_threshold = int(os.getenv("INKROUND_READER_RATING_THRESHOLD", "4"))
  reader_gift_rating = int(os.getenv("INKROUND_READER_GIFT_RATING", "9"))
  for name, value in (("INKROUND_READER_RATING_THRESHOLD", reader_rating_threshold), ("INKROUND_READER_GIFT_RATING", reader_gift_rating)):
    if not 1 <= value <= 10:
      raise ValueError(f"{name} must be between 1 and 10.")

  worker_lock_key = int(os.getenv("INKROUND_WORKER_LOCK_KEY", "728341905"))
  if not 0 < worker_lock_key < 2**31:
    raise ValueError("INKROUND_WORKER_LOCK_KEY must fit in a positive 32-bit integer.")

  return Settings(
    environment=environment,
    debug=debug,
    log_max_bytes=log_max_bytes,
    log_backup_count=log_backup_count,
    log_http_4xx=_parse_bool(os.getenv("INKROUND_LOG_HTTP_4XX")),
    pg_dsn=_optional_str(os.getenv("INKROUND_PG_DSN")),
    pg_connect_timeout=int(os.getenv("INKROUND_PG_CONNECT_TIMEOUT", "10")),
    task_secret=_optional_str(os.getenv("INKROUND_TASK_SECRET")),
    llm_base_url=_optional_str(os.getenv("INKROUND_LLM_BASE_URL")),
    llm_api_key=_optional_str(os.getenv("INKROUND_LLM_API_KEY")),
    llm_model=os.getenv("INKROUND_LLM_MODEL", "gpt-4o-mini"),
    llm_max_attempts=_positive_int("INKROUND_LLM_MAX_ATTEMPTS", "3"),
    llm_retry_base_ms=_positive_int("INKROUND_LLM_RETRY_BASE_MS", "1000"),
    llm_retry_max_ms=_positive_int("INKROUND_LLM_RETRY_MAX_MS", "10000"),
    llm_retry_jitter=llm_retry_jitter,
    db_concurrency=db_concurrency,
    llm_concurrency=llm_concurrency,
    db_retry_attempts=_positive_int("INKROUND_DB_RETRY_ATTEMPTS", "3"),
    task_lease_seconds=_positive_int("INKROUND_TASK_LEASE_SECONDS", "300"),
    task_max_attempts=_positive_int("INKROUND_TASK_MAX_ATTEMPTS", "3"),
    stale_task_seconds=_positive_int("INKROUND_STALE_TASK_SECONDS", "900"),
    worker_poll_seconds=_positive_float("INKROUND_WORKER_POLL_SECONDS", "10"),
    worker_lock_key=worker_lock_key,
    terminate_stale_lock_holder=_parse_bool(os.getenv("INKROUND_TERMINATE_STALE_LOCK_HOLDER")),
    scheduler_interval_seconds=_positive_float("INKROUND_SCHEDULER_INTERVAL_SECONDS", "60"),
    phase_grace_seconds=float(os.getenv("INKROUND_PHASE_GRACE_SECONDS", "5")),
    run_background_loops=_parse_bool(os.getenv("INKROUND_RUN_BACKGROUND_LOOPS", "true")),
    max_outline_chapters=_positive_int("INKROUND_MAX_OUTLINE_CHAPTERS", "7"),
    chapter_heat_bonus=int(os.getenv("INKROUND_CHAPTER_HEAT_BONUS", "100")),
    reader_top_k=_positive_int("INKROUND_READER_TOP_K", "10"),
    reader_agents_per_chapter=_positive_int("INKROUND_READER_AGENTS_PER_CHAPTER", "3"),
    reader_rating_threshold=reader_rating_threshold,
    reader_gift_rating=reader_gift_rating,
    reader_content_chars=_positive_int("INKROUND_READER_CONTENT_CHARS", "4000"),
    readers_on_publish=_parse_bool(os.getenv("INKROUND_READERS_ON_PUBLISH")),
    outline_ink_cost=int(os.getenv("INKROUND_OUTLINE_INK_COST", "3")),
    chapter_ink_cost=int(os.getenv("INKROUND_CHAPTER_INK_COST", "5")),
    bankruptcy_threshold=int(os.getenv("INKROUND_BANKRUPTCY_THRESHOLD", "-10")),
    notification_webhook_url=_optional_str(os.getenv("INKROUND_NOTIFICATION_WEBHOOK_URL")),
  )


@lru_cache(maxsize=1)
def get_database_settings() -> DatabaseSettings:
  """Load only the settings needed to open the database."""

  return DatabaseSettings(debug=_parse_bool(os.getenv("INKROUND_DEBUG")), pg_dsn=_optional_str(os.getenv("INKROUND_PG_DSN")), pg_connect_timeout=int(os.getenv("INKROUND_PG_CONNECT_TIMEOUT", "10")))
