"""Call-site retries for transient database failures."""

from __future__ import annotations

import asyncio
import logging
import random
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from typing import TypeVar

from sqlalchemy.exc import DBAPIError, IntegrityError, OperationalError
from sqlalchemy.exc import TimeoutError as PoolTimeoutError

T = TypeVar("T")
logger = logging.getLogger(__name__)

_TRANSIENT_SQLSTATES = {"40001": "serialization_conflict", "40P01": "deadlock", "53300": "too_many_connections", "57P01": "admin_shutdown", "08006": "connection_failure", "08003": "connection_does_not_exist"}
_TRANSIENT_MESSAGES = ("connection", "timeout", "reset", "network", "broken pipe", "database is locked", "too many clients")


@dataclass(frozen=True)
class DBFailureClassification:
  """Classification result for a database failure."""

  retryable: bool
  category: str
  sqlstate: str | None = None


def _extract_sqlstate(exc: BaseException) -> str | None:
  """Extract the SQLSTATE from a wrapped driver exception."""
  if isinstance(exc, DBAPIError) and exc.orig is not None:
    for attribute in ("sqlstate", "pgcode"):
      value = getattr(exc.orig, attribute, None)
      if value:
        return str(value)
  return None


def classify_db_failure(exc: BaseException) -> DBFailureClassification:
  """Classify a database failure as transient (retry) or permanent (fail fast).

  Pool exhaustion, dropped connections, serialization conflicts and deadlocks
  are transient. Integrity violations, schema errors and programming errors
  are permanent.
  """
  # Pool checkout timed out: every connection is busy.
  if isinstance(exc, PoolTimeoutError):
    return DBFailureClassification(retryable=True, category="pool_exhausted")

  sqlstate = _extract_sqlstate(exc)
  if sqlstate in _TRANSIENT_SQLSTATES:
    return DBFailureClassification(retryable=True, category=_TRANSIENT_SQLSTATES[sqlstate], sqlstate=sqlstate)

  if isinstance(exc, IntegrityError) or (sqlstate and sqlstate.startswith("23")):
    return DBFailureClassification(retryable=False, category="integrity_error", sqlstate=sqlstate)

  if sqlstate and sqlstate[:2] in {"42", "28"}:
    return DBFailureClassification(retryable=False, category="schema_or_permission_error", sqlstate=sqlstate)

  if isinstance(exc, OperationalError | ConnectionError | OSError):
    message = str(exc).lower()
    if isinstance(exc, ConnectionError) or any(pattern in message for pattern in _TRANSIENT_MESSAGES):
      return DBFailureClassification(retryable=True, category="connectivity_error", sqlstate=sqlstate)
    return DBFailureClassification(retryable=False, category="operational_error_unknown", sqlstate=sqlstate)

  return DBFailureClassification(retryable=False, category=f"unclassified:{type(exc).__name__}", sqlstate=sqlstate)


async def execute_with_retry(*, operation_name: str, func: Callable[[], Awaitable[T]], max_attempts: int = 3, initial_backoff_ms: int = 100, max_backoff_ms: int = 2000, jitter: bool = True) -> T:
  """Run an idempotent database operation, retrying transient failures with backoff.

  Args:
    operation_name: Label used in logs (e.g. "chapter.persist").
    func: Zero-argument coroutine factory performing the operation.
    max_attempts: Total attempts including the first one.
    initial_backoff_ms: Delay before the first retry.
    max_backoff_ms: Upper bound for the exponential delay.
    jitter: Spread delays by +/-25% so parallel items do not retry in lockstep.

  Raises:
    The original exception when it is permanent or attempts are exhausted.
  """
  attempt = 0
  while True:
    attempt += 1
    try:
      result = await func()
    except Exception as exc:
      classification = classify_db_failure(exc)
      if not classification.retryable or attempt >= max_attempts:
        logger.error("DB operation failed: operation=%s attempt=%d/%d category=%s sqlstate=%s retryable=%s", operation_name, attempt, max_attempts, classification.category, classification.sqlstate or "none", classification.retryable)
        raise

      backoff_ms = min(initial_backoff_ms * (2 ** (attempt - 1)), max_backoff_ms)
      if jitter:
        backoff_ms += random.uniform(-backoff_ms * 0.25, backoff_ms * 0.25)
      logger.warning("Transient DB failure: operation=%s attempt=%d/%d category=%s; retrying in %.0fms", operation_name, attempt, max_attempts, classification.category, backoff_ms)
      await asyncio.sleep(backoff_ms / 1000.0)
      continue

    if attempt > 1:
      logger.info("DB operation succeeded after retry: operation=%s attempt=%d/%d", operation_name, attempt, max_attempts)
    return result
