"""Retry generative calls until their output decodes, with exponential backoff."""

from __future__ import annotations

import asyncio
import logging
import random
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from typing import Any, TypeVar

from inkround.ai.json_parser import ParsedOutput, parse_structured

T = TypeVar("T")
logger = logging.getLogger(__name__)


class GenerationFailedError(RuntimeError):
  """Raised when every attempt to generate and decode a structured value failed."""

  def __init__(self, operation: str, attempts: int, last_error: BaseException) -> None:
    self.operation = operation
    self.attempts = attempts
    self.last_error = last_error
    super().__init__(f"{operation} failed after {attempts} attempt(s): {type(last_error).__name__}: {last_error}")


@dataclass(frozen=True)
class RetryPolicy:
  """Backoff parameters for regenerate-on-failure calls."""

  max_attempts: int = 3
  base_delay_ms: int = 1000
  max_delay_ms: int = 10000
  jitter: float = 0.2

  def delay_seconds(self, attempt: int, rng: random.Random | None = None) -> float:
    """Delay after the given 1-based failed attempt: min(base * 2**(n-1), max) with +/- jitter."""
    backoff_ms = min(self.base_delay_ms * (2 ** (attempt - 1)), self.max_delay_ms)
    if self.jitter:
      spread = backoff_ms * self.jitter
      backoff_ms += (rng or random).uniform(-spread, spread)
    return max(backoff_ms, 0.0) / 1000.0


async def generate_structured(
  call: Callable[[], Awaitable[str]],
  decode: Callable[[Any], T],
  *,
  policy: RetryPolicy,
  operation: str,
  parse: Callable[[str], ParsedOutput] = parse_structured,
  sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
) -> T:
  """Invoke the generation call, repair and decode its output, regenerating on failure.

  Any failure (the call itself, the repair cascade or decoding) triggers a fresh
  generation call rather than a re-parse of the same text. The last error is
  surfaced through GenerationFailedError once attempts are exhausted.
  """
  last_error: BaseException | None = None
  for attempt in range(1, policy.max_attempts + 1):
    try:
      raw = await call()
      parsed = parse(raw)
      result = decode(parsed.value)
      if parsed.strategy != "strict" or attempt > 1:
        logger.info("Recovered %s on attempt %d/%d using %s", operation, attempt, policy.max_attempts, parsed.strategy)
      return result
    except Exception as exc:  # noqa: BLE001
      last_error = exc
      logger.warning("%s attempt %d/%d failed: %s: %s", operation, attempt, policy.max_attempts, type(exc).__name__, exc)

    if attempt < policy.max_attempts:
      delay = policy.delay_seconds(attempt)
      logger.info("Regenerating %s after %.2fs backoff", operation, delay)
      await sleep(delay)

  assert last_error is not None
  raise GenerationFailedError(operation, policy.max_attempts, last_error) from last_error
