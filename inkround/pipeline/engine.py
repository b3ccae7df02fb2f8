"""Bounded-concurrency prepare -> generate -> persist pipeline with per-item isolation."""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable, Iterable
from dataclasses import dataclass, field
from typing import Any, Generic, TypeVar

from inkround.utils.db_retry import execute_with_retry

I = TypeVar("I")  # noqa: E741
P = TypeVar("P")
G = TypeVar("G")
R = TypeVar("R")

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class PipelineLimits:
  """Concurrency and retry bounds shared by every pipeline run."""

  db_concurrency: int = 2
  llm_concurrency: int = 3
  db_retry_attempts: int = 3


@dataclass(frozen=True)
class PipelineStages(Generic[I, P, G, R]):
  """The three stage callables of a pipeline run.

  `prepare` and `persist` are database-bound and retried on transient failures;
  `generate` talks to the generative service and carries its own retry policy.
  `prepare` returns None to skip an item whose prerequisites are missing.
  """

  prepare: Callable[[I], Awaitable[P | None]]
  generate: Callable[[P], Awaitable[G]]
  persist: Callable[[P, G], Awaitable[R]]
  key: Callable[[I], str] = str


@dataclass
class PipelineReport(Generic[R]):
  """Per-item outcome of one pipeline run."""

  label: str
  persisted: list[str] = field(default_factory=list)
  skipped: list[str] = field(default_factory=list)
  failed: dict[str, str] = field(default_factory=dict)
  results: dict[str, R] = field(default_factory=dict)

  @property
  def total(self) -> int:
    return len(self.persisted) + len(self.skipped) + len(self.failed)

  def summary(self) -> dict[str, Any]:
    return {"label": self.label, "persisted": len(self.persisted), "skipped": len(self.skipped), "failed": len(self.failed)}


class _StageFailure(Exception):
  def __init__(self, stage: str, error: BaseException) -> None:
    super().__init__(f"{stage}: {type(error).__name__}: {error}")
    self.stage = stage


async def run_pipeline(items: Iterable[I], stages: PipelineStages[I, P, G, R], *, db_concurrency: int, llm_concurrency: int, label: str, db_retry_attempts: int = 3) -> PipelineReport[R]:
  """Run every item through the three stages; no item failure aborts its siblings.

  Database-bound stages share one pool of `db_concurrency` slots and the
  generate stage uses `llm_concurrency` slots. An item only enters a stage
  after its previous stage succeeded.
  """
  db_slots = asyncio.Semaphore(db_concurrency)
  llm_slots = asyncio.Semaphore(llm_concurrency)
  report: PipelineReport[R] = PipelineReport(label=label)

  async def _run_item(item: I) -> None:
    item_key = stages.key(item)
    try:
      async with db_slots:
        prepared = await _stage("prepare", execute_with_retry(operation_name=f"{label}.prepare", func=lambda: stages.prepare(item), max_attempts=db_retry_attempts))
      if prepared is None:
        logger.info("Pipeline %s skipped item=%s: prerequisites missing", label, item_key)
        report.skipped.append(item_key)
        return

      async with llm_slots:
        generated = await _stage("generate", stages.generate(prepared))

      async with db_slots:
        result = await _stage("persist", execute_with_retry(operation_name=f"{label}.persist", func=lambda: stages.persist(prepared, generated), max_attempts=db_retry_attempts))
    except _StageFailure as failure:
      logger.error("Pipeline %s item=%s failed at %s", label, item_key, failure.stage, exc_info=failure.__cause__)
      report.failed[item_key] = str(failure)
      return

    report.persisted.append(item_key)
    report.results[item_key] = result

  await asyncio.gather(*(_run_item(item) for item in items))
  logger.info("Pipeline %s finished persisted=%d skipped=%d failed=%d", label, len(report.persisted), len(report.skipped), len(report.failed))
  return report


async def _stage(name: str, awaitable: Awaitable[Any]) -> Any:
  try:
    return await awaitable
  except Exception as exc:  # noqa: BLE001
    raise _StageFailure(name, exc) from exc
