"""Integration tests for the single-flight worker loop."""

from __future__ import annotations

import asyncio
from datetime import timedelta

import pytest
from helpers import FakeClock

from inkround.jobs.dispatch import TaskHandlerRegistry
from inkround.jobs.lock import LocalWorkerLock
from inkround.jobs.models import TaskRecord
from inkround.jobs.progress import TaskProgressTracker
from inkround.jobs.queue import TaskQueue
from inkround.jobs.worker import TaskWorker


class RecordingHandler:
  def __init__(self, *, error: Exception | None = None, delay: float = 0.0) -> None:
    self.error = error
    self.delay = delay
    self.seen: list[int] = []

  async def handle(self, task: TaskRecord, progress: TaskProgressTracker) -> None:
    self.seen.append(task.id)
    await progress.step("working")
    if self.delay:
      await asyncio.sleep(self.delay)
    if self.error is not None:
      raise self.error


class CountingLock(LocalWorkerLock):
  def __init__(self) -> None:
    super().__init__("test-worker")
    self.terminations = 0

  async def terminate_holder(self) -> bool:
    self.terminations += 1
    return True


def _worker(queue: TaskQueue, clock: FakeClock, registry: TaskHandlerRegistry, lock: LocalWorkerLock | None = None, **overrides: object) -> TaskWorker:
  options: dict[str, object] = {"lease": timedelta(minutes=5), "stale_after": timedelta(minutes=15), "poll_seconds": 0.01}
  options.update(overrides)
  return TaskWorker(queue=queue, registry=registry, lock=lock or LocalWorkerLock(), clock=clock, **options)  # type: ignore[arg-type]


@pytest.mark.anyio
async def test_cycle_runs_one_task_to_completion(queue: TaskQueue, clock: FakeClock) -> None:
  handler = RecordingHandler()
  worker = _worker(queue, clock, TaskHandlerRegistry({"SEASON_END": handler}))
  task = await queue.enqueue("SEASON_END", {"seasonId": "s1"})
  await queue.enqueue("SEASON_END", {"seasonId": "s2"})

  result = await worker.run_once()

  assert result.outcome == "completed"
  assert result.task_id == task.id
  assert handler.seen == [task.id]
  stored = await queue.get_task(task.id)
  assert stored is not None and stored.status == "COMPLETED" and stored.step == "complete"
  assert (await queue.get_stats()).pending == 1


@pytest.mark.anyio
async def test_idle_cycle_when_nothing_is_queued(queue: TaskQueue, clock: FakeClock) -> None:
  assert (await _worker(queue, clock, TaskHandlerRegistry()).run_once()).outcome == "idle"


@pytest.mark.anyio
async def test_handler_errors_are_recorded_and_retried(queue: TaskQueue, clock: FakeClock) -> None:
  handler = RecordingHandler(error=RuntimeError("model offline"))
  worker = _worker(queue, clock, TaskHandlerRegistry({"OUTLINE": handler}))
  task = await queue.enqueue("OUTLINE", {"seasonId": "s1"})

  outcomes = [(await worker.run_once()).outcome for _ in range(4)]

  assert outcomes == ["failed", "failed", "failed", "idle"]
  stored = await queue.get_task(task.id)
  assert stored is not None
  assert stored.status == "FAILED"
  assert stored.attempts == 3
  assert stored.error_message == "RuntimeError: model offline"


@pytest.mark.anyio
async def test_unregistered_task_type_fails_the_task(queue: TaskQueue, clock: FakeClock) -> None:
  worker = _worker(queue, clock, TaskHandlerRegistry())
  await queue.enqueue("CATCH_UP", {"seasonId": "s1", "round": 2})

  result = await worker.run_once()

  assert result.outcome == "failed"
  assert result.error is not None and result.error.startswith("UnsupportedTaskError")


@pytest.mark.anyio
async def test_second_worker_is_locked_out_while_the_holder_is_healthy(queue: TaskQueue, clock: FakeClock) -> None:
  lock = CountingLock()
  worker = _worker(queue, clock, TaskHandlerRegistry({"SEASON_END": RecordingHandler()}), lock=lock)
  await queue.enqueue("SEASON_END", {"seasonId": "s1"})
  busy = await queue.claim_next(timedelta(minutes=5))
  assert busy is not None

  async with lock.try_acquire() as held:
    assert held
    clock.advance(minutes=2)
    result = await worker.run_once()

  assert result.outcome == "locked_out"
  assert result.task_id == busy.id
  assert lock.terminations == 0


@pytest.mark.anyio
async def test_stale_task_is_force_failed_without_terminating_the_holder(queue: TaskQueue, clock: FakeClock) -> None:
  lock = CountingLock()
  worker = _worker(queue, clock, TaskHandlerRegistry(), lock=lock)
  task = await queue.enqueue("WRITE_CHAPTER", {"seasonId": "s1", "round": 3})
  assert await queue.claim_next(timedelta(minutes=5)) is not None

  async with lock.try_acquire():
    clock.advance(minutes=16)
    result = await worker.run_once()

  assert result.outcome == "stale_recovered"
  stored = await queue.get_task(task.id)
  assert stored is not None
  assert stored.status == "PENDING"
  assert stored.error_message is not None and stored.error_message.startswith("Stale task force-failed")
  assert lock.terminations == 0


@pytest.mark.anyio
async def test_stale_holder_is_terminated_when_enabled(queue: TaskQueue, clock: FakeClock) -> None:
  lock = CountingLock()
  worker = _worker(queue, clock, TaskHandlerRegistry(), lock=lock, terminate_stale_holder=True)
  await queue.enqueue("WRITE_CHAPTER", {"seasonId": "s1", "round": 3})
  assert await queue.claim_next(timedelta(minutes=5)) is not None

  async with lock.try_acquire():
    clock.advance(minutes=16)
    result = await worker.run_once()

  assert result.outcome == "stale_recovered"
  assert lock.terminations == 1


@pytest.mark.anyio
async def test_long_handler_renews_its_lease(queue: TaskQueue, clock: FakeClock) -> None:
  seen_heartbeat: list[bool] = []

  class SlowHandler:
    async def handle(self, task: TaskRecord, progress: TaskProgressTracker) -> None:
      await asyncio.sleep(1.3)
      current = await queue.get_task(task.id)
      seen_heartbeat.append(current is not None and current.heartbeat_at is not None)

  worker = _worker(queue, clock, TaskHandlerRegistry({"SEASON_END": SlowHandler()}), lease=timedelta(seconds=3))
  await queue.enqueue("SEASON_END", {"seasonId": "s1"})

  assert (await worker.run_once()).outcome == "completed"
  assert seen_heartbeat == [True]


@pytest.mark.anyio
async def test_run_forever_drains_the_queue_until_stopped(queue: TaskQueue, clock: FakeClock) -> None:
  handler = RecordingHandler()
  worker = _worker(queue, clock, TaskHandlerRegistry({"SEASON_END": handler}))
  for index in range(3):
    await queue.enqueue("SEASON_END", {"seasonId": f"s{index}"})

  stop = asyncio.Event()
  loop = asyncio.create_task(worker.run_forever(stop))
  for _ in range(200):
    if (await queue.get_stats()).completed == 3:
      break
    await asyncio.sleep(0.01)
  stop.set()
  await asyncio.wait_for(loop, timeout=2)

  assert len(handler.seen) == 3
