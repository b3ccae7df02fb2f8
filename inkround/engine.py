"""Explicit construction of every engine component with injected collaborators."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import timedelta

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from inkround.ai.backoff import RetryPolicy
from inkround.ai.client import GenerativeClient
from inkround.config import Settings
from inkround.jobs.dispatch import TaskHandlerRegistry
from inkround.jobs.handlers import build_registry
from inkround.jobs.lock import WorkerLock
from inkround.jobs.queue import TaskQueue
from inkround.jobs.worker import TaskWorker
from inkround.notifications.contracts import NotificationSink
from inkround.pipeline.chapters import ChapterWriter
from inkround.pipeline.engine import PipelineLimits
from inkround.pipeline.outline import OutlinePipeline
from inkround.services.catch_up import CatchUpReconciler
from inkround.services.economy import EconomyService
from inkround.services.reader_dispatch import ReaderDispatcher, ReaderPolicy
from inkround.services.scheduler import RoundScheduler
from inkround.services.scoring import ScoreService
from inkround.storage.agents_repo import AgentsRepository
from inkround.storage.books_repo import BooksRepository
from inkround.storage.postgres_agents_repo import PostgresAgentsRepository
from inkround.storage.postgres_books_repo import PostgresBooksRepository
from inkround.storage.postgres_seasons_repo import PostgresSeasonsRepository
from inkround.storage.postgres_tasks_repo import PostgresTasksRepository
from inkround.storage.seasons_repo import SeasonsRepository
from inkround.utils.clock import Clock

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Engine:
  """Every long-lived component, built once at process start."""

  settings: Settings
  clock: Clock
  sink: NotificationSink
  seasons: SeasonsRepository
  books: BooksRepository
  agents: AgentsRepository
  queue: TaskQueue
  economy: EconomyService
  scores: ScoreService
  outlines: OutlinePipeline
  writer: ChapterWriter
  reconciler: CatchUpReconciler
  dispatcher: ReaderDispatcher
  registry: TaskHandlerRegistry
  worker: TaskWorker
  scheduler: RoundScheduler


def build_engine(settings: Settings, session_factory: async_sessionmaker[AsyncSession], *, client: GenerativeClient, sink: NotificationSink, clock: Clock, lock: WorkerLock) -> Engine:
  """Wire repositories, pipelines, services, the worker and the scheduler."""
  seasons = PostgresSeasonsRepository(session_factory)
  books = PostgresBooksRepository(session_factory)
  agents = PostgresAgentsRepository(session_factory)
  queue = TaskQueue(repo=PostgresTasksRepository(session_factory), clock=clock, default_max_attempts=settings.task_max_attempts)

  policy = RetryPolicy(max_attempts=settings.llm_max_attempts, base_delay_ms=settings.llm_retry_base_ms, max_delay_ms=settings.llm_retry_max_ms, jitter=settings.llm_retry_jitter)
  limits = PipelineLimits(db_concurrency=settings.db_concurrency, llm_concurrency=settings.llm_concurrency, db_retry_attempts=settings.db_retry_attempts)

  economy = EconomyService(agents=agents, clock=clock, outline_cost=settings.outline_ink_cost, chapter_cost=settings.chapter_ink_cost, bankruptcy_threshold=settings.bankruptcy_threshold)
  scores = ScoreService(books=books, agents=agents, clock=clock)
  outlines = OutlinePipeline(
    seasons=seasons,
    books=books,
    agents=agents,
    client=client,
    policy=policy,
    economy=economy,
    sink=sink,
    clock=clock,
    limits=limits,
    max_outline_chapters=settings.max_outline_chapters,
  )
  writer = ChapterWriter(
    seasons=seasons,
    books=books,
    agents=agents,
    client=client,
    policy=policy,
    economy=economy,
    queue=queue,
    sink=sink,
    clock=clock,
    limits=limits,
    heat_bonus=settings.chapter_heat_bonus,
    enqueue_readers=settings.readers_on_publish,
  )
  reconciler = CatchUpReconciler(seasons=seasons, books=books, outlines=outlines, writer=writer)
  reader_policy = ReaderPolicy(
    top_k=settings.reader_top_k,
    agents_per_chapter=settings.reader_agents_per_chapter,
    rating_threshold=settings.reader_rating_threshold,
    gift_rating=settings.reader_gift_rating,
    content_chars=settings.reader_content_chars,
  )
  dispatcher = ReaderDispatcher(books=books, agents=agents, client=client, retry_policy=policy, scores=scores, economy=economy, sink=sink, clock=clock, limits=limits, policy=reader_policy)

  registry = build_registry(outlines=outlines, writer=writer, reconciler=reconciler, dispatcher=dispatcher, scores=scores, books=books, queue=queue)
  worker = TaskWorker(
    queue=queue,
    registry=registry,
    lock=lock,
    clock=clock,
    lease=timedelta(seconds=settings.task_lease_seconds),
    stale_after=timedelta(seconds=settings.stale_task_seconds),
    poll_seconds=settings.worker_poll_seconds,
    terminate_stale_holder=settings.terminate_stale_lock_holder,
  )
  scheduler = RoundScheduler(seasons=seasons, books=books, queue=queue, sink=sink, clock=clock, grace=timedelta(seconds=settings.phase_grace_seconds), interval_seconds=settings.scheduler_interval_seconds)

  logger.info("Engine built handlers=%s db_concurrency=%d llm_concurrency=%d", registry.task_types, limits.db_concurrency, limits.llm_concurrency)
  return Engine(
    settings=settings,
    clock=clock,
    sink=sink,
    seasons=seasons,
    books=books,
    agents=agents,
    queue=queue,
    economy=economy,
    scores=scores,
    outlines=outlines,
    writer=writer,
    reconciler=reconciler,
    dispatcher=dispatcher,
    registry=registry,
    worker=worker,
    scheduler=scheduler,
  )
