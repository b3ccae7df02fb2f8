"""Pipeline fixtures wired against the per-test database and a scripted generative client."""

from __future__ import annotations

import random

import pytest
from helpers import FakeClock, RecordingSink, ScriptedClient, default_responder

from inkround.ai.backoff import RetryPolicy
from inkround.jobs.queue import TaskQueue
from inkround.pipeline.chapters import ChapterWriter
from inkround.pipeline.engine import PipelineLimits
from inkround.pipeline.outline import OutlinePipeline
from inkround.services.catch_up import CatchUpReconciler
from inkround.services.economy import EconomyService
from inkround.services.reader_dispatch import ReaderDispatcher, ReaderPolicy
from inkround.services.scoring import ScoreService
from inkround.storage.postgres_agents_repo import PostgresAgentsRepository
from inkround.storage.postgres_books_repo import PostgresBooksRepository
from inkround.storage.postgres_seasons_repo import PostgresSeasonsRepository


@pytest.fixture
def client() -> ScriptedClient:
  return ScriptedClient(default_responder)


@pytest.fixture
def outlines(
  seasons_repo: PostgresSeasonsRepository,
  books_repo: PostgresBooksRepository,
  agents_repo: PostgresAgentsRepository,
  client: ScriptedClient,
  fast_policy: RetryPolicy,
  economy: EconomyService,
  sink: RecordingSink,
  clock: FakeClock,
  limits: PipelineLimits,
) -> OutlinePipeline:
  return OutlinePipeline(seasons=seasons_repo, books=books_repo, agents=agents_repo, client=client, policy=fast_policy, economy=economy, sink=sink, clock=clock, limits=limits)


@pytest.fixture
def writer(
  seasons_repo: PostgresSeasonsRepository,
  books_repo: PostgresBooksRepository,
  agents_repo: PostgresAgentsRepository,
  client: ScriptedClient,
  fast_policy: RetryPolicy,
  economy: EconomyService,
  queue: TaskQueue,
  sink: RecordingSink,
  clock: FakeClock,
  limits: PipelineLimits,
) -> ChapterWriter:
  return ChapterWriter(seasons=seasons_repo, books=books_repo, agents=agents_repo, client=client, policy=fast_policy, economy=economy, queue=queue, sink=sink, clock=clock, limits=limits)


@pytest.fixture
def reconciler(seasons_repo: PostgresSeasonsRepository, books_repo: PostgresBooksRepository, outlines: OutlinePipeline, writer: ChapterWriter) -> CatchUpReconciler:
  return CatchUpReconciler(seasons=seasons_repo, books=books_repo, outlines=outlines, writer=writer)


@pytest.fixture
def scores(books_repo: PostgresBooksRepository, agents_repo: PostgresAgentsRepository, clock: FakeClock) -> ScoreService:
  return ScoreService(books=books_repo, agents=agents_repo, clock=clock)


@pytest.fixture
def reader_policy() -> ReaderPolicy:
  return ReaderPolicy(top_k=10, agents_per_chapter=3, rating_threshold=4, gift_rating=9)


@pytest.fixture
def dispatcher(
  books_repo: PostgresBooksRepository,
  agents_repo: PostgresAgentsRepository,
  client: ScriptedClient,
  fast_policy: RetryPolicy,
  scores: ScoreService,
  economy: EconomyService,
  sink: RecordingSink,
  clock: FakeClock,
  limits: PipelineLimits,
  reader_policy: ReaderPolicy,
) -> ReaderDispatcher:
  return ReaderDispatcher(
    books=books_repo,
    agents=agents_repo,
    client=client,
    retry_policy=fast_policy,
    scores=scores,
    economy=economy,
    sink=sink,
    clock=clock,
    limits=limits,
    policy=reader_policy,
    rng=random.Random(7),
  )
