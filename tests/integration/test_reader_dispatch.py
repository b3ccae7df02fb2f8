"""Integration tests for reader agent dispatch, rewards and gifts."""

from __future__ import annotations

import random

import pytest
from helpers import START, FakeClock, RecordingSink, ScriptedClient, Seeder, feedback_json

from inkround.ai.backoff import RetryPolicy
from inkround.pipeline.engine import PipelineLimits
from inkround.services.economy import EconomyService
from inkround.services.reader_dispatch import ReaderDispatcher, ReaderPolicy
from inkround.services.scoring import ScoreService
from inkround.storage.agents_repo import CommentRecord
from inkround.storage.postgres_agents_repo import PostgresAgentsRepository
from inkround.storage.postgres_books_repo import PostgresBooksRepository

READER = {"enabled": True, "comment_probability": 1.0}


async def _agent_ink(agents_repo: PostgresAgentsRepository, agent_id: str) -> int:
  agent = await agents_repo.get_agent(agent_id)
  assert agent is not None
  return agent.ink_balance


@pytest.mark.anyio
async def test_round_dispatch_never_assigns_the_author(dispatcher: ReaderDispatcher, seed: Seeder, client: ScriptedClient, sink: RecordingSink) -> None:
  await seed.season()
  await seed.agent("author", reader=READER)
  await seed.agent("r1", reader=READER)
  await seed.agent("r2", reader=READER)
  await seed.agent("lurker", reader={"enabled": False})
  await seed.book("b1", author_id="author")
  chapter = await seed.chapter("b1", 1)

  report = await dispatcher.dispatch_round("season-1", 1)

  assert report.chapters == 1
  assert report.assigned == 2
  assert len(report.comments) == 2
  assert sorted(client.contexts("reader")) == [f"reader:r1:{chapter.id}", f"reader:r2:{chapter.id}"]
  assert sink.topics().count("new_comment") == 2
  assert "heat_update" in sink.topics()


@pytest.mark.anyio
async def test_prior_ai_commenters_are_excluded_but_humans_are_not(dispatcher: ReaderDispatcher, seed: Seeder, agents_repo: PostgresAgentsRepository, books_repo: PostgresBooksRepository) -> None:
  await seed.season()
  await seed.agent("author")
  await seed.agent("bot", reader=READER)
  await seed.agent("fresh", reader=READER)
  await seed.agent("person", reader=READER, is_human=True)
  book = await seed.book("b1", author_id="author")
  chapter = await seed.chapter("b1", 1)
  for agent_id, is_human in (("bot", False), ("person", True)):
    await agents_repo.insert_comment(CommentRecord(id=f"c-{agent_id}", book_id="b1", chapter_id=chapter.id, agent_id=agent_id, content="Already said my piece here.", created_at=START, is_human=is_human))

  readers = await agents_repo.list_reader_agents()
  selected = await dispatcher.select_readers(book, chapter, readers)

  assert sorted(reader.id for reader in selected) == ["fresh", "person"]
  refreshed = await books_repo.get_chapter_by_id(chapter.id)
  assert refreshed is not None and refreshed.comment_count == 2


@pytest.mark.anyio
async def test_low_ratings_are_discarded_without_reward(dispatcher: ReaderDispatcher, seed: Seeder, client: ScriptedClient, agents_repo: PostgresAgentsRepository, sink: RecordingSink) -> None:
  client.respond = lambda request: feedback_json(2, comment="Did not land for me at all.")
  await seed.season()
  await seed.agent("author")
  await seed.agent("r1", ink=10, reader=READER)
  await seed.book("b1", author_id="author")
  chapter = await seed.chapter("b1", 1)

  report = await dispatcher.dispatch_chapter(chapter.id)

  assert report.assigned == 1
  assert report.discarded == 1
  assert report.comments == []
  assert await agents_repo.commenter_ids(chapter.id) == set()
  assert await _agent_ink(agents_repo, "r1") == 10
  assert sink.events == []


@pytest.mark.anyio
async def test_reward_tier_follows_the_rating(dispatcher: ReaderDispatcher, seed: Seeder, agents_repo: PostgresAgentsRepository) -> None:
  await seed.season()
  await seed.agent("author")
  await seed.agent("r1", ink=10, reader=READER)
  await seed.book("b1", author_id="author")
  chapter = await seed.chapter("b1", 1)

  report = await dispatcher.dispatch_chapter(chapter.id)

  assert len(report.comments) == 1
  assert await _agent_ink(agents_repo, "r1") == 12
  (comment,) = await agents_repo.list_chapter_comments(chapter.id, limit=5)
  assert comment.rating == 7
  assert comment.sentiment == pytest.approx(0.4)
  assert comment.content.startswith("Loved the pacing")


@pytest.mark.anyio
async def test_high_rating_sends_a_gift(dispatcher: ReaderDispatcher, seed: Seeder, client: ScriptedClient, agents_repo: PostgresAgentsRepository, books_repo: PostgresBooksRepository) -> None:
  client.respond = lambda request: feedback_json(9)
  await seed.season()
  await seed.agent("author", ink=0)
  await seed.agent("fan", ink=10, reader={**READER, "auto_gift": True, "gift_amount": 2})
  await seed.book("b1", author_id="author")
  chapter = await seed.chapter("b1", 1)

  await dispatcher.dispatch_chapter(chapter.id)

  assert await _agent_ink(agents_repo, "fan") == 10 + 3 - 2
  assert await _agent_ink(agents_repo, "author") == 2
  book = await books_repo.get_book("b1")
  assert book is not None and book.coin_count == 2


@pytest.mark.anyio
async def test_gift_the_reader_cannot_afford_is_skipped(dispatcher: ReaderDispatcher, seed: Seeder, client: ScriptedClient, agents_repo: PostgresAgentsRepository) -> None:
  client.respond = lambda request: feedback_json(10)
  await seed.season()
  await seed.agent("author", ink=0)
  await seed.agent("fan", ink=0, reader={**READER, "auto_gift": True, "gift_amount": 5})
  await seed.book("b1", author_id="author")
  chapter = await seed.chapter("b1", 1)

  report = await dispatcher.dispatch_chapter(chapter.id)

  assert len(report.comments) == 1
  assert report.failed == 0
  assert await _agent_ink(agents_repo, "fan") == 3
  assert await _agent_ink(agents_repo, "author") == 0


@pytest.mark.anyio
async def test_only_top_books_by_heat_get_readers(
  seed: Seeder,
  books_repo: PostgresBooksRepository,
  agents_repo: PostgresAgentsRepository,
  client: ScriptedClient,
  fast_policy: RetryPolicy,
  scores: ScoreService,
  economy: EconomyService,
  sink: RecordingSink,
  clock: FakeClock,
  limits: PipelineLimits,
) -> None:
  dispatcher = ReaderDispatcher(
    books=books_repo,
    agents=agents_repo,
    client=client,
    retry_policy=fast_policy,
    scores=scores,
    economy=economy,
    sink=sink,
    clock=clock,
    limits=limits,
    policy=ReaderPolicy(top_k=1),
    rng=random.Random(3),
  )
  await seed.season()
  await seed.agent("author")
  await seed.agent("r1", reader=READER)
  await seed.book("hot", author_id="author", heat=500)
  await seed.book("cold", author_id="author", heat=0)
  hot_chapter = await seed.chapter("hot", 1)
  cold_chapter = await seed.chapter("cold", 1)

  skipped = await dispatcher.dispatch_chapter(cold_chapter.id)
  report = await dispatcher.dispatch_round("season-1", 1)

  assert skipped.as_dict() == {"chapters": 0, "assigned": 0, "comments": 0, "discarded": 0, "skipped": 0, "failed": 0}
  assert report.chapters == 1
  assert client.contexts("reader") == [f"reader:r1:{hot_chapter.id}"]
