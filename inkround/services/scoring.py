"""Book score and heat recomputation."""

from __future__ import annotations

import logging
from datetime import datetime, timedelta

from inkround.storage.agents_repo import AgentsRepository, CommentAggregates
from inkround.storage.books_repo import BookRecord, BooksRepository, ScoreUpdate
from inkround.utils.clock import Clock

logger = logging.getLogger(__name__)

VIEW_WEIGHT = 1.0
FAVORITE_WEIGHT = 2.0
LIKE_WEIGHT = 1.5
COIN_WEIGHT = 3.0
COMPLETION_BONUS = 1.2
COMPLETED_BONUS = 50.0

_DECAY_BANDS = ((timedelta(hours=6), 1.0), (timedelta(hours=24), 0.9), (timedelta(hours=72), 0.7), (timedelta(hours=168), 0.5))


def interaction_score(book: BookRecord) -> float:
  base = book.view_count * VIEW_WEIGHT + book.favorite_count * FAVORITE_WEIGHT + book.like_count * LIKE_WEIGHT + book.coin_count * COIN_WEIGHT
  return base * (COMPLETION_BONUS if book.completion_rate > 0.8 else 1.0)


def sentiment_score(aggregates: CommentAggregates) -> float:
  return aggregates.avg_sentiment * 100 * 1.5 + aggregates.avg_rating + aggregates.will_continue_ratio * 2


def time_decay(published_at: datetime | None, now: datetime) -> float:
  """Decay factor by age of the latest published chapter."""
  if published_at is None:
    return 1.0
  age = now - published_at
  for limit, factor in _DECAY_BANDS:
    if age < limit:
      return factor
  return 0.3


class ScoreService:
  """Recompute a book's aggregate scores from its counters and rated comments."""

  def __init__(self, *, books: BooksRepository, agents: AgentsRepository, clock: Clock) -> None:
    self._books = books
    self._agents = agents
    self._clock = clock

  async def recalculate(self, book_id: str) -> ScoreUpdate | None:
    book = await self._books.get_book(book_id)
    if book is None:
      logger.warning("Score recalculation skipped: book %s not found", book_id)
      return None

    aggregates = await self._agents.comment_aggregates(book_id)
    latest = await self._books.recent_chapters(book_id, before=book.max_chapters + 1, limit=1)
    interaction = interaction_score(book)
    sentiment = sentiment_score(aggregates)
    final = interaction + sentiment + (COMPLETED_BONUS if book.status == "COMPLETED" else 0.0)
    heat = float(round(final * time_decay(latest[-1].published_at if latest else None, self._clock.now())))

    scores = ScoreUpdate(
      avg_rating=aggregates.avg_rating,
      avg_sentiment=aggregates.avg_sentiment,
      reader_count=aggregates.reader_count,
      interaction_score=interaction,
      sentiment_score=sentiment,
      final_score=final,
      heat=heat,
    )
    await self._books.apply_scores(book_id, scores)
    logger.info("Scores recalculated book=%s final=%.2f heat=%.0f", book_id, final, heat)
    return scores
