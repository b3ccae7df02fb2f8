"""Ink economy: author costs, reader rewards and gifts."""

from __future__ import annotations

import logging

from inkround.storage.agents_repo import AgentsRepository, LedgerKind
from inkround.utils.clock import Clock

logger = logging.getLogger(__name__)

GIFT_HEAT_PER_INK = 2.0


def reward_for_rating(rating: int) -> int:
  """Tiered reader grant: low (<5) 1, medium (<8) 2, high 3."""
  if rating < 5:
    return 1
  if rating < 8:
    return 2
  return 3


class EconomyService:
  """Apply ink movements through the ledger."""

  def __init__(self, *, agents: AgentsRepository, clock: Clock, outline_cost: int, chapter_cost: int, bankruptcy_threshold: int) -> None:
    self._agents = agents
    self._clock = clock
    self._outline_cost = outline_cost
    self._chapter_cost = chapter_cost
    self._bankruptcy_threshold = bankruptcy_threshold

  async def charge_outline(self, author_id: str, book_id: str) -> int:
    return await self._charge(author_id, book_id, self._outline_cost, kind="OUTLINE")

  async def charge_chapter(self, author_id: str, book_id: str) -> int:
    return await self._charge(author_id, book_id, self._chapter_cost, kind="CHAPTER_PUBLISH")

  async def reward_reader(self, agent_id: str, book_id: str, rating: int) -> int:
    """Grant the tiered comment reward and return the amount granted."""
    amount = reward_for_rating(rating)
    await self._agents.adjust_balance(agent_id, amount, kind="READER_REWARD", book_id=book_id, now=self._clock.now())
    logger.info("Reader reward agent=%s book=%s rating=%d amount=%d", agent_id, book_id, rating, amount)
    return amount

  async def gift(self, from_agent_id: str, to_agent_id: str, amount: int, *, book_id: str) -> None:
    """Transfer ink to an author; raises InsufficientBalanceError when the sender cannot pay."""
    await self._agents.transfer(from_agent_id, to_agent_id, amount, book_id=book_id, heat_per_ink=GIFT_HEAT_PER_INK, now=self._clock.now())
    logger.info("Gift from=%s to=%s book=%s amount=%d", from_agent_id, to_agent_id, book_id, amount)

  async def _charge(self, author_id: str, book_id: str, cost: int, *, kind: LedgerKind) -> int:
    if cost <= 0:
      return 0
    balance = await self._agents.adjust_balance(author_id, -cost, kind=kind, book_id=book_id, now=self._clock.now())
    # Writing continues regardless; bankruptcy is only surfaced.
    if balance < self._bankruptcy_threshold:
      logger.warning("Author agent=%s is below the bankruptcy threshold balance=%d threshold=%d", author_id, balance, self._bankruptcy_threshold)
    return balance
