"""Postgres-backed repository for agents, comments and the ink ledger using SQLAlchemy."""

from __future__ import annotations

from datetime import datetime

from sqlalchemy import case, distinct, func, select, update
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from inkround.schema.sql import Agent, Book, Chapter, Comment, LedgerEntry
from inkround.storage.agents_repo import AgentRecord, AgentsRepository, AuthorConfig, CommentAggregates, CommentRecord, InsufficientBalanceError, LedgerKind, ReaderConfig
from inkround.utils.clock import as_utc


class PostgresAgentsRepository(AgentsRepository):
  """Persist agents, their comments and ledger movements."""

  def __init__(self, session_factory: async_sessionmaker[AsyncSession]) -> None:
    self._session_factory = session_factory

  async def create_agent(self, record: AgentRecord) -> None:
    author = {"writing_style": record.author.writing_style, "personality": record.author.personality, "max_chapters": record.author.max_chapters, "word_count_target": record.author.word_count_target}
    reader = {
      "enabled": record.reader.enabled,
      "comment_probability": record.reader.comment_probability,
      "auto_gift": record.reader.auto_gift,
      "gift_amount": record.reader.gift_amount,
      "personality": record.reader.personality,
      "preferred_genres": list(record.reader.preferred_genres),
    }
    async with self._session_factory() as session:
      session.add(Agent(id=record.id, nickname=record.nickname, is_human=record.is_human, ink_balance=record.ink_balance, author_config=author, reader_config=reader))
      await session.commit()

  async def get_agent(self, agent_id: str) -> AgentRecord | None:
    async with self._session_factory() as session:
      row = await session.get(Agent, agent_id)
      return None if row is None else self._agent_to_record(row)

  async def list_reader_agents(self) -> list[AgentRecord]:
    # Reader settings live in a JSON document, so the enabled filter runs here.
    async with self._session_factory() as session:
      rows = (await session.execute(select(Agent).order_by(Agent.id.asc()))).scalars().all()
      records = [self._agent_to_record(row) for row in rows]
    return [record for record in records if record.reader.enabled]

  async def commenter_ids(self, chapter_id: str) -> set[str]:
    async with self._session_factory() as session:
      result = await session.execute(select(distinct(Comment.agent_id)).where(Comment.chapter_id == chapter_id))
      return {str(agent_id) for agent_id in result.scalars().all()}

  async def list_chapter_comments(self, chapter_id: str, *, limit: int) -> list[CommentRecord]:
    stmt = select(Comment).where(Comment.chapter_id == chapter_id).order_by(Comment.created_at.desc()).limit(limit)
    async with self._session_factory() as session:
      rows = (await session.execute(stmt)).scalars().all()
      return [self._comment_to_record(row) for row in rows]

  async def insert_comment(self, record: CommentRecord) -> CommentRecord:
    async with self._session_factory() as session:
      session.add(
        Comment(
          id=record.id,
          book_id=record.book_id,
          chapter_id=record.chapter_id,
          agent_id=record.agent_id,
          is_human=record.is_human,
          content=record.content,
          rating=record.rating,
          sentiment=record.sentiment,
          praise=record.praise,
          critique=record.critique,
          will_continue=record.will_continue,
          created_at=record.created_at,
        )
      )
      await session.execute(update(Chapter).where(Chapter.id == record.chapter_id).values(comment_count=Chapter.comment_count + 1).execution_options(synchronize_session=False))
      await session.execute(update(Book).where(Book.id == record.book_id).values(comment_count=Book.comment_count + 1).execution_options(synchronize_session=False))
      await session.commit()
    return record

  async def comment_aggregates(self, book_id: str) -> CommentAggregates:
    stmt = select(
      func.count(Comment.id),
      func.avg(Comment.rating),
      func.avg(Comment.sentiment),
      func.count(distinct(Comment.agent_id)),
      func.avg(case((Comment.will_continue.is_(True), 1.0), else_=0.0)),
    ).where(Comment.book_id == book_id, Comment.rating.is_not(None))
    async with self._session_factory() as session:
      count, avg_rating, avg_sentiment, readers, will_continue = (await session.execute(stmt)).one()
    return CommentAggregates(count=int(count or 0), avg_rating=float(avg_rating or 0.0), avg_sentiment=float(avg_sentiment or 0.0), reader_count=int(readers or 0), will_continue_ratio=float(will_continue or 0.0))

  async def adjust_balance(self, agent_id: str, amount: int, *, kind: LedgerKind, book_id: str | None, now: datetime) -> int:
    async with self._session_factory() as session:
      result = await session.execute(update(Agent).where(Agent.id == agent_id).values(ink_balance=Agent.ink_balance + amount).returning(Agent.ink_balance).execution_options(synchronize_session=False))
      balance = result.scalar()
      if balance is None:
        await session.rollback()
        raise LookupError(f"Agent {agent_id} not found")
      session.add(LedgerEntry(agent_id=agent_id, book_id=book_id, kind=kind, amount=amount, created_at=now))
      await session.commit()
      return int(balance)

  async def transfer(self, from_agent_id: str, to_agent_id: str, amount: int, *, book_id: str, heat_per_ink: float, now: datetime) -> None:
    if amount <= 0:
      raise ValueError("Transfer amount must be positive.")
    async with self._session_factory() as session:
      # The guarded decrement both checks and debits, so concurrent gifts cannot overdraw.
      debit = await session.execute(update(Agent).where(Agent.id == from_agent_id, Agent.ink_balance >= amount).values(ink_balance=Agent.ink_balance - amount).execution_options(synchronize_session=False))
      if not debit.rowcount:
        await session.rollback()
        raise InsufficientBalanceError(f"Agent {from_agent_id} cannot cover a transfer of {amount}")
      await session.execute(update(Agent).where(Agent.id == to_agent_id).values(ink_balance=Agent.ink_balance + amount).execution_options(synchronize_session=False))
      await session.execute(update(Book).where(Book.id == book_id).values(coin_count=Book.coin_count + amount, heat=Book.heat + amount * heat_per_ink).execution_options(synchronize_session=False))
      session.add_all(
        [
          LedgerEntry(agent_id=from_agent_id, book_id=book_id, kind="GIFT_SENT", amount=-amount, created_at=now),
          LedgerEntry(agent_id=to_agent_id, book_id=book_id, kind="GIFT_RECEIVED", amount=amount, created_at=now),
        ]
      )
      await session.commit()

  @staticmethod
  def _agent_to_record(row: Agent) -> AgentRecord:
    return AgentRecord(id=row.id, nickname=row.nickname, is_human=row.is_human, ink_balance=row.ink_balance, author=AuthorConfig.from_json(row.author_config), reader=ReaderConfig.from_json(row.reader_config))

  @staticmethod
  def _comment_to_record(row: Comment) -> CommentRecord:
    return CommentRecord(
      id=row.id,
      book_id=row.book_id,
      chapter_id=row.chapter_id,
      agent_id=row.agent_id,
      content=row.content,
      created_at=as_utc(row.created_at),  # type: ignore[arg-type]
      is_human=row.is_human,
      rating=row.rating,
      sentiment=row.sentiment,
      praise=row.praise,
      critique=row.critique,
      will_continue=row.will_continue,
    )
