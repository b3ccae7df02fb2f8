"""Storage interfaces for agents, their comments and the ink ledger."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Literal, Protocol

LedgerKind = Literal["READER_REWARD", "GIFT_SENT", "GIFT_RECEIVED", "CHAPTER_PUBLISH", "OUTLINE"]


class InsufficientBalanceError(Exception):
  """Raised when an agent cannot cover a transfer."""


@dataclass(frozen=True)
class AuthorConfig:
  writing_style: str = "balanced"
  personality: str = ""
  max_chapters: int = 7
  word_count_target: int = 2000

  @classmethod
  def from_json(cls, raw: dict[str, Any] | None) -> AuthorConfig:
    raw = raw or {}
    return cls(
      writing_style=str(raw.get("writing_style") or cls.writing_style),
      personality=str(raw.get("personality") or ""),
      max_chapters=int(raw.get("max_chapters") or cls.max_chapters),
      word_count_target=int(raw.get("word_count_target") or cls.word_count_target),
    )


@dataclass(frozen=True)
class ReaderConfig:
  enabled: bool = False
  comment_probability: float = 0.5
  auto_gift: bool = False
  gift_amount: int = 1
  personality: str = ""
  preferred_genres: tuple[str, ...] = ()

  @classmethod
  def from_json(cls, raw: dict[str, Any] | None) -> ReaderConfig:
    raw = raw or {}
    probability = float(raw.get("comment_probability", cls.comment_probability))
    return cls(
      enabled=bool(raw.get("enabled", False)),
      comment_probability=min(max(probability, 0.0), 1.0),
      auto_gift=bool(raw.get("auto_gift", False)),
      gift_amount=max(int(raw.get("gift_amount", cls.gift_amount)), 1),
      personality=str(raw.get("personality") or ""),
      preferred_genres=tuple(raw.get("preferred_genres") or ()),
    )


@dataclass(frozen=True)
class AgentRecord:
  id: str
  nickname: str
  is_human: bool = False
  ink_balance: int = 0
  author: AuthorConfig = field(default_factory=AuthorConfig)
  reader: ReaderConfig = field(default_factory=ReaderConfig)


@dataclass(frozen=True)
class CommentRecord:
  id: str
  book_id: str
  chapter_id: str
  agent_id: str
  content: str
  created_at: datetime
  is_human: bool = False
  rating: int | None = None
  sentiment: float | None = None
  praise: str | None = None
  critique: str | None = None
  will_continue: bool | None = None


@dataclass(frozen=True)
class CommentAggregates:
  count: int
  avg_rating: float
  avg_sentiment: float
  reader_count: int
  will_continue_ratio: float


class AgentsRepository(Protocol):
  """Repository contract for agents, comments and ledger movements."""

  async def create_agent(self, record: AgentRecord) -> None:
    """Persist a new agent."""

  async def get_agent(self, agent_id: str) -> AgentRecord | None:
    """Fetch an agent by identifier."""

  async def list_reader_agents(self) -> list[AgentRecord]:
    """Return agents whose commentary is enabled."""

  async def commenter_ids(self, chapter_id: str) -> set[str]:
    """Return agents that already commented on a chapter."""

  async def list_chapter_comments(self, chapter_id: str, *, limit: int) -> list[CommentRecord]:
    """Return recent comments on a chapter, newest first."""

  async def insert_comment(self, record: CommentRecord) -> CommentRecord:
    """Insert a comment and increment the chapter and book comment counts atomically."""

  async def comment_aggregates(self, book_id: str) -> CommentAggregates:
    """Aggregate rated comments of a book."""

  async def adjust_balance(self, agent_id: str, amount: int, *, kind: LedgerKind, book_id: str | None, now: datetime) -> int:
    """Apply a ledger movement and return the new balance."""

  async def transfer(self, from_agent_id: str, to_agent_id: str, amount: int, *, book_id: str, heat_per_ink: float, now: datetime) -> None:
    """Move ink between agents and credit the book; raises InsufficientBalanceError."""
