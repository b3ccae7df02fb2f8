from __future__ import annotations

from datetime import datetime

from sqlalchemy import JSON, Boolean, DateTime, Float, ForeignKey, Index, Integer, String, Text, UniqueConstraint, func
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import Mapped, mapped_column

from inkround.core.database import Base

# JSONB on Postgres, plain JSON elsewhere.
JSONType = JSON().with_variant(JSONB(), "postgresql")


class Task(Base):
  __tablename__ = "tasks"
  __table_args__ = (Index("ix_tasks_claim_order", "status", "priority", "created_at"),)

  id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
  task_type: Mapped[str] = mapped_column(String, nullable=False, index=True)
  payload: Mapped[dict] = mapped_column(JSONType, nullable=False, default=dict)
  status: Mapped[str] = mapped_column(String, nullable=False, default="PENDING")
  priority: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
  attempts: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
  max_attempts: Mapped[int] = mapped_column(Integer, nullable=False, default=3)
  error_message: Mapped[str | None] = mapped_column(Text, nullable=True)
  step: Mapped[str | None] = mapped_column(String, nullable=True)
  step_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
  heartbeat_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
  started_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
  completed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
  created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
  updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)


class Season(Base):
  __tablename__ = "seasons"

  id: Mapped[str] = mapped_column(String, primary_key=True)
  theme_keyword: Mapped[str] = mapped_column(String, nullable=False)
  constraints: Mapped[list] = mapped_column(JSONType, nullable=False, default=list)
  zone_styles: Mapped[list] = mapped_column(JSONType, nullable=False, default=list)
  current_round: Mapped[int] = mapped_column(Integer, nullable=False, default=1)
  round_phase: Mapped[str] = mapped_column(String, nullable=False, default="NONE")
  round_start_time: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
  reading_minutes: Mapped[int] = mapped_column(Integer, nullable=False, default=10)
  outline_minutes: Mapped[int] = mapped_column(Integer, nullable=False, default=5)
  writing_minutes: Mapped[int] = mapped_column(Integer, nullable=False, default=10)
  max_rounds: Mapped[int] = mapped_column(Integer, nullable=False, default=7)
  status: Mapped[str] = mapped_column(String, nullable=False, default="ACTIVE", index=True)
  start_time: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
  end_time: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)


class Agent(Base):
  __tablename__ = "agents"

  id: Mapped[str] = mapped_column(String, primary_key=True)
  nickname: Mapped[str] = mapped_column(String, nullable=False)
  is_human: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
  ink_balance: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
  author_config: Mapped[dict] = mapped_column(JSONType, nullable=False, default=dict)
  reader_config: Mapped[dict] = mapped_column(JSONType, nullable=False, default=dict)


class Book(Base):
  __tablename__ = "books"

  id: Mapped[str] = mapped_column(String, primary_key=True)
  season_id: Mapped[str] = mapped_column(ForeignKey("seasons.id", ondelete="CASCADE"), nullable=False, index=True)
  author_id: Mapped[str] = mapped_column(ForeignKey("agents.id"), nullable=False, index=True)
  title: Mapped[str] = mapped_column(String, nullable=False)
  zone_style: Mapped[str | None] = mapped_column(String, nullable=True)
  synopsis: Mapped[str | None] = mapped_column(Text, nullable=True)
  status: Mapped[str] = mapped_column(String, nullable=False, default="ACTIVE", index=True)
  chapter_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
  max_chapters: Mapped[int] = mapped_column(Integer, nullable=False, default=7)
  view_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
  like_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
  favorite_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
  coin_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
  comment_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
  completion_rate: Mapped[float] = mapped_column(Float, nullable=False, default=0.0)
  avg_rating: Mapped[float] = mapped_column(Float, nullable=False, default=0.0)
  avg_sentiment: Mapped[float] = mapped_column(Float, nullable=False, default=0.0)
  reader_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
  interaction_score: Mapped[float] = mapped_column(Float, nullable=False, default=0.0)
  sentiment_score: Mapped[float] = mapped_column(Float, nullable=False, default=0.0)
  final_score: Mapped[float] = mapped_column(Float, nullable=False, default=0.0)
  heat: Mapped[float] = mapped_column(Float, nullable=False, default=0.0, index=True)
  created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, server_default=func.now())


class BookOutline(Base):
  __tablename__ = "book_outlines"
  __table_args__ = (UniqueConstraint("book_id", "version", name="ux_book_outlines_book_version"),)

  id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
  book_id: Mapped[str] = mapped_column(ForeignKey("books.id", ondelete="CASCADE"), nullable=False, index=True)
  version: Mapped[int] = mapped_column(Integer, nullable=False)
  summary: Mapped[str] = mapped_column(Text, nullable=False, default="")
  characters: Mapped[list] = mapped_column(JSONType, nullable=False, default=list)
  themes: Mapped[list] = mapped_column(JSONType, nullable=False, default=list)
  tone: Mapped[str | None] = mapped_column(String, nullable=True)
  reason: Mapped[str | None] = mapped_column(String, nullable=True)
  created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)


class ChapterPlan(Base):
  __tablename__ = "chapter_plans"
  __table_args__ = (UniqueConstraint("book_id", "chapter_number", "version", name="ux_chapter_plans_book_number_version"),)

  id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
  book_id: Mapped[str] = mapped_column(ForeignKey("books.id", ondelete="CASCADE"), nullable=False, index=True)
  chapter_number: Mapped[int] = mapped_column(Integer, nullable=False)
  version: Mapped[int] = mapped_column(Integer, nullable=False, default=1)
  title: Mapped[str] = mapped_column(String, nullable=False)
  summary: Mapped[str] = mapped_column(Text, nullable=False, default="")
  key_events: Mapped[list] = mapped_column(JSONType, nullable=False, default=list)
  word_count_target: Mapped[int] = mapped_column(Integer, nullable=False, default=2000)
  created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)


class Chapter(Base):
  __tablename__ = "chapters"
  __table_args__ = (UniqueConstraint("book_id", "chapter_number", name="ux_chapters_book_number"),)

  id: Mapped[str] = mapped_column(String, primary_key=True)
  book_id: Mapped[str] = mapped_column(ForeignKey("books.id", ondelete="CASCADE"), nullable=False, index=True)
  chapter_number: Mapped[int] = mapped_column(Integer, nullable=False)
  title: Mapped[str] = mapped_column(String, nullable=False)
  content: Mapped[str] = mapped_column(Text, nullable=False)
  content_length: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
  status: Mapped[str] = mapped_column(String, nullable=False, default="PUBLISHED")
  comment_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
  published_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)


class Comment(Base):
  __tablename__ = "comments"

  id: Mapped[str] = mapped_column(String, primary_key=True)
  book_id: Mapped[str] = mapped_column(ForeignKey("books.id", ondelete="CASCADE"), nullable=False, index=True)
  chapter_id: Mapped[str] = mapped_column(ForeignKey("chapters.id", ondelete="CASCADE"), nullable=False, index=True)
  agent_id: Mapped[str] = mapped_column(ForeignKey("agents.id"), nullable=False, index=True)
  is_human: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
  content: Mapped[str] = mapped_column(Text, nullable=False)
  rating: Mapped[int | None] = mapped_column(Integer, nullable=True)
  sentiment: Mapped[float | None] = mapped_column(Float, nullable=True)
  praise: Mapped[str | None] = mapped_column(Text, nullable=True)
  critique: Mapped[str | None] = mapped_column(Text, nullable=True)
  will_continue: Mapped[bool | None] = mapped_column(Boolean, nullable=True)
  created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)


class LedgerEntry(Base):
  __tablename__ = "ledger_entries"

  id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
  agent_id: Mapped[str] = mapped_column(ForeignKey("agents.id"), nullable=False, index=True)
  book_id: Mapped[str | None] = mapped_column(ForeignKey("books.id", ondelete="SET NULL"), nullable=True, index=True)
  kind: Mapped[str] = mapped_column(String, nullable=False)
  amount: Mapped[int] = mapped_column(Integer, nullable=False)
  created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
