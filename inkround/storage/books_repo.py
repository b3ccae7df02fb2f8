"""Storage interfaces for books, their versioned outlines and chapters."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import Literal, Protocol

BookStatus = Literal["ACTIVE", "COMPLETED"]


@dataclass(frozen=True)
class BookRecord:
  id: str
  season_id: str
  author_id: str
  title: str
  status: BookStatus
  chapter_count: int
  max_chapters: int
  created_at: datetime
  zone_style: str | None = None
  synopsis: str | None = None
  heat: float = 0.0
  final_score: float = 0.0
  view_count: int = 0
  like_count: int = 0
  favorite_count: int = 0
  coin_count: int = 0
  comment_count: int = 0
  completion_rate: float = 0.0


@dataclass(frozen=True)
class ChapterPlanRecord:
  """One versioned entry of a book's chapter plan."""

  book_id: str
  chapter_number: int
  version: int
  title: str
  summary: str
  key_events: list[str] = field(default_factory=list)
  word_count_target: int = 2000
  created_at: datetime | None = None


@dataclass(frozen=True)
class BookOutlineRecord:
  """One version of a book's whole-book outline."""

  book_id: str
  version: int
  summary: str
  characters: list[dict[str, str]] = field(default_factory=list)
  themes: list[str] = field(default_factory=list)
  tone: str | None = None
  reason: str | None = None
  created_at: datetime | None = None


@dataclass(frozen=True)
class NewChapterPlan:
  chapter_number: int
  title: str
  summary: str = ""
  key_events: list[str] = field(default_factory=list)
  word_count_target: int = 2000


@dataclass(frozen=True)
class ChapterRecord:
  id: str
  book_id: str
  chapter_number: int
  title: str
  content: str
  published_at: datetime
  comment_count: int = 0


@dataclass(frozen=True)
class ScoreUpdate:
  """Aggregate values written back after a score recomputation."""

  avg_rating: float
  avg_sentiment: float
  reader_count: int
  interaction_score: float
  sentiment_score: float
  final_score: float
  heat: float


class BooksRepository(Protocol):
  """Repository contract for book, outline and chapter persistence."""

  async def create_book(self, record: BookRecord) -> None:
    """Persist a new book."""

  async def get_book(self, book_id: str) -> BookRecord | None:
    """Fetch a book by identifier."""

  async def list_books(self, season_id: str, *, status: BookStatus | None = None, book_ids: list[str] | None = None) -> list[BookRecord]:
    """List a season's books, optionally filtered."""

  async def top_books_by_heat(self, season_id: str, *, limit: int) -> list[BookRecord]:
    """Return the hottest books of a season."""

  async def chapter_numbers(self, book_ids: list[str]) -> dict[str, set[int]]:
    """Return the persisted chapter numbers per book."""

  async def latest_chapter_number(self, season_id: str) -> int | None:
    """Return the highest published chapter number in a season."""

  async def get_chapter(self, book_id: str, chapter_number: int) -> ChapterRecord | None:
    """Fetch one chapter by its number."""

  async def get_chapter_by_id(self, chapter_id: str) -> ChapterRecord | None:
    """Fetch one chapter by identifier."""

  async def recent_chapters(self, book_id: str, *, before: int, limit: int) -> list[ChapterRecord]:
    """Return up to `limit` chapters numbered below `before`, oldest first."""

  async def current_plan(self, book_id: str) -> list[ChapterPlanRecord]:
    """Return the latest plan version for every chapter number, ordered by number."""

  async def plan_history(self, book_id: str, chapter_number: int) -> list[ChapterPlanRecord]:
    """Return every version of one chapter's plan, oldest first."""

  async def latest_outline(self, book_id: str) -> BookOutlineRecord | None:
    """Return the newest whole-book outline version."""

  async def save_outline(self, book_id: str, *, summary: str, characters: list[dict[str, str]], themes: list[str], tone: str | None, plans: list[NewChapterPlan], reason: str, now: datetime) -> BookOutlineRecord:
    """Append a new outline version and new plan versions atomically."""

  async def add_chapter_plan(self, book_id: str, plan: NewChapterPlan, *, now: datetime) -> ChapterPlanRecord:
    """Append a new version of one chapter's plan."""

  async def insert_chapter(self, book_id: str, *, chapter_number: int, title: str, content: str, heat_bonus: float, now: datetime) -> ChapterRecord | None:
    """Insert a chapter and bump book counters; None when the number already exists."""

  async def apply_scores(self, book_id: str, scores: ScoreUpdate) -> None:
    """Write recomputed aggregates."""
