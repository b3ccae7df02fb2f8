"""Postgres-backed repository for books, outlines and chapters using SQLAlchemy."""

from __future__ import annotations

from datetime import datetime

from sqlalchemy import func, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from inkround.schema.sql import Book, BookOutline, Chapter, ChapterPlan
from inkround.storage.books_repo import BookOutlineRecord, BookRecord, BooksRepository, BookStatus, ChapterPlanRecord, ChapterRecord, NewChapterPlan, ScoreUpdate
from inkround.utils.clock import as_utc
from inkround.utils.ids import generate_id


class PostgresBooksRepository(BooksRepository):
  """Persist books with versioned outline records and immutable chapter numbers."""

  def __init__(self, session_factory: async_sessionmaker[AsyncSession]) -> None:
    self._session_factory = session_factory

  async def create_book(self, record: BookRecord) -> None:
    async with self._session_factory() as session:
      session.add(
        Book(
          id=record.id,
          season_id=record.season_id,
          author_id=record.author_id,
          title=record.title,
          zone_style=record.zone_style,
          synopsis=record.synopsis,
          status=record.status,
          chapter_count=record.chapter_count,
          max_chapters=record.max_chapters,
          heat=record.heat,
          final_score=record.final_score,
          view_count=record.view_count,
          like_count=record.like_count,
          favorite_count=record.favorite_count,
          coin_count=record.coin_count,
          comment_count=record.comment_count,
          completion_rate=record.completion_rate,
          created_at=record.created_at,
        )
      )
      await session.commit()

  async def get_book(self, book_id: str) -> BookRecord | None:
    async with self._session_factory() as session:
      row = await session.get(Book, book_id)
      return None if row is None else self._book_to_record(row)

  async def list_books(self, season_id: str, *, status: BookStatus | None = None, book_ids: list[str] | None = None) -> list[BookRecord]:
    stmt = select(Book).where(Book.season_id == season_id)
    if status is not None:
      stmt = stmt.where(Book.status == status)
    if book_ids is not None:
      stmt = stmt.where(Book.id.in_(book_ids))
    stmt = stmt.order_by(Book.created_at.asc(), Book.id.asc())
    async with self._session_factory() as session:
      result = await session.execute(stmt)
      return [self._book_to_record(row) for row in result.scalars().all()]

  async def top_books_by_heat(self, season_id: str, *, limit: int) -> list[BookRecord]:
    stmt = select(Book).where(Book.season_id == season_id).order_by(Book.heat.desc(), Book.created_at.asc()).limit(limit)
    async with self._session_factory() as session:
      result = await session.execute(stmt)
      return [self._book_to_record(row) for row in result.scalars().all()]

  async def chapter_numbers(self, book_ids: list[str]) -> dict[str, set[int]]:
    numbers: dict[str, set[int]] = {book_id: set() for book_id in book_ids}
    if not book_ids:
      return numbers
    async with self._session_factory() as session:
      result = await session.execute(select(Chapter.book_id, Chapter.chapter_number).where(Chapter.book_id.in_(book_ids)))
      for book_id, number in result.all():
        numbers[book_id].add(int(number))
    return numbers

  async def latest_chapter_number(self, season_id: str) -> int | None:
    stmt = select(func.max(Chapter.chapter_number)).join(Book, Book.id == Chapter.book_id).where(Book.season_id == season_id)
    async with self._session_factory() as session:
      value = (await session.execute(stmt)).scalar()
      return None if value is None else int(value)

  async def get_chapter(self, book_id: str, chapter_number: int) -> ChapterRecord | None:
    stmt = select(Chapter).where(Chapter.book_id == book_id, Chapter.chapter_number == chapter_number)
    async with self._session_factory() as session:
      row = (await session.execute(stmt)).scalars().first()
      return None if row is None else self._chapter_to_record(row)

  async def get_chapter_by_id(self, chapter_id: str) -> ChapterRecord | None:
    async with self._session_factory() as session:
      row = await session.get(Chapter, chapter_id)
      return None if row is None else self._chapter_to_record(row)

  async def recent_chapters(self, book_id: str, *, before: int, limit: int) -> list[ChapterRecord]:
    stmt = select(Chapter).where(Chapter.book_id == book_id, Chapter.chapter_number < before).order_by(Chapter.chapter_number.desc()).limit(limit)
    async with self._session_factory() as session:
      rows = (await session.execute(stmt)).scalars().all()
      return [self._chapter_to_record(row) for row in reversed(rows)]

  async def current_plan(self, book_id: str) -> list[ChapterPlanRecord]:
    latest: dict[int, ChapterPlanRecord] = {}
    for record in await self._all_plans(book_id):
      latest[record.chapter_number] = record
    return [latest[number] for number in sorted(latest)]

  async def plan_history(self, book_id: str, chapter_number: int) -> list[ChapterPlanRecord]:
    return [record for record in await self._all_plans(book_id) if record.chapter_number == chapter_number]

  async def latest_outline(self, book_id: str) -> BookOutlineRecord | None:
    stmt = select(BookOutline).where(BookOutline.book_id == book_id).order_by(BookOutline.version.desc()).limit(1)
    async with self._session_factory() as session:
      row = (await session.execute(stmt)).scalars().first()
      return None if row is None else self._outline_to_record(row)

  async def save_outline(self, book_id: str, *, summary: str, characters: list[dict[str, str]], themes: list[str], tone: str | None, plans: list[NewChapterPlan], reason: str, now: datetime) -> BookOutlineRecord:
    async with self._session_factory() as session:
      current = (await session.execute(select(func.max(BookOutline.version)).where(BookOutline.book_id == book_id))).scalar() or 0
      outline = BookOutline(book_id=book_id, version=int(current) + 1, summary=summary, characters=characters, themes=themes, tone=tone, reason=reason, created_at=now)
      session.add(outline)
      versions = await self._plan_versions(session, book_id)
      for plan in plans:
        session.add(self._plan_model(book_id, plan, version=versions.get(plan.chapter_number, 0) + 1, now=now))
      await session.execute(update(Book).where(Book.id == book_id).values(synopsis=summary).execution_options(synchronize_session=False))
      await session.commit()
      return self._outline_to_record(outline)

  async def add_chapter_plan(self, book_id: str, plan: NewChapterPlan, *, now: datetime) -> ChapterPlanRecord:
    async with self._session_factory() as session:
      versions = await self._plan_versions(session, book_id)
      row = self._plan_model(book_id, plan, version=versions.get(plan.chapter_number, 0) + 1, now=now)
      session.add(row)
      await session.commit()
      return self._plan_to_record(row)

  async def insert_chapter(self, book_id: str, *, chapter_number: int, title: str, content: str, heat_bonus: float, now: datetime) -> ChapterRecord | None:
    async with self._session_factory() as session:
      book = await session.get(Book, book_id)
      if book is None:
        raise LookupError(f"Book {book_id} not found")
      max_chapters = book.max_chapters

      row = Chapter(id=generate_id(), book_id=book_id, chapter_number=chapter_number, title=title, content=content, content_length=len(content), status="PUBLISHED", comment_count=0, published_at=now)
      session.add(row)
      try:
        await session.flush()
      except IntegrityError:
        # The number is already taken, so a previous run persisted this chapter.
        await session.rollback()
        return None

      values: dict[str, object] = {"chapter_count": Book.chapter_count + 1, "heat": Book.heat + heat_bonus}
      # Complete only once every chapter 1..max exists; a hole keeps the book visible to catch-up.
      written = select(func.count(Chapter.id)).where(Chapter.book_id == book_id, Chapter.chapter_number.between(1, max_chapters))
      if (await session.execute(written)).scalar_one() >= max_chapters:
        values["status"] = "COMPLETED"
      await session.execute(update(Book).where(Book.id == book_id).values(**values).execution_options(synchronize_session=False))
      await session.commit()
      return self._chapter_to_record(row)

  async def apply_scores(self, book_id: str, scores: ScoreUpdate) -> None:
    stmt = (
      update(Book)
      .where(Book.id == book_id)
      .values(
        avg_rating=scores.avg_rating,
        avg_sentiment=scores.avg_sentiment,
        reader_count=scores.reader_count,
        interaction_score=scores.interaction_score,
        sentiment_score=scores.sentiment_score,
        final_score=scores.final_score,
        heat=scores.heat,
      )
      .execution_options(synchronize_session=False)
    )
    async with self._session_factory() as session:
      await session.execute(stmt)
      await session.commit()

  async def _all_plans(self, book_id: str) -> list[ChapterPlanRecord]:
    stmt = select(ChapterPlan).where(ChapterPlan.book_id == book_id).order_by(ChapterPlan.chapter_number.asc(), ChapterPlan.version.asc())
    async with self._session_factory() as session:
      rows = (await session.execute(stmt)).scalars().all()
      return [self._plan_to_record(row) for row in rows]

  @staticmethod
  async def _plan_versions(session: AsyncSession, book_id: str) -> dict[int, int]:
    result = await session.execute(select(ChapterPlan.chapter_number, func.max(ChapterPlan.version)).where(ChapterPlan.book_id == book_id).group_by(ChapterPlan.chapter_number))
    return {int(number): int(version) for number, version in result.all()}

  @staticmethod
  def _plan_model(book_id: str, plan: NewChapterPlan, *, version: int, now: datetime) -> ChapterPlan:
    return ChapterPlan(book_id=book_id, chapter_number=plan.chapter_number, version=version, title=plan.title, summary=plan.summary, key_events=list(plan.key_events), word_count_target=plan.word_count_target, created_at=now)

  @staticmethod
  def _book_to_record(row: Book) -> BookRecord:
    return BookRecord(
      id=row.id,
      season_id=row.season_id,
      author_id=row.author_id,
      title=row.title,
      status=row.status,  # type: ignore[arg-type]
      chapter_count=row.chapter_count,
      max_chapters=row.max_chapters,
      created_at=as_utc(row.created_at),  # type: ignore[arg-type]
      zone_style=row.zone_style,
      synopsis=row.synopsis,
      heat=row.heat,
      final_score=row.final_score,
      view_count=row.view_count,
      like_count=row.like_count,
      favorite_count=row.favorite_count,
      coin_count=row.coin_count,
      comment_count=row.comment_count,
      completion_rate=row.completion_rate,
    )

  @staticmethod
  def _chapter_to_record(row: Chapter) -> ChapterRecord:
    return ChapterRecord(id=row.id, book_id=row.book_id, chapter_number=row.chapter_number, title=row.title, content=row.content, published_at=as_utc(row.published_at), comment_count=row.comment_count)  # type: ignore[arg-type]

  @staticmethod
  def _plan_to_record(row: ChapterPlan) -> ChapterPlanRecord:
    return ChapterPlanRecord(book_id=row.book_id, chapter_number=row.chapter_number, version=row.version, title=row.title, summary=row.summary, key_events=list(row.key_events or []), word_count_target=row.word_count_target, created_at=as_utc(row.created_at))

  @staticmethod
  def _outline_to_record(row: BookOutline) -> BookOutlineRecord:
    return BookOutlineRecord(book_id=row.book_id, version=row.version, summary=row.summary, characters=list(row.characters or []), themes=list(row.themes or []), tone=row.tone, reason=row.reason, created_at=as_utc(row.created_at))
