"""Schema package exports."""

from .sql import Agent, Book, BookOutline, Chapter, ChapterPlan, Comment, LedgerEntry, Season, Task

__all__ = ["Agent", "Book", "BookOutline", "Chapter", "ChapterPlan", "Comment", "LedgerEntry", "Season", "Task"]
