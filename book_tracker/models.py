from __future__ import annotations

import math
from dataclasses import dataclass

BOOK_STATUSES = ("to-read", "reading", "done")
MAX_BOOK_RATING = 5


@dataclass
class Book:
    title: str
    author: str = ""
    genre: str = ""
    status: str = "reading"  # to-read | reading | done
    total_pages: int | None = None
    start_page: int | None = None
    isbn: str = ""
    language: str = ""
    published_date: str | None = None
    bought_date: str | None = None
    rating: int | None = None  # 0-5 stars, None when unrated


@dataclass
class ReadingLog:
    book_id: int
    date: str  # ISO timestamp of the session
    minutes: int | None = None
    pages_start: int | None = None
    pages_end: int | None = None
    note: str = ""

    @property
    def is_reading_session(self) -> bool:
        """False for a plain history note with no time or page data."""
        return (
            self.minutes is not None
            or self.pages_start is not None
            or self.pages_end is not None
        )


@dataclass
class HardWord:
    book_id: int
    word: str
    meaning: str = ""
    context: str = ""  # sentence the word appeared in
    page: int | None = None


def pages_read(pages_start: int | None, pages_end: int | None) -> int | None:
    if pages_start is None or pages_end is None:
        return None
    return max(0, pages_end - pages_start)


def clamp_book_rating(value: float | None) -> int | None:
    """Truncate a star rating to a whole number in 0..5.

    Raises ValueError for NaN and infinities.
    """
    if value is None:
        return None
    if not math.isfinite(value):
        raise ValueError(f"Rating must be a finite number, got {value!r}")
    return max(0, min(MAX_BOOK_RATING, math.trunc(value)))
