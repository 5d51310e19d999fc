"""Shared test fixtures."""
from __future__ import annotations

from datetime import datetime, timezone

import pytest

from book_tracker.db import Database
from book_tracker.models import Book, HardWord, ReadingLog


@pytest.fixture
def tmp_db(tmp_path):
    """Create a fresh temporary database."""
    db = Database(tmp_path / "test.db")
    yield db
    db.close()


@pytest.fixture
def fixed_now():
    return datetime(2024, 1, 30, 9, 15, tzinfo=timezone.utc)


@pytest.fixture
def sample_book():
    return Book(
        title="The Name of the Rose",
        author="Umberto Eco",
        genre="Mystery",
        status="reading",
        total_pages=512,
        start_page=1,
        language="en",
    )


@pytest.fixture
def sample_words():
    """Hard words for the sample book; book_id is filled in by populated_db."""
    return [
        HardWord(0, "palimpsest", "a manuscript written over an erased text",
                 "The library was a palimpsest of forgotten learning.", 42),
        HardWord(0, "abbot", "head of an abbey of monks", "", 3),
        HardWord(0, "scriptorium", "room for copying manuscripts", "", 71),
    ]


@pytest.fixture
def populated_db(tmp_db, sample_book, sample_words, fixed_now):
    """A database with one book, two reading logs and three words due at fixed_now."""
    book_id = tmp_db.add_book(sample_book)
    tmp_db.add_log(ReadingLog(book_id, "2024-01-28T20:00:00.000000+00:00",
                              minutes=45, pages_start=1, pages_end=60))
    tmp_db.add_log(ReadingLog(book_id, "2024-01-29T20:00:00.000000+00:00",
                              minutes=30, pages_start=60, pages_end=102))
    for w in sample_words:
        w.book_id = book_id
        tmp_db.add_word(w, now=fixed_now)
    return tmp_db
