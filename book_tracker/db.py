from __future__ import annotations

import logging
import sqlite3
from datetime import datetime, timezone
from pathlib import Path

from book_tracker.models import BOOK_STATUSES, Book, HardWord, ReadingLog
from book_tracker.srs import SrsState, initial_state

log = logging.getLogger("book_tracker.db")

SCHEMA = """
CREATE TABLE IF NOT EXISTS books (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    title TEXT NOT NULL,
    author TEXT DEFAULT '',
    genre TEXT DEFAULT '',
    status TEXT NOT NULL DEFAULT 'reading',
    total_pages INTEGER,
    start_page INTEGER,
    isbn TEXT DEFAULT '',
    language TEXT DEFAULT '',
    published_date TEXT,
    bought_date TEXT,
    rating INTEGER,
    favorite INTEGER DEFAULT 0,
    created_at TEXT NOT NULL
);

CREATE TABLE IF NOT EXISTS reading_logs (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    book_id INTEGER NOT NULL REFERENCES books(id),
    date TEXT NOT NULL,
    minutes INTEGER,
    pages_start INTEGER,
    pages_end INTEGER,
    note TEXT DEFAULT '',
    created_at TEXT NOT NULL
);

CREATE TABLE IF NOT EXISTS words (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    book_id INTEGER NOT NULL REFERENCES books(id),
    word TEXT NOT NULL,
    meaning TEXT DEFAULT '',
    context TEXT DEFAULT '',
    page INTEGER,
    srs_due_at TEXT NOT NULL,
    srs_interval_days INTEGER DEFAULT 0,
    srs_ease REAL DEFAULT 2.5,
    srs_reps INTEGER DEFAULT 0,
    last_reviewed_at TEXT,
    created_at TEXT NOT NULL
);

CREATE INDEX IF NOT EXISTS idx_words_due ON words (srs_due_at);
CREATE INDEX IF NOT EXISTS idx_logs_book ON reading_logs (book_id, date);
"""

# Columns a partial book update may touch
BOOK_FIELDS = (
    "title", "author", "genre", "status", "total_pages", "start_page",
    "isbn", "language", "published_date", "bought_date", "rating",
)

# Largest value an sqlite INTEGER column holds
MAX_STORED_INTERVAL = 2**63 - 1


def to_utc_iso(moment: datetime) -> str:
    """Fixed-width UTC ISO string, so text comparison matches time order."""
    if moment.tzinfo is None:
        moment = moment.replace(tzinfo=timezone.utc)
    return moment.astimezone(timezone.utc).isoformat(timespec="microseconds")


def _now_iso() -> str:
    return to_utc_iso(datetime.now(timezone.utc))


def _book_dict(row: sqlite3.Row) -> dict:
    d = dict(row)
    d["favorite"] = bool(d["favorite"])
    return d


class Database:
    def __init__(self, db_path: Path):
        self.db_path = db_path
        self.conn = sqlite3.connect(str(db_path), check_same_thread=False)
        self.conn.row_factory = sqlite3.Row
        self.conn.execute("PRAGMA journal_mode=WAL")
        self._init_schema()

    def _init_schema(self) -> None:
        self.conn.executescript(SCHEMA)
        self._migrate()
        self.conn.commit()
        log.debug("Schema ready at %s", self.db_path)

    def _migrate(self) -> None:
        """Add columns introduced after a database was first created."""
        columns = {r["name"] for r in self.conn.execute("PRAGMA table_info(books)")}
        if "rating" not in columns:
            self.conn.execute("ALTER TABLE books ADD COLUMN rating INTEGER")
            log.info("Added rating column to books")

    def close(self) -> None:
        self.conn.close()

    # ── Books ─────────────────────────────────────────────────────────────

    def add_book(self, book: Book) -> int:
        cur = self.conn.execute(
            "INSERT INTO books (title, author, genre, status, total_pages, start_page, "
            "isbn, language, published_date, bought_date, rating, created_at) "
            "VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)",
            (
                book.title, book.author, book.genre, book.status,
                book.total_pages, book.start_page, book.isbn, book.language,
                book.published_date, book.bought_date, book.rating, _now_iso(),
            ),
        )
        self.conn.commit()
        return cur.lastrowid

    def get_book(self, book_id: int) -> dict | None:
        row = self.conn.execute(
            "SELECT * FROM books WHERE id = ?", (book_id,)
        ).fetchone()
        return _book_dict(row) if row else None

    def list_books(self, status: str | None = None) -> list[dict]:
        if status is not None:
            rows = self.conn.execute(
                "SELECT * FROM books WHERE status = ? ORDER BY created_at DESC, id DESC",
                (status,),
            ).fetchall()
        else:
            rows = self.conn.execute(
                "SELECT * FROM books ORDER BY created_at DESC, id DESC"
            ).fetchall()
        return [_book_dict(r) for r in rows]

    def update_book(self, book_id: int, **fields) -> bool:
        """Update the given columns only. Unknown keys are ignored."""
        updates = {k: v for k, v in fields.items() if k in BOOK_FIELDS}
        if not updates:
            return self.get_book(book_id) is not None
        assignments = ", ".join(f"{k} = ?" for k in updates)
        cur = self.conn.execute(
            f"UPDATE books SET {assignments} WHERE id = ?",
            (*updates.values(), book_id),
        )
        self.conn.commit()
        return cur.rowcount > 0

    def delete_book(self, book_id: int) -> bool:
        """Delete a book together with its reading logs and words."""
        self.conn.execute("DELETE FROM reading_logs WHERE book_id = ?", (book_id,))
        self.conn.execute("DELETE FROM words WHERE book_id = ?", (book_id,))
        cur = self.conn.execute("DELETE FROM books WHERE id = ?", (book_id,))
        self.conn.commit()
        return cur.rowcount > 0

    def set_favorite(self, book_id: int, favorite: bool) -> bool:
        cur = self.conn.execute(
            "UPDATE books SET favorite = ? WHERE id = ?",
            (1 if favorite else 0, book_id),
        )
        self.conn.commit()
        return cur.rowcount > 0

    def toggle_favorite(self, book_id: int) -> bool | None:
        """Flip the favorite flag. Returns the new value, or None if no such book."""
        book = self.get_book(book_id)
        if book is None:
            return None
        new_value = not book["favorite"]
        self.set_favorite(book_id, new_value)
        return new_value

    def list_favorites(self) -> list[dict]:
        rows = self.conn.execute(
            "SELECT * FROM books WHERE favorite = 1 ORDER BY title COLLATE NOCASE"
        ).fetchall()
        return [_book_dict(r) for r in rows]

    def get_book_progress(self, book_id: int) -> dict | None:
        """Current page (furthest logged page) and percent complete."""
        book = self.get_book(book_id)
        if book is None:
            return None
        row = self.conn.execute(
            "SELECT MAX(pages_end) FROM reading_logs "
            "WHERE book_id = ? AND pages_end IS NOT NULL",
            (book_id,),
        ).fetchone()
        current = row[0] if row[0] is not None else 0
        total = book["total_pages"]

        if book["status"] == "done":
            percent = 100
        elif not total or total <= 0:
            percent = 0
        else:
            percent = max(0, min(100, int(current / total * 100 + 0.5)))

        return {"current_page": current, "total_pages": total, "percent": percent}

    # ── Reading logs ──────────────────────────────────────────────────────

    def add_log(self, entry: ReadingLog) -> int:
        cur = self.conn.execute(
            "INSERT INTO reading_logs (book_id, date, minutes, pages_start, pages_end, "
            "note, created_at) VALUES (?, ?, ?, ?, ?, ?, ?)",
            (
                entry.book_id, entry.date, entry.minutes, entry.pages_start,
                entry.pages_end, entry.note, _now_iso(),
            ),
        )
        self.conn.commit()
        return cur.lastrowid

    def get_log(self, log_id: int) -> dict | None:
        row = self.conn.execute(
            "SELECT * FROM reading_logs WHERE id = ?", (log_id,)
        ).fetchone()
        return dict(row) if row else None

    def list_logs(self, book_id: int | None = None, limit: int | None = None) -> list[dict]:
        """Reading logs, newest first."""
        sql = "SELECT * FROM reading_logs"
        params: list = []
        if book_id is not None:
            sql += " WHERE book_id = ?"
            params.append(book_id)
        sql += " ORDER BY date DESC, id DESC"
        if limit is not None:
            sql += " LIMIT ?"
            params.append(limit)
        rows = self.conn.execute(sql, params).fetchall()
        return [dict(r) for r in rows]

    def delete_log(self, log_id: int) -> bool:
        cur = self.conn.execute("DELETE FROM reading_logs WHERE id = ?", (log_id,))
        self.conn.commit()
        return cur.rowcount > 0

    # ── Words (SRS) ───────────────────────────────────────────────────────

    def add_word(self, word: HardWord, now: datetime | None = None) -> int:
        """Store a new hard word with the initial SRS state, due immediately."""
        if now is None:
            now = datetime.now(timezone.utc)
        srs = initial_state()
        cur = self.conn.execute(
            "INSERT INTO words (book_id, word, meaning, context, page, srs_due_at, "
            "srs_interval_days, srs_ease, srs_reps, created_at) "
            "VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?)",
            (
                word.book_id, word.word, word.meaning, word.context, word.page,
                to_utc_iso(now), srs.interval_days, srs.ease, srs.reps,
                to_utc_iso(now),
            ),
        )
        self.conn.commit()
        return cur.lastrowid

    def get_word(self, word_id: int) -> dict | None:
        row = self.conn.execute(
            "SELECT * FROM words WHERE id = ?", (word_id,)
        ).fetchone()
        return dict(row) if row else None

    def list_words(self, book_id: int | None = None) -> list[dict]:
        if book_id is not None:
            rows = self.conn.execute(
                "SELECT * FROM words WHERE book_id = ? ORDER BY created_at DESC, id DESC",
                (book_id,),
            ).fetchall()
        else:
            rows = self.conn.execute(
                "SELECT * FROM words ORDER BY created_at DESC, id DESC"
            ).fetchall()
        return [dict(r) for r in rows]

    def delete_word(self, word_id: int) -> bool:
        cur = self.conn.execute("DELETE FROM words WHERE id = ?", (word_id,))
        self.conn.commit()
        return cur.rowcount > 0

    def get_due_words(self, now: datetime, limit: int = 50) -> list[dict]:
        """Words whose due time has passed, earliest due first."""
        rows = self.conn.execute(
            "SELECT w.*, b.title AS book_title FROM words w "
            "LEFT JOIN books b ON b.id = w.book_id "
            "WHERE w.srs_due_at <= ? "
            "ORDER BY w.srs_due_at ASC, w.id ASC LIMIT ?",
            (to_utc_iso(now), limit),
        ).fetchall()
        return [dict(r) for r in rows]

    def update_word_srs(
        self,
        word_id: int,
        state: SrsState,
        due_at: datetime,
        reviewed_at: datetime,
    ) -> bool:
        cur = self.conn.execute(
            "UPDATE words SET srs_interval_days = ?, srs_ease = ?, srs_reps = ?, "
            "srs_due_at = ?, last_reviewed_at = ? WHERE id = ?",
            (
                min(state.interval_days, MAX_STORED_INTERVAL), state.ease, state.reps,
                to_utc_iso(due_at), to_utc_iso(reviewed_at), word_id,
            ),
        )
        self.conn.commit()
        return cur.rowcount > 0

    # ── Stats ─────────────────────────────────────────────────────────────

    def get_stats(self, now: datetime | None = None) -> dict:
        if now is None:
            now = datetime.now(timezone.utc)

        by_status = {s: 0 for s in BOOK_STATUSES}
        for row in self.conn.execute(
            "SELECT status, COUNT(*) AS cnt FROM books GROUP BY status"
        ).fetchall():
            by_status[row["status"]] = row["cnt"]

        favorites = self.conn.execute(
            "SELECT COUNT(*) FROM books WHERE favorite = 1"
        ).fetchone()[0]

        logs = self.conn.execute("""
            SELECT COUNT(*) AS cnt,
                   COALESCE(SUM(minutes), 0) AS minutes,
                   COALESCE(SUM(CASE
                       WHEN pages_start IS NOT NULL AND pages_end IS NOT NULL
                            AND pages_end > pages_start
                       THEN pages_end - pages_start ELSE 0 END), 0) AS pages
            FROM reading_logs
        """).fetchone()

        words = self.conn.execute("""
            SELECT COUNT(*) AS total,
                   COALESCE(SUM(CASE WHEN srs_due_at <= ? THEN 1 ELSE 0 END), 0) AS due,
                   COALESCE(SUM(CASE WHEN last_reviewed_at IS NOT NULL THEN 1 ELSE 0 END), 0)
                       AS reviewed
            FROM words
        """, (to_utc_iso(now),)).fetchone()

        return {
            "total_books": sum(by_status.values()),
            "books_by_status": by_status,
            "favorite_books": favorites,
            "total_logs": logs["cnt"],
            "total_minutes": logs["minutes"],
            "total_pages_read": logs["pages"],
            "total_words": words["total"],
            "words_due": words["due"],
            "words_reviewed": words["reviewed"],
        }
