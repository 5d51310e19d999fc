"""FastAPI application with all routes."""
from __future__ import annotations

import logging
from datetime import datetime, timezone
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

logging.basicConfig(level=logging.INFO, format="%(name)s | %(message)s")

from fastapi import FastAPI, HTTPException, Request

from book_tracker.config import Settings, load_settings, save_settings
from book_tracker.db import Database, to_utc_iso
from book_tracker.models import (
    BOOK_STATUSES, Book, HardWord, ReadingLog, clamp_book_rating, pages_read,
)
from book_tracker.srs import parse_rating, record_review, select_due_words

app = FastAPI(title="Book Tracker")

# Global state (initialized in startup)
_db: Database | None = None
_settings: Settings | None = None

log = logging.getLogger("book_tracker.app")


def get_db() -> Database:
    assert _db is not None
    return _db


def get_settings() -> Settings:
    assert _settings is not None
    return _settings


@app.on_event("startup")
async def startup():
    global _db, _settings
    if _db is not None:
        return  # Already initialized (e.g. by tests)
    _settings = load_settings()
    logging.getLogger().setLevel(_settings.log_level.upper())
    _db = Database(_settings.db_full_path)
    log.info("Using database %s", _settings.db_full_path)


@app.on_event("shutdown")
async def shutdown():
    if _db:
        _db.close()


async def _json_body(request: Request) -> dict:
    if not await request.body():
        return {}
    body = await request.json()
    if not isinstance(body, dict):
        raise HTTPException(400, "Expected a JSON object")
    return body


def _optional_int(body: dict, key: str) -> int | None:
    value = body.get(key)
    if value is None or value == "":
        return None
    try:
        return int(value)
    except (TypeError, ValueError):
        raise HTTPException(400, f"{key} must be an integer")


def _optional_rating(body: dict) -> int | None:
    value = body.get("rating")
    if value is None or value == "":
        return None
    if isinstance(value, bool):
        raise HTTPException(400, "rating must be a number")
    try:
        return clamp_book_rating(float(value))
    except (TypeError, ValueError, OverflowError):
        raise HTTPException(400, "rating must be a number")


def _text(body: dict, key: str) -> str:
    value = body.get(key)
    return "" if value is None else str(value).strip()


def _optional_iso(body: dict, key: str) -> str | None:
    value = _text(body, key)
    if not value:
        return None
    try:
        return to_utc_iso(datetime.fromisoformat(value))
    except ValueError:
        raise HTTPException(400, f"{key} must be an ISO date")


def _log_view(row: dict) -> dict:
    row["pages_read"] = pages_read(row["pages_start"], row["pages_end"])
    return row


def _require_book(book_id: int) -> dict:
    book = get_db().get_book(book_id)
    if book is None:
        raise HTTPException(404, "Book not found")
    return book


# ── API: Stats ────────────────────────────────────────────────────────────

@app.get("/api/stats")
async def api_stats():
    return get_db().get_stats(get_settings().now())


# ── API: Books ────────────────────────────────────────────────────────────

@app.get("/api/books")
async def api_list_books(status: str | None = None):
    if status is not None and status not in BOOK_STATUSES:
        raise HTTPException(400, f"Unknown status: {status}")
    return get_db().list_books(status=status)


@app.post("/api/books")
async def api_create_book(request: Request):
    body = await _json_body(request)
    title = _text(body, "title")
    if not title:
        raise HTTPException(400, "No title provided")
    status = body.get("status") or "reading"
    if status not in BOOK_STATUSES:
        raise HTTPException(400, f"Unknown status: {status}")

    book = Book(
        title=title,
        author=_text(body, "author"),
        genre=_text(body, "genre"),
        status=status,
        total_pages=_optional_int(body, "total_pages"),
        start_page=_optional_int(body, "start_page"),
        isbn=_text(body, "isbn"),
        language=_text(body, "language"),
        published_date=_optional_iso(body, "published_date"),
        bought_date=_optional_iso(body, "bought_date"),
        rating=_optional_rating(body),
    )
    book_id = get_db().add_book(book)
    return get_db().get_book(book_id)


@app.get("/api/books/{book_id}")
async def api_get_book(book_id: int):
    book = _require_book(book_id)
    book["progress"] = get_db().get_book_progress(book_id)
    return book


@app.put("/api/books/{book_id}")
async def api_update_book(book_id: int, request: Request):
    _require_book(book_id)
    body = await _json_body(request)

    updates: dict = {}
    for key in ("title", "author", "genre", "isbn", "language"):
        if key in body:
            updates[key] = _text(body, key)
    if "title" in updates and not updates["title"]:
        raise HTTPException(400, "Title cannot be empty")
    if "status" in body:
        if body["status"] not in BOOK_STATUSES:
            raise HTTPException(400, f"Unknown status: {body['status']}")
        updates["status"] = body["status"]
    for key in ("total_pages", "start_page"):
        if key in body:
            updates[key] = _optional_int(body, key)
    for key in ("published_date", "bought_date"):
        if key in body:
            updates[key] = _optional_iso(body, key)
    if "rating" in body:
        updates["rating"] = _optional_rating(body)

    get_db().update_book(book_id, **updates)
    return await api_get_book(book_id)


@app.delete("/api/books/{book_id}")
async def api_delete_book(book_id: int):
    if not get_db().delete_book(book_id):
        raise HTTPException(404, "Book not found")
    return {"ok": True}


@app.post("/api/books/{book_id}/favorite")
async def api_toggle_favorite(book_id: int):
    favorite = get_db().toggle_favorite(book_id)
    if favorite is None:
        raise HTTPException(404, "Book not found")
    return {"book_id": book_id, "favorite": favorite}


@app.get("/api/favorites")
async def api_favorites():
    return get_db().list_favorites()


# ── API: Reading logs ─────────────────────────────────────────────────────

@app.get("/api/logs")
async def api_all_logs(limit: int | None = None):
    return [_log_view(r) for r in get_db().list_logs(limit=limit)]


@app.get("/api/books/{book_id}/logs")
async def api_book_logs(book_id: int):
    _require_book(book_id)
    return [_log_view(r) for r in get_db().list_logs(book_id=book_id)]


@app.post("/api/books/{book_id}/logs")
async def api_add_log(book_id: int, request: Request):
    _require_book(book_id)
    body = await _json_body(request)

    date = _optional_iso(body, "date") or to_utc_iso(datetime.now(timezone.utc))
    minutes = _optional_int(body, "minutes")
    if minutes is not None and minutes < 0:
        raise HTTPException(400, "minutes cannot be negative")

    entry = ReadingLog(
        book_id=book_id,
        date=date,
        minutes=minutes,
        pages_start=_optional_int(body, "pages_start"),
        pages_end=_optional_int(body, "pages_end"),
        note=_text(body, "note"),
    )
    log_id = get_db().add_log(entry)
    result = _log_view(get_db().get_log(log_id))
    result["kind"] = "session" if entry.is_reading_session else "note"
    return result


@app.delete("/api/logs/{log_id}")
async def api_delete_log(log_id: int):
    if not get_db().delete_log(log_id):
        raise HTTPException(404, "Log not found")
    return {"ok": True}


# ── API: Hard words ───────────────────────────────────────────────────────

@app.get("/api/books/{book_id}/words")
async def api_book_words(book_id: int):
    _require_book(book_id)
    return get_db().list_words(book_id=book_id)


@app.post("/api/books/{book_id}/words")
async def api_add_word(book_id: int, request: Request):
    _require_book(book_id)
    body = await _json_body(request)
    text = _text(body, "word")
    if not text:
        raise HTTPException(400, "No word provided")

    word = HardWord(
        book_id=book_id,
        word=text,
        meaning=_text(body, "meaning"),
        context=_text(body, "context"),
        page=_optional_int(body, "page"),
    )
    word_id = get_db().add_word(word, now=get_settings().now())
    return get_db().get_word(word_id)


@app.delete("/api/words/{word_id}")
async def api_delete_word(word_id: int):
    if not get_db().delete_word(word_id):
        raise HTTPException(404, "Word not found")
    return {"ok": True}


# ── API: Review ───────────────────────────────────────────────────────────

@app.get("/api/review/due")
async def api_review_due():
    s = get_settings()
    due = select_due_words(get_db(), s.now(), limit=s.review_batch_size)
    return {
        "count": len(due),
        "current": due[0] if due else None,
        "words": due,
    }


@app.post("/api/review/{word_id}")
async def api_review(word_id: int, request: Request):
    body = await _json_body(request)
    try:
        rating = parse_rating(body.get("rating", ""))
    except ValueError as e:
        raise HTTPException(400, str(e))

    result = record_review(get_db(), word_id, rating, now=get_settings().now())
    if result is None:
        raise HTTPException(404, "Word not found")
    return result


# ── API: Settings ─────────────────────────────────────────────────────────

@app.get("/api/settings")
async def api_get_settings():
    return get_settings().to_dict()


@app.put("/api/settings")
async def api_update_settings(request: Request):
    body = await _json_body(request)
    if body.get("timezone"):
        try:
            ZoneInfo(body["timezone"])
        except (ZoneInfoNotFoundError, ValueError):
            raise HTTPException(400, f"Unknown timezone: {body['timezone']}")
    s = get_settings()
    known = {f.name for f in Settings.__dataclass_fields__.values()}
    for k, v in body.items():
        if k in known:
            setattr(s, k, v)
    save_settings(s)
    return s.to_dict()
