"""Spaced repetition scheduling for hard words and the review flow around it."""
from __future__ import annotations

import logging
import math
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from enum import Enum
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from book_tracker.db import Database

log = logging.getLogger("book_tracker.review")

DEFAULT_EASE = 2.5
MIN_EASE = 1.3


class Rating(str, Enum):
    AGAIN = "again"
    HARD = "hard"
    GOOD = "good"
    EASY = "easy"


@dataclass(frozen=True)
class SrsState:
    interval_days: int = 0
    ease: float = DEFAULT_EASE
    reps: int = 0


@dataclass(frozen=True)
class TransitionResult:
    next_state: SrsState
    due_at: datetime


def initial_state() -> SrsState:
    """State for a freshly added word. The caller makes it due immediately."""
    return SrsState(interval_days=0, ease=DEFAULT_EASE, reps=0)


def _as_count(value) -> int:
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return 0
    if not math.isfinite(value):
        return 0
    return max(0, math.floor(value))


def normalize_state(state: SrsState) -> SrsState:
    """Coerce stored scheduling fields into the engine's domain.

    Rows written by older clients may hold NULLs, negatives or fractions.
    interval_days and reps are floored and clamped at 0; an unusable ease
    falls back to the default and a low one is raised to the floor.
    """
    ease = state.ease
    if isinstance(ease, bool) or not isinstance(ease, (int, float)) or not math.isfinite(ease):
        ease = DEFAULT_EASE
    return SrsState(
        interval_days=_as_count(state.interval_days),
        ease=max(MIN_EASE, float(ease)),
        reps=_as_count(state.reps),
    )


def add_days(moment: datetime, days: int) -> datetime:
    """Advance *moment* by calendar days, keeping its wall-clock time.

    Aware datetimes keep their tzinfo, so across a DST change the result is
    the same local time on the target day rather than a multiple of 24h.
    Dates past the datetime range saturate at 9999-12-30, which still
    converts to UTC for any offset.
    """
    latest = moment.replace(year=9999, month=12, day=30)
    if days >= (latest.date() - moment.date()).days:
        return latest
    return moment + timedelta(days=days)


def transition(state: SrsState, rating: Rating | str, now: datetime) -> TransitionResult:
    """Apply one review *rating* to *state*, anchored at *now*.

    Plain strings are accepted and coerced; unknown ones raise ValueError.
    Interval growth uses integer arithmetic (half-up rounding of x1.2 and
    x2.5), so arbitrarily long intervals never overflow.
    """
    rating = Rating(rating)
    current = normalize_state(state)
    interval = current.interval_days
    ease = current.ease
    reps = current.reps

    if rating == Rating.AGAIN:
        nxt = SrsState(interval_days=1, ease=max(MIN_EASE, ease - 0.2), reps=0)
        return TransitionResult(next_state=nxt, due_at=add_days(now, nxt.interval_days))

    reps += 1

    if rating == Rating.HARD:
        interval = 1 if interval == 0 else max(1, (interval * 12 + 5) // 10)
        ease = max(MIN_EASE, ease - 0.15)
    elif rating == Rating.GOOD:
        interval = 1 if interval == 0 else max(1, (interval * 25 + 5) // 10)
    elif rating == Rating.EASY:
        # the bonus has no ceiling
        interval = 2 if interval == 0 else max(2, interval * 3)
        ease = ease + 0.15

    nxt = SrsState(interval_days=interval, ease=ease, reps=reps)
    return TransitionResult(next_state=nxt, due_at=add_days(now, interval))


# ── Review flow ───────────────────────────────────────────────────────────


def parse_rating(value: str) -> Rating:
    """Map user input to a Rating. Accepts the full name or its first letter."""
    key = str(value or "").strip().lower()
    for r in Rating:
        if key in (r.value, r.value[0]):
            return r
    raise ValueError(f"Unknown rating: {value!r} (expected again, hard, good or easy)")


def state_from_row(row: dict) -> SrsState:
    return SrsState(
        interval_days=row.get("srs_interval_days"),
        ease=row.get("srs_ease"),
        reps=row.get("srs_reps"),
    )


def select_due_words(db: Database, now: datetime | None = None, limit: int = 50) -> list[dict]:
    """Words due for review, oldest due first. The head of the list is shown next."""
    if now is None:
        now = datetime.now(timezone.utc)
    return db.get_due_words(now, limit=limit)


def record_review(
    db: Database,
    word_id: int,
    rating: Rating | str,
    now: datetime | None = None,
) -> dict | None:
    """Rate a word, persist its next schedule and return the new values.

    Returns None when the word does not exist. Concurrent reviews of the
    same word are not coordinated; the last write wins.
    """
    rating = Rating(rating)
    row = db.get_word(word_id)
    if row is None:
        return None
    if now is None:
        now = datetime.now(timezone.utc)

    result = transition(state_from_row(row), rating, now)
    nxt = result.next_state
    db.update_word_srs(word_id, nxt, result.due_at, reviewed_at=now)

    log.info(
        "Reviewed %r as %s: interval %d -> %d days, ease %.2f, reps %d",
        row["word"], rating.value, _as_count(row.get("srs_interval_days")),
        nxt.interval_days, nxt.ease, nxt.reps,
    )

    return {
        "word_id": word_id,
        "word": row["word"],
        "rating": rating.value,
        "interval_days": nxt.interval_days,
        "ease": round(nxt.ease, 4),
        "reps": nxt.reps,
        "due_at": result.due_at.isoformat(),
        "last_reviewed_at": now.isoformat(),
    }
