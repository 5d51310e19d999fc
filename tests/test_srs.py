"""Tests for the spaced repetition engine and review flow."""
from __future__ import annotations

import math
from datetime import datetime, timedelta, timezone
from zoneinfo import ZoneInfo

import pytest

from book_tracker.srs import (
    MIN_EASE,
    Rating,
    SrsState,
    add_days,
    initial_state,
    normalize_state,
    parse_rating,
    record_review,
    select_due_words,
    transition,
)

NOW = datetime(2024, 1, 30, 9, 15, tzinfo=timezone.utc)


class TestInitialState:
    def test_values(self):
        s = initial_state()
        assert s == SrsState(interval_days=0, ease=2.5, reps=0)


class TestTransitionFromNew:
    def test_good(self):
        r = transition(initial_state(), Rating.GOOD, NOW)
        assert r.next_state.interval_days == 1
        assert r.next_state.ease == pytest.approx(2.5)
        assert r.next_state.reps == 1

    def test_easy(self):
        r = transition(initial_state(), Rating.EASY, NOW)
        assert r.next_state.interval_days == 2
        assert r.next_state.ease == pytest.approx(2.65)
        assert r.next_state.reps == 1

    def test_hard(self):
        r = transition(initial_state(), Rating.HARD, NOW)
        assert r.next_state.interval_days == 1
        assert r.next_state.ease == pytest.approx(2.35)
        assert r.next_state.reps == 1

    def test_again(self):
        r = transition(initial_state(), Rating.AGAIN, NOW)
        assert r.next_state.interval_days == 1
        assert r.next_state.ease == pytest.approx(2.3)
        assert r.next_state.reps == 0


class TestTransitionGrowth:
    def test_good_rounds_half_up(self):
        r = transition(SrsState(1, 2.5, 1), Rating.GOOD, NOW)
        assert r.next_state.interval_days == 3  # round(2.5)
        assert r.next_state.reps == 2

    def test_good_rounds_half_up_even_base(self):
        r = transition(SrsState(5, 2.5, 3), Rating.GOOD, NOW)
        assert r.next_state.interval_days == 13  # 12.5 -> 13, not 12

    def test_easy_triples(self):
        r = transition(SrsState(10, 2.5, 5), Rating.EASY, NOW)
        assert r.next_state.interval_days == 30
        assert r.next_state.ease == pytest.approx(2.65)
        assert r.next_state.reps == 6

    def test_easy_minimum_two_days(self):
        r = transition(SrsState(1, 2.5, 1), Rating.EASY, NOW)
        assert r.next_state.interval_days == 3

    def test_hard_grows_slowly(self):
        r = transition(SrsState(10, 2.5, 4), Rating.HARD, NOW)
        assert r.next_state.interval_days == 12
        assert r.next_state.ease == pytest.approx(2.35)
        assert r.next_state.reps == 5

    def test_hard_small_interval_stays_at_least_one(self):
        r = transition(SrsState(1, 2.5, 1), Rating.HARD, NOW)
        assert r.next_state.interval_days == 1

    def test_good_keeps_ease(self):
        r = transition(SrsState(4, 1.9, 2), Rating.GOOD, NOW)
        assert r.next_state.ease == pytest.approx(1.9)

    def test_interval_is_int(self):
        r = transition(SrsState(7, 2.5, 2), Rating.HARD, NOW)
        assert isinstance(r.next_state.interval_days, int)


class TestAgain:
    @pytest.mark.parametrize("state", [
        SrsState(0, 2.5, 0),
        SrsState(1, 2.5, 1),
        SrsState(180, 3.4, 12),
        SrsState(30, 1.3, 4),
    ])
    def test_resets(self, state):
        r = transition(state, Rating.AGAIN, NOW)
        assert r.next_state.reps == 0
        assert r.next_state.interval_days == 1

    def test_ease_floor(self):
        r = transition(SrsState(3, 1.35, 2), Rating.AGAIN, NOW)
        assert r.next_state.ease == MIN_EASE


class TestInvariants:
    def test_ease_never_below_floor(self):
        state = initial_state()
        for rating in [Rating.AGAIN, Rating.HARD] * 30:
            state = transition(state, rating, NOW).next_state
            assert state.ease >= MIN_EASE
        assert state.ease == pytest.approx(MIN_EASE)

    def test_reps_increment_by_one(self):
        state = initial_state()
        for i, rating in enumerate([Rating.HARD, Rating.GOOD, Rating.EASY, Rating.GOOD], 1):
            state = transition(state, rating, NOW).next_state
            assert state.reps == i

    def test_easy_ease_has_no_ceiling(self):
        state = initial_state()
        for _ in range(20):
            state = transition(state, Rating.EASY, NOW).next_state
        assert state.ease == pytest.approx(2.5 + 20 * 0.15)
        assert state.interval_days == 2 * 3 ** 19


class TestLongIntervals:
    def test_long_easy_streak_saturates_due_date(self):
        state = initial_state()
        for _ in range(25):
            r = transition(state, Rating.EASY, NOW)
            assert r.next_state.interval_days > state.interval_days
            state = r.next_state
        assert state.interval_days == 2 * 3 ** 24
        assert r.due_at == datetime(9999, 12, 30, 9, 15, tzinfo=timezone.utc)

    def test_huge_stored_interval(self):
        r = transition(SrsState(10**7, 2.5, 3), Rating.GOOD, NOW)
        assert r.next_state.interval_days == 25_000_000
        assert r.due_at.year == 9999
        assert r.due_at.tzinfo is timezone.utc

    def test_hard_on_huge_interval_is_exact(self):
        r = transition(SrsState(10**30, 2.5, 3), Rating.HARD, NOW)
        assert r.next_state.interval_days == 12 * 10**29

    def test_saturated_due_converts_to_utc(self):
        tokyo = ZoneInfo("Asia/Tokyo")
        due = add_days(datetime(2024, 1, 30, 23, 0, tzinfo=tokyo), 10**9)
        assert due.astimezone(timezone.utc).year == 9999

    def test_in_range_unchanged(self):
        assert add_days(NOW, 365) == NOW + timedelta(days=365)


class TestStringRatings:
    def test_again_as_string(self):
        r = transition(SrsState(10, 2.5, 5), "again", NOW)
        assert r.next_state.interval_days == 1
        assert r.next_state.reps == 0
        assert r.next_state.ease == pytest.approx(2.3)

    @pytest.mark.parametrize("text,interval", [("hard", 12), ("good", 25), ("easy", 30)])
    def test_each_rating_as_string(self, text, interval):
        assert transition(SrsState(10, 2.5, 5), text, NOW).next_state.interval_days == interval

    def test_unknown_string_raises(self):
        with pytest.raises(ValueError):
            transition(SrsState(10, 2.5, 5), "great", NOW)

    def test_record_review_accepts_string(self, populated_db, fixed_now):
        word = populated_db.list_words()[0]
        result = record_review(populated_db, word["id"], "again", now=fixed_now)
        assert result["rating"] == "again"
        assert result["interval_days"] == 1

    def test_record_review_rejects_unknown(self, populated_db, fixed_now):
        word = populated_db.list_words()[0]
        with pytest.raises(ValueError):
            record_review(populated_db, word["id"], "great", now=fixed_now)
        assert populated_db.get_word(word["id"])["last_reviewed_at"] is None

    def test_deterministic(self):
        state = SrsState(6, 2.2, 3)
        a = transition(state, Rating.GOOD, NOW)
        b = transition(state, Rating.GOOD, NOW)
        assert a == b


class TestDueAt:
    def test_due_is_now_plus_interval(self):
        r = transition(SrsState(10, 2.5, 5), Rating.GOOD, NOW)
        assert r.due_at == NOW + timedelta(days=r.next_state.interval_days)

    def test_month_boundary(self):
        r = transition(SrsState(1, 2.5, 1), Rating.GOOD, NOW)
        assert r.next_state.interval_days == 3
        assert r.due_at == datetime(2024, 2, 2, 9, 15, tzinfo=timezone.utc)

    def test_year_boundary(self):
        assert add_days(datetime(2023, 12, 31, 8, 0), 1) == datetime(2024, 1, 1, 8, 0)

    def test_keeps_wall_clock_across_dst(self):
        berlin = ZoneInfo("Europe/Berlin")
        before = datetime(2024, 3, 30, 21, 0, tzinfo=berlin)
        after = add_days(before, 1)
        assert (after.hour, after.minute) == (21, 0)
        assert after.day == 31
        # Only 23 real hours pass because the clocks go forward
        assert after.astimezone(timezone.utc) - before.astimezone(timezone.utc) == timedelta(hours=23)


class TestNormalize:
    def test_negative_interval_treated_as_new(self):
        r = transition(SrsState(-5, 2.5, 2), Rating.GOOD, NOW)
        assert r.next_state.interval_days == 1

    def test_fractional_values_floored(self):
        s = normalize_state(SrsState(3.9, 2.5, 2.7))
        assert s.interval_days == 3
        assert s.reps == 2

    @pytest.mark.parametrize("ease", [None, "2.1", math.nan, math.inf])
    def test_bad_ease_defaults(self, ease):
        assert normalize_state(SrsState(2, ease, 1)).ease == 2.5

    def test_low_ease_raised_to_floor(self):
        assert normalize_state(SrsState(2, 0.5, 1)).ease == MIN_EASE

    @pytest.mark.parametrize("value", [None, -3, math.nan, -math.inf, math.inf])
    def test_bad_counts_become_zero(self, value):
        s = normalize_state(SrsState(value, 2.5, value))
        assert s.interval_days == 0
        assert s.reps == 0


class TestParseRating:
    @pytest.mark.parametrize("text,expected", [
        ("again", Rating.AGAIN),
        ("Hard", Rating.HARD),
        (" good ", Rating.GOOD),
        ("e", Rating.EASY),
    ])
    def test_valid(self, text, expected):
        assert parse_rating(text) is expected

    @pytest.mark.parametrize("text", ["", "great", "x", None])
    def test_invalid(self, text):
        with pytest.raises(ValueError):
            parse_rating(text)


class TestReviewFlow:
    def test_due_words_ordered_by_due(self, populated_db, fixed_now):
        words = populated_db.list_words()
        later = next(w for w in words if w["word"] == "abbot")
        record_review(populated_db, later["id"], Rating.AGAIN, now=fixed_now - timedelta(days=2))

        due = select_due_words(populated_db, fixed_now)
        assert [w["word"] for w in due][0] == "abbot"
        assert len(due) == 3

    def test_not_due_excluded(self, populated_db, fixed_now):
        word = populated_db.list_words()[0]
        record_review(populated_db, word["id"], Rating.GOOD, now=fixed_now)
        due = select_due_words(populated_db, fixed_now)
        assert word["id"] not in {w["id"] for w in due}

    def test_record_review_persists(self, populated_db, fixed_now):
        word = next(w for w in populated_db.list_words() if w["word"] == "palimpsest")
        result = record_review(populated_db, word["id"], Rating.EASY, now=fixed_now)
        assert result["interval_days"] == 2
        assert result["reps"] == 1

        stored = populated_db.get_word(word["id"])
        assert stored["srs_interval_days"] == 2
        assert stored["srs_ease"] == pytest.approx(2.65)
        assert stored["srs_reps"] == 1
        assert stored["srs_due_at"].startswith("2024-02-01T09:15:00")
        assert stored["last_reviewed_at"].startswith("2024-01-30T09:15:00")

    def test_successive_reviews(self, populated_db, fixed_now):
        word = populated_db.list_words()[0]
        now = fixed_now
        for expected in (1, 3, 8):
            result = record_review(populated_db, word["id"], Rating.GOOD, now=now)
            assert result["interval_days"] == expected
            now = now + timedelta(days=expected)

    def test_missing_word(self, tmp_db):
        assert record_review(tmp_db, 999, Rating.GOOD, now=NOW) is None

    def test_malformed_stored_state(self, populated_db, fixed_now):
        word = populated_db.list_words()[0]
        populated_db.conn.execute(
            "UPDATE words SET srs_interval_days = -4, srs_ease = NULL, srs_reps = NULL "
            "WHERE id = ?", (word["id"],),
        )
        result = record_review(populated_db, word["id"], Rating.GOOD, now=fixed_now)
        assert result["interval_days"] == 1
        assert result["ease"] == 2.5
        assert result["reps"] == 1

    def test_now_defaults_to_utc(self, populated_db):
        word = populated_db.list_words()[0]
        result = record_review(populated_db, word["id"], Rating.GOOD)
        assert result["last_reviewed_at"].endswith("+00:00")
        assert result["due_at"].endswith("+00:00")

    def test_long_streak_is_stored(self, populated_db, fixed_now):
        word = populated_db.list_words()[0]
        for _ in range(45):
            result = record_review(populated_db, word["id"], Rating.EASY, now=fixed_now)
        assert result["interval_days"] > 2**63

        stored = populated_db.get_word(word["id"])
        assert stored["srs_interval_days"] == 2**63 - 1
        assert stored["srs_due_at"].startswith("9999-12-30T09:15:00")
        assert stored["srs_reps"] == 45
