"""Tests for weekly volume and workout streak."""

from datetime import date, datetime, timedelta

import pytest

from analytics import Analytics, count_streak
from models import utcnow

TODAY = date(2026, 10, 19)
WEEK_START = datetime(2026, 10, 12)


def test_count_streak_empty():
    assert count_streak([], TODAY) == 0


@pytest.mark.parametrize("offsets, expected", [
    ([0, 1, 2], 3),
    ([1, 2, 3, 4], 4),
    ([0, 2], 1),
    ([3], 0),
    ([2, 3], 0),
    ([0], 1),
    ([1], 1),
    ([0, 1, 3, 4], 2),
])
def test_count_streak_scenarios(offsets, expected):
    dates = [TODAY - timedelta(days=n) for n in offsets]
    assert count_streak(dates, TODAY) == expected


def test_count_streak_accepts_datetimes():
    dates = [datetime(2026, 10, 19, 7, 30), datetime(2026, 10, 18, 21, 0), datetime(2026, 10, 17, 6, 0)]
    assert count_streak(dates, TODAY) == 3


def test_count_streak_stops_at_second_session_same_day():
    dates = [TODAY, TODAY, TODAY - timedelta(days=1)]
    assert count_streak(dates, TODAY) == 1


class StubStore:
    def __init__(self, dates=(), volume=0.0):
        self.dates = list(dates)
        self.volume = volume
        self.volume_calls = []

    def completed_session_dates(self, user_id):
        return self.dates

    def sum_completed_volume(self, user_id, start, end):
        self.volume_calls.append((user_id, start, end))
        return self.volume


def test_weekly_volume_asks_store_for_seven_day_window():
    store = StubStore(volume=1250.0)
    assert Analytics(store).weekly_volume(7, WEEK_START) == 1250.0
    assert store.volume_calls == [(7, WEEK_START, WEEK_START + timedelta(days=7))]


def test_workout_streak_without_sessions_is_zero():
    assert Analytics(StubStore()).workout_streak(1, TODAY) == 0


# ── Against the database ─────────────────────────────────────────────────────

@pytest.fixture
def engine(store):
    return Analytics(store)


def test_volume_zero_without_sets(engine, user):
    assert engine.weekly_volume(user.id, WEEK_START) == 0


def test_volume_sums_completed_sets(engine, user, add_workout):
    add_workout(user, date(2026, 10, 13), sets=[(100, 5, True), (100, 5, True), (80, 8, True)])
    assert engine.weekly_volume(user.id, WEEK_START) == pytest.approx(1640)


def test_volume_ignores_incomplete_sets(engine, user, add_workout):
    add_workout(user, date(2026, 10, 13), sets=[(100, 5, True)])
    before = engine.weekly_volume(user.id, WEEK_START)
    add_workout(user, date(2026, 10, 14), sets=[(200, 10, False)])
    assert engine.weekly_volume(user.id, WEEK_START) == before == pytest.approx(500)


def test_volume_counts_null_weight_or_reps_as_zero(engine, user, add_workout):
    workout = add_workout(user, date(2026, 10, 13),
                          sets=[(None, 12, True), (60, None, True), (50, 10, True)])
    assert len(workout.sets) == 3
    assert engine.weekly_volume(user.id, WEEK_START) == pytest.approx(500)


def test_volume_is_additive_over_sessions(engine, user, add_workout):
    add_workout(user, date(2026, 10, 12), sets=[(100, 5, True)])
    first = engine.weekly_volume(user.id, WEEK_START)
    add_workout(user, date(2026, 10, 16), sets=[(40, 10, True), (40, 10, True)])
    assert engine.weekly_volume(user.id, WEEK_START) == pytest.approx(first + 800)


def test_volume_window_is_half_open(engine, user, add_workout):
    add_workout(user, WEEK_START, sets=[(10, 1, True)])
    add_workout(user, WEEK_START + timedelta(days=7), sets=[(1000, 1, True)])
    add_workout(user, WEEK_START - timedelta(seconds=1), sets=[(1000, 1, True)])
    assert engine.weekly_volume(user.id, WEEK_START) == pytest.approx(10)


def test_volume_never_mixes_users(engine, user, other_user, add_workout):
    add_workout(user, date(2026, 10, 13), sets=[(100, 5, True)])
    add_workout(other_user, date(2026, 10, 13), sets=[(300, 5, True)])
    assert engine.weekly_volume(user.id, WEEK_START) == pytest.approx(500)
    assert engine.weekly_volume(other_user.id, WEEK_START) == pytest.approx(1500)


def test_streak_counts_consecutive_completed_days(engine, user, add_workout):
    today = utcnow().date()
    for n in range(3):
        add_workout(user, today - timedelta(days=n))
    assert engine.workout_streak(user.id) == 3


def test_streak_ignores_uncompleted_sessions(engine, user, add_workout):
    today = utcnow().date()
    add_workout(user, today, completed=False)
    add_workout(user, today - timedelta(days=1))
    add_workout(user, today - timedelta(days=2))
    assert engine.workout_streak(user.id) == 2


def test_streak_broken_by_gap(engine, user, add_workout):
    today = utcnow().date()
    add_workout(user, today)
    add_workout(user, today - timedelta(days=2))
    assert engine.workout_streak(user.id) == 1


def test_streak_zero_when_last_session_is_old(engine, user, add_workout):
    today = utcnow().date()
    add_workout(user, today - timedelta(days=3))
    assert engine.workout_streak(user.id) == 0
