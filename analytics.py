"""Training analytics derived from a user's completed workouts.

Nothing here is stored or cached; each call reads straight from the store.
"""
from datetime import date, datetime, timedelta

from models import utcnow

WEEK = timedelta(days=7)


def _as_day(value) -> date:
    return value.date() if isinstance(value, datetime) else value


def count_streak(session_dates, today: date) -> int:
    """Walk completed-session dates (newest first) back from ``today``.

    The first session may fall on today or yesterday; every session after it
    must fall exactly one calendar day before the previously matched one.
    The first session that does not fit ends the walk.
    """
    streak = 0
    cursor = today
    for value in session_dates:
        day = _as_day(value)
        days_diff = (cursor - day).days
        if streak == 0:
            matched = days_diff in (0, 1)
        else:
            matched = days_diff == 1
        if not matched:
            break
        streak += 1
        cursor = day
    return streak


class Analytics:
    def __init__(self, store):
        self.store = store

    def weekly_volume(self, user_id, week_start: datetime) -> float:
        """Sum of weight x reps over completed sets in [week_start, week_start + 7 days).

        A set missing weight or reps counts as 0.
        """
        return self.store.sum_completed_volume(user_id, week_start, week_start + WEEK)

    def workout_streak(self, user_id, today: date = None) -> int:
        dates = self.store.completed_session_dates(user_id)
        if not dates:
            return 0
        return count_streak(dates, today or utcnow().date())
