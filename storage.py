"""Database access for the fitness app.

Every read and write the request handlers, the analytics engine and the
subscription service need goes through ``DatabaseStorage``. The class is
handed a SQLAlchemy session at construction so tests and the app can share
the same code path.
"""
import logging
from datetime import datetime, timedelta

from sqlalchemy import func, update
from sqlalchemy.exc import IntegrityError

from models import (
    Exercise,
    MealEntry,
    PersonalRecord,
    ProcessedPayment,
    ProgressPhoto,
    Recipe,
    User,
    WorkoutProgram,
    WorkoutSession,
    WorkoutSet,
    utcnow,
)

logger = logging.getLogger(__name__)

SESSION_UPDATABLE = ("completed", "duration", "notes")
SET_UPDATABLE = ("reps", "weight", "rpe", "rest_time", "tempo", "completed")


class RecordNotFound(LookupError):
    pass


class DatabaseStorage:
    def __init__(self, session):
        self.session = session

    def _save(self, obj):
        self.session.add(obj)
        self.session.commit()
        return obj

    # ── Users ────────────────────────────────────────────────────────────────

    def get_user(self, user_id):
        return self.session.get(User, user_id)

    def get_user_by_email(self, email):
        return self.session.query(User).filter_by(email=email).first()

    def create_user(self, email, password, first_name=None, last_name=None):
        user = User(email=email, first_name=first_name, last_name=last_name)
        user.set_password(password)
        return self._save(user)

    # ── Workouts ─────────────────────────────────────────────────────────────

    def create_workout_session(self, **fields):
        return self._save(WorkoutSession(**fields))

    def get_workout_sessions(self, user_id, limit=20):
        return (self.session.query(WorkoutSession)
                .filter_by(user_id=user_id)
                .order_by(WorkoutSession.date.desc(), WorkoutSession.id.desc())
                .limit(limit)
                .all())

    def get_workout_session(self, session_id, user_id=None):
        query = self.session.query(WorkoutSession).filter_by(id=session_id)
        if user_id is not None:
            query = query.filter_by(user_id=user_id)
        return query.first()

    def update_workout_session(self, workout_session, updates):
        for key in SESSION_UPDATABLE:
            if key in updates:
                setattr(workout_session, key, updates[key])
        self.session.commit()
        return workout_session

    def create_workout_set(self, **fields):
        return self._save(WorkoutSet(**fields))

    def get_workout_sets(self, session_id):
        return (self.session.query(WorkoutSet)
                .filter_by(session_id=session_id)
                .order_by(WorkoutSet.set_number)
                .all())

    def get_workout_set(self, set_id, user_id):
        """Return the set only when its session belongs to ``user_id``."""
        return (self.session.query(WorkoutSet)
                .join(WorkoutSession, WorkoutSet.session_id == WorkoutSession.id)
                .filter(WorkoutSet.id == set_id, WorkoutSession.user_id == user_id)
                .first())

    def update_workout_set(self, workout_set, updates):
        for key in SET_UPDATABLE:
            if key in updates:
                setattr(workout_set, key, updates[key])
        self.session.commit()
        return workout_set

    # ── Reference data ───────────────────────────────────────────────────────

    def get_exercises(self):
        return self.session.query(Exercise).order_by(Exercise.name).all()

    def get_exercise(self, exercise_id):
        return self.session.get(Exercise, exercise_id)

    def get_workout_programs(self):
        return self.session.query(WorkoutProgram).filter_by(is_active=True).all()

    def get_recipes(self, limit=50):
        return self.session.query(Recipe).filter_by(is_active=True).limit(limit).all()

    def get_recipe(self, recipe_id):
        return self.session.get(Recipe, recipe_id)

    # ── Nutrition & progress ─────────────────────────────────────────────────

    def create_meal_entry(self, **fields):
        return self._save(MealEntry(**fields))

    def get_meal_entries(self, user_id, day):
        start = datetime(day.year, day.month, day.day)
        return self.get_meal_entries_range(user_id, start, start + timedelta(days=1))

    def get_meal_entries_range(self, user_id, start, end):
        return (self.session.query(MealEntry)
                .filter(MealEntry.user_id == user_id,
                        MealEntry.date >= start,
                        MealEntry.date < end)
                .order_by(MealEntry.date)
                .all())

    def create_progress_photo(self, **fields):
        return self._save(ProgressPhoto(**fields))

    def get_progress_photos(self, user_id, limit=20):
        return (self.session.query(ProgressPhoto)
                .filter_by(user_id=user_id)
                .order_by(ProgressPhoto.date.desc())
                .limit(limit)
                .all())

    def create_personal_record(self, **fields):
        return self._save(PersonalRecord(**fields))

    def get_personal_records(self, user_id, exercise_id=None):
        query = self.session.query(PersonalRecord).filter_by(user_id=user_id)
        if exercise_id is not None:
            query = query.filter_by(exercise_id=exercise_id)
        return query.order_by(PersonalRecord.date.desc()).all()

    # ── Analytics reads ──────────────────────────────────────────────────────

    def sum_completed_volume(self, user_id, start, end):
        """SUM(weight * reps) over completed sets in sessions dated [start, end)."""
        contribution = func.coalesce(WorkoutSet.weight, 0) * func.coalesce(WorkoutSet.reps, 0)
        total = (self.session.query(func.coalesce(func.sum(contribution), 0))
                 .select_from(WorkoutSet)
                 .join(WorkoutSession, WorkoutSet.session_id == WorkoutSession.id)
                 .filter(WorkoutSession.user_id == user_id,
                         WorkoutSession.date >= start,
                         WorkoutSession.date < end,
                         WorkoutSet.completed.is_(True))
                 .scalar())
        return float(total or 0)

    def completed_session_dates(self, user_id):
        """Dates of the user's completed sessions, newest first."""
        rows = (self.session.query(WorkoutSession.date)
                .filter(WorkoutSession.user_id == user_id,
                        WorkoutSession.completed.is_(True))
                .order_by(WorkoutSession.date.desc())
                .all())
        return [row[0] for row in rows]

    # ── Subscription writes ──────────────────────────────────────────────────

    def update_subscription(self, user_id, tier, status, expires_at=None, keep_expiry=False):
        """Single-row UPDATE of a user's subscription fields."""
        values = {
            "subscription_tier": tier,
            "subscription_status": status,
            "updated_at": utcnow(),
        }
        if not keep_expiry:
            values["subscription_expires_at"] = expires_at
        result = self.session.execute(
            update(User).where(User.id == user_id).values(**values)
        )
        if result.rowcount != 1:
            self.session.rollback()
            raise RecordNotFound(f"user {user_id} not found")
        self.session.commit()

    def is_payment_processed(self, payment_id):
        return (self.session.query(ProcessedPayment.id)
                .filter_by(payment_id=payment_id)
                .first()) is not None

    def apply_paid_subscription(self, payment_id, user_id, plan, expires_at, customer_ref):
        """Record ``payment_id`` in the ledger and activate ``plan`` in one transaction.

        Returns False when another delivery of the same payment already won
        the ledger insert; nothing is changed in that case.
        """
        try:
            self.session.add(ProcessedPayment(payment_id=payment_id, user_id=user_id, plan=plan))
            self.session.flush()
            result = self.session.execute(
                update(User).where(User.id == user_id).values(
                    subscription_tier=plan,
                    subscription_status="active",
                    subscription_expires_at=expires_at,
                    payment_customer_ref=customer_ref,
                    updated_at=utcnow(),
                )
            )
            if result.rowcount != 1:
                raise RecordNotFound(f"user {user_id} not found")
            self.session.commit()
        except IntegrityError:
            self.session.rollback()
            logger.info("Payment %s already recorded by a concurrent delivery", payment_id)
            return False
        except Exception:
            self.session.rollback()
            raise
        return True
