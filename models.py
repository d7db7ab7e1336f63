from flask_sqlalchemy import SQLAlchemy
from werkzeug.security import check_password_hash, generate_password_hash
from datetime import datetime, timezone

db = SQLAlchemy()


def utcnow() -> datetime:
    """Naive UTC timestamp; every DateTime column in this app is stored naive UTC."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


def _num(value):
    return float(value) if value is not None else None


def _iso(value):
    return value.isoformat() if value is not None else None


class User(db.Model):
    __tablename__ = "user"

    id = db.Column(db.Integer, primary_key=True)
    email = db.Column(db.String(255), unique=True, nullable=False)
    first_name = db.Column(db.String(120), nullable=True)
    last_name = db.Column(db.String(120), nullable=True)
    profile_image_url = db.Column(db.String(512), nullable=True)
    password_hash = db.Column(db.String(255), nullable=False)

    # Written only through subscriptions.SubscriptionService
    subscription_tier    = db.Column(db.String(20), default="Start",  nullable=False)  # Start, Pro, Jaar
    subscription_status  = db.Column(db.String(20), default="active", nullable=False)  # active, cancelled, expired
    subscription_expires_at = db.Column(db.DateTime, nullable=True)
    payment_customer_ref = db.Column(db.String(255), nullable=True)  # Mollie customer id

    created_at = db.Column(db.DateTime, default=utcnow, nullable=False)
    updated_at = db.Column(db.DateTime, default=utcnow, onupdate=utcnow, nullable=False)

    sessions = db.relationship("WorkoutSession", backref="user", lazy=True, cascade="all, delete-orphan")
    meals = db.relationship("MealEntry", backref="user", lazy=True, cascade="all, delete-orphan")
    photos = db.relationship("ProgressPhoto", backref="user", lazy=True, cascade="all, delete-orphan")
    records = db.relationship("PersonalRecord", backref="user", lazy=True, cascade="all, delete-orphan")

    def set_password(self, plaintext: str):
        self.password_hash = generate_password_hash(plaintext)

    def check_password(self, plaintext: str) -> bool:
        return check_password_hash(self.password_hash, plaintext)

    def to_dict(self):
        return {
            "id": self.id,
            "email": self.email,
            "firstName": self.first_name,
            "lastName": self.last_name,
            "profileImageUrl": self.profile_image_url,
            "subscriptionTier": self.subscription_tier,
            "subscriptionStatus": self.subscription_status,
            "subscriptionExpiresAt": _iso(self.subscription_expires_at),
            "createdAt": _iso(self.created_at),
        }

    def __repr__(self):
        return f"<User {self.email} {self.subscription_tier}/{self.subscription_status}>"


class Exercise(db.Model):
    __tablename__ = "exercise"

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(255), nullable=False)
    description = db.Column(db.Text, nullable=True)
    muscle_groups = db.Column(db.String(255), nullable=True)  # comma separated: chest,back,legs
    equipment = db.Column(db.String(80), nullable=True)       # barbell, dumbbell, machine, bodyweight
    instructions = db.Column(db.Text, nullable=True)
    video_url = db.Column(db.String(512), nullable=True)
    created_at = db.Column(db.DateTime, default=utcnow, nullable=False)

    def to_dict(self):
        return {
            "id": self.id,
            "name": self.name,
            "description": self.description,
            "muscleGroups": [g for g in (self.muscle_groups or "").split(",") if g],
            "equipment": self.equipment,
            "instructions": self.instructions,
            "videoUrl": self.video_url,
        }

    def __repr__(self):
        return f"<Exercise {self.name}>"


class WorkoutProgram(db.Model):
    __tablename__ = "workout_program"

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(255), nullable=False)
    description = db.Column(db.Text, nullable=True)
    difficulty = db.Column(db.String(40), nullable=True)  # beginner, intermediate, advanced
    type = db.Column(db.String(40), nullable=True)        # PPL, upper_lower, full_body, strength, cut, bulk
    duration_weeks = db.Column(db.Integer, nullable=True)
    is_active = db.Column(db.Boolean, default=True, nullable=False)
    created_at = db.Column(db.DateTime, default=utcnow, nullable=False)

    def to_dict(self):
        return {
            "id": self.id,
            "name": self.name,
            "description": self.description,
            "difficulty": self.difficulty,
            "type": self.type,
            "durationWeeks": self.duration_weeks,
        }


class WorkoutSession(db.Model):
    __tablename__ = "workout_session"

    id = db.Column(db.Integer, primary_key=True)
    user_id = db.Column(db.Integer, db.ForeignKey("user.id"), nullable=False, index=True)
    program_id = db.Column(db.Integer, db.ForeignKey("workout_program.id"), nullable=True)
    name = db.Column(db.String(255), nullable=False)
    date = db.Column(db.DateTime, nullable=False, default=utcnow)
    duration = db.Column(db.Integer, nullable=True)  # minutes
    notes = db.Column(db.Text, nullable=True)
    completed = db.Column(db.Boolean, default=False, nullable=False)
    created_at = db.Column(db.DateTime, default=utcnow, nullable=False)

    sets = db.relationship("WorkoutSet", backref="session", lazy=True, cascade="all, delete-orphan")

    def to_dict(self):
        return {
            "id": self.id,
            "userId": self.user_id,
            "programId": self.program_id,
            "name": self.name,
            "date": _iso(self.date),
            "duration": self.duration,
            "notes": self.notes,
            "completed": self.completed,
        }

    def __repr__(self):
        return f"<WorkoutSession {self.date:%Y-%m-%d} {self.name} completed={self.completed}>"


class WorkoutSet(db.Model):
    __tablename__ = "workout_set"

    id = db.Column(db.Integer, primary_key=True)
    session_id = db.Column(db.Integer, db.ForeignKey("workout_session.id"), nullable=False, index=True)
    exercise_id = db.Column(db.Integer, db.ForeignKey("exercise.id"), nullable=False)
    set_number = db.Column(db.Integer, nullable=False)
    reps = db.Column(db.Integer, nullable=True)
    weight = db.Column(db.Numeric(6, 2), nullable=True)
    rpe = db.Column(db.Numeric(3, 1), nullable=True)  # 1-10
    rest_time = db.Column(db.Integer, nullable=True)  # seconds
    tempo = db.Column(db.String(20), nullable=True)   # e.g. "3-1-1-0"
    completed = db.Column(db.Boolean, default=False, nullable=False)
    created_at = db.Column(db.DateTime, default=utcnow, nullable=False)

    def to_dict(self):
        return {
            "id": self.id,
            "sessionId": self.session_id,
            "exerciseId": self.exercise_id,
            "setNumber": self.set_number,
            "reps": self.reps,
            "weight": _num(self.weight),
            "rpe": _num(self.rpe),
            "restTime": self.rest_time,
            "tempo": self.tempo,
            "completed": self.completed,
        }

    def __repr__(self):
        return f"<WorkoutSet #{self.set_number} {self.weight}x{self.reps}>"


class Recipe(db.Model):
    __tablename__ = "recipe"

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(255), nullable=False)
    description = db.Column(db.Text, nullable=True)
    instructions = db.Column(db.Text, nullable=True)
    servings = db.Column(db.Integer, default=1, nullable=False)
    prep_time = db.Column(db.Integer, nullable=True)  # minutes
    cook_time = db.Column(db.Integer, nullable=True)  # minutes
    calories = db.Column(db.Numeric(8, 2), nullable=True)
    protein = db.Column(db.Numeric(6, 2), nullable=True)
    carbs = db.Column(db.Numeric(6, 2), nullable=True)
    fat = db.Column(db.Numeric(6, 2), nullable=True)
    fiber = db.Column(db.Numeric(6, 2), nullable=True)
    image_url = db.Column(db.String(512), nullable=True)
    is_active = db.Column(db.Boolean, default=True, nullable=False)
    created_at = db.Column(db.DateTime, default=utcnow, nullable=False)

    def to_dict(self):
        return {
            "id": self.id,
            "name": self.name,
            "description": self.description,
            "instructions": self.instructions,
            "servings": self.servings,
            "prepTime": self.prep_time,
            "cookTime": self.cook_time,
            "calories": _num(self.calories),
            "protein": _num(self.protein),
            "carbs": _num(self.carbs),
            "fat": _num(self.fat),
            "fiber": _num(self.fiber),
            "imageUrl": self.image_url,
        }


class MealEntry(db.Model):
    __tablename__ = "meal_entry"

    id = db.Column(db.Integer, primary_key=True)
    user_id = db.Column(db.Integer, db.ForeignKey("user.id"), nullable=False, index=True)
    recipe_id = db.Column(db.Integer, db.ForeignKey("recipe.id"), nullable=True)
    date = db.Column(db.DateTime, nullable=False, default=utcnow)
    meal_type = db.Column(db.String(20), nullable=True)  # breakfast, lunch, dinner, snack
    servings = db.Column(db.Numeric(4, 2), default=1, nullable=False)
    calories = db.Column(db.Numeric(8, 2), nullable=True)
    protein = db.Column(db.Numeric(6, 2), nullable=True)
    carbs = db.Column(db.Numeric(6, 2), nullable=True)
    fat = db.Column(db.Numeric(6, 2), nullable=True)
    created_at = db.Column(db.DateTime, default=utcnow, nullable=False)

    def to_dict(self):
        return {
            "id": self.id,
            "recipeId": self.recipe_id,
            "date": _iso(self.date),
            "mealType": self.meal_type,
            "servings": _num(self.servings),
            "calories": _num(self.calories),
            "protein": _num(self.protein),
            "carbs": _num(self.carbs),
            "fat": _num(self.fat),
        }


class ProgressPhoto(db.Model):
    __tablename__ = "progress_photo"

    id = db.Column(db.Integer, primary_key=True)
    user_id = db.Column(db.Integer, db.ForeignKey("user.id"), nullable=False, index=True)
    image_url = db.Column(db.String(512), nullable=False)
    date = db.Column(db.DateTime, nullable=False, default=utcnow)
    weight = db.Column(db.Numeric(5, 2), nullable=True)
    body_fat = db.Column(db.Numeric(4, 1), nullable=True)
    notes = db.Column(db.Text, nullable=True)
    created_at = db.Column(db.DateTime, default=utcnow, nullable=False)

    def to_dict(self):
        return {
            "id": self.id,
            "imageUrl": self.image_url,
            "date": _iso(self.date),
            "weight": _num(self.weight),
            "bodyFat": _num(self.body_fat),
            "notes": self.notes,
        }


class PersonalRecord(db.Model):
    __tablename__ = "personal_record"

    id = db.Column(db.Integer, primary_key=True)
    user_id = db.Column(db.Integer, db.ForeignKey("user.id"), nullable=False, index=True)
    exercise_id = db.Column(db.Integer, db.ForeignKey("exercise.id"), nullable=False)
    weight = db.Column(db.Numeric(6, 2), nullable=False)
    reps = db.Column(db.Integer, nullable=False)
    date = db.Column(db.DateTime, nullable=False, default=utcnow)
    created_at = db.Column(db.DateTime, default=utcnow, nullable=False)

    def to_dict(self):
        return {
            "id": self.id,
            "exerciseId": self.exercise_id,
            "weight": _num(self.weight),
            "reps": self.reps,
            "date": _iso(self.date),
        }

    def __repr__(self):
        return f"<PersonalRecord exercise={self.exercise_id} {self.weight}x{self.reps}>"


class ProcessedPayment(db.Model):
    """One row per Mollie payment whose "paid" webhook has been applied."""
    __tablename__ = "processed_payment"

    id = db.Column(db.Integer, primary_key=True)
    payment_id = db.Column(db.String(64), unique=True, nullable=False)
    user_id = db.Column(db.Integer, db.ForeignKey("user.id"), nullable=False)
    plan = db.Column(db.String(20), nullable=False)
    processed_at = db.Column(db.DateTime, default=utcnow, nullable=False)

    def __repr__(self):
        return f"<ProcessedPayment {self.payment_id} user={self.user_id} {self.plan}>"
