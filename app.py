import os
import logging
from decimal import Decimal, InvalidOperation
from functools import wraps
from datetime import date, datetime, timedelta, timezone
from urllib.parse import urlencode
from flask import Flask, redirect, request, jsonify, session, url_for
from models import db, utcnow
from storage import DatabaseStorage
from analytics import Analytics
from gateway import MOLLIE_API_URL, GatewayConfigError, MollieGateway, PaymentError
from subscriptions import (
    TRIAL_PLAN,
    InvalidPlan,
    MalformedWebhook,
    SubscriptionService,
    has_access,
    state_to_dict,
)

basedir = os.path.abspath(os.path.dirname(__file__))

app = Flask(__name__)
app.config["SECRET_KEY"] = os.environ.get("SECRET_KEY", "dev-secret-key-change-in-production")
app.config["SQLALCHEMY_DATABASE_URI"] = os.environ.get(
    "DATABASE_URL",
    "sqlite:///" + os.path.join(basedir, "fitness.db"),
)
app.config["SQLALCHEMY_TRACK_MODIFICATIONS"] = False
app.config["MOLLIE_API_KEY"] = os.environ.get("MOLLIE_API_KEY", "")
app.config["MOLLIE_API_URL"] = os.environ.get("MOLLIE_API_URL", MOLLIE_API_URL)
app.config["MOLLIE_TIMEOUT"] = float(os.environ.get("MOLLIE_TIMEOUT", "10"))
# Mollie must be able to reach the webhook; set this when running behind a proxy
app.config["PUBLIC_BASE_URL"] = os.environ.get("PUBLIC_BASE_URL", "")

logging.basicConfig(
    level=os.environ.get("LOG_LEVEL", "INFO").upper(),
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)
logger = logging.getLogger("fitness")

db.init_app(app)

storage = DatabaseStorage(db.session)
analytics = Analytics(storage)
subscriptions = SubscriptionService(
    storage,
    MollieGateway(
        app.config["MOLLIE_API_KEY"],
        base_url=app.config["MOLLIE_API_URL"],
        timeout=app.config["MOLLIE_TIMEOUT"],
    ),
)

MEAL_TYPES = ("breakfast", "lunch", "dinner", "snack")

# Column limits: 32-bit INTEGER, and the largest value each NUMERIC(p, s) holds
INT_MIN, INT_MAX = -2**31, 2**31 - 1
MAX_LOAD = Decimal("9999.99")
MAX_RPE = Decimal("10")
MAX_SERVINGS = Decimal("99.99")
MAX_CALORIES = Decimal("999999.99")
MAX_MACRO = Decimal("9999.99")
MAX_BODY_WEIGHT = Decimal("999.99")
MAX_BODY_FAT = Decimal("100")

# ── Request parsing ───────────────────────────────────────────────────────────

class ValidationError(ValueError):
    pass


@app.errorhandler(ValidationError)
def validation_error(exc):
    return jsonify({"error": str(exc)}), 400


def _json_body():
    data = request.get_json(force=True, silent=True)
    if not isinstance(data, dict):
        raise ValidationError("Request body must be a JSON object")
    return data


def _parse_when(value, field):
    """ISO date or datetime → naive datetime (dates become midnight)."""
    if isinstance(value, str) and value.strip():
        text = value.strip().replace("Z", "+00:00")
        try:
            parsed = datetime.fromisoformat(text)
        except ValueError:
            raise ValidationError(f"'{field}' must be an ISO date or datetime") from None
        if parsed.tzinfo is not None:
            parsed = parsed.astimezone(timezone.utc).replace(tzinfo=None)
        return parsed
    raise ValidationError(f"'{field}' must be an ISO date or datetime")


def _opt_when(data, field, default=None):
    value = data.get(field)
    if value is None:
        return default
    return _parse_when(value, field)


def _opt_int(data, field, minimum=INT_MIN, maximum=INT_MAX):
    value = data.get(field)
    if value is None:
        return None
    if isinstance(value, bool):
        raise ValidationError(f"'{field}' must be an integer")
    try:
        number = int(value)
    except (TypeError, ValueError):
        raise ValidationError(f"'{field}' must be an integer") from None
    if minimum is not None and number < minimum:
        raise ValidationError(f"'{field}' must be at least {minimum}")
    if maximum is not None and number > maximum:
        raise ValidationError(f"'{field}' must be at most {maximum}")
    return number


def _req_int(data, field, minimum=INT_MIN, maximum=INT_MAX):
    number = _opt_int(data, field, minimum, maximum)
    if number is None:
        raise ValidationError(f"'{field}' is required")
    return number


def _opt_decimal(data, field, maximum):
    value = data.get(field)
    if value is None:
        return None
    if isinstance(value, bool):
        raise ValidationError(f"'{field}' must be a number")
    try:
        number = Decimal(str(value))
    except InvalidOperation:
        raise ValidationError(f"'{field}' must be a number") from None
    if not number.is_finite() or number < 0:
        raise ValidationError(f"'{field}' must be a non-negative number")
    if number > maximum:
        raise ValidationError(f"'{field}' must be at most {maximum}")
    return number


def _opt_bool(data, field):
    value = data.get(field)
    if value is None:
        return None
    if not isinstance(value, bool):
        raise ValidationError(f"'{field}' must be true or false")
    return value


def _req_str(data, field, max_length=255):
    value = data.get(field)
    if not isinstance(value, str) or not value.strip():
        raise ValidationError(f"'{field}' is required")
    if len(value) > max_length:
        raise ValidationError(f"'{field}' is too long")
    return value.strip()


def _opt_str(data, field, max_length=None):
    value = data.get(field)
    if value is None:
        return None
    if not isinstance(value, str):
        raise ValidationError(f"'{field}' must be a string")
    if max_length is not None and len(value) > max_length:
        raise ValidationError(f"'{field}' is too long")
    return value


def _drop_none(fields):
    return {k: v for k, v in fields.items() if v is not None}


def _external_url(endpoint, **values):
    base = app.config.get("PUBLIC_BASE_URL")
    if base:
        return base.rstrip("/") + url_for(endpoint, **values)
    return url_for(endpoint, _external=True, **values)


def _week_start(day: date) -> datetime:
    monday = day - timedelta(days=day.weekday())
    return datetime(monday.year, monday.month, monday.day)

# ── Auth helpers ──────────────────────────────────────────────────────────────

def current_user():
    """Return the logged-in User object, or None."""
    uid = session.get("user_id")
    if uid is None:
        return None
    return storage.get_user(uid)


def login_required(f):
    @wraps(f)
    def decorated(*args, **kwargs):
        if current_user() is None:
            return jsonify({"error": "Authentication required"}), 401
        return f(*args, **kwargs)
    return decorated


def subscription_required(f):
    @wraps(f)
    def decorated(*args, **kwargs):
        state = subscriptions.current_state(current_user())
        if not has_access(state):
            return jsonify({"error": "An active subscription is required",
                            "subscription_required": True}), 402
        return f(*args, **kwargs)
    return decorated


def _user_payload(user):
    payload = user.to_dict()
    payload["subscription"] = state_to_dict(subscriptions.current_state(user))
    return payload

# ── Auth routes ───────────────────────────────────────────────────────────────

@app.route("/register", methods=["POST"])
def register():
    data = _json_body()
    email = _req_str(data, "email").lower()
    password = data.get("password")
    if not isinstance(password, str) or not password:
        raise ValidationError("'password' is required")
    if "@" not in email:
        raise ValidationError("'email' is not a valid address")
    if storage.get_user_by_email(email):
        return jsonify({"error": "That email is already registered"}), 409
    user = storage.create_user(
        email,
        password,
        first_name=_opt_str(data, "firstName", 120),
        last_name=_opt_str(data, "lastName", 120),
    )
    session["user_id"] = user.id
    logger.info("Registered user %s", user.id)
    return jsonify(_user_payload(user)), 201


@app.route("/login", methods=["POST"])
def login():
    data = _json_body()
    email = data.get("email") if isinstance(data.get("email"), str) else ""
    password = data.get("password") if isinstance(data.get("password"), str) else ""
    email = email.strip().lower()
    user = storage.get_user_by_email(email)
    if user and user.check_password(password):
        session["user_id"] = user.id
        return jsonify(_user_payload(user))
    return jsonify({"error": "Invalid email or password"}), 401


@app.route("/logout", methods=["POST"])
def logout():
    session.pop("user_id", None)
    return jsonify({"success": True})


@app.route("/auth/user")
@login_required
def auth_user():
    return jsonify(_user_payload(current_user()))

# ── Dashboard & analytics ─────────────────────────────────────────────────────

@app.route("/")
@login_required
def dashboard():
    user = current_user()
    today = utcnow().date()
    week_start = _week_start(today)
    return jsonify({
        "user": _user_payload(user),
        "streak": analytics.workout_streak(user.id, today),
        "weekStart": week_start.date().isoformat(),
        "weekVolume": analytics.weekly_volume(user.id, week_start),
        "recentSessions": [s.to_dict() for s in storage.get_workout_sessions(user.id, limit=5)],
    })


@app.route("/analytics/volume")
@login_required
def analytics_volume():
    user = current_user()
    week_start = _opt_when(request.args, "weekStart", default=utcnow())
    return jsonify({"volume": analytics.weekly_volume(user.id, week_start)})


@app.route("/analytics/streak")
@login_required
def analytics_streak():
    user = current_user()
    return jsonify({"streak": analytics.workout_streak(user.id)})

# ── Subscription & payments ───────────────────────────────────────────────────

@app.route("/subscription")
@login_required
def subscription_status():
    return jsonify(state_to_dict(subscriptions.current_state(current_user())))


@app.route("/subscription/trial", methods=["POST"])
@login_required
def start_trial():
    user = current_user()
    subscriptions.start_trial(user.id)
    return jsonify(state_to_dict(subscriptions.current_state(storage.get_user(user.id))))


@app.route("/create-payment", methods=["POST"])
@login_required
def create_payment():
    user = current_user()
    data = request.get_json(force=True, silent=True) or {}
    plan = data.get("plan") if isinstance(data, dict) else None
    if not isinstance(plan, str):
        return jsonify({"error": "Invalid plan selected"}), 400
    try:
        url = subscriptions.create_checkout(
            user.id,
            plan,
            redirect_url=_external_url("payment_success", plan=plan),
            webhook_url=_external_url("payment_webhook"),
            trial_url="/?" + urlencode({"payment": "trial", "plan": TRIAL_PLAN}),
        )
    except InvalidPlan:
        return jsonify({"error": "Invalid plan selected"}), 400
    except GatewayConfigError:
        logger.error("Checkout for user %s plan %s failed: payment provider not configured", user.id, plan)
        return jsonify({"error": "Payment provider is not configured"}), 500
    except PaymentError:
        logger.exception("Checkout for user %s plan %s failed", user.id, plan)
        return jsonify({"error": "Payment creation failed"}), 500
    return jsonify({"url": url})


@app.route("/payment/success")
def payment_success():
    plan = request.args.get("plan", "")
    return redirect("/?" + urlencode({"payment": "success", "plan": plan}))


@app.route("/payment/webhook", methods=["POST"])
def payment_webhook():
    payload = request.form if request.form else (request.get_json(force=True, silent=True) or {})
    payment_id = payload.get("id") if hasattr(payload, "get") else None
    try:
        outcome = subscriptions.handle_webhook(payload)
    except MalformedWebhook as exc:
        logger.warning("Rejected payment webhook: %s", exc)
        return "Bad Request", 400
    except Exception:
        # Mollie retries on any non-2xx answer
        db.session.rollback()
        logger.exception("Payment webhook processing failed for payment %s", payment_id)
        return "Processing failed", 500
    logger.info("Payment webhook %s: %s", payment_id, outcome)
    return "OK", 200

# ── Workouts ──────────────────────────────────────────────────────────────────

@app.route("/workouts/programs")
@login_required
@subscription_required
def workout_programs():
    return jsonify([p.to_dict() for p in storage.get_workout_programs()])


@app.route("/exercises")
@login_required
def exercises():
    return jsonify([e.to_dict() for e in storage.get_exercises()])


@app.route("/workouts/sessions", methods=["GET"])
@login_required
def workout_sessions():
    user = current_user()
    limit = _opt_int(request.args, "limit", minimum=1) or 20
    return jsonify([s.to_dict() for s in storage.get_workout_sessions(user.id, limit=min(limit, 200))])


@app.route("/workouts/sessions", methods=["POST"])
@login_required
def create_workout_session():
    user = current_user()
    data = _json_body()
    when = _opt_when(data, "date", default=utcnow())
    if when.date() > utcnow().date():
        raise ValidationError("'date' cannot be in the future")
    fields = _drop_none({
        "user_id": user.id,
        "program_id": _opt_int(data, "programId"),
        "name": _req_str(data, "name"),
        "date": when,
        "duration": _opt_int(data, "duration", minimum=0),
        "notes": _opt_str(data, "notes"),
        "completed": _opt_bool(data, "completed"),
    })
    workout_session = storage.create_workout_session(**fields)
    return jsonify(workout_session.to_dict()), 201


@app.route("/workouts/sessions/<int:session_id>", methods=["PATCH"])
@login_required
def update_workout_session(session_id):
    user = current_user()
    workout_session = storage.get_workout_session(session_id, user_id=user.id)
    if workout_session is None:
        return jsonify({"error": "Workout session not found"}), 404
    data = _json_body()
    updates = _drop_none({
        "completed": _opt_bool(data, "completed"),
        "duration": _opt_int(data, "duration", minimum=0),
        "notes": _opt_str(data, "notes"),
    })
    storage.update_workout_session(workout_session, updates)
    return jsonify(workout_session.to_dict())


@app.route("/workouts/sessions/<int:session_id>/sets")
@login_required
def workout_sets(session_id):
    user = current_user()
    if storage.get_workout_session(session_id, user_id=user.id) is None:
        return jsonify({"error": "Workout session not found"}), 404
    return jsonify([s.to_dict() for s in storage.get_workout_sets(session_id)])


@app.route("/workouts/sets", methods=["POST"])
@login_required
def create_workout_set():
    user = current_user()
    data = _json_body()
    session_id = _req_int(data, "sessionId")
    if storage.get_workout_session(session_id, user_id=user.id) is None:
        return jsonify({"error": "Workout session not found"}), 404
    exercise_id = _req_int(data, "exerciseId")
    if storage.get_exercise(exercise_id) is None:
        raise ValidationError("Unknown exercise")
    fields = _drop_none({
        "session_id": session_id,
        "exercise_id": exercise_id,
        "set_number": _req_int(data, "setNumber", minimum=1),
        "reps": _opt_int(data, "reps", minimum=0),
        "weight": _opt_decimal(data, "weight", MAX_LOAD),
        "rpe": _opt_decimal(data, "rpe", MAX_RPE),
        "rest_time": _opt_int(data, "restTime", minimum=0),
        "tempo": _opt_str(data, "tempo", 20),
        "completed": _opt_bool(data, "completed"),
    })
    workout_set = storage.create_workout_set(**fields)
    return jsonify(workout_set.to_dict()), 201


@app.route("/workouts/sets/<int:set_id>", methods=["PATCH"])
@login_required
def update_workout_set(set_id):
    user = current_user()
    workout_set = storage.get_workout_set(set_id, user.id)
    if workout_set is None:
        return jsonify({"error": "Workout set not found"}), 404
    data = _json_body()
    updates = _drop_none({
        "reps": _opt_int(data, "reps", minimum=0),
        "weight": _opt_decimal(data, "weight", MAX_LOAD),
        "rpe": _opt_decimal(data, "rpe", MAX_RPE),
        "rest_time": _opt_int(data, "restTime", minimum=0),
        "tempo": _opt_str(data, "tempo", 20),
        "completed": _opt_bool(data, "completed"),
    })
    storage.update_workout_set(workout_set, updates)
    return jsonify(workout_set.to_dict())

# ── Nutrition ─────────────────────────────────────────────────────────────────

@app.route("/nutrition/recipes")
@login_required
@subscription_required
def recipes():
    return jsonify([r.to_dict() for r in storage.get_recipes()])


@app.route("/nutrition/meals", methods=["GET"])
@login_required
def meal_entries():
    user = current_user()
    day = _opt_when(request.args, "date", default=utcnow()).date()
    return jsonify([m.to_dict() for m in storage.get_meal_entries(user.id, day)])


@app.route("/nutrition/meals", methods=["POST"])
@login_required
def create_meal_entry():
    user = current_user()
    data = _json_body()
    recipe_id = _opt_int(data, "recipeId")
    if recipe_id is not None and storage.get_recipe(recipe_id) is None:
        raise ValidationError("Unknown recipe")
    meal_type = _opt_str(data, "mealType")
    if meal_type is not None and meal_type not in MEAL_TYPES:
        raise ValidationError(f"'mealType' must be one of {', '.join(MEAL_TYPES)}")
    fields = _drop_none({
        "user_id": user.id,
        "recipe_id": recipe_id,
        "date": _opt_when(data, "date", default=utcnow()),
        "meal_type": meal_type,
        "servings": _opt_decimal(data, "servings", MAX_SERVINGS),
        "calories": _opt_decimal(data, "calories", MAX_CALORIES),
        "protein": _opt_decimal(data, "protein", MAX_MACRO),
        "carbs": _opt_decimal(data, "carbs", MAX_MACRO),
        "fat": _opt_decimal(data, "fat", MAX_MACRO),
    })
    meal = storage.create_meal_entry(**fields)
    return jsonify(meal.to_dict()), 201

# ── Progress ──────────────────────────────────────────────────────────────────

@app.route("/progress/photos", methods=["GET"])
@login_required
def progress_photos():
    user = current_user()
    return jsonify([p.to_dict() for p in storage.get_progress_photos(user.id)])


@app.route("/progress/photos", methods=["POST"])
@login_required
def create_progress_photo():
    user = current_user()
    data = _json_body()
    fields = _drop_none({
        "user_id": user.id,
        "image_url": _req_str(data, "imageUrl", 512),
        "date": _opt_when(data, "date", default=utcnow()),
        "weight": _opt_decimal(data, "weight", MAX_BODY_WEIGHT),
        "body_fat": _opt_decimal(data, "bodyFat", MAX_BODY_FAT),
        "notes": _opt_str(data, "notes"),
    })
    photo = storage.create_progress_photo(**fields)
    return jsonify(photo.to_dict()), 201


@app.route("/progress/records", methods=["GET"])
@login_required
def personal_records():
    user = current_user()
    exercise_id = _opt_int(request.args, "exerciseId")
    return jsonify([r.to_dict() for r in storage.get_personal_records(user.id, exercise_id)])


@app.route("/progress/records", methods=["POST"])
@login_required
def create_personal_record():
    user = current_user()
    data = _json_body()
    exercise_id = _req_int(data, "exerciseId")
    if storage.get_exercise(exercise_id) is None:
        raise ValidationError("Unknown exercise")
    weight = _opt_decimal(data, "weight", MAX_LOAD)
    if weight is None:
        raise ValidationError("'weight' is required")
    record = storage.create_personal_record(
        user_id=user.id,
        exercise_id=exercise_id,
        weight=weight,
        reps=_req_int(data, "reps", minimum=1),
        date=_opt_when(data, "date", default=utcnow()),
    )
    return jsonify(record.to_dict()), 201


with app.app_context():
    db.create_all()

if __name__ == "__main__":
    app.run(debug=True)
