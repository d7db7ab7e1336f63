"""Shared fixtures: in-memory database, logged-in client and a fake Mollie gateway."""

import os

os.environ["DATABASE_URL"] = "sqlite://"
os.environ["MOLLIE_API_KEY"] = ""

from datetime import datetime
from decimal import Decimal

import pytest

import app as app_module
from gateway import GatewayError, MollieGateway
from models import db, Exercise, WorkoutSession, WorkoutSet
from subscriptions import SubscriptionService


class FakeGateway:
    """Stands in for MollieGateway; keeps payments in a dict keyed by id."""

    def __init__(self):
        self.payments = {}
        self.created = []
        self.fetched = []

    def create_payment(self, amount, description, redirect_url, webhook_url, metadata):
        payment_id = f"tr_test{len(self.created) + 1}"
        payment = {
            "id": payment_id,
            "status": "open",
            "amount": {"currency": "EUR", "value": amount},
            "description": description,
            "redirectUrl": redirect_url,
            "webhookUrl": webhook_url,
            "metadata": metadata,
            "_links": {"checkout": {"href": f"https://www.mollie.com/checkout/{payment_id}"}},
        }
        self.created.append(payment)
        self.payments[payment_id] = payment
        return payment

    def get_payment(self, payment_id):
        self.fetched.append(payment_id)
        if payment_id not in self.payments:
            raise GatewayError(f"GET /payments/{payment_id} returned 404", status_code=404)
        return self.payments[payment_id]

    checkout_url = staticmethod(MollieGateway.checkout_url)

    def add_payment(self, payment_id, status, user_id=None, plan=None, customer_id="cst_test", metadata=None):
        if metadata is None:
            metadata = {"userId": str(user_id), "plan": plan}
        self.payments[payment_id] = {
            "id": payment_id,
            "status": status,
            "customerId": customer_id,
            "metadata": metadata,
        }
        return self.payments[payment_id]


@pytest.fixture
def flask_app():
    flask_app = app_module.app
    flask_app.config.update(TESTING=True)
    with flask_app.app_context():
        db.drop_all()
        db.create_all()
        yield flask_app
        db.session.remove()


@pytest.fixture
def store(flask_app):
    return app_module.storage


@pytest.fixture
def gateway(flask_app, monkeypatch):
    fake = FakeGateway()
    monkeypatch.setattr(app_module, "subscriptions", SubscriptionService(app_module.storage, fake))
    return fake


@pytest.fixture
def service(gateway):
    return app_module.subscriptions


@pytest.fixture
def client(flask_app):
    return flask_app.test_client()


@pytest.fixture
def user(store):
    return store.create_user("lifter@example.com", "hunter2", first_name="Sam")


@pytest.fixture
def other_user(store):
    return store.create_user("rival@example.com", "hunter3")


@pytest.fixture
def auth_client(client, user):
    response = client.post("/login", json={"email": "lifter@example.com", "password": "hunter2"})
    assert response.status_code == 200
    return client


@pytest.fixture
def exercise(flask_app):
    squat = Exercise(name="Barbell Back Squat", equipment="barbell", muscle_groups="legs,glutes")
    db.session.add(squat)
    db.session.commit()
    return squat


@pytest.fixture
def add_workout(exercise):
    """Insert a session with sets given as (weight, reps, completed) tuples."""

    def _add(user, when, completed=True, sets=()):
        if not isinstance(when, datetime):
            when = datetime(when.year, when.month, when.day, 18, 0)
        workout = WorkoutSession(user_id=user.id, name="Leg day", date=when, completed=completed)
        db.session.add(workout)
        db.session.flush()
        for number, (weight, reps, set_completed) in enumerate(sets, start=1):
            db.session.add(WorkoutSet(
                session_id=workout.id,
                exercise_id=exercise.id,
                set_number=number,
                weight=Decimal(str(weight)) if weight is not None else None,
                reps=reps,
                completed=set_completed,
            ))
        db.session.commit()
        return workout

    return _add
