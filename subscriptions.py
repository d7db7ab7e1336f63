"""Subscription tiers and the payment-driven transitions between them.

A user's stored ``subscription_tier`` / ``subscription_status`` /
``subscription_expires_at`` columns are only ever read through
``subscription_state`` and only ever written through ``SubscriptionService``.
"""
from __future__ import annotations

import calendar
import json
import logging
import re
from dataclasses import dataclass
from datetime import datetime
from typing import Optional

from models import utcnow

logger = logging.getLogger(__name__)

TRIAL_PLAN = "Start"
TERMINAL_UNPAID = ("canceled", "expired", "failed")
_PAYMENT_ID_RE = re.compile(r"^[A-Za-z0-9_]{1,64}$")


@dataclass(frozen=True)
class Plan:
    name: str
    amount: str  # Mollie wants a string with exactly two decimals
    description: str
    months: int


PLANS = {
    "Pro":  Plan("Pro",  "14.99",  "Marcodonato Pro - Maandelijkse toegang", 1),
    "Jaar": Plan("Jaar", "119.00", "Marcodonato Jaar - Jaarlijkse toegang", 12),
}


# ── States ────────────────────────────────────────────────────────────────────

@dataclass(frozen=True)
class Trial:
    name = "trial"
    tier = TRIAL_PLAN


@dataclass(frozen=True)
class ActivePro:
    expires_at: Optional[datetime]
    name = "active"
    tier = "Pro"


@dataclass(frozen=True)
class ActiveYear:
    expires_at: Optional[datetime]
    name = "active"
    tier = "Jaar"


@dataclass(frozen=True)
class Expired:
    name = "expired"
    tier = None


@dataclass(frozen=True)
class Cancelled:
    name = "cancelled"
    tier = None


_ACTIVE_PAID = {"Pro": ActivePro, "Jaar": ActiveYear}


def subscription_state(user, now: datetime):
    """Decode a user's stored subscription columns.

    An active subscription whose expiry lies in the past is reported as
    ``Expired`` whether or not the stored status has caught up.
    """
    status = user.subscription_status
    if status == "cancelled":
        return Cancelled()
    if status != "active":
        return Expired()
    expires_at = user.subscription_expires_at
    if expires_at is not None and expires_at < now:
        return Expired()
    if user.subscription_tier == TRIAL_PLAN:
        return Trial()
    variant = _ACTIVE_PAID.get(user.subscription_tier)
    if variant is None:
        logger.warning("User %s has unknown tier %r", user.id, user.subscription_tier)
        return Expired()
    return variant(expires_at)


def has_access(state) -> bool:
    return isinstance(state, (Trial, ActivePro, ActiveYear))


def state_to_dict(state):
    expires_at = getattr(state, "expires_at", None)
    return {
        "state": state.name,
        "tier": state.tier,
        "expiresAt": expires_at.isoformat() if expires_at else None,
        "hasAccess": has_access(state),
    }


def add_months(moment: datetime, months: int) -> datetime:
    """Calendar-month addition; the day is clamped to the target month's length."""
    month_index = moment.month - 1 + months
    year = moment.year + month_index // 12
    month = month_index % 12 + 1
    day = min(moment.day, calendar.monthrange(year, month)[1])
    return moment.replace(year=year, month=month, day=day)


# ── Errors ────────────────────────────────────────────────────────────────────

class SubscriptionError(Exception):
    pass


class InvalidPlan(SubscriptionError):
    pass


class MalformedWebhook(SubscriptionError):
    """The webhook body does not carry a usable payment id."""


class WebhookProcessingError(SubscriptionError):
    """A paid payment could not be mapped back onto a user and plan."""


# ── Webhook decoding ─────────────────────────────────────────────────────────

@dataclass(frozen=True)
class PaymentNotification:
    payment_id: str


def decode_webhook(payload) -> PaymentNotification:
    """Accept Mollie's form body (or JSON) and keep nothing but the payment id."""
    payment_id = payload.get("id") if hasattr(payload, "get") else None
    if not isinstance(payment_id, str) or not _PAYMENT_ID_RE.match(payment_id.strip()):
        raise MalformedWebhook("webhook body has no valid payment id")
    return PaymentNotification(payment_id.strip())


def _paid_metadata(payment):
    metadata = payment.get("metadata")
    if isinstance(metadata, str):
        try:
            metadata = json.loads(metadata)
        except ValueError:
            metadata = None
    if not isinstance(metadata, dict):
        raise WebhookProcessingError(f"payment {payment.get('id')} has no metadata")
    plan = metadata.get("plan")
    if plan not in PLANS:
        raise WebhookProcessingError(f"payment {payment.get('id')} has unknown plan {plan!r}")
    try:
        user_id = int(metadata.get("userId"))
    except (TypeError, ValueError):
        raise WebhookProcessingError(f"payment {payment.get('id')} has no usable userId") from None
    return user_id, plan


# ── Service ───────────────────────────────────────────────────────────────────

class SubscriptionService:
    def __init__(self, store, gateway, clock=utcnow):
        self.store = store
        self.gateway = gateway
        self.clock = clock

    def current_state(self, user):
        return subscription_state(user, self.clock())

    def start_trial(self, user_id):
        self.store.update_subscription(user_id, TRIAL_PLAN, "active", keep_expiry=True)
        logger.info("User %s started the %s trial", user_id, TRIAL_PLAN)

    def create_checkout(self, user_id, plan, redirect_url, webhook_url, trial_url):
        """Return the URL the client should go to for ``plan``.

        Paid plans get a Mollie hosted checkout; nothing is written until the
        webhook confirms the payment.
        """
        if plan == TRIAL_PLAN:
            return trial_url
        selected = PLANS.get(plan)
        if selected is None:
            raise InvalidPlan(f"unknown plan {plan!r}")
        payment = self.gateway.create_payment(
            amount=selected.amount,
            description=selected.description,
            redirect_url=redirect_url,
            webhook_url=webhook_url,
            metadata={"userId": str(user_id), "plan": selected.name},
        )
        logger.info("Checkout %s created for user %s plan %s", payment.get("id"), user_id, plan)
        return self.gateway.checkout_url(payment)

    def handle_webhook(self, payload):
        """Apply a Mollie payment notification.

        Returns "applied", "duplicate" or "ignored".
        """
        notification = decode_webhook(payload)
        payment_id = notification.payment_id
        payment = self.gateway.get_payment(payment_id)
        status = payment.get("status")

        if status != "paid":
            if status in TERMINAL_UNPAID:
                logger.info("Payment %s ended as %s; subscription unchanged", payment_id, status)
            else:
                logger.info("Payment %s is %s; waiting for a final status", payment_id, status)
            return "ignored"

        user_id, plan = _paid_metadata(payment)
        if self.store.is_payment_processed(payment_id):
            logger.info("Payment %s already applied for user %s", payment_id, user_id)
            return "duplicate"

        expires_at = add_months(self.clock(), PLANS[plan].months)
        applied = self.store.apply_paid_subscription(
            payment_id, user_id, plan, expires_at, payment.get("customerId"))
        if not applied:
            return "duplicate"
        logger.info("Payment %s activated %s for user %s until %s",
                    payment_id, plan, user_id, expires_at.isoformat())
        return "applied"
