"""
Entitlement resolution and Stripe webhook handling.

The subscriptions table is the only thing the review pipeline reads; it is
kept in sync by Stripe events delivered to the webhook endpoint.
"""

import json
import logging
from datetime import datetime
from typing import Callable, Dict, Optional

import stripe
from sqlalchemy.orm import Session, sessionmaker

from code_roast.entities import Subscription
from code_roast.errors import ValidationError
from code_roast.models import Entitlement

logger = logging.getLogger(__name__)

PLAN_FREE = "free"
PLAN_PRO = "pro"
PLAN_TEAM = "team"


def resolve_entitlement(db: Session, user_id: str) -> Entitlement:
    """Current plan of a user. Users without a subscription row are on free."""
    sub = db.query(Subscription).filter(Subscription.user_id == user_id).one_or_none()
    if sub is None:
        return Entitlement()

    is_subscribed = sub.plan != PLAN_FREE and sub.status == "active"
    return Entitlement(
        plan=sub.plan,
        status=sub.status,
        is_subscribed=is_subscribed,
        is_canceled=is_subscribed and bool(sub.cancel_at_period_end),
        period_end=sub.stripe_current_period_end,
    )


def create_free_subscription(db: Session, user_id: str) -> Subscription:
    """Placeholder subscription for a new account; not known to Stripe."""
    sub = Subscription(
        user_id=user_id,
        stripe_customer_id=f"cus_free_{user_id}",
        plan=PLAN_FREE,
    )
    db.add(sub)
    return sub


def _from_timestamp(value) -> Optional[datetime]:
    if value in (None, ""):
        return None
    return datetime.fromtimestamp(int(value))


def fetch_stripe_subscription(subscription_id: str, api_key: Optional[str] = None) -> Dict:
    """Retrieve a subscription from Stripe and flatten the fields we store."""
    sub = stripe.Subscription.retrieve(subscription_id, api_key=api_key)
    item = sub["items"]["data"][0]

    # Newer API versions moved the period end onto the subscription item
    try:
        period_end = sub["current_period_end"]
    except KeyError:
        period_end = item["current_period_end"]

    try:
        cancel_at_period_end = bool(sub["cancel_at_period_end"])
    except KeyError:
        cancel_at_period_end = False

    return {
        "id": sub["id"],
        "status": sub["status"],
        "price_id": item["price"]["id"],
        "current_period_end": period_end,
        "cancel_at_period_end": cancel_at_period_end,
    }


class StripeWebhookHandler:
    """
    Verifies and applies Stripe events.

    Handled event types:
    - checkout.session.completed: upsert the subscription of metadata.userId
    - invoice.payment_succeeded: refresh period end and status
    - customer.subscription.updated: refresh status, period end, cancel flag
    - customer.subscription.deleted: back to free / canceled
    """

    def __init__(
        self,
        session_factory: sessionmaker,
        webhook_secret: Optional[str],
        price_plans: Dict[str, str],
        retrieve_subscription: Optional[Callable[[str], Dict]] = None,
        stripe_api_key: Optional[str] = None,
    ):
        self.session_factory = session_factory
        self.webhook_secret = webhook_secret
        self.price_plans = dict(price_plans)
        self._retrieve = retrieve_subscription or (
            lambda sid: fetch_stripe_subscription(sid, api_key=stripe_api_key)
        )

    def plan_for_price(self, price_id: Optional[str]) -> str:
        return self.price_plans.get(price_id, PLAN_FREE)

    def construct_event(self, payload: bytes, signature: Optional[str]) -> Dict:
        """Check the Stripe-Signature header and decode the event body."""
        if not self.webhook_secret:
            raise RuntimeError("STRIPE_WEBHOOK_SECRET is not configured")
        if not signature:
            raise ValidationError({"signature": ["Missing Stripe-Signature header"]})

        body = payload.decode("utf-8") if isinstance(payload, bytes) else payload
        try:
            stripe.WebhookSignature.verify_header(body, signature, self.webhook_secret)
        except stripe.SignatureVerificationError as e:
            logger.warning("Rejected webhook with bad signature")
            raise ValidationError({"signature": ["Webhook Error: invalid signature"]}) from e

        try:
            event = json.loads(body)
        except json.JSONDecodeError as e:
            raise ValidationError({"payload": ["Webhook Error: invalid payload"]}) from e
        if not isinstance(event, dict) or "type" not in event:
            raise ValidationError({"payload": ["Webhook Error: invalid payload"]})
        return event

    def handle(self, payload: bytes, signature: Optional[str]) -> str:
        event = self.construct_event(payload, signature)
        self.apply_event(event)
        return event["type"]

    def apply_event(self, event: Dict) -> bool:
        """Apply a decoded event. Returns False for unhandled types."""
        event_type = event.get("type")
        obj = (event.get("data") or {}).get("object") or {}

        handlers = {
            "checkout.session.completed": self._on_checkout_completed,
            "invoice.payment_succeeded": self._on_invoice_paid,
            "customer.subscription.updated": self._on_subscription_updated,
            "customer.subscription.deleted": self._on_subscription_deleted,
        }
        handler = handlers.get(event_type)
        if handler is None:
            logger.warning("Unhandled event type: %s", event_type)
            return False

        db = self.session_factory()
        try:
            handler(db, obj)
            db.commit()
        except Exception:
            db.rollback()
            raise
        finally:
            db.close()

        logger.info("Applied Stripe event %s", event_type)
        return True

    def _on_checkout_completed(self, db: Session, checkout: Dict) -> None:
        subscription_id = checkout.get("subscription")
        customer_id = checkout.get("customer")
        user_id = (checkout.get("metadata") or {}).get("userId")
        if not subscription_id or not customer_id:
            return
        if not user_id:
            logger.warning("Checkout session without userId metadata, ignoring")
            return

        remote = self._retrieve(subscription_id)
        fields = {
            "stripe_subscription_id": remote["id"],
            "stripe_price_id": remote["price_id"],
            "stripe_current_period_end": _from_timestamp(remote.get("current_period_end")),
            "cancel_at_period_end": bool(remote.get("cancel_at_period_end")),
            "plan": self.plan_for_price(remote["price_id"]),
            "status": remote["status"],
        }

        sub = db.query(Subscription).filter(Subscription.user_id == user_id).one_or_none()
        if sub is None:
            sub = Subscription(user_id=user_id, stripe_customer_id=customer_id, **fields)
            db.add(sub)
        else:
            for key, value in fields.items():
                setattr(sub, key, value)

    def _on_invoice_paid(self, db: Session, invoice: Dict) -> None:
        subscription_id = invoice.get("subscription")
        if not subscription_id:
            return
        remote = self._retrieve(subscription_id)
        db.query(Subscription).filter(
            Subscription.stripe_subscription_id == remote["id"]
        ).update(
            {
                Subscription.stripe_current_period_end: _from_timestamp(remote.get("current_period_end")),
                Subscription.status: remote["status"],
            },
            synchronize_session=False,
        )

    def _on_subscription_updated(self, db: Session, subscription: Dict) -> None:
        subscription_id = subscription.get("id")
        if not subscription_id:
            return
        values = {
            Subscription.status: subscription.get("status"),
            Subscription.cancel_at_period_end: bool(subscription.get("cancel_at_period_end")),
        }
        period_end = subscription.get("current_period_end")
        if period_end:
            values[Subscription.stripe_current_period_end] = _from_timestamp(period_end)
        db.query(Subscription).filter(
            Subscription.stripe_subscription_id == subscription_id
        ).update(values, synchronize_session=False)

    def _on_subscription_deleted(self, db: Session, subscription: Dict) -> None:
        subscription_id = subscription.get("id")
        if not subscription_id:
            return
        db.query(Subscription).filter(
            Subscription.stripe_subscription_id == subscription_id
        ).update(
            {
                Subscription.status: "canceled",
                Subscription.plan: PLAN_FREE,
                Subscription.stripe_subscription_id: None,
                Subscription.stripe_price_id: None,
                Subscription.cancel_at_period_end: False,
            },
            synchronize_session=False,
        )
