"""Billing models.

- StripeCustomer: links a Supabase user to a Stripe customer ID. Created
  lazily on first checkout; at most one row per user has deleted_at NULL.
- StripeSubscription: placeholder row written before a subscription
  checkout so webhook sync has something to update.
"""

import uuid

from shop2give.extensions import db


class StripeCustomer(db.Model):
    __tablename__ = "stripe_customers"

    id = db.Column(
        db.String(36), primary_key=True, default=lambda: str(uuid.uuid4())
    )
    user_id = db.Column(db.String(36), nullable=False, index=True)
    customer_id = db.Column(
        db.String(255), unique=True, nullable=False
    )  # e.g. "cus_..."
    created_at = db.Column(
        db.DateTime(timezone=True), server_default=db.func.now()
    )
    deleted_at = db.Column(db.DateTime(timezone=True), nullable=True)

    def __repr__(self):
        return f"<StripeCustomer user={self.user_id} stripe={self.customer_id}>"


class StripeSubscription(db.Model):
    __tablename__ = "stripe_subscriptions"

    # -- Valid statuses (not_started until the webhook syncs it) --
    STATUSES = [
        "not_started",
        "incomplete",
        "incomplete_expired",
        "trialing",
        "active",
        "past_due",
        "canceled",
        "unpaid",
        "paused",
    ]

    id = db.Column(
        db.String(36), primary_key=True, default=lambda: str(uuid.uuid4())
    )
    customer_id = db.Column(
        db.String(255), unique=True, nullable=False
    )
    subscription_id = db.Column(db.String(255), nullable=True)
    status = db.Column(db.String(50), nullable=False, default="not_started")
    created_at = db.Column(
        db.DateTime(timezone=True), server_default=db.func.now()
    )
    updated_at = db.Column(
        db.DateTime(timezone=True),
        server_default=db.func.now(),
        onupdate=db.func.now(),
    )

    def __repr__(self):
        return f"<StripeSubscription {self.customer_id} ({self.status})>"
