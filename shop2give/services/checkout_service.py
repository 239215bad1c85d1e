"""Checkout service — Stripe Checkout Sessions for authenticated users.

Responsible for:
- Validating the checkout request body
- Getting or creating the user's Stripe customer + stripe_customers mapping
- Writing the not_started subscription placeholder for subscription mode
- Creating the Checkout Session
- One checkout_logs row per attempt

Stripe customers created by this request are deleted again if the
request fails before the session exists (see saga.py). Pre-existing
customers are never touched.
"""

import json
import logging

import stripe
from sqlalchemy.exc import SQLAlchemyError

from shop2give.errors import ApiError, ExternalSystemError
from shop2give.extensions import db
from shop2give.models.billing import StripeCustomer, StripeSubscription
from shop2give.models.checkout_log import CheckoutLog
from shop2give.services.saga import Saga
from shop2give.services.stripe_config import require_stripe_key, stripe_error_message

logger = logging.getLogger(__name__)

CHECKOUT_MODES = ("payment", "subscription")
STRING_PARAMETERS = ("price_id", "success_url", "cancel_url")


# ──────────────────────────────────────────────
# Validation & audit log
# ──────────────────────────────────────────────

def validate_parameters(payload):
    """Return the first problem with the request body, or None."""
    for name in STRING_PARAMETERS:
        value = payload.get(name)
        if value is None:
            return f"Missing required parameter {name}"
        if not isinstance(value, str):
            return f"Expected parameter {name} to be a string got {json.dumps(value)}"

    if payload.get("mode") not in CHECKOUT_MODES:
        return f"Expected parameter mode to be one of {', '.join(CHECKOUT_MODES)}"
    return None


def log_checkout_attempt(user_id, success, error_message=None):
    """Append a checkout_logs row. A failed insert is logged, not raised."""
    if success:
        logger.info(f"Checkout succeeded for user {user_id}")
    else:
        logger.warning(f"Checkout failed for user {user_id}: {error_message}")

    try:
        db.session.add(CheckoutLog(
            user_id=user_id,
            success=success,
            error_message=error_message,
        ))
        db.session.commit()
    except SQLAlchemyError as e:
        db.session.rollback()
        logger.error(f"Error logging checkout attempt for user {user_id}: {e}")


# ──────────────────────────────────────────────
# Customer & subscription bookkeeping
# ──────────────────────────────────────────────

def get_active_customer(user_id):
    return StripeCustomer.query.filter_by(user_id=user_id, deleted_at=None).first()


def _insert_customer_mapping(user_id, customer_id):
    mapping = StripeCustomer(user_id=user_id, customer_id=customer_id)
    db.session.add(mapping)
    db.session.commit()
    return mapping


def _remove_customer_mapping(mapping):
    db.session.delete(mapping)
    db.session.commit()


def _resolve_customer(user, saga):
    """Return the user's Stripe customer id, creating customer + mapping if needed."""
    try:
        mapping = get_active_customer(user.id)
    except SQLAlchemyError as e:
        db.session.rollback()
        logger.error(f"Error fetching customer for user {user.id}: {e}")
        raise ApiError("Failed to fetch customer information") from e

    if mapping is not None:
        return mapping.customer_id

    try:
        customer = saga.step(
            "create Stripe customer",
            lambda: stripe.Customer.create(
                email=user.email,
                metadata={"userId": user.id},
            ),
            undo=lambda created: stripe.Customer.delete(created["id"]),
        )
    except stripe.error.StripeError as e:
        logger.error(f"Stripe error creating customer for user {user.id}: {e}")
        raise ExternalSystemError(
            f"Failed to create customer: {stripe_error_message(e)}"
        ) from e
    logger.info(f"Created Stripe customer {customer['id']} for user {user.id}")

    try:
        saga.step(
            "create customer mapping",
            lambda: _insert_customer_mapping(user.id, customer["id"]),
            undo=_remove_customer_mapping,
        )
    except SQLAlchemyError as e:
        db.session.rollback()
        logger.error(f"Error saving customer mapping for user {user.id}: {e}")
        raise ApiError("Failed to create customer mapping") from e

    return customer["id"]


def _ensure_subscription_placeholder(customer_id):
    """Make sure a stripe_subscriptions row exists for customer_id."""
    try:
        existing = StripeSubscription.query.filter_by(customer_id=customer_id).first()
    except SQLAlchemyError as e:
        db.session.rollback()
        logger.error(f"Error fetching subscription for customer {customer_id}: {e}")
        raise ApiError("Failed to fetch subscription information") from e

    if existing is not None:
        return existing

    try:
        placeholder = StripeSubscription(customer_id=customer_id, status="not_started")
        db.session.add(placeholder)
        db.session.commit()
        return placeholder
    except SQLAlchemyError as e:
        db.session.rollback()
        logger.error(f"Error creating subscription record for customer {customer_id}: {e}")
        raise ApiError("Failed to create subscription record") from e


# ──────────────────────────────────────────────
# Checkout
# ──────────────────────────────────────────────

def create_checkout(user, payload):
    """Run one checkout attempt for an authenticated user.

    Returns (body, status). Every return path writes exactly one
    checkout_logs row.
    """
    error = validate_parameters(payload)
    if error:
        log_checkout_attempt(user.id, False, error)
        return {"error": error}, 400

    mode = payload["mode"]
    saga = Saga(f"checkout:{user.id}")

    try:
        stripe.api_key = require_stripe_key()
        customer_id = _resolve_customer(user, saga)
        if mode == "subscription":
            _ensure_subscription_placeholder(customer_id)
    except ApiError as e:
        _compensate(saga, user.id)
        log_checkout_attempt(user.id, False, e.message)
        return {"error": e.message}, e.status_code
    except Exception as e:
        logger.exception(f"Unexpected checkout error for user {user.id}")
        _compensate(saga, user.id)
        log_checkout_attempt(user.id, False, str(e))
        return {"error": str(e)}, 500

    try:
        session = stripe.checkout.Session.create(
            customer=customer_id,
            payment_method_types=["card"],
            line_items=[{"price": payload["price_id"], "quantity": 1}],
            mode=mode,
            success_url=payload["success_url"],
            cancel_url=payload["cancel_url"],
            metadata={"userId": user.id},
        )
    except stripe.error.StripeError as e:
        message = stripe_error_message(e)
        logger.error(f"Checkout error: {message}")
        log_checkout_attempt(user.id, False, message)
        return {"error": message}, 500
    except Exception as e:
        logger.exception(f"Unexpected error creating checkout session for user {user.id}")
        log_checkout_attempt(user.id, False, str(e))
        return {"error": str(e) or "Internal server error"}, 500

    logger.info(f"Created checkout session {session['id']} for customer {customer_id}")
    log_checkout_attempt(user.id, True)
    return {"sessionId": session["id"], "url": session["url"]}, 200


def _compensate(saga, user_id):
    if not saga.pending_undos:
        return
    logger.warning(f"Rolling back checkout for user {user_id}: {', '.join(saga.pending_undos)}")
    failed = saga.compensate()
    if failed:
        logger.error(f"Checkout rollback incomplete for user {user_id}: {', '.join(failed)}")
