"""Shared Stripe helpers: key lookup and error formatting."""

from flask import current_app

from shop2give.errors import StripeConfigurationError


def require_stripe_key():
    """Return STRIPE_SECRET_KEY or raise before any Stripe call is made."""
    key = current_app.config.get("STRIPE_SECRET_KEY")
    if not key:
        raise StripeConfigurationError("Missing Stripe API key")
    return key


def stripe_error_message(error):
    """Human-readable message from a StripeError (falls back to str())."""
    return getattr(error, "user_message", None) or str(error)
