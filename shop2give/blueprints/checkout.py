"""Checkout blueprint — /stripe-checkout

Routes:
- POST /stripe-checkout  — {price_id, success_url, cancel_url, mode}
                           -> {sessionId, url}

Auth, CSRF and the per-user rate limit are checked here rather than with
the shared decorators so that every rejection after authentication still
lands in checkout_logs.
"""

from flask import Blueprint, current_app, jsonify, request
from flask_login import current_user

from shop2give.cors import preflight_response, with_cors
from shop2give.errors import PermissionDeniedError, RateLimitError
from shop2give.extensions import login_manager
from shop2give.services.checkout_service import create_checkout, log_checkout_attempt
from shop2give.services.csrf_service import enforce_csrf_token
from shop2give.services.rate_limiter import create_rate_limiter

checkout_bp = Blueprint("checkout", __name__)

RATE_LIMIT_NAME = "stripe-checkout"


@checkout_bp.route("/stripe-checkout", methods=["POST", "OPTIONS"])
def stripe_checkout():
    if request.method == "OPTIONS":
        return preflight_response()

    # No user, nothing to log against.
    if not current_user.is_authenticated:
        return login_manager.unauthorized()
    user = current_user._get_current_object()

    try:
        enforce_csrf_token(user.id, request.method, request.headers)
    except PermissionDeniedError as e:
        log_checkout_attempt(user.id, False, e.message)
        raise

    limiter = create_rate_limiter(
        RATE_LIMIT_NAME,
        user.id,
        max_requests=current_app.config["CHECKOUT_RATE_LIMIT_MAX"],
        window_seconds=current_app.config["CHECKOUT_RATE_LIMIT_WINDOW"],
    )
    try:
        limiter.enforce()
    except RateLimitError as e:
        log_checkout_attempt(user.id, False, e.message)
        raise

    payload = request.get_json(silent=True)
    if not isinstance(payload, dict):
        payload = {}

    body, status = create_checkout(user, payload)
    return with_cors(jsonify(body)), status
