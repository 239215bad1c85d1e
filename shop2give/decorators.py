"""
Custom route decorators for access control.

- role_required: ensures the bearer-token user has one of the given roles.
- csrf_protected: mutating verbs must carry a valid X-CSRF-Token header.
- rate_limited: per-user database-backed rate limit (see rate_limiter.py).

Stack them under login_required so current_user is resolved first:

    @login_required
    @csrf_protected
    @rate_limited("stripe-checkout", "CHECKOUT_RATE_LIMIT_MAX", "CHECKOUT_RATE_LIMIT_WINDOW")
    def view(): ...
"""

from functools import wraps

from flask import current_app, request
from flask_login import current_user, login_required

from shop2give.errors import PermissionDeniedError


def role_required(*roles):
    """Require login + one of the given roles."""

    def decorator(f):
        @wraps(f)
        @login_required
        def decorated(*args, **kwargs):
            if not current_user.has_role(*roles):
                raise PermissionDeniedError("Insufficient permissions")
            return f(*args, **kwargs)

        return decorated

    return decorator


def csrf_protected(f):
    """Validate X-CSRF-Token for POST/PUT/DELETE/PATCH. Safe verbs pass through."""

    @wraps(f)
    def decorated(*args, **kwargs):
        from shop2give.services.csrf_service import enforce_csrf_token

        enforce_csrf_token(current_user.id, request.method, request.headers)
        return f(*args, **kwargs)

    return decorated


def rate_limited(name, max_setting, window_setting, strategy="sliding"):
    """Per-user rate limit; limits are read from app config at request time."""

    def decorator(f):
        @wraps(f)
        def decorated(*args, **kwargs):
            from shop2give.services.rate_limiter import create_rate_limiter

            limiter = create_rate_limiter(
                name,
                current_user.id,
                max_requests=current_app.config[max_setting],
                window_seconds=current_app.config[window_setting],
                strategy=strategy,
            )
            limiter.enforce()
            return f(*args, **kwargs)

        return decorated

    return decorator
