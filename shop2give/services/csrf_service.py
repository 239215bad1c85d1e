"""CSRF token service.

Mutating requests (POST/PUT/DELETE/PATCH) must echo a per-user token in
the X-CSRF-Token header. Tokens are issued by GET /generate-csrf-token and
live for CSRF_TOKEN_TTL seconds (1 hour). One active token per user:
issuing a new one replaces the old.

Tokens live in a TokenStore, any object with get(key), set(key, value, ttl)
and delete(key). The default InMemoryTokenStore is process-local and only
correct for a single-instance deployment; pass a shared store (e.g. a
Redis-backed one) to init_csrf_store() when running more than one worker.
"""

import hmac
import logging
import secrets
import threading
import time

from flask import current_app

from shop2give.errors import PermissionDeniedError

logger = logging.getLogger(__name__)

EXTENSION_KEY = "shop2give.csrf_store"
CSRF_HEADER = "X-CSRF-Token"
MUTATING_METHODS = ("POST", "PUT", "DELETE", "PATCH")


class InMemoryTokenStore:
    """Dict-backed TTL store. Expired entries are dropped on read."""

    def __init__(self, clock=time.monotonic):
        self._clock = clock
        self._entries = {}
        self._lock = threading.Lock()

    def get(self, key):
        with self._lock:
            entry = self._entries.get(key)
            if entry is None:
                return None
            value, expires_at = entry
            if self._clock() > expires_at:
                del self._entries[key]
                return None
            return value

    def set(self, key, value, ttl):
        with self._lock:
            self._entries[key] = (value, self._clock() + ttl)

    def delete(self, key):
        with self._lock:
            self._entries.pop(key, None)


def init_csrf_store(app, store=None):
    """Attach the token store to the app. Called from create_app()."""
    app.extensions[EXTENSION_KEY] = store or InMemoryTokenStore()


def get_csrf_store():
    return current_app.extensions[EXTENSION_KEY]


def _store_key(user_id):
    return f"csrf:{user_id}"


def generate_csrf_token(user_id):
    """Issue a fresh token for user_id, replacing any previous one."""
    token = secrets.token_urlsafe(32)
    ttl = current_app.config.get("CSRF_TOKEN_TTL", 3600)
    get_csrf_store().set(_store_key(user_id), token, ttl)
    logger.info(f"CSRF token generated for user {user_id}")
    return token


def tokens_match(expected, supplied):
    """Constant-time comparison, whatever position the first mismatch is at."""
    if not isinstance(expected, str) or not isinstance(supplied, str):
        return False
    return hmac.compare_digest(expected.encode("utf-8"), supplied.encode("utf-8"))


def validate_csrf_token(user_id, token):
    """True if token is the live token for user_id."""
    if not token:
        return False
    stored = get_csrf_store().get(_store_key(user_id))
    if stored is None:
        return False
    return tokens_match(stored, token)


def revoke_csrf_token(user_id):
    get_csrf_store().delete(_store_key(user_id))


def enforce_csrf_token(user_id, method, headers):
    """Raise PermissionDeniedError unless a mutating request carries a valid token."""
    if method not in MUTATING_METHODS:
        return
    token = headers.get(CSRF_HEADER)
    if not token:
        raise PermissionDeniedError("Missing CSRF token")
    if not validate_csrf_token(user_id, token):
        logger.warning(f"Rejected CSRF token for user {user_id}")
        raise PermissionDeniedError("Invalid or expired CSRF token")
