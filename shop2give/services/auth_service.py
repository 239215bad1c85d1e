"""Auth service — resolves Supabase bearer tokens to users.

Responsible for:
- Verifying an access token against Supabase Auth (GET /auth/v1/user)
- Mapping the Supabase user to an AuthUser (id, email, role)
- Role checks for catalog write access
- The integration-test identity, gated behind AUTH_TEST_MODE_ENABLED

Called by Flask-Login's request_loader (see extensions.py), so views use
current_user like any other Flask-Login app.
"""

import logging

import requests
from flask import current_app
from flask_login import UserMixin

logger = logging.getLogger(__name__)

ROLE_ADMIN = "admin"
ROLE_CAMPAIGN_OWNER = "campaign_owner"
ROLE_USER = "user"

# Roles allowed to create/update/delete catalog entries
WRITE_ROLES = (ROLE_ADMIN, ROLE_CAMPAIGN_OWNER)

TEST_MODE_HEADER = "x-supabase-test-mode"


class AuthUser(UserMixin):
    """Authenticated Supabase user for the lifetime of one request."""

    def __init__(self, id, email, role=ROLE_USER, user_metadata=None):
        self.id = id
        self.email = email or ""
        self.role = role or ROLE_USER
        self.user_metadata = user_metadata or {}

    def has_role(self, *roles):
        return self.role in roles

    @property
    def can_write_catalog(self):
        return self.has_role(*WRITE_ROLES)

    def __repr__(self):
        return f"<AuthUser {self.id} ({self.role})>"


def extract_bearer_token(auth_header):
    """Return the token from an "Authorization: Bearer <token>" header, or None."""
    if not auth_header:
        return None
    parts = auth_header.split()
    if len(parts) != 2 or parts[0].lower() != "bearer":
        return None
    return parts[1]


def get_user_from_token(token):
    """Ask Supabase Auth who owns this access token.

    Returns an AuthUser, or None if the token is invalid/expired or
    Supabase is unreachable.
    """
    base_url = (current_app.config.get("SUPABASE_URL") or "").rstrip("/")
    api_key = (
        current_app.config.get("SUPABASE_SERVICE_ROLE_KEY")
        or current_app.config.get("SUPABASE_ANON_KEY")
    )
    if not base_url or not api_key:
        logger.error("Supabase auth is not configured (SUPABASE_URL / key missing)")
        return None

    try:
        resp = requests.get(
            f"{base_url}/auth/v1/user",
            headers={
                "Authorization": f"Bearer {token}",
                "apikey": api_key,
            },
            timeout=current_app.config.get("SUPABASE_AUTH_TIMEOUT", 10),
        )
    except requests.RequestException as e:
        logger.error(f"Supabase auth lookup failed: {e}")
        return None

    if resp.status_code != 200:
        logger.info(f"Supabase rejected access token (status {resp.status_code})")
        return None

    data = resp.json()
    if not data.get("id"):
        return None

    user_metadata = data.get("user_metadata") or {}
    return AuthUser(
        id=data["id"],
        email=data.get("email"),
        role=user_metadata.get("role") or ROLE_USER,
        user_metadata=user_metadata,
    )


def is_test_mode_request(request):
    """True only if the deployment opted in AND the request asks for it."""
    if not current_app.config.get("AUTH_TEST_MODE_ENABLED"):
        return False
    return request.headers.get(TEST_MODE_HEADER, "").lower() == "true"


def synthetic_admin_user():
    return AuthUser(id="test-user-id", email="test@example.com", role=ROLE_ADMIN)


def authenticate_request(request):
    """Flask-Login request loader: Authorization header -> AuthUser or None."""
    if is_test_mode_request(request):
        logger.info("Using test authentication mode")
        return synthetic_admin_user()

    token = extract_bearer_token(request.headers.get("Authorization"))
    if token is None:
        return None
    return get_user_from_token(token)
