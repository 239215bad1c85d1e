"""Tests for CSRF token issuing and validation.

Covers:
- Token generation / validation per user
- Constant-time comparison (hmac.compare_digest on the full value)
- TTL expiry and single active token per user
- GET /generate-csrf-token
"""

import hmac
import json
from unittest.mock import patch

import pytest

from shop2give.errors import PermissionDeniedError
from shop2give.services.csrf_service import (
    EXTENSION_KEY,
    InMemoryTokenStore,
    enforce_csrf_token,
    generate_csrf_token,
    revoke_csrf_token,
    tokens_match,
    validate_csrf_token,
)


class FakeMonotonic:
    def __init__(self):
        self.value = 1000.0

    def __call__(self):
        return self.value

    def advance(self, seconds):
        self.value += seconds


@pytest.fixture
def monotonic(app, monkeypatch):
    """Swap in a token store driven by a fake monotonic clock."""
    clock = FakeMonotonic()
    monkeypatch.setitem(app.extensions, EXTENSION_KEY, InMemoryTokenStore(clock=clock))
    return clock


def _flip(char):
    return "A" if char != "A" else "B"


class TestTokenValidation:

    def test_generated_token_validates(self):
        token = generate_csrf_token("user-1")

        assert len(token) >= 32
        assert validate_csrf_token("user-1", token)

    def test_token_is_bound_to_user(self):
        token = generate_csrf_token("user-1")
        generate_csrf_token("user-2")

        assert not validate_csrf_token("user-2", token)

    def test_wrong_and_empty_tokens_rejected(self):
        generate_csrf_token("user-1")

        assert not validate_csrf_token("user-1", "not-the-token")
        assert not validate_csrf_token("user-1", "")
        assert not validate_csrf_token("user-1", None)

    def test_unknown_user_rejected(self):
        assert not validate_csrf_token("nobody", "anything")

    def test_new_token_replaces_old(self):
        old = generate_csrf_token("user-1")
        new = generate_csrf_token("user-1")

        assert old != new
        assert not validate_csrf_token("user-1", old)
        assert validate_csrf_token("user-1", new)

    def test_revoke(self):
        token = generate_csrf_token("user-1")
        revoke_csrf_token("user-1")

        assert not validate_csrf_token("user-1", token)

    def test_tokens_match_rejects_non_strings(self):
        assert not tokens_match("abc", None)
        assert not tokens_match(None, "abc")
        assert not tokens_match("abc", b"abc")


class TestConstantTimeComparison:

    def test_uses_compare_digest(self):
        token = generate_csrf_token("user-1")

        with patch(
            "shop2give.services.csrf_service.hmac.compare_digest",
            wraps=hmac.compare_digest,
        ) as compare:
            assert validate_csrf_token("user-1", token)

        compare.assert_called_once_with(token.encode("utf-8"), token.encode("utf-8"))

    @pytest.mark.parametrize("position", [0, -1])
    def test_mismatch_position_does_not_short_circuit(self, position):
        token = generate_csrf_token("user-1")
        chars = list(token)
        chars[position] = _flip(chars[position])
        tampered = "".join(chars)

        with patch(
            "shop2give.services.csrf_service.hmac.compare_digest",
            wraps=hmac.compare_digest,
        ) as compare:
            assert not validate_csrf_token("user-1", tampered)

        # Whole values handed to compare_digest, wherever the mismatch is.
        compare.assert_called_once_with(token.encode("utf-8"), tampered.encode("utf-8"))


class TestExpiry:

    def test_token_valid_within_ttl(self, monotonic):
        token = generate_csrf_token("user-1")
        monotonic.advance(3599)

        assert validate_csrf_token("user-1", token)

    def test_token_expires_after_ttl(self, monotonic):
        token = generate_csrf_token("user-1")
        monotonic.advance(3601)

        assert not validate_csrf_token("user-1", token)

    def test_ttl_follows_config(self, app, monotonic, monkeypatch):
        monkeypatch.setitem(app.config, "CSRF_TOKEN_TTL", 10)
        token = generate_csrf_token("user-1")
        monotonic.advance(11)

        assert not validate_csrf_token("user-1", token)


class TestEnforce:

    def test_safe_methods_pass_without_token(self):
        enforce_csrf_token("user-1", "GET", {})
        enforce_csrf_token("user-1", "OPTIONS", {})

    def test_missing_token(self):
        with pytest.raises(PermissionDeniedError, match="Missing CSRF token"):
            enforce_csrf_token("user-1", "POST", {})

    @pytest.mark.parametrize("method", ["POST", "PUT", "DELETE", "PATCH"])
    def test_invalid_token(self, method):
        generate_csrf_token("user-1")

        with pytest.raises(PermissionDeniedError, match="Invalid or expired CSRF token"):
            enforce_csrf_token("user-1", method, {"X-CSRF-Token": "forged"})

    def test_valid_token(self):
        token = generate_csrf_token("user-1")
        enforce_csrf_token("user-1", "POST", {"X-CSRF-Token": token})


class TestGenerateEndpoint:

    def test_returns_token_for_user(self, client, login_as):
        user, headers = login_as("user")

        resp = client.get("/generate-csrf-token", headers=headers)

        assert resp.status_code == 200
        token = json.loads(resp.data)["token"]
        assert validate_csrf_token(user.id, token)

    def test_requires_authentication(self, client):
        resp = client.get("/generate-csrf-token")

        assert resp.status_code == 401
        assert json.loads(resp.data) == {"success": False, "error": "Unauthorized"}

    def test_options_preflight(self, client):
        resp = client.options("/generate-csrf-token")

        assert resp.status_code == 204
        assert "x-csrf-token" in resp.headers["Access-Control-Allow-Headers"]

    def test_post_not_allowed(self, client, login_as):
        _, headers = login_as("user")
        assert client.post("/generate-csrf-token", headers=headers).status_code == 405

    def test_issued_token_unlocks_writes(self, client, login_as):
        _, headers = login_as("admin")
        token = json.loads(client.get("/generate-csrf-token", headers=headers).data)["token"]

        resp = client.post(
            "/stripe-products",
            data=json.dumps({
                "action": "productExists",
                "name": "Donation",
                "campaignId": "campaign-123",
            }),
            content_type="application/json",
            headers={**headers, "X-CSRF-Token": token},
        )

        assert resp.status_code == 200
        assert json.loads(resp.data)["data"] == {"exists": False}
