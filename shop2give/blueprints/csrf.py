"""CSRF blueprint — /generate-csrf-token

Routes:
- GET /generate-csrf-token  — issue a fresh 1-hour token for the caller
"""

from flask import Blueprint, jsonify, request
from flask_login import current_user, login_required

from shop2give.cors import preflight_response, with_cors
from shop2give.extensions import limiter
from shop2give.services.csrf_service import generate_csrf_token

csrf_bp = Blueprint("csrf", __name__)


@csrf_bp.route("/generate-csrf-token", methods=["GET", "OPTIONS"])
@limiter.limit("30 per minute", exempt_when=lambda: request.method == "OPTIONS")
def issue_csrf_token():
    if request.method == "OPTIONS":
        return preflight_response()
    return _issue_token()


@login_required
def _issue_token():
    token = generate_csrf_token(current_user.id)
    return with_cors(jsonify(token=token))
