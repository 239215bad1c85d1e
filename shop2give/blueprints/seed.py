"""Seed blueprint — /stripe-seed-example-products

Routes:
- GET /stripe-seed-example-products  — donation product + price ladder for
                                       every active campaign (admin only)
"""

from flask import Blueprint, jsonify, request

from shop2give.cors import preflight_response, with_cors
from shop2give.decorators import role_required
from shop2give.services.auth_service import ROLE_ADMIN
from shop2give.services.seed_service import seed_stripe_products

seed_bp = Blueprint("seed", __name__)


@seed_bp.route("/stripe-seed-example-products", methods=["GET", "OPTIONS"])
def seed_example_products():
    if request.method == "OPTIONS":
        return preflight_response()
    return _run_seed()


@role_required(ROLE_ADMIN)
def _run_seed():
    result = seed_stripe_products()
    status = 200 if result["success"] else 500
    return with_cors(jsonify(result)), status
