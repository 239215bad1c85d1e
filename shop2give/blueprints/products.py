"""Products blueprint — /stripe-products

Catalog read/write API used by the front end and the admin tools.

Routes:
- POST /stripe-products     — {"action": "...", ...} (read or write action)
- GET  /stripe-products     — read actions via query string
                              (?action=getProductById&productId=...)
- OPTIONS /stripe-products  — CORS preflight

Write actions need the admin or campaign_owner role and a CSRF token.
"""

from flask import Blueprint, jsonify, request
from flask_login import current_user, login_required

from shop2give.cors import preflight_response, with_cors
from shop2give.decorators import csrf_protected, rate_limited
from shop2give.services.product_actions import dispatch, parse_product_request

products_bp = Blueprint("products", __name__)

QUERY_PARAMETERS = ("productId", "campaignId", "name")


def _payload_from_query(args):
    payload = {"action": args.get("action") or "getAllProducts"}
    for key in QUERY_PARAMETERS:
        if args.get(key):
            payload[key] = args[key]
    return payload


@products_bp.route("/stripe-products", methods=["GET", "POST", "OPTIONS"])
def stripe_products():
    if request.method == "OPTIONS":
        return preflight_response()
    return _handle_product_request()


@login_required
@csrf_protected
@rate_limited("stripe-products", "PRODUCTS_RATE_LIMIT_MAX", "PRODUCTS_RATE_LIMIT_WINDOW")
def _handle_product_request():
    """Parse the action, check permissions, run it.

    Errors (bad payload, unknown action, missing role, Stripe failure)
    are raised as ApiError and rendered by the app-level handler.
    """
    if request.method == "GET":
        payload = _payload_from_query(request.args)
    else:
        payload = request.get_json(silent=True)

    request_action = parse_product_request(payload)
    data = dispatch(request_action, current_user)
    return with_cors(jsonify(success=True, data=data))
