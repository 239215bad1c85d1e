"""CORS helpers.

The front end calls every endpoint cross-origin, so all JSON responses
carry the same Access-Control-* headers and every route answers OPTIONS
preflight with 204.
"""

from flask import make_response

ALLOW_HEADERS = "authorization, x-client-info, apikey, content-type, x-csrf-token"

DEFAULT_CORS_HEADERS = {
    "Access-Control-Allow-Origin": "*",
    "Access-Control-Allow-Headers": ALLOW_HEADERS,
    "Access-Control-Allow-Methods": "GET, POST, PUT, DELETE, OPTIONS",
}


def with_cors(response, headers=None):
    """Add CORS headers to a response (in place) and return it."""
    for key, value in (headers or DEFAULT_CORS_HEADERS).items():
        response.headers[key] = value
    return response


def preflight_response(headers=None):
    """Empty 204 answer to an OPTIONS preflight."""
    return with_cors(make_response("", 204), headers)
