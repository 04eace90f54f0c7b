"""
Middleware for relay routes.

Resolves the caller and the JSON body once per request so handlers read them
from flask.g.

Usage:
    from genrelay.middleware import with_caller

    @bp.route("/run-x", methods=["POST", "OPTIONS"])
    @with_caller
    def run_x():
        uid = g.user_id      # "" when the caller sent none
        body = g.body        # {} when the body is not a JSON object

The caller identity is an opaque string: X-USER-ID header first, then the
uid / user_id body field, then the uid query parameter. Nothing is verified.
"""

from functools import wraps

from flask import g, request


def read_json_body() -> dict:
    data = request.get_json(silent=True)
    return data if isinstance(data, dict) else {}


def resolve_user_id(body: dict) -> str:
    for value in (
        request.headers.get("X-USER-ID"),
        body.get("uid"),
        body.get("user_id"),
        request.args.get("uid"),
    ):
        if value not in (None, ""):
            return str(value).strip()
    return ""


def with_caller(f):
    """Populate g.body and g.user_id; answer CORS preflights directly."""

    @wraps(f)
    def decorated(*args, **kwargs):
        if request.method == "OPTIONS":
            return ("", 204)
        g.body = read_json_body()
        g.user_id = resolve_user_id(g.body)
        return f(*args, **kwargs)

    return decorated
