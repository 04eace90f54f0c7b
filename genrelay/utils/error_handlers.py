"""
HTTP Error Handlers
-------------------
JSON renderings of the framework-level HTTP errors so every response the
relay produces is JSON, including unknown routes and oversize uploads.

Usage:
    from genrelay.utils.error_handlers import register_error_handlers
    register_error_handlers(app)
"""

from __future__ import annotations

from typing import Any, Dict, Optional

from flask import jsonify
from werkzeug.exceptions import HTTPException


def make_error_response(code: str, message: str, status: int, details: Optional[Dict[str, Any]] = None):
    body: Dict[str, Any] = {"ok": False, "error": {"code": code, "message": message}}
    if details:
        body["error"]["details"] = details
    return jsonify(body), status


def handle_http_exception(e: HTTPException):
    code = (e.name or "error").upper().replace(" ", "_")
    return make_error_response(code, e.description or e.name, e.code or 500)


def handle_bad_request(e):
    return make_error_response("BAD_REQUEST", getattr(e, "description", None) or "Bad request", 400)


def handle_not_found(e):
    return make_error_response("NOT_FOUND", "Route not found", 404)


def handle_method_not_allowed(e):
    return make_error_response("METHOD_NOT_ALLOWED", "Method not allowed", 405)


def handle_payload_too_large(e):
    return make_error_response("PAYLOAD_TOO_LARGE", "Request body too large", 413)


def handle_internal_error(e):
    print(f"[APP] Unhandled error: {type(e).__name__}: {e}")
    return make_error_response("INTERNAL_ERROR", "Internal server error", 500)


def register_error_handlers(app) -> None:
    app.register_error_handler(400, handle_bad_request)
    app.register_error_handler(404, handle_not_found)
    app.register_error_handler(405, handle_method_not_allowed)
    app.register_error_handler(413, handle_payload_too_large)
    app.register_error_handler(500, handle_internal_error)
    app.register_error_handler(HTTPException, handle_http_exception)
