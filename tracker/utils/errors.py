"""
JSON error bodies for the API.

Every failure leaves the service as ``{"error": message, "code": CODE}``,
plus ``details`` when there is structured context (missing documents,
workflow problems, pending divisions). Service exceptions bring their own
domain codes; the ``E`` constants cover what blueprints and framework
handlers report themselves.

    return api_error(E.VALIDATION_REQUIRED, "title is required")
    return api_error(exc.code, exc.message, status=404, details=exc.details)
"""

from __future__ import annotations

from flask import jsonify


class E:
    """Generic error codes, spelled like the service-level ones."""

    VALIDATION_REQUIRED = "VALIDATION_REQUIRED"
    VALIDATION_INVALID = "VALIDATION_INVALID"

    UNAUTHORIZED = "UNAUTHORIZED"
    INVALID_CREDENTIALS = "INVALID_CREDENTIALS"
    FORBIDDEN = "FORBIDDEN"

    NOT_FOUND = "NOT_FOUND"
    METHOD_NOT_ALLOWED = "METHOD_NOT_ALLOWED"

    CONFLICT_DUPLICATE = "CONFLICT_DUPLICATE"
    CONFLICT_STALE = "CONFLICT_STALE"

    PAYLOAD_TOO_LARGE = "PAYLOAD_TOO_LARGE"
    RATE_LIMITED = "RATE_LIMITED"

    DATABASE = "DATABASE_ERROR"
    INTERNAL = "INTERNAL_ERROR"


_STATUS_BY_CODE: dict[str, int] = {
    E.VALIDATION_REQUIRED: 400,
    E.VALIDATION_INVALID: 400,
    E.UNAUTHORIZED: 401,
    E.INVALID_CREDENTIALS: 401,
    E.FORBIDDEN: 403,
    E.NOT_FOUND: 404,
    E.METHOD_NOT_ALLOWED: 405,
    E.CONFLICT_DUPLICATE: 409,
    E.CONFLICT_STALE: 409,
    E.PAYLOAD_TOO_LARGE: 413,
    E.RATE_LIMITED: 429,
    E.DATABASE: 500,
    E.INTERNAL: 500,
}


def api_error(code: str, message: str, *, status: int | None = None, details: dict | None = None):
    """
    Build ``(response, status)`` for a failed request.

    ``status`` wins over the code's default; unknown codes fall back to 400.
    """
    body = {"error": message, "code": code}
    if details:
        body["details"] = details
    return jsonify(body), status or _STATUS_BY_CODE.get(code, 400)
