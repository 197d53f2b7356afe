"""Standardised API error responses.

Every error leaving the service has the same body::

    {"error": "<human message>", "code": "ERR_...", "details": {...}}

``details`` is only present when there is something structured to say
(field-level validation problems, the aggregate's current status).

Usage
-----
    from app.utils.errors import api_error, E

    return api_error(E.NOT_FOUND, "PhdRequest not found")
    return api_error(E.INVALID_STATE, "Request is not ready to be reviewed yet",
                     details={"status": "supervisor_draft"})
"""

from __future__ import annotations

from flask import jsonify


class E:
    """Machine-readable error codes returned in the ``code`` field."""

    # Request shape - HTTP 400 / 413 / 415
    VALIDATION_INVALID = "ERR_VALIDATION_INVALID"
    PAYLOAD_TOO_LARGE = "ERR_PAYLOAD_TOO_LARGE"
    UNSUPPORTED_MEDIA_TYPE = "ERR_UNSUPPORTED_MEDIA_TYPE"

    # Lookup / routing - HTTP 404 / 405
    NOT_FOUND = "ERR_NOT_FOUND"
    METHOD_NOT_ALLOWED = "ERR_METHOD_NOT_ALLOWED"

    # Workflow - HTTP 409
    INVALID_STATE = "ERR_INVALID_STATE"
    CONFLICT_DUPLICATE = "ERR_CONFLICT_DUPLICATE"

    # Caller - HTTP 401 / 403 / 429
    UNAUTHENTICATED = "ERR_UNAUTHENTICATED"
    FORBIDDEN = "ERR_FORBIDDEN"
    RATE_LIMITED = "ERR_RATE_LIMITED"

    # Server - HTTP 500
    INTERNAL = "ERR_INTERNAL"


_DEFAULT_STATUS: dict[str, int] = {
    E.VALIDATION_INVALID: 400,
    E.PAYLOAD_TOO_LARGE: 413,
    E.UNSUPPORTED_MEDIA_TYPE: 415,
    E.NOT_FOUND: 404,
    E.METHOD_NOT_ALLOWED: 405,
    E.INVALID_STATE: 409,
    E.CONFLICT_DUPLICATE: 409,
    E.UNAUTHENTICATED: 401,
    E.FORBIDDEN: 403,
    E.RATE_LIMITED: 429,
    E.INTERNAL: 500,
}


def api_error(
    code: str,
    message: str,
    *,
    status: int | None = None,
    details: dict | None = None,
):
    """Return ``(jsonify(body), http_status)`` for a workflow error.

    The status falls back to the code's default, then to 400.
    """
    body: dict = {"error": message, "code": code}
    if details:
        body["details"] = details
    return jsonify(body), status or _DEFAULT_STATUS.get(code, 400)
