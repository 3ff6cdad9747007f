"""Standardised API error responses.

Usage
-----
    from contractflow.utils.errors import api_error, E

    return api_error(E.NOT_FOUND, "Programme not found")
    return api_error(E.VALIDATION_REQUIRED, "description is required")
    return api_error(E.PARSE_FAILED, "Import failed", details=result.to_dict())
"""

from __future__ import annotations

from flask import jsonify


# ── Error code constants ──────────────────────────────────────────────
class E:
    """Machine-readable error code constants (``ERR_`` prefix)."""

    # Validation – HTTP 400 / 422
    VALIDATION_REQUIRED = "ERR_VALIDATION_REQUIRED"
    VALIDATION_INVALID = "ERR_VALIDATION_INVALID"
    BUSINESS_RULE = "ERR_BUSINESS_RULE"

    # Not-found – HTTP 404
    NOT_FOUND = "ERR_NOT_FOUND"

    # Conflict – HTTP 409
    CONFLICT_STATE = "ERR_CONFLICT_STATE"
    CONFLICT_STALE = "ERR_CONFLICT_STALE"

    # Permissions – HTTP 403
    UNAUTHORIZED_APPROVER = "ERR_UNAUTHORIZED_APPROVER"

    # Programme import – HTTP 422
    PARSE_FAILED = "ERR_PARSE_FAILED"

    # Server – HTTP 500
    INTERNAL = "ERR_INTERNAL"


# ── Default HTTP status mapping ───────────────────────────────────────
_DEFAULT_STATUS: dict[str, int] = {
    E.VALIDATION_REQUIRED: 400,
    E.VALIDATION_INVALID: 400,
    E.BUSINESS_RULE: 422,
    E.NOT_FOUND: 404,
    E.CONFLICT_STATE: 409,
    E.CONFLICT_STALE: 409,
    E.UNAUTHORIZED_APPROVER: 403,
    E.PARSE_FAILED: 422,
    E.INTERNAL: 500,
}


def api_error(
    code: str,
    message: str,
    *,
    status: int | None = None,
    details: dict | None = None,
):
    """Return a standard JSON error response.

    Parameters
    ----------
    code : str
        Machine-readable error code (use ``E.*`` constants).
    message : str
        Human-readable explanation for developers / UI.
    status : int, optional
        HTTP status override.  Falls back to ``_DEFAULT_STATUS[code]``,
        then to ``400``.
    details : dict, optional
        Extra structured payload (parse result, authorization context, etc.).

    Returns
    -------
    tuple[Response, int]
        ``(jsonify(body), http_status)`` – drop-in for Flask views.
    """

    http_status = status or _DEFAULT_STATUS.get(code, 400)

    body: dict = {
        "error": message,
        "code": code,
    }
    if details:
        body["details"] = details

    return jsonify(body), http_status
