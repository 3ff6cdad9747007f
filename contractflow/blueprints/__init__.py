"""
Contract Management Platform
Blueprint registry and shared request helpers.
"""

import logging

from flask import jsonify, request
from werkzeug.exceptions import HTTPException

from contractflow.core.exceptions import (
    AuthorizationError,
    ConflictError,
    NotFoundError,
    StaleStateError,
    ValidationError,
)
from contractflow.services.audit_trail import RequestMeta
from contractflow.utils.errors import E, api_error

logger = logging.getLogger(__name__)


def current_user(default="system"):
    """Best-effort current user extraction (no auth enforcement)."""
    return (
        request.headers.get("X-User", "")
        or request.headers.get("X-Forwarded-User", "")
        or default
    )


def request_meta():
    """Client address and agent for the audit trail."""
    forwarded = request.headers.get("X-Forwarded-For", "")
    ip = forwarded.split(",")[0].strip() if forwarded else request.remote_addr
    return RequestMeta(ip_address=ip, user_agent=request.headers.get("User-Agent"))


def register_error_handlers(bp):
    """Map the platform exception hierarchy to JSON responses on ``bp``."""

    @bp.errorhandler(NotFoundError)
    def _handle_not_found(error):
        return api_error(E.NOT_FOUND, str(error))

    @bp.errorhandler(ValidationError)
    def _handle_validation(error):
        return api_error(E.BUSINESS_RULE, str(error), details=error.details)

    @bp.errorhandler(ConflictError)
    def _handle_conflict(error):
        code = E.CONFLICT_STALE if isinstance(error, StaleStateError) else E.CONFLICT_STATE
        return api_error(code, str(error))

    @bp.errorhandler(AuthorizationError)
    def _handle_authorization(error):
        return api_error(E.UNAUTHORIZED_APPROVER, str(error), details=error.details)

    @bp.errorhandler(Exception)
    def _handle_unexpected(error):
        if isinstance(error, HTTPException):
            return jsonify({"error": error.description}), error.code
        logger.exception("Unexpected error in %s endpoint=%s", bp.name, request.endpoint)
        return api_error(E.INTERNAL, "Internal server error")
