"""
Platform-wide exception hierarchy.

Services raise these; blueprints register handlers against them once and
get consistent HTTP status codes everywhere.

Usage:
    from contractflow.core.exceptions import NotFoundError, ValidationError

    raise NotFoundError(resource="ProgrammeApproval", resource_id="ab12...")
    raise ValidationError("change_type is invalid", details={"change_type": "..."})
"""


class NotFoundError(Exception):
    """Raised when a requested resource does not exist.

    Args:
        resource: Human-readable model/entity name (e.g. "Programme").
        resource_id: The PK that was looked up.
    """

    def __init__(self, resource: str, resource_id: int | str | None = None) -> None:
        self.resource = resource
        self.resource_id = resource_id
        msg = f"{resource}"
        if resource_id is not None:
            msg += f" id={resource_id}"
        msg += " not found"
        super().__init__(msg)


class ValidationError(Exception):
    """Raised when input is well-formed but violates a business rule.

    Maps to HTTP 422 in blueprint error handlers.

    Args:
        message: Human-readable explanation of what failed.
        details: Optional field-level breakdown for structured API responses.
    """

    def __init__(self, message: str, details: dict | None = None) -> None:
        self.details = details or {}
        super().__init__(message)


class ConflictError(Exception):
    """Raised when an operation conflicts with the current state of a record.

    Maps to HTTP 409.
    """


class InvalidTransitionError(ConflictError):
    """Approval status transition not allowed from the current status."""

    def __init__(self, approval_id: str, current_status: str, target_status: str) -> None:
        self.approval_id = approval_id
        self.current_status = current_status
        self.target_status = target_status
        super().__init__(
            f"Approval {approval_id} cannot move {current_status} → {target_status}"
        )


class StaleStateError(ConflictError):
    """The record changed between read and write (lost optimistic race)."""

    def __init__(self, approval_id: str, expected_status: str) -> None:
        self.approval_id = approval_id
        self.expected_status = expected_status
        super().__init__(
            f"Approval {approval_id} is no longer '{expected_status}'; "
            "it was decided concurrently"
        )


class AuthorizationError(Exception):
    """The acting user is not registered to approve this change.

    Distinct from a rejection by an approver. Maps to HTTP 403.

    Args:
        message: Why the authorization check failed.
        details: Structured context (user, level, cost, change_type).
    """

    def __init__(self, message: str, details: dict | None = None) -> None:
        self.details = details or {}
        super().__init__(message)


class ParseError(Exception):
    """Fatal schedule-import failure.

    Raised inside the schedule parser only; the parser boundary converts it
    into a failed ParseResult so callers never see it uncaught.
    """
