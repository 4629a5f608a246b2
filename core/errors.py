"""
Error Types.

Every failure the POS core reports is a PosError subclass. Each carries a
human-readable message, a machine code and the HTTP status the API layer
answers with. None of them are fatal: they all describe something the user
can correct and retry.
"""

from typing import Any, Dict, List, Optional


class PosError(Exception):
    """Base class for recoverable POS errors."""

    code = "error"
    status_code = 400

    def __init__(self, message: str, field: Optional[str] = None):
        super().__init__(message)
        self.message = message
        self.field = field

    def to_dict(self) -> Dict[str, Any]:
        body: Dict[str, Any] = {
            "success": False,
            "code": self.code,
            "message": self.message,
        }
        if self.field:
            body["field"] = self.field
        return body


class NotFound(PosError):
    """A sale, return, line item or workflow lookup missed."""

    code = "not_found"
    status_code = 404


class InvalidQuantity(PosError):
    """A return quantity falls outside the returnable remainder."""

    code = "invalid_quantity"
    status_code = 400


class IncompleteSelection(PosError):
    """Required workflow input (invoice, items, reason) is missing."""

    code = "incomplete_selection"
    status_code = 400


class InvalidTransition(PosError):
    """A status change the lifecycle does not allow."""

    code = "invalid_transition"
    status_code = 409


class ConcurrencyConflict(PosError):
    """A conditional write kept losing to concurrent updates."""

    code = "concurrency_conflict"
    status_code = 409


class SubmissionFailed(PosError):
    """The submission collaborator rejected or failed a return request."""

    code = "submission_failed"
    status_code = 502

    def __init__(self, message: str, cause: Optional[PosError] = None):
        super().__init__(message)
        self.cause = cause

    def to_dict(self) -> Dict[str, Any]:
        body = super().to_dict()
        if self.cause is not None:
            body["cause"] = self.cause.to_dict()
        return body


class SchemaViolation(PosError):
    """
    A candidate document failed schema validation.

    Carries every violation found, not just the first one.
    """

    code = "schema_violation"
    status_code = 422

    def __init__(self, violations: List[Any], message: str = "Validation error"):
        super().__init__(message)
        self.violations = list(violations)

    def to_dict(self) -> Dict[str, Any]:
        body = super().to_dict()
        body["errors"] = [v.to_dict() for v in self.violations]
        return body
