"""
shared/exceptions.py
Closed error taxonomy for the booking and wallet core.

Every expected outcome is a DomainError subclass with a stable `kind` tag and an
HTTP status; the API layer renders them as {"success": false, "kind", "message"}.
"""

from typing import Any, Dict


class DomainError(Exception):
    """Base class for expected, recoverable failures."""

    kind: str = "domain_error"
    status_code: int = 400

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message

    def to_dict(self) -> Dict[str, Any]:
        return {"success": False, "kind": self.kind, "message": self.message}


class ValidationError(DomainError):
    """Malformed or missing input."""
    kind = "validation_error"
    status_code = 422


class NotFoundError(DomainError):
    kind = "not_found"
    status_code = 404


class TransitionError(DomainError):
    """Illegal state edge, or a transition that was already applied."""
    kind = "transition_error"
    status_code = 409


class UnauthorizedActorError(DomainError):
    """Caller is not a party to the booking or wallet."""
    kind = "unauthorized_actor"
    status_code = 403


class InsufficientBalanceError(DomainError):
    kind = "insufficient_balance"
    status_code = 400


class StaleStateError(DomainError):
    """Lost a concurrency race. Safe for the caller to retry."""
    kind = "stale_state"
    status_code = 409


class OutOfRangeError(DomainError):
    kind = "out_of_range"
    status_code = 400


class WindowExpiredError(DomainError):
    kind = "window_expired"
    status_code = 400


class ProcessingError(Exception):
    """
    Unexpected infrastructure failure. The message is generic; the cause is
    chained for logs and never shown to the caller.
    """

    kind = "processing_error"
    status_code = 500

    def __init__(self, message: str = "The request could not be processed"):
        super().__init__(message)
        self.message = message

    def to_dict(self) -> Dict[str, Any]:
        return {"success": False, "kind": self.kind, "message": self.message}


class LedgerInvariantError(RuntimeError):
    """A booking tried to settle twice. Programming error, never user-facing."""
