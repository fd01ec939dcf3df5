"""Typed error kinds raised by the progression engines.

Every error here is an expected, recoverable outcome. Callers branch on the
class (or on ``code``) to offer the matching alternate path, e.g. watching an
ad after an ``InsufficientResource`` on credits.
"""

from typing import Any, Dict, Optional


class ProgressionError(Exception):
    """Base class for all progression outcomes that are not successes."""

    code = "progression_error"
    status_code = 400

    def __init__(self, message: str, *, details: Optional[Dict[str, Any]] = None) -> None:
        super().__init__(message)
        self.message = message
        self.details = dict(details or {})

    def to_dict(self) -> Dict[str, Any]:
        payload: Dict[str, Any] = {"code": self.code, "detail": self.message}
        if self.details:
            payload["details"] = self.details
        return payload


class InsufficientResource(ProgressionError):
    """Not enough credits, lives or XP for the requested spend."""

    code = "insufficient_resource"
    status_code = 409

    def __init__(self, resource: str, required: int, available: int) -> None:
        super().__init__(
            f"not enough {resource}: {available} available, {required} required",
            details={"resource": resource, "required": required, "available": available},
        )
        self.resource = resource
        self.required = required
        self.available = available


class AlreadyClaimed(ProgressionError):
    code = "already_claimed"
    status_code = 409


class AlreadyExists(ProgressionError):
    code = "already_exists"
    status_code = 409


class InvalidState(ProgressionError):
    code = "invalid_state"
    status_code = 409


class OutOfRange(ProgressionError):
    code = "out_of_range"
    status_code = 422


class NotFound(ProgressionError):
    code = "not_found"
    status_code = 404


class UnknownTicket(AlreadyClaimed, NotFound):
    """A ticket id that was never issued can never be claimed."""

    code = "unknown_ticket"
    status_code = 404


class ConcurrencyConflict(ProgressionError):
    """Stored version moved on between load and save; the command is retried."""

    code = "concurrency_conflict"
    status_code = 409


class TransientFailure(ProgressionError):
    code = "transient_failure"
    status_code = 503


class ExternalServiceUnavailable(ProgressionError):
    code = "external_service_unavailable"
    status_code = 503
