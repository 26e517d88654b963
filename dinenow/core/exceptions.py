"""
Domain Error Taxonomy

Every failure raised by the service layer derives from DineNowError.
The HTTP layer maps each class to a status code; callers that do not
speak HTTP can branch on the class directly.

    ValidationError          malformed or out-of-range input (nothing written)
    NotFoundError            referenced entity does not exist
    UnavailableError         entity exists but is flagged unavailable/inactive
    InvalidTransitionError   illegal order status change
    ConflictError            unique-constraint collision, retried internally
    StorageError             connection/transaction failure, safe to retry
"""

from typing import Any, Optional


class DineNowError(Exception):
    """Base class for all domain errors."""

    code = "error"
    status_code = 500

    def __init__(self, message: str, details: Optional[dict[str, Any]] = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for JSON responses."""
        return {
            "success": False,
            "error": self.code,
            "detail": self.message,
            "context": self.details,
        }


class ValidationError(DineNowError):
    code = "validation_error"
    status_code = 400

    @classmethod
    def from_pydantic(cls, message: str, exc: Any) -> "ValidationError":
        """Wrap a pydantic ValidationError, keeping one "loc: msg" line per problem."""
        errors = [
            f"{'.'.join(str(part) for part in error['loc']) or 'request'}: {error['msg']}"
            for error in exc.errors()
        ]
        return cls(message, {"errors": errors})


class NotFoundError(DineNowError):
    code = "not_found"
    status_code = 404


class UnavailableError(DineNowError):
    code = "unavailable"
    status_code = 409


class InvalidTransitionError(DineNowError):
    code = "invalid_transition"
    status_code = 400

    def __init__(self, current: str, target: str):
        super().__init__(
            f"Cannot transition from {current} to {target}",
            {"current_status": current, "target_status": target},
        )
        self.current = current
        self.target = target


class ConflictError(DineNowError):
    code = "conflict"
    status_code = 503


class StorageError(DineNowError):
    code = "storage_error"
    status_code = 503
