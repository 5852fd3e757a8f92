"""Domain error codes for the booking and payment engine."""

from enum import Enum
from typing import Any, Dict, Optional


class ErrorCode(Enum):
    """Stable error kinds surfaced to callers."""

    VALIDATION = "validation"
    NOT_FOUND = "not_found"
    FORBIDDEN = "forbidden"
    STATE_CONFLICT = "state_conflict"
    INSUFFICIENT_RESOURCE = "insufficient_resource"
    EXTERNAL_DEPENDENCY = "external_dependency"
    INVARIANT_VIOLATION = "invariant_violation"


class DomainError(Exception):
    """Base domain error with code and user-safe message."""

    code: ErrorCode = ErrorCode.INVARIANT_VIOLATION

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None) -> None:
        super().__init__(message)
        self.message = message
        self.details = details or {}

    def __str__(self) -> str:
        return f"{self.code.value}: {self.message}"

    def to_dict(self) -> Dict[str, Any]:
        return {"error": self.code.value, "message": self.message, **self.details}


class ValidationError(DomainError):
    """Raised when a request is malformed; nothing has been written."""

    code = ErrorCode.VALIDATION


class NotFoundError(DomainError):
    """Raised when a referenced entity does not exist or is not owned by the caller."""

    code = ErrorCode.NOT_FOUND


class ForbiddenError(DomainError):
    """Raised when the caller's role may not perform the operation."""

    code = ErrorCode.FORBIDDEN


class StateConflictError(DomainError):
    """Raised when an entity is not in the lifecycle state an operation requires."""

    code = ErrorCode.STATE_CONFLICT


class InsufficientResourceError(DomainError):
    """Raised when a balance is too low or a resource is no longer available."""

    code = ErrorCode.INSUFFICIENT_RESOURCE


class ExternalDependencyError(DomainError):
    """Raised when a ledger call fails. Callers may retry."""

    code = ErrorCode.EXTERNAL_DEPENDENCY


class CostValidationError(DomainError):
    """Raised when a computed cost component is negative or not a number."""

    code = ErrorCode.INVARIANT_VIOLATION


class DepositNotFoundError(NotFoundError):
    """Raised when no matching vault deposit has landed inside the lookback window."""

    def __init__(self, expected_amount: float, unit: str) -> None:
        super().__init__(
            f"No matching deposit of {expected_amount:.6f} {unit} found; retry once the transfer is confirmed",
            details={"expected_amount": expected_amount, "unit": unit},
        )
        self.expected_amount = expected_amount
        self.unit = unit
