"""
Error taxonomy for the allocation engine.

Every failure a service can report belongs to exactly one code. Callers use
the code to decide what to do next: CONFLICT means "try another proposal or
retry later", VALIDATION means "this request is unacceptable as sent".
"""

from enum import Enum
from typing import Any, Dict, Optional


class ErrorCode(str, Enum):
    NOT_FOUND = "NOT_FOUND"
    FORBIDDEN = "FORBIDDEN"
    CONFLICT = "CONFLICT"
    VALIDATION = "VALIDATION"


HTTP_STATUS_BY_CODE = {
    ErrorCode.NOT_FOUND: 404,
    ErrorCode.FORBIDDEN: 403,
    ErrorCode.CONFLICT: 409,
    ErrorCode.VALIDATION: 422,
}


class BrokerError(Exception):
    """Base exception for engine errors."""

    code: ErrorCode = ErrorCode.VALIDATION

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        self.message = message
        self.details = details or {}
        super().__init__(self.message)

    @property
    def http_status(self) -> int:
        return HTTP_STATUS_BY_CODE[self.code]

    def to_dict(self) -> Dict[str, Any]:
        return {"error": self.code.value, "detail": self.message, **self.details}


class NotFoundError(BrokerError):
    """Raised when a referenced entity does not exist."""

    code = ErrorCode.NOT_FOUND


class ForbiddenError(BrokerError):
    """Raised when the actor has no authority over the entity."""

    code = ErrorCode.FORBIDDEN


class ConflictError(BrokerError):
    """Raised on exhausted capacity, lost races, duplicates and resolved proposals."""

    code = ErrorCode.CONFLICT


class ValidationFailedError(BrokerError):
    """Raised on bad prices, prices below the floor and invalid transitions."""

    code = ErrorCode.VALIDATION
