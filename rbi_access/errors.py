"""
Error taxonomy for authorization and attribution consistency.

Expected business conditions (a DENY, a missing household) travel as
OperationResult values; the exception classes below are raised inside a
unit of work and converted to results at the service boundary after the
transaction has been rolled back.
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, Generic, Optional, TypeVar

T = TypeVar("T")


class ErrorCode(str, Enum):
    """Error codes surfaced to callers and operators"""
    PRINCIPAL_UNRESOLVED = "PRINCIPAL_UNRESOLVED"
    HOUSEHOLD_NOT_FOUND = "HOUSEHOLD_NOT_FOUND"
    RESIDENT_NOT_FOUND = "RESIDENT_NOT_FOUND"
    CODE_INTEGRITY_VIOLATION = "CODE_INTEGRITY_VIOLATION"
    DECISION_PARITY_VIOLATION = "DECISION_PARITY_VIOLATION"
    ATTRIBUTION_DRIFT = "ATTRIBUTION_DRIFT"
    ACCESS_DENIED = "ACCESS_DENIED"
    DUPLICATE_HOUSEHOLD = "DUPLICATE_HOUSEHOLD"
    INVALID_CHANGE = "INVALID_CHANGE"


class AccessControlError(Exception):
    """Base exception for authorization and propagation errors."""
    code: ErrorCode = ErrorCode.ACCESS_DENIED

    def __init__(self, message: str, **context: Any):
        super().__init__(message)
        self.message = message
        self.context = context


class PrincipalUnresolvedError(AccessControlError):
    """Raised when a role or assigned code cannot be resolved to a valid principal."""
    code = ErrorCode.PRINCIPAL_UNRESOLVED


class HouseholdNotFoundError(AccessControlError):
    """Raised when a referenced household is missing or inactive."""
    code = ErrorCode.HOUSEHOLD_NOT_FOUND

    def __init__(self, household_code: str):
        super().__init__(f"Household {household_code!r} not found or inactive", household_code=household_code)
        self.household_code = household_code


class ResidentNotFoundError(AccessControlError):
    """Raised when a referenced resident is missing or inactive."""
    code = ErrorCode.RESIDENT_NOT_FOUND

    def __init__(self, resident_id: str):
        super().__init__(f"Resident {resident_id!r} not found or inactive", resident_id=resident_id)
        self.resident_id = resident_id


class CodeIntegrityError(AccessControlError):
    """Raised when a geographic code has no resolvable parent chain."""
    code = ErrorCode.CODE_INTEGRITY_VIOLATION

    def __init__(self, geographic_code: str, reason: str):
        super().__init__(f"Geographic code {geographic_code!r}: {reason}", geographic_code=geographic_code)
        self.geographic_code = geographic_code
        self.reason = reason


class AccessDeniedError(AccessControlError):
    """Raised when a write is not permitted for the principal's scope."""
    code = ErrorCode.ACCESS_DENIED


class DuplicateHouseholdError(AccessControlError):
    """Raised when a household code is already taken."""
    code = ErrorCode.DUPLICATE_HOUSEHOLD


class InvalidChangeError(AccessControlError):
    """Raised when an update carries fields it may not change."""
    code = ErrorCode.INVALID_CHANGE


class InvalidGeographicCodeError(ValueError):
    """Raised at ingestion when a raw code cannot be canonicalized."""
    pass


class UnscopedPrivilegedQueryError(RuntimeError):
    """
    Raised when a privileged statement runs without a ScopeFilter.

    This is a programming defect, never a business condition, so it is
    not converted to an OperationResult.
    """
    pass


@dataclass
class OperationResult(Generic[T]):
    """Outcome of a service operation"""
    ok: bool
    value: Optional[T] = None
    error_code: Optional[ErrorCode] = None
    message: Optional[str] = None
    details: Dict[str, Any] = field(default_factory=dict)

    @classmethod
    def success(cls, value: T = None) -> "OperationResult[T]":
        return cls(ok=True, value=value)

    @classmethod
    def failure(cls, code: ErrorCode, message: str, **details: Any) -> "OperationResult[T]":
        return cls(ok=False, error_code=code, message=message, details=details)

    @classmethod
    def from_error(cls, error: AccessControlError) -> "OperationResult[T]":
        return cls(ok=False, error_code=error.code, message=error.message, details=dict(error.context))
