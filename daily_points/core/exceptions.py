"""
Custom exception classes for the application.
Provides structured error handling across all modules.
"""

from typing import Any, Optional, Dict


class DailyPointsException(Exception):
    """Base exception class for the daily points reconciler."""

    def __init__(
        self,
        message: str,
        code: str = "UNKNOWN_ERROR",
        details: Optional[Dict[str, Any]] = None
    ):
        self.message = message
        self.code = code
        self.details = details or {}
        super().__init__(self.message)


class DatabaseError(DailyPointsException):
    """Raised when the store fails or cannot be reached."""

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(message, "DATABASE_ERROR", details)


class ValidationError(DailyPointsException):
    """Raised when data validation fails."""

    def __init__(
        self,
        message: str,
        details: Optional[Dict[str, Any]] = None,
        code: str = "VALIDATION_ERROR"
    ):
        super().__init__(message, code, details)


class StagingDataError(ValidationError):
    """Raised when a staged file or record is missing fields or has the wrong shape."""

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(message, details, code="STAGING_DATA_ERROR")


class ReconciliationError(DailyPointsException):
    """Raised when a reconciliation run cannot be completed."""

    def __init__(
        self,
        message: str,
        details: Optional[Dict[str, Any]] = None,
        code: str = "RECONCILIATION_ERROR"
    ):
        super().__init__(message, code, details)


class VerificationMismatchError(ReconciliationError):
    """Raised when a batch's observed post-condition differs from the expected one."""

    def __init__(self, check: str, message: str, details: Optional[Dict[str, Any]] = None):
        details = dict(details or {})
        details["check"] = check
        super().__init__(message, details, code="VERIFICATION_MISMATCH")
        self.check = check


class DriftDetectedError(ReconciliationError):
    """Raised in strict mode when removing daily points would drive a total below zero."""

    def __init__(self, accounts: Dict[str, int]):
        super().__init__(
            f"Aggregate drift detected for {len(accounts)} account(s)",
            {"drift": accounts},
            code="DRIFT_DETECTED"
        )
        self.accounts = accounts
