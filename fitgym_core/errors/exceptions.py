# =============================================================================
# fitgym_core/errors/exceptions.py
# Custom Exception Hierarchy for FitGym Core
# =============================================================================

from typing import Optional, Dict, Any


class FitGymError(Exception):
    """
    Base exception for all FitGym Core errors.

    Attributes:
        message: Human-readable error description
        code: Machine-readable error code (e.g., "STORE_001")
        details: Additional context as a dictionary
        recoverable: Whether the error can be recovered from
    """

    def __init__(
        self,
        message: str,
        code: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None,
        recoverable: bool = True,
    ):
        super().__init__(message)
        self.message = message
        self.code = code or "FG_000"
        self.details = details or {}
        self.recoverable = recoverable

    def __str__(self) -> str:
        base = f"[{self.code}] {self.message}"
        if self.details:
            base += f" | Details: {self.details}"
        return base

    def to_dict(self) -> Dict[str, Any]:
        """Convert exception to dictionary for logging/serialization"""
        return {
            "error_type": self.__class__.__name__,
            "code": self.code,
            "message": self.message,
            "details": self.details,
            "recoverable": self.recoverable,
        }


# =============================================================================
# DATA LAYER EXCEPTIONS
# =============================================================================

class ValidationError(FitGymError):
    """Raised when a row or value fails validation checks"""

    def __init__(
        self,
        message: str,
        field: Optional[str] = None,
        expected: Optional[str] = None,
        actual: Optional[Any] = None,
        **kwargs,
    ):
        details = kwargs.pop("details", {})
        if field:
            details["field"] = field
        if expected:
            details["expected"] = expected
        if actual is not None:
            details["actual"] = actual

        super().__init__(
            message=message,
            code="DATA_001",
            details=details,
            **kwargs,
        )


class RecordNotFoundError(FitGymError):
    """Raised when a referenced local row does not exist"""

    def __init__(
        self,
        message: str,
        table: Optional[str] = None,
        record_id: Optional[str] = None,
        **kwargs,
    ):
        details = kwargs.pop("details", {})
        if table:
            details["table"] = table
        if record_id:
            details["record_id"] = record_id

        super().__init__(
            message=message,
            code="DATA_002",
            details=details,
            **kwargs,
        )


# =============================================================================
# LOCAL STORE EXCEPTIONS
# =============================================================================

class LocalWriteError(FitGymError):
    """Raised when a local write (row plus queue entry) is aborted"""

    def __init__(
        self,
        message: str,
        table: Optional[str] = None,
        operation: Optional[str] = None,
        **kwargs,
    ):
        details = kwargs.pop("details", {})
        if table:
            details["table"] = table
        if operation:
            details["operation"] = operation

        super().__init__(
            message=message,
            code="STORE_001",
            details=details,
            **kwargs,
        )


# =============================================================================
# SYNC EXCEPTIONS
# =============================================================================

class SyncTransientError(FitGymError):
    """Raised when a remote apply fails for a reason worth retrying"""

    def __init__(
        self,
        message: str,
        table: Optional[str] = None,
        record_id: Optional[str] = None,
        **kwargs,
    ):
        details = kwargs.pop("details", {})
        if table:
            details["table"] = table
        if record_id:
            details["record_id"] = record_id

        super().__init__(
            message=message,
            code="SYNC_001",
            details=details,
            **kwargs,
        )


class SyncRejectedError(FitGymError):
    """Raised when the remote store permanently rejects a payload"""

    def __init__(
        self,
        message: str,
        table: Optional[str] = None,
        record_id: Optional[str] = None,
        remote_code: Optional[str] = None,
        **kwargs,
    ):
        details = kwargs.pop("details", {})
        if table:
            details["table"] = table
        if record_id:
            details["record_id"] = record_id
        if remote_code:
            details["remote_code"] = remote_code

        super().__init__(
            message=message,
            code="SYNC_002",
            details=details,
            recoverable=False,
            **kwargs,
        )


# =============================================================================
# CONFIGURATION EXCEPTIONS
# =============================================================================

class ConfigurationError(FitGymError):
    """Raised when configuration is invalid or missing"""

    def __init__(
        self,
        message: str,
        config_key: Optional[str] = None,
        expected_type: Optional[str] = None,
        **kwargs,
    ):
        details = kwargs.pop("details", {})
        if config_key:
            details["config_key"] = config_key
        if expected_type:
            details["expected_type"] = expected_type

        super().__init__(
            message=message,
            code="CONFIG_001",
            details=details,
            recoverable=False,
            **kwargs,
        )
