# =============================================================================
# fitgym_core/services/base_service.py
# Base Service Class with Common Functionality
# =============================================================================

from __future__ import annotations
from abc import ABC
from typing import Optional, Dict, Any, Callable
from dataclasses import dataclass

from fitgym_core.logging import get_logger, LogContext
from fitgym_core.errors import FitGymError, handle_error


@dataclass
class ServiceResult:
    """
    Outcome of a UI-facing action that must not raise.

    `data` carries the return value (a DrainReport, a requeue count); on
    failure `error_code` is the FitGymError code, "EXCEPTION" or "OFFLINE".
    """
    success: bool
    data: Optional[Any] = None
    error: Optional[str] = None
    error_code: Optional[str] = None
    metadata: Optional[Dict[str, Any]] = None

    def __bool__(self) -> bool:
        return self.success

    @classmethod
    def ok(cls, data: Any = None, metadata: Dict[str, Any] = None) -> ServiceResult:
        """Create a successful result"""
        return cls(success=True, data=data, metadata=metadata)

    @classmethod
    def fail(
        cls,
        error: str,
        error_code: str = "UNKNOWN",
        metadata: Dict[str, Any] = None
    ) -> ServiceResult:
        """Create a failed result"""
        return cls(
            success=False,
            error=error,
            error_code=error_code,
            metadata=metadata,
        )

    @classmethod
    def from_exception(cls, e: Exception) -> ServiceResult:
        """Create a failed result from an exception"""
        if isinstance(e, FitGymError):
            return cls(
                success=False,
                error=e.message,
                error_code=e.code,
                metadata=e.details,
            )
        return cls(
            success=False,
            error=str(e),
            error_code="EXCEPTION",
        )


class BaseService(ABC):
    """
    Base class of the domain services (workouts, attendance, nutrition, sync).

    Each service gets a logger named after its class. Methods that write
    raise FitGymError subclasses; UI-facing actions that must not raise go
    through safe_execute and return a ServiceResult.

    Usage:
        class AttendanceService(BaseService):
            def check_in(self, user_id: str) -> AttendanceRecord:
                with self.log_operation("Checking in"):
                    ...
    """

    def __init__(self):
        self.logger = get_logger(self.__class__.__name__)

    def log_operation(self, operation: str) -> LogContext:
        """
        Timed log entries around one operation.

        Usage:
            with self.log_operation("Completing workout"):
                ...
        """
        return LogContext(self.logger, operation)

    def safe_execute(
        self,
        operation: str,
        func: Callable[..., Any],
        *args,
        **kwargs
    ) -> ServiceResult:
        """
        Run func and wrap its outcome instead of raising.

        Failures are logged through handle_error; the returned metadata keeps
        the error details and whether a retry can succeed.

        Args:
            operation: Description of the operation, e.g. "Syncing local changes"
            func: Function to execute
            *args, **kwargs: Arguments to pass to func

        Returns:
            ServiceResult with the return value or the error
        """
        with self.log_operation(operation):
            try:
                result = func(*args, **kwargs)
                return ServiceResult.ok(result)
            except FitGymError as e:
                handle_error(e)
                return ServiceResult.from_exception(e)
            except Exception as e:
                error = handle_error(e, user_message=f"{operation} failed")
                return ServiceResult.fail(
                    str(e),
                    error_code="EXCEPTION",
                    metadata={"recoverable": error["recoverable"]},
                )
