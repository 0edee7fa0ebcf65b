# =============================================================================
# fitgym_core/errors/handlers.py
# Error Handling Utilities for FitGym Core
# =============================================================================

from __future__ import annotations
import functools
import traceback
from typing import Optional, Callable, TypeVar, Any, Dict

from fitgym_core.logging import get_logger
from .exceptions import FitGymError

logger = get_logger(__name__)

T = TypeVar("T")


def handle_error(
    error: Exception,
    log_error: bool = True,
    user_message: Optional[str] = None,
) -> Dict[str, Any]:
    """
    Centralized error handling function.

    The data layer only logs and describes the error; the UI layer decides
    whether and how to alert the user from the returned payload.

    Args:
        error: The exception to handle
        log_error: Whether to log the error
        user_message: Custom message for the user (uses error message if None)

    Returns:
        Dict with message, code, details and recoverable flag
    """
    if isinstance(error, FitGymError):
        message = user_message or error.message
        code = error.code
        details = error.details
        recoverable = error.recoverable
    else:
        message = user_message or str(error)
        code = "UNKNOWN"
        details = {"traceback": traceback.format_exc()}
        recoverable = True

    if log_error:
        logger.error(
            f"[{code}] {message}",
            extra={"details": details},
            exc_info=error,
        )

    return {
        "message": message,
        "code": code,
        "details": details,
        "recoverable": recoverable,
    }


def safe_execute(
    func: Callable[..., T],
    *args,
    default: Optional[T] = None,
    error_message: Optional[str] = None,
    reraise: bool = False,
    **kwargs,
) -> Optional[T]:
    """
    Execute a function with automatic error handling.

    Usage:
        history = safe_execute(
            service.get_workout_history,
            user_id,
            default=[],
            error_message="Failed to load workout history"
        )
    """
    try:
        return func(*args, **kwargs)
    except Exception as e:
        handle_error(e, user_message=error_message)
        if reraise:
            raise
        return default


class ErrorContext:
    """
    Context manager for error handling with automatic logging.

    Usage:
        with ErrorContext("Draining sync queue", recoverable=True):
            drainer.sync_now()
    """

    def __init__(self, operation: str, recoverable: bool = True):
        self.operation = operation
        self.recoverable = recoverable
        self.error: Optional[Dict[str, Any]] = None

    def __enter__(self) -> ErrorContext:
        logger.debug(f"Starting: {self.operation}")
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> bool:
        if exc_type is not None:
            if isinstance(exc_val, FitGymError):
                self.error = handle_error(exc_val)
            else:
                self.error = handle_error(
                    exc_val,
                    user_message=f"Error during: {self.operation}",
                )

            # Suppress exception if recoverable
            return self.recoverable

        logger.debug(f"Completed: {self.operation}")
        return False


def error_boundary(
    default_return: Any = None,
    log: bool = True,
):
    """
    Decorator to wrap functions with error handling.

    Used for derived, best-effort values (personal records, streaks) that
    must degrade to a safe default instead of raising.

    Args:
        default_return: Value to return if function fails (called if callable)
        log: Whether to log errors

    Usage:
        @error_boundary(default_return=list)
        def load_history(user_id: str) -> List[dict]:
            ...
    """
    def decorator(func: Callable[..., T]) -> Callable[..., Optional[T]]:
        @functools.wraps(func)
        def wrapper(*args, **kwargs) -> Optional[T]:
            try:
                return func(*args, **kwargs)
            except Exception as e:
                if log:
                    logger.error(
                        f"Error in {func.__name__}: {e}",
                        exc_info=True,
                    )
                return default_return() if callable(default_return) else default_return

        return wrapper

    return decorator
