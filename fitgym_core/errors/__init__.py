# =============================================================================
# fitgym_core/errors/__init__.py
# Centralized Error Handling for FitGym Core
# =============================================================================

from .exceptions import (
    FitGymError,
    ValidationError,
    RecordNotFoundError,
    LocalWriteError,
    SyncTransientError,
    SyncRejectedError,
    ConfigurationError,
)

from .handlers import (
    handle_error,
    safe_execute,
    error_boundary,
    ErrorContext,
)

__all__ = [
    # Exceptions
    "FitGymError",
    "ValidationError",
    "RecordNotFoundError",
    "LocalWriteError",
    "SyncTransientError",
    "SyncRejectedError",
    "ConfigurationError",
    # Handlers
    "handle_error",
    "safe_execute",
    "error_boundary",
    "ErrorContext",
]
