# =============================================================================
# cloudtree_core/errors/handlers.py
# Error Handling Utilities for the CloudTree Offline Core
# =============================================================================

from __future__ import annotations
import traceback
from typing import Optional, Callable, TypeVar, Dict, Any

from cloudtree_core.logging import get_logger
from .exceptions import CloudTreeError

logger = get_logger(__name__)

T = TypeVar("T")


def handle_error(
    error: Exception,
    log_error: bool = True,
    user_message: Optional[str] = None,
) -> Dict[str, Any]:
    """
    Centralized error handling function.

    Args:
        error: The exception to handle
        log_error: Whether to log the error
        user_message: Custom message to report (uses error message if None)

    Returns:
        Dict describing the error, suitable for a status display
    """
    if isinstance(error, CloudTreeError):
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
        "code": code,
        "message": message,
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

    Args:
        func: Function to execute
        *args: Positional arguments to pass to func
        default: Default value to return on error
        error_message: Custom error message to log
        reraise: Whether to reraise the exception after handling
        **kwargs: Keyword arguments to pass to func

    Returns:
        Function result or default value on error

    Usage:
        count = safe_execute(
            local_db.count, "Soils",
            default=0,
            error_message="Failed to count soils"
        )
    """
    try:
        return func(*args, **kwargs)
    except Exception as e:
        handle_error(e, user_message=error_message)
        if reraise:
            raise
        return default
