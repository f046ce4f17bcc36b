# =============================================================================
# shoppe_core/errors/handlers.py
# Error Handling Utilities for the Shoppe cache/sync layer
# =============================================================================

from __future__ import annotations
import functools
import traceback
from typing import Optional, Callable, TypeVar, Any
import streamlit as st

from shoppe_core.logging import get_logger
from .exceptions import ShoppeError

logger = get_logger(__name__)

T = TypeVar("T")


def handle_error(
    error: Exception,
    show_user_message: bool = True,
    log_error: bool = True,
    user_message: Optional[str] = None,
) -> None:
    """
    Centralized error handling function.

    Recoverable errors (the app keeps working on cached data) surface as a
    transient toast; non-recoverable ones as a persistent error box.

    Args:
        error: The exception to handle
        show_user_message: Whether to notify the user through Streamlit
        log_error: Whether to log the error
        user_message: Custom message to show user (uses error message if None)
    """
    if isinstance(error, ShoppeError):
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

    if show_user_message:
        if recoverable:
            st.toast(f"{message} (showing cached data)")
        else:
            st.error(f"Critical Error: {message}. Please contact support.")


def error_boundary(
    default_return: Any = None,
    log: bool = True,
):
    """
    Decorator that turns exceptions of a synchronous helper into a default value.

    Usage:
        @error_boundary(default_return={})
        def get_cache_stats() -> dict:
            ...
    """
    def decorator(func: Callable[..., T]) -> Callable[..., Optional[T]]:
        @functools.wraps(func)
        def wrapper(*args, **kwargs) -> Optional[T]:
            try:
                return func(*args, **kwargs)
            except ShoppeError as e:
                if log:
                    handle_error(e, show_user_message=False)
                return default_return

        return wrapper

    return decorator
