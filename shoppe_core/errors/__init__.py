# =============================================================================
# shoppe_core/errors/__init__.py
# Centralized Error Handling for the Shoppe cache/sync layer
# =============================================================================

from .exceptions import (
    ShoppeError,
    StorageError,
    NetworkError,
    OfflineError,
    ValidationError,
    UnknownPartitionError,
    DuplicateSuggestionError,
    ConfigurationError,
)

from .handlers import (
    handle_error,
    error_boundary,
)

__all__ = [
    # Exceptions
    "ShoppeError",
    "StorageError",
    "NetworkError",
    "OfflineError",
    "ValidationError",
    "UnknownPartitionError",
    "DuplicateSuggestionError",
    "ConfigurationError",
    # Handlers
    "handle_error",
    "error_boundary",
]
