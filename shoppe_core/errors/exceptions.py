# =============================================================================
# shoppe_core/errors/exceptions.py
# Custom Exception Hierarchy for the Shoppe cache/sync layer
# =============================================================================

from typing import Optional, Dict, Any


class ShoppeError(Exception):
    """
    Base exception for all cache/sync layer errors.

    Attributes:
        message: Human-readable error description
        code: Machine-readable error code (e.g., "NET_001")
        details: Additional context as a dictionary
        recoverable: Whether the app can keep running on cached data
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
        self.code = code or "SHOP_000"
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
# STORAGE EXCEPTIONS
# =============================================================================

class StorageError(ShoppeError):
    """Raised when the local cache database is unavailable or corrupted"""

    def __init__(
        self,
        message: str,
        partition: Optional[str] = None,
        operation: Optional[str] = None,
        **kwargs,
    ):
        details = kwargs.pop("details", {})
        if partition:
            details["partition"] = partition
        if operation:
            details["operation"] = operation

        super().__init__(
            message=message,
            code="STORE_001",
            details=details,
            **kwargs,
        )


# =============================================================================
# NETWORK EXCEPTIONS
# =============================================================================

class NetworkError(ShoppeError):
    """Raised when a remote fetch or write fails or times out"""

    def __init__(
        self,
        message: str,
        collection: Optional[str] = None,
        operation: Optional[str] = None,
        **kwargs,
    ):
        details = kwargs.pop("details", {})
        if collection:
            details["collection"] = collection
        if operation:
            details["operation"] = operation

        super().__init__(
            message=message,
            code=kwargs.pop("code", "NET_001"),
            details=details,
            **kwargs,
        )


class OfflineError(NetworkError):
    """Raised when a write is attempted without connectivity"""

    def __init__(self, message: str, operation: Optional[str] = None, **kwargs):
        super().__init__(
            message=message,
            operation=operation,
            code="NET_002",
            **kwargs,
        )


# =============================================================================
# DATA EXCEPTIONS
# =============================================================================

class ValidationError(ShoppeError):
    """Raised when input to a cache/sync operation is invalid"""

    def __init__(
        self,
        message: str,
        field: Optional[str] = None,
        value: Optional[Any] = None,
        **kwargs,
    ):
        details = kwargs.pop("details", {})
        if field:
            details["field"] = field
        if value is not None:
            details["value"] = value

        super().__init__(
            message=message,
            code=kwargs.pop("code", "DATA_001"),
            details=details,
            **kwargs,
        )


class UnknownPartitionError(ValidationError):
    """Raised when a partition key does not name a known collection"""

    def __init__(self, partition: str, **kwargs):
        super().__init__(
            message=f"Unknown cache partition '{partition}'",
            field="partition",
            value=partition,
            code="DATA_002",
            **kwargs,
        )


class DuplicateSuggestionError(ValidationError):
    """Raised when an equivalent suggestion is already pending review"""

    def __init__(
        self,
        message: str,
        service_type: Optional[str] = None,
        suggestion_type: Optional[str] = None,
        **kwargs,
    ):
        details = kwargs.pop("details", {})
        if service_type:
            details["service_type"] = service_type
        if suggestion_type:
            details["suggestion_type"] = suggestion_type

        super().__init__(
            message=message,
            code="DATA_003",
            details=details,
            **kwargs,
        )


# =============================================================================
# CONFIGURATION EXCEPTIONS
# =============================================================================

class ConfigurationError(ShoppeError):
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
