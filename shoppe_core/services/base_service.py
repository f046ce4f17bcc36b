# =============================================================================
# shoppe_core/services/base_service.py
# Shared plumbing for the sync orchestrator and the customer data service
# =============================================================================

from __future__ import annotations
from abc import ABC
from typing import Optional, Dict, Any, Callable
from dataclasses import dataclass

from shoppe_core.logging import get_logger, LogContext
from shoppe_core.errors import handle_error, ShoppeError


@dataclass
class ServiceResult:
    """
    Outcome of a refresh or cache operation that must not raise.

    Refreshes run in shared background tasks, so their failures travel back
    to every waiting caller as a value: `data` holds the refreshed entity
    list on success, `error` / `error_code` the ShoppeError code on failure.
    Truthy only on success.
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
        return cls(success=True, data=data, metadata=metadata)

    @classmethod
    def fail(
        cls,
        error: str,
        error_code: str = "UNKNOWN",
        metadata: Dict[str, Any] = None
    ) -> ServiceResult:
        return cls(
            success=False,
            error=error,
            error_code=error_code,
            metadata=metadata,
        )

    @classmethod
    def from_exception(cls, e: Exception) -> ServiceResult:
        """Failed result carrying the error code and details of e."""
        if isinstance(e, ShoppeError):
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
    Base for SyncOrchestrator and CustomerDataService.

    Each subclass gets a logger named after the class, a progress hook the
    UI can attach a progress bar to, and timed operation logging.

    Usage:
        class CustomerDataService(BaseService):
            async def delete_customer(self, service_type, customer_id):
                with self.log_operation(f"Deleting {service_type} customer"):
                    await self.remote.delete(collection, customer_id)
    """

    def __init__(self):
        self.logger = get_logger(self.__class__.__name__)
        self._progress_callback: Optional[Callable[[int, str], None]] = None

    def set_progress_callback(
        self,
        callback: Optional[Callable[[int, str], None]]
    ) -> None:
        """
        Attach (or with None, detach) a progress listener.

        Args:
            callback: Called with (percentage, message), e.g. per partition
                finished during a full sync
        """
        self._progress_callback = callback

    def _update_progress(self, percentage: int, message: str = "") -> None:
        if self._progress_callback:
            self._progress_callback(percentage, message)

    def log_operation(self, operation: str) -> LogContext:
        """
        Timed started/completed/failed log lines around a block.

        Usage:
            with self.log_operation("Refreshing 'cignal'"):
                entities = await self.remote.fetch_all("customers_cignal")
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
        Run a synchronous cache operation, turning ShoppeErrors into results.

        Only ShoppeError (for example a StorageError from the SQLite cache)
        is converted; anything else is a bug and propagates.

        Returns:
            ServiceResult with func's return value, or the error
        """
        try:
            with self.log_operation(operation):
                return ServiceResult.ok(func(*args, **kwargs))
        except ShoppeError as e:
            handle_error(e, show_user_message=False)
            return ServiceResult.from_exception(e)
