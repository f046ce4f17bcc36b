# =============================================================================
# shoppe_core/offline/connection_manager.py
# Connection Status Detection and Management
# =============================================================================
"""
ConnectionManager - Connectivity Probe for the write gate and the sync engine.

Features:
- Reachability check: TCP to well-known DNS hosts, then HEAD to the backend
- Hard overall timeout; ambiguous results count as offline
- Optional asyncio monitoring task
- Event callbacks for status changes
"""

from __future__ import annotations
import asyncio
import socket
from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Callable, List, Optional, Protocol, Tuple, runtime_checkable

import requests

from shoppe_core.config.settings import SyncSettings
from shoppe_core.logging import get_logger

logger = get_logger(__name__)


@runtime_checkable
class ConnectivityProbe(Protocol):
    """Anything that can answer "may we talk to the backend right now"."""

    async def has_connectivity(self) -> bool:
        ...


class ConnectionStatus(Enum):
    """Connection status states."""
    ONLINE = "online"           # Internet and backend reachable
    OFFLINE = "offline"         # No connectivity
    DEGRADED = "degraded"       # Internet OK but backend unavailable
    CHECKING = "checking"       # Currently checking status
    UNKNOWN = "unknown"         # Initial state


@dataclass
class ConnectionState:
    """Current connection state with metadata."""
    status: ConnectionStatus = ConnectionStatus.UNKNOWN
    internet_available: bool = False
    backend_available: bool = False
    last_check: Optional[datetime] = None
    last_online: Optional[datetime] = None
    consecutive_failures: int = 0
    error_message: Optional[str] = None


class ConnectionManager:
    """
    Connectivity probe with status tracking.

    Usage:
        manager = ConnectionManager(settings)
        if await manager.has_connectivity():
            # Remote writes allowed
        else:
            # Serve cached data, block writes
    """

    def __init__(self, settings: Optional[SyncSettings] = None):
        settings = settings or SyncSettings()
        self.backend_url = settings.supabase_url
        self.timeout = settings.connectivity_timeout
        self.hosts: Tuple[Tuple[str, int], ...] = tuple(settings.connectivity_hosts)
        self.check_interval_online = settings.check_interval_online
        self.check_interval_offline = settings.check_interval_offline

        self._state = ConnectionState()
        self._callbacks: List[Callable[[ConnectionState], None]] = []
        self._monitor_task: Optional[asyncio.Task] = None
        self._forced_offline = False

    @property
    def state(self) -> ConnectionState:
        return self._state

    @property
    def status(self) -> ConnectionStatus:
        return self._state.status

    @property
    def is_online(self) -> bool:
        """Status of the last completed check."""
        return self._state.status == ConnectionStatus.ONLINE

    # =========================================================================
    # PROBE
    # =========================================================================

    async def has_connectivity(self) -> bool:
        """
        Check whether the backend is reachable right now.

        Never raises. A timeout, a degraded connection or any probe failure
        returns False.
        """
        if self._forced_offline:
            return False

        try:
            state = await asyncio.wait_for(self.check_connection(), timeout=self.timeout)
        except asyncio.TimeoutError:
            self._apply(False, False, f"Connectivity check timed out after {self.timeout}s")
            return False
        except Exception as e:
            logger.warning(f"Connectivity check failed: {e}", exc_info=True)
            self._apply(False, False, str(e))
            return False

        return state.status == ConnectionStatus.ONLINE

    async def check_connection(self) -> ConnectionState:
        """
        Perform a connection check and update state.

        Returns:
            Updated ConnectionState
        """
        self._state.status = ConnectionStatus.CHECKING

        internet_ok = await asyncio.to_thread(self._check_internet)
        backend_ok = False
        if internet_ok:
            backend_ok = await asyncio.to_thread(self._check_backend)

        self._apply(internet_ok, backend_ok)
        return self._state

    def _apply(self, internet_ok: bool, backend_ok: bool, error: Optional[str] = None) -> None:
        old_status = self._previous_status()
        self._state.last_check = datetime.now()
        self._state.internet_available = internet_ok
        self._state.backend_available = backend_ok

        if internet_ok and backend_ok:
            self._state.status = ConnectionStatus.ONLINE
            self._state.last_online = self._state.last_check
            self._state.consecutive_failures = 0
            self._state.error_message = None
        else:
            self._state.status = (
                ConnectionStatus.DEGRADED if internet_ok else ConnectionStatus.OFFLINE
            )
            self._state.consecutive_failures += 1
            if error:
                self._state.error_message = error

        if old_status != self._state.status:
            logger.info(f"Connection status changed: {old_status.value} -> {self._state.status.value}")
            self._notify_callbacks()

    def _previous_status(self) -> ConnectionStatus:
        # CHECKING is transient; compare against the last settled status
        if self._state.status == ConnectionStatus.CHECKING:
            if self._state.last_check is None:
                return ConnectionStatus.UNKNOWN
            if self._state.internet_available and self._state.backend_available:
                return ConnectionStatus.ONLINE
            if self._state.internet_available:
                return ConnectionStatus.DEGRADED
            return ConnectionStatus.OFFLINE
        return self._state.status

    def _check_internet(self) -> bool:
        """
        Check internet connectivity by attempting to reach well-known hosts.

        Returns:
            True if any host accepts a TCP connection
        """
        for host, port in self.hosts:
            try:
                with socket.create_connection((host, port), timeout=self.timeout):
                    return True
            except OSError:
                continue
        return False

    def _check_backend(self) -> bool:
        """
        Check that the backend answers HTTP.

        Returns:
            True if the backend responded without a server error, or when no
            backend is configured (local-only mode)
        """
        if not self.backend_url:
            return True

        try:
            response = requests.head(self.backend_url, timeout=self.timeout, allow_redirects=True)
        except requests.RequestException as e:
            self._state.error_message = str(e)
            logger.debug(f"Backend check failed: {e}")
            return False

        return response.status_code < 500

    # =========================================================================
    # MONITORING
    # =========================================================================

    def start_monitoring(self) -> asyncio.Task:
        """Start the background monitoring task on the running loop."""
        if self._monitor_task is None or self._monitor_task.done():
            self._monitor_task = asyncio.create_task(
                self._monitoring_loop(), name="ConnectionMonitor"
            )
            logger.debug("Connection monitoring started")
        return self._monitor_task

    async def stop_monitoring(self) -> None:
        """Stop background connection monitoring."""
        if self._monitor_task is None:
            return
        self._monitor_task.cancel()
        try:
            await self._monitor_task
        except asyncio.CancelledError:
            pass
        self._monitor_task = None
        logger.debug("Connection monitoring stopped")

    async def _monitoring_loop(self) -> None:
        while True:
            await self.has_connectivity()
            interval = (
                self.check_interval_online
                if self.is_online
                else self.check_interval_offline
            )
            await asyncio.sleep(interval)

    # =========================================================================
    # CALLBACKS
    # =========================================================================

    def register_callback(self, callback: Callable[[ConnectionState], None]) -> None:
        """
        Register a callback for connection status changes.

        Args:
            callback: Function called with ConnectionState when status changes
        """
        if callback not in self._callbacks:
            self._callbacks.append(callback)

    def unregister_callback(self, callback: Callable[[ConnectionState], None]) -> None:
        """Remove a registered callback."""
        if callback in self._callbacks:
            self._callbacks.remove(callback)

    def _notify_callbacks(self) -> None:
        for callback in list(self._callbacks):
            try:
                callback(self._state)
            except Exception as e:
                logger.error(f"Error in connection callback: {e}", exc_info=True)

    # =========================================================================
    # OVERRIDES / DISPLAY
    # =========================================================================

    def force_offline(self) -> None:
        """Force offline mode (for testing or user preference)."""
        self._forced_offline = True
        self._apply(False, False, "Forced offline")
        logger.info("Forced offline mode")

    def clear_forced_offline(self) -> None:
        """Let the next probe decide the status again."""
        self._forced_offline = False

    def get_status_display(self) -> dict:
        """Get status information for UI display."""
        return {
            "status": self._state.status.value,
            "is_online": self.is_online,
            "forced_offline": self._forced_offline,
            "internet": self._state.internet_available,
            "backend": self._state.backend_available,
            "last_check": self._state.last_check.isoformat() if self._state.last_check else None,
            "last_online": self._state.last_online.isoformat() if self._state.last_online else None,
            "failures": self._state.consecutive_failures,
            "error": self._state.error_message,
        }
