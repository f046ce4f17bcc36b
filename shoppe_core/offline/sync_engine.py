# =============================================================================
# shoppe_core/offline/sync_engine.py
# Staleness-gated Synchronization Engine
# =============================================================================
"""
SyncOrchestrator - refreshes cached partitions from the remote database.

Features:
- At most one in-flight fetch per partition (concurrent callers share it)
- Full sync of every stale or uncached partition, each isolated from the rest
- Failed refreshes leave the cached snapshot and its sync time untouched
- Detached tasks for fire-and-forget call sites
- Sync status events and progress callbacks
- Full sync scheduled when connectivity comes back
"""

from __future__ import annotations
import asyncio
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Callable, Dict, List, Optional, Set

from shoppe_core.data.remote_client import RemoteDatabaseClient
from shoppe_core.errors import ShoppeError, UnknownPartitionError, handle_error
from shoppe_core.models.partitions import PartitionRegistry
from shoppe_core.offline.connection_manager import (
    ConnectionState,
    ConnectionStatus,
    ConnectivityProbe,
)
from shoppe_core.offline.local_database import EntityCacheStore
from shoppe_core.offline.staleness import StalenessPolicy
from shoppe_core.services.base_service import BaseService, ServiceResult


class SyncEventStatus(Enum):
    """Sync status reported to listeners."""
    IDLE = "idle"
    SYNCING = "syncing"
    COMPLETED = "completed"
    ERROR = "error"
    OFFLINE = "offline"


@dataclass
class SyncEvent:
    """One status update from the sync engine."""
    status: SyncEventStatus
    message: str = ""
    partition: Optional[str] = None
    timestamp: datetime = field(default_factory=datetime.now)


@dataclass
class PartitionSyncState:
    """In-memory sync bookkeeping for one partition (never persisted)."""
    in_progress: bool = False
    last_attempt: Optional[ServiceResult] = None
    last_attempt_at: Optional[datetime] = None
    refresh_count: int = 0


class SyncOrchestrator(BaseService):
    """
    Owns the per-partition sync state and every refresh of the cache.

    One instance is created at startup and injected where needed.

    Usage:
        orchestrator = SyncOrchestrator(store, remote, probe)
        result = await orchestrator.force_refresh("cignal")
        refreshed = await orchestrator.force_full_sync()
    """

    def __init__(
        self,
        store: EntityCacheStore,
        remote: RemoteDatabaseClient,
        probe: ConnectivityProbe,
        registry: Optional[PartitionRegistry] = None,
        policy: Optional[StalenessPolicy] = None,
        notify_ui: bool = False,
    ):
        """
        Args:
            store: Local cache the refreshes write into
            remote: Source of truth for every partition
            probe: Connectivity check used before a full sync
            registry: Partitions walked by a full sync (default: static set)
            policy: Staleness rule (default: 5 minute window)
            notify_ui: Show refresh failures as Streamlit toasts
        """
        super().__init__()
        self.store = store
        self.remote = remote
        self.probe = probe
        self.registry = registry or PartitionRegistry()
        self.policy = policy or StalenessPolicy(store)
        self.notify_ui = notify_ui

        self._states: Dict[str, PartitionSyncState] = {}
        self._inflight: Dict[str, asyncio.Task] = {}
        self._detached: Set[asyncio.Task] = set()
        self._callbacks: List[Callable[[SyncEvent], None]] = []
        self._last_event = SyncEvent(SyncEventStatus.IDLE)
        self._was_online: Optional[bool] = None

    @property
    def last_event(self) -> SyncEvent:
        return self._last_event

    def get_state(self, partition_key: str) -> PartitionSyncState:
        state = self._states.get(partition_key)
        if state is None:
            state = PartitionSyncState()
            self._states[partition_key] = state
        return state

    def is_refreshing(self, partition_key: str) -> bool:
        return partition_key in self._inflight

    # =========================================================================
    # REFRESH
    # =========================================================================

    async def force_refresh(self, partition_key: str) -> ServiceResult:
        """
        Fetch a partition's full collection and replace the cached snapshot.

        Concurrent calls for the same partition share one fetch and all get
        the same result. Cancelling one caller does not cancel the fetch.

        Raises:
            UnknownPartitionError: If the key names no known collection

        Returns:
            ServiceResult with the new entity list, or the failure reason
        """
        self.registry.resolve(partition_key)

        task = self._inflight.get(partition_key)
        if task is None:
            task = asyncio.create_task(
                self._refresh(partition_key), name=f"refresh:{partition_key}"
            )
            self._inflight[partition_key] = task
            task.add_done_callback(
                lambda done, key=partition_key: self._forget_inflight(key, done)
            )
        else:
            self.logger.debug(f"Joining in-flight refresh of '{partition_key}'")

        return await asyncio.shield(task)

    def _forget_inflight(self, partition_key: str, task: asyncio.Task) -> None:
        if self._inflight.get(partition_key) is task:
            del self._inflight[partition_key]

    async def _refresh(self, partition_key: str) -> ServiceResult:
        spec = self.registry.resolve(partition_key)
        state = self.get_state(partition_key)
        state.in_progress = True
        self._emit(SyncEventStatus.SYNCING, f"Refreshing {partition_key}", partition_key)

        try:
            with self.log_operation(f"Refreshing '{partition_key}'"):
                entities = await self.remote.fetch_all(spec.collection, spec.filters or None)
                snapshot = self.store.put(partition_key, entities)
        except ShoppeError as e:
            handle_error(e, show_user_message=self.notify_ui)
            result = ServiceResult.from_exception(e)
        except Exception as e:
            self.logger.error(f"Unexpected error refreshing '{partition_key}': {e}", exc_info=True)
            result = ServiceResult.fail(str(e), error_code="EXCEPTION")
        else:
            state.refresh_count += 1
            result = ServiceResult.ok(
                snapshot.entities,
                metadata={
                    "partition": partition_key,
                    "count": len(snapshot),
                    "last_synced_at_ms": snapshot.last_synced_at_ms,
                },
            )
        finally:
            state.in_progress = False
            state.last_attempt_at = datetime.now()

        state.last_attempt = result
        if result.success:
            self._emit(
                SyncEventStatus.COMPLETED,
                f"Refreshed {partition_key} ({len(result.data)} records)",
                partition_key,
            )
        else:
            self._emit(SyncEventStatus.ERROR, f"Refresh of {partition_key} failed: {result.error}", partition_key)
        return result

    def sync_candidates(self) -> List[str]:
        """
        Partitions a full sync would refresh right now.

        Static partitions qualify when stale or uncached. Scoped partitions
        qualify only while they hold a stale snapshot, so a day of
        transactions read once is not refetched forever.
        """
        known = self.registry.keys
        for key in self.store.partition_keys():
            if key in self.registry:
                continue
            try:
                self.registry.resolve(key)
            except UnknownPartitionError:
                self.logger.warning(f"Ignoring cached partition with unknown key '{key}'")
                continue
            known.append(key)

        keys = []
        for key in known:
            cached = self.store.has_cache(key)
            if not cached and self.registry.is_scoped(key):
                continue
            if not cached or self.policy.needs_sync(key):
                keys.append(key)
        return keys

    def invalidate(self, partition_key: Optional[str] = None) -> None:
        """
        Clear one partition, or every partition, from the cache.

        Cleared scoped partitions are unregistered as well.
        """
        if partition_key is None:
            self.store.clear_all()
            dropped = self.registry.forget_scoped()
            self._states.clear()
            self.logger.debug(f"Cache cleared, {len(dropped)} scoped partitions forgotten")
            return

        self.store.clear(partition_key)
        self._states.pop(partition_key, None)
        if self.registry.is_scoped(partition_key):
            self.registry.unregister(partition_key)

    async def force_full_sync(self) -> int:
        """
        Refresh every known partition that is stale or not cached.

        Known means the static partitions plus scoped partitions that hold a
        snapshot. Partitions refresh concurrently; one failing does not stop
        the others.

        Returns:
            Number of partitions refreshed successfully (0 when offline)
        """
        if not await self.probe.has_connectivity():
            self.logger.info("Full sync skipped: offline")
            self._emit(SyncEventStatus.OFFLINE, "No internet connection")
            return 0

        keys = self.sync_candidates()
        if not keys:
            self._emit(SyncEventStatus.COMPLETED, "All partitions up to date")
            return 0

        total = len(keys)
        finished = 0
        self._emit(SyncEventStatus.SYNCING, f"Syncing {total} partitions")
        self._update_progress(0, f"Syncing {total} partitions")

        async def refresh_one(key: str) -> ServiceResult:
            nonlocal finished
            result = await self.force_refresh(key)
            finished += 1
            self._update_progress(int(finished * 100 / total), f"Synced {key}")
            return result

        with self.log_operation(f"Full sync of {total} partitions"):
            results = await asyncio.gather(
                *(refresh_one(key) for key in keys),
                return_exceptions=True,
            )

        succeeded = sum(
            1 for r in results if isinstance(r, ServiceResult) and r.success
        )
        failed = [key for key, r in zip(keys, results) if not (isinstance(r, ServiceResult) and r.success)]

        if failed:
            self._emit(
                SyncEventStatus.ERROR,
                f"Synced {succeeded}/{total}; failed: {', '.join(failed)}",
            )
        else:
            self._emit(SyncEventStatus.COMPLETED, f"Synced {succeeded} partitions")
        return succeeded

    # =========================================================================
    # DETACHED TASKS
    # =========================================================================

    def schedule_refresh(self, partition_key: str) -> asyncio.Task:
        """
        Start a refresh without waiting for it.

        The returned task may be awaited or ignored. UI state that depends on
        the refresh finishing must await it.
        """
        return self._detach(self.force_refresh(partition_key), f"scheduled-refresh:{partition_key}")

    def schedule_full_sync(self) -> asyncio.Task:
        """Start a full sync without waiting for it."""
        return self._detach(self.force_full_sync(), "scheduled-full-sync")

    def _detach(self, coro, name: str) -> asyncio.Task:
        task = asyncio.create_task(coro, name=name)
        self._detached.add(task)
        task.add_done_callback(self._on_detached_done)
        return task

    def _on_detached_done(self, task: asyncio.Task) -> None:
        self._detached.discard(task)
        if task.cancelled():
            return
        error = task.exception()
        if error is not None:
            self.logger.error(f"Background task {task.get_name()} failed: {error}", exc_info=error)

    def on_connection_change(self, state: ConnectionState) -> None:
        """Connectivity callback: schedule a full sync when we come back online."""
        online = state.status == ConnectionStatus.ONLINE
        came_back = online and self._was_online is False
        self._was_online = online
        if came_back:
            self.logger.info("Connection restored, scheduling full sync")
            self.schedule_full_sync()

    # =========================================================================
    # EVENTS
    # =========================================================================

    def register_callback(self, callback: Callable[[SyncEvent], None]) -> None:
        """
        Register a callback for sync status events.

        Args:
            callback: Function called with each SyncEvent
        """
        if callback not in self._callbacks:
            self._callbacks.append(callback)

    def unregister_callback(self, callback: Callable[[SyncEvent], None]) -> None:
        if callback in self._callbacks:
            self._callbacks.remove(callback)

    def _emit(self, status: SyncEventStatus, message: str, partition: Optional[str] = None) -> None:
        event = SyncEvent(status=status, message=message, partition=partition)
        self._last_event = event
        for callback in list(self._callbacks):
            try:
                callback(event)
            except Exception as e:
                self.logger.error(f"Error in sync callback: {e}", exc_info=True)

    # =========================================================================
    # STATUS / TEARDOWN
    # =========================================================================

    def get_status_display(self) -> Dict[str, Any]:
        """Get sync status for UI display."""
        partitions = {}
        for key in self.registry.keys:
            state = self.get_state(key)
            attempt = state.last_attempt
            partitions[key] = {
                "in_progress": state.in_progress,
                "has_cache": self.store.has_cache(key),
                "needs_sync": self.policy.needs_sync(key),
                "last_synced_at_ms": self.store.last_synced_at(key),
                "last_attempt_ok": None if attempt is None else attempt.success,
                "last_error": None if attempt is None else attempt.error,
                "last_attempt_at": state.last_attempt_at.isoformat() if state.last_attempt_at else None,
                "refresh_count": state.refresh_count,
            }
        return {
            "status": self._last_event.status.value,
            "message": self._last_event.message,
            "in_flight": sorted(self._inflight.keys()),
            "background_tasks": len(self._detached),
            "partitions": partitions,
        }

    async def close(self) -> None:
        """Cancel in-flight and detached work."""
        tasks = list(self._detached) + list(self._inflight.values())
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)
        self._detached.clear()
        self._inflight.clear()
        self._states.clear()
