# =============================================================================
# shoppe_core/offline/unified_data_service.py
# Customer Data Service - Single API for cached reads and gated writes
# =============================================================================
"""
CustomerDataService - the API the POS screens use for customer data.

This service provides:
- Read-through access: cache hit returns at once, miss waits for one fetch
- Write gate: remote writes are refused while offline
- Cache patching after successful writes (no full refetch)
- Suggestions with duplicate checks and an admin review workflow
- Duplicate lookups and per-status stats over cached customers
- A startup step that begins connection monitoring and the first sync

Usage:
------
from shoppe_core.offline import create_data_service

service = create_data_service()
await service.start()

customers = await service.get_customers("cignal")
if service.needs_sync("cignal"):
    service.schedule_refresh("cignal")

await service.add_customer("cignal", {"name": "Juan Dela Cruz"})
"""

from __future__ import annotations
import asyncio
import functools
from typing import Any, Callable, Dict, List, Optional, Union

import pandas as pd

from shoppe_core.config.settings import SyncSettings
from shoppe_core.data.remote_client import RemoteDatabaseClient, SupabaseRemoteClient
from shoppe_core.errors import (
    ConfigurationError,
    DuplicateSuggestionError,
    NetworkError,
    OfflineError,
    StorageError,
    ValidationError,
    error_boundary,
    handle_error,
)
from shoppe_core.models.entities import (
    CUSTOMER_STATUSES,
    AuditStamp,
    CustomerRecord,
    Entity,
    remote_field_name,
)
from shoppe_core.models.partitions import (
    PartitionRegistry,
    suggestions_partition,
    validate_service_type,
)
from shoppe_core.offline.connection_manager import ConnectionManager, ConnectivityProbe
from shoppe_core.offline.local_database import EntityCacheStore
from shoppe_core.offline.staleness import StalenessPolicy, now_ms
from shoppe_core.offline.sync_engine import SyncOrchestrator
from shoppe_core.services.base_service import BaseService, ServiceResult

SUGGESTION_TYPES = ("add", "edit", "delete")

SUGGESTION_STATUSES = ("pending", "approved", "rejected")

DEFAULT_CUSTOMER_STATUS = CUSTOMER_STATUSES[0]

STATS_KEYS = ("total", "active", "inactive", "pending")


def requires_connectivity(operation: str):
    """
    Decorator for remote writes: check connectivity before anything else.

    Raises OfflineError without calling the wrapped method when the probe
    reports no connectivity.

    Usage:
        @requires_connectivity("add customer")
        async def add_customer(self, ...):
            ...
    """
    def decorator(func: Callable) -> Callable:
        @functools.wraps(func)
        async def wrapper(self, *args, **kwargs):
            if not await self.probe.has_connectivity():
                self.logger.warning(f"Blocked '{operation}': offline")
                raise OfflineError(
                    f"No internet connection. Cannot {operation} while offline.",
                    operation=operation,
                )
            return await func(self, *args, **kwargs)

        return wrapper

    return decorator


class CustomerDataService(BaseService):
    """
    Cached customer data with connectivity-gated writes.

    All state lives in the injected orchestrator (store, remote client,
    probe, partitions); the service itself holds only the signed-in user.
    """

    def __init__(
        self,
        orchestrator: SyncOrchestrator,
        current_user: Optional[AuditStamp] = None,
        clock: Optional[Callable[[], int]] = None,
    ):
        super().__init__()
        self.orchestrator = orchestrator
        self.store = orchestrator.store
        self.remote = orchestrator.remote
        self.probe = orchestrator.probe
        self.registry = orchestrator.registry
        self.policy = orchestrator.policy
        self.current_user = current_user
        self._clock = clock or now_ms

    def set_current_user(self, user: Optional[AuditStamp]) -> None:
        """Set the user stamped on writes (None on sign-out)."""
        self.current_user = user

    # =========================================================================
    # READS
    # =========================================================================

    async def get_customers(self, service_type: str, force_refresh: bool = False) -> List[Entity]:
        """
        Customers of one service, from cache when available.

        Args:
            service_type: cignal, gsat, sky or satellite
            force_refresh: Refetch first; falls back to the cached list if
                the refetch fails

        Raises:
            ValidationError: Unknown service type
            NetworkError: Nothing cached and the fetch failed

        Returns:
            The complete cached list (never a partial page)
        """
        validate_service_type(service_type)

        if force_refresh and await self.probe.has_connectivity():
            result = await self.orchestrator.force_refresh(service_type)
            if result.success:
                return [dict(e) for e in result.data]
            self.logger.warning(f"Forced refresh of '{service_type}' failed, using cache")

        return await self.get_entities(service_type)

    async def get_entities(self, partition_key: str) -> List[Entity]:
        """
        Read-through access to any partition.

        A cache hit returns without network access, even when stale. A miss
        waits for one (shared) refresh.
        """
        spec = self.registry.resolve(partition_key)

        cached = self._read_cache(partition_key)
        if cached is not None:
            return cached

        result = await self.orchestrator.force_refresh(partition_key)
        if not result.success:
            raise NetworkError(
                f"Could not load {partition_key}: {result.error}",
                collection=spec.collection,
                operation="fetch",
                details={"cause_code": result.error_code},
            )
        return [dict(e) for e in result.data]

    def _read_cache(self, partition_key: str) -> Optional[List[Entity]]:
        try:
            partition = self.store.get(partition_key)
        except StorageError as e:
            handle_error(e, show_user_message=False)
            return None
        return None if partition is None else partition.entities

    def has_customers_cache(self, service_type: str) -> bool:
        validate_service_type(service_type)
        return self.store.has_cache(service_type)

    def needs_sync(self, partition_key: str) -> bool:
        return self.policy.needs_sync(partition_key)

    async def find_customer(
        self,
        service_type: str,
        field_name: str,
        value: Any,
        exclude_id: Optional[str] = None,
    ) -> Optional[Entity]:
        """
        First cached customer whose field matches value (trimmed, case-insensitive).

        Used for serial / CCA / account / box number duplicate checks.

        Args:
            service_type: Service to search
            field_name: Remote (serialNumber) or python (serial_number) field name
            value: Value to look for; empty values never match
            exclude_id: Skip this customer (the one being edited)
        """
        needle = str(value or "").strip().lower()
        if not needle:
            return None

        field_name = remote_field_name(field_name)
        for entity in await self.get_customers(service_type):
            if exclude_id is not None and entity.get("id") == exclude_id:
                continue
            if str(entity.get(field_name) or "").strip().lower() == needle:
                return entity
        return None

    async def customers_frame(self, service_type: str) -> pd.DataFrame:
        """Cached customers as a DataFrame (one row per customer)."""
        entities = await self.get_customers(service_type)
        if not entities:
            return pd.DataFrame(columns=["id", "name", "status"])
        return pd.DataFrame(entities)

    async def get_customer_stats(self, service_type: str) -> Dict[str, int]:
        """
        Customer counts by status.

        Returns:
            Dict with total, active, inactive and pending counts
        """
        df = await self.customers_frame(service_type)
        if df.empty:
            return dict.fromkeys(STATS_KEYS, 0)

        if "status" in df.columns:
            counts = df["status"].fillna("").astype(str).str.strip().str.lower().value_counts()
        else:
            counts = pd.Series(dtype=int)

        return {
            "total": int(len(df)),
            "active": int(counts.get("active", 0)),
            "inactive": int(counts.get("inactive", 0)),
            "pending": int(counts.get("pending", 0)),
        }

    # =========================================================================
    # SYNC PASSTHROUGH
    # =========================================================================

    async def has_connectivity(self) -> bool:
        return await self.probe.has_connectivity()

    async def force_refresh(self, partition_key: str) -> ServiceResult:
        return await self.orchestrator.force_refresh(partition_key)

    async def force_full_sync(self) -> int:
        return await self.orchestrator.force_full_sync()

    def schedule_refresh(self, partition_key: str) -> asyncio.Task:
        return self.orchestrator.schedule_refresh(partition_key)

    def schedule_full_sync(self) -> asyncio.Task:
        return self.orchestrator.schedule_full_sync()

    def refresh_if_stale(self, partition_key: str) -> Optional[asyncio.Task]:
        """Start a background refresh when the partition is stale."""
        if not self.policy.needs_sync(partition_key):
            return None
        return self.orchestrator.schedule_refresh(partition_key)

    # =========================================================================
    # GATED WRITES
    # =========================================================================

    def _stamp(self, user: Optional[AuditStamp], timestamp: int) -> Optional[AuditStamp]:
        user = user or self.current_user
        return None if user is None else user.stamped(timestamp)

    def _reflect(self, partition_key: str, apply: Callable[[], bool]) -> bool:
        """Apply a write to the cache; on a local failure refresh instead."""
        try:
            return apply()
        except StorageError as e:
            handle_error(e, show_user_message=False)
            self.orchestrator.schedule_refresh(partition_key)
            return False

    @requires_connectivity("add customer")
    async def add_customer(
        self,
        service_type: str,
        customer: Union[CustomerRecord, Entity],
        user: Optional[AuditStamp] = None,
    ) -> Entity:
        """
        Create a customer remotely and put it first in the cached list.

        Args:
            service_type: Service the customer belongs to
            customer: CustomerRecord or a camelCase field dict
            user: Who is adding (default: the current user)

        Raises:
            OfflineError: No connectivity (nothing is sent)
            ValidationError: Unknown service or missing name
            NetworkError: Remote create failed

        Returns:
            The created entity, including its remote id
        """
        validate_service_type(service_type)
        record = (
            customer if isinstance(customer, CustomerRecord)
            else CustomerRecord.from_entity(service_type, customer)
        )
        if not (record.name or "").strip():
            raise ValidationError("Customer name is required", field="name")
        record.status = record.status or DEFAULT_CUSTOMER_STATUS

        timestamp = self._clock()
        record.created_at = timestamp
        record.updated_at = timestamp
        stamp = self._stamp(user, timestamp)
        if stamp is not None:
            record.added_by = stamp

        fields = record.to_fields()
        collection = self.registry.resolve(service_type).collection
        with self.log_operation(f"Adding {service_type} customer"):
            created = await self.remote.create(collection, fields)

        entity = {**fields, **created}
        self._reflect(service_type, lambda: self.store.insert_one(service_type, entity, at_front=True))
        return entity

    @requires_connectivity("update customer")
    async def update_customer(
        self,
        service_type: str,
        customer_id: str,
        changes: Union[CustomerRecord, Entity],
        user: Optional[AuditStamp] = None,
    ) -> Entity:
        """
        Update a customer remotely and patch the cached copy.

        If the customer is not in the cached list the partition is refreshed
        in the background instead.

        Returns:
            The fields written (including updatedAt / lastUpdatedBy)
        """
        validate_service_type(service_type)
        if not customer_id:
            raise ValidationError("Customer id is required", field="customer_id")

        if isinstance(changes, CustomerRecord):
            fields = changes.to_fields(include_empty_identifiers=True)
        else:
            fields = {remote_field_name(k): v for k, v in changes.items() if k != "id"}

        timestamp = self._clock()
        fields["updatedAt"] = timestamp
        stamp = self._stamp(user, timestamp)
        if stamp is not None:
            fields["lastUpdatedBy"] = stamp.to_dict()

        collection = self.registry.resolve(service_type).collection
        with self.log_operation(f"Updating {service_type} customer {customer_id}"):
            updated = await self.remote.update(collection, customer_id, fields)

        patch = {**fields, **{k: v for k, v in updated.items() if k != "id"}}
        patched = self._reflect(service_type, lambda: self.store.patch_one(service_type, customer_id, patch))
        if not patched and self.store.has_cache(service_type):
            self.logger.debug(f"Customer {customer_id} not cached, refreshing '{service_type}'")
            self.orchestrator.schedule_refresh(service_type)
        return patch

    @requires_connectivity("delete customer")
    async def delete_customer(self, service_type: str, customer_id: str) -> bool:
        """
        Delete a customer remotely and drop it from the cached list.

        Returns:
            True once the remote delete succeeded
        """
        validate_service_type(service_type)
        if not customer_id:
            raise ValidationError("Customer id is required", field="customer_id")

        collection = self.registry.resolve(service_type).collection
        with self.log_operation(f"Deleting {service_type} customer {customer_id}"):
            await self.remote.delete(collection, customer_id)

        self._reflect(service_type, lambda: self.store.remove_one(service_type, customer_id))
        return True

    @requires_connectivity("submit suggestion")
    async def submit_suggestion(
        self,
        service_type: str,
        suggestion_type: str,
        customer_data: Entity,
        submitted_by: Optional[AuditStamp] = None,
        customer_id: Optional[str] = None,
        reason: Optional[str] = None,
    ) -> Entity:
        """
        Submit a customer change for admin review.

        Args:
            service_type: Service the customer belongs to
            suggestion_type: add, edit or delete
            customer_data: Proposed customer fields
            submitted_by: Who is suggesting (default: the current user)
            customer_id: Existing customer (required for edit and delete)
            reason: Free-text reason shown to the reviewer

        Raises:
            OfflineError: No connectivity (nothing is sent)
            ValidationError: Bad suggestion type or missing customer id
            DuplicateSuggestionError: An equivalent suggestion is pending

        Returns:
            The stored suggestion entity
        """
        validate_service_type(service_type)
        if suggestion_type not in SUGGESTION_TYPES:
            raise ValidationError(
                f"Unknown suggestion type '{suggestion_type}'",
                field="suggestion_type",
                value=suggestion_type,
                details={"allowed": list(SUGGESTION_TYPES)},
            )
        if suggestion_type != "add" and not customer_id:
            raise ValidationError(
                f"A customer id is required to suggest '{suggestion_type}'",
                field="customer_id",
            )

        key = await self._refresh_suggestions(service_type)

        if await self.has_pending_suggestion(
            service_type,
            suggestion_type,
            customer_id=customer_id,
            customer_name=customer_data.get("name"),
        ):
            raise DuplicateSuggestionError(
                "A similar suggestion is already pending review",
                service_type=service_type,
                suggestion_type=suggestion_type,
            )

        timestamp = self._clock()
        stamp = self._stamp(submitted_by, timestamp)
        fields: Entity = {
            "type": suggestion_type,
            "serviceType": service_type,
            "customerId": customer_id,
            "customerData": dict(customer_data),
            "reason": reason or "",
            "status": "pending",
            "submittedAt": timestamp,
        }
        if stamp is not None:
            fields["submittedBy"] = stamp.to_dict()

        collection = self.registry.resolve(key).collection
        with self.log_operation(f"Submitting {suggestion_type} suggestion for {service_type}"):
            created = await self.remote.create(collection, fields)

        entity = {**fields, **created}
        self._reflect(key, lambda: self.store.insert_one(key, entity, at_front=True))
        return entity

    async def has_pending_suggestion(
        self,
        service_type: str,
        suggestion_type: str,
        customer_id: Optional[str] = None,
        customer_name: Optional[str] = None,
    ) -> bool:
        """
        Whether an equivalent suggestion awaits review.

        Equivalent means same type and same customer id, or, for "add",
        the same customer name ignoring case.
        """
        wanted_name = (customer_name or "").strip().lower()
        for suggestion in await self.get_entities(suggestions_partition(service_type)):
            if suggestion.get("status") != "pending" or suggestion.get("type") != suggestion_type:
                continue
            if customer_id and suggestion.get("customerId") == customer_id:
                return True
            if suggestion_type == "add" and wanted_name:
                name = str((suggestion.get("customerData") or {}).get("name") or "")
                if name.strip().lower() == wanted_name:
                    return True
        return False

    # =========================================================================
    # SUGGESTION REVIEW
    # =========================================================================

    async def get_suggestions(
        self,
        service_type: str,
        status: Optional[str] = None,
        submitted_by: Optional[str] = None,
    ) -> List[Entity]:
        """
        Cached suggestions of one service.

        Args:
            service_type: Service the suggestions belong to
            status: Only suggestions with this status (pending, approved, rejected)
            submitted_by: Only suggestions submitted by this email
        """
        if status is not None and status not in SUGGESTION_STATUSES:
            raise ValidationError(
                f"Unknown suggestion status '{status}'",
                field="status",
                value=status,
                details={"allowed": list(SUGGESTION_STATUSES)},
            )

        suggestions = await self.get_entities(suggestions_partition(service_type))
        if status is not None:
            suggestions = [s for s in suggestions if s.get("status") == status]
        if submitted_by is not None:
            suggestions = [
                s for s in suggestions
                if (s.get("submittedBy") or {}).get("email") == submitted_by
            ]
        return suggestions

    async def get_pending_suggestions(self, service_type: str) -> List[Entity]:
        return await self.get_suggestions(service_type, status="pending")

    async def get_pending_suggestions_count(self, service_type: str) -> int:
        return len(await self.get_pending_suggestions(service_type))

    async def get_suggestions_by_user(self, service_type: str, email: str) -> List[Entity]:
        return await self.get_suggestions(service_type, submitted_by=email)

    async def _refresh_suggestions(self, service_type: str) -> str:
        """Refresh a stale suggestions partition before a write depends on it."""
        # Other devices submit and review too
        key = suggestions_partition(service_type)
        if self.policy.needs_sync(key):
            refreshed = await self.orchestrator.force_refresh(key)
            if not refreshed.success:
                self.logger.warning(f"Could not refresh '{key}', using cached suggestions")
        return key

    async def _pending_suggestion(self, service_type: str, suggestion_id: str) -> Entity:
        if not suggestion_id:
            raise ValidationError("Suggestion id is required", field="suggestion_id")

        key = await self._refresh_suggestions(service_type)
        for suggestion in await self.get_entities(key):
            if suggestion.get("id") != suggestion_id:
                continue
            if suggestion.get("status") != "pending":
                raise ValidationError(
                    f"Suggestion {suggestion_id} was already {suggestion.get('status')}",
                    field="suggestion_id",
                    value=suggestion_id,
                )
            return suggestion

        raise ValidationError(
            f"Suggestion {suggestion_id} not found",
            field="suggestion_id",
            value=suggestion_id,
        )

    async def _mark_reviewed(
        self,
        service_type: str,
        suggestion_id: str,
        action: str,
        reviewer: Optional[AuditStamp],
        rejection_reason: Optional[str] = None,
    ) -> Entity:
        timestamp = self._clock()
        fields: Entity = {"status": action, "updatedAt": timestamp}
        stamp = self._stamp(reviewer, timestamp)
        if stamp is not None:
            fields["reviewedBy"] = {**stamp.to_dict(), "action": action}
        if rejection_reason:
            fields["rejectionReason"] = rejection_reason

        key = suggestions_partition(service_type)
        collection = self.registry.resolve(key).collection
        with self.log_operation(f"Marking {service_type} suggestion {suggestion_id} {action}"):
            await self.remote.update(collection, suggestion_id, fields)

        self._reflect(key, lambda: self.store.patch_one(key, suggestion_id, fields))
        return fields

    @requires_connectivity("approve suggestion")
    async def approve_suggestion(
        self,
        service_type: str,
        suggestion_id: str,
        reviewer: Optional[AuditStamp] = None,
    ) -> Entity:
        """
        Apply a pending suggestion to the customers and mark it approved.

        An add creates the customer stamped with the reviewer, an edit
        updates it and a delete removes it. The suggestion is only marked
        approved once that customer write succeeded.

        Raises:
            OfflineError: No connectivity (nothing is sent)
            ValidationError: Unknown, already reviewed or incomplete suggestion
            NetworkError: A remote write failed

        Returns:
            The review fields written to the suggestion
        """
        validate_service_type(service_type)
        suggestion = await self._pending_suggestion(service_type, suggestion_id)
        suggestion_type = suggestion.get("type")
        customer_id = suggestion.get("customerId")
        customer_data = {
            k: v for k, v in (suggestion.get("customerData") or {}).items()
            if v is not None
        }

        if suggestion_type == "add":
            await self.add_customer(service_type, customer_data, user=reviewer)
        elif suggestion_type in ("edit", "delete"):
            if not customer_id:
                raise ValidationError(
                    f"Suggestion {suggestion_id} has no customer id",
                    field="customer_id",
                )
            if suggestion_type == "edit":
                await self.update_customer(service_type, customer_id, customer_data, user=reviewer)
            else:
                await self.delete_customer(service_type, customer_id)
        else:
            raise ValidationError(
                f"Unknown suggestion type '{suggestion_type}'",
                field="suggestion_type",
                value=suggestion_type,
            )

        return await self._mark_reviewed(service_type, suggestion_id, "approved", reviewer)

    @requires_connectivity("reject suggestion")
    async def reject_suggestion(
        self,
        service_type: str,
        suggestion_id: str,
        reviewer: Optional[AuditStamp] = None,
        rejection_reason: Optional[str] = None,
    ) -> Entity:
        """Mark a pending suggestion rejected without touching the customers."""
        validate_service_type(service_type)
        await self._pending_suggestion(service_type, suggestion_id)
        return await self._mark_reviewed(
            service_type, suggestion_id, "rejected", reviewer, rejection_reason=rejection_reason
        )

    @requires_connectivity("delete suggestion")
    async def delete_suggestion(self, service_type: str, suggestion_id: str) -> bool:
        """Remove a suggestion (e.g. a user withdrawing their own)."""
        key = suggestions_partition(service_type)
        if not suggestion_id:
            raise ValidationError("Suggestion id is required", field="suggestion_id")

        collection = self.registry.resolve(key).collection
        with self.log_operation(f"Deleting {service_type} suggestion {suggestion_id}"):
            await self.remote.delete(collection, suggestion_id)

        self._reflect(key, lambda: self.store.remove_one(key, suggestion_id))
        return True

    # =========================================================================
    # CACHE MANAGEMENT / STATUS
    # =========================================================================

    def invalidate_cache(self, partition_key: Optional[str] = None) -> ServiceResult:
        """Clear one partition, or everything (sign-out)."""
        if partition_key is None:
            return self.safe_execute("Clearing cache", self.orchestrator.invalidate)
        return self.safe_execute(f"Clearing '{partition_key}'", self.orchestrator.invalidate, partition_key)

    @error_boundary(default_return={})
    def get_status(self) -> Dict[str, Any]:
        """Connectivity, sync and cache status for UI display."""
        connection = None
        if isinstance(self.probe, ConnectionManager):
            connection = self.probe.get_status_display()
        return {
            "connection": connection,
            "sync": self.orchestrator.get_status_display(),
            "cache": self.store.get_cache_stats(),
        }

    async def start(self) -> Optional[asyncio.Task]:
        """
        Startup step: watch connectivity and sync what is missing or stale.

        Starts connection monitoring when the probe is a ConnectionManager,
        so the orchestrator hears when the connection comes back. When online
        a full sync is scheduled in the background; offline, cached data is
        used as is.

        Returns:
            The detached full sync task, or None when offline
        """
        if isinstance(self.probe, ConnectionManager):
            self.probe.start_monitoring()

        if not await self.probe.has_connectivity():
            self.logger.info("Starting offline, using cached data")
            return None

        self.logger.info("Starting online, scheduling full sync")
        return self.orchestrator.schedule_full_sync()

    async def close(self) -> None:
        """Stop background work and release the cache database."""
        await self.orchestrator.close()
        if isinstance(self.probe, ConnectionManager):
            await self.probe.stop_monitoring()
        self.store.close()


def create_data_service(
    settings: Optional[SyncSettings] = None,
    remote: Optional[RemoteDatabaseClient] = None,
    probe: Optional[ConnectivityProbe] = None,
    clock: Optional[Callable[[], int]] = None,
    current_user: Optional[AuditStamp] = None,
) -> CustomerDataService:
    """
    Wire one store, probe, remote client and orchestrator into a service.

    Args:
        settings: Runtime settings (default: SyncSettings.load())
        remote: Remote client (default: Supabase from settings)
        probe: Connectivity probe (default: ConnectionManager from settings)
        clock: Epoch-millisecond clock shared by the store and staleness policy
        current_user: User stamped on writes

    Raises:
        ConfigurationError: No remote client given and no credentials configured
    """
    settings = settings or SyncSettings.load()

    if remote is None:
        if not settings.has_remote:
            raise ConfigurationError(
                "Supabase credentials not configured (SUPABASE_URL / SUPABASE_KEY)",
                config_key="supabase",
            )
        remote = SupabaseRemoteClient.from_settings(settings)

    store = EntityCacheStore(settings.db_path, clock=clock)
    store.initialize()

    probe = probe or ConnectionManager(settings)
    orchestrator = SyncOrchestrator(
        store=store,
        remote=remote,
        probe=probe,
        registry=PartitionRegistry(),
        policy=StalenessPolicy(store, settings.freshness_window, clock=clock),
        notify_ui=settings.notify_ui,
    )
    if isinstance(probe, ConnectionManager):
        probe.register_callback(orchestrator.on_connection_change)

    return CustomerDataService(orchestrator, current_user=current_user, clock=clock)
