# =============================================================================
# shoppe_core/data/remote_client.py
# Remote Database Client for the Shoppe cache/sync layer
# Fetches whole collections and performs single-entity writes
# =============================================================================

from __future__ import annotations
import asyncio
from typing import Any, Dict, List, Optional, Protocol, runtime_checkable

from shoppe_core.config.settings import SyncSettings
from shoppe_core.errors import ConfigurationError, NetworkError
from shoppe_core.logging import get_logger
from shoppe_core.models.entities import Entity

logger = get_logger(__name__)


@runtime_checkable
class RemoteDatabaseClient(Protocol):
    """
    Source of truth for every cached collection.

    Implementations raise NetworkError on failure or timeout.
    """

    async def fetch_all(
        self,
        collection: str,
        filters: Optional[Dict[str, Any]] = None,
    ) -> List[Entity]:
        ...

    async def create(self, collection: str, fields: Entity) -> Entity:
        ...

    async def update(self, collection: str, entity_id: str, fields: Entity) -> Entity:
        ...

    async def delete(self, collection: str, entity_id: str) -> None:
        ...


def _with_string_id(record: Dict[str, Any]) -> Entity:
    entity = dict(record)
    if entity.get("id") is not None:
        entity["id"] = str(entity["id"])
    return entity


class SupabaseRemoteClient:
    """
    RemoteDatabaseClient backed by supabase-py.

    supabase-py is synchronous, so every call runs in a worker thread to keep
    the event loop free.

    Expects credentials in .streamlit/secrets.toml or the environment:
        [supabase]
        url = "https://your-project.supabase.co"
        key = "your-anon-key"
    """

    def __init__(
        self,
        url: Optional[str] = None,
        key: Optional[str] = None,
        batch_size: int = 1000,
        client: Any = None,
    ):
        """
        Args:
            url: Supabase project URL
            key: Supabase API key
            batch_size: Rows per page (Supabase caps a select at 1000 rows)
            client: Pre-built supabase Client (skips create_client)
        """
        self.batch_size = batch_size
        if client is not None:
            self.client = client
            return

        if not (url and key):
            raise ConfigurationError(
                "Supabase credentials not configured",
                config_key="supabase",
            )

        from supabase import create_client

        self.client = create_client(url, key)

    @classmethod
    def from_settings(cls, settings: SyncSettings) -> SupabaseRemoteClient:
        return cls(
            url=settings.supabase_url,
            key=settings.supabase_key,
            batch_size=settings.fetch_batch_size,
        )

    # =========================================================================
    # BLOCKING IMPLEMENTATIONS (run in a worker thread)
    # =========================================================================

    def _fetch_all_sync(self, collection: str, filters: Optional[Dict[str, Any]]) -> List[Entity]:
        all_data: List[Entity] = []
        offset = 0

        while True:
            query = self.client.table(collection).select("*")
            for col, val in (filters or {}).items():
                query = query.eq(col, val)

            # Fetch batch with range
            response = query.range(offset, offset + self.batch_size - 1).execute()

            if not response.data:
                break
            all_data.extend(_with_string_id(row) for row in response.data)
            # Fewer than batch_size rows means this was the last page
            if len(response.data) < self.batch_size:
                break
            offset += self.batch_size

        return all_data

    def _create_sync(self, collection: str, fields: Entity) -> Entity:
        response = self.client.table(collection).insert(fields).execute()
        if not response.data:
            raise NetworkError(
                "Insert returned no row",
                collection=collection,
                operation="create",
            )
        return _with_string_id(response.data[0])

    def _update_sync(self, collection: str, entity_id: str, fields: Entity) -> Entity:
        response = (
            self.client.table(collection)
            .update(fields)
            .eq("id", entity_id)
            .execute()
        )
        if response.data:
            return _with_string_id(response.data[0])
        return {**fields, "id": entity_id}

    def _delete_sync(self, collection: str, entity_id: str) -> None:
        self.client.table(collection).delete().eq("id", entity_id).execute()

    # =========================================================================
    # ASYNC API
    # =========================================================================

    async def _run(self, operation: str, collection: str, func, *args):
        try:
            return await asyncio.to_thread(func, *args)
        except NetworkError:
            raise
        except Exception as e:
            logger.warning(f"Supabase {operation} on {collection} failed: {e}")
            raise NetworkError(
                f"Remote {operation} failed: {e}",
                collection=collection,
                operation=operation,
            ) from e

    async def fetch_all(
        self,
        collection: str,
        filters: Optional[Dict[str, Any]] = None,
    ) -> List[Entity]:
        """
        Fetch ALL records of a collection (handles Supabase 1000 row limit).

        Args:
            collection: Remote table name
            filters: Equality filters (column -> value)

        Returns:
            Every matching row as an entity dict with a string id
        """
        return await self._run("fetch", collection, self._fetch_all_sync, collection, filters)

    async def create(self, collection: str, fields: Entity) -> Entity:
        return await self._run("create", collection, self._create_sync, collection, fields)

    async def update(self, collection: str, entity_id: str, fields: Entity) -> Entity:
        return await self._run("update", collection, self._update_sync, collection, entity_id, fields)

    async def delete(self, collection: str, entity_id: str) -> None:
        await self._run("delete", collection, self._delete_sync, collection, entity_id)
