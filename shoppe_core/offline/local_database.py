# =============================================================================
# shoppe_core/offline/local_database.py
# Local SQLite Store for cached partitions
# =============================================================================
"""
EntityCacheStore - durable local cache of entity collections.

Features:
- One row per partition: the full entity list as JSON plus its sync time
- Atomic partition replacement (single-row write inside a transaction)
- Incremental insert / patch / remove after remote writes
- In-memory index of sync timestamps (staleness checks do no I/O)
- Storage failures raised as StorageError
"""

from __future__ import annotations
import json
import sqlite3
import threading
from contextlib import contextmanager
from dataclasses import dataclass, field
from datetime import date, datetime
from pathlib import Path
from typing import Any, Callable, Dict, Iterator, List, Optional

import numpy as np

from shoppe_core.config.settings import DEFAULT_DB_PATH
from shoppe_core.errors import StorageError
from shoppe_core.logging import get_logger
from shoppe_core.models.entities import Entity
from shoppe_core.offline.staleness import now_ms

logger = get_logger(__name__)


@dataclass
class CachePartition:
    """A complete snapshot of one collection."""
    key: str
    entities: List[Entity] = field(default_factory=list)
    last_synced_at_ms: Optional[int] = None

    def __len__(self) -> int:
        return len(self.entities)

    def ids(self) -> List[str]:
        return [e["id"] for e in self.entities]


def _json_default(obj: Any) -> Any:
    """Serialize numpy scalars/arrays and datetimes found in entities."""
    if isinstance(obj, np.integer):
        return int(obj)
    if isinstance(obj, np.floating):
        return float(obj)
    if isinstance(obj, np.bool_):
        return bool(obj)
    if isinstance(obj, np.ndarray):
        return obj.tolist()
    if isinstance(obj, (datetime, date)):
        return obj.isoformat()
    raise TypeError(f"Object of type {type(obj).__name__} is not JSON serializable")


class EntityCacheStore:
    """
    Local SQLite cache partitioned by collection.

    Usage:
        store = EntityCacheStore(Path("local_data/shoppe_cache.db"))
        store.initialize()
        store.put("cignal", customers)
        snapshot = store.get("cignal")
    """

    SCHEMA = """
        CREATE TABLE IF NOT EXISTS cache_partitions (
            partition_key TEXT PRIMARY KEY,
            entities_json TEXT NOT NULL,
            entity_count INTEGER NOT NULL DEFAULT 0,
            last_synced_at_ms INTEGER,
            updated_at TEXT DEFAULT CURRENT_TIMESTAMP
        )
    """

    def __init__(
        self,
        db_path: Optional[Path] = None,
        clock: Optional[Callable[[], int]] = None,
    ):
        """
        Args:
            db_path: Path to SQLite database file
            clock: Epoch-millisecond clock (injectable for tests)
        """
        self.db_path = Path(db_path) if db_path else DEFAULT_DB_PATH
        self._clock = clock or now_ms
        self._connection: Optional[sqlite3.Connection] = None
        self._lock = threading.RLock()
        self._sync_index: Dict[str, Optional[int]] = {}
        self._initialized = False

    # =========================================================================
    # CONNECTION
    # =========================================================================

    def _get_connection(self) -> sqlite3.Connection:
        if self._connection is None:
            try:
                self.db_path.parent.mkdir(parents=True, exist_ok=True)
                self._connection = sqlite3.connect(
                    str(self.db_path),
                    check_same_thread=False,
                )
            except (sqlite3.Error, OSError) as e:
                raise StorageError(
                    f"Cannot open cache database: {e}",
                    operation="connect",
                    details={"db_path": str(self.db_path)},
                ) from e
            self._connection.row_factory = sqlite3.Row
        return self._connection

    @contextmanager
    def transaction(self, operation: str, partition: Optional[str] = None) -> Iterator[sqlite3.Connection]:
        """Run statements atomically; sqlite failures become StorageError."""
        with self._lock:
            conn = self._get_connection()
            try:
                yield conn
                conn.commit()
            except sqlite3.Error as e:
                conn.rollback()
                raise StorageError(
                    f"Cache {operation} failed: {e}",
                    partition=partition,
                    operation=operation,
                ) from e
            except Exception:
                conn.rollback()
                raise

    def initialize(self) -> None:
        """Create the schema and load the sync-time index."""
        if self._initialized:
            return

        with self.transaction("initialize") as conn:
            conn.execute(self.SCHEMA)
            rows = conn.execute(
                "SELECT partition_key, last_synced_at_ms FROM cache_partitions"
            ).fetchall()

        self._sync_index = {row["partition_key"]: row["last_synced_at_ms"] for row in rows}
        self._initialized = True
        logger.info(f"Cache store initialized at {self.db_path} ({len(rows)} partitions)")

    def _ensure_initialized(self) -> None:
        if not self._initialized:
            self.initialize()

    # =========================================================================
    # SERIALIZATION
    # =========================================================================

    @staticmethod
    def _encode(partition_key: str, entities: List[Entity]) -> str:
        try:
            return json.dumps(entities, default=_json_default)
        except (TypeError, ValueError) as e:
            raise StorageError(
                f"Entities are not serializable: {e}",
                partition=partition_key,
                operation="encode",
            ) from e

    @staticmethod
    def _decode(partition_key: str, raw: str) -> List[Entity]:
        try:
            entities = json.loads(raw)
        except json.JSONDecodeError as e:
            raise StorageError(
                f"Cached partition is corrupted: {e}",
                partition=partition_key,
                operation="decode",
            ) from e
        if not isinstance(entities, list):
            raise StorageError(
                "Cached partition is corrupted: expected a list",
                partition=partition_key,
                operation="decode",
            )
        return entities

    @staticmethod
    def _normalize(entities: List[Entity]) -> List[Entity]:
        """Keep entities with an id (as str), one per id, in first-seen order."""
        by_id: Dict[str, Entity] = {}
        skipped = 0
        for entity in entities:
            entity_id = entity.get("id")
            if entity_id is None or entity_id == "":
                skipped += 1
                continue
            item = dict(entity)
            item["id"] = str(entity_id)
            by_id[item["id"]] = item
        if skipped:
            logger.warning(f"Skipped {skipped} entities without an id")
        return list(by_id.values())

    # =========================================================================
    # READS
    # =========================================================================

    def get(self, partition_key: str) -> Optional[CachePartition]:
        """
        Read a partition snapshot from local storage.

        Returns:
            A fresh copy of the snapshot, or None if the partition is not cached
        """
        self._ensure_initialized()
        with self.transaction("get", partition_key) as conn:
            row = conn.execute(
                "SELECT entities_json, last_synced_at_ms FROM cache_partitions "
                "WHERE partition_key = ?",
                [partition_key],
            ).fetchone()

        if row is None:
            return None

        return CachePartition(
            key=partition_key,
            entities=self._decode(partition_key, row["entities_json"]),
            last_synced_at_ms=row["last_synced_at_ms"],
        )

    def has_cache(self, partition_key: str) -> bool:
        """True iff a snapshot exists locally, fresh or not."""
        self._ensure_initialized()
        return partition_key in self._sync_index

    def last_synced_at(self, partition_key: str) -> Optional[int]:
        self._ensure_initialized()
        return self._sync_index.get(partition_key)

    def partition_keys(self) -> List[str]:
        self._ensure_initialized()
        return list(self._sync_index.keys())

    # =========================================================================
    # WRITES
    # =========================================================================

    def put(self, partition_key: str, entities: List[Entity]) -> CachePartition:
        """
        Replace a partition's snapshot and stamp it as synced now.

        The single-row replace is atomic: readers see the old list or the new
        one, never a mix.
        """
        self._ensure_initialized()
        normalized = self._normalize(entities)
        payload = self._encode(partition_key, normalized)
        synced_at = self._clock()

        with self.transaction("put", partition_key) as conn:
            conn.execute(
                """
                INSERT OR REPLACE INTO cache_partitions
                    (partition_key, entities_json, entity_count, last_synced_at_ms, updated_at)
                VALUES (?, ?, ?, ?, ?)
                """,
                [partition_key, payload, len(normalized), synced_at, datetime.now().isoformat()],
            )

        self._sync_index[partition_key] = synced_at
        logger.debug(f"Cached {len(normalized)} entities in '{partition_key}'")
        return CachePartition(key=partition_key, entities=normalized, last_synced_at_ms=synced_at)

    def _rewrite(self, conn: sqlite3.Connection, partition_key: str, entities: List[Entity]) -> None:
        """Store an edited entity list without touching the sync time."""
        conn.execute(
            """
            UPDATE cache_partitions
            SET entities_json = ?, entity_count = ?, updated_at = ?
            WHERE partition_key = ?
            """,
            [
                self._encode(partition_key, entities),
                len(entities),
                datetime.now().isoformat(),
                partition_key,
            ],
        )

    def _load_for_edit(self, conn: sqlite3.Connection, partition_key: str) -> Optional[List[Entity]]:
        row = conn.execute(
            "SELECT entities_json FROM cache_partitions WHERE partition_key = ?",
            [partition_key],
        ).fetchone()
        if row is None:
            return None
        return self._decode(partition_key, row["entities_json"])

    def patch_one(self, partition_key: str, entity_id: str, patch_fields: Entity) -> bool:
        """
        Merge fields into one cached entity.

        Returns:
            False if the partition or the entity is not cached
        """
        self._ensure_initialized()
        changes = {k: v for k, v in patch_fields.items() if k != "id"}

        with self.transaction("patch", partition_key) as conn:
            entities = self._load_for_edit(conn, partition_key)
            if entities is None:
                return False
            for entity in entities:
                if entity.get("id") == entity_id:
                    entity.update(changes)
                    break
            else:
                return False
            self._rewrite(conn, partition_key, entities)
        return True

    def remove_one(self, partition_key: str, entity_id: str) -> bool:
        """
        Drop one entity from a cached partition. Idempotent.

        Returns:
            True if an entity was removed
        """
        self._ensure_initialized()
        with self.transaction("remove", partition_key) as conn:
            entities = self._load_for_edit(conn, partition_key)
            if entities is None:
                return False
            remaining = [e for e in entities if e.get("id") != entity_id]
            if len(remaining) == len(entities):
                return False
            self._rewrite(conn, partition_key, remaining)
        return True

    def insert_one(self, partition_key: str, entity: Entity, at_front: bool = True) -> bool:
        """
        Add a freshly created entity to a cached partition.

        An entity with the same id is replaced. Partitions without a snapshot
        are left alone so a lone entity is never mistaken for the collection.

        Returns:
            False if the partition is not cached
        """
        self._ensure_initialized()
        normalized = self._normalize([entity])
        if not normalized:
            return False
        item = normalized[0]

        with self.transaction("insert", partition_key) as conn:
            entities = self._load_for_edit(conn, partition_key)
            if entities is None:
                logger.debug(f"Insert into uncached '{partition_key}' ignored")
                return False
            entities = [e for e in entities if e.get("id") != item["id"]]
            if at_front:
                entities.insert(0, item)
            else:
                entities.append(item)
            self._rewrite(conn, partition_key, entities)
        return True

    # =========================================================================
    # INVALIDATION
    # =========================================================================

    def clear(self, partition_key: str) -> None:
        """Forget one partition (snapshot and sync time)."""
        self._ensure_initialized()
        with self.transaction("clear", partition_key) as conn:
            conn.execute("DELETE FROM cache_partitions WHERE partition_key = ?", [partition_key])
        self._sync_index.pop(partition_key, None)

    def clear_all(self) -> None:
        """Forget every partition, e.g. on sign-out."""
        self._ensure_initialized()
        with self.transaction("clear_all") as conn:
            conn.execute("DELETE FROM cache_partitions")
        self._sync_index.clear()
        logger.info("Cache cleared")

    # =========================================================================
    # STATS
    # =========================================================================

    def get_cache_stats(self) -> Dict[str, Any]:
        """Entity counts and sync times per partition."""
        self._ensure_initialized()
        with self.transaction("stats") as conn:
            rows = conn.execute(
                "SELECT partition_key, entity_count, last_synced_at_ms FROM cache_partitions"
            ).fetchall()

        partitions = {
            row["partition_key"]: {
                "count": row["entity_count"],
                "last_synced_at_ms": row["last_synced_at_ms"],
            }
            for row in rows
        }
        size = self.db_path.stat().st_size if self.db_path.exists() else 0
        return {
            "partitions": partitions,
            "total_entities": sum(p["count"] for p in partitions.values()),
            "db_path": str(self.db_path),
            "db_size_bytes": size,
        }

    def close(self) -> None:
        """Close database connection."""
        with self._lock:
            if self._connection is not None:
                self._connection.close()
                self._connection = None
        self._initialized = False
