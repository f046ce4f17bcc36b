# =============================================================================
# tests/unit/test_local_database.py
# Unit Tests for EntityCacheStore
# =============================================================================

import sqlite3
from datetime import datetime

import numpy as np
import pytest

from shoppe_core.errors import StorageError
from shoppe_core.offline.local_database import EntityCacheStore


class TestPutAndGet:
    """Whole-partition snapshots"""

    def test_put_then_get(self, store, clock, sample_cignal_customers):
        """A stored snapshot reads back with its sync time"""
        store.put("cignal", sample_cignal_customers)

        partition = store.get("cignal")

        assert partition.ids() == ["c1", "c2", "c3"]
        assert partition.last_synced_at_ms == clock.now
        assert partition.entities[0]["_searchCache"] == "juan dela cruz sn-1001"
        assert store.has_cache("cignal")

    def test_missing_partition(self, store):
        """A missing partition reads as None"""
        assert store.get("sky") is None
        assert not store.has_cache("sky")
        assert store.last_synced_at("sky") is None

    def test_put_replaces_whole_snapshot(self, store, sample_cignal_customers):
        """put replaces the whole snapshot"""
        store.put("cignal", sample_cignal_customers)
        store.put("cignal", [{"id": "c9", "name": "New"}])

        assert store.get("cignal").ids() == ["c9"]

    def test_empty_snapshot_is_still_cached(self, store):
        """Empty snapshot is still cached"""
        store.put("inventory", [])

        assert store.has_cache("inventory")
        assert store.get("inventory").entities == []

    def test_get_returns_independent_copy(self, store, sample_cignal_customers):
        """Mutating a returned list does not change the cache"""
        store.put("cignal", sample_cignal_customers)

        store.get("cignal").entities[0]["name"] = "Changed"

        assert store.get("cignal").entities[0]["name"] == "Juan Dela Cruz"

    def test_entities_without_id_are_skipped(self, store):
        """Entities without id are skipped"""
        store.put("users", [{"id": 7, "email": "a@b.ph"}, {"email": "no-id@b.ph"}])

        assert store.get("users").ids() == ["7"]

    def test_numpy_and_datetime_values_serialized(self, store):
        """Numpy and datetime values serialized"""
        store.put("inventory", [{
            "id": "i1",
            "qty": np.int64(4),
            "price": np.float64(9.5),
            "seen": datetime(2024, 5, 1, 8, 30),
        }])

        entity = store.get("inventory").entities[0]

        assert entity["qty"] == 4
        assert entity["price"] == 9.5
        assert entity["seen"] == "2024-05-01T08:30:00"

    def test_snapshot_survives_reopen(self, tmp_path, clock, sample_cignal_customers):
        """Snapshots survive closing and reopening the database"""
        path = tmp_path / "persist.db"
        first = EntityCacheStore(path, clock=clock)
        first.put("cignal", sample_cignal_customers)
        first.close()

        second = EntityCacheStore(path, clock=clock)

        assert second.has_cache("cignal")
        assert second.last_synced_at("cignal") == clock.now
        assert len(second.get("cignal")) == 3
        second.close()


class TestIncrementalUpdates:
    """insert_one / patch_one / remove_one after remote writes"""

    def test_insert_at_front_visible_immediately(self, store, clock, sample_cignal_customers):
        """Insert at front visible immediately"""
        store.put("cignal", sample_cignal_customers)
        synced_at = store.last_synced_at("cignal")
        clock.advance(minutes=1)

        assert store.insert_one("cignal", {"id": "c4", "name": "Newest"}, at_front=True)

        partition = store.get("cignal")
        assert partition.entities[0]["id"] == "c4"
        assert partition.last_synced_at_ms == synced_at

    def test_insert_at_end(self, store, sample_cignal_customers):
        """insert_one can append at the end"""
        store.put("cignal", sample_cignal_customers)

        store.insert_one("cignal", {"id": "c4"}, at_front=False)

        assert store.get("cignal").ids()[-1] == "c4"

    def test_insert_replaces_same_id(self, store, sample_cignal_customers):
        """Inserting an existing id replaces it"""
        store.put("cignal", sample_cignal_customers)

        store.insert_one("cignal", {"id": "c2", "name": "Maria S."})

        partition = store.get("cignal")
        assert partition.ids() == ["c2", "c1", "c3"]
        assert partition.entities[0]["name"] == "Maria S."

    def test_insert_into_uncached_partition_is_ignored(self, store):
        """Insert into uncached partition is ignored"""
        assert not store.insert_one("sky", {"id": "s1"})
        assert not store.has_cache("sky")

    def test_patch_merges_fields(self, store, clock, sample_cignal_customers):
        """patch_one merges fields into the cached entity"""
        store.put("cignal", sample_cignal_customers)
        synced_at = store.last_synced_at("cignal")
        clock.advance(minutes=2)

        assert store.patch_one("cignal", "c2", {"status": "Inactive", "id": "other"})

        partition = store.get("cignal")
        patched = partition.entities[1]
        assert patched["id"] == "c2"
        assert patched["status"] == "Inactive"
        assert patched["serialNumber"] == "SN-1002"
        assert partition.last_synced_at_ms == synced_at

    def test_patch_unknown_entity(self, store, sample_cignal_customers):
        """Patching an unknown entity returns False"""
        store.put("cignal", sample_cignal_customers)

        assert not store.patch_one("cignal", "zzz", {"status": "Active"})
        assert not store.patch_one("gsat", "g1", {"status": "Active"})

    def test_remove_is_idempotent(self, store, sample_cignal_customers):
        """Removing twice is harmless"""
        store.put("cignal", sample_cignal_customers)

        assert store.remove_one("cignal", "c1")
        assert not store.remove_one("cignal", "c1")
        assert store.get("cignal").ids() == ["c2", "c3"]


class TestInvalidationAndStats:
    """clear / clear_all / get_cache_stats"""

    def test_clear_one_partition(self, store, sample_cignal_customers, sample_gsat_customers):
        """clear forgets one partition and its sync time"""
        store.put("cignal", sample_cignal_customers)
        store.put("gsat", sample_gsat_customers)

        store.clear("cignal")

        assert not store.has_cache("cignal")
        assert store.partition_keys() == ["gsat"]

    def test_clear_all(self, store, sample_cignal_customers):
        """clear_all forgets every partition"""
        store.put("cignal", sample_cignal_customers)

        store.clear_all()

        assert store.partition_keys() == []
        assert store.get("cignal") is None

    def test_cache_stats(self, store, sample_cignal_customers, sample_gsat_customers):
        """Stats report counts and sync times per partition"""
        store.put("cignal", sample_cignal_customers)
        store.put("gsat", sample_gsat_customers)

        stats = store.get_cache_stats()

        assert stats["total_entities"] == 5
        assert stats["partitions"]["gsat"]["count"] == 2
        assert stats["db_size_bytes"] > 0


class TestStorageFailures:
    """Corruption and sqlite errors surface as StorageError"""

    def test_corrupted_row(self, store):
        """A corrupted row raises StorageError"""
        store.put("sky", [{"id": "s1"}])
        conn = sqlite3.connect(str(store.db_path))
        conn.execute("UPDATE cache_partitions SET entities_json = '{not json' WHERE partition_key = 'sky'")
        conn.commit()
        conn.close()

        with pytest.raises(StorageError) as exc_info:
            store.get("sky")
        assert exc_info.value.details["partition"] == "sky"

    def test_unserializable_entity(self, store):
        """Unserializable entities raise StorageError"""
        with pytest.raises(StorageError):
            store.put("inventory", [{"id": "i1", "blob": object()}])
        assert not store.has_cache("inventory")
