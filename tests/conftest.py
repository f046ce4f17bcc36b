# =============================================================================
# tests/conftest.py
# Pytest Configuration and Fixtures
# =============================================================================

import asyncio
from datetime import timedelta
from typing import Any, Dict, List, Optional, Set, Tuple
from unittest.mock import MagicMock

import pytest

from shoppe_core.errors import NetworkError
from shoppe_core.models.entities import AuditStamp


# =============================================================================
# TEST DOUBLES
# =============================================================================

class FakeClock:
    """Epoch-millisecond clock the tests move by hand."""

    def __init__(self, start_ms: int = 1_700_000_000_000):
        self.now = start_ms

    def __call__(self) -> int:
        return self.now

    def advance(self, minutes: float = 0, seconds: float = 0) -> None:
        self.now += int((minutes * 60 + seconds) * 1000)


class FakeRemoteClient:
    """In-memory remote database that records every call."""

    def __init__(self, collections: Optional[Dict[str, List[Dict[str, Any]]]] = None, delay: float = 0.0):
        self.collections = {
            name: [dict(row) for row in rows]
            for name, rows in (collections or {}).items()
        }
        self.delay = delay
        self.failing: Set[str] = set()
        self.fetch_calls: List[Tuple[str, Optional[Dict[str, Any]]]] = []
        self.create_calls: List[Tuple[str, Dict[str, Any]]] = []
        self.update_calls: List[Tuple[str, str, Dict[str, Any]]] = []
        self.delete_calls: List[Tuple[str, str]] = []
        self._next_id = 0

    def fetch_count(self, collection: str) -> int:
        return sum(1 for name, _ in self.fetch_calls if name == collection)

    @property
    def write_count(self) -> int:
        return len(self.create_calls) + len(self.update_calls) + len(self.delete_calls)

    async def fetch_all(self, collection, filters=None):
        self.fetch_calls.append((collection, filters))
        if self.delay:
            await asyncio.sleep(self.delay)
        if collection in self.failing:
            raise NetworkError("Simulated outage", collection=collection, operation="fetch")
        rows = self.collections.get(collection, [])
        if filters:
            rows = [r for r in rows if all(r.get(k) == v for k, v in filters.items())]
        return [dict(r) for r in rows]

    async def create(self, collection, fields):
        self.create_calls.append((collection, dict(fields)))
        self._next_id += 1
        entity = {**fields, "id": f"remote-{self._next_id}"}
        self.collections.setdefault(collection, []).insert(0, dict(entity))
        return entity

    async def update(self, collection, entity_id, fields):
        self.update_calls.append((collection, entity_id, dict(fields)))
        for row in self.collections.get(collection, []):
            if row["id"] == entity_id:
                row.update(fields)
                return dict(row)
        return {**fields, "id": entity_id}

    async def delete(self, collection, entity_id):
        self.delete_calls.append((collection, entity_id))
        rows = self.collections.get(collection, [])
        self.collections[collection] = [r for r in rows if r["id"] != entity_id]


class StubProbe:
    """Connectivity probe with a switchable answer."""

    def __init__(self, online: bool = True):
        self.online = online
        self.calls = 0

    async def has_connectivity(self) -> bool:
        self.calls += 1
        return self.online


# =============================================================================
# SAMPLE DATA FIXTURES
# =============================================================================

@pytest.fixture
def sample_cignal_customers():
    """Cignal customers as stored remotely"""
    return [
        {
            "id": "c1",
            "name": "Juan Dela Cruz",
            "status": "Active",
            "serialNumber": "SN-1001",
            "ccaNumber": "CCA-77",
            "plan": "Plan 500",
            "_searchCache": "juan dela cruz sn-1001",
        },
        {
            "id": "c2",
            "name": "Maria Santos",
            "status": "Active",
            "serialNumber": "SN-1002",
            "accountNumber": "ACC-2",
        },
        {
            "id": "c3",
            "name": "Pedro Reyes",
            "status": "Inactive",
            "boxNumber": "BOX-9",
        },
    ]


@pytest.fixture
def sample_gsat_customers():
    """GSAT customers as stored remotely"""
    return [
        {"id": "g1", "name": "Ana Lim", "status": "Pending", "serialNumber": "G-1"},
        {"id": "g2", "name": "Jose Tan", "status": "Active", "boxNumber": "GB-2"},
    ]


@pytest.fixture
def cashier():
    return AuditStamp(email="cashier@gmphoneshoppe.ph", name="Cashier One")


# =============================================================================
# COMPONENT FIXTURES
# =============================================================================

@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def remote(sample_cignal_customers, sample_gsat_customers):
    return FakeRemoteClient({
        "customers_cignal": sample_cignal_customers,
        "customers_gsat": sample_gsat_customers,
    })


@pytest.fixture
def probe():
    return StubProbe(online=True)


@pytest.fixture
def store(tmp_path, clock):
    """Initialized cache store in a temporary directory"""
    from shoppe_core.offline.local_database import EntityCacheStore

    cache = EntityCacheStore(tmp_path / "shoppe_cache.db", clock=clock)
    cache.initialize()
    yield cache
    cache.close()


@pytest.fixture
def policy(store, clock):
    from shoppe_core.offline.staleness import StalenessPolicy

    return StalenessPolicy(store, timedelta(minutes=5), clock=clock)


@pytest.fixture
def orchestrator(store, remote, probe, policy):
    from shoppe_core.offline.sync_engine import SyncOrchestrator

    return SyncOrchestrator(store=store, remote=remote, probe=probe, policy=policy)


@pytest.fixture
def data_service(orchestrator, clock, cashier):
    from shoppe_core.offline.unified_data_service import CustomerDataService

    return CustomerDataService(orchestrator, current_user=cashier, clock=clock)


# =============================================================================
# MOCK FIXTURES
# =============================================================================

@pytest.fixture
def mock_streamlit(monkeypatch):
    """Mock the Streamlit module used for user notifications"""
    import shoppe_core.errors.handlers as handlers

    mock_st = MagicMock()
    mock_st.session_state = {}
    monkeypatch.setattr(handlers, "st", mock_st)
    return mock_st


@pytest.fixture
def mock_supabase():
    """Mock Supabase client"""
    mock_client = MagicMock()
    mock_client.table.return_value.select.return_value.range.return_value.execute.return_value.data = []
    mock_client.table.return_value.insert.return_value.execute.return_value.data = []
    return mock_client


@pytest.fixture
def make_remote():
    """Factory for additional fake remotes (e.g. a second app session)"""
    return FakeRemoteClient


@pytest.fixture
def make_probe():
    return StubProbe
