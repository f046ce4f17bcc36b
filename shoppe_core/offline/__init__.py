# =============================================================================
# shoppe_core/offline/__init__.py
# Read-through cache and background sync for the POS app
# =============================================================================
"""
Offline Cache Module

Screens read customers from a local SQLite cache and only wait on the network
when nothing is cached yet. Stale partitions are refreshed in the background;
writes go straight to the remote database and are refused while offline.

Architecture:
------------
┌─────────────────────────────────────────────────────────────────┐
│                 READ-THROUGH CACHE + BACKGROUND SYNC            │
├─────────────────────────────────────────────────────────────────┤
│                                                                  │
│   ┌──────────────────────────────────────────────────────────┐  │
│   │                 CustomerDataService                       │  │
│   │     (reads: cache first · writes: connectivity gated)     │  │
│   └──────────────────────────────────────────────────────────┘  │
│              │                 │                    │            │
│              ▼                 ▼                    ▼            │
│   ┌──────────────────┐ ┌───────────────┐ ┌──────────────────┐  │
│   │  ConnectionMgr   │ │ SyncOrchestr. │ │ StalenessPolicy  │  │
│   │  (probe, ≤3s)    │ │ (coalescing)  │ │ (5 min window)   │  │
│   └──────────────────┘ └───────────────┘ └──────────────────┘  │
│                          │          │                            │
│                          ▼          ▼                            │
│                    ┌────────┐  ┌──────────────────┐             │
│                    │Supabase│─►│ EntityCacheStore │             │
│                    │(Remote)│  │ (SQLite, local)  │             │
│                    └────────┘  └──────────────────┘             │
└─────────────────────────────────────────────────────────────────┘

Usage:
------
from shoppe_core.offline import create_data_service

service = create_data_service()
await service.start()                               # monitor + first sync

customers = await service.get_customers("cignal")   # cache hit: no network
service.refresh_if_stale("cignal")                  # background refresh
refreshed = await service.force_full_sync()         # every stale partition
"""

from shoppe_core.offline.connection_manager import (
    ConnectionManager,
    ConnectionState,
    ConnectionStatus,
    ConnectivityProbe,
)
from shoppe_core.offline.local_database import (
    CachePartition,
    EntityCacheStore,
)
from shoppe_core.offline.staleness import (
    StalenessPolicy,
    is_stale,
    now_ms,
)
from shoppe_core.offline.sync_engine import (
    PartitionSyncState,
    SyncEvent,
    SyncEventStatus,
    SyncOrchestrator,
)
from shoppe_core.offline.unified_data_service import (
    CustomerDataService,
    create_data_service,
    requires_connectivity,
)

__all__ = [
    # Connectivity
    "ConnectionManager",
    "ConnectionState",
    "ConnectionStatus",
    "ConnectivityProbe",
    # Local cache
    "CachePartition",
    "EntityCacheStore",
    # Staleness
    "StalenessPolicy",
    "is_stale",
    "now_ms",
    # Sync
    "PartitionSyncState",
    "SyncEvent",
    "SyncEventStatus",
    "SyncOrchestrator",
    # Service
    "CustomerDataService",
    "create_data_service",
    "requires_connectivity",
]
