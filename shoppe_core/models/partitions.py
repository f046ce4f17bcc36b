# =============================================================================
# shoppe_core/models/partitions.py
# Cache Partition Registry
# =============================================================================
"""
Each cached collection lives in its own partition. A partition key names the
local slice; its PartitionSpec names the remote collection it mirrors.

Static partitions:
    cignal, gsat, sky, satellite   customers per e-loading service
    users, inventory

Scoped partitions (registered on first use):
    transactions_<scope>           POS transactions for one scope (e.g. a day)
    suggestions_<service>          customer change suggestions awaiting review
"""

from __future__ import annotations
from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, List, Optional

from shoppe_core.errors import UnknownPartitionError, ValidationError

SERVICE_TYPES = ("cignal", "gsat", "sky", "satellite")

TRANSACTIONS_PREFIX = "transactions_"
SUGGESTIONS_PREFIX = "suggestions_"

# Local partition -> remote table
TABLE_MAPPING = {
    "cignal": "customers_cignal",
    "gsat": "customers_gsat",
    "sky": "customers_sky",
    "satellite": "customers_satellite",
    "users": "users",
    "inventory": "inventory",
}
TRANSACTIONS_TABLE = "pos_transactions"


@dataclass(frozen=True)
class PartitionSpec:
    """Where a partition's snapshot comes from."""
    key: str
    collection: str
    filters: Dict[str, Any] = field(default_factory=dict)


def transactions_partition(scope: str) -> str:
    """Partition key for the POS transactions of one scope."""
    if not scope:
        raise ValidationError("Transaction scope must not be empty", field="scope")
    return f"{TRANSACTIONS_PREFIX}{scope}"


def suggestions_partition(service_type: str) -> str:
    """Partition key for the suggestions of one service."""
    validate_service_type(service_type)
    return f"{SUGGESTIONS_PREFIX}{service_type}"


def validate_service_type(service_type: str) -> str:
    if service_type not in SERVICE_TYPES:
        raise ValidationError(
            f"Unknown service type '{service_type}'",
            field="service_type",
            value=service_type,
            details={"allowed": list(SERVICE_TYPES)},
        )
    return service_type


class PartitionRegistry:
    """
    Known partitions of the cache.

    Static partitions are always known. Scoped keys (`transactions_<scope>`,
    `suggestions_<service>`) are registered the first time they are asked
    for and dropped again when their cached snapshot is cleared.
    """

    def __init__(self, keys: Optional[Iterable[str]] = None):
        self._specs: Dict[str, PartitionSpec] = {}
        for key in (keys if keys is not None else TABLE_MAPPING.keys()):
            self.register(key)

    def __contains__(self, key: str) -> bool:
        return key in self._specs

    def __len__(self) -> int:
        return len(self._specs)

    @property
    def keys(self) -> List[str]:
        return list(self._specs.keys())

    def register(self, key: str) -> PartitionSpec:
        """Register a partition key, deriving its remote collection."""
        if key in self._specs:
            return self._specs[key]

        spec = self._derive(key)
        self._specs[key] = spec
        return spec

    def resolve(self, key: str) -> PartitionSpec:
        """Return the PartitionSpec for a key, registering scoped keys on first use."""
        spec = self._specs.get(key)
        if spec is not None:
            return spec
        return self.register(key)

    def unregister(self, key: str) -> None:
        self._specs.pop(key, None)

    @staticmethod
    def is_scoped(key: str) -> bool:
        """Scoped partitions are registered on demand; static ones always exist."""
        return key not in TABLE_MAPPING

    def scoped_keys(self) -> List[str]:
        return [key for key in self._specs if self.is_scoped(key)]

    def forget_scoped(self) -> List[str]:
        """Drop every scoped registration (e.g. after the cache is cleared)."""
        dropped = self.scoped_keys()
        for key in dropped:
            del self._specs[key]
        return dropped

    @staticmethod
    def _derive(key: str) -> PartitionSpec:
        if key in TABLE_MAPPING:
            return PartitionSpec(key=key, collection=TABLE_MAPPING[key])

        if key.startswith(TRANSACTIONS_PREFIX) and len(key) > len(TRANSACTIONS_PREFIX):
            scope = key[len(TRANSACTIONS_PREFIX):]
            return PartitionSpec(key=key, collection=TRANSACTIONS_TABLE, filters={"scope": scope})

        if key.startswith(SUGGESTIONS_PREFIX):
            service_type = key[len(SUGGESTIONS_PREFIX):]
            if service_type in SERVICE_TYPES:
                return PartitionSpec(key=key, collection=f"suggestions_{service_type}")

        raise UnknownPartitionError(key)
