from shoppe_core.models.partitions import (
    SERVICE_TYPES,
    PartitionRegistry,
    PartitionSpec,
    transactions_partition,
    suggestions_partition,
    validate_service_type,
)
from shoppe_core.models.entities import (
    Entity,
    AuditStamp,
    CustomerRecord,
    CUSTOMER_STATUSES,
    SERVICE_FIELDS,
    remote_field_name,
)

__all__ = [
    "SERVICE_TYPES",
    "PartitionRegistry",
    "PartitionSpec",
    "transactions_partition",
    "suggestions_partition",
    "validate_service_type",
    "Entity",
    "AuditStamp",
    "CustomerRecord",
    "CUSTOMER_STATUSES",
    "SERVICE_FIELDS",
    "remote_field_name",
]
