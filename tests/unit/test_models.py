# =============================================================================
# tests/unit/test_models.py
# Unit Tests for partitions and customer records
# =============================================================================

import pytest

from shoppe_core.errors import UnknownPartitionError, ValidationError
from shoppe_core.models import (
    AuditStamp,
    CustomerRecord,
    PartitionRegistry,
    suggestions_partition,
    transactions_partition,
)


class TestPartitionRegistry:
    """Partition keys resolve to remote collections"""

    def test_default_partitions(self):
        """Static partitions map to their remote tables"""
        registry = PartitionRegistry()

        assert registry.keys == ["cignal", "gsat", "sky", "satellite", "users", "inventory"]
        assert registry.resolve("satellite").collection == "customers_satellite"

    def test_transactions_partition_is_scoped(self):
        """Transaction partitions carry their scope as a filter"""
        registry = PartitionRegistry()
        key = transactions_partition("2024-05-01")

        spec = registry.resolve(key)

        assert spec.collection == "pos_transactions"
        assert spec.filters == {"scope": "2024-05-01"}
        assert key in registry

    def test_suggestions_partition(self):
        """Suggestion partitions are registered on first use"""
        registry = PartitionRegistry(keys=[])

        spec = registry.resolve(suggestions_partition("sky"))

        assert spec.collection == "suggestions_sky"
        assert len(registry) == 1

    def test_unknown_partition(self):
        """Unknown keys raise UnknownPartitionError"""
        with pytest.raises(UnknownPartitionError):
            PartitionRegistry().resolve("customers_netflix")

    def test_empty_scope_rejected(self):
        """An empty transaction scope is rejected"""
        with pytest.raises(ValidationError):
            transactions_partition("")

    def test_unknown_service_in_suggestions(self):
        """Suggestions for an unknown service are rejected"""
        with pytest.raises(ValidationError):
            suggestions_partition("netflix")

    def test_forget_scoped_keeps_static_partitions(self):
        """Forget scoped keeps static partitions"""
        registry = PartitionRegistry()
        registry.resolve(transactions_partition("2024-05-01"))
        registry.resolve(suggestions_partition("gsat"))

        dropped = registry.forget_scoped()

        assert sorted(dropped) == ["suggestions_gsat", "transactions_2024-05-01"]
        assert registry.keys == ["cignal", "gsat", "sky", "satellite", "users", "inventory"]
        assert not registry.is_scoped("users")
        assert registry.is_scoped("suggestions_gsat")


class TestCustomerRecord:
    """Typed view over cached customer dicts"""

    def test_from_entity_keeps_unknown_fields(self):
        """From entity keeps unknown fields"""
        entity = {
            "id": "c1",
            "name": "Juan",
            "serialNumber": "SN-1",
            "price": "450",
            "_searchCache": "juan sn-1",
            "addedBy": {"email": "a@b.ph", "name": "A", "timestamp": 5},
        }

        record = CustomerRecord.from_entity("cignal", entity)

        assert record.serial_number == "SN-1"
        assert record.price == 450.0
        assert record.extra == {"_searchCache": "juan sn-1"}
        assert record.added_by == AuditStamp("a@b.ph", "A", 5)
        assert record.to_entity()["_searchCache"] == "juan sn-1"

    def test_empty_identifiers_dropped_unless_requested(self):
        """Empty identifiers dropped unless requested"""
        record = CustomerRecord("sky", name="Ana", serial_number="", box_number="B1")

        assert "serialNumber" not in record.to_fields()
        assert record.to_fields(include_empty_identifiers=True)["serialNumber"] == ""

    def test_identifiers_follow_service(self):
        """Only identifiers the service records are reported"""
        record = CustomerRecord(
            "gsat",
            name="Jose",
            serial_number="G-1",
            cca_number="CCA-1",
            box_number="GB-1",
        )

        assert record.identifiers() == {"serialNumber": "G-1", "boxNumber": "GB-1"}

    def test_unknown_service_rejected(self):
        """Records for an unknown service are rejected"""
        with pytest.raises(ValidationError):
            CustomerRecord("netflix", name="X")

    def test_non_numeric_price_rejected(self):
        """A non-numeric price is a validation error on the price field"""
        with pytest.raises(ValidationError) as exc_info:
            CustomerRecord.from_entity("cignal", {"name": "Juan", "price": "four fifty"})

        assert exc_info.value.details["field"] == "price"
        assert exc_info.value.code == "DATA_001"

    def test_audit_stamp_requires_email(self):
        """Audit stamps need an email"""
        assert AuditStamp.from_dict({"name": "No Email"}) is None
        assert AuditStamp("x@y.ph").stamped(9).to_dict() == {"email": "x@y.ph", "name": "", "timestamp": 9}
