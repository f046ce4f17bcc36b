# =============================================================================
# shoppe_core/models/entities.py
# Typed views over cached entity dicts
# =============================================================================
"""
The cache stores entities as plain dicts keyed the way the remote database
keys them (camelCase). CustomerRecord gives the service code a typed view
with the known optional fields per service, while `extra` carries anything
else (for example the UI's `_searchCache`) through unchanged.
"""

from __future__ import annotations
from dataclasses import dataclass, field, fields
from typing import Any, Dict, Optional

from shoppe_core.errors import ValidationError
from shoppe_core.models.partitions import validate_service_type

Entity = Dict[str, Any]

# First entry is the status new customers get
CUSTOMER_STATUSES = ("Active", "Inactive", "Pending")

# Identifier fields each service actually records
SERVICE_FIELDS = {
    "cignal": ("serialNumber", "ccaNumber", "boxNumber", "accountNumber"),
    "satellite": ("serialNumber", "ccaNumber", "boxNumber", "accountNumber"),
    "sky": ("serialNumber", "ccaNumber", "boxNumber", "accountNumber"),
    "gsat": ("serialNumber", "boxNumber"),
}

# python attribute -> remote field
_FIELD_NAMES = {
    "serial_number": "serialNumber",
    "cca_number": "ccaNumber",
    "name": "name",
    "plan": "plan",
    "status": "status",
    "box_number": "boxNumber",
    "box_id": "boxId",
    "account_number": "accountNumber",
    "address": "address",
    "date_of_activation": "dateOfActivation",
    "date_of_purchase": "dateOfPurchase",
    "price": "price",
    "supplier": "supplier",
    "created_at": "createdAt",
    "updated_at": "updatedAt",
}


@dataclass
class AuditStamp:
    """Who touched a record, and when (epoch millis)."""
    email: str
    name: str = ""
    timestamp: Optional[int] = None

    def to_dict(self) -> Dict[str, Any]:
        data: Dict[str, Any] = {"email": self.email, "name": self.name}
        if self.timestamp is not None:
            data["timestamp"] = self.timestamp
        return data

    @classmethod
    def from_dict(cls, data: Optional[Dict[str, Any]]) -> Optional[AuditStamp]:
        if not data or not data.get("email"):
            return None
        return cls(
            email=str(data["email"]),
            name=str(data.get("name") or ""),
            timestamp=data.get("timestamp"),
        )

    def stamped(self, timestamp: int) -> AuditStamp:
        return AuditStamp(email=self.email, name=self.name, timestamp=timestamp)


@dataclass
class CustomerRecord:
    """A customer of one e-loading service."""
    service_type: str
    name: Optional[str] = None
    id: Optional[str] = None
    status: Optional[str] = None
    serial_number: Optional[str] = None
    cca_number: Optional[str] = None
    plan: Optional[str] = None
    box_number: Optional[str] = None
    box_id: Optional[str] = None
    account_number: Optional[str] = None
    address: Optional[str] = None
    date_of_activation: Optional[str] = None
    date_of_purchase: Optional[str] = None
    price: Optional[float] = None
    supplier: Optional[str] = None
    created_at: Optional[int] = None
    updated_at: Optional[int] = None
    added_by: Optional[AuditStamp] = None
    last_updated_by: Optional[AuditStamp] = None
    extra: Dict[str, Any] = field(default_factory=dict)

    def __post_init__(self):
        validate_service_type(self.service_type)

    @classmethod
    def from_entity(cls, service_type: str, entity: Entity) -> CustomerRecord:
        """Build a record from a cached entity dict."""
        known = set(_FIELD_NAMES.values()) | {"id", "addedBy", "lastUpdatedBy"}
        kwargs = {
            attr: entity.get(remote)
            for attr, remote in _FIELD_NAMES.items()
            if entity.get(remote) is not None
        }
        if kwargs.get("price") is not None:
            try:
                kwargs["price"] = float(kwargs["price"])
            except (TypeError, ValueError):
                raise ValidationError(
                    f"Price must be a number, got {kwargs['price']!r}",
                    field="price",
                    value=kwargs["price"],
                ) from None
        return cls(
            service_type=service_type,
            id=entity.get("id"),
            added_by=AuditStamp.from_dict(entity.get("addedBy")),
            last_updated_by=AuditStamp.from_dict(entity.get("lastUpdatedBy")),
            extra={k: v for k, v in entity.items() if k not in known},
            **kwargs,
        )

    def to_fields(self, include_empty_identifiers: bool = False) -> Entity:
        """
        Remote field dict for this record, without the id.

        Empty identifier strings are dropped, matching how new customers were
        written by the mobile app; set include_empty_identifiers to keep them
        (used for updates that clear a field).
        """
        data: Entity = dict(self.extra)
        for f in fields(self):
            remote = _FIELD_NAMES.get(f.name)
            if remote is None:
                continue
            value = getattr(self, f.name)
            if value is None:
                continue
            if value == "" and not include_empty_identifiers:
                continue
            data[remote] = value

        if self.added_by is not None:
            data["addedBy"] = self.added_by.to_dict()
        if self.last_updated_by is not None:
            data["lastUpdatedBy"] = self.last_updated_by.to_dict()
        return data

    def to_entity(self) -> Entity:
        data = self.to_fields()
        if self.id is not None:
            data["id"] = self.id
        return data

    def identifiers(self) -> Dict[str, str]:
        """Non-empty identifier fields relevant to this record's service."""
        entity = self.to_fields()
        return {
            name: entity[name]
            for name in SERVICE_FIELDS[self.service_type]
            if entity.get(name)
        }


def remote_field_name(name: str) -> str:
    """Map a python attribute name (serial_number) to its remote field (serialNumber)."""
    return _FIELD_NAMES.get(name, name)
