"""
Per-entity field registries.

Every request key that may reach a query is enumerated here, tagged with its
kind and with what it may be used for. Anything not listed is dropped by the
query filter builder. Public names are the wire names clients send; paths are
the canonical model attribute paths predicates use.
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Optional

from .models.enums import DispatchLoadStatus, Equipment


class FieldKind(str, Enum):
    """How a field's request value is parsed."""

    NUMBER = "number"
    STRING = "string"
    DATE = "date"
    ENUM = "enum"
    REFERENCE = "reference"


@dataclass(frozen=True)
class FieldSpec:
    """One whitelisted field."""

    name: str
    path: str
    kind: FieldKind
    sortable: bool = False
    searchable: bool = False
    filterable: bool = False
    choices: Optional[type[Enum]] = None


@dataclass(frozen=True)
class EntityFields:
    """The whitelist for one entity, plus virtual multi-field search mappings."""

    entity: str
    fields: tuple[FieldSpec, ...]
    multi_field: dict[str, tuple[str, ...]] = field(default_factory=dict)

    def get(self, name: Optional[str]) -> Optional[FieldSpec]:
        if not name:
            return None
        for spec in self.fields:
            if spec.name == name:
                return spec
        return None

    def by_path(self, path: str) -> Optional[FieldSpec]:
        for spec in self.fields:
            if spec.path == path:
                return spec
        return None

    def extended(self, entity: str, *extra: FieldSpec) -> "EntityFields":
        """A registry with additional fields (e.g. computed match distances)."""
        return EntityFields(entity=entity, fields=self.fields + extra, multi_field=dict(self.multi_field))


N, S, D, E, R = (
    FieldKind.NUMBER,
    FieldKind.STRING,
    FieldKind.DATE,
    FieldKind.ENUM,
    FieldKind.REFERENCE,
)


DISPATCH_FIELDS = EntityFields(
    entity="Dispatch",
    fields=(
        FieldSpec("loadNumber", "load_number", N, sortable=True, searchable=True, filterable=True),
        FieldSpec("WONumber", "wo_number", N, sortable=True, searchable=True, filterable=True),
        FieldSpec("invoiceNumber", "invoice_number", N, sortable=True, searchable=True, filterable=True),
        FieldSpec("invoiceDate", "invoice_date", D, sortable=True),
        FieldSpec("status", "status", E, filterable=True, choices=DispatchLoadStatus),
        FieldSpec("equipment", "equipment", E, sortable=True, filterable=True, choices=Equipment),
        FieldSpec("shipper.address", "shipper.address.label", S, sortable=True, searchable=True),
        FieldSpec("shipper.date", "shipper.date", D, sortable=True),
        FieldSpec("shipper.weight", "shipper.weight", N, searchable=True),
        FieldSpec("consignee.address", "consignee.address.label", S, sortable=True, searchable=True),
        FieldSpec("consignee.date", "consignee.date", D, sortable=True),
        FieldSpec("consignee.weight", "consignee.weight", N, searchable=True),
        FieldSpec("allInRate", "all_in_rate", N, sortable=True, searchable=True),
        FieldSpec("specialInstructions", "special_instructions", S, searchable=True),
        FieldSpec("brokerId", "broker_id", R, filterable=True),
        FieldSpec("customerId", "customer_id", R, filterable=True),
        FieldSpec("carrierId", "carrier_id", R, filterable=True),
        FieldSpec("postedBy", "posted_by", R, filterable=True),
        FieldSpec("age", "age", D, sortable=True),
        FieldSpec("createdAt", "created_at", D, sortable=True),
        FieldSpec("updatedAt", "updated_at", D, sortable=True),
    ),
    multi_field={
        "address": ("shipper.address.label", "consignee.address.label"),
    },
)


TRUCK_FIELDS = EntityFields(
    entity="Truck",
    fields=(
        FieldSpec("referenceNumber", "reference_number", N, sortable=True, searchable=True, filterable=True),
        FieldSpec("equipment", "equipment", E, sortable=True, filterable=True, choices=Equipment),
        FieldSpec("origin.str", "origin.label", S, sortable=True, searchable=True),
        FieldSpec("destination.str", "destination.label", S, sortable=True, searchable=True),
        FieldSpec("availableDate", "available_date", D, sortable=True),
        FieldSpec("weight", "weight", N, sortable=True, searchable=True),
        FieldSpec("length", "length", N, sortable=True, searchable=True),
        FieldSpec("miles", "miles", N, sortable=True, searchable=True),
        FieldSpec("allInRate", "all_in_rate", N, sortable=True, searchable=True),
        FieldSpec("comments", "comments", S, searchable=True),
        FieldSpec("brokerId", "broker_id", R, filterable=True),
        FieldSpec("postedBy", "posted_by", R, filterable=True),
        FieldSpec("age", "age", D, sortable=True),
        FieldSpec("createdAt", "created_at", D, sortable=True),
        FieldSpec("updatedAt", "updated_at", D, sortable=True),
    ),
    multi_field={
        "location": ("origin.label", "destination.label"),
    },
)


_DISTANCE_FIELDS = (
    FieldSpec("dhoDistance", "dho_distance", N, sortable=True),
    FieldSpec("dhdDistance", "dhd_distance", N, sortable=True),
)

MATCHED_TRUCK_FIELDS = TRUCK_FIELDS.extended("MatchedTruck", *_DISTANCE_FIELDS)
MATCHED_LOAD_FIELDS = DISPATCH_FIELDS.extended("MatchedLoad", *_DISTANCE_FIELDS)
