"""
Service facade: the operations the request boundary exposes.

Wires the store, sequence allocator, state machine, matching engine and query
filter builder together, and converts pydantic validation failures and store
uniqueness violations into the engine's error taxonomy.
"""

from collections.abc import Mapping
from typing import Any, Optional, TypeVar

import pydantic
import structlog

from .core.config import ConfigManager, get_config
from .core.errors import DuplicateIdentifier, FreightDispatchError, NotFound, StoreUnavailable, ValidationError
from .data.fields import DISPATCH_FIELDS, TRUCK_FIELDS, EntityFields
from .data.models import (
    Dispatch,
    Document,
    GeoPoint,
    MatchedLoad,
    MatchedTruck,
    Page,
    ReservationResult,
    SequenceName,
    Truck,
    utcnow,
)
from .data.store import Store, create_store
from .engine.matching import MatchingEngine
from .engine.query_filter import QueryFilterBuilder
from .engine.sequences import SequenceAllocator
from .engine.state_machine import INVOICED_STATUSES, DispatchStateMachine, assign_identifiers
from .notifications import LoggingNotifier, Notifier

D = TypeVar("D", bound=Document)

# Explicitly supplied identifiers that must be reserved before a write.
_RESERVED_ON_WRITE: dict[type[Document], dict[str, SequenceName]] = {
    Dispatch: {
        "load_number": SequenceName.LOAD_NUMBER,
        "invoice_number": SequenceName.INVOICE_NUMBER,
        "wo_number": SequenceName.WO_NUMBER,
    },
    Truck: {"reference_number": SequenceName.REFERENCE_NUMBER},
}

# Attributes callers may never set directly.
_SERVER_MANAGED = ("id", "created_at", "updated_at", "formatted_age")

# Dispatch attributes that cannot change once assigned.
_IMMUTABLE_ONCE_SET = ("load_number", "invoice_number", "invoice_date")

# Assigned on entering an invoiced status; absent before that.
_INVOICE_FIELDS = ("invoice_number", "invoice_date")

# Compare-and-swap attempts for a dispatch update racing a transition.
_UPDATE_ATTEMPTS = 3

_KINDS: dict[str, type[Document]] = {
    "dispatch": Dispatch,
    "load": Dispatch,
    "truck": Truck,
}


def validation_error(error: pydantic.ValidationError) -> ValidationError:
    """Convert a pydantic error into the client-facing ValidationError."""
    errors = [
        {"field": ".".join(str(part) for part in e["loc"]), "message": e["msg"]}
        for e in error.errors()
    ]
    return ValidationError(errors=errors)


def _validate(model: type[D], data: Mapping[str, Any]) -> D:
    try:
        return model.model_validate(dict(data))
    except pydantic.ValidationError as e:
        raise validation_error(e) from None


def _by_attribute(model: type[Document], data: Mapping[str, Any]) -> dict[str, Any]:
    """Re-key wire (alias) names to attribute names; unknown keys pass through."""
    aliases = {field.alias: name for name, field in model.model_fields.items() if field.alias}
    return {aliases.get(key, key): value for key, value in data.items()}


class DispatchService:
    """
    Entry point for dispatch lifecycle, matching and listings.

    Example:
        >>> service = DispatchService(InMemoryStore())
        >>> dispatch = service.create_dispatch({...})
        >>> service.transition(dispatch.id, "Published").load_number
        1
    """

    def __init__(
        self,
        store: Optional[Store] = None,
        notifier: Optional[Notifier] = None,
        config_manager: Optional[ConfigManager] = None,
    ) -> None:
        self.config_manager = config_manager or get_config()
        self.store = store or create_store(self.config_manager)
        self.notifier = notifier or LoggingNotifier()
        self.logger = structlog.get_logger(component="service")

        self.query_builder = QueryFilterBuilder(self.config_manager)
        self.sequences = SequenceAllocator(self.store, config_manager=self.config_manager)
        self.state_machine = DispatchStateMachine(
            self.store,
            notifier=self.notifier,
            sequences=self.sequences,
            config_manager=self.config_manager,
        )
        self.matching = MatchingEngine(
            self.store,
            notifier=self.notifier,
            query_builder=self.query_builder,
            config_manager=self.config_manager,
        )

    def close(self) -> None:
        self.store.close()

    # Sequences

    def allocate_sequence(self, name: Any) -> int:
        return self.sequences.next(name)

    def reserve_sequence(self, name: Any, value: Any) -> ReservationResult:
        return self.sequences.reserve(name, value)

    # Lifecycle

    def transition(self, dispatch_id: str, target: Any) -> Dispatch:
        return self.state_machine.transition(dispatch_id, target)

    # Matching

    def match_trucks_for_load(
        self, load_id: str, page: Any = None, limit: Any = None, sort: Any = None
    ) -> Page[MatchedTruck]:
        return self.matching.match_trucks_for_load(load_id, page=page, limit=limit, sort=sort)

    def match_loads_for_truck(
        self, truck_id: str, page: Any = None, limit: Any = None, sort: Any = None
    ) -> Page[MatchedLoad]:
        return self.matching.match_loads_for_truck(truck_id, page=page, limit=limit, sort=sort)

    def search_loads_by_deadhead(
        self,
        origin: Optional[Any] = None,
        destination: Optional[Any] = None,
        dho_radius: Optional[float] = None,
        dhd_radius: Optional[float] = None,
        params: Optional[Mapping[str, Any]] = None,
    ) -> Page[MatchedLoad]:
        return self.matching.search_loads_by_deadhead(
            origin=self._point(origin),
            destination=self._point(destination),
            dho_radius=dho_radius,
            dhd_radius=dhd_radius,
            params=dict(params or {}),
        )

    @staticmethod
    def _point(value: Any) -> Optional[GeoPoint]:
        if value is None or isinstance(value, GeoPoint):
            return value
        return _validate(GeoPoint, value)

    # Dispatches

    def create_dispatch(self, data: Mapping[str, Any]) -> Dispatch:
        """
        Create a dispatch.

        A dispatch created in any status other than Draft receives the
        identifiers that status requires. Explicit loadNumber, invoiceNumber
        and WONumber values are reserved first and rejected when taken;
        invoiceNumber and invoiceDate are only accepted on an invoiced dispatch.
        """
        now = utcnow()
        fields = {k: v for k, v in _by_attribute(Dispatch, data).items() if k not in _SERVER_MANAGED}
        fields.setdefault("age", now)
        dispatch = _validate(Dispatch, {**fields, "created_at": now, "updated_at": now})

        self._check_invoice_fields(dispatch)
        self._reserve_explicit(dispatch, None)
        assigned = assign_identifiers(dispatch, dispatch.status, self.sequences.next, now)
        self._insert(dispatch)
        self.logger.info(
            "dispatch_created",
            dispatch_id=dispatch.id,
            status=dispatch.status.value,
            load_number=dispatch.load_number,
            assigned=assigned,
        )
        return dispatch

    def get_dispatch(self, dispatch_id: str) -> Dispatch:
        return self._get(Dispatch, dispatch_id)

    def update_dispatch(self, dispatch_id: str, changes: Mapping[str, Any]) -> Dispatch:
        """
        Apply a partial update.

        status is owned by transition(); loadNumber can be set once but never
        changed. invoiceNumber and invoiceDate belong to the invoiced statuses
        and are fixed once assigned.
        """
        patch = {k: v for k, v in _by_attribute(Dispatch, changes).items() if k not in _SERVER_MANAGED}
        if "status" in patch:
            raise ValidationError("status can only be changed through a status transition")

        for attempt in range(_UPDATE_ATTEMPTS):
            current = self._get(Dispatch, dispatch_id)
            updated = self._patched(current, patch)
            for attr in _IMMUTABLE_ONCE_SET:
                if getattr(current, attr) is not None and getattr(updated, attr) != getattr(current, attr):
                    alias = Dispatch.model_fields[attr].alias
                    raise ValidationError(f"{alias} cannot be changed once assigned")
            if any(attr in patch for attr in _INVOICE_FIELDS):
                self._check_invoice_fields(updated)

            self._reserve_explicit(updated, current)
            try:
                with self.store.transaction() as uow:
                    written = uow.compare_and_set_dispatch(updated, current.status)
            except DuplicateIdentifier as e:
                raise self._conflict(Dispatch, e) from e
            if written:
                self.logger.info("dispatch_updated", dispatch_id=dispatch_id, fields=sorted(patch))
                return updated
            self.logger.info("dispatch_update_retry", dispatch_id=dispatch_id, attempt=attempt + 1)

        raise StoreUnavailable("Dispatch is being modified concurrently, try again")

    def delete_dispatch(self, dispatch_id: str) -> None:
        if not self.store.delete(Dispatch, dispatch_id):
            raise NotFound("Dispatch", dispatch_id)
        self.logger.info("dispatch_deleted", dispatch_id=dispatch_id)

    def list_dispatches(self, params: Optional[Mapping[str, Any]] = None) -> Page[Dispatch]:
        return self._list(Dispatch, DISPATCH_FIELDS, params)

    # Trucks

    def create_truck(self, data: Mapping[str, Any]) -> Truck:
        """Create a truck posting; referenceNumber is allocated unless supplied."""
        now = utcnow()
        fields = {k: v for k, v in _by_attribute(Truck, data).items() if k not in _SERVER_MANAGED}
        fields.setdefault("age", now)
        truck = _validate(Truck, {**fields, "created_at": now, "updated_at": now})

        self._reserve_explicit(truck, None)
        if truck.reference_number is None:
            truck.reference_number = self.sequences.next(SequenceName.REFERENCE_NUMBER)
        self._insert(truck)
        self.logger.info("truck_created", truck_id=truck.id, reference_number=truck.reference_number)
        return truck

    def get_truck(self, truck_id: str) -> Truck:
        return self._get(Truck, truck_id)

    def update_truck(self, truck_id: str, changes: Mapping[str, Any]) -> Truck:
        patch = {k: v for k, v in _by_attribute(Truck, changes).items() if k not in _SERVER_MANAGED}
        current = self._get(Truck, truck_id)
        updated = self._patched(current, patch)
        self._reserve_explicit(updated, current)
        try:
            replaced = self.store.replace(updated)
        except DuplicateIdentifier as e:
            raise self._conflict(Truck, e) from e
        if not replaced:
            raise NotFound("Truck", truck_id)
        self.logger.info("truck_updated", truck_id=truck_id, fields=sorted(patch))
        return updated

    def delete_truck(self, truck_id: str) -> None:
        if not self.store.delete(Truck, truck_id):
            raise NotFound("Truck", truck_id)
        self.logger.info("truck_deleted", truck_id=truck_id)

    def list_trucks(self, params: Optional[Mapping[str, Any]] = None) -> Page[Truck]:
        return self._list(Truck, TRUCK_FIELDS, params)

    # Freshness

    def refresh_age(self, kind: str, ids: list[str]) -> list[Document]:
        """Set age to now on the given dispatches or trucks."""
        model = _KINDS.get(str(kind).lower())
        if model is None:
            raise ValidationError(f"Unknown record kind: {kind}")
        if not ids or not isinstance(ids, list) or not all(isinstance(i, str) for i in ids):
            raise ValidationError("Invalid or missing IDs")

        updated = self.store.touch_age(model, ids, utcnow())
        if not updated:
            raise NotFound(model.__name__)
        self.logger.info("age_refreshed", kind=model.__name__, count=len(updated))
        return updated

    # Helpers

    def _get(self, model: type[D], record_id: str) -> D:
        record = self.store.get(model, record_id)
        if record is None:
            raise NotFound(model.__name__, record_id)
        return record

    def _list(self, model: type[D], registry: EntityFields, params: Optional[Mapping[str, Any]]) -> Page[D]:
        query = self.query_builder.build(params or {}, registry)
        items, total = self.store.query(model, query)
        return Page.from_slice(items, query.pagination.page, query.pagination.limit, total)

    @staticmethod
    def _patched(current: D, patch: Mapping[str, Any]) -> D:
        data = current.model_dump(exclude={"formatted_age"})
        data.update(patch)
        data["updated_at"] = utcnow()
        return _validate(type(current), data)

    @staticmethod
    def _check_invoice_fields(dispatch: Dispatch) -> None:
        if dispatch.status in INVOICED_STATUSES:
            return
        for attr in _INVOICE_FIELDS:
            if getattr(dispatch, attr) is not None:
                alias = Dispatch.model_fields[attr].alias
                raise ValidationError(f"{alias} is only assigned once a dispatch is invoiced")

    def _reserve_explicit(self, record: Document, previous: Optional[Document]) -> None:
        """Reserve identifiers the caller supplied (or changed) before writing."""
        for attr, sequence in _RESERVED_ON_WRITE[type(record)].items():
            value = getattr(record, attr)
            if value is None:
                continue
            if previous is not None and getattr(previous, attr) == value:
                continue
            self.sequences.reserve_or_raise(sequence, value)

    def _insert(self, record: Document) -> None:
        try:
            self.store.insert(record)
        except DuplicateIdentifier as e:
            raise self._conflict(type(record), e) from e

    def _conflict(self, model: type[Document], error: DuplicateIdentifier) -> FreightDispatchError:
        sequence = _RESERVED_ON_WRITE[model].get(error.field)
        if sequence is None:
            return ValidationError(f"Duplicate {error.field}")
        return self.sequences.conflict(sequence, error.value)

