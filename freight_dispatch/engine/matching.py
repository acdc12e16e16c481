"""
Truck/load matching.

A strict pass requires equipment, both deadhead radii, overlapping
availability, capacity and special instructions to agree. When it finds
nothing, a relaxed pass doubles the radius, accepts proximity at either end
and drops the date and instruction constraints. Equipment and capacity are
never relaxed.

Distances are haversine miles. Bounding boxes narrow the store query; every
candidate is then checked against the exact distance.
"""

from dataclasses import dataclass
from datetime import datetime
from time import perf_counter
from typing import Any, Callable, Optional, TypeVar

from ..core.config import ConfigManager
from ..core.errors import NotFound, ValidationError
from ..data.fields import MATCHED_LOAD_FIELDS, MATCHED_TRUCK_FIELDS, EntityFields
from ..data.models import (
    Dispatch,
    DispatchLoadStatus,
    GeoPoint,
    MatchedLoad,
    MatchedTruck,
    MatchPass,
    Page,
    Truck,
)
from ..data.query import AllOf, AnyOf, Contains, Eq, Missing, Pagination, Predicate, SortKey, sort_records
from ..data.store import Store
from ..notifications import LoggingNotifier, MatchFound, Notifier
from .base import BaseComponent
from .geo import bounding_box, haversine_miles
from .query_filter import QueryFilterBuilder

M = TypeVar("M", MatchedTruck, MatchedLoad)


@dataclass(frozen=True)
class Deadhead:
    """Deadhead miles between a truck and a load."""

    dho: float
    dhd: Optional[float]


def windows_overlap(a: tuple[datetime, datetime], b: tuple[datetime, datetime]) -> bool:
    """Inclusive overlap of two [start, end] windows compared by calendar day."""
    return a[0].date() <= b[1].date() and b[0].date() <= a[1].date()


def has_capacity(truck: Truck, load: Dispatch) -> bool:
    """A truck must state, and meet, every dimension the load states."""
    weight = load.required_weight
    if weight is not None and (truck.weight is None or truck.weight < weight):
        return False
    if load.length is not None and (truck.length is None or truck.length < load.length):
        return False
    return True


def instructions_predicate(load: Dispatch) -> Optional[Predicate]:
    """Escaped case-insensitive match of the load's instructions in truck comments."""
    text = (load.special_instructions or "").strip()
    if not text:
        return None
    return Contains.literal("comments", text)


def deadhead(truck: Truck, load: Dispatch) -> Deadhead:
    dho = haversine_miles(truck.origin, load.origin)
    dhd = haversine_miles(truck.destination, load.destination) if truck.destination else None
    return Deadhead(dho=dho, dhd=dhd)


def _miles(distance: Optional[float]) -> Optional[float]:
    return round(distance, 2) if distance is not None else None


def day_gap(truck: Truck, load: Dispatch) -> int:
    """Whole days between the start of the truck and pickup windows."""
    return abs((truck.available_date.date() - load.shipper.date.date()).days)


class MatchingEngine(BaseComponent):
    """
    Finds trucks for a load and loads for a truck.

    Example:
        >>> engine = MatchingEngine(store)
        >>> page = engine.match_trucks_for_load(load_id, page=1, limit=10)
        >>> page.match_pass
        <MatchPass.STRICT: 'strict'>
    """

    def __init__(
        self,
        store: Store,
        notifier: Optional[Notifier] = None,
        query_builder: Optional[QueryFilterBuilder] = None,
        config_manager: Optional[ConfigManager] = None,
    ) -> None:
        super().__init__(component_name="matching", store=store, config_manager=config_manager)
        self.notifier = notifier or LoggingNotifier()
        self.query_builder = query_builder or QueryFilterBuilder(self.config_manager)

    @property
    def radius(self) -> float:
        """Strict-pass radius R1 in miles."""
        return self.config_manager.get_matching_config().radius_miles

    @property
    def relaxed_radius(self) -> float:
        matching = self.config_manager.get_matching_config()
        return matching.radius_miles * matching.fallback_multiplier

    # Trucks for a load

    def match_trucks_for_load(
        self,
        load_id: str,
        page: Any = None,
        limit: Any = None,
        sort: Any = None,
    ) -> Page[MatchedTruck]:
        """Trucks able to haul a load, best deadhead first."""
        started = perf_counter()
        load = self.store.get(Dispatch, load_id)
        if load is None:
            raise NotFound("Load", load_id)

        matched = self._trucks_for_load(load, strict=True)
        match_pass = MatchPass.STRICT
        if not matched:
            matched = self._trucks_for_load(load, strict=False)
            match_pass = MatchPass.RELAXED if matched else MatchPass.NONE

        ranked = self._rank(
            matched,
            key=lambda t: (t.dho_distance, t.dhd_distance or 0.0, day_gap(t, load), t.id),
            sort=sort,
            registry=MATCHED_TRUCK_FIELDS,
        )
        result = self._paginate(ranked, page, limit, match_pass)

        self.log_decision(
            decision_type="match_trucks_for_load",
            input_data={"load_id": load_id},
            output_data={"load_id": load_id, "match_pass": match_pass.value, "total_count": result.total_count},
            started_at=started,
            finished_at=perf_counter(),
        )
        if result.total_count:
            self._notify_match(
                "load",
                load.id,
                load.load_number,
                [load.broker_id, load.posted_by],
                result,
            )
        return result

    def _trucks_for_load(self, load: Dispatch, strict: bool) -> list[MatchedTruck]:
        radius = self.radius if strict else self.relaxed_radius
        origin_box = bounding_box(load.origin, radius).predicates("origin.lat", "origin.lng")
        destination_box = bounding_box(load.destination, radius).predicates(
            "destination.lat", "destination.lng"
        )

        if strict:
            prefilter = AllOf((Eq("equipment", load.equipment), *origin_box)).and_(
                AnyOf((Missing("destination"), AllOf(tuple(destination_box)))),
                instructions_predicate(load),
            )
        else:
            prefilter = AllOf((Eq("equipment", load.equipment),)).and_(
                AnyOf((AllOf(tuple(origin_box)), AllOf(tuple(destination_box)))),
            )

        matched = []
        for truck in self.store.find(Truck, prefilter):
            if not has_capacity(truck, load):
                continue
            distance = deadhead(truck, load)
            if not self._within(distance, radius, strict):
                continue
            if strict and not windows_overlap(truck.availability_window, load.pickup_window):
                continue
            matched.append(
                MatchedTruck(
                    **truck.model_dump(exclude={"formatted_age"}),
                    dho_distance=_miles(distance.dho),
                    dhd_distance=_miles(distance.dhd),
                )
            )
        return matched

    # Loads for a truck

    def match_loads_for_truck(
        self,
        truck_id: str,
        page: Any = None,
        limit: Any = None,
        sort: Any = None,
    ) -> Page[MatchedLoad]:
        """Published loads a truck can haul, best deadhead first."""
        started = perf_counter()
        truck = self.store.get(Truck, truck_id)
        if truck is None:
            raise NotFound("Truck", truck_id)

        matched = self._loads_for_truck(truck, strict=True)
        match_pass = MatchPass.STRICT
        if not matched:
            matched = self._loads_for_truck(truck, strict=False)
            match_pass = MatchPass.RELAXED if matched else MatchPass.NONE

        ranked = self._rank(
            matched,
            key=lambda d: (d.dho_distance, d.dhd_distance or 0.0, day_gap(truck, d), d.id),
            sort=sort,
            registry=MATCHED_LOAD_FIELDS,
        )
        result = self._paginate(ranked, page, limit, match_pass)

        self.log_decision(
            decision_type="match_loads_for_truck",
            input_data={"truck_id": truck_id},
            output_data={"truck_id": truck_id, "match_pass": match_pass.value, "total_count": result.total_count},
            started_at=started,
            finished_at=perf_counter(),
        )
        if result.total_count:
            self._notify_match(
                "truck",
                truck.id,
                truck.reference_number,
                [truck.broker_id, truck.posted_by],
                result,
            )
        return result

    def _loads_for_truck(self, truck: Truck, strict: bool) -> list[MatchedLoad]:
        radius = self.radius if strict else self.relaxed_radius
        origin_box = AllOf(
            tuple(bounding_box(truck.origin, radius).predicates("shipper.address.lat", "shipper.address.lng"))
        )
        destination_box = (
            AllOf(
                tuple(
                    bounding_box(truck.destination, radius).predicates(
                        "consignee.address.lat", "consignee.address.lng"
                    )
                )
            )
            if truck.destination
            else None
        )

        base = AllOf((Eq("status", DispatchLoadStatus.PUBLISHED), Eq("equipment", truck.equipment)))
        if strict:
            prefilter = base.and_(origin_box, destination_box)
        elif destination_box is not None:
            prefilter = base.and_(AnyOf((origin_box, destination_box)))
        else:
            prefilter = base.and_(origin_box)

        matched = []
        for load in self.store.find(Dispatch, prefilter):
            if not has_capacity(truck, load):
                continue
            distance = deadhead(truck, load)
            if not self._within(distance, radius, strict):
                continue
            if strict:
                if not windows_overlap(truck.availability_window, load.pickup_window):
                    continue
                instructions = instructions_predicate(load)
                if instructions is not None and not instructions.matches(truck):
                    continue
            matched.append(
                MatchedLoad(
                    **load.model_dump(exclude={"formatted_age"}),
                    dho_distance=_miles(distance.dho),
                    dhd_distance=_miles(distance.dhd),
                )
            )
        return matched

    # Load board search

    def search_loads_by_deadhead(
        self,
        origin: Optional[GeoPoint] = None,
        destination: Optional[GeoPoint] = None,
        dho_radius: Optional[float] = None,
        dhd_radius: Optional[float] = None,
        params: Optional[dict[str, Any]] = None,
    ) -> Page[MatchedLoad]:
        """
        Dispatches whose pickup and/or delivery lies within a radius of given points.

        Other listing parameters (search, date range, filters, sort, pagination)
        apply as for a plain listing. Totals count only loads within the radii.
        """
        if origin is None and destination is None:
            raise ValidationError("An origin or a destination point is required")
        dho_radius = self._check_radius("dhoRadius", dho_radius)
        dhd_radius = self._check_radius("dhdRadius", dhd_radius)

        query = self.query_builder.build(params or {}, MATCHED_LOAD_FIELDS)
        prefilter = query.predicate
        if origin is not None:
            prefilter = prefilter.and_(
                *bounding_box(origin, dho_radius).predicates("shipper.address.lat", "shipper.address.lng")
            )
        if destination is not None:
            prefilter = prefilter.and_(
                *bounding_box(destination, dhd_radius).predicates("consignee.address.lat", "consignee.address.lng")
            )

        matched = []
        for load in self.store.find(Dispatch, prefilter):
            dho = haversine_miles(origin, load.origin) if origin is not None else None
            dhd = haversine_miles(destination, load.destination) if destination is not None else None
            if dho is not None and dho > dho_radius:
                continue
            if dhd is not None and dhd > dhd_radius:
                continue
            matched.append(
                MatchedLoad(
                    **load.model_dump(exclude={"formatted_age"}),
                    dho_distance=_miles(dho),
                    dhd_distance=_miles(dhd),
                )
            )

        ranked = sort_records(
            sorted(matched, key=lambda d: (d.dho_distance or 0.0, d.dhd_distance or 0.0, d.id)),
            query.sort,
        )
        return self._slice(ranked, query.pagination, None)

    def _check_radius(self, name: str, radius: Optional[float]) -> float:
        if radius is None:
            return self.radius
        if radius < 0:
            raise ValidationError(f"{name} must not be negative")
        return float(radius)

    # Shared helpers

    @staticmethod
    def _within(distance: Deadhead, radius: float, strict: bool) -> bool:
        if strict:
            return distance.dho <= radius and (distance.dhd is None or distance.dhd <= radius)
        # Relaxed: either end is close enough; a truck going anywhere qualifies by origin only.
        return distance.dho <= radius or (distance.dhd is not None and distance.dhd <= radius)

    def _rank(
        self,
        items: list[M],
        key: Callable[[M], tuple],
        sort: Any,
        registry: EntityFields,
    ) -> list[M]:
        """Proximity order, with any caller sort keys taking precedence."""
        caller_keys: tuple[SortKey, ...] = self.query_builder.parse_sort(sort, registry)
        return sort_records(sorted(items, key=key), caller_keys)

    def _paginate(self, items: list[M], page: Any, limit: Any, match_pass: MatchPass) -> Page[M]:
        return self._slice(items, self.query_builder.pagination(page, limit), match_pass)

    @staticmethod
    def _slice(items: list[M], pagination: Pagination, match_pass: Optional[MatchPass]) -> Page[M]:
        window = items[pagination.skip:pagination.skip + pagination.limit]
        return Page.from_slice(window, pagination.page, pagination.limit, len(items), match_pass)

    def _notify_match(
        self,
        kind: str,
        subject_id: str,
        reference: Optional[int],
        recipients: list[Optional[str]],
        page: Page,
    ) -> None:
        notifications = self.config_manager.get_notification_config()
        if not notifications.match_found:
            return
        unique = list(dict.fromkeys(r for r in recipients if r))
        if not unique:
            return
        event = MatchFound(
            template_name=notifications.match_template,
            subject_kind=kind,
            subject_id=subject_id,
            reference=reference,
            match_pass=page.match_pass or MatchPass.NONE,
            total_count=page.total_count,
        )
        try:
            self.notifier.notify(event, unique, event.template_data)
        except Exception as e:
            self.logger.warning("notification_failed", kind=kind, subject_id=subject_id, error=str(e))
