"""
Translation of request parameters into structured list queries.

Only fields enumerated in an entity's registry can reach a predicate or a
sort key. Unknown keys are dropped; malformed values for known keys raise.
"""

import re
from collections.abc import Mapping
from datetime import date, datetime, time, timezone
from decimal import Decimal, InvalidOperation
from typing import Any, Optional

import structlog

from ..core.config import ConfigManager, get_config
from ..core.errors import InvalidSearch, ValidationError
from ..data.fields import EntityFields, FieldKind, FieldSpec
from ..data.models import ensure_utc
from ..data.query import AllOf, AnyOf, Contains, Eq, ListQuery, Pagination, Predicate, Range, SortKey

logger = structlog.get_logger(component="query_filter")

# Keys with a meaning of their own; never treated as equality filters.
RESERVED_PARAMS = frozenset(
    {"page", "limit", "sort", "search", "searchField", "dateField", "fromDate", "toDate"}
)

_DATE_ONLY = re.compile(r"^\d{4}-\d{2}-\d{2}$")

# Largest page or limit accepted; page * limit must stay a valid SQL integer offset.
_MAX_PAGINATION_VALUE = 2**31 - 1


def _text(value: Any) -> Optional[str]:
    if value is None:
        return None
    text = str(value).strip()
    return text or None


def parse_number(raw: Any) -> Optional[float]:
    """Parse a numeric request value; None when it is not a finite number."""
    text = _text(raw)
    if text is None:
        return None
    try:
        number = Decimal(text)
    except InvalidOperation:
        return None
    if not number.is_finite():
        return None
    return int(number) if number == number.to_integral_value() else float(number)


def parse_date(raw: Any, end_of_day: bool = False) -> datetime:
    """
    Parse an ISO date or datetime into aware UTC.

    A date without a time means the start of that day, or its last instant
    when end_of_day is set.
    """
    if isinstance(raw, datetime):
        return ensure_utc(raw)
    text = _text(raw)
    if text is None:
        raise ValidationError("Date value is required")
    try:
        if _DATE_ONLY.match(text):
            day = date.fromisoformat(text)
            return datetime.combine(day, time.max if end_of_day else time.min, tzinfo=timezone.utc)
        return ensure_utc(datetime.fromisoformat(text.replace("Z", "+00:00")))
    except ValueError:
        raise ValidationError(f"Invalid date: {text}") from None


class QueryFilterBuilder:
    """
    Builds a ListQuery (predicate, sort, pagination) from request parameters.

    Example:
        >>> builder = QueryFilterBuilder()
        >>> query = builder.build({"search": "Houston", "searchField": "shipper.address"}, DISPATCH_FIELDS)
    """

    def __init__(self, config_manager: Optional[ConfigManager] = None) -> None:
        self.config_manager = config_manager or get_config()

    def build(self, params: Mapping[str, Any], registry: EntityFields) -> ListQuery:
        """Full query for a listing or match request."""
        predicates: list[Predicate] = []

        search = self.search_predicate(params.get("search"), params.get("searchField"), registry)
        if search is not None:
            predicates.append(search)

        date_range = self.date_range_predicate(
            params.get("dateField"), params.get("fromDate"), params.get("toDate"), registry
        )
        if date_range is not None:
            predicates.append(date_range)

        predicates.extend(self.equality_predicates(params, registry))

        return ListQuery(
            predicate=AllOf(tuple(predicates)),
            sort=self.parse_sort(params.get("sort"), registry),
            pagination=self.pagination(params.get("page"), params.get("limit")),
        )

    # Pagination

    def pagination(self, page: Any = None, limit: Any = None) -> Pagination:
        """Page and limit, falling back to configured defaults for bad input."""
        defaults = self.config_manager.get_pagination_config()
        return Pagination(
            page=self._positive_int(page, defaults.default_page),
            limit=self._positive_int(limit, defaults.default_limit),
        )

    @staticmethod
    def _positive_int(raw: Any, default: int) -> int:
        number = parse_number(raw)
        if number is None or not 1 <= number <= _MAX_PAGINATION_VALUE or number != int(number):
            return default
        return int(number)

    # Sort

    def parse_sort(self, raw: Any, registry: EntityFields) -> tuple[SortKey, ...]:
        """
        Parse "field:asc,other:desc" into sort keys on canonical paths.

        Fields not whitelisted as sortable are dropped; a missing or unknown
        direction means ascending.
        """
        text = _text(raw)
        if text is None:
            return ()

        keys = []
        for part in text.split(","):
            name, _, direction = part.strip().partition(":")
            spec = registry.get(name.strip())
            if spec is None or not spec.sortable:
                logger.debug("sort_field_dropped", entity=registry.entity, field=name)
                continue
            keys.append(SortKey(spec.path, descending=direction.strip().lower() == "desc"))
        return tuple(keys)

    # Search

    def search_predicate(
        self, search: Any, search_field: Any, registry: EntityFields
    ) -> Optional[Predicate]:
        """Predicate for search + searchField; None when either is absent or unknown."""
        text = _text(search)
        field_name = _text(search_field)
        if text is None or field_name is None:
            return None

        if field_name in registry.multi_field:
            return AnyOf(
                tuple(Contains.literal(path, text) for path in registry.multi_field[field_name])
            )

        spec = registry.get(field_name)
        if spec is None or not spec.searchable:
            logger.debug("search_field_ignored", entity=registry.entity, field=field_name)
            return None

        if spec.kind == FieldKind.NUMBER:
            number = parse_number(text)
            if number is None:
                raise InvalidSearch(spec.name, text)
            return Eq(spec.path, number)

        return Contains.literal(spec.path, text)

    # Date range

    def date_range_predicate(
        self, date_field: Any, from_date: Any, to_date: Any, registry: EntityFields
    ) -> Optional[Predicate]:
        """Inclusive range on a date field; a date-only toDate covers that whole day."""
        spec = registry.get(_text(date_field))
        if spec is None or spec.kind != FieldKind.DATE:
            return None

        gte = parse_date(from_date) if _text(from_date) else None
        lte = parse_date(to_date, end_of_day=True) if _text(to_date) else None
        if gte is None and lte is None:
            return None
        if gte is not None and lte is not None and gte > lte:
            raise ValidationError("fromDate must not be after toDate")
        return Range(spec.path, gte=gte, lte=lte)

    # Equality filters

    def equality_predicates(self, params: Mapping[str, Any], registry: EntityFields) -> list[Predicate]:
        """Whitelisted key=value filters; comma-separated values match any of them."""
        predicates: list[Predicate] = []
        for key, raw in params.items():
            if key in RESERVED_PARAMS:
                continue
            spec = registry.get(key)
            if spec is None or not spec.filterable:
                continue
            text = _text(raw)
            if text is None:
                continue
            values = [self._coerce(spec, v.strip()) for v in text.split(",") if v.strip()]
            if len(values) == 1:
                predicates.append(Eq(spec.path, values[0]))
            elif values:
                predicates.append(AnyOf(tuple(Eq(spec.path, v) for v in values)))
        return predicates

    @staticmethod
    def _coerce(spec: FieldSpec, text: str) -> Any:
        if spec.kind == FieldKind.NUMBER:
            number = parse_number(text)
            if number is None:
                raise ValidationError(f"Invalid number provided for field {spec.name}")
            return number
        if spec.kind == FieldKind.ENUM and spec.choices is not None:
            try:
                return spec.choices(text)
            except ValueError:
                raise ValidationError(f"Invalid value for {spec.name}: {text}") from None
        if spec.kind == FieldKind.DATE:
            return parse_date(text)
        return text
