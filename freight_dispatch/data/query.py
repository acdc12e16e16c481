"""
Structured query representation shared by listings and matching.

A ListQuery is a predicate tree plus sort keys and pagination. Predicates
reference canonical model attribute paths ("shipper.address.label"), never raw
request keys. They evaluate directly against pydantic records (in-memory
store) and are translated to SQL clauses by the SQL store.
"""

import re
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import Any, Optional, Union


def resolve_path(record: Any, path: str) -> Any:
    """Follow a dotted attribute path; None as soon as a link is missing."""
    value = record
    for part in path.split("."):
        if value is None:
            return None
        if isinstance(value, dict):
            value = value.get(part)
        else:
            value = getattr(value, part, None)
    return value


def _comparable(value: Any) -> Any:
    if isinstance(value, Enum):
        return value.value
    if isinstance(value, Decimal):
        return float(value)
    return value


class Predicate(ABC):
    """Base class for filter nodes."""

    @abstractmethod
    def matches(self, record: Any) -> bool:
        """True when record satisfies this node."""


@dataclass(frozen=True)
class Eq(Predicate):
    """field == value"""

    field: str
    value: Any

    def matches(self, record: Any) -> bool:
        return _comparable(resolve_path(record, self.field)) == _comparable(self.value)


@dataclass(frozen=True)
class Contains(Predicate):
    """
    Case-insensitive match of an already-escaped regular expression.

    Build instances with Contains.literal() so user text is always escaped.
    """

    field: str
    pattern: str

    @classmethod
    def literal(cls, field: str, text: str) -> "Contains":
        """Substring match for untrusted text."""
        return cls(field=field, pattern=escape_search(text))

    def matches(self, record: Any) -> bool:
        value = resolve_path(record, self.field)
        if value is None:
            return False
        return re.search(self.pattern, str(_comparable(value)), re.IGNORECASE) is not None


@dataclass(frozen=True)
class Range(Predicate):
    """gte <= field <= lte, either bound optional. Missing values never match."""

    field: str
    gte: Optional[Union[int, float, datetime]] = None
    lte: Optional[Union[int, float, datetime]] = None

    def matches(self, record: Any) -> bool:
        value = _comparable(resolve_path(record, self.field))
        if value is None:
            return False
        if self.gte is not None and value < self.gte:
            return False
        if self.lte is not None and value > self.lte:
            return False
        return True


@dataclass(frozen=True)
class Missing(Predicate):
    """field is absent / null"""

    field: str

    def matches(self, record: Any) -> bool:
        return resolve_path(record, self.field) is None


@dataclass(frozen=True)
class AnyOf(Predicate):
    """Logical OR. An empty AnyOf matches nothing."""

    predicates: tuple[Predicate, ...]

    def matches(self, record: Any) -> bool:
        return any(p.matches(record) for p in self.predicates)


@dataclass(frozen=True)
class AllOf(Predicate):
    """Logical AND. An empty AllOf matches everything."""

    predicates: tuple[Predicate, ...] = ()

    def matches(self, record: Any) -> bool:
        return all(p.matches(record) for p in self.predicates)

    def and_(self, *others: Optional[Predicate]) -> "AllOf":
        """New AllOf with extra conjuncts (None entries skipped)."""
        return AllOf(self.predicates + tuple(p for p in others if p is not None))


def escape_search(text: str) -> str:
    """Collapse whitespace and escape regex metacharacters."""
    normalized = re.sub(r"\s+", " ", text.strip())
    return re.escape(normalized)


@dataclass(frozen=True)
class SortKey:
    """One sort key on a canonical path."""

    field: str
    descending: bool = False


@dataclass(frozen=True)
class Pagination:
    """1-based page and page size."""

    page: int = 1
    limit: int = 10

    @property
    def skip(self) -> int:
        return (self.page - 1) * self.limit


@dataclass(frozen=True)
class ListQuery:
    """Filter + sort + pagination triple."""

    predicate: AllOf = field(default_factory=AllOf)
    sort: tuple[SortKey, ...] = ()
    pagination: Pagination = field(default_factory=Pagination)


def sort_records(records: list, keys: tuple[SortKey, ...]) -> list:
    """
    Stable multi-key sort over records; missing values always sort last.

    Applies keys from least to most significant so each direction is honored.
    """
    result = list(records)
    for key in reversed(keys):
        present = [r for r in result if resolve_path(r, key.field) is not None]
        missing = [r for r in result if resolve_path(r, key.field) is None]
        present.sort(
            key=lambda r: _comparable(resolve_path(r, key.field)),
            reverse=key.descending,
        )
        result = present + missing
    return result

