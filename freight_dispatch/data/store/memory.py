"""
In-process store.

Every operation runs under one re-entrant lock, which serves as the atomic
primitive for counters and for transactions. Suitable for tests and for a
single-process deployment; multi-instance deployments need SQLStore.
"""

import threading
from collections.abc import Iterator
from contextlib import contextmanager
from datetime import datetime
from typing import Optional

from ...core.errors import DuplicateIdentifier
from ..models import Dispatch, DispatchLoadStatus, Document, SequenceName
from ..query import ListQuery, Predicate, SortKey, sort_records
from .base import IDENTIFIER_OWNERS, UNIQUE_FIELDS, RecordT, Store, UnitOfWork

# Stable order after the caller's sort keys.
_TIEBREAK = (SortKey("created_at"), SortKey("id"))


class _MemoryUnitOfWork(UnitOfWork):
    def __init__(self, store: "InMemoryStore") -> None:
        self._store = store
        self.counters: dict[SequenceName, int] = {}
        self.dispatches: list[Dispatch] = []

    def next_sequence(self, name: SequenceName) -> int:
        current = self.counters.get(name, self._store._counters.get(name, 0))
        self.counters[name] = current + 1
        return current + 1

    def compare_and_set_dispatch(
        self, dispatch: Dispatch, expected_status: DispatchLoadStatus
    ) -> bool:
        stored = self._store._records[Dispatch].get(dispatch.id)
        if stored is None or stored.status != expected_status:
            return False
        self._store._check_unique(dispatch)
        self.dispatches.append(dispatch.model_copy(deep=True))
        return True


class InMemoryStore(Store):
    """Dict-backed store guarded by a single lock."""

    def __init__(self) -> None:
        self._lock = threading.RLock()
        self._counters: dict[SequenceName, int] = {}
        self._records: dict[type[Document], dict[str, Document]] = {
            kind: {} for kind in UNIQUE_FIELDS
        }

    # Sequences

    def next_sequence(self, name: SequenceName) -> int:
        with self._lock:
            value = self._counters.get(name, 0) + 1
            self._counters[name] = value
            return value

    def peek_sequence(self, name: SequenceName) -> int:
        with self._lock:
            return self._counters.get(name, 0)

    def raise_sequence_floor(self, name: SequenceName, value: int) -> int:
        with self._lock:
            self._counters[name] = max(self._counters.get(name, 0), value)
            return self._counters[name]

    # Identifiers

    def identifier_in_use(self, name: SequenceName, value: int) -> bool:
        kind, attr = IDENTIFIER_OWNERS[name]
        with self._lock:
            return any(getattr(r, attr) == value for r in self._records[kind].values())

    def max_identifier(self, name: SequenceName) -> Optional[int]:
        kind, attr = IDENTIFIER_OWNERS[name]
        with self._lock:
            values = [getattr(r, attr) for r in self._records[kind].values()]
        values = [v for v in values if v is not None]
        return max(values) if values else None

    # Records

    def _check_unique(self, record: Document) -> None:
        kind = type(record)
        for attr in UNIQUE_FIELDS[kind]:
            value = getattr(record, attr)
            if value is None:
                continue
            for other in self._records[kind].values():
                if other.id != record.id and getattr(other, attr) == value:
                    raise DuplicateIdentifier(attr, value)

    def get(self, kind: type[RecordT], record_id: str) -> Optional[RecordT]:
        with self._lock:
            record = self._records[kind].get(record_id)
            return record.model_copy(deep=True) if record is not None else None

    def insert(self, record: RecordT) -> RecordT:
        with self._lock:
            if record.id in self._records[type(record)]:
                raise DuplicateIdentifier("id", record.id)
            self._check_unique(record)
            self._records[type(record)][record.id] = record.model_copy(deep=True)
            return record

    def replace(self, record: RecordT) -> bool:
        with self._lock:
            if record.id not in self._records[type(record)]:
                return False
            self._check_unique(record)
            self._records[type(record)][record.id] = record.model_copy(deep=True)
            return True

    def delete(self, kind: type[Document], record_id: str) -> bool:
        with self._lock:
            return self._records[kind].pop(record_id, None) is not None

    def find(self, kind: type[RecordT], predicate: Predicate) -> list[RecordT]:
        with self._lock:
            snapshot = list(self._records[kind].values())
        return [r.model_copy(deep=True) for r in snapshot if predicate.matches(r)]

    def query(self, kind: type[RecordT], query: ListQuery) -> tuple[list[RecordT], int]:
        matched = sort_records(self.find(kind, query.predicate), query.sort + _TIEBREAK)
        start = query.pagination.skip
        return matched[start:start + query.pagination.limit], len(matched)

    def touch_age(self, kind: type[RecordT], record_ids: list[str], now: datetime) -> list[RecordT]:
        updated = []
        with self._lock:
            for record_id in record_ids:
                record = self._records[kind].get(record_id)
                if record is None:
                    continue
                record.age = now
                updated.append(record.model_copy(deep=True))
        return updated

    # Transactions

    @contextmanager
    def transaction(self) -> Iterator[UnitOfWork]:
        with self._lock:
            uow = _MemoryUnitOfWork(self)
            yield uow
            # Only reached when the block exited cleanly.
            self._counters.update(uow.counters)
            for dispatch in uow.dispatches:
                self._records[Dispatch][dispatch.id] = dispatch

