"""
Persistence interface consumed by the engine.

A store must provide:
- an atomic increment-and-fetch per named counter,
- a transaction in which counter increments and a compare-and-swap status
  write commit together or not at all,
- predicate queries over dispatches and trucks.
"""

from abc import ABC, abstractmethod
from contextlib import AbstractContextManager
from datetime import datetime
from typing import Optional, TypeVar

from ..models import Dispatch, DispatchLoadStatus, Document, SequenceName, Truck
from ..query import ListQuery, Predicate

RecordT = TypeVar("RecordT", bound=Document)

# Which record type and attribute carries each business identifier.
IDENTIFIER_OWNERS: dict[SequenceName, tuple[type[Document], str]] = {
    SequenceName.LOAD_NUMBER: (Dispatch, "load_number"),
    SequenceName.INVOICE_NUMBER: (Dispatch, "invoice_number"),
    SequenceName.WO_NUMBER: (Dispatch, "wo_number"),
    SequenceName.REFERENCE_NUMBER: (Truck, "reference_number"),
}

# Attributes that must be unique per record type when set.
UNIQUE_FIELDS: dict[type[Document], tuple[str, ...]] = {
    Dispatch: ("load_number", "invoice_number", "wo_number"),
    Truck: ("reference_number",),
}


class UnitOfWork(ABC):
    """Operations that commit atomically at the end of Store.transaction()."""

    @abstractmethod
    def next_sequence(self, name: SequenceName) -> int:
        """Increment-and-fetch inside the transaction."""

    @abstractmethod
    def compare_and_set_dispatch(
        self, dispatch: Dispatch, expected_status: DispatchLoadStatus
    ) -> bool:
        """
        Write the dispatch only if its stored status still equals expected_status.

        Returns False (and writes nothing) when another writer got there first.
        """


class Store(ABC):
    """Document store for dispatches, trucks and sequence counters."""

    # Sequences

    @abstractmethod
    def next_sequence(self, name: SequenceName) -> int:
        """Atomically increment the named counter and return the new value."""

    @abstractmethod
    def peek_sequence(self, name: SequenceName) -> int:
        """Current high-water mark (0 when the counter was never used)."""

    @abstractmethod
    def raise_sequence_floor(self, name: SequenceName, value: int) -> int:
        """Atomically set the counter to max(counter, value); return the result."""

    # Identifiers

    @abstractmethod
    def identifier_in_use(self, name: SequenceName, value: int) -> bool:
        """Whether any record already holds this identifier value."""

    @abstractmethod
    def max_identifier(self, name: SequenceName) -> Optional[int]:
        """Largest identifier value held by any record (migration only)."""

    # Records

    @abstractmethod
    def get(self, kind: type[RecordT], record_id: str) -> Optional[RecordT]:
        """Fetch one record by key."""

    @abstractmethod
    def insert(self, record: RecordT) -> RecordT:
        """Insert a new record. Raises DuplicateIdentifier on a unique clash."""

    @abstractmethod
    def replace(self, record: RecordT) -> bool:
        """Overwrite an existing record. False when it does not exist."""

    @abstractmethod
    def delete(self, kind: type[Document], record_id: str) -> bool:
        """Remove a record. False when it does not exist."""

    @abstractmethod
    def find(self, kind: type[RecordT], predicate: Predicate) -> list[RecordT]:
        """All records matching the predicate, unordered."""

    @abstractmethod
    def query(self, kind: type[RecordT], query: ListQuery) -> tuple[list[RecordT], int]:
        """One sorted page of matching records plus the filtered total count."""

    @abstractmethod
    def touch_age(self, kind: type[RecordT], record_ids: list[str], now: datetime) -> list[RecordT]:
        """Set age = now on the given records; return the ones that existed."""

    # Transactions

    @abstractmethod
    def transaction(self) -> AbstractContextManager[UnitOfWork]:
        """Open a unit of work that commits on clean exit, rolls back on error."""

    def close(self) -> None:
        """Release resources held by the store."""
