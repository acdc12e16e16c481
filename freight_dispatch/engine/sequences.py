"""
Business identifier allocation.

Hands out loadNumber, invoiceNumber, WONumber and referenceNumber values from
per-name atomic counters kept in the store. Values are unique and increase
monotonically; gaps are allowed (a rolled-back transaction burns its value).
"""

from time import perf_counter
from typing import Any, Optional

from ..core.config import ConfigManager
from ..core.errors import IdentifierConflict, ValidationError
from ..data.models import ReservationResult, SequenceName
from ..data.store import Store
from .base import BaseComponent


def parse_sequence_name(name: Any) -> SequenceName:
    """Coerce a sequence name, rejecting anything outside the closed set."""
    if isinstance(name, SequenceName):
        return name
    try:
        return SequenceName(name)
    except ValueError:
        raise ValidationError(f"Unknown sequence: {name}") from None


class SequenceAllocator(BaseComponent):
    """
    Allocator over the store's atomic counters.

    next() never scans the entity collections, so it stays correct with any
    number of concurrent callers and processes sharing the store.
    """

    def __init__(self, store: Store, config_manager: Optional[ConfigManager] = None) -> None:
        super().__init__(component_name="sequences", store=store, config_manager=config_manager)

    def next(self, name: Any) -> int:
        """Allocate the next value for a sequence."""
        sequence = parse_sequence_name(name)
        value = self.store.next_sequence(sequence)
        self.logger.debug("sequence_allocated", sequence=sequence.value, value=value)
        return value

    def peek(self, name: Any) -> int:
        """Current high-water mark of a sequence (0 if never allocated)."""
        return self.store.peek_sequence(parse_sequence_name(name))

    def reserve(self, name: Any, value: Any) -> ReservationResult:
        """
        Claim an explicitly chosen identifier.

        Succeeds when no record holds the value; the counter is then raised to at
        least that value so next() never hands it out. On conflict the result
        carries the value next() would return as a suggestion.
        """
        sequence = parse_sequence_name(name)
        if isinstance(value, bool) or not isinstance(value, int) or value < 1:
            raise ValidationError(f"{sequence.value} must be a positive integer")

        if self.store.identifier_in_use(sequence, value):
            suggested = self.store.peek_sequence(sequence) + 1
            self.logger.info(
                "sequence_reservation_conflict",
                sequence=sequence.value,
                value=value,
                suggested=suggested,
            )
            return ReservationResult(ok=False, value=value, suggested=suggested)

        self.store.raise_sequence_floor(sequence, value)
        return ReservationResult(ok=True, value=value)

    def reserve_or_raise(self, name: Any, value: Any) -> int:
        """reserve(), raising IdentifierConflict when the value is taken."""
        result = self.reserve(name, value)
        if not result.ok:
            raise IdentifierConflict(parse_sequence_name(name).value, value, result.suggested)
        return value

    def conflict(self, name: SequenceName, value: int) -> IdentifierConflict:
        """Conflict error for a value the store's unique index rejected."""
        return IdentifierConflict(name.value, value, self.store.peek_sequence(name) + 1)

    def sync(self, name: Any) -> int:
        """
        Raise a counter to the largest identifier already held by a record.

        For migrating data numbered before counters existed. Never needed on
        the allocation path.
        """
        sequence = parse_sequence_name(name)
        started = perf_counter()
        highest = self.store.max_identifier(sequence) or 0
        value = self.store.raise_sequence_floor(sequence, highest)
        self.log_decision(
            decision_type="sequence_sync",
            input_data={"sequence": sequence.value},
            output_data={"sequence": sequence.value, "highest_in_use": highest, "counter": value},
            started_at=started,
            finished_at=perf_counter(),
        )
        return value
