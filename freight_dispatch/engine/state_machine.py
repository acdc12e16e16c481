"""
Dispatch status lifecycle.

TRANSITIONS is the only place allowed status changes are defined. A transition
assigns missing business identifiers and writes the new status in one store
transaction, guarded by a compare-and-swap on the previous status, and sends a
StatusChanged notification once that transaction has committed.
"""

from datetime import datetime
from time import perf_counter
from typing import Any, Optional

from ..core.config import ConfigManager
from ..core.errors import DuplicateIdentifier, InvalidTransition, NotFound, ValidationError
from ..data.models import Dispatch, DispatchLoadStatus, SequenceName, utcnow
from ..data.store import Store, UnitOfWork
from ..notifications import LoggingNotifier, Notifier, StatusChanged
from .base import BaseComponent
from .sequences import SequenceAllocator

S = DispatchLoadStatus

TRANSITIONS: dict[DispatchLoadStatus, frozenset[DispatchLoadStatus]] = {
    S.DRAFT: frozenset({S.PUBLISHED}),
    S.PUBLISHED: frozenset({S.IN_TRANSIT, S.CANCELLED}),
    S.IN_TRANSIT: frozenset({S.DELIVERED, S.CANCELLED}),
    S.DELIVERED: frozenset({S.COMPLETED}),
    S.COMPLETED: frozenset({S.INVOICED}),
    S.INVOICED: frozenset({S.INVOICED_PAID}),
    S.INVOICED_PAID: frozenset(),
    S.CANCELLED: frozenset(),
}

# Statuses in which a dispatch carries an invoiceNumber and invoiceDate.
INVOICED_STATUSES = frozenset({S.INVOICED, S.INVOICED_PAID})

# Attribute carrying each identifier the lifecycle assigns.
_SEQUENCE_BY_ATTR = {
    "load_number": SequenceName.LOAD_NUMBER,
    "invoice_number": SequenceName.INVOICE_NUMBER,
    "wo_number": SequenceName.WO_NUMBER,
}


def parse_status(value: Any) -> DispatchLoadStatus:
    """Coerce a status, rejecting legacy and misspelled values."""
    if isinstance(value, DispatchLoadStatus):
        return value
    try:
        return DispatchLoadStatus(value)
    except ValueError:
        raise ValidationError(f"Invalid status: {value}") from None


def allowed_targets(status: DispatchLoadStatus) -> frozenset[DispatchLoadStatus]:
    """Statuses reachable from status in one step."""
    return TRANSITIONS[status]


def can_transition(source: DispatchLoadStatus, target: DispatchLoadStatus) -> bool:
    return target in TRANSITIONS[source]


def is_terminal(status: DispatchLoadStatus) -> bool:
    return not TRANSITIONS[status]


def assign_identifiers(
    dispatch: Dispatch,
    target: DispatchLoadStatus,
    allocate,
    now: datetime,
) -> list[str]:
    """
    Fill in identifiers the target status requires.

    A dispatch leaving Draft needs a loadNumber; one entering Invoiced needs an
    invoiceNumber and invoiceDate, each filled independently when missing.
    Values already present are never replaced.
    Returns the names of the attributes that were assigned.
    """
    assigned = []
    if target != S.DRAFT and dispatch.load_number is None:
        dispatch.load_number = allocate(SequenceName.LOAD_NUMBER)
        assigned.append("load_number")
    if target in INVOICED_STATUSES:
        if dispatch.invoice_number is None:
            dispatch.invoice_number = allocate(SequenceName.INVOICE_NUMBER)
            assigned.append("invoice_number")
        if dispatch.invoice_date is None:
            dispatch.invoice_date = now
            assigned.append("invoice_date")
    return assigned


class _StatusMoved(Exception):
    """Compare-and-swap lost: someone else changed the status first."""


class DispatchStateMachine(BaseComponent):
    """
    Applies status transitions to stored dispatches.

    Example:
        >>> machine = DispatchStateMachine(store)
        >>> dispatch = machine.transition(dispatch_id, "Published")
        >>> dispatch.load_number
        1
    """

    def __init__(
        self,
        store: Store,
        notifier: Optional[Notifier] = None,
        sequences: Optional[SequenceAllocator] = None,
        config_manager: Optional[ConfigManager] = None,
    ) -> None:
        super().__init__(component_name="state_machine", store=store, config_manager=config_manager)
        self.notifier = notifier or LoggingNotifier()
        self.sequences = sequences or SequenceAllocator(store, config_manager=self.config_manager)

    def transition(self, dispatch_id: str, target: Any) -> Dispatch:
        """
        Move a dispatch to target status.

        Raises:
            ValidationError: target is not a status
            NotFound: no such dispatch
            InvalidTransition: target not reachable from the current status, or
                another writer changed the status first
        """
        started = perf_counter()
        target = parse_status(target)

        dispatch = self.store.get(Dispatch, dispatch_id)
        if dispatch is None:
            raise NotFound("Dispatch", dispatch_id)

        previous = dispatch.status
        if not can_transition(previous, target):
            self.logger.info(
                "transition_rejected",
                dispatch_id=dispatch_id,
                current=previous.value,
                target=target.value,
            )
            raise InvalidTransition(previous, target)

        updated = dispatch.model_copy(deep=True)
        now = utcnow()
        try:
            with self.store.transaction() as uow:
                assigned = self._apply(updated, previous, target, uow, now)
        except _StatusMoved:
            current = self.store.get(Dispatch, dispatch_id)
            if current is None:
                raise NotFound("Dispatch", dispatch_id) from None
            self.logger.info(
                "transition_lost_race",
                dispatch_id=dispatch_id,
                expected=previous.value,
                found=current.status.value,
                target=target.value,
            )
            raise InvalidTransition(current.status, target) from None
        except DuplicateIdentifier as e:
            sequence = _SEQUENCE_BY_ATTR.get(e.field, SequenceName.LOAD_NUMBER)
            raise self.sequences.conflict(sequence, e.value) from e

        self.log_decision(
            decision_type="status_transition",
            input_data={"dispatch_id": dispatch_id, "target": target.value},
            output_data={
                "dispatch_id": dispatch_id,
                "previous": previous.value,
                "new": target.value,
                "load_number": updated.load_number,
                "assigned": assigned,
            },
            started_at=started,
            finished_at=perf_counter(),
        )
        self._notify(updated, previous)
        return updated

    def _apply(
        self,
        dispatch: Dispatch,
        previous: DispatchLoadStatus,
        target: DispatchLoadStatus,
        uow: UnitOfWork,
        now: datetime,
    ) -> list[str]:
        # Counter increments run before the status write so the SQL store takes
        # its write lock on the first statement of the transaction.
        assigned = assign_identifiers(dispatch, target, uow.next_sequence, now)
        dispatch.status = target
        dispatch.updated_at = now
        if not uow.compare_and_set_dispatch(dispatch, previous):
            raise _StatusMoved()
        return assigned

    def _notify(self, dispatch: Dispatch, previous: DispatchLoadStatus) -> None:
        recipients = dispatch.notification_recipients
        if not recipients:
            return
        template = self.config_manager.get_notification_config().status_template
        event = StatusChanged.for_dispatch(dispatch, previous, template_name=template)
        try:
            self.notifier.notify(event, recipients, event.template_data)
        except Exception as e:
            self.logger.warning(
                "notification_failed",
                dispatch_id=dispatch.id,
                status=dispatch.status.value,
                error=str(e),
            )
