"""Service tests: record creation, updates and identifier ownership."""

from contextlib import contextmanager

import pytest

from conftest import dispatch_data, truck_data
from freight_dispatch.core.errors import IdentifierConflict, NotFound, StoreUnavailable, ValidationError
from freight_dispatch.data.models import DispatchLoadStatus
from freight_dispatch.data.store import InMemoryStore
from freight_dispatch.service import DispatchService


def test_create_draft_has_no_identifiers(service):
    dispatch = service.create_dispatch(dispatch_data())

    assert dispatch.status == DispatchLoadStatus.DRAFT
    assert dispatch.load_number is None
    assert dispatch.age is not None
    assert service.get_dispatch(dispatch.id) == dispatch


def test_create_in_later_status_assigns_identifiers(service):
    published = service.create_dispatch(dispatch_data(status="Published"))
    invoiced = service.create_dispatch(dispatch_data(status="Invoiced"))

    assert published.load_number == 1
    assert invoiced.load_number == 2
    assert invoiced.invoice_number == 1
    assert invoiced.invoice_date is not None


def test_create_ignores_server_managed_fields(service):
    dispatch = service.create_dispatch(dispatch_data(id="mine", createdAt="2000-01-01T00:00:00Z"))

    assert dispatch.id != "mine"
    assert dispatch.created_at.year > 2000


def test_create_rejects_bad_payload(service):
    with pytest.raises(ValidationError) as excinfo:
        service.create_dispatch(dispatch_data(equipment="Spaceship", length=-1))

    fields = {error["field"] for error in excinfo.value.errors}
    assert fields == {"equipment", "length"}


def test_explicit_identifier_is_reserved(service):
    dispatch = service.create_dispatch(dispatch_data(status="Published", loadNumber=500))

    assert dispatch.load_number == 500
    assert service.create_dispatch(dispatch_data(status="Published")).load_number == 501


def test_explicit_identifier_conflict(service):
    service.create_dispatch(dispatch_data(WONumber=40))

    with pytest.raises(IdentifierConflict) as excinfo:
        service.create_dispatch(dispatch_data(WONumber=40))

    assert excinfo.value.suggested == 41
    assert excinfo.value.sequence == "WONumber"


def test_update_changes_fields(service):
    dispatch = service.create_dispatch(dispatch_data())

    updated = service.update_dispatch(dispatch.id, {"specialInstructions": "Straps", "WONumber": 8})

    assert updated.special_instructions == "Straps"
    assert updated.wo_number == 8
    assert updated.updated_at >= dispatch.updated_at
    assert service.get_dispatch(dispatch.id).wo_number == 8


def test_update_cannot_touch_status(service):
    dispatch = service.create_dispatch(dispatch_data())

    with pytest.raises(ValidationError):
        service.update_dispatch(dispatch.id, {"status": "Published"})


def test_load_number_can_be_set_once(service):
    dispatch = service.create_dispatch(dispatch_data())

    first = service.update_dispatch(dispatch.id, {"loadNumber": 30})
    same = service.update_dispatch(dispatch.id, {"loadNumber": 30})

    assert first.load_number == same.load_number == 30
    with pytest.raises(ValidationError) as excinfo:
        service.update_dispatch(dispatch.id, {"loadNumber": 31})
    assert str(excinfo.value) == "loadNumber cannot be changed once assigned"


def test_resending_load_number_in_another_form_is_not_a_change(service):
    dispatch = service.create_dispatch(dispatch_data(status="Published", loadNumber=7))

    updated = service.update_dispatch(dispatch.id, {"loadNumber": "7", "specialInstructions": "Dock 4"})

    assert updated.load_number == 7
    assert updated.special_instructions == "Dock 4"


@pytest.mark.parametrize("field, value", [("invoiceNumber", 9), ("invoiceDate", "2025-03-01T00:00:00Z")])
def test_create_rejects_invoice_fields_before_invoicing(service, field, value):
    with pytest.raises(ValidationError) as excinfo:
        service.create_dispatch(dispatch_data(**{field: value}))

    assert str(excinfo.value) == f"{field} is only assigned once a dispatch is invoiced"
    assert service.list_dispatches().meta["totalCount"] == 0


def test_update_rejects_invoice_number_before_invoicing(service):
    published = service.create_dispatch(dispatch_data(status="Published"))

    with pytest.raises(ValidationError):
        service.update_dispatch(published.id, {"invoiceNumber": 3})

    assert service.get_dispatch(published.id).invoice_number is None
    assert service.sequences.peek("invoiceNumber") == 0


def test_invoicing_through_lifecycle_sets_invoice_date(service):
    dispatch = service.create_dispatch(dispatch_data())

    for status in ("Published", "InTransit", "Delivered", "Completed", "Invoiced"):
        service.transition(dispatch.id, status)

    invoiced = service.get_dispatch(dispatch.id)
    assert invoiced.invoice_number == 1
    assert invoiced.invoice_date is not None


def test_explicit_invoice_number_on_invoiced_dispatch(service):
    dispatch = service.create_dispatch(dispatch_data(status="Invoiced", invoiceNumber=40))

    assert dispatch.invoice_number == 40
    assert dispatch.invoice_date is not None
    assert service.sequences.peek("invoiceNumber") == 40

    with pytest.raises(ValidationError):
        service.update_dispatch(dispatch.id, {"invoiceNumber": 41})
    with pytest.raises(ValidationError) as excinfo:
        service.update_dispatch(dispatch.id, {"invoiceDate": None})
    assert str(excinfo.value) == "invoiceDate cannot be changed once assigned"


def test_update_missing_dispatch(service):
    with pytest.raises(NotFound):
        service.update_dispatch("missing", {"length": 40})


class BusyStore(InMemoryStore):
    """Every compare-and-set loses, as if transitions keep landing first."""

    @contextmanager
    def transaction(self):
        with super().transaction() as uow:
            uow.compare_and_set_dispatch = lambda dispatch, expected: False
            yield uow


def test_update_gives_up_after_repeated_races(config_manager):
    service = DispatchService(store=BusyStore(), config_manager=config_manager)
    dispatch = service.create_dispatch(dispatch_data())

    with pytest.raises(StoreUnavailable):
        service.update_dispatch(dispatch.id, {"length": 40})

    assert service.get_dispatch(dispatch.id).length is None


def test_delete_dispatch(service):
    dispatch = service.create_dispatch(dispatch_data())

    service.delete_dispatch(dispatch.id)

    with pytest.raises(NotFound):
        service.get_dispatch(dispatch.id)
    with pytest.raises(NotFound):
        service.delete_dispatch(dispatch.id)


def test_truck_reference_numbers(service):
    first = service.create_truck(truck_data())
    explicit = service.create_truck(truck_data(referenceNumber=90))
    after = service.create_truck(truck_data())

    assert first.reference_number == 1
    assert explicit.reference_number == 90
    assert after.reference_number == 91
    with pytest.raises(IdentifierConflict):
        service.update_truck(first.id, {"referenceNumber": 90})


def test_update_truck_validates(service):
    truck = service.create_truck(truck_data())

    with pytest.raises(ValidationError):
        service.update_truck(truck.id, {"availableUntil": "2025-01-01T00:00:00Z"})

    updated = service.update_truck(truck.id, {"destination": None})
    assert updated.destination is None
    assert service.get_truck(truck.id).destination is None


def test_refresh_age(service):
    truck = service.create_truck(truck_data())
    dispatch = service.create_dispatch(dispatch_data())

    trucks = service.refresh_age("truck", [truck.id])
    loads = service.refresh_age("load", [dispatch.id, "unknown"])

    assert [t.id for t in trucks] == [truck.id]
    assert trucks[0].age >= truck.age
    assert [d.id for d in loads] == [dispatch.id]


@pytest.mark.parametrize("ids", [[], None, "abc", [1, 2]])
def test_refresh_age_rejects_bad_ids(service, ids):
    with pytest.raises(ValidationError):
        service.refresh_age("truck", ids)


def test_refresh_age_unknown_records(service):
    with pytest.raises(NotFound):
        service.refresh_age("dispatch", ["nope"])


def test_status_transition_through_service(service, notifier):
    dispatch = service.create_dispatch(dispatch_data())

    published = service.transition(dispatch.id, "Published")

    assert published.load_number == 1
    assert service.get_dispatch(dispatch.id).status == DispatchLoadStatus.PUBLISHED
    assert len(notifier.sent) == 1


def test_listing_trucks(service):
    service.create_truck(truck_data(equipment="Reefer"))
    flatbed = service.create_truck(truck_data())

    page = service.list_trucks({"equipment": "Flatbed"})

    assert [t.id for t in page.results] == [flatbed.id]

