"""Store tests: both implementations must agree on identity, queries and counters."""

from datetime import datetime, timedelta, timezone
from decimal import Decimal

import pytest

from conftest import dispatch_data, truck_data
from freight_dispatch.core.config import ConfigManager
from freight_dispatch.core.errors import DuplicateIdentifier, StoreUnavailable
from freight_dispatch.data.models import Dispatch, DispatchLoadStatus, SequenceName, Truck
from freight_dispatch.data.query import AllOf, AnyOf, Eq, ListQuery, Missing, Pagination, Range, SortKey
from freight_dispatch.data.store import InMemoryStore, SQLStore, create_store


def make_dispatch(**overrides) -> Dispatch:
    return Dispatch.model_validate(dispatch_data(**overrides))


def make_truck(**overrides) -> Truck:
    return Truck.model_validate(truck_data(**overrides))


def test_insert_and_get_round_trip(store):
    dispatch = make_dispatch(
        loadNumber=9,
        allInRate="1850.50",
        carrierFee={"totalAmount": "1500.00", "breakdown": {"type": "FlatRate", "rate": "1500"}},
    )
    store.insert(dispatch)

    loaded = store.get(Dispatch, dispatch.id)

    assert loaded == dispatch
    assert loaded.all_in_rate == Decimal("1850.50")
    assert loaded.carrier_fee.total_amount == Decimal("1500.00")
    assert loaded.shipper.date.tzinfo is not None


def test_get_missing(store):
    assert store.get(Dispatch, "nope") is None
    assert store.get(Truck, "nope") is None


def test_duplicate_identifier_is_rejected(store):
    store.insert(make_dispatch(loadNumber=5))

    with pytest.raises(DuplicateIdentifier) as excinfo:
        store.insert(make_dispatch(loadNumber=5))

    assert excinfo.value.field == "load_number"
    assert excinfo.value.value == 5


def test_missing_identifiers_do_not_collide(store):
    store.insert(make_dispatch())
    store.insert(make_dispatch())

    assert store.max_identifier(SequenceName.LOAD_NUMBER) is None


def test_replace_and_delete(store):
    truck = make_truck()
    store.insert(truck)

    changed = truck.model_copy(update={"comments": "team drivers"})
    assert store.replace(changed)
    assert store.get(Truck, truck.id).comments == "team drivers"

    assert store.delete(Truck, truck.id)
    assert not store.delete(Truck, truck.id)
    assert not store.replace(changed)


def test_identifier_lookups(store):
    store.insert(make_dispatch(loadNumber=3, WONumber=700))
    store.insert(make_truck(referenceNumber=12))

    assert store.identifier_in_use(SequenceName.LOAD_NUMBER, 3)
    assert not store.identifier_in_use(SequenceName.LOAD_NUMBER, 4)
    assert store.identifier_in_use(SequenceName.WO_NUMBER, 700)
    assert store.max_identifier(SequenceName.REFERENCE_NUMBER) == 12


def test_find_with_nested_predicates(store):
    going_anywhere = make_truck(destination=None)
    reefer = make_truck(equipment="Reefer")
    store.insert(going_anywhere)
    store.insert(reefer)
    store.insert(make_truck())

    anywhere = store.find(Truck, AllOf((Missing("destination"),)))
    reefers = store.find(Truck, AllOf((Eq("equipment", "Reefer"), Range("origin.lat", gte=29.0, lte=30.0))))
    nothing = store.find(Truck, AnyOf(()))

    assert [t.id for t in anywhere] == [going_anywhere.id]
    assert [t.id for t in reefers] == [reefer.id]
    assert nothing == []


def test_query_sorts_missing_last_and_counts(store):
    base = datetime(2025, 1, 1, tzinfo=timezone.utc)
    records = [
        make_truck(weight=weight, createdAt=(base + timedelta(minutes=i)).isoformat())
        for i, weight in enumerate([42000, None, 48000, 45000])
    ]
    for record in records:
        store.insert(record)

    query = ListQuery(sort=(SortKey("weight", descending=True),), pagination=Pagination(page=1, limit=3))
    items, total = store.query(Truck, query)

    assert total == 4
    assert [t.weight for t in items] == [48000, 45000, 42000]

    second = ListQuery(sort=query.sort, pagination=Pagination(page=2, limit=3))
    items, _ = store.query(Truck, second)
    assert [t.weight for t in items] == [None]


def test_query_defaults_to_creation_order(store):
    base = datetime(2025, 1, 1, tzinfo=timezone.utc)
    later = make_truck(createdAt=(base + timedelta(hours=1)).isoformat())
    earlier = make_truck(createdAt=base.isoformat())
    store.insert(later)
    store.insert(earlier)

    items, _ = store.query(Truck, ListQuery())

    assert [t.id for t in items] == [earlier.id, later.id]


def test_date_range_on_stored_dates(store):
    early = make_dispatch()
    late = make_dispatch(shipper={**dispatch_data()["shipper"], "date": "2025-06-01T00:00:00Z", "lateDate": None})
    store.insert(early)
    store.insert(late)

    found = store.find(
        Dispatch,
        Range("shipper.date", gte=datetime(2025, 5, 1, tzinfo=timezone.utc)),
    )

    assert [d.id for d in found] == [late.id]


def test_touch_age(store):
    truck = make_truck()
    store.insert(truck)
    now = datetime(2025, 3, 1, 12, tzinfo=timezone.utc)

    updated = store.touch_age(Truck, [truck.id, "unknown"], now)

    assert [t.id for t in updated] == [truck.id]
    assert store.get(Truck, truck.id).age == now


def test_compare_and_set(store):
    dispatch = make_dispatch()
    store.insert(dispatch)
    published = dispatch.model_copy(update={"status": DispatchLoadStatus.PUBLISHED})

    with store.transaction() as uow:
        assert not uow.compare_and_set_dispatch(published, DispatchLoadStatus.COMPLETED)
    assert store.get(Dispatch, dispatch.id).status == DispatchLoadStatus.DRAFT

    with store.transaction() as uow:
        assert uow.compare_and_set_dispatch(published, DispatchLoadStatus.DRAFT)
    assert store.get(Dispatch, dispatch.id).status == DispatchLoadStatus.PUBLISHED


def test_failed_transaction_rolls_back_sequence(store):
    with pytest.raises(RuntimeError):
        with store.transaction() as uow:
            uow.next_sequence(SequenceName.INVOICE_NUMBER)
            raise RuntimeError("abort")

    assert store.peek_sequence(SequenceName.INVOICE_NUMBER) == 0


def test_raise_sequence_floor_never_lowers(store):
    assert store.raise_sequence_floor(SequenceName.LOAD_NUMBER, 10) == 10
    assert store.raise_sequence_floor(SequenceName.LOAD_NUMBER, 4) == 10
    assert store.next_sequence(SequenceName.LOAD_NUMBER) == 11


def test_sql_store_survives_reopen(tmp_path):
    url = f"sqlite:///{tmp_path / 'reopen.db'}"
    first = SQLStore(url)
    dispatch = make_dispatch(loadNumber=1)
    first.insert(dispatch)
    first.next_sequence(SequenceName.LOAD_NUMBER)
    first.close()

    second = SQLStore(url)
    try:
        assert second.get(Dispatch, dispatch.id) == dispatch
        assert second.next_sequence(SequenceName.LOAD_NUMBER) == 2
    finally:
        second.close()


def test_unreachable_database_is_store_unavailable(tmp_path):
    with pytest.raises(StoreUnavailable):
        SQLStore(f"sqlite:///{tmp_path / 'missing' / 'dir' / 'dispatch.db'}")


def test_create_store_from_environment(tmp_path, monkeypatch):
    monkeypatch.setenv("DATABASE_URL", "memory://")
    assert isinstance(create_store(ConfigManager(config_dir=tmp_path)), InMemoryStore)

    monkeypatch.setenv("DATABASE_URL", f"sqlite:///{tmp_path / 'env.db'}")
    store = create_store(ConfigManager(config_dir=tmp_path))
    try:
        assert isinstance(store, SQLStore)
    finally:
        store.close()
