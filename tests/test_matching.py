"""Matching engine tests: strict and relaxed passes, ranking and deadhead search."""

import pytest

from conftest import AUSTIN, DALLAS, HOUSTON, RecordingNotifier, dispatch_data, truck_data
from freight_dispatch.core.config import BusinessConfig, ConfigManager, NotificationConfig
from freight_dispatch.core.errors import NotFound, ValidationError
from freight_dispatch.data.models import GeoPoint, MatchPass
from freight_dispatch.engine.geo import EARTH_RADIUS_MILES, bounding_box, haversine_miles
from freight_dispatch.service import DispatchService

CONROE = {"str": "Conroe, TX", "lat": 30.30, "lng": -95.46}


@pytest.fixture
def load(service):
    return service.create_dispatch(dispatch_data(status="Published"))


def ids(page):
    return [item.id for item in page.results]


# Distances


def test_one_degree_of_longitude_shrinks_toward_the_pole():
    equator = haversine_miles(GeoPoint(label="a", lat=0, lng=0), GeoPoint(label="b", lat=0, lng=1))
    polar = haversine_miles(GeoPoint(label="a", lat=89, lng=0), GeoPoint(label="b", lat=89, lng=1))

    assert equator == pytest.approx(69.09, abs=0.05)
    assert polar == pytest.approx(1.21, abs=0.05)
    assert equator != polar


def test_bounding_box_contains_the_circle():
    center = GeoPoint(label="Houston", lat=29.7604, lng=-95.3698)
    box = bounding_box(center, 25)

    east = GeoPoint(label="e", lat=center.lat, lng=box.max_lng - 1e-6)
    north = GeoPoint(label="n", lat=box.max_lat - 1e-6, lng=center.lng)
    assert haversine_miles(center, east) == pytest.approx(25, abs=0.5)
    assert haversine_miles(center, north) == pytest.approx(25, abs=0.01)
    assert box.max_lat - center.lat == pytest.approx(25 / EARTH_RADIUS_MILES * 57.29578, rel=1e-6)


def test_bounding_box_drops_longitude_near_pole_and_antimeridian():
    assert bounding_box(GeoPoint(label="p", lat=89.9, lng=10), 25).min_lng is None
    assert bounding_box(GeoPoint(label="f", lat=0, lng=179.9), 25).max_lng is None
    assert bounding_box(GeoPoint(label="h", lat=29.76, lng=-95.37), 25).min_lng is not None


# Trucks for a load


def test_houston_flatbed_scenario(service, load):
    truck_a = service.create_truck(truck_data())
    truck_b = service.create_truck(truck_data(equipment="Reefer", origin=HOUSTON))

    page = service.match_trucks_for_load(load.id)

    assert page.match_pass == MatchPass.STRICT
    assert ids(page) == [truck_a.id]
    assert truck_b.id not in ids(page)
    assert page.results[0].dho_distance < 5
    assert page.results[0].dhd_distance < 2


def test_reefer_is_excluded_from_relaxed_pass_too(service, load):
    service.create_truck(truck_data(equipment="Reefer", origin=HOUSTON))

    page = service.match_trucks_for_load(load.id)

    assert page.match_pass == MatchPass.NONE
    assert page.results == []
    assert page.total_count == 0
    assert page.total_pages == 0


def test_closer_truck_ranks_first(service, load):
    farther = service.create_truck(truck_data(origin={"str": "Spring, TX", "lat": 29.95, "lng": -95.45}))
    closer = service.create_truck(truck_data())

    page = service.match_trucks_for_load(load.id)

    assert ids(page) == [closer.id, farther.id]


def test_truck_without_destination_matches_anywhere(service, load):
    truck = service.create_truck(truck_data(destination=None))

    page = service.match_trucks_for_load(load.id)

    assert ids(page) == [truck.id]
    assert page.results[0].dhd_distance is None


def test_relaxed_pass_when_strict_is_empty(service, load):
    # About 38 miles from the pickup: outside 25, inside 50.
    truck = service.create_truck(truck_data(origin=CONROE, destination=None))

    page = service.match_trucks_for_load(load.id)

    assert page.match_pass == MatchPass.RELAXED
    assert ids(page) == [truck.id]
    assert 25 < page.results[0].dho_distance < 50


def test_relaxed_pass_ignores_dates(service, load):
    truck = service.create_truck(truck_data(availableDate="2025-04-20T00:00:00Z"))

    page = service.match_trucks_for_load(load.id)

    assert page.match_pass == MatchPass.RELAXED
    assert ids(page) == [truck.id]


def test_relaxed_pass_accepts_destination_proximity_alone(service, load):
    truck = service.create_truck(truck_data(origin=AUSTIN))

    page = service.match_trucks_for_load(load.id)

    assert page.match_pass == MatchPass.RELAXED
    assert ids(page) == [truck.id]


def test_strict_match_wins_over_relaxed_candidates(service, load):
    strict = service.create_truck(truck_data())
    service.create_truck(truck_data(origin=CONROE))

    page = service.match_trucks_for_load(load.id)

    assert page.match_pass == MatchPass.STRICT
    assert ids(page) == [strict.id]


def test_availability_window_overlap(service):
    load = service.create_dispatch(dispatch_data(status="Published"))
    spans_pickup = service.create_truck(
        truck_data(availableDate="2025-02-25T00:00:00Z", availableUntil="2025-03-01T00:00:00Z")
    )
    service.create_truck(
        truck_data(availableDate="2025-02-20T00:00:00Z", availableUntil="2025-02-28T00:00:00Z")
    )

    page = service.match_trucks_for_load(load.id)

    assert page.match_pass == MatchPass.STRICT
    assert ids(page) == [spans_pickup.id]


@pytest.mark.parametrize("weight", [30000, None])
def test_capacity_is_never_relaxed(service, load, weight):
    service.create_truck(truck_data(weight=weight))

    page = service.match_trucks_for_load(load.id)

    assert page.match_pass == MatchPass.NONE


def test_load_length_requires_truck_length(service):
    load = service.create_dispatch(dispatch_data(status="Published", length=53))
    service.create_truck(truck_data(length=48))
    long_deck = service.create_truck(truck_data(length=53))

    page = service.match_trucks_for_load(load.id)

    assert ids(page) == [long_deck.id]


def test_special_instructions_match_literally(service):
    load = service.create_dispatch(dispatch_data(status="Published", specialInstructions="Tarps (8ft)"))
    tarped = service.create_truck(truck_data(comments="Has TARPS (8FT) and chains"))
    service.create_truck(truck_data(comments="tarps 8ft"))

    page = service.match_trucks_for_load(load.id)

    assert page.match_pass == MatchPass.STRICT
    assert ids(page) == [tarped.id]


def test_caller_sort_takes_precedence(service, load):
    light = service.create_truck(truck_data(weight=41000))
    heavy = service.create_truck(truck_data(weight=48000, origin={"str": "Spring", "lat": 29.95, "lng": -95.45}))

    page = service.match_trucks_for_load(load.id, sort="weight:desc")

    assert ids(page) == [heavy.id, light.id]


def test_pagination_over_matches(service, load):
    for _ in range(5):
        service.create_truck(truck_data())

    page = service.match_trucks_for_load(load.id, page=2, limit=2)

    assert page.total_count == 5
    assert page.total_pages == 3
    assert len(page.results) == 2
    assert page.meta == {"page": 2, "limit": 2, "totalPages": 3, "totalCount": 5, "matchPass": "strict"}


def test_unknown_load(service):
    with pytest.raises(NotFound):
        service.match_trucks_for_load("missing")


# Loads for a truck


def test_loads_for_truck_only_considers_published(service):
    published = service.create_dispatch(dispatch_data(status="Published"))
    service.create_dispatch(dispatch_data())
    truck = service.create_truck(truck_data())

    page = service.match_loads_for_truck(truck.id)

    assert page.match_pass == MatchPass.STRICT
    assert ids(page) == [published.id]
    assert page.results[0].dho_distance < 5


def test_loads_for_truck_falls_back(service):
    load = service.create_dispatch(dispatch_data(status="Published"))
    truck = service.create_truck(truck_data(origin=CONROE))

    page = service.match_loads_for_truck(truck.id)

    assert page.match_pass == MatchPass.RELAXED
    assert ids(page) == [load.id]


def test_loads_for_truck_empty(service):
    truck = service.create_truck(truck_data())

    page = service.match_loads_for_truck(truck.id)

    assert page.match_pass == MatchPass.NONE
    assert page.results == []


def test_unknown_truck(service):
    with pytest.raises(NotFound):
        service.match_loads_for_truck("missing")


# Match notifications


def test_match_found_notification_is_opt_in(store, tmp_path):
    notifier = RecordingNotifier()
    config = ConfigManager(
        config_dir=tmp_path,
        business_config=BusinessConfig(notifications=NotificationConfig(match_found=True)),
    )
    service = DispatchService(store=store, notifier=notifier, config_manager=config)
    load = service.create_dispatch(dispatch_data(status="Published", brokerId="broker-9", postedBy="broker-9"))
    service.create_truck(truck_data())
    notifier.sent.clear()

    service.match_trucks_for_load(load.id)

    event, recipients, template_data = notifier.sent[-1]
    assert recipients == ["broker-9"]
    assert event.template_name == "loadMatchNotification"
    assert template_data["totalCount"] == 1
    assert template_data["matchPass"] == "strict"


def test_no_match_notification_by_default(service, load, notifier):
    service.create_truck(truck_data())
    notifier.sent.clear()

    service.match_trucks_for_load(load.id)

    assert notifier.sent == []


# Deadhead search


def test_search_loads_by_deadhead(service):
    houston_load = service.create_dispatch(dispatch_data(status="Published"))
    service.create_dispatch(
        dispatch_data(status="Published", shipper={"address": AUSTIN, "date": "2025-03-01T08:00:00Z"})
    )

    page = service.search_loads_by_deadhead(origin=HOUSTON, dho_radius=50)

    assert ids(page) == [houston_load.id]
    assert page.results[0].dho_distance == 0
    assert page.results[0].dhd_distance is None
    assert page.total_count == 1


def test_search_loads_by_both_ends(service):
    service.create_dispatch(dispatch_data(status="Published"))
    austin_bound = service.create_dispatch(
        dispatch_data(consignee={"address": AUSTIN, "date": "2025-03-04T08:00:00Z"})
    )

    page = service.search_loads_by_deadhead(origin=HOUSTON, destination=AUSTIN, dho_radius=10, dhd_radius=10)

    assert ids(page) == [austin_bound.id]


def test_search_loads_applies_listing_filters(service):
    service.create_dispatch(dispatch_data(status="Published"))
    draft = service.create_dispatch(dispatch_data())

    page = service.search_loads_by_deadhead(
        destination=DALLAS, dhd_radius=5, params={"status": "Draft"}
    )

    assert ids(page) == [draft.id]


def test_search_loads_requires_a_point(service):
    with pytest.raises(ValidationError):
        service.search_loads_by_deadhead(params={})


def test_search_loads_rejects_bad_coordinates(service):
    with pytest.raises(ValidationError):
        service.search_loads_by_deadhead(origin={"str": "nowhere", "lat": 95, "lng": 0})
