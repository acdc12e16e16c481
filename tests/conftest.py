"""Shared fixtures for the dispatch engine tests."""

from typing import Any

import pytest

from freight_dispatch.core.config import BusinessConfig, ConfigManager
from freight_dispatch.data.store import InMemoryStore, SQLStore
from freight_dispatch.notifications import Notifier
from freight_dispatch.service import DispatchService

HOUSTON = {"str": "Houston, TX", "lat": 29.7604, "lng": -95.3698}
DALLAS = {"str": "Dallas, TX", "lat": 32.7767, "lng": -96.7970}
AUSTIN = {"str": "Austin, TX", "lat": 30.2672, "lng": -97.7431}


class RecordingNotifier(Notifier):
    """Keeps every notification in memory."""

    def __init__(self, fail: bool = False) -> None:
        self.sent: list[tuple[Any, list[str], dict[str, Any]]] = []
        self.fail = fail

    def notify(self, event, recipients, template_data) -> None:
        if self.fail:
            raise RuntimeError("mail server down")
        self.sent.append((event, recipients, template_data))


def dispatch_data(**overrides: Any) -> dict[str, Any]:
    """Wire-format payload for a Houston to Dallas flatbed load."""
    data: dict[str, Any] = {
        "equipment": "Flatbed",
        "shipper": {
            "address": HOUSTON,
            "date": "2025-03-01T08:00:00Z",
            "lateDate": "2025-03-03T17:00:00Z",
            "weight": 40000,
        },
        "consignee": {
            "address": DALLAS,
            "date": "2025-03-04T08:00:00Z",
        },
        "brokerId": "broker-1",
        "customerId": "customer-1",
        "postedBy": "user-1",
    }
    data.update(overrides)
    return data


def truck_data(**overrides: Any) -> dict[str, Any]:
    """Wire-format payload for a flatbed empty near Houston heading to Dallas."""
    data: dict[str, Any] = {
        "origin": {"str": "Houston North, TX", "lat": 29.80, "lng": -95.40},
        "destination": {"str": "Dallas, TX", "lat": 32.78, "lng": -96.80},
        "availableDate": "2025-03-02T00:00:00Z",
        "equipment": "Flatbed",
        "weight": 45000,
        "length": 48,
        "brokerId": "broker-2",
        "postedBy": "user-2",
    }
    data.update(overrides)
    return data


@pytest.fixture
def config_manager(tmp_path):
    """Config with built-in defaults (no config.yaml)."""
    return ConfigManager(config_dir=tmp_path, business_config=BusinessConfig())


@pytest.fixture
def memory_store():
    return InMemoryStore()


@pytest.fixture
def sql_store(tmp_path):
    store = SQLStore(f"sqlite:///{tmp_path / 'dispatch.db'}")
    yield store
    store.close()


@pytest.fixture(params=["memory", "sql"])
def store(request, tmp_path):
    """Each store implementation in turn."""
    if request.param == "memory":
        yield InMemoryStore()
        return
    sql = SQLStore(f"sqlite:///{tmp_path / 'dispatch.db'}")
    yield sql
    sql.close()


@pytest.fixture
def notifier():
    return RecordingNotifier()


@pytest.fixture
def service(store, notifier, config_manager):
    return DispatchService(store=store, notifier=notifier, config_manager=config_manager)


@pytest.fixture
def memory_service(memory_store, notifier, config_manager):
    return DispatchService(store=memory_store, notifier=notifier, config_manager=config_manager)
