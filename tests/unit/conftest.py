"""
Shared fixtures for the unit tests.
"""

import pytest

from troupe.engine.inventory import InventoryManager

from fakes import CALLS, FakeConnections, SleepModule


@pytest.fixture(autouse=True)
def reset_calls():
    CALLS.clear()
    SleepModule.active = 0
    SleepModule.peak = 0
    yield
    CALLS.clear()


@pytest.fixture
def inventory() -> InventoryManager:
    return InventoryManager.from_dict({
        "hosts": {
            "web1": {"groups": ["webservers"]},
            "web2": {"groups": ["webservers"]},
            "db1": {"groups": ["dbservers"]},
        },
        "groups": {
            "webservers": {"vars": {"http_port": 80}},
            "dbservers": {"vars": {"db_port": 5432}},
        },
    })


@pytest.fixture
def connections() -> FakeConnections:
    return FakeConnections()
