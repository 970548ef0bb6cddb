import sys
from pathlib import Path

import pytest

# Make the package and test_support importable without installing the project.
tests_dir = Path(__file__).resolve().parent
root_dir = tests_dir.parents[1]
for path in (str(root_dir), str(tests_dir)):
    if path not in sys.path:
        sys.path.insert(0, path)

from inventory_changelog.inventory import InventoryService  # noqa: E402
from inventory_changelog.services import ChangeLogService  # noqa: E402
from inventory_changelog.stores import CatalogMap, PriceHistoryStore  # noqa: E402
from test_support import FakeClock, InMemoryStore  # noqa: E402


@pytest.fixture
def store():
    return InMemoryStore()


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def inventory(store):
    return InventoryService(store)


@pytest.fixture
def catalog_map(store):
    return CatalogMap(store)


@pytest.fixture
def price_history(store):
    return PriceHistoryStore(store)


@pytest.fixture
def service(store, inventory, catalog_map, price_history, clock):
    return ChangeLogService(
        store,
        inventory,
        catalog_map=catalog_map,
        price_history=price_history,
        clock=clock,
    )
