"""
Shared fixtures: fixed clock, small catalog, memory and SQLite stores.
"""
from datetime import date, datetime, timedelta

import pytest

from meatstock.domain.models import Product
from meatstock.persistence.memory import MemoryStore
from meatstock.persistence.sqlite_store import SqliteStore
from meatstock.workflows.engine import InventoryEngine

TODAY = date(2025, 9, 26)

PORK, BEEF, CHICKEN = 1, 2, 3

CATALOG = {
    PORK: Product(id=PORK, name="Pork belly", unit="kg", category="pork"),
    BEEF: Product(id=BEEF, name="Beef sirloin", unit="kg", category="소고기", safety_stock=10.0),
    CHICKEN: Product(id=CHICKEN, name="Chicken breast", unit="kg", category="poultry"),
}


class FixedClock:
    """Callable clock that only moves when told to."""

    def __init__(self, now: datetime):
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs):
        self.now += timedelta(**kwargs)


@pytest.fixture
def clock():
    return FixedClock(datetime(2025, 9, 26, 9, 0, 0))


@pytest.fixture(params=["memory", "sqlite"])
def store(request, tmp_path):
    """Every contract test runs against both backends."""
    if request.param == "memory":
        yield MemoryStore()
    else:
        sqlite_store = SqliteStore(tmp_path / "stock.db")
        yield sqlite_store
        sqlite_store.close()


@pytest.fixture
def engine(store, clock):
    return InventoryEngine(store, catalog=CATALOG, clock=clock)
