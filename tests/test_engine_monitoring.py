"""
Tests for safety-stock classification, discard and dashboard statistics.
"""
from datetime import timedelta

import pytest

from conftest import BEEF, CHICKEN, PORK, TODAY
from meatstock.domain.errors import InvalidQuantity, NotFound, OverConsumption
from meatstock.domain.models import MovementType, ProductInventory, StockStatus
from meatstock.domain.safety_stock import below_safety, stock_status


class TestStockStatus:
    @pytest.mark.parametrize("current, safety, expected", [
        (0, 30, StockStatus.OUT),
        (-2, 30, StockStatus.OUT),
        (14.9, 30, StockStatus.CRITICAL),
        (15, 30, StockStatus.LOW),
        (29.999, 30, StockStatus.LOW),
        (30, 30, StockStatus.OK),
        (100, 30, StockStatus.OK),
        (5, 0, StockStatus.OK),
        (0, 0, StockStatus.OUT),
    ])
    def test_thresholds(self, current, safety, expected):
        assert stock_status(current, safety) == expected

    def test_below_safety_most_urgent_first(self):
        rows = [
            ProductInventory(product_id=4, current_stock=20, safety_stock=30),   # low
            ProductInventory(product_id=3, current_stock=50, safety_stock=30),   # ok
            ProductInventory(product_id=2, current_stock=0, safety_stock=30),    # out
            ProductInventory(product_id=1, current_stock=10, safety_stock=30),   # critical
            ProductInventory(product_id=5, current_stock=-1, safety_stock=30),   # out
        ]
        assert [row.product_id for row in below_safety(rows)] == [2, 5, 1, 4]


class TestEngineStatus:
    def test_stock_status_from_projection(self, engine):
        engine.receive(PORK, 40)
        assert engine.stock_status(PORK) == StockStatus.OK
        engine.allocate_outbound(PORK, 20)
        assert engine.stock_status(PORK) == StockStatus.LOW
        engine.allocate_outbound(PORK, 10)
        assert engine.stock_status(PORK) == StockStatus.CRITICAL
        engine.allocate_outbound(PORK, 10)
        assert engine.stock_status(PORK) == StockStatus.OUT

    def test_stock_status_untracked(self, engine):
        with pytest.raises(NotFound):
            engine.stock_status(CHICKEN)

    def test_low_stock(self, engine):
        engine.receive(PORK, 100)
        engine.receive(BEEF, 4)       # safety 10 from the catalog → critical
        engine.receive(CHICKEN, 20)   # safety 30 → low
        assert [row.product_id for row in engine.low_stock()] == [BEEF, CHICKEN]


class TestDiscard:
    def test_discard_without_lot(self, engine):
        lot, _ = engine.receive_lot(PORK, 10)
        movement = engine.discard(PORK, 2, notes="Damaged packaging")
        assert movement.movement_type == MovementType.DISCARD
        assert movement.lot_number is None
        assert engine.current_stock(PORK) == 8
        assert engine.lots.get(lot.id).remaining_quantity == 10

    def test_discard_from_lot(self, engine):
        lot, _ = engine.receive_lot(PORK, 10, traceability_number="TR-9")
        movement = engine.discard(PORK, 4, lot.lot_number)
        assert movement.traceability_number == "TR-9"
        assert engine.lots.get(lot.id).remaining_quantity == 6
        assert engine.current_stock(PORK) == 6

    def test_discard_more_than_lot_holds(self, engine):
        lot, _ = engine.receive_lot(PORK, 3)
        with pytest.raises(OverConsumption):
            engine.discard(PORK, 4, lot.lot_number)
        assert engine.current_stock(PORK) == 3
        assert len(engine.query_movements(PORK)) == 1

    def test_discard_lot_of_other_product(self, engine):
        beef_lot, _ = engine.receive_lot(BEEF, 3)
        engine.receive_lot(PORK, 3)
        with pytest.raises(NotFound):
            engine.discard(PORK, 1, beef_lot.lot_number)

    def test_discard_invalid_quantity(self, engine):
        with pytest.raises(InvalidQuantity):
            engine.discard(PORK, 0)


class TestStats:
    def test_dashboard_figures(self, engine):
        engine.receive_lot(PORK, 40, TODAY + timedelta(days=2))    # expiring
        engine.receive_lot(PORK, 10, TODAY + timedelta(days=10))
        engine.receive_lot(BEEF, 5, TODAY - timedelta(days=1))     # will be swept
        engine.receive_lot(CHICKEN, 2.5, TODAY + timedelta(days=3))  # expiring, low
        engine.sweep(TODAY)

        stats = engine.stats(TODAY)

        assert stats.total_products == 3
        assert stats.total_stock == 57.5
        assert stats.low_stock_count == 2     # beef 5 < 10, chicken 2.5 < 30
        assert stats.expiring_count == 2
        assert stats.expired_count == 1

    def test_empty(self, engine):
        stats = engine.stats()
        assert stats.total_products == 0
        assert stats.total_stock == 0
        assert stats.expiring_count == stats.expired_count == 0
