"""
Tests for the movement ledger and the aggregate inventory projection.
"""
from dataclasses import replace
from datetime import datetime

import pytest

from conftest import BEEF, CHICKEN, PORK
from meatstock.domain.errors import InvalidQuantity, NotFound
from meatstock.domain.models import (
    MovementType,
    ReferenceType,
    StockMovement,
    StorageLocation,
)


class TestLedgerAppend:
    def test_append_assigns_id_and_timestamp(self, engine, clock):
        stored = engine.ledger.append(StockMovement(PORK, MovementType.IN, 5))
        assert stored.id is not None
        assert stored.created_at == clock.now
        assert stored.product_name == "Pork belly"
        assert stored.unit == "kg"

    @pytest.mark.parametrize("movement_type", [MovementType.IN, MovementType.OUT, MovementType.DISCARD])
    def test_zero_quantity_rejected(self, engine, movement_type):
        with pytest.raises(InvalidQuantity):
            engine.ledger.append(StockMovement(PORK, movement_type, 0))
        assert engine.query_movements(PORK) == []

    def test_append_updates_projection(self, engine):
        engine.ledger.append(StockMovement(PORK, MovementType.IN, 5))
        engine.ledger.append(StockMovement(PORK, MovementType.DISCARD, 1.5))
        engine.ledger.append(StockMovement(PORK, MovementType.ADJUST, -0.5))
        assert engine.current_stock(PORK) == 3

    def test_absolute_adjust_stores_delta(self, engine):
        engine.receive(PORK, 12)
        stored = engine.ledger.append(StockMovement(PORK, MovementType.ADJUST, 20), absolute=True)
        assert stored.quantity == 8
        assert engine.current_stock(PORK) == 20

    def test_absolute_adjust_target_cannot_be_negative(self, engine):
        with pytest.raises(InvalidQuantity):
            engine.ledger.append(StockMovement(PORK, MovementType.ADJUST, -1), absolute=True)

    def test_query_by_product_is_chronological(self, engine, clock):
        for qty in (1, 2, 3):
            engine.ledger.append(StockMovement(PORK, MovementType.IN, qty))
            clock.advance(minutes=5)
        engine.ledger.append(StockMovement(BEEF, MovementType.IN, 9))

        movements = engine.query_movements(PORK)
        assert [m.quantity for m in movements] == [1, 2, 3]
        assert [m.quantity for m in engine.query_movements(PORK, limit=2)] == [2, 3]
        assert [m.quantity for m in engine.query_movements(PORK, limit=10)] == [1, 2, 3]
        assert engine.query_movements(PORK, limit=0) == []

        since = datetime(2025, 9, 26, 9, 5)
        assert [m.quantity for m in engine.query_movements(PORK, since=since)] == [2, 3]

    def test_query_by_transaction(self, engine):
        engine.ledger.append(StockMovement(PORK, MovementType.IN, 1, transaction_id=5))
        engine.ledger.append(StockMovement(BEEF, MovementType.IN, 2, transaction_id=5))
        engine.ledger.append(StockMovement(BEEF, MovementType.IN, 3, transaction_id=6))
        assert [m.quantity for m in engine.ledger.query_by_transaction(5)] == [1, 2]

    def test_balance(self, engine):
        engine.receive(PORK, 10)
        engine.allocate_outbound(PORK, 4)
        assert engine.ledger.balance(PORK) == 6
        assert engine.ledger.balance(CHICKEN) == 0


class TestProjection:
    def test_receive_then_adjust(self, engine):
        """Counted 80 after receiving 100: stock 80, adjust movement of -20."""
        engine.receive(PORK, 100)
        engine.adjust_to(PORK, 80)

        assert engine.current_stock(PORK) == 80
        adjusts = [m for m in engine.query_movements(PORK) if m.movement_type == MovementType.ADJUST]
        assert len(adjusts) == 1
        assert adjusts[0].quantity == -20
        assert adjusts[0].reference_type == ReferenceType.ADJUSTMENT
        assert engine.ledger.balance(PORK) == 80

    def test_adjust_to_same_value_is_recorded(self, engine):
        engine.receive(PORK, 10)
        movement = engine.adjust_to(PORK, 10)
        assert movement.quantity == 0
        assert len(engine.query_movements(PORK)) == 2

    def test_adjust_to_negative_rejected(self, engine):
        engine.receive(PORK, 10)
        with pytest.raises(InvalidQuantity):
            engine.adjust_to(PORK, -1)
        assert engine.current_stock(PORK) == 10

    def test_adjust_does_not_touch_lots(self, engine):
        lot, _ = engine.receive_lot(PORK, 10)
        engine.adjust_to(PORK, 3)
        assert engine.lots.get(lot.id).remaining_quantity == 10

    def test_untracked_product(self, engine):
        with pytest.raises(NotFound, match="no inventory tracking"):
            engine.current_stock(CHICKEN)

    def test_row_created_with_defaults(self, engine):
        engine.receive(PORK, 5)
        row = engine.projection.get(PORK)
        assert row.safety_stock == 30
        assert row.location == StorageLocation.COLD
        assert row.product_name == "Pork belly"

    def test_catalog_safety_stock_used(self, engine):
        engine.receive(BEEF, 5)
        assert engine.projection.get(BEEF).safety_stock == 10

    def test_receive_settings_only_on_creation(self, engine):
        engine.receive(PORK, 5, safety_stock=12, location=StorageLocation.FROZEN)
        engine.receive(PORK, 5, safety_stock=99, location=StorageLocation.ROOM)
        row = engine.projection.get(PORK)
        assert row.current_stock == 10
        assert row.safety_stock == 12
        assert row.location == StorageLocation.FROZEN

    def test_receive_invalid_quantity(self, engine):
        with pytest.raises(InvalidQuantity):
            engine.receive(PORK, 0)

    def test_enable_tracking_is_idempotent(self, engine):
        first = engine.projection.enable_tracking(CHICKEN, safety_stock=5)
        second = engine.projection.enable_tracking(CHICKEN, safety_stock=50)
        assert first.safety_stock == second.safety_stock == 5
        assert engine.current_stock(CHICKEN) == 0

    def test_update_settings(self, engine, clock):
        engine.receive(PORK, 5)
        clock.advance(hours=1)
        row = engine.projection.update_settings(PORK, safety_stock=8, location=StorageLocation.FROZEN)
        assert row.safety_stock == 8
        assert row.location == StorageLocation.FROZEN
        assert row.current_stock == 5
        assert engine.projection.get(PORK).last_updated == clock.now

    def test_update_settings_requires_tracking(self, engine):
        with pytest.raises(NotFound):
            engine.projection.update_settings(CHICKEN, safety_stock=1)

    def test_list_all(self, engine):
        engine.receive(BEEF, 1)
        engine.receive(PORK, 1)
        assert [row.product_id for row in engine.projection.list_all()] == [PORK, BEEF]

    def test_last_updated_follows_clock(self, engine, clock):
        engine.receive(PORK, 1)
        clock.advance(days=1)
        engine.allocate_outbound(PORK, 1)
        assert engine.projection.get(PORK).last_updated == clock.now


class TestReconciliation:
    def test_reconcile_all_consistent(self, engine):
        engine.receive_lot(PORK, 10)
        engine.receive_lot(BEEF, 6)
        engine.allocate_outbound(PORK, 12)
        engine.discard(BEEF, 1)
        engine.adjust_to(BEEF, 3)

        reports = engine.reconcile_all()
        assert [r.product_id for r in reports] == [PORK, BEEF]
        assert all(r.consistent for r in reports)

    def test_drift_detected(self, engine, store):
        engine.receive(PORK, 10)
        # Corrupt the cache behind the engine's back
        with store.atomic() as uow:
            row = uow.inventory.get(PORK)
            uow.inventory.save(replace(row, current_stock=7))

        report = engine.reconcile(PORK)
        assert not report.consistent
        assert report.difference == -3
        assert report.movement_count == 1

    def test_signed_sum_invariant_over_sequence(self, engine, clock):
        engine.receive_lot(PORK, 25)
        for qty in (3, 7.25, 0.5):
            engine.allocate_outbound(PORK, qty)
            clock.advance(hours=2)
        engine.adjust_to(PORK, 30)
        engine.receive(PORK, 2.125)
        engine.allocate_outbound(PORK, 40)
        engine.discard(PORK, 0.75)

        assert engine.ledger.balance(PORK) == engine.current_stock(PORK)
        assert engine.reconcile(PORK).consistent
