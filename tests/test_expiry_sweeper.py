"""
Tests for the expiry sweeper and expiring-soon queries.
"""
from datetime import timedelta

import pytest

from conftest import BEEF, PORK, TODAY
from meatstock.domain.errors import StockError
from meatstock.domain.models import LotStatus, MovementType


class TestSweep:
    def test_expired_lot_leaves_allocation(self, engine):
        """Lot expiring yesterday is retired but keeps its quantity."""
        lot, _ = engine.receive_lot(PORK, 10, TODAY - timedelta(days=1))

        assert engine.sweep(TODAY) == 1

        stored = engine.lots.get(lot.id)
        assert stored.status == LotStatus.EXPIRED
        assert stored.remaining_quantity == 10
        assert engine.lots.list_active(PORK) == []

    def test_sweep_is_idempotent(self, engine):
        engine.receive_lot(PORK, 10, TODAY - timedelta(days=1))
        assert engine.sweep(TODAY) == 1
        assert engine.sweep(TODAY) == 0

    def test_expiry_day_itself_is_not_expired(self, engine):
        lot, _ = engine.receive_lot(PORK, 10, TODAY)
        assert engine.sweep(TODAY) == 0
        assert engine.lots.get(lot.id).status == LotStatus.ACTIVE

    def test_lots_without_expiry_never_swept(self, engine):
        engine.receive_lot(PORK, 10)
        assert engine.sweep(TODAY + timedelta(days=3650)) == 0

    def test_sweep_does_not_touch_ledger_or_stock(self, engine):
        engine.receive_lot(PORK, 10, TODAY - timedelta(days=2))
        engine.receive_lot(BEEF, 4, TODAY - timedelta(days=2))
        engine.sweep(TODAY)

        assert engine.current_stock(PORK) == 10
        assert engine.current_stock(BEEF) == 4
        assert [m.movement_type for m in engine.query_movements(PORK)] == [MovementType.IN]

    def test_defaults_to_clock_date(self, engine, clock):
        engine.receive_lot(PORK, 10, TODAY + timedelta(days=1))
        assert engine.sweep() == 0
        clock.advance(days=2)
        assert engine.sweep() == 1

    def test_finished_and_cancelled_lots_ignored(self, engine):
        finished, _ = engine.receive_lot(PORK, 1, TODAY - timedelta(days=1))
        cancelled, _ = engine.receive_lot(PORK, 1, TODAY - timedelta(days=1))
        engine.allocate_outbound(PORK, 1)
        engine.lots.cancel(cancelled.id)

        assert engine.sweep(TODAY) == 0
        assert engine.lots.get(finished.id).status == LotStatus.FINISHED
        assert engine.lots.get(cancelled.id).status == LotStatus.CANCELLED

    def test_single_failure_does_not_abort_sweep(self, engine, monkeypatch, caplog):
        bad, _ = engine.receive_lot(PORK, 1, TODAY - timedelta(days=1))
        good, _ = engine.receive_lot(BEEF, 1, TODAY - timedelta(days=1))
        original = engine.lots.mark_expired

        def flaky(lot_id, uow=None):
            if lot_id == bad.id:
                raise StockError("simulated failure")
            return original(lot_id, uow=uow)

        monkeypatch.setattr(engine.lots, "mark_expired", flaky)

        assert engine.sweep(TODAY) == 1
        assert engine.lots.get(bad.id).status == LotStatus.ACTIVE
        assert engine.lots.get(good.id).status == LotStatus.EXPIRED
        assert "Could not mark lot" in caplog.text


class TestExpiringWithin:
    def test_most_urgent_first(self, engine):
        in_three, _ = engine.receive_lot(PORK, 1, TODAY + timedelta(days=3))
        in_ten, _ = engine.receive_lot(PORK, 1, TODAY + timedelta(days=10))
        overdue, _ = engine.receive_lot(BEEF, 1, TODAY - timedelta(days=1))
        tomorrow, _ = engine.receive_lot(PORK, 1, TODAY + timedelta(days=1))
        engine.receive_lot(PORK, 1)

        lots = engine.list_expiring_within(3, TODAY)
        assert [lot.id for lot in lots] == [overdue.id, tomorrow.id, in_three.id]

    def test_same_day_sorted_by_receipt(self, engine):
        a, _ = engine.receive_lot(BEEF, 1, TODAY + timedelta(days=2))
        b, _ = engine.receive_lot(PORK, 1, TODAY + timedelta(days=2))
        assert [lot.id for lot in engine.list_expiring_within(2, TODAY)] == [a.id, b.id]

    def test_default_window_from_settings(self, engine):
        lot, _ = engine.receive_lot(PORK, 1, TODAY + timedelta(days=3))
        engine.receive_lot(PORK, 1, TODAY + timedelta(days=4))
        assert [l.id for l in engine.list_expiring_within(today=TODAY)] == [lot.id]

    def test_excludes_expired_and_empty_lots(self, engine):
        swept, _ = engine.receive_lot(PORK, 1, TODAY - timedelta(days=1))
        engine.receive_lot(PORK, 1, TODAY + timedelta(days=1))
        engine.sweep(TODAY)
        engine.allocate_outbound(PORK, 1)  # finishes the second lot

        assert engine.list_expiring_within(3, TODAY) == []

    def test_negative_days_rejected(self, engine):
        with pytest.raises(ValueError):
            engine.list_expiring_within(-1, TODAY)


class TestDiscardExpired:
    def test_discard_expired_lot(self, engine):
        lot, _ = engine.receive_lot(PORK, 10, TODAY - timedelta(days=1))
        engine.sweep(TODAY)

        movement = engine.discard(PORK, 10, lot.lot_number, notes="Expired")

        assert movement.movement_type == MovementType.DISCARD
        assert movement.lot_number == lot.lot_number
        stored = engine.lots.get(lot.id)
        assert stored.remaining_quantity == 0
        assert stored.status == LotStatus.EXPIRED
        assert engine.current_stock(PORK) == 0
        assert engine.reconcile(PORK).consistent
