"""
Tests for FIFO allocation: lot order, shortage fallback, atomicity and
per-product serialization.
"""
import threading
from datetime import date

import pytest

from conftest import BEEF, PORK
from meatstock.domain.errors import InvalidQuantity, StorageFailure
from meatstock.domain.ledger import UNTRACKED_OUTBOUND_NOTE
from meatstock.domain.models import LotStatus, MovementReference, MovementType, ReferenceType


@pytest.fixture
def two_lots(engine, clock):
    """L1: 10kg received day 0, L2: 5kg received day 1."""
    l1, _ = engine.receive_lot(PORK, 10, date(2025, 10, 3), "TR-L1")
    clock.advance(days=1)
    l2, _ = engine.receive_lot(PORK, 5, date(2025, 10, 1), "TR-L2")
    return l1, l2


class TestFifoOrder:
    def test_partial_coverage_across_two_lots(self, engine, two_lots):
        """10 from L1 (finished) and 2 from L2 (3 left), no shortage."""
        l1, l2 = two_lots
        result = engine.allocate_outbound(PORK, 12)

        assert result.shortage == 0
        assert not result.has_shortage
        assert [(m.lot_number, m.quantity) for m in result.movements] == [
            (l1.lot_number, 10),
            (l2.lot_number, 2),
        ]
        assert all(m.movement_type == MovementType.OUT for m in result.movements)

        assert engine.lots.get(l1.id).status == LotStatus.FINISHED
        assert engine.lots.get(l1.id).remaining_quantity == 0
        assert engine.lots.get(l2.id).remaining_quantity == 3
        assert engine.lots.get(l2.id).status == LotStatus.ACTIVE
        assert engine.current_stock(PORK) == 3

    def test_shortage_emits_lotless_movement(self, engine, two_lots):
        """Both lots finished, a third movement without lot for the 5kg shortage."""
        l1, l2 = two_lots
        result = engine.allocate_outbound(PORK, 20)

        assert result.shortage == 5
        assert len(result.movements) == 3
        last = result.movements[-1]
        assert last.lot_number is None
        assert last.quantity == 5
        assert UNTRACKED_OUTBOUND_NOTE in last.notes
        assert engine.lots.get(l1.id).status == LotStatus.FINISHED
        assert engine.lots.get(l2.id).status == LotStatus.FINISHED
        # Projection follows the requested total, not the lot-covered part
        assert engine.current_stock(PORK) == -5

    def test_first_lot_consumed_is_oldest_receipt(self, engine, two_lots):
        l1, _ = two_lots
        result = engine.allocate_outbound(PORK, 1)
        assert result.movements[0].lot_number == l1.lot_number

    def test_no_lots_at_all(self, engine):
        engine.receive(PORK, 8)
        result = engine.allocate_outbound(PORK, 3)
        assert result.shortage == 3
        assert [m.lot_number for m in result.movements] == [None]
        assert engine.current_stock(PORK) == 5

    def test_skips_expired_lots(self, engine, two_lots):
        l1, l2 = two_lots
        engine.lots.mark_expired(l1.id)
        result = engine.allocate_outbound(PORK, 4)
        assert result.lot_numbers == (l2.lot_number,)
        assert engine.lots.get(l1.id).remaining_quantity == 10

    def test_other_products_untouched(self, engine, two_lots):
        beef, _ = engine.receive_lot(BEEF, 7)
        engine.allocate_outbound(PORK, 15)
        assert engine.lots.get(beef.id).remaining_quantity == 7
        assert engine.current_stock(BEEF) == 7


class TestShortageLaw:
    @pytest.mark.parametrize("requested, expected_shortage", [
        (15, 0),
        (15.5, 0.5),
        (40, 25),
        (0.001, 0),
    ])
    def test_shortage_equals_request_minus_lot_total(self, engine, two_lots, requested, expected_shortage):
        result = engine.allocate_outbound(PORK, requested)
        assert result.shortage == expected_shortage
        assert result.allocated_from_lots + result.shortage == pytest.approx(requested)
        if expected_shortage:
            assert result.movements[-1].lot_number is None


class TestAllocationMovements:
    def test_reference_and_traceability(self, engine, two_lots):
        l1, l2 = two_lots
        reference = MovementReference(ReferenceType.SALES, transaction_id=77, reference_id=77)
        result = engine.allocate_outbound(PORK, 12, reference=reference, unit_price=9800, notes="Sale #77")

        first, second = result.movements
        assert first.transaction_id == 77
        assert first.reference_type == ReferenceType.SALES
        assert first.traceability_number == "TR-L1"
        assert second.traceability_number == "TR-L2"
        assert first.expiry_date == date(2025, 10, 3)
        assert first.unit_price == 9800
        assert first.notes.startswith("Sale #77; FIFO: ")
        assert first.product_name == "Pork belly"

        stored = engine.ledger.query_by_transaction(77)
        assert [m.id for m in stored] == [m.id for m in result.movements]

    def test_traceability_override(self, engine, two_lots):
        result = engine.allocate_outbound(PORK, 12, traceability_number="TR-SALE")
        assert {m.traceability_number for m in result.movements} == {"TR-SALE"}

    @pytest.mark.parametrize("qty", [0, -3])
    def test_invalid_quantity(self, engine, two_lots, qty):
        with pytest.raises(InvalidQuantity):
            engine.allocate_outbound(PORK, qty)
        assert engine.current_stock(PORK) == 15
        assert len(engine.query_movements(PORK)) == 2

    def test_ledger_matches_projection(self, engine, two_lots):
        engine.allocate_outbound(PORK, 12)
        engine.allocate_outbound(PORK, 9)
        engine.adjust_to(PORK, 4)
        engine.receive_lot(PORK, 3)
        report = engine.reconcile(PORK)
        assert report.consistent
        assert engine.ledger.balance(PORK) == engine.current_stock(PORK) == 7


class TestAllocationAtomicity:
    def test_failure_mid_walk_rolls_back_everything(self, engine, two_lots, monkeypatch):
        l1, l2 = two_lots
        original_append = engine.ledger.append
        calls = []

        def failing_append(movement, **kwargs):
            calls.append(movement)
            if len(calls) == 2:
                raise StorageFailure("disk full")
            return original_append(movement, **kwargs)

        monkeypatch.setattr(engine.ledger, "append", failing_append)

        with pytest.raises(StorageFailure, match="disk full"):
            engine.allocate_outbound(PORK, 12)

        assert engine.lots.get(l1.id).remaining_quantity == 10
        assert engine.lots.get(l1.id).status == LotStatus.ACTIVE
        assert engine.lots.get(l2.id).remaining_quantity == 5
        assert engine.current_stock(PORK) == 15
        assert len(engine.query_movements(PORK)) == 2


class TestConcurrentAllocation:
    def test_two_sales_against_one_lot(self, engine):
        """6 + 6 against a 10kg lot: one full success, one 4 + 2 shortage."""
        lot, _ = engine.receive_lot(PORK, 10)
        barrier = threading.Barrier(2)
        results = []
        errors = []

        def sell():
            try:
                barrier.wait(timeout=5)
                results.append(engine.allocate_outbound(PORK, 6))
            except Exception as e:  # noqa: BLE001
                errors.append(e)

        threads = [threading.Thread(target=sell) for _ in range(2)]
        for t in threads:
            t.start()
        for t in threads:
            t.join(timeout=30)

        assert errors == []
        assert sorted(r.shortage for r in results) == [0, 2]
        assert sorted(r.allocated_from_lots for r in results) == [4, 6]
        assert engine.lots.get(lot.id).remaining_quantity == 0
        assert engine.lots.get(lot.id).status == LotStatus.FINISHED
        assert engine.current_stock(PORK) == -2
        assert engine.reconcile(PORK).consistent

    def test_many_sales_never_over_allocate(self, engine):
        lot, _ = engine.receive_lot(PORK, 10)
        engine.receive_lot(BEEF, 10)
        barrier = threading.Barrier(8)
        results = []

        def sell(product_id):
            barrier.wait(timeout=5)
            results.append(engine.allocate_outbound(product_id, 1.5))

        threads = [threading.Thread(target=sell, args=(PORK if i % 2 else BEEF,)) for i in range(8)]
        for t in threads:
            t.start()
        for t in threads:
            t.join(timeout=30)

        pork = [r for r in results if r.product_id == PORK]
        assert len(results) == 8
        assert sum(r.allocated_from_lots for r in pork) == 6
        assert engine.lots.get(lot.id).remaining_quantity == 4
        assert engine.current_stock(PORK) == 4
        assert engine.current_stock(BEEF) == 4
