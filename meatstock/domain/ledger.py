"""
Ledger arithmetic (balance reconstruction, reconciliation, movement notes).

Core ledger processing: deterministic, testable, no I/O.
"""
from collections import defaultdict
from typing import Dict, Iterable, List, Optional

from .models import ProductInventory, ReconciliationReport, StockLot, StockMovement
from .validation import normalize_qty

UNTRACKED_OUTBOUND_NOTE = "lot-unknown outbound"


def calculate_balance(movements: Iterable[StockMovement]) -> float:
    """
    Signed sum of movements.

    in and adjust add their (signed) quantity, out and discard subtract it.
    """
    return normalize_qty(sum(m.signed_quantity for m in movements))


def balance_by_product(movements: Iterable[StockMovement]) -> Dict[int, float]:
    """Signed balance per product id."""
    totals: Dict[int, float] = defaultdict(float)
    for m in movements:
        totals[m.product_id] += m.signed_quantity
    return {pid: normalize_qty(total) for pid, total in totals.items()}


def reconcile(inventory: ProductInventory, movements: List[StockMovement]) -> ReconciliationReport:
    """
    Compare the projected current_stock with the ledger balance.

    Args:
        inventory: Projection row for the product
        movements: All movements of that product

    Returns:
        ReconciliationReport (consistent == True when both agree)
    """
    own = [m for m in movements if m.product_id == inventory.product_id]
    return ReconciliationReport(
        product_id=inventory.product_id,
        projected_stock=inventory.current_stock,
        ledger_balance=calculate_balance(own),
        movement_count=len(own),
    )


def lot_consumption_note(lot: StockLot, qty: float, base: Optional[str] = None) -> str:
    """
    Note attached to an outbound movement drawn from a lot.

    Example: "Sale #12; FIFO: LOT-2025-09-26-1-7QXA:4.0kg(exp:2025-10-03)"
    """
    exp_str = lot.expiry_date.isoformat() if lot.expiry_date else "no expiry"
    fifo = f"FIFO: {lot.lot_number}:{normalize_qty(qty)}kg(exp:{exp_str})"
    return f"{base or ''}; {fifo}".strip("; ")


def shortage_note(qty: float, base: Optional[str] = None) -> str:
    """Note attached to the lot-less movement emitted for a shortage."""
    return f"{base or ''} ({UNTRACKED_OUTBOUND_NOTE}: {normalize_qty(qty)}kg)".strip()
