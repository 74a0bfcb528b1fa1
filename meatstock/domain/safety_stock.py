"""
Safety-stock classification.

Pure read-side computation from the inventory projection, no state.
"""
from typing import Iterable, List

from .models import ProductInventory, StockStatus
from .validation import is_zero, normalize_qty

CRITICAL_RATIO = 0.5
LOW_RATIO = 1.0


def stock_status(current: float, safety: float) -> StockStatus:
    """
    Classify stock against its safety threshold.

    - current == 0 (or below, after a shortage) → OUT
    - current / safety < 0.5 → CRITICAL
    - current / safety < 1.0 → LOW
    - otherwise → OK

    A zero safety stock has no ratio: anything above zero is OK.
    """
    current = normalize_qty(current)
    safety = normalize_qty(safety)

    if current <= 0 or is_zero(current):
        return StockStatus.OUT

    if safety <= 0 or is_zero(safety):
        return StockStatus.OK

    ratio = current / safety
    if ratio < CRITICAL_RATIO:
        return StockStatus.CRITICAL
    if ratio < LOW_RATIO:
        return StockStatus.LOW
    return StockStatus.OK


def below_safety(rows: Iterable[ProductInventory]) -> List[ProductInventory]:
    """Rows whose status is not OK, most urgent first."""
    order = {StockStatus.OUT: 0, StockStatus.CRITICAL: 1, StockStatus.LOW: 2}
    flagged = []
    for row in rows:
        status = stock_status(row.current_stock, row.safety_stock)
        if status != StockStatus.OK:
            flagged.append((order[status], row.product_id, row))

    flagged.sort(key=lambda t: (t[0], t[1]))
    return [row for _, _, row in flagged]
