"""
FIFO allocation of outbound quantities to stock lots.

Lots are consumed in receipt order (oldest lot first, not earliest
expiry). When lots run out, the rest is recorded as one lot-less
movement and returned as `shortage`; the sale is never blocked.
"""
import logging
from datetime import datetime
from typing import Callable, List, Optional

from ..domain.ledger import lot_consumption_note, shortage_note
from ..domain.models import (
    AllocationResult,
    MovementReference,
    MovementType,
    StockMovement,
)
from ..domain.validation import is_zero, normalize_qty, require_positive
from ..persistence.base import StockStore
from .locking import ProductLocks, locked_unit_of_work
from .lot_store import LotStore
from .movement_ledger import MovementLedger
from .projection import apply_delta

logger = logging.getLogger(__name__)


class FifoAllocationEngine:
    """
    Consume lots oldest-first for an outbound quantity.

    The whole walk (lot updates, out movements, inventory update) is one
    unit of work under the product lock: a failure leaves nothing behind.
    """

    def __init__(
        self,
        store: StockStore,
        lot_store: LotStore,
        ledger: MovementLedger,
        locks: Optional[ProductLocks] = None,
        clock: Callable[[], datetime] = datetime.now,
    ):
        self.store = store
        self.lot_store = lot_store
        self.ledger = ledger
        self.locks = locks or ProductLocks()
        self.clock = clock

    def allocate_outbound(
        self,
        product_id: int,
        quantity: float,
        traceability_number: Optional[str] = None,
        reference: Optional[MovementReference] = None,
        unit_price: Optional[float] = None,
        notes: str = "",
        created_by: Optional[str] = None,
        uow=None,
    ) -> AllocationResult:
        """
        Allocate quantity across active lots of product_id.

        Args:
            traceability_number: Overrides each lot's traceability number
                on the emitted movements
            reference: Link to the sale transaction

        Returns:
            AllocationResult with the out movements (in lot order, the
            lot-less shortage movement last) and the shortage

        Raises:
            InvalidQuantity: If quantity <= 0
        """
        requested = require_positive(quantity, "Outbound quantity")
        reference = reference or MovementReference()

        with locked_unit_of_work(self.store, self.locks, product_id, uow) as work:
            movements: List[StockMovement] = []
            outstanding = requested

            for lot in self.lot_store.list_active(product_id, uow=work):
                if is_zero(outstanding):
                    break

                take = normalize_qty(min(outstanding, lot.remaining_quantity))
                if take <= 0:
                    continue

                self.lot_store.consume(lot.id, take, uow=work)
                movements.append(self.ledger.append(
                    StockMovement(
                        product_id=product_id,
                        movement_type=MovementType.OUT,
                        quantity=take,
                        unit_price=unit_price,
                        lot_number=lot.lot_number,
                        expiry_date=lot.expiry_date,
                        traceability_number=traceability_number or lot.traceability_number,
                        origin=lot.origin,
                        slaughterhouse=lot.slaughterhouse,
                        transaction_id=reference.transaction_id,
                        reference_type=reference.reference_type,
                        reference_id=reference.reference_id,
                        notes=lot_consumption_note(lot, take, notes),
                        product_name=lot.product_name,
                        created_by=created_by,
                    ),
                    uow=work,
                    update_projection=False,
                ))
                outstanding = normalize_qty(outstanding - take)

            shortage = 0.0
            if outstanding > 0 and not is_zero(outstanding):
                shortage = outstanding
                movements.append(self.ledger.append(
                    StockMovement(
                        product_id=product_id,
                        movement_type=MovementType.OUT,
                        quantity=shortage,
                        unit_price=unit_price,
                        lot_number=None,
                        traceability_number=traceability_number,
                        transaction_id=reference.transaction_id,
                        reference_type=reference.reference_type,
                        reference_id=reference.reference_id,
                        notes=shortage_note(shortage, notes),
                        created_by=created_by,
                    ),
                    uow=work,
                    update_projection=False,
                ))
                logger.warning(
                    f"Product {product_id}: lots cover {normalize_qty(requested - shortage)} "
                    f"of {requested}kg, {shortage}kg recorded without lot"
                )

            apply_delta(
                work, product_id, -requested, self.ledger.settings, self.clock(),
                self.ledger.catalog.get(product_id),
            )

        return AllocationResult(
            product_id=product_id,
            requested=requested,
            movements=tuple(movements),
            shortage=shortage,
        )
