"""
Transaction commit workflow: stock effects of purchase and sales transactions.

- Purchase: one lot per line (synthesized lot number, policy expiry date)
- Sales: FIFO allocation per line; shortages become operator warnings
- Payments: no stock effect
- Cancellation: undo the stock effects of a committed transaction
"""
import logging
from dataclasses import dataclass, field
from datetime import date, timedelta
from enum import Enum
from typing import List, Optional, Tuple

from ..domain.models import (
    AllocationResult,
    LotStatus,
    MovementReference,
    MovementType,
    ReferenceType,
    StockLot,
    StockMovement,
    Supplier,
)
from ..domain.validation import require_positive
from ..utils.error_formatting import ErrorContext, ErrorFormatter
from .engine import InventoryEngine
from .locking import locked_unit_of_work

logger = logging.getLogger(__name__)


class TransactionType(Enum):
    SALES = "sales"
    PURCHASE = "purchase"
    PAYMENT_IN = "payment_in"
    PAYMENT_OUT = "payment_out"


@dataclass(frozen=True)
class TransactionLine:
    """One product line of a trade transaction."""
    product_id: int
    quantity: float
    unit_price: Optional[float] = None
    traceability_number: Optional[str] = None
    expiry_date: Optional[date] = None      # Purchase only; None = category policy
    lot_number: Optional[str] = None        # Purchase only; None = generated
    origin: Optional[str] = None
    slaughterhouse: Optional[str] = None
    category: Optional[str] = None          # Overrides the catalog category

    def __post_init__(self):
        object.__setattr__(self, "quantity", require_positive(self.quantity, "Line quantity"))


@dataclass(frozen=True)
class TradeTransaction:
    """Sales/purchase document as committed by the transaction screens."""
    id: int
    transaction_type: TransactionType
    transaction_date: date
    lines: Tuple[TransactionLine, ...] = ()
    partner_id: Optional[int] = None        # Customer or supplier
    partner_name: Optional[str] = None
    created_by: Optional[str] = None


@dataclass
class CommitResult:
    transaction_id: int
    lots: List[StockLot] = field(default_factory=list)
    allocations: List[AllocationResult] = field(default_factory=list)
    warnings: List[ErrorContext] = field(default_factory=list)

    @property
    def has_warnings(self) -> bool:
        return bool(self.warnings)


class TransactionCommitWorkflow:
    """Apply and cancel the stock effects of trade transactions."""

    def __init__(self, engine: InventoryEngine):
        self.engine = engine

    def expiry_for(self, line: TransactionLine, receipt_date: date) -> date:
        """Explicit expiry date, else receipt date + category shelf life."""
        if line.expiry_date is not None:
            return line.expiry_date
        category = line.category
        if category is None and line.product_id in self.engine.catalog:
            category = self.engine.catalog[line.product_id].category
        return receipt_date + timedelta(days=self.engine.settings.shelf_life_days(category))

    def commit(self, transaction: TradeTransaction) -> CommitResult:
        """
        Apply stock effects line by line.

        Each line is its own unit of work; a failing line raises and leaves
        the earlier lines committed.
        """
        result = CommitResult(transaction_id=transaction.id)

        if transaction.transaction_type == TransactionType.PURCHASE:
            supplier = Supplier(id=transaction.partner_id, name=transaction.partner_name)
            reference = MovementReference(ReferenceType.PURCHASE, transaction.id, transaction.id)
            for line in transaction.lines:
                lot, _ = self.engine.receive_lot(
                    line.product_id,
                    line.quantity,
                    self.expiry_for(line, transaction.transaction_date),
                    line.traceability_number,
                    supplier,
                    lot_number=line.lot_number,
                    origin=line.origin,
                    slaughterhouse=line.slaughterhouse,
                    unit_price=line.unit_price,
                    reference=reference,
                    notes=f"Purchase #{transaction.id}",
                    created_by=transaction.created_by,
                )
                result.lots.append(lot)

        elif transaction.transaction_type == TransactionType.SALES:
            reference = MovementReference(ReferenceType.SALES, transaction.id, transaction.id)
            for line in transaction.lines:
                allocation = self.engine.allocate_outbound(
                    line.product_id,
                    line.quantity,
                    line.traceability_number,
                    reference,
                    unit_price=line.unit_price,
                    notes=f"Sale #{transaction.id}",
                    created_by=transaction.created_by,
                )
                result.allocations.append(allocation)
                if allocation.has_shortage:
                    product = self.engine.catalog.get(line.product_id)
                    result.warnings.append(
                        ErrorFormatter.format_shortage(allocation, product.name if product else None)
                    )

        else:
            logger.debug(f"Transaction #{transaction.id} ({transaction.transaction_type.value}): no stock effect")

        return result

    def is_cancelled(self, transaction_id: int) -> bool:
        """True once any stock effect of the transaction has been reversed."""
        return any(
            m.reference_type == ReferenceType.CANCELLATION
            for m in self.engine.ledger.query_by_transaction(transaction_id)
        )

    def cancel(self, transaction: TradeTransaction) -> List[StockMovement]:
        """
        Undo the stock effects of a committed transaction (idempotent).

        - Purchase: active lots of the transaction are cancelled and their
          remaining quantity is taken out of stock by an adjust movement
        - Sales: every out movement is returned by an in movement, and the
          lot it came from gets the quantity back

        Each lot or movement is reversed in its own unit of work under the
        product lock, and only if it has not been reversed yet. A cancel that
        failed halfway can be retried to finish the remaining items.

        Returns:
            Movements appended by this call
        """
        if transaction.transaction_type == TransactionType.PURCHASE:
            appended = self._cancel_purchase(transaction)
        elif transaction.transaction_type == TransactionType.SALES:
            appended = self._cancel_sale(transaction)
        else:
            appended = []

        if appended:
            logger.info(f"Transaction #{transaction.id} cancelled: {len(appended)} movement(s)")
        else:
            logger.info(f"Transaction #{transaction.id}: nothing left to cancel")
        return appended

    def _cancel_purchase(self, transaction: TradeTransaction) -> List[StockMovement]:
        engine = self.engine
        appended = []
        lots = engine.lots.list_lots(status=LotStatus.ACTIVE, transaction_id=transaction.id)
        for lot in lots:
            with locked_unit_of_work(engine.store, engine.locks, lot.product_id) as uow:
                # A lot cancelled meanwhile releases nothing
                released = engine.lots.cancel(lot.id, uow=uow)
                if released <= 0:
                    continue
                appended.append(engine.ledger.append(
                    StockMovement(
                        product_id=lot.product_id,
                        movement_type=MovementType.ADJUST,
                        quantity=-released,
                        lot_number=lot.lot_number,
                        expiry_date=lot.expiry_date,
                        traceability_number=lot.traceability_number,
                        transaction_id=transaction.id,
                        reference_type=ReferenceType.CANCELLATION,
                        reference_id=lot.id,
                        notes=f"Purchase #{transaction.id} cancelled",
                        created_by=transaction.created_by,
                    ),
                    uow=uow,
                ))
        return appended

    def _is_reversed(self, uow, transaction_id: int, movement_id: int) -> bool:
        """A sale movement is reversed by the cancellation movement whose reference_id is its id."""
        return any(
            m.reference_type == ReferenceType.CANCELLATION and m.reference_id == movement_id
            for m in self.engine.ledger.query_by_transaction(transaction_id, uow=uow)
        )

    def _cancel_sale(self, transaction: TradeTransaction) -> List[StockMovement]:
        engine = self.engine
        appended = []
        outbound = [
            m for m in engine.ledger.query_by_transaction(transaction.id)
            if m.movement_type == MovementType.OUT and m.reference_type == ReferenceType.SALES
        ]
        for m in outbound:
            with locked_unit_of_work(engine.store, engine.locks, m.product_id) as uow:
                if self._is_reversed(uow, transaction.id, m.id):
                    logger.debug(f"Movement #{m.id} already reversed")
                    continue
                if m.lot_number is not None:
                    lot = uow.lots.get_by_number(m.lot_number)
                    if lot is not None:
                        engine.lots.restore(lot.id, m.quantity, uow=uow)
                    else:
                        logger.warning(f"Lot {m.lot_number} of movement #{m.id} not found; stock only")
                appended.append(engine.ledger.append(
                    StockMovement(
                        product_id=m.product_id,
                        movement_type=MovementType.IN,
                        quantity=m.quantity,
                        unit_price=m.unit_price,
                        lot_number=m.lot_number,
                        expiry_date=m.expiry_date,
                        traceability_number=m.traceability_number,
                        origin=m.origin,
                        slaughterhouse=m.slaughterhouse,
                        transaction_id=transaction.id,
                        reference_type=ReferenceType.CANCELLATION,
                        reference_id=m.id,
                        notes=f"Sale #{transaction.id} cancelled",
                        created_by=transaction.created_by,
                    ),
                    uow=uow,
                ))
        return appended
