"""
InventoryEngine: the stock components wired to one store and one lock registry.

Usage:
    >>> engine = InventoryEngine(MemoryStore())
    >>> lot, _ = engine.receive_lot(1, 10, expiry_date=date(2025, 10, 3))
    >>> result = engine.record_sale(1, 12)
    >>> result.shortage
    2.0
"""
import logging
from datetime import date, datetime, timedelta
from typing import Callable, List, Mapping, Optional, Tuple

from ..config import InventorySettings
from ..domain.errors import NotFound
from ..domain.models import (
    AllocationResult,
    InventoryStats,
    LotStatus,
    MovementReference,
    MovementType,
    Product,
    ProductInventory,
    ReconciliationReport,
    StockLot,
    StockMovement,
    StockStatus,
    StorageLocation,
    Supplier,
)
from ..domain.safety_stock import below_safety, stock_status
from ..domain.validation import normalize_qty, require_positive
from ..persistence.base import StockStore
from .allocation import FifoAllocationEngine
from .expiry import ExpirySweeper
from .locking import ProductLocks, locked_unit_of_work
from .lot_store import LotStore
from .movement_ledger import MovementLedger
from .projection import InventoryProjection

logger = logging.getLogger(__name__)


class InventoryEngine:
    """Facade over lot store, ledger, projection, allocation and expiry."""

    def __init__(
        self,
        store: StockStore,
        settings: Optional[InventorySettings] = None,
        catalog: Optional[Mapping[int, Product]] = None,
        clock: Callable[[], datetime] = datetime.now,
        locks: Optional[ProductLocks] = None,
    ):
        self.store = store
        self.settings = settings or InventorySettings()
        self.catalog = catalog or {}
        self.clock = clock
        self.locks = locks or ProductLocks()

        self.lots = LotStore(store, self.locks, clock, self.catalog)
        self.ledger = MovementLedger(store, self.locks, self.settings, clock, self.catalog)
        self.projection = InventoryProjection(store, self.ledger, self.locks, self.settings, clock, self.catalog)
        self.allocator = FifoAllocationEngine(store, self.lots, self.ledger, self.locks, clock)
        self.sweeper = ExpirySweeper(store, self.lots, self.locks, clock)

    # ------------------------------------------------------------
    # Inbound
    # ------------------------------------------------------------

    def receive_lot(
        self,
        product_id: int,
        quantity: float,
        expiry_date: Optional[date] = None,
        traceability_number: Optional[str] = None,
        supplier: Optional[Supplier] = None,
        *,
        lot_number: Optional[str] = None,
        origin: Optional[str] = None,
        slaughterhouse: Optional[str] = None,
        unit_price: Optional[float] = None,
        reference: Optional[MovementReference] = None,
        notes: str = "",
        created_by: Optional[str] = None,
        safety_stock: Optional[float] = None,
        location: Optional[StorageLocation] = None,
    ) -> Tuple[StockLot, StockMovement]:
        """
        Receive goods as a new lot: open lot + `in` movement + stock increase.

        Returns:
            (lot, inbound movement)
        """
        qty = require_positive(quantity, "Received quantity")
        reference = reference or MovementReference()

        with locked_unit_of_work(self.store, self.locks, product_id) as uow:
            self.projection.enable_tracking(product_id, safety_stock, location, uow=uow)
            lot = self.lots.open_lot(
                product_id,
                qty,
                expiry_date,
                traceability_number,
                supplier,
                lot_number=lot_number,
                origin=origin,
                slaughterhouse=slaughterhouse,
                transaction_id=reference.transaction_id,
                uow=uow,
            )
            movement = self.ledger.append(
                StockMovement(
                    product_id=product_id,
                    movement_type=MovementType.IN,
                    quantity=qty,
                    unit_price=unit_price,
                    lot_number=lot.lot_number,
                    expiry_date=lot.expiry_date,
                    traceability_number=traceability_number,
                    origin=origin,
                    slaughterhouse=slaughterhouse,
                    transaction_id=reference.transaction_id,
                    reference_type=reference.reference_type,
                    reference_id=reference.reference_id,
                    notes=notes,
                    product_name=lot.product_name,
                    created_by=created_by,
                ),
                uow=uow,
            )
        return lot, movement

    def receive(
        self,
        product_id: int,
        quantity: float,
        safety_stock: Optional[float] = None,
        location: Optional[StorageLocation] = None,
        notes: str = "",
    ) -> ProductInventory:
        """Stock-in without a lot."""
        return self.projection.receive(product_id, quantity, safety_stock, location, notes)

    # ------------------------------------------------------------
    # Outbound and corrections
    # ------------------------------------------------------------

    def allocate_outbound(
        self,
        product_id: int,
        quantity: float,
        traceability_number: Optional[str] = None,
        reference: Optional[MovementReference] = None,
        **kwargs,
    ) -> AllocationResult:
        return self.allocator.allocate_outbound(product_id, quantity, traceability_number, reference, **kwargs)

    record_sale = allocate_outbound

    def adjust_to(self, product_id: int, new_quantity: float, notes: str = "") -> StockMovement:
        return self.projection.adjust_to(product_id, new_quantity, notes)

    def discard(
        self,
        product_id: int,
        quantity: float,
        lot_number: Optional[str] = None,
        notes: str = "",
        reference: Optional[MovementReference] = None,
    ) -> StockMovement:
        """
        Manual write-off (spoiled or expired goods).

        With lot_number, the quantity is taken out of that lot (an expired
        lot stays expired); without, only stock and ledger change.

        Raises:
            NotFound: lot_number unknown or belongs to another product
            OverConsumption: The lot holds less than quantity
        """
        qty = require_positive(quantity, "Discarded quantity")
        reference = reference or MovementReference()

        with locked_unit_of_work(self.store, self.locks, product_id) as uow:
            lot = None
            if lot_number is not None:
                lot = uow.lots.get_by_number(lot_number)
                if lot is None or lot.product_id != product_id:
                    raise NotFound(f"Lot {lot_number} not found for product {product_id}")
                self.lots.consume(lot.id, qty, uow=uow)

            movement = self.ledger.append(
                StockMovement(
                    product_id=product_id,
                    movement_type=MovementType.DISCARD,
                    quantity=qty,
                    lot_number=lot.lot_number if lot else None,
                    expiry_date=lot.expiry_date if lot else None,
                    traceability_number=lot.traceability_number if lot else None,
                    origin=lot.origin if lot else None,
                    slaughterhouse=lot.slaughterhouse if lot else None,
                    transaction_id=reference.transaction_id,
                    reference_type=reference.reference_type,
                    reference_id=reference.reference_id,
                    notes=notes,
                ),
                uow=uow,
            )

        logger.info(f"Product {product_id}: discarded {qty}kg (lot {lot_number or '-'})")
        return movement

    # ------------------------------------------------------------
    # Read side
    # ------------------------------------------------------------

    def current_stock(self, product_id: int) -> float:
        return self.projection.current_stock(product_id)

    def stock_status(self, product_id: int) -> StockStatus:
        row = self.projection.get(product_id)
        return stock_status(row.current_stock, row.safety_stock)

    def low_stock(self) -> List[ProductInventory]:
        """Products below their safety stock, out-of-stock first."""
        return below_safety(self.projection.list_all())

    def list_active_lots(self, product_id: int) -> List[StockLot]:
        return self.lots.list_active(product_id)

    def query_movements(
        self,
        product_id: int,
        since: Optional[datetime] = None,
        limit: Optional[int] = None,
    ) -> List[StockMovement]:
        return self.ledger.query_by_product(product_id, since, limit)

    def stats(self, today: Optional[date] = None) -> InventoryStats:
        """Dashboard figures over all tracked products and lots."""
        today = today or self.clock().date()
        horizon = today + timedelta(days=self.settings.expiry_alert_days)

        rows = self.projection.list_all()
        lots = self.lots.list_lots()

        expiring = 0
        expired = 0
        for lot in lots:
            if lot.status == LotStatus.EXPIRED:
                expired += 1
            elif (
                lot.is_allocatable
                and lot.expiry_date is not None
                and today <= lot.expiry_date <= horizon
            ):
                expiring += 1

        return InventoryStats(
            total_products=len(rows),
            total_stock=normalize_qty(sum(row.current_stock for row in rows)),
            low_stock_count=sum(1 for row in rows if row.current_stock < row.safety_stock),
            expiring_count=expiring,
            expired_count=expired,
        )

    # ------------------------------------------------------------
    # Expiry and reconciliation
    # ------------------------------------------------------------

    def sweep(self, today: Optional[date] = None) -> int:
        return self.sweeper.sweep(today)

    def list_expiring_within(self, days: Optional[int] = None, today: Optional[date] = None) -> List[StockLot]:
        if days is None:
            days = self.settings.expiry_alert_days
        return self.sweeper.list_expiring_within(days, today)

    def reconcile(self, product_id: int) -> ReconciliationReport:
        return self.projection.reconcile(product_id)

    def reconcile_all(self) -> List[ReconciliationReport]:
        return [self.projection.reconcile(row.product_id) for row in self.projection.list_all()]
