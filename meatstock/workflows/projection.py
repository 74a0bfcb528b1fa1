"""
Aggregate inventory projection: one ProductInventory row per product.

The row is a cache of the ledger. Every movement append updates it in
the same unit of work, so the two are never visible independently.
"""
import logging
from dataclasses import replace
from datetime import datetime
from typing import TYPE_CHECKING, Callable, List, Mapping, Optional

from ..config import InventorySettings
from ..domain.errors import InvalidQuantity, NotFound
from ..domain.ledger import reconcile
from ..domain.models import (
    MovementType,
    Product,
    ProductInventory,
    ReconciliationReport,
    ReferenceType,
    StockMovement,
    StorageLocation,
)
from ..domain.validation import normalize_qty, require_positive
from ..persistence.base import StockStore
from .locking import ProductLocks, locked_unit_of_work

if TYPE_CHECKING:
    from .movement_ledger import MovementLedger

logger = logging.getLogger(__name__)


def new_inventory_row(
    product_id: int,
    settings: InventorySettings,
    now: datetime,
    product: Optional[Product] = None,
    safety_stock: Optional[float] = None,
    location: Optional[StorageLocation] = None,
) -> ProductInventory:
    """Row for a product that has no inventory tracking yet."""
    if safety_stock is None:
        if product is not None and product.safety_stock is not None:
            safety_stock = product.safety_stock
        else:
            safety_stock = settings.default_safety_stock
    return ProductInventory(
        product_id=product_id,
        current_stock=0.0,
        safety_stock=safety_stock,
        location=location or settings.location,
        product_name=product.name if product else None,
        unit=product.unit if product else None,
        last_updated=now,
    )


def apply_delta(
    uow,
    product_id: int,
    delta: float,
    settings: InventorySettings,
    now: datetime,
    product: Optional[Product] = None,
) -> ProductInventory:
    """
    current_stock += delta, creating the row with defaults when absent.

    Must run inside the unit of work that appended the movement(s).
    """
    row = uow.inventory.get(product_id)
    if row is None:
        row = new_inventory_row(product_id, settings, now, product)
    updated = replace(
        row,
        current_stock=normalize_qty(row.current_stock + delta),
        last_updated=now,
    )
    uow.inventory.save(updated)
    return updated


class InventoryProjection:
    """Current stock per product, kept consistent with the movement ledger."""

    def __init__(
        self,
        store: StockStore,
        ledger: "MovementLedger",
        locks: Optional[ProductLocks] = None,
        settings: Optional[InventorySettings] = None,
        clock: Callable[[], datetime] = datetime.now,
        catalog: Optional[Mapping[int, Product]] = None,
    ):
        self.store = store
        self.ledger = ledger
        self.locks = locks or ProductLocks()
        self.settings = settings or InventorySettings()
        self.clock = clock
        self.catalog = catalog or {}

    def enable_tracking(
        self,
        product_id: int,
        safety_stock: Optional[float] = None,
        location: Optional[StorageLocation] = None,
        uow=None,
    ) -> ProductInventory:
        """Create the product's row if absent (idempotent); returns the row."""
        with locked_unit_of_work(self.store, self.locks, product_id, uow) as work:
            row = work.inventory.get(product_id)
            if row is None:
                row = new_inventory_row(
                    product_id, self.settings, self.clock(), self.catalog.get(product_id),
                    safety_stock=safety_stock, location=location,
                )
                work.inventory.save(row)
                logger.info(f"Inventory tracking enabled for product {product_id}")
        return row

    def update_settings(
        self,
        product_id: int,
        safety_stock: Optional[float] = None,
        location: Optional[StorageLocation] = None,
    ) -> ProductInventory:
        """
        Change safety stock and/or storage location.

        Raises:
            NotFound: Product has no inventory tracking
        """
        with locked_unit_of_work(self.store, self.locks, product_id) as work:
            row = work.inventory.get(product_id)
            if row is None:
                raise NotFound(f"Product {product_id} has no inventory tracking")
            changes = {"last_updated": self.clock()}
            if safety_stock is not None:
                changes["safety_stock"] = safety_stock
            if location is not None:
                changes["location"] = location
            row = replace(row, **changes)
            work.inventory.save(row)
        return row

    def receive(
        self,
        product_id: int,
        quantity: float,
        safety_stock: Optional[float] = None,
        location: Optional[StorageLocation] = None,
        notes: str = "",
        uow=None,
    ) -> ProductInventory:
        """
        Manual stock-in without a lot: current_stock += quantity.

        Records the matching `in` movement. safety_stock/location only
        apply when the row is created.
        """
        qty = require_positive(quantity, "Received quantity")
        with locked_unit_of_work(self.store, self.locks, product_id, uow) as work:
            self.enable_tracking(product_id, safety_stock, location, uow=work)
            self.ledger.append(
                StockMovement(
                    product_id=product_id,
                    movement_type=MovementType.IN,
                    quantity=qty,
                    reference_type=ReferenceType.MANUAL,
                    notes=notes,
                ),
                uow=work,
            )
            return work.inventory.get(product_id)

    def adjust_to(self, product_id: int, new_quantity: float, notes: str = "", uow=None) -> StockMovement:
        """
        Set current_stock to new_quantity (physical count).

        Lots are not touched. The ledger records the compensating delta.

        Raises:
            InvalidQuantity: If new_quantity is negative
        """
        target = normalize_qty(new_quantity)
        if target < 0:
            raise InvalidQuantity(f"Counted stock cannot be negative (got {target})")

        movement = self.ledger.append(
            StockMovement(
                product_id=product_id,
                movement_type=MovementType.ADJUST,
                quantity=target,
                reference_type=ReferenceType.ADJUSTMENT,
                notes=notes or f"Stock count: {target}",
            ),
            absolute=True,
            uow=uow,
        )
        logger.info(f"Product {product_id} adjusted to {target} (delta {movement.quantity})")
        return movement

    def get(self, product_id: int, uow=None) -> ProductInventory:
        """
        Raises:
            NotFound: Product has no inventory tracking
        """
        with self.store.reader(uow) as reader:
            row = reader.inventory.get(product_id)
        if row is None:
            raise NotFound(f"Product {product_id} has no inventory tracking")
        return row

    def current_stock(self, product_id: int) -> float:
        return self.get(product_id).current_stock

    def list_all(self) -> List[ProductInventory]:
        with self.store.reader() as reader:
            return reader.inventory.list()

    def reconcile(self, product_id: int) -> ReconciliationReport:
        """Compare current_stock with the signed sum of the product's movements."""
        with self.locks.hold(product_id):
            with self.store.reader() as reader:
                row = reader.inventory.get(product_id)
                if row is None:
                    raise NotFound(f"Product {product_id} has no inventory tracking")
                movements = reader.movements.list(product_id=product_id)

        report = reconcile(row, movements)
        if not report.consistent:
            logger.warning(
                f"Product {product_id}: stock {report.projected_stock} does not match "
                f"ledger balance {report.ledger_balance} (difference {report.difference})"
            )
        return report
