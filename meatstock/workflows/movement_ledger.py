"""
Movement ledger: the append-only system of record.

There is no update or delete. Each append also moves the product's
inventory row by the movement's signed quantity, in the same unit of work.
"""
import logging
from dataclasses import replace
from datetime import datetime
from typing import Callable, List, Mapping, Optional

from ..config import InventorySettings
from ..domain.errors import InvalidQuantity
from ..domain.ledger import calculate_balance
from ..domain.models import MovementType, Product, StockMovement
from ..domain.validation import normalize_qty, require_positive
from ..persistence.base import StockStore
from .locking import ProductLocks, locked_unit_of_work
from .projection import apply_delta

logger = logging.getLogger(__name__)


class MovementLedger:
    """Append and query stock movements."""

    def __init__(
        self,
        store: StockStore,
        locks: Optional[ProductLocks] = None,
        settings: Optional[InventorySettings] = None,
        clock: Callable[[], datetime] = datetime.now,
        catalog: Optional[Mapping[int, Product]] = None,
    ):
        self.store = store
        self.locks = locks or ProductLocks()
        self.settings = settings or InventorySettings()
        self.clock = clock
        self.catalog = catalog or {}

    def append(
        self,
        movement: StockMovement,
        absolute: bool = False,
        uow=None,
        update_projection: bool = True,
    ) -> StockMovement:
        """
        Validate and persist a movement.

        Args:
            movement: Movement to record (id/created_at are assigned here)
            absolute: For `adjust` only: quantity is the target stock, the
                stored quantity becomes the delta against current stock
            uow: Open unit of work to join (caller holds the product lock)
            update_projection: False when the caller updates the inventory
                row itself (FIFO allocation applies the requested total once)

        Returns:
            The persisted, immutable record

        Raises:
            InvalidQuantity: in/out/discard quantity <= 0, negative absolute target
        """
        if movement.movement_type != MovementType.ADJUST:
            require_positive(movement.quantity, f"{movement.movement_type.value} quantity")
        elif absolute and movement.quantity < 0:
            raise InvalidQuantity(f"Adjustment target cannot be negative (got {movement.quantity})")

        now = self.clock()
        product = self.catalog.get(movement.product_id)
        changes = {}
        if movement.created_at is None:
            changes["created_at"] = now
        if product is not None:
            if movement.product_name is None:
                changes["product_name"] = product.name
            if movement.unit is None:
                changes["unit"] = product.unit

        with locked_unit_of_work(self.store, self.locks, movement.product_id, uow) as work:
            if absolute and movement.movement_type == MovementType.ADJUST:
                row = work.inventory.get(movement.product_id)
                current = row.current_stock if row is not None else 0.0
                changes["quantity"] = normalize_qty(movement.quantity - current)

            stored = work.movements.add(replace(movement, **changes))

            if update_projection:
                apply_delta(work, stored.product_id, stored.signed_quantity, self.settings, now, product)

        logger.debug(
            f"Movement #{stored.id}: product {stored.product_id} {stored.movement_type.value} "
            f"{stored.quantity} lot={stored.lot_number}"
        )
        return stored

    def query_by_product(
        self,
        product_id: int,
        since: Optional[datetime] = None,
        limit: Optional[int] = None,
    ) -> List[StockMovement]:
        """Movements of a product, chronological (newest last); `limit` keeps the latest N."""
        with self.store.reader() as reader:
            return reader.movements.list(product_id=product_id, since=since, limit=limit)

    def query_by_transaction(self, transaction_id: int, uow=None) -> List[StockMovement]:
        with self.store.reader(uow) as reader:
            return reader.movements.list(transaction_id=transaction_id)

    def balance(self, product_id: int) -> float:
        """Signed sum of all movements of a product."""
        return calculate_balance(self.query_by_product(product_id))
