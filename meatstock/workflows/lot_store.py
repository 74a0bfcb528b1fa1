"""
Lot store: creation, consumption and status transitions of stock lots.

Lots are never deleted. Receipt order (ascending id) is the FIFO key.
"""
import logging
import random
import string
from dataclasses import replace
from datetime import date, datetime
from typing import Callable, List, Mapping, Optional

from ..domain.errors import DuplicateKeyError, InvalidQuantity, NotFound, OverConsumption
from ..domain.models import LotStatus, Product, StockLot, Supplier
from ..domain.validation import is_zero, normalize_qty, require_positive, validate_expiry
from ..persistence.base import StockStore
from .locking import ProductLocks, locked_unit_of_work

logger = logging.getLogger(__name__)

LOT_SUFFIX_ALPHABET = string.ascii_uppercase + string.digits
LOT_SUFFIX_LENGTH = 4
MAX_LOT_NUMBER_ATTEMPTS = 10


def generate_lot_number(product_id: int, receipt_date: date, prefix: str = "LOT") -> str:
    """
    Human-meaningful lot number: LOT-<YYYY-MM-DD>-<product_id>-<XXXX>.

    XXXX is 4 random base-36 characters (uppercase).
    """
    suffix = "".join(random.choices(LOT_SUFFIX_ALPHABET, k=LOT_SUFFIX_LENGTH))
    return f"{prefix}-{receipt_date.isoformat()}-{product_id}-{suffix}"


class LotStore:
    """Owns StockLot records."""

    def __init__(
        self,
        store: StockStore,
        locks: Optional[ProductLocks] = None,
        clock: Callable[[], datetime] = datetime.now,
        catalog: Optional[Mapping[int, Product]] = None,
        lot_prefix: str = "LOT",
    ):
        self.store = store
        self.locks = locks or ProductLocks()
        self.clock = clock
        self.catalog = catalog or {}
        self.lot_prefix = lot_prefix

    def open_lot(
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
        transaction_id: Optional[int] = None,
        product_name: Optional[str] = None,
        uow=None,
    ) -> StockLot:
        """
        Create an active lot with remaining == initial == quantity.

        Args:
            lot_number: Explicit lot number (generated when omitted)
            uow: Open unit of work to join (caller holds the product lock)

        Raises:
            InvalidQuantity: If quantity <= 0
            DuplicateKeyError: If an explicit lot_number already exists
        """
        qty = require_positive(quantity, "Lot quantity")
        now = self.clock()

        ok, msg = validate_expiry(expiry_date, now.date())
        if not ok:
            # Back-dated receipts are legitimate; the sweeper retires such lots
            logger.warning(f"Product {product_id}: {msg} (expiry {expiry_date})")

        if product_name is None and product_id in self.catalog:
            product_name = self.catalog[product_id].name

        with locked_unit_of_work(self.store, self.locks, product_id, uow) as work:
            if lot_number is None:
                lot_number = self._unused_lot_number(work, product_id, now.date())

            lot = work.lots.add(StockLot(
                product_id=product_id,
                lot_number=lot_number,
                initial_quantity=qty,
                remaining_quantity=qty,
                expiry_date=expiry_date,
                traceability_number=traceability_number,
                supplier_id=supplier.id if supplier else None,
                supplier_name=supplier.name if supplier else None,
                origin=origin,
                slaughterhouse=slaughterhouse,
                status=LotStatus.ACTIVE,
                transaction_id=transaction_id,
                product_name=product_name,
                created_at=now,
            ))

        logger.info(f"Lot {lot.lot_number} opened: product {product_id}, {qty}kg, expiry {expiry_date}")
        return lot

    def _unused_lot_number(self, uow, product_id: int, receipt_date: date) -> str:
        for _ in range(MAX_LOT_NUMBER_ATTEMPTS):
            candidate = generate_lot_number(product_id, receipt_date, self.lot_prefix)
            if uow.lots.get_by_number(candidate) is None:
                return candidate
            logger.debug(f"Lot number {candidate} already taken, retrying")
        raise DuplicateKeyError(
            f"Could not generate a unique lot number for product {product_id} "
            f"after {MAX_LOT_NUMBER_ATTEMPTS} attempts"
        )

    def _product_of(self, lot_id: int) -> int:
        with self.store.reader() as reader:
            lot = reader.lots.get(lot_id)
        if lot is None:
            raise NotFound(f"Lot {lot_id} not found")
        return lot.product_id

    def _load(self, uow, lot_id: int) -> StockLot:
        lot = uow.lots.get(lot_id)
        if lot is None:
            raise NotFound(f"Lot {lot_id} not found")
        return lot

    def consume(self, lot_id: int, amount: float, uow=None) -> StockLot:
        """
        Decrement remaining_quantity by amount.

        An active lot that reaches exactly 0 becomes finished; an expired
        lot stays expired.

        Raises:
            InvalidQuantity: If amount <= 0
            OverConsumption: If amount > remaining_quantity
            NotFound: Unknown lot id
        """
        qty = require_positive(amount, "Consumed quantity")
        product_id = self._product_of(lot_id) if uow is None else None

        with locked_unit_of_work(self.store, self.locks, product_id, uow) as work:
            lot = self._load(work, lot_id)
            new_remaining = normalize_qty(lot.remaining_quantity - qty)
            if new_remaining < 0:
                raise OverConsumption(
                    f"Lot {lot.lot_number}: cannot consume {qty}kg, "
                    f"only {lot.remaining_quantity}kg remaining"
                )

            status = lot.status
            if is_zero(new_remaining) and status == LotStatus.ACTIVE:
                status = LotStatus.FINISHED

            updated = replace(lot, remaining_quantity=new_remaining, status=status)
            work.lots.update(updated)

        return updated

    def restore(self, lot_id: int, amount: float, uow=None) -> StockLot:
        """
        Put amount back into a lot (sale cancellation).

        A finished lot becomes active again; expired and cancelled lots keep
        their status, and a cancelled lot keeps remaining 0.

        Raises:
            InvalidQuantity: If amount <= 0 or the result exceeds initial_quantity
        """
        qty = require_positive(amount, "Restored quantity")
        product_id = self._product_of(lot_id) if uow is None else None

        with locked_unit_of_work(self.store, self.locks, product_id, uow) as work:
            lot = self._load(work, lot_id)
            if lot.status == LotStatus.CANCELLED:
                logger.warning(f"Lot {lot.lot_number} is cancelled; {qty}kg not restored to it")
                return lot

            new_remaining = normalize_qty(lot.remaining_quantity + qty)
            if new_remaining > lot.initial_quantity:
                raise InvalidQuantity(
                    f"Lot {lot.lot_number}: restoring {qty}kg would exceed "
                    f"initial quantity {lot.initial_quantity}kg"
                )

            status = LotStatus.ACTIVE if lot.status == LotStatus.FINISHED else lot.status
            updated = replace(lot, remaining_quantity=new_remaining, status=status)
            work.lots.update(updated)

        return updated

    def list_active(self, product_id: int, uow=None) -> List[StockLot]:
        """Active lots with stock left, oldest receipt first."""
        with self.store.reader(uow) as reader:
            lots = reader.lots.list(product_id=product_id, status=LotStatus.ACTIVE)
        return [lot for lot in lots if lot.remaining_quantity > 0]

    def mark_expired(self, lot_id: int, uow=None) -> bool:
        """
        Retire an active lot from allocation, whatever its remaining quantity.

        Returns:
            True if the lot was newly marked; False if it was already
            expired, finished or cancelled (idempotent, no error)
        """
        product_id = self._product_of(lot_id) if uow is None else None

        with locked_unit_of_work(self.store, self.locks, product_id, uow) as work:
            lot = self._load(work, lot_id)
            if lot.status != LotStatus.ACTIVE:
                return False
            work.lots.update(replace(lot, status=LotStatus.EXPIRED))

        logger.info(f"Lot {lot.lot_number} marked expired ({lot.remaining_quantity}kg remaining)")
        return True

    def cancel(self, lot_id: int, uow=None) -> float:
        """
        Cancel an active lot (purchase cancellation): remaining forced to 0.

        Returns:
            Quantity taken out of the lot (0.0 if the lot was not active)
        """
        product_id = self._product_of(lot_id) if uow is None else None

        with locked_unit_of_work(self.store, self.locks, product_id, uow) as work:
            lot = self._load(work, lot_id)
            if lot.status != LotStatus.ACTIVE:
                return 0.0
            work.lots.update(replace(lot, remaining_quantity=0.0, status=LotStatus.CANCELLED))

        return lot.remaining_quantity

    def get(self, lot_id: int, uow=None) -> StockLot:
        with self.store.reader(uow) as reader:
            lot = reader.lots.get(lot_id)
        if lot is None:
            raise NotFound(f"Lot {lot_id} not found")
        return lot

    def get_by_number(self, lot_number: str, uow=None) -> StockLot:
        with self.store.reader(uow) as reader:
            lot = reader.lots.get_by_number(lot_number)
        if lot is None:
            raise NotFound(f"Lot {lot_number} not found")
        return lot

    def list_lots(
        self,
        product_id: Optional[int] = None,
        status: Optional[LotStatus] = None,
        transaction_id: Optional[int] = None,
        uow=None,
    ) -> List[StockLot]:
        """All lots matching the filters, in receipt order."""
        with self.store.reader(uow) as reader:
            return reader.lots.list(product_id=product_id, status=status, transaction_id=transaction_id)
