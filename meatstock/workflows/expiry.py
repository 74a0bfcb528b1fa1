"""
Expiry sweeper and "expiring soon" queries.

The sweep only changes lot status. It writes no movement and does not
touch current stock: expired goods are written off by an explicit
discard.
"""
import logging
from datetime import date, datetime, timedelta
from typing import Callable, List, Optional

from ..domain.errors import StockError
from ..domain.models import LotStatus, StockLot
from ..persistence.base import StockStore
from .locking import ProductLocks
from .lot_store import LotStore

logger = logging.getLogger(__name__)


class ExpirySweeper:
    """Retire lots past their expiry date."""

    def __init__(
        self,
        store: StockStore,
        lot_store: LotStore,
        locks: Optional[ProductLocks] = None,
        clock: Callable[[], datetime] = datetime.now,
    ):
        self.store = store
        self.lot_store = lot_store
        self.locks = locks or ProductLocks()
        self.clock = clock

    def sweep(self, today: Optional[date] = None) -> int:
        """
        Mark every active lot with expiry_date < today as expired.

        Best effort: a lot that fails is logged and skipped.

        Returns:
            Number of lots newly marked expired
        """
        today = today or self.clock().date()

        with self.store.reader() as reader:
            candidates = [
                lot for lot in reader.lots.list(status=LotStatus.ACTIVE)
                if lot.is_expired(today)
            ]

        marked = 0
        for lot in candidates:
            try:
                with self.locks.hold(lot.product_id):
                    with self.store.atomic() as uow:
                        if self.lot_store.mark_expired(lot.id, uow=uow):
                            marked += 1
            except StockError:
                logger.exception(f"Could not mark lot {lot.lot_number} expired; continuing")

        if marked:
            logger.info(f"Expiry sweep {today}: {marked} lot(s) marked expired")
        return marked

    def list_expiring_within(self, days: int, today: Optional[date] = None) -> List[StockLot]:
        """
        Active lots with stock left expiring within `days` (overdue included).

        Returns:
            Lots sorted most urgent first (days remaining, then receipt order)
        """
        if days < 0:
            raise ValueError(f"days cannot be negative (got {days})")
        today = today or self.clock().date()
        horizon = today + timedelta(days=days)

        with self.store.reader() as reader:
            lots = reader.lots.list(status=LotStatus.ACTIVE)

        expiring = [
            lot for lot in lots
            if lot.remaining_quantity > 0
            and lot.expiry_date is not None
            and lot.expiry_date <= horizon
        ]
        return sorted(expiring, key=lambda lot: (lot.days_until_expiry(today), lot.id))
