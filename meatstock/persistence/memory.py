"""
In-process store.

Used by the tests and by embedders that keep stock state in memory.
Writes are serialized by one store lock; a failed unit of work restores
the snapshot taken when it began.
"""
import threading
from contextlib import contextmanager
from dataclasses import replace
from datetime import datetime
from typing import Dict, List, Optional

from ..domain.errors import DuplicateKeyError, NotFound
from ..domain.models import LotStatus, ProductInventory, StockLot, StockMovement
from .base import StockStore


class _MemoryState:
    def __init__(self):
        self.lots: Dict[int, StockLot] = {}
        self.lot_ids_by_number: Dict[str, int] = {}
        self.movements: List[StockMovement] = []
        self.inventory: Dict[int, ProductInventory] = {}
        self.next_lot_id = 1
        self.next_movement_id = 1


class MemoryLotRepository:
    def __init__(self, state: _MemoryState):
        self._state = state

    def add(self, lot: StockLot) -> StockLot:
        if lot.lot_number in self._state.lot_ids_by_number:
            raise DuplicateKeyError(f"Lot number {lot.lot_number} already exists")
        stored = replace(lot, id=self._state.next_lot_id)
        self._state.next_lot_id += 1
        self._state.lots[stored.id] = stored
        self._state.lot_ids_by_number[stored.lot_number] = stored.id
        return stored

    def get(self, lot_id: int) -> Optional[StockLot]:
        return self._state.lots.get(lot_id)

    def get_by_number(self, lot_number: str) -> Optional[StockLot]:
        lot_id = self._state.lot_ids_by_number.get(lot_number)
        return self._state.lots.get(lot_id) if lot_id is not None else None

    def update(self, lot: StockLot) -> None:
        current = self._state.lots.get(lot.id)
        if current is None:
            raise NotFound(f"Lot {lot.id} not found")
        self._state.lots[lot.id] = replace(
            current,
            remaining_quantity=lot.remaining_quantity,
            status=lot.status,
        )

    def list(
        self,
        product_id: Optional[int] = None,
        status: Optional[LotStatus] = None,
        transaction_id: Optional[int] = None,
    ) -> List[StockLot]:
        lots = [
            lot for lot in self._state.lots.values()
            if (product_id is None or lot.product_id == product_id)
            and (status is None or lot.status == status)
            and (transaction_id is None or lot.transaction_id == transaction_id)
        ]
        return sorted(lots, key=lambda lot: lot.id)


class MemoryMovementRepository:
    def __init__(self, state: _MemoryState):
        self._state = state

    def add(self, movement: StockMovement) -> StockMovement:
        stored = replace(movement, id=self._state.next_movement_id)
        self._state.next_movement_id += 1
        self._state.movements.append(stored)
        return stored

    def list(
        self,
        product_id: Optional[int] = None,
        since: Optional[datetime] = None,
        limit: Optional[int] = None,
        transaction_id: Optional[int] = None,
    ) -> List[StockMovement]:
        result = [
            m for m in self._state.movements
            if (product_id is None or m.product_id == product_id)
            and (since is None or (m.created_at is not None and m.created_at >= since))
            and (transaction_id is None or m.transaction_id == transaction_id)
        ]
        if limit is not None:
            result = result[max(len(result) - limit, 0):] if limit > 0 else []
        return result


class MemoryInventoryRepository:
    def __init__(self, state: _MemoryState):
        self._state = state

    def get(self, product_id: int) -> Optional[ProductInventory]:
        return self._state.inventory.get(product_id)

    def save(self, row: ProductInventory) -> None:
        self._state.inventory[row.product_id] = row

    def list(self) -> List[ProductInventory]:
        return [self._state.inventory[pid] for pid in sorted(self._state.inventory)]


class MemoryUnitOfWork:
    def __init__(self, state: _MemoryState):
        self.lots = MemoryLotRepository(state)
        self.movements = MemoryMovementRepository(state)
        self.inventory = MemoryInventoryRepository(state)


class MemoryStore(StockStore):
    """Dictionary-backed store with snapshot rollback."""

    def __init__(self):
        self._state = _MemoryState()
        self._lock = threading.RLock()

    @contextmanager
    def _begin(self):
        with self._lock:
            # Containers are copied one level deep; records are frozen
            snapshot = {
                key: (value.copy() if isinstance(value, (dict, list)) else value)
                for key, value in vars(self._state).items()
            }
            try:
                yield MemoryUnitOfWork(self._state)
            except BaseException:
                self._state.__dict__.update(snapshot)
                raise

    @contextmanager
    def _read(self):
        with self._lock:
            yield MemoryUnitOfWork(self._state)
