"""
Storage interface for the stock components.

Three repositories (lots, movements, inventory rows) are always used
through a unit of work: every write inside one `store.atomic()` block
commits together or not at all.
"""
from abc import ABC, abstractmethod
from contextlib import contextmanager
from datetime import datetime
from typing import Iterator, List, Optional, Protocol

from ..domain.models import LotStatus, ProductInventory, StockLot, StockMovement


class LotRepository(Protocol):
    def add(self, lot: StockLot) -> StockLot:
        """Persist a new lot; returns it with its id assigned."""
        ...

    def get(self, lot_id: int) -> Optional[StockLot]:
        ...

    def get_by_number(self, lot_number: str) -> Optional[StockLot]:
        ...

    def update(self, lot: StockLot) -> None:
        """Persist remaining_quantity and status of an existing lot."""
        ...

    def list(
        self,
        product_id: Optional[int] = None,
        status: Optional[LotStatus] = None,
        transaction_id: Optional[int] = None,
    ) -> List[StockLot]:
        """Lots in receipt order (ascending id)."""
        ...


class MovementRepository(Protocol):
    def add(self, movement: StockMovement) -> StockMovement:
        """Append a movement; returns it with its id assigned."""
        ...

    def list(
        self,
        product_id: Optional[int] = None,
        since: Optional[datetime] = None,
        limit: Optional[int] = None,
        transaction_id: Optional[int] = None,
    ) -> List[StockMovement]:
        """Movements in chronological (append) order; `limit` keeps the most recent ones."""
        ...


class InventoryRepository(Protocol):
    def get(self, product_id: int) -> Optional[ProductInventory]:
        ...

    def save(self, row: ProductInventory) -> None:
        """Insert or replace the row for row.product_id."""
        ...

    def list(self) -> List[ProductInventory]:
        ...


class UnitOfWork(Protocol):
    lots: LotRepository
    movements: MovementRepository
    inventory: InventoryRepository


class StockStore(ABC):
    """
    Factory of units of work.

    atomic(uow) joins an already-open unit of work when one is passed, so
    components can be composed inside a single transaction.
    """

    @abstractmethod
    def _begin(self):
        """Context manager yielding a fresh writable unit of work."""

    @abstractmethod
    def _read(self):
        """Context manager yielding a read-only unit of work."""

    @contextmanager
    def atomic(self, uow: Optional[UnitOfWork] = None) -> Iterator[UnitOfWork]:
        if uow is not None:
            yield uow
            return
        with self._begin() as fresh:
            yield fresh

    @contextmanager
    def reader(self, uow: Optional[UnitOfWork] = None) -> Iterator[UnitOfWork]:
        if uow is not None:
            yield uow
            return
        with self._read() as fresh:
            yield fresh

    def close(self) -> None:
        pass
