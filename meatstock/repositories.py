"""
Repository/DAL Layer for SQLite Storage

- SqliteLotRepository: stock lots (receipt order = id order)
- SqliteMovementRepository: append-only movement ledger
- SqliteInventoryRepository: per-product current-state rows

Design Principles:
- Repositories never open transactions; they run inside the unit of work
  opened by SqliteStore (BEGIN IMMEDIATE ... COMMIT/ROLLBACK)
- IntegrityError mapped to business exceptions
- No business logic: Pure data access layer
"""

import sqlite3
from dataclasses import replace
from datetime import date, datetime
from typing import Any, List, Optional

from dateutil.parser import isoparse

from .domain.errors import DuplicateKeyError, NotFound, StorageFailure
from .domain.models import (
    LotStatus,
    MovementType,
    ProductInventory,
    ReferenceType,
    StockLot,
    StockMovement,
    StorageLocation,
)


# ============================================================
# Row conversion helpers
# ============================================================

def _to_date(value: Optional[str]) -> Optional[date]:
    if not value:
        return None
    return isoparse(value).date()


def _to_datetime(value: Optional[str]) -> Optional[datetime]:
    if not value:
        return None
    return isoparse(value)


def _iso(value: Any) -> Optional[str]:
    return value.isoformat() if value is not None else None


def _map_integrity_error(e: sqlite3.IntegrityError, what: str) -> Exception:
    error_msg = str(e).lower()
    if "unique" in error_msg:
        return DuplicateKeyError(f"{what} already exists")
    return StorageFailure(f"Constraint violated for {what}: {e}")


def _row_to_lot(row: sqlite3.Row) -> StockLot:
    return StockLot(
        id=row["id"],
        product_id=row["product_id"],
        product_name=row["product_name"],
        lot_number=row["lot_number"],
        initial_quantity=row["initial_quantity"],
        remaining_quantity=row["remaining_quantity"],
        expiry_date=_to_date(row["expiry_date"]),
        traceability_number=row["traceability_number"],
        supplier_id=row["supplier_id"],
        supplier_name=row["supplier_name"],
        origin=row["origin"],
        slaughterhouse=row["slaughterhouse"],
        status=LotStatus(row["status"]),
        transaction_id=row["transaction_id"],
        created_at=_to_datetime(row["created_at"]),
    )


def _row_to_movement(row: sqlite3.Row) -> StockMovement:
    reference_type = row["reference_type"]
    return StockMovement(
        id=row["id"],
        product_id=row["product_id"],
        product_name=row["product_name"],
        unit=row["unit"],
        movement_type=MovementType(row["movement_type"]),
        quantity=row["quantity"],
        unit_price=row["unit_price"],
        lot_number=row["lot_number"],
        expiry_date=_to_date(row["expiry_date"]),
        traceability_number=row["traceability_number"],
        origin=row["origin"],
        slaughterhouse=row["slaughterhouse"],
        transaction_id=row["transaction_id"],
        reference_type=ReferenceType(reference_type) if reference_type else None,
        reference_id=row["reference_id"],
        notes=row["notes"] or "",
        created_by=row["created_by"],
        created_at=_to_datetime(row["created_at"]),
    )


def _row_to_inventory(row: sqlite3.Row) -> ProductInventory:
    return ProductInventory(
        product_id=row["product_id"],
        product_name=row["product_name"],
        unit=row["unit"],
        current_stock=row["current_stock"],
        safety_stock=row["safety_stock"],
        location=StorageLocation(row["location"]),
        last_updated=_to_datetime(row["last_updated"]),
    )


# ============================================================
# Lot Repository
# ============================================================

class SqliteLotRepository:
    """
    Repository for stock lots.

    Responsibilities:
    - Insert lots (lot_number is UNIQUE)
    - Update remaining quantity / status
    - List lots by product, status, purchase transaction
    """

    def __init__(self, conn: sqlite3.Connection):
        self.conn = conn

    def add(self, lot: StockLot) -> StockLot:
        """
        Insert a new lot.

        Raises:
            DuplicateKeyError: If lot_number already exists
        """
        created_at = lot.created_at or datetime.now()
        try:
            cursor = self.conn.execute("""
                INSERT INTO stock_lots (
                    product_id, product_name, lot_number, initial_quantity, remaining_quantity,
                    expiry_date, traceability_number, supplier_id, supplier_name, origin,
                    slaughterhouse, status, transaction_id, created_at
                ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
            """, (
                lot.product_id,
                lot.product_name,
                lot.lot_number,
                lot.initial_quantity,
                lot.remaining_quantity,
                _iso(lot.expiry_date),
                lot.traceability_number,
                lot.supplier_id,
                lot.supplier_name,
                lot.origin,
                lot.slaughterhouse,
                lot.status.value,
                lot.transaction_id,
                created_at.isoformat(),
            ))
        except sqlite3.IntegrityError as e:
            raise _map_integrity_error(e, f"Lot number {lot.lot_number}") from e

        return replace(lot, id=cursor.lastrowid, created_at=created_at)

    def get(self, lot_id: int) -> Optional[StockLot]:
        row = self.conn.execute("SELECT * FROM stock_lots WHERE id = ?", (lot_id,)).fetchone()
        return _row_to_lot(row) if row else None

    def get_by_number(self, lot_number: str) -> Optional[StockLot]:
        row = self.conn.execute(
            "SELECT * FROM stock_lots WHERE lot_number = ?", (lot_number,)
        ).fetchone()
        return _row_to_lot(row) if row else None

    def update(self, lot: StockLot) -> None:
        """
        Persist remaining_quantity and status.

        Raises:
            NotFound: If the lot doesn't exist
        """
        try:
            cursor = self.conn.execute("""
                UPDATE stock_lots
                SET remaining_quantity = ?, status = ?, updated_at = ?
                WHERE id = ?
            """, (lot.remaining_quantity, lot.status.value, datetime.now().isoformat(), lot.id))
        except sqlite3.IntegrityError as e:
            raise _map_integrity_error(e, f"Lot {lot.lot_number}") from e

        if cursor.rowcount == 0:
            raise NotFound(f"Lot {lot.id} not found")

    def list(
        self,
        product_id: Optional[int] = None,
        status: Optional[LotStatus] = None,
        transaction_id: Optional[int] = None,
    ) -> List[StockLot]:
        where_clauses = []
        values: List[Any] = []

        if product_id is not None:
            where_clauses.append("product_id = ?")
            values.append(product_id)

        if status is not None:
            where_clauses.append("status = ?")
            values.append(status.value)

        if transaction_id is not None:
            where_clauses.append("transaction_id = ?")
            values.append(transaction_id)

        where_sql = f"WHERE {' AND '.join(where_clauses)}" if where_clauses else ""
        cursor = self.conn.execute(f"SELECT * FROM stock_lots {where_sql} ORDER BY id ASC", values)
        return [_row_to_lot(row) for row in cursor.fetchall()]


# ============================================================
# Movement Repository
# ============================================================

class SqliteMovementRepository:
    """
    Repository for the movement ledger (append-only log).

    There is no update or delete: corrections are new movements.
    """

    def __init__(self, conn: sqlite3.Connection):
        self.conn = conn

    def add(self, movement: StockMovement) -> StockMovement:
        created_at = movement.created_at or datetime.now()
        try:
            cursor = self.conn.execute("""
                INSERT INTO stock_movements (
                    product_id, product_name, unit, movement_type, quantity, unit_price,
                    lot_number, expiry_date, traceability_number, origin, slaughterhouse,
                    transaction_id, reference_type, reference_id, notes, created_by, created_at
                ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
            """, (
                movement.product_id,
                movement.product_name,
                movement.unit,
                movement.movement_type.value,
                movement.quantity,
                movement.unit_price,
                movement.lot_number,
                _iso(movement.expiry_date),
                movement.traceability_number,
                movement.origin,
                movement.slaughterhouse,
                movement.transaction_id,
                movement.reference_type.value if movement.reference_type else None,
                movement.reference_id,
                movement.notes,
                movement.created_by,
                created_at.isoformat(),
            ))
        except sqlite3.IntegrityError as e:
            raise _map_integrity_error(e, "Movement") from e

        return replace(movement, id=cursor.lastrowid, created_at=created_at)

    def list(
        self,
        product_id: Optional[int] = None,
        since: Optional[datetime] = None,
        limit: Optional[int] = None,
        transaction_id: Optional[int] = None,
    ) -> List[StockMovement]:
        """
        List movements with filters.

        Returns:
            Movements in append order (id ASC); with `limit`, only the
            most recent `limit` of them
        """
        where_clauses = []
        values: List[Any] = []

        if product_id is not None:
            where_clauses.append("product_id = ?")
            values.append(product_id)

        if since is not None:
            where_clauses.append("created_at >= ?")
            values.append(since.isoformat())

        if transaction_id is not None:
            where_clauses.append("transaction_id = ?")
            values.append(transaction_id)

        where_sql = f"WHERE {' AND '.join(where_clauses)}" if where_clauses else ""

        if limit is None:
            sql = f"SELECT * FROM stock_movements {where_sql} ORDER BY id ASC"
        else:
            # Newest `limit` rows, handed back oldest first
            sql = (
                f"SELECT * FROM (SELECT * FROM stock_movements {where_sql} "
                "ORDER BY id DESC LIMIT ?) ORDER BY id ASC"
            )
            values.append(max(limit, 0))

        cursor = self.conn.execute(sql, values)
        return [_row_to_movement(row) for row in cursor.fetchall()]


# ============================================================
# Inventory Repository
# ============================================================

class SqliteInventoryRepository:
    """Repository for product_inventory rows (one per tracked product)."""

    def __init__(self, conn: sqlite3.Connection):
        self.conn = conn

    def get(self, product_id: int) -> Optional[ProductInventory]:
        row = self.conn.execute(
            "SELECT * FROM product_inventory WHERE product_id = ?", (product_id,)
        ).fetchone()
        return _row_to_inventory(row) if row else None

    def save(self, row: ProductInventory) -> None:
        """Insert or update (upsert) the row for row.product_id."""
        last_updated = row.last_updated or datetime.now()
        self.conn.execute("""
            INSERT INTO product_inventory (
                product_id, product_name, unit, current_stock, safety_stock, location, last_updated
            ) VALUES (?, ?, ?, ?, ?, ?, ?)
            ON CONFLICT(product_id) DO UPDATE SET
                product_name = excluded.product_name,
                unit = excluded.unit,
                current_stock = excluded.current_stock,
                safety_stock = excluded.safety_stock,
                location = excluded.location,
                last_updated = excluded.last_updated
        """, (
            row.product_id,
            row.product_name,
            row.unit,
            row.current_stock,
            row.safety_stock,
            row.location.value,
            last_updated.isoformat(),
        ))

    def list(self) -> List[ProductInventory]:
        cursor = self.conn.execute("SELECT * FROM product_inventory ORDER BY product_id ASC")
        return [_row_to_inventory(row) for row in cursor.fetchall()]


# ============================================================
# Unit of Work
# ============================================================

class SqliteUnitOfWork:
    """
    Repository instances sharing one connection (and its open transaction).

    Usage:
        >>> with factory.writer() as conn:
        ...     with transaction(conn, "IMMEDIATE"):
        ...         uow = SqliteUnitOfWork(conn)
        ...         uow.lots.add(lot)
        ...         uow.movements.add(movement)
    """

    def __init__(self, conn: sqlite3.Connection):
        self.conn = conn
        self.lots = SqliteLotRepository(conn)
        self.movements = SqliteMovementRepository(conn)
        self.inventory = SqliteInventoryRepository(conn)
