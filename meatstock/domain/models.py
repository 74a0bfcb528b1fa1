"""
Domain models for meatstock.

Pure data classes + value objects. No I/O, no side effects.
Records are frozen; state changes produce new instances via dataclasses.replace.
"""
from dataclasses import dataclass, field
from datetime import date, datetime
from enum import Enum
from typing import Optional, Tuple

from .errors import InvalidQuantity
from .validation import is_zero, normalize_qty, validate_lot_number


class MovementType(Enum):
    """Movement types recorded in the stock ledger."""
    IN = "in"            # Receipt: current_stock += qty
    OUT = "out"          # Sale / outbound: current_stock -= qty
    ADJUST = "adjust"    # Correction: qty is the signed delta
    DISCARD = "discard"  # Write-off (e.g. expired stock): current_stock -= qty


class ReferenceType(Enum):
    """What caused a movement."""
    PURCHASE = "purchase"
    SALES = "sales"
    MANUAL = "manual"
    ADJUSTMENT = "adjustment"
    CANCELLATION = "cancellation"


class LotStatus(Enum):
    ACTIVE = "active"
    FINISHED = "finished"    # Consumed to zero
    EXPIRED = "expired"      # Retired by the expiry sweeper
    CANCELLED = "cancelled"  # Purchase transaction cancelled


class StorageLocation(Enum):
    FROZEN = "frozen"
    COLD = "cold"
    ROOM = "room"


class StockStatus(Enum):
    """Safety-stock classification (see domain.safety_stock)."""
    OK = "ok"
    LOW = "low"
    CRITICAL = "critical"
    OUT = "out"


@dataclass(frozen=True)
class Product:
    """Catalog product (owned by the catalog, read-only here)."""
    id: int
    name: str
    unit: str = "kg"
    category: Optional[str] = None
    safety_stock: Optional[float] = None


@dataclass(frozen=True)
class Supplier:
    id: Optional[int] = None
    name: Optional[str] = None


@dataclass(frozen=True)
class MovementReference:
    """Link from a movement to the transaction that caused it."""
    reference_type: ReferenceType = ReferenceType.MANUAL
    transaction_id: Optional[int] = None
    reference_id: Optional[int] = None


@dataclass(frozen=True)
class StockLot:
    """Physically distinct receipt of goods - immutable."""
    product_id: int
    lot_number: str
    initial_quantity: float
    remaining_quantity: float
    expiry_date: Optional[date] = None   # None = never expires
    traceability_number: Optional[str] = None
    supplier_id: Optional[int] = None
    supplier_name: Optional[str] = None
    origin: Optional[str] = None
    slaughterhouse: Optional[str] = None
    status: LotStatus = LotStatus.ACTIVE
    transaction_id: Optional[int] = None  # Purchase that created the lot
    product_name: Optional[str] = None
    created_at: Optional[datetime] = None
    id: Optional[int] = None              # Assigned by the repository; receipt order

    def __post_init__(self):
        ok, msg = validate_lot_number(self.lot_number)
        if not ok:
            raise ValueError(msg)
        initial = normalize_qty(self.initial_quantity)
        remaining = normalize_qty(self.remaining_quantity)
        object.__setattr__(self, "initial_quantity", initial)
        object.__setattr__(self, "remaining_quantity", remaining)
        if initial <= 0:
            raise InvalidQuantity(f"Lot initial quantity must be greater than 0 (got {initial})")
        if remaining < 0:
            raise InvalidQuantity(f"Lot remaining quantity cannot be negative (got {remaining})")
        if remaining > initial:
            raise InvalidQuantity(
                f"Lot remaining quantity {remaining} exceeds initial quantity {initial}"
            )
        if self.status == LotStatus.FINISHED and not is_zero(remaining):
            raise ValueError("A finished lot must have zero remaining quantity")

    @property
    def is_allocatable(self) -> bool:
        return self.status == LotStatus.ACTIVE and self.remaining_quantity > 0

    def is_expired(self, check_date: date) -> bool:
        """Check if lot is past its expiry date as of check_date."""
        if self.expiry_date is None:
            return False
        return check_date > self.expiry_date

    def days_until_expiry(self, check_date: date) -> Optional[int]:
        """Days until expiry from check_date (None if no expiry)."""
        if self.expiry_date is None:
            return None
        return (self.expiry_date - check_date).days


@dataclass(frozen=True)
class StockMovement:
    """One immutable ledger entry."""
    product_id: int
    movement_type: MovementType
    quantity: float                 # Non-negative, except ADJUST (signed delta)
    unit_price: Optional[float] = None
    lot_number: Optional[str] = None
    expiry_date: Optional[date] = None
    traceability_number: Optional[str] = None
    origin: Optional[str] = None
    slaughterhouse: Optional[str] = None
    transaction_id: Optional[int] = None
    reference_type: Optional[ReferenceType] = None
    reference_id: Optional[int] = None
    notes: str = ""
    product_name: Optional[str] = None
    unit: Optional[str] = None
    created_by: Optional[str] = None
    created_at: Optional[datetime] = None
    id: Optional[int] = None

    def __post_init__(self):
        qty = normalize_qty(self.quantity)
        object.__setattr__(self, "quantity", qty)
        if self.movement_type != MovementType.ADJUST and qty < 0:
            raise InvalidQuantity(
                f"{self.movement_type.value} movement quantity cannot be negative (got {qty})"
            )

    @property
    def signed_quantity(self) -> float:
        """Effect of this movement on current stock."""
        if self.movement_type in (MovementType.OUT, MovementType.DISCARD):
            return -self.quantity
        return self.quantity

    @property
    def is_lot_tracked(self) -> bool:
        return self.lot_number is not None


@dataclass(frozen=True)
class ProductInventory:
    """Current-state cache, one row per product."""
    product_id: int
    current_stock: float = 0.0
    safety_stock: float = 30.0
    location: StorageLocation = StorageLocation.COLD
    product_name: Optional[str] = None
    unit: Optional[str] = None
    last_updated: Optional[datetime] = None

    def __post_init__(self):
        object.__setattr__(self, "current_stock", normalize_qty(self.current_stock))
        safety = normalize_qty(self.safety_stock)
        if safety < 0:
            raise InvalidQuantity(f"Safety stock cannot be negative (got {safety})")
        object.__setattr__(self, "safety_stock", safety)


@dataclass(frozen=True)
class AllocationResult:
    """Outcome of a FIFO allocation."""
    product_id: int
    requested: float
    movements: Tuple[StockMovement, ...] = ()
    shortage: float = 0.0

    @property
    def has_shortage(self) -> bool:
        return self.shortage > 0

    @property
    def allocated_from_lots(self) -> float:
        return normalize_qty(sum(m.quantity for m in self.movements if m.lot_number is not None))

    @property
    def lot_numbers(self) -> Tuple[str, ...]:
        return tuple(m.lot_number for m in self.movements if m.lot_number is not None)


@dataclass(frozen=True)
class InventoryStats:
    """Dashboard figures."""
    total_products: int
    total_stock: float
    low_stock_count: int
    expiring_count: int
    expired_count: int


@dataclass(frozen=True)
class ReconciliationReport:
    """Projection vs. ledger comparison for one product."""
    product_id: int
    projected_stock: float
    ledger_balance: float
    movement_count: int = 0
    difference: float = field(init=False)

    def __post_init__(self):
        object.__setattr__(self, "difference", normalize_qty(self.projected_stock - self.ledger_balance))

    @property
    def consistent(self) -> bool:
        return is_zero(self.difference)
