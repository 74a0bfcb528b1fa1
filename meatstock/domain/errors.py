"""
Error taxonomy for stock tracking.

Raised by the Lot Store, the Movement Ledger, the projection and the
storage layer. Insufficient lots is NOT an error: the allocation engine
reports it as a shortage value.
"""


class StockError(Exception):
    """Base exception for stock tracking operations"""
    pass


class InvalidQuantity(StockError, ValueError):
    """Raised when a quantity is non-positive, non-numeric or out of range"""
    pass


class OverConsumption(StockError):
    """Raised when consuming more than a lot holds"""
    pass


class NotFound(StockError, LookupError):
    """Raised when a product, lot or inventory row is unknown"""
    pass


class StorageFailure(StockError):
    """Raised when the underlying persistence layer fails"""
    pass


class DuplicateKeyError(StorageFailure):
    """Raised when a UNIQUE key (e.g. lot number) is violated"""
    pass
