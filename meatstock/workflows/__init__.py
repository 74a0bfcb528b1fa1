"""Workflows module."""
from .allocation import FifoAllocationEngine
from .engine import InventoryEngine
from .expiry import ExpirySweeper
from .locking import ProductLocks
from .lot_store import LotStore
from .movement_ledger import MovementLedger
from .projection import InventoryProjection
from .transaction_commit import TransactionCommitWorkflow

__all__ = [
    'FifoAllocationEngine',
    'InventoryEngine',
    'ExpirySweeper',
    'ProductLocks',
    'LotStore',
    'MovementLedger',
    'InventoryProjection',
    'TransactionCommitWorkflow',
]
