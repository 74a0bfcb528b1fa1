"""Inventory lot ledger and FIFO allocation for meat distribution."""
