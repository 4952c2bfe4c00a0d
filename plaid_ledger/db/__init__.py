"""Ledger storage."""

from .database import Database
from .protocols import LedgerStore

__all__ = ["Database", "LedgerStore"]
