"""Ledger-side enums and value objects."""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Optional


class ItemStatus(str, Enum):
    """Connection health of a linked item."""

    ACTIVE = "ACTIVE"
    ERROR = "ERROR"
    PENDING_EXPIRATION = "PENDING_EXPIRATION"
    PENDING_DISCONNECT = "PENDING_DISCONNECT"


class CategoryGroup(str, Enum):
    """Top-level grouping for user categories."""

    EXPENSES = "EXPENSES"
    INCOME = "INCOME"
    INVESTMENT = "INVESTMENT"
    TRANSFER = "TRANSFER"


class ReconnectionState(str, Enum):
    """Lifecycle of a pending reconnection."""

    PREPARED = "PREPARED"
    CONFIRMED = "CONFIRMED"
    COMPLETE = "COMPLETE"
    EXPIRED = "EXPIRED"
    CANCELLED = "CANCELLED"


@dataclass
class CategoryRef:
    """A resolved category/subcategory pair."""

    category_id: str
    subcategory_id: Optional[str] = None


@dataclass
class SplitItem:
    """One child of a split request."""

    amount: float
    category_id: Optional[str] = None
    subcategory_id: Optional[str] = None
    description: Optional[str] = None
    notes: Optional[str] = None
