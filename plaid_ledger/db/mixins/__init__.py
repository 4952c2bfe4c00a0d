"""Database mixins, one per table family."""

from .accounts import AccountsMixin
from .base import CountMixin, DatabaseMixin
from .categories import CategoriesMixin
from .investments import InvestmentsMixin
from .items import ItemsMixin
from .locks import LocksMixin
from .reconnections import ReconnectionsMixin
from .tags import TagsMixin
from .transactions import TransactionsMixin

__all__ = [
    "AccountsMixin",
    "CategoriesMixin",
    "CountMixin",
    "DatabaseMixin",
    "InvestmentsMixin",
    "ItemsMixin",
    "LocksMixin",
    "ReconnectionsMixin",
    "TagsMixin",
    "TransactionsMixin",
]
