"""Data models for plaid-ledger."""

from .ledger import CategoryGroup, CategoryRef, ItemStatus, ReconnectionState, SplitItem
from .provider import (
    ExchangeResult,
    HoldingsSnapshot,
    InstitutionInfo,
    InvestmentTransactionsPage,
    ProviderAccount,
    ProviderHolding,
    ProviderInvestmentTransaction,
    ProviderSecurity,
    ProviderTransaction,
    SyncPage,
)

__all__ = [
    "CategoryGroup",
    "CategoryRef",
    "ExchangeResult",
    "HoldingsSnapshot",
    "InstitutionInfo",
    "InvestmentTransactionsPage",
    "ItemStatus",
    "ProviderAccount",
    "ProviderHolding",
    "ProviderInvestmentTransaction",
    "ProviderSecurity",
    "ProviderTransaction",
    "ReconnectionState",
    "SplitItem",
    "SyncPage",
]
