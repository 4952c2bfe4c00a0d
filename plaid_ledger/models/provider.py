"""Provider-side data shapes.

These are the normalized records returned by provider clients. Amounts use
the ledger sign convention: negative is money leaving the account.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Optional


@dataclass
class ProviderTransaction:
    """A transaction as reported by the provider's sync feed."""

    transaction_id: str
    account_id: str
    amount: float
    date: str
    name: str
    iso_currency_code: Optional[str] = "USD"
    datetime: Optional[str] = None
    authorized_date: Optional[str] = None
    authorized_datetime: Optional[str] = None
    merchant_name: Optional[str] = None
    category_primary: Optional[str] = None
    category_detailed: Optional[str] = None
    payment_channel: Optional[str] = None
    pending: bool = False
    pending_transaction_id: Optional[str] = None


@dataclass
class ProviderAccount:
    """An account as reported by the provider."""

    account_id: str
    name: str
    mask: Optional[str] = None
    official_name: Optional[str] = None
    type: Optional[str] = None
    subtype: Optional[str] = None
    iso_currency_code: Optional[str] = "USD"
    current_balance: Optional[float] = None
    available_balance: Optional[float] = None
    limit: Optional[float] = None

    @property
    def signature(self) -> str:
        """Name/mask key used to match accounts across reconnections."""
        return f"{self.name}|{self.mask or ''}"


@dataclass
class SyncPage:
    """One page of the provider's incremental transaction feed."""

    added: list[ProviderTransaction] = field(default_factory=list)
    modified: list[ProviderTransaction] = field(default_factory=list)
    removed: list[str] = field(default_factory=list)
    accounts: list[ProviderAccount] = field(default_factory=list)
    next_cursor: str = ""
    has_more: bool = False


@dataclass
class ExchangeResult:
    """Result of exchanging a Link public token."""

    access_token: str
    item_id: str


@dataclass
class InstitutionInfo:
    """Institution linked to an item."""

    institution_id: Optional[str] = None
    name: Optional[str] = None


@dataclass
class ProviderSecurity:
    """A security (stock, fund, cash position) referenced by holdings."""

    security_id: str
    name: Optional[str] = None
    ticker_symbol: Optional[str] = None
    type: Optional[str] = None
    iso_currency_code: Optional[str] = "USD"


@dataclass
class ProviderHolding:
    """Quantity of one security held in one investment account."""

    account_id: str
    security_id: str
    quantity: float
    cost_basis: Optional[float] = None
    institution_price: Optional[float] = None
    institution_price_as_of: Optional[str] = None
    iso_currency_code: Optional[str] = "USD"


@dataclass
class ProviderInvestmentTransaction:
    """A buy, sell, dividend or fee in an investment account."""

    investment_transaction_id: str
    account_id: str
    date: str
    type: str
    name: Optional[str] = None
    subtype: Optional[str] = None
    security_id: Optional[str] = None
    amount: Optional[float] = None
    price: Optional[float] = None
    quantity: Optional[float] = None
    fees: Optional[float] = None
    iso_currency_code: Optional[str] = "USD"


@dataclass
class HoldingsSnapshot:
    """Current holdings of an item with the securities they reference."""

    holdings: list[ProviderHolding] = field(default_factory=list)
    securities: list[ProviderSecurity] = field(default_factory=list)


@dataclass
class InvestmentTransactionsPage:
    """One offset page of investment transactions in a date range."""

    investment_transactions: list[ProviderInvestmentTransaction] = field(default_factory=list)
    securities: list[ProviderSecurity] = field(default_factory=list)
    total: int = 0
