"""Protocol definitions for provider clients.

These protocols define the expected interface for real and mock clients,
ensuring type safety and interface consistency.
"""

from typing import Optional, Protocol

from ..models import (
    ExchangeResult,
    HoldingsSnapshot,
    InstitutionInfo,
    InvestmentTransactionsPage,
    ProviderAccount,
    SyncPage,
)


class TransactionsProvider(Protocol):
    """Protocol defining the banking provider interface."""

    def transactions_sync(
        self, access_token: str, cursor: Optional[str], count: int = 500
    ) -> SyncPage:
        """Fetch one page of the incremental transaction feed."""
        ...

    def investments_holdings_get(self, access_token: str) -> HoldingsSnapshot:
        """Fetch current holdings and their securities."""
        ...

    def investments_transactions_get(
        self,
        access_token: str,
        start_date: str,
        end_date: str,
        offset: int = 0,
        count: int = 500,
    ) -> InvestmentTransactionsPage:
        """Fetch one offset page of investment transactions in a date range."""
        ...

    def exchange_public_token(self, public_token: str) -> ExchangeResult:
        """Exchange a Link public token for a credential and item id."""
        ...

    def get_item_institution(self, access_token: str) -> InstitutionInfo:
        """Look up the institution an item belongs to."""
        ...

    def get_accounts(self, access_token: str) -> list[ProviderAccount]:
        """Fetch the accounts exposed by an item."""
        ...

    def create_link_token(self, user_id: str, access_token: Optional[str] = None) -> str:
        """Create a Link token; pass ``access_token`` for update mode."""
        ...
