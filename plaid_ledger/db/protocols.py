"""Protocol for the ledger store used by the services.

The services only depend on this interface; ``Database`` is the SQLite
implementation.
"""

from contextlib import AbstractContextManager
from typing import Any, Optional, Protocol

from ..models import (
    CategoryRef,
    ProviderAccount,
    ProviderHolding,
    ProviderInvestmentTransaction,
    ProviderSecurity,
    ProviderTransaction,
)


class LedgerStore(Protocol):
    """Storage interface for items, accounts, transactions, categories and tags."""

    def batch(self) -> AbstractContextManager[Any]:
        """Group several writes into one atomic unit."""
        ...

    # Items
    def create_item(
        self,
        external_item_id: str,
        access_token: str,
        institution_id: Optional[str] = None,
        institution_name: Optional[str] = None,
        status: str = "ACTIVE",
    ) -> str: ...

    def get_item(self, item_id: str) -> Optional[dict[str, Any]]: ...

    def get_item_by_external_id(self, external_item_id: str) -> Optional[dict[str, Any]]: ...

    def get_items(self, status: Optional[str] = None) -> list[dict[str, Any]]: ...

    def update_item(self, item_id: str, **fields: Any) -> bool: ...

    def set_item_status(
        self, item_id: str, status: str, error_code: Optional[str] = None
    ) -> bool: ...

    def set_transactions_cursor(self, item_id: str, cursor: Optional[str]) -> bool: ...

    def set_investments_cursor(self, item_id: str, cursor: Optional[str]) -> bool: ...

    def clear_cursors(self, item_id: str) -> bool: ...

    # Accounts
    def create_account(self, item_id: str, account: ProviderAccount) -> str: ...

    def upsert_account(self, item_id: str, account: ProviderAccount) -> tuple[str, bool]: ...

    def get_account_by_external_id(
        self, external_account_id: str
    ) -> Optional[dict[str, Any]]: ...

    def get_accounts_for_item(self, item_id: str) -> list[dict[str, Any]]: ...

    def refresh_account(self, account_id: str, account: ProviderAccount) -> bool: ...

    def update_account(self, account_id: str, **fields: Any) -> bool: ...

    # Transactions
    def insert_transaction(self, **fields: Any) -> str: ...

    def upsert_provider_transaction(
        self,
        account_id: str,
        txn: ProviderTransaction,
        category: Optional[CategoryRef] = None,
    ) -> tuple[str, bool, bool]: ...

    def get_transaction(self, transaction_id: str) -> Optional[dict[str, Any]]: ...

    def get_transaction_by_external_id(self, external_id: str) -> Optional[dict[str, Any]]: ...

    def get_transactions(
        self,
        account_id: Optional[str] = None,
        item_id: Optional[str] = None,
        uncategorized_only: bool = False,
        include_split_parents: bool = True,
        limit: Optional[int] = None,
    ) -> list[dict[str, Any]]: ...

    def get_split_children(self, parent_id: str) -> list[dict[str, Any]]: ...

    def update_transaction(self, transaction_id: str, **fields: Any) -> bool: ...

    def delete_transactions(self, transaction_ids: list[str]) -> int: ...

    def delete_transaction(self, transaction_id: str) -> bool: ...

    def convert_split_children_to_manual(self, item_id: str) -> int: ...

    def count_provider_transactions_for_item(self, item_id: str) -> int: ...

    def delete_provider_transactions_for_item(self, item_id: str) -> int: ...

    def get_merchant_category_distribution(
        self, merchant: str, exclude_transaction_id: Optional[str] = None
    ) -> dict[str, dict[str, Any]]: ...

    def get_similar_transactions(self, merchant: str, limit: int = 10) -> list[dict[str, Any]]: ...

    # Investments
    def upsert_security(self, security: ProviderSecurity) -> tuple[str, bool]: ...

    def get_security_by_external_id(
        self, external_security_id: str
    ) -> Optional[dict[str, Any]]: ...

    def upsert_holding(
        self, account_id: str, security_id: str, holding: ProviderHolding
    ) -> tuple[str, bool]: ...

    def get_holdings_for_item(self, item_id: str) -> list[dict[str, Any]]: ...

    def delete_holding(self, holding_id: str) -> bool: ...

    def upsert_investment_transaction(
        self,
        account_id: str,
        security_id: Optional[str],
        txn: ProviderInvestmentTransaction,
    ) -> tuple[str, bool]: ...

    def delete_investment_data_for_item(self, item_id: str) -> int: ...

    # Categories and tags
    def get_categories(self) -> list[dict[str, Any]]: ...

    def get_or_create_tag(self, name: str, color: Optional[str] = None) -> str: ...

    def add_tag_to_transaction(self, transaction_id: str, tag_id: str) -> bool: ...

    def delete_tag_links_for_transactions(self, transaction_ids: list[str]) -> int: ...

    # Pending reconnections
    def save_pending_reconnection(
        self,
        reconnection_id: str,
        item_id: str,
        payload: dict[str, Any],
        state: str,
        expires_at: float,
    ) -> None: ...

    def get_pending_reconnection(self, reconnection_id: str) -> Optional[dict[str, Any]]: ...

    def set_pending_reconnection_state(self, reconnection_id: str, state: str) -> bool: ...

    def delete_pending_reconnection(self, reconnection_id: str) -> bool: ...

    def purge_expired_reconnections(self, now: float) -> int: ...

    # Item leases
    def acquire_item_lock(
        self, item_id: str, owner: str, now: float, expires_at: float
    ) -> bool: ...

    def release_item_lock(self, item_id: str, owner: str) -> bool: ...
