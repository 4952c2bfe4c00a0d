"""Builders for provider-side test data."""

from plaid_ledger.models import ProviderAccount, ProviderTransaction, SyncPage

ACCESS_TOKEN = "access-test-1"
EXTERNAL_ITEM_ID = "plaid-item-1"


def make_account(
    account_id: str = "acc-1",
    name: str = "Checking",
    mask: str = "1111",
    current_balance: float = 1000.0,
) -> ProviderAccount:
    """Create a provider account."""
    return ProviderAccount(
        account_id=account_id,
        name=name,
        mask=mask,
        type="depository",
        subtype="checking",
        current_balance=current_balance,
        available_balance=current_balance,
    )


def make_txn(
    transaction_id: str = "t1",
    amount: float = -42.00,
    account_id: str = "acc-1",
    date: str = "2025-01-10",
    name: str = "COFFEE SHOP",
    merchant_name: str | None = "Blue Bottle",
    category_primary: str | None = None,
    category_detailed: str | None = None,
    pending: bool = False,
) -> ProviderTransaction:
    """Create a provider transaction."""
    return ProviderTransaction(
        transaction_id=transaction_id,
        account_id=account_id,
        amount=amount,
        date=date,
        name=name,
        merchant_name=merchant_name,
        category_primary=category_primary,
        category_detailed=category_detailed,
        pending=pending,
    )


def page(
    added=(), modified=(), removed=(), accounts=(), next_cursor="c1", has_more=False
) -> SyncPage:
    """Create a sync page."""
    return SyncPage(
        added=list(added),
        modified=list(modified),
        removed=list(removed),
        accounts=list(accounts),
        next_cursor=next_cursor,
        has_more=has_more,
    )
