"""Account database operations."""

from __future__ import annotations

from typing import TYPE_CHECKING, Any, Optional

from .base import CountMixin, _new_id, _now_iso

if TYPE_CHECKING:
    from ...models import ProviderAccount

ACCOUNT_UPDATABLE_COLUMNS = frozenset(
    {
        "external_account_id",
        "name",
        "official_name",
        "mask",
        "type",
        "subtype",
        "currency",
        "current_balance",
        "available_balance",
        "credit_limit",
        "balance_updated_at",
    }
)


class AccountsMixin(CountMixin):
    """Mixin for account database operations."""

    def create_account(self, item_id: str, account: ProviderAccount) -> str:
        """Insert an account reported by the provider.

        Returns:
            The new account id.
        """
        account_id = _new_id()
        now = _now_iso()
        with self._connection() as conn:
            conn.execute(
                """INSERT INTO accounts
                (id, item_id, external_account_id, name, official_name, mask, type, subtype,
                 currency, current_balance, available_balance, credit_limit,
                 balance_updated_at, created_at, updated_at)
                VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)""",
                (
                    account_id,
                    item_id,
                    account.account_id,
                    account.name,
                    account.official_name,
                    account.mask,
                    account.type,
                    account.subtype,
                    account.iso_currency_code,
                    account.current_balance,
                    account.available_balance,
                    account.limit,
                    now,
                    now,
                    now,
                ),
            )
        return account_id

    def upsert_account(self, item_id: str, account: ProviderAccount) -> tuple[str, bool]:
        """Insert an account or refresh its balances.

        The stored display name is left alone on refresh since users rename
        accounts locally.

        Returns:
            Tuple of (account_id, was_inserted).
        """
        existing = self.get_account_by_external_id(account.account_id)
        if existing is None:
            return self.create_account(item_id, account), True
        self.refresh_account(existing["id"], account)
        return existing["id"], False

    def refresh_account(self, account_id: str, account: ProviderAccount) -> bool:
        """Update provider-owned fields of an existing account."""
        return self.update_account(
            account_id,
            official_name=account.official_name,
            type=account.type,
            subtype=account.subtype,
            currency=account.iso_currency_code,
            current_balance=account.current_balance,
            available_balance=account.available_balance,
            credit_limit=account.limit,
            balance_updated_at=_now_iso(),
        )

    def get_account(self, account_id: str) -> Optional[dict[str, Any]]:
        """Get an account by primary key."""
        return self._fetch_one("SELECT * FROM accounts WHERE id = ?", (account_id,))

    def get_account_by_external_id(self, external_account_id: str) -> Optional[dict[str, Any]]:
        """Get an account by the provider's account id."""
        return self._fetch_one(
            "SELECT * FROM accounts WHERE external_account_id = ?", (external_account_id,)
        )

    def get_accounts_for_item(self, item_id: str) -> list[dict[str, Any]]:
        """List accounts belonging to an item."""
        return self._fetch_all(
            "SELECT * FROM accounts WHERE item_id = ? ORDER BY name", (item_id,)
        )

    def update_account(self, account_id: str, **fields: Any) -> bool:
        """Patch account columns."""
        return self._patch("accounts", account_id, fields, ACCOUNT_UPDATABLE_COLUMNS)

    def get_account_count(self) -> int:
        """Number of accounts across all items."""
        return self._count("accounts")
