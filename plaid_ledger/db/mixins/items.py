"""Item (bank connection) database operations."""

from __future__ import annotations

from typing import Any, Optional

from .base import CountMixin, _new_id, _now_iso

ITEM_UPDATABLE_COLUMNS = frozenset(
    {
        "external_item_id",
        "access_token",
        "institution_id",
        "institution_name",
        "status",
        "transactions_cursor",
        "investments_cursor",
        "last_synced_at",
        "error_code",
    }
)


class ItemsMixin(CountMixin):
    """Mixin for item database operations."""

    def create_item(
        self,
        external_item_id: str,
        access_token: str,
        institution_id: Optional[str] = None,
        institution_name: Optional[str] = None,
        status: str = "ACTIVE",
    ) -> str:
        """Insert a newly linked item.

        Returns:
            The new item id.
        """
        item_id = _new_id()
        now = _now_iso()
        with self._connection() as conn:
            conn.execute(
                """INSERT INTO items
                (id, external_item_id, access_token, institution_id, institution_name,
                 status, created_at, updated_at)
                VALUES (?, ?, ?, ?, ?, ?, ?, ?)""",
                (
                    item_id,
                    external_item_id,
                    access_token,
                    institution_id,
                    institution_name,
                    status,
                    now,
                    now,
                ),
            )
        return item_id

    def get_item(self, item_id: str) -> Optional[dict[str, Any]]:
        """Get an item by primary key."""
        return self._fetch_one("SELECT * FROM items WHERE id = ?", (item_id,))

    def get_item_by_external_id(self, external_item_id: str) -> Optional[dict[str, Any]]:
        """Get an item by the provider's item id."""
        return self._fetch_one("SELECT * FROM items WHERE external_item_id = ?", (external_item_id,))

    def get_items(self, status: Optional[str] = None) -> list[dict[str, Any]]:
        """List items, optionally filtered by status."""
        if status:
            return self._fetch_all(
                "SELECT * FROM items WHERE status = ? ORDER BY created_at", (status,)
            )
        return self._fetch_all("SELECT * FROM items ORDER BY created_at")

    def update_item(self, item_id: str, **fields: Any) -> bool:
        """Patch item columns."""
        return self._patch("items", item_id, fields, ITEM_UPDATABLE_COLUMNS)

    def set_item_status(self, item_id: str, status: str, error_code: Optional[str] = None) -> bool:
        """Set an item's connection status."""
        return self.update_item(item_id, status=status, error_code=error_code)

    def set_transactions_cursor(self, item_id: str, cursor: Optional[str]) -> bool:
        """Persist the sync cursor after a window has been applied."""
        return self.update_item(item_id, transactions_cursor=cursor, last_synced_at=_now_iso())

    def set_investments_cursor(self, item_id: str, cursor: Optional[str]) -> bool:
        """Persist the last date covered by an investment sync."""
        return self.update_item(item_id, investments_cursor=cursor)

    def clear_cursors(self, item_id: str) -> bool:
        """Reset both cursors so the next sync starts from scratch."""
        return self.update_item(item_id, transactions_cursor=None, investments_cursor=None)

    def delete_item(self, item_id: str) -> bool:
        """Delete an item with its accounts, transactions, holdings and tag links."""
        with self._connection() as conn:
            conn.execute(
                """DELETE FROM transaction_tags WHERE transaction_id IN (
                    SELECT t.id FROM transactions t
                    JOIN accounts a ON a.id = t.account_id WHERE a.item_id = ?)""",
                (item_id,),
            )
            for table in ("holdings", "investment_transactions"):
                conn.execute(
                    f"""DELETE FROM {table} WHERE account_id IN (
                        SELECT id FROM accounts WHERE item_id = ?)""",
                    (item_id,),
                )
            conn.execute(
                """DELETE FROM transactions WHERE account_id IN (
                    SELECT id FROM accounts WHERE item_id = ?)""",
                (item_id,),
            )
            conn.execute("DELETE FROM accounts WHERE item_id = ?", (item_id,))
            cursor = conn.execute("DELETE FROM items WHERE id = ?", (item_id,))
            return cursor.rowcount > 0

    def get_item_count(self) -> int:
        """Number of linked items."""
        return self._count("items")
