"""Transaction database operations.

A transaction row is one of: a leaf, a split parent (``is_split = 1``) or a
split child (``parent_transaction_id`` set). Split parents are excluded from
amount aggregation; their children carry the amounts instead.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Any, Optional

from .base import CountMixin, _date_str, _new_id, _now_iso

if TYPE_CHECKING:
    from ...models import CategoryRef, ProviderTransaction

logger = logging.getLogger(__name__)

TRANSACTION_INSERT_COLUMNS = (
    "external_transaction_id",
    "account_id",
    "amount",
    "iso_currency_code",
    "date",
    "datetime",
    "authorized_date",
    "authorized_datetime",
    "name",
    "merchant_name",
    "provider_category",
    "provider_subcategory",
    "payment_channel",
    "pending",
    "pending_transaction_id",
    "category_id",
    "subcategory_id",
    "notes",
    "is_manual",
    "is_split",
    "parent_transaction_id",
    "original_transaction_id",
)

TRANSACTION_UPDATABLE_COLUMNS = frozenset(
    {
        "amount",
        "date",
        "name",
        "merchant_name",
        "category_id",
        "subcategory_id",
        "notes",
        "is_manual",
        "is_split",
        "parent_transaction_id",
    }
)

# Provider-owned fields compared to decide whether a modified row changed.
_PROVIDER_FIELDS = (
    "account_id",
    "amount",
    "iso_currency_code",
    "date",
    "datetime",
    "authorized_date",
    "authorized_datetime",
    "name",
    "merchant_name",
    "provider_category",
    "provider_subcategory",
    "payment_channel",
    "pending",
    "pending_transaction_id",
)


def _provider_values(account_id: str, txn: ProviderTransaction) -> dict[str, Any]:
    """Column values owned by the provider for one transaction."""
    return {
        "account_id": account_id,
        "amount": txn.amount,
        "iso_currency_code": txn.iso_currency_code,
        "date": _date_str(txn.date),
        "datetime": txn.datetime,
        "authorized_date": txn.authorized_date,
        "authorized_datetime": txn.authorized_datetime,
        "name": txn.name,
        "merchant_name": txn.merchant_name,
        "provider_category": txn.category_primary,
        "provider_subcategory": txn.category_detailed,
        "payment_channel": txn.payment_channel,
        "pending": int(txn.pending),
        "pending_transaction_id": txn.pending_transaction_id,
    }


class TransactionsMixin(CountMixin):
    """Mixin for transaction database operations."""

    @staticmethod
    def normalize_merchant(name: str) -> str:
        """Normalize merchant/name for history matching."""
        return " ".join(name.lower().split())

    def insert_transaction(self, **fields: Any) -> str:
        """Insert a transaction row from explicit column values.

        Returns:
            The new transaction id.
        """
        unknown = set(fields) - set(TRANSACTION_INSERT_COLUMNS)
        if unknown:
            raise ValueError(f"Unknown transaction columns: {', '.join(sorted(unknown))}")
        txn_id = _new_id()
        now = _now_iso()
        columns = ["id", *fields.keys(), "created_at", "updated_at"]
        placeholders = ", ".join("?" for _ in columns)
        with self._connection() as conn:
            conn.execute(
                f"INSERT INTO transactions ({', '.join(columns)}) VALUES ({placeholders})",
                (txn_id, *fields.values(), now, now),
            )
        return txn_id

    def upsert_provider_transaction(
        self,
        account_id: str,
        txn: ProviderTransaction,
        category: Optional[CategoryRef] = None,
    ) -> tuple[str, bool, bool]:
        """Insert or update a provider transaction by its external id.

        ``category`` is only applied when the stored row has no category, so
        a user's assignment always survives a provider update.

        Returns:
            Tuple of (transaction_id, was_inserted, was_changed).
        """
        values = _provider_values(account_id, txn)
        with self._connection() as conn:
            existing = conn.execute(
                "SELECT * FROM transactions WHERE external_transaction_id = ?",
                (txn.transaction_id,),
            ).fetchone()
            if existing is None:
                txn_id = self.insert_transaction(
                    external_transaction_id=txn.transaction_id,
                    category_id=category.category_id if category else None,
                    subcategory_id=category.subcategory_id if category else None,
                    **values,
                )
                return txn_id, True, False

            category_id = existing["category_id"]
            subcategory_id = existing["subcategory_id"]
            if category_id is None and category is not None:
                category_id = category.category_id
                subcategory_id = category.subcategory_id

            changed = any(existing[col] != values[col] for col in _PROVIDER_FIELDS) or (
                category_id != existing["category_id"]
            )
            if changed:
                assignments = ", ".join(f"{col} = ?" for col in _PROVIDER_FIELDS)
                conn.execute(
                    f"""UPDATE transactions SET {assignments},
                    category_id = ?, subcategory_id = ?, updated_at = ? WHERE id = ?""",
                    (
                        *(values[col] for col in _PROVIDER_FIELDS),
                        category_id,
                        subcategory_id,
                        _now_iso(),
                        existing["id"],
                    ),
                )
            return existing["id"], False, changed

    def create_manual_transaction(
        self,
        account_id: str,
        amount: float,
        date: str,
        name: str,
        merchant_name: Optional[str] = None,
        category_id: Optional[str] = None,
        subcategory_id: Optional[str] = None,
        notes: Optional[str] = None,
    ) -> str:
        """Create a user-entered transaction that syncs never touch."""
        return self.insert_transaction(
            external_transaction_id=f"manual_{_new_id()}",
            account_id=account_id,
            amount=amount,
            date=_date_str(date),
            name=name,
            merchant_name=merchant_name,
            category_id=category_id,
            subcategory_id=subcategory_id,
            notes=notes,
            is_manual=1,
        )

    def get_transaction(self, transaction_id: str) -> Optional[dict[str, Any]]:
        """Get a transaction by primary key."""
        return self._fetch_one("SELECT * FROM transactions WHERE id = ?", (transaction_id,))

    def get_transaction_by_external_id(self, external_id: str) -> Optional[dict[str, Any]]:
        """Get a transaction by the provider's transaction id."""
        return self._fetch_one(
            "SELECT * FROM transactions WHERE external_transaction_id = ?", (external_id,)
        )

    def get_transactions(
        self,
        account_id: Optional[str] = None,
        item_id: Optional[str] = None,
        uncategorized_only: bool = False,
        include_split_parents: bool = True,
        limit: Optional[int] = None,
    ) -> list[dict[str, Any]]:
        """Query transactions with filters, newest first."""
        conditions: list[str] = []
        params: list[Any] = []
        if account_id:
            conditions.append("t.account_id = ?")
            params.append(account_id)
        if item_id:
            conditions.append("a.item_id = ?")
            params.append(item_id)
        if uncategorized_only:
            conditions.append("t.category_id IS NULL AND t.is_split = 0")
        if not include_split_parents:
            conditions.append("t.is_split = 0")

        query = "SELECT t.* FROM transactions t JOIN accounts a ON a.id = t.account_id"
        if conditions:
            query += " WHERE " + " AND ".join(conditions)
        query += " ORDER BY t.date DESC, t.created_at DESC"
        if limit:
            query += " LIMIT ?"
            params.append(limit)
        return self._fetch_all(query, tuple(params))

    def get_split_children(self, parent_id: str) -> list[dict[str, Any]]:
        """Children of a split parent, in creation order."""
        return self._fetch_all(
            """SELECT * FROM transactions WHERE parent_transaction_id = ?
            ORDER BY created_at, external_transaction_id""",
            (parent_id,),
        )

    def update_transaction(self, transaction_id: str, **fields: Any) -> bool:
        """Patch user-editable transaction columns."""
        return self._patch("transactions", transaction_id, fields, TRANSACTION_UPDATABLE_COLUMNS)

    def delete_transactions(self, transaction_ids: list[str]) -> int:
        """Hard-delete transactions and their tag links.

        Returns:
            Number of transactions deleted.
        """
        if not transaction_ids:
            return 0
        placeholders = ", ".join("?" for _ in transaction_ids)
        with self._connection() as conn:
            conn.execute(
                f"DELETE FROM transaction_tags WHERE transaction_id IN ({placeholders})",
                tuple(transaction_ids),
            )
            cursor = conn.execute(
                f"DELETE FROM transactions WHERE id IN ({placeholders})", tuple(transaction_ids)
            )
            return cursor.rowcount

    def delete_transaction(self, transaction_id: str) -> bool:
        """Hard-delete a single transaction."""
        return self.delete_transactions([transaction_id]) > 0

    # =========================================================================
    # Item-wide operations (reconnection)
    # =========================================================================

    def convert_split_children_to_manual(self, item_id: str) -> int:
        """Detach every split child under an item and mark it manual.

        Returns:
            Number of children converted.
        """
        with self._connection() as conn:
            cursor = conn.execute(
                """UPDATE transactions SET parent_transaction_id = NULL, is_manual = 1,
                updated_at = ?
                WHERE parent_transaction_id IS NOT NULL
                AND account_id IN (SELECT id FROM accounts WHERE item_id = ?)""",
                (_now_iso(), item_id),
            )
            return cursor.rowcount

    def count_provider_transactions_for_item(self, item_id: str) -> int:
        """Non-manual, non-child transactions a reconnection would delete."""
        return self._count(
            "transactions",
            """is_manual = 0 AND parent_transaction_id IS NULL
            AND account_id IN (SELECT id FROM accounts WHERE item_id = ?)""",
            (item_id,),
        )

    def delete_provider_transactions_for_item(self, item_id: str) -> int:
        """Delete all non-manual transactions under an item.

        Returns:
            Number of transactions deleted.
        """
        rows = self._fetch_all(
            """SELECT t.id FROM transactions t JOIN accounts a ON a.id = t.account_id
            WHERE a.item_id = ? AND t.is_manual = 0""",
            (item_id,),
        )
        deleted = self.delete_transactions([row["id"] for row in rows])
        logger.debug("Deleted %d provider transactions for item %s", deleted, item_id)
        return deleted

    # =========================================================================
    # History and aggregation
    # =========================================================================

    def get_merchant_category_distribution(
        self, merchant: str, exclude_transaction_id: Optional[str] = None
    ) -> dict[str, dict[str, Any]]:
        """Category usage for previously categorized rows with the same merchant.

        Args:
            merchant: Merchant or transaction name to match.
            exclude_transaction_id: Row to leave out (the one being classified).

        Returns:
            Dict mapping category_id -> {count, percentage, subcategory_id}.
        """
        normalized = self.normalize_merchant(merchant)
        if not normalized:
            return {}
        rows = self._fetch_all(
            """SELECT category_id, subcategory_id, merchant_name, name
            FROM transactions
            WHERE category_id IS NOT NULL AND is_split = 0 AND id != ?""",
            (exclude_transaction_id or "",),
        )
        counts: dict[str, dict[str, Any]] = {}
        for row in rows:
            key = self.normalize_merchant(row["merchant_name"] or row["name"] or "")
            if key != normalized:
                continue
            entry = counts.setdefault(
                row["category_id"], {"count": 0, "subcategory_id": row["subcategory_id"]}
            )
            entry["count"] += 1
        total = sum(entry["count"] for entry in counts.values())
        for entry in counts.values():
            entry["percentage"] = entry["count"] / total
        return dict(sorted(counts.items(), key=lambda kv: kv[1]["count"], reverse=True))

    def get_similar_transactions(
        self, merchant: str, limit: int = 10
    ) -> list[dict[str, Any]]:
        """Recent categorized rows whose merchant or name contains ``merchant``."""
        pattern = f"%{merchant.strip()}%"
        return self._fetch_all(
            """SELECT t.name, t.merchant_name, t.amount, c.name AS category_name
            FROM transactions t JOIN categories c ON c.id = t.category_id
            WHERE t.is_split = 0 AND (t.merchant_name LIKE ? OR t.name LIKE ?)
            ORDER BY t.date DESC LIMIT ?""",
            (pattern, pattern, limit),
        )

    def get_amount_total(
        self,
        start_date: Optional[str] = None,
        end_date: Optional[str] = None,
        account_id: Optional[str] = None,
    ) -> float:
        """Sum of amounts in a date range, counting split children instead of parents."""
        conditions = ["is_split = 0"]
        params: list[Any] = []
        if start_date:
            conditions.append("date >= ?")
            params.append(_date_str(start_date))
        if end_date:
            conditions.append("date <= ?")
            params.append(_date_str(end_date))
        if account_id:
            conditions.append("account_id = ?")
            params.append(account_id)
        row = self._fetch_one(
            f"SELECT COALESCE(SUM(amount), 0) AS total FROM transactions WHERE {' AND '.join(conditions)}",
            tuple(params),
        )
        return float(row["total"]) if row else 0.0

    def get_transaction_count(self) -> int:
        """Number of transactions, split parents excluded."""
        return self._count("transactions", "is_split = 0")

    def get_uncategorized_count(self) -> int:
        """Number of leaf transactions with no category."""
        return self._count("transactions", "category_id IS NULL AND is_split = 0")
