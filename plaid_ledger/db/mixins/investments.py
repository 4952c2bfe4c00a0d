"""Securities, holdings and investment transaction database operations."""

from __future__ import annotations

from typing import TYPE_CHECKING, Any, Optional

from .base import CountMixin, _new_id, _now_iso

if TYPE_CHECKING:
    from ...models import ProviderHolding, ProviderInvestmentTransaction, ProviderSecurity

_INVESTMENT_TXN_FIELDS = (
    "account_id",
    "security_id",
    "date",
    "name",
    "type",
    "subtype",
    "amount",
    "price",
    "quantity",
    "fees",
    "currency",
)


class InvestmentsMixin(CountMixin):
    """Mixin for securities, holdings and investment transactions."""

    # =========================================================================
    # Securities
    # =========================================================================

    def upsert_security(self, security: ProviderSecurity) -> tuple[str, bool]:
        """Insert or refresh a security by the provider's security id.

        Returns:
            Tuple of (security_id, was_inserted).
        """
        now = _now_iso()
        with self._connection() as conn:
            row = conn.execute(
                "SELECT id FROM securities WHERE external_security_id = ?",
                (security.security_id,),
            ).fetchone()
            if row is not None:
                conn.execute(
                    """UPDATE securities SET name = ?, ticker_symbol = ?, type = ?,
                    currency = ?, updated_at = ? WHERE id = ?""",
                    (
                        security.name,
                        security.ticker_symbol,
                        security.type,
                        security.iso_currency_code,
                        now,
                        row["id"],
                    ),
                )
                return row["id"], False
            security_id = _new_id()
            conn.execute(
                """INSERT INTO securities
                (id, external_security_id, name, ticker_symbol, type, currency,
                 created_at, updated_at)
                VALUES (?, ?, ?, ?, ?, ?, ?, ?)""",
                (
                    security_id,
                    security.security_id,
                    security.name,
                    security.ticker_symbol,
                    security.type,
                    security.iso_currency_code,
                    now,
                    now,
                ),
            )
            return security_id, True

    def get_security_by_external_id(self, external_security_id: str) -> Optional[dict[str, Any]]:
        """Get a security by the provider's security id."""
        return self._fetch_one(
            "SELECT * FROM securities WHERE external_security_id = ?", (external_security_id,)
        )

    # =========================================================================
    # Holdings
    # =========================================================================

    def upsert_holding(
        self, account_id: str, security_id: str, holding: ProviderHolding
    ) -> tuple[str, bool]:
        """Insert or update the holding of one security in one account.

        A stored non-zero price is kept when the provider reports no price
        or a zero price.

        Returns:
            Tuple of (holding_id, was_inserted).
        """
        now = _now_iso()
        price = holding.institution_price
        price_as_of = holding.institution_price_as_of
        with self._connection() as conn:
            row = conn.execute(
                """SELECT id, institution_price, institution_price_as_of FROM holdings
                WHERE account_id = ? AND security_id = ?""",
                (account_id, security_id),
            ).fetchone()
            if row is None:
                holding_id = _new_id()
                conn.execute(
                    """INSERT INTO holdings
                    (id, account_id, security_id, quantity, cost_basis, institution_price,
                     institution_price_as_of, currency, created_at, updated_at)
                    VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?)""",
                    (
                        holding_id,
                        account_id,
                        security_id,
                        holding.quantity,
                        holding.cost_basis,
                        price,
                        price_as_of,
                        holding.iso_currency_code,
                        now,
                        now,
                    ),
                )
                return holding_id, True

            if not price and (row["institution_price"] or 0) > 0:
                price = row["institution_price"]
                price_as_of = row["institution_price_as_of"]
            conn.execute(
                """UPDATE holdings SET quantity = ?, cost_basis = ?, institution_price = ?,
                institution_price_as_of = ?, currency = ?, updated_at = ? WHERE id = ?""",
                (
                    holding.quantity,
                    holding.cost_basis,
                    price,
                    price_as_of,
                    holding.iso_currency_code,
                    now,
                    row["id"],
                ),
            )
            return row["id"], False

    def get_holdings_for_item(self, item_id: str) -> list[dict[str, Any]]:
        """List an item's holdings with provider account and security ids."""
        return self._fetch_all(
            """SELECT h.*, a.external_account_id, s.external_security_id,
                      s.ticker_symbol, s.name AS security_name
            FROM holdings h
            JOIN accounts a ON a.id = h.account_id
            JOIN securities s ON s.id = h.security_id
            WHERE a.item_id = ?
            ORDER BY a.name, s.ticker_symbol""",
            (item_id,),
        )

    def delete_holding(self, holding_id: str) -> bool:
        """Remove one holding."""
        with self._connection() as conn:
            cursor = conn.execute("DELETE FROM holdings WHERE id = ?", (holding_id,))
            return cursor.rowcount > 0

    # =========================================================================
    # Investment transactions
    # =========================================================================

    def upsert_investment_transaction(
        self,
        account_id: str,
        security_id: Optional[str],
        txn: ProviderInvestmentTransaction,
    ) -> tuple[str, bool]:
        """Insert or update an investment transaction by its external id.

        Returns:
            Tuple of (investment_transaction_id, was_inserted).
        """
        values = {
            "account_id": account_id,
            "security_id": security_id,
            "date": txn.date,
            "name": txn.name,
            "type": txn.type,
            "subtype": txn.subtype,
            "amount": txn.amount,
            "price": txn.price,
            "quantity": txn.quantity,
            "fees": txn.fees,
            "currency": txn.iso_currency_code,
        }
        now = _now_iso()
        with self._connection() as conn:
            row = conn.execute(
                "SELECT id FROM investment_transactions WHERE external_investment_transaction_id = ?",
                (txn.investment_transaction_id,),
            ).fetchone()
            if row is not None:
                assignments = ", ".join(f"{col} = ?" for col in _INVESTMENT_TXN_FIELDS)
                conn.execute(
                    f"UPDATE investment_transactions SET {assignments}, updated_at = ? WHERE id = ?",
                    (*(values[col] for col in _INVESTMENT_TXN_FIELDS), now, row["id"]),
                )
                return row["id"], False
            txn_id = _new_id()
            columns = ", ".join(_INVESTMENT_TXN_FIELDS)
            placeholders = ", ".join("?" for _ in _INVESTMENT_TXN_FIELDS)
            conn.execute(
                f"""INSERT INTO investment_transactions
                (id, external_investment_transaction_id, {columns}, created_at, updated_at)
                VALUES (?, ?, {placeholders}, ?, ?)""",
                (
                    txn_id,
                    txn.investment_transaction_id,
                    *(values[col] for col in _INVESTMENT_TXN_FIELDS),
                    now,
                    now,
                ),
            )
            return txn_id, True

    def get_investment_transaction_by_external_id(
        self, external_id: str
    ) -> Optional[dict[str, Any]]:
        """Get an investment transaction by the provider's id."""
        return self._fetch_one(
            "SELECT * FROM investment_transactions WHERE external_investment_transaction_id = ?",
            (external_id,),
        )

    def get_investment_transactions(
        self, item_id: Optional[str] = None, limit: Optional[int] = None
    ) -> list[dict[str, Any]]:
        """List investment transactions, newest first."""
        query = """SELECT it.*, s.ticker_symbol FROM investment_transactions it
            JOIN accounts a ON a.id = it.account_id
            LEFT JOIN securities s ON s.id = it.security_id"""
        params: list[Any] = []
        if item_id:
            query += " WHERE a.item_id = ?"
            params.append(item_id)
        query += " ORDER BY it.date DESC, it.id"
        if limit:
            query += " LIMIT ?"
            params.append(limit)
        return self._fetch_all(query, tuple(params))

    def delete_investment_data_for_item(self, item_id: str) -> int:
        """Delete an item's holdings and investment transactions.

        Returns:
            Number of rows deleted.
        """
        accounts = "SELECT id FROM accounts WHERE item_id = ?"
        with self._connection() as conn:
            holdings = conn.execute(
                f"DELETE FROM holdings WHERE account_id IN ({accounts})", (item_id,)
            ).rowcount
            txns = conn.execute(
                f"DELETE FROM investment_transactions WHERE account_id IN ({accounts})",
                (item_id,),
            ).rowcount
            return holdings + txns

    def get_holding_count(self) -> int:
        """Number of stored holdings."""
        return self._count("holdings")

    def get_investment_transaction_count(self) -> int:
        """Number of stored investment transactions."""
        return self._count("investment_transactions")
