"""Tests for securities, holdings and investment transaction storage."""

import pytest

from plaid_ledger.models import ProviderHolding, ProviderInvestmentTransaction, ProviderSecurity


@pytest.fixture
def security(database):
    """A stored security. Returns its ledger id."""
    security_id, _ = database.upsert_security(ProviderSecurity("sec-1", "Index Fund", "IDX", "etf"))
    return security_id


class TestSecurities:
    """Tests for security rows."""

    def test_upsert_refreshes_by_external_id(self, database) -> None:
        """A second upsert updates the same row."""
        first_id, inserted = database.upsert_security(ProviderSecurity("sec-1", "Old Name", "IDX"))
        second_id, again = database.upsert_security(ProviderSecurity("sec-1", "New Name", "IDX"))

        assert inserted is True
        assert again is False
        assert second_id == first_id
        assert database.get_security_by_external_id("sec-1")["name"] == "New Name"


class TestHoldings:
    """Tests for holding rows."""

    def test_upsert_one_row_per_account_and_security(self, database, item, security) -> None:
        """Quantity changes update the existing holding."""
        holding_id, inserted = database.upsert_holding(
            item["account_id"], security, ProviderHolding("acc-1", "sec-1", 5.0, 500.0, 101.0)
        )
        same_id, again = database.upsert_holding(
            item["account_id"], security, ProviderHolding("acc-1", "sec-1", 7.0, 700.0, 102.0)
        )

        assert inserted is True
        assert again is False
        assert same_id == holding_id
        assert database.get_holding_count() == 1
        holdings = database.get_holdings_for_item(item["item_id"])
        assert holdings[0]["quantity"] == 7.0
        assert holdings[0]["external_account_id"] == "acc-1"
        assert holdings[0]["ticker_symbol"] == "IDX"

    @pytest.mark.parametrize("missing_price", [None, 0.0])
    def test_missing_price_keeps_stored_price(
        self, database, item, security, missing_price
    ) -> None:
        """A zero or absent provider price does not overwrite a known one."""
        database.upsert_holding(
            item["account_id"],
            security,
            ProviderHolding(
                "acc-1", "sec-1", 5.0, institution_price=101.0, institution_price_as_of="2025-01-06"
            ),
        )

        database.upsert_holding(
            item["account_id"],
            security,
            ProviderHolding("acc-1", "sec-1", 6.0, institution_price=missing_price),
        )

        stored = database.get_holdings_for_item(item["item_id"])[0]
        assert stored["quantity"] == 6.0
        assert stored["institution_price"] == 101.0
        assert stored["institution_price_as_of"] == "2025-01-06"

    def test_delete_holding(self, database, item, security) -> None:
        """A holding can be removed by id."""
        holding_id, _ = database.upsert_holding(
            item["account_id"], security, ProviderHolding("acc-1", "sec-1", 1.0)
        )

        assert database.delete_holding(holding_id) is True
        assert database.get_holding_count() == 0


class TestInvestmentTransactions:
    """Tests for investment transaction rows."""

    def test_upsert_by_external_id(self, database, item, security) -> None:
        """Re-reporting a transaction updates it in place."""
        txn = ProviderInvestmentTransaction(
            "inv-1", "acc-1", "2025-01-02", "buy", "BUY IDX", amount=-200.0, quantity=2.0
        )
        _, inserted = database.upsert_investment_transaction(item["account_id"], security, txn)
        txn.amount = -201.0
        _, again = database.upsert_investment_transaction(item["account_id"], security, txn)

        assert inserted is True
        assert again is False
        stored = database.get_investment_transaction_by_external_id("inv-1")
        assert stored["amount"] == -201.0
        assert stored["security_id"] == security
        assert database.get_investment_transaction_count() == 1

    def test_listing_is_newest_first(self, database, item, security) -> None:
        """Listings join the ticker and sort by date descending."""
        for txn_id, day in (("inv-1", "2025-01-02"), ("inv-2", "2025-01-09")):
            database.upsert_investment_transaction(
                item["account_id"],
                security,
                ProviderInvestmentTransaction(txn_id, "acc-1", day, "buy"),
            )

        listed = database.get_investment_transactions(item_id=item["item_id"])

        assert [t["external_investment_transaction_id"] for t in listed] == ["inv-2", "inv-1"]
        assert listed[0]["ticker_symbol"] == "IDX"
        assert len(database.get_investment_transactions(limit=1)) == 1

    def test_delete_investment_data_for_item(self, database, item, security) -> None:
        """Holdings and transactions of an item go; securities stay."""
        database.upsert_holding(item["account_id"], security, ProviderHolding("acc-1", "sec-1", 1.0))
        fee = ProviderInvestmentTransaction("inv-1", "acc-1", "2025-01-02", "fee")
        database.upsert_investment_transaction(item["account_id"], None, fee)

        assert database.delete_investment_data_for_item(item["item_id"]) == 2
        assert database.get_holding_count() == 0
        assert database.get_investment_transaction_count() == 0
        assert database.get_security_by_external_id("sec-1") is not None

    def test_item_status_counts(self, database, item, security) -> None:
        """Status counts include investment rows."""
        database.upsert_holding(item["account_id"], security, ProviderHolding("acc-1", "sec-1", 1.0))

        counts = database.get_status_counts()

        assert counts["holdings"] == 1
        assert counts["investment_transactions"] == 0
