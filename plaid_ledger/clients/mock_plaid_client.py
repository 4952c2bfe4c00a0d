"""Mock Plaid client for testing and the CLI's --mock mode.

Serves scripted sync pages keyed by (access_token, cursor), so tests can
describe exactly what the provider reports for each window. Errors can be
queued to simulate credential or transient failures.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Optional

from ..models import (
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

logger = logging.getLogger(__name__)

SAMPLE_PUBLIC_TOKEN = "public-sandbox-mock"
SAMPLE_ACCESS_TOKEN = "access-sandbox-mock"
SAMPLE_ITEM_ID = "item-sandbox-mock"
SAMPLE_RELINK_PUBLIC_TOKEN = "public-sandbox-mock-relink"
SAMPLE_RELINK_ACCESS_TOKEN = "access-sandbox-mock-relink"
SAMPLE_RELINK_ITEM_ID = "item-sandbox-mock-relink"


@dataclass
class MockCall:
    """A recorded client call."""

    method: str
    args: dict[str, Any] = field(default_factory=dict)


class MockPlaidClient:
    """In-memory provider with scripted responses."""

    def __init__(self) -> None:
        self._pages: dict[tuple[str, Optional[str]], SyncPage] = {}
        self._exchanges: dict[str, ExchangeResult] = {}
        self._accounts: dict[str, list[ProviderAccount]] = {}
        self._institutions: dict[str, InstitutionInfo] = {}
        self._holdings: dict[str, HoldingsSnapshot] = {}
        self._investment_transactions: dict[str, list[ProviderInvestmentTransaction]] = {}
        self._errors: list[tuple[str, Exception]] = []
        self.calls: list[MockCall] = []

    # =========================================================================
    # Scripting
    # =========================================================================

    def add_page(self, access_token: str, cursor: Optional[str], page: SyncPage) -> None:
        """Return ``page`` when syncing ``access_token`` from ``cursor``."""
        self._pages[(access_token, cursor or None)] = page

    def add_exchange(self, public_token: str, access_token: str, item_id: str) -> None:
        """Script the result of exchanging ``public_token``."""
        self._exchanges[public_token] = ExchangeResult(access_token=access_token, item_id=item_id)

    def set_accounts(self, access_token: str, accounts: list[ProviderAccount]) -> None:
        """Script the accounts reported for a credential."""
        self._accounts[access_token] = list(accounts)

    def set_institution(self, access_token: str, institution_id: str, name: str) -> None:
        """Script the institution reported for a credential."""
        self._institutions[access_token] = InstitutionInfo(institution_id=institution_id, name=name)

    def set_holdings(
        self,
        access_token: str,
        holdings: list[ProviderHolding],
        securities: list[ProviderSecurity],
    ) -> None:
        """Script the holdings snapshot for a credential."""
        self._holdings[access_token] = HoldingsSnapshot(list(holdings), list(securities))

    def add_investment_transactions(
        self, access_token: str, transactions: list[ProviderInvestmentTransaction]
    ) -> None:
        """Append investment transactions reported for a credential."""
        self._investment_transactions.setdefault(access_token, []).extend(transactions)

    def fail_next(self, method: str, error: Exception, times: int = 1) -> None:
        """Raise ``error`` on the next ``times`` calls to ``method``."""
        self._errors.extend((method, error) for _ in range(times))

    def _maybe_fail(self, method: str) -> None:
        for i, (name, error) in enumerate(self._errors):
            if name == method:
                del self._errors[i]
                raise error

    def calls_to(self, method: str) -> list[MockCall]:
        """Recorded calls for one method."""
        return [c for c in self.calls if c.method == method]

    # =========================================================================
    # Provider interface
    # =========================================================================

    def transactions_sync(
        self, access_token: str, cursor: Optional[str], count: int = 500
    ) -> SyncPage:
        """Return the scripted page for this cursor, or an empty final page."""
        self.calls.append(
            MockCall("transactions_sync", {"access_token": access_token, "cursor": cursor})
        )
        self._maybe_fail("transactions_sync")
        page = self._pages.get((access_token, cursor or None))
        if page is None:
            logger.debug("No scripted page for cursor %r, returning empty page", cursor)
            return SyncPage(next_cursor=cursor or "", has_more=False)
        return page

    def investments_holdings_get(self, access_token: str) -> HoldingsSnapshot:
        """Return the scripted holdings, or none."""
        self.calls.append(MockCall("investments_holdings_get", {"access_token": access_token}))
        self._maybe_fail("investments_holdings_get")
        return self._holdings.get(access_token, HoldingsSnapshot())

    def investments_transactions_get(
        self,
        access_token: str,
        start_date: str,
        end_date: str,
        offset: int = 0,
        count: int = 500,
    ) -> InvestmentTransactionsPage:
        """Return scripted investment transactions dated within the range."""
        self.calls.append(
            MockCall(
                "investments_transactions_get",
                {
                    "access_token": access_token,
                    "start_date": start_date,
                    "end_date": end_date,
                    "offset": offset,
                },
            )
        )
        self._maybe_fail("investments_transactions_get")
        matching = [
            t
            for t in self._investment_transactions.get(access_token, [])
            if start_date <= t.date <= end_date
        ]
        securities = self._holdings.get(access_token, HoldingsSnapshot()).securities
        return InvestmentTransactionsPage(
            investment_transactions=matching[offset : offset + count],
            securities=list(securities),
            total=len(matching),
        )

    def exchange_public_token(self, public_token: str) -> ExchangeResult:
        """Return the scripted exchange result."""
        self.calls.append(MockCall("exchange_public_token", {"public_token": public_token}))
        self._maybe_fail("exchange_public_token")
        if public_token not in self._exchanges:
            raise ValueError(f"Unknown mock public token: {public_token}")
        return self._exchanges[public_token]

    def get_item_institution(self, access_token: str) -> InstitutionInfo:
        """Return the scripted institution."""
        self.calls.append(MockCall("get_item_institution", {"access_token": access_token}))
        self._maybe_fail("get_item_institution")
        return self._institutions.get(access_token, InstitutionInfo())

    def get_accounts(self, access_token: str) -> list[ProviderAccount]:
        """Return the scripted accounts."""
        self.calls.append(MockCall("get_accounts", {"access_token": access_token}))
        self._maybe_fail("get_accounts")
        return list(self._accounts.get(access_token, []))

    def create_link_token(self, user_id: str, access_token: Optional[str] = None) -> str:
        """Return a fake Link token."""
        self.calls.append(
            MockCall("create_link_token", {"user_id": user_id, "access_token": access_token})
        )
        mode = "update" if access_token else "new"
        return f"link-sandbox-{mode}-{user_id}"

    # =========================================================================
    # Sample data
    # =========================================================================

    @classmethod
    def with_sample_data(cls) -> MockPlaidClient:
        """A client preloaded with one sandbox bank for --mock mode."""
        client = cls()
        checking = ProviderAccount(
            account_id="acc-mock-checking",
            name="Everyday Checking",
            mask="0000",
            official_name="Plaid Gold Standard 0% Interest Checking",
            type="depository",
            subtype="checking",
            current_balance=2410.35,
            available_balance=2310.35,
        )
        credit = ProviderAccount(
            account_id="acc-mock-credit",
            name="Rewards Visa",
            mask="3333",
            type="credit",
            subtype="credit card",
            current_balance=-412.80,
            limit=5000.0,
        )
        brokerage = ProviderAccount(
            account_id="acc-mock-ira",
            name="Roth IRA",
            mask="7777",
            type="investment",
            subtype="roth",
            current_balance=3121.30,
        )
        client.add_exchange(SAMPLE_PUBLIC_TOKEN, SAMPLE_ACCESS_TOKEN, SAMPLE_ITEM_ID)
        client.set_accounts(SAMPLE_ACCESS_TOKEN, [checking, credit, brokerage])
        client.set_institution(SAMPLE_ACCESS_TOKEN, "ins_109508", "First Platypus Bank")
        # Same bank linked again under a new item id
        client.add_exchange(
            SAMPLE_RELINK_PUBLIC_TOKEN, SAMPLE_RELINK_ACCESS_TOKEN, SAMPLE_RELINK_ITEM_ID
        )
        client.set_accounts(SAMPLE_RELINK_ACCESS_TOKEN, [checking, credit, brokerage])
        client.set_institution(SAMPLE_RELINK_ACCESS_TOKEN, "ins_109508", "First Platypus Bank")

        def txn(tid, account, amount, date, name, merchant, primary, detailed):
            return ProviderTransaction(
                transaction_id=tid,
                account_id=account.account_id,
                amount=amount,
                date=date,
                name=name,
                merchant_name=merchant,
                category_primary=primary,
                category_detailed=detailed,
                payment_channel="in store",
            )

        client.add_page(
            SAMPLE_ACCESS_TOKEN,
            None,
            SyncPage(
                added=[
                    txn("mock-t1", checking, -42.00, "2025-01-03", "STARBUCKS #1234", "Starbucks",
                        "FOOD_AND_DRINK", "FOOD_AND_DRINK_COFFEE"),
                    txn("mock-t2", credit, -86.45, "2025-01-04", "SAFEWAY 0921", "Safeway",
                        "FOOD_AND_DRINK", "FOOD_AND_DRINK_GROCERIES"),
                    txn("mock-t3", checking, 2500.00, "2025-01-05", "ACME PAYROLL", None,
                        "INCOME", "INCOME_WAGES"),
                ],
                accounts=[checking, credit],
                next_cursor="mock-cursor-1",
                has_more=True,
            ),
        )
        client.add_page(
            SAMPLE_ACCESS_TOKEN,
            "mock-cursor-1",
            SyncPage(
                added=[
                    txn("mock-t4", credit, -23.10, "2025-01-06", "UBER TRIP", "Uber",
                        "TRANSPORTATION", "TRANSPORTATION_TAXIS_AND_RIDE_SHARES"),
                    txn("mock-t5", credit, -129.99, "2025-01-07", "COSTCO WHSE #0012", "Costco",
                        "GENERAL_MERCHANDISE", "GENERAL_MERCHANDISE_SUPERSTORES"),
                ],
                accounts=[checking, credit],
                next_cursor="mock-cursor-2",
                has_more=False,
            ),
        )

        vti = ProviderSecurity("sec-mock-vti", "Vanguard Total Stock Market ETF", "VTI", "etf")
        bnd = ProviderSecurity("sec-mock-bnd", "Vanguard Total Bond Market ETF", "BND", "etf")
        client.set_holdings(
            SAMPLE_ACCESS_TOKEN,
            [
                ProviderHolding(brokerage.account_id, vti.security_id, 10.0, 2150.00, 240.10,
                                "2025-01-07"),
                ProviderHolding(brokerage.account_id, bnd.security_id, 10.0, 735.00, 72.03,
                                "2025-01-07"),
            ],
            [vti, bnd],
        )
        client.add_investment_transactions(
            SAMPLE_ACCESS_TOKEN,
            [
                ProviderInvestmentTransaction(
                    "mock-inv-1", brokerage.account_id, "2025-01-02", "buy", "BUY VTI",
                    security_id=vti.security_id, amount=-480.20, price=240.10, quantity=2.0,
                ),
                ProviderInvestmentTransaction(
                    "mock-inv-2", brokerage.account_id, "2025-01-06", "cash", "BND DIVIDEND",
                    subtype="dividend", security_id=bnd.security_id, amount=2.14,
                ),
            ],
        )
        return client
