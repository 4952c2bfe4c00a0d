"""Plaid API client.

Wraps the plaid-python SDK and normalizes its responses into the ledger's
models. Plaid reports outflows as positive amounts; the ledger stores them
as negative, so amounts are negated here.
"""

from __future__ import annotations

import json
import logging
from datetime import date
from typing import Any, Callable, Optional, TypeVar

import urllib3
from plaid.api import plaid_api
from plaid.api_client import ApiClient
from plaid.configuration import Configuration
from plaid.exceptions import ApiException
from plaid.model.accounts_get_request import AccountsGetRequest
from plaid.model.country_code import CountryCode
from plaid.model.institutions_get_by_id_request import InstitutionsGetByIdRequest
from plaid.model.investments_holdings_get_request import InvestmentsHoldingsGetRequest
from plaid.model.investments_transactions_get_request import InvestmentsTransactionsGetRequest
from plaid.model.investments_transactions_get_request_options import (
    InvestmentsTransactionsGetRequestOptions,
)
from plaid.model.item_get_request import ItemGetRequest
from plaid.model.item_public_token_exchange_request import ItemPublicTokenExchangeRequest
from plaid.model.link_token_create_request import LinkTokenCreateRequest
from plaid.model.link_token_create_request_user import LinkTokenCreateRequestUser
from plaid.model.products import Products
from plaid.model.transactions_sync_request import TransactionsSyncRequest

from ..config import PlaidConfig
from ..errors import ProviderError, TransientProviderError, provider_error_for
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

T = TypeVar("T")


class PlaidClientError(ProviderError):
    """Plaid returned a response we could not interpret."""


def _text(value: Any) -> Optional[str]:
    """Render SDK enum models, dates and plain values as strings."""
    if value is None:
        return None
    if hasattr(value, "isoformat"):
        return value.isoformat()
    if hasattr(value, "value"):
        return str(value.value)
    return str(value)


def _parse_api_exception(e: ApiException) -> ProviderError:
    """Map a Plaid ApiException onto the ledger error taxonomy."""
    error_code = "UNKNOWN"
    message = str(e.reason or "")
    try:
        body = json.loads(e.body) if e.body else {}
        error_code = body.get("error_code") or error_code
        message = body.get("error_message") or message
    except (TypeError, ValueError):
        logger.debug("Non-JSON Plaid error body: %r", e.body)
    return provider_error_for(error_code, message, e.status)


def _to_transaction(tx: dict[str, Any]) -> ProviderTransaction:
    """Convert a Plaid transaction dict into a ProviderTransaction."""
    category = tx.get("personal_finance_category") or {}
    return ProviderTransaction(
        transaction_id=tx["transaction_id"],
        account_id=tx["account_id"],
        amount=-float(tx["amount"]),
        date=_text(tx.get("date")) or "",
        name=tx.get("name") or "",
        iso_currency_code=tx.get("iso_currency_code"),
        datetime=_text(tx.get("datetime")),
        authorized_date=_text(tx.get("authorized_date")),
        authorized_datetime=_text(tx.get("authorized_datetime")),
        merchant_name=tx.get("merchant_name"),
        category_primary=category.get("primary"),
        category_detailed=category.get("detailed"),
        payment_channel=_text(tx.get("payment_channel")),
        pending=bool(tx.get("pending")),
        pending_transaction_id=tx.get("pending_transaction_id"),
    )


def _to_account(acct: dict[str, Any]) -> ProviderAccount:
    """Convert a Plaid account dict into a ProviderAccount."""
    balances = acct.get("balances") or {}
    return ProviderAccount(
        account_id=acct["account_id"],
        name=acct.get("name") or "",
        mask=acct.get("mask"),
        official_name=acct.get("official_name"),
        type=_text(acct.get("type")),
        subtype=_text(acct.get("subtype")),
        iso_currency_code=balances.get("iso_currency_code"),
        current_balance=balances.get("current"),
        available_balance=balances.get("available"),
        limit=balances.get("limit"),
    )


def _optional_float(value: Any) -> Optional[float]:
    return None if value is None else float(value)


def _to_security(sec: dict[str, Any]) -> ProviderSecurity:
    """Convert a Plaid security dict into a ProviderSecurity."""
    return ProviderSecurity(
        security_id=sec["security_id"],
        name=sec.get("name"),
        ticker_symbol=sec.get("ticker_symbol"),
        type=_text(sec.get("type")),
        iso_currency_code=sec.get("iso_currency_code"),
    )


def _to_holding(holding: dict[str, Any]) -> ProviderHolding:
    """Convert a Plaid holding dict into a ProviderHolding."""
    return ProviderHolding(
        account_id=holding["account_id"],
        security_id=holding["security_id"],
        quantity=float(holding.get("quantity") or 0.0),
        cost_basis=_optional_float(holding.get("cost_basis")),
        institution_price=_optional_float(holding.get("institution_price")),
        institution_price_as_of=_text(holding.get("institution_price_as_of")),
        iso_currency_code=holding.get("iso_currency_code"),
    )


def _to_investment_transaction(tx: dict[str, Any]) -> ProviderInvestmentTransaction:
    """Convert a Plaid investment transaction dict, flipping the amount sign."""
    amount = tx.get("amount")
    return ProviderInvestmentTransaction(
        investment_transaction_id=tx["investment_transaction_id"],
        account_id=tx["account_id"],
        date=_text(tx.get("date")) or "",
        type=_text(tx.get("type")) or "",
        name=tx.get("name"),
        subtype=_text(tx.get("subtype")),
        security_id=tx.get("security_id"),
        amount=None if amount is None else -float(amount),
        price=_optional_float(tx.get("price")),
        quantity=_optional_float(tx.get("quantity")),
        fees=_optional_float(tx.get("fees")),
        iso_currency_code=tx.get("iso_currency_code"),
    )


class PlaidClient:
    """Client for the Plaid API."""

    def __init__(self, config: PlaidConfig, api: Optional[plaid_api.PlaidApi] = None):
        """Initialize Plaid client.

        Args:
            config: Plaid credentials and environment.
            api: Pre-built PlaidApi, mainly for tests.
        """
        self._config = config
        if api is None:
            if not config.client_id or not config.secret:
                raise ValueError("Plaid client_id and secret are required")
            configuration = Configuration(
                host=config.host,
                api_key={"clientId": config.client_id, "secret": config.secret},
            )
            api = plaid_api.PlaidApi(ApiClient(configuration))
        self._api = api

    def _call(self, method: Callable[[Any], T], request: Any) -> T:
        """Invoke an API method, translating SDK and network failures."""
        try:
            return method(request)
        except ApiException as e:
            error = _parse_api_exception(e)
            logger.warning("Plaid %s failed: %s", getattr(method, "__name__", "call"), error)
            raise error from e
        except (urllib3.exceptions.HTTPError, ConnectionError, TimeoutError) as e:
            raise TransientProviderError("NETWORK_ERROR", str(e)) from e

    def transactions_sync(
        self, access_token: str, cursor: Optional[str], count: int = 500
    ) -> SyncPage:
        """Fetch one page of /transactions/sync."""
        params: dict[str, Any] = {"access_token": access_token, "count": count}
        if cursor:
            params["cursor"] = cursor
        response = self._call(self._api.transactions_sync, TransactionsSyncRequest(**params))
        data = response.to_dict()
        page = SyncPage(
            added=[_to_transaction(tx) for tx in data.get("added", [])],
            modified=[_to_transaction(tx) for tx in data.get("modified", [])],
            removed=[r["transaction_id"] for r in data.get("removed", [])],
            accounts=[_to_account(a) for a in data.get("accounts", [])],
            next_cursor=data.get("next_cursor") or "",
            has_more=bool(data.get("has_more")),
        )
        logger.debug(
            "transactions_sync page: +%d ~%d -%d has_more=%s",
            len(page.added),
            len(page.modified),
            len(page.removed),
            page.has_more,
        )
        return page

    def investments_holdings_get(self, access_token: str) -> HoldingsSnapshot:
        """Fetch /investments/holdings/get."""
        response = self._call(
            self._api.investments_holdings_get,
            InvestmentsHoldingsGetRequest(access_token=access_token),
        )
        data = response.to_dict()
        return HoldingsSnapshot(
            holdings=[_to_holding(h) for h in data.get("holdings", [])],
            securities=[_to_security(s) for s in data.get("securities", [])],
        )

    def investments_transactions_get(
        self,
        access_token: str,
        start_date: str,
        end_date: str,
        offset: int = 0,
        count: int = 500,
    ) -> InvestmentTransactionsPage:
        """Fetch one page of /investments/transactions/get."""
        request = InvestmentsTransactionsGetRequest(
            access_token=access_token,
            start_date=date.fromisoformat(start_date),
            end_date=date.fromisoformat(end_date),
            options=InvestmentsTransactionsGetRequestOptions(offset=offset, count=count),
        )
        response = self._call(self._api.investments_transactions_get, request)
        data = response.to_dict()
        return InvestmentTransactionsPage(
            investment_transactions=[
                _to_investment_transaction(tx) for tx in data.get("investment_transactions", [])
            ],
            securities=[_to_security(s) for s in data.get("securities", [])],
            total=int(data.get("total_investment_transactions") or 0),
        )

    def exchange_public_token(self, public_token: str) -> ExchangeResult:
        """Exchange a Link public token for an access token."""
        response = self._call(
            self._api.item_public_token_exchange,
            ItemPublicTokenExchangeRequest(public_token=public_token),
        )
        if not response.access_token or not response.item_id:
            raise PlaidClientError("INVALID_RESPONSE", "Token exchange returned no credential")
        return ExchangeResult(access_token=response.access_token, item_id=response.item_id)

    def get_item_institution(self, access_token: str) -> InstitutionInfo:
        """Look up the institution for an item."""
        response = self._call(self._api.item_get, ItemGetRequest(access_token=access_token))
        institution_id = response.item.get("institution_id")
        if not institution_id:
            return InstitutionInfo()
        inst = self._call(
            self._api.institutions_get_by_id,
            InstitutionsGetByIdRequest(
                institution_id=institution_id,
                country_codes=[CountryCode(c) for c in self._config.country_codes],
            ),
        )
        return InstitutionInfo(institution_id=institution_id, name=inst.institution.name)

    def get_accounts(self, access_token: str) -> list[ProviderAccount]:
        """Fetch accounts for an item."""
        response = self._call(self._api.accounts_get, AccountsGetRequest(access_token=access_token))
        return [_to_account(a) for a in response.to_dict().get("accounts", [])]

    def create_link_token(self, user_id: str, access_token: Optional[str] = None) -> str:
        """Create a Link token. With ``access_token`` Link opens in update mode."""
        params: dict[str, Any] = {
            "user": LinkTokenCreateRequestUser(client_user_id=user_id),
            "client_name": "plaid-ledger",
            "language": "en",
            "country_codes": [CountryCode(c) for c in self._config.country_codes],
        }
        if access_token:
            params["access_token"] = access_token
        else:
            params["products"] = [Products(p) for p in self._config.products]
        response = self._call(self._api.link_token_create, LinkTokenCreateRequest(**params))
        return response.link_token
