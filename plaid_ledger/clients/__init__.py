"""Provider clients for plaid-ledger."""

from .mock_plaid_client import MockPlaidClient
from .plaid_client import PlaidClient, PlaidClientError
from .protocols import TransactionsProvider

__all__ = [
    "MockPlaidClient",
    "PlaidClient",
    "PlaidClientError",
    "TransactionsProvider",
]
