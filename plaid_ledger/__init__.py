"""plaid-ledger: Plaid transaction sync and categorization for a local ledger."""

__version__ = "0.1.0"
