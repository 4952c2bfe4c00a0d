"""Error types raised by the ledger services.

Callers distinguish three families: provider failures (credential problems
needing user action vs. transient ones worth retrying), validation failures
caused by bad input, and ledger write failures.
"""

from __future__ import annotations

from typing import Optional

# Plaid error codes that require the user to go through Link again.
CREDENTIAL_ERROR_CODES = frozenset(
    {
        "ITEM_LOGIN_REQUIRED",
        "INVALID_ACCESS_TOKEN",
        "ITEM_LOCKED",
        "ACCESS_NOT_GRANTED",
        "USER_SETUP_REQUIRED",
        "ITEM_NOT_FOUND",
        "INVALID_CREDENTIALS",
    }
)

TRANSIENT_ERROR_CODES = frozenset(
    {
        "RATE_LIMIT_EXCEEDED",
        "TRANSACTIONS_LIMIT",
        "INTERNAL_SERVER_ERROR",
        "PLANNED_MAINTENANCE",
        "PRODUCT_NOT_READY",
        "INSTITUTION_DOWN",
        "INSTITUTION_NOT_RESPONDING",
        "INSTITUTION_NOT_AVAILABLE",
        "NETWORK_ERROR",
    }
)

PAGINATION_MUTATION_CODE = "TRANSACTIONS_SYNC_MUTATION_DURING_PAGINATION"

# Item has no investment accounts or the product is not enabled for it.
INVESTMENTS_UNSUPPORTED_CODES = frozenset(
    {
        "PRODUCTS_NOT_SUPPORTED",
        "NO_INVESTMENT_ACCOUNTS",
        "NO_INVESTMENT_AUTH_ACCOUNTS",
        "INVALID_PRODUCT",
    }
)


class LedgerError(Exception):
    """Base class for all plaid-ledger errors."""


# =============================================================================
# Provider errors
# =============================================================================


class ProviderError(LedgerError):
    """The banking provider returned an error."""

    def __init__(self, error_code: str, message: str = "", status: Optional[int] = None):
        self.error_code = error_code
        self.status = status
        super().__init__(f"[{error_code}] {message}" if message else error_code)


class CredentialInvalidError(ProviderError):
    """Stored credential is no longer accepted; the user must reconnect."""


class TransientProviderError(ProviderError):
    """Temporary provider failure (rate limit, outage, network)."""


class PaginationMutationError(ProviderError):
    """Provider data changed while paging; restart from the original cursor."""


def provider_error_for(
    error_code: str, message: str = "", status: Optional[int] = None
) -> ProviderError:
    """Build the ProviderError subclass matching a provider error code."""
    if error_code in CREDENTIAL_ERROR_CODES:
        return CredentialInvalidError(error_code, message, status)
    if error_code == PAGINATION_MUTATION_CODE:
        return PaginationMutationError(error_code, message, status)
    if error_code in TRANSIENT_ERROR_CODES or (status is not None and status >= 500):
        return TransientProviderError(error_code, message, status)
    return ProviderError(error_code, message, status)


# =============================================================================
# Validation errors
# =============================================================================


class ValidationError(LedgerError):
    """Request rejected because of invalid input or state."""


class SplitValidationError(ValidationError):
    """A split or undo request is not allowed for this transaction."""


class ReconnectionNotFoundError(ValidationError):
    """Reconnection id is unknown, expired, cancelled or already used."""


class ItemNotFoundError(ValidationError):
    """No item with the given id."""


class TransactionNotFoundError(ValidationError):
    """No transaction with the given id."""


class InvalidStatusError(ValidationError):
    """Unknown item status value."""


# =============================================================================
# Ledger errors
# =============================================================================


class LedgerWriteError(LedgerError):
    """A write to the ledger store failed."""


class UnknownAccountError(LedgerWriteError):
    """A provider transaction referenced an account the ledger does not know."""


class SyncInProgressError(LedgerError):
    """Another operation holds the lock for this item."""


class ItemChangedError(SyncInProgressError):
    """The item was reconnected while provider data was being fetched."""


def error_kind(exc: BaseException) -> str:
    """Classify an exception for callers and CLI output.

    Returns:
        One of 'needs_reconnection', 'temporary', 'invalid_input' or 'internal'.
    """
    if isinstance(exc, CredentialInvalidError):
        return "needs_reconnection"
    if isinstance(exc, (TransientProviderError, PaginationMutationError, SyncInProgressError)):
        return "temporary"
    if isinstance(exc, ValidationError):
        return "invalid_input"
    return "internal"
