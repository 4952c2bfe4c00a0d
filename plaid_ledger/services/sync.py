"""Cursor-based transaction sync between Plaid and the local ledger.

Each sync pulls every page of the provider's added/modified/removed feed
starting at the item's stored cursor, applies the rows in one batch, and only
then persists the new cursor. If anything fails before the cursor write, the
next sync re-reads the same window; upserts by external id make that safe.

Investment sync is separate and keeps its own cursor: the last date covered
by a holdings and investment transaction refresh.
"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass, field
from datetime import date, timedelta
from typing import TYPE_CHECKING, Callable, Optional, Sequence

from tqdm import tqdm

from ..config import Config
from ..errors import (
    INVESTMENTS_UNSUPPORTED_CODES,
    CredentialInvalidError,
    ItemChangedError,
    ItemNotFoundError,
    LedgerError,
    PaginationMutationError,
    ProviderError,
    SyncInProgressError,
    TransientProviderError,
    UnknownAccountError,
    error_kind,
)
from ..models import (
    HoldingsSnapshot,
    ItemStatus,
    ProviderAccount,
    ProviderInvestmentTransaction,
    ProviderSecurity,
    ProviderTransaction,
    SyncPage,
)
from .category_mapping import map_provider_category
from .locks import ItemLockRegistry

logger = logging.getLogger(__name__)

if TYPE_CHECKING:
    from ..clients.protocols import TransactionsProvider
    from ..db.protocols import LedgerStore
    from .categorizer import CategorizationAssistant


@dataclass
class InvestmentSyncStats:
    """Result of refreshing one item's investments."""

    item_id: str
    securities_added: int = 0
    holdings_added: int = 0
    holdings_updated: int = 0
    holdings_removed: int = 0
    investment_transactions_added: int = 0
    investment_transactions_updated: int = 0
    unsupported: bool = False  # item has no investment accounts
    start_date: Optional[str] = None
    cursor: Optional[str] = None


@dataclass
class SyncStats:
    """Result of syncing one item."""

    item_id: str
    pages: int = 0
    added: int = 0
    modified: int = 0
    removed: int = 0
    skipped_split_parents: int = 0
    kept_on_remove: int = 0  # removed upstream but kept (manual or split parent)
    accounts_created: int = 0
    accounts_refreshed: int = 0
    categorized: int = 0
    pagination_restarts: int = 0
    attempts: int = 0
    cursor: Optional[str] = None
    investments: Optional[InvestmentSyncStats] = None
    errors: list[str] = field(default_factory=list)
    error_kind: Optional[str] = None

    @property
    def success(self) -> bool:
        """Check if sync was successful (no errors)."""
        return len(self.errors) == 0


@dataclass
class BatchSyncResult:
    """Result of syncing several items."""

    items: dict[str, SyncStats] = field(default_factory=dict)

    @property
    def success(self) -> bool:
        """Check if every item synced."""
        return all(stats.success for stats in self.items.values())

    @property
    def failed(self) -> list[str]:
        """Ids of items that failed."""
        return [item_id for item_id, stats in self.items.items() if not stats.success]


@dataclass
class _Window:
    """Accumulated pages for one cursor window."""

    added: list[ProviderTransaction] = field(default_factory=list)
    modified: list[ProviderTransaction] = field(default_factory=list)
    removed: list[str] = field(default_factory=list)
    accounts: dict[str, ProviderAccount] = field(default_factory=dict)
    next_cursor: str = ""
    pages: int = 0

    def add(self, page: SyncPage) -> None:
        self.added.extend(page.added)
        self.modified.extend(page.modified)
        self.removed.extend(page.removed)
        for account in page.accounts:
            self.accounts[account.account_id] = account
        self.next_cursor = page.next_cursor
        self.pages += 1


class SyncService:
    """Service for syncing provider transactions into the ledger."""

    def __init__(
        self,
        db: LedgerStore,
        provider: TransactionsProvider,
        config: Optional[Config] = None,
        categorizer: Optional[CategorizationAssistant] = None,
        locks: Optional[ItemLockRegistry] = None,
        sleep: Callable[[float], None] = time.sleep,
        show_progress: bool = False,
        today: Callable[[], date] = date.today,
    ):
        """Initialize sync service.

        Args:
            db: Ledger store.
            provider: Plaid client (real or mock).
            config: Application config (page size, retries, locking).
            categorizer: Runs after each sync on new uncategorized rows.
            locks: Per-item lock registry shared with the reconnection coordinator.
                Defaults to leases in ``db``, so other processes are excluded too.
            sleep: Backoff sleep function, replaceable in tests.
            show_progress: Show a tqdm bar while storing rows.
            today: End date of investment transaction windows.
        """
        self._db = db
        self._provider = provider
        self._config = config or Config()
        self._categorizer = categorizer
        self._locks = locks or ItemLockRegistry(
            self._config.sync.lock_timeout_seconds,
            store=db,
            lease_seconds=self._config.sync.lock_lease_seconds,
        )
        self._sleep = sleep
        self._show_progress = show_progress
        self._today = today

    @property
    def locks(self) -> ItemLockRegistry:
        return self._locks

    def _fetch_window(self, access_token: str, start_cursor: Optional[str]) -> tuple[_Window, int]:
        """Page through the feed until has_more is false.

        Restarts from ``start_cursor`` when the provider reports that data
        changed mid-pagination.

        Returns:
            Tuple of (accumulated window, number of restarts).
        """
        page_size = self._config.plaid.page_size
        restarts = 0
        while True:
            window = _Window(next_cursor=start_cursor or "")
            cursor = start_cursor
            try:
                while True:
                    page = self._provider.transactions_sync(access_token, cursor, page_size)
                    window.add(page)
                    cursor = page.next_cursor
                    if not page.has_more:
                        return window, restarts
            except PaginationMutationError:
                restarts += 1
                if restarts > self._config.sync.max_pagination_restarts:
                    raise
                logger.info(
                    "Provider data changed during pagination, restarting (%d/%d)",
                    restarts,
                    self._config.sync.max_pagination_restarts,
                )

    def _apply_accounts(self, item_id: str, window: _Window, stats: SyncStats) -> None:
        for account in window.accounts.values():
            _, inserted = self._db.upsert_account(item_id, account)
            if inserted:
                stats.accounts_created += 1
            else:
                stats.accounts_refreshed += 1

    def _apply_rows(self, window: _Window, stats: SyncStats) -> list[str]:
        """Upsert added/modified rows and delete removed ones.

        Returns:
            Ids of newly inserted rows that are still uncategorized.
        """
        categories = self._db.get_categories()
        account_ids: dict[str, str] = {}
        new_uncategorized: list[str] = []

        rows = window.added + window.modified
        with tqdm(
            total=len(rows),
            desc="Storing transactions",
            unit="txn",
            disable=not self._show_progress,
        ) as pbar:
            for txn in rows:
                pbar.update(1)
                account_id = account_ids.get(txn.account_id)
                if account_id is None:
                    account = self._db.get_account_by_external_id(txn.account_id)
                    if account is None:
                        raise UnknownAccountError(
                            f"Transaction {txn.transaction_id} references unknown account "
                            f"{txn.account_id}"
                        )
                    account_id = account_ids[txn.account_id] = account["id"]

                existing = self._db.get_transaction_by_external_id(txn.transaction_id)
                if existing and existing["is_split"]:
                    logger.debug("Keeping split parent %s as is", txn.transaction_id)
                    stats.skipped_split_parents += 1
                    continue

                category = None
                if not (existing and existing["category_id"]):
                    category = map_provider_category(
                        txn.category_primary, categories, txn.category_detailed
                    )
                txn_id, inserted, changed = self._db.upsert_provider_transaction(
                    account_id, txn, category
                )
                if inserted:
                    stats.added += 1
                    if category is None:
                        new_uncategorized.append(txn_id)
                elif changed:
                    stats.modified += 1

        for external_id in window.removed:
            existing = self._db.get_transaction_by_external_id(external_id)
            if existing is None:
                continue
            if existing["is_manual"] or existing["is_split"]:
                stats.kept_on_remove += 1
                continue
            self._db.delete_transaction(existing["id"])
            stats.removed += 1
        return new_uncategorized

    def _ensure_unchanged(self, fetched_with: dict) -> None:
        """Refuse to apply data fetched with a credential the item no longer has.

        Raises:
            ItemNotFoundError: The item was deleted meanwhile.
            ItemChangedError: The item was reconnected meanwhile.
        """
        item_id = fetched_with["id"]
        current = self._db.get_item(item_id)
        if current is None:
            raise ItemNotFoundError(f"Item not found: {item_id}")
        if (
            current["access_token"] != fetched_with["access_token"]
            or current["external_item_id"] != fetched_with["external_item_id"]
        ):
            logger.warning("Item %s was reconnected during sync, discarding fetched data", item_id)
            raise ItemChangedError(f"Item {item_id} was reconnected during sync")

    def sync_item(self, item_id: str, full: bool = False) -> SyncStats:
        """Sync one item from its stored cursor.

        Args:
            item_id: Ledger item id.
            full: Clear the stored cursors first and re-read everything.

        Returns:
            SyncStats with counts for this window.

        Raises:
            ItemNotFoundError: Unknown item.
            CredentialInvalidError: Provider rejected the credential; item set to ERROR.
            TransientProviderError: Temporary provider failure; cursor unchanged.
            UnknownAccountError: A row referenced an unknown account; nothing applied.
            SyncInProgressError: Another operation holds the item's lock.
            ItemChangedError: The item was reconnected mid-fetch; nothing applied.
        """
        stats = SyncStats(item_id=item_id)
        with self._locks.hold(item_id):
            item = self._db.get_item(item_id)
            if item is None:
                raise ItemNotFoundError(f"Item not found: {item_id}")
            if full:
                logger.info("Full resync requested for item %s", item_id)
                self._db.clear_cursors(item_id)
                item["transactions_cursor"] = None

            start_cursor = item["transactions_cursor"]
            logger.debug("sync_item %s started from cursor %r", item_id, start_cursor)
            try:
                window, stats.pagination_restarts = self._fetch_window(
                    item["access_token"], start_cursor
                )
            except CredentialInvalidError as e:
                logger.warning("Item %s needs reconnection: %s", item_id, e)
                self._db.set_item_status(item_id, ItemStatus.ERROR.value, e.error_code)
                raise
            stats.pages = window.pages

            with self._db.batch():
                self._ensure_unchanged(item)
                self._apply_accounts(item_id, window, stats)
                new_ids = self._apply_rows(window, stats)

            # Cursor is written only after the rows have committed.
            self._db.set_transactions_cursor(item_id, window.next_cursor)
            stats.cursor = window.next_cursor
            if item["status"] == ItemStatus.ERROR.value:
                self._db.set_item_status(item_id, ItemStatus.ACTIVE.value)

        logger.info(
            "Synced item %s: +%d ~%d -%d (%d pages)",
            item_id,
            stats.added,
            stats.modified,
            stats.removed,
            stats.pages,
        )

        if self._categorizer is not None and new_ids:
            report = self._categorizer.categorize_transactions(new_ids)
            stats.categorized = len(report.categorized)
        return stats

    # =========================================================================
    # Investments
    # =========================================================================

    def _investments_start(self, cursor: Optional[str]) -> str:
        """First date to request: a few days before the last covered date."""
        if not cursor:
            return self._config.sync.investments_start_date
        overlap = timedelta(days=self._config.sync.investments_overlap_days)
        return (date.fromisoformat(cursor) - overlap).isoformat()

    def _fetch_investment_transactions(
        self, access_token: str, start: str, end: str
    ) -> tuple[list[ProviderInvestmentTransaction], list[ProviderSecurity]]:
        """Page through investment transactions by offset until ``total`` is reached."""
        page_size = self._config.sync.investments_page_size
        transactions: list[ProviderInvestmentTransaction] = []
        securities: list[ProviderSecurity] = []
        while True:
            page = self._provider.investments_transactions_get(
                access_token, start, end, offset=len(transactions), count=page_size
            )
            transactions.extend(page.investment_transactions)
            securities.extend(page.securities)
            if not page.investment_transactions or len(transactions) >= page.total:
                return transactions, securities

    def _apply_securities(
        self, securities: list[ProviderSecurity], stats: InvestmentSyncStats
    ) -> dict[str, str]:
        """Upsert securities; returns provider security id -> ledger id."""
        ids: dict[str, str] = {}
        for security in securities:
            if security.security_id in ids:
                continue
            security_id, inserted = self._db.upsert_security(security)
            ids[security.security_id] = security_id
            if inserted:
                stats.securities_added += 1
                logger.debug("Security %s added", security.ticker_symbol or security.name)
        return ids

    def _security_id(
        self, external_id: Optional[str], security_ids: dict[str, str]
    ) -> Optional[str]:
        if not external_id:
            return None
        if external_id not in security_ids:
            row = self._db.get_security_by_external_id(external_id)
            if row is None:
                return None
            security_ids[external_id] = row["id"]
        return security_ids[external_id]

    def _apply_holdings(
        self,
        item_id: str,
        snapshot: HoldingsSnapshot,
        account_ids: dict[str, str],
        security_ids: dict[str, str],
        stats: InvestmentSyncStats,
    ) -> None:
        """Replace the item's holdings with the provider's snapshot."""
        reported = {(h.account_id, h.security_id) for h in snapshot.holdings}
        for existing in self._db.get_holdings_for_item(item_id):
            key = (existing["external_account_id"], existing["external_security_id"])
            if key not in reported:
                self._db.delete_holding(existing["id"])
                stats.holdings_removed += 1

        for holding in snapshot.holdings:
            account_id = account_ids.get(holding.account_id)
            security_id = self._security_id(holding.security_id, security_ids)
            if account_id is None or security_id is None:
                logger.debug(
                    "Skipping holding of %s in unknown account %s",
                    holding.security_id,
                    holding.account_id,
                )
                continue
            _, inserted = self._db.upsert_holding(account_id, security_id, holding)
            if inserted:
                stats.holdings_added += 1
            else:
                stats.holdings_updated += 1

    def sync_investments(self, item_id: str) -> InvestmentSyncStats:
        """Refresh securities, holdings and investment transactions of one item.

        Investment transactions are requested from a few days before the
        stored investments cursor (or the configured start date) up to today.
        The cursor then moves to today in the same write as the rows.

        Args:
            item_id: Ledger item id.

        Returns:
            InvestmentSyncStats; ``unsupported`` is set for items without
            investment accounts.

        Raises:
            ItemNotFoundError: Unknown item.
            CredentialInvalidError: Provider rejected the credential; item set to ERROR.
            ProviderError: Any other provider failure; nothing applied.
            SyncInProgressError: Another operation holds the item's lock.
        """
        stats = InvestmentSyncStats(item_id=item_id)
        with self._locks.hold(item_id):
            item = self._db.get_item(item_id)
            if item is None:
                raise ItemNotFoundError(f"Item not found: {item_id}")
            stats.start_date = self._investments_start(item["investments_cursor"])
            end = self._today().isoformat()
            try:
                snapshot = self._provider.investments_holdings_get(item["access_token"])
                transactions, txn_securities = self._fetch_investment_transactions(
                    item["access_token"], stats.start_date, end
                )
            except CredentialInvalidError as e:
                logger.warning("Item %s needs reconnection: %s", item_id, e)
                self._db.set_item_status(item_id, ItemStatus.ERROR.value, e.error_code)
                raise
            except ProviderError as e:
                if e.error_code not in INVESTMENTS_UNSUPPORTED_CODES:
                    raise
                logger.info("Item %s has no investments (%s)", item_id, e.error_code)
                stats.unsupported = True
                return stats

            with self._db.batch():
                self._ensure_unchanged(item)
                account_ids = {
                    a["external_account_id"]: a["id"]
                    for a in self._db.get_accounts_for_item(item_id)
                }
                security_ids = self._apply_securities(snapshot.securities + txn_securities, stats)
                self._apply_holdings(item_id, snapshot, account_ids, security_ids, stats)
                for txn in transactions:
                    account_id = account_ids.get(txn.account_id)
                    if account_id is None:
                        continue
                    security_id = self._security_id(txn.security_id, security_ids)
                    _, inserted = self._db.upsert_investment_transaction(
                        account_id, security_id, txn
                    )
                    if inserted:
                        stats.investment_transactions_added += 1
                    else:
                        stats.investment_transactions_updated += 1
                self._db.set_investments_cursor(item_id, end)
            stats.cursor = end

        logger.info(
            "Synced investments of item %s: %d holdings, +%d investment transactions",
            item_id,
            stats.holdings_added + stats.holdings_updated,
            stats.investment_transactions_added,
        )
        return stats

    def sync_items(
        self,
        item_ids: Optional[Sequence[str]] = None,
        full: bool = False,
        investments: bool = False,
    ) -> BatchSyncResult:
        """Sync several items one after another.

        Transient failures are retried with exponential backoff. A failing
        item never stops the others; its error is recorded instead.

        Args:
            item_ids: Items to sync. Defaults to every item.
            full: Clear stored cursors before the first attempt of each item.
            investments: Also refresh holdings and investment transactions.

        Returns:
            BatchSyncResult with per-item stats.
        """
        if item_ids is None:
            item_ids = [item["id"] for item in self._db.get_items()]
        result = BatchSyncResult()
        max_retries = self._config.sync.max_retries
        backoff = self._config.sync.retry_backoff_seconds

        for item_id in item_ids:
            attempt = 0
            while True:
                attempt += 1
                try:
                    stats = self.sync_item(item_id, full=full and attempt == 1)
                    if investments:
                        stats.investments = self.sync_investments(item_id)
                except (TransientProviderError, PaginationMutationError, SyncInProgressError) as e:
                    if attempt <= max_retries:
                        delay = backoff * 2 ** (attempt - 1)
                        logger.warning(
                            "Sync of %s failed (%s), retrying in %.1fs (%d/%d)",
                            item_id,
                            e,
                            delay,
                            attempt,
                            max_retries,
                        )
                        self._sleep(delay)
                        continue
                    stats = self._failed(item_id, e)
                except LedgerError as e:
                    stats = self._failed(item_id, e)
                except Exception as e:
                    logger.exception("Unexpected error syncing item %s", item_id)
                    stats = self._failed(item_id, e)
                stats.attempts = attempt
                result.items[item_id] = stats
                break
        return result

    @staticmethod
    def _failed(item_id: str, error: BaseException) -> SyncStats:
        logger.error("Sync of item %s failed: %s", item_id, error)
        return SyncStats(item_id=item_id, errors=[str(error)], error_kind=error_kind(error))
