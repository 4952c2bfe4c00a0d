"""Reauthentication and reconnection of linked items.

When a user goes back through Link for an existing item, the provider
either keeps the item id (a reauth: only the status changes) or issues a new
one (a reconnection: old provider rows are stale and must be replaced).
Reconnection is destructive, so it happens in two steps. ``prepare`` stashes
the new credential and reports how many rows would be deleted, and
``confirm`` applies it.
"""

from __future__ import annotations

import logging
import time
import uuid
from dataclasses import asdict, dataclass, field
from typing import TYPE_CHECKING, Any, Callable, Optional, Protocol

from ..config import ReconnectionConfig
from ..errors import ItemNotFoundError, LedgerError, ReconnectionNotFoundError
from ..models import ItemStatus, ProviderAccount, ReconnectionState
from .locks import ItemLockRegistry
from .splits import SplitService

logger = logging.getLogger(__name__)

if TYPE_CHECKING:
    from ..clients.protocols import TransactionsProvider
    from ..db.protocols import LedgerStore
    from .sync import SyncService, SyncStats


# =============================================================================
# Reconnection cache
# =============================================================================


@dataclass
class PendingReconnection:
    """A prepared reconnection awaiting confirmation."""

    reconnection_id: str
    item_id: str
    payload: dict[str, Any]
    state: ReconnectionState
    expires_at: float


class ReconnectionCache(Protocol):
    """Short-lived store for prepared reconnections."""

    def put(self, entry: PendingReconnection) -> None: ...

    def get(self, reconnection_id: str) -> Optional[PendingReconnection]:
        """Return the entry, or None if unknown or expired.

        An expired entry is marked EXPIRED the first time it is seen.
        """
        ...

    def mark(self, reconnection_id: str, state: ReconnectionState) -> None: ...

    def discard(self, reconnection_id: str) -> None: ...


class InMemoryReconnectionCache:
    """Process-local reconnection cache."""

    def __init__(self, clock: Callable[[], float] = time.time):
        self._clock = clock
        self._entries: dict[str, PendingReconnection] = {}

    def _purge(self) -> None:
        now = self._clock()
        for key in [k for k, e in self._entries.items() if e.expires_at <= now]:
            self._entries.pop(key).state = ReconnectionState.EXPIRED

    def put(self, entry: PendingReconnection) -> None:
        self._purge()
        self._entries[entry.reconnection_id] = entry

    def get(self, reconnection_id: str) -> Optional[PendingReconnection]:
        entry = self._entries.get(reconnection_id)
        if entry is None:
            return None
        if entry.expires_at <= self._clock():
            if entry.state != ReconnectionState.EXPIRED:
                logger.info("Reconnection %s expired", reconnection_id)
                entry.state = ReconnectionState.EXPIRED
            return None
        return entry

    def mark(self, reconnection_id: str, state: ReconnectionState) -> None:
        if reconnection_id in self._entries:
            self._entries[reconnection_id].state = state

    def discard(self, reconnection_id: str) -> None:
        self._entries.pop(reconnection_id, None)


class DatabaseReconnectionCache:
    """Reconnection cache backed by the ledger database.

    Lets ``reconnect prepare`` and ``reconnect confirm`` run as separate
    CLI invocations. Expired rows are kept as EXPIRED until the next ``put``.
    """

    def __init__(self, db: LedgerStore, clock: Callable[[], float] = time.time):
        self._db = db
        self._clock = clock

    def put(self, entry: PendingReconnection) -> None:
        purged = self._db.purge_expired_reconnections(self._clock())
        if purged:
            logger.debug("Purged %d expired reconnections", purged)
        self._db.save_pending_reconnection(
            entry.reconnection_id,
            entry.item_id,
            entry.payload,
            entry.state.value,
            entry.expires_at,
        )

    def get(self, reconnection_id: str) -> Optional[PendingReconnection]:
        row = self._db.get_pending_reconnection(reconnection_id)
        if row is None:
            return None
        if row["expires_at"] <= self._clock():
            if row["state"] != ReconnectionState.EXPIRED.value:
                logger.info("Reconnection %s expired", reconnection_id)
                self._db.set_pending_reconnection_state(
                    reconnection_id, ReconnectionState.EXPIRED.value
                )
            return None
        return PendingReconnection(
            reconnection_id=row["id"],
            item_id=row["item_id"],
            payload=row["payload"],
            state=ReconnectionState(row["state"]),
            expires_at=row["expires_at"],
        )

    def mark(self, reconnection_id: str, state: ReconnectionState) -> None:
        self._db.set_pending_reconnection_state(reconnection_id, state.value)

    def discard(self, reconnection_id: str) -> None:
        self._db.delete_pending_reconnection(reconnection_id)


# =============================================================================
# Results
# =============================================================================


@dataclass
class PrepareResult:
    """Outcome of preparing a reconnection."""

    kind: str  # 'reauth' or 'reconnection'
    item_id: str
    institution_name: Optional[str] = None
    reconnection_id: Optional[str] = None
    transaction_count: int = 0

    @property
    def message(self) -> str:
        if self.kind == "reauth":
            return "Reauthorization successful"
        return f"Reconnecting will delete {self.transaction_count} existing transactions"


@dataclass
class ReconnectionOutcome:
    """Outcome of confirming a reconnection."""

    item_id: str
    transactions_deleted: int = 0
    children_converted: int = 0
    investment_rows_deleted: int = 0
    accounts_matched: int = 0
    accounts_created: int = 0
    sync_stats: Optional[SyncStats] = None
    sync_error: Optional[str] = None


@dataclass
class LinkResult:
    """Outcome of linking an item."""

    item_id: str
    created: bool
    institution_name: Optional[str] = None
    account_ids: list[str] = field(default_factory=list)


def _signature(name: Optional[str], mask: Optional[str]) -> str:
    return f"{name or ''}|{mask or ''}"


# =============================================================================
# Coordinator
# =============================================================================


class ReconnectionCoordinator:
    """Runs the reauth / reconnection state machine for items."""

    def __init__(
        self,
        db: LedgerStore,
        provider: TransactionsProvider,
        cache: Optional[ReconnectionCache] = None,
        splits: Optional[SplitService] = None,
        locks: Optional[ItemLockRegistry] = None,
        sync_service: Optional[SyncService] = None,
        config: Optional[ReconnectionConfig] = None,
        clock: Callable[[], float] = time.time,
    ):
        """Initialize the coordinator.

        Args:
            db: Ledger store.
            provider: Plaid client (real or mock).
            cache: Where prepared reconnections wait; in-memory by default.
            splits: Split service used to preserve split children.
            locks: Item locks, shared with the sync service. Defaults to the
                sync service's registry, else to leases in ``db``.
            sync_service: Used to re-sync after a confirmed reconnection.
            config: TTL settings.
            clock: Time source for expiry.
        """
        self._db = db
        self._provider = provider
        self._clock = clock
        self._cache = cache or InMemoryReconnectionCache(clock)
        self._splits = splits or SplitService(db)
        self._sync = sync_service
        if locks is None:
            locks = sync_service.locks if sync_service is not None else ItemLockRegistry(store=db)
        self._locks = locks
        self._config = config or ReconnectionConfig()

    def prepare_reconnection(self, item_id: str, public_token: str) -> PrepareResult:
        """Exchange a Link token for an existing item and classify the result.

        A reauth is applied immediately. A reconnection is stashed until it
        is confirmed or expires.

        Raises:
            ItemNotFoundError: Unknown item.
            ProviderError: Token exchange or lookups failed.
        """
        item = self._db.get_item(item_id)
        if item is None:
            raise ItemNotFoundError(f"Item not found: {item_id}")

        exchange = self._provider.exchange_public_token(public_token)
        institution = self._provider.get_item_institution(exchange.access_token)
        accounts = self._provider.get_accounts(exchange.access_token)
        institution_name = institution.name or item["institution_name"]

        if exchange.item_id == item["external_item_id"]:
            logger.info("Reauth for item %s (%s)", item_id, institution_name)
            self._db.set_item_status(item_id, ItemStatus.ACTIVE.value)
            return PrepareResult(kind="reauth", item_id=item_id, institution_name=institution_name)

        count = self._db.count_provider_transactions_for_item(item_id)
        reconnection_id = uuid.uuid4().hex
        self._cache.put(
            PendingReconnection(
                reconnection_id=reconnection_id,
                item_id=item_id,
                payload={
                    "access_token": exchange.access_token,
                    "external_item_id": exchange.item_id,
                    "previous_external_item_id": item["external_item_id"],
                    "institution_id": institution.institution_id,
                    "institution_name": institution_name,
                    "accounts": [asdict(a) for a in accounts],
                    "transaction_count": count,
                },
                state=ReconnectionState.PREPARED,
                expires_at=self._clock() + self._config.ttl_seconds,
            )
        )
        logger.info(
            "Reconnection prepared for item %s (%s -> %s), %d transactions at stake",
            item_id,
            item["external_item_id"],
            exchange.item_id,
            count,
        )
        return PrepareResult(
            kind="reconnection",
            item_id=item_id,
            institution_name=institution_name,
            reconnection_id=reconnection_id,
            transaction_count=count,
        )

    def _pending(self, reconnection_id: str) -> PendingReconnection:
        entry = self._cache.get(reconnection_id)
        if entry is None or entry.state != ReconnectionState.PREPARED:
            raise ReconnectionNotFoundError("Reconnection data not found or expired")
        return entry

    def _reconcile_accounts(
        self, item_id: str, accounts: list[ProviderAccount], outcome: ReconnectionOutcome
    ) -> None:
        """Remap existing accounts by name/mask; create the rest.

        Each existing account is matched at most once, in name order, so
        accounts sharing a name and mask map onto distinct rows.
        """
        unmatched: dict[str, list[dict[str, Any]]] = {}
        for existing in self._db.get_accounts_for_item(item_id):
            unmatched.setdefault(_signature(existing["name"], existing["mask"]), []).append(existing)
        for account in accounts:
            candidates = unmatched.get(_signature(account.name, account.mask))
            if not candidates:
                self._db.create_account(item_id, account)
                outcome.accounts_created += 1
                continue
            match = candidates.pop(0)
            self._db.update_account(match["id"], external_account_id=account.account_id)
            self._db.refresh_account(match["id"], account)
            outcome.accounts_matched += 1

    def confirm_reconnection(self, reconnection_id: str, resync: bool = True) -> ReconnectionOutcome:
        """Apply a prepared reconnection.

        Split children are converted to manual rows, provider rows and
        investment data are deleted, the item takes the new credential with
        cleared cursors, and accounts are remapped. Optionally re-syncs the
        item's transactions afterwards.

        Raises:
            ReconnectionNotFoundError: Unknown, expired, cancelled or used id.
            SyncInProgressError: The item is busy.
        """
        item_id = self._pending(reconnection_id).item_id

        with self._locks.hold(item_id):
            # Another confirm or a cancel may have finished while we waited.
            entry = self._pending(reconnection_id)
            payload = entry.payload
            outcome = ReconnectionOutcome(item_id=item_id)
            accounts = [ProviderAccount(**a) for a in payload["accounts"]]
            self._cache.mark(reconnection_id, ReconnectionState.CONFIRMED)
            try:
                with self._db.batch():
                    if self._db.get_item(item_id) is None:
                        raise ItemNotFoundError(f"Item not found: {item_id}")
                    outcome.children_converted = self._splits.convert_children_to_manual(item_id)
                    outcome.transactions_deleted = (
                        self._db.delete_provider_transactions_for_item(item_id)
                    )
                    outcome.investment_rows_deleted = (
                        self._db.delete_investment_data_for_item(item_id)
                    )
                    self._db.update_item(
                        item_id,
                        external_item_id=payload["external_item_id"],
                        access_token=payload["access_token"],
                        institution_id=payload["institution_id"],
                        institution_name=payload["institution_name"],
                        status=ItemStatus.ACTIVE.value,
                        error_code=None,
                        transactions_cursor=None,
                        investments_cursor=None,
                    )
                    self._reconcile_accounts(item_id, accounts, outcome)
            except Exception:
                self._cache.mark(reconnection_id, ReconnectionState.PREPARED)
                raise
            self._cache.mark(reconnection_id, ReconnectionState.COMPLETE)
            self._cache.discard(reconnection_id)
            logger.info(
                "Reconnection complete for item %s: deleted %d, kept %d split children",
                item_id,
                outcome.transactions_deleted,
                outcome.children_converted,
            )

            if resync and self._sync is not None:
                try:
                    outcome.sync_stats = self._sync.sync_item(item_id)
                except LedgerError as e:
                    logger.warning("Re-sync after reconnection of %s failed: %s", item_id, e)
                    outcome.sync_error = str(e)
        return outcome

    def cancel_reconnection(self, reconnection_id: str) -> None:
        """Discard a prepared reconnection without touching the ledger.

        Raises:
            ReconnectionNotFoundError: Unknown, expired or already used id.
        """
        self._pending(reconnection_id)
        self._cache.mark(reconnection_id, ReconnectionState.CANCELLED)
        self._cache.discard(reconnection_id)
        logger.info("Reconnection %s cancelled", reconnection_id)

    def link_item(self, public_token: str) -> LinkResult:
        """Link a new item, or refresh the credential of a known one.

        Returns:
            LinkResult with the item id and whether it was newly created.
        """
        exchange = self._provider.exchange_public_token(public_token)
        institution = self._provider.get_item_institution(exchange.access_token)
        accounts = self._provider.get_accounts(exchange.access_token)

        with self._db.batch():
            existing = self._db.get_item_by_external_id(exchange.item_id)
            if existing:
                item_id = existing["id"]
                self._db.update_item(
                    item_id,
                    access_token=exchange.access_token,
                    institution_id=institution.institution_id,
                    institution_name=institution.name,
                    status=ItemStatus.ACTIVE.value,
                )
            else:
                item_id = self._db.create_item(
                    exchange.item_id,
                    exchange.access_token,
                    institution.institution_id,
                    institution.name,
                )
            result = LinkResult(
                item_id=item_id, created=existing is None, institution_name=institution.name
            )
            for account in accounts:
                account_id, _ = self._db.upsert_account(item_id, account)
                result.account_ids.append(account_id)

        logger.info(
            "%s item %s (%s) with %d accounts",
            "Linked" if result.created else "Refreshed",
            item_id,
            institution.name,
            len(accounts),
        )
        return result
