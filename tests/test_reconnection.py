"""Tests for ReconnectionCoordinator and the reconnection caches."""

import threading
from contextlib import contextmanager

import pytest
from factories import EXTERNAL_ITEM_ID, make_account, make_txn, page

from plaid_ledger.errors import ItemNotFoundError, ReconnectionNotFoundError, SyncInProgressError
from plaid_ledger.models import (
    ProviderHolding,
    ProviderInvestmentTransaction,
    ProviderSecurity,
    ReconnectionState,
    SplitItem,
)
from plaid_ledger.services import (
    DatabaseReconnectionCache,
    InMemoryReconnectionCache,
    ItemLockRegistry,
    ReconnectionCoordinator,
    SplitService,
    SyncService,
)
from plaid_ledger.services.reconnection import PendingReconnection

RELINK_TOKEN = "public-relink"
RELINK_ACCESS = "access-relink"
RELINK_ITEM = "plaid-item-2"


class FakeClock:
    """Manually advanced time source."""

    def __init__(self, now: float = 1000.0):
        self.now = now

    def __call__(self) -> float:
        return self.now


@pytest.fixture
def clock():
    """Fake clock starting at t=1000."""
    return FakeClock()


@pytest.fixture
def relink_provider(mock_provider):
    """Provider that issues a new item id for RELINK_TOKEN."""
    mock_provider.add_exchange(RELINK_TOKEN, RELINK_ACCESS, RELINK_ITEM)
    mock_provider.set_institution(RELINK_ACCESS, "ins_1", "Test Bank")
    mock_provider.set_accounts(
        RELINK_ACCESS,
        [
            make_account("acc-new-1", "Checking", "1111", current_balance=2500.0),
            make_account("acc-new-2", "Savings", "2222"),
        ],
    )
    return mock_provider


@pytest.fixture
def coordinator(database, relink_provider, clock):
    """Coordinator with an in-memory cache on a fake clock."""
    return ReconnectionCoordinator(database, relink_provider, clock=clock)


def _add_provider_rows(database, account_id, count):
    for i in range(count):
        database.upsert_provider_transaction(account_id, make_txn(f"t{i}", amount=-(i + 1.0)))


class TestPrepareReconnection:
    """Tests for classifying a Link result."""

    def test_same_item_is_reauth(self, database, mock_provider, item) -> None:
        """Same external item id only restores the status."""
        mock_provider.add_exchange("public-reauth", "access-test-1", EXTERNAL_ITEM_ID)
        mock_provider.set_institution("access-test-1", "ins_1", "Test Bank")
        database.set_item_status(item["item_id"], "ERROR", "ITEM_LOGIN_REQUIRED")
        _add_provider_rows(database, item["account_id"], 3)
        coordinator = ReconnectionCoordinator(database, mock_provider)

        result = coordinator.prepare_reconnection(item["item_id"], "public-reauth")

        assert result.kind == "reauth"
        assert result.reconnection_id is None
        assert result.message == "Reauthorization successful"
        assert database.get_item(item["item_id"])["status"] == "ACTIVE"
        assert database.get_transaction_count() == 3

    def test_new_item_is_reconnection(self, database, coordinator, item) -> None:
        """A new external item id reports what would be deleted."""
        _add_provider_rows(database, item["account_id"], 4)
        database.create_manual_transaction(item["account_id"], -5.00, "2025-01-03", "Cash")

        result = coordinator.prepare_reconnection(item["item_id"], RELINK_TOKEN)

        assert result.kind == "reconnection"
        assert result.reconnection_id
        assert result.transaction_count == 4
        assert result.message == "Reconnecting will delete 4 existing transactions"
        assert database.get_transaction_count() == 5
        assert database.get_item(item["item_id"])["external_item_id"] == EXTERNAL_ITEM_ID

    def test_unknown_item(self, coordinator) -> None:
        """Preparing for a missing item fails before the exchange."""
        with pytest.raises(ItemNotFoundError):
            coordinator.prepare_reconnection("missing", RELINK_TOKEN)


class TestConfirmReconnection:
    """Tests for applying a prepared reconnection."""

    def test_replaces_provider_rows_and_keeps_manual(self, database, coordinator, item) -> None:
        """Provider rows are deleted, manual rows survive, cursors reset."""
        _add_provider_rows(database, item["account_id"], 10)
        for i in range(2):
            database.create_manual_transaction(item["account_id"], -5.00, "2025-01-03", f"Cash {i}")
        database.update_item(item["item_id"], transactions_cursor="old", investments_cursor="inv")
        database.set_item_status(item["item_id"], "ERROR", "ITEM_LOGIN_REQUIRED")
        prepared = coordinator.prepare_reconnection(item["item_id"], RELINK_TOKEN)

        outcome = coordinator.confirm_reconnection(prepared.reconnection_id)

        assert outcome.transactions_deleted == 10
        assert database.get_transaction_count() == 2
        stored = database.get_item(item["item_id"])
        assert stored["external_item_id"] == RELINK_ITEM
        assert stored["access_token"] == RELINK_ACCESS
        assert stored["status"] == "ACTIVE"
        assert stored["error_code"] is None
        assert stored["transactions_cursor"] is None
        assert stored["investments_cursor"] is None

    def test_split_children_become_manual(self, database, coordinator, item, leaf_transaction) -> None:
        """Split lines outlive their deleted parent."""
        split = SplitService(database).split_transaction(
            leaf_transaction, [SplitItem(-60.00), SplitItem(-40.00)]
        )
        prepared = coordinator.prepare_reconnection(item["item_id"], RELINK_TOKEN)

        outcome = coordinator.confirm_reconnection(prepared.reconnection_id)

        assert outcome.children_converted == 2
        assert database.get_transaction(leaf_transaction) is None
        for child_id in split.child_ids:
            child = database.get_transaction(child_id)
            assert child["is_manual"] == 1
            assert child["parent_transaction_id"] is None

    def test_accounts_remapped_by_name_and_mask(self, database, coordinator, item) -> None:
        """Matching accounts keep their id; new ones are created."""
        prepared = coordinator.prepare_reconnection(item["item_id"], RELINK_TOKEN)

        outcome = coordinator.confirm_reconnection(prepared.reconnection_id)

        assert outcome.accounts_matched == 1
        assert outcome.accounts_created == 1
        account = database.get_account(item["account_id"])
        assert account["external_account_id"] == "acc-new-1"
        assert account["current_balance"] == 2500.0
        names = {a["name"] for a in database.get_accounts_for_item(item["item_id"])}
        assert names == {"Checking", "Savings"}

    def test_resyncs_with_new_credential(self, database, relink_provider, sample_config, item) -> None:
        """A sync service re-fetches history from an empty cursor."""
        relink_provider.add_page(
            RELINK_ACCESS, None, page(added=[make_txn("n1", account_id="acc-new-1")], next_cursor="n-c1")
        )
        sync = SyncService(database, relink_provider, sample_config)
        coordinator = ReconnectionCoordinator(database, relink_provider, sync_service=sync)
        prepared = coordinator.prepare_reconnection(item["item_id"], RELINK_TOKEN)

        outcome = coordinator.confirm_reconnection(prepared.reconnection_id)

        assert outcome.sync_stats.added == 1
        assert outcome.sync_error is None
        assert database.get_item(item["item_id"])["transactions_cursor"] == "n-c1"
        txn = database.get_transaction_by_external_id("n1")
        assert txn["account_id"] == item["account_id"]

    def test_double_confirm(self, coordinator, item) -> None:
        """A reconnection id can only be used once."""
        prepared = coordinator.prepare_reconnection(item["item_id"], RELINK_TOKEN)
        coordinator.confirm_reconnection(prepared.reconnection_id)

        with pytest.raises(ReconnectionNotFoundError):
            coordinator.confirm_reconnection(prepared.reconnection_id)

    def test_expired(self, database, coordinator, clock, item) -> None:
        """Confirming after the TTL fails and changes nothing."""
        _add_provider_rows(database, item["account_id"], 2)
        prepared = coordinator.prepare_reconnection(item["item_id"], RELINK_TOKEN)
        clock.now += 301

        with pytest.raises(ReconnectionNotFoundError):
            coordinator.confirm_reconnection(prepared.reconnection_id)
        assert database.get_transaction_count() == 2
        assert database.get_item(item["item_id"])["external_item_id"] == EXTERNAL_ITEM_ID

    def test_cancel(self, database, coordinator, item) -> None:
        """A cancelled reconnection cannot be confirmed."""
        prepared = coordinator.prepare_reconnection(item["item_id"], RELINK_TOKEN)

        coordinator.cancel_reconnection(prepared.reconnection_id)

        with pytest.raises(ReconnectionNotFoundError):
            coordinator.confirm_reconnection(prepared.reconnection_id)
        with pytest.raises(ReconnectionNotFoundError):
            coordinator.cancel_reconnection(prepared.reconnection_id)

    def test_failure_rolls_back_and_stays_prepared(
        self, database, coordinator, item, monkeypatch
    ) -> None:
        """A failure mid-confirm undoes every write and the id stays usable."""
        _add_provider_rows(database, item["account_id"], 3)
        prepared = coordinator.prepare_reconnection(item["item_id"], RELINK_TOKEN)

        def boom(*args, **kwargs):
            raise RuntimeError("disk full")

        monkeypatch.setattr(database, "update_item", boom)
        with pytest.raises(RuntimeError):
            coordinator.confirm_reconnection(prepared.reconnection_id)
        monkeypatch.undo()

        assert database.get_transaction_count() == 3
        assert database.get_item(item["item_id"])["external_item_id"] == EXTERNAL_ITEM_ID
        outcome = coordinator.confirm_reconnection(prepared.reconnection_id)
        assert outcome.transactions_deleted == 3

    def test_busy_item(self, database, relink_provider, item) -> None:
        """Confirm waits for the item lock and gives up after the timeout."""
        locks = ItemLockRegistry(timeout_seconds=0.05)
        coordinator = ReconnectionCoordinator(database, relink_provider, locks=locks)
        prepared = coordinator.prepare_reconnection(item["item_id"], RELINK_TOKEN)
        held = threading.Event()
        release = threading.Event()

        def hold_lock():
            with locks.hold(item["item_id"]):
                held.set()
                release.wait(5)

        worker = threading.Thread(target=hold_lock)
        worker.start()
        held.wait(5)
        try:
            with pytest.raises(SyncInProgressError):
                coordinator.confirm_reconnection(prepared.reconnection_id)
        finally:
            release.set()
            worker.join()

        assert coordinator.confirm_reconnection(prepared.reconnection_id).item_id == item["item_id"]

    def test_waiting_confirm_sees_finished_one(
        self, database, relink_provider, clock, item, monkeypatch
    ) -> None:
        """A confirm that waited for the lock stops if the id was used meanwhile."""
        locks = ItemLockRegistry()
        cache = InMemoryReconnectionCache(clock)
        first = ReconnectionCoordinator(
            database, relink_provider, cache=cache, locks=locks, clock=clock
        )
        second = ReconnectionCoordinator(
            database, relink_provider, cache=cache, locks=locks, clock=clock
        )
        prepared = first.prepare_reconnection(item["item_id"], RELINK_TOKEN)
        real_hold = locks.hold
        waited = []

        @contextmanager
        def hold_after_first_confirm(item_id, timeout=None):
            if not waited:
                waited.append(item_id)
                first.confirm_reconnection(prepared.reconnection_id, resync=False)
                database.upsert_provider_transaction(
                    item["account_id"], make_txn("n1", account_id="acc-new-1")
                )
            with real_hold(item_id, timeout):
                yield

        monkeypatch.setattr(locks, "hold", hold_after_first_confirm)

        with pytest.raises(ReconnectionNotFoundError):
            second.confirm_reconnection(prepared.reconnection_id)
        assert waited == [item["item_id"]]
        assert database.get_transaction_by_external_id("n1") is not None
        assert database.get_item(item["item_id"])["external_item_id"] == RELINK_ITEM

    def test_accounts_sharing_name_and_mask(self, database, mock_provider, item) -> None:
        """Accounts with the same name and mask each map onto their own row."""
        database.create_account(item["item_id"], make_account("acc-b1", "Brokerage", None))
        database.create_account(item["item_id"], make_account("acc-b2", "Brokerage", None))
        mock_provider.add_exchange("public-dup", "access-dup", "plaid-item-3")
        mock_provider.set_accounts(
            "access-dup",
            [
                make_account("acc-new-b1", "Brokerage", None),
                make_account("acc-new-b2", "Brokerage", None),
            ],
        )
        coordinator = ReconnectionCoordinator(database, mock_provider)
        prepared = coordinator.prepare_reconnection(item["item_id"], "public-dup")

        outcome = coordinator.confirm_reconnection(prepared.reconnection_id)

        assert outcome.accounts_matched == 2
        assert outcome.accounts_created == 0
        accounts = database.get_accounts_for_item(item["item_id"])
        assert len(accounts) == 3
        brokerage = {a["external_account_id"] for a in accounts if a["name"] == "Brokerage"}
        assert brokerage == {"acc-new-b1", "acc-new-b2"}

    def test_deletes_investment_data(self, database, coordinator, item) -> None:
        """Holdings and investment transactions of the old item are removed."""
        security_id, _ = database.upsert_security(ProviderSecurity("sec-1", "Fund", "FND"))
        database.upsert_holding(
            item["account_id"], security_id, ProviderHolding("acc-1", "sec-1", 5.0)
        )
        database.upsert_investment_transaction(
            item["account_id"],
            security_id,
            ProviderInvestmentTransaction("inv-1", "acc-1", "2025-01-02", "buy"),
        )
        prepared = coordinator.prepare_reconnection(item["item_id"], RELINK_TOKEN)

        outcome = coordinator.confirm_reconnection(prepared.reconnection_id)

        assert outcome.investment_rows_deleted == 2
        assert database.get_holding_count() == 0
        assert database.get_investment_transaction_count() == 0
        assert database.get_security_by_external_id("sec-1") is not None


class TestReconnectionCaches:
    """Tests for the cache implementations."""

    def _entry(self, item_id, expires_at, reconnection_id="rc-1"):
        return PendingReconnection(
            reconnection_id=reconnection_id,
            item_id=item_id,
            payload={"access_token": "x"},
            state=ReconnectionState.PREPARED,
            expires_at=expires_at,
        )

    def test_in_memory_expiry(self, clock) -> None:
        """Entries are marked expired and vanish once the clock passes their expiry."""
        cache = InMemoryReconnectionCache(clock)
        entry = self._entry("item-1", clock.now + 300)
        cache.put(entry)

        assert cache.get("rc-1") is not None
        clock.now += 300
        assert cache.get("rc-1") is None
        assert entry.state is ReconnectionState.EXPIRED

        cache.put(self._entry("item-1", clock.now + 300, reconnection_id="rc-2"))
        assert cache.get("rc-2") is not None

    def test_database_cache_round_trip(self, database, item, clock) -> None:
        """Entries survive a new cache instance on the same database."""
        DatabaseReconnectionCache(database, clock).put(self._entry(item["item_id"], clock.now + 300))

        cache = DatabaseReconnectionCache(database, clock)
        entry = cache.get("rc-1")
        assert entry.payload == {"access_token": "x"}
        assert entry.state is ReconnectionState.PREPARED

        cache.mark("rc-1", ReconnectionState.CONFIRMED)
        assert cache.get("rc-1").state is ReconnectionState.CONFIRMED

    def test_database_cache_expiry_marks_row(self, database, item, clock) -> None:
        """An expired row reads as missing, is marked EXPIRED, and is purged by the next put."""
        cache = DatabaseReconnectionCache(database, clock)
        cache.put(self._entry(item["item_id"], clock.now + 10))
        clock.now += 10

        assert cache.get("rc-1") is None
        assert database.get_pending_reconnection("rc-1")["state"] == "EXPIRED"

        cache.put(self._entry(item["item_id"], clock.now + 300, reconnection_id="rc-2"))
        assert database.get_pending_reconnection("rc-1") is None
        assert database.get_pending_reconnection_count() == 1

    def test_confirm_through_database_cache(self, database, relink_provider, item, clock) -> None:
        """prepare and confirm can use separate coordinators."""
        first = ReconnectionCoordinator(
            database, relink_provider, cache=DatabaseReconnectionCache(database, clock), clock=clock
        )
        prepared = first.prepare_reconnection(item["item_id"], RELINK_TOKEN)

        second = ReconnectionCoordinator(
            database, relink_provider, cache=DatabaseReconnectionCache(database, clock), clock=clock
        )
        second.confirm_reconnection(prepared.reconnection_id)

        assert database.get_item(item["item_id"])["external_item_id"] == RELINK_ITEM
        assert database.get_pending_reconnection_count() == 0


class TestLinkItem:
    """Tests for linking items."""

    def test_link_new_item(self, database, relink_provider) -> None:
        """A new external item creates the item and its accounts."""
        coordinator = ReconnectionCoordinator(database, relink_provider)

        result = coordinator.link_item(RELINK_TOKEN)

        assert result.created is True
        assert result.institution_name == "Test Bank"
        assert len(result.account_ids) == 2
        assert database.get_item(result.item_id)["access_token"] == RELINK_ACCESS

    def test_link_known_item_refreshes(self, database, relink_provider) -> None:
        """Linking the same external item again updates it in place."""
        coordinator = ReconnectionCoordinator(database, relink_provider)
        first = coordinator.link_item(RELINK_TOKEN)
        database.set_item_status(first.item_id, "ERROR", "ITEM_LOGIN_REQUIRED")

        second = coordinator.link_item(RELINK_TOKEN)

        assert second.created is False
        assert second.item_id == first.item_id
        assert database.get_item_count() == 1
        assert database.get_account_count() == 2
        assert database.get_item(first.item_id)["status"] == "ACTIVE"
