"""Tests for CLI commands in plaid_ledger/main.py."""

import json
import re

import pytest
from click.testing import CliRunner

from plaid_ledger.clients.mock_plaid_client import (
    SAMPLE_ITEM_ID,
    SAMPLE_PUBLIC_TOKEN,
    SAMPLE_RELINK_PUBLIC_TOKEN,
)
from plaid_ledger.db.database import Database
from plaid_ledger.main import main


@pytest.fixture
def cli_runner():
    """Create Click CliRunner."""
    return CliRunner()


@pytest.fixture
def invoke(cli_runner, tmp_path, monkeypatch):
    """Run the CLI in mock mode against a temporary data directory."""
    monkeypatch.setenv("PLAID_LEDGER_DATA_DIR", str(tmp_path))
    monkeypatch.delenv("PLAID_ENV", raising=False)
    config_path = str(tmp_path / "missing-config.toml")

    def run(*args):
        return cli_runner.invoke(main, ["--mock", "--config", config_path, "-q", *args])

    return run


@pytest.fixture
def mock_db(tmp_path):
    """Open the mock database written by the CLI."""
    dbs = []

    def open_db():
        db = Database(tmp_path / "mock_ledger.db")
        dbs.append(db)
        return db

    yield open_db
    for db in dbs:
        db.close()


@pytest.fixture
def synced(invoke):
    """Link the sample bank and sync it."""
    assert invoke("link", SAMPLE_PUBLIC_TOKEN).exit_code == 0
    assert invoke("sync", "--all").exit_code == 0
    return invoke


class TestMainEntry:
    """Tests for the main entry point and global options."""

    def test_help_option(self, cli_runner):
        """Test --help shows usage information."""
        result = cli_runner.invoke(main, ["--help"])
        assert result.exit_code == 0
        assert "plaid-ledger" in result.output

    def test_mock_flag_recognized(self, cli_runner):
        """Test --mock flag is recognized."""
        result = cli_runner.invoke(main, ["--mock", "--help"])
        assert result.exit_code == 0

    def test_invalid_config_file(self, cli_runner, tmp_path):
        """Test a malformed config file exits with an error."""
        bad = tmp_path / "bad.toml"
        bad.write_text("[plaid\n")

        result = cli_runner.invoke(main, ["--config", str(bad), "status"])

        assert result.exit_code == 1
        assert "Invalid config file" in result.output


class TestStatusAndListing:
    """Tests for read-only commands."""

    def test_status_empty(self, invoke):
        """Test status on a fresh mock ledger."""
        result = invoke("status")
        assert result.exit_code == 0
        assert "Ledger Status" in result.output
        assert "Items:           0" in result.output

    def test_init_after_mock_seed(self, invoke):
        """Test init reports that mock mode already seeded categories."""
        result = invoke("init")
        assert result.exit_code == 0
        assert "nothing seeded" in result.output

    def test_items_empty(self, invoke):
        """Test items hints at linking when nothing is linked."""
        result = invoke("items")
        assert result.exit_code == 0
        assert "No items in database." in result.output

    def test_categories(self, invoke):
        """Test categories lists seeded categories."""
        result = invoke("categories")
        assert result.exit_code == 0
        assert "Food and Drink" in result.output
        assert "Coffee" in result.output

    def test_link_token(self, invoke):
        """Test link-token prints a token."""
        result = invoke("link-token", "--user", "alice")
        assert result.exit_code == 0
        assert "link-sandbox-new-alice" in result.output


class TestLinkAndSync:
    """Tests for link and sync."""

    def test_link(self, invoke, mock_db):
        """Test link creates the item and its accounts."""
        result = invoke("link", SAMPLE_PUBLIC_TOKEN)

        assert result.exit_code == 0
        assert "Linked First Platypus Bank" in result.output
        assert mock_db().get_account_count() == 3

    def test_link_unknown_token(self, invoke):
        """Test an unknown public token fails."""
        result = invoke("link", "public-nope")
        assert result.exit_code == 1

    def test_sync_all(self, synced, mock_db):
        """Test sync --all stores every mock transaction."""
        db = mock_db()
        assert db.get_transaction_count() == 5
        item = db.get_item_by_external_id(SAMPLE_ITEM_ID)
        assert item["transactions_cursor"] == "mock-cursor-2"

    def test_sync_maps_provider_categories(self, synced, mock_db):
        """Test provider categories land on seeded categories."""
        db = mock_db()
        coffee = db.get_transaction_by_external_id("mock-t1")
        food = db.get_category_by_name("Food and Drink")
        assert coffee["category_id"] == food["id"]

    def test_sync_requires_target(self, invoke):
        """Test sync without ITEM_ID or --all is a usage error."""
        result = invoke("sync")
        assert result.exit_code == 2
        assert "--all" in result.output

    def test_sync_unknown_item(self, synced):
        """Test sync of an unknown item id fails."""
        result = synced("sync", "nope")
        assert result.exit_code == 1
        assert "Item not found" in result.output

    def test_transactions_listing(self, synced):
        """Test transactions lists synced rows."""
        result = synced("transactions")
        assert result.exit_code == 0
        assert "Found 5 transactions" in result.output
        assert "Starbucks" in result.output

    def test_sync_again_is_idempotent(self, synced, mock_db):
        """Test a second sync adds nothing."""
        result = synced("sync", "--all")

        assert result.exit_code == 0
        assert mock_db().get_transaction_count() == 5

    def test_sync_investments(self, synced, mock_db):
        """Test sync --investments stores holdings and investment transactions."""
        result = synced("sync", "--all", "--investments")

        assert result.exit_code == 0
        assert "Holdings: +2" in result.output
        db = mock_db()
        assert db.get_holding_count() == 2
        assert db.get_investment_transaction_count() == 2
        assert db.get_item_by_external_id(SAMPLE_ITEM_ID)["investments_cursor"] is not None

    def test_holdings_listing(self, synced):
        """Test holdings lists what an investment sync stored."""
        assert "No holdings" in synced("holdings").output
        synced("sync", "--all", "--investments")

        result = synced("holdings")

        assert result.exit_code == 0
        assert "VTI" in result.output
        assert "BND" in result.output


class TestSplitCommands:
    """Tests for split and undo-split."""

    def test_split_and_undo(self, synced, mock_db):
        """Test splitting the Costco purchase and undoing it."""
        costco = mock_db().get_transaction_by_external_id("mock-t5")

        result = synced(
            "split", costco["id"], "--part=-100.00::Groceries", "--part=-29.99::Household"
        )

        assert result.exit_code == 0
        assert "Split into 2 transactions" in result.output
        db = mock_db()
        assert db.get_transaction(costco["id"])["is_split"] == 1
        assert len(db.get_split_children(costco["id"])) == 2

        result = synced("undo-split", costco["id"])

        assert result.exit_code == 0
        assert "Removed 2 split lines" in result.output
        assert mock_db().get_transaction(costco["id"])["is_split"] == 0

    def test_split_mismatch_warns(self, synced, mock_db):
        """Test a split far from the parent amount still succeeds with a warning."""
        costco = mock_db().get_transaction_by_external_id("mock-t5")

        result = synced("split", costco["id"], "--part=-50.00")

        assert result.exit_code == 0
        assert "differs from transaction amount" in result.output

    def test_split_bad_amount(self, synced, mock_db):
        """Test a non-numeric amount is rejected."""
        costco = mock_db().get_transaction_by_external_id("mock-t5")

        result = synced("split", costco["id"], "--part=lots")

        assert result.exit_code == 2
        assert "Invalid split amount" in result.output

    def test_undo_unsplit(self, synced, mock_db):
        """Test undo-split on an unsplit transaction fails."""
        costco = mock_db().get_transaction_by_external_id("mock-t5")

        result = synced("undo-split", costco["id"])

        assert result.exit_code == 1
        assert "invalid_input" in result.output


class TestItemCommands:
    """Tests for item-status, webhook and reconnect."""

    def test_item_status(self, synced, mock_db):
        """Test item-status updates the item."""
        item = mock_db().get_item_by_external_id(SAMPLE_ITEM_ID)

        result = synced("item-status", item["id"], "pending_expiration")

        assert result.exit_code == 0
        assert "is now PENDING_EXPIRATION" in result.output
        assert mock_db().get_item(item["id"])["status"] == "PENDING_EXPIRATION"

    def test_item_status_invalid(self, synced, mock_db):
        """Test an unknown status is rejected by click."""
        item = mock_db().get_item_by_external_id(SAMPLE_ITEM_ID)

        result = synced("item-status", item["id"], "BROKEN")

        assert result.exit_code == 2

    def test_webhook_from_file(self, synced, mock_db, tmp_path):
        """Test an ITEM/ERROR webhook body marks the item."""
        payload = tmp_path / "hook.json"
        payload.write_text(
            json.dumps(
                {
                    "webhook_type": "ITEM",
                    "webhook_code": "ERROR",
                    "item_id": SAMPLE_ITEM_ID,
                    "error": {"error_code": "ITEM_LOGIN_REQUIRED"},
                }
            )
        )

        result = synced("webhook", str(payload))

        assert result.exit_code == 0
        assert "is now ERROR" in result.output
        assert mock_db().get_item_by_external_id(SAMPLE_ITEM_ID)["status"] == "ERROR"

    def test_webhook_ignored(self, invoke, tmp_path):
        """Test unknown webhook types are acknowledged."""
        payload = tmp_path / "hook.json"
        payload.write_text(json.dumps({"webhook_type": "AUTH", "webhook_code": "X"}))

        result = invoke("webhook", str(payload))

        assert result.exit_code == 0
        assert "Webhook ignored." in result.output

    def test_reconnect_prepare_and_confirm(self, synced, mock_db):
        """Test a reconnection across two CLI invocations."""
        item = mock_db().get_item_by_external_id(SAMPLE_ITEM_ID)
        costco = mock_db().get_transaction_by_external_id("mock-t5")
        synced("split", costco["id"], "--part=-100.00", "--part=-29.99")

        result = synced("reconnect", "prepare", item["id"], SAMPLE_RELINK_PUBLIC_TOKEN)

        assert result.exit_code == 0
        assert "Reconnecting will delete 5 existing transactions" in result.output
        reconnection_id = re.search(r"Reconnection id: (\w+)", result.output).group(1)

        result = synced("reconnect", "confirm", reconnection_id, "--no-sync")

        assert result.exit_code == 0
        assert "Transactions deleted: 5" in result.output
        assert "Split children kept as manual: 2" in result.output
        db = mock_db()
        assert db.get_transaction_count() == 2
        assert db.get_item(item["id"])["transactions_cursor"] is None

        result = synced("reconnect", "confirm", reconnection_id)
        assert result.exit_code == 1
        assert "not found or expired" in result.output

    def test_reconnect_same_item_is_reauth(self, synced, mock_db):
        """Test re-linking with the same item id only reauthorizes."""
        item = mock_db().get_item_by_external_id(SAMPLE_ITEM_ID)

        result = synced("reconnect", "prepare", item["id"], SAMPLE_PUBLIC_TOKEN)

        assert result.exit_code == 0
        assert "Reauthorization successful" in result.output
        assert mock_db().get_transaction_count() == 5


class TestCategorizeCommand:
    """Tests for categorize."""

    def test_categorize_reports(self, synced):
        """Test categorize runs over uncategorized rows."""
        result = synced("categorize")

        assert result.exit_code == 0
        assert "Categorized" in result.output
