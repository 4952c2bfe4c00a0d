"""Shared pytest fixtures for plaid-ledger tests."""

import logging

import pytest
from factories import ACCESS_TOKEN, EXTERNAL_ITEM_ID, make_account, make_txn

from plaid_ledger.clients import MockPlaidClient
from plaid_ledger.config import (
    CategorizationConfig,
    Config,
    PlaidConfig,
    SyncConfig,
)
from plaid_ledger.db.database import Database


@pytest.fixture(autouse=True)
def reset_app_logger():
    """Undo handlers attached by setup_logging during CLI tests."""
    yield
    app_logger = logging.getLogger("plaid_ledger")
    app_logger.handlers.clear()
    app_logger.propagate = True
    app_logger.setLevel(logging.NOTSET)


@pytest.fixture
def temp_db_path(tmp_path):
    """Create a temporary database path."""
    return tmp_path / "test_ledger.db"


@pytest.fixture
def database(temp_db_path):
    """Create a test database instance."""
    db = Database(temp_db_path)
    yield db
    db.close()


@pytest.fixture
def second_database(temp_db_path):
    """A second connection to the same file, as another CLI process would open it."""
    db = Database(temp_db_path)
    yield db
    db.close()


@pytest.fixture
def sample_config(tmp_path):
    """Create a sample configuration."""
    return Config(
        plaid=PlaidConfig(client_id="test-client", secret="test-secret"),
        sync=SyncConfig(max_retries=2, retry_backoff_seconds=1.0, lock_timeout_seconds=0.1),
        categorization=CategorizationConfig(min_confidence=60, history_min_samples=2),
        data_dir=tmp_path / "data",
    )


@pytest.fixture
def mock_provider():
    """Empty scripted provider."""
    return MockPlaidClient()


@pytest.fixture
def categories(database):
    """A small category tree. Returns a name -> id map (subcategories as 'Cat/Sub')."""
    ids = {}
    food = database.create_category("Food and Drink")
    ids["Food and Drink"] = food
    ids["Food and Drink/Coffee"] = database.create_subcategory(food, "Coffee")
    ids["Food and Drink/Groceries"] = database.create_subcategory(food, "Groceries")
    ids["Income"] = database.create_category("Income", "INCOME")
    ids["Income/Wages"] = database.create_subcategory(ids["Income"], "Wages")
    ids["Shopping"] = database.create_category("Shopping")
    return ids


@pytest.fixture
def item(database):
    """A linked item with one account. Returns dict with item and account ids."""
    item_id = database.create_item(EXTERNAL_ITEM_ID, ACCESS_TOKEN, "ins_1", "Test Bank")
    account_id = database.create_account(item_id, make_account())
    return {"item_id": item_id, "account_id": account_id}


@pytest.fixture
def leaf_transaction(database, item):
    """A stored provider transaction of -100.00."""
    txn_id, _, _ = database.upsert_provider_transaction(
        item["account_id"], make_txn("t-leaf", amount=-100.00, name="COSTCO", merchant_name="Costco")
    )
    return txn_id
