"""SQLite ledger store.

Handles connection management and schema for:
- Items (linked bank connections) and their sync cursors
- Accounts and balances
- Transactions, including split parents/children and manual entries
- User categories, subcategories and tags
- Securities, holdings and investment transactions
- Pending reconnections awaiting confirmation
- Per-item lease rows serializing sync and reconnection across processes
"""

from __future__ import annotations

import logging
import sqlite3
from contextlib import contextmanager
from pathlib import Path
from typing import Any, Iterator, Optional

from .mixins import (
    AccountsMixin,
    CategoriesMixin,
    InvestmentsMixin,
    ItemsMixin,
    LocksMixin,
    ReconnectionsMixin,
    TagsMixin,
    TransactionsMixin,
)

__all__ = ["Database"]

logger = logging.getLogger(__name__)


class Database(
    ItemsMixin,
    AccountsMixin,
    TransactionsMixin,
    CategoriesMixin,
    TagsMixin,
    InvestmentsMixin,
    ReconnectionsMixin,
    LocksMixin,
):
    """SQLite implementation of the ledger store."""

    def __init__(self, db_path: Path | str):
        """Initialize database connection and schema."""
        self.db_path = Path(db_path)
        self._conn: Optional[sqlite3.Connection] = None
        self._depth = 0
        self.db_path.parent.mkdir(parents=True, exist_ok=True)
        self._init_schema()

    def _get_connection(self) -> sqlite3.Connection:
        """Get or create a persistent database connection."""
        if self._conn is None:
            self._conn = sqlite3.connect(self.db_path, check_same_thread=False, timeout=30.0)
            self._conn.row_factory = sqlite3.Row
            self._conn.execute("PRAGMA journal_mode=WAL")
            self._conn.execute("PRAGMA busy_timeout=30000")
        return self._conn

    def close(self):
        """Close the database connection."""
        if self._conn is not None:
            self._conn.close()
            self._conn = None

    @contextmanager
    def _connection(self) -> Iterator[sqlite3.Connection]:
        """Context manager for database connections.

        Nested uses join the outermost block, which commits once on success
        or rolls everything back on error.
        """
        conn = self._get_connection()
        self._depth += 1
        try:
            yield conn
        except Exception:
            self._depth -= 1
            if self._depth == 0:
                conn.rollback()
            raise
        self._depth -= 1
        if self._depth == 0:
            conn.commit()

    @contextmanager
    def batch(self) -> Iterator[sqlite3.Connection]:
        """Group several store calls into one atomic write."""
        with self._connection() as conn:
            yield conn

    def _init_schema(self):
        """Create database tables if they don't exist."""
        with self._connection() as conn:
            conn.executescript("""
                CREATE TABLE IF NOT EXISTS items (
                    id TEXT PRIMARY KEY,
                    external_item_id TEXT NOT NULL UNIQUE,
                    access_token TEXT NOT NULL,
                    institution_id TEXT,
                    institution_name TEXT,
                    status TEXT NOT NULL DEFAULT 'ACTIVE',
                    error_code TEXT,
                    transactions_cursor TEXT,
                    investments_cursor TEXT,
                    last_synced_at TIMESTAMP,
                    created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP,
                    updated_at TIMESTAMP
                );
                CREATE TABLE IF NOT EXISTS accounts (
                    id TEXT PRIMARY KEY,
                    item_id TEXT NOT NULL,
                    external_account_id TEXT NOT NULL UNIQUE,
                    name TEXT NOT NULL,
                    official_name TEXT,
                    mask TEXT,
                    type TEXT,
                    subtype TEXT,
                    currency TEXT,
                    current_balance REAL,
                    available_balance REAL,
                    credit_limit REAL,
                    balance_updated_at TIMESTAMP,
                    created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP,
                    updated_at TIMESTAMP,
                    FOREIGN KEY (item_id) REFERENCES items(id)
                );
                CREATE INDEX IF NOT EXISTS idx_accounts_item ON accounts(item_id);
                CREATE TABLE IF NOT EXISTS categories (
                    id TEXT PRIMARY KEY,
                    name TEXT NOT NULL,
                    group_type TEXT NOT NULL DEFAULT 'EXPENSES',
                    display_order INTEGER NOT NULL DEFAULT 0,
                    created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP,
                    updated_at TIMESTAMP
                );
                CREATE TABLE IF NOT EXISTS subcategories (
                    id TEXT PRIMARY KEY,
                    category_id TEXT NOT NULL,
                    name TEXT NOT NULL,
                    display_order INTEGER NOT NULL DEFAULT 0,
                    created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP,
                    updated_at TIMESTAMP,
                    FOREIGN KEY (category_id) REFERENCES categories(id)
                );
                CREATE INDEX IF NOT EXISTS idx_subcategories_category ON subcategories(category_id);
                CREATE TABLE IF NOT EXISTS transactions (
                    id TEXT PRIMARY KEY,
                    external_transaction_id TEXT NOT NULL UNIQUE,
                    account_id TEXT NOT NULL,
                    amount REAL NOT NULL,
                    iso_currency_code TEXT,
                    date DATE NOT NULL,
                    datetime TEXT,
                    authorized_date DATE,
                    authorized_datetime TEXT,
                    name TEXT,
                    merchant_name TEXT,
                    provider_category TEXT,
                    provider_subcategory TEXT,
                    payment_channel TEXT,
                    pending BOOLEAN DEFAULT 0,
                    pending_transaction_id TEXT,
                    category_id TEXT,
                    subcategory_id TEXT,
                    notes TEXT,
                    is_manual BOOLEAN DEFAULT 0,
                    is_split BOOLEAN DEFAULT 0,
                    parent_transaction_id TEXT,
                    original_transaction_id TEXT,
                    created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP,
                    updated_at TIMESTAMP,
                    FOREIGN KEY (account_id) REFERENCES accounts(id),
                    FOREIGN KEY (parent_transaction_id) REFERENCES transactions(id),
                    FOREIGN KEY (category_id) REFERENCES categories(id),
                    FOREIGN KEY (subcategory_id) REFERENCES subcategories(id)
                );
                CREATE INDEX IF NOT EXISTS idx_transactions_account ON transactions(account_id);
                CREATE INDEX IF NOT EXISTS idx_transactions_parent
                    ON transactions(parent_transaction_id);
                CREATE INDEX IF NOT EXISTS idx_transactions_date ON transactions(date);
                CREATE TABLE IF NOT EXISTS tags (
                    id TEXT PRIMARY KEY,
                    name TEXT NOT NULL UNIQUE,
                    color TEXT,
                    created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP,
                    updated_at TIMESTAMP
                );
                CREATE TABLE IF NOT EXISTS transaction_tags (
                    transaction_id TEXT NOT NULL,
                    tag_id TEXT NOT NULL,
                    created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP,
                    PRIMARY KEY (transaction_id, tag_id),
                    FOREIGN KEY (transaction_id) REFERENCES transactions(id),
                    FOREIGN KEY (tag_id) REFERENCES tags(id)
                );
                CREATE INDEX IF NOT EXISTS idx_transaction_tags_tag ON transaction_tags(tag_id);
                CREATE TABLE IF NOT EXISTS pending_reconnections (
                    id TEXT PRIMARY KEY,
                    item_id TEXT NOT NULL,
                    payload TEXT NOT NULL,
                    state TEXT NOT NULL,
                    expires_at REAL NOT NULL,
                    created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP
                );
                CREATE TABLE IF NOT EXISTS securities (
                    id TEXT PRIMARY KEY,
                    external_security_id TEXT NOT NULL UNIQUE,
                    name TEXT,
                    ticker_symbol TEXT,
                    type TEXT,
                    currency TEXT,
                    created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP,
                    updated_at TIMESTAMP
                );
                CREATE TABLE IF NOT EXISTS holdings (
                    id TEXT PRIMARY KEY,
                    account_id TEXT NOT NULL,
                    security_id TEXT NOT NULL,
                    quantity REAL NOT NULL,
                    cost_basis REAL,
                    institution_price REAL,
                    institution_price_as_of TEXT,
                    currency TEXT,
                    created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP,
                    updated_at TIMESTAMP,
                    UNIQUE (account_id, security_id),
                    FOREIGN KEY (account_id) REFERENCES accounts(id),
                    FOREIGN KEY (security_id) REFERENCES securities(id)
                );
                CREATE TABLE IF NOT EXISTS investment_transactions (
                    id TEXT PRIMARY KEY,
                    external_investment_transaction_id TEXT NOT NULL UNIQUE,
                    account_id TEXT NOT NULL,
                    security_id TEXT,
                    date DATE NOT NULL,
                    name TEXT,
                    type TEXT,
                    subtype TEXT,
                    amount REAL,
                    price REAL,
                    quantity REAL,
                    fees REAL,
                    currency TEXT,
                    created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP,
                    updated_at TIMESTAMP,
                    FOREIGN KEY (account_id) REFERENCES accounts(id),
                    FOREIGN KEY (security_id) REFERENCES securities(id)
                );
                CREATE INDEX IF NOT EXISTS idx_investment_transactions_account
                    ON investment_transactions(account_id);
                CREATE TABLE IF NOT EXISTS item_locks (
                    item_id TEXT PRIMARY KEY,
                    owner TEXT NOT NULL,
                    acquired_at REAL NOT NULL,
                    expires_at REAL NOT NULL
                );
            """)

    def clear_all(self) -> dict[str, int]:
        """Clear all data from all tables."""
        counts = {}
        tables = [
            "transaction_tags",
            "investment_transactions",
            "holdings",
            "securities",
            "transactions",
            "accounts",
            "items",
            "subcategories",
            "categories",
            "tags",
            "pending_reconnections",
            "item_locks",
        ]
        with self._connection() as conn:
            for table in tables:
                row = conn.execute(f"SELECT COUNT(*) as count FROM {table}").fetchone()
                counts[table] = row["count"] if row else 0
                conn.execute(f"DELETE FROM {table}")
        return counts

    def get_status_counts(self) -> dict[str, Any]:
        """Row counts for the status command."""
        return {
            "items": self.get_item_count(),
            "accounts": self.get_account_count(),
            "transactions": self.get_transaction_count(),
            "uncategorized": self.get_uncategorized_count(),
            "manual": self._count("transactions", "is_manual = 1"),
            "split_parents": self._count("transactions", "is_split = 1"),
            "categories": self.get_category_count(),
            "tags": self._count("tags"),
            "holdings": self.get_holding_count(),
            "investment_transactions": self.get_investment_transaction_count(),
        }
