"""Base mixin providing database connection interface.

All mixins inherit from this to access the _connection() context manager.
"""

from __future__ import annotations

import uuid
from contextlib import contextmanager
from datetime import date, datetime
from typing import TYPE_CHECKING, Any, Iterator, Optional

if TYPE_CHECKING:
    import sqlite3


def _now_iso() -> str:
    """Return current datetime as ISO format string."""
    return datetime.now().isoformat()


def _date_str(dt: date | datetime | str) -> str:
    """Convert date/datetime to YYYY-MM-DD string."""
    if isinstance(dt, str):
        return dt[:10]
    return dt.strftime("%Y-%m-%d")


def _new_id() -> str:
    """Generate a primary key for a new row."""
    return uuid.uuid4().hex


class DatabaseMixin:
    """Declares the connection helpers the concrete Database provides."""

    @contextmanager
    def _connection(self) -> Iterator["sqlite3.Connection"]:
        """Context manager for database connections."""
        raise NotImplementedError
        yield  # pragma: no cover

    def _patch(
        self,
        table: str,
        row_id: str,
        fields: dict[str, Any],
        allowed: frozenset[str],
    ) -> bool:
        """Update selected columns of one row.

        Args:
            table: Table name.
            row_id: Primary key of the row.
            fields: Column -> value mapping.
            allowed: Columns callers may set.

        Returns:
            True if a row was updated.

        Raises:
            ValueError: If a column outside ``allowed`` is given.
        """
        unknown = set(fields) - allowed
        if unknown:
            raise ValueError(f"Cannot update {table} columns: {', '.join(sorted(unknown))}")
        if not fields:
            return False
        assignments = ", ".join(f"{col} = ?" for col in fields)
        with self._connection() as conn:
            cursor = conn.execute(
                f"UPDATE {table} SET {assignments}, updated_at = ? WHERE id = ?",
                (*fields.values(), _now_iso(), row_id),
            )
            return cursor.rowcount > 0

    def _fetch_one(self, query: str, params: tuple = ()) -> Optional[dict[str, Any]]:
        """Run a query and return the first row as a dict."""
        with self._connection() as conn:
            row = conn.execute(query, params).fetchone()
            return dict(row) if row else None

    def _fetch_all(self, query: str, params: tuple = ()) -> list[dict[str, Any]]:
        """Run a query and return all rows as dicts."""
        with self._connection() as conn:
            return [dict(row) for row in conn.execute(query, params).fetchall()]


class CountMixin(DatabaseMixin):
    """Mixin providing generic count helper for database tables."""

    def _count(self, table: str, where: str = "", params: tuple = ()) -> int:
        """Count rows in a table with optional WHERE clause.

        Args:
            table: Table name to count from.
            where: Optional WHERE clause (without 'WHERE' keyword).
            params: Parameters for the WHERE clause.

        Returns:
            Number of matching rows.
        """
        query = f"SELECT COUNT(*) as count FROM {table}"
        if where:
            query += f" WHERE {where}"
        with self._connection() as conn:
            row = conn.execute(query, params).fetchone()
            return row["count"] if row else 0
