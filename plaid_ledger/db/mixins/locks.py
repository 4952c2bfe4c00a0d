"""Item lease rows shared by every process using the ledger file."""

from __future__ import annotations

from typing import Any, Optional

from .base import DatabaseMixin


class LocksMixin(DatabaseMixin):
    """Mixin for per-item lease rows."""

    def acquire_item_lock(self, item_id: str, owner: str, now: float, expires_at: float) -> bool:
        """Take or renew the lease on an item.

        A lease held by another owner is only taken over once it has expired.

        Returns:
            True if ``owner`` holds the lease afterwards.
        """
        with self._connection() as conn:
            conn.execute(
                """INSERT INTO item_locks (item_id, owner, acquired_at, expires_at)
                VALUES (?, ?, ?, ?)
                ON CONFLICT(item_id) DO UPDATE SET
                    owner = excluded.owner,
                    acquired_at = excluded.acquired_at,
                    expires_at = excluded.expires_at
                WHERE item_locks.owner = excluded.owner OR item_locks.expires_at <= ?""",
                (item_id, owner, now, expires_at, now),
            )
            row = conn.execute(
                "SELECT owner FROM item_locks WHERE item_id = ?", (item_id,)
            ).fetchone()
            return row is not None and row["owner"] == owner

    def release_item_lock(self, item_id: str, owner: str) -> bool:
        """Drop a lease if ``owner`` still holds it."""
        with self._connection() as conn:
            cursor = conn.execute(
                "DELETE FROM item_locks WHERE item_id = ? AND owner = ?", (item_id, owner)
            )
            return cursor.rowcount > 0

    def get_item_lock(self, item_id: str) -> Optional[dict[str, Any]]:
        """Current lease row for an item, if any."""
        return self._fetch_one("SELECT * FROM item_locks WHERE item_id = ?", (item_id,))
