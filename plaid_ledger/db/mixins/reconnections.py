"""Pending reconnection storage.

Holds the short-lived stash between preparing and confirming a bank
reconnection, so a CLI user can confirm from a separate invocation.
"""

from __future__ import annotations

import json
from typing import Any, Optional

from .base import CountMixin, _now_iso


class ReconnectionsMixin(CountMixin):
    """Mixin for pending reconnection rows."""

    def save_pending_reconnection(
        self,
        reconnection_id: str,
        item_id: str,
        payload: dict[str, Any],
        state: str,
        expires_at: float,
    ) -> None:
        """Insert or replace a pending reconnection."""
        with self._connection() as conn:
            conn.execute(
                """INSERT OR REPLACE INTO pending_reconnections
                (id, item_id, payload, state, expires_at, created_at)
                VALUES (?, ?, ?, ?, ?, ?)""",
                (reconnection_id, item_id, json.dumps(payload), state, expires_at, _now_iso()),
            )

    def get_pending_reconnection(self, reconnection_id: str) -> Optional[dict[str, Any]]:
        """Get a pending reconnection with its payload decoded."""
        row = self._fetch_one(
            "SELECT * FROM pending_reconnections WHERE id = ?", (reconnection_id,)
        )
        if row:
            row["payload"] = json.loads(row["payload"])
        return row

    def set_pending_reconnection_state(self, reconnection_id: str, state: str) -> bool:
        """Update the lifecycle state of a pending reconnection."""
        with self._connection() as conn:
            cursor = conn.execute(
                "UPDATE pending_reconnections SET state = ? WHERE id = ?",
                (state, reconnection_id),
            )
            return cursor.rowcount > 0

    def delete_pending_reconnection(self, reconnection_id: str) -> bool:
        """Remove a pending reconnection."""
        with self._connection() as conn:
            cursor = conn.execute(
                "DELETE FROM pending_reconnections WHERE id = ?", (reconnection_id,)
            )
            return cursor.rowcount > 0

    def purge_expired_reconnections(self, now: float) -> int:
        """Delete pending reconnections whose TTL has passed."""
        with self._connection() as conn:
            cursor = conn.execute(
                "DELETE FROM pending_reconnections WHERE expires_at <= ?", (now,)
            )
            return cursor.rowcount

    def get_pending_reconnection_count(self) -> int:
        """Number of stored pending reconnections."""
        return self._count("pending_reconnections")
