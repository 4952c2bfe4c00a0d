"""Tag and transaction-tag association operations."""

from __future__ import annotations

from typing import Any, Optional

from .base import CountMixin, _new_id, _now_iso


class TagsMixin(CountMixin):
    """Mixin for tag database operations."""

    def create_tag(self, name: str, color: Optional[str] = None) -> str:
        """Create a tag.

        Returns:
            The new tag id.
        """
        tag_id = _new_id()
        now = _now_iso()
        with self._connection() as conn:
            conn.execute(
                "INSERT INTO tags (id, name, color, created_at, updated_at) VALUES (?, ?, ?, ?, ?)",
                (tag_id, name, color, now, now),
            )
        return tag_id

    def get_tag(self, tag_id: str) -> Optional[dict[str, Any]]:
        """Get a tag by primary key."""
        return self._fetch_one("SELECT * FROM tags WHERE id = ?", (tag_id,))

    def get_tag_by_name(self, name: str) -> Optional[dict[str, Any]]:
        """Get a tag by exact name."""
        return self._fetch_one("SELECT * FROM tags WHERE name = ?", (name,))

    def get_or_create_tag(self, name: str, color: Optional[str] = None) -> str:
        """Return the id of the named tag, creating it if needed."""
        existing = self.get_tag_by_name(name)
        if existing:
            return existing["id"]
        return self.create_tag(name, color)

    def get_tags(self) -> list[dict[str, Any]]:
        """All tags ordered by name."""
        return self._fetch_all("SELECT * FROM tags ORDER BY name")

    def add_tag_to_transaction(self, transaction_id: str, tag_id: str) -> bool:
        """Link a tag to a transaction.

        Returns:
            True if a new link was created, False if it already existed.
        """
        with self._connection() as conn:
            cursor = conn.execute(
                """INSERT OR IGNORE INTO transaction_tags (transaction_id, tag_id, created_at)
                VALUES (?, ?, ?)""",
                (transaction_id, tag_id, _now_iso()),
            )
            return cursor.rowcount > 0

    def remove_tag_from_transaction(self, transaction_id: str, tag_id: str) -> bool:
        """Unlink a tag from a transaction."""
        with self._connection() as conn:
            cursor = conn.execute(
                "DELETE FROM transaction_tags WHERE transaction_id = ? AND tag_id = ?",
                (transaction_id, tag_id),
            )
            return cursor.rowcount > 0

    def get_tags_for_transaction(self, transaction_id: str) -> list[dict[str, Any]]:
        """Tags linked to a transaction."""
        return self._fetch_all(
            """SELECT tg.* FROM tags tg
            JOIN transaction_tags tt ON tt.tag_id = tg.id
            WHERE tt.transaction_id = ? ORDER BY tg.name""",
            (transaction_id,),
        )

    def delete_tag_links_for_transactions(self, transaction_ids: list[str]) -> int:
        """Remove every tag link for the given transactions."""
        if not transaction_ids:
            return 0
        placeholders = ", ".join("?" for _ in transaction_ids)
        with self._connection() as conn:
            cursor = conn.execute(
                f"DELETE FROM transaction_tags WHERE transaction_id IN ({placeholders})",
                tuple(transaction_ids),
            )
            return cursor.rowcount

    def delete_tag(self, tag_id: str) -> bool:
        """Delete a tag and its links."""
        with self._connection() as conn:
            conn.execute("DELETE FROM transaction_tags WHERE tag_id = ?", (tag_id,))
            cursor = conn.execute("DELETE FROM tags WHERE id = ?", (tag_id,))
            return cursor.rowcount > 0

    def get_tag_link_count(self) -> int:
        """Number of transaction-tag links."""
        return self._count("transaction_tags")
