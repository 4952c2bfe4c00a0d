"""User category and subcategory database operations."""

from __future__ import annotations

from typing import Any, Optional

from .base import CountMixin, _new_id, _now_iso

CATEGORY_UPDATABLE_COLUMNS = frozenset({"name", "group_type", "display_order"})
SUBCATEGORY_UPDATABLE_COLUMNS = frozenset({"name", "display_order"})


class CategoriesMixin(CountMixin):
    """Mixin for category database operations."""

    def create_category(
        self, name: str, group_type: str = "EXPENSES", display_order: Optional[int] = None
    ) -> str:
        """Create a category, appended to the end of its group by default.

        Returns:
            The new category id.
        """
        category_id = _new_id()
        now = _now_iso()
        with self._connection() as conn:
            if display_order is None:
                row = conn.execute(
                    "SELECT COALESCE(MAX(display_order), -1) + 1 AS next FROM categories"
                ).fetchone()
                display_order = row["next"]
            conn.execute(
                """INSERT INTO categories (id, name, group_type, display_order, created_at, updated_at)
                VALUES (?, ?, ?, ?, ?, ?)""",
                (category_id, name, group_type, display_order, now, now),
            )
        return category_id

    def create_subcategory(
        self, category_id: str, name: str, display_order: Optional[int] = None
    ) -> str:
        """Create a subcategory under a category.

        Returns:
            The new subcategory id.
        """
        subcategory_id = _new_id()
        now = _now_iso()
        with self._connection() as conn:
            if display_order is None:
                row = conn.execute(
                    """SELECT COALESCE(MAX(display_order), -1) + 1 AS next
                    FROM subcategories WHERE category_id = ?""",
                    (category_id,),
                ).fetchone()
                display_order = row["next"]
            conn.execute(
                """INSERT INTO subcategories
                (id, category_id, name, display_order, created_at, updated_at)
                VALUES (?, ?, ?, ?, ?, ?)""",
                (subcategory_id, category_id, name, display_order, now, now),
            )
        return subcategory_id

    def get_category(self, category_id: str) -> Optional[dict[str, Any]]:
        """Get a category by primary key."""
        return self._fetch_one("SELECT * FROM categories WHERE id = ?", (category_id,))

    def get_category_by_name(self, name: str) -> Optional[dict[str, Any]]:
        """Get a category by case-insensitive name."""
        return self._fetch_one(
            "SELECT * FROM categories WHERE name = ? COLLATE NOCASE", (name,)
        )

    def get_subcategory(self, subcategory_id: str) -> Optional[dict[str, Any]]:
        """Get a subcategory by primary key."""
        return self._fetch_one("SELECT * FROM subcategories WHERE id = ?", (subcategory_id,))

    def get_categories(self) -> list[dict[str, Any]]:
        """All categories with their subcategories nested under 'subcategories'."""
        categories = self._fetch_all(
            "SELECT * FROM categories ORDER BY group_type, display_order, name"
        )
        subcategories = self._fetch_all(
            "SELECT * FROM subcategories ORDER BY display_order, name"
        )
        by_category: dict[str, list[dict[str, Any]]] = {}
        for sub in subcategories:
            by_category.setdefault(sub["category_id"], []).append(sub)
        for category in categories:
            category["subcategories"] = by_category.get(category["id"], [])
        return categories

    def update_category(self, category_id: str, **fields: Any) -> bool:
        """Patch category columns."""
        return self._patch("categories", category_id, fields, CATEGORY_UPDATABLE_COLUMNS)

    def update_subcategory(self, subcategory_id: str, **fields: Any) -> bool:
        """Patch subcategory columns."""
        return self._patch("subcategories", subcategory_id, fields, SUBCATEGORY_UPDATABLE_COLUMNS)

    def delete_category(self, category_id: str) -> bool:
        """Delete a category; transactions using it become uncategorized."""
        with self._connection() as conn:
            conn.execute(
                """UPDATE transactions SET category_id = NULL, subcategory_id = NULL
                WHERE category_id = ?""",
                (category_id,),
            )
            conn.execute("DELETE FROM subcategories WHERE category_id = ?", (category_id,))
            cursor = conn.execute("DELETE FROM categories WHERE id = ?", (category_id,))
            return cursor.rowcount > 0

    def get_category_count(self) -> int:
        """Number of user categories."""
        return self._count("categories")
