"""Map provider category strings onto user categories.

Plaid reports categories like ``FOOD_AND_DRINK`` / ``FOOD_AND_DRINK_COFFEE``.
A user category named "Food and Drink" with a subcategory "Coffee" matches
those. Matching is exact after normalization; there is no fuzzy matching.
"""

from __future__ import annotations

from typing import Any, Iterable, Optional

from ..models import CategoryRef


def normalize_category_name(value: Optional[str]) -> str:
    """Casefold, turn underscores into spaces and collapse whitespace."""
    if not value:
        return ""
    return " ".join(value.replace("_", " ").casefold().split())


def _find_subcategory(
    category: dict[str, Any], primary_key: str, detailed: Optional[str]
) -> Optional[str]:
    detailed_key = normalize_category_name(detailed)
    if not detailed_key:
        return None
    prefix = f"{primary_key} "
    if detailed_key.startswith(prefix):
        detailed_key = detailed_key[len(prefix):]
    for sub in category.get("subcategories") or []:
        if normalize_category_name(sub.get("name")) == detailed_key:
            return sub["id"]
    return None


def map_provider_category(
    primary: Optional[str],
    categories: Iterable[dict[str, Any]],
    detailed: Optional[str] = None,
) -> Optional[CategoryRef]:
    """Resolve a provider category to a user category.

    Args:
        primary: Provider's primary category string.
        categories: User categories, each with 'id', 'name' and optional
            'subcategories' (list of dicts with 'id' and 'name').
        detailed: Provider's detailed category string, used for the subcategory.

    Returns:
        CategoryRef, or None when no category name matches.
    """
    primary_key = normalize_category_name(primary)
    if not primary_key:
        return None
    for category in categories:
        if normalize_category_name(category.get("name")) == primary_key:
            return CategoryRef(
                category_id=category["id"],
                subcategory_id=_find_subcategory(category, primary_key, detailed),
            )
    return None
