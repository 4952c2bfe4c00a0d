"""Tests for mapping provider categories onto user categories."""

from plaid_ledger.services import map_provider_category
from plaid_ledger.services.category_mapping import normalize_category_name

CATEGORIES = [
    {
        "id": "cat-food",
        "name": "Food and Drink",
        "subcategories": [
            {"id": "sub-coffee", "name": "Coffee"},
            {"id": "sub-groceries", "name": "Groceries"},
        ],
    },
    {"id": "cat-transfer-in", "name": "Transfer In", "subcategories": []},
]


class TestNormalizeCategoryName:
    """Tests for name normalization."""

    def test_underscores_and_case(self) -> None:
        """Provider constants match display names."""
        assert normalize_category_name("FOOD_AND_DRINK") == "food and drink"
        assert normalize_category_name("  Food   and Drink ") == "food and drink"

    def test_empty(self) -> None:
        """None and blank map to empty."""
        assert normalize_category_name(None) == ""
        assert normalize_category_name("") == ""


class TestMapProviderCategory:
    """Tests for map_provider_category."""

    def test_primary_and_detailed(self) -> None:
        """The detailed category's suffix selects the subcategory."""
        ref = map_provider_category("FOOD_AND_DRINK", CATEGORIES, "FOOD_AND_DRINK_COFFEE")

        assert ref.category_id == "cat-food"
        assert ref.subcategory_id == "sub-coffee"

    def test_primary_only(self) -> None:
        """Without a detailed match only the category is set."""
        ref = map_provider_category("FOOD_AND_DRINK", CATEGORIES, "FOOD_AND_DRINK_BEER_WINE")

        assert ref.category_id == "cat-food"
        assert ref.subcategory_id is None

    def test_category_without_subcategories(self) -> None:
        """Categories with no subcategories still match."""
        ref = map_provider_category("TRANSFER_IN", CATEGORIES, "TRANSFER_IN_DEPOSIT")

        assert ref.category_id == "cat-transfer-in"
        assert ref.subcategory_id is None

    def test_no_match(self) -> None:
        """Unknown categories are left unmapped, with no fuzzy fallback."""
        assert map_provider_category("FOOD", CATEGORIES) is None
        assert map_provider_category("ENTERTAINMENT", CATEGORIES) is None

    def test_missing_primary(self) -> None:
        """A transaction with no provider category maps to nothing."""
        assert map_provider_category(None, CATEGORIES, "FOOD_AND_DRINK_COFFEE") is None
