"""Default categories and tags for a new ledger.

Category names follow Plaid's personal finance categories so provider
categories map onto them without any setup.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from ..db.database import Database

logger = logging.getLogger(__name__)

DEFAULT_CATEGORIES: list[tuple[str, str, list[str]]] = [
    ("Food and Drink", "EXPENSES", ["Coffee", "Groceries", "Restaurant", "Fast Food", "Other"]),
    ("General Merchandise", "EXPENSES", ["Superstores", "Online Marketplaces", "Other"]),
    ("Rent and Utilities", "EXPENSES", ["Rent", "Gas and Electricity", "Internet and Cable"]),
    ("Transportation", "EXPENSES", ["Gas", "Public Transit", "Taxis and Ride Shares", "Parking"]),
    ("Entertainment", "EXPENSES", ["Music and Audio", "TV and Movies", "Other"]),
    ("Medical", "EXPENSES", ["Pharmacies and Supplements", "Other"]),
    ("Personal Care", "EXPENSES", ["Gyms and Fitness Centers", "Hair and Beauty"]),
    ("Travel", "EXPENSES", ["Flights", "Lodging"]),
    ("Bank Fees", "EXPENSES", []),
    ("Loan Payments", "EXPENSES", ["Credit Card Payment", "Mortgage Payment"]),
    ("Income", "INCOME", ["Wages", "Interest Earned", "Other Income"]),
    ("Transfer In", "TRANSFER", []),
    ("Transfer Out", "TRANSFER", []),
    ("Savings", "INVESTMENT", ["Retirement", "Emergency Fund"]),
]

DEFAULT_TAGS = [
    ("unknown", "#64748b"),
    ("split candidate", "#F97316"),
    ("for-review", "#fbbf24"),
]


def seed_defaults(db: Database) -> dict[str, int]:
    """Create default categories and tags if the ledger has none.

    Returns:
        Counts of created categories, subcategories and tags.
    """
    counts = {"categories": 0, "subcategories": 0, "tags": 0}
    if db.get_category_count() > 0:
        logger.debug("Categories already present, skipping seed")
        return counts
    with db.batch():
        for order, (name, group, subcategories) in enumerate(DEFAULT_CATEGORIES):
            category_id = db.create_category(name, group, display_order=order)
            counts["categories"] += 1
            for sub in subcategories:
                db.create_subcategory(category_id, sub)
                counts["subcategories"] += 1
        for name, color in DEFAULT_TAGS:
            if db.get_tag_by_name(name) is None:
                db.create_tag(name, color)
                counts["tags"] += 1
    logger.info("Seeded %d categories", counts["categories"])
    return counts
