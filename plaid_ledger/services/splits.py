"""Split-transaction management.

Splitting keeps the parent row (flagged ``is_split``) and adds one child per
split line. Children inherit the parent's account, dates and merchant, and
carry their own amount and category. Split depth is capped at one level.
"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Optional, Sequence

from ..config import SplitConfig
from ..errors import SplitValidationError
from ..models import SplitItem

logger = logging.getLogger(__name__)

if TYPE_CHECKING:
    from ..db.protocols import LedgerStore


@dataclass
class AmountCheck:
    """Comparison of split amounts against the parent amount."""

    parent_amount: float
    split_total: float
    difference: float
    within_tolerance: bool


@dataclass
class SplitResult:
    """Result of splitting a transaction."""

    parent_id: str
    child_ids: list[str] = field(default_factory=list)
    warning: Optional[str] = None
    amount_check: Optional[AmountCheck] = None


def check_split_amounts(
    parent_amount: float, splits: Sequence[SplitItem], tolerance_percent: float = 5.0
) -> AmountCheck:
    """Compare the magnitude of the split total with the parent amount.

    The difference is relative to ``|parent_amount|``. A zero parent only
    matches splits that also total zero.
    """
    split_total = round(sum(s.amount for s in splits), 2)
    difference = round(abs(abs(split_total) - abs(parent_amount)), 2)
    if parent_amount == 0:
        within = difference == 0
    else:
        within = difference / abs(parent_amount) * 100 <= tolerance_percent
    return AmountCheck(
        parent_amount=parent_amount,
        split_total=split_total,
        difference=difference,
        within_tolerance=within,
    )


class SplitService:
    """Creates and removes split children."""

    def __init__(self, db: LedgerStore, config: Optional[SplitConfig] = None):
        self._db = db
        self._config = config or SplitConfig()

    def split_transaction(
        self,
        parent_id: str,
        splits: Sequence[SplitItem],
        tag_name: Optional[str] = None,
        tag_color: Optional[str] = None,
        tag_children: bool = False,
    ) -> SplitResult:
        """Split a transaction into children.

        Args:
            parent_id: Transaction to split.
            splits: One entry per child.
            tag_name: Optional tag applied to the parent (created if missing).
            tag_color: Color used when the tag is created.
            tag_children: Also apply the tag to every child.

        Returns:
            SplitResult with the child ids and a warning when the amounts
            do not add up within tolerance.

        Raises:
            SplitValidationError: Unknown parent, parent already split, parent
                is a split child, or no split lines.
        """
        if not splits:
            raise SplitValidationError("At least one split is required")
        parent = self._db.get_transaction(parent_id)
        if parent is None:
            raise SplitValidationError(f"Transaction not found: {parent_id}")
        if parent["is_split"]:
            raise SplitValidationError("Transaction has already been split")
        if parent["parent_transaction_id"]:
            raise SplitValidationError("A split child cannot be split again")

        check = check_split_amounts(parent["amount"], splits, self._config.tolerance_percent)
        result = SplitResult(parent_id=parent_id, amount_check=check)
        if not check.within_tolerance:
            result.warning = (
                f"Split total {check.split_total:.2f} differs from transaction amount "
                f"{parent['amount']:.2f} by {check.difference:.2f}"
            )
            logger.warning("Split of %s: %s", parent_id, result.warning)

        stamp = int(time.time() * 1000)
        count = len(splits)
        with self._db.batch():
            self._db.update_transaction(parent_id, is_split=1)
            for i, split in enumerate(splits, start=1):
                child_id = self._db.insert_transaction(
                    external_transaction_id=(
                        f"{parent['external_transaction_id']}_split_{i}_{stamp}"
                    ),
                    account_id=parent["account_id"],
                    amount=split.amount,
                    iso_currency_code=parent["iso_currency_code"],
                    date=parent["date"],
                    datetime=parent["datetime"],
                    authorized_date=parent["authorized_date"],
                    authorized_datetime=parent["authorized_datetime"],
                    pending=parent["pending"],
                    merchant_name=parent["merchant_name"],
                    name=split.description or f"{parent['name']} (Split {i}/{count})",
                    provider_category=parent["provider_category"],
                    provider_subcategory=parent["provider_subcategory"],
                    payment_channel=parent["payment_channel"],
                    category_id=split.category_id,
                    subcategory_id=split.subcategory_id,
                    notes=split.notes,
                    is_manual=0,
                    is_split=0,
                    parent_transaction_id=parent_id,
                    original_transaction_id=parent_id,
                )
                result.child_ids.append(child_id)

            if tag_name:
                tag_id = self._db.get_or_create_tag(tag_name, tag_color)
                self._db.add_tag_to_transaction(parent_id, tag_id)
                if tag_children:
                    for child_id in result.child_ids:
                        self._db.add_tag_to_transaction(child_id, tag_id)

        logger.info("Split %s into %d children", parent_id, count)
        return result

    def ai_split(self, parent_id: str, splits: Sequence[SplitItem]) -> SplitResult:
        """Apply model-proposed splits and tag them for review."""
        return self.split_transaction(
            parent_id,
            splits,
            tag_name=self._config.ai_split_tag_name,
            tag_color=self._config.ai_split_tag_color,
            tag_children=True,
        )

    def undo_split(self, parent_id: str) -> int:
        """Delete a split's children and restore the parent.

        Children are hard-deleted together with their tag links.

        Returns:
            Number of children deleted.

        Raises:
            SplitValidationError: Unknown transaction or not split.
        """
        parent = self._db.get_transaction(parent_id)
        if parent is None:
            raise SplitValidationError(f"Transaction not found: {parent_id}")
        if not parent["is_split"]:
            raise SplitValidationError("Transaction is not split")

        children = [child["id"] for child in self._db.get_split_children(parent_id)]
        with self._db.batch():
            self._db.delete_tag_links_for_transactions(children)
            deleted = self._db.delete_transactions(children)
            self._db.update_transaction(parent_id, is_split=0)
        logger.info("Removed split of %s (%d children)", parent_id, deleted)
        return deleted

    def convert_children_to_manual(self, item_id: str) -> int:
        """Detach all split children under an item and mark them manual.

        Used before a reconnection wipes provider rows so the user's split
        lines survive.

        Returns:
            Number of children converted.
        """
        converted = self._db.convert_split_children_to_manual(item_id)
        logger.info("Converted %d split children to manual for item %s", converted, item_id)
        return converted
