"""Best-effort automatic categorization.

The assistant asks each classifier in turn for a suggestion and writes the
first one that clears the confidence threshold. It never raises: a failing
classifier is logged and the transaction simply stays uncategorized.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any, Optional, Protocol, Sequence

from ..config import CategorizationConfig

if TYPE_CHECKING:
    from ..db.protocols import LedgerStore

logger = logging.getLogger(__name__)


@dataclass
class CategorizationResult:
    """A classifier's suggestion for one transaction."""

    category_id: Optional[str]
    subcategory_id: Optional[str] = None
    confidence: float = 0.0  # 0-100
    reasoning: str = ""
    source: str = ""


@dataclass
class CategorizationReport:
    """Outcome of categorizing a batch of transactions."""

    categorized: list[str] = field(default_factory=list)
    skipped: list[str] = field(default_factory=list)
    errors: list[str] = field(default_factory=list)
    results: dict[str, CategorizationResult] = field(default_factory=dict)

    @property
    def success(self) -> bool:
        """Check if no classifier failed."""
        return len(self.errors) == 0


class Classifier(Protocol):
    """Suggests a category for a transaction."""

    name: str

    def classify(
        self, transaction: dict[str, Any], categories: list[dict[str, Any]]
    ) -> Optional[CategorizationResult]:
        """Return a suggestion, or None when there is nothing to suggest."""
        ...


class NullClassifier:
    """Classifier that never suggests anything."""

    name = "null"

    def classify(
        self, transaction: dict[str, Any], categories: list[dict[str, Any]]
    ) -> Optional[CategorizationResult]:
        return None


class HistoryClassifier:
    """Suggests the category most often used for the same merchant.

    Confidence is the share of past transactions for that merchant that used
    the winning category, scaled to 0-100.
    """

    name = "history"

    def __init__(self, db: LedgerStore, min_samples: int = 2):
        self._db = db
        self._min_samples = min_samples

    def classify(
        self, transaction: dict[str, Any], categories: list[dict[str, Any]]
    ) -> Optional[CategorizationResult]:
        merchant = transaction.get("merchant_name") or transaction.get("name") or ""
        distribution = self._db.get_merchant_category_distribution(
            merchant, exclude_transaction_id=transaction.get("id")
        )
        total = sum(entry["count"] for entry in distribution.values())
        if total < self._min_samples:
            return None
        category_id, entry = next(iter(distribution.items()))
        return CategorizationResult(
            category_id=category_id,
            subcategory_id=entry.get("subcategory_id"),
            confidence=round(entry["percentage"] * 100, 1),
            reasoning=f"{entry['count']} of {total} past '{merchant}' transactions",
            source=self.name,
        )


def _validate(
    result: CategorizationResult, categories: list[dict[str, Any]]
) -> Optional[CategorizationResult]:
    """Drop suggestions that reference unknown categories."""
    for category in categories:
        if category["id"] != result.category_id:
            continue
        sub_ids = {sub["id"] for sub in category.get("subcategories") or []}
        if result.subcategory_id and result.subcategory_id not in sub_ids:
            result.subcategory_id = None
        return result
    return None


class CategorizationAssistant:
    """Runs classifiers over uncategorized transactions."""

    def __init__(
        self,
        db: LedgerStore,
        classifiers: Optional[Sequence[Classifier]] = None,
        config: Optional[CategorizationConfig] = None,
    ):
        """Initialize the assistant.

        Args:
            db: Ledger store.
            classifiers: Tried in order; defaults to no classifiers.
            config: Threshold and enable flag.
        """
        self._db = db
        self._classifiers = list(classifiers or [])
        self._config = config or CategorizationConfig()

    @property
    def classifiers(self) -> list[Classifier]:
        return list(self._classifiers)

    def suggest(
        self, transaction: dict[str, Any], categories: list[dict[str, Any]]
    ) -> tuple[Optional[CategorizationResult], list[str]]:
        """Ask classifiers in order for the first confident suggestion.

        Returns:
            Tuple of (result or None, error messages from failing classifiers).
        """
        errors: list[str] = []
        for classifier in self._classifiers:
            try:
                result = classifier.classify(transaction, categories)
            except Exception as e:
                logger.warning(
                    "Classifier %s failed for %s: %s", classifier.name, transaction.get("id"), e
                )
                errors.append(f"{classifier.name}: {e}")
                continue
            if result is None or not result.category_id:
                continue
            if result.confidence < self._config.min_confidence:
                logger.debug(
                    "Ignoring %s suggestion for %s (confidence %.0f < %d)",
                    classifier.name,
                    transaction.get("id"),
                    result.confidence,
                    self._config.min_confidence,
                )
                continue
            result.source = result.source or classifier.name
            validated = _validate(result, categories)
            if validated is not None:
                return validated, errors
        return None, errors

    def categorize_transactions(self, transaction_ids: Sequence[str]) -> CategorizationReport:
        """Categorize the given transactions if they are still uncategorized.

        Never raises; failures are recorded in the report.
        """
        report = CategorizationReport()
        if not self._config.enabled or not self._classifiers or not transaction_ids:
            report.skipped.extend(transaction_ids)
            return report

        try:
            categories = self._db.get_categories()
        except Exception as e:
            logger.error("Could not load categories for categorization: %s", e)
            report.errors.append(str(e))
            report.skipped.extend(transaction_ids)
            return report

        for txn_id in transaction_ids:
            try:
                txn = self._db.get_transaction(txn_id)
                if txn is None or txn["category_id"] or txn["is_split"]:
                    report.skipped.append(txn_id)
                    continue
                result, errors = self.suggest(txn, categories)
                report.errors.extend(errors)
                if result is None:
                    report.skipped.append(txn_id)
                    continue
                # Re-read so a category set meanwhile by the user is kept
                current = self._db.get_transaction(txn_id)
                if current is None or current["category_id"]:
                    report.skipped.append(txn_id)
                    continue
                self._db.update_transaction(
                    txn_id,
                    category_id=result.category_id,
                    subcategory_id=result.subcategory_id,
                )
                report.categorized.append(txn_id)
                report.results[txn_id] = result
                logger.info(
                    "Categorized %s via %s (confidence %.0f)", txn_id, result.source, result.confidence
                )
            except Exception as e:
                logger.error("Categorization failed for %s: %s", txn_id, e)
                report.errors.append(f"{txn_id}: {e}")
                report.skipped.append(txn_id)
        return report

    def categorize_uncategorized(self, limit: Optional[int] = None) -> CategorizationReport:
        """Categorize every uncategorized leaf transaction."""
        try:
            rows = self._db.get_transactions(uncategorized_only=True, limit=limit)
        except Exception as e:
            logger.error("Could not list uncategorized transactions: %s", e)
            return CategorizationReport(errors=[str(e)])
        return self.categorize_transactions([row["id"] for row in rows])
