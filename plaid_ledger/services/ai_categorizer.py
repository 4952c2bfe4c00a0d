"""Claude-backed classifier and receipt split suggestions.

Uses the Anthropic SDK. The model is asked for strict JSON; anything else is
treated as "no suggestion".
"""

from __future__ import annotations

import base64
import json
import logging
import re
from typing import TYPE_CHECKING, Any, Optional

import anthropic

from ..config import CategorizationConfig
from ..models import SplitItem
from .categorizer import CategorizationResult

if TYPE_CHECKING:
    from ..db.protocols import LedgerStore

logger = logging.getLogger(__name__)

_CODE_FENCE = re.compile(r"^```(?:json)?\s*|\s*```$")


def build_categories_context(categories: list[dict[str, Any]]) -> str:
    """Render categories and subcategories with their ids for the prompt."""
    lines = []
    for cat in categories:
        subs = ", ".join(f"{s['name']} (ID: {s['id']})" for s in cat.get("subcategories") or [])
        lines.append(f"{cat['name']} (ID: {cat['id']}): [{subs or 'no subcategories'}]")
    return "\n".join(lines)


def build_similar_context(similar: list[dict[str, Any]]) -> str:
    """Render similar past transactions for the prompt."""
    if not similar:
        return "  No similar transactions found"
    return "\n".join(
        f'  - "{t.get("merchant_name") or t.get("name")}" | ${abs(t["amount"]):.2f} | '
        f'{t.get("category_name") or "N/A"}'
        for t in similar
    )


def parse_json_response(text: str) -> dict[str, Any]:
    """Parse a model reply that should be a JSON object.

    Raises:
        ValueError: If no JSON object can be decoded.
    """
    cleaned = _CODE_FENCE.sub("", text.strip())
    try:
        data = json.loads(cleaned)
    except json.JSONDecodeError:
        match = re.search(r"\{.*\}", cleaned, re.DOTALL)
        if not match:
            raise ValueError(f"No JSON object in model response: {text[:200]!r}")
        data = json.loads(match.group(0))
    if not isinstance(data, dict):
        raise ValueError("Model response is not a JSON object")
    return data


class AnthropicClassifier:
    """Classifier that asks Claude to pick a category."""

    name = "anthropic"

    def __init__(
        self,
        config: CategorizationConfig,
        db: Optional[LedgerStore] = None,
        client: Optional[anthropic.Anthropic] = None,
    ):
        """Initialize the classifier.

        Args:
            config: Model name, token limit and API key.
            db: Ledger store used to look up similar past transactions.
            client: Pre-built Anthropic client, mainly for tests.

        Raises:
            ValueError: If no client is given and no API key is configured.
        """
        if client is None:
            if not config.api_key:
                raise ValueError("Anthropic API key not configured (set ANTHROPIC_API_KEY)")
            client = anthropic.Anthropic(api_key=config.api_key)
        self._client = client
        self._config = config
        self._db = db

    def _ask(self, content: Any) -> str:
        response = self._client.messages.create(
            model=self._config.model,
            max_tokens=self._config.max_tokens,
            messages=[{"role": "user", "content": content}],
        )
        return response.content[0].text

    def build_prompt(
        self, transaction: dict[str, Any], categories: list[dict[str, Any]]
    ) -> str:
        """Build the categorization prompt for one transaction."""
        similar: list[dict[str, Any]] = []
        if self._db is not None:
            merchant = transaction.get("merchant_name") or (transaction.get("name") or "")[:10]
            similar = self._db.get_similar_transactions(merchant)
        amount = transaction.get("amount") or 0.0
        kind = "expense" if amount < 0 else "income"
        return f"""You are a financial transaction categorization expert.

TRANSACTION TO CATEGORIZE:
  Name: {transaction.get("name")}
  Merchant: {transaction.get("merchant_name") or "N/A"}
  Amount: ${abs(amount):.2f} ({kind})
  Date: {transaction.get("date")}
  Provider Category: {transaction.get("provider_category") or "N/A"} / {transaction.get("provider_subcategory") or "N/A"}
  Notes: {transaction.get("notes") or "N/A"}

AVAILABLE CATEGORIES:
{build_categories_context(categories)}

SIMILAR TRANSACTIONS:
{build_similar_context(similar)}

Pick the best category and subcategory from the list using their IDs.
Give a confidence from 0 to 100. Use null for category_id if unsure.

Respond ONLY with JSON:
{{"category_id": "...", "subcategory_id": "... or null", "confidence": 0, "reasoning": "..."}}"""

    def classify(
        self, transaction: dict[str, Any], categories: list[dict[str, Any]]
    ) -> Optional[CategorizationResult]:
        """Ask the model for a category suggestion."""
        if not categories:
            return None
        data = parse_json_response(self._ask(self.build_prompt(transaction, categories)))
        if not data.get("category_id"):
            return None
        return CategorizationResult(
            category_id=data["category_id"],
            subcategory_id=data.get("subcategory_id") or None,
            confidence=float(data.get("confidence") or 0),
            reasoning=str(data.get("reasoning") or "")[:500],
            source=self.name,
        )

    def suggest_splits(
        self,
        transaction: dict[str, Any],
        receipt: bytes,
        media_type: str,
        categories: list[dict[str, Any]],
    ) -> list[SplitItem]:
        """Propose split lines from a receipt image.

        Args:
            transaction: The transaction being split.
            receipt: Raw image bytes.
            media_type: Image MIME type, e.g. ``image/jpeg``.
            categories: Available user categories.

        Returns:
            Split lines with signs matching the transaction amount.
        """
        amount = transaction["amount"]
        prompt = f"""This receipt belongs to a transaction of ${abs(amount):.2f} at
{transaction.get("merchant_name") or transaction.get("name")}.

Group the receipt lines by category and return one split per category. Amounts
are positive and must add up to ${abs(amount):.2f}.

AVAILABLE CATEGORIES:
{build_categories_context(categories)}

Respond ONLY with JSON:
{{"splits": [{{"amount": 0.0, "category_id": "...", "subcategory_id": null, "description": "..."}}]}}"""
        content = [
            {
                "type": "image",
                "source": {
                    "type": "base64",
                    "media_type": media_type,
                    "data": base64.b64encode(receipt).decode("ascii"),
                },
            },
            {"type": "text", "text": prompt},
        ]
        data = parse_json_response(self._ask(content))
        sign = -1.0 if amount < 0 else 1.0
        splits = []
        for line in data.get("splits") or []:
            splits.append(
                SplitItem(
                    amount=round(sign * abs(float(line["amount"])), 2),
                    category_id=line.get("category_id") or None,
                    subcategory_id=line.get("subcategory_id") or None,
                    description=line.get("description") or None,
                )
            )
        logger.info("Model proposed %d splits for %s", len(splits), transaction.get("id"))
        return splits
