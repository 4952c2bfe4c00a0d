"""Item status updates and provider webhook dispatch."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any, Optional

from ..errors import InvalidStatusError, ItemNotFoundError, LedgerError
from ..models import ItemStatus

logger = logging.getLogger(__name__)

if TYPE_CHECKING:
    from ..db.protocols import LedgerStore
    from .sync import SyncService, SyncStats

ITEM_WEBHOOK_STATUSES = {
    "ERROR": ItemStatus.ERROR,
    "PENDING_EXPIRATION": ItemStatus.PENDING_EXPIRATION,
    "PENDING_DISCONNECT": ItemStatus.PENDING_DISCONNECT,
    "LOGIN_REPAIRED": ItemStatus.ACTIVE,
}

TRANSACTION_SYNC_CODES = frozenset(
    {
        "SYNC_UPDATES_AVAILABLE",
        "DEFAULT_UPDATE",
        "INITIAL_UPDATE",
        "HISTORICAL_UPDATE",
        "TRANSACTIONS_REMOVED",
    }
)


@dataclass
class WebhookResult:
    """What a webhook caused."""

    handled: bool
    item_id: Optional[str] = None
    status: Optional[str] = None
    sync_stats: Optional[SyncStats] = None
    error: Optional[str] = None


class ItemService:
    """Applies status changes to items."""

    def __init__(self, db: LedgerStore, sync_service: Optional[SyncService] = None):
        self._db = db
        self._sync = sync_service

    def update_item_status(
        self, item_id: str, status: str | ItemStatus, error_code: Optional[str] = None
    ) -> None:
        """Set an item's status.

        Raises:
            InvalidStatusError: Unknown status value.
            ItemNotFoundError: Unknown item.
        """
        try:
            value = ItemStatus(status).value
        except ValueError as e:
            raise InvalidStatusError(f"Unknown item status: {status}") from e
        if not self._db.set_item_status(item_id, value, error_code):
            raise ItemNotFoundError(f"Item not found: {item_id}")
        logger.info("Item %s status -> %s", item_id, value)

    def handle_webhook(self, payload: dict[str, Any]) -> WebhookResult:
        """Dispatch a provider webhook body.

        ITEM webhooks update the item status. TRANSACTIONS webhooks trigger a
        sync when a sync service is configured. Unknown types and codes are
        acknowledged and ignored.
        """
        webhook_type = payload.get("webhook_type")
        code = payload.get("webhook_code")
        external_id = payload.get("item_id")
        logger.info("Webhook %s/%s for %s", webhook_type, code, external_id)

        if not external_id or webhook_type not in ("ITEM", "TRANSACTIONS"):
            return WebhookResult(handled=False)
        item = self._db.get_item_by_external_id(external_id)
        if item is None:
            logger.error("Webhook for unknown item %s", external_id)
            return WebhookResult(handled=False, error=f"Item not found: {external_id}")

        if webhook_type == "ITEM":
            status = ITEM_WEBHOOK_STATUSES.get(code)
            if status is None:
                logger.info("Unhandled item webhook code: %s", code)
                return WebhookResult(handled=False, item_id=item["id"])
            error_code = (payload.get("error") or {}).get("error_code")
            self.update_item_status(item["id"], status, error_code)
            return WebhookResult(handled=True, item_id=item["id"], status=status.value)

        if code not in TRANSACTION_SYNC_CODES:
            logger.info("Unhandled transactions webhook code: %s", code)
            return WebhookResult(handled=False, item_id=item["id"])
        if self._sync is None:
            return WebhookResult(handled=False, item_id=item["id"])
        try:
            stats = self._sync.sync_item(item["id"])
        except LedgerError as e:
            logger.warning("Webhook-triggered sync of %s failed: %s", item["id"], e)
            return WebhookResult(handled=True, item_id=item["id"], error=str(e))
        return WebhookResult(handled=True, item_id=item["id"], sync_stats=stats)
