"""Business logic services for plaid-ledger."""

from .categorizer import (
    CategorizationAssistant,
    CategorizationReport,
    CategorizationResult,
    HistoryClassifier,
    NullClassifier,
)
from .category_mapping import map_provider_category
from .items import ItemService, WebhookResult
from .locks import ItemLockRegistry
from .reconnection import (
    DatabaseReconnectionCache,
    InMemoryReconnectionCache,
    PrepareResult,
    ReconnectionCoordinator,
    ReconnectionOutcome,
)
from .splits import SplitResult, SplitService, check_split_amounts
from .sync import BatchSyncResult, InvestmentSyncStats, SyncService, SyncStats

__all__ = [
    "BatchSyncResult",
    "CategorizationAssistant",
    "CategorizationReport",
    "CategorizationResult",
    "DatabaseReconnectionCache",
    "HistoryClassifier",
    "InMemoryReconnectionCache",
    "InvestmentSyncStats",
    "ItemLockRegistry",
    "ItemService",
    "NullClassifier",
    "PrepareResult",
    "ReconnectionCoordinator",
    "ReconnectionOutcome",
    "SplitResult",
    "SplitService",
    "SyncService",
    "SyncStats",
    "WebhookResult",
    "check_split_amounts",
    "map_provider_category",
]
