"""Shared CLI helpers for context management and service creation."""

from __future__ import annotations

from typing import TYPE_CHECKING

import click

from ..models import SplitItem

if TYPE_CHECKING:
    from click import Context

    from ..clients.protocols import TransactionsProvider
    from ..db.database import Database
    from ..services import (
        CategorizationAssistant,
        ItemService,
        ReconnectionCoordinator,
        SplitService,
        SyncService,
    )


def parse_split_option(value: str) -> SplitItem:
    """Parse ``AMOUNT[:CATEGORY_ID[:DESCRIPTION]]`` into a split line.

    Raises:
        click.BadParameter: If the amount is not a number.
    """
    parts = value.split(":", 2)
    try:
        amount = float(parts[0])
    except ValueError as e:
        raise click.BadParameter(f"Invalid split amount: {parts[0]!r}") from e
    category_id = parts[1] if len(parts) > 1 and parts[1] else None
    description = parts[2] if len(parts) > 2 and parts[2] else None
    return SplitItem(amount=amount, category_id=category_id, description=description)


def require_data(db: Database, data_type: str = "items") -> bool:
    """Check if database has data, show message if empty.

    Args:
        db: Database instance.
        data_type: Type of data to check ("items" or "transactions").

    Returns:
        True if data exists, False otherwise (also prints message).
    """
    count_methods = {
        "items": db.get_item_count,
        "transactions": db.get_transaction_count,
    }
    if count_methods.get(data_type, lambda: 0)() == 0:
        click.echo(click.style(f"No {data_type} in database.", fg="yellow"))
        click.echo("Run 'link' and 'sync' first.")
        return False
    return True


def get_db(ctx: Context) -> Database:
    """Lazily open the ledger database.

    Mock mode uses a separate database file and seeds default categories.
    """
    from ..db.database import Database
    from ..services.seed import seed_defaults

    if "db" not in ctx.obj:
        cfg = ctx.obj["config"]
        mock = ctx.obj.get("mock", False)

        # Use separate database for mock mode
        db_path = cfg.mock_db_path if mock else cfg.db_path
        db = Database(db_path)
        if mock:
            seed_defaults(db)
        ctx.obj["db"] = db

    return ctx.obj["db"]


def get_provider(ctx: Context) -> TransactionsProvider:
    """Lazily create the Plaid client (or the mock one)."""
    from ..clients import MockPlaidClient, PlaidClient

    if "provider" not in ctx.obj:
        if ctx.obj.get("mock", False):
            ctx.obj["provider"] = MockPlaidClient.with_sample_data()
        else:
            ctx.obj["provider"] = PlaidClient(ctx.obj["config"].plaid)

    return ctx.obj["provider"]


def get_categorizer(ctx: Context) -> CategorizationAssistant:
    """Lazily create the categorization assistant.

    History matching is always on; the Anthropic classifier is added when
    enabled in the config.
    """
    from ..services import CategorizationAssistant, HistoryClassifier
    from ..services.ai_categorizer import AnthropicClassifier

    if "categorizer" not in ctx.obj:
        cfg = ctx.obj["config"]
        db = get_db(ctx)
        classifiers = [HistoryClassifier(db, cfg.categorization.history_min_samples)]
        if cfg.categorization.use_ai and not ctx.obj.get("mock", False):
            classifiers.append(AnthropicClassifier(cfg.categorization, db))
        ctx.obj["categorizer"] = CategorizationAssistant(
            db, classifiers, config=cfg.categorization
        )

    return ctx.obj["categorizer"]


def get_sync_service(ctx: Context) -> SyncService:
    """Lazily create the sync service."""
    from ..services.sync import SyncService

    if "sync_service" not in ctx.obj:
        ctx.obj["sync_service"] = SyncService(
            db=get_db(ctx),
            provider=get_provider(ctx),
            config=ctx.obj["config"],
            categorizer=get_categorizer(ctx),
            show_progress=not ctx.obj.get("quiet", False),
        )

    return ctx.obj["sync_service"]


def get_split_service(ctx: Context) -> SplitService:
    """Lazily create the split service."""
    from ..services import SplitService

    if "split_service" not in ctx.obj:
        ctx.obj["split_service"] = SplitService(get_db(ctx), ctx.obj["config"].splits)

    return ctx.obj["split_service"]


def get_item_service(ctx: Context, with_sync: bool = False) -> ItemService:
    """Create the item service.

    Args:
        ctx: Click context with config and mock flags.
        with_sync: Attach the sync service so webhooks can trigger syncs.
    """
    from ..services import ItemService

    return ItemService(get_db(ctx), get_sync_service(ctx) if with_sync else None)


def get_coordinator(ctx: Context) -> ReconnectionCoordinator:
    """Lazily create the reconnection coordinator.

    Prepared reconnections are kept in the database so ``reconnect confirm``
    can run in a later process than ``reconnect prepare``.
    """
    from ..services import DatabaseReconnectionCache, ReconnectionCoordinator

    if "coordinator" not in ctx.obj:
        db = get_db(ctx)
        sync_service = get_sync_service(ctx)
        ctx.obj["coordinator"] = ReconnectionCoordinator(
            db=db,
            provider=get_provider(ctx),
            cache=DatabaseReconnectionCache(db),
            splits=get_split_service(ctx),
            sync_service=sync_service,
            config=ctx.obj["config"].reconnection,
        )

    return ctx.obj["coordinator"]
