"""plaid-ledger command line interface."""

from __future__ import annotations

import json
import logging
import sys
from pathlib import Path
from typing import NoReturn

import anthropic
import click

from .cli.formatters import (
    echo_error,
    echo_header,
    echo_success,
    echo_warning,
    format_amount,
    format_categorization_report,
    format_holding_row,
    format_item_row,
    format_reconnection_outcome,
    format_split_result,
    format_sync_stats,
    format_transaction_row,
)
from .cli.helpers import (
    get_categorizer,
    get_coordinator,
    get_db,
    get_item_service,
    get_provider,
    get_split_service,
    get_sync_service,
    parse_split_option,
    require_data,
)
from .config import load_config
from .errors import LedgerError, error_kind
from .logging_config import setup_logging
from .models import ItemStatus

logger = logging.getLogger(__name__)


def _abort(error: Exception) -> NoReturn:
    """Print an error with its kind and exit non-zero."""
    echo_error(f"{error} [{error_kind(error)}]")
    if error_kind(error) == "needs_reconnection":
        click.echo("    Run 'reconnect prepare' with a fresh Link public token.")
    sys.exit(1)


def _category_names(db) -> dict[str, str]:
    return {c["id"]: c["name"] for c in db.get_categories()}


@click.group()
@click.option("--mock", is_flag=True, help="Use the bundled mock provider and a separate database.")
@click.option(
    "--config",
    "config_path",
    type=click.Path(path_type=Path),
    default=None,
    help="Path to config.toml.",
)
@click.option("-v", "--verbose", is_flag=True, help="Debug logging.")
@click.option("-q", "--quiet", is_flag=True, help="No progress bars.")
@click.pass_context
def main(ctx, mock, config_path, verbose, quiet):
    """plaid-ledger: Plaid transaction sync, splits and reconnection."""
    ctx.ensure_object(dict)
    try:
        cfg = load_config(config_path)
    except ValueError as e:
        echo_error(str(e))
        sys.exit(1)
    setup_logging(
        "DEBUG" if verbose else cfg.logging.level,
        cfg.logging.third_party_level,
        cfg.logging.file,
    )
    ctx.obj["config"] = cfg
    ctx.obj["mock"] = mock
    ctx.obj["quiet"] = quiet
    logger.debug("Data directory %s (mock=%s)", cfg.data_dir, mock)


# =============================================================================
# Ledger setup and inspection
# =============================================================================


@main.command()
@click.pass_context
def init(ctx):
    """Create the database and seed default categories and tags."""
    from .services.seed import seed_defaults

    db = get_db(ctx)
    counts = seed_defaults(db)
    if counts["categories"]:
        echo_success(
            f"Seeded {counts['categories']} categories, {counts['subcategories']} "
            f"subcategories and {counts['tags']} tags"
        )
    else:
        echo_warning("Categories already exist, nothing seeded")


@main.command()
@click.pass_context
def status(ctx):
    """Show database row counts."""
    db = get_db(ctx)
    counts = db.get_status_counts()
    echo_header("Ledger Status")
    click.echo(f"Database:        {db.db_path}")
    click.echo(f"Items:           {counts['items']}")
    click.echo(f"Accounts:        {counts['accounts']}")
    click.echo(f"Transactions:    {counts['transactions']}")
    click.echo(f"  Uncategorized: {counts['uncategorized']}")
    click.echo(f"  Manual:        {counts['manual']}")
    click.echo(f"  Split parents: {counts['split_parents']}")
    click.echo(f"Categories:      {counts['categories']}")
    click.echo(f"Tags:            {counts['tags']}")
    click.echo(f"Holdings:        {counts['holdings']}")
    click.echo(f"Investment txns: {counts['investment_transactions']}")


@main.command()
@click.pass_context
def items(ctx):
    """List linked items."""
    db = get_db(ctx)
    if not require_data(db, "items"):
        return
    echo_header("Items")
    for item in db.get_items():
        click.echo(format_item_row(item))
        for account in db.get_accounts_for_item(item["id"]):
            mask = f" ...{account['mask']}" if account["mask"] else ""
            click.echo(
                f"    {account['name']}{mask}  {format_amount(account['current_balance'])}"
            )


@main.command()
@click.option("--item", "item_id", default=None, help="Only this item.")
@click.option("-u", "--uncategorized", is_flag=True, help="Only uncategorized transactions.")
@click.option("-n", "--limit", type=int, default=50, show_default=True)
@click.pass_context
def transactions(ctx, item_id, uncategorized, limit):
    """List transactions, newest first."""
    db = get_db(ctx)
    if not require_data(db, "transactions"):
        return
    rows = db.get_transactions(item_id=item_id, uncategorized_only=uncategorized, limit=limit)
    if not rows:
        click.echo("No transactions match.")
        return
    names = _category_names(db)
    click.echo(f"Found {len(rows)} transactions\n")
    for txn in rows:
        click.echo(format_transaction_row(txn, names))


@main.command()
@click.pass_context
def holdings(ctx):
    """List investment holdings per item."""
    db = get_db(ctx)
    if not require_data(db, "items"):
        return
    echo_header("Holdings")
    found = False
    for item in db.get_items():
        rows = db.get_holdings_for_item(item["id"])
        if not rows:
            continue
        found = True
        click.echo(item["institution_name"] or item["id"])
        for holding in rows:
            click.echo(format_holding_row(holding))
    if not found:
        click.echo("No holdings. Run 'sync --investments' first.")


@main.command()
@click.pass_context
def categories(ctx):
    """List categories and subcategories with their ids."""
    db = get_db(ctx)
    for category in db.get_categories():
        click.echo(f"{category['id']}  {category['name']} ({category['group_type']})")
        for sub in category["subcategories"]:
            click.echo(f"    {sub['id']}  {sub['name']}")


# =============================================================================
# Items
# =============================================================================


@main.command()
@click.argument("public_token")
@click.pass_context
def link(ctx, public_token):
    """Link a new item from a Link PUBLIC_TOKEN."""
    try:
        result = get_coordinator(ctx).link_item(public_token)
    except (LedgerError, ValueError) as e:
        _abort(e)
    verb = "Linked" if result.created else "Refreshed"
    echo_success(f"{verb} {result.institution_name or 'item'} ({result.item_id})")
    click.echo(f"    Accounts: {len(result.account_ids)}")


@main.command("link-token")
@click.option("--item", "item_id", default=None, help="Create an update-mode token for this item.")
@click.option("--user", "user_id", default="plaid-ledger", show_default=True)
@click.pass_context
def link_token(ctx, item_id, user_id):
    """Create a Link token for linking or re-linking an item."""
    access_token = None
    if item_id:
        item = get_db(ctx).get_item(item_id)
        if item is None:
            echo_error(f"Item not found: {item_id}")
            sys.exit(1)
        access_token = item["access_token"]
    try:
        token = get_provider(ctx).create_link_token(user_id, access_token)
    except (LedgerError, ValueError) as e:
        _abort(e)
    click.echo(token)


@main.command("item-status")
@click.argument("item_id")
@click.argument("status", type=click.Choice([s.value for s in ItemStatus], case_sensitive=False))
@click.pass_context
def item_status(ctx, item_id, status):
    """Set an item's STATUS."""
    try:
        get_item_service(ctx).update_item_status(item_id, status.upper())
    except LedgerError as e:
        _abort(e)
    echo_success(f"Item {item_id} is now {status.upper()}")


@main.command()
@click.argument("payload", type=click.File("r"), default="-")
@click.pass_context
def webhook(ctx, payload):
    """Apply a provider webhook body read from PAYLOAD (or stdin)."""
    try:
        body = json.load(payload)
    except json.JSONDecodeError as e:
        echo_error(f"Invalid webhook JSON: {e}")
        sys.exit(1)
    try:
        service = get_item_service(ctx, with_sync=True)
    except ValueError as e:
        _abort(e)
    result = service.handle_webhook(body)
    if result.error:
        echo_warning(result.error)
    if not result.handled:
        click.echo("Webhook ignored.")
        return
    if result.status:
        echo_success(f"Item {result.item_id} is now {result.status}")
    if result.sync_stats is not None:
        format_sync_stats(result.item_id, result.sync_stats)


# =============================================================================
# Sync
# =============================================================================


@main.command()
@click.argument("item_id", required=False)
@click.option("--all", "sync_all", is_flag=True, help="Sync every item.")
@click.option("--full", is_flag=True, help="Ignore stored cursors and re-read everything.")
@click.option("--investments", is_flag=True, help="Also refresh holdings and investment transactions.")
@click.pass_context
def sync(ctx, item_id, sync_all, full, investments):
    """Sync ITEM_ID (or every item with --all) from the provider."""
    if not item_id and not sync_all:
        raise click.UsageError("Give an ITEM_ID or --all")
    db = get_db(ctx)
    if not require_data(db, "items"):
        return
    if item_id and db.get_item(item_id) is None:
        echo_error(f"Item not found: {item_id}")
        sys.exit(1)

    try:
        service = get_sync_service(ctx)
    except ValueError as e:
        _abort(e)
    result = service.sync_items([item_id] if item_id else None, full=full, investments=investments)
    for synced_id, stats in result.items.items():
        item = db.get_item(synced_id)
        label = (item or {}).get("institution_name") or synced_id
        format_sync_stats(label, stats)
    if not result.success:
        sys.exit(1)


# =============================================================================
# Reconnection
# =============================================================================


@main.group()
def reconnect():
    """Re-link an item whose credential stopped working."""


@reconnect.command("prepare")
@click.argument("item_id")
@click.argument("public_token")
@click.pass_context
def reconnect_prepare(ctx, item_id, public_token):
    """Exchange PUBLIC_TOKEN for ITEM_ID and report what confirming would do."""
    try:
        result = get_coordinator(ctx).prepare_reconnection(item_id, public_token)
    except (LedgerError, ValueError) as e:
        _abort(e)
    if result.kind == "reauth":
        echo_success(f"{result.message} ({result.institution_name or item_id})")
        return
    echo_warning(result.message)
    click.echo(f"    Reconnection id: {result.reconnection_id}")
    click.echo("    Split lines are kept as manual transactions.")
    click.echo(f"    Run 'reconnect confirm {result.reconnection_id}' to continue.")


@reconnect.command("confirm")
@click.argument("reconnection_id")
@click.option("--no-sync", is_flag=True, help="Do not re-sync after reconnecting.")
@click.pass_context
def reconnect_confirm(ctx, reconnection_id, no_sync):
    """Apply a prepared reconnection."""
    try:
        outcome = get_coordinator(ctx).confirm_reconnection(reconnection_id, resync=not no_sync)
    except (LedgerError, ValueError) as e:
        _abort(e)
    format_reconnection_outcome(outcome)


@reconnect.command("cancel")
@click.argument("reconnection_id")
@click.pass_context
def reconnect_cancel(ctx, reconnection_id):
    """Discard a prepared reconnection."""
    try:
        get_coordinator(ctx).cancel_reconnection(reconnection_id)
    except (LedgerError, ValueError) as e:
        _abort(e)
    echo_success("Reconnection cancelled")


# =============================================================================
# Splits
# =============================================================================


@main.command()
@click.argument("transaction_id")
@click.option(
    "-p",
    "--part",
    "parts",
    multiple=True,
    required=True,
    help="AMOUNT[:CATEGORY_ID[:DESCRIPTION]], repeat per split line.",
)
@click.option("--tag", default=None, help="Tag to put on the split transaction.")
@click.pass_context
def split(ctx, transaction_id, parts, tag):
    """Split TRANSACTION_ID into several lines."""
    splits = [parse_split_option(p) for p in parts]
    try:
        result = get_split_service(ctx).split_transaction(transaction_id, splits, tag_name=tag)
    except LedgerError as e:
        _abort(e)
    format_split_result(result)


@main.command("undo-split")
@click.argument("transaction_id")
@click.pass_context
def undo_split(ctx, transaction_id):
    """Remove the split lines of TRANSACTION_ID."""
    try:
        deleted = get_split_service(ctx).undo_split(transaction_id)
    except LedgerError as e:
        _abort(e)
    echo_success(f"Removed {deleted} split lines")


@main.command("ai-split")
@click.argument("transaction_id")
@click.argument("receipt", type=click.Path(exists=True, dir_okay=False, path_type=Path))
@click.option("--media-type", default="image/jpeg", show_default=True)
@click.option("--yes", is_flag=True, help="Apply without asking.")
@click.pass_context
def ai_split(ctx, transaction_id, receipt, media_type, yes):
    """Propose split lines for TRANSACTION_ID from a RECEIPT image."""
    from .services.ai_categorizer import AnthropicClassifier

    cfg = ctx.obj["config"]
    db = get_db(ctx)
    txn = db.get_transaction(transaction_id)
    if txn is None:
        echo_error(f"Transaction not found: {transaction_id}")
        sys.exit(1)
    try:
        classifier = AnthropicClassifier(cfg.categorization, db)
        splits = classifier.suggest_splits(
            txn, receipt.read_bytes(), media_type, db.get_categories()
        )
    except (ValueError, anthropic.APIError) as e:
        _abort(e)
    if not splits:
        echo_warning("No split lines proposed")
        return

    names = _category_names(db)
    echo_header("Proposed split")
    for line in splits:
        category = names.get(line.category_id or "", "Uncategorized")
        click.echo(f"  {format_amount(line.amount):>11}  {category:<22}  {line.description or ''}")
    if not yes and not click.confirm("Apply?"):
        return
    try:
        result = get_split_service(ctx).ai_split(transaction_id, splits)
    except LedgerError as e:
        _abort(e)
    format_split_result(result)


# =============================================================================
# Categorization
# =============================================================================


@main.command()
@click.argument("transaction_ids", nargs=-1)
@click.option("-n", "--limit", type=int, default=None, help="Max uncategorized rows to try.")
@click.pass_context
def categorize(ctx, transaction_ids, limit):
    """Suggest categories for TRANSACTION_IDS (default: all uncategorized)."""
    try:
        assistant = get_categorizer(ctx)
    except ValueError as e:
        _abort(e)
    if transaction_ids:
        report = assistant.categorize_transactions(list(transaction_ids))
    else:
        report = assistant.categorize_uncategorized(limit=limit)
    format_categorization_report(report)


if __name__ == "__main__":
    main(obj={})
