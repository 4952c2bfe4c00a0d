"""CLI output formatters.

Keeps display logic out of main.py.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Any, Optional

import click

if TYPE_CHECKING:
    from plaid_ledger.services.categorizer import CategorizationReport
    from plaid_ledger.services.reconnection import ReconnectionOutcome
    from plaid_ledger.services.splits import SplitResult
    from plaid_ledger.services.sync import SyncStats


def format_amount(amount: Optional[float]) -> str:
    """Format a signed amount, outflows with a leading minus."""
    value = amount or 0.0
    sign = "-" if value < 0 else ""
    return f"{sign}${abs(value):,.2f}"


def format_transaction_row(txn: dict[str, Any], category_names: Optional[dict] = None) -> str:
    """Format a transaction row for CLI display.

    Args:
        txn: Transaction dictionary.
        category_names: Optional map of category id to name.

    Returns:
        Formatted string for display.
    """
    date = str(txn.get("date") or "")[:10]
    amount = format_amount(txn.get("amount"))
    name = (txn.get("merchant_name") or txn.get("name") or "")[:28].ljust(28)
    category_id = txn.get("category_id")
    if category_id:
        category = (category_names or {}).get(category_id, category_id)
    else:
        category = "Uncategorized"
    category = category[:22].ljust(22)

    row = f"{txn['id']}  {date}  {amount:>11}  {name}  {category}"
    if txn.get("is_split"):
        row += "  [SPLIT]"
    elif txn.get("parent_transaction_id"):
        row += "  [CHILD]"
    elif txn.get("is_manual"):
        row += "  [MANUAL]"
    return row


def format_item_row(item: dict[str, Any]) -> str:
    """Format an item row for CLI display."""
    name = (item.get("institution_name") or "Unknown institution")[:28].ljust(28)
    status = item.get("status") or ""
    synced = str(item.get("last_synced_at") or "Never")[:16]
    row = f"{item['id']}  {name}  {status:<18}  {synced}"
    if item.get("error_code"):
        row += f"  ({item['error_code']})"
    return row


def format_holding_row(holding: dict[str, Any]) -> str:
    """Format a holding row for CLI display."""
    symbol = (holding.get("ticker_symbol") or holding.get("security_name") or "")[:10].ljust(10)
    quantity = holding.get("quantity") or 0.0
    price = holding.get("institution_price")
    value = format_amount(quantity * price) if price is not None else "n/a"
    return f"    {symbol}  {quantity:>12,.4f}  {value:>13}"


def echo_success(message: str) -> None:
    """Echo a success message in green."""
    click.echo(click.style(f"✓ {message}", fg="green"))


def echo_error(message: str) -> None:
    """Echo an error message in red."""
    click.echo(click.style(f"✗ {message}", fg="red"))


def echo_warning(message: str) -> None:
    """Echo a warning message in yellow."""
    click.echo(click.style(f"⚠ {message}", fg="yellow"))


def echo_header(message: str) -> None:
    """Echo a header with underline."""
    click.echo(f"\n{message}")
    click.echo("=" * len(message))


def format_sync_stats(label: str, stats: SyncStats) -> None:
    """Format and display the result of syncing one item.

    Args:
        label: Item label (institution name or id).
        stats: SyncStats from the sync service.
    """
    if not stats.success:
        echo_error(f"{label}: sync failed ({stats.error_kind or 'internal'})")
        for error in stats.errors:
            click.echo(f"    {error}")
        return
    echo_success(f"{label}: synced {stats.pages} page(s)")
    click.echo(
        f"    Added: {stats.added}, Modified: {stats.modified}, Removed: {stats.removed}"
    )
    if stats.skipped_split_parents or stats.kept_on_remove:
        click.echo(
            f"    Kept split parents: {stats.skipped_split_parents}, "
            f"kept on remove: {stats.kept_on_remove}"
        )
    if stats.accounts_created:
        click.echo(f"    New accounts: {stats.accounts_created}")
    if stats.categorized:
        click.echo(f"    Auto-categorized: {stats.categorized}")
    if stats.attempts > 1 or stats.pagination_restarts:
        click.echo(
            f"    Attempts: {stats.attempts}, pagination restarts: {stats.pagination_restarts}"
        )
    investments = stats.investments
    if investments is not None:
        if investments.unsupported:
            click.echo("    Investments: not available for this item")
        else:
            click.echo(
                f"    Holdings: +{investments.holdings_added} ~{investments.holdings_updated} "
                f"-{investments.holdings_removed}, investment transactions: "
                f"+{investments.investment_transactions_added}"
            )


def format_split_result(result: SplitResult) -> None:
    """Format and display a split operation result."""
    echo_success(f"Split into {len(result.child_ids)} transactions")
    for child_id in result.child_ids:
        click.echo(f"    {child_id}")
    if result.warning:
        echo_warning(result.warning)


def format_reconnection_outcome(outcome: ReconnectionOutcome) -> None:
    """Format and display a completed reconnection."""
    echo_success(f"Reconnected item {outcome.item_id}")
    click.echo(f"    Transactions deleted: {outcome.transactions_deleted}")
    click.echo(f"    Split children kept as manual: {outcome.children_converted}")
    if outcome.investment_rows_deleted:
        click.echo(f"    Holdings and investment rows deleted: {outcome.investment_rows_deleted}")
    click.echo(
        f"    Accounts matched: {outcome.accounts_matched}, created: {outcome.accounts_created}"
    )
    if outcome.sync_stats is not None:
        format_sync_stats("Re-sync", outcome.sync_stats)
    if outcome.sync_error:
        echo_warning(f"Re-sync failed: {outcome.sync_error}")


def format_categorization_report(report: CategorizationReport) -> None:
    """Format and display a categorization run."""
    echo_success(f"Categorized {len(report.categorized)} transactions")
    for txn_id, result in report.results.items():
        click.echo(
            f"    {txn_id}  {result.category_id}  "
            f"{result.confidence:.0f}% via {result.source}"
        )
    if report.skipped:
        click.echo(f"    Skipped: {len(report.skipped)}")
    for error in report.errors:
        echo_warning(error)
