"""Trade commands for RuleGuard CLI.

Handles logging, listing and deleting trades and removing trade images.
"""

from datetime import date, datetime
from pathlib import Path
from typing import Iterable, Optional

import click
from pydantic import ValidationError as PydanticValidationError
from rich.console import Console
from rich.panel import Panel
from rich.table import Table

from ruleguard.cli.common import error_panel, get_session
from ruleguard.engine.compliance import AppliedRule, TradeDraft
from ruleguard.errors import RuleGuardError

console = Console()

OUTCOMES = {
    "followed": "Followed",
    "f": "Followed",
    "broken": "Broken",
    "b": "Broken",
    "na": "NotApplicable",
    "n/a": "NotApplicable",
    "notapplicable": "NotApplicable",
}


def parse_rule_option(
    value: str, rule_ids: Iterable[str], tags: Iterable[str] = (), promote: bool = False
) -> AppliedRule:
    """Parse a ``REF=OUTCOME`` rule option.

    REF is a catalog rule id or rule text; anything that is not a known id
    is treated as rule text.

    Raises:
        click.BadParameter: If the option is malformed.
    """
    ref, sep, outcome = value.rpartition("=")
    ref = ref.strip()
    if not sep or not ref:
        raise click.BadParameter(f"expected REF=OUTCOME, got {value!r}", param_hint="--rule")

    key = outcome.strip().lower().replace(" ", "").replace("_", "")
    if key not in OUTCOMES:
        raise click.BadParameter(
            f"unknown outcome {outcome!r} (use followed, broken or na)", param_hint="--rule"
        )

    if ref in set(rule_ids):
        return AppliedRule(rule_id=ref, outcome=OUTCOMES[key])
    return AppliedRule(text=ref, outcome=OUTCOMES[key], tags=list(tags), promote=promote)


@click.command()
@click.argument("symbol")
@click.argument("direction", type=click.Choice(["long", "short"], case_sensitive=False))
@click.argument("entry")
@click.argument("exit_price", metavar="EXIT")
@click.argument("size")
@click.option(
    "--date", "trade_date",
    type=click.DateTime(formats=["%Y-%m-%d"]),
    default=None,
    help="Trade date (default: today).",
)
@click.option("--target", default=None, help="Planned target price.")
@click.option("--stop", default=None, help="Planned stop price.")
@click.option(
    "--rule", "rules",
    multiple=True,
    help="Applied rule as REF=followed|broken|na. Repeatable.",
)
@click.option("--promote", is_flag=True, default=False, help="Add ad-hoc rules to the catalog.")
@click.option("--tag", "tags", multiple=True, help="Tag for the trade. Repeatable.")
@click.option("--emotion", default="Neutral", help="How you felt (default: Neutral).")
@click.option("--notes", default="", help="Free-text notes.")
@click.option(
    "--image", "images",
    multiple=True,
    type=click.Path(exists=True, dir_okay=False, path_type=Path),
    help="Image file to attach. Repeatable.",
)
@click.option("--friends", default=0, type=click.IntRange(min=0), help="Trading friends count.")
@click.pass_context
def log(
    ctx: click.Context,
    symbol: str,
    direction: str,
    entry: str,
    exit_price: str,
    size: str,
    trade_date: Optional[datetime],
    target: Optional[str],
    stop: Optional[str],
    rules: tuple[str, ...],
    promote: bool,
    tags: tuple[str, ...],
    emotion: str,
    notes: str,
    images: tuple[Path, ...],
    friends: int,
) -> None:
    """Log a closed trade.

    SYMBOL is the traded symbol, DIRECTION is long or short, and ENTRY,
    EXIT and SIZE are the fill prices and position size.

    \b
    Examples:
      ruleguard log INFY long 1500 1525 10 --rule "Wait for the close=followed"
      ruleguard log TCS short 3400 3420 5 --rule abc123def456=broken --stop 3410
    """
    try:
        session = get_session(ctx)
        rule_ids = [rule.id for rule in session.store.get_rules()]
        applied = [parse_rule_option(value, rule_ids, promote=promote) for value in rules]
        draft = TradeDraft(
            date=trade_date.date() if trade_date else date.today(),
            symbol=symbol,
            direction=direction.capitalize(),
            entry=entry,
            exit=exit_price,
            size=size,
            target=target,
            stop=stop,
            emotion=emotion,
            notes=notes,
            tags=list(tags),
        )
        payloads = [path.read_bytes() for path in images]
        result = session.journal.submit(
            draft, applied, images=payloads, social_connections=friends
        )
    except (RuleGuardError, PydanticValidationError, OSError) as e:
        error_panel(console, "Trade was not logged:", e)
        raise SystemExit(1)

    trade = result.trade
    pnl_color = "green" if trade.pnl >= 0 else "red"
    status = "[green]compliant[/green]" if trade.rule_compliant else "[red]not compliant[/red]"
    console.print(Panel(
        f"[bold]{trade.direction} {trade.symbol}[/bold]  {trade.entry:g} → {trade.exit:g} x {trade.size:g}\n"
        f"P&L: [{pnl_color}]{trade.pnl:+,.2f}[/{pnl_color}]  Rules: {status}\n"
        f"Progress: {result.progress.completions:g} / {session.settings.target_completions}",
        title=f"[bold]Trade {trade.id}[/bold]",
        border_style="green" if trade.rule_compliant else "yellow",
    ))

    for warning in result.warnings:
        console.print(f"[yellow]⚠ {warning.message}[/yellow]")
    for rule in result.rules:
        if rule.id in trade.applied_rules and rule.violations:
            console.print(f"[dim]{rule.text}: {rule.violations} violation(s)[/dim]")
    for achievement in result.unlocked:
        console.print(f"[bold magenta]{achievement.icon} Achievement unlocked: {achievement.title}[/bold magenta]")
    for challenge in result.challenges_completed:
        console.print(f"[magenta]{challenge.icon} Challenge complete: {challenge.title}[/magenta]")


@click.command()
@click.option("--limit", default=20, type=click.IntRange(min=1), help="Maximum trades to show.")
@click.option("--symbol", default=None, help="Only show this symbol.")
@click.pass_context
def trades(ctx: click.Context, limit: int, symbol: Optional[str]) -> None:
    """List logged trades, newest first.

    \b
    Examples:
      ruleguard trades
      ruleguard trades --symbol INFY --limit 5
    """
    try:
        entries = get_session(ctx).journal.list_trades()
    except RuleGuardError as e:
        error_panel(console, "Failed to load trades:", e)
        raise SystemExit(1)

    if symbol:
        entries = [t for t in entries if t.symbol == symbol.upper()]

    if not entries:
        console.print("[dim]No trades logged yet.[/dim]")
        return

    table = Table(title="Trades", show_header=True, header_style="bold cyan")
    table.add_column("ID", style="dim")
    table.add_column("Date")
    table.add_column("Symbol", style="bold")
    table.add_column("Side")
    table.add_column("Entry", justify="right")
    table.add_column("Exit", justify="right")
    table.add_column("Size", justify="right")
    table.add_column("P&L", justify="right")
    table.add_column("Rules")
    table.add_column("Images", justify="right")

    for trade in entries[:limit]:
        pnl_color = "green" if trade.pnl >= 0 else "red"
        table.add_row(
            str(trade.id),
            trade.date.isoformat(),
            trade.symbol,
            trade.direction,
            f"{trade.entry:,.2f}",
            f"{trade.exit:,.2f}",
            f"{trade.size:g}",
            f"[{pnl_color}]{trade.pnl:+,.2f}[/{pnl_color}]",
            "[green]✓[/green]" if trade.rule_compliant else "[red]✗[/red]",
            str(len(trade.image_ids)),
        )

    console.print(table)
    console.print(f"\n[dim]Showing {min(limit, len(entries))} of {len(entries)} trades[/dim]")


@click.command()
@click.argument("trade_id", type=int)
@click.option("--yes", is_flag=True, default=False, help="Confirm without prompting.")
@click.pass_context
def delete(ctx: click.Context, trade_id: int, yes: bool) -> None:
    """Delete a trade and its images.

    \b
    Examples:
      ruleguard delete 1718000000000
      ruleguard delete 1718000000000 --yes
    """
    confirmed = yes or click.confirm(f"Delete trade {trade_id}?", default=False)
    if not confirmed:
        console.print("[yellow]Cancelled[/yellow]")
        return

    try:
        trade = get_session(ctx).journal.delete_trade(trade_id, confirmed=True)
    except RuleGuardError as e:
        error_panel(console, "Failed to delete trade:", e)
        raise SystemExit(1)

    if trade is None:
        console.print(f"[green]✓ Deleted trade {trade_id}[/green] [dim](unreadable record)[/dim]")
        return
    console.print(f"[green]✓ Deleted trade {trade.id} ({trade.symbol})[/green]")


@click.command()
@click.argument("trade_id", type=int)
@click.argument("attachment_id", type=int)
@click.pass_context
def detach(ctx: click.Context, trade_id: int, attachment_id: int) -> None:
    """Remove one image from a trade.

    \b
    Examples:
      ruleguard detach 1718000000000 3
    """
    try:
        trade = get_session(ctx).journal.remove_attachment(trade_id, attachment_id)
    except RuleGuardError as e:
        error_panel(console, "Failed to remove image:", e)
        raise SystemExit(1)

    if trade is None:
        console.print(f"[green]✓ Removed image {attachment_id} from trade {trade_id}[/green]")
        return
    console.print(
        f"[green]✓ Removed image {attachment_id} from trade {trade.id}[/green] "
        f"[dim]({len(trade.image_ids)} left)[/dim]"
    )
