"""Progress command for RuleGuard CLI."""

import click
from rich.console import Console
from rich.panel import Panel
from rich.table import Table

from ruleguard.cli.common import error_panel, get_session
from ruleguard.engine.progress import current_balance
from ruleguard.errors import RuleGuardError

console = Console()


@click.command()
@click.option("--days", default=7, type=click.IntRange(min=1), help="Days of history to show.")
@click.pass_context
def progress(ctx: click.Context, days: int) -> None:
    """Display progress toward the growth target.

    \b
    Examples:
      ruleguard progress
      ruleguard progress --days 30
    """
    try:
        session = get_session(ctx)
        counter = session.journal.progress.get_progress()
        summary = session.journal.progress.weekly_summary(days)
        activity = session.store.get_activity_log()
    except RuleGuardError as e:
        error_panel(console, "Failed to load progress:", e)
        raise SystemExit(1)

    settings = session.settings
    target = settings.target_completions
    percent = counter.completions / target * 100
    console.print(Panel(
        f"Completions: [bold]{counter.completions:g}[/bold] / {target} ({percent:.1f}%)\n"
        f"Balance: [green]{current_balance(counter.completions, settings):,.2f}[/green] "
        f"[dim](from {settings.starting_portfolio_value:,.2f})[/dim]",
        title="[bold]Progress[/bold]",
        border_style="cyan",
    ))

    table = Table(title=f"Last {days} days", show_header=True, header_style="bold cyan")
    table.add_column("Date")
    table.add_column("Completions", justify="right")
    table.add_column("Violations", justify="right")
    for day, stat in summary:
        table.add_row(
            day.isoformat(),
            str(stat.completions),
            f"[red]{stat.violations}[/red]" if stat.violations else "0",
        )
    console.print(table)

    if activity:
        last = activity[-1]
        console.print(
            f"\n[dim]Last violation: {last.timestamp:%Y-%m-%d %H:%M} "
            f"({len(activity)} recorded)[/dim]"
        )
