"""Rule catalog commands for RuleGuard CLI."""

import click
from rich.console import Console
from rich.panel import Panel
from rich.table import Table

from ruleguard.cli.common import error_panel, get_session
from ruleguard.errors import RuleGuardError
from ruleguard.models import Rule

console = Console()


@click.group()
def rules() -> None:
    """Manage your trading rules.

    \b
    Examples:
      ruleguard rules add "Never move the stop" --category risk --tag stops
      ruleguard rules list
    """
    pass


@rules.command("add")
@click.argument("text")
@click.option("--category", default="custom", help="Rule category (default: custom).")
@click.option("--tag", "tags", multiple=True, help="Tag for the rule. Repeatable.")
@click.pass_context
def add_rule(ctx: click.Context, text: str, category: str, tags: tuple[str, ...]) -> None:
    """Add a rule to the catalog.

    TEXT is the rule as you want to see it when logging trades.
    """
    text = text.strip()
    if not text:
        console.print("[red]Rule text cannot be empty[/red]")
        raise SystemExit(1)

    try:
        store = get_session(ctx).store
        if any(rule.text == text for rule in store.get_rules()):
            console.print("[yellow]A rule with that text already exists[/yellow]")
            return
        rule = store.add_rule(Rule(text=text, category=category, tags=list(tags)))
    except RuleGuardError as e:
        error_panel(console, "Failed to add rule:", e)
        raise SystemExit(1)

    console.print(f"[green]✓ Added rule {rule.id}[/green]: {rule.text}")


@rules.command("list")
@click.option("--all", "show_all", is_flag=True, default=False, help="Include inactive rules.")
@click.pass_context
def list_rules(ctx: click.Context, show_all: bool) -> None:
    """Display the rule catalog with violation counters."""
    try:
        catalog = get_session(ctx).store.get_rules()
    except RuleGuardError as e:
        error_panel(console, "Failed to load rules:", e)
        raise SystemExit(1)

    if not show_all:
        catalog = [rule for rule in catalog if rule.active]

    if not catalog:
        console.print(Panel(
            "[dim]No rules yet. Add one with 'ruleguard rules add'.[/dim]",
            title="[bold]Rules[/bold]",
            border_style="dim",
        ))
        return

    table = Table(title="Rules", show_header=True, header_style="bold cyan")
    table.add_column("ID", style="dim")
    table.add_column("Rule", style="bold")
    table.add_column("Category")
    table.add_column("Tags")
    table.add_column("Violations", justify="right")
    table.add_column("Last Violation")

    for rule in sorted(catalog, key=lambda r: -r.violations):
        table.add_row(
            rule.id,
            rule.text,
            rule.category,
            ", ".join(rule.tags),
            f"[red]{rule.violations}[/red]" if rule.violations else "0",
            rule.last_violation.isoformat() if rule.last_violation else "-",
        )

    console.print(table)
