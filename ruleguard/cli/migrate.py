"""Migration command for RuleGuard CLI."""

from typing import Optional

import click
from rich.console import Console
from rich.table import Table

from ruleguard.cli.common import error_panel, get_session
from ruleguard.engine.migrations import MigrationRunner
from ruleguard.errors import RuleGuardError

console = Console()


@click.command()
@click.option("--backups", "show_backups", is_flag=True, help="List pre-migration backups.")
@click.option("--restore", "restore_id", default=None, help="Put a backup back as the trade list.")
@click.option("--yes", is_flag=True, default=False, help="Confirm a restore without prompting.")
@click.pass_context
def migrate(
    ctx: click.Context, show_backups: bool, restore_id: Optional[str], yes: bool
) -> None:
    """Apply pending data migrations and show their status.

    Migrations also run automatically before every other command.

    \b
    Examples:
      ruleguard migrate
      ruleguard migrate --backups
      ruleguard migrate --restore backup:pnl_fixed_v1:1718000000000
    """
    try:
        session = get_session(ctx, run_migrations=False)
        runner = MigrationRunner(session.store, session.attachments)
    except RuleGuardError as e:
        error_panel(console, "Migration run failed:", e)
        raise SystemExit(1)

    if show_backups:
        _show_backups(runner)
        return
    if restore_id:
        _restore(runner, restore_id, yes)
        return

    try:
        report = runner.run()
    except RuleGuardError as e:
        error_panel(console, "Migration run failed:", e)
        raise SystemExit(1)

    table = Table(title="Migrations", show_header=True, header_style="bold cyan")
    table.add_column("Flag", style="bold")
    table.add_column("Description")
    table.add_column("Status")

    for migration in runner.migrations:
        flag = migration.flag
        if flag in report.failed:
            status = f"[red]failed: {report.failed[flag]}[/red]"
        elif flag in report.applied:
            status = f"[green]applied ({report.changed_entries.get(flag, 0)} changed)[/green]"
        elif flag in report.deferred:
            status = "[yellow]deferred[/yellow]"
        else:
            status = "[dim]already applied[/dim]"
        table.add_row(flag, migration.description, status)

    console.print(table)
    for flag, backup_id in report.backups.items():
        console.print(f"[dim]Backup before {flag}: {backup_id}[/dim]")
    console.print(f"\n[dim]Schema version: {report.schema_version}[/dim]")

    if not report.ok:
        raise SystemExit(1)


def _show_backups(runner: MigrationRunner) -> None:
    backups = runner.list_backups()
    if not backups:
        console.print("[dim]No backups[/dim]")
        return

    table = Table(title="Backups", show_header=True, header_style="bold cyan")
    table.add_column("ID", style="bold")
    table.add_column("Migration")
    table.add_column("Taken")
    table.add_column("Trades", justify="right")

    for backup in backups:
        table.add_row(
            backup.id,
            backup.migration,
            backup.created_at.strftime("%Y-%m-%d %H:%M"),
            str(backup.entries),
        )

    console.print(table)


def _restore(runner: MigrationRunner, backup_id: str, yes: bool) -> None:
    confirmed = yes or click.confirm(
        f"Replace the current trades with {backup_id}?", default=False
    )
    if not confirmed:
        console.print("[yellow]Cancelled[/yellow]")
        return

    try:
        backup = runner.restore_backup(backup_id)
    except RuleGuardError as e:
        error_panel(console, "Failed to restore backup:", e)
        raise SystemExit(1)

    console.print(f"[green]✓ Restored {backup.entries} trades from {backup.id}[/green]")
    console.print("[dim]Migrations will run again on the next command[/dim]")
