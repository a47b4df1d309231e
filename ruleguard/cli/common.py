"""Shared helpers for RuleGuard CLI commands."""

import logging
from dataclasses import dataclass
from typing import Optional

import click
from rich.console import Console
from rich.panel import Panel

from ruleguard.attachments.local import LocalAttachmentStore
from ruleguard.config import Settings, load_settings
from ruleguard.db.store import DataStore
from ruleguard.engine.journal import TradeJournal
from ruleguard.engine.migrations import MigrationReport, MigrationRunner

logger = logging.getLogger(__name__)


@dataclass
class Session:
    """Objects a command works with, built once per invocation."""

    settings: Settings
    store: DataStore
    attachments: LocalAttachmentStore
    journal: TradeJournal
    migrations: Optional[MigrationReport] = None


def get_settings(ctx: click.Context) -> Settings:
    """Load settings using the group's --config and --data-dir options."""
    obj = ctx.ensure_object(dict)
    if "settings" not in obj:
        obj["settings"] = load_settings(obj.get("config_path"), obj.get("data_dir"))
    return obj["settings"]


def get_session(ctx: click.Context, run_migrations: bool = True) -> Session:
    """Open the stores and journal, applying pending migrations first.

    Args:
        ctx: Click context of the running command.
        run_migrations: Run pending migrations before returning.

    Returns:
        The session, cached on the context.
    """
    obj = ctx.ensure_object(dict)
    if "session" in obj:
        return obj["session"]

    settings = get_settings(ctx)
    store = DataStore(settings.db_path)
    attachments = LocalAttachmentStore(settings.attachments_path)
    session = Session(
        settings=settings,
        store=store,
        attachments=attachments,
        journal=TradeJournal(store, attachments, settings),
    )

    if run_migrations:
        session.migrations = MigrationRunner(store, attachments).run()
        if not session.migrations.ok:
            logger.warning(
                "Some migrations failed and will be retried: %s",
                ", ".join(session.migrations.failed),
            )

    obj["session"] = session
    return session


def error_panel(console: Console, message: str, error: Exception) -> None:
    """Render a command failure."""
    console.print(Panel(
        f"[red]{message}[/red]\n\n{error}",
        title="[bold red]Error[/bold red]",
        border_style="red",
    ))
