"""Achievement and challenge commands for RuleGuard CLI."""

from typing import Optional

import click
from rich.console import Console
from rich.table import Table

from ruleguard.cli.common import error_panel, get_session
from ruleguard.engine.achievements import ACHIEVEMENT_TIERS
from ruleguard.errors import RuleGuardError

console = Console()


@click.command()
@click.option("--friends", default=0, type=click.IntRange(min=0), help="Trading friends count.")
@click.option("--category", default=None, help="Only show this category.")
@click.pass_context
def achievements(ctx: click.Context, friends: int, category: Optional[str]) -> None:
    """Display achievements and unlock any newly earned ones.

    Hidden achievements are only listed once unlocked.

    \b
    Examples:
      ruleguard achievements
      ruleguard achievements --category discipline
    """
    try:
        journal = get_session(ctx).journal
        stats = journal.snapshot(social_connections=friends)
        newly = journal.tracker.unlock(stats)
        unlocked = set(journal.tracker.unlocked_ids())
    except RuleGuardError as e:
        error_panel(console, "Failed to evaluate achievements:", e)
        raise SystemExit(1)

    engine = journal.tracker.engine
    catalog = engine.get_by_category(category) if category else engine.achievements

    for achievement in newly:
        console.print(f"[bold magenta]{achievement.icon} Achievement unlocked: {achievement.title}[/bold magenta]")

    table = Table(title="Achievements", show_header=True, header_style="bold cyan")
    table.add_column("", width=2)
    table.add_column("Achievement", style="bold")
    table.add_column("Tier")
    table.add_column("Progress", justify="right")
    table.add_column("Status")

    for achievement in catalog:
        is_unlocked = achievement.id in unlocked
        if achievement.is_hidden and not is_unlocked:
            continue
        tier_color = ACHIEVEMENT_TIERS[achievement.tier]["color"]
        table.add_row(
            achievement.icon,
            f"{achievement.title}\n[dim]{achievement.description}[/dim]",
            f"[{tier_color}]{achievement.tier}[/]",
            f"{engine.progress_for(achievement, stats):g} / {achievement.max_progress:g}",
            "[green]✓ unlocked[/green]" if is_unlocked else "[dim]locked[/dim]",
        )

    console.print(table)
    console.print(
        f"\n[dim]{len(unlocked)} unlocked, "
        f"{engine.calculate_total_experience(unlocked)} XP total[/dim]"
    )


@click.command()
@click.option("--friends", default=0, type=click.IntRange(min=0), help="Trading friends count.")
@click.pass_context
def challenges(ctx: click.Context, friends: int) -> None:
    """Display today's active challenges.

    \b
    Examples:
      ruleguard challenges
    """
    try:
        journal = get_session(ctx).journal
        stats = journal.snapshot(social_connections=friends)
    except RuleGuardError as e:
        error_panel(console, "Failed to evaluate challenges:", e)
        raise SystemExit(1)

    engine = journal.tracker.engine
    active = engine.get_active_challenges()
    if not active:
        console.print("[dim]No active challenges right now.[/dim]")
        return

    completed = {c.id for c in engine.check_challenges(stats)}

    table = Table(title="Challenges", show_header=True, header_style="bold cyan")
    table.add_column("", width=2)
    table.add_column("Challenge", style="bold")
    table.add_column("Difficulty")
    table.add_column("Ends")
    table.add_column("Status")

    for challenge in active:
        table.add_row(
            challenge.icon,
            f"{challenge.title}\n[dim]{challenge.description}[/dim]",
            challenge.difficulty,
            f"{challenge.end_date:%Y-%m-%d %H:%M}",
            "[green]✓ complete[/green]" if challenge.id in completed else "[dim]in progress[/dim]",
        )

    console.print(table)
