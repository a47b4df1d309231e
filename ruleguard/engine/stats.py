"""Aggregate user statistics for achievement evaluation."""

from datetime import date, timedelta
from typing import Iterable, Optional

from ruleguard.models import Rule, TradeEntry, UserStats

WINDOWS = ("daily", "weekly", "monthly")


def in_window(day: date, timeframe: str, today: date) -> bool:
    """Check whether a date falls in the calendar window containing today.

    Args:
        day: Date to test.
        timeframe: daily, weekly (ISO week), monthly or all-time.
        today: Reference date.
    """
    if timeframe == "daily":
        return day == today
    if timeframe == "weekly":
        return day.isocalendar()[:2] == today.isocalendar()[:2]
    if timeframe == "monthly":
        return (day.year, day.month) == (today.year, today.month)
    return True


def compliance_rate(trades: list[TradeEntry]) -> float:
    """Percentage of compliant trades (0 when there are none)."""
    if not trades:
        return 0.0
    compliant = sum(1 for t in trades if t.rule_compliant)
    return round(compliant / len(trades) * 100, 2)


def current_streak(trades: Iterable[TradeEntry], today: date) -> int:
    """Count consecutive trading days on which every trade was compliant.

    The streak ends today, or yesterday when nothing was logged today yet.
    """
    clean_by_day: dict[date, bool] = {}
    for trade in trades:
        clean_by_day[trade.date] = clean_by_day.get(trade.date, True) and trade.rule_compliant

    day = today if today in clean_by_day else today - timedelta(days=1)
    streak = 0
    while clean_by_day.get(day):
        streak += 1
        day -= timedelta(days=1)
    return streak


def portfolio_growth(trades: Iterable[TradeEntry], starting_portfolio_value: float) -> float:
    """Total P&L as a percentage of the starting value."""
    total = sum(t.pnl for t in trades)
    return round(total / starting_portfolio_value * 100, 2)


def _aggregate(
    trades: list[TradeEntry],
    starting_portfolio_value: float,
    today: date,
    social_connections: int,
    total_violations: int,
) -> dict:
    return {
        "total_trades": len(trades),
        "compliance_rate": compliance_rate(trades),
        "current_streak": current_streak(trades, today),
        "portfolio_growth": portfolio_growth(trades, starting_portfolio_value),
        "social_connections": social_connections,
        "active_days": len({t.date for t in trades}),
        "total_violations": total_violations,
    }


def build_user_stats(
    trades: Iterable[TradeEntry],
    rules: Iterable[Rule] = (),
    starting_portfolio_value: float = 100.0,
    today: Optional[date] = None,
    social_connections: int = 0,
) -> UserStats:
    """Build the snapshot the achievement engine evaluates.

    Args:
        trades: All trades.
        rules: Rule catalog.
        starting_portfolio_value: Base for portfolio growth.
        today: Reference date for streaks and windows.
        social_connections: Number of trading friends.

    Returns:
        All-time stats with daily, weekly and monthly windows.
    """
    trades = list(trades)
    today = today or date.today()
    total_violations = sum(rule.violations for rule in rules)

    windows = {
        timeframe: UserStats(
            **_aggregate(
                [t for t in trades if in_window(t.date, timeframe, today)],
                starting_portfolio_value,
                today,
                social_connections,
                total_violations,
            )
        )
        for timeframe in WINDOWS
    }

    return UserStats(
        **_aggregate(
            trades, starting_portfolio_value, today, social_connections, total_violations
        ),
        windows=windows,
    )
