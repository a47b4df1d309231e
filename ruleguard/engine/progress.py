"""Progress accumulation for finalized trades.

Compliant winning trades advance the gamified completion counter;
non-compliant trades are recorded in the daily stats and activity log.
"""

import logging
from datetime import date, timedelta
from decimal import ROUND_HALF_UP, Decimal
from typing import Optional

from ruleguard.config import Settings
from ruleguard.db.store import DAILY_STATS, PROGRESS, DataStore
from ruleguard.models import ActivityLogEntry, DailyStat, Progress, TradeEntry

logger = logging.getLogger(__name__)

# Progress units are kept to 4 decimals so sums are exact in any order
UNIT_QUANTUM = Decimal("0.0001")


def to_units(percent_gain: float, growth_per_completion: float) -> Decimal:
    """Convert a percent gain into progress units."""
    units = Decimal(str(percent_gain)) / Decimal(str(growth_per_completion))
    return units.quantize(UNIT_QUANTUM, rounding=ROUND_HALF_UP)


def percent_gain(pnl: float, starting_portfolio_value: float) -> float:
    """P&L as a percentage of the starting portfolio value."""
    return pnl / starting_portfolio_value * 100


def current_balance(completions: float, settings: Settings) -> float:
    """Portfolio value implied by compounding growth over the completions."""
    growth = 1 + settings.growth_per_completion / 100
    return round(settings.starting_portfolio_value * growth ** completions, 2)


class ProgressAccumulator:
    """Folds finalized trades into the completion counter and daily stats."""

    def __init__(self, data_store: DataStore, settings: Settings):
        """Initialize the accumulator.

        Args:
            data_store: Store for progress, daily stats and the activity log.
            settings: Starting value, target and growth per completion.
        """
        self._data_store = data_store
        self._settings = settings

    def get_progress(self) -> Progress:
        """Get the completion counter."""
        return self._data_store.get_progress()

    def record_trade_progress(
        self,
        percent_gain: float,
        is_positive_compliant_trade: bool,
        day: Optional[date] = None,
    ) -> Progress:
        """Add a qualifying trade's gain to the completion counter.

        The counter saturates at the configured target and never decreases
        through this path.

        Args:
            percent_gain: Trade P&L as a percentage of the starting value.
            is_positive_compliant_trade: Only True advances the counter.
            day: Trade date for the daily completion count.

        Returns:
            The counter after the update.
        """
        if not is_positive_compliant_trade or percent_gain <= 0:
            return self.get_progress()

        units = to_units(percent_gain, self._settings.growth_per_completion)
        target = Decimal(self._settings.target_completions)

        def advance(doc: dict) -> dict:
            current = Decimal(str(doc.get("completions", 0) or 0))
            return {**doc, "completions": float(min(target, current + units))}

        doc = self._data_store.update_collection(PROGRESS, advance)
        self._increment_daily(day or date.today(), "completions")
        logger.debug("Progress advanced by %s units to %s", units, doc["completions"])
        return Progress.model_validate(doc)

    def record_violation(self, trade: TradeEntry) -> None:
        """Count a non-compliant trade and log it."""
        self._increment_daily(trade.date, "violations")
        broken = [ref for ref, outcome in trade.rule_outcomes.items() if outcome == "Broken"]
        self._data_store.append_activity(
            ActivityLogEntry(type="violation", trade_id=trade.id, rule_ids=broken),
            limit=self._settings.activity_log_limit,
        )

    def record_trade(self, trade: TradeEntry) -> Progress:
        """Fold one finalized trade into progress and reporting aggregates.

        Args:
            trade: Finalized trade.

        Returns:
            The completion counter after the trade.
        """
        if not trade.rule_compliant:
            self.record_violation(trade)
            return self.get_progress()

        if trade.pnl > 0:
            gain = percent_gain(trade.pnl, self._settings.starting_portfolio_value)
            return self.record_trade_progress(gain, True, day=trade.date)

        return self.get_progress()

    def _increment_daily(self, day: date, counter: str) -> None:
        key = day.isoformat()

        def increment(stats: dict) -> dict:
            entry = {"completions": 0, "violations": 0, **stats.get(key, {})}
            entry[counter] = int(entry[counter]) + 1
            return {**stats, key: entry}

        self._data_store.update_collection(DAILY_STATS, increment)

    def weekly_summary(self, days: int = 7, today: Optional[date] = None) -> list[tuple[date, DailyStat]]:
        """Get the last ``days`` days of daily stats, oldest first.

        Days without events are returned with zero counters.
        """
        today = today or date.today()
        stats = self._data_store.get_daily_stats()
        summary = []
        for offset in range(days - 1, -1, -1):
            day = today - timedelta(days=offset)
            summary.append((day, stats.get(day.isoformat(), DailyStat())))
        return summary
