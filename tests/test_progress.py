"""Property-based tests for the progress accumulator.

**Feature: progress-tracking**
"""

import tempfile
from datetime import date
from pathlib import Path

import pytest
from hypothesis import given, settings
from hypothesis import strategies as st

from ruleguard.config import Settings
from ruleguard.db.store import DataStore
from ruleguard.engine.progress import ProgressAccumulator, current_balance, to_units
from ruleguard.models import DailyStat, TradeEntry

DAY = date(2024, 6, 20)


@pytest.fixture
def temp_store():
    """Create a temporary data store for testing."""
    with tempfile.TemporaryDirectory() as tmpdir:
        yield DataStore(Path(tmpdir) / "test.db")


def make_trade(pnl: float, compliant: bool = True, trade_id: int = 1, day: date = DAY) -> TradeEntry:
    outcomes = {"rule-a": "Followed"} if compliant else {"rule-a": "Broken", "rule-b": "Followed"}
    return TradeEntry(
        id=trade_id,
        date=day,
        symbol="INFY",
        direction="Long",
        entry=100.0,
        exit=100.0 + pnl,
        size=1,
        applied_rules=list(outcomes),
        rule_outcomes=outcomes,
        pnl=pnl,
        rule_compliant=compliant,
    )


gains = st.lists(
    st.decimals(min_value="0.01", max_value="20", places=2).map(float),
    min_size=1,
    max_size=15,
)


class TestProgressSaturation:
    """
    **Feature: progress-tracking, Property: Target Saturation**

    *For any* sequence of qualifying gains, the completion counter never
    exceeds the target.
    """

    @given(percent_gains=gains, target=st.integers(min_value=1, max_value=20))
    @settings(max_examples=30, deadline=None)
    def test_never_exceeds_target(self, percent_gains: list[float], target: int):
        with tempfile.TemporaryDirectory() as tmpdir:
            store = DataStore(Path(tmpdir) / "test.db")
            accumulator = ProgressAccumulator(store, Settings(target_completions=target))

            previous = 0.0
            for gain in percent_gains:
                completions = accumulator.record_trade_progress(gain, True, day=DAY).completions
                assert completions <= target
                assert completions >= previous
                previous = completions

    def test_saturates_exactly_at_target(self, temp_store: DataStore):
        accumulator = ProgressAccumulator(temp_store, Settings(target_completions=5))
        accumulator.record_trade_progress(3.0, True, day=DAY)
        progress = accumulator.record_trade_progress(3.0, True, day=DAY)
        assert progress.completions == 5.0

    def test_non_qualifying_trade_is_ignored(self, temp_store: DataStore):
        accumulator = ProgressAccumulator(temp_store, Settings())
        assert accumulator.record_trade_progress(4.0, False, day=DAY).completions == 0.0
        assert accumulator.record_trade_progress(-1.0, True, day=DAY).completions == 0.0
        assert temp_store.get_daily_stats() == {}

    def test_units_follow_growth_per_completion(self, temp_store: DataStore):
        accumulator = ProgressAccumulator(temp_store, Settings(growth_per_completion=2.0))
        assert accumulator.record_trade_progress(3.0, True, day=DAY).completions == 1.5


class TestReplayDeterminism:
    """
    **Feature: progress-tracking, Property: Replay Determinism**

    *For any* set of trades on one date, the counter and daily stats are the
    same regardless of the order they are recorded in.
    """

    @given(percent_gains=gains)
    @settings(max_examples=30, deadline=None)
    def test_order_does_not_matter(self, percent_gains: list[float]):
        results = []
        for ordering in (percent_gains, list(reversed(percent_gains))):
            with tempfile.TemporaryDirectory() as tmpdir:
                store = DataStore(Path(tmpdir) / "test.db")
                accumulator = ProgressAccumulator(store, Settings(target_completions=1000))
                for gain in ordering:
                    accumulator.record_trade_progress(gain, True, day=DAY)
                results.append((accumulator.get_progress(), store.get_daily_stats()))

        assert results[0] == results[1]

    def test_unit_conversion_is_quantized(self):
        assert str(to_units(1 / 3, 1.0)) == "0.3333"


class TestTradeRecording:
    """
    **Feature: progress-tracking, Property: Daily Stats and Activity Log**

    *For any* finalized trade, compliant winners advance progress and
    non-compliant trades are counted and logged.
    """

    def test_compliant_winner_advances(self, temp_store: DataStore):
        accumulator = ProgressAccumulator(temp_store, Settings())
        progress = accumulator.record_trade(make_trade(pnl=0.5))

        assert progress.completions == 0.5
        assert temp_store.get_daily_stats() == {DAY.isoformat(): DailyStat(completions=1)}

    def test_compliant_loser_changes_nothing(self, temp_store: DataStore):
        accumulator = ProgressAccumulator(temp_store, Settings())
        accumulator.record_trade(make_trade(pnl=-2.0))

        assert accumulator.get_progress().completions == 0.0
        assert temp_store.get_daily_stats() == {}
        assert temp_store.get_activity_log() == []

    def test_violation_is_counted_and_logged(self, temp_store: DataStore):
        accumulator = ProgressAccumulator(temp_store, Settings())
        progress = accumulator.record_trade(make_trade(pnl=5.0, compliant=False, trade_id=42))

        assert progress.completions == 0.0
        assert temp_store.get_daily_stats() == {DAY.isoformat(): DailyStat(violations=1)}
        [entry] = temp_store.get_activity_log()
        assert entry.type == "violation"
        assert entry.trade_id == 42
        assert entry.rule_ids == ["rule-a"]

    @given(count=st.integers(min_value=1, max_value=12), limit=st.integers(min_value=1, max_value=5))
    @settings(max_examples=20, deadline=None)
    def test_activity_log_is_bounded(self, count: int, limit: int):
        """*For any* number of violations, the log keeps the newest ``limit``."""
        with tempfile.TemporaryDirectory() as tmpdir:
            store = DataStore(Path(tmpdir) / "test.db")
            accumulator = ProgressAccumulator(store, Settings(activity_log_limit=limit))
            for i in range(count):
                accumulator.record_trade(make_trade(pnl=1.0, compliant=False, trade_id=i))

            log = store.get_activity_log()
            assert len(log) == min(count, limit)
            assert log[-1].trade_id == count - 1
            assert store.get_daily_stats()[DAY.isoformat()].violations == count

    def test_weekly_summary_is_zero_filled(self, temp_store: DataStore):
        accumulator = ProgressAccumulator(temp_store, Settings())
        accumulator.record_trade(make_trade(pnl=1.0, day=date(2024, 6, 19)))

        summary = accumulator.weekly_summary(3, today=DAY)

        assert [day for day, _ in summary] == [
            date(2024, 6, 18),
            date(2024, 6, 19),
            date(2024, 6, 20),
        ]
        assert [stat.completions for _, stat in summary] == [0, 1, 0]


class TestCurrentBalance:
    """*For any* completion count, the balance compounds the growth rate."""

    def test_compounding(self):
        assert current_balance(0, Settings()) == 100.0
        assert current_balance(2, Settings()) == 102.01

    def test_custom_start(self):
        settings_ = Settings(starting_portfolio_value=1000, growth_per_completion=10)
        assert current_balance(1, settings_) == 1100.0
