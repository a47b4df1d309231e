"""Property-based tests for the compliance evaluator.

**Feature: rule-compliance**
"""

import tempfile
from datetime import date, datetime
from pathlib import Path

import pytest
from hypothesis import given, settings
from hypothesis import strategies as st

from ruleguard.db.store import RULES, DataStore
from ruleguard.engine.compliance import (
    AppliedRule,
    ComplianceEvaluator,
    TradeDraft,
    apply_outcome,
    calculate_pnl,
    is_rule_compliant,
    merge_tags,
)
from ruleguard.errors import ValidationError
from ruleguard.models import Rule

NOW = datetime(2024, 6, 20, 15, 30)


@pytest.fixture
def temp_store():
    """Create a temporary data store for testing."""
    with tempfile.TemporaryDirectory() as tmpdir:
        yield DataStore(Path(tmpdir) / "test.db")


def make_draft(**overrides) -> TradeDraft:
    values = {
        "date": date(2024, 6, 20),
        "symbol": "infy",
        "direction": "Long",
        "entry": "150.25",
        "exit": "152.75",
        "size": "100",
    }
    values.update(overrides)
    return TradeDraft(**values)


price = st.floats(min_value=0.01, max_value=100000, allow_nan=False, allow_infinity=False)
outcome = st.sampled_from(["Followed", "Broken", "NotApplicable"])


class TestPnlCalculation:
    """
    **Feature: rule-compliance, Property: P&L Formula**

    *For any* trade, pnl is the direction-adjusted price move times size,
    rounded to 2 decimals.
    """

    def test_long_trade_pnl(self, temp_store: DataStore):
        evaluation = ComplianceEvaluator(temp_store).evaluate(make_draft(), now=NOW)
        assert evaluation.trade.pnl == 250.00

    def test_short_trade_pnl(self, temp_store: DataStore):
        draft = make_draft(direction="Short", entry="245.80", exit="248.20", size="50")
        evaluation = ComplianceEvaluator(temp_store).evaluate(draft, now=NOW)
        assert evaluation.trade.pnl == -120.00

    def test_flat_short_trade_has_no_negative_zero(self):
        pnl = calculate_pnl("Short", 100.0, 100.0, 5)
        assert pnl == 0.0
        assert str(pnl) == "0.0"

    @given(
        direction=st.sampled_from(["Long", "Short"]),
        entry=price,
        exit_price=price,
        size=st.floats(min_value=0.01, max_value=10000, allow_nan=False),
    )
    @settings(max_examples=100)
    def test_pnl_matches_formula(self, direction: str, entry: float, exit_price: float, size: float):
        """
        *For any* direction, prices and size, pnl equals the rounded
        direction-adjusted move and has at most 2 decimals.
        """
        pnl = calculate_pnl(direction, entry, exit_price, size)
        move = exit_price - entry if direction == "Long" else entry - exit_price

        assert pnl == round(move * size, 2)
        assert round(pnl, 2) == pnl

    @given(entry=price, exit_price=price, size=st.floats(min_value=0.01, max_value=10000))
    @settings(max_examples=50)
    def test_long_and_short_are_opposite(self, entry: float, exit_price: float, size: float):
        """*For any* prices, a Short trade's pnl is the negated Long pnl."""
        long_pnl = calculate_pnl("Long", entry, exit_price, size)
        short_pnl = calculate_pnl("Short", entry, exit_price, size)
        assert abs(long_pnl + short_pnl) < 0.011


class TestRuleCompliance:
    """
    **Feature: rule-compliance, Property: Compliance Flag**

    *For any* set of outcomes, a trade is compliant iff no outcome is Broken
    and at least one is Followed.
    """

    @given(outcomes=st.lists(outcome, max_size=8))
    @settings(max_examples=100)
    def test_compliance_flag(self, outcomes: list[str]):
        expected = "Broken" not in outcomes and "Followed" in outcomes
        assert is_rule_compliant(outcomes) == expected

    @given(outcomes=st.lists(outcome, max_size=6))
    @settings(max_examples=30, deadline=None)
    def test_evaluated_trade_compliance(self, outcomes: list[str]):
        """
        *For any* list of ad-hoc rule outcomes, the finalized trade carries
        the derived flag and one outcome per rule.
        """
        with tempfile.TemporaryDirectory() as tmpdir:
            store = DataStore(Path(tmpdir) / "test.db")
            applied = [
                AppliedRule(text=f"rule {i}", outcome=o) for i, o in enumerate(outcomes)
            ]
            trade = ComplianceEvaluator(store).evaluate(make_draft(), applied, now=NOW).trade

            assert trade.rule_compliant == is_rule_compliant(outcomes)
            assert trade.applied_rules == [f"rule {i}" for i in range(len(outcomes))]
            assert list(trade.rule_outcomes.values()) == outcomes

    def test_no_rules_is_not_compliant(self, temp_store: DataStore):
        trade = ComplianceEvaluator(temp_store).evaluate(make_draft(), now=NOW).trade
        assert trade.rule_compliant is False

    def test_only_not_applicable_is_not_compliant(self, temp_store: DataStore):
        applied = [AppliedRule(text="Size small", outcome="NotApplicable")]
        trade = ComplianceEvaluator(temp_store).evaluate(make_draft(), applied, now=NOW).trade
        assert trade.rule_compliant is False


class TestRuleCatalogSync:
    """
    **Feature: rule-compliance, Property: Violation Counters**

    *For any* trade, Broken rules gain a violation and Followed rules lose
    one, never dropping below zero.
    """

    def test_followed_and_broken_rules(self, temp_store: DataStore):
        rule_a = temp_store.add_rule(
            Rule(text="A", violations=2, last_violation=date(2024, 6, 1))
        )
        rule_b = temp_store.add_rule(Rule(text="B"))
        evaluator = ComplianceEvaluator(temp_store)

        evaluation = evaluator.evaluate(
            make_draft(),
            [
                AppliedRule(rule_id=rule_a.id, outcome="Followed"),
                AppliedRule(rule_id=rule_b.id, outcome="Broken"),
            ],
            now=NOW,
        )
        assert evaluation.trade.rule_compliant is False

        rules = {rule.id: rule for rule in evaluator.sync_rule_catalog(evaluation)}
        assert rules[rule_a.id].violations == 1
        assert rules[rule_a.id].last_violation == date(2024, 6, 1)
        assert rules[rule_b.id].violations == 1
        assert rules[rule_b.id].last_violation == date(2024, 6, 20)

    def test_followed_clears_last_violation_at_zero(self, temp_store: DataStore):
        rule = temp_store.add_rule(
            Rule(text="A", violations=1, last_violation=date(2024, 6, 1))
        )
        evaluator = ComplianceEvaluator(temp_store)
        evaluation = evaluator.evaluate(
            make_draft(), [AppliedRule(rule_id=rule.id, outcome="Followed")], now=NOW
        )
        [updated] = evaluator.sync_rule_catalog(evaluation)

        assert updated.violations == 0
        assert updated.last_violation is None

    @given(outcomes=st.lists(outcome, max_size=30))
    @settings(max_examples=100)
    def test_counter_never_negative(self, outcomes: list[str]):
        """
        *For any* sequence of outcomes, violations stays non-negative and is
        zero exactly when last_violation is cleared.
        """
        rule = Rule(text="Wait for confirmation")
        day = date(2024, 1, 1)
        for o in outcomes:
            rule = apply_outcome(rule, o, day)
            assert rule.violations >= 0
            assert (rule.violations == 0) == (rule.last_violation is None)

    def test_text_reference_resolves_to_rule_id(self, temp_store: DataStore):
        rule = temp_store.add_rule(Rule(text="No revenge trades", tags=["psychology"]))
        evaluation = ComplianceEvaluator(temp_store).evaluate(
            make_draft(), [AppliedRule(text="No revenge trades", outcome="Broken")], now=NOW
        )

        assert evaluation.trade.applied_rules == [rule.id]
        assert evaluation.trade.rule_outcomes == {rule.id: "Broken"}

    def test_ambiguous_text_updates_no_rule(self, temp_store: DataStore):
        temp_store.add_rule(Rule(text="Same"))
        temp_store.add_rule(Rule(text="Same"))
        evaluator = ComplianceEvaluator(temp_store)

        evaluation = evaluator.evaluate(
            make_draft(), [AppliedRule(text="Same", outcome="Broken")], now=NOW
        )
        rules = evaluator.sync_rule_catalog(evaluation)

        assert evaluation.trade.applied_rules == ["Same"]
        assert [rule.violations for rule in rules] == [0, 0]

    def test_promoted_rule_joins_catalog(self, temp_store: DataStore):
        evaluator = ComplianceEvaluator(temp_store)
        evaluation = evaluator.evaluate(
            make_draft(),
            [AppliedRule(text="Cut losers fast", outcome="Broken", tags=["risk"], promote=True)],
            now=NOW,
        )
        [promoted] = evaluation.promoted_rules
        rules = evaluator.sync_rule_catalog(evaluation)

        assert evaluation.trade.applied_rules == [promoted.id]
        assert [(r.text, r.violations, r.tags) for r in rules] == [
            ("Cut losers fast", 1, ["risk"])
        ]

    def test_ambiguous_text_is_not_promoted(self, temp_store: DataStore):
        temp_store.add_rule(Rule(text="Same"))
        temp_store.add_rule(Rule(text="Same"))
        evaluator = ComplianceEvaluator(temp_store)

        evaluation = evaluator.evaluate(
            make_draft(), [AppliedRule(text="Same", outcome="Broken", promote=True)], now=NOW
        )
        rules = evaluator.sync_rule_catalog(evaluation)

        assert evaluation.promoted_rules == []
        assert evaluation.trade.applied_rules == ["Same"]
        assert len(rules) == 2
        assert [rule.violations for rule in rules] == [0, 0]


class TestTagMerging:
    """
    **Feature: rule-compliance, Property: Tag Merge**

    *For any* trade, tags are the user tags plus every applied rule's tags,
    deduplicated case-insensitively.
    """

    def test_rule_tags_are_merged(self, temp_store: DataStore):
        rule = temp_store.add_rule(Rule(text="Trade the plan", tags=["breakout", "Discipline"]))
        draft = make_draft(tags=["Breakout", "morning"])
        applied = [
            AppliedRule(rule_id=rule.id, outcome="NotApplicable"),
            AppliedRule(text="Small size", outcome="Followed", tags=["risk", "MORNING"]),
        ]
        trade = ComplianceEvaluator(temp_store).evaluate(draft, applied, now=NOW).trade

        assert trade.tags == ["Breakout", "morning", "Discipline", "risk"]

    @given(groups=st.lists(st.lists(st.text(min_size=1, max_size=8), max_size=5), max_size=4))
    @settings(max_examples=50)
    def test_merge_has_no_case_duplicates(self, groups: list[list[str]]):
        merged = merge_tags(*groups)
        lowered = [tag.lower() for tag in merged]
        assert len(lowered) == len(set(lowered))


class TestValidation:
    """
    **Feature: rule-compliance, Property: Input Validation**

    *For any* malformed number, evaluation fails and nothing is persisted.
    """

    @pytest.mark.parametrize("field", ["entry", "exit", "size"])
    @pytest.mark.parametrize("value", ["", "abc", "inf", "nan", "1e400"])
    def test_malformed_numbers_rejected(self, temp_store: DataStore, field: str, value: str):
        with pytest.raises(ValidationError):
            ComplianceEvaluator(temp_store).evaluate(make_draft(**{field: value}), now=NOW)

    def test_malformed_target_rejected(self, temp_store: DataStore):
        with pytest.raises(ValidationError):
            ComplianceEvaluator(temp_store).evaluate(make_draft(target="soon"), now=NOW)

    def test_rejected_draft_leaves_catalog_untouched(self, temp_store: DataStore):
        rule = temp_store.add_rule(Rule(text="A"))
        version = temp_store.get_version(RULES)

        with pytest.raises(ValidationError):
            ComplianceEvaluator(temp_store).evaluate(
                make_draft(entry="x"), [AppliedRule(rule_id=rule.id, outcome="Broken")], now=NOW
            )

        assert temp_store.get_version(RULES) == version
        assert temp_store.get_rules()[0].violations == 0

    def test_duplicate_rule_rejected(self, temp_store: DataStore):
        applied = [
            AppliedRule(text="A", outcome="Followed"),
            AppliedRule(text="A", outcome="Broken"),
        ]
        with pytest.raises(ValidationError, match="more than once"):
            ComplianceEvaluator(temp_store).evaluate(make_draft(), applied, now=NOW)

    def test_rule_without_reference_rejected(self, temp_store: DataStore):
        with pytest.raises(ValidationError):
            ComplianceEvaluator(temp_store).evaluate(
                make_draft(), [AppliedRule(text="  ", outcome="Followed")], now=NOW
            )


class TestAdvisoryWarnings:
    """
    **Feature: rule-compliance, Property: Plan Warnings**

    *For any* inconsistent target or stop, a warning is returned and the
    trade is still finalized.
    """

    def _categories(self, store: DataStore, **overrides) -> list[str]:
        evaluation = ComplianceEvaluator(store).evaluate(make_draft(**overrides), now=NOW)
        return [w.category for w in evaluation.warnings]

    def test_consistent_plan_has_no_warnings(self, temp_store: DataStore):
        assert self._categories(temp_store, target="160", stop="149") == []

    def test_long_target_below_entry(self, temp_store: DataStore):
        assert self._categories(temp_store, target="150") == ["TARGET"]

    def test_long_stop_above_entry(self, temp_store: DataStore):
        assert self._categories(temp_store, stop="151") == ["STOP"]

    def test_short_plan_inverted(self, temp_store: DataStore):
        categories = self._categories(
            temp_store, direction="Short", target="151", stop="149"
        )
        assert categories == ["TARGET", "STOP"]

    def test_exit_at_target(self, temp_store: DataStore):
        assert self._categories(temp_store, target="152.75") == ["EXIT_AT_TARGET"]

    def test_blank_plan_is_ignored(self, temp_store: DataStore):
        evaluation = ComplianceEvaluator(temp_store).evaluate(
            make_draft(target="", stop="  "), now=NOW
        )
        assert evaluation.trade.target is None
        assert evaluation.trade.stop is None
        assert evaluation.warnings == []
