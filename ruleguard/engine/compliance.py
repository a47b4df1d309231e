"""Compliance evaluation for trade submissions.

Turns a draft trade plus the rules the trader applied into a finalized
TradeEntry, and keeps the rule catalog's violation counters in sync.
Plan checks on target/stop are advisory only and never block a trade.
"""

import logging
import math
from datetime import date as date_type
from datetime import datetime
from typing import Iterable, Optional, Union

from pydantic import BaseModel, Field
from pydantic import ValidationError as PydanticValidationError

from ruleguard.db.store import RULES, DataStore
from ruleguard.errors import ValidationError
from ruleguard.models import Direction, Rule, RuleOutcome, TradeEntry

logger = logging.getLogger(__name__)

NumberInput = Union[str, int, float]


class TradeDraft(BaseModel):
    """A trade as entered, before numbers are parsed and fields derived."""

    date: date_type = Field(..., description="Trade date")
    symbol: str = Field(..., min_length=1, description="Trading symbol")
    direction: Direction = Field(..., description="Trade direction")
    entry: NumberInput = Field(..., description="Entry price as entered")
    exit: NumberInput = Field(..., description="Exit price as entered")
    size: NumberInput = Field(..., description="Position size as entered")
    target: Optional[NumberInput] = Field(default=None, description="Planned target")
    stop: Optional[NumberInput] = Field(default=None, description="Planned stop")
    emotion: str = Field(default="Neutral", description="Emotion tag")
    notes: str = Field(default="", description="Free-text notes")
    tags: list[str] = Field(default_factory=list, description="User-entered tags")

    model_config = {"frozen": True}


class AppliedRule(BaseModel):
    """A rule the trader applied to a trade, with its outcome.

    Either ``rule_id`` names a catalog rule, or ``text`` describes an
    ad-hoc rule. Ad-hoc rules with ``promote`` set become catalog rules.
    """

    rule_id: Optional[str] = Field(default=None, description="Catalog rule id")
    text: str = Field(default="", description="Rule text")
    outcome: RuleOutcome = Field(default="NotApplicable", description="Outcome")
    tags: list[str] = Field(default_factory=list, description="Ad-hoc rule tags")
    category: str = Field(default="custom", description="Category when promoted")
    promote: bool = Field(default=False, description="Add to the catalog if missing")

    model_config = {"frozen": True}

    @property
    def reference(self) -> str:
        """Key under which the trade records this rule."""
        return self.rule_id or self.text.strip()


class AdvisoryWarning(BaseModel):
    """A non-blocking warning about a trade's plan."""

    category: str = Field(..., description="Warning category")
    message: str = Field(..., description="Human readable message")

    model_config = {"frozen": True}

    def __str__(self) -> str:
        return f"[{self.category}] {self.message}"


class Evaluation(BaseModel):
    """Result of evaluating a draft. Nothing has been persisted yet."""

    trade: TradeEntry
    warnings: list[AdvisoryWarning] = Field(default_factory=list)
    applied: list[AppliedRule] = Field(
        default_factory=list, description="Applied rules with catalog ids resolved"
    )
    promoted_rules: list[Rule] = Field(
        default_factory=list, description="Ad-hoc rules to add to the catalog"
    )

    model_config = {"frozen": True}


# ==================== Derived fields ====================


def calculate_pnl(direction: str, entry: float, exit_price: float, size: float) -> float:
    """Calculate realized P&L rounded to 2 decimals.

    Args:
        direction: "Long" or "Short".
        entry: Entry price.
        exit_price: Exit price.
        size: Position size.

    Returns:
        P&L; a Short gains when the exit is below the entry.
    """
    move = exit_price - entry if direction == "Long" else entry - exit_price
    # + 0.0 normalizes -0.0
    return round(move * size, 2) + 0.0


def is_rule_compliant(outcomes: Iterable[str]) -> bool:
    """A trade is compliant with no Broken outcome and at least one Followed.

    A trade with no rules, or only NotApplicable ones, is not compliant.
    """
    outcomes = list(outcomes)
    return outcomes.count("Broken") == 0 and outcomes.count("Followed") >= 1


def merge_tags(*groups: Iterable[str]) -> list[str]:
    """Union of tag groups, keeping the first spelling and order of each tag."""
    merged: list[str] = []
    seen: set[str] = set()
    for group in groups:
        for tag in group:
            tag = tag.strip()
            if tag and tag.lower() not in seen:
                seen.add(tag.lower())
                merged.append(tag)
    return merged


def parse_number(value: Optional[NumberInput], field_name: str) -> float:
    """Parse user input as a finite number.

    Raises:
        ValidationError: If the value is missing, not numeric or not finite.
    """
    if value is None or isinstance(value, bool):
        raise ValidationError(f"{field_name} is required")
    if isinstance(value, str):
        value = value.strip()
        if not value:
            raise ValidationError(f"{field_name} is required")
    try:
        number = float(value)
    except (TypeError, ValueError):
        raise ValidationError(f"{field_name} must be a number, got {value!r}")
    if not math.isfinite(number):
        raise ValidationError(f"{field_name} must be a finite number, got {value!r}")
    return number


def parse_optional_number(value: Optional[NumberInput], field_name: str) -> Optional[float]:
    """Like parse_number, but empty input yields None."""
    if value is None or (isinstance(value, str) and not value.strip()):
        return None
    return parse_number(value, field_name)


# ==================== Plan checks ====================


def check_target(direction: str, entry: float, target: Optional[float]) -> Optional[AdvisoryWarning]:
    """Warn when the target sits on the losing side of the entry."""
    if target is None:
        return None
    if direction == "Long" and target <= entry:
        return AdvisoryWarning(
            category="TARGET",
            message=f"Target {target} is not above entry {entry} on a Long trade.",
        )
    if direction == "Short" and target >= entry:
        return AdvisoryWarning(
            category="TARGET",
            message=f"Target {target} is not below entry {entry} on a Short trade.",
        )
    return None


def check_stop(direction: str, entry: float, stop: Optional[float]) -> Optional[AdvisoryWarning]:
    """Warn when the stop sits on the winning side of the entry."""
    if stop is None:
        return None
    if direction == "Long" and stop >= entry:
        return AdvisoryWarning(
            category="STOP",
            message=f"Stop {stop} is not below entry {entry} on a Long trade.",
        )
    if direction == "Short" and stop <= entry:
        return AdvisoryWarning(
            category="STOP",
            message=f"Stop {stop} is not above entry {entry} on a Short trade.",
        )
    return None


def check_exit_at_target(exit_price: float, target: Optional[float]) -> Optional[AdvisoryWarning]:
    """Flag exits recorded exactly at the planned target."""
    if target is not None and math.isclose(exit_price, target, abs_tol=1e-9):
        return AdvisoryWarning(
            category="EXIT_AT_TARGET",
            message="Exit equals the planned target. Confirm the fill price.",
        )
    return None


def check_trade_plan(
    direction: str,
    entry: float,
    exit_price: float,
    target: Optional[float],
    stop: Optional[float],
) -> list[AdvisoryWarning]:
    """Run all plan checks and collect the warnings."""
    checks = [
        check_target(direction, entry, target),
        check_stop(direction, entry, stop),
        check_exit_at_target(exit_price, target),
    ]
    return [warning for warning in checks if warning is not None]


# ==================== Rule catalog ====================


def apply_outcome(rule: Rule, outcome: str, on: date_type) -> Rule:
    """Update a rule's counters for one trade outcome.

    Broken increments the counter and stamps the date. Followed decrements
    it, floored at 0, and clears the date once it reaches 0.
    """
    if outcome == "Broken":
        return rule.model_copy(
            update={"violations": rule.violations + 1, "last_violation": on}
        )
    if outcome == "Followed":
        violations = max(0, rule.violations - 1)
        return rule.model_copy(
            update={
                "violations": violations,
                "last_violation": rule.last_violation if violations > 0 else None,
            }
        )
    return rule


class RuleCatalog:
    """The persisted rule documents with lookup and counter updates.

    Documents that do not validate are carried through untouched.
    """

    def __init__(self, documents: list):
        self._documents = list(documents)
        self._rules: list[Optional[Rule]] = []
        for doc in self._documents:
            try:
                self._rules.append(Rule.model_validate(doc))
            except PydanticValidationError:
                logger.warning("Rule catalog holds an unreadable document; leaving it as is")
                self._rules.append(None)

    def rules(self) -> list[Rule]:
        """Get the readable rules."""
        return [rule for rule in self._rules if rule is not None]

    def _text_matches(self, text: Optional[str]) -> list[int]:
        text = (text or "").strip()
        if not text:
            return []
        return [
            i for i, rule in enumerate(self._rules) if rule is not None and rule.text == text
        ]

    def count_text(self, text: Optional[str]) -> int:
        """Number of readable rules whose text is exactly 'text'."""
        return len(self._text_matches(text))

    def _index(self, rule_id: Optional[str], text: Optional[str]) -> Optional[int]:
        if rule_id:
            for i, rule in enumerate(self._rules):
                if rule is not None and rule.id == rule_id:
                    return i
            return None

        matches = self._text_matches(text)
        if len(matches) > 1:
            logger.warning(
                "Rule text %r matches %d catalog rules; not updating any", text, len(matches)
            )
            return None
        return matches[0] if matches else None

    def find(self, rule_id: Optional[str] = None, text: Optional[str] = None) -> Optional[Rule]:
        """Find a rule by id, or by exact text when no id is given.

        Text that matches several rules finds nothing.
        """
        index = self._index(rule_id, text)
        return self._rules[index] if index is not None else None

    def add(self, rule: Rule) -> None:
        """Add a rule unless one with the same id exists."""
        if self._index(rule.id, None) is None:
            self._rules.append(rule)
            self._documents.append(rule.to_document())

    def record_outcome(
        self, rule_id: Optional[str], text: Optional[str], outcome: str, on: date_type
    ) -> Optional[Rule]:
        """Apply one outcome to the matching rule.

        Returns:
            The updated rule, or None when no single rule matches.
        """
        index = self._index(rule_id, text)
        if index is None:
            return None
        updated = apply_outcome(self._rules[index], outcome, on)
        self._rules[index] = updated
        self._documents[index] = updated.to_document()
        return updated

    def apply(self, applied: Iterable[AppliedRule], on: date_type) -> list[Rule]:
        """Apply every outcome of a trade.

        Returns:
            The rules whose counters were touched.
        """
        updated = []
        for rule in applied:
            if rule.outcome == "NotApplicable":
                continue
            result = self.record_outcome(rule.rule_id, rule.text, rule.outcome, on)
            if result is not None:
                updated.append(result)
        return updated

    def to_documents(self) -> list:
        """Serialize back to the persisted shape."""
        return list(self._documents)


# ==================== Evaluator ====================


class ComplianceEvaluator:
    """Evaluates draft trades against the rule catalog."""

    def __init__(self, data_store: DataStore):
        """Initialize the evaluator.

        Args:
            data_store: Store holding the rule catalog.
        """
        self._data_store = data_store

    def evaluate(
        self,
        draft: TradeDraft,
        applied_rules: Iterable[AppliedRule] = (),
        trade_id: Optional[int] = None,
        image_ids: Iterable[int] = (),
        now: Optional[datetime] = None,
    ) -> Evaluation:
        """Finalize a draft without persisting anything.

        Args:
            draft: Trade as entered.
            applied_rules: Rules applied to the trade with their outcomes.
            trade_id: Id to assign. Defaults to the creation time in ms.
            image_ids: Attachment ids already saved for the trade.
            now: Creation timestamp.

        Returns:
            The finalized trade, advisory warnings and catalog changes.

        Raises:
            ValidationError: If a number cannot be parsed or a rule is
                missing both id and text, or is applied twice.
        """
        now = now or datetime.now()
        entry = parse_number(draft.entry, "entry")
        exit_price = parse_number(draft.exit, "exit")
        size = parse_number(draft.size, "size")
        target = parse_optional_number(draft.target, "target")
        stop = parse_optional_number(draft.stop, "stop")

        catalog = RuleCatalog(self._data_store.load(RULES))
        resolved: list[AppliedRule] = []
        promoted: list[Rule] = []
        tag_groups: list[Iterable[str]] = [draft.tags]

        for applied in applied_rules:
            if not applied.reference:
                raise ValidationError("Applied rule needs an id or text")

            rule = catalog.find(applied.rule_id, applied.text)
            if rule is None and applied.rule_id is None and applied.promote:
                if catalog.count_text(applied.text):
                    logger.warning(
                        "Not promoting %r: its text already matches several rules",
                        applied.text.strip(),
                    )
                else:
                    rule = Rule(
                        text=applied.text.strip(),
                        category=applied.category,
                        tags=merge_tags(applied.tags),
                        created_at=now,
                    )
                    catalog.add(rule)
                    promoted.append(rule)
                    logger.info("Promoting ad-hoc rule %r to the catalog", rule.text)

            if rule is not None:
                resolved.append(applied.model_copy(update={"rule_id": rule.id, "text": rule.text}))
                tag_groups.append(rule.tags)
            else:
                if applied.rule_id:
                    logger.warning("Rule %s is not in the catalog", applied.rule_id)
                resolved.append(applied)
            tag_groups.append(applied.tags)

        references = [rule.reference for rule in resolved]
        duplicates = sorted({ref for ref in references if references.count(ref) > 1})
        if duplicates:
            raise ValidationError(f"Rules applied more than once: {', '.join(duplicates)}")

        outcomes = {rule.reference: rule.outcome for rule in resolved}
        direction = draft.direction

        trade = TradeEntry(
            id=trade_id if trade_id is not None else int(now.timestamp() * 1000),
            created_at=now,
            date=draft.date,
            symbol=draft.symbol.strip().upper(),
            direction=direction,
            entry=entry,
            exit=exit_price,
            size=size,
            target=target,
            stop=stop,
            emotion=draft.emotion,
            notes=draft.notes.strip(),
            image_ids=list(image_ids),
            applied_rules=references,
            rule_outcomes=outcomes,
            tags=merge_tags(*tag_groups),
            pnl=calculate_pnl(direction, entry, exit_price, size),
            rule_compliant=is_rule_compliant(outcomes.values()),
        )

        warnings = check_trade_plan(direction, entry, exit_price, target, stop)
        for warning in warnings:
            logger.info("Trade %s: %s", trade.id, warning)

        return Evaluation(
            trade=trade, warnings=warnings, applied=resolved, promoted_rules=promoted
        )

    @staticmethod
    def apply_to_catalog(documents: list, evaluation: Evaluation) -> list:
        """Compute the rule catalog after an evaluated trade.

        Args:
            documents: Current persisted rule documents.
            evaluation: Result of evaluate().

        Returns:
            The new rule documents.
        """
        catalog = RuleCatalog(documents)
        for rule in evaluation.promoted_rules:
            catalog.add(rule)
        catalog.apply(evaluation.applied, evaluation.trade.date)
        return catalog.to_documents()

    def sync_rule_catalog(self, evaluation: Evaluation) -> list[Rule]:
        """Persist the counter changes of an evaluated trade.

        Reads the current catalog, so concurrent updates are not lost.

        Returns:
            The catalog after the update.
        """
        documents = self._data_store.update_collection(
            RULES, lambda docs: self.apply_to_catalog(docs, evaluation)
        )
        return RuleCatalog(documents).rules()
