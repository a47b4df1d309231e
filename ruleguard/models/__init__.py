"""Data models for RuleGuard."""

from ruleguard.models.trade import Direction, RuleOutcome, TradeEntry, document_image_ids
from ruleguard.models.rule import Rule, new_rule_id
from ruleguard.models.stats import (
    ActivityLogEntry,
    DailyStat,
    Progress,
    Timeframe,
    UserStats,
)
from ruleguard.models.achievement import (
    AchievementDefinition,
    MilestoneChallenge,
    Requirement,
    Reward,
)

__all__ = [
    "Direction",
    "RuleOutcome",
    "TradeEntry",
    "document_image_ids",
    "Rule",
    "new_rule_id",
    "ActivityLogEntry",
    "DailyStat",
    "Progress",
    "Timeframe",
    "UserStats",
    "AchievementDefinition",
    "MilestoneChallenge",
    "Requirement",
    "Reward",
]
