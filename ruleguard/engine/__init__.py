"""Compliance, progress and achievement engine for RuleGuard."""

from ruleguard.engine.achievements import AchievementEngine, AchievementTracker
from ruleguard.engine.compliance import (
    AdvisoryWarning,
    AppliedRule,
    ComplianceEvaluator,
    Evaluation,
    TradeDraft,
)
from ruleguard.engine.journal import SubmissionResult, TradeJournal
from ruleguard.engine.migrations import MigrationBackup, MigrationReport, MigrationRunner
from ruleguard.engine.progress import ProgressAccumulator
from ruleguard.engine.stats import build_user_stats

__all__ = [
    "AchievementEngine",
    "AchievementTracker",
    "AdvisoryWarning",
    "AppliedRule",
    "ComplianceEvaluator",
    "Evaluation",
    "TradeDraft",
    "SubmissionResult",
    "TradeJournal",
    "MigrationBackup",
    "MigrationReport",
    "MigrationRunner",
    "ProgressAccumulator",
    "build_user_stats",
]
