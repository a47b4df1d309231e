"""Achievement engine for RuleGuard.

Evaluates the static achievement and challenge catalog against a UserStats
snapshot. The engine is stateless; unlock state is owned by
AchievementTracker, which only ever adds ids.
"""

import logging
import math
import operator
from datetime import date, datetime, time, timedelta
from typing import Iterable, Optional, Union

from ruleguard.db.store import UNLOCKED_ACHIEVEMENTS, DataStore
from ruleguard.models import (
    AchievementDefinition,
    MilestoneChallenge,
    Requirement,
    Reward,
    UserStats,
)

logger = logging.getLogger(__name__)

Definition = Union[AchievementDefinition, MilestoneChallenge]

ACHIEVEMENT_TIERS = {
    "bronze": {"color": "#CD7F32", "experience": 100, "threshold": 1},
    "silver": {"color": "#C0C0C0", "experience": 250, "threshold": 5},
    "gold": {"color": "#FFD700", "experience": 500, "threshold": 25},
    "platinum": {"color": "#E5E4E2", "experience": 1000, "threshold": 100},
    "diamond": {"color": "#B9F2FF", "experience": 2500, "threshold": 500},
}

# Requirement type -> UserStats attribute
STAT_FIELDS = {
    "trades": "total_trades",
    "streak": "current_streak",
    "compliance": "compliance_rate",
    "growth": "portfolio_growth",
    "social": "social_connections",
    "time": "active_days",
}


def _eq(value: float, target: float) -> bool:
    return math.isclose(value, target, rel_tol=1e-9, abs_tol=1e-9)


OPERATORS = {
    "gte": operator.ge,
    "lte": operator.le,
    "eq": _eq,
}


def _req(type_: str, target: float, op: str = "gte", timeframe: Optional[str] = None) -> Requirement:
    return Requirement(type=type_, target=target, operator=op, timeframe=timeframe)


def _xp(value: int) -> Reward:
    return Reward(type="experience", value=value, description=f"{value} XP bonus")


ACHIEVEMENTS: list[AchievementDefinition] = [
    # Beginner trading
    AchievementDefinition(
        id="first-trade",
        title="First Steps",
        description="Complete your very first trade",
        icon="🎯",
        category="trading",
        tier="bronze",
        rarity="common",
        requirements=[_req("trades", 1)],
        rewards=[
            _xp(100),
            Reward(type="badge", value="first-trade", description="First Trade badge"),
        ],
        max_progress=1,
        tags=["beginner", "milestone"],
    ),
    AchievementDefinition(
        id="trading-apprentice",
        title="Trading Apprentice",
        description="Complete 10 trades",
        icon="📈",
        category="trading",
        tier="bronze",
        rarity="common",
        requirements=[_req("trades", 10)],
        rewards=[
            _xp(250),
            Reward(type="title", value="Apprentice Trader", description="Special title"),
        ],
        max_progress=10,
        tags=["beginner", "volume"],
    ),
    # Discipline and compliance
    AchievementDefinition(
        id="rule-follower",
        title="Rule Follower",
        description="Maintain 90% rule compliance for 10 trades",
        icon="✅",
        category="discipline",
        tier="silver",
        rarity="uncommon",
        requirements=[_req("compliance", 90), _req("trades", 10)],
        rewards=[
            _xp(500),
            Reward(type="badge", value="rule-follower", description="Rule Follower badge"),
        ],
        max_progress=10,
        tags=["discipline", "compliance"],
    ),
    AchievementDefinition(
        id="discipline-master",
        title="Discipline Master",
        description="Achieve 95% rule compliance for 50 trades",
        icon="👑",
        category="discipline",
        tier="gold",
        rarity="rare",
        requirements=[_req("compliance", 95), _req("trades", 50)],
        rewards=[
            _xp(1000),
            Reward(type="title", value="Discipline Master", description="Elite title"),
            Reward(type="avatar", value="crown-avatar", description="Exclusive crown avatar"),
        ],
        max_progress=50,
        tags=["discipline", "mastery", "elite"],
    ),
    # Streaks
    AchievementDefinition(
        id="week-warrior",
        title="Week Warrior",
        description="Trade consistently for 7 days",
        icon="🔥",
        category="streak",
        tier="bronze",
        rarity="common",
        requirements=[_req("streak", 7, timeframe="daily")],
        rewards=[
            _xp(200),
            Reward(type="badge", value="week-warrior", description="Week Warrior badge"),
        ],
        max_progress=7,
        tags=["consistency", "streak"],
    ),
    AchievementDefinition(
        id="month-master",
        title="Month Master",
        description="Maintain a 30-day trading streak",
        icon="🌟",
        category="streak",
        tier="gold",
        rarity="rare",
        requirements=[_req("streak", 30, timeframe="daily")],
        rewards=[
            _xp(1500),
            Reward(type="title", value="Month Master", description="Consistency champion"),
            Reward(type="theme", value="golden-theme", description="Exclusive golden theme"),
        ],
        max_progress=30,
        tags=["consistency", "dedication", "elite"],
    ),
    # Growth and performance
    AchievementDefinition(
        id="profit-maker",
        title="Profit Maker",
        description="Achieve 10% portfolio growth",
        icon="💰",
        category="growth",
        tier="silver",
        rarity="uncommon",
        requirements=[_req("growth", 10)],
        rewards=[
            _xp(750),
            Reward(type="badge", value="profit-maker", description="Profit Maker badge"),
        ],
        max_progress=10,
        tags=["performance", "growth"],
    ),
    AchievementDefinition(
        id="growth-champion",
        title="Growth Champion",
        description="Achieve 50% portfolio growth",
        icon="🚀",
        category="growth",
        tier="platinum",
        rarity="epic",
        requirements=[_req("growth", 50)],
        rewards=[
            _xp(2500),
            Reward(type="title", value="Growth Champion", description="Performance elite"),
            Reward(
                type="feature",
                value="advanced-analytics",
                description="Unlock advanced analytics",
            ),
        ],
        max_progress=50,
        tags=["performance", "elite", "growth"],
    ),
    # Social
    AchievementDefinition(
        id="social-butterfly",
        title="Social Butterfly",
        description="Connect with 5 trading friends",
        icon="🦋",
        category="social",
        tier="bronze",
        rarity="common",
        requirements=[_req("social", 5)],
        rewards=[
            _xp(300),
            Reward(
                type="feature",
                value="group-challenges",
                description="Unlock group challenges",
            ),
        ],
        max_progress=5,
        tags=["social", "networking"],
    ),
    # Hidden
    AchievementDefinition(
        id="perfect-month",
        title="Perfect Month",
        description="Complete a month with 100% rule compliance",
        icon="💎",
        category="mastery",
        tier="diamond",
        rarity="legendary",
        requirements=[
            _req("compliance", 100, "eq", "monthly"),
            _req("trades", 20, "gte", "monthly"),
        ],
        rewards=[
            _xp(5000),
            Reward(type="title", value="Perfect Trader", description="Legendary status"),
            Reward(type="premium", value=30, description="30 days premium access", duration=30),
            Reward(type="avatar", value="diamond-crown", description="Exclusive diamond avatar"),
        ],
        max_progress=1,
        is_hidden=True,
        tags=["legendary", "perfect", "mastery"],
    ),
]


def build_daily_challenges(day: Optional[date] = None) -> list[MilestoneChallenge]:
    """Build the challenges running on a given day.

    Args:
        day: Challenge day. Defaults to today.

    Returns:
        Challenges whose window covers that whole day.
    """
    day = day or date.today()
    start = datetime.combine(day, time.min)
    end = start + timedelta(days=1) - timedelta(microseconds=1)
    return [
        MilestoneChallenge(
            id=f"daily-compliance-{day.isoformat()}",
            title="Daily Discipline",
            description="Complete 3 rule-compliant trades today",
            icon="⚡",
            type="daily",
            difficulty="easy",
            requirements=[
                _req("trades", 3, "gte", "daily"),
                _req("compliance", 100, "eq", "daily"),
            ],
            rewards=[_xp(150)],
            start_date=start,
            end_date=end,
        )
    ]


def requirement_value(requirement: Requirement, stats: UserStats) -> Optional[float]:
    """Get the statistic a requirement compares.

    Streak requirements always read the day-based streak; their timeframe
    names the streak unit rather than a window.

    Returns:
        The value, or None when the timeframe window is not in the snapshot.
    """
    if requirement.type == "streak":
        scoped = stats
    else:
        scoped = stats.for_timeframe(requirement.timeframe)
    if scoped is None:
        return None
    return float(getattr(scoped, STAT_FIELDS[requirement.type]))


def requirement_met(requirement: Requirement, stats: UserStats) -> bool:
    """Compare one requirement against the snapshot."""
    value = requirement_value(requirement, stats)
    if value is None:
        return False
    return OPERATORS[requirement.operator](value, requirement.target)


class AchievementEngine:
    """Stateless evaluator over an achievement and challenge catalog."""

    def __init__(
        self,
        achievements: Optional[Iterable[AchievementDefinition]] = None,
        challenges: Optional[Iterable[MilestoneChallenge]] = None,
    ):
        """Initialize the engine.

        Args:
            achievements: Achievement catalog. Defaults to ACHIEVEMENTS.
            challenges: Challenge catalog. Defaults to today's daily challenges.
        """
        self._achievements = {
            a.id: a for a in (ACHIEVEMENTS if achievements is None else achievements)
        }
        self._challenges = {
            c.id: c for c in (build_daily_challenges() if challenges is None else challenges)
        }

    @property
    def achievements(self) -> list[AchievementDefinition]:
        """All achievements in catalog order."""
        return list(self._achievements.values())

    def get(self, achievement_id: str) -> Optional[AchievementDefinition]:
        """Get an achievement by id."""
        return self._achievements.get(achievement_id)

    def is_satisfied(self, definition: Definition, stats: UserStats) -> bool:
        """True iff every requirement of the definition holds for ``stats``."""
        return all(requirement_met(r, stats) for r in definition.requirements)

    def check_achievements(self, stats: UserStats) -> list[AchievementDefinition]:
        """Get the achievements satisfied by the snapshot.

        The caller diffs the result against already unlocked ids.
        """
        return [a for a in self._achievements.values() if self.is_satisfied(a, stats)]

    def get_by_category(self, category: str) -> list[AchievementDefinition]:
        """Get achievements in a category."""
        return [a for a in self._achievements.values() if a.category == category]

    def get_by_tier(self, tier: str) -> list[AchievementDefinition]:
        """Get achievements of a tier."""
        return [a for a in self._achievements.values() if a.tier == tier]

    def get_active_challenges(self, now: Optional[datetime] = None) -> list[MilestoneChallenge]:
        """Get challenges that are active and whose window contains ``now``."""
        now = now or datetime.now()
        return [
            c
            for c in self._challenges.values()
            if c.is_active and c.start_date <= now <= c.end_date
        ]

    def check_challenges(
        self, stats: UserStats, now: Optional[datetime] = None
    ) -> list[MilestoneChallenge]:
        """Get the active challenges satisfied by the snapshot."""
        return [c for c in self.get_active_challenges(now) if self.is_satisfied(c, stats)]

    def progress_for(self, definition: AchievementDefinition, stats: UserStats) -> float:
        """Progress toward an achievement, between 0 and its max_progress.

        The bar follows the requirement whose target equals max_progress;
        definitions without one show all-or-nothing progress.
        """
        if self.is_satisfied(definition, stats):
            return definition.max_progress
        for requirement in definition.requirements:
            if requirement.operator == "gte" and requirement.target == definition.max_progress:
                value = requirement_value(requirement, stats) or 0.0
                return max(0.0, min(value, definition.max_progress))
        return 0.0

    def calculate_total_experience(self, achievement_ids: Iterable[str]) -> int:
        """Sum the experience rewards of the given achievements."""
        total = 0
        for achievement_id in achievement_ids:
            achievement = self._achievements.get(achievement_id)
            if achievement is None:
                continue
            for reward in achievement.rewards:
                if reward.type == "experience":
                    total += int(reward.value)
                    break
        return total


class AchievementTracker:
    """Owns the persisted unlock state. Unlocks are never revoked."""

    def __init__(self, data_store: DataStore, engine: Optional[AchievementEngine] = None):
        """Initialize the tracker.

        Args:
            data_store: Store holding the unlocked ids.
            engine: Engine to evaluate with. Defaults to the built-in catalog.
        """
        self._data_store = data_store
        self.engine = engine or AchievementEngine()

    def unlocked_ids(self) -> list[str]:
        """Get the ids unlocked so far."""
        return self._data_store.get_unlocked_achievements()

    def unlock(self, stats: UserStats) -> list[AchievementDefinition]:
        """Unlock every newly satisfied achievement.

        Args:
            stats: Current snapshot.

        Returns:
            Only the achievements unlocked by this call.
        """
        satisfied = self.engine.check_achievements(stats)
        newly: list[AchievementDefinition] = []

        def merge(ids: list) -> list:
            newly.clear()
            known = {str(i) for i in ids}
            added = [a for a in satisfied if a.id not in known]
            newly.extend(added)
            return list(ids) + [a.id for a in added]

        self._data_store.update_collection(UNLOCKED_ACHIEVEMENTS, merge)
        for achievement in newly:
            logger.info("Achievement unlocked: %s", achievement.id)
        return list(newly)
