"""Achievement and challenge definition models."""

from datetime import datetime
from typing import Literal, Optional, Union

from pydantic import BaseModel, Field

from ruleguard.models.stats import Timeframe

RequirementType = Literal["trades", "streak", "compliance", "growth", "social", "time"]
Operator = Literal["gte", "lte", "eq"]


class Requirement(BaseModel):
    """A single comparison against one user statistic."""

    type: RequirementType = Field(..., description="Statistic to compare")
    target: float = Field(..., description="Target value")
    operator: Operator = Field(default="gte", description="Comparison operator")
    timeframe: Optional[Timeframe] = Field(
        default=None, description="Window over the trade set"
    )

    model_config = {"frozen": True}


class Reward(BaseModel):
    """A reward carried by an achievement (granted by an external collaborator)."""

    type: Literal[
        "experience", "badge", "title", "avatar", "theme", "feature", "premium"
    ] = Field(..., description="Reward type")
    value: Union[int, str] = Field(..., description="Reward value")
    description: str = Field(default="", description="Reward description")
    duration: Optional[int] = Field(
        default=None, description="Duration in days for temporary rewards"
    )

    model_config = {"frozen": True}


class AchievementDefinition(BaseModel):
    """Immutable catalog entry for an achievement."""

    id: str = Field(..., min_length=1, description="Achievement id")
    title: str = Field(..., description="Display title")
    description: str = Field(default="", description="Display description")
    icon: str = Field(default="", description="Display icon")
    category: Literal[
        "trading", "discipline", "growth", "social", "streak", "mastery"
    ] = Field(..., description="Achievement category")
    tier: Literal["bronze", "silver", "gold", "platinum", "diamond"] = Field(
        ..., description="Achievement tier"
    )
    rarity: Literal["common", "uncommon", "rare", "epic", "legendary"] = Field(
        ..., description="Achievement rarity"
    )
    requirements: list[Requirement] = Field(..., min_length=1)
    rewards: list[Reward] = Field(default_factory=list)
    max_progress: float = Field(default=1, gt=0, description="Progress bar maximum")
    is_hidden: bool = Field(default=False, description="Hidden until unlocked")
    tags: list[str] = Field(default_factory=list)

    model_config = {"frozen": True}


class MilestoneChallenge(BaseModel):
    """A time-boxed challenge sharing the achievement requirement model."""

    id: str = Field(..., min_length=1, description="Challenge id")
    title: str = Field(..., description="Display title")
    description: str = Field(default="", description="Display description")
    icon: str = Field(default="", description="Display icon")
    type: Literal["daily", "weekly", "monthly", "special"] = Field(...)
    difficulty: Literal["easy", "medium", "hard", "expert"] = Field(default="easy")
    requirements: list[Requirement] = Field(..., min_length=1)
    rewards: list[Reward] = Field(default_factory=list)
    start_date: datetime = Field(..., description="Window start (inclusive)")
    end_date: datetime = Field(..., description="Window end (inclusive)")
    participants: int = Field(default=0, ge=0)
    is_active: bool = Field(default=True)

    model_config = {"frozen": True}
