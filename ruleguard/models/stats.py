"""Statistics data models: daily stats, activity log, progress and user stats."""

from datetime import datetime
from typing import Literal, Optional

from pydantic import BaseModel, Field
from pydantic.alias_generators import to_camel

Timeframe = Literal["daily", "weekly", "monthly", "all-time"]


class DailyStat(BaseModel):
    """Completion and violation counters for one calendar date."""

    completions: int = Field(default=0, ge=0, description="Qualifying trades")
    violations: int = Field(default=0, ge=0, description="Non-compliant trades")

    model_config = {"frozen": True}


class ActivityLogEntry(BaseModel):
    """One append-only activity log record."""

    timestamp: datetime = Field(
        default_factory=datetime.now, description="Event timestamp"
    )
    type: Literal["violation"] = Field(default="violation", description="Event type")
    trade_id: Optional[int] = Field(default=None, description="Originating trade")
    rule_ids: list[str] = Field(
        default_factory=list, description="References of the broken rules"
    )

    model_config = {
        "frozen": True,
        "alias_generator": to_camel,
        "populate_by_name": True,
    }


class Progress(BaseModel):
    """Gamified completion counter."""

    completions: float = Field(default=0.0, ge=0, description="Completed progress units")

    model_config = {"frozen": True}


class UserStats(BaseModel):
    """Aggregate snapshot used as the sole input of the achievement engine.

    ``windows`` holds the same aggregates restricted to the trades of the
    current day, week and month.
    """

    total_trades: int = Field(default=0, ge=0, description="Number of trades")
    compliance_rate: float = Field(
        default=0.0, ge=0, le=100, description="Compliant trades percentage"
    )
    current_streak: int = Field(
        default=0, ge=0, description="Consecutive compliant trading days"
    )
    portfolio_growth: float = Field(
        default=0.0, description="Total P&L as a percentage of the starting value"
    )
    social_connections: int = Field(default=0, ge=0, description="Trading friends")
    active_days: int = Field(default=0, ge=0, description="Distinct trading days")
    total_violations: int = Field(
        default=0, ge=0, description="Sum of rule catalog violation counters"
    )
    windows: dict[str, "UserStats"] = Field(
        default_factory=dict, description="Snapshots restricted to a timeframe"
    )

    model_config = {"frozen": True}

    def for_timeframe(self, timeframe: Optional[str]) -> Optional["UserStats"]:
        """Get the snapshot for a timeframe.

        Args:
            timeframe: daily, weekly, monthly, all-time or None.

        Returns:
            The windowed snapshot, self for all-time/None, None if missing.
        """
        if timeframe is None or timeframe == "all-time":
            return self
        return self.windows.get(timeframe)


UserStats.model_rebuild()
