"""TradeEntry data model."""

from datetime import date as date_type
from datetime import datetime
from typing import Literal, Optional

from pydantic import BaseModel, Field
from pydantic.alias_generators import to_camel

Direction = Literal["Long", "Short"]
RuleOutcome = Literal["Followed", "Broken", "NotApplicable"]


class TradeEntry(BaseModel):
    """Represents one logged trade with derived P&L and compliance."""

    id: int = Field(..., description="Trade identifier (creation time in ms)")
    created_at: datetime = Field(
        default_factory=datetime.now, description="Record creation timestamp"
    )
    date: date_type = Field(..., description="Trade date")
    symbol: str = Field(..., min_length=1, description="Trading symbol")
    direction: Direction = Field(..., alias="type", description="Trade direction")
    entry: float = Field(..., description="Entry price")
    exit: float = Field(..., description="Exit price")
    size: float = Field(..., description="Position size")
    target: Optional[float] = Field(default=None, description="Planned target price")
    stop: Optional[float] = Field(default=None, description="Planned stop price")
    emotion: str = Field(default="Neutral", description="Emotion tag")
    notes: str = Field(default="", description="Free-text notes")
    image_ids: list[int] = Field(
        default_factory=list, description="Attachment ids in the attachment store"
    )
    applied_rules: list[str] = Field(
        default_factory=list,
        description="Applied rule references (rule id, or text for ad-hoc rules)",
    )
    rule_outcomes: dict[str, RuleOutcome] = Field(
        default_factory=dict, description="Outcome per applied rule reference"
    )
    tags: list[str] = Field(default_factory=list, description="Merged tag set")
    pnl: float = Field(..., description="Realized P&L, rounded to 2 decimals")
    rule_compliant: bool = Field(..., description="Derived compliance flag")

    model_config = {
        "frozen": True,
        "alias_generator": to_camel,
        "populate_by_name": True,
    }

    def to_document(self) -> dict:
        """Serialize to the persisted document shape."""
        return self.model_dump(mode="json", by_alias=True)


def document_image_ids(doc: dict) -> list[int]:
    """Attachment ids listed by a raw trade document, readable or not."""
    ids = doc.get("imageIds") or []
    if not isinstance(ids, list):
        return []
    return [i for i in ids if isinstance(i, int) and not isinstance(i, bool)]
