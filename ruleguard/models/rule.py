"""Rule data model."""

import uuid
from datetime import date as date_type
from datetime import datetime
from typing import Optional

from pydantic import BaseModel, Field
from pydantic.alias_generators import to_camel


def new_rule_id() -> str:
    """Generate a stable rule identifier."""
    return uuid.uuid4().hex[:12]


class Rule(BaseModel):
    """Represents a user-defined trading rule with a running violation counter."""

    id: str = Field(default_factory=new_rule_id, description="Stable rule id")
    text: str = Field(..., min_length=1, description="Rule text")
    category: str = Field(default="custom", description="Rule category")
    tags: list[str] = Field(default_factory=list, description="Rule tags")
    active: bool = Field(default=True, description="Whether the rule is in use")
    created_at: datetime = Field(
        default_factory=datetime.now, description="Rule creation timestamp"
    )
    violations: int = Field(default=0, ge=0, description="Running violation count")
    last_violation: Optional[date_type] = Field(
        default=None, description="Date of the most recent violation"
    )

    model_config = {
        "frozen": True,
        "alias_generator": to_camel,
        "populate_by_name": True,
    }

    def to_document(self) -> dict:
        """Serialize to the persisted document shape."""
        return self.model_dump(mode="json", by_alias=True)
