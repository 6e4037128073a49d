"""
Intent Models

The classified purpose of a user message plus its extracted parameters.
"""

from datetime import UTC, datetime
from enum import StrEnum
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field


class IntentType(StrEnum):
    GREETING = "greeting"
    CONVERSATION = "conversation"
    ACCOUNT_LOOKUP = "account_lookup"
    ACCOUNT_PLAN = "account_plan"
    MOVE_TO_NURTURE = "move_to_nurture"
    CLOSE_ACCOUNT_LOST = "close_account_lost"
    CONTRACT_QUERY = "contract_query"
    WEIGHTED_SUMMARY = "weighted_summary"
    COUNT_QUERY = "count_query"
    AVERAGE_DAYS_QUERY = "average_days_query"
    PIPELINE_SUMMARY = "pipeline_summary"
    DEAL_LOOKUP = "deal_lookup"
    ACTIVITY_CHECK = "activity_check"
    FORECASTING = "forecasting"
    TREND_ANALYSIS = "trend_analysis"
    ACCOUNT_FIELD_LOOKUP = "account_field_lookup"
    ACCOUNT_STAGE_LOOKUP = "account_stage_lookup"
    UNKNOWN_QUERY = "unknown_query"


# Intents answered without querying the record store.
CONVERSATIONAL_INTENTS = frozenset(
    {IntentType.GREETING, IntentType.CONVERSATION, IntentType.UNKNOWN_QUERY}
)

# Intents that change records; they are classified but never executed here.
ACTION_INTENTS = frozenset(
    {IntentType.MOVE_TO_NURTURE, IntentType.CLOSE_ACCOUNT_LOST}
)

# Intents recognized but whose documents live outside the record store.
UNSUPPORTED_INTENTS = frozenset(
    {IntentType.ACCOUNT_PLAN, IntentType.CONTRACT_QUERY}
)

RefinementType = Literal["filter_add", "filter_replace", "drill_down"]


class Refinement(BaseModel):
    """How a follow-up message modifies the previous turn."""

    type: RefinementType
    target: str | None = Field(None, description="Entity key replaced by filter_replace")

    model_config = ConfigDict(frozen=True)


class Intent(BaseModel):
    """Structured result of intent extraction. Immutable once created."""

    intent: IntentType
    entities: dict[str, Any] = Field(default_factory=dict)
    confidence: float = Field(..., ge=0.0, le=1.0)
    follow_up: bool = False
    refinement: Refinement | None = None
    explanation: str = ""
    original_message: str = ""
    timestamp: datetime = Field(default_factory=lambda: datetime.now(UTC))

    model_config = ConfigDict(frozen=True)

    @property
    def needs_query(self) -> bool:
        """True when answering requires a record store round-trip."""
        return not (
            self.intent in CONVERSATIONAL_INTENTS
            or self.intent in ACTION_INTENTS
            or self.intent in UNSUPPORTED_INTENTS
        )

    def summary(self) -> dict[str, Any]:
        """Compact form stored in conversation context."""
        return {
            "intent": self.intent.value,
            "entities": dict(self.entities),
            "confidence": self.confidence,
            "original_message": self.original_message,
            "timestamp": self.timestamp.isoformat(),
        }
