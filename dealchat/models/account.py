"""Account resolution models."""

from typing import Literal

from pydantic import BaseModel, ConfigDict, Field


class AccountCandidate(BaseModel):
    """A company record returned by the canonical record lookup."""

    id: str
    name: str
    owner: str | None = None

    model_config = ConfigDict(frozen=True)


class AccountMatch(BaseModel):
    """A free-text company name resolved to a canonical account."""

    id: str
    name: str
    owner: str | None = None
    match_type: Literal["exact", "fuzzy"]
    confidence: float = Field(..., ge=0.0, le=1.0)
    alternatives: list[str] = Field(default_factory=list)

    model_config = ConfigDict(frozen=True)

    @classmethod
    def exact(cls, candidate: AccountCandidate) -> "AccountMatch":
        return cls(
            id=candidate.id,
            name=candidate.name,
            owner=candidate.owner,
            match_type="exact",
            confidence=1.0,
        )
