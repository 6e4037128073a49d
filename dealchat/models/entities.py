"""
Entity Models

The validated parameter bag handed from the validator to the query
synthesizer. Every field is optional; unknown keys are dropped on input.
"""

from datetime import date
from typing import Annotated, Any, Literal

from pydantic import BaseModel, ConfigDict, Field, StringConstraints, field_validator, model_validator
from pydantic.alias_generators import to_camel

from dealchat.models.vocabulary import (
    MAX_AMOUNT,
    MAX_DATE_RANGE_DAYS,
    BookingType,
    DealHealth,
    DealType,
    ForecastCategory,
    GroupByField,
    Metric,
    OpportunityType,
    ProductLine,
    Segment,
    SortField,
    StageName,
    Timeframe,
)
from dealchat.utils.sanitize import sanitize_input

FreeText = Annotated[str, StringConstraints(min_length=1, max_length=100)]


class DateRange(BaseModel):
    """Inclusive custom date window."""

    start: date
    end: date

    model_config = ConfigDict(frozen=True)

    @model_validator(mode="after")
    def validate_span(self) -> "DateRange":
        if self.start > self.end:
            raise ValueError("start date cannot be after end date")
        if (self.end - self.start).days > MAX_DATE_RANGE_DAYS:
            raise ValueError("date range cannot exceed 2 years")
        return self


class AmountThreshold(BaseModel):
    """Lower and/or upper bound on deal amount."""

    min: float | None = Field(None, ge=0, le=MAX_AMOUNT)
    max: float | None = Field(None, ge=0, le=MAX_AMOUNT)

    model_config = ConfigDict(frozen=True)

    @model_validator(mode="after")
    def validate_bounds(self) -> "AmountThreshold":
        if self.min is not None and self.max is not None and self.min > self.max:
            raise ValueError("minimum amount cannot be greater than maximum amount")
        return self


class SortSpec(BaseModel):
    """Requested ordering."""

    field: SortField
    direction: Literal["asc", "desc"] = "desc"

    model_config = ConfigDict(frozen=True)

    @field_validator("direction", mode="before")
    @classmethod
    def lower_direction(cls, v: Any) -> Any:
        return v.lower() if isinstance(v, str) else v


class EntityBag(BaseModel):
    """
    Validated query parameters.

    Accepts both snake_case names and their camelCase aliases
    (``is_closed`` / ``isClosed``). Free-text fields are sanitized before
    their length constraints are checked.
    """

    timeframe: Timeframe | None = None
    custom_date_range: DateRange | None = None
    loi_date: Timeframe | None = None
    target_sign_date: Timeframe | None = None
    created_timeframe: Timeframe | None = None

    stages: list[StageName] | None = None
    segments: list[Segment] | None = None
    owners: list[FreeText] | None = None
    accounts: list[FreeText] | None = None
    industry: Annotated[str, StringConstraints(min_length=1, max_length=100)] | None = None

    amount_threshold: AmountThreshold | None = None
    type: OpportunityType | None = None
    booking_type: BookingType | None = None
    deal_type: DealType | None = None
    product_line: ProductLine | None = None
    deal_health: DealHealth | None = None

    is_closed: bool | None = None
    is_won: bool | None = None
    is_new_logo: bool | None = None
    include_account: bool | None = None
    include_forecast: bool | None = None

    stale_days: int | None = Field(None, ge=1, le=365)
    days_in_stage: int | None = Field(None, ge=1, le=365)
    probability_min: float | None = Field(None, ge=0, le=100)
    probability_max: float | None = Field(None, ge=0, le=100)
    forecast_category: list[ForecastCategory] | None = None

    group_by: list[GroupByField] | None = None
    metrics: list[Metric] | None = None
    sort_by: SortSpec | None = None
    limit: int | None = Field(None, ge=1, le=1000)

    model_config = ConfigDict(
        frozen=True,
        extra="ignore",
        alias_generator=to_camel,
        populate_by_name=True,
    )

    @field_validator("owners", "accounts", mode="before")
    @classmethod
    def sanitize_list(cls, v: Any) -> Any:
        if isinstance(v, str):
            v = [v]
        if isinstance(v, list):
            return [sanitize_input(item) for item in v]
        return v

    @field_validator("industry", mode="before")
    @classmethod
    def sanitize_text(cls, v: Any) -> Any:
        return sanitize_input(v)

    @model_validator(mode="after")
    def validate_combinations(self) -> "EntityBag":
        if self.timeframe == "custom" and self.custom_date_range is None:
            raise ValueError("custom_date_range is required when timeframe is 'custom'")
        if self.custom_date_range is not None and self.timeframe != "custom":
            raise ValueError("custom_date_range is only allowed when timeframe is 'custom'")
        if (
            self.probability_min is not None
            and self.probability_max is not None
            and self.probability_min > self.probability_max
        ):
            raise ValueError("probability_min cannot be greater than probability_max")
        return self

    def present(self) -> dict[str, Any]:
        """Return only the fields that were set, keyed by snake_case name."""
        return self.model_dump(exclude_none=True)
