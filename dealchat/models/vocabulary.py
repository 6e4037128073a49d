"""
Record store vocabulary.

Allow-lists shared by the validator, extractor and query synthesizer. Values
are the exact picklist strings stored in the CRM.
"""

from typing import Literal, get_args

StageName = Literal[
    "Stage 0 - Qualifying",
    "Stage 1 - Discovery",
    "Stage 2 - SQO",
    "Stage 3 - Pilot",
    "Stage 4 - Proposal",
    "Closed Won",
    "Closed Lost",
]

Segment = Literal["enterprise", "mid-market", "smb"]

Timeframe = Literal[
    "today",
    "yesterday",
    "this_week",
    "last_week",
    "this_month",
    "last_month",
    "this_quarter",
    "last_quarter",
    "this_year",
    "last_year",
    "next_7_days",
    "next_30_days",
    "last_14_days",
    "last_30_days",
    "last_60_days",
    "last_90_days",
    "custom",
]

OpportunityType = Literal["New Business", "Existing Business", "Upsell", "Renewal"]

ForecastCategory = Literal["Pipeline", "Best Case", "Commit", "Omitted", "Closed"]

BookingType = Literal["Booking", "ARR", "Recurring"]

DealType = Literal["bookings", "arr", "recurring"]

ProductLine = Literal[
    "AI-Augmented Contracting",
    "Augmented-M&A",
    "Compliance",
    "sigma",
    "Cortex",
    "Multiple",
]

DealHealth = Literal["stale", "at_risk", "hot", "stuck"]

GroupByField = Literal[
    "StageName",
    "Owner.Name",
    "Account.Industry",
    "Type",
    "ForecastCategory",
    "Product_Line__c",
]

Metric = Literal["count", "sum_amount", "avg_amount", "sum_weighted", "avg_days_in_stage"]

SortField = Literal[
    "Amount",
    "CloseDate",
    "Target_LOI_Date__c",
    "CreatedDate",
    "LastActivityDate",
    "Probability",
    "Name",
    "Days_in_Stage__c",
    "RecordCount",
    "TotalAmount",
    "AverageAmount",
    "TotalWeighted",
]

STAGES: tuple[str, ...] = get_args(StageName)
SEGMENTS: tuple[str, ...] = get_args(Segment)
TIMEFRAMES: tuple[str, ...] = get_args(Timeframe)
OPPORTUNITY_TYPES: tuple[str, ...] = get_args(OpportunityType)
FORECAST_CATEGORIES: tuple[str, ...] = get_args(ForecastCategory)
PRODUCT_LINES: tuple[str, ...] = get_args(ProductLine)
GROUP_BY_FIELDS: tuple[str, ...] = get_args(GroupByField)
METRICS: tuple[str, ...] = get_args(Metric)
SORT_FIELDS: tuple[str, ...] = get_args(SortField)

OPEN_STAGES: tuple[str, ...] = STAGES[:5]

STAGE_BY_NUMBER: dict[str, str] = {
    "0": "Stage 0 - Qualifying",
    "1": "Stage 1 - Discovery",
    "2": "Stage 2 - SQO",
    "3": "Stage 3 - Pilot",
    "4": "Stage 4 - Proposal",
}

STAGE_BY_KEYWORD: dict[str, str] = {
    "qualifying": "Stage 0 - Qualifying",
    "discovery": "Stage 1 - Discovery",
    "sqo": "Stage 2 - SQO",
    "pilot": "Stage 3 - Pilot",
    "proposal": "Stage 4 - Proposal",
}

# Amount bands, expressed as predicates on the Amount field.
SEGMENT_RULES: dict[str, str] = {
    "enterprise": "Amount >= 100000",
    "mid-market": "Amount >= 25000 AND Amount < 100000",
    "smb": "Amount < 25000",
}

DEAL_HEALTH_RULES: dict[str, str] = {
    "stale": "LastActivityDate < LAST_N_DAYS:30",
    "stuck": "Days_in_Stage__c > 60",
    "at_risk": "LastActivityDate < LAST_N_DAYS:14 AND Probability < 50",
    "hot": "Probability >= 75",
}

MAX_AMOUNT = 1_000_000_000
MAX_DATE_RANGE_DAYS = 2 * 365
