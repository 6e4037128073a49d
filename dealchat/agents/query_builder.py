"""
QuerySynthesizer

Turns a validated EntityBag into a declarative Query against the
Opportunity object.

Structure:
- BASE_FIELDS are always selected; account and forecast fields are added on
  request.
- PREDICATE_RULES holds one rule per entity key. Each rule reads the bag and
  returns zero or more predicates; the WHERE clause is their conjunction.
- The date field a timeframe applies to is chosen once per query by
  select_date_field and passed to every rule.
- When group_by is present the query switches to aggregate mode: group keys
  plus named metric projections, a smaller default limit and ordering by
  total amount.

Entities are re-validated on entry and free text is sanitized again at the
point it is embedded in a predicate.
"""

import logging
from collections.abc import Callable
from dataclasses import dataclass
from datetime import UTC, date, datetime
from typing import Any

from dealchat.agents.base import BaseAgent
from dealchat.agents.validator import EntityValidator
from dealchat.config import QuerySettings, get_settings
from dealchat.models.agent import SynthesisError, ValidationError
from dealchat.models.entities import DateRange, EntityBag
from dealchat.models.query import DateFieldSelection, Query
from dealchat.models.vocabulary import DEAL_HEALTH_RULES, SEGMENT_RULES
from dealchat.utils.sanitize import sanitize_input

logger = logging.getLogger(__name__)

OPPORTUNITY = "Opportunity"
ACCOUNT = "Account"

BASE_FIELDS: tuple[str, ...] = (
    "Id",
    "Name",
    "Amount",
    "ACV__c",
    "Finance_Weighted_ACV__c",
    "StageName",
    "CloseDate",
    "Target_LOI_Date__c",
    "Type",
    "Revenue_Type__c",
    "IsClosed",
    "IsWon",
    "Probability",
    "CreatedDate",
    "LastActivityDate",
    "Days_in_Stage__c",
    "Week_Created__c",
    "NextStep",
    "Owner.Name",
    "Owner.Email",
    "AccountId",
    "Account.Name",
    "Account.Industry",
    "Product_Line__c",
)

ACCOUNT_FIELDS: tuple[str, ...] = (
    "Account.Website",
    "Account.AnnualRevenue",
    "Account.Key_Decision_Makers__c",
    "Account.Legal_Department_Size__c",
    "Account.Pain_Points_Identified__c",
    "Account.Target_LOI_Sign_Date__c",
    "Account.Customer_Type__c",
    "Account.CLO_Engaged__c",
)

ACCOUNT_LOOKUP_FIELDS: tuple[str, ...] = ("Id", "Name", "Owner.Name")

FORECAST_FIELD = "ForecastCategory"

TIME_LITERALS: dict[str, str] = {
    "today": "TODAY",
    "yesterday": "YESTERDAY",
    "this_week": "THIS_WEEK",
    "last_week": "LAST_WEEK",
    "this_month": "THIS_MONTH",
    "last_month": "LAST_MONTH",
    "this_quarter": "THIS_QUARTER",
    "last_quarter": "LAST_QUARTER",
    "this_year": "THIS_YEAR",
    "last_year": "LAST_YEAR",
    "next_7_days": "NEXT_N_DAYS:7",
    "next_30_days": "NEXT_N_DAYS:30",
    "last_14_days": "LAST_N_DAYS:14",
    "last_30_days": "LAST_N_DAYS:30",
    "last_60_days": "LAST_N_DAYS:60",
    "last_90_days": "LAST_N_DAYS:90",
}

# metric -> (projection expression, alias)
METRIC_PROJECTIONS: dict[str, tuple[str, str]] = {
    "count": ("COUNT(Id)", "RecordCount"),
    "sum_amount": ("SUM(Amount)", "TotalAmount"),
    "avg_amount": ("AVG(Amount)", "AverageAmount"),
    "sum_weighted": ("SUM(Finance_Weighted_ACV__c)", "TotalWeighted"),
    "avg_days_in_stage": ("AVG(Days_in_Stage__c)", "AvgDaysInStage"),
}

AGGREGATE_SORT_EXPRESSIONS: dict[str, str] = {
    "RecordCount": "COUNT(Id)",
    "TotalAmount": "SUM(Amount)",
    "AverageAmount": "AVG(Amount)",
    "TotalWeighted": "SUM(Finance_Weighted_ACV__c)",
    "Amount": "SUM(Amount)",
}

DEFAULT_METRICS: tuple[str, ...] = ("count", "sum_amount")
DEFAULT_ORDER = "Amount DESC NULLS LAST"
DEFAULT_AGGREGATE_ORDER = "SUM(Amount) DESC NULLS LAST"

REVENUE_TYPE_BY_DEAL_TYPE = {"bookings": "Booking", "arr": "ARR", "recurring": "ARR"}
REVENUE_TYPE_BY_BOOKING_TYPE = {"Booking": "Booking", "ARR": "ARR", "Recurring": "ARR"}


def select_date_field(entities: EntityBag) -> DateFieldSelection:
    """
    Which date field timeframe filters apply to.

    CREATED when a creation window is requested, OUTCOME (close date) for
    closed deals, TARGET (target LOI date) for open pipeline.
    """
    if entities.created_timeframe is not None:
        return DateFieldSelection.CREATED
    if entities.is_closed:
        return DateFieldSelection.OUTCOME
    return DateFieldSelection.TARGET


def build_time_filter(
    timeframe: str,
    field_name: str,
    custom_range: DateRange | None = None,
) -> str | None:
    """Predicate restricting field_name to a timeframe token or custom range."""
    if timeframe == "custom":
        if custom_range is None:
            return None
        return (
            f"{field_name} >= {custom_range.start.isoformat()} "
            f"AND {field_name} <= {custom_range.end.isoformat()}"
        )
    literal = TIME_LITERALS.get(timeframe)
    if literal is None:
        return None
    return f"{field_name} = {literal}"


def week_label(day: date) -> str:
    """'Week N - YYYY' where week 1 is the Sunday-start week holding Jan 1."""
    jan1 = date(day.year, 1, 1)
    jan1_weekday = (jan1.weekday() + 1) % 7  # Sunday = 0
    days_before = (day - jan1).days
    week = (days_before + jan1_weekday + 7) // 7
    return f"Week {week} - {day.year}"


def _quote(value: str) -> str:
    return f"'{sanitize_input(value)}'"


def _number(value: float) -> str:
    return str(int(value)) if float(value).is_integer() else str(value)


def _bool(value: bool) -> str:
    return "true" if value else "false"


def _in_list(field_name: str, values: list[str]) -> str:
    return f"{field_name} IN ({', '.join(_quote(v) for v in values)})"


def _like_any(field_name: str, values: list[str]) -> str:
    clauses = [f"{field_name} LIKE '%{sanitize_input(v)}%'" for v in values]
    return f"({' OR '.join(clauses)})"


@dataclass(frozen=True)
class PredicateContext:
    date_field: DateFieldSelection
    today: date


@dataclass(frozen=True)
class PredicateRule:
    key: str
    build: Callable[[EntityBag, PredicateContext], list[str]]


def _is_closed(bag: EntityBag, ctx: PredicateContext) -> list[str]:
    if bag.is_closed is None:
        return []
    return [f"IsClosed = {_bool(bag.is_closed)}"]


def _is_won(bag: EntityBag, ctx: PredicateContext) -> list[str]:
    # Open deals have no outcome yet.
    if bag.is_won is None or bag.is_closed is False:
        return []
    return [f"IsWon = {_bool(bag.is_won)}"]


def _timeframe(bag: EntityBag, ctx: PredicateContext) -> list[str]:
    if bag.timeframe is None:
        return []
    predicate = build_time_filter(bag.timeframe, ctx.date_field.value, bag.custom_date_range)
    return [predicate] if predicate else []


def _loi_date(bag: EntityBag, ctx: PredicateContext) -> list[str]:
    if bag.loi_date is None:
        return []
    predicate = build_time_filter(bag.loi_date, ctx.date_field.value)
    return [predicate] if predicate else []


def _target_sign_date(bag: EntityBag, ctx: PredicateContext) -> list[str]:
    if bag.target_sign_date is None:
        return []
    predicate = build_time_filter(bag.target_sign_date, DateFieldSelection.TARGET.value)
    return [predicate] if predicate else []


def _created_timeframe(bag: EntityBag, ctx: PredicateContext) -> list[str]:
    if bag.created_timeframe is None:
        return []
    if bag.created_timeframe == "this_week":
        return [f"Week_Created__c = '{week_label(ctx.today)}'"]
    predicate = build_time_filter(bag.created_timeframe, ctx.date_field.value)
    return [predicate] if predicate else []


def _stages(bag: EntityBag, ctx: PredicateContext) -> list[str]:
    return [_in_list("StageName", bag.stages)] if bag.stages else []


def _segments(bag: EntityBag, ctx: PredicateContext) -> list[str]:
    if not bag.segments:
        return []
    rules = [f"({SEGMENT_RULES[segment]})" for segment in bag.segments]
    return [f"({' OR '.join(rules)})"]


def _owners(bag: EntityBag, ctx: PredicateContext) -> list[str]:
    return [_like_any("Owner.Name", bag.owners)] if bag.owners else []


def _accounts(bag: EntityBag, ctx: PredicateContext) -> list[str]:
    return [_like_any("Account.Name", bag.accounts)] if bag.accounts else []


def _industry(bag: EntityBag, ctx: PredicateContext) -> list[str]:
    return [f"Account.Industry = {_quote(bag.industry)}"] if bag.industry else []


def _amount_threshold(bag: EntityBag, ctx: PredicateContext) -> list[str]:
    threshold = bag.amount_threshold
    if threshold is None:
        return []
    predicates = []
    if threshold.min is not None:
        predicates.append(f"Amount >= {_number(threshold.min)}")
    if threshold.max is not None:
        predicates.append(f"Amount <= {_number(threshold.max)}")
    return predicates


def _deal_health(bag: EntityBag, ctx: PredicateContext) -> list[str]:
    return [f"({DEAL_HEALTH_RULES[bag.deal_health]})"] if bag.deal_health else []


def _stale_days(bag: EntityBag, ctx: PredicateContext) -> list[str]:
    if bag.stale_days is None:
        return []
    return [f"(LastActivityDate < LAST_N_DAYS:{bag.stale_days} AND IsClosed = false)"]


def _days_in_stage(bag: EntityBag, ctx: PredicateContext) -> list[str]:
    return [f"Days_in_Stage__c > {bag.days_in_stage}"] if bag.days_in_stage else []


def _type(bag: EntityBag, ctx: PredicateContext) -> list[str]:
    return [f"Type = {_quote(bag.type)}"] if bag.type else []


def _deal_type(bag: EntityBag, ctx: PredicateContext) -> list[str]:
    if bag.deal_type is None:
        return []
    return [f"Revenue_Type__c = '{REVENUE_TYPE_BY_DEAL_TYPE[bag.deal_type]}'"]


def _booking_type(bag: EntityBag, ctx: PredicateContext) -> list[str]:
    if bag.booking_type is None:
        return []
    return [f"Revenue_Type__c = '{REVENUE_TYPE_BY_BOOKING_TYPE[bag.booking_type]}'"]


def _is_new_logo(bag: EntityBag, ctx: PredicateContext) -> list[str]:
    if bag.is_new_logo is None:
        return []
    return [f"Account.Is_New_Logo__c = {_bool(bag.is_new_logo)}"]


def _probability_min(bag: EntityBag, ctx: PredicateContext) -> list[str]:
    if bag.probability_min is None:
        return []
    return [f"Probability >= {_number(bag.probability_min)}"]


def _probability_max(bag: EntityBag, ctx: PredicateContext) -> list[str]:
    if bag.probability_max is None:
        return []
    return [f"Probability <= {_number(bag.probability_max)}"]


def _forecast_category(bag: EntityBag, ctx: PredicateContext) -> list[str]:
    return [_in_list(FORECAST_FIELD, bag.forecast_category)] if bag.forecast_category else []


def _product_line(bag: EntityBag, ctx: PredicateContext) -> list[str]:
    return [f"Product_Line__c = {_quote(bag.product_line)}"] if bag.product_line else []


PREDICATE_RULES: tuple[PredicateRule, ...] = (
    PredicateRule("is_closed", _is_closed),
    PredicateRule("is_won", _is_won),
    PredicateRule("timeframe", _timeframe),
    PredicateRule("loi_date", _loi_date),
    PredicateRule("target_sign_date", _target_sign_date),
    PredicateRule("stages", _stages),
    PredicateRule("owners", _owners),
    PredicateRule("accounts", _accounts),
    PredicateRule("industry", _industry),
    PredicateRule("amount_threshold", _amount_threshold),
    PredicateRule("segments", _segments),
    PredicateRule("deal_health", _deal_health),
    PredicateRule("stale_days", _stale_days),
    PredicateRule("days_in_stage", _days_in_stage),
    PredicateRule("type", _type),
    PredicateRule("deal_type", _deal_type),
    PredicateRule("booking_type", _booking_type),
    PredicateRule("created_timeframe", _created_timeframe),
    PredicateRule("is_new_logo", _is_new_logo),
    PredicateRule("probability_min", _probability_min),
    PredicateRule("probability_max", _probability_max),
    PredicateRule("forecast_category", _forecast_category),
    PredicateRule("product_line", _product_line),
)


class QuerySynthesizer(BaseAgent):
    """
    Builds record store queries from validated entities.

    Usage:
        synthesizer = QuerySynthesizer()
        query = synthesizer.build({"is_closed": False, "stages": ["Stage 3 - Pilot"]})
        print(query.to_soql())
    """

    def __init__(
        self,
        settings: QuerySettings | None = None,
        validator: EntityValidator | None = None,
        today: Callable[[], date] | None = None,
    ):
        super().__init__(name="QuerySynthesizer")
        self.config = settings or get_settings().query
        self.validator = validator if validator is not None else EntityValidator()
        self._today = today or (lambda: datetime.now(UTC).date())

    def build(self, entities: EntityBag | dict[str, Any] | None) -> Query:
        """
        Build a query for the given entities.

        Raises:
            ValidationError: If an entity value is outside its allowed domain
            SynthesisError: If the combination cannot be expressed as one query
        """
        bag = self.validator.validate(entities)
        self._check_combinations(bag)

        date_field = select_date_field(bag)
        conditions = self.build_conditions(bag, date_field)

        if bag.group_by:
            query = self._build_aggregate(bag, conditions, date_field)
        else:
            query = Query(
                object_name=OPPORTUNITY,
                fields=self.select_fields(bag),
                conditions=conditions,
                order_by=self._order_by(bag),
                limit=bag.limit or self.config.max_results,
                date_field=date_field,
            )

        logger.debug(
            f"[{self.name}] Built query",
            extra={
                "aggregate": query.is_aggregate,
                "date_field": date_field.value,
                "conditions": len(conditions),
            },
        )
        return query

    def build_conditions(
        self, bag: EntityBag, date_field: DateFieldSelection | None = None
    ) -> tuple[str, ...]:
        """WHERE predicates for bag, in rule order, duplicates removed."""
        ctx = PredicateContext(
            date_field=date_field or select_date_field(bag),
            today=self._today(),
        )
        predicates: list[str] = []
        for rule in PREDICATE_RULES:
            for predicate in rule.build(bag, ctx):
                if predicate not in predicates:
                    predicates.append(predicate)
        return tuple(predicates)

    def select_fields(self, bag: EntityBag) -> tuple[str, ...]:
        fields = list(BASE_FIELDS)
        if bag.include_account:
            fields.extend(ACCOUNT_FIELDS)
        if bag.include_forecast or bag.forecast_category:
            fields.append(FORECAST_FIELD)
        return tuple(fields)

    def build_account_query(
        self,
        names: list[str],
        exact: bool = False,
        limit: int = 10,
    ) -> Query:
        """
        Account lookup by name, used by the resolver.

        exact=True matches names with '=' (one name) or IN (several);
        otherwise any name may appear as a substring.
        """
        cleaned = [sanitize_input(name) for name in names]
        cleaned = [name for name in cleaned if name]
        if not cleaned:
            raise ValidationError(
                self.name, "Invalid account names", violations=["at least one account name is required"]
            )

        if not exact:
            condition = _like_any("Name", cleaned)
        elif len(cleaned) == 1:
            condition = f"Name = {_quote(cleaned[0])}"
        else:
            condition = _in_list("Name", cleaned)

        return Query(
            object_name=ACCOUNT,
            fields=ACCOUNT_LOOKUP_FIELDS,
            conditions=(condition,),
            order_by="Name",
            limit=max(1, min(limit, 1000)),
        )

    def _build_aggregate(
        self,
        bag: EntityBag,
        conditions: tuple[str, ...],
        date_field: DateFieldSelection,
    ) -> Query:
        limit = bag.limit or self.config.aggregate_limit
        if limit > self.config.max_aggregate_limit:
            raise SynthesisError(
                self.name,
                f"Aggregate limit {limit} exceeds the maximum of {self.config.max_aggregate_limit}",
                context={"limit": limit},
            )

        metrics = list(dict.fromkeys(bag.metrics or DEFAULT_METRICS))
        projections = [f"{METRIC_PROJECTIONS[m][0]} {METRIC_PROJECTIONS[m][1]}" for m in metrics]
        aliases = {METRIC_PROJECTIONS[m][1]: m for m in metrics}
        group_by = tuple(dict.fromkeys(bag.group_by))

        return Query(
            object_name=OPPORTUNITY,
            fields=group_by + tuple(projections),
            conditions=conditions,
            group_by=group_by,
            order_by=self._aggregate_order_by(bag, group_by),
            limit=limit,
            date_field=date_field,
            metric_aliases=aliases,
        )

    def _order_by(self, bag: EntityBag) -> str:
        if bag.sort_by is None:
            return DEFAULT_ORDER
        if bag.sort_by.field in AGGREGATE_SORT_EXPRESSIONS and bag.sort_by.field != "Amount":
            raise SynthesisError(
                self.name,
                f"Cannot sort by {bag.sort_by.field} without a group_by",
                context={"sort_by": bag.sort_by.field},
            )
        return f"{bag.sort_by.field} {bag.sort_by.direction.upper()}"

    def _aggregate_order_by(self, bag: EntityBag, group_by: tuple[str, ...]) -> str:
        if bag.sort_by is None:
            return DEFAULT_AGGREGATE_ORDER
        field = bag.sort_by.field
        if field in group_by:
            expression = field
        elif field in AGGREGATE_SORT_EXPRESSIONS:
            expression = AGGREGATE_SORT_EXPRESSIONS[field]
        else:
            raise SynthesisError(
                self.name,
                f"Cannot sort an aggregate query by {field}",
                context={"sort_by": field, "group_by": list(group_by)},
            )
        return f"{expression} {bag.sort_by.direction.upper()}"

    def _check_combinations(self, bag: EntityBag) -> None:
        if bag.created_timeframe is not None and (
            bag.timeframe is not None or bag.loi_date is not None
        ):
            raise SynthesisError(
                self.name,
                "A query can filter on either timeframe or created_timeframe, not both",
                context={
                    "timeframe": bag.timeframe or bag.loi_date,
                    "created_timeframe": bag.created_timeframe,
                },
            )
        if bag.is_closed:
            if bag.target_sign_date is not None:
                raise SynthesisError(
                    self.name,
                    "target_sign_date only applies to open pipeline",
                    context={"target_sign_date": bag.target_sign_date},
                )
            if bag.stale_days is not None or bag.deal_health == "stale":
                raise SynthesisError(
                    self.name,
                    "Stale filters only apply to open pipeline",
                    context={"stale_days": bag.stale_days, "deal_health": bag.deal_health},
                )
