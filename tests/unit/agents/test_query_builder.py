"""
Unit tests for QuerySynthesizer.

Tests query construction including:
- Date field selection for open, closed and created queries
- One predicate per entity key
- Aggregate mode (group keys, metrics, ordering, limits)
- Rejected entity combinations
- Account lookup queries used by the resolver
"""

from datetime import date

import pytest

from dealchat.agents.query_builder import (
    BASE_FIELDS,
    DEFAULT_AGGREGATE_ORDER,
    DEFAULT_ORDER,
    FORECAST_FIELD,
    QuerySynthesizer,
    build_time_filter,
    select_date_field,
    week_label,
)
from dealchat.models.agent import SynthesisError, ValidationError
from dealchat.models.entities import DateRange, EntityBag
from dealchat.models.query import DateFieldSelection


class TestQuerySynthesizer:
    """Test suite for QuerySynthesizer."""

    @pytest.fixture
    def synthesizer(self, query_settings, today):
        return QuerySynthesizer(settings=query_settings, today=lambda: today)

    # ============================================================================
    # Reference Scenarios
    # ============================================================================

    def test_signed_lois_last_two_weeks(self, synthesizer):
        """Closed bookings filtered on close date over the last 14 days."""
        query = synthesizer.build(
            {
                "is_closed": True,
                "is_won": True,
                "booking_type": "Booking",
                "loi_date": "last_14_days",
            }
        )

        assert query.conditions == (
            "IsClosed = true",
            "IsWon = true",
            "CloseDate = LAST_N_DAYS:14",
            "Revenue_Type__c = 'Booking'",
        )
        assert query.date_field == DateFieldSelection.OUTCOME
        assert query.order_by == DEFAULT_ORDER
        assert query.limit == 200

    def test_open_pipeline_in_stages(self, synthesizer):
        query = synthesizer.build({"is_closed": False, "stages": ["Stage 1 - Discovery"]})

        assert query.to_soql() == (
            f"SELECT {', '.join(BASE_FIELDS)} FROM Opportunity "
            "WHERE IsClosed = false AND StageName IN ('Stage 1 - Discovery') "
            "ORDER BY Amount DESC NULLS LAST LIMIT 200"
        )

    def test_open_timeframe_uses_target_date(self, synthesizer):
        query = synthesizer.build({"is_closed": False, "timeframe": "this_month"})

        assert "Target_LOI_Date__c = THIS_MONTH" in query.conditions
        assert query.date_field == DateFieldSelection.TARGET

    def test_closed_timeframe_uses_close_date(self, synthesizer):
        query = synthesizer.build({"is_closed": True, "is_won": True, "timeframe": "this_quarter"})
        assert "CloseDate = THIS_QUARTER" in query.conditions

    @pytest.mark.parametrize(
        "date_field,expected",
        [
            (DateFieldSelection.OUTCOME, "CloseDate = THIS_MONTH"),
            (DateFieldSelection.TARGET, "Target_LOI_Date__c = THIS_MONTH"),
        ],
    )
    def test_timeframe_rules_follow_selected_date_field(self, synthesizer, date_field, expected):
        """Test that period predicates use the date field passed in, not one re-derived from the bag."""
        bag = EntityBag(timeframe="this_month", loi_date="this_month")

        assert synthesizer.build_conditions(bag, date_field) == (expected,)

    def test_open_loi_date_uses_target_date(self, synthesizer):
        query = synthesizer.build({"is_closed": False, "loi_date": "last_30_days"})
        assert query.conditions == ("IsClosed = false", "Target_LOI_Date__c = LAST_N_DAYS:30")

    def test_is_won_ignored_for_open_deals(self, synthesizer):
        query = synthesizer.build({"is_closed": False, "is_won": True})
        assert query.conditions == ("IsClosed = false",)

    def test_empty_entities_build_unfiltered_query(self, synthesizer):
        query = synthesizer.build({})

        assert query.conditions == ()
        assert query.object_name == "Opportunity"
        assert query.fields == BASE_FIELDS

    def test_none_entities(self, synthesizer):
        assert synthesizer.build(None).conditions == ()

    def test_build_is_deterministic(self, synthesizer):
        entities = {"is_closed": False, "segments": ["enterprise"], "timeframe": "this_quarter"}
        assert synthesizer.build(entities).to_soql() == synthesizer.build(entities).to_soql()

    # ============================================================================
    # Predicates
    # ============================================================================

    def test_target_sign_date(self, synthesizer):
        query = synthesizer.build({"is_closed": False, "target_sign_date": "next_30_days"})
        assert "Target_LOI_Date__c = NEXT_N_DAYS:30" in query.conditions

    def test_created_this_week_uses_week_label(self, synthesizer):
        query = synthesizer.build({"is_closed": False, "created_timeframe": "this_week"})

        assert "Week_Created__c = 'Week 12 - 2025'" in query.conditions
        assert query.date_field == DateFieldSelection.CREATED

    def test_created_other_timeframe(self, synthesizer):
        query = synthesizer.build({"created_timeframe": "this_month"})
        assert query.conditions == ("CreatedDate = THIS_MONTH",)

    def test_custom_date_range(self, synthesizer):
        query = synthesizer.build(
            {
                "is_closed": True,
                "timeframe": "custom",
                "custom_date_range": {"start": "2025-01-01", "end": "2025-03-31"},
            }
        )
        assert "CloseDate >= 2025-01-01 AND CloseDate <= 2025-03-31" in query.conditions

    def test_segments(self, synthesizer):
        query = synthesizer.build({"segments": ["enterprise", "smb"]})
        assert query.conditions == ("((Amount >= 100000) OR (Amount < 25000))",)

    def test_owners_and_accounts_use_like(self, synthesizer):
        query = synthesizer.build({"owners": ["Julie", "Himanshu"], "accounts": ["Acme"]})

        assert query.conditions == (
            "(Owner.Name LIKE '%Julie%' OR Owner.Name LIKE '%Himanshu%')",
            "(Account.Name LIKE '%Acme%')",
        )

    def test_free_text_is_sanitized(self, synthesizer):
        query = synthesizer.build({"accounts": ["O'Reilly; DROP"]})

        assert query.conditions == ("(Account.Name LIKE '%OReilly DROP%')",)

    def test_amount_bounds(self, synthesizer):
        query = synthesizer.build({"amount_threshold": {"min": 100000.0, "max": 2500.5e3}})
        assert query.conditions == ("Amount >= 100000", "Amount <= 2500500")

    def test_fractional_amount(self, synthesizer):
        query = synthesizer.build({"amount_threshold": {"min": 1500.5}})
        assert query.conditions == ("Amount >= 1500.5",)

    def test_stale_days(self, synthesizer):
        query = synthesizer.build({"is_closed": False, "stale_days": 30})
        assert "(LastActivityDate < LAST_N_DAYS:30 AND IsClosed = false)" in query.conditions

    def test_deal_health(self, synthesizer):
        query = synthesizer.build({"deal_health": "hot"})
        assert query.conditions == ("(Probability >= 75)",)

    def test_revenue_type_deduplicated(self, synthesizer):
        """deal_type and booking_type naming the same revenue type give one predicate."""
        query = synthesizer.build({"deal_type": "bookings", "booking_type": "Booking"})
        assert query.conditions == ("Revenue_Type__c = 'Booking'",)

    def test_recurring_maps_to_arr(self, synthesizer):
        query = synthesizer.build({"deal_type": "recurring"})
        assert query.conditions == ("Revenue_Type__c = 'ARR'",)

    def test_misc_predicates(self, synthesizer):
        query = synthesizer.build(
            {
                "industry": "Logistics",
                "days_in_stage": 45,
                "type": "New Business",
                "is_new_logo": True,
                "probability_min": 50,
                "forecast_category": ["Commit", "Best Case"],
                "product_line": "Compliance",
            }
        )

        assert query.conditions == (
            "Account.Industry = 'Logistics'",
            "Days_in_Stage__c > 45",
            "Type = 'New Business'",
            "Account.Is_New_Logo__c = true",
            "Probability >= 50",
            "ForecastCategory IN ('Commit', 'Best Case')",
            "Product_Line__c = 'Compliance'",
        )
        assert FORECAST_FIELD in query.fields

    def test_include_account_adds_account_fields(self, synthesizer):
        query = synthesizer.build({"include_account": True})

        assert "Account.Legal_Department_Size__c" in query.fields
        assert FORECAST_FIELD not in query.fields

    # ============================================================================
    # Ordering and Limits
    # ============================================================================

    def test_explicit_limit_and_sort(self, synthesizer):
        query = synthesizer.build({"limit": 5, "sort_by": {"field": "CloseDate", "direction": "ASC"}})

        assert query.limit == 5
        assert query.order_by == "CloseDate ASC"

    def test_alias_sort_without_group_by_rejected(self, synthesizer):
        with pytest.raises(SynthesisError) as exc_info:
            synthesizer.build({"sort_by": {"field": "TotalAmount"}})

        assert exc_info.value.context["sort_by"] == "TotalAmount"

    # ============================================================================
    # Aggregate Mode
    # ============================================================================

    def test_aggregate_by_owner(self, synthesizer):
        query = synthesizer.build({"is_closed": False, "group_by": ["Owner.Name"]})

        assert query.is_aggregate
        assert query.to_soql() == (
            "SELECT Owner.Name, COUNT(Id) RecordCount, SUM(Amount) TotalAmount "
            "FROM Opportunity WHERE IsClosed = false GROUP BY Owner.Name "
            f"ORDER BY {DEFAULT_AGGREGATE_ORDER} LIMIT 50"
        )
        assert query.metric_aliases == {"RecordCount": "count", "TotalAmount": "sum_amount"}

    def test_aggregate_custom_metrics(self, synthesizer):
        query = synthesizer.build(
            {"group_by": ["StageName"], "metrics": ["count", "avg_days_in_stage", "count"]}
        )
        assert query.fields == ("StageName", "COUNT(Id) RecordCount", "AVG(Days_in_Stage__c) AvgDaysInStage")

    def test_aggregate_sort_by_alias(self, synthesizer):
        query = synthesizer.build({"group_by": ["StageName"], "sort_by": {"field": "RecordCount"}})
        assert query.order_by == "COUNT(Id) DESC"

    def test_aggregate_sort_by_amount_uses_total(self, synthesizer):
        query = synthesizer.build(
            {"group_by": ["StageName"], "sort_by": {"field": "Amount", "direction": "asc"}}
        )
        assert query.order_by == "SUM(Amount) ASC"

    def test_aggregate_sort_by_ungrouped_field_rejected(self, synthesizer):
        with pytest.raises(SynthesisError):
            synthesizer.build({"group_by": ["StageName"], "sort_by": {"field": "CloseDate"}})

    def test_aggregate_limit_above_maximum_rejected(self, synthesizer):
        with pytest.raises(SynthesisError) as exc_info:
            synthesizer.build({"group_by": ["Type"], "limit": 500})

        assert exc_info.value.context == {"limit": 500}
        assert exc_info.value.recoverable is False

    # ============================================================================
    # Rejected Combinations
    # ============================================================================

    def test_timeframe_with_created_timeframe_rejected(self, synthesizer):
        with pytest.raises(SynthesisError):
            synthesizer.build({"timeframe": "this_month", "created_timeframe": "this_week"})

    def test_loi_date_with_created_timeframe_rejected(self, synthesizer):
        with pytest.raises(SynthesisError):
            synthesizer.build({"loi_date": "this_month", "created_timeframe": "this_month"})

    def test_closed_with_target_sign_date_rejected(self, synthesizer):
        with pytest.raises(SynthesisError):
            synthesizer.build({"is_closed": True, "target_sign_date": "this_month"})

    @pytest.mark.parametrize("entities", [{"stale_days": 30}, {"deal_health": "stale"}])
    def test_closed_with_stale_filter_rejected(self, synthesizer, entities):
        with pytest.raises(SynthesisError):
            synthesizer.build({"is_closed": True, **entities})

    def test_invalid_entities_raise_validation_error(self, synthesizer):
        with pytest.raises(ValidationError) as exc_info:
            synthesizer.build({"stages": ["Stage 9 - Imaginary"], "limit": 0})

        violations = exc_info.value.violations
        assert len(violations) == 2
        assert any(v.startswith("stages") for v in violations)
        assert any(v.startswith("limit") for v in violations)

    # ============================================================================
    # Account Queries
    # ============================================================================

    def test_account_query_exact_single(self, synthesizer):
        query = synthesizer.build_account_query(["Best Buy"], exact=True)

        assert query.to_soql() == (
            "SELECT Id, Name, Owner.Name FROM Account WHERE Name = 'Best Buy' ORDER BY Name LIMIT 10"
        )

    def test_account_query_exact_many(self, synthesizer):
        query = synthesizer.build_account_query(["Acme", "Globex"], exact=True)
        assert query.conditions == ("Name IN ('Acme', 'Globex')",)

    def test_account_query_fuzzy(self, synthesizer):
        query = synthesizer.build_account_query(["DHL"], limit=5)

        assert query.conditions == ("(Name LIKE '%DHL%')",)
        assert query.limit == 5

    def test_account_query_requires_a_name(self, synthesizer):
        with pytest.raises(ValidationError):
            synthesizer.build_account_query(["", "   "])


class TestDateHelpers:
    """Test date field selection and time predicates."""

    def test_select_date_field(self):
        assert select_date_field(EntityBag(is_closed=True)) == DateFieldSelection.OUTCOME
        assert select_date_field(EntityBag(is_closed=False)) == DateFieldSelection.TARGET
        assert select_date_field(EntityBag()) == DateFieldSelection.TARGET
        assert (
            select_date_field(EntityBag(is_closed=True, created_timeframe="this_week"))
            == DateFieldSelection.CREATED
        )

    @pytest.mark.parametrize(
        "timeframe,expected",
        [
            ("today", "CloseDate = TODAY"),
            ("next_7_days", "CloseDate = NEXT_N_DAYS:7"),
            ("last_90_days", "CloseDate = LAST_N_DAYS:90"),
            ("last_year", "CloseDate = LAST_YEAR"),
        ],
    )
    def test_build_time_filter(self, timeframe, expected):
        assert build_time_filter(timeframe, "CloseDate") == expected

    def test_custom_without_range(self):
        assert build_time_filter("custom", "CloseDate") is None

    def test_custom_with_range(self):
        window = DateRange(start=date(2025, 1, 1), end=date(2025, 1, 31))
        assert build_time_filter("custom", "CreatedDate", window) == (
            "CreatedDate >= 2025-01-01 AND CreatedDate <= 2025-01-31"
        )

    @pytest.mark.parametrize(
        "day,expected",
        [
            (date(2025, 1, 1), "Week 1 - 2025"),
            (date(2025, 1, 4), "Week 1 - 2025"),
            (date(2025, 1, 5), "Week 2 - 2025"),
            (date(2025, 3, 19), "Week 12 - 2025"),
        ],
    )
    def test_week_label(self, day, expected):
        """Weeks start on Sunday; Jan 1 2025 is a Wednesday."""
        assert week_label(day) == expected
