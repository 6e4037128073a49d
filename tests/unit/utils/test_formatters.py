"""Unit tests for display formatting helpers."""

from datetime import date, datetime

import pytest

from dealchat.utils.formatters import (
    INVALID_DATE,
    NO_DATE,
    clean_stage_name,
    format_currency,
    format_date,
    format_field_name,
    get_field,
    parse_date,
    to_proper_company_case,
    truncate_text,
)

TODAY = date(2025, 3, 19)


class TestNumbers:
    @pytest.mark.parametrize(
        "amount,expected",
        [
            (None, "$0"),
            (0, "$0"),
            (999, "$999"),
            (12_345, "$12K"),
            (250_000, "$250K"),
            (1_500_000, "$1.5M"),
            (2_300_000_000, "$2.3B"),
            (-50_000, "-$50K"),
        ],
    )
    def test_format_currency(self, amount, expected):
        assert format_currency(amount) == expected


class TestDates:
    """Test date parsing and relative rendering."""

    @pytest.mark.parametrize(
        "value,expected",
        [
            ("2025-03-22", date(2025, 3, 22)),
            ("2025-03-22T10:15:00.000+0000", date(2025, 3, 22)),
            (datetime(2025, 3, 22, 8, 30), date(2025, 3, 22)),
            (date(2025, 3, 22), date(2025, 3, 22)),
            ("", None),
            (None, None),
            ("next tuesday", None),
            (42, None),
        ],
    )
    def test_parse_date(self, value, expected):
        assert parse_date(value) == expected

    @pytest.mark.parametrize(
        "value,expected",
        [
            ("2025-03-19", "Today"),
            ("2025-03-18", "Yesterday"),
            ("2025-03-20", "Tomorrow"),
            ("2025-03-16", "3 days ago"),
            ("2025-03-22", "in 3 days"),
            ("2025-03-12", "1 week ago"),
            ("2025-03-05", "2 weeks ago"),
            ("2025-04-02", "in 2 weeks"),
            ("2025-01-01", "Jan 1, 2025"),
            ("2025-06-30", "Jun 30, 2025"),
        ],
    )
    def test_format_date(self, value, expected):
        assert format_date(value, today=TODAY) == expected

    def test_missing_and_invalid_dates(self):
        assert format_date(None, today=TODAY) == NO_DATE
        assert format_date("", today=TODAY) == NO_DATE
        assert format_date("soon", today=TODAY) == INVALID_DATE

    def test_narrow_relative_window(self):
        assert format_date("2025-03-05", today=TODAY, window_days=7) == "Mar 5, 2025"


class TestText:
    def test_clean_stage_name(self):
        assert clean_stage_name("Stage 6. Closed(Won)") == "Closed Won"
        assert clean_stage_name("Stage 7.Closed(Lost)") == "Closed Lost"
        assert clean_stage_name("Stage 3 - Pilot") == "Stage 3 - Pilot"
        assert clean_stage_name(None) == "No Stage"

    def test_format_field_name(self):
        assert format_field_name("Owner.Name") == "Owner"
        assert format_field_name("Finance_Weighted_ACV__c") == "Weighted ACV"
        assert format_field_name("Pain_Points__c") == "Pain Points"
        assert format_field_name("Account.Owner.Name") == "Account Owner Name"

    def test_truncate_text(self):
        assert truncate_text("Julie Stefanich", 10) == "Julie S..."
        assert truncate_text("Globex", 10) == "Globex"
        assert truncate_text(None) == ""

    def test_get_field(self):
        record = {"Name": "Acme Expansion", "Owner": {"Name": "Julie Stefanich"}, "Account": None}

        assert get_field(record, "Name") == "Acme Expansion"
        assert get_field(record, "Owner.Name") == "Julie Stefanich"
        assert get_field(record, "Account.Name") is None
        assert get_field(record, "Missing.Field") is None
        assert get_field({"Owner.Name": "flat"}, "Owner.Name") == "flat"


class TestCompanyCase:
    @pytest.mark.parametrize(
        "name,expected",
        [
            ("ACME CORPORATION", "Acme Corporation"),
            ("ibm", "IBM"),
            ("fedex", "FedEx"),
            ("bank of america", "Bank of America"),
            ("house of fraser", "House of Fraser"),
            ("the home depot", "The Home Depot"),
            ("ikea retail", "IKEA Retail"),
            ("mcdonalds", "McDonalds"),
            ("  best buy  ", "Best Buy"),
        ],
    )
    def test_to_proper_company_case(self, name, expected):
        assert to_proper_company_case(name) == expected

    def test_empty_name_passes_through(self):
        assert to_proper_company_case(None) is None
        assert to_proper_company_case("") == ""
