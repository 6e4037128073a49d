"""Display helpers for currency, dates, stage names and company names."""

from datetime import UTC, date, datetime
from typing import Any

NO_DATE = "No date"
INVALID_DATE = "Invalid date"

_STAGE_ALIASES = {
    "Stage 6. Closed(Won)": "Closed Won",
    "Stage 7. Closed(Lost)": "Closed Lost",
    "Stage 6.Closed(Won)": "Closed Won",
    "Stage 7.Closed(Lost)": "Closed Lost",
}

_FIELD_LABELS = {
    "StageName": "Stage",
    "CloseDate": "Close Date",
    "CreatedDate": "Created Date",
    "LastActivityDate": "Last Activity",
    "Owner.Name": "Owner",
    "Account.Name": "Account",
    "Account.Industry": "Industry",
    "Finance_Weighted_ACV__c": "Weighted ACV",
    "Target_LOI_Date__c": "Target LOI Date",
    "Days_in_Stage__c": "Days in Stage",
    "Product_Line__c": "Product Line",
    "ForecastCategory": "Forecast Category",
}

_ALL_CAPS_COMPANIES = (
    "IKEA",
    "IBM",
    "HP",
    "AT&T",
    "3M",
    "GE",
    "BMW",
    "KFC",
    "LG",
    "SAP",
    "AMD",
    "NVIDIA",
    "ASUS",
    "HSBC",
    "UPS",
)

_COMPANY_SPECIAL_CASES = {
    "FEDEX": "FedEx",
    "LEVI STRAUSS": "Levi Strauss",
    "JPMORGAN": "JPMorgan",
    "JPMORGAN CHASE": "JPMorgan Chase",
    "GOLDMAN SACHS": "Goldman Sachs",
    "MORGAN STANLEY": "Morgan Stanley",
    "WELLS FARGO": "Wells Fargo",
    "BANK OF AMERICA": "Bank of America",
}

_LOWERCASE_WORDS = {"and", "of", "the", "for", "in", "on", "at", "to", "a", "an"}


def format_currency(amount: float | int | None) -> str:
    """
    Compact currency: $1.2B, $1.5M, $250K; whole dollars below 1,000.

    Missing or zero amounts render as $0.
    """
    if not amount:
        return "$0"
    sign = "-" if amount < 0 else ""
    value = abs(amount)
    if value >= 1_000_000_000:
        return f"{sign}${value / 1_000_000_000:.1f}B"
    if value >= 1_000_000:
        return f"{sign}${value / 1_000_000:.1f}M"
    if value >= 1_000:
        return f"{sign}${value / 1_000:.0f}K"
    return f"{sign}${value:,.0f}"


def parse_date(value: Any) -> date | None:
    """Accept a date, datetime or ISO-8601 string; None when unparseable."""
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    if isinstance(value, str):
        text = value.strip()
        try:
            return date.fromisoformat(text[:10])
        except ValueError:
            pass
        try:
            return datetime.fromisoformat(text.replace("Z", "+00:00")).date()
        except ValueError:
            return None
    return None


def format_absolute_date(day: date) -> str:
    return f"{day:%b} {day.day}, {day.year}"


def format_date(value: Any, *, today: date | None = None, window_days: int = 30) -> str:
    """
    Relative wording within window_days of today, absolute otherwise.

    Examples: "Today", "Yesterday", "3 days ago", "2 weeks ago", "in 3 days",
    "Mar 5, 2025".
    """
    if value is None or value == "":
        return NO_DATE
    day = parse_date(value)
    if day is None:
        return INVALID_DATE

    today = today or datetime.now(UTC).date()
    diff = (today - day).days

    if abs(diff) > window_days:
        return format_absolute_date(day)
    if diff == 0:
        return "Today"
    if diff == 1:
        return "Yesterday"
    if diff == -1:
        return "Tomorrow"
    if 1 < diff < 7:
        return f"{diff} days ago"
    if -7 < diff < -1:
        return f"in {-diff} days"

    weeks = abs(diff) // 7
    unit = "week" if weeks == 1 else "weeks"
    if diff > 0:
        return f"{weeks} {unit} ago"
    return f"in {weeks} {unit}"


def clean_stage_name(stage: str | None) -> str:
    if not stage:
        return "No Stage"
    return _STAGE_ALIASES.get(stage, stage)


def format_field_name(api_name: str) -> str:
    if api_name in _FIELD_LABELS:
        return _FIELD_LABELS[api_name]
    label = api_name.removesuffix("__c").replace("_", " ").replace(".", " ")
    return " ".join(label.split())


def truncate_text(text: str | None, max_length: int = 50, suffix: str = "...") -> str:
    if not text:
        return ""
    if len(text) <= max_length:
        return text
    return text[: max_length - len(suffix)] + suffix


def get_field(record: dict[str, Any], path: str) -> Any:
    """Read a dotted relationship path such as 'Owner.Name' from a record."""
    if path in record:
        return record[path]
    current: Any = record
    for part in path.split("."):
        if not isinstance(current, dict):
            return None
        current = current.get(part)
    return current


def _title_word(word: str, index: int) -> str:
    if "'" in word:
        return "'".join(part[:1].upper() + part[1:] for part in word.split("'"))
    if word.startswith("mc") and len(word) > 2:
        return "Mc" + word[2].upper() + word[3:]
    if word.startswith("mac") and len(word) > 3:
        return "Mac" + word[3].upper() + word[4:]
    if index > 0 and word in _LOWERCASE_WORDS:
        return word
    return word[:1].upper() + word[1:]


def to_proper_company_case(name: str | None) -> str | None:
    """Title-case a company name, keeping known initialisms upper-case."""
    if not name:
        return name
    trimmed = name.strip()
    upper = trimmed.upper()

    if upper in _COMPANY_SPECIAL_CASES:
        return _COMPANY_SPECIAL_CASES[upper]
    if upper in _ALL_CAPS_COMPANIES:
        return upper

    words = trimmed.lower().split()
    return " ".join(
        word.upper() if word.upper() in _ALL_CAPS_COMPANIES else _title_word(word, index)
        for index, word in enumerate(words)
    )
