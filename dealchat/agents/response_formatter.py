"""
ResponseFormatter

Renders a QueryResult as chat text for the intent that produced it.

Dispatch order:
- empty result -> "No results found" with the active filters and suggestions
- any group_by -> aggregate table
- otherwise one renderer per intent, with a generic deal table as fallback

Tables are capped at FormatterSettings.max_table_rows; when more rows exist a
"Showing N of TOTAL" footer is appended. Statistics (totals, weighted value,
averages, per-stage and per-owner breakdowns) are computed from the returned
rows.
"""

import logging
from collections.abc import Sequence
from datetime import UTC, date, datetime
from typing import Any

from dealchat.agents.base import BaseAgent
from dealchat.config import FormatterSettings, get_settings
from dealchat.models.account import AccountMatch
from dealchat.models.agent import AgentError, BackendError, SynthesisError, ValidationError
from dealchat.models.intent import Intent, IntentType
from dealchat.models.query import QueryResult
from dealchat.models.vocabulary import PRODUCT_LINES
from dealchat.utils.formatters import (
    clean_stage_name,
    format_currency,
    format_date,
    format_field_name,
    get_field,
    parse_date,
    to_proper_company_case,
    truncate_text,
)

logger = logging.getLogger(__name__)

DEFAULT_COLUMNS = ("Name", "Amount", "StageName", "CloseDate", "Owner.Name")
ACTIVITY_COLUMNS = ("Name", "Amount", "StageName", "LastActivityDate", "Owner.Name")

COLUMN_HEADERS = {
    "Name": "DEAL NAME",
    "Amount": "AMOUNT",
    "StageName": "STAGE",
    "CloseDate": "CLOSE DATE",
    "Owner.Name": "OWNER",
    "LastActivityDate": "LAST ACTIVITY",
    "Account.Name": "ACCOUNT",
}

COLUMN_WIDTHS = (30, 12, 18, 12, 15)
TABLE_RULE = "─" * 90

GROUP_HEADERS = {
    "StageName": "STAGE",
    "Owner.Name": "OWNER",
    "Account.Industry": "INDUSTRY",
    "Type": "TYPE",
    "ForecastCategory": "FORECAST",
    "Product_Line__c": "PRODUCT LINE",
}

# alias -> (header, is_currency)
AGGREGATE_COLUMNS = {
    "RecordCount": ("COUNT", False),
    "TotalAmount": ("TOTAL AMOUNT", True),
    "AverageAmount": ("AVG AMOUNT", True),
    "TotalWeighted": ("WEIGHTED", True),
    "AvgDaysInStage": ("AVG DAYS", False),
}

FORECAST_ORDER = ("Commit", "Best Case", "Pipeline", "Omitted")

ACCOUNT_FIELD_PATHS = {
    "legal_team_size": "Account.Legal_Department_Size__c",
    "decision_makers": "Account.Key_Decision_Makers__c",
    "pain_points": "Account.Pain_Points_Identified__c",
    "use_cases": "Account.Pain_Points_Identified__c",
    "competitor_mentions": "Account.Pain_Points_Identified__c",
}

DEFAULT_STALE_DAYS = 30

GENERIC_SUGGESTIONS = (
    "Expanding your date range",
    "Removing some filters",
    "Checking different stages",
    'Using "all deals" instead of specific criteria',
)

INTENT_SUGGESTIONS: dict[IntentType, tuple[str, ...]] = {
    IntentType.DEAL_LOOKUP: (
        "Widening the timeframe, e.g. \"this quarter\" instead of \"this week\"",
        "Asking about open pipeline instead of closed deals",
    ),
    IntentType.ACTIVITY_CHECK: (
        "Checking for deals stuck in a stage instead",
        "Looking at the full pipeline",
    ),
    IntentType.ACCOUNT_LOOKUP: (
        "Checking the spelling of the company name",
        "Using the full legal name, e.g. \"Best Buy\" rather than \"BBY\"",
    ),
    IntentType.COUNT_QUERY: (
        "Asking about a different timeframe",
        "Asking \"what LOIs have we signed this year?\"",
    ),
}

EXAMPLE_QUESTIONS = (
    "show me late stage deals",
    "what LOIs have we signed in the last two weeks?",
    "who owns Best Buy?",
    "pipeline by owner",
    "stale deals over $100k",
)


def _amount(record: dict[str, Any], field: str = "Amount") -> float:
    value = get_field(record, field)
    return float(value) if isinstance(value, (int, float)) else 0.0


def suggestions_for(intent: Intent) -> list[str]:
    """Intent-specific hints first, then the generic ones."""
    specific = INTENT_SUGGESTIONS.get(intent.intent, ())
    return list(specific) + [s for s in GENERIC_SUGGESTIONS if s not in specific]


class ResponseFormatter(BaseAgent):
    """
    Chat renderer for query results.

    Usage:
        formatter = ResponseFormatter()
        text = formatter.format(query_result, intent)
    """

    def __init__(self, settings: FormatterSettings | None = None, today: date | None = None):
        super().__init__(name="ResponseFormatter")
        self.config = settings or get_settings().formatter
        self._today = today

    @property
    def today(self) -> date:
        return self._today or datetime.now(UTC).date()

    @property
    def max_rows(self) -> int:
        return self.config.max_table_rows

    def format(self, query_result: QueryResult | None, intent: Intent) -> str:
        """
        Render rows for an intent.

        Args:
            query_result: Rows returned by the record store (None is treated
                as empty)
            intent: Intent the query was built from

        Returns:
            Chat-ready text
        """
        if query_result is None or query_result.is_empty:
            return self.format_no_results(intent)

        records = query_result.records
        total = query_result.total_size
        entities = intent.entities

        with self.track("format"):
            if entities.get("group_by"):
                return self._format_aggregate(records, intent)

            match intent.intent:
                case IntentType.PIPELINE_SUMMARY | IntentType.WEIGHTED_SUMMARY:
                    return self._format_pipeline_summary(records, intent, total)
                case IntentType.DEAL_LOOKUP:
                    return self._format_deal_lookup(records, intent, total)
                case IntentType.ACTIVITY_CHECK:
                    return self._format_activity_check(records, intent, total)
                case IntentType.FORECASTING:
                    return self._format_forecast(records, intent, total)
                case IntentType.TREND_ANALYSIS:
                    return self._format_trend(records, intent, total)
                case IntentType.COUNT_QUERY:
                    return self._format_count(records, intent, total)
                case IntentType.ACCOUNT_LOOKUP | IntentType.ACCOUNT_STAGE_LOOKUP:
                    return self._format_account_list(records, intent, total)
                case IntentType.ACCOUNT_FIELD_LOOKUP:
                    return self._format_account_fields(records, intent, total)
                case _:
                    return self._format_generic(records, intent, total)

    # ------------------------------------------------------------------
    # Query result renderers
    # ------------------------------------------------------------------

    def _format_pipeline_summary(
        self, records: list[dict[str, Any]], intent: Intent, total: int
    ) -> str:
        total_amount = sum(_amount(r) for r in records)
        weighted = sum(_amount(r, "Finance_Weighted_ACV__c") for r in records)
        average = total_amount / len(records)

        title = "Weighted Pipeline" if intent.intent == IntentType.WEIGHTED_SUMMARY else "Pipeline Summary"
        lines = [
            f"*{title}*",
            f"{total} deals worth {format_currency(total_amount)}",
            f"Weighted value: {format_currency(weighted)}",
            f"Average deal size: {format_currency(average)}",
            "",
            "*By Stage:*",
        ]
        for stage, data in self._breakdown(records, "StageName", "Unknown").items():
            lines.append(
                f"{clean_stage_name(stage)}: {data['count']} deals ({format_currency(data['amount'])})"
            )
        lines.append("")
        lines.append(self.build_deals_table(records))
        return self._with_footer("\n".join(lines), total, "deals")

    def _format_deal_lookup(self, records: list[dict[str, Any]], intent: Intent, total: int) -> str:
        total_amount = sum(_amount(r) for r in records)
        lines = ["*Deal Results*", f"Found {total} deals worth {format_currency(total_amount)}", ""]
        context = self.build_search_context(intent.entities)
        if context:
            lines.extend([f"*Filters:* {context}", ""])
        lines.append(self.build_deals_table(records))
        return self._with_footer("\n".join(lines), total, "results")

    def _format_activity_check(
        self, records: list[dict[str, Any]], intent: Intent, total: int
    ) -> str:
        total_amount = sum(_amount(r) for r in records)
        days_since = []
        for record in records:
            last = parse_date(record.get("LastActivityDate"))
            days_since.append((self.today - last).days if last else DEFAULT_STALE_DAYS)
        average_days = round(sum(days_since) / len(days_since))

        lines = [
            "*Activity Check*",
            f"{total} deals need attention ({format_currency(total_amount)} at risk)",
            f"Average days since last activity: {average_days}",
            "",
            "*By Owner:*",
        ]
        owners = sorted(
            self._breakdown(records, "Owner.Name", "Unassigned").items(),
            key=lambda item: item[1]["amount"],
            reverse=True,
        )
        for owner, data in owners[:10]:
            lines.append(f"• {owner}: {data['count']} deals ({format_currency(data['amount'])})")
        lines.append("")
        lines.append(self.build_deals_table(records, ACTIVITY_COLUMNS, max_rows=10))
        return "\n".join(lines)

    def _format_forecast(self, records: list[dict[str, Any]], intent: Intent, total: int) -> str:
        total_amount = sum(_amount(r) for r in records)
        weighted = sum(_amount(r, "Finance_Weighted_ACV__c") for r in records)
        categories = self._breakdown(records, "ForecastCategory", "Pipeline")

        lines = [
            "*Forecast View*",
            f"{total} deals in forecast ({format_currency(total_amount)})",
            f"Weighted forecast: {format_currency(weighted)}",
            "",
            "*Forecast Categories:*",
        ]
        for category in FORECAST_ORDER:
            data = categories.get(category)
            if data:
                lines.append(
                    f"• {category}: {data['count']} deals ({format_currency(data['amount'])})"
                )
        lines.append("")
        lines.append(self.build_deals_table(records))
        return "\n".join(lines)

    def _format_trend(self, records: list[dict[str, Any]], intent: Intent, total: int) -> str:
        total_amount = sum(_amount(r) for r in records)
        lines = [
            "*Trend Analysis*",
            f"{total} records analyzed ({format_currency(total_amount)})",
            "",
        ]
        by_week = self._breakdown(records, "Week_Created__c", None)
        if by_week:
            lines.append("*By Week Created:*")
            for week, data in by_week.items():
                lines.append(f"• {week}: {data['count']} deals ({format_currency(data['amount'])})")
            lines.append("")
        lines.append(self.build_deals_table(records))
        return "\n".join(lines)

    def _format_count(self, records: list[dict[str, Any]], intent: Intent, total: int) -> str:
        count_type = intent.entities.get("count_type", "total_customers")
        accounts = self._unique_accounts(records)

        if count_type in ("loi_count", "arr_contracts"):
            noun = "LOIs" if count_type == "loi_count" else "ARR contracts"
            headline = f"*{total} {noun} signed*"
        else:
            noun = {
                "loi_accounts": "accounts have signed LOIs",
                "arr_customers": "ARR customers",
            }.get(count_type, "customers")
            headline = f"*{len(accounts)} {noun}*"

        lines = [headline]
        if accounts:
            lines.append("")
            for name in accounts[: self.max_rows]:
                lines.append(f"• {name}")
            if len(accounts) > self.max_rows:
                lines.append(f"_Showing {self.max_rows} of {len(accounts)} accounts_")
        return "\n".join(lines)

    def _format_account_list(
        self, records: list[dict[str, Any]], intent: Intent, total: int
    ) -> str:
        seen: dict[str, dict[str, Any]] = {}
        for record in records:
            name = get_field(record, "Account.Name")
            if name and name not in seen:
                seen[name] = {
                    "owner": get_field(record, "Owner.Name") or "Unassigned",
                    "stage": clean_stage_name(record.get("StageName")),
                }

        if not seen:
            return self._format_generic(records, intent, total)

        title = "*Accounts*" if intent.intent == IntentType.ACCOUNT_STAGE_LOOKUP else "*Account Owners*"
        lines = [title]
        for name, info in list(seen.items())[: self.max_rows]:
            display = to_proper_company_case(name)
            if intent.intent == IntentType.ACCOUNT_STAGE_LOOKUP:
                lines.append(f"• *{display}*: {info['stage']} (owner {info['owner']})")
            else:
                lines.append(f"• *{display}* is owned by {info['owner']}")
        if len(seen) > self.max_rows:
            lines.append(f"_Showing {self.max_rows} of {len(seen)} accounts_")
        return "\n".join(lines)

    def _format_account_fields(
        self, records: list[dict[str, Any]], intent: Intent, total: int
    ) -> str:
        field_type = intent.entities.get("field_type", "")
        path = ACCOUNT_FIELD_PATHS.get(field_type)
        if path is None:
            return self._format_generic(records, intent, total)

        search_term = (intent.entities.get("search_term") or "").lower()
        label = format_field_name(path.removeprefix("Account."))
        values: dict[str, str] = {}
        for record in records:
            name = get_field(record, "Account.Name")
            value = get_field(record, path)
            if not name or name in values or value in (None, ""):
                continue
            if search_term and search_term not in str(value).lower():
                continue
            values[name] = str(value)

        if not values:
            return self.format_no_results(intent)

        lines = [f"*{label}*"]
        for name, value in list(values.items())[: self.max_rows]:
            lines.append(f"• *{to_proper_company_case(name)}*: {truncate_text(value, 200)}")
        if len(values) > self.max_rows:
            lines.append(f"_Showing {self.max_rows} of {len(values)} accounts_")
        return "\n".join(lines)

    def _format_generic(self, records: list[dict[str, Any]], intent: Intent, total: int) -> str:
        total_amount = sum(_amount(r) for r in records)
        text = "\n".join(
            [
                "*Results*",
                f"{total} records found ({format_currency(total_amount)})",
                "",
                self.build_deals_table(records),
            ]
        )
        return self._with_footer(text, total, "results")

    def _format_aggregate(self, records: list[dict[str, Any]], intent: Intent) -> str:
        group_by = intent.entities["group_by"][0]
        header = GROUP_HEADERS.get(group_by, group_by.upper())

        present = [alias for alias in AGGREGATE_COLUMNS if any(alias in r for r in records)]
        computed_average = (
            "RecordCount" in present and "TotalAmount" in present and "AverageAmount" not in present
        )

        columns = [header.ljust(25)]
        columns += [AGGREGATE_COLUMNS[alias][0].rjust(14) for alias in present]
        if computed_average:
            columns.append("AVG AMOUNT".rjust(14))

        lines = ["*Analysis Results*", "", "```", " ".join(columns), "─" * 75]
        for record in records[: self.max_rows]:
            group_value = get_field(record, group_by)
            if group_value is None:
                group_value = record.get(group_by.split(".")[-1])
            if group_by == "StageName" and group_value:
                group_value = clean_stage_name(group_value)
            row = [truncate_text(str(group_value or "Unknown"), 25).ljust(25)]
            for alias in present:
                row.append(self._aggregate_cell(record.get(alias), AGGREGATE_COLUMNS[alias][1]))
            if computed_average:
                count = record.get("RecordCount") or 0
                row.append(
                    format_currency((record.get("TotalAmount") or 0) / count if count else 0).rjust(14)
                )
            lines.append(" ".join(row))
        lines.append("```")

        if len(records) > self.max_rows:
            lines.append(f"_Showing {self.max_rows} of {len(records)} groups_")
        return "\n".join(lines)

    @staticmethod
    def _aggregate_cell(value: Any, is_currency: bool) -> str:
        if is_currency:
            return format_currency(value).rjust(14)
        if isinstance(value, float):
            return f"{value:.1f}".rjust(14)
        return str(value if value is not None else 0).rjust(14)

    # ------------------------------------------------------------------
    # Shared building blocks
    # ------------------------------------------------------------------

    def build_deals_table(
        self,
        records: Sequence[dict[str, Any]],
        columns: Sequence[str] = DEFAULT_COLUMNS,
        max_rows: int | None = None,
    ) -> str:
        """Fixed-width deal table inside a code block."""
        if not records:
            return ""

        widths = [COLUMN_WIDTHS[i] if i < len(COLUMN_WIDTHS) else 15 for i in range(len(columns))]
        header = " ".join(
            COLUMN_HEADERS.get(col, col.upper()).ljust(width) for col, width in zip(columns, widths)
        )
        lines = ["```", header, TABLE_RULE]
        for record in records[: max_rows or self.max_rows]:
            cells = [
                self._cell(record, col).ljust(width) for col, width in zip(columns, widths)
            ]
            lines.append(" ".join(cells).rstrip())
        lines.append("```")
        return "\n".join(lines)

    def _cell(self, record: dict[str, Any], column: str) -> str:
        window = self.config.relative_date_window_days
        match column:
            case "Name":
                return (record.get("Name") or "Untitled")[:28]
            case "Amount":
                return format_currency(record.get("Amount"))
            case "StageName":
                return clean_stage_name(record.get("StageName"))[:16]
            case "CloseDate":
                value = record.get("CloseDate") if record.get("IsClosed") else record.get("Target_LOI_Date__c")
                return format_date(value, today=self.today, window_days=window)
            case "LastActivityDate":
                return format_date(record.get("LastActivityDate"), today=self.today, window_days=window)
            case "Owner.Name":
                return (get_field(record, "Owner.Name") or "Unassigned")[:13]
            case "Account.Name":
                return (get_field(record, "Account.Name") or "No Account")[:13]
            case _:
                value = get_field(record, column)
                return ("" if value is None else str(value))[:13]

    def _with_footer(self, text: str, total: int, noun: str) -> str:
        if total > self.max_rows:
            return f"{text}\n_Showing {self.max_rows} of {total} {noun}_"
        return text

    @staticmethod
    def _breakdown(
        records: Sequence[dict[str, Any]], field: str, missing: str | None
    ) -> dict[str, dict[str, float]]:
        """Count and amount per value of field, in first-seen order."""
        breakdown: dict[str, dict[str, float]] = {}
        for record in records:
            key = get_field(record, field) or missing
            if key is None:
                continue
            data = breakdown.setdefault(str(key), {"count": 0, "amount": 0.0})
            data["count"] += 1
            data["amount"] += _amount(record)
        return breakdown

    @staticmethod
    def _unique_accounts(records: Sequence[dict[str, Any]]) -> list[str]:
        names = (get_field(record, "Account.Name") for record in records)
        return [to_proper_company_case(n) for n in dict.fromkeys(n for n in names if n)]

    def build_search_context(self, entities: dict[str, Any]) -> str:
        """Human-readable summary of the active filters."""
        context: list[str] = []
        for key in ("timeframe", "loi_date", "target_sign_date", "created_timeframe"):
            if entities.get(key) and entities[key] != "custom":
                label = "" if key == "timeframe" else f"{format_field_name(key).lower()}: "
                context.append(f"{label}{entities[key].replace('_', ' ')}")
        for key in ("stages", "owners", "accounts", "segments"):
            if entities.get(key):
                context.append(f"{key}: {', '.join(entities[key])}")
        if entities.get("product_line"):
            context.append(f"product line: {entities['product_line']}")

        threshold = entities.get("amount_threshold") or {}
        if threshold.get("min"):
            context.append(f"min amount: {format_currency(threshold['min'])}")
        if threshold.get("max"):
            context.append(f"max amount: {format_currency(threshold['max'])}")
        return ", ".join(context)

    # ------------------------------------------------------------------
    # Replies that do not come from a query
    # ------------------------------------------------------------------

    def format_no_results(self, intent: Intent) -> str:
        unavailable = intent.entities.get("unavailable_product_line")
        if unavailable:
            available = "\n".join(f"• {line}" for line in PRODUCT_LINES)
            return (
                f"No {unavailable} product line exists in the system.\n\n"
                f"*Available product lines:*\n{available}"
            )

        message = "No results found"
        filters = self.build_search_context(intent.entities)
        if filters:
            message += f" for: {filters}"
        tips = "\n".join(f"• {tip}" for tip in suggestions_for(intent))
        return f"{message}\n\n*Try:*\n{tips}"

    def format_unknown_query(self, intent: Intent) -> str:
        words = intent.entities.get("extracted_words") or []
        lines = ["I'm not sure what you're asking about."]
        if words:
            lines.append(f"I picked up: {', '.join(words)}")
        lines.extend(["", "I can answer questions about deals, pipeline and accounts. Try:"])
        lines.extend(f"• {example}" for example in EXAMPLE_QUESTIONS)
        return "\n".join(lines)

    def format_greeting(self, intent: Intent | None = None) -> str:
        examples = "\n".join(f"• {example}" for example in EXAMPLE_QUESTIONS[:3])
        return f"Hi! Ask me about your pipeline, deals or accounts. For example:\n{examples}"

    def format_conversation(self, intent: Intent) -> str:
        message = intent.original_message.lower()
        if any(word in message for word in ("thank", "thx", "appreciate")):
            return "You're welcome! Anything else you want to know about the pipeline?"
        examples = "\n".join(f"• {example}" for example in EXAMPLE_QUESTIONS)
        return (
            "I answer questions about your deals and accounts: pipeline summaries, "
            f"closed deals, stale deals, forecasts and account owners.\n\nTry:\n{examples}"
        )

    def format_unsupported_action(self, intent: Intent) -> str:
        accounts = intent.entities.get("accounts") or []
        target = f" for {accounts[0]}" if accounts else ""
        action = "move to nurture" if intent.intent == IntentType.MOVE_TO_NURTURE else "close as lost"
        return (
            f"I understood a request to {action}{target}, but I can't update records from chat. "
            "Please make the change in the CRM."
        )

    def format_unsupported_request(self, intent: Intent) -> str:
        accounts = intent.entities.get("accounts") or []
        target = f" for {accounts[0]}" if accounts else ""
        document = "account plans" if intent.intent == IntentType.ACCOUNT_PLAN else "contracts"
        return (
            f"I can't look up {document}{target} yet. "
            "I can answer questions about deals, pipeline and account owners."
        )

    def format_account_match(self, match: AccountMatch | None, raw_name: str = "") -> str:
        if match is None:
            return f"I couldn't find an account matching '{raw_name}'."
        owner = match.owner or "Unassigned"
        text = f"*{to_proper_company_case(match.name)}* is owned by {owner}"
        if match.match_type == "fuzzy":
            text += f" (closest match, {match.confidence:.0%} confidence)"
            if match.alternatives:
                text += f"\nDid you mean: {', '.join(match.alternatives)}?"
        return text

    def format_error(self, error: AgentError) -> str:
        if isinstance(error, ValidationError):
            details = "; ".join(error.violations) or error.message
            return f"I couldn't use some of those filters: {details}"
        if isinstance(error, SynthesisError):
            return f"I can't build that query: {error.message}"
        if isinstance(error, BackendError):
            return "The CRM didn't respond as expected. Please try again in a moment."
        return f"Something went wrong: {error.message}"
