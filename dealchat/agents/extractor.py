"""
IntentExtractor

Deterministic rule cascade mapping a chat message to an Intent. No model
calls: the same text always yields the same Intent (timestamp aside).

INTENT_RULES is evaluated top to bottom and the first matching rule wins.
Specific rules (ownership, account actions, contracts, weighted pipeline,
counts, product lines, stage words, closed deals, LOIs, bookings, ARR,
pipeline additions, account fields, accounts in stage) come before the
generic pipeline rule.

- Terminal rules return immediately with TERMINAL_CONFIDENCE.
- Non-terminal rules, and messages no rule matched, go through the modifier
  pass (target, closed/won, stale, forecast, trend, timeframe, stage names,
  segments, amounts, group-by, top-N) and get MODIFIER_CONFIDENCE.
- A message opening with a refinement cue ("what about", "only", "and")
  is merged with the previous turn's entities when prior context exists.
- A question with no domain keyword and at most one entity becomes
  unknown_query.
"""

import logging
import re
from collections.abc import Callable, Mapping
from dataclasses import dataclass, field
from typing import Any

from dealchat.agents.base import BaseAgent
from dealchat.models.intent import Intent, IntentType, Refinement
from dealchat.utils.pattern_matcher import MessagePatternMatcher

logger = logging.getLogger(__name__)

TERMINAL_CONFIDENCE = 0.95
PIPELINE_ADDITIONS_CONFIDENCE = 0.9
GREETING_CONFIDENCE = 0.9
CONVERSATION_CONFIDENCE = 0.8
FOLLOW_UP_CONFIDENCE = 0.8
MODIFIER_CONFIDENCE = 0.6
UNKNOWN_CONFIDENCE = 0.3

DEFAULT_STALE_DAYS = 30

# Entity keys a filter_replace refinement may target, most specific first.
REFINEMENT_TARGETS = (
    "stages",
    "segments",
    "owners",
    "accounts",
    "product_line",
    "timeframe",
    "loi_date",
    "created_timeframe",
    "target_sign_date",
    "amount_threshold",
    "forecast_category",
    "type",
    "group_by",
    "limit",
)

PRODUCT_LINE_KEYWORDS = (
    (r"(?<!\w)contracting(?!\w)", "AI-Augmented Contracting"),
    (r"(?<!\w)(?:m&a|mna|m and a)(?!\w)", "Augmented-M&A"),
    (r"(?<!\w)compliance(?!\w)", "Compliance"),
    (r"(?<!\w)sigma(?!\w)", "sigma"),
    (r"(?<!\w)cortex(?!\w)", "Cortex"),
)

UNAVAILABLE_PRODUCT_LINES = ((r"(?<!\w)litigation(?!\w)", "Litigation"),)

COMPETITORS = ("harvey",)

EARLY_STAGES = ["Stage 1 - Discovery"]
MID_STAGES = ["Stage 2 - SQO", "Stage 3 - Pilot"]
LATE_STAGES = ["Stage 4 - Proposal"]

_DEFAULT_MATCHER = MessagePatternMatcher()


@dataclass
class RuleOutcome:
    intent: IntentType
    entities: dict[str, Any] = field(default_factory=dict)
    explanation: str = ""


@dataclass(frozen=True)
class IntentRule:
    """
    One step of the cascade.

    matches and build receive the lower-cased message; build also receives
    the original message so extracted names keep their casing.
    """

    name: str
    matches: Callable[[str], bool]
    build: Callable[[str, str, MessagePatternMatcher], RuleOutcome]
    terminal: bool = True
    confidence: float = TERMINAL_CONFIDENCE


def _has_any(text: str, phrases: tuple[str, ...]) -> bool:
    return any(phrase in text for phrase in phrases)


def _capture(message: str, patterns: tuple[str, ...]) -> str | None:
    """First non-empty group 1 among patterns, with trailing punctuation removed."""
    for pattern in patterns:
        match = re.search(pattern, message, re.IGNORECASE)
        if match and match.group(1):
            value = re.sub(r"@\S+", "", match.group(1)).strip(" ?.!,")
            if value:
                return value
    return None


def _stages_by_phase(text: str) -> list[str] | None:
    if _has_any(text, ("late stage", "late-stage", "stage 4")):
        return list(LATE_STAGES)
    if _has_any(text, ("mid stage", "mid-stage", "stage 2", "stage 3")):
        return list(MID_STAGES)
    if _has_any(text, ("early stage", "early-stage", "stage 1")):
        return list(EARLY_STAGES)
    return None


# ---------------------------------------------------------------------------
# Rules
# ---------------------------------------------------------------------------

_OWNERSHIP_PHRASES = (
    "who owns",
    "who is the owner",
    "whos the owner",
    "owner of",
    "owns ",
    "whos assigned",
    "assigned to",
    "who is the bl",
    "whos the bl",
    "business lead",
)

_OWNERSHIP_CAPTURES = (
    r"who owns (.+?)(?:\?|$)",
    r"whos the owner of (.+?)(?:\?|$)",
    r"owner.*?of (.+?)(?:\?|$)",
    r"owns (.+?)(?:\?|$)",
    r"assigned to (.+?)(?:\?|$)",
    r"\bbl (?:for|at) (.+?)(?:\?|$)",
    r"business lead (?:for|at|of) (.+?)(?:\?|$)",
)


def _is_ownership(text: str) -> bool:
    return _has_any(text, _OWNERSHIP_PHRASES) or bool(re.search(r"\bbl (?:for|at)\b", text))


def _build_ownership(text: str, message: str, matcher: MessagePatternMatcher) -> RuleOutcome:
    entities: dict[str, Any] = {"include_account": True}
    account = _capture(message, _OWNERSHIP_CAPTURES)
    if account:
        entities["accounts"] = [account]
    return RuleOutcome(IntentType.ACCOUNT_LOOKUP, entities, "Account ownership query")


_PLAN_SAVE_PHRASES = ("add account plan", "save account plan", "update account plan")


def _is_account_plan(text: str) -> bool:
    return _has_any(text, ("account plan", "strategic plan", "account strategy")) and not _has_any(
        text, _PLAN_SAVE_PHRASES
    )


def _build_account_plan(text: str, message: str, matcher: MessagePatternMatcher) -> RuleOutcome:
    entities: dict[str, Any] = {"include_account": True}
    account = _capture(
        message,
        (
            r"account plan (?:for |at )?(.+?)(?:\?|$)",
            r"(?:strategic plan|account strategy) (?:for |at )(.+?)(?:\?|$)",
            r"^(?:whats |show |get )?(?:the )?(.+?)(?:s| account) (?:plan|strategy)",
        ),
    )
    if account:
        account = re.sub(r"(?:the )?account plan", "", account, flags=re.IGNORECASE).strip()
        if account:
            entities["accounts"] = [account]
    return RuleOutcome(IntentType.ACCOUNT_PLAN, entities, "Account plan query")


def _is_move_to_nurture(text: str) -> bool:
    return "nurture" in text and bool(re.search(r"\b(?:move|mark|set)\b", text))


def _build_move_to_nurture(text: str, message: str, matcher: MessagePatternMatcher) -> RuleOutcome:
    entities: dict[str, Any] = {}
    account = _capture(
        message,
        (
            r"move (.+?) to nurture",
            r"mark (.+?) as nurture",
            r"set (.+?) to nurture",
            r"nurture (.+?)(?:\?|$)",
        ),
    )
    if account:
        entities["accounts"] = [account]
    return RuleOutcome(IntentType.MOVE_TO_NURTURE, entities, "Move account to nurture status")


def _is_close_lost(text: str) -> bool:
    if "close lost" in text:
        return True
    return bool(re.search(r"\b(?:close|mark)\b", text)) and bool(re.search(r"\blost\b", text))


def _build_close_lost(text: str, message: str, matcher: MessagePatternMatcher) -> RuleOutcome:
    entities: dict[str, Any] = {}
    account = _capture(
        message,
        (
            r"close (.+?) (?:as )?lost",
            r"mark (.+?) (?:as )?(?:closed )?lost",
            r"close (.+?)(?:\?|$)",
            r"lost (.+?)(?:\?|$)",
        ),
    )
    if account:
        account = re.sub(r"\b(?:as closed|as|to)$", "", account, flags=re.IGNORECASE).strip()
        if account:
            entities["accounts"] = [account]
    reason = _capture(message, (r"(?:because|reason:?|due to) (.+?)(?:\?|$)",))
    if reason:
        entities["loss_reason"] = reason
    return RuleOutcome(
        IntentType.CLOSE_ACCOUNT_LOST, entities, "Close account and its opportunities as lost"
    )


def _is_contract_query(text: str) -> bool:
    return _has_any(
        text, ("contracts", "pdfs", "loi contract", "loi agreement", "signed loi detail")
    ) and not _has_any(text, ("how many", "arr contracts"))


def _build_contract_query(text: str, message: str, matcher: MessagePatternMatcher) -> RuleOutcome:
    entities: dict[str, Any] = {}
    if re.search(r"\bloi", text):
        entities["contract_type"] = "LOI"
    if not _has_any(text, ("all contracts", "show me all")):
        account = _capture(
            message,
            (r"contracts for (.+?)(?:\?|$)", r"pdfs for (.+?)(?:\?|$)", r"loi.*?for (.+?)(?:\?|$)"),
        )
        if account and len(account) > 2 and not re.search(r"\b(?:all|show|me)\b", account.lower()):
            entities["accounts"] = [account]
    return RuleOutcome(IntentType.CONTRACT_QUERY, entities, "Contract query")


def _is_weighted(text: str) -> bool:
    return "weighted acv" in text or ("weighted" in text and "pipeline" in text)


def _build_weighted(text: str, message: str, matcher: MessagePatternMatcher) -> RuleOutcome:
    entities: dict[str, Any] = {"is_closed": False}
    timeframe = matcher.detect_timeframe(text)
    if timeframe:
        entities["timeframe"] = timeframe
    return RuleOutcome(IntentType.WEIGHTED_SUMMARY, entities, "Weighted pipeline summary")


def _signed_entities(count_type: str) -> dict[str, Any]:
    entities: dict[str, Any] = {"count_type": count_type, "is_closed": True, "is_won": True}
    if count_type in ("loi_accounts", "loi_count"):
        entities["booking_type"] = "Booking"
    elif count_type in ("arr_customers", "arr_contracts"):
        entities["deal_type"] = "arr"
    return entities


def _is_accounts_signed(text: str) -> bool:
    return bool(re.search(r"\b(?:what|which) (?:accounts|companies|customers)\b", text)) and (
        "signed" in text
    )


def _build_accounts_signed(text: str, message: str, matcher: MessagePatternMatcher) -> RuleOutcome:
    if re.search(r"\blois?\b", text):
        count_type = "loi_accounts"
    elif re.search(r"\barr\b", text) or "recurring" in text:
        count_type = "arr_customers"
    else:
        count_type = "total_customers"
    return RuleOutcome(IntentType.COUNT_QUERY, _signed_entities(count_type), "Accounts that have signed")


def _how_many_type(text: str) -> str | None:
    if "how many" not in text:
        return None
    if "customers" in text or "clients" in text:
        return "arr_customers" if re.search(r"\barr\b", text) else "total_customers"
    if "contracts" in text and re.search(r"\barr\b", text):
        return "arr_contracts"
    if re.search(r"\blois?\b", text):
        return "loi_count"
    return None


def _build_how_many(text: str, message: str, matcher: MessagePatternMatcher) -> RuleOutcome:
    count_type = _how_many_type(text)
    return RuleOutcome(IntentType.COUNT_QUERY, _signed_entities(count_type), "Count query")


def _is_average_days(text: str) -> bool:
    return bool(re.search(r"\b(?:average|avg)\b", text)) and "stage" in text


def _build_average_days(text: str, message: str, matcher: MessagePatternMatcher) -> RuleOutcome:
    entities: dict[str, Any] = {
        "is_closed": False,
        "group_by": ["StageName"],
        "metrics": ["count", "avg_days_in_stage"],
    }
    stage = matcher.detect_stage_reference(text)
    if stage and re.search(r"\bstage\s+\d\b", text):
        entities["stages"] = [stage]
    return RuleOutcome(IntentType.AVERAGE_DAYS_QUERY, entities, "Average days in stage")


def _product_line_in(text: str, table: tuple[tuple[str, str], ...]) -> str | None:
    for pattern, product_line in table:
        if re.search(pattern, text):
            return product_line
    return None


def _is_product_line(text: str) -> bool:
    return _product_line_in(text, PRODUCT_LINE_KEYWORDS + UNAVAILABLE_PRODUCT_LINES) is not None


def _build_product_line(text: str, message: str, matcher: MessagePatternMatcher) -> RuleOutcome:
    entities: dict[str, Any] = {"is_closed": False}
    product_line = _product_line_in(text, PRODUCT_LINE_KEYWORDS)
    if product_line:
        entities["product_line"] = product_line
    else:
        entities["unavailable_product_line"] = _product_line_in(text, UNAVAILABLE_PRODUCT_LINES)
    stages = _stages_by_phase(text)
    if stages:
        entities["stages"] = stages
    return RuleOutcome(IntentType.PIPELINE_SUMMARY, entities, "Product line and stage query")


def _is_stage_phase(text: str) -> bool:
    return _has_any(text, ("early stage", "early-stage", "mid stage", "mid-stage", "late stage", "late-stage"))


def _build_stage_phase(text: str, message: str, matcher: MessagePatternMatcher) -> RuleOutcome:
    if _has_any(text, ("early stage", "early-stage")):
        stages = EARLY_STAGES
    elif _has_any(text, ("mid stage", "mid-stage")):
        stages = MID_STAGES
    else:
        stages = LATE_STAGES
    return RuleOutcome(
        IntentType.PIPELINE_SUMMARY, {"is_closed": False, "stages": list(stages)}, "Stage phase query"
    )


def _is_specific_stage(text: str) -> bool:
    return _DEFAULT_MATCHER.detect_stage_reference(text) is not None


def _build_specific_stage(text: str, message: str, matcher: MessagePatternMatcher) -> RuleOutcome:
    stage = matcher.detect_stage_reference(text)
    return RuleOutcome(
        IntentType.PIPELINE_SUMMARY, {"is_closed": False, "stages": [stage]}, "Stage query"
    )


def _is_closed_recency(text: str) -> bool:
    return _has_any(text, ("deals we closed", "what closed", "deals closed", "recent wins"))


def _build_closed_recency(text: str, message: str, matcher: MessagePatternMatcher) -> RuleOutcome:
    entities: dict[str, Any] = {"is_closed": True, "is_won": True}
    if "recently" in text or "recent wins" in text:
        entities["timeframe"] = "this_week"
    return RuleOutcome(IntentType.DEAL_LOOKUP, entities, "Closed deals query")


def _is_loi(text: str) -> bool:
    return bool(re.search(r"\blois?\b", text))


def _build_loi(text: str, message: str, matcher: MessagePatternMatcher) -> RuleOutcome:
    entities: dict[str, Any] = {"is_closed": True, "is_won": True, "booking_type": "Booking"}
    loi_date = matcher.detect_timeframe(text)
    if loi_date:
        entities["loi_date"] = loi_date
    return RuleOutcome(IntentType.DEAL_LOOKUP, entities, "LOI signing query")


def _is_bookings(text: str) -> bool:
    return "bookings" in text


def _build_bookings(text: str, message: str, matcher: MessagePatternMatcher) -> RuleOutcome:
    entities: dict[str, Any] = {"is_closed": True, "is_won": True, "deal_type": "bookings"}
    if "signed" in text:
        entities["timeframe"] = "this_week"
    return RuleOutcome(IntentType.DEAL_LOOKUP, entities, "Bookings query")


def _is_arr(text: str) -> bool:
    return bool(re.search(r"\barr\b", text)) or _has_any(text, ("recurring", "renewals"))


def _build_arr(text: str, message: str, matcher: MessagePatternMatcher) -> RuleOutcome:
    if _has_any(text, ("signed", "closed")):
        entities: dict[str, Any] = {"is_closed": True, "is_won": True, "deal_type": "arr"}
        timeframe = matcher.detect_timeframe(text)
        if timeframe:
            entities["timeframe"] = timeframe
    else:
        entities = {"is_closed": False, "deal_type": "arr"}
    return RuleOutcome(IntentType.DEAL_LOOKUP, entities, "ARR deals query")


def _is_pipeline_additions(text: str) -> bool:
    return _has_any(text, ("added to pipeline", "added to the pipeline", "new deals", "deals created"))


def _build_pipeline_additions(
    text: str, message: str, matcher: MessagePatternMatcher
) -> RuleOutcome:
    created = matcher.detect_timeframe(text) or "this_week"
    return RuleOutcome(
        IntentType.DEAL_LOOKUP,
        {"is_closed": False, "created_timeframe": created},
        "Pipeline additions query",
    )


def _is_legal_team(text: str) -> bool:
    return _has_any(text, ("legal team", "legal department", "legal members", "number of legal"))


def _build_legal_team(text: str, message: str, matcher: MessagePatternMatcher) -> RuleOutcome:
    entities: dict[str, Any] = {"field_type": "legal_team_size", "include_account": True}
    account = _capture(
        message,
        (r"legal.*?(?:at|for) (.+?)(?:\?|$)", r"\b(?:at|for) (.+?)(?:\?|$)"),
    )
    if account and not _has_any(account.lower(), ("how many", "number")):
        entities["accounts"] = [account]
    return RuleOutcome(IntentType.ACCOUNT_FIELD_LOOKUP, entities, "Legal team size query")


def _is_competitor(text: str) -> bool:
    return _has_any(text, COMPETITORS)


def _build_competitor(text: str, message: str, matcher: MessagePatternMatcher) -> RuleOutcome:
    competitor = next(name for name in COMPETITORS if name in text)
    return RuleOutcome(
        IntentType.ACCOUNT_FIELD_LOOKUP,
        {"field_type": "competitor_mentions", "include_account": True, "search_term": competitor},
        "Competitor mention query",
    )


def _is_pain_points(text: str) -> bool:
    return _has_any(text, ("pain points", "challenges identified"))


def _build_pain_points(text: str, message: str, matcher: MessagePatternMatcher) -> RuleOutcome:
    return RuleOutcome(
        IntentType.ACCOUNT_FIELD_LOOKUP,
        {"field_type": "pain_points", "include_account": True},
        "Pain points query",
    )


def _is_use_cases(text: str) -> bool:
    return _has_any(text, ("use cases", "discussing"))


def _build_use_cases(text: str, message: str, matcher: MessagePatternMatcher) -> RuleOutcome:
    entities: dict[str, Any] = {"field_type": "use_cases", "include_account": True}
    account = _capture(
        message,
        (r"use cases is (.+?) discussing", r"(.+?) discussing", r"use cases.*?at (.+?)(?:\?|$)"),
    )
    if account and len(account) > 2 and not _has_any(account.lower(), ("accounts", "which", "what")):
        entities["accounts"] = [account]
    for keyword in ("contracting", "m&a", "compliance", "litigation"):
        if keyword in text:
            entities["search_term"] = keyword
            break
    return RuleOutcome(IntentType.ACCOUNT_FIELD_LOOKUP, entities, "Use cases query")


def _is_decision_makers(text: str) -> bool:
    return _has_any(text, ("decision makers", "stakeholders"))


def _build_decision_makers(text: str, message: str, matcher: MessagePatternMatcher) -> RuleOutcome:
    entities: dict[str, Any] = {"field_type": "decision_makers", "include_account": True}
    account = _capture(
        message,
        (r"(?:decision makers|stakeholders).*?\b(?:at|for) (.+?)(?:\?|$)",),
    )
    if account:
        entities["accounts"] = [account]
    return RuleOutcome(IntentType.ACCOUNT_FIELD_LOOKUP, entities, "Decision makers query")


def _is_accounts_in_stage(text: str) -> bool:
    return "accounts" in text and ("stage" in text or "in " in text)


def _build_accounts_in_stage(text: str, message: str, matcher: MessagePatternMatcher) -> RuleOutcome:
    entities: dict[str, Any] = {"include_account": True}
    stage = matcher.detect_stage_reference(text)
    if stage:
        entities["stages"] = [stage]
    return RuleOutcome(IntentType.ACCOUNT_STAGE_LOOKUP, entities, "Accounts in stage query")


def _is_generic_pipeline(text: str) -> bool:
    return "pipeline" in text or "deals" in text


def _build_generic_pipeline(text: str, message: str, matcher: MessagePatternMatcher) -> RuleOutcome:
    return RuleOutcome(IntentType.PIPELINE_SUMMARY, {"is_closed": False}, "Pipeline query")


def _build_greeting(text: str, message: str, matcher: MessagePatternMatcher) -> RuleOutcome:
    return RuleOutcome(IntentType.GREETING, {}, "User greeting")


def _build_conversation(text: str, message: str, matcher: MessagePatternMatcher) -> RuleOutcome:
    return RuleOutcome(IntentType.CONVERSATION, {}, "Conversational query")


INTENT_RULES: tuple[IntentRule, ...] = (
    IntentRule("greeting", _DEFAULT_MATCHER.is_greeting, _build_greeting, confidence=GREETING_CONFIDENCE),
    IntentRule(
        "conversation",
        _DEFAULT_MATCHER.is_conversational,
        _build_conversation,
        confidence=CONVERSATION_CONFIDENCE,
    ),
    IntentRule("ownership", _is_ownership, _build_ownership),
    IntentRule("account_plan", _is_account_plan, _build_account_plan),
    IntentRule("move_to_nurture", _is_move_to_nurture, _build_move_to_nurture),
    IntentRule("close_lost", _is_close_lost, _build_close_lost),
    IntentRule("contracts", _is_contract_query, _build_contract_query),
    IntentRule("weighted_pipeline", _is_weighted, _build_weighted),
    IntentRule("accounts_signed", _is_accounts_signed, _build_accounts_signed),
    IntentRule("how_many", lambda text: _how_many_type(text) is not None, _build_how_many),
    IntentRule("average_days", _is_average_days, _build_average_days),
    IntentRule("product_line", _is_product_line, _build_product_line),
    IntentRule("stage_phase", _is_stage_phase, _build_stage_phase, terminal=False),
    IntentRule("specific_stage", _is_specific_stage, _build_specific_stage, terminal=False),
    IntentRule("closed_recency", _is_closed_recency, _build_closed_recency, terminal=False),
    IntentRule("loi", _is_loi, _build_loi),
    IntentRule("bookings", _is_bookings, _build_bookings, terminal=False),
    IntentRule("arr", _is_arr, _build_arr),
    IntentRule(
        "pipeline_additions",
        _is_pipeline_additions,
        _build_pipeline_additions,
        confidence=PIPELINE_ADDITIONS_CONFIDENCE,
    ),
    IntentRule("legal_team", _is_legal_team, _build_legal_team),
    IntentRule("competitor", _is_competitor, _build_competitor, terminal=False),
    IntentRule("pain_points", _is_pain_points, _build_pain_points, terminal=False),
    IntentRule("use_cases", _is_use_cases, _build_use_cases, terminal=False),
    IntentRule("decision_makers", _is_decision_makers, _build_decision_makers, terminal=False),
    IntentRule("accounts_in_stage", _is_accounts_in_stage, _build_accounts_in_stage, terminal=False),
    IntentRule("pipeline", _is_generic_pipeline, _build_generic_pipeline, terminal=False),
)


def merge_entities(
    previous: Mapping[str, Any],
    new: Mapping[str, Any],
    refinement: Refinement | None,
) -> dict[str, Any]:
    """
    Combine a follow-up's entities with the previous turn's.

    filter_add: union; list values are unioned, previous items first.
    filter_replace: only refinement.target is overwritten.
    drill_down (and no refinement): union where new values win outright.
    """
    merged = dict(previous)
    kind = refinement.type if refinement else "drill_down"

    if kind == "filter_replace":
        target = refinement.target if refinement else None
        if target and target in new:
            merged[target] = new[target]
        return merged

    for key, value in new.items():
        old = merged.get(key)
        if kind == "filter_add" and isinstance(old, list) and isinstance(value, list):
            merged[key] = old + [item for item in value if item not in old]
        else:
            merged[key] = value
    return merged


class IntentExtractor(BaseAgent):
    """
    Rule-based intent and entity extractor.

    Usage:
        extractor = IntentExtractor()
        intent = extractor.extract("late stage deals over $100k")
        intent.intent       # IntentType.PIPELINE_SUMMARY
        intent.entities     # {"is_closed": False, "stages": [...], "amount_threshold": {...}}
    """

    def __init__(
        self,
        matcher: MessagePatternMatcher | None = None,
        rules: tuple[IntentRule, ...] = INTENT_RULES,
    ):
        super().__init__(name="IntentExtractor")
        self.matcher = matcher if matcher is not None else MessagePatternMatcher()
        self.rules = rules

    def extract(self, text: str, prior_context: Mapping[str, Any] | None = None) -> Intent:
        """
        Classify a message.

        Args:
            text: User message
            prior_context: Summary of the previous turn's intent
                ({"intent": ..., "entities": {...}}), if any

        Returns:
            Intent with extracted entities and confidence
        """
        with self.track("extract"):
            return self._classify(text, prior_context)

    def _classify(self, text: str, prior_context: Mapping[str, Any] | None) -> Intent:
        message = (text or "").strip()
        lowered = message.lower()

        matched: IntentRule | None = None
        outcome = RuleOutcome(IntentType.PIPELINE_SUMMARY, {}, "Parsed from keywords")
        for rule in self.rules:
            if rule.matches(lowered):
                matched = rule
                outcome = rule.build(lowered, message, self.matcher)
                break

        if matched is not None and matched.terminal:
            logger.debug(
                f"[{self.name}] Terminal rule '{matched.name}' matched",
                extra={"rule": matched.name, "intent": outcome.intent.value},
            )
            return Intent(
                intent=outcome.intent,
                entities=outcome.entities,
                confidence=matched.confidence,
                explanation=outcome.explanation,
                original_message=message,
            )

        self._apply_modifiers(lowered, outcome)

        follow_up = self._as_follow_up(message, lowered, outcome, matched, prior_context)
        if follow_up is not None:
            return follow_up

        if self._is_unknown(lowered, outcome):
            logger.info(
                f"[{self.name}] Message not understood",
                extra={"user_message": message[:100]},
            )
            return Intent(
                intent=IntentType.UNKNOWN_QUERY,
                entities={
                    "extracted_words": self.matcher.extract_content_words(lowered),
                    "original_intent": outcome.intent.value,
                },
                confidence=UNKNOWN_CONFIDENCE,
                explanation="Query not understood, needs clarification",
                original_message=message,
            )

        return Intent(
            intent=outcome.intent,
            entities=outcome.entities,
            confidence=MODIFIER_CONFIDENCE,
            explanation=outcome.explanation,
            original_message=message,
        )

    def _apply_modifiers(self, text: str, outcome: RuleOutcome) -> None:
        entities = outcome.entities
        is_target = "target" in text

        if is_target:
            entities["is_closed"] = False
            outcome.intent = IntentType.PIPELINE_SUMMARY

        if re.search(r"\b(?:closed|won)\b", text):
            outcome.intent = IntentType.DEAL_LOOKUP
            entities["is_closed"] = True
            entities["is_won"] = not re.search(r"\blost\b", text)
        elif re.search(r"\b(?:stale|stuck)\b", text):
            outcome.intent = IntentType.ACTIVITY_CHECK
            entities["stale_days"] = DEFAULT_STALE_DAYS
        elif "forecast" in text:
            outcome.intent = IntentType.FORECASTING
            entities["include_forecast"] = True
        elif re.search(r"\btrends?\b|\bover time\b", text):
            outcome.intent = IntentType.TREND_ANALYSIS
            entities.setdefault("is_closed", True)
            if entities["is_closed"]:
                entities.setdefault("is_won", True)

        timeframe = self.matcher.detect_timeframe(text)
        if timeframe and "created_timeframe" not in entities and "loi_date" not in entities:
            if is_target and not entities.get("is_closed"):
                entities["target_sign_date"] = timeframe
            else:
                entities["timeframe"] = timeframe

        stage_names = self.matcher.detect_stage_names(text)
        if stage_names:
            stages = list(entities.get("stages", []))
            stages.extend(stage for stage in stage_names if stage not in stages)
            entities["stages"] = stages

        segments = self.matcher.detect_segments(text)
        if segments:
            entities["segments"] = segments

        amount = self.matcher.detect_amount_threshold(text)
        if amount:
            entities["amount_threshold"] = amount

        group_by = self.matcher.detect_group_by(text)
        if group_by:
            entities["group_by"] = group_by

        limit = self.matcher.detect_limit(text)
        if limit:
            entities["limit"] = limit
            entities.setdefault("sort_by", {"field": "Amount", "direction": "desc"})

    def _as_follow_up(
        self,
        message: str,
        text: str,
        outcome: RuleOutcome,
        matched: IntentRule | None,
        prior_context: Mapping[str, Any] | None,
    ) -> Intent | None:
        if not prior_context or not prior_context.get("intent"):
            return None
        cue = self.matcher.detect_refinement(text)
        if cue is None:
            return None

        try:
            prior_intent = IntentType(prior_context["intent"])
        except ValueError:
            return None
        if prior_intent in (IntentType.GREETING, IntentType.CONVERSATION, IntentType.UNKNOWN_QUERY):
            return None

        target = next((key for key in REFINEMENT_TARGETS if key in outcome.entities), None)
        refinement = Refinement(type=cue.type, target=target)
        merged = merge_entities(prior_context.get("entities") or {}, outcome.entities, refinement)
        intent_type = outcome.intent if matched is not None else prior_intent

        logger.debug(
            f"[{self.name}] Follow-up detected",
            extra={"refinement": cue.type, "target": target, "prior_intent": prior_intent.value},
        )
        return Intent(
            intent=intent_type,
            entities=merged,
            confidence=FOLLOW_UP_CONFIDENCE,
            follow_up=True,
            refinement=refinement,
            explanation=f"Follow-up ({cue.type}) on previous {prior_intent.value}",
            original_message=message,
        )

    def _is_unknown(self, text: str, outcome: RuleOutcome) -> bool:
        return (
            outcome.intent == IntentType.PIPELINE_SUMMARY
            and self.matcher.is_question(text)
            and not self.matcher.has_domain_keyword(text)
            and len(outcome.entities) <= 1
        )
