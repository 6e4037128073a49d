"""
Message Pattern Matcher

Keyword and phrase detection shared by the intent extractor: greetings,
conversational phrases, timeframe phrases, stage words, segments, amount
thresholds, group-by requests, top-N limits and follow-up cues.

All detectors take lower-cased text and are pure.
"""

import re
from dataclasses import dataclass
from typing import Any

from dealchat.models.vocabulary import STAGE_BY_KEYWORD, STAGE_BY_NUMBER, STAGES

_AMOUNT_MULTIPLIERS = {
    "k": 1_000,
    "thousand": 1_000,
    "m": 1_000_000,
    "mm": 1_000_000,
    "million": 1_000_000,
    "b": 1_000_000_000,
    "billion": 1_000_000_000,
}

_AMOUNT = r"(\$)?\s*(\d+(?:,\d{3})*(?:\.\d+)?)\s*(k|mm|m|b|thousand|million|billion)?\b"


@dataclass(frozen=True)
class RefinementCue:
    type: str
    phrase: str


def parse_amount(number: str, suffix: str | None) -> float:
    """Turn '1.5' + 'm' into 1500000.0."""
    value = float(number.replace(",", ""))
    if suffix:
        value *= _AMOUNT_MULTIPLIERS[suffix.lower()]
    return value


class MessagePatternMatcher:
    """
    Single location for message keyword detection.

    Usage:
        matcher = MessagePatternMatcher()
        matcher.detect_timeframe("deals closing this month")  # "this_month"
        matcher.is_greeting("hey there")  # True
    """

    def __init__(self, config: dict[str, Any] | None = None):
        self.config = config or {}
        self._compile_patterns()

    def _compile_patterns(self) -> None:
        # Ordered: the first matching phrase wins.
        self._timeframe_patterns = [
            (re.compile(p, re.IGNORECASE), timeframe)
            for p, timeframe in [
                (r"\b(?:last|past)\s+(?:two|2)\s+weeks\b", "last_14_days"),
                (r"\b(?:last|past)\s+14\s+days\b", "last_14_days"),
                (r"\b(?:last|past)\s+(?:30|thirty)\s+days\b", "last_30_days"),
                (r"\b(?:last|past)\s+(?:60|sixty)\s+days\b", "last_60_days"),
                (r"\b(?:last|past)\s+(?:90|ninety)\s+days\b", "last_90_days"),
                (r"\b(?:last|past)\s+(?:three|3)\s+months\b", "last_90_days"),
                (r"\bnext\s+(?:7|seven)\s+days\b", "next_7_days"),
                (r"\bnext\s+week\b", "next_7_days"),
                (r"\bnext\s+(?:30|thirty)\s+days\b", "next_30_days"),
                (r"\bnext\s+month\b", "next_30_days"),
                (r"\btoday\b", "today"),
                (r"\byesterday\b", "yesterday"),
                (r"\bthis\s+week\b", "this_week"),
                (r"\blast\s+week\b", "last_week"),
                (r"\bthis\s+month\b", "this_month"),
                (r"\blast\s+month\b", "last_month"),
                (r"\bpast\s+month\b", "last_30_days"),
                (r"\bthis\s+quarter\b", "this_quarter"),
                (r"\blast\s+quarter\b", "last_quarter"),
                (r"\bthis\s+year\b", "this_year"),
                (r"\bytd\b", "this_year"),
                (r"\blast\s+year\b", "last_year"),
            ]
        ]
        self._greetings = {
            "hello",
            "hi",
            "hey",
            "howdy",
            "good morning",
            "good afternoon",
            "good evening",
        }
        self._conversational_phrases = [
            "how are you",
            "what can you do",
            "tell me about yourself",
            "can you help me understand",
            "what do you know about yourself",
            "chat with me",
            "talk to me",
            "can we chat",
            "what are your capabilities",
        ]
        self._question_pattern = re.compile(
            r"\b(what|who|when|where|how|show|tell|get|give|find)\b", re.IGNORECASE
        )
        self._domain_keywords = (
            # pipeline
            "pipeline",
            "deal",
            "opportunit",
            "opps",
            "stage",
            "closed",
            "won",
            "lost",
            "forecast",
            "target",
            # accounts
            "account",
            "company",
            "customer",
            "owner",
            "owns",
            "who",
            # contracts
            "contract",
            "pdf",
            "loi",
            "agreement",
        )
        self._stop_words = {
            "what",
            "when",
            "where",
            "show",
            "tell",
            "give",
            "with",
            "this",
            "that",
            "from",
            "have",
            "about",
            "could",
            "would",
            "should",
        }
        self._segment_patterns = [
            (re.compile(r"\benterprise\b", re.IGNORECASE), "enterprise"),
            (re.compile(r"\bmid[\s-]?market\b", re.IGNORECASE), "mid-market"),
            (re.compile(r"\b(?:smb|small business(?:es)?)\b", re.IGNORECASE), "smb"),
        ]
        self._group_by_patterns = [
            (re.compile(r"\b(?:by|per)\s+(?:stage|stages)\b", re.IGNORECASE), "StageName"),
            (re.compile(r"\b(?:by|per)\s+(?:owner|rep|reps|seller)\b", re.IGNORECASE), "Owner.Name"),
            (re.compile(r"\b(?:by|per)\s+industry\b", re.IGNORECASE), "Account.Industry"),
            (re.compile(r"\b(?:by|per)\s+(?:deal\s+)?type\b", re.IGNORECASE), "Type"),
            (
                re.compile(r"\b(?:by|per)\s+forecast(?:\s+category)?\b", re.IGNORECASE),
                "ForecastCategory",
            ),
            (re.compile(r"\b(?:by|per)\s+product(?:\s+line)?\b", re.IGNORECASE), "Product_Line__c"),
        ]
        self._amount_min_pattern = re.compile(
            r"\b(?:over|above|more than|greater than|at least|bigger than)\s*" + _AMOUNT,
            re.IGNORECASE,
        )
        self._amount_max_pattern = re.compile(
            r"\b(?:under|below|less than|at most|smaller than)\s*" + _AMOUNT,
            re.IGNORECASE,
        )
        self._amount_between_pattern = re.compile(
            r"\bbetween\s*" + _AMOUNT + r"\s*and\s*" + _AMOUNT,
            re.IGNORECASE,
        )
        self._limit_pattern = re.compile(r"\b(?:top|biggest|largest)\s+(\d{1,4})\b", re.IGNORECASE)
        self._refinement_patterns = [
            (re.compile(p, re.IGNORECASE), refinement)
            for p, refinement in [
                (r"^\s*(?:what|how)\s+about\b", "filter_replace"),
                (r"\binstead\b", "filter_replace"),
                (r"^\s*(?:and|also|plus)\b", "filter_add"),
                (r"\bas well\b", "filter_add"),
                (r"^\s*(?:only|just)\b", "drill_down"),
                (r"\bdrill\s+(?:down|into)\b", "drill_down"),
                (r"\bbreak\s+(?:it|that|them|this)\s+down\b", "drill_down"),
                (r"^\s*(?:of|from)\s+(?:those|these|them)\b", "drill_down"),
            ]
        ]

    def is_greeting(self, text: str) -> bool:
        """Short message (at most 3 tokens) containing an exact greeting."""
        words = text.lower().strip().split()
        if not words or len(words) > 3:
            return False
        cleaned = [word.strip("!.,?") for word in words]
        if any(word in self._greetings for word in cleaned):
            return True
        joined = " ".join(cleaned)
        return any(" " in greeting and greeting in joined for greeting in self._greetings)

    def is_conversational(self, text: str) -> bool:
        lowered = text.lower()
        if "deals" in lowered or "accounts" in lowered:
            return False
        return any(phrase in lowered for phrase in self._conversational_phrases)

    def is_question(self, text: str) -> bool:
        return bool(self._question_pattern.search(text))

    def has_domain_keyword(self, text: str) -> bool:
        lowered = text.lower()
        return any(keyword in lowered for keyword in self._domain_keywords)

    def extract_content_words(self, text: str, limit: int = 5) -> list[str]:
        """Words longer than 3 characters, stop-words removed, in message order."""
        cleaned = re.sub(r"[?!.,]", "", text.lower())
        words = [w for w in cleaned.split() if len(w) > 3 and w not in self._stop_words]
        return words[:limit]

    def detect_timeframe(self, text: str) -> str | None:
        """Map the first recognised time phrase onto the timeframe vocabulary."""
        for pattern, timeframe in self._timeframe_patterns:
            if pattern.search(text):
                return timeframe
        return None

    def detect_stage_names(self, text: str) -> list[str]:
        """Canonical stage names spelled out in full, in vocabulary order."""
        lowered = text.lower()
        return [stage for stage in STAGES if stage.lower() in lowered]

    def detect_stage_reference(self, text: str) -> str | None:
        """'stage 2' or a stage keyword such as 'pilot', as a canonical stage."""
        match = re.search(r"\bstage\s+(\d)\b", text, re.IGNORECASE)
        if match and match.group(1) in STAGE_BY_NUMBER:
            return STAGE_BY_NUMBER[match.group(1)]
        match = re.search(r"\b(qualifying|discovery|sqo|pilot|proposal)\b", text, re.IGNORECASE)
        if match:
            return STAGE_BY_KEYWORD[match.group(1).lower()]
        return None

    def detect_segments(self, text: str) -> list[str]:
        return [segment for pattern, segment in self._segment_patterns if pattern.search(text)]

    def detect_amount_threshold(self, text: str) -> dict[str, float] | None:
        """
        Extract an amount bound such as 'over $100k' or 'between 1m and 5m'.

        A bare number without '$' or a magnitude suffix is ignored so that
        'over 30 days' is not read as an amount.
        """
        between = self._amount_between_pattern.search(text)
        if between:
            low = self._amount_from_groups(between.groups()[:3])
            high = self._amount_from_groups(between.groups()[3:])
            if low is not None and high is not None:
                return {"min": min(low, high), "max": max(low, high)}

        threshold: dict[str, float] = {}
        minimum = self._amount_min_pattern.search(text)
        if minimum:
            value = self._amount_from_groups(minimum.groups())
            if value is not None:
                threshold["min"] = value
        maximum = self._amount_max_pattern.search(text)
        if maximum:
            value = self._amount_from_groups(maximum.groups())
            if value is not None:
                threshold["max"] = value
        return threshold or None

    def detect_group_by(self, text: str) -> list[str]:
        return [field for pattern, field in self._group_by_patterns if pattern.search(text)]

    def detect_limit(self, text: str) -> int | None:
        match = self._limit_pattern.search(text)
        if not match:
            return None
        return max(1, min(int(match.group(1)), 1000))

    def detect_refinement(self, text: str) -> RefinementCue | None:
        """Return the follow-up cue the message opens with, if any."""
        for pattern, refinement in self._refinement_patterns:
            match = pattern.search(text)
            if match:
                return RefinementCue(type=refinement, phrase=match.group(0).strip())
        return None

    @staticmethod
    def _amount_from_groups(groups: tuple[str | None, ...]) -> float | None:
        dollar, number, suffix = groups
        if number is None or (dollar is None and suffix is None):
            return None
        return parse_amount(number, suffix)
