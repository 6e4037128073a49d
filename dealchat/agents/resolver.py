"""
AccountResolver

Maps a free-text company reference ("Best Buy Co., Inc.", "DHL", "ibm") to a
canonical account record.

Resolution order, first hit wins:
1. exact match on the raw string
2. exact match on the normalized string
3. fuzzy: substring search for the normalized string, every candidate scored
   with score_similarity; the best one is returned with up to two runners-up
4. alias expansion (static initialism map) retried as an exact match

Successful resolutions are cached by normalized input. A miss is None, not an
error; record store failures propagate unchanged.
"""

import asyncio
import logging
import re
from collections.abc import Iterable
from typing import Protocol

from dealchat.agents.base import BaseAgent
from dealchat.agents.query_builder import QuerySynthesizer
from dealchat.config import ResolverSettings, get_settings
from dealchat.connectors.base import BaseRecordStore
from dealchat.models.account import AccountCandidate, AccountMatch
from dealchat.utils.cache import TTLCache
from dealchat.utils.formatters import get_field
from dealchat.utils.similarity import score_similarity

logger = logging.getLogger(__name__)

MIN_NAME_LENGTH = 2

SUFFIX_TOKENS = frozenset(
    {
        "corporation",
        "corp",
        "incorporated",
        "inc",
        "company",
        "co",
        "limited",
        "ltd",
        "llc",
        "plc",
        "group",
        "holdings",
        "partners",
        "lp",
        "llp",
        "the",
        "&",
        "and",
    }
)

ALIASES = {
    "ibm": "International Business Machines",
    "ge": "General Electric",
    "3m": "Minnesota Mining and Manufacturing",
    "at&t": "American Telephone and Telegraph",
    "hp": "Hewlett-Packard",
    "jpmorgan": "JPMorgan Chase",
    "bofa": "Bank of America",
    "gs": "Goldman Sachs",
    "ms": "Morgan Stanley",
}

_PUNCTUATION = re.compile(r"[^\w\s&]")


def normalize(name: str) -> str:
    """
    Canonical comparison form of a company name.

    Lower-cases, turns hyphens into spaces, strips punctuation other than '&'
    and drops legal-suffix tokens. A name made only of suffix tokens
    ("The Company") keeps its tokens. Idempotent.
    """
    stripped = _PUNCTUATION.sub("", name.lower().replace("-", " "))
    tokens = stripped.split()
    kept = [token for token in tokens if token not in SUFFIX_TOKENS]
    return " ".join(kept or tokens)


def expand_alias(name: str) -> str:
    """Full company name for a known initialism, otherwise the input."""
    return ALIASES.get(name.lower().strip(), name)


class AccountDirectory(Protocol):
    """Canonical record lookup used by the resolver."""

    async def find_by_name(self, name: str) -> list[AccountCandidate]:
        """Accounts whose name equals name, ignoring case."""
        ...

    async def search_by_name(self, fragment: str, limit: int = 10) -> list[AccountCandidate]:
        """Accounts whose name contains fragment, ignoring case."""
        ...


class RecordStoreAccountDirectory:
    """AccountDirectory backed by account queries against the record store."""

    def __init__(self, store: BaseRecordStore, synthesizer: QuerySynthesizer | None = None):
        self.store = store
        self.synthesizer = synthesizer if synthesizer is not None else QuerySynthesizer()

    async def find_by_name(self, name: str) -> list[AccountCandidate]:
        query = self.synthesizer.build_account_query([name], exact=True, limit=1)
        result = await self.store.query(query.to_soql())
        return [self._to_candidate(record) for record in result.records]

    async def search_by_name(self, fragment: str, limit: int = 10) -> list[AccountCandidate]:
        query = self.synthesizer.build_account_query([fragment], exact=False, limit=limit)
        result = await self.store.query(query.to_soql())
        return [self._to_candidate(record) for record in result.records]

    @staticmethod
    def _to_candidate(record: dict) -> AccountCandidate:
        return AccountCandidate(
            id=str(record.get("Id", "")),
            name=str(record.get("Name", "")),
            owner=get_field(record, "Owner.Name"),
        )


class AccountResolver(BaseAgent):
    """
    Fuzzy company-name resolver.

    Usage:
        resolver = AccountResolver(RecordStoreAccountDirectory(store))
        match = await resolver.resolve("DHL")
        if resolver.is_confident(match):
            ...
    """

    def __init__(
        self,
        directory: AccountDirectory,
        cache: TTLCache | None = None,
        settings: ResolverSettings | None = None,
    ):
        super().__init__(name="AccountResolver")
        self.directory = directory
        self.config = settings or get_settings().resolver
        if cache is None:
            cache = TTLCache(get_settings().cache.resolver_ttl_seconds, name="resolver_cache")
        self.cache = cache

    async def resolve(self, raw_name: str | None) -> AccountMatch | None:
        """
        Resolve a company reference to an account.

        Args:
            raw_name: Free-text company name as typed by the user

        Returns:
            AccountMatch, or None when nothing matched or the input is too
            short to search for
        """
        if not isinstance(raw_name, str) or len(raw_name.strip()) < MIN_NAME_LENGTH:
            return None

        raw = raw_name.strip()
        key = normalize(raw)

        cached = self.cache.get(key)
        if cached is not None:
            logger.debug(f"Resolver cache hit for '{raw}'", extra={"key": key})
            return cached

        with self.track("resolve"):
            match = await self._resolve_uncached(raw, key)

        if match is None:
            logger.info(f"No account found for '{raw}'", extra={"normalized": key})
            return None

        self.cache.set(key, match)
        logger.info(
            f"Resolved '{raw}' to '{match.name}'",
            extra={"match_type": match.match_type, "confidence": match.confidence},
        )
        return match

    def is_confident(self, match: AccountMatch | None) -> bool:
        """Whether downstream stages may rely on this match."""
        return match is not None and match.confidence >= self.config.acceptance_threshold

    async def resolve_best_of(self, candidates: Iterable[str | None]) -> AccountMatch | None:
        """First resolution that meets the acceptance threshold."""
        for candidate in candidates:
            match = await self.resolve(candidate)
            if self.is_confident(match):
                return match
        return None

    async def resolve_many(self, names: Iterable[str]) -> dict[str, AccountMatch | None]:
        """Resolve several names concurrently, keyed by the input name."""
        unique = list(dict.fromkeys(names))
        matches = await asyncio.gather(*(self.resolve(name) for name in unique))
        return dict(zip(unique, matches, strict=True))

    async def _resolve_uncached(self, raw: str, key: str) -> AccountMatch | None:
        match = await self._exact_match(raw)
        if match is not None:
            return match

        if key and key != raw.lower():
            match = await self._exact_match(key)
            if match is not None:
                return match

        if key:
            match = await self._fuzzy_match(key)
            if match is not None:
                return match

        expanded = expand_alias(raw)
        if expanded != raw:
            return await self._exact_match(expanded)
        return None

    async def _exact_match(self, name: str) -> AccountMatch | None:
        wanted = name.casefold()
        for candidate in await self.directory.find_by_name(name):
            if candidate.name.casefold() == wanted:
                return AccountMatch.exact(candidate)
        return None

    async def _fuzzy_match(self, normalized: str) -> AccountMatch | None:
        candidates = await self.directory.search_by_name(
            normalized, limit=self.config.candidate_limit
        )
        if not candidates:
            return None

        scored = sorted(
            ((score_similarity(normalized, normalize(c.name)), c) for c in candidates),
            key=lambda pair: pair[0],
            reverse=True,
        )
        best_score, best = scored[0]
        runners_up = scored[1 : 1 + self.config.max_alternatives]
        return AccountMatch(
            id=best.id,
            name=best.name,
            owner=best.owner,
            match_type="fuzzy",
            confidence=max(0.0, min(1.0, best_score)),
            alternatives=[candidate.name for _, candidate in runners_up],
        )
