"""
DealChat Pipeline Orchestrator

Runs one chat turn through every stage:
- validate message -> extract intent (with the previous turn as context)
- conversational intents and record-changing actions are answered directly
- resolve account names -> synthesize query -> query cache or record store
- format rows -> remember the turn for follow-ups

Validation and synthesis failures are logged and turned into explanatory
replies. Record store failures (BackendError) propagate to the caller, which
owns retry and session refresh.
"""

import logging
import time
from typing import Any

from pydantic import BaseModel, Field

from dealchat.agents.extractor import IntentExtractor
from dealchat.agents.query_builder import QuerySynthesizer
from dealchat.agents.resolver import AccountResolver, RecordStoreAccountDirectory
from dealchat.agents.response_formatter import ResponseFormatter
from dealchat.agents.validator import EntityValidator
from dealchat.config import Settings, get_settings
from dealchat.connectors.base import BaseRecordStore
from dealchat.connectors.rest import RestRecordStore
from dealchat.conversations.store import ConversationContextStore
from dealchat.models.account import AccountMatch
from dealchat.models.agent import AgentError, SynthesisError, ValidationError
from dealchat.models.intent import ACTION_INTENTS, UNSUPPORTED_INTENTS, Intent, IntentType
from dealchat.utils.cache import CacheSweeper, QueryResultCache

logger = logging.getLogger(__name__)


class ChatReply(BaseModel):
    """Outcome of one chat turn."""

    text: str
    intent: Intent | None = None
    soql: str | None = None
    row_count: int = 0
    cache_hit: bool = False
    account_matches: dict[str, AccountMatch | None] = Field(default_factory=dict)
    error: dict[str, Any] | None = None
    duration_ms: float = 0.0


class ChatPipeline:
    """
    Chat turn orchestrator.

    Usage:
        pipeline = await create_pipeline()
        async with pipeline:
            reply = await pipeline.handle_message("late stage deals", "U1", "C1")
            print(reply.text)
    """

    def __init__(
        self,
        store: BaseRecordStore,
        *,
        extractor: IntentExtractor | None = None,
        validator: EntityValidator | None = None,
        synthesizer: QuerySynthesizer | None = None,
        resolver: AccountResolver | None = None,
        formatter: ResponseFormatter | None = None,
        query_cache: QueryResultCache | None = None,
        context_store: ConversationContextStore | None = None,
        settings: Settings | None = None,
    ):
        self.config = settings or get_settings()
        self.store = store
        self.extractor = extractor if extractor is not None else IntentExtractor()
        self.validator = validator if validator is not None else EntityValidator()
        if synthesizer is None:
            synthesizer = QuerySynthesizer(settings=self.config.query, validator=self.validator)
        self.synthesizer = synthesizer
        if resolver is None:
            resolver = AccountResolver(
                RecordStoreAccountDirectory(store, self.synthesizer),
                settings=self.config.resolver,
            )
        self.resolver = resolver
        if formatter is None:
            formatter = ResponseFormatter(settings=self.config.formatter)
        self.formatter = formatter
        if query_cache is None:
            query_cache = QueryResultCache(self.config.cache.query_ttl_seconds)
        self.query_cache = query_cache
        if context_store is None:
            context_store = ConversationContextStore(self.config.cache.context_ttl_seconds)
        self.context_store = context_store
        self._sweeper: CacheSweeper | None = None

        logger.info("ChatPipeline initialized", extra={"store": repr(store)})

    async def handle_message(self, text: Any, user_id: str, channel_id: str) -> ChatReply:
        """
        Answer one chat message.

        Args:
            text: Raw message text
            user_id: Chat user identifier
            channel_id: Chat channel identifier

        Returns:
            ChatReply with the reply text and what was run to produce it

        Raises:
            BackendError: If the record store query fails
        """
        started = time.perf_counter()

        try:
            message = self.validator.validate_user_message(text)
        except ValidationError as e:
            return self._error_reply(e, None, started)

        prior = self.context_store.last_query(user_id, channel_id)
        intent = self.extractor.extract(message, prior_context=prior)
        logger.info(
            f"Classified message as {intent.intent.value}",
            extra={
                "user_id": user_id,
                "channel_id": channel_id,
                "confidence": intent.confidence,
                "follow_up": intent.follow_up,
            },
        )

        direct = self._direct_reply(intent)
        if direct is not None:
            return ChatReply(text=direct, intent=intent, duration_ms=self._elapsed(started))

        intent, matches = await self._resolve_accounts(intent)

        if intent.intent == IntentType.ACCOUNT_LOOKUP and matches:
            confident = [m for m in matches.values() if self.resolver.is_confident(m)]
            if len(confident) == len(matches):
                self.context_store.record(user_id, channel_id, intent, len(confident))
                return ChatReply(
                    text="\n".join(self.formatter.format_account_match(m) for m in confident),
                    intent=intent,
                    account_matches=matches,
                    duration_ms=self._elapsed(started),
                )

        try:
            query = self.synthesizer.build(intent.entities)
        except (ValidationError, SynthesisError) as e:
            return self._error_reply(e, intent, started, matches)

        result = self.query_cache.get(query)
        cache_hit = result is not None
        if result is None:
            result = await self.store.query(query.to_soql())
            self.query_cache.set(query, result)

        text_reply = self.formatter.format(result, intent)
        self.context_store.record(user_id, channel_id, intent, result.total_size)

        return ChatReply(
            text=text_reply,
            intent=intent,
            soql=query.to_soql(),
            row_count=result.total_size,
            cache_hit=cache_hit,
            account_matches=matches,
            duration_ms=self._elapsed(started),
        )

    def _direct_reply(self, intent: Intent) -> str | None:
        """Reply for intents answered without a record store query."""
        match intent.intent:
            case IntentType.GREETING:
                return self.formatter.format_greeting(intent)
            case IntentType.CONVERSATION:
                return self.formatter.format_conversation(intent)
            case IntentType.UNKNOWN_QUERY:
                return self.formatter.format_unknown_query(intent)
        if intent.intent in ACTION_INTENTS:
            return self.formatter.format_unsupported_action(intent)
        if intent.intent in UNSUPPORTED_INTENTS:
            return self.formatter.format_unsupported_request(intent)
        if intent.entities.get("unavailable_product_line"):
            return self.formatter.format_no_results(intent)
        return None

    async def _resolve_accounts(
        self, intent: Intent
    ) -> tuple[Intent, dict[str, AccountMatch | None]]:
        """Swap typed account names for canonical ones when the match is confident."""
        accounts = intent.entities.get("accounts") or []
        if not accounts:
            return intent, {}

        matches = await self.resolver.resolve_many(accounts)
        resolved = []
        for raw in accounts:
            match = matches.get(raw)
            resolved.append(match.name if self.resolver.is_confident(match) else raw)

        if resolved == list(accounts):
            return intent, matches
        entities = {**intent.entities, "accounts": resolved}
        return intent.model_copy(update={"entities": entities}), matches

    def _error_reply(
        self,
        error: AgentError,
        intent: Intent | None,
        started: float,
        matches: dict[str, AccountMatch | None] | None = None,
    ) -> ChatReply:
        logger.warning(f"Could not answer message: {error.message}", extra={"error": error.to_dict()})
        return ChatReply(
            text=self.formatter.format_error(error),
            intent=intent,
            account_matches=matches or {},
            error=error.to_dict(),
            duration_ms=self._elapsed(started),
        )

    @staticmethod
    def _elapsed(started: float) -> float:
        return (time.perf_counter() - started) * 1000

    def invalidate_cached_results(self, pattern: str) -> int:
        """Drop cached query results whose query text contains pattern."""
        return self.query_cache.invalidate(pattern)

    def start_background_tasks(self) -> None:
        """Start the periodic cache sweeper (needs a running event loop)."""
        if self._sweeper is None:
            self._sweeper = CacheSweeper(
                [self.query_cache, self.resolver.cache, self.context_store.cache],
                interval_seconds=self.config.cache.sweep_interval_seconds,
            )
        self._sweeper.start()

    async def close(self) -> None:
        if self._sweeper is not None:
            await self._sweeper.stop()
        await self.store.close()

    async def __aenter__(self) -> "ChatPipeline":
        self.start_background_tasks()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        await self.close()
        return False

    def cache_stats(self) -> dict[str, dict[str, Any]]:
        return {
            "query_cache": self.query_cache.stats(),
            "resolver_cache": self.resolver.cache.stats(),
            "conversation_context": self.context_store.cache.stats(),
        }


async def create_pipeline(settings: Settings | None = None, transport=None) -> ChatPipeline:
    """
    Create a ChatPipeline backed by the REST record store.

    Args:
        settings: Settings to use (loaded from the environment if omitted)
        transport: Optional httpx transport for the record store client

    Returns:
        Pipeline with a connected record store
    """
    config = settings or get_settings()
    store = RestRecordStore.from_settings(config.record_store, transport=transport)
    await store.connect()
    return ChatPipeline(store, settings=config)

