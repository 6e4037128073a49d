"""In-memory conversation context, keyed by user and channel."""

from __future__ import annotations

import logging
import time
from collections.abc import Callable
from dataclasses import dataclass, field
from typing import Any

from dealchat.config import get_settings
from dealchat.models.intent import Intent
from dealchat.utils.cache import TTLCache

logger = logging.getLogger(__name__)

MAX_CONTEXT_HISTORY = 5


@dataclass
class ConversationContext:
    user_id: str
    channel_id: str
    history: list[dict[str, Any]] = field(default_factory=list)

    @property
    def last_query(self) -> dict[str, Any] | None:
        return self.history[-1] if self.history else None


class ConversationContextStore:
    """
    Remember the last few classified turns of each conversation.

    Entries expire ttl_seconds after the latest turn; every record() call
    refreshes the timer. Only the most recent max_history turns are kept.
    """

    def __init__(
        self,
        ttl_seconds: float | None = None,
        *,
        max_history: int = MAX_CONTEXT_HISTORY,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        if ttl_seconds is None:
            ttl_seconds = get_settings().cache.context_ttl_seconds
        self.max_history = max_history
        self.cache = TTLCache(ttl_seconds, name="conversation_context", clock=clock)

    @staticmethod
    def _key(user_id: str, channel_id: str) -> str:
        return f"{user_id}:{channel_id}"

    def get(self, user_id: str, channel_id: str) -> ConversationContext | None:
        return self.cache.get(self._key(user_id, channel_id))

    def last_query(self, user_id: str, channel_id: str) -> dict[str, Any] | None:
        """Summary of the previous turn, as passed to the extractor."""
        context = self.get(user_id, channel_id)
        return context.last_query if context else None

    def history(self, user_id: str, channel_id: str) -> list[dict[str, Any]]:
        context = self.get(user_id, channel_id)
        return list(context.history) if context else []

    def record(
        self,
        user_id: str,
        channel_id: str,
        intent: Intent,
        result_count: int = 0,
    ) -> ConversationContext:
        context = self.get(user_id, channel_id) or ConversationContext(user_id, channel_id)
        entry = intent.summary()
        entry["result_count"] = result_count
        context.history = (context.history + [entry])[-self.max_history :]

        self.cache.set(self._key(user_id, channel_id), context, source=user_id)
        logger.info(
            "Updated conversation context",
            extra={
                "user_id": user_id,
                "channel_id": channel_id,
                "intent": entry["intent"],
                "history_length": len(context.history),
            },
        )
        return context

    def clear(self, user_id: str, channel_id: str) -> bool:
        removed = self.cache.delete(self._key(user_id, channel_id))
        if removed:
            logger.info(
                "Cleared conversation context",
                extra={"user_id": user_id, "channel_id": channel_id},
            )
        return removed

    def cleanup(self) -> int:
        return self.cache.cleanup()

    def __len__(self) -> int:
        return len(self.cache)
