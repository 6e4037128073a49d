"""Conversation context kept between chat turns."""

from .store import MAX_CONTEXT_HISTORY, ConversationContext, ConversationContextStore

__all__ = ["ConversationContext", "ConversationContextStore", "MAX_CONTEXT_HISTORY"]
