"""
DealChat Models Module

Pydantic models for type-safe data validation throughout the application.

Available Models:
    Agent Models:
        - AgentMetadata: Stage execution tracking
        - AgentError: Base exception for stage errors
        - ValidationError: Entity value outside its allowed domain
        - SynthesisError: Entities the query builder cannot express
        - BackendError: Record store failures

    Intent Models:
        - Intent, IntentType, Refinement

    Entity Models:
        - EntityBag, AmountThreshold, DateRange, SortSpec

    Account Models:
        - AccountCandidate, AccountMatch

    Query Models:
        - Query, QueryResult, DateFieldSelection

Usage:
    from dealchat.models import Intent, EntityBag, Query
"""

from dealchat.models.account import AccountCandidate, AccountMatch
from dealchat.models.agent import (
    AgentError,
    AgentMetadata,
    BackendError,
    SynthesisError,
    ValidationError,
)
from dealchat.models.entities import AmountThreshold, DateRange, EntityBag, SortSpec
from dealchat.models.intent import Intent, IntentType, Refinement
from dealchat.models.query import DateFieldSelection, Query, QueryResult

__all__ = [
    "AccountCandidate",
    "AccountMatch",
    "AgentError",
    "AgentMetadata",
    "AmountThreshold",
    "BackendError",
    "DateFieldSelection",
    "DateRange",
    "EntityBag",
    "Intent",
    "IntentType",
    "Query",
    "QueryResult",
    "Refinement",
    "SortSpec",
    "SynthesisError",
    "ValidationError",
]
