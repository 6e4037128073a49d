"""
DealChat Agents Module

Deterministic pipeline turning a chat message into a record store query and a
chat reply.

Available Agents:
    - BaseAgent: Abstract base class for all stages
    - IntentExtractor: Rule cascade mapping a message to an Intent
    - EntityValidator: Allow-list and range validation of entities
    - AccountResolver: Fuzzy company-name resolution against account records
    - QuerySynthesizer: Validated entities to a declarative Query
    - ResponseFormatter: Query rows to chat text

Usage:
    from dealchat.agents import IntentExtractor, QuerySynthesizer

    intent = IntentExtractor().extract("late stage deals over $100k")
    query = QuerySynthesizer().build(intent.entities)
    print(query.to_soql())
"""

from dealchat.agents.base import BaseAgent
from dealchat.agents.extractor import IntentExtractor
from dealchat.agents.query_builder import QuerySynthesizer
from dealchat.agents.resolver import AccountResolver, RecordStoreAccountDirectory
from dealchat.agents.response_formatter import ResponseFormatter
from dealchat.agents.validator import EntityValidator

__all__ = [
    "BaseAgent",
    "IntentExtractor",
    "EntityValidator",
    "AccountResolver",
    "RecordStoreAccountDirectory",
    "QuerySynthesizer",
    "ResponseFormatter",
]
