"""
EntityValidator

Checks extracted entities against the record store vocabulary before any
query is built.

Rules:
- Every value must be in its allow-list or numeric range.
- Unknown keys are dropped, so the extractor may over-produce candidates.
- Free text is sanitized unconditionally.
- Validation fails closed: one bad field rejects the whole bag, and the
  error lists every violated constraint.
"""

import logging
from typing import Any

from pydantic import ValidationError as PydanticValidationError

from dealchat.agents.base import BaseAgent
from dealchat.models.agent import ValidationError
from dealchat.models.entities import EntityBag
from dealchat.utils.sanitize import sanitize_input

logger = logging.getLogger(__name__)

MAX_MESSAGE_LENGTH = 1000


def _format_violation(error: dict[str, Any]) -> str:
    location = ".".join(str(part) for part in error.get("loc", ()) if part != "__root__")
    message = error.get("msg", "invalid value")
    if location:
        return f"{location}: {message}"
    return message


class EntityValidator(BaseAgent):
    """Allow-list validator for extracted entities."""

    def __init__(self):
        super().__init__(name="EntityValidator")

    def validate(self, raw_entities: dict[str, Any] | EntityBag | None) -> EntityBag:
        """
        Validate raw entities into an EntityBag.

        Args:
            raw_entities: Candidate entities (snake_case or camelCase keys)

        Returns:
            EntityBag with unknown keys stripped and free text sanitized

        Raises:
            ValidationError: If any present field violates its constraint
        """
        if raw_entities is None:
            return EntityBag()
        if isinstance(raw_entities, EntityBag):
            raw_entities = raw_entities.model_dump(exclude_none=True)
        if not isinstance(raw_entities, dict):
            raise ValidationError(
                self.name,
                "Entities must be a mapping",
                violations=[f"expected mapping, got {type(raw_entities).__name__}"],
            )

        try:
            bag = EntityBag.model_validate(raw_entities)
        except PydanticValidationError as e:
            violations = [_format_violation(error) for error in e.errors()]
            logger.info(
                f"[{self.name}] Rejected entities",
                extra={"violations": violations, "keys": sorted(raw_entities)},
            )
            raise ValidationError(self.name, "Invalid entities", violations=violations) from e

        return bag

    def validate_user_message(self, message: Any) -> str:
        """Check a raw chat message and return its sanitized form."""
        if not isinstance(message, str) or not message.strip():
            raise ValidationError(
                self.name, "Invalid user message", violations=["message must be non-empty text"]
            )
        if len(message) > MAX_MESSAGE_LENGTH:
            raise ValidationError(
                self.name,
                "Invalid user message",
                violations=[f"message must be at most {MAX_MESSAGE_LENGTH} characters"],
            )
        return sanitize_input(message)

