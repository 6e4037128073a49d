"""
Agent Models

Execution metadata and the error taxonomy shared by every pipeline stage.
A resolution miss is not an error: the resolver returns None for it.
"""

from datetime import UTC, datetime
from typing import Any

from pydantic import BaseModel, ConfigDict


class AgentMetadata(BaseModel):
    """Metadata about one pipeline stage execution."""

    agent_name: str
    started_at: datetime
    completed_at: datetime | None = None
    duration_ms: float | None = None
    cache_hit: bool = False
    error: str | None = None

    model_config = ConfigDict(frozen=False)

    def mark_complete(self) -> None:
        """Mark execution as complete and calculate duration."""
        self.completed_at = datetime.now(UTC)
        delta = self.completed_at - self.started_at
        self.duration_ms = delta.total_seconds() * 1000


class AgentError(Exception):
    """
    Custom exception for pipeline stage errors.

    Attributes:
        agent: Name of the stage that raised the error
        message: Error description
        recoverable: Whether the caller may retry
        context: Additional context for debugging
    """

    def __init__(
        self,
        agent: str,
        message: str,
        recoverable: bool = True,
        context: dict[str, Any] | None = None,
    ):
        self.agent = agent
        self.message = message
        self.recoverable = recoverable
        self.context = context or {}
        super().__init__(f"[{agent}] {message}")

    def to_dict(self) -> dict[str, Any]:
        """Convert error to dictionary for logging."""
        return {
            "agent": self.agent,
            "message": self.message,
            "recoverable": self.recoverable,
            "context": self.context,
            "type": self.__class__.__name__,
        }


class ValidationError(AgentError):
    """An entity value lies outside its allowed domain (never recoverable)."""

    def __init__(
        self,
        agent: str,
        message: str,
        violations: list[str] | None = None,
        context: dict[str, Any] | None = None,
    ):
        self.violations = list(violations or [])
        merged = dict(context or {})
        merged["violations"] = self.violations
        super().__init__(agent, message, recoverable=False, context=merged)


class SynthesisError(AgentError):
    """The entity combination cannot be expressed as a single query."""

    def __init__(self, agent: str, message: str, context: dict[str, Any] | None = None):
        super().__init__(agent, message, recoverable=False, context=context)


class BackendError(AgentError):
    """Network, auth or query failure reported by the record store."""

    def __init__(
        self,
        agent: str,
        message: str,
        status_code: int | None = None,
        recoverable: bool = True,
        context: dict[str, Any] | None = None,
    ):
        self.status_code = status_code
        super().__init__(agent, message, recoverable=recoverable, context=context)

    @property
    def is_session_expired(self) -> bool:
        """True when the store rejected the bearer token."""
        return self.status_code == 401
