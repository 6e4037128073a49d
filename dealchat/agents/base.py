"""
Base Agent Framework

Common base for the pipeline stages (extractor, validator, synthesizer,
resolver, formatter). Provides a name, consistent logging and execution
timing.

Errors are never retried or wrapped here: a stage failure propagates to the
caller unchanged, which owns retry and session refresh.

Usage:
    class MyAgent(BaseAgent):
        def __init__(self):
            super().__init__(name="MyAgent")

    agent = MyAgent()
    with agent.track("operation") as metadata:
        ...
    print(metadata.duration_ms)
"""

import logging
from abc import ABC
from collections.abc import Iterator
from contextlib import contextmanager
from datetime import UTC, datetime

from dealchat.models.agent import AgentError, AgentMetadata

logger = logging.getLogger(__name__)


class BaseAgent(ABC):
    """
    Abstract base class for pipeline stages.

    Attributes:
        name: Unique identifier for this stage
    """

    def __init__(self, name: str):
        self.name = name
        logger.debug(f"Initialized {self.name}", extra={"agent": self.name})

    @contextmanager
    def track(self, operation: str) -> Iterator[AgentMetadata]:
        """
        Time one operation of this stage.

        Yields the metadata object so the caller can flag cache hits; it is
        completed when the block exits, whether or not it raised.
        """
        metadata = self._create_metadata()
        try:
            yield metadata
        except AgentError as e:
            metadata.error = str(e)
            logger.warning(
                f"{self.name}.{operation} failed",
                extra={"agent": self.name, "operation": operation, "error": e.to_dict()},
            )
            raise
        except Exception as e:
            metadata.error = str(e)
            logger.error(
                f"Unexpected error in {self.name}.{operation}",
                extra={
                    "agent": self.name,
                    "operation": operation,
                    "error_type": type(e).__name__,
                },
                exc_info=True,
            )
            raise
        finally:
            metadata.mark_complete()
            logger.debug(
                f"Completed {self.name}.{operation}",
                extra={
                    "agent": self.name,
                    "operation": operation,
                    "duration_ms": metadata.duration_ms,
                    "cache_hit": metadata.cache_hit,
                },
            )

    def _create_metadata(self) -> AgentMetadata:
        """Create a fresh metadata object for tracking execution."""
        return AgentMetadata(agent_name=self.name, started_at=datetime.now(UTC))
