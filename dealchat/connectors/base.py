"""
Base Record Store Connector

Abstract base class for record store connectors. Provides a consistent async
interface for connecting to and querying the CRM.

All connectors must implement:
- connect(): Establish the client session
- query(): Run one serialized query and return every matching row
- close(): Release the client session
"""

import logging
from abc import ABC, abstractmethod

from dealchat.models.query import QueryResult

logger = logging.getLogger(__name__)


class BaseRecordStore(ABC):
    """
    Abstract base class for record store connectors.

    Features:
    - Async interface throughout
    - Query timeout configuration
    - Automatic resource cleanup

    Usage:
        async with RestRecordStore(instance_url=..., access_token=...) as store:
            result = await store.query("SELECT Id, Name FROM Account LIMIT 5")
            print(f"Found {result.total_size} rows")
    """

    def __init__(self, timeout: int = 30, **kwargs):
        """
        Initialize connector.

        Args:
            timeout: Request timeout in seconds (default: 30)
            **kwargs: Additional connector-specific parameters
        """
        self.timeout = timeout
        self.kwargs = kwargs
        self._connected = False

        logger.info(f"Initialized {self.__class__.__name__}")

    @abstractmethod
    async def connect(self) -> None:
        """
        Establish the client session.

        Should be idempotent.

        Raises:
            BackendError: If the store cannot be reached
        """
        pass

    @abstractmethod
    async def query(self, soql: str) -> QueryResult:
        """
        Execute a query.

        Args:
            soql: Serialized query

        Returns:
            QueryResult with every page of rows

        Raises:
            BackendError: On network, auth or query failure
        """
        pass

    @abstractmethod
    async def close(self) -> None:
        """
        Close the client session.

        Should be idempotent - safe to call multiple times.
        """
        pass

    @property
    def is_connected(self) -> bool:
        """Check if connector is connected."""
        return self._connected

    async def __aenter__(self):
        """Async context manager entry."""
        await self.connect()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        """Async context manager exit."""
        await self.close()
        return False

    def __repr__(self) -> str:
        status = "connected" if self._connected else "disconnected"
        return f"<{self.__class__.__name__} ({status})>"
