"""
REST Record Store Connector

Runs SOQL queries against a CRM REST query endpoint with httpx and follows
result pagination (``nextRecordsUrl``) until every page has been read.

Failures are reported as BackendError with the HTTP status, so callers can
tell an expired session (401) from a malformed query (400) or an outage.
"""

import logging
from typing import Any

import httpx

from dealchat.config import RecordStoreSettings
from dealchat.connectors.base import BaseRecordStore
from dealchat.models.agent import BackendError
from dealchat.models.query import QueryResult

logger = logging.getLogger(__name__)

CONNECTOR_NAME = "RestRecordStore"


def _strip_attributes(value: Any) -> Any:
    """Drop the per-record 'attributes' envelope, including on related records."""
    if isinstance(value, dict):
        return {k: _strip_attributes(v) for k, v in value.items() if k != "attributes"}
    if isinstance(value, list):
        return [_strip_attributes(item) for item in value]
    return value


class RestRecordStore(BaseRecordStore):
    """
    Record store connector over the REST query API.

    Usage:
        store = RestRecordStore.from_settings(get_settings().record_store)
        async with store:
            result = await store.query("SELECT Id, Name FROM Account LIMIT 5")
    """

    def __init__(
        self,
        instance_url: str | None,
        access_token: str | None,
        api_version: str = "59.0",
        timeout: int = 30,
        transport: httpx.AsyncBaseTransport | None = None,
        **kwargs,
    ):
        """
        Initialize REST connector.

        Args:
            instance_url: Base URL of the CRM instance
            access_token: Bearer token for the session
            api_version: REST API version, e.g. "59.0"
            timeout: Request timeout in seconds
            transport: Optional httpx transport (tests use httpx.MockTransport)
        """
        super().__init__(timeout=timeout, **kwargs)
        self.instance_url = instance_url.rstrip("/") if instance_url else None
        self.access_token = access_token
        self.api_version = api_version
        self._transport = transport
        self._client: httpx.AsyncClient | None = None

    @classmethod
    def from_settings(
        cls,
        settings: RecordStoreSettings,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> "RestRecordStore":
        return cls(
            instance_url=str(settings.instance_url) if settings.instance_url else None,
            access_token=(
                settings.access_token.get_secret_value() if settings.access_token else None
            ),
            api_version=settings.api_version,
            timeout=settings.timeout,
            transport=transport,
        )

    @property
    def query_path(self) -> str:
        return f"/services/data/v{self.api_version}/query"

    async def connect(self) -> None:
        if self._client is not None:
            return
        if not self.instance_url or not self.access_token:
            raise BackendError(
                CONNECTOR_NAME,
                "Record store is not configured (instance URL and access token are required)",
                recoverable=False,
            )

        self._client = httpx.AsyncClient(
            base_url=self.instance_url,
            headers={
                "Authorization": f"Bearer {self.access_token}",
                "Accept": "application/json",
            },
            timeout=float(self.timeout),
            transport=self._transport,
        )
        self._connected = True
        logger.info(
            f"Connected to record store at {self.instance_url}",
            extra={"api_version": self.api_version},
        )

    async def close(self) -> None:
        if self._client is not None:
            await self._client.aclose()
            self._client = None
        self._connected = False

    async def query(self, soql: str) -> QueryResult:
        """
        Execute a query and collect every page of rows.

        Raises:
            BackendError: On network, auth or query failure
        """
        await self.connect()

        logger.debug("Executing record store query", extra={"soql": soql})
        page = await self._get(self.query_path, params={"q": soql})
        total_size = int(page.get("totalSize", 0))
        records = list(page.get("records", []))

        while not page.get("done", True) and page.get("nextRecordsUrl"):
            page = await self._get(page["nextRecordsUrl"])
            records.extend(page.get("records", []))

        logger.info(
            f"Record store returned {len(records)} rows",
            extra={"total_size": total_size, "rows": len(records)},
        )
        return QueryResult(
            total_size=total_size,
            records=_strip_attributes(records),
            done=bool(page.get("done", True)),
        )

    async def _get(self, path: str, params: dict[str, str] | None = None) -> dict[str, Any]:
        if self._client is None:
            raise BackendError(
                CONNECTOR_NAME,
                "Record store is not connected",
                recoverable=False,
                context={"path": path},
            )
        try:
            response = await self._client.get(path, params=params)
            response.raise_for_status()
        except httpx.HTTPStatusError as e:
            status = e.response.status_code
            raise BackendError(
                CONNECTOR_NAME,
                f"Query failed with HTTP {status}: {self._error_message(e.response)}",
                status_code=status,
                recoverable=status == 401 or status >= 500,
                context={"path": path},
            ) from e
        except httpx.TimeoutException as e:
            raise BackendError(
                CONNECTOR_NAME,
                f"Query timed out after {self.timeout}s",
                context={"path": path},
            ) from e
        except httpx.HTTPError as e:
            raise BackendError(
                CONNECTOR_NAME,
                f"Record store request failed: {e}",
                context={"path": path},
            ) from e

        try:
            return response.json()
        except ValueError as e:
            raise BackendError(
                CONNECTOR_NAME,
                "Record store returned a non-JSON response",
                status_code=response.status_code,
                context={"path": path},
            ) from e

    @staticmethod
    def _error_message(response: httpx.Response) -> str:
        try:
            body = response.json()
        except ValueError:
            return response.text[:200] or response.reason_phrase
        if isinstance(body, list) and body and isinstance(body[0], dict):
            code = body[0].get("errorCode")
            message = body[0].get("message", "")
            return f"{code}: {message}" if code else message
        return response.reason_phrase
