"""
Unit tests for RestRecordStore.

Tests the REST connector against httpx.MockTransport handlers.
"""

import httpx
import pytest

from dealchat.config import RecordStoreSettings
from dealchat.connectors.rest import RestRecordStore
from dealchat.models.agent import BackendError

INSTANCE_URL = "https://acme.example.com"
SOQL = "SELECT Id, Name FROM Opportunity LIMIT 5"


def make_store(handler) -> RestRecordStore:
    return RestRecordStore(INSTANCE_URL, "tok", transport=httpx.MockTransport(handler))


def opportunity(record_id: str, name: str) -> dict:
    return {
        "attributes": {"type": "Opportunity", "url": f"/sobjects/Opportunity/{record_id}"},
        "Id": record_id,
        "Name": name,
        "Account": {"attributes": {"type": "Account"}, "Name": "Acme Corporation"},
    }


class TestInitialization:
    """Test RestRecordStore initialization."""

    def test_initialization(self):
        """Test connector initializes with correct config."""
        store = RestRecordStore("https://acme.example.com/", "tok", api_version="60.0", timeout=10)

        assert store.instance_url == "https://acme.example.com"
        assert store.access_token == "tok"
        assert store.timeout == 10
        assert store.query_path == "/services/data/v60.0/query"
        assert store.is_connected is False

    def test_repr(self):
        assert repr(RestRecordStore(INSTANCE_URL, "tok")) == "<RestRecordStore (disconnected)>"

    def test_from_settings(self):
        settings = RecordStoreSettings(
            instance_url="https://acme.example.com", access_token="secret", timeout=5
        )

        store = RestRecordStore.from_settings(settings)

        assert store.instance_url == "https://acme.example.com"
        assert store.access_token == "secret"
        assert store.api_version == "59.0"
        assert store.timeout == 5

    def test_from_empty_settings(self):
        store = RestRecordStore.from_settings(RecordStoreSettings())

        assert store.instance_url is None
        assert store.access_token is None


class TestConnection:
    """Test connect and close."""

    @pytest.mark.asyncio
    async def test_unconfigured_connect_fails(self):
        store = RestRecordStore(None, None)

        with pytest.raises(BackendError) as exc_info:
            await store.connect()

        assert exc_info.value.recoverable is False
        assert store.is_connected is False

    @pytest.mark.asyncio
    async def test_context_manager(self):
        store = make_store(lambda request: httpx.Response(200, json={}))

        async with store:
            assert store.is_connected is True

        assert store.is_connected is False

    @pytest.mark.asyncio
    async def test_close_is_idempotent(self):
        store = make_store(lambda request: httpx.Response(200, json={}))
        await store.connect()

        await store.close()
        await store.close()

        assert store.is_connected is False

    @pytest.mark.asyncio
    async def test_request_after_close_fails(self):
        """Test that a page request on a closed store raises BackendError."""
        store = make_store(lambda request: httpx.Response(200, json={}))
        await store.connect()
        await store.close()

        with pytest.raises(BackendError) as exc_info:
            await store._get("/services/data/v59.0/query/01gNEXT-2000")

        assert exc_info.value.recoverable is False
        assert "not connected" in str(exc_info.value)


class TestQuery:
    """Test query execution."""

    @pytest.mark.asyncio
    async def test_single_page(self):
        """Test that one page of rows is returned without attributes."""
        requests = []

        def handler(request: httpx.Request) -> httpx.Response:
            requests.append(request)
            return httpx.Response(
                200,
                json={"totalSize": 1, "done": True, "records": [opportunity("006A", "Expansion")]},
            )

        async with make_store(handler) as store:
            result = await store.query(SOQL)

        assert result.total_size == 1
        assert result.done is True
        assert result.records == [
            {"Id": "006A", "Name": "Expansion", "Account": {"Name": "Acme Corporation"}}
        ]
        assert requests[0].url.path == "/services/data/v59.0/query"
        assert requests[0].url.params["q"] == SOQL
        assert requests[0].headers["Authorization"] == "Bearer tok"

    @pytest.mark.asyncio
    async def test_follows_next_records_url(self):
        """Test that every page is collected."""
        next_url = "/services/data/v59.0/query/01gD0000002HU6KIAW-2000"

        def handler(request: httpx.Request) -> httpx.Response:
            if request.url.path == next_url:
                return httpx.Response(
                    200,
                    json={"totalSize": 3, "done": True, "records": [opportunity("006C", "Renewal")]},
                )
            return httpx.Response(
                200,
                json={
                    "totalSize": 3,
                    "done": False,
                    "nextRecordsUrl": next_url,
                    "records": [opportunity("006A", "Expansion"), opportunity("006B", "Pilot")],
                },
            )

        async with make_store(handler) as store:
            result = await store.query(SOQL)

        assert result.total_size == 3
        assert [r["Id"] for r in result.records] == ["006A", "006B", "006C"]
        assert result.done is True

    @pytest.mark.asyncio
    async def test_aggregate_rows(self):
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(
                200,
                json={
                    "totalSize": 1,
                    "done": True,
                    "records": [{"attributes": {"type": "AggregateResult"}, "expr0": 42}],
                },
            )

        async with make_store(handler) as store:
            result = await store.query("SELECT COUNT(Id) FROM Opportunity")

        assert result.records == [{"expr0": 42}]

    @pytest.mark.asyncio
    async def test_query_connects_lazily(self):
        store = make_store(
            lambda request: httpx.Response(200, json={"totalSize": 0, "done": True, "records": []})
        )

        result = await store.query(SOQL)
        await store.close()

        assert result.is_empty

    # ============================================================================
    # Failures
    # ============================================================================

    @pytest.mark.asyncio
    async def test_expired_session(self):
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(
                401,
                json=[{"errorCode": "INVALID_SESSION_ID", "message": "Session expired or invalid"}],
            )

        async with make_store(handler) as store:
            with pytest.raises(BackendError) as exc_info:
                await store.query(SOQL)

        error = exc_info.value
        assert error.status_code == 401
        assert error.is_session_expired
        assert error.recoverable is True
        assert "INVALID_SESSION_ID: Session expired or invalid" in error.message

    @pytest.mark.asyncio
    async def test_malformed_query(self):
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(
                400,
                json=[{"errorCode": "MALFORMED_QUERY", "message": "unexpected token: FORM"}],
            )

        async with make_store(handler) as store:
            with pytest.raises(BackendError) as exc_info:
                await store.query("SELECT Id FORM Opportunity")

        error = exc_info.value
        assert error.status_code == 400
        assert error.recoverable is False
        assert error.message == "Query failed with HTTP 400: MALFORMED_QUERY: unexpected token: FORM"

    @pytest.mark.asyncio
    async def test_server_error_is_recoverable(self):
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(503, text="Service Unavailable")

        async with make_store(handler) as store:
            with pytest.raises(BackendError) as exc_info:
                await store.query(SOQL)

        assert exc_info.value.status_code == 503
        assert exc_info.value.recoverable is True

    @pytest.mark.asyncio
    async def test_timeout(self):
        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ReadTimeout("timed out", request=request)

        async with make_store(handler) as store:
            with pytest.raises(BackendError) as exc_info:
                await store.query(SOQL)

        assert exc_info.value.message == "Query timed out after 30s"
        assert exc_info.value.status_code is None

    @pytest.mark.asyncio
    async def test_connection_failure(self):
        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ConnectError("connection refused", request=request)

        async with make_store(handler) as store:
            with pytest.raises(BackendError) as exc_info:
                await store.query(SOQL)

        assert "connection refused" in exc_info.value.message

    @pytest.mark.asyncio
    async def test_non_json_response(self):
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(200, text="<html>login</html>")

        async with make_store(handler) as store:
            with pytest.raises(BackendError) as exc_info:
                await store.query(SOQL)

        assert exc_info.value.message == "Record store returned a non-JSON response"
