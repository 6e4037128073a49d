"""
Pytest configuration and shared fixtures.

This module provides fixtures and configuration used across all tests.
"""

import logging
from datetime import date

import pytest

from dealchat.config import (
    CacheSettings,
    FormatterSettings,
    QuerySettings,
    ResolverSettings,
    clear_settings_cache,
)
from dealchat.models.account import AccountCandidate
from dealchat.models.query import QueryResult

# ============================================================================
# Pytest Configuration
# ============================================================================


def pytest_configure(config):
    """Configure pytest with custom markers and settings."""
    config.addinivalue_line("markers", "slow: mark test as slow (takes more than 1 second)")
    config.addinivalue_line("markers", "unit: mark test as unit test (default)")


# ============================================================================
# Logging Configuration
# ============================================================================


@pytest.fixture(autouse=True)
def configure_test_logging(caplog):
    """
    Configure logging for tests.

    Sets up log capture and configures log levels.
    This fixture runs automatically for all tests.
    """
    caplog.set_level(logging.DEBUG)
    yield


# ============================================================================
# Environment and Configuration
# ============================================================================


@pytest.fixture(autouse=True)
def isolated_settings(monkeypatch):
    """
    Load settings from a clean environment for each test.

    Removes record store credentials so no test can reach a real CRM, and
    stops get_settings() from re-reading a local .env file.
    """
    for name in ("RECORD_STORE_INSTANCE_URL", "RECORD_STORE_ACCESS_TOKEN"):
        monkeypatch.delenv(name, raising=False)
    monkeypatch.setenv("DEALCHAT_ENV_SOURCE", "environment")
    clear_settings_cache()
    yield
    clear_settings_cache()


@pytest.fixture
def query_settings() -> QuerySettings:
    return QuerySettings(max_results=200, aggregate_limit=50, max_aggregate_limit=200)


@pytest.fixture
def resolver_settings() -> ResolverSettings:
    return ResolverSettings(acceptance_threshold=0.7, candidate_limit=10, max_alternatives=2)


@pytest.fixture
def formatter_settings() -> FormatterSettings:
    return FormatterSettings(max_table_rows=15, relative_date_window_days=30)


@pytest.fixture
def cache_settings() -> CacheSettings:
    return CacheSettings()


# ============================================================================
# Time Helpers
# ============================================================================


class FakeClock:
    """Manually advanced monotonic clock for TTL tests."""

    def __init__(self, start: float = 1000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


@pytest.fixture
def fake_clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def today() -> date:
    """Fixed 'today' used by date-sensitive formatting and predicates."""
    return date(2025, 3, 19)


# ============================================================================
# Record Store Fakes
# ============================================================================


class FakeRecordStore:
    """
    In-memory record store.

    Returns the queued results in order (the last one repeats) and records
    every query it was asked to run.
    """

    def __init__(self, results: list[QueryResult] | None = None):
        self.results = list(results or [QueryResult()])
        self.queries: list[str] = []
        self.closed = False

    async def connect(self) -> None:
        return None

    async def query(self, soql: str) -> QueryResult:
        self.queries.append(soql)
        if len(self.results) > 1:
            return self.results.pop(0)
        return self.results[0]

    async def close(self) -> None:
        self.closed = True


class FakeAccountDirectory:
    """AccountDirectory over a fixed list of account names."""

    def __init__(self, names: list[str]):
        self.accounts = [
            AccountCandidate(id=f"001{i:03d}", name=name, owner=f"Owner {i}")
            for i, name in enumerate(names)
        ]
        self.calls: list[tuple[str, str]] = []

    async def find_by_name(self, name: str) -> list[AccountCandidate]:
        self.calls.append(("find", name))
        return [a for a in self.accounts if a.name.lower() == name.lower()]

    async def search_by_name(self, fragment: str, limit: int = 10) -> list[AccountCandidate]:
        self.calls.append(("search", fragment))
        return [a for a in self.accounts if fragment.lower() in a.name.lower()][:limit]


@pytest.fixture
def fake_store() -> FakeRecordStore:
    return FakeRecordStore()


@pytest.fixture
def account_directory() -> FakeAccountDirectory:
    return FakeAccountDirectory(
        [
            "DHL North America",
            "Best Buy",
            "Best Western",
            "International Business Machines",
            "Acme Corporation",
        ]
    )


# ============================================================================
# Common Test Data
# ============================================================================


@pytest.fixture
def sample_records() -> list[dict]:
    """Opportunity rows as returned by the record store (attributes stripped)."""
    return [
        {
            "Id": "006A",
            "Name": "Acme Expansion",
            "Amount": 250000,
            "Finance_Weighted_ACV__c": 100000,
            "StageName": "Stage 3 - Pilot",
            "CloseDate": None,
            "Target_LOI_Date__c": "2025-03-22",
            "IsClosed": False,
            "ForecastCategory": "Commit",
            "LastActivityDate": "2025-02-01",
            "Owner": {"Name": "Julie Stefanich"},
            "Account": {"Name": "Acme Corporation"},
        },
        {
            "Id": "006B",
            "Name": "Globex Pilot",
            "Amount": 50000,
            "Finance_Weighted_ACV__c": 10000,
            "StageName": "Stage 1 - Discovery",
            "CloseDate": None,
            "Target_LOI_Date__c": "2025-06-30",
            "IsClosed": False,
            "ForecastCategory": "Pipeline",
            "LastActivityDate": None,
            "Owner": {"Name": "Himanshu Agarwal"},
            "Account": {"Name": "Globex"},
        },
    ]


@pytest.fixture
def make_store():
    """Factory for FakeRecordStore instances preloaded with results."""
    return FakeRecordStore
