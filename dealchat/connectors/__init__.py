"""
Record Store Connectors Module

Provides async connectors for the CRM record store.

Available Connectors:
    - BaseRecordStore: Abstract base class
    - RestRecordStore: REST query API connector (httpx)

Usage:
    from dealchat.connectors import RestRecordStore

    store = RestRecordStore(
        instance_url="https://acme.my.salesforce.com",
        access_token="...",
    )

    async with store:
        result = await store.query("SELECT Id, Name FROM Opportunity LIMIT 10")
"""

from dealchat.connectors.base import BaseRecordStore
from dealchat.connectors.rest import RestRecordStore

__all__ = [
    "BaseRecordStore",
    "RestRecordStore",
]
