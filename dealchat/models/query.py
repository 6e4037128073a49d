"""
Query Models

Declarative query produced by the synthesizer and the raw result returned by
the record store.
"""

import hashlib
from dataclasses import dataclass, field
from enum import StrEnum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field


class DateFieldSelection(StrEnum):
    """Which date field a timeframe filter applies to."""

    OUTCOME = "CloseDate"
    TARGET = "Target_LOI_Date__c"
    CREATED = "CreatedDate"


@dataclass(frozen=True)
class Query:
    """A single SOQL-style query, serialized on demand."""

    object_name: str
    fields: tuple[str, ...]
    conditions: tuple[str, ...] = ()
    group_by: tuple[str, ...] = ()
    order_by: str | None = None
    limit: int | None = None
    date_field: DateFieldSelection | None = None
    metric_aliases: dict[str, str] = field(default_factory=dict, compare=False)

    @property
    def is_aggregate(self) -> bool:
        return bool(self.group_by)

    def to_soql(self) -> str:
        soql = f"SELECT {', '.join(self.fields)} FROM {self.object_name}"
        if self.conditions:
            soql += " WHERE " + " AND ".join(self.conditions)
        if self.group_by:
            soql += " GROUP BY " + ", ".join(self.group_by)
        if self.order_by:
            soql += f" ORDER BY {self.order_by}"
        if self.limit is not None:
            soql += f" LIMIT {self.limit}"
        return soql

    @property
    def cache_key(self) -> str:
        return hashlib.sha256(self.to_soql().encode("utf-8")).hexdigest()

    def __str__(self) -> str:
        return self.to_soql()


class QueryResult(BaseModel):
    """Rows returned by the record store for one query."""

    total_size: int = Field(0, ge=0, description="Total matching rows, may exceed len(records)")
    records: list[dict[str, Any]] = Field(default_factory=list)
    done: bool = True

    model_config = ConfigDict(frozen=True)

    @property
    def is_empty(self) -> bool:
        return self.total_size == 0 or not self.records
