"""
Persistence collaborator for tenant-scoped records.

Services talk to a RecordStore instead of a concrete database. Records are
plain dicts keyed by column name; every record carries "id" and
"tenant_id". The tenant is read from utils.tenant_context on every call,
so a store instance can be shared across requests.

Versioned tables carry an integer "version" column. Updates bump it, and an
update given an expected_version that no longer matches raises
ConflictError instead of silently overwriting a concurrent change.

Implementations:
- MemoryRecordStore: dict-backed, for tests and local runs
- clients.postgres_store.PostgresRecordStore: PostgreSQL with RLS
"""

import copy
import logging
from abc import ABC, abstractmethod
from typing import Any
from uuid import UUID

from core.errors import ConflictError
from utils.tenant_context import get_current_tenant_id

logger = logging.getLogger(__name__)

VERSIONED_TABLES = frozenset({"invoices"})

Record = dict[str, Any]


class RecordStore(ABC):
    """Tenant-scoped create/read/update/delete plus filtered queries."""

    @abstractmethod
    def insert(self, table: str, record: Record) -> Record:
        """
        Insert a record for the current tenant.

        tenant_id is stamped from context; versioned tables start at version 1.

        Returns:
            The stored record
        """

    @abstractmethod
    def get(self, table: str, record_id: UUID) -> Record | None:
        """Get a record by ID, or None if missing or owned by another tenant."""

    @abstractmethod
    def update(
        self,
        table: str,
        record_id: UUID,
        changes: Record,
        expected_version: int | None = None
    ) -> Record | None:
        """
        Apply changes to a record.

        Args:
            table: Table name
            record_id: Record ID
            changes: Column values to set
            expected_version: Version the caller read; checked on versioned tables

        Returns:
            Updated record, or None if the record does not exist

        Raises:
            ConflictError: If expected_version does not match the stored version
        """

    @abstractmethod
    def delete(self, table: str, record_id: UUID) -> bool:
        """Delete a record. Returns False if it did not exist."""

    @abstractmethod
    def query(
        self,
        table: str,
        filters: Record | None = None,
        order_by: str | None = None,
        descending: bool = False,
        limit: int | None = None,
        offset: int = 0
    ) -> list[Record]:
        """
        Query records of the current tenant.

        Filter values match by equality; list, tuple or set values match
        any of their members.
        """

    @abstractmethod
    def search(
        self,
        table: str,
        columns: list[str],
        term: str,
        order_by: str | None = None,
        descending: bool = False,
        limit: int | None = None
    ) -> list[Record]:
        """
        Records of the current tenant where any of the columns contains
        term, case-insensitively. Wildcard characters in term match literally.
        """

    @abstractmethod
    def count(self, table: str, filters: Record | None = None) -> int:
        """Count records of the current tenant matching filters."""


def _matches(record: Record, filters: Record) -> bool:
    for column, expected in filters.items():
        value = record.get(column)
        if isinstance(expected, (list, tuple, set, frozenset)):
            if value not in expected:
                return False
        elif value != expected:
            return False
    return True


def _normalise(value: Any) -> Any:
    # Enum columns are stored by value, matching what PostgreSQL returns
    if isinstance(value, (list, tuple, set, frozenset)):
        return [_normalise(v) for v in value]
    return getattr(value, "value", value)


class MemoryRecordStore(RecordStore):
    """
    In-memory RecordStore.

    Records are deep-copied on the way in and out so callers can never
    mutate stored state by accident.

    Usage:
        store = MemoryRecordStore()
        with tenant_context(org_id):
            store.insert("customers", {"id": uuid4(), "name": "Acme"})
    """

    def __init__(self):
        self._tables: dict[str, dict[UUID, Record]] = {}

    def _table(self, table: str) -> dict[UUID, Record]:
        return self._tables.setdefault(table, {})

    def _owned(self, table: str, record_id: UUID) -> Record | None:
        record = self._table(table).get(record_id)
        if record is None or record.get("tenant_id") != get_current_tenant_id():
            return None
        return record

    def insert(self, table: str, record: Record) -> Record:
        stored = {k: _normalise(v) for k, v in copy.deepcopy(record).items()}
        stored["tenant_id"] = get_current_tenant_id()
        if table in VERSIONED_TABLES:
            stored["version"] = 1

        rows = self._table(table)
        if stored["id"] in rows:
            raise ValueError(f"Duplicate id {stored['id']} in {table}")
        rows[stored["id"]] = stored
        return copy.deepcopy(stored)

    def get(self, table: str, record_id: UUID) -> Record | None:
        record = self._owned(table, record_id)
        return copy.deepcopy(record) if record is not None else None

    def update(
        self,
        table: str,
        record_id: UUID,
        changes: Record,
        expected_version: int | None = None
    ) -> Record | None:
        record = self._owned(table, record_id)
        if record is None:
            return None

        if table in VERSIONED_TABLES:
            if expected_version is not None and record["version"] != expected_version:
                raise ConflictError(table, record_id, expected_version)
            record["version"] += 1

        for column, value in copy.deepcopy(changes).items():
            if column in ("id", "tenant_id", "version"):
                continue
            record[column] = _normalise(value)

        return copy.deepcopy(record)

    def delete(self, table: str, record_id: UUID) -> bool:
        if self._owned(table, record_id) is None:
            return False
        del self._table(table)[record_id]
        return True

    def query(
        self,
        table: str,
        filters: Record | None = None,
        order_by: str | None = None,
        descending: bool = False,
        limit: int | None = None,
        offset: int = 0
    ) -> list[Record]:
        tenant_id = get_current_tenant_id()
        criteria = {k: _normalise(v) for k, v in (filters or {}).items()}

        rows = [
            r for r in self._table(table).values()
            if r.get("tenant_id") == tenant_id and _matches(r, criteria)
        ]

        if order_by is not None:
            # None sorts last regardless of direction, as NULLS LAST does
            present = [r for r in rows if r.get(order_by) is not None]
            missing = [r for r in rows if r.get(order_by) is None]
            # Ties follow insertion order in the sort direction
            if descending:
                present.reverse()
            present.sort(key=lambda r: r[order_by], reverse=descending)
            rows = present + missing

        rows = rows[offset:]
        if limit is not None:
            rows = rows[:limit]

        return [copy.deepcopy(r) for r in rows]

    def search(
        self,
        table: str,
        columns: list[str],
        term: str,
        order_by: str | None = None,
        descending: bool = False,
        limit: int | None = None
    ) -> list[Record]:
        needle = term.lower()
        rows = [
            r for r in self.query(table, order_by=order_by, descending=descending)
            if any(needle in str(r[c]).lower() for c in columns if r.get(c) is not None)
        ]
        return rows if limit is None else rows[:limit]

    def count(self, table: str, filters: Record | None = None) -> int:
        return len(self.query(table, filters))
