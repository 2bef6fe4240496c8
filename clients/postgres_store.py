"""
RecordStore backed by PostgreSQL.

Builds parameterised SQL on top of PostgresClient. Table and column names
come from service code, never from request data, and are still checked
against an identifier pattern before being interpolated.

Every statement also filters on tenant_id explicitly, in addition to the
RLS policies PostgresClient activates through app.current_tenant_id.
Driver errors are logged and re-raised as PersistenceError.
"""

import logging
import re
from typing import Any
from uuid import UUID

import psycopg2
from psycopg2.extras import Json

from clients.postgres_client import PostgresClient
from core.errors import ConflictError, PersistenceError
from core.store import VERSIONED_TABLES, Record, RecordStore
from utils.tenant_context import get_current_tenant_id

logger = logging.getLogger(__name__)

_IDENTIFIER = re.compile(r"^[a-z_][a-z0-9_]*$")


def _ident(name: str) -> str:
    if not _IDENTIFIER.match(name):
        raise ValueError(f"Invalid SQL identifier '{name}'")
    return name


def _escape_like(term: str) -> str:
    # Backslash is the default LIKE escape character
    return term.replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")


def _param(value: Any) -> Any:
    if isinstance(value, dict):
        return Json(value)
    return getattr(value, "value", value)


class PostgresRecordStore(RecordStore):
    """
    PostgreSQL implementation of RecordStore.

    Usage:
        store = PostgresRecordStore(PostgresClient(get_database_url()))
    """

    def __init__(self, postgres: PostgresClient):
        self.postgres = postgres

    def _run(self, method, query: str, params: tuple) -> Any:
        try:
            return method(query, params)
        except psycopg2.Error as e:
            logger.error(f"Database error: {e}")
            raise PersistenceError(str(e)) from e

    def _where(self, filters: Record | None) -> tuple[str, list[Any]]:
        clauses = ["tenant_id = %s"]
        params: list[Any] = [get_current_tenant_id()]

        for column, expected in (filters or {}).items():
            if isinstance(expected, (list, tuple, set, frozenset)):
                # Tuples render as untyped literals, so uuid columns compare as uuid
                values = tuple(_param(v) for v in expected)
                if not values:
                    clauses.append("FALSE")
                    continue
                clauses.append(f"{_ident(column)} IN %s")
                params.append(values)
            elif expected is None:
                clauses.append(f"{_ident(column)} IS NULL")
            else:
                clauses.append(f"{_ident(column)} = %s")
                params.append(_param(expected))

        return " AND ".join(clauses), params

    def insert(self, table: str, record: Record) -> Record:
        values = {k: _param(v) for k, v in record.items()}
        values["tenant_id"] = get_current_tenant_id()
        if table in VERSIONED_TABLES:
            values["version"] = 1

        columns = [_ident(c) for c in values]
        placeholders = ", ".join(["%s"] * len(columns))

        rows = self._run(
            self.postgres.execute_returning,
            f"""
            INSERT INTO {_ident(table)} ({', '.join(columns)})
            VALUES ({placeholders})
            RETURNING *
            """,
            tuple(values.values())
        )
        return rows[0]

    def get(self, table: str, record_id: UUID) -> Record | None:
        return self._run(
            self.postgres.execute_single,
            f"SELECT * FROM {_ident(table)} WHERE id = %s AND tenant_id = %s",
            (record_id, get_current_tenant_id())
        )

    def update(
        self,
        table: str,
        record_id: UUID,
        changes: Record,
        expected_version: int | None = None
    ) -> Record | None:
        set_parts = []
        params: list[Any] = []
        for column, value in changes.items():
            if column in ("id", "tenant_id", "version"):
                continue
            set_parts.append(f"{_ident(column)} = %s")
            params.append(_param(value))

        versioned = table in VERSIONED_TABLES
        if versioned:
            set_parts.append("version = version + 1")

        if not set_parts:
            return self.get(table, record_id)

        where = "id = %s AND tenant_id = %s"
        params.extend([record_id, get_current_tenant_id()])
        if versioned and expected_version is not None:
            where += " AND version = %s"
            params.append(expected_version)

        rows = self._run(
            self.postgres.execute_returning,
            f"""
            UPDATE {_ident(table)}
            SET {', '.join(set_parts)}
            WHERE {where}
            RETURNING *
            """,
            tuple(params)
        )
        if rows:
            return rows[0]

        # No row: either missing, or present with a different version
        if versioned and expected_version is not None and self.get(table, record_id) is not None:
            raise ConflictError(table, record_id, expected_version)
        return None

    def delete(self, table: str, record_id: UUID) -> bool:
        rows = self._run(
            self.postgres.execute_returning,
            f"DELETE FROM {_ident(table)} WHERE id = %s AND tenant_id = %s RETURNING id",
            (record_id, get_current_tenant_id())
        )
        return bool(rows)

    def query(
        self,
        table: str,
        filters: Record | None = None,
        order_by: str | None = None,
        descending: bool = False,
        limit: int | None = None,
        offset: int = 0
    ) -> list[Record]:
        where, params = self._where(filters)
        sql = f"SELECT * FROM {_ident(table)} WHERE {where}"

        if order_by is not None:
            direction = "DESC" if descending else "ASC"
            sql += f" ORDER BY {_ident(order_by)} {direction} NULLS LAST"
        if limit is not None:
            sql += " LIMIT %s"
            params.append(limit)
        if offset:
            sql += " OFFSET %s"
            params.append(offset)

        return self._run(self.postgres.execute, sql, tuple(params))

    def search(
        self,
        table: str,
        columns: list[str],
        term: str,
        order_by: str | None = None,
        descending: bool = False,
        limit: int | None = None
    ) -> list[Record]:
        if not columns:
            raise ValueError("Search needs at least one column")
        where, params = self._where(None)
        pattern = f"%{_escape_like(term)}%"
        matches = " OR ".join(f"{_ident(c)} ILIKE %s" for c in columns)
        sql = f"SELECT * FROM {_ident(table)} WHERE {where} AND ({matches})"
        params.extend([pattern] * len(columns))

        if order_by is not None:
            direction = "DESC" if descending else "ASC"
            sql += f" ORDER BY {_ident(order_by)} {direction} NULLS LAST"
        if limit is not None:
            sql += " LIMIT %s"
            params.append(limit)

        return self._run(self.postgres.execute, sql, tuple(params))

    def count(self, table: str, filters: Record | None = None) -> int:
        where, params = self._where(filters)
        result = self._run(
            self.postgres.execute_scalar,
            f"SELECT COUNT(*) FROM {_ident(table)} WHERE {where}",
            tuple(params)
        )
        return int(result or 0)
