"""
Record lookup collaborators.

The record tasks query an application database through RecordRepository.
SqliteRecordRepository is a small aiosqlite-backed implementation that maps
a model name onto a table and returns rows as plain dicts.

RecordRef is the live handle the async boundary round-trips as an opaque
``ref://record/<model>/<id>`` token (see pyrunbook.serialization).
"""

from __future__ import annotations

import asyncio
import re
from collections.abc import Mapping, Sequence
from dataclasses import dataclass
from typing import Any, Protocol, runtime_checkable

import aiosqlite

__all__ = ["RecordRef", "RecordRepository", "SqliteRecordRepository", "RecordError"]

_IDENTIFIER = re.compile(r"^[A-Za-z_][A-Za-z0-9_]*$")


class RecordError(Exception):
    """Record repository operation failed."""


@dataclass(frozen=True)
class RecordRef:
    """Reference to one stored record, optionally carrying its loaded attributes."""

    model: str
    id: Any
    attributes: Mapping[str, Any] | None = None

    @property
    def token_id(self) -> str:
        return f"{self.model}/{self.id}"


@runtime_checkable
class RecordRepository(Protocol):
    async def find(
        self, model: str, record_id: Any, *, where: Mapping[str, Any] | None = None
    ) -> dict[str, Any] | None: ...

    async def query(
        self,
        model: str,
        *,
        where: Mapping[str, Any] | None = None,
        order: str | Sequence[str] | None = None,
        limit: int | None = None,
    ) -> list[dict[str, Any]]: ...


def _identifier(name: str) -> str:
    if not _IDENTIFIER.match(name):
        raise RecordError(f"Invalid identifier: {name!r}")
    return name


def _order_clause(order: str | Sequence[str] | None) -> str:
    if not order:
        return ""
    terms = [order] if isinstance(order, str) else list(order)
    parts = []
    for term in terms:
        column, _, direction = term.strip().partition(" ")
        direction = direction.strip().upper() or "ASC"
        if direction not in ("ASC", "DESC"):
            raise RecordError(f"Invalid order direction: {direction!r}")
        parts.append(f"{_identifier(column)} {direction}")
    return " ORDER BY " + ", ".join(parts)


class SqliteRecordRepository:
    """
    RecordRepository over a SQLite database.

    After __init__, the instance is not yet usable. Call connect() first.

    Usage:
        repo = SqliteRecordRepository("app.db")
        await repo.connect()
        user = await repo.find("users", 42)
    """

    def __init__(self, db_path: str, *, primary_key: str = "id"):
        self.db_path = db_path
        self.primary_key = _identifier(primary_key)
        self._connection: aiosqlite.Connection | None = None
        self._lock = asyncio.Lock()

    def __repr__(self) -> str:
        return f"SqliteRecordRepository({self.db_path})"

    async def connect(self) -> None:
        if self._connection is not None:
            return
        self._connection = await aiosqlite.connect(self.db_path)
        self._connection.row_factory = aiosqlite.Row

    async def close(self) -> None:
        if self._connection is not None:
            await self._connection.close()
            self._connection = None

    @property
    def connection(self) -> aiosqlite.Connection:
        if self._connection is None:
            raise RecordError("Not connected. Call connect() first.")
        return self._connection

    def _where_clause(self, where: Mapping[str, Any] | None) -> tuple[str, list[Any]]:
        if not where:
            return "", []
        clauses = []
        params: list[Any] = []
        for column, value in where.items():
            if value is None:
                clauses.append(f"{_identifier(column)} IS NULL")
            elif isinstance(value, (list, tuple, set)):
                values = list(value)
                placeholders = ", ".join("?" for _ in values)
                clauses.append(f"{_identifier(column)} IN ({placeholders})")
                params.extend(values)
            else:
                clauses.append(f"{_identifier(column)} = ?")
                params.append(value)
        return " WHERE " + " AND ".join(clauses), params

    async def find(
        self, model: str, record_id: Any, *, where: Mapping[str, Any] | None = None
    ) -> dict[str, Any] | None:
        conditions = dict(where or {})
        conditions[self.primary_key] = record_id
        rows = await self.query(model, where=conditions, limit=1)
        return rows[0] if rows else None

    async def query(
        self,
        model: str,
        *,
        where: Mapping[str, Any] | None = None,
        order: str | Sequence[str] | None = None,
        limit: int | None = None,
    ) -> list[dict[str, Any]]:
        where_sql, params = self._where_clause(where)
        sql = f"SELECT * FROM {_identifier(model)}{where_sql}{_order_clause(order)}"
        if limit is not None:
            sql += " LIMIT ?"
            params.append(int(limit))

        async with self._lock:
            cursor = await self.connection.execute(sql, params)
            rows = await cursor.fetchall()
            await cursor.close()
        return [dict(row) for row in rows]

    async def locate(self, token_id: str) -> RecordRef:
        """Resolve ``<model>/<id>`` back to a RecordRef with loaded attributes."""
        model, _, raw_id = token_id.partition("/")
        if not raw_id:
            raise RecordError(f"Malformed record reference: {token_id!r}")
        record_id: Any = int(raw_id) if raw_id.isdigit() else raw_id
        row = await self.find(model, record_id)
        if row is None:
            raise RecordError(f"Record not found: {model}/{raw_id}")
        return RecordRef(model=model, id=record_id, attributes=row)
