# AdaptiveMFA - Risk-Adaptive MFA Orchestration Core
# Copyright (C) 2025 Luiz Frias <luizf35@gmail.com>
# Form F[x] Labs
#
# This software is dual-licensed under AGPL-3.0 and Commercial License.
# For commercial licensing, contact: luizf35@gmail.com
# See LICENSE file for full terms.

"""PostgreSQL record store.

Each operation is one SQL statement, so the conditional writes are atomic
under PostgreSQL's row locking. Column names come from code, never from
callers, but are still checked against an identifier pattern before being
interpolated.
"""

import logging
import re
from collections.abc import Awaitable, Mapping
from typing import Any, TypeVar

import asyncpg
from beartype import beartype

from adaptive_mfa.core.database import RETRYABLE_ERRORS, Database

from .base import RecordSet, Row, Storage, StorageUnavailableError, TimeWindow, Where

logger = logging.getLogger(__name__)

R = TypeVar("R")

_IDENTIFIER = re.compile(r"^[a-z_][a-z0-9_]*$")


def _ident(name: str) -> str:
    if not _IDENTIFIER.match(name):
        raise ValueError(f"Invalid column name: {name!r}")
    return name


def _affected(status: str) -> int:
    # asyncpg returns tags such as "UPDATE 3" or "DELETE 0"
    try:
        return int(status.rsplit(" ", 1)[-1])
    except ValueError:
        return 0


class _Query:
    """Accumulates positional parameters while building a statement."""

    def __init__(self) -> None:
        self.args: list[Any] = []

    def param(self, value: Any) -> str:
        self.args.append(value)
        return f"${len(self.args)}"

    def where(self, where: Where | None, window: TimeWindow | None = None) -> str:
        clauses: list[str] = []
        for column, value in (where or {}).items():
            if value is None:
                clauses.append(f"{_ident(column)} IS NULL")
            else:
                clauses.append(f"{_ident(column)} = {self.param(value)}")
        if window is not None:
            column = _ident(window.column)
            if window.since is not None:
                clauses.append(f"{column} >= {self.param(window.since)}")
            if window.until is not None:
                clauses.append(f"{column} < {self.param(window.until)}")
        return f" WHERE {' AND '.join(clauses)}" if clauses else ""


class PostgresStorage(Storage):
    """Record store backed by the asyncpg ``Database`` pool."""

    def __init__(self, db: Database) -> None:
        self._db = db

    async def _guard(self, operation: Awaitable[R]) -> R:
        try:
            return await operation
        except (asyncpg.PostgresError, *RETRYABLE_ERRORS) as e:
            logger.error("Storage operation failed: %s", e)
            raise StorageUnavailableError(str(e)) from e

    @beartype
    async def insert(self, records: RecordSet, row: Row) -> Row:
        query = _Query()
        columns = ", ".join(_ident(column) for column in row)
        values = ", ".join(query.param(value) for value in row.values())
        sql = f"INSERT INTO {records.value} ({columns}) VALUES ({values}) RETURNING *"
        record = await self._guard(self._db.fetchrow(sql, *query.args))
        return dict(record) if record is not None else dict(row)

    @beartype
    async def select(
        self,
        records: RecordSet,
        where: Where | None = None,
        *,
        window: TimeWindow | None = None,
        order_by: str | None = None,
        descending: bool = False,
        limit: int | None = None,
    ) -> list[Row]:
        query = _Query()
        sql = f"SELECT * FROM {records.value}{query.where(where, window)}"
        if order_by is not None:
            sql += f" ORDER BY {_ident(order_by)} {'DESC' if descending else 'ASC'}"
        if limit is not None:
            sql += f" LIMIT {query.param(limit)}"
        rows = await self._guard(self._db.fetch(sql, *query.args))
        return [dict(row) for row in rows]

    @beartype
    async def count(
        self,
        records: RecordSet,
        where: Where | None = None,
        *,
        window: TimeWindow | None = None,
    ) -> int:
        query = _Query()
        sql = f"SELECT COUNT(*) FROM {records.value}{query.where(where, window)}"
        return int(await self._guard(self._db.fetchval(sql, *query.args)))

    @beartype
    async def update(
        self,
        records: RecordSet,
        where: Where,
        values: Mapping[str, Any],
    ) -> int:
        query = _Query()
        assignments = ", ".join(
            f"{_ident(column)} = {query.param(value)}" for column, value in values.items()
        )
        sql = f"UPDATE {records.value} SET {assignments}{query.where(where)}"
        return _affected(await self._guard(self._db.execute(sql, *query.args)))

    @beartype
    async def increment(
        self,
        records: RecordSet,
        where: Where,
        column: str,
        amount: int = 1,
    ) -> Row | None:
        query = _Query()
        target = _ident(column)
        sql = (
            f"UPDATE {records.value} SET {target} = COALESCE({target}, 0) + "
            f"{query.param(amount)}{query.where(where)} RETURNING *"
        )
        record = await self._guard(self._db.fetchrow(sql, *query.args))
        return dict(record) if record is not None else None

    @beartype
    async def delete(
        self,
        records: RecordSet,
        where: Where | None = None,
        *,
        window: TimeWindow | None = None,
    ) -> int:
        query = _Query()
        sql = f"DELETE FROM {records.value}{query.where(where, window)}"
        return _affected(await self._guard(self._db.execute(sql, *query.args)))

    async def close(self) -> None:
        await self._db.disconnect()
