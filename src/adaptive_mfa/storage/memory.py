# AdaptiveMFA - Risk-Adaptive MFA Orchestration Core
# Copyright (C) 2025 Luiz Frias <luizf35@gmail.com>
# Form F[x] Labs
#
# This software is dual-licensed under AGPL-3.0 and Commercial License.
# For commercial licensing, contact: luizf35@gmail.com
# See LICENSE file for full terms.

"""In-memory record store for development and tests."""

import asyncio
import copy
from collections import defaultdict
from collections.abc import Mapping
from typing import Any

from beartype import beartype

from .base import RecordSet, Row, Storage, TimeWindow, Where


def _matches(row: Row, where: Where | None, window: TimeWindow | None) -> bool:
    if where:
        for column, expected in where.items():
            if row.get(column) != expected:
                return False
    if window is not None and not window.contains(row.get(window.column)):
        return False
    return True


def _sort_key(column: str) -> Any:
    # Rows missing the column sort first; None never compares against values.
    def key(row: Row) -> tuple[bool, Any]:
        value = row.get(column)
        return (value is not None, value)

    return key


class InMemoryStorage(Storage):
    """Dict-backed store; a single lock serializes every operation."""

    def __init__(self) -> None:
        self._tables: dict[RecordSet, list[Row]] = defaultdict(list)
        self._lock = asyncio.Lock()

    @beartype
    async def insert(self, records: RecordSet, row: Row) -> Row:
        stored = copy.deepcopy(row)
        async with self._lock:
            self._tables[records].append(stored)
        return copy.deepcopy(stored)

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
        async with self._lock:
            rows = [
                copy.deepcopy(row)
                for row in self._tables[records]
                if _matches(row, where, window)
            ]
        if order_by is not None:
            rows.sort(key=_sort_key(order_by), reverse=descending)
        if limit is not None:
            rows = rows[:limit]
        return rows

    @beartype
    async def count(
        self,
        records: RecordSet,
        where: Where | None = None,
        *,
        window: TimeWindow | None = None,
    ) -> int:
        async with self._lock:
            return sum(1 for row in self._tables[records] if _matches(row, where, window))

    @beartype
    async def update(
        self,
        records: RecordSet,
        where: Where,
        values: Mapping[str, Any],
    ) -> int:
        changed = 0
        async with self._lock:
            for row in self._tables[records]:
                if _matches(row, where, None):
                    row.update(copy.deepcopy(dict(values)))
                    changed += 1
        return changed

    @beartype
    async def increment(
        self,
        records: RecordSet,
        where: Where,
        column: str,
        amount: int = 1,
    ) -> Row | None:
        async with self._lock:
            for row in self._tables[records]:
                if _matches(row, where, None):
                    row[column] = int(row.get(column) or 0) + amount
                    return copy.deepcopy(row)
        return None

    @beartype
    async def delete(
        self,
        records: RecordSet,
        where: Where | None = None,
        *,
        window: TimeWindow | None = None,
    ) -> int:
        async with self._lock:
            table = self._tables[records]
            kept = [row for row in table if not _matches(row, where, window)]
            removed = len(table) - len(kept)
            self._tables[records] = kept
        return removed
