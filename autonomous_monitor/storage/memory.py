from __future__ import annotations

import copy
import itertools
from typing import Any, Mapping, Sequence

from autonomous_monitor.errors import StorageError
from autonomous_monitor.storage.base import Row
from autonomous_monitor.storage.schema import TABLES, TableSpec, table_spec


class MemoryStore:
    """Process-local store with the same semantics as the SQLite adapter."""

    def __init__(self):
        self._tables: dict[str, dict[Any, Row]] = {name: {} for name in TABLES}
        self._ids = itertools.count(1)

    @staticmethod
    def _check_columns(spec: TableSpec, row: Mapping[str, Any]) -> None:
        for col in row:
            if col not in spec.columns:
                raise ValueError(f"Unknown column {spec.name}.{col}")

    @staticmethod
    def _matches(
        spec: TableSpec,
        row: Row,
        where: Mapping[str, Any] | None,
        exclude: Mapping[str, Any] | None,
        since: float | None,
        after: float | None,
    ) -> bool:
        for col, value in (where or {}).items():
            if row.get(col) != value:
                return False
        for col, value in (exclude or {}).items():
            if row.get(col) == value:
                return False
        ts = row.get(spec.time_column)
        if since is not None and (ts is None or ts < since):
            return False
        if after is not None and (ts is None or ts <= after):
            return False
        return True

    def _find_unique(self, spec: TableSpec, column: str, value: Any) -> Row | None:
        if value is None:
            return None
        for row in self._tables[spec.name].values():
            if row.get(column) == value:
                return row
        return None

    async def insert(self, table: str, row: Mapping[str, Any]) -> Row:
        spec = table_spec(table)
        self._check_columns(spec, row)
        data = {col: copy.deepcopy(row.get(col)) for col in spec.columns}
        if spec.autoincrement:
            data[spec.key] = next(self._ids)
        key = data[spec.key]
        if key in self._tables[spec.name]:
            raise StorageError(f"UNIQUE constraint failed: {spec.name}.{spec.key}")
        for col in spec.unique_columns:
            if self._find_unique(spec, col, data.get(col)) is not None:
                raise StorageError(f"UNIQUE constraint failed: {spec.name}.{col}")
        self._tables[spec.name][key] = data
        return copy.deepcopy(data)

    async def get(self, table: str, key: Any) -> Row | None:
        spec = table_spec(table)
        row = self._tables[spec.name].get(key)
        return copy.deepcopy(row) if row is not None else None

    async def select(
        self,
        table: str,
        *,
        where: Mapping[str, Any] | None = None,
        exclude: Mapping[str, Any] | None = None,
        since: float | None = None,
        after: float | None = None,
        order_by: str | None = None,
        descending: bool = False,
        limit: int | None = None,
    ) -> list[Row]:
        spec = table_spec(table)
        rows = [
            r for r in self._tables[spec.name].values() if self._matches(spec, r, where, exclude, since, after)
        ]
        if order_by:
            if order_by not in spec.columns:
                raise ValueError(f"Unknown column {spec.name}.{order_by}")
            rows.sort(key=lambda r: (r.get(order_by) is not None, r.get(order_by)), reverse=descending)
        if limit is not None:
            rows = rows[: int(limit)]
        return copy.deepcopy(rows)

    async def count(
        self,
        table: str,
        *,
        where: Mapping[str, Any] | None = None,
        exclude: Mapping[str, Any] | None = None,
        since: float | None = None,
        after: float | None = None,
    ) -> int:
        spec = table_spec(table)
        return sum(1 for r in self._tables[spec.name].values() if self._matches(spec, r, where, exclude, since, after))

    async def update(
        self,
        table: str,
        key: Any,
        values: Mapping[str, Any],
        *,
        where: Mapping[str, Any] | None = None,
    ) -> int:
        spec = table_spec(table)
        self._check_columns(spec, values)
        row = self._tables[spec.name].get(key)
        if row is None:
            return 0
        for col, value in (where or {}).items():
            if row.get(col) != value:
                return 0
        for col, value in values.items():
            row[col] = copy.deepcopy(value)
        return 1

    async def upsert(
        self,
        table: str,
        row: Mapping[str, Any],
        *,
        conflict: str,
        update: Sequence[str] = (),
        increment: Mapping[str, int] | None = None,
    ) -> Row:
        spec = table_spec(table)
        if conflict != spec.key and conflict not in spec.unique_columns:
            raise ValueError(f"{spec.name}.{conflict} is not a unique column")
        self._check_columns(spec, row)
        if conflict == spec.key:
            existing = self._tables[spec.name].get(row.get(conflict))
        else:
            existing = self._find_unique(spec, conflict, row.get(conflict))
        if existing is None:
            return await self.insert(table, row)
        for col in update:
            if col in row and col != conflict:
                existing[col] = copy.deepcopy(row[col])
        for col, delta in (increment or {}).items():
            existing[col] = int(existing.get(col) or 0) + int(delta)
        return copy.deepcopy(existing)

    async def ping(self) -> bool:
        return True

    async def close(self) -> None:
        return None
