"""Storage capability shared by every component.

Components talk to persistence only through :class:`Store`. Each concrete backend
(SQLite, in-memory) is one adapter implementing it.
"""

from __future__ import annotations

from typing import Any, Mapping, Protocol, Sequence, runtime_checkable


Row = dict[str, Any]


@runtime_checkable
class Store(Protocol):
    async def insert(self, table: str, row: Mapping[str, Any]) -> Row:
        """Insert one row and return it as stored (including generated keys)."""
        ...

    async def get(self, table: str, key: Any) -> Row | None:
        """Fetch one row by primary key."""
        ...

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
        """Select rows.

        ``where`` is an equality filter, ``exclude`` a not-equal filter. ``since`` (inclusive)
        and ``after`` (exclusive) bound the table's time column.
        """
        ...

    async def count(
        self,
        table: str,
        *,
        where: Mapping[str, Any] | None = None,
        exclude: Mapping[str, Any] | None = None,
        since: float | None = None,
        after: float | None = None,
    ) -> int:
        ...

    async def update(
        self,
        table: str,
        key: Any,
        values: Mapping[str, Any],
        *,
        where: Mapping[str, Any] | None = None,
    ) -> int:
        """Update one row by key; ``where`` adds compare-and-set conditions. Returns rows changed."""
        ...

    async def upsert(
        self,
        table: str,
        row: Mapping[str, Any],
        *,
        conflict: str,
        update: Sequence[str] = (),
        increment: Mapping[str, int] | None = None,
    ) -> Row:
        """Insert ``row`` or, when ``conflict`` already matches, overwrite ``update`` columns
        and add ``increment`` to counters. Returns the stored row."""
        ...

    async def ping(self) -> bool:
        ...

    async def close(self) -> None:
        ...
