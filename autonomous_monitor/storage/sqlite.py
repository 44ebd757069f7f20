from __future__ import annotations

import asyncio
import json
import sqlite3
from pathlib import Path
from typing import Any, Mapping, Sequence

import structlog

from autonomous_monitor.errors import ConfigError, StorageError
from autonomous_monitor.storage.base import Row
from autonomous_monitor.storage.schema import TableSpec, table_spec


logger = structlog.get_logger(__name__)

SCHEMA_VERSION = 1


def _json_dumps(obj: Any) -> str | None:
    if obj is None:
        return None
    return json.dumps(obj, ensure_ascii=False, sort_keys=True, default=str)


def _json_loads(s: Any) -> Any:
    if s is None:
        return None
    if isinstance(s, (dict, list)):
        return s
    try:
        return json.loads(str(s))
    except ValueError:
        return None


def is_in_memory_path(path: Any) -> bool:
    return str(path or "").strip() == ":memory:"


def _connect(path: str) -> sqlite3.Connection:
    p = str(path or "").strip()
    if not p:
        raise ValueError("Missing database_path")
    Path(p).parent.mkdir(parents=True, exist_ok=True)
    conn = sqlite3.connect(p, timeout=30, isolation_level=None, check_same_thread=False)
    conn.row_factory = sqlite3.Row
    conn.execute("PRAGMA busy_timeout = 5000;")
    try:
        conn.execute("PRAGMA journal_mode = WAL;")
    except sqlite3.Error:
        pass
    return conn


def _ensure_schema_conn(conn: sqlite3.Connection) -> None:
    conn.execute("CREATE TABLE IF NOT EXISTS schema_meta (k TEXT PRIMARY KEY, v TEXT NOT NULL);")
    row = conn.execute("SELECT v FROM schema_meta WHERE k='version'").fetchone()
    cur = int(row["v"]) if row and row["v"] else 0
    if cur >= SCHEMA_VERSION:
        return

    if cur == 0:
        _apply_v1(conn)
        conn.execute("INSERT OR REPLACE INTO schema_meta (k, v) VALUES ('version', ?)", (str(SCHEMA_VERSION),))
        return

    raise RuntimeError(f"Unsupported schema version upgrade path cur={cur} target={SCHEMA_VERSION}")


def _apply_v1(conn: sqlite3.Connection) -> None:
    conn.execute(
        """
        CREATE TABLE IF NOT EXISTS incidents (
          incident_id TEXT PRIMARY KEY,
          title TEXT NOT NULL,
          error_message TEXT NOT NULL,
          error_type TEXT,
          severity TEXT NOT NULL,
          category TEXT NOT NULL,
          application TEXT,
          status TEXT NOT NULL,
          detected_at REAL NOT NULL,
          stack_trace TEXT,
          endpoint TEXT,
          context TEXT,
          resolution TEXT,
          resolved_at REAL,
          updated_at REAL
        );
        """
    )
    conn.execute("CREATE INDEX IF NOT EXISTS idx_incidents_detected ON incidents(detected_at);")
    conn.execute("CREATE INDEX IF NOT EXISTS idx_incidents_status ON incidents(status);")
    conn.execute(
        """
        CREATE TABLE IF NOT EXISTS monitoring_checks (
          check_id TEXT PRIMARY KEY,
          check_type TEXT NOT NULL,
          target TEXT NOT NULL,
          application TEXT,
          status TEXT NOT NULL,
          response_time_ms INTEGER,
          http_status INTEGER,
          errors_detected INTEGER NOT NULL DEFAULT 0,
          error_details TEXT,
          timestamp REAL NOT NULL
        );
        """
    )
    conn.execute("CREATE INDEX IF NOT EXISTS idx_checks_ts ON monitoring_checks(timestamp);")
    conn.execute(
        """
        CREATE TABLE IF NOT EXISTS security_events (
          event_id TEXT PRIMARY KEY,
          event_type TEXT NOT NULL,
          severity TEXT NOT NULL,
          description TEXT,
          confidence_score REAL,
          status TEXT NOT NULL,
          incident_id TEXT REFERENCES incidents(incident_id),
          metadata TEXT,
          timestamp REAL NOT NULL
        );
        """
    )
    conn.execute(
        """
        CREATE TABLE IF NOT EXISTS agent_actions (
          id INTEGER PRIMARY KEY AUTOINCREMENT,
          agent_id TEXT NOT NULL,
          agent_type TEXT NOT NULL,
          action_type TEXT NOT NULL,
          description TEXT,
          success INTEGER,
          incident_id TEXT,
          knowledge_id TEXT,
          action_details TEXT,
          timestamp REAL NOT NULL
        );
        """
    )
    conn.execute("CREATE INDEX IF NOT EXISTS idx_actions_ts ON agent_actions(timestamp);")
    conn.execute(
        """
        CREATE TABLE IF NOT EXISTS error_knowledge (
          id TEXT PRIMARY KEY,
          title TEXT NOT NULL,
          error_pattern TEXT NOT NULL UNIQUE,
          error_type TEXT,
          solution TEXT,
          fix_steps TEXT,
          resolution_steps TEXT,
          success_count INTEGER NOT NULL DEFAULT 0,
          category TEXT,
          severity TEXT,
          context TEXT,
          source_url TEXT UNIQUE,
          last_updated REAL NOT NULL
        );
        """
    )
    conn.execute(
        """
        CREATE TABLE IF NOT EXISTS system_config (
          key TEXT PRIMARY KEY,
          value TEXT,
          updated_at REAL NOT NULL
        );
        """
    )


def _encode(spec: TableSpec, row: Mapping[str, Any]) -> dict[str, Any]:
    out: dict[str, Any] = {}
    for col, value in row.items():
        if col not in spec.columns:
            raise ValueError(f"Unknown column {spec.name}.{col}")
        if col in spec.json_columns:
            value = _json_dumps(value)
        elif col in spec.bool_columns and value is not None:
            value = 1 if value else 0
        out[col] = value
    return out


def _decode(spec: TableSpec, row: sqlite3.Row) -> Row:
    out: Row = {}
    for col in row.keys():
        value = row[col]
        if col in spec.json_columns:
            value = _json_loads(value)
        elif col in spec.bool_columns and value is not None:
            value = bool(value)
        out[col] = value
    return out


def _filters(
    spec: TableSpec,
    where: Mapping[str, Any] | None,
    exclude: Mapping[str, Any] | None,
    since: float | None,
    after: float | None,
) -> tuple[str, list[Any]]:
    clauses: list[str] = []
    params: list[Any] = []
    for col, value in (where or {}).items():
        if col not in spec.columns:
            raise ValueError(f"Unknown column {spec.name}.{col}")
        if value is None:
            clauses.append(f"{col} IS NULL")
        else:
            clauses.append(f"{col} = ?")
            params.append(value)
    for col, value in (exclude or {}).items():
        if col not in spec.columns:
            raise ValueError(f"Unknown column {spec.name}.{col}")
        if value is None:
            clauses.append(f"{col} IS NOT NULL")
        else:
            clauses.append(f"({col} IS NULL OR {col} != ?)")
            params.append(value)
    if since is not None:
        clauses.append(f"{spec.time_column} >= ?")
        params.append(float(since))
    if after is not None:
        clauses.append(f"{spec.time_column} > ?")
        params.append(float(after))
    if not clauses:
        return "", params
    return " WHERE " + " AND ".join(clauses), params


class SQLiteStore:
    """Durable store backed by a single SQLite file.

    Each call opens its own connection in a worker thread so the event loop never blocks.
    """

    def __init__(self, db_path: str):
        if is_in_memory_path(db_path):
            raise ConfigError("SQLite ':memory:' databases do not survive per-call connections; "
                              "use storage_backend 'memory' instead")
        self.db_path = db_path
        self.ensure_schema()

    def ensure_schema(self) -> None:
        conn = _connect(self.db_path)
        try:
            _ensure_schema_conn(conn)
        finally:
            conn.close()

    async def _run(self, fn, *args, **kwargs):
        def _call():
            conn = _connect(self.db_path)
            try:
                return fn(conn, *args, **kwargs)
            finally:
                conn.close()

        try:
            return await asyncio.to_thread(_call)
        except sqlite3.Error as e:
            logger.error("SQLite operation failed", operation=getattr(fn, "__name__", "?"), error=str(e))
            raise StorageError(str(e)) from e

    @staticmethod
    def _insert(conn: sqlite3.Connection, table: str, row: Mapping[str, Any]) -> Row:
        spec = table_spec(table)
        data = _encode(spec, row)
        if spec.autoincrement:
            data.pop(spec.key, None)
        cols = list(data.keys())
        placeholders = ", ".join("?" for _ in cols)
        cur = conn.execute(
            f"INSERT INTO {spec.name} ({', '.join(cols)}) VALUES ({placeholders})",
            [data[c] for c in cols],
        )
        key = cur.lastrowid if spec.autoincrement else data[spec.key]
        stored = conn.execute(f"SELECT * FROM {spec.name} WHERE {spec.key} = ?", (key,)).fetchone()
        return _decode(spec, stored)

    async def insert(self, table: str, row: Mapping[str, Any]) -> Row:
        return await self._run(self._insert, table, dict(row))

    @staticmethod
    def _get(conn: sqlite3.Connection, table: str, key: Any) -> Row | None:
        spec = table_spec(table)
        row = conn.execute(f"SELECT * FROM {spec.name} WHERE {spec.key} = ?", (key,)).fetchone()
        return _decode(spec, row) if row is not None else None

    async def get(self, table: str, key: Any) -> Row | None:
        return await self._run(self._get, table, key)

    @staticmethod
    def _select(
        conn: sqlite3.Connection,
        table: str,
        where: Mapping[str, Any] | None,
        exclude: Mapping[str, Any] | None,
        since: float | None,
        after: float | None,
        order_by: str | None,
        descending: bool,
        limit: int | None,
    ) -> list[Row]:
        spec = table_spec(table)
        clause, params = _filters(spec, where, exclude, since, after)
        sql = f"SELECT * FROM {spec.name}{clause}"
        if order_by:
            if order_by not in spec.columns:
                raise ValueError(f"Unknown column {spec.name}.{order_by}")
            sql += f" ORDER BY {order_by} {'DESC' if descending else 'ASC'}"
        if limit is not None:
            sql += " LIMIT ?"
            params.append(int(limit))
        return [_decode(spec, r) for r in conn.execute(sql, params).fetchall()]

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
        return await self._run(self._select, table, where, exclude, since, after, order_by, descending, limit)

    @staticmethod
    def _count(
        conn: sqlite3.Connection,
        table: str,
        where: Mapping[str, Any] | None,
        exclude: Mapping[str, Any] | None,
        since: float | None,
        after: float | None,
    ) -> int:
        spec = table_spec(table)
        clause, params = _filters(spec, where, exclude, since, after)
        row = conn.execute(f"SELECT COUNT(*) AS n FROM {spec.name}{clause}", params).fetchone()
        return int(row["n"]) if row else 0

    async def count(
        self,
        table: str,
        *,
        where: Mapping[str, Any] | None = None,
        exclude: Mapping[str, Any] | None = None,
        since: float | None = None,
        after: float | None = None,
    ) -> int:
        return await self._run(self._count, table, where, exclude, since, after)

    @staticmethod
    def _update(
        conn: sqlite3.Connection,
        table: str,
        key: Any,
        values: Mapping[str, Any],
        where: Mapping[str, Any] | None,
    ) -> int:
        spec = table_spec(table)
        data = _encode(spec, values)
        if not data:
            return 0
        assignments = ", ".join(f"{c} = ?" for c in data)
        params: list[Any] = list(data.values())
        sql = f"UPDATE {spec.name} SET {assignments} WHERE {spec.key} = ?"
        params.append(key)
        for col, value in (where or {}).items():
            if col not in spec.columns:
                raise ValueError(f"Unknown column {spec.name}.{col}")
            sql += f" AND {col} = ?"
            params.append(value)
        cur = conn.execute(sql, params)
        return int(cur.rowcount or 0)

    async def update(
        self,
        table: str,
        key: Any,
        values: Mapping[str, Any],
        *,
        where: Mapping[str, Any] | None = None,
    ) -> int:
        return await self._run(self._update, table, key, dict(values), where)

    @staticmethod
    def _upsert(
        conn: sqlite3.Connection,
        table: str,
        row: Mapping[str, Any],
        conflict: str,
        update: Sequence[str],
        increment: Mapping[str, int] | None,
    ) -> Row:
        spec = table_spec(table)
        if conflict != spec.key and conflict not in spec.unique_columns:
            raise ValueError(f"{spec.name}.{conflict} is not a unique column")
        data = _encode(spec, row)
        cols = list(data.keys())
        assignments = [f"{c} = excluded.{c}" for c in update if c in data and c != conflict]
        params: list[Any] = [data[c] for c in cols]
        for col, delta in (increment or {}).items():
            if col not in spec.columns:
                raise ValueError(f"Unknown column {spec.name}.{col}")
            assignments.append(f"{col} = COALESCE({spec.name}.{col}, 0) + ?")
            params.append(int(delta))
        action = f"DO UPDATE SET {', '.join(assignments)}" if assignments else "DO NOTHING"
        conn.execute(
            f"INSERT INTO {spec.name} ({', '.join(cols)}) VALUES ({', '.join('?' for _ in cols)}) "
            f"ON CONFLICT({conflict}) {action}",
            params,
        )
        stored = conn.execute(
            f"SELECT * FROM {spec.name} WHERE {conflict} = ?", (data[conflict],)
        ).fetchone()
        return _decode(spec, stored)

    async def upsert(
        self,
        table: str,
        row: Mapping[str, Any],
        *,
        conflict: str,
        update: Sequence[str] = (),
        increment: Mapping[str, int] | None = None,
    ) -> Row:
        return await self._run(self._upsert, table, dict(row), conflict, tuple(update), increment)

    async def ping(self) -> bool:
        def _ping(conn: sqlite3.Connection) -> bool:
            conn.execute("SELECT 1").fetchone()
            return True

        return await self._run(_ping)

    async def close(self) -> None:
        return None
