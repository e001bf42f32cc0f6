"""Lightweight SQLite-backed store for student documents."""

from __future__ import annotations

import sqlite3
from contextlib import contextmanager
from pathlib import Path
from typing import Iterator


class StudentStore:
    def __init__(self, db_path: Path) -> None:
        self.db_path = db_path
        self._ensure_schema()

    def _connect(self) -> sqlite3.Connection:
        """Create a connection, ensuring the parent directory exists."""

        self.db_path.parent.mkdir(parents=True, exist_ok=True)
        con = sqlite3.connect(self.db_path, timeout=10.0)
        con.execute("PRAGMA foreign_keys = ON")
        return con

    @contextmanager
    def transaction(self) -> Iterator[sqlite3.Connection]:
        """Yield a connection whose statements commit (or roll back) together."""

        con = self._connect()
        try:
            with con:
                yield con
        finally:
            con.close()

    def _ensure_schema(self) -> None:
        schema_sql = Path(__file__).with_name("schema.sql").read_text(encoding="utf-8")
        with self.transaction() as con:
            con.executescript(schema_sql)

    def execute(self, sql: str, params: tuple | None = None) -> int:
        """Execute a single SQL statement and return the number of affected rows."""

        with self.transaction() as con:
            cur = con.execute(sql, params or tuple())
            return int(cur.rowcount)

    def query(self, sql: str, params: tuple | None = None) -> list[tuple]:
        with self.transaction() as con:
            cur = con.execute(sql, params or tuple())
            return cur.fetchall()
