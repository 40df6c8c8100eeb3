"""SQLite management utilities."""

from __future__ import annotations

import sqlite3
from contextlib import contextmanager
from pathlib import Path
from typing import Any, Iterable, Iterator, Sequence

DEFAULT_PRAGMAS = (
    "PRAGMA journal_mode=WAL;",
    "PRAGMA synchronous=NORMAL;",
    "PRAGMA foreign_keys=ON;",
    "PRAGMA temp_store=MEMORY;",
)

MEMORY_PATH = ":memory:"


class SQLiteDatabase:
    """Thin wrapper around sqlite3 providing pragmatic defaults."""

    def __init__(self, db_path: Path | str, read_only: bool = False) -> None:
        self.db_path = Path(db_path).expanduser() if str(db_path) != MEMORY_PATH else Path(MEMORY_PATH)
        self.read_only = read_only
        self._connection: sqlite3.Connection | None = None

    @property
    def in_memory(self) -> bool:
        return str(self.db_path) == MEMORY_PATH

    def connect(self) -> sqlite3.Connection:
        if self._connection is None:
            if self.in_memory:
                self._connection = sqlite3.connect(MEMORY_PATH, check_same_thread=False)
            elif self.read_only:
                uri = f"file:{self.db_path}?mode=ro"
                self._connection = sqlite3.connect(uri, uri=True, check_same_thread=False)
            else:
                self.db_path.parent.mkdir(parents=True, exist_ok=True)
                self._connection = sqlite3.connect(self.db_path, check_same_thread=False)
            self._connection.row_factory = sqlite3.Row
            for pragma in DEFAULT_PRAGMAS:
                self._connection.execute(pragma)
        return self._connection

    def close(self) -> None:
        if self._connection is not None:
            self._connection.close()
            self._connection = None

    def __enter__(self) -> "SQLiteDatabase":
        self.connect()
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        if exc_type is None:
            self.commit()
        else:
            self.rollback()
        self.close()

    def commit(self) -> None:
        if self._connection is not None:
            self._connection.commit()

    def rollback(self) -> None:
        if self._connection is not None:
            self._connection.rollback()

    def executescript(self, script: str) -> None:
        conn = self.connect()
        conn.executescript(script)

    def execute(self, sql: str, params: Sequence[Any] | None = None) -> sqlite3.Cursor:
        conn = self.connect()
        return conn.execute(sql, params or [])

    def executemany(self, sql: str, seq_of_params: Iterable[Sequence[Any]]) -> sqlite3.Cursor:
        conn = self.connect()
        return conn.executemany(sql, seq_of_params)

    def query(self, sql: str, params: Sequence[Any] | None = None) -> list[sqlite3.Row]:
        cursor = self.execute(sql, params)
        return cursor.fetchall()

    def query_one(self, sql: str, params: Sequence[Any] | None = None) -> sqlite3.Row | None:
        return self.execute(sql, params).fetchone()

    def insert(self, sql: str, params: Sequence[Any] | None = None) -> int:
        """Run a single INSERT, commit it, and return the new row id."""
        cursor = self.execute(sql, params)
        self.commit()
        return int(cursor.lastrowid)

    def write(self, sql: str, params: Sequence[Any] | None = None) -> int:
        """Run a single UPDATE/DELETE statement, commit it, and return affected rows."""
        cursor = self.execute(sql, params)
        self.commit()
        return cursor.rowcount

    @contextmanager
    def transaction(self) -> Iterator[sqlite3.Cursor]:
        conn = self.connect()
        cursor = conn.cursor()
        try:
            yield cursor
            conn.commit()
        except Exception:
            conn.rollback()
            raise
        finally:
            cursor.close()

    def ensure_schema(self, schema_sql: str | None = None) -> None:
        if schema_sql is None:
            schema_path = Path(__file__).with_name("schema.sql")
            schema_sql = schema_path.read_text(encoding="utf-8")
        self.executescript(schema_sql)


__all__ = ["SQLiteDatabase"]
