"""
Database Backends
SQLite (local / desktop file) and PostgreSQL behind one small interface

SQL is written once with `?` placeholders; the Postgres backend converts them.
DDL uses {placeholders} for the few types that differ between dialects.
All methods are blocking; the store runs them via asyncio.to_thread.
"""
import logging
import os
import sqlite3
from abc import ABC, abstractmethod
from typing import Any, Dict, List, Optional, Sequence

logger = logging.getLogger(__name__)

Row = Dict[str, Any]


class Database(ABC):
    """Abstract base class for database operations"""

    dialect: str = ""
    ddl_types: Dict[str, str] = {}

    @abstractmethod
    def execute(self, sql: str, params: Sequence[Any] = ()) -> int:
        """Run a statement, return affected row count."""

    @abstractmethod
    def fetchone(self, sql: str, params: Sequence[Any] = ()) -> Optional[Row]:
        pass

    @abstractmethod
    def fetchall(self, sql: str, params: Sequence[Any] = ()) -> List[Row]:
        pass

    @abstractmethod
    def table_exists(self, name: str) -> bool:
        pass

    @abstractmethod
    def close(self) -> None:
        pass

    def begin(self) -> None:
        self.execute("BEGIN")

    def commit(self) -> None:
        self.execute("COMMIT")

    def rollback(self) -> None:
        self.execute("ROLLBACK")

    def checkpoint(self) -> None:
        """Flush write-ahead log where the backend has one."""

    def render_ddl(self, sql: str) -> str:
        for name, value in self.ddl_types.items():
            sql = sql.replace("{" + name + "}", value)
        return sql


# ============================================================================
# SQLITE
# ============================================================================

class SQLiteDatabase(Database):
    """SQLite implementation (desktop file or in-memory for tests)"""

    dialect = "sqlite"
    ddl_types = {
        "serial_pk": "INTEGER PRIMARY KEY AUTOINCREMENT",
        "float": "REAL",
        "json": "TEXT",
    }

    def __init__(self, path: str = "hb-report.db"):
        self.path = path
        if path != ":memory:":
            directory = os.path.dirname(os.path.abspath(path))
            os.makedirs(directory, exist_ok=True)

        # isolation_level=None: transactions are opened explicitly with BEGIN
        self.conn = sqlite3.connect(path, check_same_thread=False, isolation_level=None)
        self.conn.row_factory = sqlite3.Row
        if path != ":memory:":
            self.conn.execute("PRAGMA journal_mode = WAL")
        self.conn.execute("PRAGMA synchronous = NORMAL")
        self.conn.execute("PRAGMA foreign_keys = ON")
        self.conn.execute("PRAGMA temp_store = MEMORY")
        logger.info(f"Connected to SQLite database at {path}")

    def execute(self, sql: str, params: Sequence[Any] = ()) -> int:
        cur = self.conn.execute(sql, tuple(params))
        return cur.rowcount

    def fetchone(self, sql: str, params: Sequence[Any] = ()) -> Optional[Row]:
        row = self.conn.execute(sql, tuple(params)).fetchone()
        return dict(row) if row is not None else None

    def fetchall(self, sql: str, params: Sequence[Any] = ()) -> List[Row]:
        return [dict(row) for row in self.conn.execute(sql, tuple(params)).fetchall()]

    def table_exists(self, name: str) -> bool:
        row = self.conn.execute(
            "SELECT 1 FROM sqlite_master WHERE type = 'table' AND name = ?", (name,)
        ).fetchone()
        return row is not None

    def checkpoint(self) -> None:
        self.conn.execute("PRAGMA wal_checkpoint(TRUNCATE)").fetchone()
        logger.info("Forced SQLite WAL checkpoint")

    def close(self) -> None:
        self.conn.close()
        logger.info("SQLite connection closed")


# ============================================================================
# POSTGRES
# ============================================================================

class PostgresDatabase(Database):
    """PostgreSQL implementation (psycopg 3, dict rows)"""

    dialect = "postgresql"
    ddl_types = {
        "serial_pk": "BIGSERIAL PRIMARY KEY",
        "float": "DOUBLE PRECISION",
        "json": "TEXT",
    }

    def __init__(self, url: str):
        import psycopg
        from psycopg.rows import dict_row

        # autocommit: transactions are opened explicitly with BEGIN
        self.conn = psycopg.connect(url, autocommit=True, row_factory=dict_row)
        logger.info("Connected to PostgreSQL database")

    @staticmethod
    def _convert(sql: str) -> str:
        return sql.replace("?", "%s")

    def execute(self, sql: str, params: Sequence[Any] = ()) -> int:
        with self.conn.cursor() as cur:
            cur.execute(self._convert(sql), tuple(params))
            return cur.rowcount

    def fetchone(self, sql: str, params: Sequence[Any] = ()) -> Optional[Row]:
        with self.conn.cursor() as cur:
            cur.execute(self._convert(sql), tuple(params))
            return cur.fetchone()

    def fetchall(self, sql: str, params: Sequence[Any] = ()) -> List[Row]:
        with self.conn.cursor() as cur:
            cur.execute(self._convert(sql), tuple(params))
            return list(cur.fetchall())

    def table_exists(self, name: str) -> bool:
        row = self.fetchone("SELECT to_regclass(?) AS oid", (name,))
        return bool(row and row["oid"])

    def close(self) -> None:
        self.conn.close()
        logger.info("PostgreSQL connection closed")


def connect(database_url: str) -> Database:
    """
    Open a backend for a DATABASE_URL.

    Examples:
        sqlite:///hb-report.db        -> relative file
        sqlite:////var/lib/hb.db      -> absolute file
        sqlite:///:memory:            -> in-memory (tests)
        postgresql://user:pw@host/db  -> PostgreSQL
    """
    if database_url.startswith("sqlite://"):
        path = database_url[len("sqlite:///"):] if database_url.startswith("sqlite:///") else ""
        return SQLiteDatabase(path or ":memory:")
    if database_url.startswith(("postgresql://", "postgres://")):
        return PostgresDatabase(database_url)
    raise ValueError(f"Unsupported database URL: {database_url.split('://', 1)[0]}")
