"""
Connection pool for the registry database.

SQLite file by default; PostgreSQL (psycopg2) when DATABASE_URL is a postgres
URL. Registry code is written once against sqlite3's interface: '?'
placeholders, rows addressable by column name, cursor.lastrowid and
cursor.rowcount. The PostgreSQL adapters below provide the same surface.

Usage:
    db = DatabaseManager.from_settings(settings.database)
    with db.connect() as conn:
        cursor = conn.cursor()
        cursor.execute("SELECT username FROM users WHERE id = ?", (42,))
        row = cursor.fetchone()
"""

import logging
import queue
import re
import sqlite3
import threading
from contextlib import contextmanager
from pathlib import Path
from typing import Optional

logger = logging.getLogger(__name__)

POSTGRES_SCHEMES = ("postgresql://", "postgres://")

_AUTOINCREMENT_RE = re.compile(r'INTEGER\s+PRIMARY\s+KEY\s+AUTOINCREMENT', re.IGNORECASE)


def is_postgres(db_url: Optional[str]) -> bool:
    return bool(db_url) and db_url.startswith(POSTGRES_SCHEMES)


def adapt_schema_sql(sql: str, db_url: Optional[str] = None) -> str:
    """Rewrite SQLite DDL for PostgreSQL. Only the autoincrement key differs."""
    if not is_postgres(db_url):
        return sql
    return _AUTOINCREMENT_RE.sub('SERIAL PRIMARY KEY', sql)


# =============================================================================
# PostgreSQL adapters
# =============================================================================

class _PgCursor:
    """psycopg2 cursor speaking sqlite3's dialect."""

    def __init__(self, raw_cursor):
        self._raw = raw_cursor
        self.lastrowid = None

    def execute(self, sql, params=None):
        sql = sql.replace("?", "%s")
        is_insert = sql.lstrip().upper().startswith("INSERT")
        if is_insert and "RETURNING" not in sql.upper():
            # psycopg2 has no lastrowid; every registry table keys on id
            self._raw.execute(sql.rstrip().rstrip(";") + " RETURNING id", params)
            row = self._raw.fetchone()
            self.lastrowid = row["id"] if row else None
        else:
            self._raw.execute(sql, params)
            self.lastrowid = None
        return self

    def fetchone(self):
        return self._raw.fetchone()

    def fetchall(self):
        return self._raw.fetchall()

    @property
    def rowcount(self):
        return self._raw.rowcount


class _PgConnection:
    """psycopg2 connection handing out dict-row cursors."""

    def __init__(self, raw_conn):
        self.raw = raw_conn

    def cursor(self):
        from psycopg2.extras import RealDictCursor
        return _PgCursor(self.raw.cursor(cursor_factory=RealDictCursor))

    def execute(self, sql, params=None):
        return self.cursor().execute(sql, params)

    def commit(self):
        self.raw.commit()

    def rollback(self):
        self.raw.rollback()


# =============================================================================
# DatabaseManager
# =============================================================================

class DatabaseManager:
    """Pooled connections, built once by the app factory."""

    def __init__(self, db_url: Optional[str] = None, db_path: Optional[Path] = None, pool_size: int = 10):
        self.db_url = db_url
        self.db_path = Path(db_path or "data/citizen.db")
        self._lock = threading.Lock()
        self._idle: queue.Queue = queue.Queue(maxsize=pool_size)
        self._pg_pool = None

        if is_postgres(db_url):
            try:
                from psycopg2.pool import ThreadedConnectionPool
            except ImportError as e:
                raise ImportError(
                    "PostgreSQL support needs psycopg2: pip install 'citizen-control-plane[postgres]'"
                ) from e
            self._pg_pool = ThreadedConnectionPool(minconn=1, maxconn=pool_size, dsn=db_url)
            logger.info("Database: PostgreSQL pool ready")
        else:
            self.db_path.parent.mkdir(parents=True, exist_ok=True)
            logger.info(f"Database: SQLite at {self.db_path}")

    @classmethod
    def from_settings(cls, database_settings) -> "DatabaseManager":
        return cls(db_url=database_settings.database_url, db_path=Path(database_settings.database_path))

    def _open_sqlite(self) -> sqlite3.Connection:
        conn = sqlite3.connect(str(self.db_path), check_same_thread=False)
        conn.row_factory = sqlite3.Row
        conn.execute("PRAGMA journal_mode=WAL")
        conn.execute("PRAGMA foreign_keys=ON")
        return conn

    def _acquire(self):
        if self._pg_pool is not None:
            raw = self._pg_pool.getconn()
            raw.autocommit = False
            return _PgConnection(raw)
        try:
            return self._idle.get_nowait()
        except queue.Empty:
            return self._open_sqlite()

    def _release(self, conn, broken: bool = False):
        if self._pg_pool is not None:
            self._pg_pool.putconn(conn.raw, close=broken)
            return
        if broken:
            conn.close()
            return
        try:
            self._idle.put_nowait(conn)
        except queue.Full:
            conn.close()

    @contextmanager
    def connect(self):
        """One transaction: commit on success, roll back and re-raise on error."""
        conn = self._acquire()
        broken = False
        try:
            yield conn
            conn.commit()
        except Exception:
            try:
                conn.rollback()
            except (sqlite3.Error, OSError):
                broken = True
            raise
        finally:
            self._release(conn, broken)

    def ping(self) -> bool:
        """Readiness check for /health."""
        try:
            with self.connect() as conn:
                conn.execute("SELECT 1")
            return True
        except Exception as e:
            logger.warning(f"Database health check failed: {e}")
            return False

    def close(self):
        """Close idle connections. Safe to call more than once."""
        with self._lock:
            while True:
                try:
                    self._idle.get_nowait().close()
                except queue.Empty:
                    break
            if self._pg_pool is not None:
                self._pg_pool.closeall()
                self._pg_pool = None
