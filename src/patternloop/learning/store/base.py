"""Base class for PatternStore with connection, schema and lock management.

This module provides the foundational `PatternStoreBase` class that handles:
- SQLite connections with WAL mode and foreign keys
- Schema creation and version tracking
- Per-pattern row locks serializing writes to one pattern id

Mixins inherit from this base to add pattern, consolidation, threshold and
embedding functionality.
"""

from __future__ import annotations

import contextvars
import sqlite3
import threading
from collections.abc import Generator, Iterable
from contextlib import ExitStack, contextmanager
from pathlib import Path

from patternloop.core.config import DEFAULT_DB_PATH
from patternloop.core.errors import StorageError
from patternloop.core.logging import get_logger

_logger = get_logger("learning.store")

# SQLite accepts str, int, float, bytes, and None as bind parameters.
SQLParam = str | int | float | bytes | None


class WhereBuilder:
    """Accumulates SQL WHERE clauses and their bound parameters.

    Usage::

        wb = WhereBuilder()
        wb.add("type = ?", pattern_type)
        wb.add("confidence >= ?", min_confidence)
        where_sql, params = wb.build()
        conn.execute(f"SELECT * FROM patterns WHERE {where_sql}", params)
    """

    __slots__ = ("_clauses", "_params")

    def __init__(self) -> None:
        self._clauses: list[str] = []
        self._params: list[SQLParam] = []

    def add(self, clause: str, *params: SQLParam) -> None:
        """Append a WHERE clause with its bound parameters."""
        self._clauses.append(clause)
        self._params.extend(params)

    def build(self) -> tuple[str, tuple[SQLParam, ...]]:
        """Return the combined WHERE fragment and parameter tuple.

        Returns ``("1=1", ())`` when no clauses have been added.
        """
        if not self._clauses:
            return "1=1", ()
        return " AND ".join(self._clauses), tuple(self._params)


class PatternStoreBase:
    """SQLite-backed pattern store base class.

    Handles the database connection lifecycle, schema management and the
    per-pattern locks that serialize writes. Connections are opened per
    operation, so a store may be used from worker threads.

    Attributes:
        db_path: Path to the SQLite database file.
    """

    # v1: patterns, pattern_embeddings, adaptive_thresholds
    SCHEMA_VERSION = 1

    def __init__(self, db_path: Path | None = None) -> None:
        """Initialize the store, creating the database and schema if needed.

        Args:
            db_path: Path to the SQLite database file.
                Defaults to ~/.patternloop/patterns.db

        Raises:
            StorageError: If the database cannot be created or opened.
        """
        self.db_path = db_path or DEFAULT_DB_PATH
        self._logger = _logger
        self._batch_conn: contextvars.ContextVar[sqlite3.Connection | None] = (
            contextvars.ContextVar("_batch_conn", default=None)
        )
        self._registry_lock = threading.Lock()
        self._row_locks: dict[str, threading.Lock] = {}
        # find-similar + insert must not interleave between writers
        self._write_lock = threading.RLock()
        self.db_path.parent.mkdir(parents=True, exist_ok=True)
        self._migrate_if_needed()

    def _connect(self) -> sqlite3.Connection:
        try:
            conn = sqlite3.connect(str(self.db_path), timeout=30.0)
            conn.execute("PRAGMA journal_mode=WAL")
            conn.execute("PRAGMA foreign_keys=ON")
            conn.execute("PRAGMA busy_timeout=30000")
        except sqlite3.Error as e:
            raise StorageError(f"cannot open {self.db_path}: {e}") from e
        conn.row_factory = sqlite3.Row
        return conn

    @contextmanager
    def _get_connection(self) -> Generator[sqlite3.Connection, None, None]:
        """Get a configured connection, committed on success.

        Inside ``batch_connection()`` the shared batch connection is reused.

        Raises:
            StorageError: If any SQLite operation inside the block fails.
        """
        batch = self._batch_conn.get()
        if batch is not None:
            yield batch
            return

        conn = self._connect()
        try:
            yield conn
            conn.commit()
        except sqlite3.Error as e:
            conn.rollback()
            _logger.warning(
                "store.operation_failed",
                db_path=str(self.db_path),
                error=f"{type(e).__name__}: {e}",
            )
            raise StorageError(f"database operation failed: {e}") from e
        except Exception:
            conn.rollback()
            raise
        finally:
            conn.close()

    @contextmanager
    def batch_connection(self) -> Generator[sqlite3.Connection, None, None]:
        """Reuse a single connection (and transaction) across operations.

        Example::

            with store.batch_connection():
                for pattern in patterns:
                    store.store(pattern)

        Raises:
            StorageError: If any SQLite operation inside the block fails.
        """
        conn = self._connect()
        token = self._batch_conn.set(conn)
        try:
            yield conn
            conn.commit()
        except sqlite3.Error as e:
            conn.rollback()
            _logger.warning("store.batch_failed", db_path=str(self.db_path), error=str(e))
            raise StorageError(f"batch operation failed: {e}") from e
        except Exception:
            conn.rollback()
            raise
        finally:
            self._batch_conn.reset(token)
            conn.close()

    def close(self) -> None:  # noqa: B027
        """Release resources. Connections are per-operation, so this is a no-op."""

    # ─── Row locks ────────────────────────────────────────────────────

    def _lock_for(self, pattern_id: str) -> threading.Lock:
        with self._registry_lock:
            lock = self._row_locks.get(pattern_id)
            if lock is None:
                lock = self._row_locks[pattern_id] = threading.Lock()
            return lock

    @contextmanager
    def _locked(self, *pattern_ids: str) -> Generator[None, None, None]:
        """Hold the row locks of the given ids, acquired in sorted order."""
        with ExitStack() as stack:
            for pattern_id in sorted(set(pattern_ids)):
                stack.enter_context(self._lock_for(pattern_id))
            yield

    def _drop_locks(self, pattern_ids: Iterable[str]) -> None:
        with self._registry_lock:
            for pattern_id in pattern_ids:
                self._row_locks.pop(pattern_id, None)

    # ─── Schema ───────────────────────────────────────────────────────

    def _migrate_if_needed(self) -> None:
        with self._get_connection() as conn:
            try:
                row = conn.execute("SELECT version FROM schema_version LIMIT 1").fetchone()
                current_version = row["version"] if row else 0
            except sqlite3.OperationalError:
                current_version = 0

            if current_version < self.SCHEMA_VERSION:
                self._create_schema(conn)

    def _create_schema(self, conn: sqlite3.Connection) -> None:
        """Create all tables and indexes (idempotent)."""
        self._create_schema_version_table(conn)
        self._create_patterns_table(conn)
        self._create_embeddings_table(conn)
        self._create_thresholds_table(conn)

        conn.execute("DELETE FROM schema_version")
        conn.execute(
            "INSERT INTO schema_version (version) VALUES (?)",
            (self.SCHEMA_VERSION,),
        )
        self._logger.info("schema_created", version=self.SCHEMA_VERSION)

    @staticmethod
    def _create_schema_version_table(conn: sqlite3.Connection) -> None:
        conn.execute("""
            CREATE TABLE IF NOT EXISTS schema_version (
                version INTEGER PRIMARY KEY
            )
        """)

    @staticmethod
    def _create_patterns_table(conn: sqlite3.Connection) -> None:
        conn.execute("""
            CREATE TABLE IF NOT EXISTS patterns (
                id TEXT PRIMARY KEY,
                type TEXT NOT NULL,
                name TEXT NOT NULL,
                data BLOB NOT NULL,
                confidence REAL NOT NULL,
                usage_count INTEGER NOT NULL DEFAULT 0,
                created_at TIMESTAMP NOT NULL,
                last_used TIMESTAMP
            )
        """)
        conn.execute("CREATE INDEX IF NOT EXISTS idx_patterns_type ON patterns(type)")
        conn.execute(
            "CREATE INDEX IF NOT EXISTS idx_patterns_rank "
            "ON patterns(confidence DESC, usage_count DESC)"
        )
        conn.execute(
            "CREATE INDEX IF NOT EXISTS idx_patterns_created ON patterns(created_at)"
        )

    @staticmethod
    def _create_embeddings_table(conn: sqlite3.Connection) -> None:
        conn.execute("""
            CREATE TABLE IF NOT EXISTS pattern_embeddings (
                id TEXT PRIMARY KEY
                    REFERENCES patterns(id) ON DELETE CASCADE,
                model TEXT NOT NULL,
                dims INTEGER NOT NULL,
                vector BLOB NOT NULL,
                compressed INTEGER NOT NULL DEFAULT 0,
                min_val REAL,
                max_val REAL,
                created_at TIMESTAMP NOT NULL
            )
        """)
        conn.execute(
            "CREATE INDEX IF NOT EXISTS idx_embeddings_model ON pattern_embeddings(model)"
        )

    @staticmethod
    def _create_thresholds_table(conn: sqlite3.Connection) -> None:
        conn.execute("""
            CREATE TABLE IF NOT EXISTS adaptive_thresholds (
                id TEXT PRIMARY KEY,
                agent_type TEXT NOT NULL,
                file_type TEXT,
                base_threshold REAL NOT NULL,
                adjusted_threshold REAL NOT NULL,
                confidence_min REAL NOT NULL,
                confidence_max REAL NOT NULL,
                sample_size INTEGER NOT NULL DEFAULT 0,
                last_updated TIMESTAMP NOT NULL,
                UNIQUE(agent_type, file_type)
            )
        """)

    def clear_all(self) -> None:
        """Delete every stored record. Intended for tests and resets."""
        with self._get_connection() as conn:
            conn.execute("DELETE FROM pattern_embeddings")
            conn.execute("DELETE FROM patterns")
            conn.execute("DELETE FROM adaptive_thresholds")
        with self._registry_lock:
            self._row_locks.clear()
        self._logger.warning("store_cleared", db_path=str(self.db_path))
