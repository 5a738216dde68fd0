"""Connection provider: the only place that talks to the database driver.

The cookbook store depends on the :class:`ConnectionProvider` protocol and
receives a provider explicitly, so every caller (and every test) chooses its
own backend. :class:`SQLiteConnectionProvider` is the shipped implementation.

Design:
- One short-lived connection per logical operation; no transaction outlives it.
- Write transactions use ``BEGIN IMMEDIATE`` so the write lock is held from
  the first probe to the commit.
- Driver errors are translated: UNIQUE violations become
  ``ConcurrentConflict``, everything else ``BackendFailure``.
- A failed rollback is folded into the error being raised, never dropped.
"""

from __future__ import annotations

import logging
import sqlite3
from collections.abc import Iterator, Sequence
from contextlib import AbstractContextManager, contextmanager
from pathlib import Path
from typing import Any, Protocol, runtime_checkable

from larder.core.errors import BackendFailure, ConcurrentConflict, StoreError

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# DDL
# ---------------------------------------------------------------------------

_CREATE_COOKBOOKS = """
CREATE TABLE IF NOT EXISTS cookbooks (
    id          INTEGER PRIMARY KEY AUTOINCREMENT,
    name        TEXT NOT NULL UNIQUE,
    created_at  TEXT NOT NULL,
    updated_at  TEXT NOT NULL
);
"""

_CREATE_COOKBOOK_VERSIONS = """
CREATE TABLE IF NOT EXISTS cookbook_versions (
    id           INTEGER PRIMARY KEY AUTOINCREMENT,
    cookbook_id  INTEGER NOT NULL REFERENCES cookbooks(id),
    major_ver    INTEGER NOT NULL,
    minor_ver    INTEGER NOT NULL,
    patch_ver    INTEGER NOT NULL,
    frozen       INTEGER NOT NULL DEFAULT 0,
    metadata     BLOB NOT NULL,
    definitions  BLOB NOT NULL,
    libraries    BLOB NOT NULL,
    attributes   BLOB NOT NULL,
    recipes      BLOB NOT NULL,
    providers    BLOB NOT NULL,
    resources    BLOB NOT NULL,
    templates    BLOB NOT NULL,
    root_files   BLOB NOT NULL,
    files        BLOB NOT NULL,
    created_at   TEXT NOT NULL,
    updated_at   TEXT NOT NULL,
    UNIQUE (cookbook_id, major_ver, minor_ver, patch_ver)
);
"""

_CREATE_IDX_VERSIONS = """
CREATE INDEX IF NOT EXISTS idx_cookbook_versions_cookbook
    ON cookbook_versions(cookbook_id);
"""


def translate_error(exc: sqlite3.Error, action: str) -> StoreError:
    """Map a driver exception onto the store's error taxonomy."""
    if isinstance(exc, sqlite3.IntegrityError) and "UNIQUE" in str(exc).upper():
        return ConcurrentConflict(f"{action}: uniqueness violation ({exc})")
    return BackendFailure(f"{action}: {exc}")


# ---------------------------------------------------------------------------
# Transaction handle
# ---------------------------------------------------------------------------


class Transaction:
    """Statement execution inside one open transaction."""

    def __init__(self, conn: sqlite3.Connection) -> None:
        self._conn = conn

    def execute(self, sql: str, params: Sequence[Any] = ()) -> sqlite3.Cursor:
        """Execute one statement; the cursor exposes ``lastrowid``/``rowcount``."""
        try:
            return self._conn.execute(sql, tuple(params))
        except sqlite3.Error as exc:
            raise translate_error(exc, _describe(sql)) from exc

    def query_one(self, sql: str, params: Sequence[Any] = ()) -> tuple | None:
        """Return the first row or ``None``."""
        return self.execute(sql, params).fetchone()

    def query_all(self, sql: str, params: Sequence[Any] = ()) -> list[tuple]:
        """Return every row (possibly none)."""
        return self.execute(sql, params).fetchall()


def _describe(sql: str) -> str:
    return " ".join(sql.split())[:80]


# ---------------------------------------------------------------------------
# Provider protocol
# ---------------------------------------------------------------------------


@runtime_checkable
class ConnectionProvider(Protocol):
    """What the cookbook store needs from a backend.

    ``transaction(write=True)`` must yield a :class:`Transaction`-like
    handle, commit when the block exits normally and roll back otherwise.
    """

    def transaction(self, *, write: bool = False) -> AbstractContextManager[Transaction]:
        ...

    def close(self) -> None:
        ...


class SQLiteConnectionProvider:
    """File-backed SQLite provider.

    Parameters
    ----------
    db_path:
        Path to the SQLite database file. Parent directories are created.
    busy_timeout:
        Seconds a connection waits for another writer's lock before the
        operation fails with ``BackendFailure``.
    """

    def __init__(self, db_path: Path, *, busy_timeout: float = 5.0) -> None:
        self._db_path = Path(db_path)
        self._busy_timeout = busy_timeout
        self._open = False

    @property
    def db_path(self) -> Path:
        return self._db_path

    @property
    def is_open(self) -> bool:
        return self._open

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def open(self) -> SQLiteConnectionProvider:
        """Create the database file and schema if needed. Idempotent."""
        if self._open:
            return self
        self._db_path.parent.mkdir(parents=True, exist_ok=True)
        conn = self._connect_raw()
        try:
            conn.execute("PRAGMA journal_mode=WAL")
            conn.execute(_CREATE_COOKBOOKS)
            conn.execute(_CREATE_COOKBOOK_VERSIONS)
            conn.execute(_CREATE_IDX_VERSIONS)
        except sqlite3.Error as exc:
            raise translate_error(exc, "create schema") from exc
        finally:
            conn.close()
        self._open = True
        logger.info("Opened cookbook database at %s", self._db_path)
        return self

    def close(self) -> None:
        if self._open:
            self._open = False
            logger.info("Closed cookbook database at %s", self._db_path)

    def __enter__(self) -> SQLiteConnectionProvider:
        return self.open()

    def __exit__(self, *exc: Any) -> None:
        self.close()

    def __repr__(self) -> str:
        state = "open" if self._open else "closed"
        return f"SQLiteConnectionProvider(db_path={str(self._db_path)!r}, {state})"

    # ------------------------------------------------------------------
    # Connections and transactions
    # ------------------------------------------------------------------

    def _connect_raw(self) -> sqlite3.Connection:
        try:
            conn = sqlite3.connect(
                str(self._db_path),
                timeout=self._busy_timeout,
                isolation_level=None,
                check_same_thread=False,
            )
            conn.execute("PRAGMA foreign_keys=ON")
        except sqlite3.Error as exc:
            raise translate_error(exc, f"connect to {self._db_path}") from exc
        return conn

    def _connect(self) -> sqlite3.Connection:
        """Return a new connection. Overridable seam for alternative drivers."""
        if not self._open:
            raise BackendFailure(f"Connection provider for {self._db_path} is not open")
        return self._connect_raw()

    @contextmanager
    def transaction(self, *, write: bool = False) -> Iterator[Transaction]:
        """Run a block inside one transaction on a fresh connection.

        Commits when the block returns, rolls back when it raises. If the
        rollback fails too, the rollback error is attached to the error that
        propagates.
        """
        conn = self._connect()
        try:
            try:
                conn.execute("BEGIN IMMEDIATE" if write else "BEGIN")
            except sqlite3.Error as exc:
                raise translate_error(exc, "begin transaction") from exc

            try:
                yield Transaction(conn)
            except BaseException as exc:
                self._rollback(conn, exc)
                raise

            try:
                conn.commit()
            except sqlite3.Error as exc:
                error = translate_error(exc, "commit")
                self._rollback(conn, error)
                raise error from exc
        finally:
            conn.close()

    @staticmethod
    def _rollback(conn: sqlite3.Connection, exc: BaseException) -> None:
        try:
            conn.rollback()
        except sqlite3.Error as rollback_exc:
            logger.warning(
                "Rollback failed after %s: %s", type(exc).__name__, rollback_exc
            )
            if isinstance(exc, StoreError):
                exc.add_rollback_failure(str(rollback_exc))
            else:
                exc.add_note(f"rolling back the transaction also failed: {rollback_exc}")
