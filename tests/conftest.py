"""Shared test fixtures for larder."""

from __future__ import annotations

import sqlite3
from collections.abc import Callable, Iterator
from pathlib import Path
from typing import Any

import pytest

from larder.core.connection import SQLiteConnectionProvider
from larder.core.cookbook_store import CookbookStore
from larder.core.hash_cleanup import HashCleanupDispatcher, HashCleanupEvent
from larder.models.cookbook import CookbookVersion, DocumentBundle


@pytest.fixture
def tmp_dir(tmp_path: Path) -> Path:
    """Provide a temporary directory for test databases."""
    return tmp_path


@pytest.fixture
def provider(tmp_dir: Path) -> Iterator[SQLiteConnectionProvider]:
    """Provide an open provider on a fresh SQLite database."""
    with SQLiteConnectionProvider(tmp_dir / "test.db") as opened:
        yield opened


@pytest.fixture
def cleanup() -> HashCleanupDispatcher:
    return HashCleanupDispatcher()


@pytest.fixture
def published(cleanup: HashCleanupDispatcher) -> list[HashCleanupEvent]:
    """Every cleanup event published by the store under test."""
    events: list[HashCleanupEvent] = []
    cleanup.register(events.append)
    return events


@pytest.fixture
def store(provider: SQLiteConnectionProvider, cleanup: HashCleanupDispatcher) -> CookbookStore:
    """Provide a CookbookStore wired to the test provider and dispatcher."""
    return CookbookStore(provider, cleanup=cleanup)


def manifest(*checksums: str) -> list[dict[str, str]]:
    """A file-manifest segment with one entry per checksum."""
    return [
        {"name": f"file{i}.rb", "path": f"recipes/file{i}.rb", "checksum": checksum}
        for i, checksum in enumerate(checksums)
    ]


@pytest.fixture
def make_version() -> Callable[..., CookbookVersion]:
    """Factory fixture: build an unsaved CookbookVersion with sensible defaults."""

    def _factory(
        cookbook_name: str = "apache2",
        version: str = "1.0.0",
        *,
        checksums: tuple[str, ...] = (),
        **overrides: Any,
    ) -> CookbookVersion:
        segments: dict[str, Any] = {
            "metadata": {"name": cookbook_name, "version": version},
            "recipes": manifest(*checksums),
        }
        segments.update(overrides.pop("documents", {}))
        return CookbookVersion(
            cookbook_name=cookbook_name,
            version=version,
            documents=DocumentBundle(**segments),
            **overrides,
        )

    return _factory


# ---------------------------------------------------------------------------
# Failure injection
# ---------------------------------------------------------------------------


class FailingConnection:
    """Wraps a sqlite3 connection and fails on demand.

    ``fail_on`` makes any statement containing that text raise;
    ``fail_rollback`` makes rollback raise; ``blind_probe`` makes the
    cookbook-by-name probe find nothing, as if another writer raced ahead.
    """

    def __init__(
        self,
        conn: sqlite3.Connection,
        *,
        fail_on: str | None = None,
        fail_rollback: bool = False,
        blind_probe: bool = False,
    ) -> None:
        self._conn = conn
        self._fail_on = fail_on
        self._fail_rollback = fail_rollback
        self._blind_probe = blind_probe

    def execute(self, sql: str, params: tuple = ()) -> sqlite3.Cursor:
        if self._fail_on is not None and self._fail_on in sql:
            raise sqlite3.OperationalError("disk I/O error")
        if self._blind_probe and sql.startswith("SELECT id FROM cookbooks WHERE name"):
            return self._conn.execute("SELECT id FROM cookbooks WHERE 0")
        return self._conn.execute(sql, params)

    def commit(self) -> None:
        self._conn.commit()

    def rollback(self) -> None:
        if self._fail_rollback:
            raise sqlite3.OperationalError("connection lost during rollback")
        self._conn.rollback()

    def close(self) -> None:
        self._conn.close()


class FlakyProvider(SQLiteConnectionProvider):
    """SQLite provider whose connections fail according to its attributes."""

    fail_on: str | None = None
    fail_rollback: bool = False
    blind_probe: bool = False

    def _connect(self) -> Any:
        return FailingConnection(
            super()._connect(),
            fail_on=self.fail_on,
            fail_rollback=self.fail_rollback,
            blind_probe=self.blind_probe,
        )


@pytest.fixture
def flaky_provider(tmp_dir: Path) -> Iterator[FlakyProvider]:
    with FlakyProvider(tmp_dir / "flaky.db") as opened:
        yield opened


@pytest.fixture
def flaky_store(flaky_provider: FlakyProvider, cleanup: HashCleanupDispatcher) -> CookbookStore:
    return CookbookStore(flaky_provider, cleanup=cleanup)
