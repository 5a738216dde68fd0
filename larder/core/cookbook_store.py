"""Cookbook version store backed by a relational connection provider.

Rows are authoritative: ``Cookbook.versions`` is only refreshed from them.

Design:
- Upserts are probe-then-branch inside one write transaction; UNIQUE
  constraints turn a lost race into ``ConcurrentConflict``.
- A version's ten sub-documents are encoded as a bundle before any
  transaction opens, so a partially written version is never visible.
- Deletes read the doomed rows inside the delete transaction and hand
  their content hashes to cleanup collectors only after commit.
- Nothing is retried here.
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from datetime import datetime, timezone

from larder.core.blob_codec import BlobCodec, JsonBlobCodec
from larder.core.connection import ConnectionProvider, Transaction
from larder.core.errors import (
    CookbookNotFound,
    CookbookVersionNotFound,
    CorruptRecord,
    DecodeFailure,
    FrozenVersionError,
)
from larder.core.hash_cleanup import HashCleanupDispatcher, HashCleanupEvent
from larder.core.hash_tracker import collect_file_hashes, segment_hashes, version_file_hashes
from larder.core.version_codec import parse_version, render_version, sort_versions
from larder.models.cookbook import (
    DOCUMENT_COLUMNS,
    MANIFEST_SEGMENTS,
    Cookbook,
    CookbookVersion,
    DocumentBundle,
)

logger = logging.getLogger(__name__)

# Called with the incoming version and whether the stored row is frozen.
FreezePolicy = Callable[[CookbookVersion, bool], None]


def allow_overwrite(version: CookbookVersion, stored_frozen: bool) -> None:
    """Default policy: storage does not enforce the frozen flag."""


def reject_frozen_overwrite(version: CookbookVersion, stored_frozen: bool) -> None:
    """Refuse to overwrite a version whose stored row is frozen."""
    if stored_frozen:
        raise FrozenVersionError(
            f"Cookbook version {version.name} is frozen and cannot be overwritten"
        )


# ---------------------------------------------------------------------------
# SQL
# ---------------------------------------------------------------------------

_DOC_COLS = ", ".join(DOCUMENT_COLUMNS)
_DOC_PLACEHOLDERS = ", ".join("?" for _ in DOCUMENT_COLUMNS)
_DOC_ASSIGNMENTS = ", ".join(f"{column} = ?" for column in DOCUMENT_COLUMNS)

_SELECT_VERSIONS = (
    "SELECT cv.id, cv.cookbook_id, c.name, cv.major_ver, cv.minor_ver, "
    "cv.patch_ver, cv.frozen, "
    + ", ".join(f"cv.{column}" for column in DOCUMENT_COLUMNS)
    + " FROM cookbook_versions cv JOIN cookbooks c ON cv.cookbook_id = c.id"
)

_ORDER_NEWEST_FIRST = " ORDER BY cv.major_ver DESC, cv.minor_ver DESC, cv.patch_ver DESC"

_MATCH_TRIPLE = "cookbook_id = ? AND major_ver = ? AND minor_ver = ? AND patch_ver = ?"


def _now() -> str:
    return datetime.now(timezone.utc).isoformat()


class CookbookStore:
    """CRUD, listing and cascading delete for cookbooks and their versions.

    Parameters
    ----------
    provider:
        Backend connection provider. Opened and closed by the caller.
    codec:
        Blob codec for the ten sub-document columns.
    cleanup:
        Dispatcher receiving :class:`HashCleanupEvent` after committed
        deletes. A private one is created when omitted.
    freeze_policy:
        Checked before a stored version is overwritten. The default lets
        every overwrite through; pass :func:`reject_frozen_overwrite` to
        enforce the frozen flag here instead of in the caller.
    """

    def __init__(
        self,
        provider: ConnectionProvider,
        *,
        codec: BlobCodec | None = None,
        cleanup: HashCleanupDispatcher | None = None,
        freeze_policy: FreezePolicy = allow_overwrite,
    ) -> None:
        self._provider = provider
        self._codec = codec or JsonBlobCodec()
        self._cleanup = cleanup or HashCleanupDispatcher()
        self._freeze_policy = freeze_policy

    @property
    def cleanup(self) -> HashCleanupDispatcher:
        return self._cleanup

    def __repr__(self) -> str:
        return f"CookbookStore(provider={self._provider!r})"

    # ------------------------------------------------------------------
    # Cookbooks
    # ------------------------------------------------------------------

    def exists(self, name: str) -> bool:
        """Return whether a cookbook row exists for *name*."""
        with self._provider.transaction() as tx:
            row = tx.query_one("SELECT id FROM cookbooks WHERE name = ?", (name,))
        return row is not None

    def load(self, name: str) -> Cookbook:
        """Return the cookbook named *name* with an empty version mapping.

        Raises ``CookbookNotFound`` when there is no such cookbook.
        """
        with self._provider.transaction() as tx:
            row = tx.query_one("SELECT id, name FROM cookbooks WHERE name = ?", (name,))
        if row is None:
            raise CookbookNotFound(name)
        return Cookbook(id=row[0], name=row[1])

    def list_all(self) -> list[str]:
        """Return every cookbook name, alphabetically."""
        with self._provider.transaction() as tx:
            rows = tx.query_all("SELECT name FROM cookbooks ORDER BY name")
        return [row[0] for row in rows]

    def list_cookbooks(self) -> list[Cookbook]:
        """Return every cookbook, alphabetically, without versions loaded."""
        with self._provider.transaction() as tx:
            rows = tx.query_all("SELECT id, name FROM cookbooks ORDER BY name")
        return [Cookbook(id=row[0], name=row[1]) for row in rows]

    def save(self, cookbook: Cookbook) -> Cookbook:
        """Create the cookbook row, or refresh ``updated_at`` if it exists.

        The assigned id is written back into *cookbook* after commit.
        """
        with self._provider.transaction(write=True) as tx:
            cookbook_id = self._upsert_cookbook(tx, cookbook.name, _now())
        cookbook.id = cookbook_id
        return cookbook

    @staticmethod
    def _upsert_cookbook(tx: Transaction, name: str, now: str) -> int:
        row = tx.query_one("SELECT id FROM cookbooks WHERE name = ?", (name,))
        if row is not None:
            tx.execute(
                "UPDATE cookbooks SET name = ?, updated_at = ? WHERE id = ?",
                (name, now, row[0]),
            )
            logger.debug("Updated cookbook %s (id=%d)", name, row[0])
            return row[0]
        cursor = tx.execute(
            "INSERT INTO cookbooks (name, created_at, updated_at) VALUES (?, ?, ?)",
            (name, now, now),
        )
        logger.info("Created cookbook %s (id=%d)", name, cursor.lastrowid)
        return cursor.lastrowid

    def _require_id(self, cookbook: Cookbook) -> int:
        if cookbook.id is None:
            cookbook.id = self.load(cookbook.name).id
        return cookbook.id

    # ------------------------------------------------------------------
    # Versions: reads
    # ------------------------------------------------------------------

    def count_versions(self, cookbook: Cookbook) -> int:
        cookbook_id = self._require_id(cookbook)
        with self._provider.transaction() as tx:
            row = tx.query_one(
                "SELECT count(*) FROM cookbook_versions WHERE cookbook_id = ?",
                (cookbook_id,),
            )
        return row[0] if row else 0

    def list_versions(self, cookbook: Cookbook) -> list[CookbookVersion]:
        """Return every version of *cookbook*, newest first.

        Also refreshes ``cookbook.versions``. A row that fails to decode
        aborts the whole listing with ``CorruptRecord``.
        """
        cookbook_id = self._require_id(cookbook)
        with self._provider.transaction() as tx:
            rows = tx.query_all(
                _SELECT_VERSIONS + " WHERE cv.cookbook_id = ?" + _ORDER_NEWEST_FIRST,
                (cookbook_id,),
            )
        versions = sort_versions(
            (self._row_to_version(row) for row in rows), key=lambda v: v.version
        )
        cookbook.versions = {version.version: version for version in versions}
        return versions

    def get_version(self, cookbook: Cookbook, version: str) -> CookbookVersion:
        """Return the row for *version* of *cookbook*.

        Raises ``InvalidVersion`` for a malformed version string and
        ``CookbookVersionNotFound`` when there is no such row.
        """
        triple = parse_version(version)
        cookbook_id = self._require_id(cookbook)
        with self._provider.transaction() as tx:
            row = tx.query_one(
                _SELECT_VERSIONS
                + " WHERE cv.cookbook_id = ? AND cv.major_ver = ?"
                " AND cv.minor_ver = ? AND cv.patch_ver = ?",
                (cookbook_id, *triple),
            )
        if row is None:
            raise CookbookVersionNotFound(cookbook.name, str(triple))
        return self._row_to_version(row)

    def latest_version(self, cookbook: Cookbook) -> CookbookVersion:
        """Return the highest version of *cookbook*."""
        cookbook_id = self._require_id(cookbook)
        with self._provider.transaction() as tx:
            row = tx.query_one(
                _SELECT_VERSIONS
                + " WHERE cv.cookbook_id = ?"
                + _ORDER_NEWEST_FIRST
                + " LIMIT 1",
                (cookbook_id,),
            )
        if row is None:
            raise CookbookVersionNotFound(cookbook.name, "latest")
        return self._row_to_version(row)

    def referenced_hashes(self) -> set[str]:
        """Every content hash still referenced by any stored version."""
        with self._provider.transaction() as tx:
            rows = tx.query_all(
                "SELECT id, " + ", ".join(MANIFEST_SEGMENTS) + " FROM cookbook_versions"
            )
        hashes: set[str] = set()
        for row in rows:
            segments = []
            for column, blob in zip(MANIFEST_SEGMENTS, row[1:]):
                try:
                    segments.append(self._codec.decode(blob))
                except DecodeFailure as exc:
                    raise CorruptRecord(
                        f"cookbook_versions row {row[0]} {column}: {exc}"
                    ) from exc
            hashes |= segment_hashes(segments)
        return hashes

    def _row_to_version(self, row: tuple) -> CookbookVersion:
        (version_id, cookbook_id, cookbook_name, major, minor, patch, frozen) = row[:7]
        rendered = render_version(major, minor, patch)
        try:
            documents = DocumentBundle.decode(
                dict(zip(DOCUMENT_COLUMNS, row[7:])), self._codec
            )
        except CorruptRecord as exc:
            raise CorruptRecord(f"{cookbook_name}-{rendered}: {exc}") from exc
        return CookbookVersion(
            id=version_id,
            cookbook_id=cookbook_id,
            cookbook_name=cookbook_name,
            version=rendered,
            frozen=bool(frozen),
            documents=documents,
        )

    # ------------------------------------------------------------------
    # Versions: writes
    # ------------------------------------------------------------------

    def save_version(self, version: CookbookVersion) -> CookbookVersion:
        """Insert *version*, or update the row with the same triple in place.

        When ``version.cookbook_id`` is unset, the owning cookbook is looked
        up by name (and created if missing) in the same transaction. The
        new ids are written back into *version* after commit.

        Raises ``EncodeFailure`` before touching the backend if any
        sub-document cannot be encoded.
        """
        blobs = version.documents.encode(self._codec)
        documents = [blobs[column] for column in DOCUMENT_COLUMNS]
        triple = version.triple
        now = _now()

        with self._provider.transaction(write=True) as tx:
            cookbook_id = version.cookbook_id
            if cookbook_id is None:
                cookbook_id = self._upsert_cookbook(tx, version.cookbook_name, now)

            row = tx.query_one(
                f"SELECT id, frozen FROM cookbook_versions WHERE {_MATCH_TRIPLE}",
                (cookbook_id, *triple),
            )
            self._freeze_policy(version, bool(row[1]) if row else False)

            if row is not None:
                version_id = row[0]
                tx.execute(
                    f"UPDATE cookbook_versions SET frozen = ?, {_DOC_ASSIGNMENTS}, "
                    "updated_at = ? WHERE id = ?",
                    (int(version.frozen), *documents, now, version_id),
                )
            else:
                cursor = tx.execute(
                    "INSERT INTO cookbook_versions (cookbook_id, major_ver, minor_ver, "
                    f"patch_ver, frozen, {_DOC_COLS}, created_at, updated_at) "
                    f"VALUES (?, ?, ?, ?, ?, {_DOC_PLACEHOLDERS}, ?, ?)",
                    (cookbook_id, *triple, int(version.frozen), *documents, now, now),
                )
                version_id = cursor.lastrowid

        version.cookbook_id = cookbook_id
        version.id = version_id
        logger.info(
            "%s cookbook version %s (id=%d)",
            "Updated" if row is not None else "Inserted",
            version.name,
            version_id,
        )
        return version

    def delete_version(self, version: CookbookVersion) -> HashCleanupEvent:
        """Delete one version row and hand its hashes to cleanup.

        The row is matched by ``version.id`` when set, otherwise by cookbook
        name and version. Hash candidates come from the stored row as read
        inside the delete transaction, not from *version*.

        Raises ``CookbookVersionNotFound`` if the row is already gone and
        ``CorruptRecord`` if it cannot be decoded. On a backend failure the
        transaction is rolled back and nothing is handed to cleanup.
        """
        with self._provider.transaction(write=True) as tx:
            if version.id is not None:
                row = tx.query_one(_SELECT_VERSIONS + " WHERE cv.id = ?", (version.id,))
            else:
                row = tx.query_one(
                    _SELECT_VERSIONS
                    + " WHERE c.name = ? AND cv.major_ver = ?"
                    " AND cv.minor_ver = ? AND cv.patch_ver = ?",
                    (version.cookbook_name, *version.triple),
                )
            if row is None:
                raise CookbookVersionNotFound(version.cookbook_name, version.version)
            stored = self._row_to_version(row)
            tx.execute("DELETE FROM cookbook_versions WHERE id = ?", (stored.id,))

        logger.info("Deleted cookbook version %s", stored.name)
        event = HashCleanupEvent(
            cookbook_name=stored.cookbook_name,
            versions=[stored.version],
            hashes=version_file_hashes(stored),
        )
        self._cleanup.publish(event)
        return event

    def delete_cookbook(self, cookbook: Cookbook) -> HashCleanupEvent:
        """Delete a cookbook and all of its versions atomically.

        Hashes are collected from the stored versions inside the delete
        transaction, before any row is touched, and published only after
        the commit. A version that cannot be decoded aborts the delete with
        ``CorruptRecord``.
        """
        cookbook_id = self._require_id(cookbook)

        with self._provider.transaction(write=True) as tx:
            rows = tx.query_all(
                _SELECT_VERSIONS + " WHERE cv.cookbook_id = ?" + _ORDER_NEWEST_FIRST,
                (cookbook_id,),
            )
            versions = sort_versions(
                (self._row_to_version(row) for row in rows), key=lambda v: v.version
            )
            hashes = collect_file_hashes(versions)
            tx.execute("DELETE FROM cookbook_versions WHERE cookbook_id = ?", (cookbook_id,))
            cursor = tx.execute("DELETE FROM cookbooks WHERE id = ?", (cookbook_id,))
            if cursor.rowcount == 0:
                raise CookbookNotFound(cookbook.name)

        cookbook.versions = {}
        logger.info(
            "Deleted cookbook %s with %d version(s); %d hash candidate(s)",
            cookbook.name,
            len(versions),
            len(hashes),
        )
        event = HashCleanupEvent(
            cookbook_name=cookbook.name,
            versions=[version.version for version in versions],
            hashes=hashes,
        )
        self._cleanup.publish(event)
        return event
