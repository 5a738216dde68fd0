"""Hand-off of content-hash cleanup candidates after committed deletes.

The store never removes file content itself. After a delete commits it
publishes a :class:`HashCleanupEvent` listing every hash the deleted
version(s) referenced. Collectors decide which of those are really orphaned,
since other versions and other cookbooks may share them.
"""

from __future__ import annotations

import logging
import uuid
from collections.abc import Callable
from datetime import datetime, timezone
from typing import TYPE_CHECKING, Protocol, runtime_checkable

from pydantic import BaseModel, ConfigDict, Field

if TYPE_CHECKING:
    from larder.core.cookbook_store import CookbookStore

logger = logging.getLogger(__name__)


class HashCleanupError(RuntimeError):
    """Raised when every registered collector fails for an event."""


class HashCleanupEvent(BaseModel):
    """Candidate hashes released by a committed delete."""

    model_config = ConfigDict(frozen=True)

    event_id: str = Field(default_factory=lambda: str(uuid.uuid4()))
    cookbook_name: str
    versions: list[str] = []
    hashes: list[str] = []  # sorted, de-duplicated
    timestamp_utc: datetime = Field(
        default_factory=lambda: datetime.now(timezone.utc)
    )


@runtime_checkable
class HashCollector(Protocol):
    """Anything callable with a :class:`HashCleanupEvent`."""

    def __call__(self, event: HashCleanupEvent) -> None:
        ...


class HashCleanupDispatcher:
    """Delivers cleanup events to ALL registered collectors.

    A failure in one collector does not block the others.
    """

    def __init__(self) -> None:
        self._collectors: list[HashCollector] = []

    def register(self, collector: HashCollector) -> None:
        """Register a collector. Registering the same one twice is a no-op."""
        if collector not in self._collectors:
            self._collectors.append(collector)
            logger.debug("Registered hash collector: %r", collector)

    def unregister(self, collector: HashCollector) -> None:
        if collector in self._collectors:
            self._collectors.remove(collector)
            logger.debug("Unregistered hash collector: %r", collector)

    @property
    def collectors(self) -> list[HashCollector]:
        return list(self._collectors)

    def publish(self, event: HashCleanupEvent) -> int:
        """Deliver *event* to every collector; return how many succeeded.

        Raises
        ------
        HashCleanupError
            If *all* collectors fail. Individual failures are logged.
        """
        if not self._collectors:
            logger.debug(
                "No hash collectors registered; %d candidate(s) from %s not handed off",
                len(event.hashes),
                event.cookbook_name,
            )
            return 0

        succeeded = 0
        errors: list[tuple[HashCollector, Exception]] = []
        for collector in self._collectors:
            try:
                collector(event)
                succeeded += 1
            except Exception as exc:  # noqa: BLE001
                logger.error(
                    "Hash collector %r failed for event %s: %s",
                    collector,
                    event.event_id,
                    exc,
                )
                errors.append((collector, exc))

        if errors and not succeeded:
            raise HashCleanupError(
                f"All {len(errors)} hash collectors failed for event {event.event_id}: "
                + "; ".join(f"{collector!r}: {exc}" for collector, exc in errors)
            )
        return succeeded


class OrphanHashCollector:
    """Reference-counting collector.

    For each event, the candidates still referenced by any stored version
    are kept; the rest are orphans. ``remove`` is called once per orphan
    when given.

    Parameters
    ----------
    store:
        The store whose remaining versions define what is still referenced.
    remove:
        Optional callable that physically drops content for a hash.
    """

    def __init__(
        self,
        store: CookbookStore,
        remove: Callable[[str], None] | None = None,
    ) -> None:
        self._store = store
        self._remove = remove
        self._orphans: list[str] = []

    def __call__(self, event: HashCleanupEvent) -> None:
        if not event.hashes:
            return
        in_use = self._store.referenced_hashes()
        orphans = [h for h in event.hashes if h not in in_use]
        logger.info(
            "Cleanup for %s: %d candidate(s), %d orphaned",
            event.cookbook_name,
            len(event.hashes),
            len(orphans),
        )
        for digest in orphans:
            if self._remove is not None:
                self._remove(digest)
            self._orphans.append(digest)

    @property
    def orphans(self) -> list[str]:
        """Every hash found orphaned so far, in discovery order."""
        return list(self._orphans)

    def __repr__(self) -> str:
        return f"OrphanHashCollector(store={self._store!r})"
