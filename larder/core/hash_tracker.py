"""Collects the content hashes referenced by cookbook-version file manifests."""

from __future__ import annotations

from collections.abc import Iterable
from typing import Any

from larder.models.cookbook import CookbookVersion


def segment_hashes(segments: Iterable[Any]) -> set[str]:
    """Every ``checksum`` string found in manifest *segments*.

    A segment is a list of file entries; anything else carries no hashes.
    """
    hashes: set[str] = set()
    for segment in segments:
        if not isinstance(segment, list):
            continue
        for item in segment:
            if isinstance(item, dict):
                checksum = item.get("checksum")
                if isinstance(checksum, str) and checksum:
                    hashes.add(checksum)
    return hashes


def version_file_hashes(version: CookbookVersion) -> list[str]:
    """Sorted, de-duplicated hashes referenced by one version."""
    return collect_file_hashes([version])


def collect_file_hashes(versions: Iterable[CookbookVersion]) -> list[str]:
    """Sorted, de-duplicated hashes referenced by any of *versions*.

    No backend access. The sorted order keeps downstream cleanup
    deterministic.
    """
    hashes: set[str] = set()
    for version in versions:
        hashes |= segment_hashes(version.documents.manifests().values())
    return sorted(hashes)
