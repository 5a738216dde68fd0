"""Version strings <-> (major, minor, patch) triples.

Versions are stored as three integer columns and always rendered as exactly
three dot-separated integers. Inputs with one or two components are accepted
and the missing components default to 0, so ``"1.2"`` is ``"1.2.0"``.
"""

from __future__ import annotations

import re
from collections.abc import Callable, Iterable
from typing import NamedTuple, TypeVar

from larder.core.errors import InvalidVersion

# Column range of the integer version columns.
MAX_COMPONENT = 2**31 - 1

_COMPONENT = re.compile(r"[0-9]+")

T = TypeVar("T")


class VersionTriple(NamedTuple):
    """An ordered (major, minor, patch) triple. Tuples compare lexicographically."""

    major: int
    minor: int
    patch: int

    def __str__(self) -> str:
        return render_version(self.major, self.minor, self.patch)


def parse_version(text: str) -> VersionTriple:
    """Parse ``"1"``, ``"1.2"`` or ``"1.2.3"`` into a :class:`VersionTriple`.

    Raises
    ------
    InvalidVersion
        If the string has more than three components, an empty or
        non-numeric component, or a component outside ``0..MAX_COMPONENT``.
    """
    if not isinstance(text, str):
        raise InvalidVersion(f"Version must be a string, got {type(text).__name__}")

    parts = text.split(".")
    if len(parts) > 3:
        raise InvalidVersion(f"Version {text!r} has more than three components")

    numbers: list[int] = []
    for part in parts:
        if not _COMPONENT.fullmatch(part):
            raise InvalidVersion(
                f"Version {text!r} has a non-numeric component {part!r}"
            )
        value = int(part)
        if value > MAX_COMPONENT:
            raise InvalidVersion(
                f"Version {text!r} component {part} exceeds {MAX_COMPONENT}"
            )
        numbers.append(value)

    while len(numbers) < 3:
        numbers.append(0)
    return VersionTriple(*numbers)


def render_version(major: int, minor: int, patch: int) -> str:
    """Render a triple as ``"major.minor.patch"``."""
    for value in (major, minor, patch):
        if value < 0 or value > MAX_COMPONENT:
            raise InvalidVersion(
                f"Version component {value} is outside 0..{MAX_COMPONENT}"
            )
    return f"{major}.{minor}.{patch}"


def normalize_version(text: str) -> str:
    """Return the canonical three-component form of *text*."""
    return str(parse_version(text))


def sort_versions(
    items: Iterable[T],
    key: Callable[[T], str] = str,
    *,
    newest_first: bool = True,
) -> list[T]:
    """Sort *items* by the version triple of ``key(item)``.

    Newest first by default, which is the order used for every listing.
    """
    return sorted(
        items, key=lambda item: parse_version(key(item)), reverse=newest_first
    )
