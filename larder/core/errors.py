"""Error taxonomy shared by the codecs, the connection provider and the store."""

from __future__ import annotations


class LarderError(Exception):
    """Base class for every error raised by larder."""


class NotFoundError(LarderError, LookupError):
    """No row matched. Absence is an expected outcome, not a fault."""


class CookbookNotFound(NotFoundError):
    """Raised when no cookbook row exists for a name."""

    def __init__(self, name: str) -> None:
        super().__init__(f"Cookbook not found: {name!r}")
        self.name = name


class CookbookVersionNotFound(NotFoundError):
    """Raised when a cookbook has no row for the requested version."""

    def __init__(self, cookbook_name: str, version: str) -> None:
        super().__init__(f"Cookbook {cookbook_name!r} has no version {version!r}")
        self.cookbook_name = cookbook_name
        self.version = version


class InvalidVersion(LarderError, ValueError):
    """Raised for a version string that is not 1-3 dotted non-negative integers."""


class EncodeFailure(LarderError):
    """A structured value could not be serialized to a blob."""


class DecodeFailure(LarderError):
    """A blob could not be deserialized back into a structured value."""


class CorruptRecord(DecodeFailure):
    """A stored row holds a blob that no longer decodes."""


class StoreError(LarderError):
    """A backend operation failed.

    ``rollback_error`` carries the message of a rollback that failed while
    handling the original error. It is part of ``str(error)`` so operators
    can see that the backend may be inconsistent.
    """

    def __init__(self, message: str, *, rollback_error: str | None = None) -> None:
        super().__init__(message)
        self.message = message
        self.rollback_error = rollback_error

    def add_rollback_failure(self, detail: str) -> None:
        self.rollback_error = detail

    def __str__(self) -> str:
        if self.rollback_error:
            return (
                f"{self.message}; rolling back the transaction also failed: "
                f"{self.rollback_error}"
            )
        return self.message


class BackendFailure(StoreError):
    """Any backend or transport error other than a uniqueness violation."""


class ConcurrentConflict(StoreError):
    """A uniqueness constraint rejected a write. Safe for the caller to retry."""


class FrozenVersionError(StoreError):
    """The freeze policy refused to overwrite a frozen cookbook version."""
