"""Cookbook and cookbook-version models.

The relational rows are the source of truth. ``Cookbook.versions`` is only a
cache filled by :meth:`larder.core.cookbook_store.CookbookStore.list_versions`.
"""

from __future__ import annotations

from collections.abc import Iterator
from contextlib import contextmanager
from typing import Any, ClassVar

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

from larder.core.blob_codec import BlobCodec
from larder.core.errors import CorruptRecord, DecodeFailure, EncodeFailure, InvalidVersion
from larder.core.version_codec import VersionTriple, normalize_version, parse_version

CHEF_TYPE = "cookbook_version"
JSON_CLASS = "Chef::CookbookVersion"

# Segments that carry file manifests (lists of {"name", "path", "checksum", ...}).
MANIFEST_SEGMENTS: tuple[str, ...] = (
    "definitions",
    "libraries",
    "attributes",
    "recipes",
    "providers",
    "resources",
    "templates",
    "root_files",
    "files",
)

# Every blob column, in storage order.
DOCUMENT_COLUMNS: tuple[str, ...] = ("metadata",) + MANIFEST_SEGMENTS


class DocumentBundle(BaseModel):
    """The ten structured sub-documents of a cookbook version.

    Stored as ten blob columns but handled as one value, so encoding either
    succeeds for all of them or fails before anything is written.
    """

    model_config = ConfigDict(frozen=True)

    metadata: Any = Field(default_factory=dict)
    definitions: Any = Field(default_factory=list)
    libraries: Any = Field(default_factory=list)
    attributes: Any = Field(default_factory=list)
    recipes: Any = Field(default_factory=list)
    providers: Any = Field(default_factory=list)
    resources: Any = Field(default_factory=list)
    templates: Any = Field(default_factory=list)
    root_files: Any = Field(default_factory=list)
    files: Any = Field(default_factory=list)

    @field_validator(*MANIFEST_SEGMENTS, mode="before")
    @classmethod
    def _none_segment_is_empty(cls, value: Any) -> Any:
        return [] if value is None else value

    @field_validator("metadata", mode="before")
    @classmethod
    def _none_metadata_is_empty(cls, value: Any) -> Any:
        return {} if value is None else value

    def encode(self, codec: BlobCodec) -> dict[str, bytes]:
        """Encode every segment, returning ``{column: blob}``.

        Raises :class:`EncodeFailure` naming the first segment that fails.
        """
        blobs: dict[str, bytes] = {}
        for column in DOCUMENT_COLUMNS:
            try:
                blobs[column] = codec.encode(getattr(self, column))
            except EncodeFailure as exc:
                raise EncodeFailure(f"{column}: {exc}") from exc
        return blobs

    @classmethod
    def decode(cls, blobs: dict[str, bytes], codec: BlobCodec) -> DocumentBundle:
        """Rebuild a bundle from ``{column: blob}``.

        Raises :class:`CorruptRecord` naming the first segment that fails.
        """
        values: dict[str, Any] = {}
        for column in DOCUMENT_COLUMNS:
            try:
                values[column] = codec.decode(blobs[column])
            except DecodeFailure as exc:
                raise CorruptRecord(f"{column}: {exc}") from exc
        return cls(**values)

    def manifests(self) -> dict[str, Any]:
        """Return the file-manifest segments keyed by segment name."""
        return {segment: getattr(self, segment) for segment in MANIFEST_SEGMENTS}


@contextmanager
def _version_errors() -> Iterator[None]:
    """Surface a rejected ``version`` field as :class:`InvalidVersion`."""
    try:
        yield
    except ValidationError as exc:
        for error in exc.errors():
            cause = error.get("ctx", {}).get("error")
            if error["loc"] == ("version",) and isinstance(cause, InvalidVersion):
                raise cause from exc
        raise


class CookbookVersion(BaseModel):
    """One revision of a cookbook.

    ``version`` is normalized on construction and assignment, so it is
    always three dot-separated integers. A malformed one raises
    :class:`InvalidVersion` rather than a pydantic ``ValidationError``.
    ``frozen`` is a policy flag; storage itself does not enforce it.
    """

    model_config = ConfigDict(validate_assignment=True)

    chef_type: ClassVar[str] = CHEF_TYPE
    json_class: ClassVar[str] = JSON_CLASS

    id: int | None = None
    cookbook_id: int | None = None
    cookbook_name: str
    version: str
    frozen: bool = False
    documents: DocumentBundle = Field(default_factory=DocumentBundle)

    @field_validator("version", mode="before")
    @classmethod
    def _canonical_version(cls, value: Any) -> str:
        return normalize_version(value)

    def __init__(self, **data: Any) -> None:
        with _version_errors():
            super().__init__(**data)

    def __setattr__(self, name: str, value: Any) -> None:
        with _version_errors():
            super().__setattr__(name, value)

    @property
    def name(self) -> str:
        """Composite identifier ``"<cookbook-name>-<version>"``."""
        return f"{self.cookbook_name}-{self.version}"

    @property
    def triple(self) -> VersionTriple:
        return parse_version(self.version)

    def to_document(self) -> dict[str, Any]:
        """Flat JSON-ready view, segments at the top level."""
        doc: dict[str, Any] = {
            "name": self.name,
            "cookbook_name": self.cookbook_name,
            "version": self.version,
            "frozen?": self.frozen,
            "chef_type": self.chef_type,
            "json_class": self.json_class,
        }
        doc.update(self.documents.model_dump())
        return doc

    @classmethod
    def from_document(cls, doc: dict[str, Any]) -> CookbookVersion:
        """Build a version from a flat document as produced by :meth:`to_document`."""
        segments = {column: doc.get(column) for column in DOCUMENT_COLUMNS}
        return cls(
            cookbook_name=doc["cookbook_name"],
            version=doc["version"],
            frozen=bool(doc.get("frozen", doc.get("frozen?", False))),
            documents=DocumentBundle(**segments),
        )


class Cookbook(BaseModel):
    """A named, versioned artifact. ``id`` is assigned by the store."""

    model_config = ConfigDict(validate_assignment=True)

    id: int | None = None
    name: str = Field(min_length=1)
    versions: dict[str, CookbookVersion] = Field(default_factory=dict)

    def new_version(
        self,
        version: str,
        *,
        frozen: bool = False,
        documents: DocumentBundle | None = None,
    ) -> CookbookVersion:
        """Create an unsaved version owned by this cookbook."""
        return CookbookVersion(
            cookbook_id=self.id,
            cookbook_name=self.name,
            version=version,
            frozen=frozen,
            documents=documents or DocumentBundle(),
        )
