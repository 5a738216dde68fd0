"""Larder data models (Pydantic v2)."""

from larder.models.cookbook import (
    CHEF_TYPE,
    DOCUMENT_COLUMNS,
    JSON_CLASS,
    MANIFEST_SEGMENTS,
    Cookbook,
    CookbookVersion,
    DocumentBundle,
)

__all__ = [
    "CHEF_TYPE",
    "JSON_CLASS",
    "DOCUMENT_COLUMNS",
    "MANIFEST_SEGMENTS",
    "Cookbook",
    "CookbookVersion",
    "DocumentBundle",
]
