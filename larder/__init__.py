"""Larder: versioned cookbook storage.

Persists cookbooks and their versions in SQLite with strict version
ordering, transactional upserts and cascading deletes, and hands the
content hashes released by deletes to cleanup collectors.
"""

__version__ = "0.1.0"
__description__ = "Versioned cookbook storage with transactional upserts and hash cleanup"

from larder.core.connection import SQLiteConnectionProvider
from larder.core.cookbook_store import CookbookStore
from larder.models.cookbook import Cookbook, CookbookVersion, DocumentBundle

__all__ = [
    "Cookbook",
    "CookbookStore",
    "CookbookVersion",
    "DocumentBundle",
    "SQLiteConnectionProvider",
    "__version__",
]
