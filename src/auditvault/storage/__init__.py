"""
Document storage for application data.

Collections of JSON documents live in one SQLite database, keyed by each
category's natural key. Category handlers move collections in and out of
backup payloads.

Storage Structure:
    data/
        auditvault.db       # SQLite database

Usage:
    from auditvault.storage import DocumentStore, build_default_handlers

    store = DocumentStore(data_dir)
    handlers = build_default_handlers(store, templates_dir=templates_dir)
"""

from auditvault.storage.collections import (
    CollectionHandler,
    CollectionImportError,
    build_default_handlers,
)
from auditvault.storage.document_store import (
    DocumentStore,
    MissingKeyError,
    StorageError,
    make_key,
)

__all__ = [
    "DocumentStore",
    "CollectionHandler",
    "build_default_handlers",
    "make_key",
    # Exceptions
    "StorageError",
    "MissingKeyError",
    "CollectionImportError",
]
