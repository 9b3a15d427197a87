"""
Category handlers backed by the document store.

Each handler moves one category between the store and a JSON array file in
a payload directory. Export streams documents out one at a time; restore
streams them back with ijson and writes them in fixed-size batches, so
neither direction holds a whole collection in memory.
"""

from __future__ import annotations

import json
import logging
import shutil
from pathlib import Path
from typing import Any

import ijson

from auditvault.backup.categories import ALL_CATEGORIES, LANGUAGES, Category
from auditvault.backup.models import RestoreMode
from auditvault.storage.document_store import DocumentStore, StorageError

logger = logging.getLogger(__name__)

DEFAULT_BATCH_SIZE = 100


class CollectionImportError(StorageError):
    """Raised when a category file cannot be parsed."""

    pass


class CollectionHandler:
    """
    Exporter/importer for one category stored in a DocumentStore.

    Attributes:
        store: Document store holding the collection.
        category: Category this handler serves.
        assets_dir: Directory of binary assets on disk (report templates),
            copied alongside the JSON file when the category has one.
        batch_size: Documents per write transaction during restore.
    """

    def __init__(
        self,
        store: DocumentStore,
        category: Category,
        assets_dir: Path | str | None = None,
        batch_size: int = DEFAULT_BATCH_SIZE,
    ) -> None:
        self.store = store
        self.category = category
        self.assets_dir = Path(assets_dir) if assets_dir else None
        self.batch_size = max(1, batch_size)

    def __repr__(self) -> str:
        return f"CollectionHandler({self.category.name!r})"

    def export(self, dest_dir: Path) -> int:
        """
        Write the category file (and assets, if any) into dest_dir.

        Returns:
            Number of documents written.
        """
        dest_dir = Path(dest_dir)
        path = dest_dir / self.category.filename
        count = 0

        with open(path, "w", encoding="utf-8") as f:
            f.write("[")
            for document in self.store.iter_documents(self.category.collection):
                if count:
                    f.write(",")
                f.write("\n")
                f.write(json.dumps(document, indent=2, ensure_ascii=False, default=str))
                count += 1
            f.write("\n]" if count else "]")

        if self.category.assets_dir and self.assets_dir and self.assets_dir.is_dir():
            shutil.copytree(
                self.assets_dir,
                dest_dir / self.category.assets_dir,
                dirs_exist_ok=True,
            )

        logger.debug(f"Exported {count} {self.category.name} documents")
        return count

    def restore(self, source_dir: Path, mode: RestoreMode) -> int:
        """
        Load the category file from source_dir.

        A missing file is not an error. In revert mode, and always for
        singleton categories, the collection is emptied before loading.

        Returns:
            Number of documents loaded.

        Raises:
            CollectionImportError: If the file is not a JSON array of objects.
            MissingKeyError: If a document lacks a natural key field.
        """
        source_dir = Path(source_dir)
        path = source_dir / self.category.filename
        if not path.exists():
            logger.info(f"No {self.category.filename} in backup, skipping {self.category.name}")
            return 0

        collection = self.category.collection
        if self.category.is_singleton:
            count = self.store.replace_all(collection, list(self._read_documents(path)))
        else:
            if RestoreMode(mode) is RestoreMode.REVERT:
                self.store.delete_collection(collection)
            count = self._load_batches(path)

        self._restore_assets(source_dir)
        logger.debug(f"Restored {count} {self.category.name} documents")
        return count

    def _load_batches(self, path: Path) -> int:
        count = 0
        batch: list[dict[str, Any]] = []
        for document in self._read_documents(path):
            batch.append(document)
            if len(batch) >= self.batch_size:
                count += self.store.upsert_many(
                    self.category.collection, batch, self.category.key_fields
                )
                batch = []
        if batch:
            count += self.store.upsert_many(
                self.category.collection, batch, self.category.key_fields
            )
        return count

    def _read_documents(self, path: Path):
        with open(path, "rb") as f:
            first = f.read(1)
            while first and first.isspace():
                first = f.read(1)
            if first != b"[":
                raise CollectionImportError(f"{self.category.filename} is not a JSON array")
            f.seek(0)

            try:
                for document in ijson.items(f, "item", use_float=True):
                    if not isinstance(document, dict):
                        raise CollectionImportError(
                            f"{self.category.filename} contains a non-object entry"
                        )
                    yield document
            except (ijson.JSONError, UnicodeDecodeError) as e:
                raise CollectionImportError(f"Malformed {self.category.filename}: {e}") from e

    def _restore_assets(self, source_dir: Path) -> None:
        if not (self.category.assets_dir and self.assets_dir):
            return
        assets_source = source_dir / self.category.assets_dir
        if assets_source.is_dir():
            shutil.copytree(assets_source, self.assets_dir, dirs_exist_ok=True)


def build_default_handlers(
    store: DocumentStore,
    templates_dir: Path | str | None = None,
    batch_size: int = DEFAULT_BATCH_SIZE,
) -> dict[str, CollectionHandler]:
    """
    Build one handler per category, Languages included.

    Args:
        store: Document store shared by all handlers.
        templates_dir: Directory of report template files.
        batch_size: Documents per write transaction during restore.

    Returns:
        Mapping of category name to handler.
    """
    handlers = {}
    for category in (*ALL_CATEGORIES, LANGUAGES):
        handlers[category.name] = CollectionHandler(
            store,
            category,
            assets_dir=templates_dir if category.assets_dir else None,
            batch_size=batch_size,
        )
    return handlers
