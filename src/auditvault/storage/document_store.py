"""
Document storage for application collections.

Each record is a JSON document stored in SQLite under its collection name
and a natural key computed from the record's own fields. Writing the same
document twice therefore replaces it instead of duplicating it, which is
what makes restores idempotent.

Storage Structure:
    data/
        auditvault.db      # SQLite database

Thread Safety:
    Connection-per-operation with a busy timeout, so concurrent importers
    running on a thread pool serialize their write transactions.
"""

from __future__ import annotations

import json
import logging
import sqlite3
from collections.abc import Generator, Iterable, Iterator
from contextlib import contextmanager
from datetime import UTC, datetime
from pathlib import Path
from typing import Any

logger = logging.getLogger(__name__)


class StorageError(Exception):
    """Base exception for storage errors."""

    pass


class MissingKeyError(StorageError):
    """Raised when a document lacks one of its natural key fields."""

    pass


SCHEMA_VERSION = 1

CREATE_TABLES_SQL = """
CREATE TABLE IF NOT EXISTS schema_version (
    version INTEGER PRIMARY KEY,
    applied_at TEXT NOT NULL
);

CREATE TABLE IF NOT EXISTS documents (
    collection TEXT NOT NULL,
    doc_key TEXT NOT NULL,
    body TEXT NOT NULL,
    updated_at TEXT NOT NULL,
    PRIMARY KEY (collection, doc_key)
);

CREATE INDEX IF NOT EXISTS idx_documents_collection ON documents(collection);
"""


def make_key(document: dict[str, Any], key_fields: Iterable[str]) -> str:
    """
    Build the natural key of a document.

    Args:
        document: The record.
        key_fields: Fields that identify it across deployments.

    Returns:
        A JSON string of the key values, in field order.

    Raises:
        MissingKeyError: If a key field is absent.
    """
    values = []
    for field_name in key_fields:
        if field_name not in document:
            raise MissingKeyError(f"Document is missing key field '{field_name}'")
        values.append(document[field_name])
    return json.dumps(values, sort_keys=True, default=str)


class DocumentStore:
    """
    SQLite-backed store of JSON documents grouped by collection.

    Example:
        store = DocumentStore(data_dir=Path("./data"))
        store.upsert_many("users", [{"username": "alice"}], ("username",))
        for user in store.iter_documents("users"):
            print(user["username"])

    Attributes:
        data_dir: Base directory for data storage.
        db_path: Path to the SQLite database file.
    """

    def __init__(self, data_dir: Path | str) -> None:
        """
        Initialize the document store.

        Args:
            data_dir: Directory holding the database file.
        """
        self.data_dir = Path(data_dir)
        self.db_path = self.data_dir / "auditvault.db"
        self.data_dir.mkdir(parents=True, exist_ok=True)
        self._init_database()

    def _init_database(self) -> None:
        """Initialize the database schema."""
        with self._get_connection() as conn:
            conn.execute("PRAGMA journal_mode=WAL")
            conn.executescript(CREATE_TABLES_SQL)

            row = conn.execute(
                "SELECT version FROM schema_version ORDER BY version DESC LIMIT 1"
            ).fetchone()
            if row is None:
                conn.execute(
                    "INSERT INTO schema_version (version, applied_at) VALUES (?, ?)",
                    (SCHEMA_VERSION, datetime.now(UTC).isoformat()),
                )
                logger.info(f"Initialized database schema version {SCHEMA_VERSION}")

    @contextmanager
    def _get_connection(self) -> Generator[sqlite3.Connection, None, None]:
        """
        Get a database connection with proper settings.

        Yields:
            SQLite connection in autocommit mode; callers open transactions
            explicitly.
        """
        conn = sqlite3.connect(
            str(self.db_path),
            isolation_level=None,
            check_same_thread=False,
            timeout=30.0,
        )
        conn.row_factory = sqlite3.Row
        try:
            yield conn
        finally:
            conn.close()

    def upsert_many(
        self,
        collection: str,
        documents: list[dict[str, Any]],
        key_fields: Iterable[str],
    ) -> int:
        """
        Insert or replace documents by natural key in one transaction.

        Args:
            collection: Collection name.
            documents: Records to write.
            key_fields: Natural key fields.

        Returns:
            Number of documents written.

        Raises:
            MissingKeyError: If any document lacks a key field. Nothing from
                the batch is written in that case.
        """
        key_fields = tuple(key_fields)
        now = datetime.now(UTC).isoformat()
        rows = [
            (collection, make_key(doc, key_fields), json.dumps(doc, default=str), now)
            for doc in documents
        ]
        return self._write_rows(rows)

    def replace_all(self, collection: str, documents: list[dict[str, Any]]) -> int:
        """
        Replace a singleton collection's content with documents.

        Documents are keyed by position because singleton collections have
        no natural key.
        """
        now = datetime.now(UTC).isoformat()
        rows = [
            (collection, json.dumps([index]), json.dumps(doc, default=str), now)
            for index, doc in enumerate(documents)
        ]
        with self._get_connection() as conn:
            conn.execute("BEGIN IMMEDIATE")
            try:
                conn.execute("DELETE FROM documents WHERE collection = ?", (collection,))
                conn.executemany(
                    "INSERT INTO documents (collection, doc_key, body, updated_at) VALUES (?, ?, ?, ?)",
                    rows,
                )
                conn.execute("COMMIT")
            except Exception:
                conn.execute("ROLLBACK")
                raise
        return len(rows)

    def _write_rows(self, rows: list[tuple[str, str, str, str]]) -> int:
        if not rows:
            return 0
        with self._get_connection() as conn:
            conn.execute("BEGIN IMMEDIATE")
            try:
                conn.executemany(
                    """
                    INSERT INTO documents (collection, doc_key, body, updated_at)
                    VALUES (?, ?, ?, ?)
                    ON CONFLICT(collection, doc_key)
                    DO UPDATE SET body = excluded.body, updated_at = excluded.updated_at
                    """,
                    rows,
                )
                conn.execute("COMMIT")
            except Exception:
                conn.execute("ROLLBACK")
                raise
        return len(rows)

    def iter_documents(self, collection: str) -> Iterator[dict[str, Any]]:
        """
        Stream the documents of a collection in insertion order.

        Yields:
            Decoded documents, one at a time.
        """
        with self._get_connection() as conn:
            cursor = conn.execute(
                "SELECT body FROM documents WHERE collection = ? ORDER BY rowid",
                (collection,),
            )
            for row in cursor:
                yield json.loads(row["body"])

    def get_all(self, collection: str) -> list[dict[str, Any]]:
        """Load every document of a collection."""
        return list(self.iter_documents(collection))

    def get(self, collection: str, key: str) -> dict[str, Any] | None:
        """Get one document by its natural key (as built by make_key)."""
        with self._get_connection() as conn:
            row = conn.execute(
                "SELECT body FROM documents WHERE collection = ? AND doc_key = ?",
                (collection, key),
            ).fetchone()
        return json.loads(row["body"]) if row else None

    def count(self, collection: str) -> int:
        """Number of documents in a collection."""
        with self._get_connection() as conn:
            (count,) = conn.execute(
                "SELECT COUNT(*) FROM documents WHERE collection = ?",
                (collection,),
            ).fetchone()
        return int(count)

    def delete_collection(self, collection: str) -> int:
        """
        Delete every document of a collection.

        Returns:
            Number of documents deleted.
        """
        with self._get_connection() as conn:
            cursor = conn.execute("DELETE FROM documents WHERE collection = ?", (collection,))
            deleted = cursor.rowcount
        logger.debug(f"Deleted {deleted} documents from {collection}")
        return deleted

    def get_statistics(self) -> dict[str, int]:
        """Document counts per collection."""
        with self._get_connection() as conn:
            rows = conn.execute(
                "SELECT collection, COUNT(*) AS n FROM documents GROUP BY collection ORDER BY collection"
            ).fetchall()
        return {row["collection"]: int(row["n"]) for row in rows}
