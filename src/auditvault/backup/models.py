"""
Data models for backup archives and operation results.

Schema Design Decisions:
    - The manifest keeps the exact six keys of backup.json so archives stay
      readable by every deployment of the application
    - Dates are ISO 8601 strings in UTC with a trailing "Z"
    - Category names are stored in request order without duplicates
"""

from __future__ import annotations

import json
from dataclasses import dataclass, field
from datetime import UTC, datetime
from enum import Enum
from pathlib import Path
from typing import Any

from auditvault.backup.errors import CorruptArchiveError

MANIFEST_REQUIRED_KEYS = ("name", "date", "slug", "type", "protected", "data")
BACKUP_TYPE_FULL = "full"


class RestoreMode(str, Enum):
    """How restored records are merged with existing data."""

    UPSERT = "upsert"
    REVERT = "revert"


def utc_timestamp() -> str:
    """Return the current UTC time as an ISO 8601 string ending in Z."""
    now = datetime.now(UTC).isoformat(timespec="milliseconds")
    return now.replace("+00:00", "Z")


@dataclass(frozen=True)
class BackupManifest:
    """
    Metadata stored as backup.json, the first entry of every archive.

    Attributes:
        name: Human-readable backup name.
        date: Creation time (ISO 8601).
        slug: Opaque unique identifier of the archive.
        type: Always "full".
        protected: True if the payload is encrypted with a password.
        data: Category names included in the payload.
    """

    name: str
    date: str
    slug: str
    type: str
    protected: bool
    data: tuple[str, ...]

    @classmethod
    def create(
        cls,
        name: str,
        slug: str,
        protected: bool,
        categories: list[str] | tuple[str, ...],
    ) -> BackupManifest:
        """Create a manifest for a new full backup stamped with the current time."""
        return cls(
            name=name,
            date=utc_timestamp(),
            slug=slug,
            type=BACKUP_TYPE_FULL,
            protected=protected,
            data=tuple(dict.fromkeys(categories)),
        )

    def to_dict(self) -> dict[str, Any]:
        """Convert manifest to dictionary."""
        return {
            "name": self.name,
            "date": self.date,
            "slug": self.slug,
            "type": self.type,
            "protected": self.protected,
            "data": list(self.data),
        }

    def to_json_bytes(self) -> bytes:
        """Serialize to the UTF-8 JSON stored in the archive."""
        return json.dumps(self.to_dict(), indent=2, ensure_ascii=False).encode("utf-8")

    @classmethod
    def from_dict(cls, data: Any) -> BackupManifest:
        """
        Create manifest from dictionary, validating the required keys.

        Raises:
            CorruptArchiveError: If a key is missing or has the wrong type.
        """
        if not isinstance(data, dict) or not all(k in data for k in MANIFEST_REQUIRED_KEYS):
            raise CorruptArchiveError("Wrong backup.json structure")

        categories = data["data"]
        if not isinstance(categories, list) or not isinstance(data["protected"], bool):
            raise CorruptArchiveError("Wrong backup.json structure")

        return cls(
            name=str(data["name"]),
            date=str(data["date"]),
            slug=str(data["slug"]),
            type=str(data["type"]),
            protected=data["protected"],
            data=tuple(str(c) for c in categories),
        )


@dataclass
class BackupInfo:
    """A manifest decorated with the archive's file name and size."""

    manifest: BackupManifest
    filename: str
    size: int

    @property
    def slug(self) -> str:
        return self.manifest.slug

    def to_dict(self) -> dict[str, Any]:
        data = self.manifest.to_dict()
        data["filename"] = self.filename
        data["size"] = self.size
        return data


@dataclass
class CatalogListing:
    """Readable archives plus one warning per archive that was skipped."""

    backups: list[BackupInfo] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return {
            "backups": [b.to_dict() for b in self.backups],
            "warnings": self.warnings,
        }


@dataclass
class BackupResult:
    """Result of a successful backup operation."""

    slug: str
    filename: str
    path: Path
    manifest: BackupManifest
    size_bytes: int = 0

    def to_dict(self) -> dict[str, Any]:
        return {
            "slug": self.slug,
            "filename": self.filename,
            "path": str(self.path),
            "size_bytes": self.size_bytes,
            "manifest": self.manifest.to_dict(),
        }


@dataclass
class RestoreResult:
    """Result of a successful restore operation."""

    slug: str
    mode: RestoreMode
    categories: list[str] = field(default_factory=list)
    restored: dict[str, int] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        return {
            "slug": self.slug,
            "mode": self.mode.value,
            "categories": self.categories,
            "restored": self.restored,
        }
