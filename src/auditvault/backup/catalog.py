"""
Enumeration and housekeeping of archives in the backup directory.

Archives are identified by the slug in their manifest, not by file name, so
an uploaded archive keeps working even if it was renamed on the way.
"""

from __future__ import annotations

import logging
import os
import secrets
import shutil
import string
import time
from pathlib import Path

from auditvault.backup.archive import read_manifest
from auditvault.backup.errors import (
    BackupError,
    BackupNotFoundError,
    BadParametersError,
    OperationConflictError,
)
from auditvault.backup.models import BackupInfo, CatalogListing
from auditvault.backup.state import is_process_alive

logger = logging.getLogger(__name__)

ARCHIVE_SUFFIX = ".tar"
SCRATCH_DIR = ".tmp"

_SLUG_ALPHABET = string.digits + string.ascii_lowercase


def _base36(value: int) -> str:
    digits = []
    while value:
        value, remainder = divmod(value, 36)
        digits.append(_SLUG_ALPHABET[remainder])
    return "".join(reversed(digits)) or "0"


def generate_slug() -> str:
    """Generate an opaque slug: base-36 milliseconds plus 5 random characters."""
    suffix = "".join(secrets.choice(_SLUG_ALPHABET) for _ in range(5))
    return _base36(int(time.time() * 1000)) + suffix


def _scratch_owner(name: str) -> int | None:
    """PID embedded in a scratch entry name, or None if there is none."""
    parts = name.split("-", 2)
    if len(parts) < 3 or not parts[1].isdigit():
        return None
    return int(parts[1])


class BackupCatalog:
    """
    Read-side view of the backup directory.

    Example:
        catalog = BackupCatalog(Path("/var/lib/auditvault/backups"))
        listing = catalog.list()
        for info in listing.backups:
            print(info.slug, info.manifest.name, info.size)
        for warning in listing.warnings:
            print("skipped:", warning)
    """

    def __init__(self, backup_dir: Path | str) -> None:
        self.backup_dir = Path(backup_dir)
        self.scratch_root = self.backup_dir / SCRATCH_DIR

    def archive_files(self) -> list[Path]:
        """Archive files in the backup directory, sorted by name."""
        if not self.backup_dir.exists():
            return []
        return sorted(
            p for p in self.backup_dir.glob(f"*{ARCHIVE_SUFFIX}") if p.is_file()
        )

    def read_info(self, path: Path) -> BackupInfo:
        """
        Read one archive's manifest and size.

        Raises:
            CorruptArchiveError: If the archive is malformed.
        """
        manifest = read_manifest(path)
        return BackupInfo(manifest=manifest, filename=path.name, size=path.stat().st_size)

    def list(self) -> CatalogListing:
        """
        List readable archives, newest first.

        Archives whose manifest cannot be read are skipped and reported in
        the listing's warnings.
        """
        listing = CatalogListing()
        for path in self.archive_files():
            try:
                listing.backups.append(self.read_info(path))
            except (BackupError, OSError) as e:
                logger.warning(f"Skipping unreadable backup {path.name}: {e}")
                listing.warnings.append(f"{path.name}: {e}")

        listing.backups.sort(key=lambda info: info.manifest.date, reverse=True)
        return listing

    def resolve_slug(self, slug: str) -> str:
        """
        Find the archive file name for a slug.

        Raises:
            BackupNotFoundError: If no readable archive has this slug.
        """
        return self.get_info(slug).filename

    def get_info(self, slug: str) -> BackupInfo:
        """
        Get manifest and size of the archive with this slug.

        Raises:
            BackupNotFoundError: If no readable archive has this slug.
        """
        for info in self.list().backups:
            if info.slug == slug:
                return info
        raise BackupNotFoundError("Backup not found")

    def get_path(self, slug: str) -> Path:
        """Absolute path of the archive with this slug (for downloads)."""
        return self.backup_dir / self.resolve_slug(slug)

    def exists(self, slug: str) -> bool:
        try:
            self.resolve_slug(slug)
        except BackupNotFoundError:
            return False
        return True

    def new_slug(self) -> str:
        """Generate a slug that does not collide with an existing archive file."""
        while True:
            slug = generate_slug()
            if not (self.backup_dir / f"{slug}{ARCHIVE_SUFFIX}").exists():
                return slug

    def delete(self, slug: str) -> None:
        """
        Delete the archive with this slug.

        Raises:
            BackupNotFoundError: If no archive has this slug.
        """
        path = self.backup_dir / self.resolve_slug(slug)
        try:
            path.unlink()
        except FileNotFoundError as e:
            raise BackupNotFoundError("Backup file not found") from e
        logger.info(f"Deleted backup {slug} ({path.name})")

    def import_archive(self, source: Path | str, filename: str | None = None) -> BackupInfo:
        """
        Copy an externally supplied archive into the backup directory.

        The copy is validated under a temporary name and only renamed into
        place once its manifest reads cleanly.

        Args:
            source: Archive file to import.
            filename: Name to store it under (defaults to the source name).

        Returns:
            Info for the imported archive.

        Raises:
            BadParametersError: If the file is not a .tar or not a valid backup.
            OperationConflictError: If the name or slug is already present.
        """
        source = Path(source)
        filename = Path(filename or source.name).name
        if not filename.endswith(ARCHIVE_SUFFIX):
            raise BadParametersError(f"File must be a {ARCHIVE_SUFFIX} archive")

        dest = self.backup_dir / filename
        if dest.exists():
            raise OperationConflictError(f"A backup file named {filename} already exists")

        self.scratch_root.mkdir(parents=True, exist_ok=True)
        staging = self.scratch_path("import", f"{secrets.token_hex(8)}{ARCHIVE_SUFFIX}.part")
        try:
            shutil.copyfile(source, staging)
            try:
                manifest = read_manifest(staging)
            except BackupError as e:
                raise BadParametersError("Invalid backup file") from e

            if self.exists(manifest.slug):
                raise OperationConflictError(f"Backup {manifest.slug} already exists")

            os.replace(staging, dest)
        finally:
            if staging.exists():
                staging.unlink()

        logger.info(f"Imported backup {manifest.slug} as {filename}")
        return BackupInfo(manifest=manifest, filename=filename, size=dest.stat().st_size)

    def scratch_path(self, kind: str, label: str) -> Path:
        """
        Path for a new scratch entry owned by this process.

        Entries are named "<kind>-<pid>-<label>" so recover() can tell
        which ones belong to a process that no longer exists.
        """
        return self.scratch_root / f"{kind}-{os.getpid()}-{label}"

    def remove_stale_scratch(self) -> list[str]:
        """
        Remove scratch entries whose owning process is gone.

        Entries without a recognizable owner are treated as stale. The
        scratch root itself is removed once empty.

        Returns:
            Names of the removed entries.
        """
        if not self.scratch_root.is_dir():
            return []

        removed = []
        for entry in sorted(self.scratch_root.iterdir()):
            owner = _scratch_owner(entry.name)
            if owner is not None and is_process_alive(owner):
                continue
            if entry.is_dir():
                shutil.rmtree(entry, ignore_errors=True)
            else:
                entry.unlink(missing_ok=True)
            removed.append(entry.name)

        try:
            self.scratch_root.rmdir()
        except OSError:
            logger.debug(f"Keeping {self.scratch_root}, it is not empty")
        return removed

    def disk_usage(self) -> dict[str, int]:
        """Space on the volume holding the backup directory, in bytes."""
        self.backup_dir.mkdir(parents=True, exist_ok=True)
        usage = shutil.disk_usage(self.backup_dir)
        return {"total": usage.total, "used": usage.used, "free": usage.free}
