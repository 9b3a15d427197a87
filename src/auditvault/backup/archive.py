"""
Tar/gzip framing for backup archives.

An archive is a gzip-compressed tar with exactly two entries, in order:

    backup.json         the manifest
    data.tar.gz[.enc]   the payload, itself a gzip-compressed tar

Writing the manifest first lets read_manifest() stop after the first entry
without decompressing the payload. All functions use tarfile's stream modes
("w|gz" / "r|gz"), so nothing is buffered beyond one chunk.
"""

from __future__ import annotations

import io
import json
import logging
import tarfile
import time
import zlib
from collections.abc import Iterable
from pathlib import Path

from auditvault.backup.errors import CorruptArchiveError
from auditvault.backup.models import BackupManifest

logger = logging.getLogger(__name__)

MANIFEST_ENTRY = "backup.json"
PAYLOAD_ENTRY = "data.tar.gz"
ENCRYPTED_PAYLOAD_ENTRY = "data.tar.gz.enc"

# Errors raised by tarfile/gzip/zlib on damaged input
_ARCHIVE_READ_ERRORS = (tarfile.TarError, EOFError, zlib.error)


def payload_entry_name(protected: bool) -> str:
    """Name of the payload entry for a protected or unprotected archive."""
    return ENCRYPTED_PAYLOAD_ENTRY if protected else PAYLOAD_ENTRY


def build_tar_gz(source_dir: Path, dest: Path) -> int:
    """
    Write a gzip-compressed tar of a directory tree.

    Entry names are relative to source_dir; nested directories are walked
    recursively.

    Args:
        source_dir: Directory to archive.
        dest: Output file.

    Returns:
        Size of the written archive in bytes.
    """
    source_dir = Path(source_dir)
    with open(dest, "wb") as f, tarfile.open(fileobj=f, mode="w|gz") as tar:
        for child in sorted(source_dir.iterdir()):
            tar.add(child, arcname=child.name, recursive=True)

    size = Path(dest).stat().st_size
    logger.debug(f"Built {Path(dest).name} from {source_dir} ({size:,} bytes)")
    return size


def build_outer_archive(
    manifest_bytes: bytes,
    payload_path: Path,
    entry_name: str,
    dest: Path,
) -> int:
    """
    Write the outer archive: the manifest entry followed by the payload.

    Args:
        manifest_bytes: Serialized backup.json.
        payload_path: Payload file (plain or encrypted).
        entry_name: Archive name for the payload entry.
        dest: Output file.

    Returns:
        Size of the written archive in bytes.
    """
    with open(dest, "wb") as f, tarfile.open(fileobj=f, mode="w|gz") as tar:
        manifest_info = tarfile.TarInfo(name=MANIFEST_ENTRY)
        manifest_info.size = len(manifest_bytes)
        manifest_info.mtime = int(time.time())
        manifest_info.mode = 0o644
        tar.addfile(manifest_info, io.BytesIO(manifest_bytes))

        payload_info = tar.gettarinfo(str(payload_path), arcname=entry_name)
        with open(payload_path, "rb") as payload:
            tar.addfile(payload_info, payload)

    return Path(dest).stat().st_size


def extract(
    archive_path: Path,
    dest_dir: Path,
    prefixes: Iterable[str] | None = None,
) -> list[str]:
    """
    Extract a gzip-compressed tar, optionally only some entries.

    Args:
        archive_path: Archive to read.
        dest_dir: Directory to extract into (created if missing).
        prefixes: If given, only entries whose name starts with one of these
            are extracted.

    Returns:
        Names of the extracted entries.

    Raises:
        CorruptArchiveError: If the archive is not a valid tar.gz stream or
            an entry would escape dest_dir.
    """
    dest_dir = Path(dest_dir)
    dest_dir.mkdir(parents=True, exist_ok=True)
    wanted = tuple(prefixes) if prefixes is not None else None
    extracted: list[str] = []

    try:
        with tarfile.open(archive_path, "r|gz") as tar:
            for member in tar:
                if wanted is not None and not member.name.startswith(wanted):
                    continue
                tar.extract(member, path=dest_dir, filter="data")
                extracted.append(member.name)
    except _ARCHIVE_READ_ERRORS as e:
        raise CorruptArchiveError("Wrong backup file") from e

    logger.debug(f"Extracted {len(extracted)} entries from {Path(archive_path).name}")
    return extracted


def read_manifest(path: Path) -> BackupManifest:
    """
    Read and validate backup.json without extracting the payload.

    Traversal stops at the manifest entry, which is always first in archives
    written by build_outer_archive().

    Args:
        path: Outer archive.

    Returns:
        The validated manifest.

    Raises:
        CorruptArchiveError: If the archive or its manifest is malformed.
    """
    try:
        with tarfile.open(path, "r|gz") as tar:
            for member in tar:
                if member.name != MANIFEST_ENTRY:
                    continue
                manifest_file = tar.extractfile(member)
                if manifest_file is None:
                    raise CorruptArchiveError("Wrong backup.json structure")
                try:
                    data = json.load(manifest_file)
                except ValueError as e:
                    raise CorruptArchiveError("Wrong JSON data in backup.json") from e
                return BackupManifest.from_dict(data)
    except _ARCHIVE_READ_ERRORS as e:
        raise CorruptArchiveError("Wrong backup file") from e

    raise CorruptArchiveError("No backup.json file found in archive")


def list_entries(path: Path) -> list[str]:
    """Return the entry names of an archive in stored order."""
    try:
        with tarfile.open(path, "r|gz") as tar:
            return [member.name for member in tar]
    except _ARCHIVE_READ_ERRORS as e:
        raise CorruptArchiveError("Wrong backup file") from e
