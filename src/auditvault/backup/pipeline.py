"""
Backup and restore pipelines.

Each pipeline drives one operation through its phases, recording every
transition in the state store so the operation can be polled while it runs.
Both work in a private scratch directory under ``<backup_dir>/.tmp`` that is
removed whether the operation succeeds or fails.

Backup phases:
    backup_started -> dumping_database -> building_data
    -> [encrypting_data] -> building_archive -> idle

Restore phases:
    restore_started -> extracting_info -> [decrypting_data]
    -> extracting_data -> restoring_data -> idle

A failure in either pipeline moves the state to backup_error / restore_error
with the failure message as detail, then re-raises.
"""

from __future__ import annotations

import logging
import os
import secrets
import shutil
from collections.abc import Mapping
from concurrent.futures import Future, ThreadPoolExecutor, as_completed
from pathlib import Path

from auditvault.backup.archive import (
    ENCRYPTED_PAYLOAD_ENTRY,
    PAYLOAD_ENTRY,
    build_outer_archive,
    build_tar_gz,
    extract,
    payload_entry_name,
    read_manifest,
)
from auditvault.backup.catalog import ARCHIVE_SUFFIX, BackupCatalog
from auditvault.backup.categories import (
    LANGUAGES,
    Category,
    CategoryHandler,
    canonical_names,
    get_category,
)
from auditvault.backup.crypto import decrypt_file, encrypt_file
from auditvault.backup.errors import (
    BackupError,
    CorruptArchiveError,
    PartialRestoreError,
    PasswordRequiredError,
    UnknownCategoryError,
)
from auditvault.backup.models import (
    BackupManifest,
    BackupResult,
    RestoreMode,
    RestoreResult,
)
from auditvault.backup.state import Phase, StateStore

logger = logging.getLogger(__name__)


def _log_failure(operation: str, error: Exception) -> None:
    if isinstance(error, BackupError):
        logger.error(f"{operation} failed: {error}")
    else:
        logger.exception(f"{operation} failed with unexpected error")


class BackupPipeline:
    """
    Builds one archive from the registered category exporters.

    Attributes:
        catalog: Catalog of the backup directory (slugs, scratch root).
        state: Operation state store.
        handlers: Category name to handler.
        max_workers: Exporters run concurrently on this many threads.
    """

    def __init__(
        self,
        catalog: BackupCatalog,
        state: StateStore,
        handlers: Mapping[str, CategoryHandler],
        max_workers: int = 4,
    ) -> None:
        self.catalog = catalog
        self.state = state
        self.handlers = handlers
        self.max_workers = max_workers

    def run(
        self,
        name: str,
        categories: list[Category],
        password: str | None = None,
    ) -> BackupResult:
        """
        Create a backup archive.

        Args:
            name: Human-readable backup name.
            categories: Validated categories to include. Languages is added.
            password: Encrypts the payload when non-empty.

        Returns:
            BackupResult describing the new archive.

        Raises:
            BackupError: If any exporter fails or the archive cannot be built.
        """
        protected = bool(password)
        slug = self.catalog.new_slug()
        filename = f"{slug}{ARCHIVE_SUFFIX}"
        scratch = self.catalog.scratch_path("backup", slug)
        payload_dir = scratch / "payload"

        logger.info(f"Starting backup {slug} ({name})")
        self.state.set_state(Phase.BACKUP_STARTED)
        try:
            payload_dir.mkdir(parents=True)

            self.state.set_state(Phase.DUMPING_DATABASE)
            self._run_exporters([*categories, LANGUAGES], payload_dir)

            self.state.set_state(Phase.BUILDING_DATA)
            payload = scratch / PAYLOAD_ENTRY
            build_tar_gz(payload_dir, payload)
            shutil.rmtree(payload_dir)

            if protected:
                self.state.set_state(Phase.ENCRYPTING_DATA)
                encrypted = scratch / ENCRYPTED_PAYLOAD_ENTRY
                encrypt_file(payload, encrypted, password)
                payload.unlink()
                payload = encrypted

            self.state.set_state(Phase.BUILDING_ARCHIVE)
            manifest = BackupManifest.create(
                name=name,
                slug=slug,
                protected=protected,
                categories=[c.name for c in categories],
            )
            staged = scratch / filename
            size = build_outer_archive(
                manifest.to_json_bytes(),
                payload,
                payload_entry_name(protected),
                staged,
            )
            final_path = self.catalog.backup_dir / filename
            os.replace(staged, final_path)
        except Exception as e:
            _log_failure(f"Backup {slug}", e)
            self.state.set_state(Phase.BACKUP_ERROR, str(e))
            raise
        finally:
            shutil.rmtree(scratch, ignore_errors=True)

        self.state.set_state(Phase.IDLE)
        logger.info(f"Backup {slug} created ({size:,} bytes)")
        return BackupResult(
            slug=slug,
            filename=filename,
            path=final_path,
            manifest=manifest,
            size_bytes=size,
        )

    def _run_exporters(self, categories: list[Category], payload_dir: Path) -> dict[str, int]:
        counts: dict[str, int] = {}
        failures: dict[str, str] = {}

        with ThreadPoolExecutor(
            max_workers=self.max_workers, thread_name_prefix="auditvault-export"
        ) as executor:
            futures: dict[Future[int], Category] = {
                executor.submit(self.handlers[c.name].export, payload_dir): c
                for c in categories
            }
            for future in as_completed(futures):
                category = futures[future]
                try:
                    counts[category.name] = future.result()
                except Exception as e:
                    logger.error(f"Exporter for {category.name} failed: {e}")
                    failures[category.name] = str(e)

        if failures:
            order = [c.name for c in categories]
            details = ", ".join(f"{n}: {failures[n]}" for n in order if n in failures)
            raise BackupError(f"Backup errors: {details}")

        logger.debug(f"Exported {sum(counts.values())} documents in {len(counts)} categories")
        return counts


class RestorePipeline:
    """
    Loads one archive back through the registered category importers.

    Languages is restored first and must succeed; the remaining categories
    are then restored concurrently. Categories that loaded are kept even if
    others fail.
    """

    def __init__(
        self,
        catalog: BackupCatalog,
        state: StateStore,
        handlers: Mapping[str, CategoryHandler],
        max_workers: int = 4,
    ) -> None:
        self.catalog = catalog
        self.state = state
        self.handlers = handlers
        self.max_workers = max_workers

    def run(
        self,
        slug: str,
        mode: RestoreMode,
        password: str | None = None,
        categories: list[Category] | None = None,
    ) -> RestoreResult:
        """
        Restore a backup archive.

        Args:
            slug: Archive to restore.
            mode: Validated restore mode.
            password: Required for protected archives.
            categories: Validated categories to restore, or None for every
                category in the archive.

        Returns:
            RestoreResult with per-category record counts.

        Raises:
            BackupNotFoundError: If the slug is unknown.
            UnknownCategoryError: If the archive holds a category with no
                registered handler. Raised before anything is extracted.
            PasswordRequiredError: If the archive is protected and no
                password was given. Raised before anything is extracted.
            CorruptArchiveError: If the archive or payload is damaged, or the
                password is wrong.
            PartialRestoreError: If one or more importers failed.
        """
        scratch = self.catalog.scratch_path("restore", f"{slug}-{secrets.token_hex(4)}")

        logger.info(f"Starting {mode.value} restore of backup {slug}")
        self.state.set_state(Phase.RESTORE_STARTED)
        try:
            archive_path = self.catalog.backup_dir / self.catalog.resolve_slug(slug)

            self.state.set_state(Phase.EXTRACTING_INFO)
            manifest = read_manifest(archive_path)
            if manifest.protected and not password:
                raise PasswordRequiredError("Password is required to restore this backup")
            selected = self._select_categories(manifest.data, categories)

            entry = payload_entry_name(manifest.protected)
            extract(archive_path, scratch, prefixes=[entry])
            payload = scratch / entry
            if not payload.is_file():
                raise CorruptArchiveError(f"No {entry} file found in archive")

            if manifest.protected:
                self.state.set_state(Phase.DECRYPTING_DATA)
                plaintext = scratch / PAYLOAD_ENTRY
                decrypt_file(payload, plaintext, password)
                payload.unlink()
                payload = plaintext

            self.state.set_state(Phase.EXTRACTING_DATA)
            data_dir = scratch / "data"
            extract(payload, data_dir)
            payload.unlink()

            self.state.set_state(Phase.RESTORING_DATA)
            restored = self._run_importers(selected, data_dir, mode)
        except Exception as e:
            _log_failure(f"Restore of {slug}", e)
            self.state.set_state(Phase.RESTORE_ERROR, str(e))
            raise
        finally:
            shutil.rmtree(scratch, ignore_errors=True)

        self.state.set_state(Phase.IDLE)
        logger.info(f"Restored backup {slug}: {sum(restored.values())} documents")
        return RestoreResult(
            slug=slug,
            mode=mode,
            categories=[c.name for c in selected],
            restored=restored,
        )

    def _select_categories(
        self,
        manifest_data: tuple[str, ...],
        requested: list[Category] | None,
    ) -> list[Category]:
        """
        Categories both present in the archive and requested, in archive order.

        Raises:
            UnknownCategoryError: If a selected category has no handler.
        """
        in_archive = canonical_names(manifest_data)
        wanted = in_archive if requested is None else {c.name for c in requested}

        selected: list[Category] = []
        for name in manifest_data:
            try:
                category = get_category(name)
            except UnknownCategoryError:
                logger.warning(f"Ignoring unknown category {name!r} in backup manifest")
                continue
            if category.name not in wanted or category is LANGUAGES or category in selected:
                continue
            if category.name not in self.handlers:
                raise UnknownCategoryError(f"No handler registered for {category.name}")
            selected.append(category)
        return selected

    def _run_importers(
        self,
        categories: list[Category],
        data_dir: Path,
        mode: RestoreMode,
    ) -> dict[str, int]:
        restored: dict[str, int] = {}
        failures: dict[str, str] = {}

        # Other categories reference languages, so they wait for it
        try:
            restored[LANGUAGES.name] = self.handlers[LANGUAGES.name].restore(data_dir, mode)
        except Exception as e:
            logger.error(f"Importer for {LANGUAGES.name} failed: {e}")
            raise PartialRestoreError({LANGUAGES.name: str(e)}) from e

        with ThreadPoolExecutor(
            max_workers=self.max_workers, thread_name_prefix="auditvault-import"
        ) as executor:
            futures: dict[Future[int], Category] = {
                executor.submit(self.handlers[c.name].restore, data_dir, mode): c
                for c in categories
            }
            for future in as_completed(futures):
                category = futures[future]
                try:
                    restored[category.name] = future.result()
                except Exception as e:
                    logger.error(f"Importer for {category.name} failed: {e}")
                    failures[category.name] = str(e)

        if failures:
            order = [c.name for c in categories]
            raise PartialRestoreError(
                {n: failures[n] for n in order if n in failures},
                restored,
            )
        return restored
