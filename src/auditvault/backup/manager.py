"""
Backup service facade.

BackupManager is the one long-lived owner of the operation state machine.
It validates requests, rejects overlapping operations, runs the pipelines
(inline or on a background worker) and exposes the catalog queries that
collaborators such as an HTTP layer or the CLI need.
"""

from __future__ import annotations

import logging
import threading
from collections.abc import Iterable, Mapping
from concurrent.futures import Future, ThreadPoolExecutor
from pathlib import Path
from typing import TYPE_CHECKING, Any

from auditvault.backup.catalog import BackupCatalog
from auditvault.backup.categories import (
    LANGUAGES,
    Category,
    CategoryHandler,
    resolve_categories,
)
from auditvault.backup.errors import (
    BadParametersError,
    OperationConflictError,
    UnknownCategoryError,
)
from auditvault.backup.models import (
    BackupInfo,
    BackupResult,
    CatalogListing,
    RestoreMode,
    RestoreResult,
    utc_timestamp,
)
from auditvault.backup.pipeline import BackupPipeline, RestorePipeline
from auditvault.backup.state import (
    OperationKind,
    OperationState,
    OperationStatus,
    Phase,
    StateStore,
)

if TYPE_CHECKING:
    from auditvault.config.settings import Settings

logger = logging.getLogger(__name__)


class BackupManager:
    """
    Creates, restores and manages backup archives.

    At most one backup or restore runs at a time. A second start, from this
    manager or while the persisted state shows another process mid-operation,
    fails with OperationConflictError.

    Example:
        manager = BackupManager.from_settings(load_config())
        result = manager.create_backup("Nightly", categories=["Users", "Clients"])
        manager.restore_backup(result.slug, mode="revert")

    Attributes:
        backup_dir: Directory holding archives and the state file.
        catalog: Read-side view of backup_dir.
        state: Persisted operation state.
        handlers: Category name to exporter/importer.
    """

    def __init__(
        self,
        backup_dir: Path | str,
        handlers: Mapping[str, CategoryHandler],
        max_workers: int = 4,
        default_mode: RestoreMode | str = RestoreMode.UPSERT,
    ) -> None:
        """
        Initialize the manager.

        Args:
            backup_dir: Directory holding archives (created if missing).
            handlers: Category name to handler. Must include Languages.
            max_workers: Threads used to fan out exporters and importers.
            default_mode: Restore mode used when a request names none.

        Raises:
            UnknownCategoryError: If no Languages handler is registered.
        """
        if LANGUAGES.name not in handlers:
            raise UnknownCategoryError(f"No handler registered for {LANGUAGES.name}")

        self.backup_dir = Path(backup_dir)
        self.backup_dir.mkdir(parents=True, exist_ok=True)
        self.catalog = BackupCatalog(self.backup_dir)
        self.state = StateStore(self.backup_dir)
        self.handlers = dict(handlers)
        self.max_workers = max(1, max_workers)
        self.default_mode = RestoreMode(default_mode)

        self._backup_pipeline = BackupPipeline(
            self.catalog, self.state, self.handlers, self.max_workers
        )
        self._restore_pipeline = RestorePipeline(
            self.catalog, self.state, self.handlers, self.max_workers
        )
        self._lock = threading.Lock()
        self._running: str | None = None
        self._executor: ThreadPoolExecutor | None = None

    @classmethod
    def from_settings(cls, settings: Settings) -> BackupManager:
        """Build a manager over the document store described by settings."""
        from auditvault.storage import DocumentStore, build_default_handlers

        store = DocumentStore(settings.data_dir)
        handlers = build_default_handlers(
            store,
            templates_dir=settings.backup.templates_dir,
            batch_size=settings.backup.import_batch_size,
        )
        return cls(
            backup_dir=settings.backup.backup_dir,
            handlers=handlers,
            max_workers=settings.backup.max_workers,
            default_mode=settings.backup.default_mode,
        )

    # Operations

    def create_backup(
        self,
        name: str | None = None,
        password: str | None = None,
        categories: Iterable[str] | None = None,
    ) -> BackupResult:
        """
        Create a backup and wait for it to finish.

        Args:
            name: Backup name (defaults to "Backup <timestamp>").
            password: Encrypts the archive when non-empty.
            categories: Category names, or None for all of them.

        Returns:
            BackupResult for the new archive.

        Raises:
            UnknownCategoryError: If a category is unknown.
            OperationConflictError: If another operation is running.
            BackupError: If the backup fails.
        """
        name, selected = self._prepare_backup(name, categories)
        self._acquire("backup")
        try:
            return self._backup_pipeline.run(name, selected, password)
        finally:
            self._release()

    def restore_backup(
        self,
        slug: str,
        password: str | None = None,
        categories: Iterable[str] | None = None,
        mode: RestoreMode | str | None = None,
    ) -> RestoreResult:
        """
        Restore a backup and wait for it to finish.

        Args:
            slug: Archive to restore.
            password: Required for protected archives.
            categories: Category names to restore, or None for everything
                in the archive.
            mode: "upsert" or "revert" (defaults to the configured mode).

        Returns:
            RestoreResult with per-category record counts.

        Raises:
            BadParametersError: For an invalid mode or a missing password.
            UnknownCategoryError: If a category is unknown.
            BackupNotFoundError: If the slug is unknown.
            OperationConflictError: If another operation is running.
            CorruptArchiveError: If the archive is damaged or the password
                is wrong.
            PartialRestoreError: If some categories failed to load.
        """
        restore_mode, selected = self._prepare_restore(categories, mode)
        self._acquire("restore")
        try:
            return self._restore_pipeline.run(slug, restore_mode, password, selected)
        finally:
            self._release()

    def submit_backup(
        self,
        name: str | None = None,
        password: str | None = None,
        categories: Iterable[str] | None = None,
    ) -> Future[BackupResult]:
        """
        Start a backup in the background.

        Validation and the conflict check happen before returning, so bad
        requests fail here rather than in the future. Progress can be
        polled with get_operation_status().
        """
        name, selected = self._prepare_backup(name, categories)
        self._acquire("backup")
        try:
            return self._get_executor().submit(
                self._run_and_release, self._backup_pipeline.run, name, selected, password
            )
        except Exception:
            self._release()
            raise

    def submit_restore(
        self,
        slug: str,
        password: str | None = None,
        categories: Iterable[str] | None = None,
        mode: RestoreMode | str | None = None,
    ) -> Future[RestoreResult]:
        """Start a restore in the background; see submit_backup()."""
        restore_mode, selected = self._prepare_restore(categories, mode)
        self.catalog.resolve_slug(slug)
        self._acquire("restore")
        try:
            return self._get_executor().submit(
                self._run_and_release,
                self._restore_pipeline.run,
                slug,
                restore_mode,
                password,
                selected,
            )
        except Exception:
            self._release()
            raise

    # Queries

    def list_backups(self) -> CatalogListing:
        """List archives, newest first, with warnings for unreadable ones."""
        return self.catalog.list()

    def get_backup_info(self, slug: str) -> BackupInfo:
        return self.catalog.get_info(slug)

    def get_backup_path(self, slug: str) -> Path:
        return self.catalog.get_path(slug)

    def delete_backup(self, slug: str) -> None:
        self.catalog.delete(slug)

    def import_backup(self, source: Path | str, filename: str | None = None) -> BackupInfo:
        return self.catalog.import_archive(source, filename)

    def get_operation_status(self) -> OperationStatus:
        return self.state.get_operation_status()

    def get_disk_usage(self) -> dict[str, int]:
        return self.catalog.disk_usage()

    # Lifecycle

    def recover(self) -> OperationState:
        """
        Clean up after a process that died mid-operation.

        Call once at startup. An in-progress phase whose owning process is
        gone becomes the matching error phase, and scratch entries left by
        dead processes are removed. An operation whose owner is still
        alive, in this process or another, is left alone.

        Returns:
            The state after recovery.
        """
        if not self._lock.acquire(blocking=False):
            logger.debug("Skipping recovery, an operation is running")
            return self.state.get_state()
        try:
            state = self.state.get_state()
            if state.is_stale:
                if state.operation is OperationKind.BACKUP:
                    error_phase = Phase.BACKUP_ERROR
                else:
                    error_phase = Phase.RESTORE_ERROR
                detail = f"Interrupted: process stopped during {state.phase.value}"
                logger.warning(
                    f"Recovering from interrupted operation ({state.phase.value}, pid {state.pid})"
                )
                state = self.state.set_state(error_phase, detail)
            elif state.in_progress:
                logger.info(
                    f"Operation {state.phase.value} is still running in pid {state.pid}, leaving it"
                )

            removed = self.catalog.remove_stale_scratch()
            if removed:
                logger.info(f"Removed stale scratch entries: {', '.join(removed)}")
            return state
        finally:
            self._lock.release()

    def shutdown(self, wait: bool = True) -> None:
        """Stop the background worker, waiting for a running operation by default."""
        if self._executor is not None:
            self._executor.shutdown(wait=wait)
            self._executor = None

    # Internals

    def _prepare_backup(
        self, name: str | None, categories: Iterable[str] | None
    ) -> tuple[str, list[Category]]:
        selected = resolve_categories(categories)
        self._check_handlers(selected)
        return (name or f"Backup {utc_timestamp()}"), selected

    def _prepare_restore(
        self,
        categories: Iterable[str] | None,
        mode: RestoreMode | str | None,
    ) -> tuple[RestoreMode, list[Category] | None]:
        restore_mode = self._parse_mode(mode)
        selected = None if categories is None else resolve_categories(categories)
        if selected is not None:
            self._check_handlers(selected)
        return restore_mode, selected

    def _parse_mode(self, mode: RestoreMode | str | None) -> RestoreMode:
        if mode is None:
            return self.default_mode
        try:
            return RestoreMode(mode)
        except ValueError as e:
            raise BadParametersError(
                f"Invalid restore mode: {mode} (expected 'upsert' or 'revert')"
            ) from e

    def _check_handlers(self, categories: list[Category]) -> None:
        for category in categories:
            if category.name not in self.handlers:
                raise UnknownCategoryError(f"No handler registered for {category.name}")

    def _acquire(self, operation: str) -> None:
        if not self._lock.acquire(blocking=False):
            running = self._running or operation
            raise OperationConflictError(f"Another {running} operation is in progress")

        persisted = self.state.get_state()
        if persisted.is_stale:
            logger.warning(
                f"Previous {persisted.operation.value} operation ({persisted.phase.value}) "
                f"was abandoned by pid {persisted.pid}, starting {operation}"
            )
        elif persisted.in_progress:
            self._lock.release()
            raise OperationConflictError(
                f"Another {persisted.operation.value} operation is in progress"
            )
        self._running = operation

    def _release(self) -> None:
        self._running = None
        self._lock.release()

    def _run_and_release(self, func: Any, *args: Any) -> Any:
        try:
            return func(*args)
        finally:
            self._release()

    def _get_executor(self) -> ThreadPoolExecutor:
        if self._executor is None:
            self._executor = ThreadPoolExecutor(
                max_workers=1, thread_name_prefix="auditvault-operation"
            )
        return self._executor
