"""
Backup and restore engine.

Creates portable archives of application data and restores them. An archive
is a gzip-compressed tar holding a backup.json manifest followed by the data
payload, which is optionally encrypted with a password (AES-256-CBC, key
derived with PBKDF2-HMAC-SHA256).

Usage:
    from auditvault.backup import BackupManager

    manager = BackupManager(backup_dir, handlers)
    result = manager.create_backup("Nightly", password="secret123")
    manager.restore_backup(result.slug, password="secret123", mode="upsert")
    status = manager.get_operation_status()
"""

from auditvault.backup.categories import (
    ALL_CATEGORIES,
    ALL_CATEGORY_NAMES,
    LANGUAGES,
    Category,
    CategoryHandler,
    get_category,
)
from auditvault.backup.errors import (
    BackupError,
    BackupNotFoundError,
    BadParametersError,
    CorruptArchiveError,
    DecryptionError,
    NotFoundError,
    OperationConflictError,
    PartialRestoreError,
    PasswordRequiredError,
    UnknownCategoryError,
)
from auditvault.backup.manager import BackupManager
from auditvault.backup.models import (
    BackupInfo,
    BackupManifest,
    BackupResult,
    CatalogListing,
    RestoreMode,
    RestoreResult,
)
from auditvault.backup.state import OperationKind, OperationStatus, Phase

__all__ = [
    # Main manager class
    "BackupManager",
    # Categories
    "Category",
    "CategoryHandler",
    "ALL_CATEGORIES",
    "ALL_CATEGORY_NAMES",
    "LANGUAGES",
    "get_category",
    # Data models
    "BackupManifest",
    "BackupInfo",
    "BackupResult",
    "CatalogListing",
    "RestoreMode",
    "RestoreResult",
    "OperationKind",
    "OperationStatus",
    "Phase",
    # Exceptions
    "BackupError",
    "NotFoundError",
    "BackupNotFoundError",
    "UnknownCategoryError",
    "BadParametersError",
    "PasswordRequiredError",
    "CorruptArchiveError",
    "DecryptionError",
    "OperationConflictError",
    "PartialRestoreError",
]
