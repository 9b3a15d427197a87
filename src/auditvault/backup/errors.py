"""
Error taxonomy for backup and restore operations.

Every exception carries a stable ``kind`` string so collaborators (an HTTP
layer, the CLI) can map failures to responses without inspecting messages.
Full details stay in the log; ``to_dict()`` is what gets shown to users.
"""

from __future__ import annotations

from typing import Any


class BackupError(Exception):
    """Base exception for backup and restore errors."""

    kind = "internal"

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message

    def to_dict(self) -> dict[str, Any]:
        """Return the user-visible kind and message."""
        return {"kind": self.kind, "message": self.message}


class NotFoundError(BackupError):
    """Raised when a requested backup or category does not exist."""

    kind = "not_found"


class BackupNotFoundError(NotFoundError):
    """Raised when no archive matches a slug."""

    pass


class UnknownCategoryError(NotFoundError):
    """Raised when a category name is not in the catalog."""

    pass


class BadParametersError(BackupError):
    """Raised for malformed requests."""

    kind = "bad_parameters"


class PasswordRequiredError(BadParametersError):
    """Raised when a protected archive is restored without a password."""

    pass


class CorruptArchiveError(BackupError):
    """Raised when an archive cannot be parsed or decrypted."""

    kind = "corrupt"


class DecryptionError(CorruptArchiveError):
    """Raised when decryption fails (wrong password or damaged payload)."""

    pass


class OperationConflictError(BackupError):
    """Raised when an operation would overlap with one already running."""

    kind = "conflict"


class PartialRestoreError(BackupError):
    """
    Raised when one or more category importers failed during a restore.

    Categories that loaded successfully are not rolled back; they are listed
    in ``restored`` so callers can report exactly what was applied.

    Attributes:
        failures: Mapping of category name to failure message.
        restored: Mapping of category name to records loaded.
    """

    kind = "partial_import_failure"

    def __init__(
        self,
        failures: dict[str, str],
        restored: dict[str, int] | None = None,
    ) -> None:
        self.failures = dict(failures)
        self.restored = dict(restored or {})
        details = ", ".join(f"{name}: {error}" for name, error in self.failures.items())
        super().__init__(f"Restore errors: {details}")

    def to_dict(self) -> dict[str, Any]:
        data = super().to_dict()
        data["failures"] = self.failures
        data["restored"] = self.restored
        return data
