"""
Persisted state of the running backup or restore operation.

The state lives in a small file next to the archives rather than in memory,
so a long-running operation can be polled from another request or process.

File format (current):
    {"phase": "dumping_database", "detail": null, "updated_at": "...", "pid": 4242}

While an operation runs, pid is the process that owns it. A phase whose
owner no longer exists was left behind by a process that died.

Older deployments wrote a two-line text record (phase on line 1, detail
after it). That format is still read; it is never written.

Writes go to a temp file in the same directory followed by os.replace(), so
a crash mid-write cannot leave a torn record.
"""

from __future__ import annotations

import json
import logging
import os
import tempfile
from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import Any

from auditvault.backup.models import utc_timestamp

logger = logging.getLogger(__name__)

STATE_FILE = ".state"


class Phase(str, Enum):
    """Discrete phases of the operation state machine."""

    IDLE = "idle"

    BACKUP_STARTED = "backup_started"
    DUMPING_DATABASE = "dumping_database"
    BUILDING_DATA = "building_data"
    ENCRYPTING_DATA = "encrypting_data"
    BUILDING_ARCHIVE = "building_archive"
    BACKUP_ERROR = "backup_error"

    RESTORE_STARTED = "restore_started"
    EXTRACTING_INFO = "extracting_info"
    DECRYPTING_DATA = "decrypting_data"
    EXTRACTING_DATA = "extracting_data"
    RESTORING_DATA = "restoring_data"
    RESTORE_ERROR = "restore_error"


BACKUP_PHASES = frozenset(
    {
        Phase.BACKUP_STARTED,
        Phase.DUMPING_DATABASE,
        Phase.BUILDING_DATA,
        Phase.ENCRYPTING_DATA,
        Phase.BUILDING_ARCHIVE,
    }
)

RESTORE_PHASES = frozenset(
    {
        Phase.RESTORE_STARTED,
        Phase.EXTRACTING_INFO,
        Phase.DECRYPTING_DATA,
        Phase.EXTRACTING_DATA,
        Phase.RESTORING_DATA,
    }
)


def is_process_alive(pid: int) -> bool:
    """Check whether a process with this PID exists."""
    try:
        os.kill(pid, 0)
    except PermissionError:
        # Exists but belongs to another user
        return True
    except OSError:
        return False
    return True


class OperationKind(str, Enum):
    """Coarse kind of operation derived from the phase."""

    IDLE = "idle"
    BACKUP = "backup"
    RESTORE = "restore"


@dataclass(frozen=True)
class OperationState:
    """The persisted record: one phase plus optional free-text detail and owner."""

    phase: Phase
    detail: str | None = None
    updated_at: str | None = None
    pid: int | None = None

    @property
    def operation(self) -> OperationKind:
        if self.phase in BACKUP_PHASES:
            return OperationKind.BACKUP
        if self.phase in RESTORE_PHASES:
            return OperationKind.RESTORE
        return OperationKind.IDLE

    @property
    def in_progress(self) -> bool:
        return self.operation is not OperationKind.IDLE

    @property
    def is_stale(self) -> bool:
        """True for an in-progress phase whose owning process is gone."""
        if not self.in_progress:
            return False
        return self.pid is None or not is_process_alive(self.pid)

    def to_dict(self) -> dict[str, Any]:
        return {
            "phase": self.phase.value,
            "detail": self.detail,
            "updated_at": self.updated_at,
            "pid": self.pid,
        }


@dataclass(frozen=True)
class OperationStatus:
    """Status returned to pollers."""

    operation: OperationKind
    phase: Phase
    detail: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "operation": self.operation.value,
            "phase": self.phase.value,
            "detail": self.detail,
        }


class StateStore:
    """
    File-backed store for the single global OperationState.

    Example:
        store = StateStore(Path("/var/lib/auditvault/backups"))
        store.set_state(Phase.DUMPING_DATABASE)
        status = store.get_operation_status()
    """

    def __init__(self, directory: Path | str) -> None:
        self.directory = Path(directory)
        self.path = self.directory / STATE_FILE

    def get_state(self) -> OperationState:
        """
        Read the current state, creating an idle record if none exists.

        Returns:
            The persisted OperationState.
        """
        if not self.path.exists():
            return self.set_state(Phase.IDLE)

        content = self.path.read_text(encoding="utf-8")
        return self._parse(content)

    def set_state(
        self,
        phase: Phase,
        detail: str | None = None,
        pid: int | None = None,
    ) -> OperationState:
        """
        Overwrite the state record atomically.

        Args:
            phase: New phase.
            detail: Optional free-text detail (error message for error phases).
            pid: Owner of an in-progress phase (defaults to this process).
                Not recorded for idle and error phases.

        Returns:
            The state that was written.
        """
        phase = Phase(phase)
        owner = None
        if phase in BACKUP_PHASES or phase in RESTORE_PHASES:
            owner = pid if pid is not None else os.getpid()
        state = OperationState(
            phase=phase,
            detail=detail,
            updated_at=utc_timestamp(),
            pid=owner,
        )
        self.directory.mkdir(parents=True, exist_ok=True)

        temp_fd, temp_path = tempfile.mkstemp(
            prefix=".state-",
            suffix=".tmp",
            dir=str(self.directory),
        )
        try:
            with os.fdopen(temp_fd, "w", encoding="utf-8") as f:
                json.dump(state.to_dict(), f)
            os.replace(temp_path, self.path)
        except Exception:
            if os.path.exists(temp_path):
                os.unlink(temp_path)
            raise

        logger.debug(f"Operation state -> {state.phase.value}")
        return state

    def get_operation_status(self) -> OperationStatus:
        """Derive the coarse operation kind from the persisted phase."""
        state = self.get_state()
        return OperationStatus(
            operation=state.operation,
            phase=state.phase,
            detail=state.detail,
        )

    def _parse(self, content: str) -> OperationState:
        try:
            data = json.loads(content)
        except ValueError:
            data = None

        if isinstance(data, dict):
            raw_phase = str(data.get("phase", ""))
            detail = data.get("detail")
            updated_at = data.get("updated_at")
            pid = data.get("pid") if isinstance(data.get("pid"), int) else None
        else:
            # Legacy two-line text record
            lines = content.split("\n")
            raw_phase = lines[0].strip()
            detail = "\n".join(lines[1:]).strip() or None
            updated_at = None
            pid = None

        try:
            phase = Phase(raw_phase)
        except ValueError:
            logger.warning(f"Unrecognized operation phase {raw_phase!r} in {self.path}, treating as idle")
            return OperationState(phase=Phase.IDLE)

        return OperationState(phase=phase, detail=detail, updated_at=updated_at, pid=pid)
