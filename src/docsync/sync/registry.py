"""Open-conflict registry: detection and resolution of file conflicts.

The ``ConflictRegistry`` owns every open ``FileConflict`` for its lifetime.
A conflict is created when a caller is about to write a file that changed
on disk after the caller last saw it, and destroyed when it is resolved or
explicitly cleared.  Conflicts are never persisted.

Resolution protocol (per conflict):

1. Look up the conflict (``ConflictNotFoundError`` if absent,
   ``ResolutionInProgressError`` if another caller holds it).
2. Back up the current on-disk file.  A failed backup aborts the whole
   resolution; the file is never overwritten without a safety copy.
3. Compute the resolved content for the chosen strategy.  A ``merge`` that
   leaves line conflicts fails with ``MergeUnresolvedError``.
4. Write the content atomically, drop the conflict, publish
   ``conflict-resolved``.

Any failure publishes ``conflict-resolution-error``, re-raises, and leaves
the conflict open for retry.

Detection, backup and resolution for one path run under a per-path lock so
that the registry is safe to call from worker threads.
"""

from __future__ import annotations

import hashlib
import logging
import threading
import time
from datetime import datetime, timezone
from pathlib import Path

from docsync.errors import (
    ConflictNotFoundError,
    InvalidStrategyError,
    MergeUnresolvedError,
    ResolutionInProgressError,
)
from docsync.file_handler import (
    file_exists,
    file_mtime,
    read_text,
    write_file_atomic,
)

from .backup import BackupStore, ProjectBackups
from .events import (
    ConflictDetected,
    ConflictResolutionFailed,
    ConflictResolved,
    ConflictsCleared,
    EventBus,
)
from .merger import MergeAlgorithm, merge_conflict
from .models import (
    ConflictResolution,
    ConflictType,
    FileConflict,
    ResolutionStrategy,
)

logger = logging.getLogger(__name__)

DEFAULT_DOCUMENT_DIR = ".ai-project"


def generate_conflict_id(file_path: str) -> str:
    """Return ``conflict_<epoch-ms>_<md5(path)[:8]>``."""
    stamp = int(time.time() * 1000)
    digest = hashlib.md5(file_path.encode("utf-8")).hexdigest()[:8]
    return f"conflict_{stamp}_{digest}"


def extract_project_path(
    file_path: str, document_dir: str = DEFAULT_DOCUMENT_DIR
) -> str:
    """Return the project owning *file_path*.

    The project is the directory containing the *document_dir* component;
    files outside a document directory belong to their parent directory.
    """
    path = Path(file_path)
    parts = path.parts
    if document_dir in parts:
        index = parts.index(document_dir)
        return str(Path(*parts[:index]))
    return str(path.parent)


class ConflictRegistry:
    """In-memory table of open conflicts keyed by conflict id.

    Args:
        backups: Per-project stores used for safety backups and base
            content.  A single ``BackupStore`` serves every path, which
            only suits hosts that sync one project.
        bus: Event channel for conflict events.
        document_dir: Name of the per-project document directory.
        merge_algorithm: Algorithm used by ``merge`` resolutions.
    """

    def __init__(
        self,
        backups: ProjectBackups | BackupStore,
        bus: EventBus | None = None,
        document_dir: str = DEFAULT_DOCUMENT_DIR,
        merge_algorithm: MergeAlgorithm = "lockstep",
    ) -> None:
        self.backups = backups
        self.document_dir = document_dir
        self.merge_algorithm = merge_algorithm
        self._bus = bus or EventBus()
        self._conflicts: dict[str, FileConflict] = {}
        self._by_path: dict[str, str] = {}
        self._resolving: set[str] = set()
        self._table_lock = threading.Lock()
        self._path_locks: dict[str, threading.Lock] = {}

    # ------------------------------------------------------------------
    # Detection
    # ------------------------------------------------------------------

    def detect_conflict(
        self,
        file_path: str | Path,
        proposed_content: str,
        last_known_timestamp: datetime | None = None,
    ) -> FileConflict | None:
        """Check whether writing *proposed_content* would clobber an external edit.

        Args:
            file_path: Absolute path of the file about to be written.
            proposed_content: Content the caller wants to write.
            last_known_timestamp: When the caller last saw the file.  Without
                it no staleness can be established.

        Returns:
            The registered ``FileConflict``, or ``None`` when there is no
            conflict (including when the file does not exist yet).
        """
        path = Path(file_path)
        key = str(path)
        with self._lock_for(key):
            try:
                if not file_exists(path):
                    return None
                remote_timestamp = file_mtime(path)
                remote_content = read_text(path)
            except OSError as exc:
                logger.error(
                    "Error detecting conflict for %s: %s", path, exc
                )
                return None

            if last_known_timestamp is None:
                return None
            if remote_timestamp <= _as_aware(last_known_timestamp):
                return None

            project_path = extract_project_path(key, self.document_dir)
            conflict = FileConflict(
                id=generate_conflict_id(key),
                file_path=key,
                project_path=project_path,
                relative_path=_relative_to_documents(
                    path, Path(project_path) / self.document_dir
                ),
                local_content=proposed_content,
                remote_content=remote_content,
                base_content=self.backup_store_for(
                    key
                ).latest_backup_content(path),
                local_timestamp=datetime.now(timezone.utc),
                remote_timestamp=remote_timestamp,
                conflict_type=ConflictType.SIMULTANEOUS_EDIT,
                description=(
                    "File was modified externally while local changes "
                    "were pending"
                ),
            )
            self._register(conflict)

        logger.warning(
            "Conflict %s detected for %s", conflict.id, conflict.file_path
        )
        self._bus.publish(ConflictDetected(conflict=conflict))
        return conflict

    # ------------------------------------------------------------------
    # Resolution
    # ------------------------------------------------------------------

    def resolve_conflict(
        self,
        conflict_id: str,
        strategy: ResolutionStrategy | str,
        manual_content: str | None = None,
        resolved_by: str = "user",
    ) -> ConflictResolution:
        """Close an open conflict and write the chosen content.

        Args:
            conflict_id: Id of the open conflict.
            strategy: ``local``, ``remote``, ``merge`` or ``manual``.
            manual_content: Content for the ``manual`` strategy.
            resolved_by: Who resolved the conflict.

        Returns:
            The ``ConflictResolution`` record.

        Raises:
            ConflictNotFoundError: If the conflict is not open.
            ResolutionInProgressError: If another caller is resolving it.
            BackupError: If the safety backup failed.
            MergeUnresolvedError: If a ``merge`` left line conflicts.
            InvalidStrategyError: For unknown strategies or missing manual
                content.
        """
        conflict = self._claim(conflict_id)
        try:
            with self._lock_for(conflict.file_path):
                resolution = self._apply(
                    conflict, strategy, manual_content, resolved_by
                )
                with self._table_lock:
                    self._conflicts.pop(conflict_id, None)
                    if self._by_path.get(conflict.file_path) == conflict_id:
                        del self._by_path[conflict.file_path]
        except Exception as exc:
            logger.error(
                "Failed to resolve conflict %s: %s", conflict_id, exc
            )
            self._bus.publish(
                ConflictResolutionFailed(
                    conflict_id=conflict_id, error=str(exc)
                )
            )
            raise
        finally:
            with self._table_lock:
                self._resolving.discard(conflict_id)

        logger.info(
            "Resolved conflict %s for %s using %s",
            conflict_id,
            conflict.file_path,
            resolution.resolution.value,
        )
        self._bus.publish(
            ConflictResolved(
                resolution=resolution, file_path=conflict.file_path
            )
        )
        return resolution

    def _apply(
        self,
        conflict: FileConflict,
        strategy: ResolutionStrategy | str,
        manual_content: str | None,
        resolved_by: str,
    ) -> ConflictResolution:
        """Back up, compute and write the resolved content."""
        try:
            chosen = ResolutionStrategy(strategy)
        except ValueError:
            raise InvalidStrategyError(
                f"Invalid resolution strategy: {strategy}"
            ) from None

        path = Path(conflict.file_path)
        if file_exists(path):
            self.backup_store_for(conflict.file_path).create_backup(path)

        if chosen is ResolutionStrategy.LOCAL:
            content = conflict.local_content
        elif chosen is ResolutionStrategy.REMOTE:
            content = conflict.remote_content
        elif chosen is ResolutionStrategy.MERGE:
            result = merge_conflict(conflict, self.merge_algorithm)
            if not result.success:
                raise MergeUnresolvedError(
                    conflict.id, len(result.conflicts), result.warnings
                )
            content = result.merged_content
        else:
            if manual_content is None:
                raise InvalidStrategyError(
                    "Manual content is required for manual resolution"
                )
            content = manual_content

        write_file_atomic(path, content)
        return ConflictResolution(
            conflict_id=conflict.id,
            resolution=chosen,
            resolved_content=content,
            resolved_by=resolved_by,
            resolved_at=datetime.now(timezone.utc),
        )

    # ------------------------------------------------------------------
    # Queries / administration
    # ------------------------------------------------------------------

    def list_open_conflicts(self) -> list[FileConflict]:
        """Return all open conflicts."""
        with self._table_lock:
            return list(self._conflicts.values())

    def get_conflict(self, conflict_id: str) -> FileConflict | None:
        """Return the open conflict with *conflict_id*, or ``None``."""
        with self._table_lock:
            return self._conflicts.get(conflict_id)

    def get_conflict_for_path(
        self, file_path: str | Path
    ) -> FileConflict | None:
        """Return the open conflict for *file_path*, or ``None``."""
        with self._table_lock:
            conflict_id = self._by_path.get(str(Path(file_path)))
            return self._conflicts.get(conflict_id) if conflict_id else None

    def backup_store_for(self, file_path: str | Path) -> BackupStore:
        """Return the backup store owning *file_path*."""
        if isinstance(self.backups, BackupStore):
            return self.backups
        return self.backups.store_for(
            extract_project_path(str(Path(file_path)), self.document_dir)
        )

    def clear_all(self) -> int:
        """Discard every open conflict without resolving it.

        Returns:
            The number of conflicts discarded.
        """
        with self._table_lock:
            count = len(self._conflicts)
            self._conflicts.clear()
            self._by_path.clear()
        logger.warning("Cleared %d open conflicts without resolving", count)
        self._bus.publish(ConflictsCleared(count=count))
        return count

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    def _register(self, conflict: FileConflict) -> None:
        """Add *conflict*, replacing any open conflict for the same path."""
        with self._table_lock:
            previous = self._by_path.get(conflict.file_path)
            if previous is not None:
                self._conflicts.pop(previous, None)
                logger.info(
                    "Replacing conflict %s for %s",
                    previous,
                    conflict.file_path,
                )
            self._conflicts[conflict.id] = conflict
            self._by_path[conflict.file_path] = conflict.id

    def _claim(self, conflict_id: str) -> FileConflict:
        """Mark *conflict_id* as being resolved and return it."""
        with self._table_lock:
            conflict = self._conflicts.get(conflict_id)
            if conflict is None:
                raise ConflictNotFoundError(conflict_id)
            if conflict_id in self._resolving:
                raise ResolutionInProgressError(conflict_id)
            self._resolving.add(conflict_id)
            return conflict

    def _lock_for(self, file_path: str) -> threading.Lock:
        with self._table_lock:
            lock = self._path_locks.get(file_path)
            if lock is None:
                lock = self._path_locks[file_path] = threading.Lock()
            return lock


def _as_aware(moment: datetime) -> datetime:
    """Treat naive datetimes as UTC."""
    if moment.tzinfo is None:
        return moment.replace(tzinfo=timezone.utc)
    return moment


def _relative_to_documents(path: Path, document_root: Path) -> str:
    try:
        return str(path.relative_to(document_root))
    except ValueError:
        return path.name
