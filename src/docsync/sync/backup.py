"""Checksummed, timestamped backup and restore of single files.

Every project owns its own backup directory (see ``ProjectBackups``).
Backups are named ``<originalFileName>.backup.<epoch-ms>.<sha256[:8]>``.
The name alone identifies the original file, orders backups in time and
makes tampering evident.  Retention is enforced per original file name, so
cleaning up one file's backups never touches another's.

Key design choices:

* **Safety first** -- ``create_backup()`` raises ``BackupError`` on any I/O
  failure so that callers abort the overwrite it was meant to protect.
* **Self-protecting restore** -- ``restore_from_backup()`` backs up the
  current target before replacing it, so two restores in a row never lose
  the intermediate content.
* **Monotonic names** -- timestamps are bumped past the newest existing
  backup of the same file, so rapid successive backups never collide and
  always sort in creation order.
"""

from __future__ import annotations

import hashlib
import logging
import re
import threading
import time
from datetime import datetime, timezone
from pathlib import Path

from docsync.errors import BackupError, BackupNotFoundError, DocSyncError
from docsync.file_handler import file_exists, read_text, write_file_atomic

from .events import (
    BackupCreated,
    BackupFailed,
    EventBus,
    FileRestored,
    RestoreFailed,
)
from .models import BackupInfo

logger = logging.getLogger(__name__)

DEFAULT_MAX_BACKUPS = 10

_STAMP_PATTERN = re.compile(r"\.backup\.(\d+)\.")


def checksum_bytes(data: bytes) -> str:
    """Return the SHA-256 hex digest of *data*."""
    return hashlib.sha256(data).hexdigest()


def backup_prefix(file_name: str) -> str:
    """Return the name prefix shared by all backups of *file_name*."""
    return f"{file_name}.backup."


class BackupStore:
    """Create, list and restore backups inside one backup directory.

    Args:
        backup_dir: Directory holding the backup files.  Created on first
            backup.
        max_backups: Number of backups kept per original file name.
        bus: Optional event channel for backup/restore events.
        restore_root: Directory used to rebuild the default restore target
            from a backup name.  Defaults to *backup_dir*.
    """

    def __init__(
        self,
        backup_dir: Path,
        max_backups: int = DEFAULT_MAX_BACKUPS,
        bus: EventBus | None = None,
        restore_root: Path | None = None,
    ) -> None:
        if max_backups < 1:
            raise ValueError("max_backups must be at least 1")
        self.backup_dir = Path(backup_dir)
        self.max_backups = max_backups
        self.restore_root = Path(restore_root) if restore_root else None
        self._bus = bus or EventBus()
        self._stamp_lock = threading.Lock()

    # ------------------------------------------------------------------
    # Create
    # ------------------------------------------------------------------

    def create_backup(self, file_path: str | Path) -> BackupInfo:
        """Copy *file_path* into the backup directory.

        Args:
            file_path: The file about to be overwritten.

        Returns:
            ``BackupInfo`` for the new backup.

        Raises:
            BackupError: If the source is unreadable or the backup
                directory is not writable.
        """
        source = Path(file_path)
        try:
            data = source.read_bytes()
            self.backup_dir.mkdir(parents=True, exist_ok=True)
            checksum = checksum_bytes(data)
            stamp = self._next_stamp(source.name)
            backup_path = (
                self.backup_dir
                / f"{backup_prefix(source.name)}{stamp}.{checksum[:8]}"
            )
            backup_path.write_bytes(data)
        except OSError as exc:
            message = f"Failed to create backup: {exc}"
            logger.error("Backup of %s failed: %s", source, exc)
            self._bus.publish(
                BackupFailed(file_path=str(source), error=str(exc))
            )
            raise BackupError(message, file_path=str(source)) from exc

        info = BackupInfo(
            file_path=str(source),
            backup_path=str(backup_path),
            timestamp=_stamp_to_datetime(stamp),
            checksum=checksum,
            size=len(data),
        )
        logger.info("Backed up %s to %s", source, backup_path.name)

        self._enforce_retention(source)
        self._bus.publish(BackupCreated(backup=info))
        return info

    # ------------------------------------------------------------------
    # Restore
    # ------------------------------------------------------------------

    def restore_from_backup(
        self,
        backup_path: str | Path,
        target_path: str | Path | None = None,
    ) -> Path:
        """Replace *target_path* with the bytes of *backup_path*.

        The current target, if any, is backed up first.

        Args:
            backup_path: Backup file to restore.
            target_path: Where to restore.  Defaults to the original file
                name (from the backup name) under ``restore_root``.

        Returns:
            The path that was restored.

        Raises:
            BackupNotFoundError: If the backup does not exist.
            BackupError: If the safety backup or the copy fails.
        """
        backup = Path(backup_path)
        target = (
            Path(target_path)
            if target_path is not None
            else self.original_path_for(backup)
        )
        try:
            if not file_exists(backup):
                raise BackupNotFoundError(str(backup))
            # Retention of the safety backup may delete *backup* itself
            data = backup.read_bytes()
            if file_exists(target):
                self.create_backup(target)
            write_file_atomic(target, data)
        except (DocSyncError, OSError) as exc:
            logger.error("Restore of %s failed: %s", backup, exc)
            self._bus.publish(
                RestoreFailed(backup_path=str(backup), error=str(exc))
            )
            if isinstance(exc, DocSyncError):
                raise
            raise BackupError(
                f"Failed to restore from backup: {exc}",
                file_path=str(target),
            ) from exc

        logger.info("Restored %s from %s", target, backup.name)
        self._bus.publish(
            FileRestored(backup_path=str(backup), target_path=str(target))
        )
        return target

    def original_path_for(self, backup_path: str | Path) -> Path:
        """Rebuild the original file path encoded in a backup name."""
        backup = Path(backup_path)
        original_name = backup.name.split(".backup.")[0]
        root = self.restore_root or backup.parent
        return root / original_name

    # ------------------------------------------------------------------
    # Query
    # ------------------------------------------------------------------

    def list_backups(self, file_path: str | Path) -> list[BackupInfo]:
        """Return the backups of *file_path*, newest first.

        Checksums and sizes are recomputed from the backup bytes.
        Unreadable entries are skipped.
        """
        source = Path(file_path)
        if not self.backup_dir.is_dir():
            return []

        prefix = backup_prefix(source.name)
        entries: list[tuple[int, str, BackupInfo]] = []
        for candidate in self.backup_dir.iterdir():
            if not candidate.name.startswith(prefix):
                continue
            try:
                data = candidate.read_bytes()
                stamp = _stamp_from_name(candidate.name)
                if stamp is None:
                    stamp = int(candidate.stat().st_mtime * 1000)
            except OSError as exc:
                logger.warning(
                    "Failed to process backup file %s: %s",
                    candidate.name,
                    exc,
                )
                continue
            info = BackupInfo(
                file_path=str(source),
                backup_path=str(candidate),
                timestamp=_stamp_to_datetime(stamp),
                checksum=checksum_bytes(data),
                size=len(data),
            )
            entries.append((stamp, candidate.name, info))

        entries.sort(key=lambda e: (e[0], e[1]), reverse=True)
        return [info for _, _, info in entries]

    def latest_backup_content(self, file_path: str | Path) -> str | None:
        """Return the text of the newest backup of *file_path*, if any."""
        try:
            backups = self.list_backups(file_path)
            if not backups:
                return None
            return read_text(Path(backups[0].backup_path))
        except OSError as exc:
            logger.warning(
                "Failed to get base content for %s: %s", file_path, exc
            )
            return None

    def read_backup(self, backup: BackupInfo | str | Path) -> str:
        """Return the text content of a backup."""
        path = (
            Path(backup.backup_path)
            if isinstance(backup, BackupInfo)
            else Path(backup)
        )
        if not file_exists(path):
            raise BackupNotFoundError(str(path))
        return read_text(path)

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    def _enforce_retention(self, source: Path) -> None:
        """Delete backups of *source* beyond ``max_backups``."""
        for stale in self.list_backups(source)[self.max_backups :]:
            try:
                Path(stale.backup_path).unlink()
                logger.debug("Deleted old backup %s", stale.backup_path)
            except OSError as exc:
                logger.warning(
                    "Failed to delete old backup %s: %s",
                    stale.backup_path,
                    exc,
                )

    def _next_stamp(self, file_name: str) -> int:
        """Return a millisecond stamp newer than any existing backup."""
        with self._stamp_lock:
            now = int(time.time() * 1000)
            prefix = backup_prefix(file_name)
            latest = max(
                (
                    _stamp_from_name(p.name) or 0
                    for p in self.backup_dir.iterdir()
                    if p.name.startswith(prefix)
                ),
                default=0,
            )
            return max(now, latest + 1)


def _stamp_from_name(name: str) -> int | None:
    match = _STAMP_PATTERN.search(name)
    return int(match.group(1)) if match else None


def _stamp_to_datetime(stamp: int) -> datetime:
    return datetime.fromtimestamp(stamp / 1000, tz=timezone.utc)


def project_backup_dir(
    project_path: str | Path,
    document_dir: str,
    backup_root: Path | None = None,
) -> Path:
    """Return the backup directory owned by *project_path*.

    Without *backup_root* backups live in ``<project>/<document_dir>/backups``.
    With it, every project gets its own ``<name>-<md5[:8]>`` subdirectory so
    that two projects never share retention or base content.
    """
    project = Path(project_path)
    if backup_root is None:
        return project / document_dir / "backups"
    digest = hashlib.md5(str(project).encode("utf-8")).hexdigest()[:8]
    return Path(backup_root) / f"{project.name or 'root'}-{digest}"


class ProjectBackups:
    """Hand out one ``BackupStore`` per project.

    Args:
        document_dir: Name of the per-project document directory.  Restores
            default to files inside it.
        max_backups: Number of backups kept per original file name.
        bus: Event channel shared by every store.
        backup_root: Optional directory holding one subdirectory per project.
    """

    def __init__(
        self,
        document_dir: str = ".ai-project",
        max_backups: int = DEFAULT_MAX_BACKUPS,
        bus: EventBus | None = None,
        backup_root: Path | None = None,
    ) -> None:
        if max_backups < 1:
            raise ValueError("max_backups must be at least 1")
        self.document_dir = document_dir
        self.max_backups = max_backups
        self.backup_root = Path(backup_root) if backup_root else None
        self._bus = bus or EventBus()
        self._stores: dict[str, BackupStore] = {}
        self._lock = threading.Lock()

    def store_for(self, project_path: str | Path) -> BackupStore:
        """Return the store of *project_path*, creating it on first use."""
        key = str(Path(project_path))
        with self._lock:
            store = self._stores.get(key)
            if store is None:
                store = self._stores[key] = BackupStore(
                    project_backup_dir(
                        key, self.document_dir, self.backup_root
                    ),
                    max_backups=self.max_backups,
                    bus=self._bus,
                    restore_root=Path(key) / self.document_dir,
                )
            return store

    @property
    def projects(self) -> list[str]:
        with self._lock:
            return sorted(self._stores)
