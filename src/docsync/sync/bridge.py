"""Sync bridge: classified file changes to typed document events.

The ``SyncBridge`` sits between the ``ChangeWatcherAdapter`` and any
consumer of ``SyncEvent`` values.  For every watched project it:

1. Registers a watch through the adapter and loads the known documents
   (requirements, design, tasks, config) into an in-memory cache.
2. On each classified change, refreshes the cache and publishes
   ``document-updated``, ``progress-updated`` or ``context-asset-updated``.
3. Optionally runs integrity checks on changed files and publishes
   ``integrity-warning`` for anything suspicious.

Handler failures are caught per operation and published as ``sync-error``
with a ``SyncErrorKind`` tag; nothing raised by a handler ever reaches the
watcher loop.  The bridge is the only writer of its cache.

``write_document`` is the outbound path: it asks the ``ConflictRegistry``
whether the file moved on since the caller last saw it and returns the
``FileConflict`` instead of overwriting.
"""

from __future__ import annotations

import json
import logging
from datetime import datetime, timezone
from pathlib import Path
from typing import Any

from docsync.core.async_utils import run_sync
from docsync.errors import SyncNotActiveError
from docsync.file_handler import (
    file_exists,
    read_file_async,
    read_text,
    write_file_atomic_async,
)

from .events import (
    AssetAction,
    ContextAssetUpdated,
    DocumentUpdated,
    EventBus,
    IntegrityWarning,
    ProgressUpdated,
    SyncCheckCompleted,
    SyncError,
    SyncErrorKind,
    SyncStarted,
    SyncStopped,
)
from .integrity import validate_file_integrity
from .models import (
    CACHED_DOCUMENTS,
    CachedDocument,
    ChangeKind,
    DocumentKind,
    FileConflict,
)
from .progress import recompute_progress
from .registry import ConflictRegistry
from .watcher import ChangeWatcherAdapter, ClassifiedChange, WatchRegistration

logger = logging.getLogger(__name__)

_ASSET_ACTIONS: dict[ChangeKind, AssetAction] = {
    ChangeKind.ADD: AssetAction.ADDED,
    ChangeKind.ADD_DIR: AssetAction.ADDED,
    ChangeKind.CHANGE: AssetAction.MODIFIED,
    ChangeKind.UNLINK: AssetAction.REMOVED,
    ChangeKind.UNLINK_DIR: AssetAction.REMOVED,
}

_REMOVALS = (ChangeKind.UNLINK, ChangeKind.UNLINK_DIR)


class SyncBridge:
    """Keep per-project document caches in step with the filesystem.

    Args:
        watcher: Adapter producing classified changes.
        registry: Conflict registry used by ``write_document``.
        bus: Event channel for everything the bridge publishes.
        integrity_check: Validate added/changed files and publish
            ``integrity-warning`` on findings.
        persist_progress: Write recomputed progress back to
            ``progress.json`` when ``tasks.md`` changes.
    """

    def __init__(
        self,
        watcher: ChangeWatcherAdapter,
        registry: ConflictRegistry,
        bus: EventBus | None = None,
        integrity_check: bool = True,
        persist_progress: bool = False,
    ) -> None:
        self.watcher = watcher
        self.registry = registry
        self.integrity_check = integrity_check
        self.persist_progress = persist_progress
        self._bus = bus or EventBus()
        self._registrations: dict[str, list[WatchRegistration]] = {}
        self._document_roots: dict[str, Path] = {}
        self._cache: dict[tuple[str, DocumentKind], CachedDocument] = {}

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def start_sync_for_project(self, project_path: str) -> None:
        """Start watching *project_path* and load its documents.

        Each call adds a watch registration, even for a project that is
        already synchronized.

        Raises:
            ProjectNotFoundError: If the project has no document directory.
        """
        registration = None
        try:
            registration = await self.watcher.watch_project(
                project_path, self._on_change, self._on_watcher_error
            )
            self._registrations.setdefault(project_path, []).append(
                registration
            )
            self._document_roots[project_path] = registration.document_root
            await self._load_documents(project_path)
        except Exception as exc:
            logger.error(
                "Failed to start sync for project %s: %s", project_path, exc
            )
            if registration is not None:
                await self._discard_registration(project_path, registration)
            self._publish_error(
                project_path, SyncErrorKind.SYNC_START_ERROR, exc
            )
            raise

        logger.info("Started sync for project %s", project_path)
        self._bus.publish(SyncStarted(project_path=project_path))

    async def stop_sync_for_project(self, project_path: str) -> None:
        """Stop every watch of *project_path* and drop its cache entries.

        A project that is not synchronized is left alone.
        """
        registrations = self._registrations.pop(project_path, [])
        if not registrations:
            return
        for registration in registrations:
            await registration.stop()
        self._document_roots.pop(project_path, None)
        self._evict(project_path)

        logger.info("Stopped sync for project %s", project_path)
        self._bus.publish(SyncStopped(project_path=project_path))

    async def _discard_registration(
        self, project_path: str, registration: WatchRegistration
    ) -> None:
        """Undo a registration whose start failed."""
        await registration.stop()
        remaining = self._registrations.get(project_path, [])
        if registration in remaining:
            remaining.remove(registration)
        if remaining:
            return
        self._registrations.pop(project_path, None)
        self._document_roots.pop(project_path, None)
        self._evict(project_path)

    async def stop_all_sync(self) -> None:
        """Stop synchronizing every project."""
        for project_path in list(self._registrations):
            await self.stop_sync_for_project(project_path)

    async def trigger_sync_check(self, project_path: str) -> None:
        """Reload the cached documents of *project_path* from disk.

        Raises:
            SyncNotActiveError: If the project is not synchronized.
        """
        if not self.is_sync_active(project_path):
            raise SyncNotActiveError(project_path)
        try:
            await self._load_documents(project_path)
        except Exception as exc:
            logger.error(
                "Sync check failed for project %s: %s", project_path, exc
            )
            self._publish_error(
                project_path, SyncErrorKind.SYNC_CHECK_ERROR, exc
            )
            raise
        self._bus.publish(SyncCheckCompleted(project_path=project_path))

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def is_sync_active(self, project_path: str) -> bool:
        return bool(self._registrations.get(project_path))

    def get_active_sync_projects(self) -> list[str]:
        return [p for p, regs in self._registrations.items() if regs]

    def get_cached_document(
        self, project_path: str, kind: DocumentKind | str
    ) -> str | None:
        """Return the cached content of a document, or ``None``."""
        entry = self._cache.get((project_path, DocumentKind(kind)))
        return entry.content if entry is not None else None

    def get_sync_stats(self) -> dict[str, Any]:
        """Summarize active watches and the document cache."""
        projects: dict[str, Any] = {}
        for project_path, registrations in self._registrations.items():
            projects[project_path] = {
                "document_root": str(self._document_roots.get(project_path)),
                "registrations": len(registrations),
                "active_watchers": sum(
                    1 for r in registrations if r.is_active
                ),
                "events_seen": sum(r.events_seen for r in registrations),
                "cached_documents": sorted(
                    kind.value
                    for (project, kind) in self._cache
                    if project == project_path
                ),
            }
        return {
            "active_projects": len(self.get_active_sync_projects()),
            "cached_documents": len(self._cache),
            "open_conflicts": len(self.registry.list_open_conflicts()),
            "projects": projects,
        }

    # ------------------------------------------------------------------
    # Outbound writes
    # ------------------------------------------------------------------

    async def write_document(
        self,
        project_path: str,
        kind: DocumentKind | str,
        content: str,
        last_known_timestamp: datetime | None = None,
    ) -> FileConflict | None:
        """Write a document unless it changed on disk since the caller saw it.

        Args:
            project_path: Owning project.
            kind: Which document to write (context assets are not supported).
            content: Full new content.
            last_known_timestamp: When the caller last read the document.

        Returns:
            The detected ``FileConflict`` (nothing was written), or ``None``
            after a successful write.

        Raises:
            ValueError: If *kind* has no fixed file name.
            ProjectNotFoundError: If the project has no document directory.
        """
        document_kind = DocumentKind(kind)
        file_name = document_kind.file_name
        if file_name is None:
            raise ValueError(
                f"Cannot write document of kind '{document_kind.value}'"
            )

        root = self._document_roots.get(project_path)
        if root is None:
            root = await run_sync(
                self.watcher.resolve_document_root, project_path
            )
        path = root / file_name

        conflict = await run_sync(
            self.registry.detect_conflict, path, content, last_known_timestamp
        )
        if conflict is not None:
            logger.warning(
                "Refusing to write %s: changed on disk (conflict %s)",
                path,
                conflict.id,
            )
            return conflict

        await write_file_atomic_async(path, content)
        if document_kind in CACHED_DOCUMENTS and self.is_sync_active(
            project_path
        ):
            self._cache_put(project_path, document_kind, content)
        logger.info("Wrote %s for project %s", file_name, project_path)
        return None

    # ------------------------------------------------------------------
    # Change handling
    # ------------------------------------------------------------------

    async def _on_change(self, change: ClassifiedChange) -> None:
        kind = change.document_kind
        if kind is None or not self.is_sync_active(change.project_path):
            return

        if self.integrity_check and change.kind in (
            ChangeKind.ADD,
            ChangeKind.CHANGE,
        ):
            await self._check_integrity(change)

        if kind in CACHED_DOCUMENTS:
            await self._handle_document_change(change)
        elif kind is DocumentKind.PROGRESS:
            await self._handle_progress_change(change.project_path)
        elif kind is DocumentKind.CONTEXT:
            self._handle_context_change(change)

    async def _on_watcher_error(
        self, project_path: str, error: Exception
    ) -> None:
        self._publish_error(project_path, SyncErrorKind.WATCHER_ERROR, error)

    async def _handle_document_change(self, change: ClassifiedChange) -> None:
        project_path = change.project_path
        kind = change.document_kind
        try:
            if change.kind in _REMOVALS:
                self._cache.pop((project_path, kind), None)
                content = ""
            else:
                content = await read_file_async(Path(change.path))
                if not self.is_sync_active(project_path):
                    # Stopped while the read was in flight
                    return
                self._cache_put(project_path, kind, content)
        except Exception as exc:
            logger.error(
                "Failed to sync %s for project %s: %s",
                change.relative_path,
                project_path,
                exc,
            )
            self._publish_error(
                project_path, SyncErrorKind.DOCUMENT_SYNC_ERROR, exc
            )
            return

        self._bus.publish(
            DocumentUpdated(
                project_path=project_path,
                document_kind=kind,
                content=content,
                file_path=change.path,
            )
        )
        if kind is DocumentKind.TASKS and change.kind not in _REMOVALS:
            await self._handle_progress_change(
                project_path, persist=self.persist_progress
            )

    async def _handle_progress_change(
        self, project_path: str, persist: bool = False
    ) -> None:
        """Recompute progress from ``tasks.md`` and publish it.

        Only task-driven recomputes persist, so the resulting write to
        ``progress.json`` does not trigger another write.
        """
        try:
            root = self._document_roots[project_path]
            snapshot = await run_sync(_recompute_from_disk, root)
            if persist:
                await write_file_atomic_async(
                    root / "progress.json",
                    json.dumps(snapshot.to_document(), indent=2) + "\n",
                )
        except Exception as exc:
            logger.error(
                "Failed to update progress for project %s: %s",
                project_path,
                exc,
            )
            self._publish_error(
                project_path, SyncErrorKind.PROGRESS_SYNC_ERROR, exc
            )
            return

        self._bus.publish(
            ProgressUpdated(
                project_path=project_path,
                total_tasks=snapshot.total_tasks,
                completed_tasks=snapshot.completed_tasks,
                percentage=snapshot.percentage,
                recent_activity=snapshot.recent_activity,
            )
        )

    def _handle_context_change(self, change: ClassifiedChange) -> None:
        try:
            action = _ASSET_ACTIONS[change.kind]
            asset_name = change.relative_path.split("/", 1)[1]
        except (KeyError, IndexError) as exc:
            self._publish_error(
                change.project_path, SyncErrorKind.CONTEXT_SYNC_ERROR, exc
            )
            return

        self._bus.publish(
            ContextAssetUpdated(
                project_path=change.project_path,
                asset_name=asset_name,
                action=action,
                file_path=change.path,
            )
        )

    async def _check_integrity(self, change: ClassifiedChange) -> None:
        path = Path(change.path)
        if not file_exists(path):
            return
        result = await run_sync(validate_file_integrity, path)
        if not result.has_findings:
            return
        logger.warning(
            "Integrity issues in %s: %s",
            change.relative_path,
            "; ".join(result.errors + result.warnings),
        )
        self._bus.publish(
            IntegrityWarning(
                project_path=change.project_path,
                file_path=change.path,
                errors=result.errors,
                warnings=result.warnings,
            )
        )

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    async def _load_documents(self, project_path: str) -> None:
        """Read every cached document kind that exists on disk."""
        root = self._document_roots[project_path]
        for kind in CACHED_DOCUMENTS:
            path = root / kind.file_name
            if not file_exists(path):
                self._cache.pop((project_path, kind), None)
                continue
            content = await read_file_async(path)
            self._cache_put(project_path, kind, content)
        logger.debug("Loaded documents for project %s", project_path)

    def _evict(self, project_path: str) -> None:
        for key in [k for k in self._cache if k[0] == project_path]:
            del self._cache[key]

    def _cache_put(
        self, project_path: str, kind: DocumentKind, content: str
    ) -> None:
        self._cache[(project_path, kind)] = CachedDocument(
            content=content, refreshed_at=datetime.now(timezone.utc)
        )

    def _publish_error(
        self, project_path: str, kind: SyncErrorKind, error: Exception
    ) -> None:
        self._bus.publish(
            SyncError(project_path=project_path, kind=kind, error=str(error))
        )


def _recompute_from_disk(document_root: Path):
    tasks_content = read_text(document_root / "tasks.md")
    progress_path = document_root / "progress.json"
    progress_content = (
        read_text(progress_path) if file_exists(progress_path) else None
    )
    return recompute_progress(tasks_content, progress_content)
