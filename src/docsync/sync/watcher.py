"""Change watcher adapter: raw file-change signals to classified changes.

The platform file-watch facility is abstracted behind a narrow
``WatchSource`` interface -- ``subscribe(watch_dir)`` returns an async
stream of ``FileChange(path, kind)`` values.  Two sources ship with the
package:

- ``QueueWatchSource``: synthetic source fed programmatically.  Used by
  tests and by hosts that already own a native watcher.
- ``PollingWatchSource``: stat-snapshot polling of a directory tree.

``ChangeWatcherAdapter`` locates a project's document directory, drops
ignored paths, debounces bursts per path and classifies each change by its
well-known file name before handing it to a callback.
"""

from __future__ import annotations

import asyncio
import fnmatch
import logging
import os
from collections.abc import AsyncIterator, Awaitable, Callable
from datetime import datetime, timezone
from pathlib import Path, PurePosixPath
from typing import Protocol

from pydantic import BaseModel, Field

from docsync.core.async_utils import run_sync
from docsync.errors import ProjectNotFoundError
from docsync.file_handler import directory_exists, file_exists

from .models import DOCUMENT_FILES, ChangeKind, DocumentKind

logger = logging.getLogger(__name__)

DEFAULT_DEBOUNCE_MS = 300

DEFAULT_IGNORE_PATTERNS: tuple[str, ...] = (
    ".git",
    "node_modules",
    "*.tmp",
    "*.tmp.*",
    "*.backup.*",
    ".*",
)

_FILE_KINDS: dict[str, DocumentKind] = {
    name: kind for kind, name in DOCUMENT_FILES.items()
}


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class FileChange(BaseModel):
    """Raw notification from a watch source."""

    path: str
    kind: ChangeKind

    model_config = {"frozen": True}


class ClassifiedChange(BaseModel):
    """A change attributed to a project and a document kind.

    ``document_kind`` is ``None`` for files the engine does not track.
    """

    project_path: str
    path: str
    relative_path: str
    file_name: str
    kind: ChangeKind
    document_kind: DocumentKind | None = None
    timestamp: datetime = Field(default_factory=_utcnow)

    model_config = {"frozen": True}


class WatchSource(Protocol):
    """Anything that can stream changes under a directory."""

    def subscribe(self, watch_dir: Path) -> AsyncIterator[FileChange]:
        """Start streaming changes below *watch_dir*."""
        ...  # pragma: no cover


ChangeHandler = Callable[[ClassifiedChange], Awaitable[None]]
ErrorHandler = Callable[[str, Exception], Awaitable[None]]


# ---------------------------------------------------------------------------
# Sources
# ---------------------------------------------------------------------------


class QueueWatchSource:
    """Watch source fed by ``emit()`` calls.

    Subscriptions are registered as soon as ``subscribe()`` is called, so
    changes emitted before the consumer starts iterating are not lost.
    """

    def __init__(self) -> None:
        self._subscribers: list[tuple[Path, asyncio.Queue]] = []

    def subscribe(self, watch_dir: Path) -> AsyncIterator[FileChange]:
        queue: asyncio.Queue[FileChange | None] = asyncio.Queue()
        entry = (Path(watch_dir), queue)
        self._subscribers.append(entry)
        return self._drain(entry)

    async def _drain(
        self, entry: tuple[Path, asyncio.Queue]
    ) -> AsyncIterator[FileChange]:
        _, queue = entry
        try:
            while True:
                change = await queue.get()
                if change is None:
                    return
                yield change
        finally:
            if entry in self._subscribers:
                self._subscribers.remove(entry)

    def emit(self, path: str | Path, kind: ChangeKind | str) -> int:
        """Deliver a change to every subscription watching *path*.

        Returns:
            Number of subscriptions that received the change.
        """
        change = FileChange(path=str(path), kind=ChangeKind(kind))
        target = Path(path)
        delivered = 0
        for watch_dir, queue in list(self._subscribers):
            if target == watch_dir or watch_dir in target.parents:
                queue.put_nowait(change)
                delivered += 1
        return delivered

    def close(self) -> None:
        """End every open subscription."""
        for _, queue in list(self._subscribers):
            queue.put_nowait(None)

    @property
    def subscription_count(self) -> int:
        return len(self._subscribers)


class PollingWatchSource:
    """Detect changes by comparing periodic stat snapshots.

    Args:
        interval: Seconds between scans.
    """

    def __init__(self, interval: float = 0.5) -> None:
        self.interval = interval

    def subscribe(self, watch_dir: Path) -> AsyncIterator[FileChange]:
        return self._poll(Path(watch_dir))

    async def _poll(self, watch_dir: Path) -> AsyncIterator[FileChange]:
        previous = await run_sync(scan_tree, watch_dir)
        while True:
            await asyncio.sleep(self.interval)
            current = await run_sync(scan_tree, watch_dir)
            for change in diff_snapshots(previous, current):
                yield change
            previous = current


Snapshot = dict[str, tuple[bool, int, int]]


def scan_tree(root: Path) -> Snapshot:
    """Map every path below *root* to ``(is_dir, mtime_ns, size)``."""
    snapshot: Snapshot = {}
    if not root.is_dir():
        return snapshot
    for dirpath, dirnames, filenames in os.walk(root):
        for name in dirnames:
            full = os.path.join(dirpath, name)
            snapshot[full] = (True, 0, 0)
        for name in filenames:
            full = os.path.join(dirpath, name)
            try:
                stat = os.stat(full)
            except OSError:
                continue
            snapshot[full] = (False, stat.st_mtime_ns, stat.st_size)
    return snapshot


def diff_snapshots(previous: Snapshot, current: Snapshot) -> list[FileChange]:
    """Return the changes that turn *previous* into *current*."""
    changes: list[FileChange] = []
    for path in sorted(current.keys() - previous.keys()):
        is_dir = current[path][0]
        kind = ChangeKind.ADD_DIR if is_dir else ChangeKind.ADD
        changes.append(FileChange(path=path, kind=kind))
    for path in sorted(previous.keys() & current.keys()):
        if previous[path] != current[path] and not current[path][0]:
            changes.append(FileChange(path=path, kind=ChangeKind.CHANGE))
    for path in sorted(previous.keys() - current.keys()):
        is_dir = previous[path][0]
        kind = ChangeKind.UNLINK_DIR if is_dir else ChangeKind.UNLINK
        changes.append(FileChange(path=path, kind=kind))
    return changes


# ---------------------------------------------------------------------------
# Adapter
# ---------------------------------------------------------------------------


class WatchRegistration:
    """One active watch of a project's document directory."""

    def __init__(self, project_path: str, document_root: Path) -> None:
        self.project_path = project_path
        self.document_root = document_root
        self.task: asyncio.Task | None = None
        self.started_at = _utcnow()
        self.events_seen = 0
        self.deliveries: set[asyncio.Task] = set()

    @property
    def is_active(self) -> bool:
        return self.task is not None and not self.task.done()

    def track(self, task: asyncio.Task) -> None:
        """Remember a debounced delivery until it completes."""
        self.deliveries.add(task)
        task.add_done_callback(self.deliveries.discard)

    async def stop(self) -> None:
        """Cancel the consumer and every delivery still in flight.

        No change handler runs for this registration once ``stop()``
        returns.
        """
        tasks = [t for t in (self.task, *self.deliveries) if t is not None]
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)


class ChangeWatcherAdapter:
    """Turn a ``WatchSource`` stream into classified per-project changes.

    Args:
        source: Where raw changes come from.
        document_dir: Name of the per-project document directory.
        debounce_ms: Quiet period per path before a change is delivered.
            ``0`` delivers every change immediately.
        ignore_patterns: ``fnmatch`` patterns matched against every path
            component below the document root.
    """

    def __init__(
        self,
        source: WatchSource,
        document_dir: str = ".ai-project",
        debounce_ms: int = DEFAULT_DEBOUNCE_MS,
        ignore_patterns: tuple[str, ...] = DEFAULT_IGNORE_PATTERNS,
    ) -> None:
        self.source = source
        self.document_dir = document_dir
        self.debounce_ms = debounce_ms
        self.ignore_patterns = ignore_patterns

    # ------------------------------------------------------------------
    # Document root resolution
    # ------------------------------------------------------------------

    def resolve_document_root(self, project_path: str | Path) -> Path:
        """Locate the directory holding a project's documents.

        Search order:
            1. The project directory itself, when it holds ``config.json``.
            2. ``<project>/<document_dir>``.
            3. ``<project>/.kiro/specs/ai-project-manager``.

        Raises:
            ProjectNotFoundError: If none of them exists.
        """
        project = Path(project_path)
        if file_exists(project / "config.json"):
            return project

        documents = project / self.document_dir
        if directory_exists(documents):
            return documents

        kiro = project / ".kiro" / "specs" / "ai-project-manager"
        if directory_exists(kiro):
            return kiro

        raise ProjectNotFoundError(
            str(project), [str(documents), str(kiro)]
        )

    # ------------------------------------------------------------------
    # Classification
    # ------------------------------------------------------------------

    def is_ignored(self, relative_path: str) -> bool:
        """Return True if any component of *relative_path* is ignored."""
        for part in PurePosixPath(relative_path).parts:
            for pattern in self.ignore_patterns:
                if fnmatch.fnmatch(part, pattern):
                    return True
        return False

    def classify(
        self,
        project_path: str,
        document_root: Path,
        change: FileChange,
    ) -> ClassifiedChange | None:
        """Attribute *change* to a document kind.

        Returns:
            The classified change, or ``None`` if the path is ignored or lies
            outside *document_root*.
        """
        path = Path(change.path)
        try:
            relative = path.relative_to(document_root).as_posix()
        except ValueError:
            return None
        if relative == "." or self.is_ignored(relative):
            return None

        parts = PurePosixPath(relative).parts
        if parts[0] == "context" and len(parts) > 1:
            document_kind: DocumentKind | None = DocumentKind.CONTEXT
        else:
            document_kind = _FILE_KINDS.get(path.name)

        return ClassifiedChange(
            project_path=project_path,
            path=str(path),
            relative_path=relative,
            file_name=path.name,
            kind=change.kind,
            document_kind=document_kind,
        )

    # ------------------------------------------------------------------
    # Watching
    # ------------------------------------------------------------------

    async def watch_project(
        self,
        project_path: str,
        on_change: ChangeHandler,
        on_error: ErrorHandler | None = None,
    ) -> WatchRegistration:
        """Start delivering classified changes for *project_path*.

        Every call creates a new registration; callers that want a single
        watch per project must track registrations themselves.

        Raises:
            ProjectNotFoundError: If the document root cannot be located.
        """
        document_root = await run_sync(
            self.resolve_document_root, project_path
        )
        registration = WatchRegistration(project_path, document_root)
        stream = self.source.subscribe(document_root)
        registration.task = asyncio.create_task(
            self._consume(registration, stream, on_change, on_error),
            name=f"docsync-watch:{project_path}",
        )
        # The consumer must reach its first await before stop() can close
        # the stream
        await asyncio.sleep(0)
        logger.info(
            "Started watching %s (documents in %s)",
            project_path,
            document_root,
        )
        return registration

    async def _consume(
        self,
        registration: WatchRegistration,
        stream: AsyncIterator[FileChange],
        on_change: ChangeHandler,
        on_error: ErrorHandler | None,
    ) -> None:
        project_path = registration.project_path
        pending: dict[str, asyncio.Task] = {}
        try:
            async for change in stream:
                classified = self.classify(
                    project_path, registration.document_root, change
                )
                if classified is None:
                    continue
                registration.events_seen += 1
                logger.debug(
                    "File %s: %s in project %s",
                    classified.kind.value,
                    classified.relative_path,
                    project_path,
                )
                if self.debounce_ms <= 0:
                    await self._dispatch(classified, on_change, on_error)
                    continue
                previous = pending.pop(classified.path, None)
                if previous is not None:
                    previous.cancel()
                delivery = asyncio.create_task(
                    self._deliver_later(
                        classified, on_change, on_error, pending
                    )
                )
                pending[classified.path] = delivery
                registration.track(delivery)
        except asyncio.CancelledError:
            raise
        except Exception as exc:
            logger.error(
                "Watcher error for project %s: %s", project_path, exc
            )
            if on_error is not None:
                await on_error(project_path, exc)
        finally:
            for task in pending.values():
                task.cancel()
            aclose = getattr(stream, "aclose", None)
            if aclose is not None:
                await aclose()

    async def _deliver_later(
        self,
        change: ClassifiedChange,
        on_change: ChangeHandler,
        on_error: ErrorHandler | None,
        pending: dict[str, asyncio.Task],
    ) -> None:
        await asyncio.sleep(self.debounce_ms / 1000)
        pending.pop(change.path, None)
        await self._dispatch(change, on_change, on_error)

    async def _dispatch(
        self,
        change: ClassifiedChange,
        on_change: ChangeHandler,
        on_error: ErrorHandler | None,
    ) -> None:
        try:
            await on_change(change)
        except Exception as exc:
            logger.exception(
                "Change handler failed for %s", change.relative_path
            )
            if on_error is not None:
                await on_error(change.project_path, exc)
