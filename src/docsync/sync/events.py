"""Typed synchronization events and the observer channel that delivers them.

Every notification the engine produces is one variant of the closed
``SyncEvent`` union, discriminated by its ``type`` field.  Consumers
subscribe to an ``EventBus`` and match on the variant class (or on
``event.type``) instead of listening to ad hoc named signals.

Delivery is synchronous fan-out.  A subscriber that raises is logged and
skipped: the engine never blocks on, or fails because of, a consumer.
"""

from __future__ import annotations

import logging
import threading
from datetime import datetime, timezone
from enum import Enum
from typing import Annotated, Any, Callable, Literal, Union

from pydantic import BaseModel, Field, TypeAdapter

from .models import (
    BackupInfo,
    ConflictResolution,
    DocumentKind,
    FileConflict,
)

logger = logging.getLogger(__name__)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class SyncErrorKind(str, Enum):
    """Stable error tags carried by ``sync-error`` events."""

    DOCUMENT_SYNC_ERROR = "DOCUMENT_SYNC_ERROR"
    PROGRESS_SYNC_ERROR = "PROGRESS_SYNC_ERROR"
    CONTEXT_SYNC_ERROR = "CONTEXT_SYNC_ERROR"
    SYNC_START_ERROR = "SYNC_START_ERROR"
    SYNC_CHECK_ERROR = "SYNC_CHECK_ERROR"
    WATCHER_ERROR = "WATCHER_ERROR"


class AssetAction(str, Enum):
    """What happened to a context asset."""

    ADDED = "added"
    MODIFIED = "modified"
    REMOVED = "removed"


class _Event(BaseModel):
    timestamp: datetime = Field(default_factory=_utcnow)

    model_config = {"frozen": True}


# ---------------------------------------------------------------------------
# Conflict registry / backup store events
# ---------------------------------------------------------------------------


class ConflictDetected(_Event):
    type: Literal["conflict-detected"] = "conflict-detected"
    conflict: FileConflict


class ConflictResolved(_Event):
    type: Literal["conflict-resolved"] = "conflict-resolved"
    resolution: ConflictResolution
    file_path: str


class ConflictResolutionFailed(_Event):
    type: Literal["conflict-resolution-error"] = "conflict-resolution-error"
    conflict_id: str
    error: str


class ConflictsCleared(_Event):
    type: Literal["conflicts-cleared"] = "conflicts-cleared"
    count: int


class BackupCreated(_Event):
    type: Literal["backup-created"] = "backup-created"
    backup: BackupInfo


class BackupFailed(_Event):
    type: Literal["backup-error"] = "backup-error"
    file_path: str
    error: str


class FileRestored(_Event):
    type: Literal["file-restored"] = "file-restored"
    backup_path: str
    target_path: str


class RestoreFailed(_Event):
    type: Literal["restore-error"] = "restore-error"
    backup_path: str
    error: str


# ---------------------------------------------------------------------------
# Sync bridge events
# ---------------------------------------------------------------------------


class DocumentUpdated(_Event):
    type: Literal["document-updated"] = "document-updated"
    project_path: str
    document_kind: DocumentKind
    content: str
    file_path: str


class ProgressUpdated(_Event):
    type: Literal["progress-updated"] = "progress-updated"
    project_path: str
    total_tasks: int
    completed_tasks: int
    percentage: int
    recent_activity: list[dict[str, Any]] = []


class ContextAssetUpdated(_Event):
    type: Literal["context-asset-updated"] = "context-asset-updated"
    project_path: str
    asset_name: str
    action: AssetAction
    file_path: str


class IntegrityWarning(_Event):
    type: Literal["integrity-warning"] = "integrity-warning"
    project_path: str
    file_path: str
    errors: list[str] = []
    warnings: list[str] = []


class SyncStarted(_Event):
    type: Literal["sync-started"] = "sync-started"
    project_path: str


class SyncStopped(_Event):
    type: Literal["sync-stopped"] = "sync-stopped"
    project_path: str


class SyncCheckCompleted(_Event):
    type: Literal["sync-check-completed"] = "sync-check-completed"
    project_path: str


class SyncError(_Event):
    type: Literal["sync-error"] = "sync-error"
    project_path: str
    kind: SyncErrorKind
    error: str


SyncEvent = Annotated[
    Union[
        ConflictDetected,
        ConflictResolved,
        ConflictResolutionFailed,
        ConflictsCleared,
        BackupCreated,
        BackupFailed,
        FileRestored,
        RestoreFailed,
        DocumentUpdated,
        ProgressUpdated,
        ContextAssetUpdated,
        IntegrityWarning,
        SyncStarted,
        SyncStopped,
        SyncCheckCompleted,
        SyncError,
    ],
    Field(discriminator="type"),
]

_event_adapter: TypeAdapter[SyncEvent] = TypeAdapter(SyncEvent)


def parse_event(data: dict[str, Any]) -> SyncEvent:
    """Rebuild a typed event from its serialized form."""
    return _event_adapter.validate_python(data)


def event_to_dict(event: SyncEvent) -> dict[str, Any]:
    """Serialize an event to a JSON-compatible dict."""
    return _event_adapter.dump_python(event, mode="json")


# ---------------------------------------------------------------------------
# Channel
# ---------------------------------------------------------------------------

EventHandler = Callable[[SyncEvent], None]


class EventBus:
    """Synchronous observer channel for ``SyncEvent`` values.

    Safe to publish from worker threads; handlers run on the publishing
    thread.
    """

    def __init__(self) -> None:
        self._handlers: list[EventHandler] = []
        self._lock = threading.Lock()

    def subscribe(self, handler: EventHandler) -> Callable[[], None]:
        """Register *handler* and return a callable that unsubscribes it."""
        with self._lock:
            self._handlers.append(handler)

        def _unsubscribe() -> None:
            self.unsubscribe(handler)

        return _unsubscribe

    def unsubscribe(self, handler: EventHandler) -> None:
        """Remove *handler*.  No-op if it is not registered."""
        with self._lock:
            if handler in self._handlers:
                self._handlers.remove(handler)

    def publish(self, event: SyncEvent) -> None:
        """Deliver *event* to every subscriber."""
        with self._lock:
            handlers = list(self._handlers)
        for handler in handlers:
            try:
                handler(event)
            except Exception:
                logger.exception(
                    "Event handler %r failed for %s", handler, event.type
                )

    @property
    def subscriber_count(self) -> int:
        return len(self._handlers)
