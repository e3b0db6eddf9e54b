"""Pydantic models for the document sync engine.

Defines the core data contracts used across all sync modules:

- ``ConflictType`` / ``ResolutionStrategy``: Enums tagging conflicts and
  the way they were closed.
- ``FileConflict``: One unresolved disagreement for a single file.
- ``ConflictResolution``: Record of how a conflict was closed.
- ``BackupInfo``: One point-in-time backup snapshot.
- ``LineConflict`` / ``MergeResult``: Output of the merge engine.
- ``DocumentKind`` / ``ChangeKind``: Classification of watched files and
  raw watcher signals.
- ``CachedDocument``: Entry of the sync bridge document cache.

All models are frozen (immutable) for safety.
"""

from __future__ import annotations

from datetime import datetime
from enum import Enum

from pydantic import BaseModel


class ConflictType(str, Enum):
    """Why a conflict was raised."""

    SIMULTANEOUS_EDIT = "simultaneous-edit"
    EXTERNAL_CHANGE = "external-change"
    VERSION_MISMATCH = "version-mismatch"


class ResolutionStrategy(str, Enum):
    """How a conflict is closed."""

    LOCAL = "local"
    REMOTE = "remote"
    MERGE = "merge"
    MANUAL = "manual"


class DocumentKind(str, Enum):
    """Well-known project documents tracked by the sync bridge."""

    REQUIREMENTS = "requirements"
    DESIGN = "design"
    TASKS = "tasks"
    CONFIG = "config"
    PROGRESS = "progress"
    CONTEXT = "context"

    @property
    def file_name(self) -> str | None:
        """File name of the document, ``None`` for context assets."""
        return DOCUMENT_FILES.get(self)


DOCUMENT_FILES: dict[DocumentKind, str] = {
    DocumentKind.REQUIREMENTS: "requirements.md",
    DocumentKind.DESIGN: "design.md",
    DocumentKind.TASKS: "tasks.md",
    DocumentKind.CONFIG: "config.json",
    DocumentKind.PROGRESS: "progress.json",
}

# Documents loaded into the cache and announced as ``document-updated``.
CACHED_DOCUMENTS: tuple[DocumentKind, ...] = (
    DocumentKind.REQUIREMENTS,
    DocumentKind.DESIGN,
    DocumentKind.TASKS,
    DocumentKind.CONFIG,
)


class ChangeKind(str, Enum):
    """Raw signal reported by a watch source."""

    ADD = "add"
    CHANGE = "change"
    UNLINK = "unlink"
    ADD_DIR = "addDir"
    UNLINK_DIR = "unlinkDir"


class FileConflict(BaseModel):
    """A detected disagreement between proposed content and the file on disk.

    Attributes:
        id: Opaque conflict identifier.
        file_path: Absolute path of the conflicting file.
        project_path: Owning project directory.
        relative_path: Path relative to the project's document root.
        local_content: Content the caller intended to write.
        remote_content: Content currently on disk.
        base_content: Last backup of the file, used for three-way merge.
        local_timestamp: When the local write was attempted.
        remote_timestamp: Modification time of the on-disk file.
        conflict_type: Conflict category.
        description: Human-readable description.
    """

    id: str
    file_path: str
    project_path: str
    relative_path: str
    local_content: str
    remote_content: str
    base_content: str | None = None
    local_timestamp: datetime
    remote_timestamp: datetime
    conflict_type: ConflictType
    description: str

    model_config = {"frozen": True}


class ConflictResolution(BaseModel):
    """How a ``FileConflict`` was closed.

    Attributes:
        conflict_id: Id of the resolved conflict.
        resolution: Strategy that produced the content.
        resolved_content: Content actually written to disk.
        resolved_by: Who resolved it.
        resolved_at: When it was resolved.
    """

    conflict_id: str
    resolution: ResolutionStrategy
    resolved_content: str
    resolved_by: str
    resolved_at: datetime

    model_config = {"frozen": True}


class BackupInfo(BaseModel):
    """One point-in-time backup of a file.

    Attributes:
        file_path: Original file path.
        backup_path: Where the backup copy lives.
        timestamp: Creation time (taken from the backup file name).
        checksum: SHA-256 hex digest of the backup bytes.
        size: Size in bytes.
    """

    file_path: str
    backup_path: str
    timestamp: datetime
    checksum: str
    size: int

    model_config = {"frozen": True}


class LineConflict(BaseModel):
    """A single unresolved line in a merge."""

    line_number: int
    local_content: str
    remote_content: str
    base_content: str | None = None

    model_config = {"frozen": True}


class MergeResult(BaseModel):
    """Result of a three-way or two-way merge.

    Attributes:
        success: True when no line conflicts remain.
        merged_content: Merged text, with conflict markers when unsuccessful.
        conflicts: Unresolved line conflicts in output order.
        warnings: Human-readable warnings.
    """

    success: bool
    merged_content: str
    conflicts: list[LineConflict] = []
    warnings: list[str] = []

    model_config = {"frozen": True}


class CachedDocument(BaseModel):
    """Sync bridge cache entry."""

    content: str
    refreshed_at: datetime

    model_config = {"frozen": True}
