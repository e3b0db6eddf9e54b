"""
Exceptions raised by the docsync engine.

Resolution-time failures are raised to the direct caller (and mirrored on the
event channel by the service that raised them).  Detection-time failures are
reported through ``sync-error`` events instead and never reach a watcher loop.
"""


class DocSyncError(Exception):
    """Base class for all docsync errors."""


class ConflictNotFoundError(DocSyncError, LookupError):
    """Raised when a conflict id is not in the open set."""

    def __init__(self, conflict_id: str):
        super().__init__(f"Conflict not found: {conflict_id}")
        self.conflict_id = conflict_id


class ResolutionInProgressError(DocSyncError):
    """Raised when a conflict is already being resolved by another caller."""

    def __init__(self, conflict_id: str):
        super().__init__(f"Conflict {conflict_id} is already being resolved")
        self.conflict_id = conflict_id


class BackupNotFoundError(DocSyncError, LookupError):
    """Raised when a backup path does not exist."""

    def __init__(self, backup_path: str):
        super().__init__(f"Backup not found: {backup_path}")
        self.backup_path = backup_path


class BackupError(DocSyncError, OSError):
    """
    Raised when a backup could not be created or restored.

    A failed backup is always fatal to the resolution that requested it:
    the engine never overwrites a file without a safety copy.
    """

    def __init__(self, message: str, file_path: str | None = None):
        super().__init__(message)
        self.file_path = file_path


class MergeUnresolvedError(DocSyncError):
    """
    Raised when a ``merge`` resolution produced line-level conflicts.

    Args:
        conflict_id: The conflict that could not be merged.
        unresolved: Number of unresolved line conflicts.
        warnings: Warnings reported by the merge.
    """

    def __init__(
        self,
        conflict_id: str,
        unresolved: int,
        warnings: list[str] | None = None,
    ):
        self.conflict_id = conflict_id
        self.unresolved = unresolved
        self.warnings = list(warnings or [])
        detail = ", ".join(self.warnings) or f"{unresolved} unresolved"
        super().__init__(f"Automatic merge failed: {detail}")


class InvalidStrategyError(DocSyncError, ValueError):
    """Raised for an unsupported resolution strategy or missing manual content."""


class ProjectNotFoundError(DocSyncError):
    """Raised when no document directory can be located for a project."""

    def __init__(self, project_path: str, checked: list[str]):
        self.project_path = project_path
        self.checked = checked
        listing = "\n".join(f"- {p}" for p in checked)
        super().__init__(
            f"Project directory not found. Checked:\n{listing}"
        )


class SyncNotActiveError(DocSyncError):
    """Raised when an operation requires an actively synchronized project."""

    def __init__(self, project_path: str):
        super().__init__(
            f"Project {project_path} is not being synchronized"
        )
        self.project_path = project_path
