"""Document synchronization and conflict-resolution engine.

Guards the per-project documents (``requirements.md``, ``design.md``,
``tasks.md``, ``config.json``, ``progress.json`` and ``context/``) that are
edited both locally and by a remote source of truth.

Architecture
------------
Raw file-change signals flow from a ``WatchSource`` through the
``ChangeWatcherAdapter`` (classification, debounce) into the ``SyncBridge``
(document cache, typed events).  Outbound writes go through the
``ConflictRegistry``, which refuses to clobber a file that changed on disk
and keeps the disagreement open until it is resolved.  Every overwrite is
preceded by a checksummed backup from the owning project's ``BackupStore``.

Modules:

- ``models``     -- ``FileConflict``, ``ConflictResolution``, ``BackupInfo``,
  ``MergeResult`` and the enums they use.
- ``events``     -- ``SyncEvent`` tagged union and the ``EventBus``.
- ``backup``     -- ``BackupStore``: create, list and restore backups;
  ``ProjectBackups``: one store per project.
- ``merger``     -- Lockstep three-way/two-way merge, opt-in ``merge3``.
- ``registry``   -- ``ConflictRegistry``: detection and resolution.
- ``watcher``    -- ``ChangeWatcherAdapter`` and watch sources.
- ``bridge``     -- ``SyncBridge``: cache and event publication.
- ``progress``   -- Task checkbox counting and ``progress.json`` updates.
- ``integrity``  -- Structural checks on changed files.
- ``reporter``   -- Human-readable and JSON conflict reports.

Usage example
-------------
::

    from docsync.sync import (
        ChangeWatcherAdapter, ConflictRegistry, EventBus,
        PollingWatchSource, ProjectBackups, SyncBridge,
    )

    bus = EventBus()
    bus.subscribe(lambda event: print(event.type))

    backups = ProjectBackups(bus=bus)
    registry = ConflictRegistry(backups, bus=bus)
    adapter = ChangeWatcherAdapter(PollingWatchSource())
    bridge = SyncBridge(adapter, registry, bus=bus)

    await bridge.start_sync_for_project("/work/my-project")
    conflict = await bridge.write_document(
        "/work/my-project", "tasks", new_text, last_known_timestamp=seen_at
    )
    if conflict is not None:
        registry.resolve_conflict(conflict.id, "merge")
"""

from .backup import BackupStore, ProjectBackups
from .bridge import SyncBridge
from .events import EventBus, SyncErrorKind, SyncEvent
from .merger import merge_conflict, three_way_merge, two_way_merge
from .models import (
    BackupInfo,
    ConflictResolution,
    ConflictType,
    DocumentKind,
    FileConflict,
    MergeResult,
    ResolutionStrategy,
)
from .registry import ConflictRegistry
from .reporter import (
    conflict_to_json,
    format_conflict_diff,
    format_conflict_summary,
    merge_result_to_json,
)
from .watcher import (
    ChangeWatcherAdapter,
    PollingWatchSource,
    QueueWatchSource,
)

__all__ = [
    "BackupInfo",
    "BackupStore",
    "ChangeWatcherAdapter",
    "ConflictRegistry",
    "ConflictResolution",
    "ConflictType",
    "DocumentKind",
    "EventBus",
    "FileConflict",
    "MergeResult",
    "PollingWatchSource",
    "ProjectBackups",
    "QueueWatchSource",
    "ResolutionStrategy",
    "SyncBridge",
    "SyncErrorKind",
    "SyncEvent",
    "conflict_to_json",
    "format_conflict_diff",
    "format_conflict_summary",
    "merge_conflict",
    "merge_result_to_json",
    "three_way_merge",
    "two_way_merge",
]
