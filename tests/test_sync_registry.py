"""Tests for sync/registry.py: conflict detection and resolution."""

import re
import threading
from datetime import datetime, timedelta, timezone
from pathlib import Path
from unittest.mock import patch

import pytest

from docsync.errors import (
    BackupError,
    ConflictNotFoundError,
    InvalidStrategyError,
    MergeUnresolvedError,
    ResolutionInProgressError,
)
from docsync.sync.backup import ProjectBackups
from docsync.sync.models import ConflictType, ResolutionStrategy
from docsync.sync.registry import (
    ConflictRegistry,
    extract_project_path,
    generate_conflict_id,
)

EARLIER = timedelta(minutes=1)


@pytest.fixture
def tasks(project):
    return project / ".ai-project" / "tasks.md"


def _stale(registry, path, local="local edit\n"):
    """Detect a conflict for *path* as seen one minute ago."""
    seen = datetime.now(timezone.utc) - EARLIER
    return registry.detect_conflict(path, local, seen)


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


class TestHelpers:
    def test_conflict_id_format(self):
        conflict_id = generate_conflict_id("/p/.ai-project/tasks.md")

        assert re.fullmatch(r"conflict_\d+_[0-9a-f]{8}", conflict_id)

    def test_conflict_id_digest_depends_on_path(self):
        a = generate_conflict_id("/a").rsplit("_", 1)[1]
        b = generate_conflict_id("/b").rsplit("_", 1)[1]

        assert a != b

    def test_extract_project_path(self):
        assert (
            extract_project_path("/work/p/.ai-project/context/a.md")
            == "/work/p"
        )

    def test_extract_project_path_outside_document_dir(self):
        assert extract_project_path("/work/p/notes.md") == "/work/p"


# ---------------------------------------------------------------------------
# Detection
# ---------------------------------------------------------------------------


class TestDetectConflict:
    """Tests for ConflictRegistry.detect_conflict()."""

    def test_missing_file_is_no_conflict(self, registry, project):
        path = project / ".ai-project" / "new.md"

        assert _stale(registry, path) is None
        assert registry.list_open_conflicts() == []

    def test_without_timestamp_is_no_conflict(self, registry, tasks):
        assert registry.detect_conflict(tasks, "x") is None

    def test_unchanged_since_seen_is_no_conflict(self, registry, tasks):
        seen = datetime.now(timezone.utc) + EARLIER

        assert registry.detect_conflict(tasks, "x", seen) is None

    def test_newer_file_creates_conflict(
        self, registry, tasks, project, recorder
    ):
        conflict = _stale(registry, tasks)

        assert conflict is not None
        assert conflict.file_path == str(tasks)
        assert conflict.project_path == str(project)
        assert conflict.relative_path == "tasks.md"
        assert conflict.local_content == "local edit\n"
        assert conflict.remote_content == tasks.read_text()
        assert conflict.base_content is None
        assert conflict.conflict_type is ConflictType.SIMULTANEOUS_EDIT
        assert recorder.of_type("conflict-detected")[0].conflict == conflict

    def test_naive_timestamp_treated_as_utc(self, registry, tasks):
        seen = datetime.now(timezone.utc).replace(tzinfo=None) - EARLIER

        assert registry.detect_conflict(tasks, "x", seen) is not None

    def test_base_content_from_latest_backup(
        self, registry, backup_store, tasks
    ):
        backup_store.create_backup(tasks)
        base = tasks.read_text()
        tasks.write_text("remote edit\n")

        conflict = _stale(registry, tasks)

        assert conflict.base_content == base

    def test_second_detection_replaces_first(self, registry, tasks):
        first = _stale(registry, tasks, "first")
        second = _stale(registry, tasks, "second")

        open_conflicts = registry.list_open_conflicts()
        assert len(open_conflicts) == 1
        assert registry.get_conflict_for_path(tasks).local_content == (
            "second"
        )
        if first.id != second.id:
            assert registry.get_conflict(first.id) is None

    def test_read_error_is_logged_not_raised(self, registry, tasks):
        with patch(
            "docsync.sync.registry.read_text",
            side_effect=PermissionError("denied"),
        ):
            assert _stale(registry, tasks) is None


# ---------------------------------------------------------------------------
# Resolution
# ---------------------------------------------------------------------------


class TestResolveConflict:
    """Tests for ConflictRegistry.resolve_conflict()."""

    def test_local_strategy_writes_local(
        self, registry, backup_store, tasks, recorder
    ):
        remote = tasks.read_text()
        conflict = _stale(registry, tasks)

        resolution = registry.resolve_conflict(conflict.id, "local")

        assert tasks.read_text() == "local edit\n"
        assert resolution.resolution is ResolutionStrategy.LOCAL
        assert resolution.resolved_content == "local edit\n"
        assert resolution.resolved_by == "user"
        assert registry.get_conflict(conflict.id) is None
        assert backup_store.latest_backup_content(tasks) == remote
        resolved = recorder.of_type("conflict-resolved")
        assert resolved[0].resolution == resolution
        assert resolved[0].file_path == str(tasks)

    def test_remote_strategy_keeps_disk_content(self, registry, tasks):
        remote = tasks.read_text()
        conflict = _stale(registry, tasks)

        registry.resolve_conflict(
            conflict.id, ResolutionStrategy.REMOTE, resolved_by="alice"
        )

        assert tasks.read_text() == remote

    def test_manual_strategy(self, registry, tasks):
        conflict = _stale(registry, tasks)

        registry.resolve_conflict(conflict.id, "manual", "hand merged\n")

        assert tasks.read_text() == "hand merged\n"

    def test_manual_without_content_fails_and_stays_open(
        self, registry, tasks, recorder
    ):
        conflict = _stale(registry, tasks)

        with pytest.raises(InvalidStrategyError):
            registry.resolve_conflict(conflict.id, "manual")

        assert registry.get_conflict(conflict.id) == conflict
        failed = recorder.of_type("conflict-resolution-error")
        assert failed[0].conflict_id == conflict.id

    def test_unknown_strategy_rejected_before_backup(
        self, registry, backup_store, tasks
    ):
        conflict = _stale(registry, tasks)

        with pytest.raises(InvalidStrategyError, match="octopus"):
            registry.resolve_conflict(conflict.id, "octopus")

        assert backup_store.list_backups(tasks) == []

    def test_merge_strategy_with_base(self, registry, backup_store, tasks):
        tasks.write_text("a\nb\nc")
        backup_store.create_backup(tasks)
        tasks.write_text("a\nb\nC")
        conflict = _stale(registry, tasks, "A\nb\nc")

        registry.resolve_conflict(conflict.id, "merge")

        assert tasks.read_text() == "A\nb\nC"

    def test_unresolved_merge_never_writes(self, registry, tasks, recorder):
        remote = tasks.read_text()
        conflict = _stale(registry, tasks, "completely different")

        with pytest.raises(MergeUnresolvedError) as exc_info:
            registry.resolve_conflict(conflict.id, "merge")

        assert exc_info.value.unresolved > 0
        assert "Automatic merge failed" in str(exc_info.value)
        assert tasks.read_text() == remote
        assert registry.get_conflict(conflict.id) is not None
        assert recorder.types[-1] == "conflict-resolution-error"

    def test_unknown_conflict_id(self, registry, recorder):
        with pytest.raises(ConflictNotFoundError, match="conflict_0_x"):
            registry.resolve_conflict("conflict_0_x", "local")

        assert recorder.events == []

    def test_resolving_twice_fails(self, registry, tasks):
        conflict = _stale(registry, tasks)
        registry.resolve_conflict(conflict.id, "local")

        with pytest.raises(ConflictNotFoundError):
            registry.resolve_conflict(conflict.id, "local")

    def test_backup_failure_aborts(self, registry, backup_store, tasks):
        remote = tasks.read_text()
        conflict = _stale(registry, tasks)

        with patch.object(
            backup_store,
            "create_backup",
            side_effect=BackupError("Failed to create backup: disk full"),
        ):
            with pytest.raises(BackupError):
                registry.resolve_conflict(conflict.id, "local")

        assert tasks.read_text() == remote
        assert registry.get_conflict(conflict.id) is not None

    def test_resolution_in_progress_is_reported(
        self, registry, backup_store, tasks, recorder
    ):
        conflict = _stale(registry, tasks)
        create_backup = backup_store.create_backup
        rejected = []

        def _reenter(path):
            with pytest.raises(ResolutionInProgressError) as exc_info:
                registry.resolve_conflict(conflict.id, "remote")
            rejected.append(exc_info.value.conflict_id)
            return create_backup(path)

        with patch.object(
            backup_store, "create_backup", side_effect=_reenter
        ):
            registry.resolve_conflict(conflict.id, "local")

        assert rejected == [conflict.id]
        assert "conflict-resolution-error" not in recorder.types
        assert tasks.read_text() == "local edit\n"

    def test_concurrent_resolution_only_one_wins(self, registry, tasks):
        conflict = _stale(registry, tasks)
        outcomes = []

        def _resolve(strategy):
            try:
                registry.resolve_conflict(conflict.id, strategy, "m\n")
                outcomes.append("ok")
            except (ConflictNotFoundError, ResolutionInProgressError):
                outcomes.append("rejected")

        threads = [
            threading.Thread(target=_resolve, args=("manual",))
            for _ in range(4)
        ]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        assert outcomes.count("ok") == 1
        assert outcomes.count("rejected") == 3

    def test_clear_all(self, registry, project, recorder):
        docs = project / ".ai-project"
        _stale(registry, docs / "tasks.md")
        _stale(registry, docs / "design.md")

        assert registry.clear_all() == 2
        assert registry.list_open_conflicts() == []
        assert recorder.of_type("conflicts-cleared")[0].count == 2


class TestDocumentDir:
    def test_custom_document_dir(self, tmp_path, backup_store):
        path = tmp_path / "proj" / "docs" / "design.md"
        path.parent.mkdir(parents=True)
        path.write_text("# Design\n")
        registry = ConflictRegistry(backup_store, document_dir="docs")

        conflict = _stale(registry, path)

        assert conflict.project_path == str(tmp_path / "proj")
        assert conflict.relative_path == "design.md"
        assert Path(conflict.file_path) == path


class TestProjectBackups:
    """Each project keeps its own backups when the registry syncs many."""

    @pytest.fixture
    def two_projects(self, tmp_path):
        paths = []
        for name in ("alpha", "beta"):
            docs = tmp_path / name / ".ai-project"
            docs.mkdir(parents=True)
            (docs / "tasks.md").write_text(f"{name} tasks\n")
            paths.append(docs / "tasks.md")
        return paths

    def test_base_content_never_crosses_projects(self, two_projects, bus):
        alpha, beta = two_projects
        backups = ProjectBackups(max_backups=2, bus=bus)
        registry = ConflictRegistry(backups, bus=bus)

        registry.backup_store_for(beta).create_backup(beta)
        alpha.write_text("alpha secret\n")
        alpha_store = registry.backup_store_for(alpha)
        alpha_store.create_backup(alpha)
        alpha_store.create_backup(alpha)
        beta.write_text("beta remote\n")

        conflict = _stale(registry, beta)

        assert conflict.base_content == "beta tasks\n"
        beta_store = registry.backup_store_for(beta)
        assert beta_store is not alpha_store
        assert beta_store.backup_dir == beta.parent / "backups"
        assert len(beta_store.list_backups(beta)) == 1
        assert backups.projects == sorted(
            [str(alpha.parent.parent), str(beta.parent.parent)]
        )

    def test_resolution_backs_up_into_owning_project(
        self, two_projects, bus
    ):
        alpha, beta = two_projects
        registry = ConflictRegistry(ProjectBackups(bus=bus), bus=bus)

        conflict = _stale(registry, beta)
        registry.resolve_conflict(conflict.id, "local")

        assert not (alpha.parent / "backups").exists()
        (backup,) = (beta.parent / "backups").iterdir()
        assert backup.read_text() == "beta tasks\n"

    def test_shared_root_gets_one_directory_per_project(
        self, two_projects, tmp_path, bus
    ):
        alpha, beta = two_projects
        backups = ProjectBackups(bus=bus, backup_root=tmp_path / "bk")

        a = backups.store_for(alpha.parent.parent).backup_dir
        b = backups.store_for(beta.parent.parent).backup_dir

        assert a.parent == b.parent == tmp_path / "bk"
        assert a != b
        assert a.name.startswith("alpha-")
