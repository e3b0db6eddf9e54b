"""Shared pytest fixtures for docsync tests."""

import asyncio
import os
import time

import pytest

from docsync.sync.backup import BackupStore
from docsync.sync.events import EventBus
from docsync.sync.registry import ConflictRegistry


class EventRecorder:
    """Collect every event published on a bus."""

    def __init__(self):
        self.events = []

    def __call__(self, event):
        self.events.append(event)

    def of_type(self, event_type: str) -> list:
        return [e for e in self.events if e.type == event_type]

    @property
    def types(self) -> list[str]:
        return [e.type for e in self.events]


def bump_mtime(path, seconds: float = 5.0) -> None:
    """Push the modification time of *path* into the future."""
    future = time.time() + seconds
    os.utime(path, (future, future))


async def wait_until(predicate, timeout: float = 2.0) -> None:
    """Poll *predicate* until it is true or fail after *timeout* seconds."""
    deadline = asyncio.get_running_loop().time() + timeout
    while not predicate():
        if asyncio.get_running_loop().time() > deadline:
            raise AssertionError("condition not met before timeout")
        await asyncio.sleep(0.01)


@pytest.fixture
def bus():
    return EventBus()


@pytest.fixture
def recorder(bus):
    rec = EventRecorder()
    bus.subscribe(rec)
    return rec


@pytest.fixture
def project(tmp_path):
    """A project directory with a populated ``.ai-project`` folder."""
    root = tmp_path / "project"
    docs = root / ".ai-project"
    (docs / "context").mkdir(parents=True)
    (docs / "requirements.md").write_text("# Requirements\n\n- R1\n")
    (docs / "design.md").write_text("# Design\n")
    (docs / "tasks.md").write_text(
        "# Tasks\n\n- [x] one\n- [ ] two\n- [ ] three\n"
    )
    (docs / "config.json").write_text('{"name": "demo"}\n')
    return root


@pytest.fixture
def backup_store(tmp_path, bus):
    return BackupStore(tmp_path / "backups", max_backups=3, bus=bus)


@pytest.fixture
def registry(backup_store, bus):
    return ConflictRegistry(backup_store, bus=bus)
