"""Task progress recomputation from ``tasks.md`` checkboxes."""

from __future__ import annotations

import json
import re
from datetime import datetime, timezone
from typing import Any

from pydantic import BaseModel

# Markdown task checkboxes: "- [ ]" or "- [x]" (any indentation).
_TASK_PATTERN = re.compile(r"^\s*-\s*\[([xX ])\]", re.MULTILINE)


class TaskCounts(BaseModel):
    total: int
    completed: int

    model_config = {"frozen": True}


class ProgressSnapshot(BaseModel):
    """Recomputed progress for one project.

    ``extra`` holds any other fields found in an existing ``progress.json``
    so they survive persistence.
    """

    total_tasks: int
    completed_tasks: int
    percentage: int
    last_updated: datetime
    recent_activity: list[dict[str, Any]] = []
    extra: dict[str, Any] = {}

    model_config = {"frozen": True}

    def to_document(self) -> dict[str, Any]:
        """Return the ``progress.json`` representation."""
        document = dict(self.extra)
        document.update(
            {
                "totalTasks": self.total_tasks,
                "completedTasks": self.completed_tasks,
                "percentage": self.percentage,
                "lastUpdated": self.last_updated.isoformat(),
                "recentActivity": self.recent_activity,
            }
        )
        return document


def parse_task_progress(tasks_content: str) -> TaskCounts:
    """Count task checkboxes and completed ones in *tasks_content*."""
    marks = _TASK_PATTERN.findall(tasks_content)
    completed = sum(1 for mark in marks if mark.lower() == "x")
    return TaskCounts(total=len(marks), completed=completed)


def compute_percentage(completed: int, total: int) -> int:
    """Return the rounded completion percentage (0 when there are no tasks)."""
    if total <= 0:
        return 0
    # Round half up.
    return int(completed * 100 / total + 0.5)


def recompute_progress(
    tasks_content: str, progress_content: str | None = None
) -> ProgressSnapshot:
    """Recalculate totals from *tasks_content*.

    Args:
        tasks_content: Current ``tasks.md`` text.
        progress_content: Current ``progress.json`` text, if the file exists.

    Returns:
        A ``ProgressSnapshot`` merged on top of the existing progress data.

    Raises:
        ValueError: If *progress_content* is not a JSON object.
    """
    existing: dict[str, Any] = {}
    if progress_content and progress_content.strip():
        existing = json.loads(progress_content)
        if not isinstance(existing, dict):
            raise ValueError("progress.json must contain a JSON object")

    counts = parse_task_progress(tasks_content)
    activity = existing.pop("recentActivity", [])
    for key in ("totalTasks", "completedTasks", "percentage", "lastUpdated"):
        existing.pop(key, None)

    return ProgressSnapshot(
        total_tasks=counts.total,
        completed_tasks=counts.completed,
        percentage=compute_percentage(counts.completed, counts.total),
        last_updated=datetime.now(timezone.utc),
        recent_activity=activity if isinstance(activity, list) else [],
        extra=existing,
    )
