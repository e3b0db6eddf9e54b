"""Tests for sync/progress.py: task counting and progress recomputation."""

import json

import pytest

from docsync.sync.progress import (
    compute_percentage,
    parse_task_progress,
    recompute_progress,
)


class TestParseTaskProgress:
    def test_counts_checkboxes(self):
        content = "# Tasks\n- [x] a\n- [ ] b\n  - [X] nested\n* [ ] star\n"

        counts = parse_task_progress(content)

        assert counts.total == 3
        assert counts.completed == 2

    def test_no_tasks(self):
        counts = parse_task_progress("# Nothing to do\n")

        assert counts.total == 0
        assert counts.completed == 0

    def test_checkbox_text_mid_line_is_not_a_task(self):
        counts = parse_task_progress("See - [x] in the docs\n")

        assert counts.total == 0


class TestComputePercentage:
    @pytest.mark.parametrize(
        "completed,total,expected",
        [
            (0, 0, 0),
            (1, 3, 33),
            (2, 3, 67),
            (1, 8, 13),
            (1, 200, 1),
            (4, 4, 100),
        ],
    )
    def test_rounding(self, completed, total, expected):
        assert compute_percentage(completed, total) == expected


class TestRecomputeProgress:
    def test_without_existing_progress(self):
        snapshot = recompute_progress("- [x] a\n- [ ] b\n")

        assert snapshot.total_tasks == 2
        assert snapshot.completed_tasks == 1
        assert snapshot.percentage == 50
        assert snapshot.recent_activity == []
        assert snapshot.extra == {}

    def test_keeps_existing_fields(self):
        existing = json.dumps(
            {
                "totalTasks": 99,
                "percentage": 12,
                "recentActivity": [{"task": "a"}],
                "milestone": "beta",
            }
        )

        snapshot = recompute_progress("- [x] a\n", existing)

        assert snapshot.total_tasks == 1
        assert snapshot.percentage == 100
        assert snapshot.recent_activity == [{"task": "a"}]
        assert snapshot.extra == {"milestone": "beta"}

    def test_to_document(self):
        snapshot = recompute_progress(
            "- [ ] a\n", json.dumps({"milestone": "beta"})
        )

        document = snapshot.to_document()

        assert document["totalTasks"] == 1
        assert document["completedTasks"] == 0
        assert document["percentage"] == 0
        assert document["recentActivity"] == []
        assert document["milestone"] == "beta"
        assert document["lastUpdated"] == snapshot.last_updated.isoformat()

    def test_blank_progress_file(self):
        snapshot = recompute_progress("- [x] a\n", "   \n")

        assert snapshot.extra == {}

    def test_non_object_progress_rejected(self):
        with pytest.raises(ValueError):
            recompute_progress("- [x] a\n", "[1, 2]")

    def test_invalid_json_rejected(self):
        with pytest.raises(ValueError):
            recompute_progress("- [x] a\n", "{broken")
