"""Three-way and two-way merge utilities for conflict resolution.

The default merge is a **lockstep line walk**: base, local and remote are
split into lines and compared position by position.  It is not a
longest-common-subsequence diff, so inserted, deleted or reordered lines
report more conflicts than a diff-based merge would.  That behaviour is
kept for compatibility with documents already merged this way.

A diff-based three-way merge through the ``merge3`` library (the algorithm
used by Bazaar/Breezy) is available with ``algorithm="diff3"``.  It is
never selected implicitly.

Key design choices:

* Conflict markers follow Git convention with custom labels:
  ``<<<<<<< LOCAL``, ``=======``, ``>>>>>>> REMOTE``.
* An unsuccessful merge still returns a complete text artifact (with
  markers) so it can be inspected, but ``success`` is ``False`` and callers
  must not commit it as resolved.
* ``generate_diff`` is a thin wrapper around ``difflib.unified_diff`` for
  conflict review.
"""

from __future__ import annotations

import difflib
from typing import Literal

from merge3 import Merge3

from .models import FileConflict, LineConflict, MergeResult

START_MARKER = "<<<<<<< LOCAL"
MID_MARKER = "======="
END_MARKER = ">>>>>>> REMOTE"

MergeAlgorithm = Literal["lockstep", "diff3"]


def _marker_block(local_line: str, remote_line: str) -> list[str]:
    return [START_MARKER, local_line, MID_MARKER, remote_line, END_MARKER]


def _line_at(lines: list[str], index: int) -> str | None:
    return lines[index] if index < len(lines) else None


def three_way_merge(
    base_content: str,
    local_content: str,
    remote_content: str,
) -> MergeResult:
    """Merge local and remote changes against a common base, line by line.

    At each position: lines that agree are kept; if one side still equals
    the base the other side's line wins; otherwise the position is a
    conflict and a marker block is emitted.  A side that has run out of
    lines contributes an absent line, so a deletion at the end of one side
    merges cleanly when the other side left those lines untouched.

    Args:
        base_content: The common ancestor content.
        local_content: The content the caller wants to write.
        remote_content: The content currently on disk.

    Returns:
        A ``MergeResult``; conflict line numbers refer to the merged output.
    """
    base_lines = base_content.split("\n")
    local_lines = local_content.split("\n")
    remote_lines = remote_content.split("\n")

    merged: list[str] = []
    conflicts: list[LineConflict] = []

    # Positions past the end of both local and remote are deletions on
    # both sides and produce nothing.
    length = max(len(local_lines), len(remote_lines))
    for index in range(length):
        local_line = _line_at(local_lines, index)
        remote_line = _line_at(remote_lines, index)
        base_line = _line_at(base_lines, index)

        if local_line == remote_line:
            chosen = local_line
        elif local_line == base_line:
            chosen = remote_line
        elif remote_line == base_line:
            chosen = local_line
        else:
            conflicts.append(
                LineConflict(
                    line_number=len(merged) + 1,
                    local_content=local_line or "",
                    remote_content=remote_line or "",
                    base_content=base_line or "",
                )
            )
            merged.extend(_marker_block(local_line or "", remote_line or ""))
            continue

        if chosen is not None:
            merged.append(chosen)

    warnings = []
    if conflicts:
        warnings.append(
            f"{len(conflicts)} conflicts detected that require manual resolution"
        )

    return MergeResult(
        success=not conflicts,
        merged_content="\n".join(merged),
        conflicts=conflicts,
        warnings=warnings,
    )


def two_way_merge(local_content: str, remote_content: str) -> MergeResult:
    """Merge without a common ancestor.

    The shorter side is padded with empty lines and every differing
    position is a conflict.

    Args:
        local_content: The content the caller wants to write.
        remote_content: The content currently on disk.

    Returns:
        A ``MergeResult``; conflict line numbers are input positions.
    """
    local_lines = local_content.split("\n")
    remote_lines = remote_content.split("\n")
    length = max(len(local_lines), len(remote_lines))
    local_lines += [""] * (length - len(local_lines))
    remote_lines += [""] * (length - len(remote_lines))

    merged: list[str] = []
    conflicts: list[LineConflict] = []

    for index, (local_line, remote_line) in enumerate(
        zip(local_lines, remote_lines)
    ):
        if local_line == remote_line:
            merged.append(local_line)
            continue
        conflicts.append(
            LineConflict(
                line_number=index + 1,
                local_content=local_line,
                remote_content=remote_line,
            )
        )
        merged.extend(_marker_block(local_line, remote_line))

    warnings = []
    if conflicts:
        warnings.append(
            f"{len(conflicts)} conflicts require manual resolution"
        )

    return MergeResult(
        success=not conflicts,
        merged_content="\n".join(merged),
        conflicts=conflicts,
        warnings=warnings,
    )


def diff3_merge(
    base_content: str,
    local_content: str,
    remote_content: str,
) -> MergeResult:
    """Diff-based three-way merge via ``merge3``.

    Unlike the lockstep walk, inserted and deleted lines are aligned before
    comparison.  Line numbers of conflicts refer to the start marker in the
    merged output.
    """
    m3 = Merge3(
        base_content.splitlines(True),
        local_content.splitlines(True),
        remote_content.splitlines(True),
    )

    merged_lines: list[str] = []
    conflicts: list[LineConflict] = []
    for group in m3.merge_groups():
        kind = group[0]
        if kind == "conflict":
            _, base_part, local_part, remote_part = group
            local_text = "".join(local_part)
            remote_text = "".join(remote_part)
            conflicts.append(
                LineConflict(
                    line_number=len(merged_lines) + 1,
                    local_content=local_text.rstrip("\n"),
                    remote_content=remote_text.rstrip("\n"),
                    base_content="".join(base_part).rstrip("\n"),
                )
            )
            merged_lines.append(START_MARKER + "\n")
            merged_lines.extend(_terminated(local_part))
            merged_lines.append(MID_MARKER + "\n")
            merged_lines.extend(_terminated(remote_part))
            merged_lines.append(END_MARKER + "\n")
        else:
            merged_lines.extend(group[1])

    warnings = []
    if conflicts:
        warnings.append(
            f"{len(conflicts)} conflicts detected that require manual resolution"
        )
    return MergeResult(
        success=not conflicts,
        merged_content="".join(merged_lines),
        conflicts=conflicts,
        warnings=warnings,
    )


def _terminated(lines: list[str]) -> list[str]:
    """Ensure every line ends with a newline so markers stay on their own line."""
    return [line if line.endswith("\n") else line + "\n" for line in lines]


def merge_conflict(
    conflict: FileConflict, algorithm: MergeAlgorithm = "lockstep"
) -> MergeResult:
    """Merge the two sides of *conflict*.

    Uses a three-way merge when the conflict carries base content and falls
    back to a two-way merge otherwise.

    Args:
        conflict: The open conflict.
        algorithm: ``"lockstep"`` (default) or ``"diff3"``.

    Raises:
        ValueError: If the algorithm is not recognised.
    """
    if algorithm not in ("lockstep", "diff3"):
        raise ValueError(
            f"Unknown merge algorithm: '{algorithm}'. Valid algorithms: ['diff3', 'lockstep']"
        )

    if conflict.base_content is None:
        result = two_way_merge(
            conflict.local_content, conflict.remote_content
        )
        if result.success:
            return result
        return result.model_copy(
            update={
                "warnings": [
                    "No base content available; used two-way merge",
                    *result.warnings,
                ]
            }
        )

    if algorithm == "diff3":
        return diff3_merge(
            conflict.base_content,
            conflict.local_content,
            conflict.remote_content,
        )
    return three_way_merge(
        conflict.base_content,
        conflict.local_content,
        conflict.remote_content,
    )


def generate_diff(
    old_content: str,
    new_content: str,
    label_old: str = "old",
    label_new: str = "new",
) -> str:
    """Generate a unified diff between two strings.

    Args:
        old_content: The original content.
        new_content: The modified content.
        label_old: Label for the old file in the diff header.
        label_new: Label for the new file in the diff header.

    Returns:
        A unified diff string.  Empty string if the contents are identical.
    """
    old_lines = old_content.splitlines(True)
    new_lines = new_content.splitlines(True)

    diff_lines = difflib.unified_diff(
        old_lines,
        new_lines,
        fromfile=label_old,
        tofile=label_new,
    )

    return "".join(diff_lines)
