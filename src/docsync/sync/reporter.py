"""Conflict and merge report formatting functions.

Provides human-readable and machine-readable views of open conflicts:

- ``format_conflict_summary`` -- one line per open conflict.
- ``format_conflict_diff`` -- unified diff for interactive conflict review.
- ``format_merge_result`` -- outcome of a merge attempt.
- ``conflict_to_json`` / ``merge_result_to_json`` -- structured dicts.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

from .merger import generate_diff

if TYPE_CHECKING:
    from .models import FileConflict, MergeResult

_PREVIEW_LINES = 20

# ------------------------------------------------------------------
# Human-readable output
# ------------------------------------------------------------------


def format_conflict_summary(conflicts: list[FileConflict]) -> str:
    """Format the open conflicts as a short list.

    Args:
        conflicts: Open conflicts, typically from
            ``ConflictRegistry.list_open_conflicts()``.

    Returns:
        Multi-line formatted string.
    """
    if not conflicts:
        return "No open conflicts."

    lines: list[str] = [f"{len(conflicts)} open conflict(s):"]
    for c in sorted(conflicts, key=lambda c: c.remote_timestamp):
        base = "base available" if c.base_content is not None else "no base"
        lines.append(
            f"  [{c.id}] {c.relative_path} ({c.project_path}): "
            f"{c.conflict_type.value}, {base}"
        )
    return "\n".join(lines)


def format_conflict_diff(
    conflict: FileConflict, merge: MergeResult | None = None
) -> str:
    """Format a single conflict for interactive review.

    Shows a unified diff between local and remote content, plus merge
    result information when available.

    Args:
        conflict: The conflict details.
        merge: Optional merge attempt for the conflict.

    Returns:
        Multi-line formatted string with diff and merge info.
    """
    lines: list[str] = []
    lines.append(f"Conflict {conflict.id}: {conflict.file_path}")
    lines.append(conflict.description)
    lines.append("")

    diff_text = generate_diff(
        conflict.local_content,
        conflict.remote_content,
        label_old=f"local: {conflict.relative_path}",
        label_new=f"remote: {conflict.relative_path}",
    )
    if diff_text:
        lines.append(diff_text.rstrip())
    else:
        lines.append("(no textual differences)")
    lines.append("")

    if merge is not None:
        lines.append(format_merge_result(merge))

    return "\n".join(lines).rstrip()


def format_merge_result(merge: MergeResult) -> str:
    """Describe a merge attempt with a preview of the merged content."""
    lines: list[str] = []
    if merge.success:
        lines.append("Merge succeeded.")
    else:
        lines.append(f"Merge left {len(merge.conflicts)} conflict(s):")
        for lc in merge.conflicts:
            lines.append(
                f"  line {lc.line_number}: "
                f"local={lc.local_content!r} remote={lc.remote_content!r}"
            )
    for warning in merge.warnings:
        lines.append(f"WARNING: {warning}")

    lines.append("--- Merge result preview ---")
    merged_lines = merge.merged_content.splitlines()
    for ml in merged_lines[:_PREVIEW_LINES]:
        lines.append(f"  {ml}")
    if len(merged_lines) > _PREVIEW_LINES:
        lines.append(
            f"  ... ({len(merged_lines) - _PREVIEW_LINES} more lines)"
        )

    if not merge.success:
        lines.append("WARNING: Merged content contains conflict markers.")

    return "\n".join(lines)


# ------------------------------------------------------------------
# JSON output
# ------------------------------------------------------------------


def conflict_to_json(conflict: FileConflict) -> dict:
    """Convert a conflict to a structured dict without the file contents.

    Args:
        conflict: The open conflict.

    Returns:
        Dict with ids, paths, timestamps and content sizes.
    """
    return {
        "id": conflict.id,
        "file_path": conflict.file_path,
        "project_path": conflict.project_path,
        "relative_path": conflict.relative_path,
        "conflict_type": conflict.conflict_type.value,
        "description": conflict.description,
        "local_timestamp": conflict.local_timestamp.isoformat(),
        "remote_timestamp": conflict.remote_timestamp.isoformat(),
        "has_base": conflict.base_content is not None,
        "local_size": len(conflict.local_content),
        "remote_size": len(conflict.remote_content),
    }


def merge_result_to_json(merge: MergeResult) -> dict:
    """Convert a merge result to a structured dict."""
    return {
        "success": merge.success,
        "merged_content": merge.merged_content,
        "conflicts": [
            {
                "line_number": lc.line_number,
                "local": lc.local_content,
                "remote": lc.remote_content,
                "base": lc.base_content,
            }
            for lc in merge.conflicts
        ],
        "warnings": list(merge.warnings),
    }
