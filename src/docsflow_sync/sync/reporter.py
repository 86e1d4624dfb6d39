"""Report formatting functions.

Provides human-readable and machine-readable output for sync and publish
operations:

- ``format_sync_report`` -- upstream sync summary.
- ``format_publish_result`` -- publish outcome.
- ``format_text_conflict`` / ``format_field_conflicts`` -- conflict review.
- ``report_to_json`` / ``publish_result_to_json`` -- structured dicts for
  API responses.
"""

from __future__ import annotations

import difflib
import json
from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from .models import FieldConflict, PublishResult, SyncReport, TextConflict

from .models import SyncAction

# ------------------------------------------------------------------
# Human-readable reports
# ------------------------------------------------------------------

_SECTIONS = [
    (SyncAction.CREATED, "Created"),
    (SyncAction.UPDATED, "Updated"),
    (SyncAction.REMOVED, "Removed"),
    (SyncAction.GHOSTED, "Kept as ghost (unpublished edits)"),
]


def format_sync_report(report: SyncReport) -> str:
    """Format an upstream sync report as human-readable text.

    Sections are only included when they contain at least one result.
    Skipped paths are summarised by count only.

    Args:
        report: The completed sync report.

    Returns:
        Multi-line formatted string.
    """
    lines: list[str] = []

    header = f"Sync report ({report.trigger})"
    if report.commit_id:
        header += f" at {report.commit_id[:7]}"
    lines.append(header)
    lines.append(f"Started: {report.started_at}")
    if report.completed_at:
        lines.append(f"Completed: {report.completed_at}")
    lines.append("")

    errors = report.errors
    lines.append(
        f"Processed {len(report.results)} files: "
        f"{len(report.by_action(SyncAction.CREATED))} created, "
        f"{len(report.by_action(SyncAction.UPDATED))} updated, "
        f"{len(report.by_action(SyncAction.REMOVED))} removed, "
        f"{len(report.by_action(SyncAction.GHOSTED))} ghosted, "
        f"{len(errors)} errors"
    )
    lines.append("")

    for action, title in _SECTIONS:
        results = report.by_action(action)
        if not results:
            continue
        lines.append(f"{title}:")
        for r in results:
            lines.append(f"  {r.path}")
        lines.append("")

    if errors:
        lines.append("Errors:")
        for r in errors:
            lines.append(f"  {r.path}: {r.error}")
        lines.append("")

    if report.trees:
        lines.append("Trees:")
        for t in report.trees:
            commit = t.commit_id[:7] if t.commit_id else "?"
            lines.append(
                f"  {t.path or '/'} @ {commit}: {t.entries} entries, "
                f"{len(t.ghosts)} ghosts"
            )
        lines.append("")

    skipped = len(report.by_action(SyncAction.SKIPPED))
    if skipped > 0:
        lines.append(f"Skipped: {skipped} files (unchanged)")
        lines.append("")

    if not report.bookmark_advanced and report.trigger == "push":
        lines.append("Bookmark not advanced; the next delivery retries.")

    return "\n".join(lines).rstrip()


def format_publish_result(result: PublishResult) -> str:
    """Format a publish outcome as human-readable text."""
    lines = [
        f"Published {len(result.published)} document(s) of '{result.entity}'",
        f"Branch: {result.branch} ({'reused' if result.reused_branch else 'new'})",
    ]
    if result.commit:
        lines.append(f"Commit: {result.commit.commit_id[:7]}")
    if result.pull_request:
        lines.append(
            f"Pull request: #{result.pull_request.number} {result.pull_request.url}"
        )
    lines.append("")

    for path in result.published:
        marker = "=" if path in result.unchanged else "+"
        lines.append(f"  {marker} {path}")
    if result.concurrent:
        lines.append("")
        lines.append("Edited during publish (still modified):")
        for path in result.concurrent:
            lines.append(f"  {path}")

    return "\n".join(lines).rstrip()


# ------------------------------------------------------------------
# Conflict review
# ------------------------------------------------------------------


def format_text_conflict(conflict: TextConflict, path: str = "") -> str:
    """Unified diff between the two sides of one conflicting region."""
    lines: list[str] = []
    lines.append(f"Conflict in {path}" if path else "Conflict")
    lines.append("")
    diff = difflib.unified_diff(
        conflict.yours,
        conflict.theirs,
        fromfile="yours",
        tofile="theirs",
    )
    diff_text = "".join(diff)
    lines.append(diff_text.rstrip() if diff_text else "(no textual differences)")
    return "\n".join(lines)


def _render(value: Any, present: bool) -> str:
    if not present:
        return "(deleted)"
    return json.dumps(value, ensure_ascii=False, sort_keys=True)


def format_field_conflicts(conflicts: list[FieldConflict]) -> str:
    """List conflicting fields with their three candidate values."""
    if not conflicts:
        return "No conflicts."
    lines: list[str] = [f"{len(conflicts)} conflicting field(s):", ""]
    for c in conflicts:
        lines.append(f"{c.key or '/'}:")
        lines.append(f"  base:     {_render(c.base, c.base_present)}")
        lines.append(f"  local:    {_render(c.local, c.local_present)}")
        lines.append(f"  incoming: {_render(c.incoming, c.incoming_present)}")
        lines.append("")
    return "\n".join(lines).rstrip()


# ------------------------------------------------------------------
# JSON output
# ------------------------------------------------------------------


def report_to_json(report: SyncReport) -> dict:
    """Convert a sync report to a structured dict for JSON serialisation.

    Args:
        report: The sync report.

    Returns:
        Dict with run info, counts, per-result details and trees.
    """
    results_list = []
    for r in report.results:
        entry: dict = {
            "path": r.path,
            "action": r.action.value,
            "success": r.success,
        }
        if r.error:
            entry["error"] = r.error
        results_list.append(entry)

    return {
        "trigger": report.trigger,
        "commit_id": report.commit_id,
        "bookmark_advanced": report.bookmark_advanced,
        "started_at": report.started_at,
        "completed_at": report.completed_at,
        "counts": {
            "total": len(report.results),
            "created": len(report.by_action(SyncAction.CREATED)),
            "updated": len(report.by_action(SyncAction.UPDATED)),
            "removed": len(report.by_action(SyncAction.REMOVED)),
            "ghosted": len(report.by_action(SyncAction.GHOSTED)),
            "skipped": len(report.by_action(SyncAction.SKIPPED)),
            "errors": len(report.errors),
        },
        "results": results_list,
        "trees": [t.model_dump() for t in report.trees],
    }


def publish_result_to_json(result: PublishResult) -> dict:
    return result.model_dump(mode="json")
