"""Three-way text merge and line patches.

Uses the ``merge3`` library for the region-level three-way merge (the same
algorithm used by Bazaar/Breezy) and ``difflib`` for hunk refinement,
line patches, and unified diff generation.

Key design choices:

* ``merge3`` reports a whole region as conflicting as soon as both sides
  touched it.  Conflict regions are refined hunk by hunk: edits that touch
  disjoint base ranges (an insertion next to a replaced line, say) are
  both applied, and only overlapping edits stay conflicts.
* Conflicting regions are rendered by a configurable policy
  (``resolver.create_policy``); the default shows upstream's lines.  A
  merge with conflicts is never clean, whatever the rendering.
* ``LinePatchCodec`` splits on ``"\\n"`` only, so ``apply(a, diff(a, b))``
  reproduces ``b`` byte for byte, including a missing final newline.
* ``generate_diff`` is a thin wrapper around ``difflib.unified_diff``
  for display purposes.
"""

from __future__ import annotations

import difflib
from typing import Any, NamedTuple

from merge3 import Merge3
from pydantic import BaseModel

from docsflow_sync.errors import ValidationError
from docsflow_sync.sync.models import TextConflict, TextMergeResult
from docsflow_sync.sync.resolver import ConflictPolicy, create_policy

LINE_PATCH_TYPE = "line-patch"
LINE_SEPARATOR = "\n"


# ---------------------------------------------------------------------------
# Three-way merge
# ---------------------------------------------------------------------------


class _Hunk(NamedTuple):
    start: int
    end: int
    lines: tuple[str, ...]

    @property
    def is_insertion(self) -> bool:
        return self.start == self.end


def _hunks(base: list[str], other: list[str]) -> list[_Hunk]:
    matcher = difflib.SequenceMatcher(None, base, other, autojunk=False)
    return [
        _Hunk(i1, i2, tuple(other[j1:j2]))
        for tag, i1, i2, j1, j2 in matcher.get_opcodes()
        if tag != "equal"
    ]


def _overlaps(x: _Hunk, y: _Hunk) -> bool:
    if x.is_insertion and y.is_insertion:
        return x.start == y.start
    if x.is_insertion:
        return y.start < x.start < y.end
    if y.is_insertion:
        return x.start < y.start < x.end
    return x.start < y.end and y.start < x.end


def _refine_region(
    base: list[str], yours: list[str], theirs: list[str]
) -> list[str] | None:
    """Apply both sides' hunks to *base*, or ``None`` if any overlap."""
    ours = _hunks(base, yours)
    others = _hunks(base, theirs)
    combined = list(ours)
    for hunk in others:
        if hunk in ours:
            continue
        if any(_overlaps(hunk, mine) for mine in ours):
            return None
        combined.append(hunk)

    combined.sort(key=lambda h: (h.start, h.end))
    merged: list[str] = []
    pos = 0
    for hunk in combined:
        merged.extend(base[pos : hunk.start])
        merged.extend(hunk.lines)
        pos = hunk.end
    merged.extend(base[pos:])
    return merged


class ThreeWayTextMerger:
    """Merge an editing buffer and an upstream revision against their base.

    Args:
        policy: Conflict rendering policy name or instance.
    """

    def __init__(self, policy: str | ConflictPolicy = "theirs") -> None:
        self.policy = (
            create_policy(policy) if isinstance(policy, str) else policy
        )

    def merge(self, yours: str, base: str, theirs: str) -> TextMergeResult:
        """Three-way merge of *yours* and *theirs* against *base*.

        Returns:
            A ``TextMergeResult``.  When ``is_clean`` is ``False`` the
            merged text is a rendering baseline only and must not be
            adopted as a draft without a human decision.
        """
        if yours == theirs:
            return TextMergeResult(is_clean=True, merged_text=yours)

        base_lines = base.splitlines(True)
        your_lines = yours.splitlines(True)
        their_lines = theirs.splitlines(True)

        merged: list[str] = []
        conflicts: list[TextConflict] = []
        m3 = Merge3(base_lines, your_lines, their_lines)
        for group in m3.merge_groups():
            kind = group[0]
            if kind != "conflict":
                merged.extend(group[1])
                continue
            _, base_region, your_region, their_region = group
            refined = _refine_region(
                list(base_region), list(your_region), list(their_region)
            )
            if refined is not None:
                merged.extend(refined)
                continue
            conflict = TextConflict(
                base=list(base_region),
                yours=list(your_region),
                theirs=list(their_region),
            )
            conflicts.append(conflict)
            merged.extend(self.policy.render(conflict))

        return TextMergeResult(
            is_clean=not conflicts,
            merged_text="".join(merged),
            conflicts=conflicts,
        )


def merge_text(
    yours: str,
    base: str,
    theirs: str,
    policy: str | ConflictPolicy = "theirs",
) -> TextMergeResult:
    """Shorthand for ``ThreeWayTextMerger(policy).merge(...)``."""
    return ThreeWayTextMerger(policy).merge(yours, base, theirs)


# ---------------------------------------------------------------------------
# Line patches
# ---------------------------------------------------------------------------


class PatchApplyError(ValidationError):
    """A patch does not match the text it is applied to."""


class PatchHunk(BaseModel):
    """Replace ``removed`` lines at ``offset`` (of the old text) with ``added``."""

    offset: int
    removed: list[str] = []
    added: list[str] = []

    model_config = {"frozen": True}


class LinePatch(BaseModel):
    hunks: list[PatchHunk]

    model_config = {"frozen": True}

    def to_record(self) -> dict[str, Any]:
        """Persisted shape of a text history entry."""
        return {
            "type": LINE_PATCH_TYPE,
            "lineSeparator": LINE_SEPARATOR,
            "patch": [h.model_dump() for h in self.hunks],
        }

    @classmethod
    def from_record(cls, record: dict[str, Any]) -> LinePatch:
        if record.get("type") != LINE_PATCH_TYPE:
            raise ValidationError(
                f"Not a line patch record: type={record.get('type')!r}"
            )
        if record.get("lineSeparator", LINE_SEPARATOR) != LINE_SEPARATOR:
            raise ValidationError(
                f"Unsupported line separator {record['lineSeparator']!r}"
            )
        return cls(hunks=[PatchHunk(**h) for h in record.get("patch", [])])


class LinePatchCodec:
    """Produce and replay line patches between two text revisions."""

    separator = LINE_SEPARATOR

    def diff(self, old: str, new: str) -> LinePatch | None:
        """Patch turning *old* into *new*, or ``None`` when they are equal."""
        if old == new:
            return None
        old_lines = old.split(self.separator)
        new_lines = new.split(self.separator)
        matcher = difflib.SequenceMatcher(
            None, old_lines, new_lines, autojunk=False
        )
        hunks = [
            PatchHunk(
                offset=i1,
                removed=old_lines[i1:i2],
                added=new_lines[j1:j2],
            )
            for tag, i1, i2, j1, j2 in matcher.get_opcodes()
            if tag != "equal"
        ]
        return LinePatch(hunks=hunks)

    def apply(self, text: str, patch: LinePatch | dict[str, Any]) -> str:
        """Apply *patch* to *text*.

        Raises:
            PatchApplyError: If a hunk's removed lines are not found at
                its offset.
        """
        if isinstance(patch, dict):
            patch = LinePatch.from_record(patch)
        lines = text.split(self.separator)
        # Offsets refer to the old text; apply back to front.
        for hunk in reversed(patch.hunks):
            end = hunk.offset + len(hunk.removed)
            if end > len(lines) or lines[hunk.offset : end] != hunk.removed:
                raise PatchApplyError(
                    f"Patch hunk at line {hunk.offset} does not match the text"
                )
            lines[hunk.offset : end] = hunk.added
        return self.separator.join(lines)


def generate_diff(
    old_content: str,
    new_content: str,
    label_old: str = "old",
    label_new: str = "new",
) -> str:
    """Generate a unified diff between two strings.

    Returns:
        A unified diff string.  Empty string if the contents are identical.
    """
    diff_lines = difflib.unified_diff(
        old_content.splitlines(True),
        new_content.splitlines(True),
        fromfile=label_old,
        tofile=label_new,
    )
    return "".join(diff_lines)
