"""Tests for sync/merger.py -- three-way text merge and line patches.

Covers:
- ThreeWayTextMerger: clean merges, hunk refinement inside merge3
  conflict regions, conflicts under each rendering policy
- LinePatchCodec: no-op diffs, exact round trips, persisted record shape,
  mismatched patches
- generate_diff: unified diff output
"""

import pytest

from docsflow_sync.errors import ValidationError
from docsflow_sync.sync.merger import (
    LINE_PATCH_TYPE,
    LinePatch,
    LinePatchCodec,
    PatchApplyError,
    ThreeWayTextMerger,
    generate_diff,
    merge_text,
)

# ---------------------------------------------------------------------------
# Three-way merge
# ---------------------------------------------------------------------------


class TestThreeWayTextMerger:
    """Line-based three-way merge of text documents."""

    def test_append_and_concurrent_line_change(self):
        """Appended line locally plus an upstream edit of the line above merge cleanly."""
        result = ThreeWayTextMerger().merge("A\nB\nC\n", "A\nB\n", "A\nB2\n")
        assert result.is_clean
        assert result.merged_text == "A\nB2\nC\n"
        assert result.conflicts == []

    def test_identical_inputs(self):
        """Nothing changed -> clean merge of the base."""
        text = "one\ntwo\n"
        result = merge_text(text, text, text)
        assert result.is_clean
        assert result.merged_text == text

    def test_only_theirs_changed(self):
        """Only incoming changed -> incoming wins."""
        result = merge_text("A\nB\n", "A\nB\n", "A\nB\nC\n")
        assert result.is_clean
        assert result.merged_text == "A\nB\nC\n"

    def test_only_yours_changed(self):
        """Only local changed -> local wins."""
        result = merge_text("X\nB\n", "A\nB\n", "A\nB\n")
        assert result.is_clean
        assert result.merged_text == "X\nB\n"

    def test_same_change_on_both_sides(self):
        result = merge_text("A\nZ\n", "A\nB\n", "A\nZ\n")
        assert result.is_clean
        assert result.merged_text == "A\nZ\n"

    def test_disjoint_edits(self):
        """Edits to separate lines merge cleanly."""
        result = merge_text("A\nB\nC\nD\n", "A\nB\nC\n", "Z\nB\nC\n")
        assert result.is_clean
        assert result.merged_text == "Z\nB\nC\nD\n"

    def test_overlapping_edit_is_conflict(self):
        """Both sides editing one line is a conflict."""
        result = merge_text("A\nX\n", "A\nB\n", "A\nY\n")
        assert not result.is_clean
        assert len(result.conflicts) == 1
        conflict = result.conflicts[0]
        assert conflict.base == ["B\n"]
        assert conflict.yours == ["X\n"]
        assert conflict.theirs == ["Y\n"]

    def test_conflict_renders_theirs_by_default(self):
        """Upstream's lines are the rendering baseline of a conflict."""
        result = merge_text("A\nX\nC\n", "A\nB\nC\n", "A\nY\nC\n")
        assert not result.is_clean
        assert result.merged_text == "A\nY\nC\n"

    def test_conflict_rendered_with_yours_policy(self):
        result = merge_text("A\nX\n", "A\nB\n", "A\nY\n", policy="yours")
        assert not result.is_clean
        assert result.merged_text == "A\nX\n"

    def test_conflict_rendered_with_markers(self):
        result = merge_text("A\nX\n", "A\nB\n", "A\nY\n", policy="markers")
        assert not result.is_clean
        assert result.merged_text == (
            "A\n<<<<<<< YOURS\nX\n=======\nY\n>>>>>>> THEIRS\n"
        )

    def test_unknown_policy_rejected(self):
        """An unknown conflict policy is a ValueError."""
        with pytest.raises(ValueError, match="Unknown conflict policy"):
            ThreeWayTextMerger("ours")

    def test_empty_base(self):
        """Two different files created from nothing conflict as a whole."""
        result = merge_text("mine\n", "", "theirs\n")
        assert not result.is_clean
        assert result.merged_text == "theirs\n"


# ---------------------------------------------------------------------------
# Line patches
# ---------------------------------------------------------------------------


class TestLinePatchCodec:
    """Line patches stored in the journal."""

    def setup_method(self):
        self.codec = LinePatchCodec()

    def test_equal_texts_have_no_patch(self):
        """Equal texts produce no patch."""
        assert self.codec.diff("A\nB\n", "A\nB\n") is None
        assert self.codec.diff("", "") is None

    @pytest.mark.parametrize(
        "old, new",
        [
            ("", "first line\n"),
            ("gone\n", ""),
            ("A\nB\n", "A\nB\nC\n"),
            ("A\nB\nC\n", "A\nC\n"),
            ("A\nB", "A\nB\n"),
            ("A\r\nB\r\n", "A\r\nC\r\n"),
        ],
    )
    def test_apply_reproduces_new_text(self, old, new):
        """Applying the patch to the old text gives the new text."""
        assert self.codec.apply(old, self.codec.diff(old, new)) == new

    def test_record_shape(self):
        record = self.codec.diff("A\nB\n", "A\nC\n").to_record()
        assert record["type"] == LINE_PATCH_TYPE
        assert record["lineSeparator"] == "\n"
        assert record["patch"] == [
            {"offset": 1, "removed": ["B"], "added": ["C"]}
        ]

    def test_apply_accepts_persisted_record(self):
        """A record loaded back from JSON still applies."""
        record = self.codec.diff("x\ny\n", "x\nz\n").to_record()
        assert self.codec.apply("x\ny\n", record) == "x\nz\n"

    def test_record_round_trip(self):
        patch = self.codec.diff("1\n2\n3\n", "1\n3\n4\n")
        assert LinePatch.from_record(patch.to_record()) == patch

    def test_mismatched_text_raises(self):
        """Applying to the wrong text fails loudly."""
        patch = self.codec.diff("A\nB\n", "A\nC\n")
        with pytest.raises(PatchApplyError, match="does not match"):
            self.codec.apply("A\nQ\n", patch)

    def test_patch_beyond_end_raises(self):
        patch = self.codec.diff("1\n2\n3\n4\n", "1\n2\n3\n")
        with pytest.raises(PatchApplyError):
            self.codec.apply("1\n", patch)

    def test_wrong_record_type_rejected(self):
        """Records of another type are rejected."""
        with pytest.raises(ValidationError, match="Not a line patch"):
            LinePatch.from_record({"type": "structured", "patch": []})

    def test_unsupported_separator_rejected(self):
        with pytest.raises(ValidationError, match="Unsupported line separator"):
            LinePatch.from_record(
                {"type": LINE_PATCH_TYPE, "lineSeparator": "\r\n", "patch": []}
            )


class TestGenerateDiff:
    """Unified diffs for operators."""

    def test_identical_is_empty(self):
        assert generate_diff("a\n", "a\n") == ""

    def test_labels_and_changes(self):
        """File labels and changed lines appear in the diff."""
        diff = generate_diff("a\nb\n", "a\nc\n", "draft", "upstream")
        assert "--- draft" in diff
        assert "+++ upstream" in diff
        assert "-b" in diff
        assert "+c" in diff
