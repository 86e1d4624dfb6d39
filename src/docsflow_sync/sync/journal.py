"""Change journal: build and replay per-document history records.

Text documents record line patches, structured documents record diff
trees.  History starts from the empty draft (``None``, read as ``""`` for
text); replaying every record in timestamp order reproduces the current
draft.
"""

from __future__ import annotations

from typing import Any, Iterable

from docsflow_sync.sync.merger import LINE_PATCH_TYPE, LinePatchCodec
from docsflow_sync.sync.models import ChangeRecord, UpdateSource, utc_now
from docsflow_sync.sync.structured import apply_diff, diff

_codec = LinePatchCodec()


def is_line_patch(record: ChangeRecord) -> bool:
    return record.diff.get("type") == LINE_PATCH_TYPE


def build_change(
    previous: Any,
    current: Any,
    *,
    author: str,
    source: UpdateSource,
    key_field: str = "name",
    timestamp: str | None = None,
) -> ChangeRecord | None:
    """History record for *previous* -> *current*, or ``None`` for a no-op.

    Text is detected from either side being a string; a ``None`` text side
    counts as the empty string.
    """
    if isinstance(current, str) or isinstance(previous, str):
        patch = _codec.diff(previous or "", current or "")
        if patch is None:
            return None
        payload = patch.to_record()
    else:
        payload = diff(previous, current, key_field)
        if payload is None:
            return None
    return ChangeRecord(
        timestamp=timestamp or utc_now(),
        author=author,
        source=source,
        diff=payload,
    )


def replay_history(
    history: Iterable[ChangeRecord],
    start: Any = None,
    key_field: str = "name",
) -> Any:
    """Apply *history* in timestamp order starting from *start*."""
    value = start
    for record in sorted(history, key=lambda r: r.timestamp):
        if is_line_patch(record):
            value = _codec.apply(value or "", record.diff)
        else:
            value = apply_diff(value, record.diff, key_field)
    return value
