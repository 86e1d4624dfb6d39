"""Structured conflict classification and silent merging.

Given a *base* value, the *local* draft derived from it, and an *incoming*
revision derived from the same base:

* ``classify`` lists the fields both sides changed to different values.
  Containers of the same kind on all sides are recursed into rather than
  reported; sequence items are matched by key (see ``structured``).  An
  item deleted on one side and edited on the other is a conflict on the
  whole item.
* ``merge_silently`` folds *incoming* into *local* when there are no
  conflicts.  Sub-trees the user did not touch take the incoming value
  wholesale; touched sub-trees are merged item-wise; local-only items keep
  their local position, so a longer local array never loses its tail.
* ``resolve`` applies one human pick per conflict, then merges the rest.

Inputs are never mutated.
"""

from __future__ import annotations

import copy
import logging
from typing import Any

from docsflow_sync.errors import MergeConflictError
from docsflow_sync.sync.models import FieldConflict
from docsflow_sync.sync.structured import (
    MISSING,
    ValueKind,
    children_of,
    kind_of,
    same,
)

logger = logging.getLogger(__name__)

PICK_CHOICES = ("base", "local", "incoming")


def _container_kind(*values: Any) -> ValueKind | None:
    """Shared container kind of all present values, if any."""
    present = [v for v in values if v is not MISSING]
    kinds = {kind_of(v) for v in present}
    if len(kinds) != 1:
        return None
    kind = kinds.pop()
    return None if kind is ValueKind.SCALAR else kind


def _union_keys(*maps: dict[str, Any]) -> list[str]:
    keys: dict[str, None] = {}
    for mapping in maps:
        keys.update(dict.fromkeys(mapping))
    return list(keys)


# ---------------------------------------------------------------------------
# Classification
# ---------------------------------------------------------------------------


def classify(
    base: Any, local: Any, incoming: Any, key_field: str = "name"
) -> list[FieldConflict]:
    """Return the fields changed differently by *local* and *incoming*.

    A field conflicts iff ``local != base``, ``incoming != base`` and
    ``local != incoming`` all hold for it.
    """
    conflicts: list[FieldConflict] = []
    _classify(base, local, incoming, [], key_field, conflicts)
    return conflicts


def _classify(
    base: Any,
    local: Any,
    incoming: Any,
    path: list[str],
    key_field: str,
    out: list[FieldConflict],
) -> None:
    if same(local, incoming) or same(local, base) or same(incoming, base):
        return

    if local is not MISSING and incoming is not MISSING:
        kind = _container_kind(base, local, incoming)
        if kind is not None:
            base_items = children_of(base, key_field) if base is not MISSING else {}
            local_items = children_of(local, key_field)
            incoming_items = children_of(incoming, key_field)
            for key in _union_keys(base_items, local_items, incoming_items):
                _classify(
                    base_items.get(key, MISSING),
                    local_items.get(key, MISSING),
                    incoming_items.get(key, MISSING),
                    path + [key],
                    key_field,
                    out,
                )
            return

    out.append(
        FieldConflict(
            path=path,
            base=None if base is MISSING else copy.deepcopy(base),
            local=None if local is MISSING else copy.deepcopy(local),
            incoming=None if incoming is MISSING else copy.deepcopy(incoming),
            base_present=base is not MISSING,
            local_present=local is not MISSING,
            incoming_present=incoming is not MISSING,
        )
    )


# ---------------------------------------------------------------------------
# Silent merge
# ---------------------------------------------------------------------------


def merge_silently(
    base: Any, local: Any, incoming: Any, key_field: str = "name"
) -> Any:
    """Merge *incoming* into *local* against *base*.

    Raises:
        MergeConflictError: If ``classify`` reports any conflict.  The
            conflicts are attached to the error.
    """
    conflicts = classify(base, local, incoming, key_field)
    if conflicts:
        raise MergeConflictError(
            f"{len(conflicts)} conflicting field(s): "
            + ", ".join(c.key or "<root>" for c in conflicts),
            conflicts,
        )
    return _merge(base, local, incoming, key_field)


def _merge(base: Any, local: Any, incoming: Any, key_field: str) -> Any:
    if same(local, base):
        return copy.deepcopy(incoming) if incoming is not MISSING else MISSING
    if same(incoming, base) or same(local, incoming):
        return copy.deepcopy(local) if local is not MISSING else MISSING

    # Both changed without conflicting: same container kind on both sides.
    kind = kind_of(local)
    base_items = (
        children_of(base, key_field)
        if base is not MISSING and kind_of(base) is kind
        else {}
    )
    local_items = children_of(local, key_field)
    incoming_items = children_of(incoming, key_field)

    merged: dict[str, Any] = {}
    for key in _union_keys(incoming_items, local_items):
        value = _merge(
            base_items.get(key, MISSING),
            local_items.get(key, MISSING),
            incoming_items.get(key, MISSING),
            key_field,
        )
        if value is not MISSING:
            merged[key] = value

    if kind is ValueKind.MAPPING:
        return merged
    order = _sequence_order(list(local_items), list(incoming_items), merged)
    return [merged[key] for key in order]


def _sequence_order(
    local_keys: list[str], incoming_keys: list[str], merged: dict[str, Any]
) -> list[str]:
    """Incoming order, with local-only items placed after their local predecessor."""
    incoming_set = set(incoming_keys)
    order = [key for key in incoming_keys if key in merged]
    for index, key in enumerate(local_keys):
        if key in incoming_set or key not in merged:
            continue
        position = 0
        for previous in reversed(local_keys[:index]):
            if previous in order:
                position = order.index(previous) + 1
                break
        order.insert(position, key)
    return order


# ---------------------------------------------------------------------------
# Manual resolution
# ---------------------------------------------------------------------------


def resolve(
    base: Any,
    local: Any,
    incoming: Any,
    picks: dict[str, str],
    key_field: str = "name",
) -> Any:
    """Merge after applying a human pick for every conflict.

    Args:
        picks: Conflict key (``FieldConflict.key``) -> ``"base"``,
            ``"local"`` or ``"incoming"``.

    Raises:
        MergeConflictError: If a conflict has no pick.
        ValueError: If a pick is not one of the allowed choices.
    """
    conflicts = classify(base, local, incoming, key_field)
    unresolved = [c for c in conflicts if c.key not in picks]
    if unresolved:
        raise MergeConflictError(
            "Missing picks for: " + ", ".join(c.key or "<root>" for c in unresolved),
            unresolved,
        )

    resolved_local = copy.deepcopy(local)
    resolved_incoming = copy.deepcopy(incoming)
    for conflict in conflicts:
        choice = picks[conflict.key]
        if choice not in PICK_CHOICES:
            raise ValueError(
                f"Invalid pick '{choice}' for '{conflict.key}': must be one of {PICK_CHOICES}"
            )
        present = getattr(conflict, f"{choice}_present")
        value = getattr(conflict, choice) if present else MISSING
        logger.debug("Resolving %s with %s", conflict.key or "<root>", choice)
        resolved_local = _set_path(resolved_local, conflict.path, value, key_field)
        resolved_incoming = _set_path(
            resolved_incoming, conflict.path, value, key_field
        )

    return merge_silently(base, resolved_local, resolved_incoming, key_field)


def _set_path(root: Any, path: list[str], value: Any, key_field: str) -> Any:
    """Return *root* with the node at *path* replaced (or removed if MISSING)."""
    if not path:
        return value if value is MISSING else copy.deepcopy(value)

    head, rest = path[0], path[1:]
    items = children_of(root, key_field)
    child = _set_path(items.get(head, MISSING), rest, value, key_field)
    if child is MISSING:
        items.pop(head, None)
    else:
        items[head] = child

    if kind_of(root) is ValueKind.MAPPING:
        return items
    return list(items.values())
