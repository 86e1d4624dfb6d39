"""Structured (JSON-tree) diffs.

Values are handled as tagged variants (``ValueKind``): scalars, sequences
and mappings.  Every routine dispatches on the tag explicitly.

Sequence items are matched across revisions by a stable key rather than
by index, so reordering an array does not read as every item changing:

* mapping items use their ``key_field`` value (``"name"`` by default);
* string items use the string itself, other scalars their JSON text;
* anything else falls back to its position (``#<index>``);
* repeated keys are disambiguated by occurrence (``key``, ``key#2``, ...).

Diff node shapes (the persisted history payload):

* leaf: ``{"status": "added", "to": v}``, ``{"status": "deleted",
  "from": v}`` or ``{"status": "modified", "from": a, "to": b}``;
* container: ``{"status": "modified", "kind": "mapping" | "sequence",
  "children": {key: node}}`` plus ``"order": [keys]`` when a sequence's
  key order changed.

Mapping key order is not significant: reordering keys is not a change.
"""

from __future__ import annotations

import copy
import json
from enum import Enum
from typing import Any

# Marks a key or item absent on one side.
MISSING: Any = object()


class ValueKind(str, Enum):
    SCALAR = "scalar"
    SEQUENCE = "sequence"
    MAPPING = "mapping"


def kind_of(value: Any) -> ValueKind:
    match value:
        case dict():
            return ValueKind.MAPPING
        case list() | tuple():
            return ValueKind.SEQUENCE
        case _:
            return ValueKind.SCALAR


def same(a: Any, b: Any) -> bool:
    """JSON equality: values that serialize differently are different.

    Unlike ``==``, ``1``, ``1.0`` and ``true`` are three distinct values.
    ``MISSING`` is distinct from every value.
    """
    if a is MISSING or b is MISSING:
        return a is b
    kind = kind_of(a)
    if kind is not kind_of(b):
        return False
    match kind:
        case ValueKind.MAPPING:
            return a.keys() == b.keys() and all(same(a[k], b[k]) for k in a)
        case ValueKind.SEQUENCE:
            return len(a) == len(b) and all(same(x, y) for x, y in zip(a, b))
        case _:
            return type(a) is type(b) and a == b


# ---------------------------------------------------------------------------
# Item keys
# ---------------------------------------------------------------------------


def item_key(item: Any, index: int, key_field: str = "name") -> str:
    """Stable key of a sequence item."""
    match kind_of(item):
        case ValueKind.MAPPING if key_field in item:
            value = item[key_field]
            return value if isinstance(value, str) else json.dumps(value)
        case ValueKind.SCALAR if isinstance(item, str):
            return item
        case ValueKind.SCALAR:
            return json.dumps(item)
        case _:
            return f"#{index}"


def keyed_items(sequence: Any, key_field: str = "name") -> dict[str, Any]:
    """Map item keys to items, preserving sequence order."""
    items: dict[str, Any] = {}
    seen: dict[str, int] = {}
    for index, item in enumerate(sequence):
        key = item_key(item, index, key_field)
        seen[key] = seen.get(key, 0) + 1
        if seen[key] > 1:
            key = f"{key}#{seen[key]}"
        items[key] = item
    return items


def children_of(value: Any, key_field: str = "name") -> dict[str, Any]:
    """Child values of a container, keyed the way diffs address them."""
    match kind_of(value):
        case ValueKind.MAPPING:
            return dict(value)
        case ValueKind.SEQUENCE:
            return keyed_items(value, key_field)
        case _:
            return {}


# ---------------------------------------------------------------------------
# Diff
# ---------------------------------------------------------------------------


def diff(old: Any, new: Any, key_field: str = "name") -> dict[str, Any] | None:
    """Compute the diff tree from *old* to *new*.

    Returns:
        The root node, or ``None`` when nothing changed.
    """
    old_kind, new_kind = kind_of(old), kind_of(new)
    if old_kind is not new_kind or old_kind is ValueKind.SCALAR:
        if same(old, new):
            return None
        return {"status": "modified", "from": old, "to": new}

    old_items = children_of(old, key_field)
    new_items = children_of(new, key_field)
    children: dict[str, Any] = {}
    for key, value in old_items.items():
        if key not in new_items:
            children[key] = {"status": "deleted", "from": value}
            continue
        child = diff(value, new_items[key], key_field)
        if child is not None:
            children[key] = child
    for key, value in new_items.items():
        if key not in old_items:
            children[key] = {"status": "added", "to": value}

    node: dict[str, Any] = {
        "status": "modified",
        "kind": old_kind.value,
        "children": children,
    }
    if old_kind is ValueKind.SEQUENCE and list(old_items) != list(new_items):
        node["order"] = list(new_items)
    if not children and "order" not in node:
        return None
    return node


def apply_diff(
    old: Any, node: dict[str, Any] | None, key_field: str = "name"
) -> Any:
    """Replay *node* onto *old*, returning a new value.

    *old* is not mutated.
    """
    if node is None:
        return copy.deepcopy(old)
    match node["status"]:
        case "added":
            return copy.deepcopy(node["to"])
        case "deleted":
            return MISSING
    if "children" not in node:
        return copy.deepcopy(node["to"])

    items = children_of(old, key_field)
    for key, child in node["children"].items():
        value = apply_diff(items.get(key), child, key_field)
        if value is MISSING:
            items.pop(key, None)
        else:
            items[key] = value

    if node["kind"] == ValueKind.MAPPING.value:
        return {k: copy.deepcopy(v) for k, v in items.items()}
    order = node.get("order") or list(items)
    return [copy.deepcopy(items[k]) for k in order]


def changed_paths(
    node: dict[str, Any] | None, prefix: tuple[str, ...] = ()
) -> list[tuple[str, ...]]:
    """Leaf paths touched by a diff tree."""
    if node is None:
        return []
    if "children" not in node:
        return [prefix]
    paths: list[tuple[str, ...]] = []
    if "order" in node and not node["children"]:
        paths.append(prefix)
    for key, child in node["children"].items():
        paths.extend(changed_paths(child, prefix + (key,)))
    return paths
