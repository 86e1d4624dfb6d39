"""Rendering policies for conflicting text regions.

When a three-way text merge finds a region both sides changed, the merged
text still needs *some* content there so an editor can be seeded with it.
The policy decides what:

- ``TheirsPolicy``: upstream's lines (the default rendering baseline).
- ``YoursPolicy``: the editing buffer's lines.
- ``MarkersPolicy``: both, wrapped in git-style conflict markers.

The raw conflict is always reported alongside, whatever the policy.  The
``create_policy()`` factory maps config strings to policy instances.
"""

from __future__ import annotations

from typing import Protocol

from docsflow_sync.sync.models import TextConflict

START_MARKER = "<<<<<<< YOURS"
MID_MARKER = "======="
END_MARKER = ">>>>>>> THEIRS"


class ConflictPolicy(Protocol):
    """Protocol that all conflict rendering policies satisfy."""

    name: str

    def render(self, conflict: TextConflict) -> list[str]:
        """Return the lines to place in the merged text for *conflict*."""
        ...  # pragma: no cover


class TheirsPolicy:
    name = "theirs"

    def render(self, conflict: TextConflict) -> list[str]:
        return list(conflict.theirs)


class YoursPolicy:
    name = "yours"

    def render(self, conflict: TextConflict) -> list[str]:
        return list(conflict.yours)


class MarkersPolicy:
    """Show both sides unresolved, git style."""

    name = "markers"

    def render(self, conflict: TextConflict) -> list[str]:
        lines = [START_MARKER + "\n"]
        lines.extend(_terminated(conflict.yours))
        lines.append(MID_MARKER + "\n")
        lines.extend(_terminated(conflict.theirs))
        lines.append(END_MARKER + "\n")
        return lines


def _terminated(lines: list[str]) -> list[str]:
    """Ensure the last line ends with a newline so markers stay on their own line."""
    if lines and not lines[-1].endswith("\n"):
        return lines[:-1] + [lines[-1] + "\n"]
    return list(lines)


# ---------------------------------------------------------------------------
# Factory
# ---------------------------------------------------------------------------

_STRATEGY_MAP: dict[str, type] = {
    "theirs": TheirsPolicy,
    "yours": YoursPolicy,
    "markers": MarkersPolicy,
}


def create_policy(name: str) -> ConflictPolicy:
    """Create a conflict rendering policy for the given name.

    Args:
        name: One of ``"theirs"``, ``"yours"``, ``"markers"``.

    Raises:
        ValueError: If the name is not recognised.
    """
    cls = _STRATEGY_MAP.get(name)
    if cls is None:
        raise ValueError(
            f"Unknown conflict policy: '{name}'. Valid policies: {sorted(_STRATEGY_MAP.keys())}"
        )
    return cls()  # type: ignore[return-value]
