"""Config-driven routing of repository paths to entity profiles.

An entity is a document family living under one repository directory
(``EntityProfile.path``).  Resolution for a path:

1. **Longest prefix** -- the entity whose path is the deepest ancestor of
   the file wins, so nested entities can carve out sub-directories.
2. **Extension filter** -- if the profile lists extensions, other files
   are not documents.
3. **Exclude check** -- globs are matched against the path relative to
   the entity directory.

Publish branch names embed the entity
(``<prefix>-<entity>-publish-<epoch ms>``) so untracked branches can be
attributed back to their entity.
"""

from __future__ import annotations

import fnmatch
import re
from collections.abc import Iterable
from pathlib import PurePosixPath

from docsflow_sync.config_schema import EntityProfile
from docsflow_sync.core.repository import TreeEntry
from docsflow_sync.errors import NotFoundError
from docsflow_sync.sync.store import in_prefix


class EntityMapper:
    """Map repository paths to entity names and profiles.

    Args:
        entities: Entity name -> profile, as configured.
    """

    def __init__(self, entities: dict[str, EntityProfile]) -> None:
        self._entities = dict(entities)
        # Deepest paths first so nested entities win.
        self._ordered = sorted(
            self._entities.items(),
            key=lambda item: len(item[1].path),
            reverse=True,
        )

    @property
    def entities(self) -> dict[str, EntityProfile]:
        return dict(self._entities)

    def profile(self, entity: str) -> EntityProfile:
        """Return the profile for *entity*.

        Raises:
            NotFoundError: If the entity is not configured.
        """
        try:
            return self._entities[entity]
        except KeyError:
            raise NotFoundError(
                f"Unknown entity '{entity}'",
                f"Configure it under 'entities' (known: {sorted(self._entities)}).",
            ) from None

    # ------------------------------------------------------------------
    # Path -> entity
    # ------------------------------------------------------------------

    def entity_for(self, path: str) -> str | None:
        """Entity owning *path*, or ``None`` if the path is not a document."""
        for name, profile in self._ordered:
            if not in_prefix(path, profile.path):
                continue
            if profile.extensions and PurePosixPath(path).suffix not in profile.extensions:
                return None
            relative = path[len(profile.path) :].lstrip("/") if profile.path else path
            for pattern in profile.exclude:
                if fnmatch.fnmatch(relative, pattern):
                    return None
            return name
        return None

    def is_tracked(self, path: str) -> bool:
        return self.entity_for(path) is not None

    def filter_paths(self, paths: Iterable[str]) -> list[str]:
        """Tracked paths from *paths*, de-duplicated, input order kept."""
        return [p for p in dict.fromkeys(paths) if self.is_tracked(p)]

    def document_entries(
        self, entries: Iterable[TreeEntry], path: str
    ) -> list[TreeEntry]:
        """Blob entries under *path* that are tracked documents."""
        return [
            e
            for e in entries
            if e.type == "blob"
            and in_prefix(e.path, path)
            and self.is_tracked(e.path)
        ]

    def watched_paths(self, paths: Iterable[str] | None = None) -> list[str]:
        """Entity directories, or just those containing any of *paths*."""
        if paths is None:
            return sorted({p.path for p in self._entities.values()})
        watched = set()
        for path in paths:
            entity = self.entity_for(path)
            if entity is not None:
                watched.add(self._entities[entity].path)
        return sorted(watched)

    # ------------------------------------------------------------------
    # Publish branch names
    # ------------------------------------------------------------------

    @staticmethod
    def branch_name(prefix: str, entity: str, epoch_ms: int) -> str:
        return f"{prefix}-{entity}-publish-{epoch_ms}"

    def entity_from_branch(self, branch: str, prefix: str) -> str | None:
        """Entity encoded in a publish branch name, if it is configured."""
        match = re.fullmatch(
            rf"{re.escape(prefix)}-(?P<entity>[^-]+)-publish-\d+", branch
        )
        if match is None or match.group("entity") not in self._entities:
            return None
        return match.group("entity")
