"""Differential tree sync with ghost retention.

``TreeSyncEngine`` keeps one ``TreeSnapshot`` per watched repository path:
the latest commit touching the path and the filtered blob listing under
it.  A sync run:

1. Reads the latest commit for the path and the recursive tree of the
   default branch.  Both reads happen before anything is written, so a
   repository failure leaves the prior snapshot untouched.
2. Reconciles stored documents under the path that vanished upstream:
   published ones are deleted, ones carrying unpublished edits are kept
   as ghosts (``status = new``) with a synthesized tree entry.
3. Persists the snapshot and emits a ``tree`` event.
"""

from __future__ import annotations

import logging
from collections.abc import Iterable

from docsflow_sync.core.repository import RepositoryClient, TreeEntry
from docsflow_sync.errors import NotFoundError
from docsflow_sync.sync.blob import content_blob_sha, serialize_content
from docsflow_sync.sync.drafts import DraftService
from docsflow_sync.sync.events import ChangeNotifier, NullNotifier
from docsflow_sync.sync.mapper import EntityMapper
from docsflow_sync.sync.models import (
    ChangeEvent,
    DocumentStatus,
    TreeSnapshot,
    TreeSyncResult,
)
from docsflow_sync.sync.store import DocumentStore, SnapshotStore

logger = logging.getLogger(__name__)


class TreeSyncEngine:
    """Refresh tree snapshots of watched paths.

    Args:
        repository: Remote repository.
        store: Document and snapshot persistence.
        mapper: Decides which blobs are documents.
        drafts: Applies the ghost policy to vanished documents.
        notifier: Receives a ``tree`` event per persisted snapshot.
    """

    def __init__(
        self,
        repository: RepositoryClient,
        store: DocumentStore,
        mapper: EntityMapper,
        drafts: DraftService,
        notifier: ChangeNotifier | None = None,
    ) -> None:
        self.repository = repository
        self.store = store
        self.mapper = mapper
        self.drafts = drafts
        self.notifier = notifier or NullNotifier()

    @property
    def snapshots(self) -> SnapshotStore:
        return self.store  # type: ignore[return-value]

    def sync_path(self, path: str, ref: str | None = None) -> TreeSyncResult:
        """Refresh the snapshot of one watched path.

        Raises:
            RemoteUnavailableError: If the repository cannot be read; the
                stored snapshot and documents are left as they were.
            NotFoundError: If *ref* does not exist.
        """
        ref = ref or self.repository.default_branch
        path = path.strip("/")
        commit = self.repository.get_commit_metadata(path, ref)
        listing = self.repository.get_tree(ref)
        entries = self.mapper.document_entries(listing, path)
        upstream = {e.path for e in entries}

        ghosts: list[str] = []
        removed: list[str] = []
        for document in self.store.find_by_prefix(path):
            if document.id in upstream or not self.mapper.is_tracked(document.id):
                continue
            if document.status == DocumentStatus.PUBLISHED:
                self.drafts.handle_upstream_removal(document.id)
                removed.append(document.id)
                continue
            if document.status == DocumentStatus.MODIFIED:
                self.drafts.handle_upstream_removal(document.id)
            content = serialize_content(document.current_content)
            entries.append(
                TreeEntry(
                    path=document.id,
                    sha=content_blob_sha(document.current_content),
                    size=len(content.encode("utf-8")),
                    ghost=True,
                )
            )
            ghosts.append(document.id)

        snapshot = self.snapshots.save_snapshot(
            TreeSnapshot(
                path=path,
                commit=commit,
                entries=sorted(entries, key=lambda e: e.path),
            )
        )
        logger.info(
            "Tree %s synced at %s: %d entries (%d ghost, %d removed)",
            path or "/",
            commit.commit_id[:7] if commit else "?",
            len(snapshot.entries),
            len(ghosts),
            len(removed),
        )
        self.notifier.publish(
            ChangeEvent(
                kind="tree",
                path=path,
                actor=(commit.author if commit else None) or self.drafts.system_actor,
                stream="tree",
                payload={
                    "commit": commit.commit_id if commit else None,
                    "entries": len(snapshot.entries),
                    "ghosts": ghosts,
                    "removed": removed,
                },
            )
        )
        return TreeSyncResult(
            path=path,
            commit_id=commit.commit_id if commit else None,
            entries=len(snapshot.entries),
            ghosts=ghosts,
            removed=removed,
        )

    def get_snapshot(self, path: str) -> TreeSnapshot:
        """Stored snapshot of *path*, synced first when there is none.

        Raises:
            NotFoundError: If the store still has no snapshot after the sync.
        """
        path = path.strip("/")
        snapshot = self.snapshots.get_snapshot(path)
        if snapshot is None:
            self.sync_path(path)
            snapshot = self.snapshots.get_snapshot(path)
        if snapshot is None:
            raise NotFoundError(f"No snapshot stored for '{path or '/'}'")
        return snapshot

    def sync_all(
        self, paths: Iterable[str] | None = None
    ) -> tuple[list[TreeSyncResult], dict[str, str]]:
        """Sync several watched paths, isolating failures per path.

        Args:
            paths: Paths to sync; all entity directories when omitted.

        Returns:
            The successful results and a path -> error message map.
        """
        results: list[TreeSyncResult] = []
        errors: dict[str, str] = {}
        for path in paths if paths is not None else self.mapper.watched_paths():
            try:
                results.append(self.sync_path(path))
            except Exception as exc:
                logger.error("Tree sync of %s failed: %s", path or "/", exc)
                errors[path] = str(exc)
        return results, errors
