"""Upstream sync: fold repository changes into the document store.

``UpstreamSyncEngine`` is driven from outside (webhook delivery or a
periodic job).  A push run:

1. Works out the changed files: from the bookmarked commit to the pushed
   one via ``compare_commits`` when a bookmark exists, otherwise from the
   push payload.  Renames become a removal plus an addition.
2. Drops paths that are not tracked documents.
3. Refreshes each path through ``DraftService`` (published documents
   follow upstream, drafts are kept, vanished documents follow the ghost
   policy).
4. Re-syncs the tree snapshots of the affected entity directories.
5. Advances the bookmark only when every step succeeded, so a failed run
   is covered again by the next delivery.

Error handling is per path: one failing file does not abort the run.
"""

from __future__ import annotations

import logging

from docsflow_sync.core.repository import FileChange, RepositoryClient
from docsflow_sync.errors import DocsflowError
from docsflow_sync.sync.blob import content_blob_sha
from docsflow_sync.sync.drafts import DraftService
from docsflow_sync.sync.mapper import EntityMapper
from docsflow_sync.sync.models import (
    SyncAction,
    SyncBookmark,
    SyncReport,
    SyncResult,
    utc_now,
)
from docsflow_sync.sync.store import SnapshotStore
from docsflow_sync.sync.tree import TreeSyncEngine
from docsflow_sync.sync.webhook import PushEvent

logger = logging.getLogger(__name__)


class UpstreamSyncEngine:
    """Apply upstream repository changes to stored documents.

    Args:
        repository: Remote repository.
        store: Bookmark persistence.
        mapper: Decides which changed files are documents.
        drafts: Applies per-document refreshes.
        trees: Re-syncs snapshots after the file updates.
        bookmark_key: Bookmark record name.
    """

    def __init__(
        self,
        repository: RepositoryClient,
        store: SnapshotStore,
        mapper: EntityMapper,
        drafts: DraftService,
        trees: TreeSyncEngine,
        bookmark_key: str = "upstream-sync",
    ) -> None:
        self.repository = repository
        self.store = store
        self.mapper = mapper
        self.drafts = drafts
        self.trees = trees
        self.bookmark_key = bookmark_key

    # ------------------------------------------------------------------
    # Webhook runs
    # ------------------------------------------------------------------

    def handle_push(self, event: PushEvent) -> SyncReport:
        """Sync everything a push changed up to ``event.after``."""
        started_at = utc_now()
        complete = True
        changes = event.changes

        bookmark = self.store.get_bookmark(self.bookmark_key)
        if bookmark is not None and bookmark.commit_id != event.after:
            logger.info(
                "Comparing %s...%s", bookmark.commit_id[:7], event.after[:7]
            )
            try:
                changes = self.repository.compare_commits(
                    bookmark.commit_id, event.after
                )
            except DocsflowError as exc:
                logger.error("Commit comparison failed, using payload: %s", exc)
                complete = False

        removed, refreshed = self._split(changes)
        results: list[SyncResult] = []
        for path in removed:
            results.append(self._run(path, self.drafts.handle_upstream_removal, path))
        for path in refreshed:
            results.append(self._run(path, self.refresh_path, path, event.after))

        trees, tree_errors = self.trees.sync_all(
            self.mapper.watched_paths([*removed, *refreshed])
        )
        for path, message in tree_errors.items():
            results.append(
                SyncResult(
                    path=path, action=SyncAction.SKIPPED, success=False, error=message
                )
            )

        advanced = complete and all(r.success for r in results)
        if advanced:
            self.store.save_bookmark(
                SyncBookmark(
                    key=self.bookmark_key,
                    commit_id=event.after,
                    timestamp=utc_now(),
                )
            )
        else:
            logger.warning(
                "Upstream sync to %s incomplete; bookmark not advanced",
                event.after[:7],
            )

        return SyncReport(
            trigger="push",
            commit_id=event.after,
            results=results,
            trees=trees,
            bookmark_advanced=advanced,
            started_at=started_at,
            completed_at=utc_now(),
        )

    def _split(self, changes: list[FileChange]) -> tuple[list[str], list[str]]:
        """Tracked removed paths and tracked added/modified paths."""
        removed: list[str] = []
        refreshed: list[str] = []
        for change in changes:
            match change.status:
                case "removed":
                    removed.append(change.path)
                case "renamed":
                    if change.previous_path:
                        removed.append(change.previous_path)
                    refreshed.append(change.path)
                case _:
                    refreshed.append(change.path)
        return self.mapper.filter_paths(removed), self.mapper.filter_paths(refreshed)

    @staticmethod
    def _run(path, func, *args) -> SyncResult:  # type: ignore[no-untyped-def]
        try:
            action = func(*args)
        except Exception as exc:
            logger.error("Upstream sync of %s failed: %s", path, exc)
            return SyncResult(
                path=path, action=SyncAction.SKIPPED, success=False, error=str(exc)
            )
        return SyncResult(path=path, action=action, success=True)

    # ------------------------------------------------------------------
    # Single paths and periodic runs
    # ------------------------------------------------------------------

    def refresh_path(self, path: str, ref: str | None = None) -> SyncAction:
        """Re-read one file upstream and apply it to the store."""
        text = self.repository.get_file_content(path, ref)
        if text is None:
            return self.drafts.handle_upstream_removal(path)
        commit = self.repository.get_commit_metadata(path, ref)
        _, action = self.drafts.apply_upstream(path, text, commit)
        return action

    def sync_entity(self, entity: str) -> SyncReport:
        """Full refresh of one entity directory.

        The tree is synced first (which applies the ghost policy); then
        every listed file whose blob id differs from the stored remote
        content is refreshed.

        Raises:
            NotFoundError: If the entity is not configured.
            RemoteUnavailableError: If the tree cannot be read.
        """
        started_at = utc_now()
        profile = self.mapper.profile(entity)
        tree = self.trees.sync_path(profile.path)
        snapshot = self.trees.get_snapshot(profile.path)

        results: list[SyncResult] = []
        for entry in snapshot.entries:
            if entry.ghost or self.mapper.entity_for(entry.path) != entity:
                continue
            document = self.drafts.store.find_by_id(entry.path)
            if (
                document is not None
                and content_blob_sha(document.remote_content) == entry.sha  # type: ignore[attr-defined]
            ):
                continue
            results.append(self._run(entry.path, self.refresh_path, entry.path))
        results.extend(
            SyncResult(path=path, action=SyncAction.REMOVED, success=True)
            for path in tree.removed
        )
        results.extend(
            SyncResult(path=path, action=SyncAction.GHOSTED, success=True)
            for path in tree.ghosts
        )

        logger.info(
            "Entity %s refreshed: %d file(s) updated, %d error(s)",
            entity,
            sum(1 for r in results if r.success and r.action != SyncAction.SKIPPED),
            sum(1 for r in results if not r.success),
        )
        return SyncReport(
            trigger="entity",
            commit_id=tree.commit_id,
            results=results,
            trees=[tree],
            started_at=started_at,
            completed_at=utc_now(),
        )
