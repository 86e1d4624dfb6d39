"""Batched publishing of drafts through a reusable branch.

``PublishCoordinator.publish`` turns every unpublished document of an
entity into one commit on a publish branch and one pull request:

1. Serialize each draft and compute its blob id locally.
2. Pick the most recently used open branch that is still *reusable*
   (see ``_is_reusable``), or cut a fresh one from the default branch.
3. Upload blobs only for paths whose id differs from the branch tip,
   build one tree, one commit, and advance the branch ref.
4. Reuse the open pull request of the branch, or open one.
5. Only then mark the documents published and save the branch record.

Any repository failure in steps 2-4 propagates before any document
record is touched, so a failed publish can simply be retried: a freshly
cut branch is recorded as soon as it exists, it stays reusable for the
same drafts, and files already committed to it are skipped.

``BranchReconciler`` brings the branch records back in line with the
repository (vanished branches, closed pull requests, branches created by
another process).
"""

from __future__ import annotations

import logging
import time
from typing import Any, Callable

from docsflow_sync.config_schema import EntityProfile, PublishConfig
from docsflow_sync.core.repository import (
    BranchInfo,
    CommitInfo,
    NewTreeItem,
    PullRequestRef,
    RepositoryClient,
)
from docsflow_sync.errors import NotFoundError, OptimisticConflictError
from docsflow_sync.sync.blob import blob_sha, serialize_content
from docsflow_sync.sync.events import ChangeNotifier, NullNotifier
from docsflow_sync.sync.mapper import EntityMapper
from docsflow_sync.sync.models import (
    BaseDocument,
    BranchStatus,
    ChangeEvent,
    DocumentStatus,
    FileRecord,
    PublishBranch,
    PublishResult,
    UpdateSource,
    utc_now,
)
from docsflow_sync.sync.store import DocumentStore, PublishBranchStore

logger = logging.getLogger(__name__)


def _blob_map(repository: RepositoryClient, ref: str) -> dict[str, str]:
    """Path -> blob id of every file at *ref*."""
    return {e.path: e.sha for e in repository.get_tree(ref) if e.type == "blob"}


class PublishCoordinator:
    """Publish the drafts of one entity as a single commit and pull request.

    Args:
        repository: Remote repository.
        store: Document and publish branch persistence.
        mapper: Entity profiles and branch naming.
        config: Branch prefix and bot identity.
        notifier: Receives a ``publish`` event per published document.
        clock: Seconds since the epoch; used for branch names.
    """

    def __init__(
        self,
        repository: RepositoryClient,
        store: DocumentStore,
        mapper: EntityMapper,
        config: PublishConfig,
        notifier: ChangeNotifier | None = None,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self.repository = repository
        self.store = store
        self.mapper = mapper
        self.config = config
        self.notifier = notifier or NullNotifier()
        self.clock = clock

    @property
    def branches(self) -> PublishBranchStore:
        return self.store  # type: ignore[return-value]

    # ------------------------------------------------------------------
    # Publish
    # ------------------------------------------------------------------

    def publish(
        self, entity: str, actor: str, doc_id: str | None = None
    ) -> PublishResult:
        """Publish the unpublished documents of *entity*.

        Args:
            entity: Entity name.
            actor: User requesting the publish (recorded on the documents
                and in the pull request body).
            doc_id: Publish only this document.

        Raises:
            NotFoundError: Unknown entity, nothing to publish, or the
                default branch is missing.
            RemoteUnavailableError: A repository call failed; no document
                was changed.
        """
        profile = self.mapper.profile(entity)
        documents = self.store.find_pending(entity, doc_id)
        if not documents:
            target = f"'{doc_id}'" if doc_id else f"entity '{entity}'"
            raise NotFoundError(
                f"Nothing to publish for {target}",
                "Save a draft first; only new or modified documents are published.",
            )

        contents = {d.id: serialize_content(d.current_content) for d in documents}
        shas = {path: blob_sha(text) for path, text in contents.items()}
        base = self.repository.default_branch

        selected = self._select_branch(entity, base, shas)
        reused = selected is not None
        if selected is None:
            selected = self._cut_branch(entity, base)
        record, tip, tip_files = selected

        changed = [p for p in sorted(shas) if tip_files.get(p) != shas[p]]
        unchanged = [p for p in sorted(shas) if p not in changed]
        if changed:
            commit = self._commit(profile, entity, actor, tip, changed, contents, shas)
        else:
            logger.info(
                "All %d file(s) already on %s; reusing tip %s",
                len(shas),
                tip.name,
                tip.sha[:7],
            )
            commit = CommitInfo(commit_id=tip.sha)

        pull_request = self._ensure_pull_request(
            profile, entity, actor, tip.name, base, sorted(shas)
        )

        # Store updates only after the commit and pull request exist.
        published, concurrent = self._mark_published(documents, commit, actor, tip.name)
        now = utc_now()
        files = dict(record.files)
        for path, sha in shas.items():
            files[path] = FileRecord(last_published_blob_sha=sha, last_published_at=now)
        self.branches.save_branch(
            PublishBranch(
                id=tip.name,
                entity=entity,
                branch=tip.name,
                base=base,
                files=files,
                pull_request=pull_request,
                status=BranchStatus.OPEN,
                created_at=record.created_at or now,
                last_used_at=now,
            )
        )

        logger.info(
            "Published %d document(s) of %s to %s (%s branch, PR #%d)",
            len(published),
            entity,
            tip.name,
            "reused" if reused else "new",
            pull_request.number,
        )
        return PublishResult(
            entity=entity,
            branch=tip.name,
            reused_branch=reused,
            commit=commit,
            pull_request=pull_request,
            published=published,
            unchanged=unchanged,
            concurrent=concurrent,
        )

    # ------------------------------------------------------------------
    # Branch selection
    # ------------------------------------------------------------------

    def _select_branch(
        self, entity: str, base: str, shas: dict[str, str]
    ) -> tuple[PublishBranch, BranchInfo, dict[str, str]] | None:
        """First reusable open branch, most recently used first."""
        default_files: dict[str, str] | None = None
        for record in self.branches.list_branches(
            entity=entity, base=base, status=BranchStatus.OPEN
        ):
            info = self.repository.get_branch(record.branch)
            if info is None:
                self.branches.mark_stale(record.id)
                continue
            tip_files = _blob_map(self.repository, info.sha)
            if any(p not in record.files for p in shas) and default_files is None:
                default_files = _blob_map(self.repository, base)
            if self._is_reusable(record, tip_files, shas, default_files or {}):
                logger.debug("Reusing publish branch %s", record.branch)
                return record, info, tip_files
            logger.info("Publish branch %s diverged; not reusing it", record.branch)
        return None

    @staticmethod
    def _is_reusable(
        record: PublishBranch,
        tip_files: dict[str, str],
        shas: dict[str, str],
        default_files: dict[str, str],
    ) -> bool:
        """Whether publishing *shas* onto the branch loses nobody's work.

        A path the branch published before must still carry the blob it
        published.  A path it never published must be absent from the
        branch, already hold the new blob, or be untouched relative to the
        default branch.
        """
        for path, sha in shas.items():
            current = tip_files.get(path)
            recorded = record.files.get(path)
            if recorded is not None:
                if current != recorded.last_published_blob_sha:
                    return False
            elif current is not None and current not in (sha, default_files.get(path)):
                return False
        return True

    def _cut_branch(
        self, entity: str, base: str
    ) -> tuple[PublishBranch, BranchInfo, dict[str, str]]:
        """Create a branch at the default tip and record it right away.

        The record starts with no files, so a publish interrupted after
        this point finds and reuses the branch on retry.
        """
        default = self.repository.get_branch(base)
        if default is None:
            raise NotFoundError(f"Default branch '{base}' not found")
        name = self.mapper.branch_name(
            self.config.branch_prefix, entity, int(self.clock() * 1000)
        )
        info = self.repository.create_branch(name, default.sha)
        now = utc_now()
        record = self.branches.save_branch(
            PublishBranch(
                id=name,
                entity=entity,
                branch=name,
                base=base,
                created_at=now,
                last_used_at=now,
            )
        )
        return record, info, _blob_map(self.repository, default.sha)

    # ------------------------------------------------------------------
    # Remote writes
    # ------------------------------------------------------------------

    def _templates(
        self, entity: str, actor: str, paths: list[str]
    ) -> dict[str, Any]:
        return {
            "entity": entity,
            "actor": actor,
            "count": len(paths),
            "paths": "\n".join(f"- {p}" for p in paths),
        }

    def _commit(
        self,
        profile: EntityProfile,
        entity: str,
        actor: str,
        tip: BranchInfo,
        changed: list[str],
        contents: dict[str, str],
        shas: dict[str, str],
    ) -> CommitInfo:
        items = []
        for path in changed:
            sha = self.repository.create_blob(contents[path])
            if sha != shas[path]:
                logger.warning(
                    "Blob id mismatch for %s: local %s, remote %s",
                    path,
                    shas[path][:7],
                    sha[:7],
                )
            items.append(NewTreeItem(path=path, sha=sha))
        tree = self.repository.create_tree(tip.sha, items)
        commit = self.repository.create_commit(
            profile.commit_message.format(**self._templates(entity, actor, changed)),
            tree,
            [tip.sha],
            author={"name": self.config.bot_name, "email": self.config.bot_email},
        )
        self.repository.update_ref(tip.name, commit.commit_id)
        logger.info(
            "Committed %d file(s) to %s as %s", len(items), tip.name, commit.commit_id[:7]
        )
        return commit

    def _ensure_pull_request(
        self,
        profile: EntityProfile,
        entity: str,
        actor: str,
        branch: str,
        base: str,
        paths: list[str],
    ) -> PullRequestRef:
        existing = self.repository.list_open_pull_requests(branch)
        if existing:
            return existing[0]
        values = self._templates(entity, actor, paths)
        return self.repository.create_pull_request(
            profile.pr_title.format(**values),
            profile.pr_body.format(**values),
            branch,
            base,
        )

    # ------------------------------------------------------------------
    # Store updates
    # ------------------------------------------------------------------

    def _mark_published(
        self,
        documents: list[BaseDocument],
        commit: CommitInfo,
        actor: str,
        branch: str,
    ) -> tuple[list[str], list[str]]:
        published: list[str] = []
        concurrent: list[str] = []
        for document in documents:
            content = document.current_content
            try:
                updated = self.store.update_if_unchanged(
                    document.id,
                    {
                        "remote_content": content,
                        "status": DocumentStatus.PUBLISHED,
                        "source": UpdateSource.EDITOR,
                        "last_updated_by": actor,
                        "commit": commit,
                    },
                    document.updated_at,
                )
            except OptimisticConflictError:
                # Edited while publishing: the remote side moved, the new
                # draft stays unpublished.
                logger.warning(
                    "%s changed during publish; keeping it modified", document.id
                )
                self.store.upsert(
                    document.id,
                    {
                        "remote_content": content,
                        "status": DocumentStatus.MODIFIED,
                        "commit": commit,
                    },
                )
                concurrent.append(document.id)
                continue
            published.append(document.id)
            self.notifier.publish(
                ChangeEvent(
                    kind="publish",
                    path=updated.id,
                    actor=actor,
                    payload={
                        "status": updated.status.value,
                        "branch": branch,
                        "commit": commit.commit_id,
                    },
                )
            )
        return published, concurrent


class BranchReconciler:
    """Align publish branch records with the repository.

    Args:
        repository: Remote repository.
        store: Publish branch persistence.
        mapper: Entity profiles and branch naming.
        branch_prefix: Prefix of publish branch names.
    """

    def __init__(
        self,
        repository: RepositoryClient,
        store: PublishBranchStore,
        mapper: EntityMapper,
        branch_prefix: str = "docsflow",
    ) -> None:
        self.repository = repository
        self.store = store
        self.mapper = mapper
        self.branch_prefix = branch_prefix

    def reconcile(self, entity: str | None = None) -> list[PublishBranch]:
        """Refresh open branch records and adopt untracked publish branches.

        Returns:
            The records that were saved.
        """
        remote = {
            b.name: b for b in self.repository.list_branches(f"{self.branch_prefix}-")
        }
        known = {r.branch for r in self.store.list_branches()}
        saved: list[PublishBranch] = []

        for record in self.store.list_branches(entity=entity, status=BranchStatus.OPEN):
            info = remote.get(record.branch)
            if info is None:
                stale = self.store.mark_stale(record.id)
                if stale is not None:
                    saved.append(stale)
                continue
            saved.append(self.store.save_branch(self._refresh(record, info)))

        base = self.repository.default_branch
        default_files: dict[str, str] | None = None
        for name, info in sorted(remote.items()):
            if name in known:
                continue
            owner = self.mapper.entity_from_branch(name, self.branch_prefix)
            if owner is None or (entity is not None and owner != entity):
                continue
            if default_files is None:
                default_files = _blob_map(self.repository, base)
            saved.append(
                self.store.save_branch(self._adopt(name, owner, base, info, default_files))
            )
        return saved

    def _refresh(self, record: PublishBranch, info: BranchInfo) -> PublishBranch:
        tip_files = _blob_map(self.repository, info.sha)
        now = utc_now()
        files = {}
        for path, file_record in record.files.items():
            sha = tip_files.get(path)
            if sha is None:
                continue
            if sha != file_record.last_published_blob_sha:
                file_record = FileRecord(last_published_blob_sha=sha, last_published_at=now)
            files[path] = file_record

        pull_requests = self.repository.list_open_pull_requests(record.branch)
        update: dict[str, Any] = {"files": files}
        if pull_requests:
            update["pull_request"] = pull_requests[0]
        elif record.pull_request is not None:
            logger.info(
                "Pull request #%d of %s is no longer open",
                record.pull_request.number,
                record.branch,
            )
            update["pull_request"] = record.pull_request.model_copy(
                update={"state": "closed"}
            )
            update["status"] = BranchStatus.CLOSED
        return record.model_copy(update=update)

    def _adopt(
        self,
        name: str,
        entity: str,
        base: str,
        info: BranchInfo,
        default_files: dict[str, str],
    ) -> PublishBranch:
        profile = self.mapper.profile(entity)
        now = utc_now()
        tree = self.repository.get_tree(info.sha)
        files = {
            e.path: FileRecord(last_published_blob_sha=e.sha, last_published_at=now)
            for e in self.mapper.document_entries(tree, profile.path)
            if self.mapper.entity_for(e.path) == entity
            and default_files.get(e.path) != e.sha
        }
        pull_requests = self.repository.list_open_pull_requests(name)
        logger.info("Adopting untracked publish branch %s (%s)", name, entity)
        return PublishBranch(
            id=name,
            entity=entity,
            branch=name,
            base=base,
            files=files,
            pull_request=pull_requests[0] if pull_requests else None,
            status=BranchStatus.OPEN,
            created_at=now,
            last_used_at=now,
        )
