"""Pydantic models for the reconciliation and publish engine.

Defines the data contracts shared by all sync modules:

- ``DocumentStatus`` / ``UpdateSource``: lifecycle enums.
- ``ChangeRecord``: one replayable history entry.
- ``Document`` / ``StructuredDocument``: stored records, discriminated by
  ``kind`` (``AnyDocument``).
- ``TreeSnapshot``: filtered listing of one watched path.
- ``PublishBranch`` / ``FileRecord``: publish branch bookkeeping.
- ``SyncBookmark``: last upstream commit fully processed.
- ``TextConflict`` / ``TextMergeResult`` / ``FieldConflict``: merge output.
- ``ChangeEvent``: payload handed to the change notifier.
- ``PublishResult``, ``TreeSyncResult``, ``SyncResult``, ``SyncReport``:
  operation outcomes.

All models are frozen; updates go through ``model_copy`` or the store.
"""

from __future__ import annotations

from datetime import datetime, timezone
from enum import Enum
from typing import Annotated, Any, Literal, Union

from pydantic import BaseModel, Field, model_validator

from docsflow_sync.core.repository import (
    CommitInfo,
    PullRequestRef,
    TreeEntry,
)
from docsflow_sync.sync.structured import same


def utc_now() -> str:
    """Current UTC time as an ISO 8601 string."""
    return datetime.now(timezone.utc).isoformat(timespec="microseconds")


class DocumentStatus(str, Enum):
    NEW = "new"
    MODIFIED = "modified"
    PUBLISHED = "published"


class UpdateSource(str, Enum):
    """Who performed the last mutation of a document."""

    REPOSITORY = "repository"
    EDITOR = "editor"


class BranchStatus(str, Enum):
    OPEN = "open"
    MERGED = "merged"
    CLOSED = "closed"
    STALE = "stale"


# ---------------------------------------------------------------------------
# Documents
# ---------------------------------------------------------------------------


class ChangeRecord(BaseModel):
    """One entry of a document's change journal.

    Attributes:
        timestamp: ISO 8601 time the change was recorded.
        author: User identity or the bot/system name.
        source: Whether the editor or the repository produced the change.
        diff: Line-patch record (text) or structured diff tree.
    """

    timestamp: str
    author: str
    source: UpdateSource
    diff: dict[str, Any]

    model_config = {"frozen": True}


class BaseDocument(BaseModel):
    """Fields shared by text and structured documents.

    ``id`` is the repository path.  ``updated_at`` doubles as the
    optimistic-concurrency token and is assigned by the store.
    """

    id: str
    entity: str
    status: DocumentStatus = DocumentStatus.PUBLISHED
    history: list[ChangeRecord] = []
    last_updated_by: str | None = None
    source: UpdateSource = UpdateSource.REPOSITORY
    commit: CommitInfo | None = None
    created_at: str | None = None
    updated_at: str | None = None

    model_config = {"frozen": True}

    @property
    def path(self) -> str:
        return self.id

    @property
    def current_content(self) -> Any:
        """Draft when one exists, otherwise the remote content."""
        draft = getattr(self, "draft_content")
        return draft if draft is not None else getattr(self, "remote_content")

    @property
    def has_unpublished_changes(self) -> bool:
        return self.status != DocumentStatus.PUBLISHED

    @model_validator(mode="after")
    def _published_draft_matches_remote(self) -> "BaseDocument":
        draft = getattr(self, "draft_content", None)
        remote = getattr(self, "remote_content", None)
        if (
            self.status == DocumentStatus.PUBLISHED
            and draft is not None
            and not same(draft, remote)
        ):
            raise ValueError(
                f"Published document '{self.id}' has a draft that "
                "differs from its remote content"
            )
        return self


class Document(BaseDocument):
    """A text document (markdown or any line-oriented file)."""

    kind: Literal["text"] = "text"
    remote_content: str = ""
    draft_content: str | None = None


class StructuredDocument(BaseDocument):
    """A JSON-tree document.  Both sides must be mappings at the root."""

    kind: Literal["structured"] = "structured"
    remote_content: dict[str, Any] = {}
    draft_content: dict[str, Any] | None = None


AnyDocument = Annotated[
    Union[Document, StructuredDocument], Field(discriminator="kind")
]


# ---------------------------------------------------------------------------
# Trees, branches, bookmarks
# ---------------------------------------------------------------------------


class TreeSnapshot(BaseModel):
    """Latest commit and filtered blob listing of one watched path."""

    path: str
    commit: CommitInfo | None = None
    entries: list[TreeEntry] = []
    updated_at: str | None = None

    model_config = {"frozen": True}

    @property
    def ghosts(self) -> list[TreeEntry]:
        return [e for e in self.entries if e.ghost]


class FileRecord(BaseModel):
    last_published_blob_sha: str
    last_published_at: str

    model_config = {"frozen": True}


class PublishBranch(BaseModel):
    """Bookkeeping for one remote publish branch.

    Attributes:
        id: Store key (the branch name).
        entity: Document family the branch publishes.
        branch: Remote branch name.
        base: Branch the pull request targets.
        files: Path -> blob id last committed to this branch.
        pull_request: Open pull request for the branch, if any.
        status: ``open`` until merged, closed, or gone (``stale``).
        last_used_at: ISO 8601 time of the last publish through it.
    """

    id: str
    entity: str
    branch: str
    base: str
    files: dict[str, FileRecord] = {}
    pull_request: PullRequestRef | None = None
    status: BranchStatus = BranchStatus.OPEN
    created_at: str | None = None
    last_used_at: str | None = None

    model_config = {"frozen": True}


class SyncBookmark(BaseModel):
    key: str
    commit_id: str
    timestamp: str

    model_config = {"frozen": True}


# ---------------------------------------------------------------------------
# Merge output
# ---------------------------------------------------------------------------


class TextConflict(BaseModel):
    """One region where both sides changed the base differently.

    Line lists keep their line endings.
    """

    base: list[str]
    yours: list[str]
    theirs: list[str]

    model_config = {"frozen": True}


class TextMergeResult(BaseModel):
    is_clean: bool
    merged_text: str
    conflicts: list[TextConflict] = []

    model_config = {"frozen": True}


class FieldConflict(BaseModel):
    """A field (or sequence item) edited differently on both sides.

    ``path`` addresses the field from the root: mapping keys and sequence
    item keys.  A side that deleted the field has ``*_present=False``.
    """

    path: list[str]
    base: Any = None
    local: Any = None
    incoming: Any = None
    base_present: bool = True
    local_present: bool = True
    incoming_present: bool = True

    model_config = {"frozen": True}

    @property
    def key(self) -> str:
        return "/".join(self.path)


# ---------------------------------------------------------------------------
# Events
# ---------------------------------------------------------------------------


class ChangeEvent(BaseModel):
    """Structured change notification.

    ``stream`` is ``doc`` for document-level events and ``tree`` for
    snapshot refreshes.  Consumers must tolerate duplicates.
    """

    kind: str
    path: str
    actor: str
    stream: Literal["doc", "tree"] = "doc"
    timestamp: str = Field(default_factory=utc_now)
    payload: dict[str, Any] = {}

    model_config = {"frozen": True}


# ---------------------------------------------------------------------------
# Operation outcomes
# ---------------------------------------------------------------------------


class PublishResult(BaseModel):
    """Outcome of one publish call.

    Attributes:
        entity: Entity that was published.
        branch: Branch the commit landed on.
        reused_branch: ``True`` when an existing open branch was reused.
        commit: New commit, or the branch tip when nothing changed.
        pull_request: Pull request reused or opened for the branch.
        published: Paths whose store records were marked published.
        unchanged: Paths whose blob already matched the branch tip.
        concurrent: Paths edited during the publish; left ``modified``.
    """

    entity: str
    branch: str
    reused_branch: bool
    commit: CommitInfo | None = None
    pull_request: PullRequestRef | None = None
    published: list[str] = []
    unchanged: list[str] = []
    concurrent: list[str] = []

    model_config = {"frozen": True}


class TreeSyncResult(BaseModel):
    path: str
    commit_id: str | None = None
    entries: int = 0
    ghosts: list[str] = []
    removed: list[str] = []

    model_config = {"frozen": True}


class SyncAction(str, Enum):
    """What an upstream refresh did to one document."""

    CREATED = "created"
    UPDATED = "updated"
    REMOVED = "removed"
    GHOSTED = "ghosted"
    SKIPPED = "skipped"


class SyncResult(BaseModel):
    path: str
    action: SyncAction
    success: bool
    error: str | None = None

    model_config = {"frozen": True}


class SyncReport(BaseModel):
    """Aggregate report of one upstream sync run.

    Attributes:
        trigger: ``push`` for webhook deliveries, ``entity`` for periodic
            refreshes.
        commit_id: Upstream commit the run synced to.
        results: Per-path outcomes.
        trees: Snapshot refreshes performed after the file updates.
        bookmark_advanced: Whether the sync bookmark moved to ``commit_id``.
    """

    trigger: str
    commit_id: str | None = None
    results: list[SyncResult] = []
    trees: list[TreeSyncResult] = []
    bookmark_advanced: bool = False
    started_at: str
    completed_at: str | None = None

    model_config = {"frozen": True}

    def by_action(self, action: SyncAction) -> list[SyncResult]:
        return [r for r in self.results if r.action == action and r.success]

    @property
    def errors(self) -> list[SyncResult]:
        """Results where success is False."""
        return [r for r in self.results if not r.success]

    def summary(self) -> str:
        """Format a human-readable summary of the run."""
        lines = [
            f"Sync report ({self.trigger})"
            + (f" at {self.commit_id[:7]}" if self.commit_id else ""),
            f"  Created:  {len(self.by_action(SyncAction.CREATED))}",
            f"  Updated:  {len(self.by_action(SyncAction.UPDATED))}",
            f"  Removed:  {len(self.by_action(SyncAction.REMOVED))}",
            f"  Ghosted:  {len(self.by_action(SyncAction.GHOSTED))}",
            f"  Skipped:  {len(self.by_action(SyncAction.SKIPPED))}",
            f"  Errors:   {len(self.errors)}",
            f"  Trees:    {len(self.trees)}",
            f"  Total:    {len(self.results)}",
        ]
        return "\n".join(lines)
