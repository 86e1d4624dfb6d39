"""Reconciliation and publish engine for repository-backed documents.

Public API for keeping editor drafts of repository files (markdown text
and JSON trees) in step with the repository, and for publishing drafts
back as a single commit and pull request.

Architecture
------------
Documents carry two sides: ``remote_content`` (last known upstream) and
``draft_content`` (the editor's copy).  Every draft mutation appends a
replayable ``ChangeRecord`` (a line patch for text, a structured diff
for JSON).  Incoming versions are reconciled against open buffers with a
three-way merge: line-based for text, field-based for JSON trees.
Publishing compares locally computed git blob ids against the branch
tip, so unchanged files never cost a network round-trip.

Modules:

- ``blob``       -- git-compatible blob ids of canonical serializations.
- ``merger``     -- ``ThreeWayTextMerger`` (via ``merge3``) and
  ``LinePatchCodec``.
- ``resolver``   -- Conflict rendering policies (theirs, yours, markers).
- ``structured`` -- Keyed diff/apply of JSON trees.
- ``classifier`` -- Field conflict detection, silent merge, resolution.
- ``journal``    -- ``ChangeRecord`` construction and history replay.
- ``store``      -- Document, branch and snapshot persistence.
- ``mapper``     -- ``EntityMapper``: config-driven path routing.
- ``drafts``     -- ``DraftService``: read-through, saves, upstream refresh.
- ``session``    -- ``EditingSession``: live reconciliation of a buffer.
- ``tree``       -- ``TreeSyncEngine``: snapshots with ghost retention.
- ``publish``    -- ``PublishCoordinator`` and ``BranchReconciler``.
- ``webhook``    -- Push signature check and payload parsing.
- ``engine``     -- ``UpstreamSyncEngine``: webhook and periodic runs.
- ``events``     -- ``ChangeHub``, subscriptions and watch strategies.
- ``reporter``   -- Human-readable and JSON report formatting.

Usage example
-------------
::

    from docsflow_sync.config_schema import EntityProfile, PublishConfig
    from docsflow_sync.sync import (
        DraftService,
        EntityMapper,
        InMemoryStore,
        PublishCoordinator,
        format_publish_result,
    )

    mapper = EntityMapper({"docs": EntityProfile(path="docs")})
    store = InMemoryStore()
    drafts = DraftService(store, client, mapper)   # client: GitHubClient

    drafts.save_draft("docs/intro.md", "Hello\\n", actor="alice")
    publisher = PublishCoordinator(client, store, mapper, PublishConfig())
    print(format_publish_result(publisher.publish("docs", actor="alice")))
"""

from .blob import blob_sha, content_blob_sha, serialize_content
from .classifier import classify, merge_silently, resolve
from .drafts import DraftService
from .engine import UpstreamSyncEngine
from .events import (
    ChangeHub,
    ChangeNotifier,
    Subscription,
    WatchQuery,
    select_watch_strategy,
)
from .mapper import EntityMapper
from .merger import LinePatchCodec, ThreeWayTextMerger, merge_text
from .models import (
    ChangeEvent,
    Document,
    DocumentStatus,
    FieldConflict,
    PublishResult,
    StructuredDocument,
    SyncAction,
    SyncReport,
    TextMergeResult,
)
from .publish import BranchReconciler, PublishCoordinator
from .reporter import format_publish_result, format_sync_report, report_to_json
from .session import EditingSession
from .store import InMemoryStore, JsonFileStore
from .structured import apply_diff, diff
from .tree import TreeSyncEngine
from .webhook import parse_push_event, verify_signature

__all__ = [
    "BranchReconciler",
    "ChangeEvent",
    "ChangeHub",
    "ChangeNotifier",
    "Document",
    "DocumentStatus",
    "DraftService",
    "EditingSession",
    "EntityMapper",
    "FieldConflict",
    "InMemoryStore",
    "JsonFileStore",
    "LinePatchCodec",
    "PublishCoordinator",
    "PublishResult",
    "StructuredDocument",
    "Subscription",
    "SyncAction",
    "SyncReport",
    "TextMergeResult",
    "ThreeWayTextMerger",
    "TreeSyncEngine",
    "UpstreamSyncEngine",
    "WatchQuery",
    "apply_diff",
    "blob_sha",
    "classify",
    "content_blob_sha",
    "diff",
    "format_publish_result",
    "format_sync_report",
    "merge_silently",
    "merge_text",
    "parse_push_event",
    "report_to_json",
    "resolve",
    "select_watch_strategy",
    "serialize_content",
    "verify_signature",
]
