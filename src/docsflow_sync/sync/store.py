"""Document, branch and snapshot persistence.

The engines only talk to the ``DocumentStore``, ``PublishBranchStore`` and
``SnapshotStore`` protocols.  Two implementations ship here:

* ``InMemoryStore`` -- thread-safe dicts, used by tests and single-process
  deployments.
* ``JsonFileStore`` -- the in-memory store persisted to one JSON file per
  collection in a state directory.

Key design choices:

* **Optimistic concurrency** -- every write stamps ``updated_at`` with a
  strictly increasing ISO timestamp; ``update_if_unchanged`` rejects a
  write whose expected token is stale with ``OptimisticConflictError``.
* **Atomic writes** -- ``JsonFileStore`` writes to a temp file then calls
  ``os.replace()`` so readers never see partial data.
* **Rollback on failed writes** -- a collection whose write to disk fails
  is restored in memory before the error propagates.
* **Validated records** -- patches are merged into the stored record and
  re-validated, so invariants on the models hold after every write.
"""

from __future__ import annotations

import json
import logging
import os
import tempfile
import threading
from collections.abc import Iterator
from contextlib import contextmanager
from datetime import datetime, timedelta
from pathlib import Path
from typing import Any, Protocol

import pydantic
from pydantic import TypeAdapter

from docsflow_sync.errors import (
    NotFoundError,
    OptimisticConflictError,
    ValidationError,
)
from docsflow_sync.sync.models import (
    AnyDocument,
    BaseDocument,
    BranchStatus,
    ChangeRecord,
    DocumentStatus,
    PublishBranch,
    SyncBookmark,
    TreeSnapshot,
    utc_now,
)

logger = logging.getLogger(__name__)

_document_adapter: TypeAdapter[Any] = TypeAdapter(AnyDocument)


# ---------------------------------------------------------------------------
# Protocols
# ---------------------------------------------------------------------------


class DocumentStore(Protocol):
    def find_by_id(self, doc_id: str) -> BaseDocument | None:
        ...  # pragma: no cover

    def upsert(self, doc_id: str, patch: dict[str, Any]) -> BaseDocument:
        ...  # pragma: no cover

    def append_history(self, doc_id: str, record: ChangeRecord) -> BaseDocument:
        ...  # pragma: no cover

    def update_if_unchanged(
        self,
        doc_id: str,
        patch: dict[str, Any],
        expected_updated_at: str | None,
    ) -> BaseDocument:
        ...  # pragma: no cover

    def delete(self, doc_id: str) -> bool:
        ...  # pragma: no cover

    def find_by_prefix(self, prefix: str) -> list[BaseDocument]:
        ...  # pragma: no cover

    def find_pending(
        self, entity: str, doc_id: str | None = None
    ) -> list[BaseDocument]:
        ...  # pragma: no cover

    def find_updated_since(
        self, timestamp: str, prefix: str = ""
    ) -> list[BaseDocument]:
        ...  # pragma: no cover


class PublishBranchStore(Protocol):
    def list_branches(
        self,
        entity: str | None = None,
        base: str | None = None,
        status: BranchStatus | None = None,
    ) -> list[PublishBranch]:
        ...  # pragma: no cover

    def get_branch(self, branch_id: str) -> PublishBranch | None:
        ...  # pragma: no cover

    def save_branch(self, branch: PublishBranch) -> PublishBranch:
        ...  # pragma: no cover

    def mark_stale(self, branch_id: str) -> PublishBranch | None:
        ...  # pragma: no cover


class SnapshotStore(Protocol):
    def get_snapshot(self, path: str) -> TreeSnapshot | None:
        ...  # pragma: no cover

    def save_snapshot(self, snapshot: TreeSnapshot) -> TreeSnapshot:
        ...  # pragma: no cover

    def get_bookmark(self, key: str) -> SyncBookmark | None:
        ...  # pragma: no cover

    def save_bookmark(self, bookmark: SyncBookmark) -> None:
        ...  # pragma: no cover


def in_prefix(path: str, prefix: str) -> bool:
    """Whether *path* is *prefix* itself or lies under it."""
    prefix = prefix.strip("/")
    if not prefix:
        return True
    return path == prefix or path.startswith(prefix + "/")


# ---------------------------------------------------------------------------
# In-memory implementation
# ---------------------------------------------------------------------------


class InMemoryStore:
    """All three store protocols over plain dicts guarded by one lock."""

    def __init__(self) -> None:
        self._documents: dict[str, BaseDocument] = {}
        self._branches: dict[str, PublishBranch] = {}
        self._snapshots: dict[str, TreeSnapshot] = {}
        self._bookmarks: dict[str, SyncBookmark] = {}
        self._collections: dict[str, dict[str, Any]] = {
            "documents": self._documents,
            "branches": self._branches,
            "snapshots": self._snapshots,
            "bookmarks": self._bookmarks,
        }
        self._lock = threading.RLock()
        self._last_stamp: str | None = None

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    def _stamp(self) -> str:
        """Strictly increasing timestamp for ``updated_at`` tokens."""
        stamp = utc_now()
        if self._last_stamp is not None and stamp <= self._last_stamp:
            last = datetime.fromisoformat(self._last_stamp)
            stamp = (last + timedelta(microseconds=1)).isoformat(
                timespec="microseconds"
            )
        self._last_stamp = stamp
        return stamp

    def _persist(self, collection: str) -> None:
        """Hook for durable subclasses; called after each mutation."""

    @contextmanager
    def _mutating(self, collection: str) -> Iterator[dict[str, Any]]:
        """Yield *collection* for mutation and persist it on exit.

        If persisting fails the collection is restored to its prior
        contents, so memory never holds a write the disk rejected.
        """
        items = self._collections[collection]
        before = dict(items)
        try:
            yield items
            self._persist(collection)
        except BaseException:
            items.clear()
            items.update(before)
            raise

    # ------------------------------------------------------------------
    # Documents
    # ------------------------------------------------------------------

    def find_by_id(self, doc_id: str) -> BaseDocument | None:
        with self._lock:
            return self._documents.get(doc_id)

    def upsert(self, doc_id: str, patch: dict[str, Any]) -> BaseDocument:
        """Create or patch a document and return the stored record.

        Raises:
            ValidationError: If the patched record violates the model.
        """
        with self._lock:
            existing = self._documents.get(doc_id)
            stamp = self._stamp()
            if existing is None:
                data = {"created_at": stamp, "kind": "text", **patch}
            else:
                data = {**existing.model_dump(), **patch}
            data["id"] = doc_id
            data["updated_at"] = stamp
            try:
                document = _document_adapter.validate_python(data)
            except pydantic.ValidationError as exc:
                raise ValidationError(
                    f"Invalid document '{doc_id}': {exc}"
                ) from exc
            with self._mutating("documents") as documents:
                documents[doc_id] = document
            return document

    def append_history(self, doc_id: str, record: ChangeRecord) -> BaseDocument:
        with self._lock:
            existing = self._require(doc_id)
            return self.upsert(
                doc_id, {"history": [*existing.history, record]}
            )

    def update_if_unchanged(
        self,
        doc_id: str,
        patch: dict[str, Any],
        expected_updated_at: str | None,
    ) -> BaseDocument:
        """Apply *patch* only if the stored token equals *expected_updated_at*.

        Raises:
            NotFoundError: If the document does not exist.
            OptimisticConflictError: If the stored token has moved on.
        """
        with self._lock:
            existing = self._require(doc_id)
            if existing.updated_at != expected_updated_at:
                raise OptimisticConflictError(
                    doc_id, expected_updated_at, existing.updated_at
                )
            return self.upsert(doc_id, patch)

    def delete(self, doc_id: str) -> bool:
        with self._lock:
            if doc_id not in self._documents:
                return False
            with self._mutating("documents") as documents:
                del documents[doc_id]
            return True

    def find_by_prefix(self, prefix: str) -> list[BaseDocument]:
        with self._lock:
            return sorted(
                (d for d in self._documents.values() if in_prefix(d.id, prefix)),
                key=lambda d: d.id,
            )

    def find_pending(
        self, entity: str, doc_id: str | None = None
    ) -> list[BaseDocument]:
        """Documents of *entity* whose status is not ``published``."""
        with self._lock:
            return sorted(
                (
                    d
                    for d in self._documents.values()
                    if d.entity == entity
                    and d.status != DocumentStatus.PUBLISHED
                    and (doc_id is None or d.id == doc_id)
                ),
                key=lambda d: d.id,
            )

    def find_updated_since(
        self, timestamp: str, prefix: str = ""
    ) -> list[BaseDocument]:
        with self._lock:
            return sorted(
                (
                    d
                    for d in self._documents.values()
                    if d.updated_at is not None
                    and d.updated_at > timestamp
                    and in_prefix(d.id, prefix)
                ),
                key=lambda d: d.updated_at or "",
            )

    def _require(self, doc_id: str) -> BaseDocument:
        document = self._documents.get(doc_id)
        if document is None:
            raise NotFoundError(f"Document '{doc_id}' not found")
        return document

    # ------------------------------------------------------------------
    # Publish branches
    # ------------------------------------------------------------------

    def list_branches(
        self,
        entity: str | None = None,
        base: str | None = None,
        status: BranchStatus | None = None,
    ) -> list[PublishBranch]:
        """Matching branches, most recently used first."""
        with self._lock:
            branches = [
                b
                for b in self._branches.values()
                if (entity is None or b.entity == entity)
                and (base is None or b.base == base)
                and (status is None or b.status == status)
            ]
        return sorted(
            branches, key=lambda b: b.last_used_at or "", reverse=True
        )

    def get_branch(self, branch_id: str) -> PublishBranch | None:
        with self._lock:
            return self._branches.get(branch_id)

    def save_branch(self, branch: PublishBranch) -> PublishBranch:
        with self._lock:
            with self._mutating("branches") as branches:
                branches[branch.id] = branch
            return branch

    def mark_stale(self, branch_id: str) -> PublishBranch | None:
        with self._lock:
            branch = self._branches.get(branch_id)
            if branch is None:
                return None
            logger.info("Marking publish branch %s as stale", branch.branch)
            return self.save_branch(
                branch.model_copy(update={"status": BranchStatus.STALE})
            )

    # ------------------------------------------------------------------
    # Snapshots and bookmarks
    # ------------------------------------------------------------------

    def get_snapshot(self, path: str) -> TreeSnapshot | None:
        with self._lock:
            return self._snapshots.get(path)

    def save_snapshot(self, snapshot: TreeSnapshot) -> TreeSnapshot:
        with self._lock:
            snapshot = snapshot.model_copy(update={"updated_at": utc_now()})
            with self._mutating("snapshots") as snapshots:
                snapshots[snapshot.path] = snapshot
            return snapshot

    def list_snapshots(self) -> list[TreeSnapshot]:
        with self._lock:
            return sorted(self._snapshots.values(), key=lambda s: s.path)

    def get_bookmark(self, key: str) -> SyncBookmark | None:
        with self._lock:
            return self._bookmarks.get(key)

    def save_bookmark(self, bookmark: SyncBookmark) -> None:
        with self._lock:
            with self._mutating("bookmarks") as bookmarks:
                bookmarks[bookmark.key] = bookmark


# ---------------------------------------------------------------------------
# JSON file implementation
# ---------------------------------------------------------------------------


class JsonFileStore(InMemoryStore):
    """``InMemoryStore`` persisted under *state_dir*.

    Each collection lives in ``<collection>.json``; files are loaded once
    at construction and rewritten atomically after every mutation.

    Args:
        state_dir: Directory holding the collection files (created on
            first write).
    """

    def __init__(self, state_dir: Path) -> None:
        super().__init__()
        self._state_dir = Path(state_dir)
        self._load()

    def _path(self, collection: str) -> Path:
        return self._state_dir / f"{collection}.json"

    def _load(self) -> None:
        loaders = {
            "documents": (self._documents, _document_adapter.validate_python),
            "branches": (self._branches, PublishBranch.model_validate),
            "snapshots": (self._snapshots, TreeSnapshot.model_validate),
            "bookmarks": (self._bookmarks, SyncBookmark.model_validate),
        }
        for collection, (target, validate) in loaders.items():
            path = self._path(collection)
            if not path.exists():
                continue
            with open(path, encoding="utf-8") as fh:
                raw = json.load(fh)
            for key, item in raw.items():
                target[key] = validate(item)  # type: ignore[index]
            logger.debug("Loaded %d %s from %s", len(raw), collection, path)

        stamps = [d.updated_at for d in self._documents.values() if d.updated_at]
        self._last_stamp = max(stamps) if stamps else None

    def _persist(self, collection: str) -> None:
        """Write *collection* to disk atomically."""
        items = self._collections[collection]
        payload = {
            key: value.model_dump(mode="json") for key, value in items.items()
        }

        self._state_dir.mkdir(parents=True, exist_ok=True)
        fd, tmp_path = tempfile.mkstemp(
            dir=str(self._state_dir), suffix=".tmp"
        )
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as fh:
                json.dump(payload, fh, indent=2, ensure_ascii=False)
            os.replace(tmp_path, self._path(collection))
        except BaseException:
            # Clean up temp file on any failure.
            try:
                os.unlink(tmp_path)
            except OSError:
                pass
            raise
