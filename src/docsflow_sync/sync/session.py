"""Live reconciliation of an open editing buffer.

An ``EditingSession`` holds the in-memory copy of one document while an
editor works on it.  When a newer stored version arrives (another editor
saved, or upstream was refreshed) ``receive`` reconciles it without
blocking the buffer:

* unchanged incoming content is ignored;
* a clean buffer adopts the incoming content;
* a dirty buffer is merged (line merge for text, ``merge_silently`` for
  structured content) and the merge is adopted only if it is clean;
* otherwise the incoming version is parked as ``pending`` and ``save``
  refuses until ``resolve`` is called.

Every transition replaces the whole frozen ``BufferState`` in a single
assignment, so readers see either the prior state or the fully merged
one.
"""

from __future__ import annotations

import copy
import logging
import threading
from typing import Any

from pydantic import BaseModel

from docsflow_sync.errors import MergeConflictError
from docsflow_sync.sync.classifier import classify, merge_silently, resolve
from docsflow_sync.sync.drafts import DraftService
from docsflow_sync.sync.merger import ThreeWayTextMerger
from docsflow_sync.sync.models import (
    BaseDocument,
    FieldConflict,
    TextConflict,
)
from docsflow_sync.sync.resolver import ConflictPolicy
from docsflow_sync.sync.structured import same

logger = logging.getLogger(__name__)


class PendingIncoming(BaseModel):
    """An incoming version that could not be merged automatically.

    Attributes:
        incoming: The incoming content.
        updated_at: Store token of the incoming version.
        seed: Text to seed a manual editor with (text documents).
        text_conflicts: Conflicting regions (text documents).
        field_conflicts: Conflicting fields (structured documents).
    """

    incoming: Any
    updated_at: str | None = None
    seed: str | None = None
    text_conflicts: list[TextConflict] = []
    field_conflicts: list[FieldConflict] = []

    model_config = {"frozen": True}


class BufferState(BaseModel):
    base: Any
    buffer: Any
    updated_at: str | None = None
    pending: PendingIncoming | None = None

    model_config = {"frozen": True}

    @property
    def dirty(self) -> bool:
        return not same(self.buffer, self.base)


class EditingSession:
    """Editing buffer of one document.

    Args:
        document: Stored document the editor opened.
        key_field: Sequence item key for structured documents.
        policy: Conflict rendering policy for text seeds.
    """

    def __init__(
        self,
        document: BaseDocument,
        key_field: str = "name",
        policy: str | ConflictPolicy = "theirs",
    ) -> None:
        self.doc_id = document.id
        self.structured = document.kind == "structured"  # type: ignore[attr-defined]
        self.key_field = key_field
        self._merger = ThreeWayTextMerger(policy)
        self._lock = threading.Lock()
        content = document.current_content
        self._state = BufferState(
            base=content,
            buffer=copy.deepcopy(content),
            updated_at=document.updated_at,
        )

    @property
    def state(self) -> BufferState:
        return self._state

    @property
    def buffer(self) -> Any:
        return self._state.buffer

    @property
    def pending(self) -> PendingIncoming | None:
        return self._state.pending

    def edit(self, content: Any) -> None:
        """Replace the buffer with the editor's content."""
        with self._lock:
            self._state = self._state.model_copy(
                update={"buffer": copy.deepcopy(content)}
            )

    # ------------------------------------------------------------------
    # Incoming versions
    # ------------------------------------------------------------------

    def receive(self, document: BaseDocument) -> str:
        """Reconcile a newer stored version of the document.

        Returns:
            ``"ignored"``, ``"adopted"``, ``"merged"`` or ``"conflict"``.
        """
        incoming = document.current_content
        with self._lock:
            state = self._state
            if same(incoming, state.base):
                self._state = state.model_copy(
                    update={"updated_at": document.updated_at, "pending": None}
                )
                return "ignored"

            if not state.dirty or same(state.buffer, incoming):
                self._state = BufferState(
                    base=incoming,
                    buffer=copy.deepcopy(incoming),
                    updated_at=document.updated_at,
                )
                return "adopted"

            if self.structured:
                outcome, new_state = self._receive_structured(state, incoming, document)
            else:
                outcome, new_state = self._receive_text(state, incoming, document)
            self._state = new_state

        logger.info("Incoming version of %s: %s", self.doc_id, outcome)
        return outcome

    def _receive_text(
        self, state: BufferState, incoming: str, document: BaseDocument
    ) -> tuple[str, BufferState]:
        result = self._merger.merge(state.buffer, state.base, incoming)
        if result.is_clean:
            return "merged", BufferState(
                base=incoming,
                buffer=result.merged_text,
                updated_at=document.updated_at,
            )
        pending = PendingIncoming(
            incoming=incoming,
            updated_at=document.updated_at,
            seed=result.merged_text,
            text_conflicts=result.conflicts,
        )
        return "conflict", state.model_copy(update={"pending": pending})

    def _receive_structured(
        self, state: BufferState, incoming: Any, document: BaseDocument
    ) -> tuple[str, BufferState]:
        conflicts = classify(state.base, state.buffer, incoming, self.key_field)
        if not conflicts:
            merged = merge_silently(
                state.base, state.buffer, incoming, self.key_field
            )
            return "merged", BufferState(
                base=incoming, buffer=merged, updated_at=document.updated_at
            )
        pending = PendingIncoming(
            incoming=incoming,
            updated_at=document.updated_at,
            field_conflicts=conflicts,
        )
        return "conflict", state.model_copy(update={"pending": pending})

    # ------------------------------------------------------------------
    # Resolution and saving
    # ------------------------------------------------------------------

    def resolve(self, resolution: Any) -> Any:
        """Settle the pending incoming version.

        Args:
            resolution: Final text for text documents; a pick per
                conflict key (``"base"``, ``"local"``, ``"incoming"``)
                for structured documents.

        Returns:
            The new buffer content.
        """
        with self._lock:
            state = self._state
            pending = state.pending
            if pending is None:
                raise MergeConflictError(f"No pending conflict on '{self.doc_id}'")
            if self.structured:
                merged = resolve(
                    state.base,
                    state.buffer,
                    pending.incoming,
                    resolution,
                    self.key_field,
                )
            else:
                merged = resolution
            self._state = BufferState(
                base=pending.incoming,
                buffer=merged,
                updated_at=pending.updated_at,
            )
            return merged

    def save(self, drafts: DraftService, actor: str) -> BaseDocument:
        """Persist the buffer as the document's draft.

        Raises:
            MergeConflictError: While an incoming version is unresolved.
            OptimisticConflictError: If the store moved on since the last
                version this session saw.
        """
        state = self._state
        if state.pending is not None:
            conflicts = state.pending.field_conflicts or state.pending.text_conflicts
            raise MergeConflictError(
                f"Resolve the incoming update to '{self.doc_id}' before saving",
                list(conflicts),
            )
        document = drafts.save_draft(
            self.doc_id, state.buffer, actor, expected_updated_at=state.updated_at
        )
        with self._lock:
            self._state = BufferState(
                base=document.current_content,
                buffer=copy.deepcopy(document.current_content),
                updated_at=document.updated_at,
            )
        return document
