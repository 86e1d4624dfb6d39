"""Draft lifecycle of stored documents.

``DraftService`` owns every write to a document's content:

- ``fetch``: read-through from the repository on a store miss; a fetched
  document starts ``published`` with no draft.
- ``create``: a document the editor adds before it exists upstream
  (``status = new``).
- ``save_draft``: editor saves, journaled and guarded by the optimistic
  ``updated_at`` token.
- ``apply_upstream`` / ``handle_upstream_removal``: repository-side
  refreshes.  Published documents follow upstream (draft included);
  documents with unpublished edits keep their draft.

History starts from the empty draft, so replaying a document's history
always reproduces its current draft.
"""

from __future__ import annotations

import json
import logging
from typing import Any

from docsflow_sync.config_schema import EntityProfile
from docsflow_sync.core.repository import CommitInfo, RepositoryClient
from docsflow_sync.errors import (
    NotFoundError,
    OptimisticConflictError,
    ValidationError,
)
from docsflow_sync.sync.events import ChangeNotifier, NullNotifier
from docsflow_sync.sync.journal import build_change, replay_history
from docsflow_sync.sync.mapper import EntityMapper
from docsflow_sync.sync.models import (
    BaseDocument,
    ChangeEvent,
    ChangeRecord,
    DocumentStatus,
    SyncAction,
    UpdateSource,
)
from docsflow_sync.sync.store import DocumentStore
from docsflow_sync.sync.structured import changed_paths, diff, same
from docsflow_sync.validators import (
    validate_path,
    validate_structured_payload,
    validate_text_payload,
)

logger = logging.getLogger(__name__)


class DraftService:
    """Read-through, draft saves and upstream refreshes of documents.

    Args:
        store: Document persistence.
        repository: Remote repository (read-only use).
        mapper: Path to entity routing.
        notifier: Receives a ``doc`` event after every write.
        system_actor: Author recorded for repository-side changes when the
            commit has none.
    """

    def __init__(
        self,
        store: DocumentStore,
        repository: RepositoryClient,
        mapper: EntityMapper,
        notifier: ChangeNotifier | None = None,
        system_actor: str = "DocsFlow Bot",
    ) -> None:
        self.store = store
        self.repository = repository
        self.mapper = mapper
        self.notifier = notifier or NullNotifier()
        self.system_actor = system_actor

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _entity(self, path: str) -> tuple[str, EntityProfile]:
        is_valid, message = validate_path(path)
        if not is_valid:
            raise ValidationError(message)
        entity = self.mapper.entity_for(path)
        if entity is None:
            raise NotFoundError(
                f"'{path}' is not a tracked document",
                "Check the entity paths, extensions and excludes in config.",
            )
        return entity, self.mapper.profile(entity)

    @staticmethod
    def _validate(profile: EntityProfile, content: Any) -> None:
        if profile.kind == "structured":
            is_valid, message = validate_structured_payload(content)
        else:
            is_valid, message = validate_text_payload(content)
        if not is_valid:
            raise ValidationError(message)

    def parse_remote(self, profile: EntityProfile, text: str) -> Any:
        """Decode repository file text into document content."""
        if profile.kind != "structured":
            return text
        try:
            content = json.loads(text)
        except json.JSONDecodeError as exc:
            raise ValidationError(f"Upstream file is not valid JSON: {exc}") from exc
        self._validate(profile, content)
        return content

    def _notify(self, kind: str, document: BaseDocument, actor: str, **payload: Any) -> None:
        self.notifier.publish(
            ChangeEvent(
                kind=kind,
                path=document.id,
                actor=actor,
                stream="doc",
                payload={
                    "status": document.status.value,
                    "source": document.source.value,
                    **payload,
                },
            )
        )

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def fetch(self, path: str) -> BaseDocument:
        """Stored document, read through from the repository on a miss.

        Raises:
            NotFoundError: If the path is untracked or absent upstream.
            RemoteUnavailableError: If the repository call fails.
        """
        document = self.store.find_by_id(path)
        if document is not None:
            return document

        entity, profile = self._entity(path)
        text = self.repository.get_file_content(path)
        if text is None:
            raise NotFoundError(f"'{path}' does not exist upstream")
        commit = self.repository.get_commit_metadata(path)
        logger.info("Read-through of %s at %s", path, commit.commit_id[:7] if commit else "?")
        return self.store.upsert(
            path,
            {
                "kind": profile.kind,
                "entity": entity,
                "remote_content": self.parse_remote(profile, text),
                "status": DocumentStatus.PUBLISHED,
                "source": UpdateSource.REPOSITORY,
                "last_updated_by": (commit.author if commit else None)
                or self.system_actor,
                "commit": commit,
            },
        )

    def history(self, path: str) -> list[ChangeRecord]:
        document = self.store.find_by_id(path)
        if document is None:
            raise NotFoundError(f"Document '{path}' not found")
        return list(document.history)

    def replay(self, path: str) -> Any:
        """Rebuild the draft of *path* from its history."""
        document = self.store.find_by_id(path)
        if document is None:
            raise NotFoundError(f"Document '{path}' not found")
        key_field = self.mapper.profile(document.entity).key_field
        return replay_history(document.history, None, key_field)

    # ------------------------------------------------------------------
    # Editor writes
    # ------------------------------------------------------------------

    def create(self, path: str, content: Any, actor: str) -> BaseDocument:
        """Add a document that does not exist upstream yet.

        Raises:
            ValidationError: If the path is already stored or the content
                is malformed.
        """
        entity, profile = self._entity(path)
        self._validate(profile, content)
        if self.store.find_by_id(path) is not None:
            raise ValidationError(f"Document '{path}' already exists")

        record = build_change(
            None,
            content,
            author=actor,
            source=UpdateSource.EDITOR,
            key_field=profile.key_field,
        )
        document = self.store.upsert(
            path,
            {
                "kind": profile.kind,
                "entity": entity,
                "remote_content": "" if profile.kind == "text" else {},
                "draft_content": content,
                "status": DocumentStatus.NEW,
                "source": UpdateSource.EDITOR,
                "last_updated_by": actor,
                "history": [record] if record else [],
            },
        )
        self._notify("create", document, actor)
        return document

    def save_draft(
        self,
        path: str,
        content: Any,
        actor: str,
        expected_updated_at: str | None = None,
    ) -> BaseDocument:
        """Save an editor draft.

        Args:
            expected_updated_at: Token the caller last saw.  When omitted
                the token read here is used, so the write still fails if
                the record changes in between.

        Raises:
            ValidationError: Malformed content (e.g. non-object structured
                content); nothing is written.
            OptimisticConflictError: The stored record moved on.
        """
        document = self.fetch(path)
        profile = self.mapper.profile(document.entity)
        self._validate(profile, content)

        token = expected_updated_at or document.updated_at
        if same(content, document.current_content):
            logger.debug("No-op save of %s", path)
            if token != document.updated_at:
                raise OptimisticConflictError(path, token, document.updated_at)
            return document

        record = build_change(
            document.draft_content,  # type: ignore[attr-defined]
            content,
            author=actor,
            source=UpdateSource.EDITOR,
            key_field=profile.key_field,
        )
        patch: dict[str, Any] = {
            "draft_content": content,
            "status": DocumentStatus.NEW
            if document.status == DocumentStatus.NEW
            else DocumentStatus.MODIFIED,
            "source": UpdateSource.EDITOR,
            "last_updated_by": actor,
        }
        if record is not None:
            patch["history"] = [*document.history, record]

        updated = self.store.update_if_unchanged(path, patch, token)
        changed = (
            [
                "/".join(p)
                for p in changed_paths(
                    diff(document.current_content, content, profile.key_field)
                )
            ]
            if profile.kind == "structured"
            else []
        )
        self._notify("update", updated, actor, changed=changed)
        return updated

    # ------------------------------------------------------------------
    # Repository writes
    # ------------------------------------------------------------------

    def apply_upstream(
        self, path: str, text: str, commit: CommitInfo | None
    ) -> tuple[BaseDocument, SyncAction]:
        """Fold upstream file *text* into the stored record of *path*.

        Published documents take the new content (their draft too, with a
        repository-authored history record).  Documents with unpublished
        edits only get their remote side refreshed.
        """
        entity, profile = self._entity(path)
        content = self.parse_remote(profile, text)
        actor = (commit.author if commit else None) or self.system_actor
        document = self.store.find_by_id(path)

        if document is None:
            created = self.store.upsert(
                path,
                {
                    "kind": profile.kind,
                    "entity": entity,
                    "remote_content": content,
                    "status": DocumentStatus.PUBLISHED,
                    "source": UpdateSource.REPOSITORY,
                    "last_updated_by": actor,
                    "commit": commit,
                },
            )
            self._notify("create", created, actor)
            return created, SyncAction.CREATED

        if same(document.remote_content, content) and document.commit == commit:  # type: ignore[attr-defined]
            return document, SyncAction.SKIPPED

        patch: dict[str, Any] = {"remote_content": content, "commit": commit}
        if document.status == DocumentStatus.PUBLISHED:
            patch.update(
                source=UpdateSource.REPOSITORY, last_updated_by=actor
            )
            draft = document.draft_content  # type: ignore[attr-defined]
            if draft is not None:
                patch["draft_content"] = content
                record = build_change(
                    draft,
                    content,
                    author=actor,
                    source=UpdateSource.REPOSITORY,
                    key_field=profile.key_field,
                )
                if record is not None:
                    patch["history"] = [*document.history, record]
        elif document.status == DocumentStatus.NEW:
            # The file exists upstream again; the draft now modifies it.
            patch["status"] = DocumentStatus.MODIFIED

        updated = self.store.upsert(path, patch)
        logger.info(
            "Applied upstream change to %s (%s)", path, updated.status.value
        )
        self._notify("update", updated, actor)
        return updated, SyncAction.UPDATED

    def handle_upstream_removal(self, path: str) -> SyncAction:
        """Apply the ghost policy to one document removed upstream."""
        document = self.store.find_by_id(path)
        if document is None:
            return SyncAction.SKIPPED
        if document.status == DocumentStatus.PUBLISHED:
            self.store.delete(path)
            logger.info("Removed %s (deleted upstream)", path)
            self._notify("delete", document, self.system_actor)
            return SyncAction.REMOVED

        updated = self.store.upsert(path, {"status": DocumentStatus.NEW})
        logger.info("Keeping %s as a ghost (unpublished edits)", path)
        self._notify("ghost", updated, self.system_actor)
        return SyncAction.GHOSTED
