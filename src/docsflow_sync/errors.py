"""Error kinds raised by the reconciliation and publish engine.

Every error carries an ``error_type`` category and a corrective action so
callers (request handlers, CLI glue) can render a structured message
without inspecting the exception class:

- ``NotFoundError``            -- document, branch or path absent.
- ``OptimisticConflictError``  -- stale write rejected by the store.
- ``MergeConflictError``       -- overlapping edits need a human pick.
- ``RemoteUnavailableError``   -- repository API failure, retryable.
- ``ValidationError``          -- malformed payload, rejected before writes.
"""

from __future__ import annotations

from typing import Any


class DocsflowError(Exception):
    """Base class for all engine errors."""

    error_type = "server_error"
    default_action = "Retry later or check the server logs."

    def __init__(
        self, message: str, corrective_action: str | None = None
    ) -> None:
        super().__init__(message)
        self.message = message
        self.corrective_action = corrective_action or self.default_action

    def format(self) -> str:
        """Render as ``Error (<type>): <message>`` plus the action hint."""
        return (
            f"Error ({self.error_type}): {self.message}\n\n"
            f"Action: {self.corrective_action}"
        )


class NotFoundError(DocsflowError):
    error_type = "not_found"
    default_action = "Verify the path exists upstream, or create it first."


class OptimisticConflictError(DocsflowError):
    """The stored record changed since the caller last read it."""

    error_type = "optimistic_conflict"
    default_action = "Refetch the document, reconcile, then retry the write."

    def __init__(
        self,
        doc_id: str,
        expected: str | None,
        actual: str | None,
    ) -> None:
        super().__init__(
            f"Document '{doc_id}' was modified concurrently "
            f"(expected updated_at={expected}, found {actual})"
        )
        self.doc_id = doc_id
        self.expected = expected
        self.actual = actual


class MergeConflictError(DocsflowError):
    """Both sides edited the same region or field differently."""

    error_type = "merge_conflict"
    default_action = (
        "Review the conflicting values and pick one for each conflict."
    )

    def __init__(self, message: str, conflicts: list[Any] | None = None):
        super().__init__(message)
        self.conflicts = list(conflicts or [])


class RemoteUnavailableError(DocsflowError):
    """The repository API failed; no local state was mutated."""

    error_type = "remote_unavailable"
    default_action = "Retry the operation; the repository may be unavailable."

    def __init__(self, message: str, status_code: int | None = None):
        super().__init__(message)
        self.status_code = status_code


class ValidationError(DocsflowError):
    error_type = "validation_error"
    default_action = "Fix the payload and resubmit."
