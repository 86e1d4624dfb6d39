"""Repository boundary: the protocol the engines call and its value types.

``GitHubClient`` in ``core.client`` is the production implementation; tests
use an in-memory fake.  Every method that can hit the network may raise
``RemoteUnavailableError``; lookups of absent objects return ``None``.
"""

from __future__ import annotations

from typing import Literal, Protocol

from pydantic import BaseModel


class CommitInfo(BaseModel):
    """Commit metadata stamped onto documents and snapshots."""

    commit_id: str
    author: str | None = None
    timestamp: str | None = None

    model_config = {"frozen": True}


class TreeEntry(BaseModel):
    """One entry of a recursive tree listing.

    ``ghost`` is never set by the repository; the tree sync engine marks
    synthesized entries for documents that only exist locally.
    """

    path: str
    mode: str = "100644"
    type: str = "blob"
    sha: str
    size: int | None = None
    ghost: bool = False

    model_config = {"frozen": True}


class BranchInfo(BaseModel):
    name: str
    sha: str

    model_config = {"frozen": True}


class PullRequestRef(BaseModel):
    number: int
    url: str
    state: str = "open"

    model_config = {"frozen": True}


class FileChange(BaseModel):
    """A path touched between two commits."""

    path: str
    status: Literal["added", "modified", "removed", "renamed"]
    previous_path: str | None = None

    model_config = {"frozen": True}


class NewTreeItem(BaseModel):
    """A blob reference passed to ``create_tree``."""

    path: str
    sha: str
    mode: str = "100644"
    type: str = "blob"

    model_config = {"frozen": True}


class RepositoryClient(Protocol):
    """Operations the engines need from the remote repository."""

    default_branch: str

    def get_file_content(self, path: str, ref: str | None = None) -> str | None:
        ...  # pragma: no cover

    def get_file_sha(self, path: str, ref: str | None = None) -> str | None:
        ...  # pragma: no cover

    def get_commit_metadata(
        self, path: str, ref: str | None = None
    ) -> CommitInfo | None:
        ...  # pragma: no cover

    def get_tree(self, ref: str, recursive: bool = True) -> list[TreeEntry]:
        ...  # pragma: no cover

    def create_blob(self, content: str) -> str:
        ...  # pragma: no cover

    def create_tree(self, base_commit: str, items: list[NewTreeItem]) -> str:
        """Tree of *base_commit* with *items* laid over it; returns its sha."""
        ...  # pragma: no cover

    def create_commit(
        self,
        message: str,
        tree: str,
        parents: list[str],
        author: dict[str, str] | None = None,
    ) -> CommitInfo:
        ...  # pragma: no cover

    def update_ref(self, branch: str, sha: str, force: bool = False) -> None:
        ...  # pragma: no cover

    def get_branch(self, branch: str) -> BranchInfo | None:
        ...  # pragma: no cover

    def create_branch(self, branch: str, sha: str) -> BranchInfo:
        ...  # pragma: no cover

    def list_branches(self, prefix: str = "") -> list[BranchInfo]:
        ...  # pragma: no cover

    def list_open_pull_requests(self, head: str) -> list[PullRequestRef]:
        ...  # pragma: no cover

    def create_pull_request(
        self, title: str, body: str, head: str, base: str
    ) -> PullRequestRef:
        ...  # pragma: no cover

    def compare_commits(self, base: str, head: str) -> list[FileChange]:
        ...  # pragma: no cover
