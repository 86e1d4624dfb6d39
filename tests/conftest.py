"""Shared pytest fixtures for docsflow-sync tests.

Most engine tests run against ``FakeRepository``, an in-memory stand-in
for the GitHub API that keeps real commit graphs, trees and blob ids
(computed with ``blob_sha``), so blob comparisons behave as they do
against GitHub.
"""

import hashlib
import itertools
import json

import pytest
from dotenv import load_dotenv

from docsflow_sync.config import Config
from docsflow_sync.config_schema import EntityProfile, PublishConfig
from docsflow_sync.core.repository import (
    BranchInfo,
    CommitInfo,
    FileChange,
    PullRequestRef,
    TreeEntry,
)
from docsflow_sync.errors import NotFoundError, RemoteUnavailableError
from docsflow_sync.sync.blob import blob_sha, serialize_content
from docsflow_sync.sync.drafts import DraftService
from docsflow_sync.sync.engine import UpstreamSyncEngine
from docsflow_sync.sync.events import ChangeHub
from docsflow_sync.sync.mapper import EntityMapper
from docsflow_sync.sync.publish import BranchReconciler, PublishCoordinator
from docsflow_sync.sync.store import InMemoryStore, in_prefix
from docsflow_sync.sync.tree import TreeSyncEngine

load_dotenv()


def pytest_addoption(parser):
    """Add custom CLI options for test filtering."""
    parser.addoption(
        "--run-live",
        action="store_true",
        default=False,
        help="Run tests that require a live GitHub repository",
    )


def pytest_configure(config):
    """Register custom markers."""
    config.addinivalue_line(
        "markers", "live: mark test as requiring a live GitHub repository"
    )


def pytest_collection_modifyitems(config, items):
    """Skip live tests unless --run-live is passed."""
    if config.getoption("--run-live"):
        return
    skip_live = pytest.mark.skip(reason="need --run-live option to run")
    for item in items:
        if "live" in item.keywords:
            item.add_marker(skip_live)


# ---------------------------------------------------------------------------
# Sample repository content
# ---------------------------------------------------------------------------

STACK = {
    "version": "1.0",
    "services": [
        {"name": "api", "image": "api:1"},
        {"name": "web", "image": "web:1"},
    ],
}

INITIAL_FILES = {
    "README.md": "# Handbook\n",
    "docs/intro.md": "A\nB\n",
    "docs/guide.md": "# Guide\n\nStep one.\n",
    "docs/notes.txt": "not a document\n",
    "data/stack/v1.json": serialize_content(STACK),
}


class FakeRepository:
    """In-memory ``RepositoryClient`` with a real commit graph.

    Attributes:
        calls: Names of the protocol methods called, in order.
        fail_on: Method names that raise ``RemoteUnavailableError``.
        hooks: Method name -> callable run before the method executes.
    """

    def __init__(self, files: dict[str, str], default_branch: str = "main"):
        self.default_branch = default_branch
        self.blobs: dict[str, str] = {}
        self.trees: dict[str, dict[str, str]] = {}
        self.commits: dict[str, dict] = {}
        self.branches: dict[str, str] = {}
        self.pulls: list[dict] = []
        self.calls: list[str] = []
        self.fail_on: set[str] = set()
        self.hooks: dict = {}
        self._counter = itertools.count(1)
        self.root = self._add_commit(
            {path: self._store_blob(text) for path, text in files.items()},
            parents=[],
            message="initial",
            author="alice",
        )
        self.branches[default_branch] = self.root

    # ------------------------------------------------------------------
    # Test helpers
    # ------------------------------------------------------------------

    def _check(self, name: str) -> None:
        self.calls.append(name)
        if name in self.fail_on:
            raise RemoteUnavailableError(f"{name} failed", status_code=503)
        hook = self.hooks.get(name)
        if hook is not None:
            hook()

    def _store_blob(self, content) -> str:
        text = serialize_content(content)
        sha = blob_sha(text)
        self.blobs[sha] = text
        return sha

    def _add_commit(
        self,
        files: dict[str, str],
        parents: list[str],
        message: str,
        author: str,
    ) -> str:
        n = next(self._counter)
        sha = hashlib.sha1(f"commit-{n}".encode()).hexdigest()
        previous = self.commits[parents[0]]["files"] if parents else {}
        changed = {
            p
            for p in set(previous) | set(files)
            if previous.get(p) != files.get(p)
        }
        self.commits[sha] = {
            "files": dict(files),
            "parents": list(parents),
            "message": message,
            "author": author,
            "timestamp": f"2026-01-01T00:00:{n:02d}Z",
            "changed": changed,
        }
        return sha

    def push(
        self,
        changes: dict,
        branch: str | None = None,
        author: str = "carol",
        message: str = "upstream edit",
    ) -> str:
        """Commit *changes* (path -> content, ``None`` deletes) onto *branch*."""
        branch = branch or self.default_branch
        parent = self.branches[branch]
        files = dict(self.commits[parent]["files"])
        for path, content in changes.items():
            if content is None:
                files.pop(path, None)
            else:
                files[path] = self._store_blob(content)
        sha = self._add_commit(files, [parent], message, author)
        self.branches[branch] = sha
        return sha

    def files_at(self, ref: str) -> dict[str, str]:
        """Path -> text of every file at *ref*."""
        sha = self._resolve(ref)
        return {p: self.blobs[b] for p, b in self.commits[sha]["files"].items()}

    def close_pull_request(self, number: int) -> None:
        for pr in self.pulls:
            if pr["number"] == number:
                pr["state"] = "closed"

    def _resolve(self, ref: str | None) -> str | None:
        ref = ref or self.default_branch
        if ref in self.branches:
            return self.branches[ref]
        if ref in self.commits:
            return ref
        return None

    def _files(self, ref: str | None) -> dict[str, str]:
        sha = self._resolve(ref)
        return self.commits[sha]["files"] if sha else {}

    # ------------------------------------------------------------------
    # RepositoryClient protocol
    # ------------------------------------------------------------------

    def get_file_content(self, path, ref=None):
        self._check("get_file_content")
        sha = self._files(ref).get(path)
        return self.blobs[sha] if sha else None

    def get_file_sha(self, path, ref=None):
        self._check("get_file_sha")
        return self._files(ref).get(path)

    def get_commit_metadata(self, path, ref=None):
        self._check("get_commit_metadata")
        sha = self._resolve(ref)
        while sha:
            commit = self.commits[sha]
            if any(in_prefix(p, path) for p in commit["changed"]):
                return CommitInfo(
                    commit_id=sha,
                    author=commit["author"],
                    timestamp=commit["timestamp"],
                )
            sha = commit["parents"][0] if commit["parents"] else None
        return None

    def get_tree(self, ref, recursive=True):
        self._check("get_tree")
        sha = self._resolve(ref)
        if sha is None:
            raise NotFoundError(f"Tree '{ref}' not found")
        return [
            TreeEntry(path=p, sha=b, size=len(self.blobs[b].encode("utf-8")))
            for p, b in sorted(self.commits[sha]["files"].items())
        ]

    def create_blob(self, content):
        self._check("create_blob")
        return self._store_blob(content)

    def create_tree(self, base_commit, items):
        self._check("create_tree")
        files = dict(self.commits[base_commit]["files"])
        for item in items:
            files[item.path] = item.sha
        sha = hashlib.sha1(
            json.dumps(files, sort_keys=True).encode()
        ).hexdigest()
        self.trees[sha] = files
        return sha

    def create_commit(self, message, tree, parents, author=None):
        self._check("create_commit")
        name = (author or {}).get("name", "unknown")
        sha = self._add_commit(self.trees[tree], parents, message, name)
        return CommitInfo(
            commit_id=sha, author=name, timestamp=self.commits[sha]["timestamp"]
        )

    def update_ref(self, branch, sha, force=False):
        self._check("update_ref")
        self.branches[branch] = sha

    def get_branch(self, branch):
        self._check("get_branch")
        sha = self.branches.get(branch)
        return BranchInfo(name=branch, sha=sha) if sha else None

    def create_branch(self, branch, sha):
        self._check("create_branch")
        if branch in self.branches:
            raise RemoteUnavailableError(
                "Reference already exists", status_code=422
            )
        self.branches[branch] = sha
        return BranchInfo(name=branch, sha=sha)

    def list_branches(self, prefix=""):
        self._check("list_branches")
        return [
            BranchInfo(name=name, sha=sha)
            for name, sha in sorted(self.branches.items())
            if name.startswith(prefix)
        ]

    def list_open_pull_requests(self, head):
        self._check("list_open_pull_requests")
        return [
            PullRequestRef(number=pr["number"], url=pr["url"], state=pr["state"])
            for pr in self.pulls
            if pr["head"] == head and pr["state"] == "open"
        ]

    def create_pull_request(self, title, body, head, base):
        self._check("create_pull_request")
        number = len(self.pulls) + 1
        pr = {
            "number": number,
            "url": f"https://github.com/acme/handbook/pull/{number}",
            "state": "open",
            "title": title,
            "body": body,
            "head": head,
            "base": base,
        }
        self.pulls.append(pr)
        return PullRequestRef(number=number, url=pr["url"], state="open")

    def compare_commits(self, base, head):
        self._check("compare_commits")
        old = self._files(base)
        new = self._files(head)
        changes = []
        for path in sorted(set(old) | set(new)):
            if path not in old:
                changes.append(FileChange(path=path, status="added"))
            elif path not in new:
                changes.append(FileChange(path=path, status="removed"))
            elif old[path] != new[path]:
                changes.append(FileChange(path=path, status="modified"))
        return changes


# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def make_repo():
    """Factory fixture building a ``FakeRepository`` from a file map."""

    def _make(files: dict[str, str] | None = None) -> FakeRepository:
        return FakeRepository(INITIAL_FILES if files is None else files)

    return _make


@pytest.fixture
def repo(make_repo):
    return make_repo()


@pytest.fixture
def stack():
    """A fresh copy of the structured sample document."""
    return json.loads(json.dumps(STACK))


@pytest.fixture
def entities():
    return {
        "docs": EntityProfile(path="docs", extensions=[".md"]),
        "stack": EntityProfile(
            path="data/stack",
            kind="structured",
            extensions=[".json"],
            commit_message="chore(stack): publish {count} file(s)",
        ),
    }


@pytest.fixture
def mapper(entities):
    return EntityMapper(entities)


@pytest.fixture
def store():
    return InMemoryStore()


@pytest.fixture
def hub():
    hub = ChangeHub()
    yield hub
    hub.close()


@pytest.fixture
def drafts(store, repo, mapper, hub):
    return DraftService(store, repo, mapper, hub)


@pytest.fixture
def trees(repo, store, mapper, drafts, hub):
    return TreeSyncEngine(repo, store, mapper, drafts, hub)


@pytest.fixture
def publish_config():
    return PublishConfig()


@pytest.fixture
def publisher(repo, store, mapper, publish_config, hub):
    ticks = itertools.count(1_700_000_000)
    return PublishCoordinator(
        repo, store, mapper, publish_config, hub, clock=lambda: float(next(ticks))
    )


@pytest.fixture
def reconciler(repo, store, mapper):
    return BranchReconciler(repo, store, mapper)


@pytest.fixture
def upstream(repo, store, mapper, drafts, trees):
    return UpstreamSyncEngine(repo, store, mapper, drafts, trees)


@pytest.fixture
def mock_config():
    """Create a Config instance for testing."""
    return Config(
        owner="acme",
        repo="handbook",
        token="ghp_test",
        branch="main",
    )
