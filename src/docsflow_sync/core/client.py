import base64
import logging
import threading
from typing import Any
from urllib.parse import quote

import requests
from requests.adapters import HTTPAdapter
from urllib3.util.retry import Retry

from ..config import Config
from ..errors import NotFoundError, RemoteUnavailableError
from ..validators import validate_path
from .repository import (
    BranchInfo,
    CommitInfo,
    FileChange,
    NewTreeItem,
    PullRequestRef,
    TreeEntry,
)

logger = logging.getLogger(__name__)

_RETRY_STATUSES = (429, 500, 502, 503, 504)
_FILE_STATUSES = {"added", "modified", "removed", "renamed"}


class GitHubClient:
    """``RepositoryClient`` over the GitHub REST API.

    Idempotent requests are retried with exponential backoff by the
    session's transport adapter; every other failure surfaces as
    ``RemoteUnavailableError``.
    """

    def __init__(self, config: Config):
        self.config = config
        self.default_branch = config.branch
        self._thread_local = threading.local()
        self.repo_url = (
            f"{config.api_url.rstrip('/')}/repos/{config.owner}/{config.repo}"
        )

    @property
    def session(self) -> requests.Session:
        """The current thread's session."""
        return self._get_session()

    def _get_session(self) -> requests.Session:
        """Get or create a thread-local requests.Session."""
        if not hasattr(self._thread_local, "session"):
            self._thread_local.session = self._create_session()
        return self._thread_local.session

    def _create_session(self) -> requests.Session:
        session = requests.Session()
        session.headers.update(
            {
                "Authorization": f"Bearer {self.config.token}",
                "Accept": "application/vnd.github+json",
                "X-GitHub-Api-Version": "2022-11-28",
            }
        )
        retry = Retry(
            total=self.config.max_retries,
            backoff_factor=0.5,
            status_forcelist=_RETRY_STATUSES,
            allowed_methods=frozenset({"GET", "HEAD", "PUT", "DELETE"}),
            raise_on_status=False,
        )
        adapter = HTTPAdapter(max_retries=retry)
        session.mount("https://", adapter)
        session.mount("http://", adapter)
        return session

    def _request(
        self,
        method: str,
        path: str,
        *,
        params: dict[str, Any] | None = None,
        payload: dict[str, Any] | None = None,
        allow_404: bool = False,
    ) -> Any:
        """
        Make a request against the repository API.

        Returns the decoded JSON body, or ``None`` for an allowed 404 or an
        empty body.
        """
        url = f"{self.repo_url}{path}"
        try:
            response = self._get_session().request(
                method,
                url,
                params=params,
                json=payload,
                timeout=(10, 60),
            )
        except requests.RequestException as exc:
            logger.warning("%s %s failed: %s", method, path, exc)
            raise RemoteUnavailableError(
                f"{method} {path} failed: {exc}"
            ) from exc

        if response.status_code == 404 and allow_404:
            return None
        if not response.ok:
            try:
                detail = response.json().get("message", response.text)
            except ValueError:
                detail = response.text
            logger.warning(
                "%s %s returned %d: %s",
                method,
                path,
                response.status_code,
                detail,
            )
            raise RemoteUnavailableError(
                f"{method} {path} returned {response.status_code}: {detail}",
                status_code=response.status_code,
            )
        if not response.content:
            return None
        return response.json()

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def validate_connection(self) -> str:
        """
        Validate access by reading the repository and the default branch.
        Returns the repository full name if successful.
        """
        data = self._request("GET", "")
        if self.get_branch(self.default_branch) is None:
            raise NotFoundError(
                f"Default branch '{self.default_branch}' not found in {data['full_name']}"
            )
        return str(data["full_name"])

    def _get_contents(self, path: str, ref: str | None) -> dict | None:
        is_valid, message = validate_path(path)
        if not is_valid:
            raise ValueError(message)
        data = self._request(
            "GET",
            f"/contents/{quote(path)}",
            params={"ref": ref or self.default_branch},
            allow_404=True,
        )
        # Directories list their children; only files are documents.
        if data is None or isinstance(data, list):
            return None
        return data

    def get_file_content(self, path: str, ref: str | None = None) -> str | None:
        """
        Return the UTF-8 text of *path* at *ref*, or ``None`` if absent.
        """
        data = self._get_contents(path, ref)
        if data is None:
            return None
        encoded = data.get("content")
        if not encoded:
            # Files over 1 MB come back without inline content.
            blob = self._request("GET", f"/git/blobs/{data['sha']}")
            encoded = blob["content"]
        return base64.b64decode(encoded).decode("utf-8")

    def get_file_sha(self, path: str, ref: str | None = None) -> str | None:
        data = self._get_contents(path, ref)
        return data["sha"] if data is not None else None

    def get_commit_metadata(
        self, path: str, ref: str | None = None
    ) -> CommitInfo | None:
        """
        Return the latest commit touching *path* on *ref*.
        """
        commits = self._request(
            "GET",
            "/commits",
            params={
                "path": path,
                "sha": ref or self.default_branch,
                "per_page": 1,
            },
            allow_404=True,
        )
        if not commits:
            return None
        return self._commit_info(commits[0])

    def get_tree(self, ref: str, recursive: bool = True) -> list[TreeEntry]:
        """
        Return the tree listing of *ref* (branch name or commit sha).

        Raises:
            NotFoundError: If the ref does not exist.
        """
        params = {"recursive": "1"} if recursive else None
        data = self._request(
            "GET", f"/git/trees/{quote(ref)}", params=params, allow_404=True
        )
        if data is None:
            raise NotFoundError(f"Tree '{ref}' not found")
        if data.get("truncated"):
            logger.warning(
                "Tree listing for %s was truncated by the API", ref
            )
        return [
            TreeEntry(
                path=item["path"],
                mode=item.get("mode", "100644"),
                type=item["type"],
                sha=item["sha"],
                size=item.get("size"),
            )
            for item in data.get("tree", [])
        ]

    def get_branch(self, branch: str) -> BranchInfo | None:
        data = self._request(
            "GET", f"/branches/{quote(branch)}", allow_404=True
        )
        if data is None:
            return None
        return BranchInfo(name=data["name"], sha=data["commit"]["sha"])

    def list_branches(self, prefix: str = "") -> list[BranchInfo]:
        """
        Return branches whose name starts with *prefix*.
        """
        refs = self._request(
            "GET", f"/git/matching-refs/heads/{quote(prefix)}"
        )
        return [
            BranchInfo(
                name=ref["ref"].removeprefix("refs/heads/"),
                sha=ref["object"]["sha"],
            )
            for ref in refs or []
        ]

    def list_open_pull_requests(self, head: str) -> list[PullRequestRef]:
        """
        Return open pull requests whose head is *head* in this repository.
        """
        pulls = self._request(
            "GET",
            "/pulls",
            params={"state": "open", "head": f"{self.config.owner}:{head}"},
        )
        return [
            PullRequestRef(
                number=pr["number"], url=pr["html_url"], state=pr["state"]
            )
            for pr in pulls or []
        ]

    def compare_commits(self, base: str, head: str) -> list[FileChange]:
        """
        Return the files changed between *base* and *head*.
        """
        data = self._request("GET", f"/compare/{base}...{head}")
        changes = []
        for item in data.get("files", []):
            status = item.get("status", "modified")
            changes.append(
                FileChange(
                    path=item["filename"],
                    status=status if status in _FILE_STATUSES else "modified",
                    previous_path=item.get("previous_filename"),
                )
            )
        return changes

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    def create_blob(self, content: str) -> str:
        data = self._request(
            "POST",
            "/git/blobs",
            payload={"content": content, "encoding": "utf-8"},
        )
        return str(data["sha"])

    def create_tree(self, base_commit: str, items: list[NewTreeItem]) -> str:
        commit = self._request("GET", f"/git/commits/{base_commit}")
        data = self._request(
            "POST",
            "/git/trees",
            payload={
                "base_tree": commit["tree"]["sha"],
                "tree": [item.model_dump() for item in items],
            },
        )
        return str(data["sha"])

    def create_commit(
        self,
        message: str,
        tree: str,
        parents: list[str],
        author: dict[str, str] | None = None,
    ) -> CommitInfo:
        payload: dict[str, Any] = {
            "message": message,
            "tree": tree,
            "parents": parents,
        }
        if author:
            payload["author"] = author
        data = self._request("POST", "/git/commits", payload=payload)
        return CommitInfo(
            commit_id=data["sha"],
            author=data["author"]["name"],
            timestamp=data["author"]["date"],
        )

    def update_ref(self, branch: str, sha: str, force: bool = False) -> None:
        self._request(
            "PATCH",
            f"/git/refs/heads/{quote(branch)}",
            payload={"sha": sha, "force": force},
        )

    def create_branch(self, branch: str, sha: str) -> BranchInfo:
        self._request(
            "POST",
            "/git/refs",
            payload={"ref": f"refs/heads/{branch}", "sha": sha},
        )
        logger.info("Created branch %s at %s", branch, sha[:7])
        return BranchInfo(name=branch, sha=sha)

    def create_pull_request(
        self, title: str, body: str, head: str, base: str
    ) -> PullRequestRef:
        data = self._request(
            "POST",
            "/pulls",
            payload={"title": title, "body": body, "head": head, "base": base},
        )
        logger.info("Opened pull request #%s for %s", data["number"], head)
        return PullRequestRef(
            number=data["number"], url=data["html_url"], state=data["state"]
        )

    @staticmethod
    def _commit_info(commit: dict[str, Any]) -> CommitInfo:
        author = commit["commit"]["author"]
        return CommitInfo(
            commit_id=commit["sha"],
            author=author.get("name"),
            timestamp=author.get("date"),
        )
