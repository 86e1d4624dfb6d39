"""Push webhook verification and parsing.

The hosting process hands the raw request body and the
``X-Hub-Signature-256`` header to ``verify_signature`` and, for ``push``
deliveries, the decoded JSON to ``parse_push_event``.
"""

from __future__ import annotations

import hashlib
import hmac
import logging
from typing import Any

from pydantic import BaseModel

from docsflow_sync.core.repository import FileChange

logger = logging.getLogger(__name__)

SIGNATURE_HEADER = "X-Hub-Signature-256"


def verify_signature(body: bytes, signature: str | None, secret: str) -> bool:
    """Check a ``sha256=<hex>`` HMAC signature of *body*."""
    if not signature or not signature.startswith("sha256="):
        return False
    digest = hmac.new(secret.encode("utf-8"), body, hashlib.sha256).hexdigest()
    return hmac.compare_digest(signature, f"sha256={digest}")


class PushEvent(BaseModel):
    """A push to the watched branch.

    Attributes:
        before: Commit the branch pointed at before the push.
        after: Commit the branch points at now.
        changes: Net file changes across all pushed commits.
        pusher: Login or name of whoever pushed.
    """

    before: str | None = None
    after: str
    changes: list[FileChange] = []
    pusher: str | None = None

    model_config = {"frozen": True}


def parse_push_event(payload: dict[str, Any], branch: str) -> PushEvent | None:
    """Build a ``PushEvent`` from a push payload.

    Returns ``None`` for pushes to other refs.  A path touched by several
    commits gets one net status: added then removed cancels out, added
    then modified stays added, removed then added becomes modified.
    """
    ref = payload.get("ref")
    if ref != f"refs/heads/{branch}":
        logger.debug("Ignoring push to %s", ref)
        return None

    status: dict[str, str] = {}
    for commit in payload.get("commits") or []:
        for path in commit.get("added") or []:
            status[path] = "modified" if status.get(path) == "removed" else "added"
        for path in commit.get("modified") or []:
            if status.get(path) != "added":
                status[path] = "modified"
        for path in commit.get("removed") or []:
            if status.get(path) == "added":
                del status[path]
            else:
                status[path] = "removed"

    pusher = payload.get("pusher") or {}
    return PushEvent(
        before=payload.get("before"),
        after=payload["after"],
        changes=[
            FileChange(path=path, status=state)  # type: ignore[arg-type]
            for path, state in sorted(status.items())
        ],
        pusher=pusher.get("name") or pusher.get("login"),
    )
