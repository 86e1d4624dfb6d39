"""Content addressing compatible with git object ids.

A blob id is ``sha1(b"blob <len>\\0" + content)`` over the UTF-8 bytes of
the canonical serialization, so locally computed ids compare directly with
the ``sha`` fields the repository API returns.
"""

from __future__ import annotations

import hashlib
import json
from typing import Any


def serialize_content(value: Any) -> str:
    """Return the canonical text stored upstream for *value*.

    Text is kept as-is; structured values become indented JSON.
    """
    if isinstance(value, str):
        return value
    return json.dumps(value, indent=2, ensure_ascii=False)


def blob_sha(content: str | bytes) -> str:
    """Compute the git blob id of *content*."""
    data = content.encode("utf-8") if isinstance(content, str) else content
    header = f"blob {len(data)}\0".encode("ascii")
    return hashlib.sha1(header + data).hexdigest()


def content_blob_sha(value: Any) -> str:
    """Blob id of the canonical serialization of *value*."""
    return blob_sha(serialize_content(value))
