"""
Input validation for document paths and payloads.

Checks run before any store write or repository call so malformed input
is rejected without side effects.
"""

import json
from typing import Any

MAX_CONTENT_BYTES = 1_000_000


def format_validation_error(field_name: str, reason: str) -> str:
    """Generate consistent error message for validation failures."""
    return f"{field_name} {reason}"


def validate_path(path: str) -> tuple[bool, str]:
    """
    Validate a repository document path.

    Returns:
        Tuple of (is_valid, error_message).
        Returns (True, "") if valid, (False, reason) if invalid.

    Validation rules:
        - Cannot be empty or whitespace-only
        - Cannot be absolute or end with '/'
        - Cannot contain '..' segments (path traversal protection)
        - Cannot have empty path segments (e.g., 'docs//a.md')
    """
    if not path or not path.strip():
        return (False, format_validation_error("Path", "cannot be empty"))

    if path.startswith("/") or path.endswith("/"):
        return (
            False,
            format_validation_error(
                "Path", "must be relative and name a file"
            ),
        )

    segments = path.split("/")
    if ".." in segments:
        return (False, format_validation_error("Path", "cannot contain '..'"))

    if "" in segments:
        return (
            False,
            format_validation_error("Path", "cannot have empty path segments"),
        )

    return (True, "")


def validate_text_payload(
    content: Any, max_size: int = MAX_CONTENT_BYTES
) -> tuple[bool, str]:
    """
    Validate text document content.

    Validation rules:
        - Must be a string (empty is allowed: a cleared draft)
        - Cannot exceed max_size bytes
    """
    if not isinstance(content, str):
        return (
            False,
            format_validation_error(
                "Content", f"must be text, got {type(content).__name__}"
            ),
        )

    if len(content.encode("utf-8")) > max_size:
        return (
            False,
            format_validation_error(
                "Content", f"exceeds maximum size of {max_size} bytes"
            ),
        )

    return (True, "")


def validate_structured_payload(
    content: Any, max_size: int = MAX_CONTENT_BYTES
) -> tuple[bool, str]:
    """
    Validate structured document content.

    Validation rules:
        - Root must be a JSON object (mapping)
        - Must be JSON-serializable
        - Serialized size cannot exceed max_size bytes
    """
    if not isinstance(content, dict):
        return (
            False,
            format_validation_error(
                "Structured content",
                f"must be an object, got {type(content).__name__}",
            ),
        )

    try:
        serialized = json.dumps(content, ensure_ascii=False)
    except (TypeError, ValueError) as exc:
        return (
            False,
            format_validation_error(
                "Structured content", f"is not JSON-serializable: {exc}"
            ),
        )

    if len(serialized.encode("utf-8")) > max_size:
        return (
            False,
            format_validation_error(
                "Structured content",
                f"exceeds maximum size of {max_size} bytes",
            ),
        )

    return (True, "")
