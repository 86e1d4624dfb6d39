"""Tests for validators.py -- path and payload checks."""

import pytest

from docsflow_sync.validators import (
    format_validation_error,
    validate_path,
    validate_structured_payload,
    validate_text_payload,
)


def test_format_validation_error():
    """Messages read as ``<field> <reason>``."""
    assert format_validation_error("Path", "cannot be empty") == "Path cannot be empty"


class TestValidatePath:
    """Repository path checks."""

    @pytest.mark.parametrize(
        "path", ["README.md", "docs/intro.md", "data/stack/v1.json", "docs/..hidden.md"]
    )
    def test_valid(self, path):
        assert validate_path(path) == (True, "")

    @pytest.mark.parametrize(
        "path,reason",
        [
            ("", "cannot be empty"),
            ("   ", "cannot be empty"),
            ("/docs/intro.md", "must be relative"),
            ("docs/", "must be relative"),
            ("docs/../secrets.md", "cannot contain '..'"),
            ("..", "cannot contain '..'"),
            ("docs//intro.md", "empty path segments"),
        ],
    )
    def test_invalid(self, path, reason):
        """Absolute, empty and climbing paths are rejected."""
        ok, message = validate_path(path)
        assert ok is False
        assert reason in message


class TestTextPayload:
    """Text document payloads."""

    def test_valid_text(self):
        assert validate_text_payload("# Title\n") == (True, "")

    def test_empty_text_allowed(self):
        assert validate_text_payload("") == (True, "")

    @pytest.mark.parametrize("content", [None, 42, {"a": 1}, b"bytes"])
    def test_non_text_rejected(self, content):
        """Anything but str is rejected for text documents."""
        ok, message = validate_text_payload(content)
        assert ok is False
        assert message == f"Content must be text, got {type(content).__name__}"

    def test_size_counted_in_bytes(self):
        # "é" is two bytes in UTF-8
        assert validate_text_payload("éé", max_size=4) == (True, "")
        ok, message = validate_text_payload("ééé", max_size=4)
        assert ok is False
        assert "exceeds maximum size of 4 bytes" in message


class TestStructuredPayload:
    """Structured document payloads."""

    def test_valid_object(self, stack):
        assert validate_structured_payload(stack) == (True, "")

    @pytest.mark.parametrize("content", [[1, 2], "text", None])
    def test_root_must_be_object(self, content):
        """The root of a structured payload must be an object."""
        ok, message = validate_structured_payload(content)
        assert ok is False
        assert message == (
            f"Structured content must be an object, got {type(content).__name__}"
        )

    def test_not_serializable(self):
        """Values JSON cannot encode are rejected."""
        ok, message = validate_structured_payload({"when": object()})
        assert ok is False
        assert "is not JSON-serializable" in message

    def test_size_limit(self):
        ok, message = validate_structured_payload({"k": "x" * 50}, max_size=20)
        assert ok is False
        assert "exceeds maximum size of 20 bytes" in message
