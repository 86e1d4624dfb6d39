"""Tests for docsflow_sync.config_schema -- unified config models."""

import pytest
from pydantic import ValidationError

from docsflow_sync.config import validate_config
from docsflow_sync.config_schema import (
    EntityProfile,
    PublishConfig,
    RepositoryConfig,
    UnifiedConfig,
    WatchConfig,
    build_config,
    to_legacy_config,
)


class TestDefaults:
    """Defaults of the unified config."""

    def test_zero_config_is_valid(self):
        """An empty config builds with every default."""
        unified = UnifiedConfig()
        assert unified.entities == {}
        assert unified.publish.branch_prefix == "docsflow"
        assert unified.publish.conflict_policy == "theirs"
        assert unified.watch.mode == "auto"
        assert unified.logging.level == "INFO"

    def test_build_config_empty(self):
        assert build_config({}) == UnifiedConfig()

    def test_models_are_frozen(self):
        """Config models cannot be mutated."""
        with pytest.raises(ValidationError):
            PublishConfig().bot_name = "other"


class TestEntityProfile:
    """Per-entity settings."""

    def test_path_normalised(self):
        """Whitespace and surrounding slashes are dropped."""
        assert EntityProfile(path=" /docs/guides/ ").path == "docs/guides"

    def test_parent_path_rejected(self):
        """Entity paths cannot climb out of the repository."""
        with pytest.raises(ValidationError, match="cannot contain '..'"):
            EntityProfile(path="docs/../secrets")

    def test_invalid_kind(self):
        with pytest.raises(ValidationError):
            EntityProfile(path="docs", kind="binary")

    def test_templates(self):
        profile = EntityProfile(path="docs")
        assert profile.commit_message.format(entity="docs", count=2) == (
            "docs(docs): publish 2 file(s)"
        )


class TestSections:
    """Publish, watch and limits sections."""

    @pytest.mark.parametrize("prefix", ["", "a/b", "has space"])
    def test_invalid_branch_prefix(self, prefix):
        with pytest.raises(ValidationError, match="Invalid branch_prefix"):
            PublishConfig(branch_prefix=prefix)

    def test_invalid_conflict_policy(self):
        """Only known conflict policies are accepted."""
        with pytest.raises(ValidationError):
            PublishConfig(conflict_policy="newest")

    def test_polling_interval_must_be_positive(self):
        """Zero or negative polling intervals are rejected."""
        with pytest.raises(ValidationError):
            WatchConfig(polling_interval=0)

    def test_parallel_requests_range(self):
        with pytest.raises(ValidationError):
            RepositoryConfig(max_parallel_requests=0)

    @pytest.mark.parametrize("name", ["api-docs", "a/b", ""])
    def test_invalid_entity_names(self, name):
        with pytest.raises(ValidationError, match="Invalid entity name"):
            UnifiedConfig(entities={name: {"path": "docs"}})

    def test_full_build(self):
        """A full YAML dict builds every section."""
        unified = build_config(
            {
                "repository": {"owner": "acme", "repo": "handbook"},
                "publish": {"branch_prefix": "pub", "conflict_policy": "markers"},
                "entities": {
                    "docs": {"path": "docs", "extensions": [".md"]},
                    "versions": {"path": "config/versions", "kind": "structured"},
                },
                "watch": {"mode": "poll", "polling_interval": 2},
                "logging": {"format": "json"},
            }
        )
        assert unified.entities["versions"].kind == "structured"
        assert unified.publish.branch_prefix == "pub"
        assert unified.watch.polling_interval == 2.0
        assert unified.logging.format == "json"


class TestToLegacyConfig:
    """Mapping the unified config onto ``Config``."""

    def test_values_and_defaults(self):
        unified = build_config(
            {"repository": {"owner": "acme", "repo": "handbook", "token": "t"}}
        )
        config = to_legacy_config(unified)
        assert (config.owner, config.repo, config.token) == ("acme", "handbook", "t")
        assert config.branch == "main"
        assert config.api_url == "https://api.github.com"
        assert config.state_dir == ".docsflow/state"
        validate_config(config)

    def test_cli_overrides_win(self):
        """CLI overrides replace YAML values."""
        unified = build_config(
            {"repository": {"owner": "acme", "repo": "handbook", "token": "t"}}
        )
        config = to_legacy_config(
            unified, cli_overrides={"owner": "other", "branch": "dev", "debug": True}
        )
        assert config.owner == "other"
        assert config.branch == "dev"
        assert config.debug is True

    def test_missing_values_left_empty(self):
        config = to_legacy_config(UnifiedConfig())
        assert config.owner == ""
        with pytest.raises(ValueError, match="owner cannot be empty"):
            validate_config(config)
