"""Unified configuration schema for docsflow_sync.

Defines Pydantic models for the unified config structure with dedicated
sections for the repository connection, publishing, entity profiles,
change watching, and logging.  Includes an adapter function producing the
``Config`` dataclass used by the repository client.

Usage:
    from docsflow_sync.config_schema import (
        UnifiedConfig, build_config, to_legacy_config,
    )

    raw = load_hierarchical_config()
    unified = build_config(raw)
    legacy = to_legacy_config(unified, cli_overrides={"owner": "acme"})
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Literal

from pydantic import BaseModel, Field, field_validator

if TYPE_CHECKING:
    from .config import Config

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Section models
# ---------------------------------------------------------------------------


class RepositoryConfig(BaseModel):
    """Repository connection settings.

    All fields are optional to support zero-config: env vars and CLI args
    can supply them at runtime instead.
    """

    owner: str | None = Field(default=None, description="Repository owner")
    repo: str | None = Field(default=None, description="Repository name")
    token: str | None = Field(default=None, description="API token")
    branch: str | None = Field(default=None, description="Default branch")
    api_url: str | None = Field(default=None, description="API base URL")
    state_dir: str | None = Field(
        default=None, description="Directory of the JSON file store"
    )
    webhook_secret: str | None = Field(
        default=None, description="Webhook signature secret"
    )
    debug: bool = Field(default=False, description="Enable debug mode")
    max_parallel_requests: int = Field(
        default=5,
        ge=1,
        le=100,
        description="Maximum concurrent requests to the repository API (1-100)",
    )
    max_retries: int = Field(
        default=3,
        ge=0,
        le=10,
        description="Retries for idempotent API calls (0-10)",
    )

    model_config = {"frozen": True}


class PublishConfig(BaseModel):
    """Publish workflow settings."""

    branch_prefix: str = Field(
        default="docsflow", description="Prefix of publish branch names"
    )
    bot_name: str = Field(
        default="DocsFlow Bot", description="Commit author name"
    )
    bot_email: str = Field(
        default="docsflow-bot@users.noreply.github.com",
        description="Commit author email",
    )
    conflict_policy: Literal["theirs", "yours", "markers"] = Field(
        default="theirs",
        description="How conflicting text regions are rendered",
    )

    model_config = {"frozen": True}

    @field_validator("branch_prefix")
    @classmethod
    def _no_slashes(cls, value: str) -> str:
        value = value.strip()
        if not value or "/" in value or " " in value:
            raise ValueError(
                f"Invalid branch_prefix '{value}': must be a non-empty name without '/' or spaces"
            )
        return value


class EntityProfile(BaseModel):
    """A document family living under one repository path.

    Attributes:
        path: Directory watched and published for this entity.
        kind: ``text`` documents merge by line, ``structured`` by field.
        key_field: Field identifying items of structured sequences.
        extensions: File suffixes that belong to the entity (all if empty).
        exclude: Glob patterns of paths to ignore.
        commit_message: Template with ``{entity}``, ``{count}``, ``{paths}``,
            ``{actor}`` placeholders.
        pr_title: Pull request title template.
        pr_body: Pull request body template.
    """

    path: str
    kind: Literal["text", "structured"] = "text"
    key_field: str = "name"
    extensions: list[str] = []
    exclude: list[str] = []
    commit_message: str = "docs({entity}): publish {count} file(s)"
    pr_title: str = "Publish {entity} updates"
    pr_body: str = "Published by {actor}:\n\n{paths}"

    model_config = {"frozen": True}

    @field_validator("path")
    @classmethod
    def _normalise_path(cls, value: str) -> str:
        value = value.strip().strip("/")
        if ".." in value.split("/"):
            raise ValueError(f"Entity path '{value}' cannot contain '..'")
        return value


class WatchConfig(BaseModel):
    """Change watching strategy.

    ``auto`` uses push delivery when the hub is available and falls back
    to polling the store otherwise.
    """

    mode: Literal["push", "poll", "auto"] = Field(default="auto")
    polling_interval: float = Field(
        default=5.0, gt=0, description="Seconds between store polls"
    )

    model_config = {"frozen": True}


class LoggingConfig(BaseModel):
    """Logging configuration.

    Attributes:
        level: Log level name (DEBUG, INFO, WARNING, ERROR, CRITICAL).
        file: Optional log file path.
        format: ``text`` or ``json``.
    """

    level: str = Field(default="INFO", description="Log level")
    file: str | None = Field(default=None, description="Log file path")
    format: Literal["text", "json"] = Field(default="text")

    model_config = {"frozen": True}


# ---------------------------------------------------------------------------
# Top-level unified config
# ---------------------------------------------------------------------------


class UnifiedConfig(BaseModel):
    """Top-level unified configuration.

    Aggregates all config sections. Every section has sensible defaults,
    so ``UnifiedConfig()`` (zero-config) is always valid.
    """

    repository: RepositoryConfig = Field(default_factory=RepositoryConfig)
    publish: PublishConfig = Field(default_factory=PublishConfig)
    entities: dict[str, EntityProfile] = Field(default_factory=dict)
    watch: WatchConfig = Field(default_factory=WatchConfig)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)

    model_config = {"frozen": True}

    @field_validator("entities")
    @classmethod
    def _entity_names(
        cls, value: dict[str, EntityProfile]
    ) -> dict[str, EntityProfile]:
        for name in value:
            if not name or "-" in name or "/" in name:
                raise ValueError(
                    f"Invalid entity name '{name}': must be non-empty and contain no '-' or '/'"
                )
        return value


# ---------------------------------------------------------------------------
# Factory function
# ---------------------------------------------------------------------------


def build_config(raw_data: dict) -> UnifiedConfig:
    """Construct a ``UnifiedConfig`` from the raw dict returned by
    ``load_hierarchical_config()``.

    Handles missing sections gracefully; anything absent gets defaults.
    """
    if not raw_data:
        return UnifiedConfig()

    return UnifiedConfig(**raw_data)


# ---------------------------------------------------------------------------
# Adapter: UnifiedConfig -> Config dataclass
# ---------------------------------------------------------------------------


def to_legacy_config(
    unified: UnifiedConfig,
    cli_overrides: dict | None = None,
) -> Config:
    """Convert a ``UnifiedConfig`` into the ``Config`` dataclass, applying
    CLI overrides on top.

    The precedence applied here is:
        CLI override > unified config value > built-in default

    CLI overrides dict keys: owner, repo, token, branch, debug.

    Returns:
        ``Config`` dataclass instance (NOT validated; caller should run
        ``validate_config()`` separately if needed).
    """
    # Import here to avoid circular imports
    from .config import DEFAULT_API_URL, Config

    overrides = cli_overrides or {}
    repo = unified.repository

    return Config(
        owner=overrides.get("owner") or repo.owner or "",
        repo=overrides.get("repo") or repo.repo or "",
        token=overrides.get("token") or repo.token or "",
        branch=overrides.get("branch") or repo.branch or "main",
        api_url=repo.api_url or DEFAULT_API_URL,
        state_dir=repo.state_dir or ".docsflow/state",
        webhook_secret=repo.webhook_secret,
        debug=overrides.get("debug", False) or repo.debug,
        max_parallel_requests=repo.max_parallel_requests,
        max_retries=repo.max_retries,
    )
