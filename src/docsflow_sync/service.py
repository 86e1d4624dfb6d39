"""Service container and lifespan management.

``DocsflowService`` owns the long-lived objects (store, repository
client, change hub, engines).  The hosting process builds it once through
``service_lifespan`` and hands it to request handlers by reference.
"""

import json
import logging
import sys
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from pathlib import Path
from typing import Any

from dotenv import load_dotenv

from .config import Config, load_config
from .config_loader import discover_config_files, load_hierarchical_config
from .config_schema import UnifiedConfig, build_config
from .core.async_utils import (
    create_limiter,
    gather_limited,
    run_sync,
    run_sync_limited,
)
from .core.client import GitHubClient
from .core.repository import RepositoryClient
from .errors import ValidationError
from .logger import setup_logging
from .sync.drafts import DraftService
from .sync.engine import UpstreamSyncEngine
from .sync.events import (
    ChangeHub,
    Subscription,
    WatchQuery,
    select_watch_strategy,
)
from .sync.mapper import EntityMapper
from .sync.models import PublishResult, SyncReport, TreeSyncResult
from .sync.publish import BranchReconciler, PublishCoordinator
from .sync.session import EditingSession
from .sync.store import InMemoryStore, JsonFileStore
from .sync.tree import TreeSyncEngine
from .sync.webhook import parse_push_event, verify_signature

logger = logging.getLogger(__name__)


def _stderr_print(msg: str) -> None:
    """Print message to stderr for operator feedback."""
    print(msg, file=sys.stderr, flush=True)


class DocsflowService:
    """Long-lived container wiring the engines together.

    Args:
        config: Validated repository connection settings.
        settings: Unified config (publish, entities, watch sections).
        repository: Repository client; a ``GitHubClient`` when omitted.
        store: Persistence; a ``JsonFileStore`` under ``config.state_dir``
            when omitted.
    """

    def __init__(
        self,
        config: Config,
        settings: UnifiedConfig,
        repository: RepositoryClient | None = None,
        store: InMemoryStore | None = None,
    ) -> None:
        self.config = config
        self.settings = settings
        self.repository = repository or GitHubClient(config)
        self.store = store if store is not None else JsonFileStore(Path(config.state_dir))
        self.limiter = create_limiter(config.max_parallel_requests)
        self.hub = ChangeHub()
        self.mapper = EntityMapper(settings.entities)

        publish = settings.publish
        self.drafts = DraftService(
            self.store, self.repository, self.mapper, self.hub, publish.bot_name
        )
        self.trees = TreeSyncEngine(
            self.repository, self.store, self.mapper, self.drafts, self.hub
        )
        self.publisher = PublishCoordinator(
            self.repository, self.store, self.mapper, publish, self.hub
        )
        self.reconciler = BranchReconciler(
            self.repository, self.store, self.mapper, publish.branch_prefix
        )
        self.upstream = UpstreamSyncEngine(
            self.repository, self.store, self.mapper, self.drafts, self.trees
        )
        self.watch = select_watch_strategy(
            settings.watch.mode,
            self.hub,
            self.store,
            settings.watch.polling_interval,
        )

    def open_session(self, path: str) -> EditingSession:
        """Editing session over the stored (or read-through) document."""
        document = self.drafts.fetch(path)
        profile = self.mapper.profile(document.entity)
        return EditingSession(
            document, profile.key_field, self.settings.publish.conflict_policy
        )

    def watch_document(self, path: str) -> Subscription:
        return self.watch.open(WatchQuery(doc_id=path, streams=frozenset({"doc"})))

    def watch_tree(self, path: str = "") -> Subscription:
        return self.watch.open(WatchQuery(path_prefix=path))

    # ------------------------------------------------------------------
    # Async entry points for request handlers
    # ------------------------------------------------------------------

    async def publish(
        self, entity: str, actor: str, doc_id: str | None = None
    ) -> PublishResult:
        return await run_sync_limited(
            self.limiter, self.publisher.publish, entity, actor, doc_id
        )

    async def refresh_trees(
        self, paths: list[str] | None = None
    ) -> list[TreeSyncResult]:
        """Sync several watched paths concurrently (all entities by default)."""
        targets = paths if paths is not None else self.mapper.watched_paths()
        return await gather_limited(
            [
                run_sync_limited(self.limiter, self.trees.sync_path, path)
                for path in targets
            ]
        )

    async def handle_webhook(
        self, body: bytes, signature: str | None, event_name: str
    ) -> SyncReport | None:
        """Verify and apply one webhook delivery.

        Returns ``None`` for deliveries that are not pushes to the
        default branch.

        Raises:
            ValidationError: If the signature does not match the secret
                or the body is not a JSON object.
        """
        if self.config.webhook_secret and not verify_signature(
            body, signature, self.config.webhook_secret
        ):
            raise ValidationError(
                "Invalid webhook signature",
                "Check that the webhook secret matches GITHUB_WEBHOOK_SECRET.",
            )
        if event_name != "push":
            logger.debug("Ignoring %s webhook", event_name)
            return None
        try:
            payload = json.loads(body)
        except ValueError as exc:
            raise ValidationError(
                f"Webhook body is not valid JSON: {exc}",
                "Set the webhook content type to application/json.",
            ) from exc
        if not isinstance(payload, dict):
            raise ValidationError(
                f"Webhook body must be a JSON object, got {type(payload).__name__}"
            )
        event = parse_push_event(payload, self.config.branch)
        if event is None:
            return None
        return await run_sync_limited(self.limiter, self.upstream.handle_push, event)

    def close(self) -> None:
        self.hub.close()


@asynccontextmanager
async def service_lifespan(
    config_overrides: dict[str, Any] | None = None,
) -> AsyncIterator[DocsflowService]:
    """
    Manage service startup and shutdown lifecycle.

    On startup:
    - Load .env file (so values are available for env var lookups and YAML interpolation)
    - Load YAML config file if present (repository values become fallbacks)
    - Merge all sources via load_config(): CLI > env vars > .env > YAML > defaults
    - Configure logging from the ``logging`` section
    - Create GitHubClient and validate the repository and default branch
    - Fail fast if the repository is unreachable

    On shutdown:
    - Close the change hub and its subscriptions

    Args:
        config_overrides: Optional dict with config values from CLI
            (owner, repo, token, branch, debug)

    Yields:
        The initialized ``DocsflowService``

    Raises:
        RuntimeError: If configuration is invalid or the repository
            connection fails.
    """
    logger.info("Docsflow service starting...")
    _stderr_print("Docsflow service starting...")

    try:
        # 1. Load .env early (before YAML, so ${VAR} interpolation can use .env values)
        load_dotenv()

        # 2. Load YAML config if present
        settings = UnifiedConfig()
        yaml_fallbacks: dict[str, Any] | None = None
        sources = []
        config_files = discover_config_files()
        if config_files:
            settings = build_config(load_hierarchical_config())
            yaml_fallbacks = {
                k: v
                for k, v in settings.repository.model_dump().items()
                if v is not None
            }
            sources.append(f"config file: {config_files[0]}")

        # 3. Single call to load_config with all sources merged
        overrides = config_overrides or {}
        config = load_config(
            owner=overrides.get("owner"),
            repo=overrides.get("repo"),
            token=overrides.get("token"),
            branch=overrides.get("branch"),
            debug=overrides.get("debug", False),
            yaml_fallbacks=yaml_fallbacks,
        )
        setup_logging(
            mode="service",
            debug=config.debug,
            log_file=settings.logging.file,
            debug_format=settings.logging.format,
            level=settings.logging.level,
        )

        if overrides:
            sources.append("CLI arguments")
        sources.append("environment variables")
        source_desc = ", ".join(sources)
        logger.info("Configuration loaded from: %s", source_desc)
        _stderr_print(f"  Configuration loaded from: {source_desc}")
        _stderr_print(f"  Repository: {config.full_name} ({config.branch})")
    except ValueError as e:
        logger.error("Configuration error: %s", e)
        _stderr_print(f"ERROR: Configuration error: {e}")
        raise RuntimeError(
            f"Configuration error: {e}. Ensure GITHUB_OWNER, GITHUB_REPO, GITHUB_TOKEN are set."
        ) from e

    logger.info("Validating repository connection...")
    try:
        client = GitHubClient(config)
        full_name = await run_sync(client.validate_connection)
        _stderr_print(f"  Connected to {full_name}")
    except Exception as e:
        logger.error("Failed to connect to repository: %s", e)
        _stderr_print("ERROR: Repository connection failed.")
        _stderr_print(f"  {e}")
        raise RuntimeError(
            f"Repository connection failed: {e}. Check GITHUB_OWNER, GITHUB_REPO, GITHUB_TOKEN."
        ) from e

    service = DocsflowService(config, settings, repository=client)
    _stderr_print(
        f"Service ready: {len(settings.entities)} entities, watch mode '{service.watch.name}'."
    )
    try:
        yield service
    finally:
        logger.info("Docsflow service shutting down")
        service.close()
