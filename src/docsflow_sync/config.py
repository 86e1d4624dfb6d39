"""Repository connection configuration.

Reads repository settings from CLI args, environment variables, .env
files, and YAML config file fallbacks.

Precedence (highest to lowest):
    CLI args > Environment variables > .env file > YAML config > Built-in defaults

Environment variables:
    GITHUB_OWNER: Repository owner (required)
    GITHUB_REPO: Repository name (required)
    GITHUB_TOKEN: API token (required)
    GITHUB_BRANCH: Default branch (optional, default: main)
    GITHUB_API_URL: API base URL (optional, default: https://api.github.com)
    GITHUB_WEBHOOK_SECRET: Secret for webhook signature checks (optional)
    DOCSFLOW_STATE_DIR: Directory of the JSON file store (optional)
    DOCSFLOW_DEBUG: Enable debug logging (optional, default: false)
    DOCSFLOW_MAX_PARALLEL_REQUESTS: Max parallel API requests (optional, default: 5)
    DOCSFLOW_MAX_RETRIES: Retries for idempotent API calls (optional, default: 3)
"""

import logging
import os
from dataclasses import dataclass
from urllib.parse import urlparse

logger = logging.getLogger(__name__)

DEFAULT_API_URL = "https://api.github.com"


@dataclass
class Config:
    owner: str
    repo: str
    token: str
    branch: str = "main"
    api_url: str = DEFAULT_API_URL
    state_dir: str = ".docsflow/state"
    webhook_secret: str | None = None
    debug: bool = False
    max_parallel_requests: int = 5
    max_retries: int = 3

    @property
    def full_name(self) -> str:
        return f"{self.owner}/{self.repo}"


def validate_config(config: Config) -> None:
    """Validate configuration values and raise ValueError if invalid.

    Raises:
        ValueError: If the API URL is malformed or a required value is empty.
    """
    config.api_url = config.api_url.strip()

    if not config.api_url.startswith(("http://", "https://")):
        raise ValueError(
            f"Invalid API URL '{config.api_url}': must start with http:// or https://"
        )

    parsed = urlparse(config.api_url)
    if not parsed.hostname:
        raise ValueError(
            f"Invalid API URL '{config.api_url}': URL must include a hostname"
        )

    config.api_url = config.api_url.removesuffix("/")

    for field_name, env_var in (
        ("owner", "GITHUB_OWNER"),
        ("repo", "GITHUB_REPO"),
        ("token", "GITHUB_TOKEN"),
        ("branch", "GITHUB_BRANCH"),
    ):
        if not getattr(config, field_name).strip():
            raise ValueError(
                f"Repository {field_name} cannot be empty. Set {env_var} environment variable."
            )

    if "/" in config.owner or "/" in config.repo:
        raise ValueError(
            f"Invalid repository '{config.full_name}': owner and repo must not contain '/'"
        )

    if not config.webhook_secret:
        logger.warning(
            "No webhook secret configured; webhook signatures will not be verified."
        )


def _get_bool_env(key: str) -> bool | None:
    """Return True/False from env var, or None if unset."""
    val = os.getenv(key)
    if val is None:
        return None
    return val.lower() in ("true", "1", "yes", "on")


def _get_int(
    env_var: str, fallbacks: dict, key: str, default: int, low: int, high: int
) -> int:
    raw = os.getenv(env_var)
    if raw is None:
        return int(fallbacks.get(key, default))
    try:
        value = int(raw)
    except ValueError:
        raise ValueError(
            f"Invalid {env_var} '{raw}': must be a number between {low} and {high}"
        ) from None
    if not (low <= value <= high):
        raise ValueError(
            f"Invalid {env_var} '{raw}': must be a number between {low} and {high}"
        )
    return value


def load_config(
    owner: str | None = None,
    repo: str | None = None,
    token: str | None = None,
    branch: str | None = None,
    debug: bool = False,
    yaml_fallbacks: dict | None = None,
) -> Config:
    """Load configuration with unified precedence.

    Resolution order for each field (highest to lowest):
        CLI arg > env var / .env > yaml_fallbacks > built-in default

    The caller is responsible for calling ``load_dotenv()`` before this
    function so that .env values are available via ``os.getenv()``.

    Args:
        owner: Override repository owner.
        repo: Override repository name.
        token: Override API token.
        branch: Override default branch.
        debug: Enable debug logging (CLI flag).
        yaml_fallbacks: Dict of values from the YAML ``repository`` section.
            Used as fallback when CLI arg and env var are both unset.

    Returns:
        Validated Config instance.

    Raises:
        ValueError: If a required value is missing after checking all
            sources, or a numeric value is out of range.
    """
    fb = yaml_fallbacks or {}

    def required(value: str | None, env_var: str, key: str) -> str:
        resolved = value or os.getenv(env_var) or fb.get(key)
        if not resolved:
            raise ValueError(
                f"Repository {key} not found. Set {env_var} environment variable, "
                f"pass --{key} CLI argument, or add '{key}' to config.yml."
            )
        return str(resolved).strip()

    final_owner = required(owner, "GITHUB_OWNER", "owner")
    final_repo = required(repo, "GITHUB_REPO", "repo")
    final_token = required(token, "GITHUB_TOKEN", "token")

    final_branch = (
        branch or os.getenv("GITHUB_BRANCH") or fb.get("branch") or "main"
    )
    final_api_url = (
        os.getenv("GITHUB_API_URL") or fb.get("api_url") or DEFAULT_API_URL
    )
    final_state_dir = (
        os.getenv("DOCSFLOW_STATE_DIR")
        or fb.get("state_dir")
        or ".docsflow/state"
    )
    final_secret = os.getenv("GITHUB_WEBHOOK_SECRET") or fb.get(
        "webhook_secret"
    )

    if debug:
        final_debug = True
    else:
        env_debug = _get_bool_env("DOCSFLOW_DEBUG")
        if env_debug is not None:
            final_debug = env_debug
        else:
            final_debug = bool(fb.get("debug", False))

    config = Config(
        owner=final_owner,
        repo=final_repo,
        token=final_token,
        branch=final_branch.strip(),
        api_url=final_api_url,
        state_dir=final_state_dir,
        webhook_secret=final_secret or None,
        debug=final_debug,
        max_parallel_requests=_get_int(
            "DOCSFLOW_MAX_PARALLEL_REQUESTS",
            fb,
            "max_parallel_requests",
            5,
            1,
            100,
        ),
        max_retries=_get_int(
            "DOCSFLOW_MAX_RETRIES", fb, "max_retries", 3, 0, 10
        ),
    )

    validate_config(config)

    return config
