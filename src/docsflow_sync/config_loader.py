"""
YAML configuration files for docsflow_sync.

Finds config files by convention (project directory, then the user's XDG
config directory), expands ``!include`` and ``${VAR}`` references, and merges
them so the project file wins.

Usage:
    from docsflow_sync.config_loader import load_hierarchical_config

    config = load_hierarchical_config()
"""

import logging
import os
import re
from pathlib import Path
from typing import Any

import yaml

logger = logging.getLogger(__name__)

CONFIG_DIR_NAME = ".docsflow"

# ---------------------------------------------------------------------------
# 1. Env var interpolation
# ---------------------------------------------------------------------------

# Matches ${VAR} and ${VAR:-default}
_ENV_VAR_PATTERN = re.compile(r"\$\{([^}:]+?)(?::-(.*?))?\}")


def interpolate_env_vars(value: str) -> str:
    """Replace ``${VAR}`` and ``${VAR:-default}`` patterns with env values.

    * ``${VAR}`` is replaced with ``os.environ.get(VAR, "")``.
    * ``${VAR:-default}`` uses *default* when VAR is unset or empty.
    * Literal ``${`` with no closing ``}`` is left untouched.
    """

    def _replace(match: re.Match) -> str:
        env_val = os.environ.get(match.group(1))
        if env_val:
            return env_val
        return match.group(2) or ""

    return _ENV_VAR_PATTERN.sub(_replace, value)


def _interpolate_recursive(obj: Any) -> Any:
    """Walk a nested dict/list and interpolate env vars in all strings."""
    match obj:
        case str():
            return interpolate_env_vars(obj)
        case dict():
            return {k: _interpolate_recursive(v) for k, v in obj.items()}
        case list():
            return [_interpolate_recursive(item) for item in obj]
        case _:
            return obj


# ---------------------------------------------------------------------------
# 2. YAML !include support (dedicated SafeLoader subclass)
# ---------------------------------------------------------------------------


class ConfigLoader(yaml.SafeLoader):
    """YAML SafeLoader subclass with ``!include`` support.

    Uses a dedicated subclass so the global ``yaml.SafeLoader`` is never
    modified.  Tracks an *include stack* per-load to detect circular includes.
    """


def _include_constructor(loader: ConfigLoader, node: yaml.ScalarNode) -> Any:
    """Handle ``!include path/to/file.yml`` directives.

    Relative paths resolve against the directory of the including file.
    """
    include_path = Path(loader.construct_scalar(node))
    if not include_path.is_absolute():
        include_path = Path(loader.name).resolve().parent / include_path
    include_path = include_path.resolve()

    include_stack: list[Path] = getattr(loader, "_include_stack", [])
    if include_path in include_stack:
        chain = " -> ".join(str(p) for p in [*include_stack, include_path])
        raise ValueError(f"Circular include detected: {chain}")

    if not include_path.exists():
        raise FileNotFoundError(
            f"Include file not found: {include_path} "
            f"(referenced from {Path(loader.name).resolve()})"
        )

    return _load_yaml_with_includes(
        include_path, _include_stack=[*include_stack, include_path]
    )


ConfigLoader.add_constructor("!include", _include_constructor)


def _load_yaml_with_includes(
    path: Path,
    *,
    _include_stack: list[Path] | None = None,
) -> Any:
    """Load a YAML file using the ``ConfigLoader`` (with ``!include``)."""
    path = path.resolve()
    with open(path, "r", encoding="utf-8") as fh:
        loader = ConfigLoader(fh)
        loader._include_stack = _include_stack or [path]  # type: ignore[attr-defined]
        try:
            return loader.get_single_data()
        finally:
            loader.dispose()


# ---------------------------------------------------------------------------
# 3. Convention-based file discovery
# ---------------------------------------------------------------------------


def discover_config_files() -> list[Path]:
    """Return existing config file paths in precedence order (highest first).

    Search order:
        1. ``DOCSFLOW_CONFIG`` env var (explicit single path).
        2. ``.docsflow/config.yml`` in CWD (project-level)
        3. ``.docsflow/config.yaml`` in CWD (alternate extension)
        4. ``~/.config/docsflow/config.yml`` (XDG global)

    Only paths that exist on disk are returned.
    """
    candidates: list[Path] = []

    env_path = os.environ.get("DOCSFLOW_CONFIG")
    if env_path:
        candidates.append(Path(env_path).expanduser().resolve())

    cwd = Path.cwd()
    candidates.append(cwd / CONFIG_DIR_NAME / "config.yml")
    candidates.append(cwd / CONFIG_DIR_NAME / "config.yaml")
    candidates.append(Path.home() / ".config" / "docsflow" / "config.yml")

    return [p for p in candidates if p.exists()]


# ---------------------------------------------------------------------------
# 3a. Config bootstrapping
# ---------------------------------------------------------------------------

_STARTER_CONFIG = """\
# docsflow-sync configuration
#
# Repository settings can also be set via environment variables:
#   GITHUB_OWNER, GITHUB_REPO, GITHUB_TOKEN, GITHUB_BRANCH
#
# repository:
#   owner: acme
#   repo: handbook
#   token: ${GITHUB_TOKEN}
#   branch: main
#   max_parallel_requests: 5
#
# publish:
#   branch_prefix: docsflow
#   bot_name: DocsFlow Bot
#   conflict_policy: theirs
#
# Document families and the paths they live under:
#
# entities:
#   docs:
#     path: docs
#     extensions: [".md"]
#   versions:
#     path: config/versions
#     kind: structured
#     key_field: name
#
# watch:
#   mode: auto
#   polling_interval: 5
#
# logging:
#   level: INFO
#   file: null
"""


def resolve_config_path() -> Path:
    """Return the single config file path that should be used.

    The highest-precedence existing file, or ``CWD/.docsflow/config.yml``
    when none exists.  Does NOT create the file; see ``ensure_config()``.
    """
    existing = discover_config_files()
    if existing:
        return existing[0]
    return Path.cwd() / CONFIG_DIR_NAME / "config.yml"


def ensure_config(target: Path | None = None) -> Path:
    """Ensure a config file exists, creating directory and starter file if needed.

    Args:
        target: Explicit path to create. If ``None``, uses
            ``resolve_config_path()``.

    Returns:
        Path to the config file (existing or newly created).
    """
    existing = discover_config_files()
    if existing:
        logger.debug("Config file already exists: %s", existing[0])
        return existing[0]

    config_path = target or resolve_config_path()
    config_path.parent.mkdir(parents=True, exist_ok=True)
    config_path.write_text(_STARTER_CONFIG, encoding="utf-8")
    logger.info("Created starter config: %s", config_path)

    return config_path


# ---------------------------------------------------------------------------
# 4. Hierarchical merge
# ---------------------------------------------------------------------------


def load_hierarchical_config() -> dict[str, Any]:
    """Load and merge all discovered config files.

    Files are applied from lowest precedence to highest.  Top-level
    sections of a later file replace earlier ones, except ``entities``,
    which merges per entity name so a project file can add families to
    (or redefine single families of) a global file.  Env vars are
    interpolated after merging.

    Returns an empty dict when no config files exist.
    """
    paths = discover_config_files()
    if not paths:
        logger.debug("No config files found, using zero-config defaults")
        return {}

    merged: dict[str, Any] = {}
    for path in reversed(paths):
        logger.debug("Loading config: %s", path)
        try:
            data = _load_yaml_with_includes(path)
        except Exception:
            logger.exception("Failed to load config file %s", path)
            raise

        if data is None:
            continue
        if not isinstance(data, dict):
            logger.warning(
                "Config file %s has non-dict root (%s), skipping",
                path,
                type(data).__name__,
            )
            continue

        entities = data.get("entities")
        if isinstance(entities, dict) and isinstance(merged.get("entities"), dict):
            data = {**data, "entities": {**merged["entities"], **entities}}
        merged.update(data)

    return _interpolate_recursive(merged)
