"""Tests for docsflow_sync.config_loader -- hierarchical config loading."""

import textwrap

import pytest
import yaml

from docsflow_sync.config_loader import (
    _interpolate_recursive,
    _load_yaml_with_includes,
    discover_config_files,
    ensure_config,
    interpolate_env_vars,
    load_hierarchical_config,
    resolve_config_path,
)


@pytest.fixture
def isolated(tmp_path, monkeypatch):
    """Run with an empty CWD and HOME and no DOCSFLOW_CONFIG."""
    monkeypatch.delenv("DOCSFLOW_CONFIG", raising=False)
    monkeypatch.chdir(tmp_path)
    home = tmp_path / "home"
    home.mkdir()
    monkeypatch.setenv("HOME", str(home))
    return tmp_path


def _write(path, text):
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(textwrap.dedent(text), encoding="utf-8")
    return path


# -------------------------------------------------------------------------
# Env var interpolation
# -------------------------------------------------------------------------


class TestInterpolateEnvVars:
    """Tests for ${VAR} and ${VAR:-default} substitution."""

    def test_replaces_set_var(self, monkeypatch):
        monkeypatch.setenv("DOCS_OWNER", "acme")
        assert interpolate_env_vars("${DOCS_OWNER}") == "acme"

    def test_unset_var_replaced_with_empty(self, monkeypatch):
        monkeypatch.delenv("UNSET_VAR_XYZ", raising=False)
        assert interpolate_env_vars("${UNSET_VAR_XYZ}") == ""

    def test_default_used_when_unset_or_empty(self, monkeypatch):
        """The default applies to unset and empty variables."""
        monkeypatch.delenv("UNSET_VAR_XYZ", raising=False)
        monkeypatch.setenv("EMPTY_VAR", "")
        assert interpolate_env_vars("${UNSET_VAR_XYZ:-main}") == "main"
        assert interpolate_env_vars("${EMPTY_VAR:-main}") == "main"

    def test_multiple_vars_in_one_string(self, monkeypatch):
        monkeypatch.setenv("OWNER_A", "acme")
        monkeypatch.setenv("REPO_A", "handbook")
        assert interpolate_env_vars("${OWNER_A}/${REPO_A}") == "acme/handbook"

    def test_literal_dollar_brace_no_closing(self):
        """An unclosed ``${`` is left as text."""
        assert interpolate_env_vars("cost ${oops") == "cost ${oops"

    def test_nested_structures(self, monkeypatch):
        monkeypatch.setenv("TOKEN_X", "ghp_x")
        data = {
            "repository": {"token": "${TOKEN_X}", "max_retries": 3},
            "entities": [{"path": "${MISSING_X:-docs}"}],
        }
        assert _interpolate_recursive(data) == {
            "repository": {"token": "ghp_x", "max_retries": 3},
            "entities": [{"path": "docs"}],
        }


# -------------------------------------------------------------------------
# !include
# -------------------------------------------------------------------------


class TestIncludes:
    """The ``!include`` tag."""

    def test_include_relative_file(self, tmp_path):
        _write(tmp_path / "entities.yml", "docs:\n  path: docs\n")
        main = _write(tmp_path / "config.yml", "entities: !include entities.yml\n")
        assert _load_yaml_with_includes(main) == {"entities": {"docs": {"path": "docs"}}}

    def test_include_nonexistent_raises(self, tmp_path):
        main = _write(tmp_path / "config.yml", "entities: !include missing.yml\n")
        with pytest.raises(FileNotFoundError, match="Include file not found"):
            _load_yaml_with_includes(main)

    def test_circular_include_raises(self, tmp_path):
        """Files including each other are an error."""
        _write(tmp_path / "a.yml", "b: !include b.yml\n")
        _write(tmp_path / "b.yml", "a: !include a.yml\n")
        with pytest.raises(ValueError, match="Circular include detected"):
            _load_yaml_with_includes(tmp_path / "a.yml")

    def test_global_safe_loader_not_polluted(self, tmp_path):
        """The tag is registered on our loader only."""
        cfg = _write(tmp_path / "test.yml", "x: !include other.yml\n")
        with pytest.raises(yaml.constructor.ConstructorError):
            yaml.safe_load(cfg.read_text())


# -------------------------------------------------------------------------
# Discovery and bootstrapping
# -------------------------------------------------------------------------


class TestDiscovery:
    """Finding config files."""

    def test_nothing_found(self, isolated):
        assert discover_config_files() == []

    def test_env_var_takes_highest_precedence(self, isolated, monkeypatch):
        custom = _write(isolated / "custom.yml", "publish: {}\n")
        project = _write(isolated / ".docsflow" / "config.yml", "publish: {}\n")
        monkeypatch.setenv("DOCSFLOW_CONFIG", str(custom))
        assert discover_config_files() == [custom.resolve(), project]

    def test_project_before_global(self, isolated):
        project = _write(isolated / ".docsflow" / "config.yaml", "a: 1\n")
        xdg = _write(isolated / "home" / ".config" / "docsflow" / "config.yml", "a: 2\n")
        assert discover_config_files() == [project, xdg]

    def test_resolve_config_path_default(self, isolated):
        assert resolve_config_path() == isolated / ".docsflow" / "config.yml"

    def test_ensure_config_writes_starter(self, isolated):
        path = ensure_config()
        assert path == isolated / ".docsflow" / "config.yml"
        assert "docsflow-sync configuration" in path.read_text()
        assert ensure_config() == path


class TestLoadHierarchicalConfig:
    """Merging global and project config."""

    def test_zero_config(self, isolated):
        assert load_hierarchical_config() == {}

    def test_project_wins_per_top_level_key(self, isolated, monkeypatch):
        """Project sections replace global ones."""
        monkeypatch.setenv("DOCS_TOKEN", "ghp_from_env")
        _write(
            isolated / "home" / ".config" / "docsflow" / "config.yml",
            """\
            repository:
              owner: global
            watch:
              mode: poll
            """,
        )
        _write(
            isolated / ".docsflow" / "config.yml",
            """\
            repository:
              owner: acme
              token: ${DOCS_TOKEN}
            """,
        )
        merged = load_hierarchical_config()
        assert merged["repository"] == {"owner": "acme", "token": "ghp_from_env"}
        assert merged["watch"] == {"mode": "poll"}

    def test_non_dict_root_skipped(self, isolated, caplog):
        _write(isolated / ".docsflow" / "config.yml", "- just\n- a list\n")
        assert load_hierarchical_config() == {}
        assert "non-dict root" in caplog.text

    def test_entities_merge_per_name(self, isolated):
        """Entities are merged by name rather than replaced."""
        _write(
            isolated / "home" / ".config" / "docsflow" / "config.yml",
            """\
            entities:
              docs:
                path: global-docs
              stack:
                path: data/stack
            """,
        )
        _write(
            isolated / ".docsflow" / "config.yml",
            """\
            entities:
              docs:
                path: docs
            """,
        )
        assert load_hierarchical_config()["entities"] == {
            "docs": {"path": "docs"},
            "stack": {"path": "data/stack"},
        }
