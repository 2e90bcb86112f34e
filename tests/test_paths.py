"""Tests for path utilities."""

from pathlib import Path

from openphone_sync.utils.paths import (
    CONFIG_DIR_ENV_VAR,
    DEFAULT_CONFIG_DIR,
    DEFAULT_DATABASE_FILE,
    default_database_path,
    resolve_config_dir,
)


class TestDefaultConfigDir:
    """Test DEFAULT_CONFIG_DIR constant."""

    def test_default_config_dir_is_in_home(self):
        """Default config dir should be in user's home directory."""
        assert Path.home() / ".openphone-sync" == DEFAULT_CONFIG_DIR

    def test_default_config_dir_is_path(self):
        """Default config dir should be a Path object."""
        assert isinstance(DEFAULT_CONFIG_DIR, Path)


class TestResolveConfigDir:
    """Test resolve_config_dir function."""

    def test_explicit_path_string(self, tmp_path):
        """Explicit path string should be used."""
        assert resolve_config_dir(str(tmp_path)) == tmp_path.resolve()

    def test_explicit_path_object(self, tmp_path):
        """Explicit Path object should be used."""
        assert resolve_config_dir(tmp_path) == tmp_path.resolve()

    def test_explicit_path_with_tilde(self):
        """Explicit path with ~ should be expanded."""
        result = resolve_config_dir("~/custom-config")
        assert result == (Path.home() / "custom-config").resolve()

    def test_env_var_override(self, tmp_path, monkeypatch):
        """Environment variable should override default when no explicit path."""
        monkeypatch.setenv(CONFIG_DIR_ENV_VAR, str(tmp_path))
        assert resolve_config_dir(None) == tmp_path.resolve()

    def test_explicit_path_beats_env_var(self, tmp_path, monkeypatch):
        """Explicit path should take priority over the environment."""
        monkeypatch.setenv(CONFIG_DIR_ENV_VAR, "/somewhere/else")
        assert resolve_config_dir(tmp_path) == tmp_path.resolve()

    def test_default_when_nothing_set(self, monkeypatch):
        """Default directory is used when nothing else is configured."""
        monkeypatch.delenv(CONFIG_DIR_ENV_VAR, raising=False)
        assert resolve_config_dir() == DEFAULT_CONFIG_DIR.resolve()


class TestDefaultDatabasePath:
    """Test default_database_path function."""

    def test_database_inside_config_dir(self, tmp_path):
        """The database lives in the configuration directory."""
        assert default_database_path(tmp_path) == tmp_path / DEFAULT_DATABASE_FILE
