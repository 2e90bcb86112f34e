"""
Tests for the config module.

Tests YAML configuration loading and validation and the layered
resolution of OpenPhoneSettings.
"""

import os
from unittest.mock import patch

import pytest
import yaml

from openphone_sync.config.loader import (
    DEFAULT_CONFIG_FILE,
    ConfigError,
    ConfigLoader,
    expand_env_references,
)
from openphone_sync.config.settings import (
    CustomFieldKeys,
    OpenPhoneSettings,
    load_settings,
)


def write_config(directory, data):
    path = directory / DEFAULT_CONFIG_FILE
    path.write_text(yaml.safe_dump(data))
    return path


class TestConfigLoaderInitialization:
    """Tests for ConfigLoader initialization."""

    def test_custom_config_dir_via_argument(self, tmp_path):
        """Test that custom config dir can be passed as argument."""
        loader = ConfigLoader(config_dir=tmp_path)
        assert loader.config_dir == tmp_path.resolve()

    def test_config_dir_from_environment_variable(self, tmp_path):
        """Test that config dir can be set via environment variable."""
        with patch.dict(os.environ, {"OPENPHONE_SYNC_CONFIG_DIR": str(tmp_path)}):
            loader = ConfigLoader()
            assert loader.config_dir == tmp_path.resolve()


class TestConfigLoaderLoad:
    """Tests for loading YAML files."""

    def test_missing_file_returns_empty(self, tmp_path):
        """Test a missing config file is not an error."""
        assert ConfigLoader(config_dir=tmp_path).load() == {}

    def test_empty_file_returns_empty(self, tmp_path):
        """Test an empty config file yields an empty dict."""
        (tmp_path / DEFAULT_CONFIG_FILE).write_text("")
        assert ConfigLoader(config_dir=tmp_path).load() == {}

    def test_load_values(self, tmp_path):
        """Test values are read from config.yaml."""
        write_config(tmp_path, {"batch_size": 25, "api_key": "sk-abc"})
        config = ConfigLoader(config_dir=tmp_path).load()
        assert config == {"batch_size": 25, "api_key": "sk-abc"}

    def test_invalid_yaml_raises(self, tmp_path):
        """Test unparsable YAML raises ConfigError."""
        (tmp_path / DEFAULT_CONFIG_FILE).write_text("batch_size: [unclosed")
        with pytest.raises(ConfigError, match="Failed to parse"):
            ConfigLoader(config_dir=tmp_path).load()

    def test_non_mapping_raises(self, tmp_path):
        """Test a YAML list at the top level raises ConfigError."""
        (tmp_path / DEFAULT_CONFIG_FILE).write_text("- a\n- b\n")
        with pytest.raises(ConfigError, match="YAML dictionary"):
            ConfigLoader(config_dir=tmp_path).load()


class TestConfigLoaderValidate:
    """Tests for configuration validation."""

    def setup_method(self):
        self.loader = ConfigLoader()

    def test_valid_config(self):
        """Test a valid configuration passes."""
        self.loader.validate(
            {
                "batch_size": 10,
                "timeout": 12.5,
                "similarity_threshold": 0.9,
                "custom_fields": {"county": "abc123"},
            }
        )

    def test_unknown_keys_ignored(self):
        """Test unknown keys do not fail validation."""
        self.loader.validate({"some_future_option": True})

    def test_wrong_type(self):
        """Test a string where an int is expected fails."""
        with pytest.raises(ConfigError, match="batch_size"):
            self.loader.validate({"batch_size": "ten"})

    def test_bool_not_accepted_as_number(self):
        """Test booleans are rejected for numeric keys."""
        with pytest.raises(ConfigError, match="retry_attempts"):
            self.loader.validate({"retry_attempts": True})

    def test_threshold_out_of_range(self):
        """Test similarity_threshold must be within 0..1."""
        with pytest.raises(ConfigError, match="similarity_threshold"):
            self.loader.validate({"similarity_threshold": 1.5})

    def test_positive_int_keys(self):
        """Test batch size must be positive."""
        with pytest.raises(ConfigError, match="batch_size must be >= 1"):
            self.loader.validate({"batch_size": 0})

    def test_negative_retry_attempts(self):
        """Test retry_attempts may be zero but not negative."""
        self.loader.validate({"retry_attempts": 0})
        with pytest.raises(ConfigError, match="retry_attempts must be >= 0"):
            self.loader.validate({"retry_attempts": -1})

    def test_custom_field_key_must_be_string(self):
        """Test custom field keys must be strings."""
        with pytest.raises(ConfigError, match="custom_fields.county"):
            self.loader.validate({"custom_fields": {"county": 12}})

    def test_base_url_scheme(self):
        """Test base_url must be an http(s) URL."""
        self.loader.validate({"base_url": "https://api.openphone.com"})
        with pytest.raises(ConfigError, match="base_url"):
            self.loader.validate({"base_url": "api.openphone.com"})


class TestEnvReferences:
    """Tests for ${NAME} expansion in config values."""

    def test_expands_nested_values(self):
        """Test references inside nested mappings and lists are expanded."""
        env = {"KEY": "sk-from-env", "FIELD": "cf_1"}
        config = {
            "api_key": "${KEY}",
            "custom_fields": {"county": "${FIELD}"},
            "tags": ["a-${FIELD}"],
            "batch_size": 5,
        }

        assert expand_env_references(config, env) == {
            "api_key": "sk-from-env",
            "custom_fields": {"county": "cf_1"},
            "tags": ["a-cf_1"],
            "batch_size": 5,
        }

    def test_unset_variable_raises(self):
        """Test a reference to an unset variable is a configuration error."""
        with pytest.raises(ConfigError, match="MISSING_VAR is not set"):
            expand_env_references("${MISSING_VAR}", {})

    def test_plain_dollar_untouched(self):
        """Test strings without the ${...} form are left alone."""
        assert expand_env_references("cost $5", {}) == "cost $5"

    def test_load_expands_references(self, tmp_path, monkeypatch):
        """Test values read from config.yaml are expanded."""
        monkeypatch.setenv("OPENPHONE_TEST_KEY", "sk-expanded")
        (tmp_path / DEFAULT_CONFIG_FILE).write_text(
            'api_key: "${OPENPHONE_TEST_KEY}"\n'
        )

        config = ConfigLoader(config_dir=tmp_path).load()

        assert config == {"api_key": "sk-expanded"}


class TestCustomFieldKeys:
    """Tests for CustomFieldKeys."""

    def test_from_env(self):
        """Test keys are read from OPENPHONE_CF_*_KEY variables."""
        keys = CustomFieldKeys.from_env(
            {"OPENPHONE_CF_COUNTY_KEY": "k1", "OPENPHONE_CF_ARRESTED_KEY": "  "}
        )
        assert keys.county == "k1"
        assert keys.arrested is None

    def test_with_values_unknown_field(self):
        """Test unknown custom field names are rejected."""
        with pytest.raises(ConfigError, match="Unknown custom field"):
            CustomFieldKeys().with_values({"shoe_size": "k"})

    def test_configured(self):
        """Test configured() lists only fields with a key."""
        keys = CustomFieldKeys(county="k1")
        assert keys.configured() == {"county": "k1"}


class TestOpenPhoneSettings:
    """Tests for OpenPhoneSettings."""

    def test_defaults(self):
        """Test default values."""
        settings = OpenPhoneSettings()
        assert settings.base_url == "https://api.openphone.com"
        assert settings.max_concurrent_requests == 5
        assert settings.batch_size == 50
        assert settings.similarity_threshold == 0.85
        assert settings.api_url == "https://api.openphone.com/v1"

    def test_range_checked_on_creation(self):
        """Test out-of-range values raise ConfigError."""
        with pytest.raises(ConfigError, match="max_concurrent_requests"):
            OpenPhoneSettings(max_concurrent_requests=0)

    def test_env_parsing(self):
        """Test numeric environment variables are parsed."""
        settings = OpenPhoneSettings.from_env(
            {"OPENPHONE_API_KEY": "sk-x", "OPENPHONE_BATCH_SIZE": "20"}
        )
        assert settings.api_key == "sk-x"
        assert settings.batch_size == 20

    def test_env_non_numeric(self):
        """Test a non-numeric variable raises ConfigError."""
        with pytest.raises(ConfigError, match="OPENPHONE_TIMEOUT"):
            OpenPhoneSettings.from_env({"OPENPHONE_TIMEOUT": "soon"})

    def test_overrides_ignore_none_and_unknown(self):
        """Test unset CLI options and unknown keys are ignored."""
        settings = OpenPhoneSettings(batch_size=30).with_overrides(
            {"batch_size": None, "verbose": True}
        )
        assert settings.batch_size == 30

    def test_validate_requires_api_key(self):
        """Test a missing API key is reported."""
        assert OpenPhoneSettings().validate() == ["OPENPHONE_API_KEY is required"]

    def test_validate_rejects_bad_url(self):
        """Test a base URL without a scheme is reported."""
        settings = OpenPhoneSettings(api_key="sk-x", base_url="api.openphone.com")
        errors = settings.validate()
        assert errors == ["Invalid base URL: api.openphone.com"]

    def test_ensure_valid_raises(self):
        """Test ensure_valid raises with every problem."""
        with pytest.raises(ConfigError, match="OPENPHONE_API_KEY"):
            OpenPhoneSettings().ensure_valid()

    def test_repr_masks_api_key(self):
        """Test the API key is not printed in full."""
        settings = OpenPhoneSettings(api_key="sk-secret-value")
        assert "sk-secret-value" not in repr(settings)


class TestLoadSettings:
    """Tests for layered settings resolution."""

    def test_file_then_env_then_overrides(self, tmp_path):
        """Test each layer overrides the previous one."""
        write_config(
            tmp_path,
            {"batch_size": 10, "retry_attempts": 1, "timeout": 5, "api_key": "sk-file"},
        )
        settings = load_settings(
            config_dir=tmp_path,
            environ={"OPENPHONE_RETRY_ATTEMPTS": "2", "OPENPHONE_TIMEOUT": "7"},
            overrides={"timeout": 9},
        )

        assert settings.api_key == "sk-file"
        assert settings.batch_size == 10
        assert settings.retry_attempts == 2
        assert settings.timeout == 9

    def test_custom_fields_from_file_and_env(self, tmp_path):
        """Test custom field keys combine file and environment values."""
        write_config(tmp_path, {"custom_fields": {"county": "file-key"}})
        settings = load_settings(
            config_dir=tmp_path, environ={"OPENPHONE_CF_CASE_TYPE_KEY": "env-key"}
        )

        assert settings.custom_fields.county == "file-key"
        assert settings.custom_fields.case_type == "env-key"

    def test_explicit_config_file(self, tmp_path):
        """Test an explicit config file wins over the config dir."""
        other = tmp_path / "other.yaml"
        other.write_text(yaml.safe_dump({"batch_size": 3}))

        settings = load_settings(config_dir=tmp_path, config_file=other, environ={})

        assert settings.batch_size == 3

    def test_invalid_file_raises(self, tmp_path):
        """Test validation errors in the file propagate."""
        write_config(tmp_path, {"batch_size": -1})
        with pytest.raises(ConfigError):
            load_settings(config_dir=tmp_path, environ={})
