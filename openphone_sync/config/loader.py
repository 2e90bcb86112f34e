"""
config.yaml loading and validation.

The file is optional: a missing or empty file yields {} and the settings
fall back to environment variables and defaults. String values may refer to
environment variables as ${NAME}, which keeps the OpenPhone API key out of
the file itself:

    api_key: ${OPENPHONE_API_KEY}
    batch_size: 25
    custom_fields:
      client_type: 66f1c0e4d5...
"""

import logging
import os
import re
from pathlib import Path
from typing import Any, Callable, Mapping

import yaml

from openphone_sync.utils.paths import resolve_config_dir

DEFAULT_CONFIG_FILE = "config.yaml"

logger = logging.getLogger(__name__)

ENV_REFERENCE = re.compile(r"\$\{([A-Za-z_][A-Za-z0-9_]*)\}")


class ConfigError(Exception):
    """Raised when configuration loading or validation fails."""

    pass


# Keys accepted in config.yaml and their expected types
VALID_KEYS: dict[str, type[Any] | tuple[type[Any], ...]] = {
    # OpenPhone connection
    "api_key": str,
    "base_url": str,
    "timeout": (int, float),
    # Rate limiting and retries
    "rate_limit_per_minute": int,
    "rate_limit_per_hour": int,
    "max_concurrent_requests": int,
    "retry_attempts": int,
    "retry_delay": (int, float),
    # Sync options
    "batch_size": int,
    "similarity_threshold": (int, float),
    "continue_on_error": bool,
    "dry_run": bool,
    # Local client database
    "database_path": str,
    # Settings field name -> OpenPhone custom field key
    "custom_fields": dict,
    # Logging
    "verbose": bool,
    "log_dir": str,
    "log_retention_count": int,
}

# key -> (check, message suffix)
RANGE_CHECKS: dict[str, tuple[Callable[[float], bool], str]] = {
    "rate_limit_per_minute": (lambda v: v >= 1, "must be >= 1"),
    "rate_limit_per_hour": (lambda v: v >= 1, "must be >= 1"),
    "max_concurrent_requests": (lambda v: v >= 1, "must be >= 1"),
    "batch_size": (lambda v: v >= 1, "must be >= 1"),
    "retry_attempts": (lambda v: v >= 0, "must be >= 0"),
    "log_retention_count": (lambda v: v >= 0, "must be >= 0"),
    "timeout": (lambda v: v > 0, "must be > 0"),
    "retry_delay": (lambda v: v >= 0, "must be >= 0"),
    "similarity_threshold": (
        lambda v: 0.0 <= v <= 1.0,
        "must be between 0.0 and 1.0",
    ),
}


def expand_env_references(
    value: Any, environ: Mapping[str, str] | None = None
) -> Any:
    """
    Replace ${NAME} in string values (recursively) with environment values.

    Raises:
        ConfigError: If a referenced variable is not set
    """
    env = os.environ if environ is None else environ

    if isinstance(value, dict):
        return {k: expand_env_references(v, env) for k, v in value.items()}
    if isinstance(value, list):
        return [expand_env_references(v, env) for v in value]
    if not isinstance(value, str):
        return value

    def substitute(match: re.Match[str]) -> str:
        name = match.group(1)
        if name not in env:
            raise ConfigError(f"Environment variable {name} is not set")
        return env[name]

    return ENV_REFERENCE.sub(substitute, value)


def _type_name(expected: type[Any] | tuple[type[Any], ...]) -> str:
    if isinstance(expected, tuple):
        return " or ".join(t.__name__ for t in expected)
    return expected.__name__


class ConfigLoader:
    """
    Loads and validates config.yaml from the configuration directory.

    Usage:
        loader = ConfigLoader()
        config = loader.load_and_validate()

        # A file somewhere else
        config = loader.load_from_file("/etc/openphone-sync/config.yaml")
    """

    def __init__(
        self, config_dir: Path | None = None, config_file: str = DEFAULT_CONFIG_FILE
    ):
        """
        Args:
            config_dir: Directory holding the file (default: resolved from
                        $OPENPHONE_SYNC_CONFIG_DIR or ~/.openphone-sync)
            config_file: File name inside config_dir
        """
        self.config_dir = resolve_config_dir(config_dir)
        self.config_file = config_file

    @property
    def config_path(self) -> Path:
        return self.config_dir / self.config_file

    def load(self) -> dict[str, Any]:
        """Load config.yaml from the configuration directory."""
        return self.load_from_file(self.config_path)

    def load_from_file(self, path: Path | str) -> dict[str, Any]:
        """
        Load a configuration file and expand ${NAME} references.

        Returns:
            The configuration mapping; {} if the file is missing or empty

        Raises:
            ConfigError: If the file cannot be read or parsed, is not a
                         mapping, or refers to an unset variable
        """
        path = Path(path)
        if not path.exists():
            logger.debug(f"No configuration file at {path}")
            return {}

        try:
            raw = yaml.safe_load(path.read_text(encoding="utf-8"))
        except yaml.YAMLError as e:
            raise ConfigError(f"Failed to parse YAML configuration file: {e}") from e
        except OSError as e:
            raise ConfigError(f"Failed to read configuration file: {e}") from e

        if raw is None:
            logger.debug(f"Configuration file is empty: {path}")
            return {}
        if not isinstance(raw, dict):
            raise ConfigError(
                f"Configuration file must contain a YAML dictionary, "
                f"got {type(raw).__name__}"
            )

        logger.debug(f"Loaded configuration from {path}")
        return expand_env_references(raw)

    def validate(self, config: dict[str, Any]) -> None:
        """
        Check key types and value ranges.

        Unknown keys are skipped with a debug message so an older release can
        read a newer file.

        Raises:
            ConfigError: On the first invalid value
        """
        if not isinstance(config, dict):
            raise ConfigError(
                f"Configuration must be a dictionary, got {type(config).__name__}"
            )

        for key, value in config.items():
            expected = VALID_KEYS.get(key)
            if expected is None:
                logger.debug(f"Ignoring unknown configuration key: {key}")
                continue
            # bool is an int subclass; never accept it for numeric settings
            if not isinstance(value, expected) or (
                isinstance(value, bool) and expected is not bool
            ):
                raise ConfigError(
                    f"Invalid type for '{key}': expected {_type_name(expected)}, "
                    f"got {type(value).__name__}"
                )

            if key in RANGE_CHECKS:
                check, requirement = RANGE_CHECKS[key]
                if not check(value):
                    raise ConfigError(f"{key} {requirement}, got {value}")

        base_url = config.get("base_url")
        if base_url is not None and not base_url.startswith(("http://", "https://")):
            raise ConfigError(f"base_url must be an http(s) URL, got {base_url!r}")

        for name, field_key in config.get("custom_fields", {}).items():
            if field_key is not None and not isinstance(field_key, str):
                raise ConfigError(
                    f"custom_fields.{name} must be a string, "
                    f"got {type(field_key).__name__}"
                )

    def load_and_validate(self) -> dict[str, Any]:
        """Load config.yaml and validate it; {} when there is no file."""
        config = self.load()
        if config:
            self.validate(config)
        return config
