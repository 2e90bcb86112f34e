"""
Runtime settings for the OpenPhone client, sync engine and importer.

Settings are resolved in layers, each overriding the previous one:

    defaults < config.yaml < environment variables < CLI flags

Environment variables:

    OPENPHONE_API_KEY                  API key (required)
    OPENPHONE_BASE_URL                 API host (default https://api.openphone.com)
    OPENPHONE_TIMEOUT                  Request timeout in seconds (default 30)
    OPENPHONE_RATE_LIMIT_MINUTE        Local quota per minute (default 60)
    OPENPHONE_RATE_LIMIT_HOUR          Local quota per hour (default 3600)
    OPENPHONE_MAX_CONCURRENT_REQUESTS  Concurrency gate size (default 5)
    OPENPHONE_BATCH_SIZE               Clients per sync batch (default 50)
    OPENPHONE_RETRY_ATTEMPTS           Extra attempts on 429/5xx (default 3)
    OPENPHONE_RETRY_DELAY              Base backoff in seconds (default 1)
    OPENPHONE_SIMILARITY_THRESHOLD     Name match threshold (default 0.85)
    OPENPHONE_SYNC_DATABASE            Path to the local client database
    OPENPHONE_CF_*_KEY                 Custom field keys, see CustomFieldKeys
"""

from __future__ import annotations

import dataclasses
import logging
import os
from collections.abc import Mapping
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

from openphone_sync.config.loader import DEFAULT_CONFIG_FILE, ConfigError, ConfigLoader

logger = logging.getLogger(__name__)

DEFAULT_BASE_URL = "https://api.openphone.com"
API_VERSION_PREFIX = "/v1"
DEFAULT_TIMEOUT = 30.0
DEFAULT_RATE_LIMIT_PER_MINUTE = 60
DEFAULT_RATE_LIMIT_PER_HOUR = 3600
DEFAULT_MAX_CONCURRENT_REQUESTS = 5
DEFAULT_BATCH_SIZE = 50
DEFAULT_RETRY_ATTEMPTS = 3
DEFAULT_RETRY_DELAY = 1.0
DEFAULT_SIMILARITY_THRESHOLD = 0.85

API_KEY_PREFIX = "sk-"


@dataclass(frozen=True)
class CustomFieldKeys:
    """
    OpenPhone custom field keys for the fields written on each contact.

    Each key is the identifier of a custom field defined in the OpenPhone
    workspace. A key left as None means the field is not written.

    Attributes:
        client_type: "Client Type" field (main and alternative contacts)
        date_of_birth: "Date of Birth" date field (main)
        county: "County" field (main)
        intake_date: "Intake Date" date field (main)
        case_type: "Case Type" field (main, civil clients only)
        arrested: "Arrested" field (main, criminal clients only)
        currently_incarcerated: "Currently Incarcerated" field (main,
            criminal clients only)
        primary_client_name: "Client Name" field (alternatives)
        relationship: "Relationship to Client" field (alternatives)
        contact_person_name: "Contact Person Name" field (alternatives)
        alt_contact_number: "Alternative Contact Number" field (alternatives)
    """

    client_type: str | None = None
    date_of_birth: str | None = None
    county: str | None = None
    intake_date: str | None = None
    case_type: str | None = None
    arrested: str | None = None
    currently_incarcerated: str | None = None
    primary_client_name: str | None = None
    relationship: str | None = None
    contact_person_name: str | None = None
    alt_contact_number: str | None = None

    @staticmethod
    def env_var(field_name: str) -> str:
        """Return the environment variable holding the key for a field."""
        return f"OPENPHONE_CF_{field_name.upper()}_KEY"

    @classmethod
    def from_env(cls, environ: Mapping[str, str] | None = None) -> CustomFieldKeys:
        """Read every OPENPHONE_CF_*_KEY variable; empty values count as unset."""
        return cls().with_env(environ)

    def with_env(self, environ: Mapping[str, str] | None = None) -> CustomFieldKeys:
        """Return a copy with keys present in the environment applied."""
        env = os.environ if environ is None else environ
        updates: dict[str, str] = {}
        for f in dataclasses.fields(self):
            value = env.get(self.env_var(f.name), "").strip()
            if value:
                updates[f.name] = value
        return dataclasses.replace(self, **updates)

    def with_values(self, values: Mapping[str, Any]) -> CustomFieldKeys:
        """
        Return a copy with the given field keys applied.

        Raises:
            ConfigError: If a name is not a known custom field
        """
        known = {f.name for f in dataclasses.fields(self)}
        unknown = set(values) - known
        if unknown:
            raise ConfigError(
                f"Unknown custom field(s): {', '.join(sorted(unknown))}. "
                f"Valid fields: {', '.join(sorted(known))}"
            )
        return dataclasses.replace(
            self, **{k: (v or None) for k, v in values.items()}
        )

    def configured(self) -> dict[str, str]:
        """Return only the fields that have a key."""
        return {
            f.name: getattr(self, f.name)
            for f in dataclasses.fields(self)
            if getattr(self, f.name)
        }


# Environment variable -> (settings field, parser)
_ENV_FIELDS: dict[str, tuple[str, str]] = {
    "OPENPHONE_API_KEY": ("api_key", "str"),
    "OPENPHONE_BASE_URL": ("base_url", "str"),
    "OPENPHONE_TIMEOUT": ("timeout", "float"),
    "OPENPHONE_RATE_LIMIT_MINUTE": ("rate_limit_per_minute", "int"),
    "OPENPHONE_RATE_LIMIT_HOUR": ("rate_limit_per_hour", "int"),
    "OPENPHONE_MAX_CONCURRENT_REQUESTS": ("max_concurrent_requests", "int"),
    "OPENPHONE_BATCH_SIZE": ("batch_size", "int"),
    "OPENPHONE_RETRY_ATTEMPTS": ("retry_attempts", "int"),
    "OPENPHONE_RETRY_DELAY": ("retry_delay", "float"),
    "OPENPHONE_SIMILARITY_THRESHOLD": ("similarity_threshold", "float"),
    "OPENPHONE_SYNC_DATABASE": ("database_path", "str"),
}


def _parse_env_value(name: str, raw: str, kind: str) -> Any:
    if kind == "str":
        return raw
    try:
        return int(raw) if kind == "int" else float(raw)
    except ValueError:
        raise ConfigError(
            f"Environment variable {name} must be a number, got {raw!r}"
        ) from None


@dataclass(frozen=True)
class OpenPhoneSettings:
    """
    Resolved settings shared by the API client, sync engine and importer.

    Instances are immutable; the with_* methods return updated copies so a
    settings object can be passed around freely between components.

    Usage:
        settings = load_settings()
        settings = settings.with_overrides({"batch_size": 25})
        for problem in settings.validate():
            print(problem)
    """

    api_key: str = ""
    base_url: str = DEFAULT_BASE_URL
    timeout: float = DEFAULT_TIMEOUT
    rate_limit_per_minute: int = DEFAULT_RATE_LIMIT_PER_MINUTE
    rate_limit_per_hour: int = DEFAULT_RATE_LIMIT_PER_HOUR
    max_concurrent_requests: int = DEFAULT_MAX_CONCURRENT_REQUESTS
    batch_size: int = DEFAULT_BATCH_SIZE
    retry_attempts: int = DEFAULT_RETRY_ATTEMPTS
    retry_delay: float = DEFAULT_RETRY_DELAY
    similarity_threshold: float = DEFAULT_SIMILARITY_THRESHOLD
    database_path: str | None = None
    custom_fields: CustomFieldKeys = field(default_factory=CustomFieldKeys)

    def __post_init__(self) -> None:
        self._check_ranges()

    def _check_ranges(self) -> None:
        positive_ints = {
            "rate_limit_per_minute": self.rate_limit_per_minute,
            "rate_limit_per_hour": self.rate_limit_per_hour,
            "max_concurrent_requests": self.max_concurrent_requests,
            "batch_size": self.batch_size,
        }
        for name, value in positive_ints.items():
            if value < 1:
                raise ConfigError(f"{name} must be >= 1, got {value}")

        if self.retry_attempts < 0:
            raise ConfigError(f"retry_attempts must be >= 0, got {self.retry_attempts}")
        if self.timeout <= 0:
            raise ConfigError(f"timeout must be > 0, got {self.timeout}")
        if self.retry_delay < 0:
            raise ConfigError(f"retry_delay must be >= 0, got {self.retry_delay}")
        if not (0.0 <= self.similarity_threshold <= 1.0):
            raise ConfigError(
                f"similarity_threshold must be between 0.0 and 1.0, "
                f"got {self.similarity_threshold}"
            )

    @property
    def api_url(self) -> str:
        """Versioned API root, e.g. https://api.openphone.com/v1."""
        return self.base_url.rstrip("/") + API_VERSION_PREFIX

    @classmethod
    def from_env(cls, environ: Mapping[str, str] | None = None) -> OpenPhoneSettings:
        """Build settings from defaults plus environment variables."""
        return cls().with_env(environ)

    def with_env(self, environ: Mapping[str, str] | None = None) -> OpenPhoneSettings:
        """
        Return a copy with environment variables applied.

        Raises:
            ConfigError: If a numeric variable cannot be parsed or is out of range
        """
        env = os.environ if environ is None else environ
        updates: dict[str, Any] = {}
        for name, (field_name, kind) in _ENV_FIELDS.items():
            raw = env.get(name)
            if raw is None or raw.strip() == "":
                continue
            updates[field_name] = _parse_env_value(name, raw.strip(), kind)

        updates["custom_fields"] = self.custom_fields.with_env(env)
        return dataclasses.replace(self, **updates)

    def with_overrides(self, values: Mapping[str, Any]) -> OpenPhoneSettings:
        """
        Return a copy with values from a config file or CLI flags applied.

        Keys that are not settings fields are ignored, as are None values
        (unset CLI options).

        Raises:
            ConfigError: If a value is out of range
        """
        known = {f.name for f in dataclasses.fields(self)}
        updates: dict[str, Any] = {}
        for key, value in values.items():
            if key not in known or value is None:
                continue
            if key == "custom_fields":
                updates[key] = self.custom_fields.with_values(value)
            elif key == "database_path":
                updates[key] = str(value)
            else:
                updates[key] = value
        return dataclasses.replace(self, **updates)

    def validate(self) -> list[str]:
        """
        Check that the settings are usable for talking to OpenPhone.

        Returns:
            List of problems; empty when the settings are usable
        """
        errors: list[str] = []
        if not self.api_key:
            errors.append("OPENPHONE_API_KEY is required")
        elif not self.api_key.startswith(API_KEY_PREFIX):
            logger.warning(f'OPENPHONE_API_KEY should start with "{API_KEY_PREFIX}"')

        if not self.base_url.startswith(("http://", "https://")):
            errors.append(f"Invalid base URL: {self.base_url}")

        return errors

    def ensure_valid(self) -> None:
        """
        Raise if validate() reports any problem.

        Raises:
            ConfigError: With every problem joined into one message
        """
        errors = self.validate()
        if errors:
            raise ConfigError("; ".join(errors))

    def __repr__(self) -> str:
        masked = f"{self.api_key[:5]}..." if self.api_key else "<unset>"
        return (
            f"OpenPhoneSettings(api_key={masked}, base_url={self.base_url}, "
            f"batch_size={self.batch_size}, "
            f"max_concurrent_requests={self.max_concurrent_requests})"
        )


def load_settings(
    config_dir: Path | str | None = None,
    config_file: Path | str | None = None,
    environ: Mapping[str, str] | None = None,
    overrides: Mapping[str, Any] | None = None,
) -> OpenPhoneSettings:
    """
    Resolve settings from every layer.

    Args:
        config_dir: Directory holding config.yaml (default: resolved config dir)
        config_file: Explicit config file path; wins over config_dir
        environ: Environment mapping (default: os.environ)
        overrides: CLI values, applied last

    Returns:
        The resolved OpenPhoneSettings

    Raises:
        ConfigError: If the config file is invalid or a value is out of range
    """
    loader = ConfigLoader(
        config_dir=Path(config_dir) if config_dir is not None else None,
        config_file=DEFAULT_CONFIG_FILE,
    )
    if config_file is not None:
        file_values = loader.load_from_file(config_file)
        if file_values:
            loader.validate(file_values)
    else:
        file_values = loader.load_and_validate()

    settings = OpenPhoneSettings().with_overrides(file_values)
    settings = settings.with_env(environ)

    if overrides:
        settings = settings.with_overrides(overrides)

    logger.debug(f"Resolved settings: {settings!r}")
    return settings
