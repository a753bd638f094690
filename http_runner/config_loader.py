"""Config Loader - Loads engine settings from YAML.

Handles loading YAML settings files with environment variable substitution,
resolving relative paths against the settings file, and cross-validating
the result (proxy URL, proxy exclusions, certificate entries).
"""

from __future__ import annotations

import os
import re
from pathlib import Path
from typing import Any
from urllib.parse import urlsplit

import yaml
from pydantic import ValidationError as PydanticValidationError

from http_runner.models import EngineSettings

# Settings keys holding paths that resolve against the settings file's directory
_PATH_KEYS = ("workspace_root", "cookie_file")

_ENV_VAR_PATTERN = re.compile(r"\$\{([^}]+)\}")


class ConfigError(Exception):
    """Raised when configuration loading fails."""


def load_settings(config_path: Path) -> EngineSettings:
    """Load engine settings from YAML with ${ENV_VAR} substitution."""
    config_path = Path(config_path)
    if not config_path.exists():
        raise ConfigError(f"Config file not found: {config_path}")

    try:
        with open(config_path, "r", encoding="utf-8") as f:
            raw_config = yaml.safe_load(f)
    except yaml.YAMLError as e:
        raise ConfigError(f"Invalid YAML in config file: {e}") from e

    # An empty file means all defaults
    if raw_config is None:
        raw_config = {}
    if not isinstance(raw_config, dict):
        raise ConfigError("Config file must be a YAML mapping")

    raw_config = _substitute_env_vars(raw_config)

    for key in _PATH_KEYS:
        value = raw_config.get(key)
        if isinstance(value, str) and value:
            raw_config[key] = str(resolve_relative_path(config_path, value))

    try:
        return EngineSettings.model_validate(raw_config)
    except PydanticValidationError as e:
        raise ConfigError(f"Invalid config structure: {e}") from e


def resolve_relative_path(config_path: Path, path_ref: str) -> Path:
    """Resolve path_ref relative to config_path's directory. Absolute and ~ paths pass through."""
    path = Path(path_ref).expanduser()
    if path.is_absolute():
        return path
    return (config_path.parent / path).resolve()


def _substitute_env_vars(data: Any) -> Any:
    """Recursively substitute ${ENV_VAR} patterns in strings within data."""
    if isinstance(data, str):
        return _substitute_string(data)
    elif isinstance(data, dict):
        return {k: _substitute_env_vars(v) for k, v in data.items()}
    elif isinstance(data, list):
        return [_substitute_env_vars(item) for item in data]
    return data


def _substitute_string(s: str) -> str:
    """Substitute ${ENV_VAR} patterns. Raises ConfigError if env var is not set."""

    def replacer(match: re.Match) -> str:
        var_name = match.group(1)
        value = os.environ.get(var_name)
        if value is None:
            raise ConfigError(f"Environment variable '{var_name}' is not set")
        return value

    return _ENV_VAR_PATTERN.sub(replacer, s)


# =============================================================================
# Cross-validation
# =============================================================================


class ValidationWarning:
    """A non-fatal validation warning."""

    def __init__(self, category: str, message: str) -> None:
        self.category = category
        self.message = message

    def __str__(self) -> str:
        return f"[{self.category}] {self.message}"


class ValidationError:
    """A fatal validation error."""

    def __init__(self, category: str, message: str) -> None:
        self.category = category
        self.message = message

    def __str__(self) -> str:
        return f"[{self.category}] {self.message}"


class ValidationResult:
    """Result of settings validation checks."""

    def __init__(self) -> None:
        self.warnings: list[ValidationWarning] = []
        self.errors: list[ValidationError] = []

    def add_warning(self, category: str, message: str) -> None:
        self.warnings.append(ValidationWarning(category, message))

    def add_error(self, category: str, message: str) -> None:
        self.errors.append(ValidationError(category, message))

    @property
    def is_valid(self) -> bool:
        """True if no errors (warnings are OK)."""
        return len(self.errors) == 0


def validate_settings(settings: EngineSettings) -> ValidationResult:
    """Check settings for values that load fine but will not behave as intended.

    Checks: (1) the proxy URL is usable and uses http/https, (2) proxy
    exclusions carry numeric ports, (3) certificate entries name a usable set
    of files.
    """
    result = ValidationResult()
    _validate_proxy(settings, result)
    _validate_certificates(settings, result)
    return result


def _validate_proxy(settings: EngineSettings, result: ValidationResult) -> None:
    if settings.proxy:
        try:
            parts = urlsplit(settings.proxy)
            # .port raises ValueError for a malformed port
            hostname, _ = parts.hostname, parts.port
        except ValueError as e:
            result.add_error("proxy", f"Proxy URL '{settings.proxy}' is not usable: {e}")
        else:
            if not hostname:
                result.add_error("proxy", f"Proxy URL '{settings.proxy}' has no host")
            elif parts.scheme.lower() not in ("http", "https"):
                result.add_warning(
                    "proxy",
                    f"Proxy URL '{settings.proxy}' should use http:// or https://",
                )

    for entry in settings.exclude_hosts_for_proxy:
        _, sep, port = entry.partition(":")
        if sep and not port.isdigit():
            result.add_warning(
                "exclude_hosts_for_proxy",
                f"Entry '{entry}' has a non-numeric port and will only match by host",
            )


def _validate_certificates(settings: EngineSettings, result: ValidationResult) -> None:
    for host, spec in settings.certificates.items():
        if not (spec.cert or spec.key or spec.pfx):
            result.add_warning(
                "certificates",
                f"Certificate entry for '{host}' has no cert, key or pfx path",
            )
        elif spec.cert and not spec.key and not spec.pfx:
            result.add_warning(
                "certificates",
                f"Certificate entry for '{host}' has a cert but no key",
            )
