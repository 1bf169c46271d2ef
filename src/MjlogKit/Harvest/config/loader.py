"""
Configuration Loading with File/Env/CLI Precedence

Implements three-level config composition:
1. **File level** (YAML/JSON): base configuration
2. **Environment level**: MJLK_* prefixed variables override file
3. **CLI level**: programmatic overrides win

Environment variables use double-underscore notation:
  MJLK_HTTP__USER_AGENT="Custom UA"  →  http.user_agent="Custom UA"
  MJLK_PACING__CONVERT_MIN_INTERVAL_MS=500  →  pacing.convert_min_interval_ms=500

JSON values are automatically parsed; strings are type-coerced when possible.
"""

from __future__ import annotations

import json
import logging
import os
from collections.abc import Mapping
from pathlib import Path
from typing import Any

import yaml
from pydantic import ValidationError

from ..errors import FatalConfigError
from .models import HarvestConfig

_LOGGER = logging.getLogger(__name__)

ENV_PREFIX = "MJLK_"

# Variables that configure the CLI itself rather than a config field.
_RESERVED_ENV = {"MJLK_CONFIG"}


def _read_file(path: str) -> dict[str, Any]:
    """
    Read YAML or JSON config file.

    Args:
        path: File path (suffix determines format: .yaml/.yml or .json)

    Returns:
        Parsed config dictionary

    Raises:
        FatalConfigError: If file cannot be read or parsed
    """
    p = Path(path)
    if not p.exists():
        raise FatalConfigError(f"Config file not found: {path}")

    try:
        text = p.read_text(encoding="utf-8")
    except OSError as e:
        raise FatalConfigError(f"Cannot read config file {path}: {e}") from e

    suffix = p.suffix.lower()

    if suffix in (".yaml", ".yml"):
        try:
            data = yaml.safe_load(text) or {}
        except yaml.YAMLError as e:
            raise FatalConfigError(f"Invalid YAML in {path}: {e}") from e
    elif suffix == ".json":
        try:
            data = json.loads(text)
        except json.JSONDecodeError as e:
            raise FatalConfigError(f"Invalid JSON in {path}: {e}") from e
    else:
        raise FatalConfigError(f"Unsupported file format: {suffix}. Use .yaml or .json")

    if not isinstance(data, dict):
        raise FatalConfigError(f"Config file {path} must contain a mapping at top level")
    return data


def _assign_nested(data: dict[str, Any], dotted_key: str, value: Any) -> None:
    """
    Assign value to nested dict using dot notation.

    Example:
        _assign_nested(data, "http.user_agent", "MyUA")
        → data["http"]["user_agent"] = "MyUA"
    """
    keys = dotted_key.split(".")
    current = data

    for key in keys[:-1]:
        if not isinstance(current.get(key), dict):
            current[key] = {}
        current = current[key]

    current[keys[-1]] = value


def _coerce_env_value(value: str) -> Any:
    """
    Attempt to coerce environment variable string to appropriate type.

    Tries JSON parsing first (handles lists, dicts, bools, numbers).
    Falls back to string if JSON fails.
    """
    try:
        return json.loads(value)
    except (json.JSONDecodeError, ValueError):
        pass

    if value.lower() in ("true", "false"):
        return value.lower() == "true"

    return value


def _merge_env_overrides(
    data: dict[str, Any],
    env: Mapping[str, str],
    env_prefix: str = ENV_PREFIX,
) -> dict[str, Any]:
    """
    Overlay environment variables onto config dict.

    Args:
        data: Base config dict (will be modified)
        env: Environment mapping to read from
        env_prefix: Environment variable prefix (default: MJLK_)

    Returns:
        Modified data dict
    """
    for env_key, env_value in env.items():
        if not env_key.startswith(env_prefix) or env_key in _RESERVED_ENV:
            continue

        relative_key = env_key[len(env_prefix) :].lower()
        dotted_key = relative_key.replace("__", ".")
        coerced_value = _coerce_env_value(env_value)

        _assign_nested(data, dotted_key, coerced_value)
        _LOGGER.debug("Environment override: %s → %s = %r", env_key, dotted_key, coerced_value)

    return data


def _merge_cli_overrides(
    data: dict[str, Any], cli_overrides: Mapping[str, Any] | None
) -> dict[str, Any]:
    """Recursively merge CLI overrides into base config dict; ``None`` values are ignored."""
    if not cli_overrides:
        return data

    for key, value in cli_overrides.items():
        if value is None:
            continue
        if isinstance(value, Mapping) and isinstance(data.get(key), dict):
            data[key] = _merge_cli_overrides(data[key], value)
        else:
            data[key] = dict(value) if isinstance(value, Mapping) else value
        _LOGGER.debug("CLI override: %s = %r", key, value)

    return data


# ============================================================================
# Public API
# ============================================================================


def load_config(
    path: str | None = None,
    *,
    env: Mapping[str, str] | None = None,
    env_prefix: str = ENV_PREFIX,
    cli_overrides: Mapping[str, Any] | None = None,
) -> HarvestConfig:
    """
    Load HarvestConfig from file, environment, and CLI with proper precedence.

    **Precedence:** file < environment < CLI

    Args:
        path: Path to YAML/JSON config file (optional)
        env: Environment mapping (defaults to ``os.environ``)
        env_prefix: Environment variable prefix (default: MJLK_)
        cli_overrides: CLI overrides dict (optional)

    Returns:
        Validated HarvestConfig instance

    Raises:
        FatalConfigError: If the file cannot be read or the merged config is invalid
    """
    data: dict[str, Any] = {}

    if path:
        data = _read_file(path)
        _LOGGER.info("Loaded config from %s", path)

    data = _merge_env_overrides(data, os.environ if env is None else env, env_prefix)
    data = _merge_cli_overrides(data, cli_overrides)

    try:
        config = HarvestConfig.model_validate(data)
    except ValidationError as e:
        raise FatalConfigError(f"Configuration validation failed: {e}") from e

    _LOGGER.debug("Configuration validated. Config hash: %s...", config.config_hash()[:8])
    return config


def validate_config_file(path: str) -> bool:
    """
    Validate a config file, ignoring environment overrides.

    Raises:
        FatalConfigError: If invalid
    """
    load_config(path=path, env={})
    return True


def export_config_schema() -> dict[str, Any]:
    """Export JSON Schema for HarvestConfig."""
    return HarvestConfig.model_json_schema()
