"""
YAML and environment loading for TrustSettings.

Precedence, lowest to highest:
    1. TrustSettings field defaults
    2. trust_config/defaults.yaml
    3. The YAML file named by TRUST_CONFIG_FILE
    4. Environment variables DATABASE_URL and TRUST_LOG_LEVEL

YAML files may be flat or grouped under ``matching``, ``reconciliation``
and ``staging`` sections.

Error handling:
    * Missing override file -> ``FileNotFoundError`` propagates.
    * Malformed YAML        -> ``yaml.YAMLError`` propagates.
    * Unknown key or bad value -> ``ValueError`` naming the key.
"""

from __future__ import annotations

import os
from collections.abc import Mapping
from dataclasses import fields
from decimal import Decimal, InvalidOperation
from pathlib import Path
from typing import Any

import yaml

from trust_config.schema import TrustSettings

DEFAULTS_FILE = Path(__file__).parent / "defaults.yaml"

_SECTIONS = ("matching", "reconciliation", "staging")
_LOG_LEVELS = ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL")
_FIELD_NAMES = {f.name for f in fields(TrustSettings)}


def load_yaml_file(path: Path) -> dict[str, Any]:
    """
    Load a single YAML file and return its contents as a dict.

    Raises:
        FileNotFoundError: if the file does not exist.
        yaml.YAMLError: if the file contains invalid YAML.
    """
    with open(path) as f:
        data = yaml.safe_load(f) or {}
    if not isinstance(data, dict):
        raise ValueError(f"{path}: top level must be a mapping")
    return data


def flatten(data: Mapping[str, Any]) -> dict[str, Any]:
    """Lift section keys to the top level."""
    flat: dict[str, Any] = {}
    for key, value in data.items():
        if key in _SECTIONS:
            if not isinstance(value, Mapping):
                raise ValueError(f"{key}: section must be a mapping")
            flat.update(value)
        else:
            flat[key] = value
    return flat


def _coerce(key: str, value: Any) -> Any:
    if key == "database_url":
        if not isinstance(value, str) or not value:
            raise ValueError(f"{key}: must be a non-empty string")
        return value
    if key == "log_level":
        level = str(value).upper()
        if level not in _LOG_LEVELS:
            raise ValueError(f"{key}: must be one of {', '.join(_LOG_LEVELS)}")
        return level
    if key in ("amount_tolerance", "balance_tolerance"):
        try:
            amount = Decimal(str(value))
        except InvalidOperation:
            raise ValueError(f"{key}: not a decimal: {value!r}") from None
        if amount <= 0:
            raise ValueError(f"{key}: must be positive")
        return amount
    if key == "fallback_dedup_key":
        if not isinstance(value, bool):
            raise ValueError(f"{key}: must be true or false")
        return value
    if isinstance(value, bool) or not isinstance(value, int):
        raise ValueError(f"{key}: must be an integer")
    if value < 0:
        raise ValueError(f"{key}: must be >= 0")
    return value


def parse_settings(data: Mapping[str, Any]) -> dict[str, Any]:
    """Validate a (possibly sectioned) mapping into TrustSettings keyword args."""
    parsed: dict[str, Any] = {}
    for key, value in flatten(data).items():
        if key not in _FIELD_NAMES:
            raise ValueError(f"{key}: unknown setting")
        parsed[key] = _coerce(key, value)
    return parsed


def env_overrides(environ: Mapping[str, str]) -> dict[str, Any]:
    overrides: dict[str, Any] = {}
    if environ.get("DATABASE_URL"):
        overrides["database_url"] = _coerce("database_url", environ["DATABASE_URL"])
    if environ.get("TRUST_LOG_LEVEL"):
        overrides["log_level"] = _coerce("log_level", environ["TRUST_LOG_LEVEL"])
    return overrides


def load_settings(
    config_file: Path | None = None,
    environ: Mapping[str, str] | None = None,
) -> TrustSettings:
    environ = os.environ if environ is None else environ
    values = parse_settings(load_yaml_file(DEFAULTS_FILE))

    override_path = config_file or environ.get("TRUST_CONFIG_FILE")
    if override_path:
        values.update(parse_settings(load_yaml_file(Path(override_path))))

    values.update(env_overrides(environ))
    settings = TrustSettings(**values)
    # Cross-field checks live on the policy
    settings.policy()
    return settings
