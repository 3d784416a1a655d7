"""
trust_config -- the single entrypoint for runtime settings.

Responsibility:
    ``get_settings()`` is the only way the rest of the system obtains
    configuration.  The kernel never reads files or environment variables;
    it receives a ``TrustPolicy`` built from ``TrustSettings.policy()``.

Failure modes:
    - ``ValueError`` naming the offending key for invalid values.
    - ``FileNotFoundError`` when TRUST_CONFIG_FILE names a missing file.
"""

from __future__ import annotations

import logging
from collections.abc import Mapping
from pathlib import Path

from trust_config.loader import load_settings
from trust_config.schema import TrustSettings

_logger = logging.getLogger("trust_kernel.config")

__all__ = ["TrustSettings", "get_settings"]


def get_settings(
    config_file: Path | None = None,
    environ: Mapping[str, str] | None = None,
) -> TrustSettings:
    """Load settings from defaults, YAML overrides and the environment."""
    settings = load_settings(config_file, environ)
    _logger.info(
        "TRUST_CONFIG_TRACE",
        extra={
            "trace_type": "TRUST_CONFIG_TRACE",
            "log_level": settings.log_level,
            "match_window_days": settings.match_window_days,
            "fuzzy_window_days": settings.fuzzy_window_days,
            "fallback_dedup_key": settings.fallback_dedup_key,
        },
    )
    return settings
