"""
backoffice_config -- configuration entrypoint.

``get_active_config()`` returns the parsed BackofficeConfig (from
BACKOFFICE_CONFIG_PATH when set, otherwise the packaged defaults) and logs
a trace line with its id, version and checksum.  ``get_settings()`` reads
runtime settings from the environment.
"""

from __future__ import annotations

import logging
from pathlib import Path

from backoffice_config.loader import load_config
from backoffice_config.schema import BackofficeConfig
from backoffice_config.settings import Settings, get_settings

_logger = logging.getLogger("backoffice_kernel.config")


def get_active_config(config_path: Path | None = None) -> BackofficeConfig:
    path = config_path or get_settings().config_path
    config = load_config(path)
    _logger.info(
        "backoffice_config_loaded",
        extra={
            "config_id": config.config_id,
            "config_version": config.version,
            "checksum": config.checksum,
            "chart_size": len(config.chart_of_accounts),
        },
    )
    return config


__all__ = [
    "BackofficeConfig",
    "Settings",
    "get_active_config",
    "get_settings",
    "load_config",
]
