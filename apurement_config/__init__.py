"""
apurement_config -- single public entrypoint for runtime configuration.

Responsibility:
    Provides the ONLY way to obtain configuration at runtime through
    ``get_active_config()``.  No other component reads configuration files
    or environment variables directly.

Architecture position:
    Configuration -- sits above ``apurement_kernel``.  The kernel MUST NEVER
    import from ``apurement_config``; callers (the CLI, tests) pass the
    parsed settings into kernel constructors.

Failure modes:
    - ``FileNotFoundError`` -- configuration file does not exist.
    - ``ValueError`` / ``KeyError`` -- schema or structural errors.

Audit relevance:
    Every successful ``get_active_config()`` call emits an
    ``apurement_config_loaded`` log entry with the config id, version and
    checksum.
"""

from __future__ import annotations

import dataclasses
import logging
import os
from pathlib import Path

from apurement_config.loader import compute_checksum, load_yaml_file, parse_config
from apurement_config.schema import (
    ApurementConfig,
    DatabaseSettings,
    FamilyDefinition,
    LedgerSettings,
)

_logger = logging.getLogger("apurement_kernel.config")

_DEFAULT_CONFIG_PATH = Path(__file__).parent / "sets" / "default.yaml"

DATABASE_URL_ENV = "APUREMENT_DATABASE_URL"


def get_active_config(config_path: Path | str | None = None) -> ApurementConfig:
    """The ONLY public configuration entrypoint.

    Reads the YAML file (default: ``apurement_config/sets/default.yaml``),
    then applies the ``APUREMENT_DATABASE_URL`` environment override.

    Args:
        config_path: Override path to the configuration file.

    Returns:
        Frozen ApurementConfig.
    """
    path = Path(config_path) if config_path is not None else _DEFAULT_CONFIG_PATH
    config = parse_config(load_yaml_file(path))

    override = os.environ.get(DATABASE_URL_ENV)
    if override:
        config = dataclasses.replace(
            config,
            database=dataclasses.replace(config.database, url=override),
        )

    _logger.info(
        "apurement_config_loaded",
        extra={
            "config_id": config.config_id,
            "config_version": config.version,
            "checksum": config.checksum,
            "family_count": len(config.families),
            "database_url_overridden": bool(override),
        },
    )
    return config


__all__ = [
    "get_active_config",
    "compute_checksum",
    "ApurementConfig",
    "DatabaseSettings",
    "FamilyDefinition",
    "LedgerSettings",
    "DATABASE_URL_ENV",
]
