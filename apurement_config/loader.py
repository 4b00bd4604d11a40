"""
Configuration Loader (``apurement_config.loader``).

Responsibility
--------------
Loads the YAML configuration file and parses it into the frozen
dataclasses of ``apurement_config.schema``.  Runtime callers go through
``apurement_config.get_active_config()``.

Invariants enforced
-------------------
* All parse errors raise ``ValueError`` or ``KeyError`` with descriptive
  messages; no silent defaults for required fields.
* Quantities and percentages are parsed as ``Decimal`` from their string
  form, never through float.
* ``compute_checksum`` produces a deterministic SHA-256 hash for
  configuration identity and change detection.

Failure modes
-------------
* Missing YAML file  -> ``FileNotFoundError`` propagates.
* Malformed YAML  -> ``yaml.YAMLError`` propagates.
* Missing required keys  -> ``KeyError`` propagates.
* Out-of-range values  -> ``ValueError``.
"""

from __future__ import annotations

import hashlib
import json
from decimal import Decimal, InvalidOperation
from pathlib import Path
from typing import Any

import yaml

from apurement_config.schema import (
    ApurementConfig,
    DatabaseSettings,
    FamilyDefinition,
    LedgerSettings,
)


def load_yaml_file(path: Path) -> dict[str, Any]:
    """
    Load a YAML file and return its contents as a dict.

    Raises:
        FileNotFoundError: if the file does not exist.
        yaml.YAMLError: if the file contains invalid YAML.
    """
    with open(path, encoding="utf-8") as f:
        return yaml.safe_load(f) or {}


def parse_decimal(value: Any, field_name: str) -> Decimal:
    try:
        result = Decimal(str(value))
    except (InvalidOperation, ValueError):
        raise ValueError(f"{field_name} must be a number, got {value!r}") from None
    if not result.is_finite():
        raise ValueError(f"{field_name} must be finite, got {value!r}")
    return result


def parse_family(data: dict[str, Any]) -> FamilyDefinition:
    percent = parse_decimal(data["scrap_percent"], "scrap_percent")
    if percent < 0 or percent >= 100:
        raise ValueError(
            f"Family {data['label']!r}: scrap_percent must be in [0, 100), got {percent}"
        )
    return FamilyDefinition(
        label=str(data["label"]),
        scrap_percent=percent,
        is_active=bool(data.get("is_active", True)),
    )


def parse_ledger_settings(data: dict[str, Any]) -> LedgerSettings:
    defaults = LedgerSettings()
    settings = LedgerSettings(
        tolerance=parse_decimal(data.get("tolerance", defaults.tolerance), "tolerance"),
        max_conflict_retries=int(
            data.get("max_conflict_retries", defaults.max_conflict_retries)
        ),
        default_quantity_unit=str(
            data.get("default_quantity_unit", defaults.default_quantity_unit)
        ),
        sa_regime_code=str(data.get("sa_regime_code", defaults.sa_regime_code)),
        ea_regime_code=str(data.get("ea_regime_code", defaults.ea_regime_code)),
    )
    if settings.tolerance < 0:
        raise ValueError(f"tolerance must be >= 0, got {settings.tolerance}")
    if settings.max_conflict_retries < 0:
        raise ValueError(
            f"max_conflict_retries must be >= 0, got {settings.max_conflict_retries}"
        )
    return settings


def parse_database_settings(data: dict[str, Any]) -> DatabaseSettings:
    defaults = DatabaseSettings()
    return DatabaseSettings(
        url=str(data.get("url", defaults.url)),
        echo=bool(data.get("echo", defaults.echo)),
        pool_size=int(data.get("pool_size", defaults.pool_size)),
        max_overflow=int(data.get("max_overflow", defaults.max_overflow)),
    )


def parse_config(data: dict[str, Any]) -> ApurementConfig:
    """
    Parse a full configuration document.

    Raises:
        KeyError: if ``config_id`` or a family field is missing.
        ValueError: on duplicate family labels or out-of-range values.
    """
    families = tuple(parse_family(f) for f in data.get("families") or ())
    labels = [f.label for f in families]
    duplicates = sorted({label for label in labels if labels.count(label) > 1})
    if duplicates:
        raise ValueError(f"Duplicate family labels: {duplicates}")

    return ApurementConfig(
        config_id=str(data["config_id"]),
        version=int(data.get("version", 1)),
        families=families,
        ledger=parse_ledger_settings(data.get("ledger") or {}),
        database=parse_database_settings(data.get("database") or {}),
        checksum=compute_checksum(data),
    )


def compute_checksum(data: dict[str, Any]) -> str:
    """
    Compute SHA-256 checksum of canonical JSON serialization.

    Identical ``data`` always produces identical checksums.
    """
    canonical = json.dumps(data, sort_keys=True, default=str)
    return hashlib.sha256(canonical.encode()).hexdigest()
