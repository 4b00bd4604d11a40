"""
ApurementConfig schema.

Frozen dataclasses the YAML configuration is parsed into.  The loader
builds them; everything else only reads them.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from decimal import Decimal


@dataclass(frozen=True)
class FamilyDefinition:
    """A product family seeded into scrap_families."""

    label: str
    scrap_percent: Decimal
    is_active: bool = True


@dataclass(frozen=True)
class LedgerSettings:
    """Allocation ledger parameters."""

    tolerance: Decimal = Decimal("0.0001")
    max_conflict_retries: int = 2
    default_quantity_unit: str = "TONNE"
    sa_regime_code: str = "532"
    ea_regime_code: str = "362"


@dataclass(frozen=True)
class DatabaseSettings:
    """Engine parameters passed to init_engine_from_url."""

    url: str = "sqlite:///apurement.db"
    echo: bool = False
    pool_size: int = 20
    max_overflow: int = 10


@dataclass(frozen=True)
class ApurementConfig:
    """Complete runtime configuration."""

    config_id: str
    version: int
    families: tuple[FamilyDefinition, ...] = ()
    ledger: LedgerSettings = field(default_factory=LedgerSettings)
    database: DatabaseSettings = field(default_factory=DatabaseSettings)
    checksum: str = ""
