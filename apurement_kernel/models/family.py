"""
Module: apurement_kernel.models.family
Responsibility: ORM persistence for product families and their scrap
    percentage -- the reference data from which every scrap coefficient is
    derived.
Architecture position: Kernel > Models.  May import from db/base.py only.
    MUST NOT import from services/, selectors/, domain/, or outer layers.

Invariants enforced:
    - label is unique.
    - scrap_percent is in [0, 100); validated by FamilyService on create and
      re-checked by the coefficient function on every use.

Failure modes:
    - IntegrityError on duplicate label.
"""

from datetime import datetime
from decimal import Decimal

from sqlalchemy import Boolean, DateTime, Numeric, String, func
from sqlalchemy.orm import Mapped, mapped_column

from apurement_kernel.db.base import Base


class ScrapFamily(Base):
    """
    Product family with its scrap percentage.

    Contract:
        ``scrap_percent`` is the share of raw material (SA side) lost to
        waste when producing the family's finished product (EA side).
        5.00 means 5 %.

    Non-goals:
        - Families are reference data with no edit or delete operation.
    """

    __tablename__ = "scrap_families"

    label: Mapped[str] = mapped_column(
        String(100),
        nullable=False,
        unique=True,
    )

    scrap_percent: Mapped[Decimal] = mapped_column(
        Numeric(5, 2),
        nullable=False,
    )

    is_active: Mapped[bool] = mapped_column(
        Boolean,
        nullable=False,
        default=True,
    )

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
        nullable=False,
    )

    def __repr__(self) -> str:
        return f"<ScrapFamily {self.label} {self.scrap_percent}%>"
