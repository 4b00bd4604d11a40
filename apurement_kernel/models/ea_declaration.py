"""
Module: apurement_kernel.models.ea_declaration
Responsibility: ORM persistence for export (EA) declarations: the finished
    product shipped abroad whose raw material discharges SA quotas.
Architecture position: Kernel > Models.  May import from db/base.py only.

Invariants enforced:
    - ea_number is unique and normalized to "EA" + 6 digits.
    - family_id, scrap_percent and scrap_quantity are display-only and
      never feed the ledger arithmetic.

Failure modes:
    - IntegrityError on duplicate ea_number.
"""

from datetime import date
from decimal import Decimal
from uuid import UUID

from sqlalchemy import Date, ForeignKey, Index, Numeric, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from apurement_kernel.db.base import TrackedBase, UUIDString


class EaDeclaration(TrackedBase):
    """
    Export declaration (finished product leaving the territory).

    Contract:
        ``total_quantity`` is the EA-side quantity exported.  The display
        scrap fields describe the family chosen on the EA form and may
        disagree with the family of the SAs it is allocated against.

    Non-goals:
        - The EA does not track how much of its total_quantity has been
          allocated; allocations are listed per EA by AllocationSelector.
    """

    __tablename__ = "ea_declarations"

    __table_args__ = (
        Index("idx_ea_export_date", "export_date"),
    )

    ea_number: Mapped[str] = mapped_column(
        String(20),
        nullable=False,
        unique=True,
    )

    # Customs regime, 362 = re-export after inward processing
    regime_code: Mapped[str] = mapped_column(
        String(10),
        nullable=False,
        default="362",
    )

    export_date: Mapped[date] = mapped_column(
        Date,
        nullable=False,
    )

    status: Mapped[str] = mapped_column(
        String(30),
        nullable=False,
        default="SUBMITTED",
    )

    customer_name: Mapped[str] = mapped_column(
        String(200),
        nullable=False,
    )

    destination_country: Mapped[str | None] = mapped_column(
        String(100),
        nullable=True,
    )

    product_ref: Mapped[str | None] = mapped_column(
        String(100),
        nullable=True,
    )

    product_desc: Mapped[str | None] = mapped_column(
        Text,
        nullable=True,
    )

    total_quantity: Mapped[Decimal] = mapped_column(
        Numeric(18, 3),
        nullable=False,
    )

    quantity_unit: Mapped[str] = mapped_column(
        String(20),
        nullable=False,
    )

    family_id: Mapped[UUID | None] = mapped_column(
        UUIDString(),
        ForeignKey("scrap_families.id"),
        nullable=True,
    )

    scrap_percent: Mapped[Decimal | None] = mapped_column(
        Numeric(5, 2),
        nullable=True,
    )

    scrap_quantity: Mapped[Decimal | None] = mapped_column(
        Numeric(18, 3),
        nullable=True,
    )

    def __repr__(self) -> str:
        return f"<EaDeclaration {self.ea_number} qty={self.total_quantity}>"
