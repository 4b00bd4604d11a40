"""
Module: apurement_kernel.models.sa_declaration
Responsibility: ORM persistence for temporary-admission (SA) declarations:
    the imported raw-material quota and its materialized consumption
    aggregate.
Architecture position: Kernel > Models.  May import from db/base.py and
    domain/status.py (pure enum).  MUST NOT import from services/,
    selectors/, or outer layers.

Invariants enforced:
    - sa_number is unique and normalized to "SA" + 6 digits
      (normalization performed by SaDeclarationService).
    - quantity_initial is fixed at creation (ORM listener in
      db/immutability.py).
    - quantity_apured and status are written only by SaAggregator; any other
      flush that changes them raises ImmutabilityViolationError.

Failure modes:
    - IntegrityError on duplicate sa_number.
    - ImmutabilityViolationError on forbidden column changes.
"""

from datetime import date
from decimal import Decimal
from typing import TYPE_CHECKING
from uuid import UUID

from sqlalchemy import Date, ForeignKey, Index, Numeric, String, Text
from sqlalchemy.orm import Mapped, mapped_column, relationship

from apurement_kernel.db.base import TrackedBase, UUIDString
from apurement_kernel.domain.status import SaStatus

if TYPE_CHECKING:
    from apurement_kernel.models.family import ScrapFamily


class SaDeclaration(TrackedBase):
    """
    Temporary-admission declaration (raw material imported duty-suspended).

    Contract:
        ``quantity_initial`` is the quota that allocations consume.
        ``quantity_apured`` equals the rounded sum of the SA's allocation
        quantities after every committed allocation write, and ``status`` is
        derived from it.

    Guarantees:
        - quantity_apured <= quantity_initial + 0.0001 after every
          successful allocation.
        - status only moves forward: OPEN -> PARTIALLY_APURED -> FULLY_APURED.

    Non-goals:
        - The family is NOT copied onto the SA; the coefficient is read from
          the family at allocation time.
    """

    __tablename__ = "sa_declarations"

    __table_args__ = (
        Index("idx_sa_status_due", "status", "due_date"),
        Index("idx_sa_family", "family_id"),
    )

    sa_number: Mapped[str] = mapped_column(
        String(20),
        nullable=False,
        unique=True,
    )

    # Customs regime, 532 = temporary admission for inward processing
    regime_code: Mapped[str] = mapped_column(
        String(10),
        nullable=False,
        default="532",
    )

    declaration_date: Mapped[date] = mapped_column(
        Date,
        nullable=False,
    )

    # Date by which the quota must be apured
    due_date: Mapped[date] = mapped_column(
        Date,
        nullable=False,
    )

    status: Mapped[str] = mapped_column(
        String(30),
        nullable=False,
        default=SaStatus.OPEN.value,
    )

    quantity_initial: Mapped[Decimal] = mapped_column(
        Numeric(18, 3),
        nullable=False,
    )

    quantity_unit: Mapped[str] = mapped_column(
        String(20),
        nullable=False,
        default="TONNE",
    )

    # Scrap allowance in tonnes, display only
    scrap_quantity_ton: Mapped[Decimal | None] = mapped_column(
        Numeric(18, 3),
        nullable=True,
    )

    quantity_apured: Mapped[Decimal] = mapped_column(
        Numeric(18, 3),
        nullable=False,
        default=Decimal("0"),
    )

    invoice_amount: Mapped[Decimal | None] = mapped_column(
        Numeric(18, 2),
        nullable=True,
    )

    currency_code: Mapped[str | None] = mapped_column(
        String(3),
        nullable=True,
    )

    fx_rate: Mapped[Decimal | None] = mapped_column(
        Numeric(18, 6),
        nullable=True,
    )

    # Amount in local currency: invoice_amount * fx_rate
    amount_ds: Mapped[Decimal | None] = mapped_column(
        Numeric(18, 3),
        nullable=True,
    )

    supplier_name: Mapped[str | None] = mapped_column(
        String(200),
        nullable=True,
    )

    family_id: Mapped[UUID | None] = mapped_column(
        UUIDString(),
        ForeignKey("scrap_families.id"),
        nullable=True,
    )

    description: Mapped[str | None] = mapped_column(
        Text,
        nullable=True,
    )

    # Plain lazy load: the ledger locks this row with FOR UPDATE, which
    # PostgreSQL refuses on the nullable side of an outer join.
    family: Mapped["ScrapFamily | None"] = relationship(
        foreign_keys=[family_id],
    )

    def __repr__(self) -> str:
        return f"<SaDeclaration {self.sa_number} status={self.status}>"

    @property
    def scrap_percent(self) -> Decimal | None:
        """Scrap percentage of the SA's family, None without a family."""
        if self.family is None:
            return None
        return self.family.scrap_percent
