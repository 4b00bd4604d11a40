"""
Module: apurement_kernel.models.allocation
Responsibility: ORM persistence for SA/EA allocations -- the append-only
    ledger of raw material consumed from SA quotas by exports.
Architecture position: Kernel > Models.  May import from db/base.py only.
    MUST NOT import from services/, selectors/, domain/, or outer layers.

Invariants enforced:
    - Append-only: UPDATE and DELETE are rejected by ORM listeners in
      db/immutability.py.
    - seq is unique and monotonic (assigned by SequenceService).
    - For every SA: sum(quantity) <= quantity_initial + 0.0001 (checked by
      AllocationLedger under the SA row lock).

Failure modes:
    - ImmutabilityViolationError on any UPDATE or DELETE.
    - IntegrityError on duplicate seq or dangling foreign key.

Audit relevance:
    The allocation rows are the authoritative record of quota consumption.
    SaDeclaration.quantity_apured is a materialized sum of these rows and
    can always be recomputed from them.
"""

from datetime import datetime
from decimal import Decimal
from typing import TYPE_CHECKING
from uuid import UUID

from sqlalchemy import BigInteger, DateTime, ForeignKey, Index, Numeric, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column, relationship

from apurement_kernel.db.base import Base, UUIDString

if TYPE_CHECKING:
    from apurement_kernel.models.ea_declaration import EaDeclaration
    from apurement_kernel.models.sa_declaration import SaDeclaration


class Allocation(Base):
    """
    One consumption of SA raw material by an EA.

    Contract:
        ``quantity`` is the SA-side quantity, already converted from the
        EA-side request with the SA family coefficient and rounded to three
        decimals.  It is fixed forever once inserted.

    Guarantees:
        - Listings order by (created_at, seq).

    Non-goals:
        - No reversal or cancellation entry exists.
    """

    __tablename__ = "sa_ea_allocations"

    __table_args__ = (
        UniqueConstraint("seq", name="uq_allocation_seq"),
        Index("idx_allocation_sa", "sa_id"),
        Index("idx_allocation_ea", "ea_id"),
    )

    sa_id: Mapped[UUID] = mapped_column(
        UUIDString(),
        ForeignKey("sa_declarations.id"),
        nullable=False,
    )

    ea_id: Mapped[UUID] = mapped_column(
        UUIDString(),
        ForeignKey("ea_declarations.id"),
        nullable=False,
    )

    # SA-side consumed quantity
    quantity: Mapped[Decimal] = mapped_column(
        Numeric(18, 3),
        nullable=False,
    )

    # Monotonic ledger sequence
    seq: Mapped[int] = mapped_column(
        BigInteger,
        nullable=False,
    )

    # Set from the injected clock
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
    )

    created_by_id: Mapped[UUID] = mapped_column(
        UUIDString(),
        nullable=False,
    )

    sa: Mapped["SaDeclaration"] = relationship(foreign_keys=[sa_id])

    ea: Mapped["EaDeclaration"] = relationship(foreign_keys=[ea_id])

    def __repr__(self) -> str:
        return f"<Allocation #{self.seq} sa={self.sa_id} ea={self.ea_id} qty={self.quantity}>"
